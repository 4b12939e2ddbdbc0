"""
Debug snapshots: full-page screenshot + JSON description of the page
(url, title, inputs, buttons) written at notable login stages.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from ..utils import file_timestamp

logger = logging.getLogger(__name__)


class DebugSnapshotter:
    """Writes ``<stage>_<timestamp>.png`` / ``.json`` pairs into *debug_dir*."""

    def __init__(self, debug_dir: str = "debug", enabled: bool = False):
        self.debug_dir = Path(debug_dir)
        self.enabled = enabled

    async def capture(self, driver, page: Any, stage: str) -> Optional[Path]:
        """Capture a snapshot; never raises.  Returns the JSON path or None."""
        if not self.enabled or page is None:
            return None
        try:
            self.debug_dir.mkdir(parents=True, exist_ok=True)
            stem = f"{stage}_{file_timestamp()}"
            png_path = self.debug_dir / f"{stem}.png"
            json_path = self.debug_dir / f"{stem}.json"

            await driver.screenshot(page, png_path)
            controls = await driver.describe_controls(page)
            info = {
                "stage": stage,
                "url": driver.current_url(page),
                "title": await driver.title(page),
                "screenshot": png_path.name,
                "inputs": controls.get("inputs", []),
                "buttons": controls.get("buttons", []),
            }
            json_path.write_text(json.dumps(info, indent=2, ensure_ascii=False), encoding="utf-8")
            logger.info(f"[DEBUG] Snapshot saved: {json_path}")
            return json_path
        except Exception as e:
            logger.debug(f"[DEBUG] Snapshot '{stage}' failed: {e}")
            return None
