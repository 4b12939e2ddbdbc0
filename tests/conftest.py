import pytest

from loginkeeper.auth.service import LoginService
from loginkeeper.run_config import KeeperConfig

from fakes import IDENTITY, PASSWORD, FakeAccount, FakeDriver, FakeSite



@pytest.fixture
def config(tmp_path):
    """Fast config: no pacing, zero probe and outcome waits, isolated directories."""
    return KeeperConfig(
        artifacts_dir=str(tmp_path / "cookies"),
        cache_dir=str(tmp_path / "cache"),
        debug_dir=str(tmp_path / "debug"),
        humanized_delay=False,
        probe_timeout_ms=0,
        classifier_probe_timeout_ms=0,
        dialect_probe_timeout_ms=0,
        submit_ready_timeout_s=0.0,
        submit_poll_interval_s=0.0,
        post_submit_settle_s=0.0,
        outcome_retry_delays=(0.0, 0.0, 0.0),
    )


@pytest.fixture
def make_service(config):
    def _make(accounts=None, **site_kwargs):
        if accounts is None:
            accounts = {IDENTITY: FakeAccount(password=PASSWORD, code="123456")}
        site = FakeSite(accounts, **site_kwargs)
        driver = FakeDriver(site)
        return LoginService(config, driver=driver), driver
    return _make
