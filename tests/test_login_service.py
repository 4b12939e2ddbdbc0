"""
End-to-end tests for LoginService against the simulated site.

Covers:
  1. Quick login (missing / expired / valid / stale artifacts)
  2. Full login with and without a second factor
  3. Second-factor submit, retry, cancel, race, and timeout
  4. Auto-dialect fallback
  5. Session close, saved-data deletion and purge
"""

import asyncio
import os
import time
from datetime import timedelta

from loginkeeper.auth.artifact_store import ArtifactBundle
from loginkeeper.auth.errors import ErrorKind
from loginkeeper.auth.registry import SessionState
from loginkeeper.auth.results import Outcome
from loginkeeper.utils import utc_now

from fakes import IDENTITY, PASSWORD, FakeAccount


def _save_bundle(service, token="tok-valid", age_hours=0.0):
    service.store.write(ArtifactBundle(
        identity=IDENTITY,
        captured_at=utc_now() - timedelta(hours=age_hours),
        cookies=[{"name": "c_user", "value": token, "domain": ".facebook.com", "path": "/"}],
        local_storage={"Session": "saved"},
    ))


# ====================================================================
# 1. Quick login
# ====================================================================

class TestQuickLogin:

    def test_no_artifacts_never_launches(self, make_service):
        service, driver = make_service()
        result = asyncio.run(service.quick_login(IDENTITY))
        assert result.outcome is Outcome.FAILURE
        assert result.error is ErrorKind.NO_ARTIFACTS
        assert driver.launch_count == 0

    def test_expired_bundle_same_as_missing(self, make_service, config):
        service, driver = make_service()
        _save_bundle(service, age_hours=config.retention_hours + 1)
        result = asyncio.run(service.quick_login(IDENTITY))
        assert result.error is ErrorKind.NO_ARTIFACTS
        assert driver.launch_count == 0
        # Expired files are ignored, not deleted
        assert service.store.cookies_path(IDENTITY).exists()

    def test_valid_bundle_logs_in_with_persistent_cache(self, make_service):
        service, driver = make_service()
        _save_bundle(service)
        result = asyncio.run(service.quick_login(IDENTITY, "mobile"))
        assert result.outcome is Outcome.SUCCESS
        assert result.used_saved_data
        assert result.session_id.startswith("quick-")
        assert driver.persistent_launches[0].endswith(os.path.join("user@example.com", "mobile"))
        # Browser stays open on success
        assert len(driver.open_handles) == 1
        [summary] = service.list_sessions()
        assert summary.state == SessionState.COMPLETED.value

    def test_stale_cookies_fail_without_overwriting(self, make_service):
        service, driver = make_service()
        _save_bundle(service, token="tok-old")
        before = service.store.cookies_path(IDENTITY).read_text(encoding="utf-8")

        result = asyncio.run(service.quick_login(IDENTITY, "mobile"))

        assert result.outcome is Outcome.FAILURE
        assert result.error is ErrorKind.QUICK_LOGIN_FAILED
        assert driver.open_handles == []
        assert service.list_sessions() == []
        assert service.store.cookies_path(IDENTITY).read_text(encoding="utf-8") == before

    def test_quick_login_never_types_credentials(self, make_service):
        service, driver = make_service()
        _save_bundle(service, token="tok-old")
        asyncio.run(service.quick_login(IDENTITY, "auto"))
        assert driver.launch_count == len(driver.persistent_launches)


# ====================================================================
# 2. Full login
# ====================================================================

class TestFullLogin:

    def test_login_without_second_factor(self, make_service):
        service, driver = make_service({IDENTITY: FakeAccount(password=PASSWORD)})
        result = asyncio.run(service.login(IDENTITY, PASSWORD))
        assert result.outcome is Outcome.SUCCESS
        assert result.dialect == "mobile"
        bundle = service.store.read(IDENTITY)
        assert bundle is not None and not bundle.is_empty
        assert len(driver.open_handles) == 1

    def test_wrong_password_tears_down(self, make_service):
        service, driver = make_service()
        result = asyncio.run(service.login(IDENTITY, "nope", "mobile"))
        assert result.outcome is Outcome.FAILURE
        assert driver.open_handles == []
        assert service.list_sessions() == []
        assert service.store.read(IDENTITY) is None

    def test_missing_credentials_rejected(self, make_service):
        service, driver = make_service()
        result = asyncio.run(service.login("", PASSWORD))
        assert result.error is ErrorKind.INVALID_REQUEST
        assert driver.launch_count == 0

    def test_unknown_dialect_rejected(self, make_service):
        service, driver = make_service()
        result = asyncio.run(service.login(IDENTITY, PASSWORD, "tablet"))
        assert result.error is ErrorKind.INVALID_REQUEST
        assert driver.launch_count == 0

    def test_save_login_interstitial_is_dismissed(self, make_service):
        account = FakeAccount(password=PASSWORD, interstitial=True)
        service, driver = make_service({IDENTITY: account})

        async def scenario():
            result = await service.login(IDENTITY, PASSWORD, "mobile")
            record = service.registry.get(result.session_id)
            return result, record.page.state

        result, state = asyncio.run(scenario())
        assert result.outcome is Outcome.SUCCESS
        assert state == "home"

    def test_loading_page_is_retried(self, make_service):
        service, driver = make_service(
            {IDENTITY: FakeAccount(password=PASSWORD)}, loading_first=True
        )
        result = asyncio.run(service.login(IDENTITY, PASSWORD, "mobile"))
        assert result.outcome is Outcome.SUCCESS

    def test_full_login_creates_profile_dir_for_quick_login(self, make_service):
        service, driver = make_service({IDENTITY: FakeAccount(password=PASSWORD)})
        result = asyncio.run(service.login(IDENTITY, PASSWORD, "desktop"))
        assert result.outcome is Outcome.SUCCESS
        assert service.store.cache_dir(IDENTITY, "desktop", create=False).is_dir()
        assert not service.store.cache_dir(IDENTITY, "mobile", create=False).exists()

    def test_code_page_after_redirect_is_caught_by_later_check(self, make_service, config):
        config.outcome_retry_delays = (0.0, 0.1, 0.2)
        account = FakeAccount(password=PASSWORD, code="123456", code_page_delay_s=0.15)
        service, driver = make_service({IDENTITY: account})
        checks = []
        requires_second_factor = service.classifier.requires_second_factor

        async def counting(page):
            checks.append(page.state)
            return await requires_second_factor(page)

        service.classifier.requires_second_factor = counting
        result = asyncio.run(service.login(IDENTITY, PASSWORD, "mobile"))

        # Pacing is off in this config; the outcome waits still run
        assert config.humanized_delay is False
        assert result.outcome is Outcome.SECOND_FACTOR_REQUIRED
        assert len(checks) == 3
        assert checks[0] == "redirect"
        assert service.store.read(IDENTITY) is None

        result = asyncio.run(service.login(IDENTITY, PASSWORD, "mobile"))
        assert result.outcome is Outcome.SUCCESS

    def test_second_factor_leaves_one_session_and_one_pending(self, make_service):
        service, driver = make_service()

        async def scenario():
            result = await service.login(IDENTITY, PASSWORD)
            return result, service.list_sessions(), service.list_pending_second_factor()

        result, sessions, pending = asyncio.run(scenario())
        assert result.outcome is Outcome.SECOND_FACTOR_REQUIRED
        assert result.session_id
        assert len(sessions) == 1
        assert sessions[0].session_id == result.session_id
        assert sessions[0].state == SessionState.AWAITING_SECOND_FACTOR.value
        assert [p.session_id for p in pending] == [result.session_id]
        assert len(driver.open_handles) == 1


# ====================================================================
# 3. Second factor
# ====================================================================

class TestSecondFactor:

    def test_example_scenario(self, make_service):
        """No artifacts, auto dialect, mobile reaches 2FA, code 123456 accepted."""
        service, driver = make_service()

        async def scenario():
            first = await service.login(IDENTITY, PASSWORD, "auto")
            second = await service.submit_second_factor(first.session_id, "123456")
            return first, second

        first, second = asyncio.run(scenario())
        assert first.outcome is Outcome.SECOND_FACTOR_REQUIRED
        assert first.session_id is not None
        assert first.dialect == "mobile"
        assert second.outcome is Outcome.SUCCESS
        bundle = service.store.read(IDENTITY)
        assert bundle is not None and not bundle.is_empty

    def test_wrong_code_keeps_session(self, make_service):
        service, driver = make_service()

        async def scenario():
            first = await service.login(IDENTITY, PASSWORD)
            wrong = await service.submit_second_factor(first.session_id, "000000")
            return first, wrong, service.list_sessions(), service.list_pending_second_factor()

        first, wrong, sessions, pending = asyncio.run(scenario())
        assert wrong.outcome is Outcome.STILL_PENDING
        assert [s.session_id for s in sessions] == [first.session_id]
        assert sessions[0].state == SessionState.AWAITING_SECOND_FACTOR.value
        assert len(pending) == 1
        assert driver.site.submitted_codes == ["000000"]

    def test_correct_code_after_retry_completes_once(self, make_service):
        service, driver = make_service()

        async def scenario():
            first = await service.login(IDENTITY, PASSWORD)
            sid = first.session_id
            await service.submit_second_factor(sid, "111111")
            ok = await service.submit_second_factor(sid, "123456")
            again = await service.submit_second_factor(sid, "123456")
            return ok, again, service.list_sessions(), service.list_pending_second_factor()

        ok, again, sessions, pending = asyncio.run(scenario())
        assert ok.outcome is Outcome.SUCCESS
        assert again.error is ErrorKind.SESSION_NOT_FOUND
        assert pending == []
        assert sessions[0].state == SessionState.COMPLETED.value
        assert service.store.read(IDENTITY) is not None

    def test_unknown_session_has_no_side_effects(self, make_service):
        service, driver = make_service()
        for _ in range(2):
            result = asyncio.run(service.submit_second_factor("nope", "123456"))
            assert result.outcome is Outcome.FAILURE
            assert result.error is ErrorKind.SESSION_NOT_FOUND
            assert "nope" in result.detail
        assert driver.launch_count == 0

    def test_cancel_closes_browser(self, make_service):
        service, driver = make_service()

        async def scenario():
            first = await service.login(IDENTITY, PASSWORD)
            cancelled = await service.cancel_second_factor(first.session_id)
            again = await service.cancel_second_factor(first.session_id)
            return cancelled, again

        cancelled, again = asyncio.run(scenario())
        assert cancelled.outcome is Outcome.CANCELLED
        assert again.outcome is Outcome.NOT_FOUND
        assert driver.open_handles == []
        assert service.list_sessions() == []

    def test_submit_and_cancel_race_submit_first(self, make_service):
        service, driver = make_service()

        async def scenario():
            first = await service.login(IDENTITY, PASSWORD)
            sid = first.session_id
            results = await asyncio.gather(
                service.submit_second_factor(sid, "123456"),
                service.cancel_second_factor(sid),
            )
            open_after_race = len(driver.open_handles)
            await service.shutdown()
            return results, open_after_race

        (submitted, cancelled), open_after_race = asyncio.run(scenario())
        assert submitted.outcome is Outcome.SUCCESS
        assert cancelled.error is ErrorKind.SESSION_NOT_FOUND
        # The winner's live session is the only browser left
        assert open_after_race == 1
        assert driver.open_handles == []

    def test_submit_and_cancel_race_cancel_first(self, make_service):
        service, driver = make_service()

        async def scenario():
            first = await service.login(IDENTITY, PASSWORD)
            sid = first.session_id
            return await asyncio.gather(
                service.cancel_second_factor(sid),
                service.submit_second_factor(sid, "123456"),
            )

        cancelled, submitted = asyncio.run(scenario())
        assert cancelled.outcome is Outcome.CANCELLED
        assert submitted.error is ErrorKind.SESSION_NOT_FOUND
        assert driver.open_handles == []
        assert service.store.read(IDENTITY) is None

    def test_pending_wait_expires(self, make_service, config):
        config.second_factor_timeout_s = 0.05
        service, driver = make_service()

        async def scenario():
            first = await service.login(IDENTITY, PASSWORD)
            await asyncio.sleep(0.2)
            late = await service.submit_second_factor(first.session_id, "123456")
            return late, service.list_sessions(), service.list_pending_second_factor()

        late, sessions, pending = asyncio.run(scenario())
        assert late.error is ErrorKind.SESSION_NOT_FOUND
        assert sessions == []
        assert pending == []
        assert driver.open_handles == []

    def test_wrong_code_after_deadline_times_out(self, make_service):
        service, driver = make_service()

        async def scenario():
            first = await service.login(IDENTITY, PASSWORD)
            pending = service.registry.get_pending(first.session_id)
            pending.suspended_at -= timedelta(hours=1)
            return await service.submit_second_factor(first.session_id, "000000")

        result = asyncio.run(scenario())
        assert result.outcome is Outcome.FAILURE
        assert result.error is ErrorKind.TIMEOUT
        assert driver.open_handles == []
        assert service.list_sessions() == []


# ====================================================================
# 4. Auto-dialect fallback
# ====================================================================

class TestDialectFallback:

    def test_mobile_element_missing_falls_back_to_desktop(self, make_service):
        account = FakeAccount(password=PASSWORD, code="123456", broken_dialects={"mobile"})
        service, driver = make_service({IDENTITY: account})

        result = asyncio.run(service.login(IDENTITY, PASSWORD, "auto"))

        assert driver.launch_count == 2
        assert result.outcome is Outcome.SECOND_FACTOR_REQUIRED
        assert result.dialect == "desktop"
        assert "mobile" in result.attempts
        # The failed mobile browser was closed
        assert len(driver.open_handles) == 1

    def test_both_dialects_fail(self, make_service):
        account = FakeAccount(password=PASSWORD, broken_dialects={"mobile", "desktop"})
        service, driver = make_service({IDENTITY: account})

        result = asyncio.run(service.login(IDENTITY, PASSWORD, "auto"))

        assert result.error is ErrorKind.BOTH_VERSIONS_FAILED
        assert set(result.attempts) == {"mobile", "desktop"}
        assert "identity field not found (mobile)" in result.detail
        assert "identity field not found (desktop)" in result.detail
        assert driver.open_handles == []

    def test_explicit_dialect_does_not_fall_back(self, make_service):
        account = FakeAccount(password=PASSWORD, broken_dialects={"mobile"})
        service, driver = make_service({IDENTITY: account})
        result = asyncio.run(service.login(IDENTITY, PASSWORD, "mobile"))
        assert result.error is ErrorKind.ELEMENT_NOT_FOUND
        assert driver.launch_count == 1


# ====================================================================
# 5. Sessions and saved data
# ====================================================================

class TestHousekeeping:

    def test_close_session(self, make_service):
        service, driver = make_service({IDENTITY: FakeAccount(password=PASSWORD)})

        async def scenario():
            first = await service.login(IDENTITY, PASSWORD)
            closed = await service.close_session(first.session_id)
            missing = await service.close_session(first.session_id)
            return closed, missing

        closed, missing = asyncio.run(scenario())
        assert closed.outcome is Outcome.CLOSED
        assert missing.outcome is Outcome.NOT_FOUND
        assert driver.open_handles == []

    def test_delete_account_data_counts(self, make_service):
        service, driver = make_service()
        _save_bundle(service)
        service.store.cache_dir(IDENTITY, "mobile")

        first = asyncio.run(service.delete_account_data(IDENTITY))
        second = asyncio.run(service.delete_account_data(IDENTITY))

        assert first.files_deleted == 3
        assert second.files_deleted == 0
        assert not service.store.account_cache_dir(IDENTITY).exists()

    def test_delete_dot_identities_stay_inside_cache(self, make_service, tmp_path):
        service, driver = make_service()
        precious = tmp_path / "precious"
        precious.mkdir()
        (precious / "keep.txt").write_text("keep", encoding="utf-8")
        other = service.store.cache_dir("other@example.com", "mobile")

        for identity in ("..", "."):
            result = asyncio.run(service.delete_account_data(identity))
            assert result.outcome is Outcome.SUCCESS
            assert result.files_deleted == 0

        assert (precious / "keep.txt").exists()
        assert other.is_dir()

    def test_purge_is_idempotent(self, make_service):
        service, driver = make_service()
        _save_bundle(service)
        old = time.time() - 10 * 24 * 3600
        for path in (service.store.cookies_path(IDENTITY), service.store.session_path(IDENTITY)):
            os.utime(path, (old, old))

        first = asyncio.run(service.purge_expired_artifacts(24))
        second = asyncio.run(service.purge_expired_artifacts(24))

        assert first.files_deleted == 2
        assert second.files_deleted == 0

    def test_start_purges_with_retention_window(self, make_service):
        service, driver = make_service()
        _save_bundle(service)
        result = asyncio.run(service.start())
        assert result.files_deleted == 0
        assert service.store.cookies_path(IDENTITY).exists()

    def test_shutdown_saves_completed_sessions(self, make_service):
        service, driver = make_service({IDENTITY: FakeAccount(password=PASSWORD)})

        async def scenario():
            await service.login(IDENTITY, PASSWORD)
            service.store.delete(IDENTITY)
            return await service.shutdown()

        closed = asyncio.run(scenario())
        assert closed == 1
        assert driver.stopped
        assert service.store.read(IDENTITY) is not None
