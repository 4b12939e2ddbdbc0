"""
Tests for the variant detector and the outcome classifier.
"""

import asyncio

import pytest

from loginkeeper.browser.dialects import DEFAULT_MARKERS, Dialect, detect_dialect
from loginkeeper.browser.driver import locate_first_visible
from loginkeeper.browser.outcome import LoginCheck, OutcomeClassifier

from fakes import FakeDriver, FakePage


@pytest.fixture
def driver():
    return FakeDriver()


@pytest.fixture
def classifier(driver):
    return OutcomeClassifier(driver, DEFAULT_MARKERS, probe_timeout_ms=0)


def _page(url="https://m.facebook.com/", html="<html><body></body></html>", controls=None):
    return FakePage(url=url, html=html, controls=dict(controls or {}))


# ====================================================================
# Variant detector
# ====================================================================

class TestDetectDialect:

    @pytest.mark.parametrize("url,expected", [
        ("https://m.facebook.com/login/", Dialect.MOBILE),
        ("https://www.facebook.com/", Dialect.DESKTOP),
        ("https://facebook.com/login.php", Dialect.DESKTOP),
    ])
    def test_by_url(self, driver, url, expected):
        assert asyncio.run(detect_dialect(driver, _page(url))) is expected

    def test_by_marker(self, driver):
        page = _page("about:blank", controls={'input[data-testid="royal_email"]': "type:identity"})
        assert asyncio.run(detect_dialect(driver, page)) is Dialect.DESKTOP

    def test_defaults_to_mobile(self, driver):
        assert asyncio.run(detect_dialect(driver, _page("about:blank"))) is Dialect.MOBILE

    def test_never_raises(self):
        class BrokenDriver(FakeDriver):
            def current_url(self, page):
                raise RuntimeError("page crashed")

            async def is_visible(self, element, timeout_ms=0):
                raise RuntimeError("page crashed")

        result = asyncio.run(detect_dialect(BrokenDriver(), _page()))
        assert result is Dialect.MOBILE


class TestLocateFirstVisible:

    def test_first_match_in_order(self, driver):
        page = _page(controls={"b": "none", "c": "none"})
        selector, element = asyncio.run(locate_first_visible(driver, page, ["a", "b", "c"], 0))
        assert selector == "b"
        assert element.selector == "b"

    def test_none_when_absent(self, driver):
        assert asyncio.run(locate_first_visible(driver, _page(), ["a", "b"], 0)) is None

    def test_skips_disabled_when_required(self):
        class BusyDriver(FakeDriver):
            async def is_enabled(self, element):
                return element.selector != "a"

        page = _page(controls={"a": "none", "b": "none"})
        found = asyncio.run(locate_first_visible(BusyDriver(), page, ["a", "b"], 0, require_enabled=True))
        assert found[0] == "b"


# ====================================================================
# Outcome classifier
# ====================================================================

class TestSecondFactor:

    def test_by_input(self, classifier):
        page = _page(controls={'input[name="approvals_code"]': "type:code"})
        assert asyncio.run(classifier.requires_second_factor(page))

    def test_by_visible_text(self, classifier):
        page = _page(html="<html><body><h2>Enter the 6-digit code</h2></body></html>")
        assert asyncio.run(classifier.requires_second_factor(page))

    def test_by_raw_markup(self, classifier):
        html = "<html><body><div aria-label='Two-Factor Authentication'></div></body></html>"
        assert asyncio.run(classifier.requires_second_factor(_page(html=html)))

    def test_by_url(self, classifier):
        page = _page(url="https://m.facebook.com/checkpoint/?next=%2F")
        assert asyncio.run(classifier.requires_second_factor(page))

    def test_plain_login_page(self, classifier):
        page = _page(
            html="<html><body><h1>Log in</h1></body></html>",
            controls={'input[name="email"]': "type:identity"},
        )
        assert not asyncio.run(classifier.requires_second_factor(page))


class TestLoginSucceeded:

    def test_second_factor_page_is_not_success(self, classifier):
        # No credential fields on a code page, but the 2FA check wins
        page = _page(
            url="https://m.facebook.com/two_step_verification/",
            html="<html><body>Ve a tu app de autenticación</body></html>",
        )
        assert asyncio.run(classifier.login_succeeded(page)) is LoginCheck.NOT_LOGGED_IN

    def test_success_url(self, classifier):
        page = _page(url="https://www.facebook.com/home.php",
                     controls={'input[name="email"]': "type:identity"})
        assert asyncio.run(classifier.login_succeeded(page)) is LoginCheck.SUCCESS

    def test_no_credential_fields(self, classifier):
        assert asyncio.run(classifier.login_succeeded(_page())) is LoginCheck.SUCCESS

    def test_logged_in_marker(self, classifier):
        page = _page(controls={'input[type="password"]': "none", '[data-testid="blue_bar"]': "none"})
        assert asyncio.run(classifier.login_succeeded(page)) is LoginCheck.SUCCESS

    def test_still_on_login_form(self, classifier):
        page = _page(controls={'input[name="email"]': "type:identity"})
        assert asyncio.run(classifier.login_succeeded(page)) is LoginCheck.NOT_LOGGED_IN

    def test_save_login_interstitial(self, classifier):
        page = _page(html="<html><body><h2>Save your login info</h2></body></html>")
        check = asyncio.run(classifier.login_succeeded(page))
        assert check is LoginCheck.SAVE_LOGIN_PROMPT
        assert check.is_success and check.needs_dismissal

    def test_trust_device_interstitial(self, classifier):
        page = _page(html="<html><body><h2>¿Confiar en este dispositivo?</h2></body></html>")
        check = asyncio.run(classifier.login_succeeded(page))
        assert check is LoginCheck.TRUST_DEVICE_PROMPT
        assert check.is_success and check.needs_dismissal

    def test_repeatable(self, classifier):
        page = _page(url="https://m.facebook.com/home.php")
        results = {asyncio.run(classifier.login_succeeded(page)) for _ in range(3)}
        assert results == {LoginCheck.SUCCESS}


class TestDismiss:

    def test_prefers_not_now(self, driver, classifier):
        clicked = []

        async def click(element, force=False):
            clicked.append(element.selector)

        driver.click = click
        page = _page(controls={
            'div[role="button"]:has-text("Save")': "dismiss",
            'div[role="button"]:has-text("Not now")': "dismiss",
        })
        assert asyncio.run(classifier.dismiss_interstitial(page, LoginCheck.SAVE_LOGIN_PROMPT))
        assert clicked == ['div[role="button"]:has-text("Not now")']

    def test_plain_success_needs_nothing(self, classifier):
        assert not asyncio.run(classifier.dismiss_interstitial(_page(), LoginCheck.SUCCESS))
