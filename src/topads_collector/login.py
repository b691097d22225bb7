"""
Login flow - walks the Creative Center login modal with email and password.

Whether the login worked is decided by the caller's authentication check,
not here.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from .browser_utils import first_success, random_pause, save_screenshot
from .config_loader import Credentials

logger = logging.getLogger(__name__)

COOKIE_CONSENT_SELECTORS = [
    'div.tiktok-cookie-banner button:has-text("Allow all")',
    'button:has-text("Allow all")',
    'button:has-text("Accept all")',
]

LOGIN_BUTTON_SELECTORS = [
    'div[data-testid="cc_header_login"]',
    'div.FixedHeaderPc_loginBtn__lL73Y',
    'div[class*="FixedHeaderPc_loginBtn"]',
]

PHONE_EMAIL_SELECTORS = [
    'div.Button_loginBtn__ImwTi:has-text("Log in with phone/email")',
    'div[class*="Button_loginBtn"]:has-text("phone/email")',
    'div.Button_loginBtn__ImwTi:has(img[alt="Phone/Email Login"])',
]

EMAIL_INPUT_SELECTORS = [
    '#TikTok_Ads_SSO_Login_Email_Input',
    'input[type="email"]',
    'input[name="email"]',
    'input[placeholder*="Email"]',
    'input[placeholder*="email"]',
    'input[class*="email"]',
]

PASSWORD_INPUT_SELECTORS = [
    '#TikTok_Ads_SSO_Login_Pwd_Input',
    '.tiktokads-common-login-form-password',
    'input[type="password"]',
    'input[name="password"]',
    'input[placeholder*="Password"]',
    'input[placeholder*="password"]',
]

SUBMIT_SELECTORS = [
    '#TikTok_Ads_SSO_Login_Btn',
    'button[name="loginBtn"]',
    'button.tiktokads-common-login-form-submit',
    'button[data-e2e="login-button"]',
    'button[id*="TikTok_Ads_SSO_Login"]',
    'button[type="submit"]',
    'button:has-text("Log in")',
    'button:has-text("Login")',
]


class LoginFlow:
    """Email/password login through the header login modal"""

    def __init__(
        self,
        page: Any,
        credentials: Credentials,
        screenshots_dir: Path,
        *,
        probe_timeout_ms: int = 3000,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.page = page
        self.credentials = credentials
        self.screenshots_dir = Path(screenshots_dir)
        self.probe_timeout_ms = probe_timeout_ms
        self._sleep = sleep

    def _find(self, selectors: Sequence[str], timeout_ms: Optional[int] = None) -> Optional[Any]:
        """First locator among `selectors` that becomes visible, or None."""
        timeout = timeout_ms if timeout_ms is not None else self.probe_timeout_ms

        def probe(selector: str):
            locator = self.page.locator(selector).first
            locator.wait_for(state="visible", timeout=timeout)
            return locator

        found = first_success((s, lambda s=s: probe(s)) for s in selectors)
        if found is None:
            return None
        logger.info("Matched %s", found[0])
        return found[1]

    def _type_like_human(self, locator: Any, text: str) -> None:
        locator.click()
        random_pause(100, 500, self._sleep)
        locator.fill("")
        for char in text:
            locator.press(char)
            random_pause(50, 250, self._sleep)
        random_pause(100, 500, self._sleep)

    def accept_cookies(self) -> bool:
        button = self._find(COOKIE_CONSENT_SELECTORS)
        if button is None:
            logger.info("No cookie banner")
            return False
        button.click()
        random_pause(1500, 2500, self._sleep)
        return True

    def open_login_modal(self) -> bool:
        button = self._find(LOGIN_BUTTON_SELECTORS, timeout_ms=10000)
        if button is None:
            logger.warning("Login button not found")
            return False
        button.click()
        random_pause(1000, 2000, self._sleep)
        return True

    def choose_phone_email(self) -> bool:
        option = self._find(PHONE_EMAIL_SELECTORS, timeout_ms=10000)
        if option is None:
            logger.warning("'Log in with phone/email' option not found")
            return False
        option.click()
        random_pause(800, 1500, self._sleep)
        return True

    def fill_form(self) -> bool:
        email_input = self._find(EMAIL_INPUT_SELECTORS)
        password_input = self._find(PASSWORD_INPUT_SELECTORS)
        if email_input is None or password_input is None:
            logger.error("Login form inputs not found")
            return False
        self._type_like_human(email_input, self.credentials.email)
        logger.info("Email entered")
        self._type_like_human(password_input, self.credentials.password)
        logger.info("Password entered")
        return True

    def submit(self) -> bool:
        button = self._find(SUBMIT_SELECTORS)
        if button is None:
            logger.error("Login submit button not found")
            return False
        random_pause(500, 1500, self._sleep)
        button.click()
        logger.info("Login form submitted")
        random_pause(3000, 5000, self._sleep)
        return True

    def run(self) -> bool:
        """Run every step. Returns True once the form has been submitted."""
        if not self.credentials.is_complete():
            logger.error("Login credentials missing from environment")
            return False

        print("\n🔐 Logging in with email/password...")
        self.accept_cookies()

        steps = (
            ("login-button", self.open_login_modal),
            ("phone-email", self.choose_phone_email),
            ("login-form", self.fill_form),
            ("login-submit", self.submit),
        )
        for label, step in steps:
            try:
                ok = step()
            except Exception as exc:
                logger.error("Login step %s failed: %s", label, exc)
                ok = False
            if not ok:
                save_screenshot(self.page, self.screenshots_dir, f"{label}-error")
                return False
        return True
