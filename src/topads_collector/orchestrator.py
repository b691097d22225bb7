"""
Top-ads collector - sequences session restore, login, verification,
interception and the collection loop in one browser session
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional

from playwright.sync_api import Browser, BrowserContext, Page, sync_playwright

from .browser_utils import save_screenshot
from .captcha_solver import SadCaptchaSolver
from .collection import CollectionLoop
from .config_loader import ConfigLoader
from .detectors import ChallengeDetector
from .interception import AdResponseInterceptor
from .login import LoginFlow
from .mail_client import MailCodeClient
from .notifications import show_process_aborted
from .pagination import PaginationTracker
from .run_metrics import RunMetrics
from .session import SessionManager
from .storage import StorageError, StorageRegistry
from .verification import VerificationAborted, VerificationOrchestrator

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ABORTED = 2
EXIT_CANCELLED = 130


class LoginFailed(RuntimeError):
    """Form login finished but the session is still not authenticated."""


class TopAdsCollector:
    """Runs one collection end to end against the Creative Center"""

    def __init__(
        self,
        config: ConfigLoader,
        *,
        cancel_event: Optional[threading.Event] = None,
        registry: Optional[StorageRegistry] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.cancel_event = cancel_event or threading.Event()
        self.registry = registry or StorageRegistry()
        self._sleep = sleep

        # Settings are built once and handed to each component
        self.session_settings = config.get_session_settings()
        self.verification_settings = config.get_verification_settings()
        self.collection_settings = config.get_collection_settings()
        self.storage_settings = config.get_storage_settings()
        self.paths = config.get_path_settings()
        self.credentials = config.get_credentials()

        self.metrics = RunMetrics(name="topads")
        self.tracker = PaginationTracker(self.collection_settings.default_advances)

        self.playwright: Any = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self.interceptor: Optional[AdResponseInterceptor] = None

    # === Browser ===

    def start_browser(self) -> None:
        """Launch Chromium and open a fresh context"""
        logger.info("Starting browser...")
        self.playwright = sync_playwright().start()
        channel = self.config.get_browser_channel() or None
        executable_path = self.config.get_browser_executable_path() or None

        if executable_path and not Path(executable_path).exists():
            logger.warning("Browser executable not found: %s", executable_path)
            executable_path = None

        self.browser = self.playwright.chromium.launch(
            headless=self.config.is_headless(),
            channel=channel,
            executable_path=executable_path,
            timeout=self.config.get_launch_timeout(),
            args=[
                "--disable-blink-features=AutomationControlled",
                "--disable-dev-shm-usage",
            ],
        )
        context_options: dict = {"viewport": {"width": 1280, "height": 800}}
        user_agent = self.config.get_user_agent()
        if user_agent:
            context_options["user_agent"] = user_agent
        self.context = self.browser.new_context(**context_options)
        self.page = self.context.new_page()

        self.page.set_default_timeout(self.config.get_page_timeout())
        self.page.set_default_navigation_timeout(self.config.get_navigation_timeout())

        if self.config.use_stealth():
            try:
                from playwright_stealth.stealth import Stealth
                Stealth().apply_stealth_sync(self.page)
                logger.info("Playwright stealth enabled")
            except Exception as exc:
                logger.warning("Failed to enable stealth mode: %s", exc)

        logger.info("Browser started successfully")

    def stop_browser(self) -> None:
        """Clean up browser resources"""
        if self.interceptor is not None:
            self.interceptor.detach()
        try:
            if self.context:
                self.context.close()
        except Exception:
            logger.debug("Browser context close failed", exc_info=True)
        try:
            if self.browser:
                self.browser.close()
        except Exception:
            logger.debug("Browser close failed", exc_info=True)
        try:
            if self.playwright:
                self.playwright.stop()
        except Exception:
            logger.debug("Playwright stop failed", exc_info=True)
        logger.info("Browser closed")

    # === Components ===

    def _screenshot(self, label: str) -> None:
        save_screenshot(self.page, self.paths.screenshots_dir, label, full_page=True)

    def build_verifier(self) -> VerificationOrchestrator:
        solver = SadCaptchaSolver(
            self.config.get_captcha_api_key(),
            self.config.get_captcha_base_url(),
            timeout_seconds=self.config.get_captcha_request_timeout(),
        )
        mail = MailCodeClient(
            self.config.get_mail_base_url(),
            token=self.config.get_mail_token(),
            timeout_seconds=self.config.get_mail_request_timeout(),
        )
        detector = ChallengeDetector(self.verification_settings, self.paths.screenshots_dir)
        return VerificationOrchestrator(
            self.page,
            detector,
            self.verification_settings,
            captcha_solver=solver,
            mail_client=mail,
            screenshots_dir=self.paths.screenshots_dir,
            cancel_event=self.cancel_event,
            metrics=self.metrics,
            sleep=self._sleep,
        )

    # === Steps ===

    def authenticate(self) -> None:
        """Restore the saved session, or log in and clear challenges. Raises on failure."""
        session = SessionManager(self.context, self.page, self.session_settings, sleep=self._sleep)

        print("\n🔑 Restoring saved session...")
        if session.restore(self.session_settings.session_file):
            self.metrics.set_gauge("session_restore", "restored")
            print("   ✓ Session restored")
            return
        self.metrics.set_gauge("session_restore", "fresh_login")
        print("   ✗ No valid session - logging in")

        self.page.goto(self.session_settings.target_url, wait_until="domcontentloaded")
        login = LoginFlow(self.page, self.credentials, self.paths.screenshots_dir, sleep=self._sleep)
        if not login.run():
            self._screenshot("login-failed")
            raise LoginFailed("login form could not be completed")

        outcome = self.build_verifier().resolve()
        logger.info("Verification finished in %s (%s attempts)", outcome.final_state.value, len(outcome.attempts))

        self.page.goto(self.session_settings.target_url, wait_until="domcontentloaded")
        self._sleep(self.session_settings.auth_settle_ms / 1000.0)
        if not session.is_authenticated():
            self._screenshot("login-not-authenticated")
            raise LoginFailed("not authenticated after login and verification")

        session.persist(self.session_settings.session_file)
        print("   ✓ Logged in, session saved")

    def collect(self) -> int:
        store = self.registry.for_settings(self.storage_settings)
        self.interceptor = AdResponseInterceptor(
            self.tracker,
            store,
            self.paths.api_responses_dir,
            url_pattern=self.collection_settings.api_url_pattern,
            metrics=self.metrics,
        )
        self.interceptor.attach(self.page)

        print("\n📥 Loading top ads feed...")
        self.page.goto(self.session_settings.target_url, wait_until="domcontentloaded")
        self._sleep(self.collection_settings.settle_seconds)

        loop = CollectionLoop(
            self.page,
            self.tracker,
            self.collection_settings,
            self.paths.screenshots_dir,
            cancel_event=self.cancel_event,
            metrics=self.metrics,
            sleep=self._sleep,
        )
        completed = loop.run()
        # Let the last responses land before detaching
        self._sleep(self.collection_settings.settle_seconds)
        try:
            stored = store.count()
        except StorageError as exc:
            logger.warning("Could not count stored ads: %s", exc)
        else:
            self.metrics.set_gauge("records_stored", stored)
            logger.info("%s ads in %s storage", stored, self.storage_settings.backend)
        return completed

    def run(self) -> int:
        """Full run. Returns a process exit code."""
        print("\n" + "=" * 60)
        print("🤖 STARTING TOP ADS COLLECTION")
        print("=" * 60)

        exit_code = EXIT_OK
        status = "ok"
        try:
            self.start_browser()
            self.authenticate()
            completed = self.collect()
            if self.cancel_event.is_set():
                exit_code, status = EXIT_CANCELLED, "cancelled"
            print(f"\n📊 {completed} advances, {self.metrics.get('records_persisted')} new ads, "
                  f"{self.metrics.get('records_duplicate')} duplicates")
        except VerificationAborted as exc:
            show_process_aborted(self.page, exc, self.paths.screenshots_dir)
            print(f"\n❌ PROCESS ABORTED: {exc}")
            if exc.cancelled:
                exit_code, status = EXIT_CANCELLED, "cancelled"
            else:
                exit_code, status = EXIT_ABORTED, "aborted"
        except LoginFailed as exc:
            logger.error("Login failed: %s", exc)
            print(f"\n❌ Login failed: {exc}")
            exit_code, status = EXIT_FAILED, "login_failed"
        except KeyboardInterrupt:
            logger.warning("Interrupted")
            exit_code, status = EXIT_CANCELLED, "cancelled"
        except Exception as exc:
            logger.error("Run failed: %s", exc, exc_info=True)
            self._screenshot("run-failed")
            exit_code, status = EXIT_FAILED, "failed"
        finally:
            self._shutdown(status)

        print("=" * 60 + "\n")
        return exit_code

    def _shutdown(self, status: str) -> None:
        self.metrics.set_gauge("pagination", self.tracker.progress())
        self.metrics.finish(status)
        try:
            path = self.metrics.write_json(template=self.config.get_metrics_template())
            logger.info("Run metrics written to %s", path)
        except OSError as exc:
            logger.warning("Could not write run metrics: %s", exc)
        self.stop_browser()
        try:
            self.registry.close_all()
        except StorageError as exc:
            logger.error("Storage shutdown failed: %s", exc)
