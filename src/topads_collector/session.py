"""
Session continuity - restore, verify and persist an authenticated browser state.

A restored session is never trusted: after cookies and localStorage are
replayed the target is loaded and a live authentication check must pass.
Anything short of that leaves the browser with no cookies or storage.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, List, Optional

from pydantic import ValidationError

from .browser_utils import first_visible, random_pause
from .config_loader import SessionSettings
from .models import OriginStorage, SessionState

logger = logging.getLogger(__name__)

_SET_LOCAL_STORAGE_JS = """
(entries) => {
  for (const [key, value] of Object.entries(entries)) {
    window.localStorage.setItem(key, value);
  }
  return window.localStorage.length;
}
"""

_CLEAR_LOCAL_STORAGE_JS = "() => { try { window.localStorage.clear(); } catch (e) {} return true; }"


class SessionManager:
    """Owns the session file for one browser context"""

    def __init__(
        self,
        context: Any,
        page: Any,
        settings: SessionSettings,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.context = context
        self.page = page
        self.settings = settings
        self._sleep = sleep
        self._touched_origins: List[str] = []

    # === Authentication check ===

    def is_authenticated(self) -> bool:
        selector = first_visible(self.page, self.settings.authenticated_selectors, self.settings.auth_probe_timeout_ms)
        if selector:
            logger.info("Authenticated (%s visible)", selector)
            return True
        logger.info("No authenticated UI signal visible")
        return False

    # === Restore ===

    def restore(self, path: Optional[Path] = None) -> bool:
        """Install the saved session and verify it. True only when authenticated."""
        path = Path(path or self.settings.session_file)
        self._touched_origins = []
        self._clear_cookies()
        self._clear_current_storage()

        state = self._load(path)
        if state is None:
            return False

        logger.info("Restoring session from %s (%s cookies, %s origins)", path, len(state.cookies), len(state.origins))
        try:
            if state.cookies:
                self.context.add_cookies([cookie.to_playwright() for cookie in state.cookies])
            self.page.goto(self.settings.neutral_url)
        except Exception as exc:
            logger.warning("Could not install saved cookies: %s", exc)
            self._discard()
            return False

        for entry in state.distinct_origins():
            self._replay_origin(entry)

        try:
            live_cookies = self.context.cookies()
        except Exception as exc:
            logger.warning("Could not read cookies after restore: %s", exc)
            live_cookies = []
        if not live_cookies:
            logger.warning("No cookies present after restore, session file is empty or corrupt")
            self._discard()
            return False

        if self._verify_on_target():
            try:
                self.persist(path)
            except OSError as exc:
                logger.warning("Session verified but could not be saved to %s: %s", path, exc)
            logger.info("✓ Session restored and verified")
            return True

        logger.warning("Restored session is not authenticated, discarding it")
        self._discard()
        return False

    def _load(self, path: Path) -> Optional[SessionState]:
        if not path.exists():
            logger.info("No session file at %s", path)
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return SessionState.model_validate(raw)
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Session file %s is unreadable: %s", path, exc)
            return None

    def _replay_origin(self, entry: OriginStorage) -> bool:
        if not entry.local_storage:
            logger.debug("No localStorage for %s, skipping", entry.origin)
            return True

        attempts = self.settings.replay_attempts
        for attempt in range(1, attempts + 1):
            try:
                self.page.goto(entry.origin, wait_until="domcontentloaded")
                if entry.origin not in self._touched_origins:
                    self._touched_origins.append(entry.origin)
                self.page.evaluate(_SET_LOCAL_STORAGE_JS, entry.local_storage)
                logger.info("Replayed %s localStorage entries for %s", len(entry.local_storage), entry.origin)
                return True
            except Exception as exc:
                logger.warning(
                    "localStorage replay for %s failed (attempt %s/%s): %s",
                    entry.origin, attempt, attempts, exc,
                )
                if attempt < attempts:
                    random_pause(*self.settings.replay_backoff_ms, sleep=self._sleep)

        logger.warning("Giving up on localStorage for %s", entry.origin)
        return False

    def _verify_on_target(self) -> bool:
        timeouts = self.settings.navigation_timeouts_ms
        for attempt, timeout in enumerate(timeouts, start=1):
            try:
                logger.info("Loading target (attempt %s/%s, timeout %sms)", attempt, len(timeouts), timeout)
                self.page.goto(self.settings.target_url, timeout=timeout, wait_until="domcontentloaded")
            except Exception as exc:
                logger.warning("Navigation attempt %s failed: %s", attempt, exc)
                continue

            self._sleep(self.settings.auth_settle_ms / 1000.0)
            if self.is_authenticated():
                return True
        return False

    # === Cleanup ===

    def _clear_cookies(self) -> None:
        try:
            self.context.clear_cookies()
        except Exception as exc:
            logger.warning("Could not clear cookies: %s", exc)

    def _clear_current_storage(self) -> None:
        try:
            self.page.evaluate(_CLEAR_LOCAL_STORAGE_JS)
        except Exception:
            logger.debug("No localStorage to clear on current page")

    def _discard(self) -> None:
        """Remove every cookie and the localStorage of each origin we wrote to."""
        self._clear_cookies()
        for origin in self._touched_origins:
            try:
                self.page.goto(origin, wait_until="domcontentloaded")
                self.page.evaluate(_CLEAR_LOCAL_STORAGE_JS)
            except Exception as exc:
                logger.warning("Could not clear localStorage for %s: %s", origin, exc)
        self._touched_origins = []
        self._clear_current_storage()
        # Navigations above may have set fresh cookies
        self._clear_cookies()

    # === Persist ===

    def snapshot(self) -> SessionState:
        storage = self.context.storage_state() or {}
        cookies = self.context.cookies()
        return SessionState.model_validate(
            {"cookies": cookies, "origins": storage.get("origins") or []}
        )

    def persist(self, path: Optional[Path] = None) -> Path:
        path = Path(path or self.settings.session_file)
        state = self.snapshot()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(state.to_file_dict(), indent=2), encoding="utf-8")
        logger.info("Session saved to %s (%s cookies, %s origins)", path, len(state.cookies), len(state.origins))
        return path
