"""
Client for the mailbox service that extracts one-time login codes.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import requests
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class MailApiError(RuntimeError):
    pass


class CodeLookup(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: Optional[str] = None
    timestamp: Optional[str] = None
    status: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None


class MailCodeClient:
    """Talks to the mail-retrieval HTTP service."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str = "",
        timeout_seconds: int = 15,
        session: Optional[Any] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self._timeout = timeout_seconds
        self._http = session or requests
        self._sleep = sleep
        self._headers: Dict[str, str] = {"Authorization": f"Bearer {token}"} if token else {}

    def available(self) -> bool:
        return bool(self.base_url)

    def _get(self, path: str):
        try:
            return self._http.get(f"{self.base_url}{path}", headers=self._headers, timeout=self._timeout)
        except requests.RequestException as exc:
            raise MailApiError(f"mail service request error: {exc}") from exc

    def get_status(self) -> str:
        resp = self._get("/")
        if not resp.ok:
            raise MailApiError(f"mail service HTTP {resp.status_code}")
        return (resp.text or "").strip()

    def get_latest_code(self) -> CodeLookup:
        """Latest unused code. HTTP errors come back as CodeLookup.error, transport errors raise."""
        resp = self._get("/tiktok-code")
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if not resp.ok:
            return CodeLookup(error=str(data.get("error") or f"HTTP {resp.status_code}"), status="error")
        lookup = CodeLookup.model_validate(data)
        if not lookup.code and not lookup.message:
            lookup.message = "No verification code found"
        return lookup

    def list_codes(self) -> List[Dict[str, Any]]:
        resp = self._get("/codes")
        if not resp.ok:
            raise MailApiError(f"mail service HTTP {resp.status_code}")
        data = resp.json() or {}
        return list(data.get("codes") or [])

    def update_code_status(self, code: str, status: str = "used") -> bool:
        """Mark a code as consumed. Failures are logged, not raised."""
        try:
            resp = self._http.post(
                f"{self.base_url}/code-status/update",
                json={"code": code, "status": status},
                headers=self._headers,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Failed to update code status to %s: %s", status, exc)
            return False
        if not resp.ok:
            logger.warning("Failed to update code status to %s: HTTP %s", status, resp.status_code)
            return False
        logger.info("Verification code marked %s", status)
        return True

    def wait_for_code(
        self,
        max_attempts: int = 5,
        interval_seconds: float = 5.0,
        *,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> Optional[str]:
        """Poll for a code; half the interval after a transport failure. Stops early when should_stop() is true."""
        for attempt in range(1, max_attempts + 1):
            if should_stop is not None and should_stop():
                logger.warning("Stopped polling for verification code")
                return None
            logger.info("Fetching verification code (attempt %s/%s)", attempt, max_attempts)
            try:
                lookup = self.get_latest_code()
            except MailApiError as exc:
                logger.warning("Mail service unavailable: %s", exc)
                if attempt < max_attempts:
                    self._sleep(interval_seconds / 2)
                continue
            if lookup.code:
                logger.info("Verification code received")
                return lookup.code.strip()
            logger.info("No code yet (%s)", lookup.error or lookup.message)
            if attempt < max_attempts:
                self._sleep(interval_seconds)
        logger.error("No verification code after %s attempts", max_attempts)
        return None
