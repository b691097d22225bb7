"""
Challenge detectors. Pure observers: they never click or type, and a missing
challenge is reported as an absent result rather than an exception.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from .browser_utils import first_visible, timestamp_slug
from .config_loader import VerificationSettings
from .models import ChallengeDetectionResult, ChallengeKind

logger = logging.getLogger(__name__)


class ChallengeDetector:
    """Probes the live page for the CAPTCHA puzzle and the one-time-code form"""

    def __init__(self, settings: VerificationSettings, screenshots_dir: Path):
        self.settings = settings
        self.screenshots_dir = Path(screenshots_dir)

    def detect_captcha(self, page: Any) -> ChallengeDetectionResult:
        selector = first_visible(page, self.settings.captcha_image_selectors, self.settings.probe_timeout_ms)
        if not selector:
            logger.debug("No CAPTCHA image visible")
            return ChallengeDetectionResult.absent()

        logger.info("CAPTCHA image found: %s", selector)
        return ChallengeDetectionResult(
            present=True,
            kind=ChallengeKind.CAPTCHA,
            locator=selector,
            artifact=self._capture_element(page, selector),
        )

    def detect_email_code(self, page: Any) -> bool:
        return self.email_code_locator(page) is not None

    def email_code_locator(self, page: Any) -> Optional[str]:
        selector = first_visible(page, self.settings.email_code_selectors, self.settings.probe_timeout_ms)
        if selector:
            logger.info("Email verification form found: %s", selector)
        return selector

    def _capture_element(self, page: Any, selector: str) -> Optional[str]:
        try:
            self.screenshots_dir.mkdir(parents=True, exist_ok=True)
            path = self.screenshots_dir / f"captcha-detection-{timestamp_slug()}.png"
            page.locator(selector).first.screenshot(path=str(path))
            return str(path)
        except Exception as exc:
            logger.warning("CAPTCHA visible but screenshot failed: %s", exc)
            return None
