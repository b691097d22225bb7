"""
Verification orchestrator - clears post-login challenges.

State machine:

    Idle -> CaptchaCheck -> {CaptchaAutoSolve, CaptchaManualWait}
         -> EmailCheck -> {EmailAutoRetrieve, EmailManualWait} -> Confirmed

Any unrecoverable condition moves to Aborted and raises VerificationAborted.
The run must stop on that error: repeating automated attempts against a
security challenge risks locking the account.

This component only clears challenges. Whether the login actually worked is
checked separately by the caller.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, List, Optional

from .browser_utils import first_visible, is_visible_within, random_pause, save_screenshot
from .config_loader import VerificationSettings
from .detectors import ChallengeDetector
from .models import (
    AttemptOutcome,
    ChallengeDetectionResult,
    ChallengeKind,
    ResolutionMode,
    VerificationAttempt,
)
from .notifications import PromptBridge

logger = logging.getLogger(__name__)


class VerificationState(str, Enum):
    IDLE = "idle"
    CAPTCHA_CHECK = "captcha_check"
    CAPTCHA_AUTO_SOLVE = "captcha_auto_solve"
    CAPTCHA_MANUAL_WAIT = "captcha_manual_wait"
    EMAIL_CHECK = "email_check"
    EMAIL_AUTO_RETRIEVE = "email_auto_retrieve"
    EMAIL_MANUAL_WAIT = "email_manual_wait"
    CONFIRMED = "confirmed"
    ABORTED = "aborted"


class VerificationAborted(RuntimeError):
    """Fatal: a challenge could not be cleared. Do not retry the login."""

    def __init__(
        self,
        message: str,
        *,
        state: VerificationState,
        kind: Optional[ChallengeKind] = None,
        cancelled: bool = False,
    ):
        super().__init__(message)
        self.state = state
        self.kind = kind
        self.cancelled = cancelled


@dataclass
class VerificationOutcome:
    solved: bool
    final_state: VerificationState
    attempts: List[VerificationAttempt] = field(default_factory=list)
    challenges_seen: List[ChallengeKind] = field(default_factory=list)


_CAPTCHA_PROMPT = [
    "CAPTCHA DETECTED!",
    "Please solve it in this window.",
    "The run continues automatically once it is gone, or click the button below.",
]

_EMAIL_PROMPT = [
    "EMAIL VERIFICATION REQUIRED!",
    "Check your inbox for the code from \"TikTok For Business\",",
    "enter it in the form and click \"Log in\".",
    "Click the button below when done.",
]


class VerificationOrchestrator:
    """Drives one login sequence's challenges to Confirmed or Aborted"""

    def __init__(
        self,
        page: Any,
        detector: ChallengeDetector,
        settings: VerificationSettings,
        *,
        captcha_solver: Optional[Any] = None,
        mail_client: Optional[Any] = None,
        screenshots_dir: Path = Path("storage/screenshots"),
        cancel_event: Optional[threading.Event] = None,
        metrics: Optional[Any] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.page = page
        self.detector = detector
        self.settings = settings
        self.captcha_solver = captcha_solver
        self.mail_client = mail_client
        self.screenshots_dir = Path(screenshots_dir)
        self.cancel_event = cancel_event or threading.Event()
        self.metrics = metrics
        self._clock = clock
        self._sleep = sleep

        self.state = VerificationState.IDLE
        self.attempts: List[VerificationAttempt] = []
        self.challenges_seen: List[ChallengeKind] = []
        self._deadline = 0.0

    # === State bookkeeping ===

    def _transition(self, new_state: VerificationState) -> None:
        if new_state != self.state:
            logger.info("Verification: %s -> %s", self.state.value, new_state.value)
        self.state = new_state

    def _start_attempt(self, kind: ChallengeKind, mode: ResolutionMode) -> VerificationAttempt:
        number = sum(1 for a in self.attempts if a.kind == kind) + 1
        attempt = VerificationAttempt(kind=kind, attempt_number=number, resolution_mode=mode)
        self.attempts.append(attempt)
        return attempt

    def _finish_attempt(self, attempt: VerificationAttempt, outcome: AttemptOutcome, detail: str = "") -> None:
        attempt.outcome = outcome
        attempt.detail = detail or None
        if self.metrics is not None:
            self.metrics.record_event(
                "challenge_attempt",
                kind=attempt.kind.value,
                attempt=attempt.attempt_number,
                mode=attempt.resolution_mode.value,
                outcome=outcome.value,
                detail=attempt.detail,
            )

    def _seen(self, kind: ChallengeKind) -> None:
        if kind not in self.challenges_seen:
            self.challenges_seen.append(kind)
            if self.metrics is not None:
                self.metrics.inc(f"challenge_{kind.value}_seen")

    def _abort(self, message: str, kind: Optional[ChallengeKind] = None, *, cancelled: bool = False) -> VerificationAborted:
        failed_in = self.state
        self._transition(VerificationState.ABORTED)
        save_screenshot(self.page, self.screenshots_dir, "verification-aborted")
        logger.error("Verification aborted in %s: %s", failed_in.value, message)
        return VerificationAborted(message, state=failed_in, kind=kind, cancelled=cancelled)

    def _remaining(self) -> float:
        return self._deadline - self._clock()

    def _should_stop(self) -> bool:
        return self.cancel_event.is_set() or self._remaining() <= 0

    def _guard(self, kind: Optional[ChallengeKind]) -> None:
        if self.cancel_event.is_set():
            raise self._abort("cancelled by operator", kind, cancelled=True)
        if self._remaining() <= 0:
            raise self._abort(
                f"challenge not cleared within {self.settings.overall_timeout_seconds:.0f}s", kind
            )

    # === Entry point ===

    def resolve(self) -> VerificationOutcome:
        """Clear every challenge present on the page, or raise VerificationAborted."""
        self.state = VerificationState.IDLE
        self.attempts = []
        self.challenges_seen = []
        self._deadline = self._clock() + self.settings.overall_timeout_seconds

        try:
            self._transition(VerificationState.CAPTCHA_CHECK)
            detection = self.detector.detect_captcha(self.page)
            if detection.present:
                self._seen(ChallengeKind.CAPTCHA)
                self._handle_captcha(detection)
            else:
                logger.info("No CAPTCHA detected")

            self._transition(VerificationState.EMAIL_CHECK)
            if self.detector.detect_email_code(self.page):
                self._seen(ChallengeKind.EMAIL_CODE)
                self._handle_email()
            else:
                logger.info("No email verification required")

            self._transition(VerificationState.CONFIRMED)
        except VerificationAborted:
            raise
        except Exception as exc:
            raise self._abort(f"unexpected error: {exc}") from exc

        return VerificationOutcome(
            solved=True,
            final_state=self.state,
            attempts=list(self.attempts),
            challenges_seen=list(self.challenges_seen),
        )

    # === CAPTCHA ===

    def _captcha_automatic_available(self) -> bool:
        return (
            self.settings.allows_automatic
            and self.captcha_solver is not None
            and self.captcha_solver.available()
        )

    def _handle_captcha(self, detection: ChallengeDetectionResult) -> None:
        if self._captcha_automatic_available():
            if self._auto_solve_captcha(detection):
                if self.metrics is not None:
                    self.metrics.inc("challenge_captcha_solved")
                return
            if not self.settings.allows_manual:
                raise self._abort("automatic CAPTCHA solving failed", ChallengeKind.CAPTCHA)
        elif not self.settings.allows_manual:
            raise self._abort("CAPTCHA present and automatic solving is not configured", ChallengeKind.CAPTCHA)

        self._manual_wait(ChallengeKind.CAPTCHA)
        if self.metrics is not None:
            self.metrics.inc("challenge_captcha_solved")

    def _auto_solve_captcha(self, detection: ChallengeDetectionResult) -> bool:
        for _ in range(self.settings.captcha_max_attempts):
            self._guard(ChallengeKind.CAPTCHA)
            self._transition(VerificationState.CAPTCHA_AUTO_SOLVE)
            attempt = self._start_attempt(ChallengeKind.CAPTCHA, ResolutionMode.AUTOMATIC)

            try:
                self._apply_captcha_solution(detection)
            except Exception as exc:
                logger.warning("Automatic CAPTCHA solve failed: %s", exc)
                self._finish_attempt(attempt, AttemptOutcome.FAILED, str(exc))
                if self.settings.allows_manual:
                    # Hand over to the operator rather than hitting the service again
                    return False
                continue

            self._sleep(self.settings.post_click_wait_ms / 1000.0)
            if not self._captcha_visible():
                self._finish_attempt(attempt, AttemptOutcome.SOLVED)
                logger.info("CAPTCHA cleared automatically")
                return True
            if self.detector.detect_email_code(self.page):
                # Next challenge showing implies the puzzle was accepted
                self._finish_attempt(attempt, AttemptOutcome.SOLVED, "email form appeared")
                logger.info("CAPTCHA cleared automatically (email step reached)")
                return True

            refreshed = self.detector.detect_captcha(self.page)
            if not refreshed.present:
                self._finish_attempt(attempt, AttemptOutcome.SOLVED, "captcha gone on re-probe")
                logger.info("CAPTCHA cleared automatically")
                return True

            self._finish_attempt(attempt, AttemptOutcome.FAILED, "captcha still visible after clicks")
            if self.settings.allows_manual:
                # One automatic try only; the operator takes over from here
                return False
            detection = refreshed

        return False

    def _apply_captcha_solution(self, detection: ChallengeDetectionResult) -> None:
        if not detection.artifact or not detection.locator:
            raise RuntimeError("no CAPTCHA image captured")

        solution = self.captcha_solver.solve_image_file(Path(detection.artifact))
        element = self.page.locator(detection.locator).first
        box = element.bounding_box()
        if not box:
            raise RuntimeError("CAPTCHA element has no bounding box")

        points = solution.to_pixels(box["width"], box["height"])
        for index, (x, y) in enumerate(points):
            logger.info("Clicking CAPTCHA point %s at (%.1f, %.1f)", index + 1, x, y)
            element.click(position={"x": x, "y": y})
            if index < len(points) - 1:
                random_pause(self.settings.click_pause_ms, self.settings.click_pause_ms * 1.6, self._sleep)

    def _captcha_visible(self) -> bool:
        timeout = self.settings.probe_timeout_ms
        return any(is_visible_within(self.page, s, timeout) for s in self.settings.captcha_image_selectors)

    # === Email code ===

    def _email_automatic_available(self) -> bool:
        return (
            self.settings.allows_automatic
            and self.mail_client is not None
            and self.mail_client.available()
        )

    def _handle_email(self) -> None:
        if self._email_automatic_available():
            if self._auto_retrieve_email_code():
                if self.metrics is not None:
                    self.metrics.inc("challenge_email-code_solved")
                return
            if not self.settings.allows_manual:
                raise self._abort("automatic email code retrieval failed", ChallengeKind.EMAIL_CODE)
        elif not self.settings.allows_manual:
            raise self._abort("email code required and no mail service is configured", ChallengeKind.EMAIL_CODE)

        self._manual_wait(ChallengeKind.EMAIL_CODE)
        if self.metrics is not None:
            self.metrics.inc("challenge_email-code_solved")

    def _auto_retrieve_email_code(self) -> bool:
        self._guard(ChallengeKind.EMAIL_CODE)
        self._transition(VerificationState.EMAIL_AUTO_RETRIEVE)
        attempt = self._start_attempt(ChallengeKind.EMAIL_CODE, ResolutionMode.AUTOMATIC)

        try:
            code = self.mail_client.wait_for_code(
                self.settings.email_max_attempts,
                self.settings.email_poll_interval_seconds,
                should_stop=self._should_stop,
            )
        except Exception as exc:
            logger.warning("Mail service failed: %s", exc)
            code = None
        if not code:
            if self._should_stop():
                self._finish_attempt(attempt, AttemptOutcome.FAILED, "stopped while polling for code")
                self._guard(ChallengeKind.EMAIL_CODE)
            self._finish_attempt(attempt, AttemptOutcome.FAILED, "no code retrieved")
            return False

        try:
            self._submit_email_code(code)
        except Exception as exc:
            logger.warning("Could not enter verification code: %s", exc)
            self._finish_attempt(attempt, AttemptOutcome.FAILED, f"entry failed: {exc}")
            return False

        self._sleep(self.settings.post_click_wait_ms / 1000.0)
        cleared = not self.detector.detect_email_code(self.page)
        # The code is single-use either way
        self.mail_client.update_code_status(code, "used")

        if cleared:
            self._finish_attempt(attempt, AttemptOutcome.SOLVED)
            logger.info("Email verification completed automatically")
            return True
        self._finish_attempt(attempt, AttemptOutcome.FAILED, "code form still visible")
        return False

    def _submit_email_code(self, code: str) -> None:
        timeout = self.settings.probe_timeout_ms
        input_selector = first_visible(self.page, self.settings.email_input_selectors, timeout)
        if not input_selector:
            raise RuntimeError("verification code input not found")
        field = self.page.locator(input_selector).first
        field.click()
        field.fill("")
        field.press_sequentially(code, delay=120)

        submit_selector = first_visible(self.page, self.settings.email_submit_selectors, timeout)
        random_pause(300, 900, self._sleep)
        if submit_selector:
            self.page.locator(submit_selector).first.click()
        else:
            field.press("Enter")
        logger.info("Verification code submitted")

    # === Manual fallback ===

    def _manual_wait(self, kind: ChallengeKind) -> None:
        if kind == ChallengeKind.CAPTCHA:
            self._transition(VerificationState.CAPTCHA_MANUAL_WAIT)
            lines, button, color = _CAPTCHA_PROMPT, "I've solved the CAPTCHA", "rgba(200, 0, 0, 0.85)"
        else:
            self._transition(VerificationState.EMAIL_MANUAL_WAIT)
            lines, button, color = _EMAIL_PROMPT, "I've entered the verification code", "rgba(0, 100, 0, 0.85)"

        attempt = self._start_attempt(kind, ResolutionMode.MANUAL)
        save_screenshot(self.page, self.screenshots_dir, f"{kind.value}-manual-wait")
        logger.warning("%s requires manual action; waiting up to %.0fs", kind.value, max(self._remaining(), 0))
        print(f"\n✋ {kind.value} detected - complete it in the browser window.")

        bridge = PromptBridge(self.page)
        bridge.show(lines, button, color)
        try:
            while True:
                self._guard(kind)
                reason = self._manual_progress(kind, bridge)
                if reason:
                    logger.info("Manual %s wait finished: %s", kind.value, reason)
                    self._finish_attempt(attempt, AttemptOutcome.SOLVED, reason)
                    return
                bridge.ensure_visible()
                self._sleep(max(min(self.settings.manual_poll_interval_seconds, self._remaining()), 0))
        except VerificationAborted:
            self._finish_attempt(attempt, AttemptOutcome.FAILED, "aborted while waiting")
            raise
        finally:
            bridge.dismiss()

    def _manual_progress(self, kind: ChallengeKind, bridge: PromptBridge) -> Optional[str]:
        if bridge.is_done():
            return "operator confirmed"
        if kind == ChallengeKind.CAPTCHA:
            if self.detector.detect_email_code(self.page):
                return "email verification appeared"
            if not self._captcha_visible():
                return "captcha no longer visible"
            return None
        if not self.detector.detect_email_code(self.page):
            return "code form no longer visible"
        return None
