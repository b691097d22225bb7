"""
Collection loop - scrolls the feed until the pagination budget is spent
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional

from .browser_utils import random_between, random_pause, save_screenshot
from .config_loader import CollectionSettings
from .pagination import PaginationTracker

logger = logging.getLogger(__name__)


def scroll_naturally(
    page: Any,
    settings: CollectionSettings,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Wheel down in a random number of uneven steps. Returns pixels scrolled."""
    steps = int(random_between(*settings.scroll_steps))
    total = 0
    for _ in range(max(steps, 1)):
        pixels = int(random_between(*settings.step_pixels))
        page.mouse.wheel(0, pixels)
        total += pixels
        random_pause(*settings.step_delay_ms, sleep=sleep)
    return total


class CollectionLoop:
    """Drives scroll advances while intercepted pages keep arriving"""

    def __init__(
        self,
        page: Any,
        tracker: PaginationTracker,
        settings: CollectionSettings,
        screenshots_dir: Path,
        *,
        cancel_event: Optional[threading.Event] = None,
        metrics: Optional[Any] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.page = page
        self.tracker = tracker
        self.settings = settings
        self.screenshots_dir = Path(screenshots_dir)
        self.cancel_event = cancel_event or threading.Event()
        self.metrics = metrics
        self._sleep = sleep

    def run(self) -> int:
        """Returns the number of completed advances."""
        completed = 0
        iteration = 0
        logger.info("Starting collection: %s advances planned", self.tracker.required_advances())

        # The budget is re-read every pass: later responses may raise it
        while iteration < self.tracker.required_advances():
            if self.cancel_event.is_set():
                logger.warning("Collection cancelled after %s advances", completed)
                break

            iteration += 1
            progress = self.tracker.progress()
            logger.info(
                "Advance %s/%s (page %s, %s items reported)",
                iteration,
                self.tracker.required_advances(),
                progress["current"],
                progress["total"],
            )

            try:
                pixels = scroll_naturally(self.page, self.settings, self._sleep)
                random_pause(*self.settings.advance_delay_ms, sleep=self._sleep)
                completed += 1
                if self.metrics is not None:
                    self.metrics.inc("scroll_advances")
                logger.debug("Advance %s scrolled %spx", iteration, pixels)
            except Exception as exc:
                logger.warning("Advance %s failed: %s", iteration, exc)
                if self.metrics is not None:
                    self.metrics.inc("scroll_failures")

            if iteration % self.settings.screenshot_every == 0:
                save_screenshot(self.page, self.screenshots_dir, f"collection-advance-{iteration}")

        if self.metrics is not None:
            self.metrics.set_gauge("advances_planned", self.tracker.required_advances())
            self.metrics.set_gauge("advances_completed", completed)
        logger.info("Collection finished: %s/%s advances", completed, iteration)
        return completed
