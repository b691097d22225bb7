"""
Small Playwright helpers shared by the login, verification and collection steps
"""

from __future__ import annotations

import logging
import random
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)


def first_success(strategies: Iterable[Tuple[str, Callable[[], Any]]]) -> Optional[Tuple[str, Any]]:
    """
    Try (name, callable) strategies in order and return the first usable result.

    A strategy fails by raising or by returning None/False. Returns
    (name, result) for the winner or None when every strategy failed.
    """
    for name, strategy in strategies:
        try:
            result = strategy()
        except Exception as exc:
            logger.debug("Strategy %s failed: %s", name, exc)
            continue
        if result is None or result is False:
            logger.debug("Strategy %s found nothing", name)
            continue
        return name, result
    return None


def is_visible_within(page: Any, selector: str, timeout_ms: int) -> bool:
    """Bounded visibility probe. Absence is a normal outcome, never an error."""
    try:
        page.locator(selector).first.wait_for(state="visible", timeout=timeout_ms)
        return True
    except Exception:
        return False


def first_visible(page: Any, selectors: Iterable[str], timeout_ms: int) -> Optional[str]:
    """Return the first selector that becomes visible within its own timeout."""
    found = first_success(
        (selector, lambda s=selector: is_visible_within(page, s, timeout_ms))
        for selector in selectors
    )
    return found[0] if found else None


def random_between(low: float, high: float) -> float:
    if high <= low:
        return float(low)
    return random.uniform(low, high)


def random_pause(min_ms: float, max_ms: float, sleep: Callable[[float], None] = time.sleep) -> float:
    """Sleep for a random duration in [min_ms, max_ms] and return the seconds slept."""
    seconds = random_between(min_ms, max_ms) / 1000.0
    sleep(seconds)
    return seconds


def timestamp_slug(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp with ':' and '.' replaced by '-'."""
    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    iso = moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return iso.replace(":", "-").replace(".", "-")


def artifact_name(prefix: str, param: Optional[str], page: Any, ext: str, now: Optional[datetime] = None) -> str:
    """Build `<prefix>_<param>_page<page>_<timestamp>.<ext>`."""
    param_part = (str(param).strip() if param not in (None, "") else "unknown").replace("/", "-")
    page_part = str(page) if page not in (None, "") else "0"
    return f"{prefix}_{param_part}_page{page_part}_{timestamp_slug(now)}.{ext.lstrip('.')}"


def save_screenshot(page: Any, directory: Path, label: str, *, full_page: bool = False) -> Optional[Path]:
    """Best-effort diagnostic screenshot; returns the path or None."""
    if page is None:
        return None
    try:
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{label}-{timestamp_slug()}.png"
        page.screenshot(path=str(path), full_page=full_page)
        logger.info("Screenshot saved: %s", path)
        return path
    except Exception:
        logger.debug("Screenshot %s failed", label, exc_info=True)
        return None
