"""
Pagination tracker - turns server pagination metadata into a scroll budget
"""

from __future__ import annotations

import logging
import math
import threading
from typing import Dict

from .models import PaginationState

logger = logging.getLogger(__name__)

DEFAULT_ADVANCES = 20


class PaginationTracker:
    """
    Latest pagination block seen on the wire.

    Written from the interception callback, read by the collection loop.
    Updates are last-write-wins.
    """

    def __init__(self, default_advances: int = DEFAULT_ADVANCES):
        self.default_advances = default_advances
        self._state = PaginationState()
        self._updates = 0
        self._lock = threading.Lock()

    @property
    def state(self) -> PaginationState:
        with self._lock:
            return self._state

    @property
    def has_data(self) -> bool:
        return self._updates > 0

    def update(self, pagination: PaginationState) -> None:
        with self._lock:
            self._state = pagination
            self._updates += 1
        logger.info(
            "Pagination: page %s, total %s, size %s -> %s advances",
            pagination.current_page,
            pagination.total_items,
            pagination.page_size,
            self.required_advances(),
        )

    def update_from_payload(self, block: Dict) -> bool:
        """Accept a raw `{page, total_count, size}` dict. Returns False if unusable."""
        if not isinstance(block, dict):
            return False
        try:
            state = PaginationState.model_validate(block)
        except ValueError:
            logger.warning("Ignoring malformed pagination block: %s", block)
            return False
        self.update(state)
        return True

    def required_advances(self) -> int:
        with self._lock:
            total = self._state.total_items
            size = self._state.page_size
        if total > 0 and size > 0:
            return math.ceil(total / size)
        return self.default_advances

    def progress(self) -> Dict[str, int]:
        with self._lock:
            return {"current": self._state.current_page, "total": self._state.total_items}
