"""
Per-run counters for a top-ads collection, dumped as JSON when the run ends
"""

import json
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

DEFAULT_TEMPLATE = "storage/run_metrics_{timestamp}.json"

# Counters summarised on the console and in the JSON "totals" block
TOTALS = (
    "responses_intercepted",
    "records_persisted",
    "records_duplicate",
    "records_failed",
    "scroll_advances",
    "scroll_failures",
)


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _stamp() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


@dataclass
class RunMetrics:
    """
    Counters, gauges and events for one collection run.

    Updated from the interception callback as well as the main loop, so every
    mutation goes through a lock.
    """

    name: str = "topads"
    run_id: str = field(default_factory=_stamp)
    status: str = "running"
    started_at: str = field(default_factory=_iso_now)
    ended_at: Optional[str] = None
    duration_seconds: Optional[float] = None
    counters: Dict[str, int] = field(default_factory=dict)
    gauges: Dict[str, Any] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)
    output_path: Optional[Path] = None
    _clock_start: float = field(default_factory=time.monotonic, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def inc(self, key: str, amount: int = 1) -> None:
        if key:
            with self._lock:
                self.counters[key] = self.counters.get(key, 0) + int(amount)

    def get(self, key: str) -> int:
        with self._lock:
            return self.counters.get(key, 0)

    def set_gauge(self, key: str, value: Any) -> None:
        if key:
            with self._lock:
                self.gauges[key] = value

    def record_event(self, kind: str, **data: Any) -> None:
        """Append a timestamped event; None-valued fields are dropped."""
        if not kind:
            return
        event = {"t": _iso_now(), "kind": kind}
        event.update((k, v) for k, v in data.items() if v is not None)
        with self._lock:
            self.events.append(event)

    def elapsed(self) -> float:
        if self.duration_seconds is not None:
            return self.duration_seconds
        return max(time.monotonic() - self._clock_start, 0.0)

    def finish(self, status: str = "ok") -> None:
        """Record end time and final status. Only the first call counts."""
        if self.ended_at is not None:
            return
        self.duration_seconds = self.elapsed()
        self.ended_at = _iso_now()
        self.status = status

    def totals(self) -> Dict[str, int]:
        with self._lock:
            return {key: self.counters.get(key, 0) for key in TOTALS}

    def to_dict(self, *, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        totals = self.totals()
        with self._lock:
            payload: Dict[str, Any] = {
                "name": self.name,
                "run_id": self.run_id,
                "status": self.status,
                "started_at": self.started_at,
                "ended_at": self.ended_at or _iso_now(),
                "duration_seconds": round(self.elapsed(), 3),
                "totals": totals,
                "counters": dict(self.counters),
            }
            if self.gauges:
                payload["gauges"] = dict(self.gauges)
            if self.events:
                payload["events"] = [dict(e) for e in self.events]
        if extra:
            payload["extra"] = dict(extra)
        return payload

    def write_json(self, *, template: str = DEFAULT_TEMPLATE, extra: Optional[Dict[str, Any]] = None) -> Path:
        path = Path((template or DEFAULT_TEMPLATE).replace("{timestamp}", self.run_id))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(self.to_dict(extra=extra), indent=2, sort_keys=True, default=str),
            encoding="utf-8",
        )
        self.output_path = path
        return path
