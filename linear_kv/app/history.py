from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional


class OperationKind(str, Enum):
    READ = "GET"
    WRITE = "PUT"


class Outcome(str, Enum):
    OK = "ok"
    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"


class Clock:
    """Nanosecond wall-clock timestamps that never run backwards.

    Readings come from the monotonic clock shifted by the wall-clock offset
    observed at construction, so intervals stay comparable even if the
    system time is adjusted while the process runs.
    """

    def __init__(self) -> None:
        self._offset = time.time_ns() - time.monotonic_ns()

    def now(self) -> int:
        return self._offset + time.monotonic_ns()


@dataclass(frozen=True, order=True)
class Interval:
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"interval ends before it starts ({self.start} > {self.end})")

    @property
    def duration_ns(self) -> int:
        return self.end - self.start

    def precedes(self, other: "Interval") -> bool:
        """Real-time precedence: this interval completes at or before ``other`` begins."""
        return self.end <= other.start

    def overlaps(self, other: "Interval") -> bool:
        return not self.precedes(other) and not other.precedes(self)


def _format_ns(ns: int) -> str:
    moment = datetime.fromtimestamp(ns // 1_000_000_000, tz=timezone.utc)
    moment = moment.replace(microsecond=(ns % 1_000_000_000) // 1000)
    return moment.isoformat(timespec="microseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class OperationRecord:
    request_id: str
    kind: OperationKind
    key: str
    value: Optional[str]
    outcome: Outcome
    interval: Interval

    @property
    def start(self) -> int:
        return self.interval.start

    @property
    def end(self) -> int:
        return self.interval.end

    @property
    def is_applied_write(self) -> bool:
        return self.kind is OperationKind.WRITE and self.outcome is Outcome.OK

    @property
    def is_read(self) -> bool:
        return self.kind is OperationKind.READ

    def precedes(self, other: "OperationRecord") -> bool:
        return self.interval.precedes(other.interval)

    def as_json(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "requestId": self.request_id,
            "op": self.kind.value,
            "key": self.key,
        }
        if self.value is not None:
            payload["value"] = self.value
        payload.update(
            {
                "result": self.outcome.value,
                "start": _format_ns(self.start),
                "end": _format_ns(self.end),
                "duration": self.interval.duration_ns,
            }
        )
        return payload


class OperationLog:
    """Append-only record of completed operations."""

    def __init__(self) -> None:
        self._records: List[OperationRecord] = []
        self._lock = threading.Lock()

    def append(self, record: OperationRecord) -> None:
        with self._lock:
            self._records.append(record)

    def snapshot(self) -> List[OperationRecord]:
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
