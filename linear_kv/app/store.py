from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import ContextManager, Dict, Optional, Set

from .errors import InvalidArgument
from .history import Clock, Interval, OperationKind, OperationLog, OperationRecord, Outcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadResult:
    key: str
    value: Optional[str]
    found: bool
    outcome: Outcome


class KeyValueStore:

    def __init__(
        self,
        log: Optional[OperationLog] = None,
        clock: Optional[Clock] = None,
        lock: Optional[ContextManager] = None,
    ) -> None:
        self._data: Dict[str, str] = {}
        self._applied: Set[str] = set()
        # Held only for in-memory work, never across an await.
        self._lock = lock if lock is not None else threading.Lock()
        self.log = log if log is not None else OperationLog()
        self._clock = clock if clock is not None else Clock()

    async def put(self, request_id: str, key: str, value: str) -> Outcome:
        """Apply a write at most once per request id."""
        if not request_id or not key:
            raise InvalidArgument("requestId and key required")
        start = self._clock.now()
        with self._lock:
            if request_id in self._applied:
                outcome = Outcome.DUPLICATE
                logger.debug("Duplicate write %s to %s ignored", request_id, key)
            else:
                self._data[key] = value
                self._applied.add(request_id)
                outcome = Outcome.OK
            self.log.append(
                OperationRecord(
                    request_id=request_id,
                    kind=OperationKind.WRITE,
                    key=key,
                    value=value,
                    outcome=outcome,
                    interval=Interval(start, self._clock.now()),
                )
            )
            return outcome

    async def get(self, key: str, request_id: str = "") -> ReadResult:
        if not key:
            raise InvalidArgument("key required")
        start = self._clock.now()
        with self._lock:
            value = self._data.get(key)
            outcome = Outcome.OK if value is not None else Outcome.NOT_FOUND
            self.log.append(
                OperationRecord(
                    request_id=request_id or "",
                    kind=OperationKind.READ,
                    key=key,
                    value=value,
                    outcome=outcome,
                    interval=Interval(start, self._clock.now()),
                )
            )
        return ReadResult(key=key, value=value, found=value is not None, outcome=outcome)
