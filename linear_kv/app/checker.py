"""Linearizability checking over a recorded operation history.

Every record is treated as a real-time interval ``[start, end]``; the
timestamps are the only ground truth about ordering. Keys are independent
registers, so each key's history is checked on its own. A read is
explainable when some write of the value it returned (or "no write" for a
``not_found`` read) could have been the closest preceding write in a total
order that respects real-time precedence.

On top of the per-key check two per-client session guarantees are verified,
where a client is identified by the request id attached to its operations:
read-your-writes and monotonic reads.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .history import OperationRecord, Outcome

logger = logging.getLogger(__name__)

ANONYMOUS = "<anonymous>"


@dataclass
class CheckResult:
    is_linearizable: bool
    violations: List[str] = field(default_factory=list)
    total_ops: int = 0

    def as_json(self) -> Dict[str, object]:
        return {
            "isLinearizable": self.is_linearizable,
            "violations": list(self.violations),
            "totalOps": self.total_ops,
        }


def _label(record: OperationRecord) -> str:
    return record.request_id or ANONYMOUS


def _describe(read: OperationRecord) -> str:
    if read.outcome is Outcome.NOT_FOUND:
        return "not_found"
    return repr(read.value)


def _has_source(read: OperationRecord, writes: List[OperationRecord]) -> bool:
    if read.outcome is Outcome.NOT_FOUND:
        # The initial empty state conflicts with every write, so any write
        # forced before the read rules it out.
        return not any(w.precedes(read) for w in writes)
    for candidate in writes:
        if candidate.value != read.value or read.precedes(candidate):
            continue
        overwritten = any(
            other.value != candidate.value
            and candidate.precedes(other)
            and other.precedes(read)
            for other in writes
        )
        if not overwritten:
            return True
    return False


class LinearizabilityChecker:

    def __init__(self, history: Iterable[OperationRecord]) -> None:
        self._history: List[OperationRecord] = sorted(history, key=lambda r: (r.start, r.end))
        self._writes: Dict[str, List[OperationRecord]] = defaultdict(list)
        self._reads: Dict[str, List[OperationRecord]] = defaultdict(list)
        for record in self._history:
            if record.is_applied_write:
                self._writes[record.key].append(record)
            elif record.is_read and record.outcome in (Outcome.OK, Outcome.NOT_FOUND):
                self._reads[record.key].append(record)

    def check(self) -> CheckResult:
        if not self._history:
            return CheckResult(is_linearizable=True, total_ops=0)

        violations: List[str] = []
        for key in sorted(self._reads):
            violations.extend(self._check_key(key))
        violations.extend(self._check_read_your_writes())
        violations.extend(self._check_monotonic_reads())

        if violations:
            logger.warning(
                "History of %s operations is not linearizable (%s violations)",
                len(self._history),
                len(violations),
            )
        return CheckResult(
            is_linearizable=not violations,
            violations=violations,
            total_ops=len(self._history),
        )

    def _check_key(self, key: str) -> List[str]:
        writes = self._writes.get(key, [])
        return [
            f"Key '{key}' has inconsistent operations: read {_label(read)} returned "
            f"{_describe(read)} with no admissible source write"
            for read in self._reads[key]
            if not _has_source(read, writes)
        ]

    def _sources(self, key: str, value: Optional[str]) -> List[OperationRecord]:
        return [w for w in self._writes.get(key, []) if w.value == value]

    def _sessions(self) -> Dict[str, List[OperationRecord]]:
        sessions: Dict[str, List[OperationRecord]] = defaultdict(list)
        for record in self._history:
            if record.request_id and (record.is_applied_write or record.is_read):
                sessions[record.request_id].append(record)
        return sessions

    def _check_read_your_writes(self) -> List[str]:
        violations: List[str] = []
        for client, ops in self._sessions().items():
            own_writes: Dict[str, OperationRecord] = {}
            for op in ops:
                if op.is_applied_write:
                    own_writes[op.key] = op
                    continue
                last = own_writes.get(op.key)
                if last is None or not last.precedes(op):
                    continue
                if op.outcome is Outcome.NOT_FOUND:
                    stale = True
                elif op.value == last.value:
                    stale = False
                else:
                    sources = self._sources(op.key, op.value)
                    stale = bool(sources) and all(w.precedes(last) for w in sources)
                if stale:
                    violations.append(
                        f"Read-your-writes violated: client '{client}' read {_describe(op)} "
                        f"from key '{op.key}' after its own write of {last.value!r}"
                    )
        return violations

    def _check_monotonic_reads(self) -> List[str]:
        violations: List[str] = []
        for client, ops in self._sessions().items():
            reads: Dict[str, List[OperationRecord]] = defaultdict(list)
            for op in ops:
                if op.is_read:
                    reads[op.key].append(op)
            for key, key_reads in reads.items():
                for index, later in enumerate(key_reads):
                    earlier = self._regressed_from(key, key_reads[:index], later)
                    if earlier is not None:
                        violations.append(
                            f"Monotonic reads violated: client '{client}' read {_describe(later)} "
                            f"from key '{key}' after already observing {earlier.value!r}"
                        )
        return violations

    def _regressed_from(
        self, key: str, earlier_reads: List[OperationRecord], later: OperationRecord
    ) -> Optional[OperationRecord]:
        """Return an earlier read whose observed value ``later`` provably went behind."""
        later_sources = self._sources(key, later.value)
        for earlier in earlier_reads:
            if earlier.outcome is not Outcome.OK or not earlier.precedes(later):
                continue
            if later.outcome is Outcome.NOT_FOUND:
                return earlier
            if later.value == earlier.value or not later_sources:
                continue
            observed = [w for w in self._sources(key, earlier.value) if not earlier.precedes(w)]
            if observed and all(
                old.precedes(new) for old in later_sources for new in observed
            ):
                return earlier
        return None


def check_history(history: Iterable[OperationRecord]) -> CheckResult:
    return LinearizabilityChecker(history).check()
