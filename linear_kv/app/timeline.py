from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Iterator

from .history import OperationRecord

BAR = "█"
RULE_WIDTH = 80


def _clock_time(ns: int) -> str:
    moment = datetime.fromtimestamp(ns / 1_000_000_000, tz=timezone.utc)
    return moment.strftime("%H:%M:%S.") + f"{moment.microsecond // 1000:03d}"


def render_timeline(
    records: Iterable[OperationRecord], width: int = 60, value_width: int = 8
) -> Iterator[str]:
    """Yield the lines of an ASCII chart placing each operation on a shared time axis."""
    ordered = sorted(records, key=lambda r: r.start)
    if not ordered:
        yield "No operations recorded yet."
        return

    earliest = min(r.start for r in ordered)
    latest = max(r.end for r in ordered)
    total = latest - earliest

    yield f"Timeline Visualization ({total / 1e6:.2f}ms total)"
    yield f"{'Time':<20} {'Op':<8} {'Key':<10} {'Value':<15} Timeline"
    yield "-" * RULE_WIDTH

    for record in ordered:
        if total > 0:
            start_pos = int((record.start - earliest) / total * width)
            end_pos = int((record.end - earliest) / total * width)
        else:
            start_pos = end_pos = 0
        if end_pos <= start_pos:
            end_pos = start_pos + 1

        value = record.value or ""
        if len(value) > value_width:
            value = value[:value_width] + "..."

        bar = " " * start_pos + BAR * (end_pos - start_pos)
        yield (
            f"{_clock_time(record.start):<20} {record.kind.value:<8} "
            f"{record.key:<10} {value:<15} {bar}"
        )
