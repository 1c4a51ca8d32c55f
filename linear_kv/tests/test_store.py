import asyncio
import concurrent.futures
import sys
import threading

import pytest

from linear_kv.app.checker import check_history
from linear_kv.app.errors import InvalidArgument
from linear_kv.app.history import Interval, OperationKind, OperationLog, OperationRecord, Outcome
from linear_kv.app.store import KeyValueStore


def test_put_is_idempotent_per_request_id() -> None:
    async def run_case():
        store = KeyValueStore()
        outcomes = [await store.put("r1", "a", "x")]
        for _ in range(3):
            outcomes.append(await store.put("r1", "a", "changed"))
        return outcomes, await store.get("a")

    outcomes, read = asyncio.run(run_case())
    assert outcomes == [Outcome.OK, Outcome.DUPLICATE, Outcome.DUPLICATE, Outcome.DUPLICATE]
    assert read.value == "x"


def test_read_after_write() -> None:
    async def run_case():
        store = KeyValueStore()
        await store.put("r1", "a", "x")
        return await store.get("a")

    read = asyncio.run(run_case())
    assert read.value == "x"
    assert read.found is True
    assert read.outcome is Outcome.OK


def test_unknown_key_is_not_found() -> None:
    read = asyncio.run(KeyValueStore().get("missing"))
    assert read.found is False
    assert read.value is None
    assert read.outcome is Outcome.NOT_FOUND


@pytest.mark.parametrize(
    "request_id,key",
    [("", "a"), ("r1", ""), ("", "")],
)
def test_put_requires_request_id_and_key(request_id: str, key: str) -> None:
    store = KeyValueStore()
    with pytest.raises(InvalidArgument):
        asyncio.run(store.put(request_id, key, "v"))
    assert len(store.log) == 0


def test_get_requires_key() -> None:
    with pytest.raises(InvalidArgument):
        asyncio.run(KeyValueStore().get(""))


def test_end_to_end_history() -> None:
    async def run_case(store: KeyValueStore):
        first = await store.put("1", "a", "x")
        second = await store.put("1", "a", "x")
        read = await store.get("a", "reader")
        return first, second, read

    store = KeyValueStore()
    first, second, read = asyncio.run(run_case(store))
    assert first is Outcome.OK
    assert second is Outcome.DUPLICATE
    assert (read.value, read.found, read.outcome) == ("x", True, Outcome.OK)

    history = store.log.snapshot()
    assert [r.outcome for r in history] == [Outcome.OK, Outcome.DUPLICATE, Outcome.OK]
    assert [r.kind for r in history] == [OperationKind.WRITE, OperationKind.WRITE, OperationKind.READ]
    assert history[2].request_id == "reader"
    for earlier, later in zip(history, history[1:]):
        assert earlier.end <= later.end
    assert all(r.start <= r.end for r in history)
    assert check_history(history).is_linearizable


def test_gathered_calls_append_in_execution_order() -> None:
    """Coroutines gathered on one loop record writes in the order they executed."""
    writers = 50

    async def run_case(store: KeyValueStore):
        await asyncio.gather(
            *(store.put(f"req-{i}", "shared", f"value-{i}") for i in range(writers)),
            *(store.get("shared", f"reader-{i}") for i in range(writers)),
        )
        return await store.get("shared")

    store = KeyValueStore()
    final = asyncio.run(run_case(store))
    history = store.log.snapshot()
    applied = [r for r in history if r.kind is OperationKind.WRITE]
    assert len(applied) == writers
    assert all(r.outcome is Outcome.OK for r in applied)
    assert final.value == applied[-1].value

    result = check_history(sorted(history, key=lambda r: r.start))
    assert result.is_linearizable, result.violations


def test_threads_with_own_event_loops_share_store() -> None:
    """Writers on separate threads, each running its own loop, serialize on one key."""
    threads = 4
    pairs = 300
    store = KeyValueStore()

    async def run_thread(thread_id: int) -> None:
        for i in range(pairs):
            await store.put(f"t{thread_id}-w{i}", "shared", f"v-{thread_id}-{i}")
            await store.get("shared", f"t{thread_id}-r{i}")

    previous_interval = sys.getswitchinterval()
    sys.setswitchinterval(1e-6)
    try:
        with concurrent.futures.ThreadPoolExecutor(max_workers=threads) as executor:
            futures = [executor.submit(asyncio.run, run_thread(i)) for i in range(threads)]
            for future in futures:
                future.result(timeout=60)
    finally:
        sys.setswitchinterval(previous_interval)

    history = store.log.snapshot()
    assert len(history) == threads * pairs * 2
    applied = [r for r in history if r.is_applied_write]
    assert len(applied) == threads * pairs

    final = asyncio.run(store.get("shared"))
    assert final.value == applied[-1].value

    result = check_history(history)
    assert result.is_linearizable, result.violations[:5]


class _TrackingLock:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.held = False
        self.acquisitions = 0

    def __enter__(self) -> "_TrackingLock":
        self._lock.acquire()
        self.held = True
        self.acquisitions += 1
        return self

    def __exit__(self, *exc_info) -> None:
        self.held = False
        self._lock.release()


class _GuardedLog(OperationLog):
    def __init__(self, lock: _TrackingLock) -> None:
        super().__init__()
        self._guard = lock
        self.appended_while_held = []

    def append(self, record: OperationRecord) -> None:
        self.appended_while_held.append(self._guard.held)
        super().append(record)


def test_injected_lock_guards_history_append() -> None:
    lock = _TrackingLock()
    log = _GuardedLog(lock)
    store = KeyValueStore(log=log, lock=lock)

    async def run_case() -> None:
        await store.put("1", "a", "x")
        await store.put("1", "a", "x")
        await store.get("a")

    asyncio.run(run_case())
    assert lock.acquisitions == 3
    assert lock.held is False
    assert log.appended_while_held == [True, True, True]


def test_snapshot_is_independent_of_later_appends() -> None:
    log = OperationLog()
    record = OperationRecord("1", OperationKind.WRITE, "a", "x", Outcome.OK, Interval(0, 1))
    log.append(record)
    snapshot = log.snapshot()
    log.append(record)
    assert len(snapshot) == 1
    assert len(log) == 2


def test_interval_rejects_end_before_start() -> None:
    with pytest.raises(ValueError):
        Interval(5, 4)


def test_interval_precedence() -> None:
    first = Interval(0, 10)
    assert first.precedes(Interval(10, 20))
    assert not first.precedes(Interval(9, 20))
    assert first.overlaps(Interval(9, 20))
    assert not first.overlaps(Interval(10, 20))
    assert first.duration_ns == 10
