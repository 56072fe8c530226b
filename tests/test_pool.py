"""
Tests for pdfsentry.pool: inline execution and the process-backed worker pool.

Pool tests spawn real child processes, so every wait carries a timeout.
"""

import time
from concurrent.futures import FIRST_COMPLETED, wait

import pytest

from pdfsentry.models import ScanResult, Severity
from pdfsentry.pool import (
    InlineExecutor,
    PoolClosedError,
    PoolError,
    ScanTaskError,
    WorkerCrashedError,
    WorkerPool,
    default_pool_size,
)
from pdfsentry.scanner import InputValidationError
from tests.conftest import (
    crash_scan,
    length_scan,
    make_raw_pdf,
    raising_scan,
    slow_scan,
)

TIMEOUT = 30


def _alert_count(result: ScanResult) -> int:
    return sum(1 for f in result.findings if f.name == "Alert Call")


@pytest.fixture
def pool():
    p = WorkerPool(size=2, scan_fn=slow_scan)
    yield p
    p.shutdown(wait=False)


# ===================================================================
# default_pool_size
# ===================================================================

class TestDefaultPoolSize:
    """Tests for default_pool_size()."""

    def test_env_var_wins(self, monkeypatch):
        monkeypatch.setenv("PDFSENTRY_WORKERS", "3")
        assert default_pool_size() == 3

    @pytest.mark.parametrize("value", ["0", "-2", "many"])
    def test_invalid_env_var_ignored(self, monkeypatch, value):
        monkeypatch.setenv("PDFSENTRY_WORKERS", value)
        assert default_pool_size() >= 1

    def test_unset_uses_cpu_count(self, monkeypatch):
        monkeypatch.delenv("PDFSENTRY_WORKERS", raising=False)
        monkeypatch.setattr("pdfsentry.pool.os.cpu_count", lambda: 6)
        assert default_pool_size() == 6


# ===================================================================
# InlineExecutor
# ===================================================================

class TestInlineExecutor:
    """Tests for InlineExecutor."""

    def test_returns_completed_future(self, malicious_pdf):
        future = InlineExecutor().submit(malicious_pdf)
        assert future.done()
        assert future.result().success is True
        assert future.result().findings

    def test_options_mapping_accepted(self, malicious_pdf):
        result = InlineExecutor().submit(malicious_pdf, {"threshold": "critical"}).result()
        assert all(f.severity == Severity.CRITICAL for f in result.findings)

    def test_invalid_options_raise(self, malicious_pdf):
        with pytest.raises(InputValidationError):
            InlineExecutor().submit(malicious_pdf, {"threshold": "severe"})

    def test_scan_exception_set_on_future(self):
        future = InlineExecutor(raising_scan).submit(make_raw_pdf("RAISE"))
        assert isinstance(future.exception(), RuntimeError)

    def test_closed_executor_rejects(self, benign_pdf):
        with InlineExecutor() as executor:
            executor.submit(benign_pdf)
        with pytest.raises(PoolClosedError):
            executor.submit(benign_pdf)


# ===================================================================
# WorkerPool
# ===================================================================

class TestWorkerPoolConstruction:
    """Tests for WorkerPool sizing and lifecycle."""

    @pytest.mark.parametrize("size", [0, -1])
    def test_size_must_be_positive(self, size):
        with pytest.raises(ValueError):
            WorkerPool(size=size, start=False)

    def test_tasks_wait_until_started(self):
        pool = WorkerPool(size=1, start=False)
        try:
            future = pool.submit(make_raw_pdf("alert(1)"))
            assert not future.done()
            assert pool.stats()["queued"] == 1
            pool.start()
            assert _alert_count(future.result(timeout=TIMEOUT)) == 1
        finally:
            pool.shutdown()

    def test_shutdown_rejects_queued_tasks(self):
        pool = WorkerPool(size=1, start=False)
        futures = [pool.submit(make_raw_pdf("alert(1)")) for _ in range(2)]
        pool.shutdown()
        for future in futures:
            with pytest.raises(PoolClosedError):
                future.result(timeout=TIMEOUT)

    def test_submit_after_shutdown_raises(self):
        pool = WorkerPool(size=1, start=False)
        pool.shutdown()
        with pytest.raises(PoolClosedError):
            pool.submit(make_raw_pdf("alert(1)"))
        with pytest.raises(PoolClosedError):
            pool.start()

    def test_cancelled_task_survives_shutdown(self):
        pool = WorkerPool(size=1, start=False)
        cancelled = pool.submit(make_raw_pdf("alert(1)"))
        queued = pool.submit(make_raw_pdf("alert(2)"))
        assert cancelled.cancel()
        pool.shutdown()
        assert cancelled.cancelled()
        with pytest.raises(PoolClosedError):
            queued.result(timeout=TIMEOUT)

    def test_shutdown_stops_units_despite_cancelled_task(self):
        pool = WorkerPool(size=1, scan_fn=slow_scan)
        busy = pool.submit(make_raw_pdf("SLEEP=1"))
        cancelled = pool.submit(make_raw_pdf("alert(1)"))
        assert cancelled.cancel()
        units = list(pool._units)
        pool.shutdown()
        assert busy.result(timeout=TIMEOUT).success is True
        assert cancelled.cancelled()
        assert all(not unit.process.is_alive() for unit in units)

    def test_shutdown_is_idempotent(self):
        pool = WorkerPool(size=1, start=False)
        pool.shutdown()
        pool.shutdown()


class TestWorkerPoolScheduling:
    """Result correlation, ordering and queue draining."""

    def test_results_correlate_with_tasks(self, pool):
        futures = {
            count: pool.submit(make_raw_pdf(*["alert(1)"] * count))
            for count in range(1, 7)
        }
        for count, future in futures.items():
            result = future.result(timeout=TIMEOUT)
            assert result.success is True
            assert _alert_count(result) == count

    def test_completion_order_follows_work_not_submission(self, pool):
        slow = pool.submit(make_raw_pdf("SLEEP=3 alert(1)"))
        fast = pool.submit(make_raw_pdf("SLEEP=0 alert(1) alert(2)"))
        done, _ = wait([slow, fast], timeout=TIMEOUT, return_when=FIRST_COMPLETED)
        assert fast in done
        assert slow not in done
        assert _alert_count(fast.result()) == 2
        assert _alert_count(slow.result(timeout=TIMEOUT)) == 1

    def test_submit_does_not_wait_for_transfer(self):
        payload = make_raw_pdf("x" * 50_000_000)
        with WorkerPool(size=1, scan_fn=length_scan) as pool:
            started = time.monotonic()
            large = pool.submit(payload)
            small = pool.submit(make_raw_pdf("tail"))
            elapsed = time.monotonic() - started
            assert elapsed < 0.05
            assert large.result(timeout=TIMEOUT).metadata.content_length == len(payload)
            assert small.result(timeout=TIMEOUT).success is True

    def test_single_unit_drains_queue(self):
        with WorkerPool(size=1) as pool:
            futures = [pool.submit(make_raw_pdf(*["alert(1)"] * n)) for n in range(1, 6)]
            counts = [_alert_count(f.result(timeout=TIMEOUT)) for f in futures]
            assert counts == [1, 2, 3, 4, 5]
            stats = pool.stats()
        assert stats == {"units": 1, "idle": 1, "queued": 0, "pending": 0, "replacements": 0}

    def test_cancelled_task_is_skipped(self):
        with WorkerPool(size=1, scan_fn=slow_scan) as pool:
            busy = pool.submit(make_raw_pdf("SLEEP=1"))
            cancelled = pool.submit(make_raw_pdf("alert(1)"))
            assert cancelled.cancel()
            after = pool.submit(make_raw_pdf("alert(1) alert(2)"))
            assert busy.result(timeout=TIMEOUT).success is True
            assert _alert_count(after.result(timeout=TIMEOUT)) == 2
            assert pool.stats()["pending"] == 0

    def test_shutdown_waits_for_running_task(self):
        pool = WorkerPool(size=1, scan_fn=slow_scan)
        running = pool.submit(make_raw_pdf("SLEEP=1 alert(1)"))
        queued = pool.submit(make_raw_pdf("alert(1)"))
        pool.shutdown(wait=True)
        assert _alert_count(running.result(timeout=TIMEOUT)) == 1
        with pytest.raises(PoolClosedError):
            queued.result(timeout=TIMEOUT)


class TestWorkerPoolFailures:
    """Crashes, scan exceptions and input errors inside execution units."""

    def test_crash_rejects_task_and_replaces_unit(self):
        with WorkerPool(size=1, scan_fn=crash_scan) as pool:
            crashed = pool.submit(make_raw_pdf("CRASH"))
            with pytest.raises(WorkerCrashedError):
                crashed.result(timeout=TIMEOUT)

            healthy = pool.submit(make_raw_pdf("alert(1)"))
            assert _alert_count(healthy.result(timeout=TIMEOUT)) == 1
            stats = pool.stats()
            assert stats["replacements"] == 1
            assert stats["units"] == 1

    def test_crash_does_not_affect_other_tasks(self):
        with WorkerPool(size=2, scan_fn=crash_scan) as pool:
            futures = [
                pool.submit(make_raw_pdf("alert(1)")),
                pool.submit(make_raw_pdf("CRASH")),
                pool.submit(make_raw_pdf("alert(1) alert(2)")),
            ]
            assert _alert_count(futures[0].result(timeout=TIMEOUT)) == 1
            with pytest.raises(WorkerCrashedError):
                futures[1].result(timeout=TIMEOUT)
            assert _alert_count(futures[2].result(timeout=TIMEOUT)) == 2

    def test_unreplaceable_unit_fails_queued_work(self):
        pool = WorkerPool(size=1, scan_fn=crash_scan)
        try:
            def no_spawn():
                raise OSError("Too many open files")

            pool._spawn_unit = no_spawn
            crashed = pool.submit(make_raw_pdf("SLEEP=0.5 CRASH"))
            queued = pool.submit(make_raw_pdf("alert(1)"))
            with pytest.raises(WorkerCrashedError):
                crashed.result(timeout=TIMEOUT)
            with pytest.raises(PoolError, match="no execution units"):
                queued.result(timeout=TIMEOUT)
            assert pool.stats()["units"] == 0
            with pytest.raises(PoolError):
                pool.submit(make_raw_pdf("alert(1)"))
        finally:
            pool.shutdown()

    def test_scan_exception_keeps_unit(self):
        with WorkerPool(size=1, scan_fn=raising_scan) as pool:
            failed = pool.submit(make_raw_pdf("RAISE"))
            with pytest.raises(ScanTaskError, match="detector exploded"):
                failed.result(timeout=TIMEOUT)
            ok = pool.submit(make_raw_pdf("alert(1)"))
            assert ok.result(timeout=TIMEOUT).success is True
            assert pool.stats()["replacements"] == 0

    def test_missing_buffer_is_input_error(self):
        with WorkerPool(size=1) as pool:
            future = pool.submit(None)
            with pytest.raises(InputValidationError):
                future.result(timeout=TIMEOUT)

    def test_invalid_options_rejected_on_submit(self):
        pool = WorkerPool(size=1, start=False)
        try:
            with pytest.raises(InputValidationError):
                pool.submit(make_raw_pdf("x"), {"max_content_length": 0})
        finally:
            pool.shutdown()
