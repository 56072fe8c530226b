"""
Execution strategies for running scans: inline, or on a bounded worker pool.

Both strategies expose the same contract: ``submit(buffer, options)`` returns
a ``concurrent.futures.Future`` that resolves to a ScanResult, and
``shutdown()`` releases resources. Callers pick the strategy explicitly;
tests and single-file runs use InlineExecutor, batch scanning uses
WorkerPool.

WorkerPool keeps a fixed number of execution units. Each unit is a child
process fed over a duplex pipe, with a sender thread in the parent that
writes tasks and a listener thread that reads replies. All pool bookkeeping
(idle units, FIFO task queue, pending futures, in-flight map, id counter) is
guarded by one lock, and no pipe I/O happens while it is held; the scans
themselves run in parallel in the children and share nothing but the
read-only rule tables.

Unit lifecycle: IDLE -> BUSY -> IDLE on completion. If a unit dies (its pipe
hits EOF) it is dropped, a fresh unit takes its place, and the task it was
running is rejected with WorkerCrashedError. Crashed tasks are never
retried. If no replacement can be started and no unit is left, queued
tasks fail with PoolError and further submissions are refused.
"""

from __future__ import annotations

import itertools
import multiprocessing
import os
import queue
import signal
import threading
from collections import deque
from collections.abc import Callable, Mapping
from concurrent.futures import Future
from dataclasses import dataclass
from multiprocessing.connection import Connection
from typing import Any, Protocol

import structlog

from .models import ScanOptions, ScanResult
from .scanner import InputValidationError, ScanError, coerce_options, scan

logger = structlog.get_logger(__name__)

ScanFunction = Callable[[bytes, ScanOptions], ScanResult]

WORKERS_ENV_VAR = "PDFSENTRY_WORKERS"
_JOIN_TIMEOUT = 5.0


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class PoolError(ScanError):
    """Base class for executor failures."""


class WorkerCrashedError(PoolError):
    """The execution unit running a task died before replying."""


class PoolClosedError(PoolError):
    """The executor was shut down before the task could run."""


class ScanTaskError(PoolError):
    """The scan function raised inside an execution unit."""


# ---------------------------------------------------------------------------
# Shared types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScanTask:
    task_id: int
    buffer: bytes
    options: ScanOptions


class ScanExecutor(Protocol):
    def submit(
        self,
        buffer: bytes,
        options: ScanOptions | Mapping[str, Any] | None = None,
    ) -> Future[ScanResult]: ...

    def shutdown(self, wait: bool = True) -> None: ...


def default_pool_size() -> int:
    """Pool size from $PDFSENTRY_WORKERS, else the CPU count."""
    raw = os.environ.get(WORKERS_ENV_VAR)
    if raw:
        try:
            size = int(raw)
        except ValueError:
            size = 0
        if size > 0:
            return size
        logger.warning("Ignoring invalid worker count", env_var=WORKERS_ENV_VAR, value=raw)
    return os.cpu_count() or 1


def _as_payload(buffer: Any) -> Any:
    # memoryview does not pickle; None and other junk go through so the
    # scan function reports them as input errors.
    if isinstance(buffer, (bytearray, memoryview)):
        return bytes(buffer)
    return buffer


# ---------------------------------------------------------------------------
# Inline execution
# ---------------------------------------------------------------------------

class InlineExecutor:
    """Runs each scan synchronously in the caller's thread."""

    def __init__(self, scan_fn: ScanFunction = scan) -> None:
        self._scan_fn = scan_fn
        self._closed = False

    def submit(
        self,
        buffer: bytes,
        options: ScanOptions | Mapping[str, Any] | None = None,
    ) -> Future[ScanResult]:
        if self._closed:
            raise PoolClosedError("Executor has been shut down")
        scan_options = coerce_options(options)

        future: Future[ScanResult] = Future()
        future.set_running_or_notify_cancel()
        try:
            result = self._scan_fn(buffer, scan_options)
        except Exception as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._closed = True

    def __enter__(self) -> InlineExecutor:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()


# ---------------------------------------------------------------------------
# Execution unit (child side)
# ---------------------------------------------------------------------------

def _unit_main(conn: Connection, scan_fn: ScanFunction) -> None:
    """Child process loop: receive a task, scan, reply, until told to stop."""
    # Ctrl-C is handled by the parent, which then shuts the pool down.
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    while True:
        try:
            message = conn.recv()
        except EOFError:
            break
        if message is None:
            break

        task_id, buffer, options = message
        try:
            result = scan_fn(buffer, options)
        except Exception as exc:
            conn.send((task_id, False, (type(exc).__name__, str(exc))))
        else:
            conn.send((task_id, True, result.model_dump()))
    conn.close()


# ---------------------------------------------------------------------------
# Execution unit (parent side)
# ---------------------------------------------------------------------------

class _ExecutionUnit:
    """
    Parent-side handle for one child process.

    Two daemon threads serve the pipe: a sender that writes queued tasks
    (pickling a large buffer can take a while, so callers only enqueue) and
    a listener that relays replies and reports EOF.
    """

    def __init__(
        self,
        ctx: multiprocessing.context.BaseContext,
        scan_fn: ScanFunction,
        on_reply: Callable[[_ExecutionUnit, tuple], None],
        on_exit: Callable[[_ExecutionUnit], None],
        on_send_error: Callable[[_ExecutionUnit, ScanTask, Exception], None],
    ) -> None:
        self._conn, child_conn = ctx.Pipe(duplex=True)
        self.process = ctx.Process(
            target=_unit_main,
            args=(child_conn, scan_fn),
            name="pdfsentry-unit",
            daemon=True,
        )
        self.process.start()
        child_conn.close()

        self._on_reply = on_reply
        self._on_exit = on_exit
        self._on_send_error = on_send_error
        self._outbox: queue.SimpleQueue[ScanTask | None] = queue.SimpleQueue()
        self._sender = threading.Thread(
            target=self._send_loop,
            name=f"pdfsentry-sender-{self.process.pid}",
            daemon=True,
        )
        self._sender.start()
        self._listener = threading.Thread(
            target=self._listen,
            name=f"pdfsentry-listener-{self.process.pid}",
            daemon=True,
        )

    def listen(self) -> None:
        """Start relaying replies. Call once the pool has registered the unit."""
        self._listener.start()

    @property
    def pid(self) -> int | None:
        return self.process.pid

    def send(self, task: ScanTask) -> None:
        """Queue *task* for the sender thread. Never blocks."""
        self._outbox.put(task)

    def stop(self) -> None:
        """Ask the child to exit after its current task."""
        self._outbox.put(None)

    def join(self, timeout: float | None = None) -> None:
        self.process.join(timeout)
        if self.process.is_alive():
            self.process.terminate()
            self.process.join(timeout)

    def terminate(self) -> None:
        self._outbox.put(None)
        if self.process.is_alive():
            self.process.terminate()
        self.process.join(_JOIN_TIMEOUT)

    def _send_loop(self) -> None:
        while True:
            task = self._outbox.get()
            if task is None:
                try:
                    self._conn.send(None)
                except OSError:
                    pass  # already gone
                return
            try:
                self._conn.send((task.task_id, task.buffer, task.options))
            except Exception as exc:
                self._on_send_error(self, task, exc)

    def _listen(self) -> None:
        while True:
            try:
                message = self._conn.recv()
            except (EOFError, OSError):
                break
            self._on_reply(self, message)
        self._conn.close()
        self._on_exit(self)


def _claim(future: Future[ScanResult]) -> bool:
    """Mark a queued future running. False if the caller cancelled it first."""
    # A task requeued after a failed send is already running.
    return future.running() or future.set_running_or_notify_cancel()


# ---------------------------------------------------------------------------
# Worker pool
# ---------------------------------------------------------------------------

class WorkerPool:
    """
    Fixed-size pool of scan execution units.

    Args:
        size: Number of execution units. Defaults to ``default_pool_size()``.
        scan_fn: Module-level function each unit calls per task. Must be
            importable by the child process.
        mp_context: multiprocessing start method.
        start: Start the units immediately. Pass False to call ``start()``
            later; tasks submitted before then wait in the queue.
    """

    def __init__(
        self,
        size: int | None = None,
        scan_fn: ScanFunction = scan,
        mp_context: str = "spawn",
        start: bool = True,
    ) -> None:
        self.size = size if size is not None else default_pool_size()
        if self.size < 1:
            raise ValueError(f"Pool size must be at least 1, got {self.size}")

        self._scan_fn = scan_fn
        self._ctx = multiprocessing.get_context(mp_context)

        self._lock = threading.Lock()
        self._units: set[_ExecutionUnit] = set()
        self._idle: deque[_ExecutionUnit] = deque()
        self._queue: deque[ScanTask] = deque()
        self._pending: dict[int, Future[ScanResult]] = {}
        self._in_flight: dict[_ExecutionUnit, int] = {}
        self._ids = itertools.count()
        self._started = False
        self._closed = False
        self._exhausted = False
        self.replacements = 0

        if start:
            self.start()

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        """Spawn the execution units. Calling it twice is a no-op."""
        with self._lock:
            if self._closed:
                raise PoolClosedError("Pool has been shut down")
            if self._started:
                return
            self._started = True

        units = [self._spawn_unit() for _ in range(self.size)]
        with self._lock:
            for unit in units:
                self._units.add(unit)
                self._idle.append(unit)
            self._dispatch()
        for unit in units:
            unit.listen()
        logger.info("Worker pool started", size=self.size, pids=[u.pid for u in units])

    def shutdown(self, wait: bool = True) -> None:
        """
        Stop every execution unit. No tasks can be submitted afterwards.

        Queued tasks are rejected with PoolClosedError (tasks the caller
        already cancelled stay cancelled). With *wait*, units finish the
        task they are running first; otherwise they are terminated and
        their tasks rejected too.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            units = list(self._units)
            stranded = self._drain_queue()

        self._reject(stranded, PoolClosedError, "Pool shut down before the task was dispatched")

        if wait:
            for unit in units:
                unit.stop()
            for unit in units:
                unit.join(_JOIN_TIMEOUT)
        else:
            for unit in units:
                unit.terminate()
        logger.info("Worker pool shut down", size=len(units))

    def __enter__(self) -> WorkerPool:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    # -- submission --------------------------------------------------------

    def submit(
        self,
        buffer: bytes,
        options: ScanOptions | Mapping[str, Any] | None = None,
    ) -> Future[ScanResult]:
        """Queue *buffer* for scanning and return a future for its result."""
        scan_options = coerce_options(options)
        future: Future[ScanResult] = Future()

        with self._lock:
            if self._closed:
                raise PoolClosedError("Pool has been shut down")
            if self._exhausted:
                raise PoolError("Pool has no execution units left")
            task = ScanTask(next(self._ids), _as_payload(buffer), scan_options)
            self._pending[task.task_id] = future
            self._queue.append(task)
            self._dispatch()

        logger.debug("Task submitted", task_id=task.task_id)
        return future

    def stats(self) -> dict[str, int]:
        """Snapshot of the pool's bookkeeping, for logging and tests."""
        with self._lock:
            return {
                "units": len(self._units),
                "idle": len(self._idle),
                "queued": len(self._queue),
                "pending": len(self._pending),
                "replacements": self.replacements,
            }

    # -- internals (caller holds self._lock) -------------------------------

    def _dispatch(self) -> None:
        """
        Pair queued tasks with idle units, FIFO, until one side runs out.

        The pipe write happens on the unit's sender thread, so this only
        moves bookkeeping around.
        """
        while self._idle and self._queue:
            task = self._queue.popleft()
            future = self._pending[task.task_id]
            if not _claim(future):
                del self._pending[task.task_id]
                continue

            unit = self._idle.popleft()
            self._in_flight[unit] = task.task_id
            unit.send(task)
            logger.debug("Task dispatched", task_id=task.task_id, pid=unit.pid)

    def _drain_queue(self) -> list[Future[ScanResult]]:
        stranded = [self._pending.pop(task.task_id) for task in self._queue]
        self._queue.clear()
        return stranded

    @staticmethod
    def _reject(
        futures: list[Future[ScanResult]],
        error_type: type[PoolError],
        message: str,
    ) -> None:
        for future in futures:
            if _claim(future):
                future.set_exception(error_type(message))

    # -- unit callbacks ------------------------------------------------------

    def _spawn_unit(self) -> _ExecutionUnit:
        return _ExecutionUnit(
            self._ctx,
            self._scan_fn,
            self._handle_reply,
            self._handle_exit,
            self._handle_send_error,
        )

    def _handle_reply(self, unit: _ExecutionUnit, message: tuple) -> None:
        task_id, ok, payload = message
        with self._lock:
            future = self._pending.pop(task_id, None)
            self._in_flight.pop(unit, None)
            if unit in self._units and not self._closed:
                self._idle.append(unit)
                self._dispatch()

        if future is None:
            logger.warning("Reply for unknown task", task_id=task_id, pid=unit.pid)
            return
        if ok:
            future.set_result(ScanResult.model_validate(payload))
            return

        error_type, error_message = payload
        if error_type == InputValidationError.__name__:
            future.set_exception(InputValidationError(error_message))
        else:
            future.set_exception(ScanTaskError(f"{error_type}: {error_message}"))

    def _handle_send_error(self, unit: _ExecutionUnit, task: ScanTask, exc: Exception) -> None:
        broken_pipe = isinstance(exc, OSError)
        future = None
        with self._lock:
            if self._in_flight.get(unit) != task.task_id:
                return  # the exit handler already settled this task
            del self._in_flight[unit]
            if broken_pipe and not self._closed:
                # Never reached the child: back to the head of the queue.
                self._queue.appendleft(task)
                self._dispatch()
            else:
                future = self._pending.pop(task.task_id, None)
                if not broken_pipe and unit in self._units and not self._closed:
                    self._idle.append(unit)
                    self._dispatch()

        logger.warning(
            "Send to execution unit failed",
            pid=unit.pid,
            task_id=task.task_id,
            error=str(exc),
        )
        if broken_pipe:
            # Make sure the exit handler sees EOF and replaces the unit.
            unit.terminate()
        if future is None:
            return
        if broken_pipe:
            future.set_exception(PoolClosedError("Pool shut down before the task was delivered"))
        else:
            future.set_exception(ScanTaskError(f"Could not send task: {exc}"))

    def _handle_exit(self, unit: _ExecutionUnit) -> None:
        unit.stop()  # release the sender thread
        with self._lock:
            if unit not in self._units:
                return
            self._units.discard(unit)
            if unit in self._idle:
                self._idle.remove(unit)
            task_id = self._in_flight.pop(unit, None)
            future = self._pending.pop(task_id, None) if task_id is not None else None
            closed = self._closed

        if closed:
            if future is not None:
                future.set_exception(PoolClosedError("Pool shut down before the task completed"))
            return

        unit.process.join(_JOIN_TIMEOUT)
        logger.warning(
            "Execution unit crashed, replacing",
            pid=unit.pid,
            exitcode=unit.process.exitcode,
            task_id=task_id,
        )
        if future is not None:
            future.set_exception(WorkerCrashedError(
                f"Execution unit {unit.pid} exited with code "
                f"{unit.process.exitcode} while running task {task_id}"
            ))

        try:
            replacement = self._spawn_unit()
        except Exception:
            logger.exception("Could not start a replacement execution unit", pid=unit.pid)
            self._handle_lost_unit()
            return

        with self._lock:
            registered = not self._closed
            if registered:
                self._units.add(replacement)
                self._idle.append(replacement)
                self.replacements += 1
                self._dispatch()
        if registered:
            replacement.listen()
            return
        # Shut down while the replacement was starting.
        replacement.stop()
        replacement.join(_JOIN_TIMEOUT)

    def _handle_lost_unit(self) -> None:
        """A unit could not be replaced. With none left, fail queued work."""
        with self._lock:
            if self._units or self._closed:
                return
            self._exhausted = True
            stranded = self._drain_queue()
        logger.error("Worker pool has no execution units left", rejected=len(stranded))
        self._reject(stranded, PoolError, "Pool has no execution units left")
