"""Request/response correlation over the notification channel.

The brick has no sequence numbers and no request/response pairing, so:
- Outgoing commands go through one worker task, one at a time, with a
  minimum gap between the end of one write and the start of the next
- Replies are matched to callers by predicate waiters, resolved from the
  frame dispatch path
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from .exceptions import DeviceDisconnectedError, DeviceTimeoutError
from .protocol.framing import DecodedFrame

_LOGGER = logging.getLogger(__name__)

FramePredicate = Callable[[DecodedFrame], bool]
WriteFunc = Callable[[bytes], Awaitable[None]]

DEFAULT_MIN_SPACING = 0.025
DEFAULT_TIMEOUT = 1.2
DEFAULT_IMPLICIT_TIMEOUT = 0.8


def opcode_is(opcode: int) -> FramePredicate:
    """Predicate matching frames with the given opcode."""
    def predicate(frame: DecodedFrame) -> bool:
        return frame.opcode == opcode
    return predicate


def _consume_exception(future: asyncio.Future) -> None:
    # Mark the exception retrieved; callers that await still get it.
    if not future.cancelled():
        future.exception()


class Waiter:
    """One-shot pending match for a future frame.

    Resolves with the first matching frame, rejects with
    DeviceTimeoutError or DeviceDisconnectedError, or (when ``cancelable``)
    resolves with None on ``CommandCorrelator.cancel``. Awaitable.
    """

    def __init__(
            self,
            predicate: FramePredicate,
            timeout: float,
            label: str,
            cancelable: bool = False,
    ):
        self.predicate = predicate
        self.timeout = timeout
        self.label = label
        self.cancelable = cancelable
        self.future: asyncio.Future[DecodedFrame | None] = asyncio.get_running_loop().create_future()
        self.future.add_done_callback(_consume_exception)
        self._timer: asyncio.TimerHandle | None = None

    def __await__(self):
        return self.future.__await__()

    @property
    def done(self) -> bool:
        return self.future.done()

    def __repr__(self) -> str:
        return f"Waiter({self.label}, timeout={self.timeout}s, done={self.done})"


@dataclass
class _Job:
    payload: bytes
    waiter: Waiter | None
    hold_bus: bool
    sent: asyncio.Future[None] = field(
        default_factory=lambda: asyncio.get_running_loop().create_future()
    )


class CommandCorrelator:
    """Serializes outgoing commands and correlates replies.

    Usage:
        correlator = CommandCorrelator(connection.send)
        # feed every reassembled frame
        correlator.dispatch(frame)

        # explicit waiter: returns the matching frame or raises
        frame = await correlator.send(b"\\x08\\x00", expect=opcode_is(0x08), timeout=1.5)

        # implicit single-flight: waits for the same opcode, never raises on timeout
        await correlator.send(b"\\x27\\x00")
    """

    def __init__(
            self,
            write: WriteFunc,
            min_spacing: float = DEFAULT_MIN_SPACING,
            single_flight: bool = True,
            implicit_timeout: float = DEFAULT_IMPLICIT_TIMEOUT,
            default_timeout: float = DEFAULT_TIMEOUT,
    ):
        """Initialize correlator.

        Args:
            write: Coroutine that puts one payload on the wire
            min_spacing: Seconds between the end of one write and the next (default: 0.025)
            single_flight: Wait for a same-opcode reply when no waiter is given (default: True)
            implicit_timeout: Timeout of the single-flight wait in seconds (default: 0.8)
            default_timeout: Timeout of explicit waiters in seconds (default: 1.2)
        """
        self._write = write
        self.min_spacing = min_spacing
        self.single_flight = single_flight
        self.implicit_timeout = implicit_timeout
        self.default_timeout = default_timeout

        self._waiters: list[Waiter] = []
        self._queue: asyncio.Queue[_Job] | None = None
        self._worker: asyncio.Task | None = None
        self._current: _Job | None = None
        self._last_write_end: float | None = None

    @property
    def pending_waiters(self) -> int:
        """Number of registered, unsettled waiters."""
        return len(self._waiters)

    # ----------------- Waiters -----------------

    def register(
            self,
            predicate: FramePredicate,
            timeout: float | None = None,
            cancelable: bool = False,
            label: str = "frame",
            arm: bool = True,
    ) -> Waiter:
        """Register a waiter for a future frame.

        Args:
            predicate: Match test run against every dispatched frame
            timeout: Seconds until DeviceTimeoutError (default: default_timeout)
            cancelable: Allow ``cancel`` to resolve it with None
            label: Description used in logs and errors
            arm: Start the timeout now; otherwise ``arm`` must be called
        """
        waiter = Waiter(
            predicate,
            self.default_timeout if timeout is None else timeout,
            label,
            cancelable,
        )
        self._track(waiter)
        if arm:
            self.arm(waiter)
        return waiter

    def _track(self, waiter: Waiter) -> None:
        # Frames are only matched against tracked waiters
        if waiter.done or waiter in self._waiters:
            return
        self._waiters.append(waiter)
        _LOGGER.debug("Registered %r", waiter)

    def arm(self, waiter: Waiter) -> None:
        """Start the waiter's timeout clock."""
        if waiter.done or waiter._timer is not None:
            return
        loop = asyncio.get_running_loop()
        waiter._timer = loop.call_later(waiter.timeout, self._expire, waiter)

    def cancel(self, waiter: Waiter) -> bool:
        """Resolve a cancelable waiter with None.

        Returns:
            True if the waiter was pending and is now settled
        """
        if not waiter.cancelable:
            raise ValueError(f"{waiter!r} is not cancelable")
        return self._settle(waiter, result=None)

    def dispatch(self, frame: DecodedFrame) -> int:
        """Resolve every pending waiter whose predicate matches.

        Returns:
            Number of waiters resolved
        """
        matched = 0
        for waiter in list(self._waiters):
            try:
                hit = waiter.predicate(frame)
            except Exception:
                _LOGGER.exception("Predicate of %r failed", waiter)
                continue
            if hit and self._settle(waiter, result=frame):
                matched += 1
        return matched

    def fail_all(self, error: Exception | None = None) -> None:
        """Reject every waiter and queued command (link dropped)."""
        error = error or DeviceDisconnectedError("Device disconnected")
        pending = list(self._waiters)
        if pending:
            _LOGGER.debug("Rejecting %d pending waiter(s): %s", len(pending), error)
        for waiter in pending:
            self._settle(waiter, error=error)

        jobs: list[_Job] = []
        if self._current is not None:
            jobs.append(self._current)
            self._current = None
        while self._queue is not None and not self._queue.empty():
            jobs.append(self._queue.get_nowait())
        for job in jobs:
            if job.waiter is not None:
                self._settle(job.waiter, error=error)
            if not job.sent.done():
                job.sent.set_exception(error)

        self._stop_worker()

    def _expire(self, waiter: Waiter) -> None:
        waiter._timer = None
        self._settle(
            waiter,
            error=DeviceTimeoutError(f"Timed out after {waiter.timeout}s waiting for {waiter.label}"),
        )

    def _settle(
            self,
            waiter: Waiter,
            result: DecodedFrame | None = None,
            error: Exception | None = None,
    ) -> bool:
        if waiter in self._waiters:
            self._waiters.remove(waiter)
        if waiter._timer is not None:
            waiter._timer.cancel()
            waiter._timer = None
        if waiter.future.done():
            return False
        if error is not None:
            waiter.future.set_exception(error)
        else:
            waiter.future.set_result(result)
        return True

    def _discard(self, waiter: Waiter) -> None:
        if waiter in self._waiters:
            self._waiters.remove(waiter)
        if waiter._timer is not None:
            waiter._timer.cancel()
            waiter._timer = None
        if not waiter.future.done():
            waiter.future.cancel()

    # ----------------- Command queue -----------------

    def submit(
            self,
            payload: bytes,
            expect: FramePredicate | None = None,
            timeout: float | None = None,
            cancelable: bool = False,
            label: str | None = None,
    ) -> PendingCommand:
        """Queue a command now; await the result later.

        Commands are written in submission order. Same arguments as ``send``.
        The reply waiter only starts matching frames when its command is
        written, so replies to earlier commands never resolve it.

        Returns:
            PendingCommand, awaitable for the correlated reply
        """
        opcode = payload[0]
        implicit = expect is None
        waiter: Waiter | None = None
        if not implicit:
            waiter = Waiter(
                expect,
                self.default_timeout if timeout is None else timeout,
                label or f"reply to 0x{opcode:02x}",
                cancelable,
            )
        elif self.single_flight:
            waiter = Waiter(
                opcode_is(opcode),
                self.implicit_timeout if timeout is None else timeout,
                label or f"echo of 0x{opcode:02x}",
            )

        job = _Job(payload, waiter, hold_bus=waiter is not None and not cancelable)
        job.sent.add_done_callback(_consume_exception)
        self._enqueue(job)
        return PendingCommand(self, job, implicit)

    async def send(
            self,
            payload: bytes,
            expect: FramePredicate | None = None,
            timeout: float | None = None,
            cancelable: bool = False,
            label: str | None = None,
    ) -> DecodedFrame | None:
        """Queue a command and wait for its correlated reply.

        Args:
            payload: Opcode + params
            expect: Explicit reply predicate; None uses single-flight mode
            timeout: Reply timeout in seconds, counted from the write
            cancelable: Explicit waiter may be cancelled (resolves None)
                and does not hold the bus for other commands
            label: Description for logs and errors

        Returns:
            The matching frame; None in single-flight mode on timeout,
            with single-flight disabled, or when cancelled

        Raises:
            TransportError, BLEConnectionError: If the write failed
            DeviceTimeoutError: If an explicit waiter timed out
            DeviceDisconnectedError: If the link dropped first
        """
        return await self.submit(payload, expect, timeout, cancelable, label)

    def _enqueue(self, job: _Job) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run(self._queue))
        self._queue.put_nowait(job)

    async def _run(self, queue: asyncio.Queue[_Job]) -> None:
        loop = asyncio.get_running_loop()
        while True:
            job = await queue.get()
            if job.sent.done():
                # Caller went away before its turn
                if job.waiter is not None:
                    self._discard(job.waiter)
                continue

            self._current = job
            if self._last_write_end is not None:
                delay = self._last_write_end + self.min_spacing - loop.time()
                if delay > 0:
                    await asyncio.sleep(delay)

            if job.waiter is not None:
                # A reply can be notified while the write is still awaited
                self._track(job.waiter)

            try:
                _LOGGER.debug("Dispatching 0x%02x (%d bytes)", job.payload[0], len(job.payload))
                await self._write(job.payload)
            except Exception as e:
                self._last_write_end = loop.time()
                self._current = None
                if job.waiter is not None:
                    self._discard(job.waiter)
                if not job.sent.done():
                    job.sent.set_exception(e)
                continue

            self._last_write_end = loop.time()
            self._current = None
            if job.sent.done():
                continue
            job.sent.set_result(None)

            if job.waiter is not None:
                self.arm(job.waiter)
                if job.hold_bus:
                    await asyncio.wait({job.waiter.future})

    def _stop_worker(self) -> None:
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
        self._worker = None
        self._queue = None
        self._current = None

    async def close(self) -> None:
        """Reject everything pending and stop the worker task."""
        worker = self._worker
        self.fail_all(DeviceDisconnectedError("Correlator closed"))
        if worker is not None:
            try:
                await worker
            except asyncio.CancelledError:
                pass


class PendingCommand:
    """A submitted command and its reply waiter."""

    def __init__(self, correlator: CommandCorrelator, job: _Job, implicit: bool):
        self._correlator = correlator
        self._job = job
        self._implicit = implicit

    @property
    def waiter(self) -> Waiter | None:
        return self._job.waiter

    @property
    def opcode(self) -> int:
        return self._job.payload[0]

    async def sent(self) -> None:
        """Wait until the command is on the wire.

        Raises:
            TransportError, BLEConnectionError: If the write failed
            DeviceDisconnectedError: If the link dropped first
        """
        try:
            await self._job.sent
        except BaseException:
            if self.waiter is not None:
                self._correlator._discard(self.waiter)
            raise

    def cancel(self) -> bool:
        """Resolve a cancelable reply waiter with None."""
        if self.waiter is None:
            return False
        return self._correlator.cancel(self.waiter)

    async def result(self) -> DecodedFrame | None:
        await self.sent()

        waiter = self.waiter
        if waiter is None:
            return None

        try:
            return await waiter
        except DeviceTimeoutError:
            if not self._implicit:
                raise
            _LOGGER.debug("No 0x%02x echo within %.3fs, continuing", self.opcode, waiter.timeout)
            return None
        finally:
            # No-op once settled; drops the registration if the caller was cancelled
            self._correlator._discard(waiter)

    def __await__(self):
        return self.result().__await__()
