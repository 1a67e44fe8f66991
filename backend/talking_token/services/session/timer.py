"""Speaking timer.

Elapsed time is measured against a monotonic clock on a dedicated worker and
handed to the consumer in whole seconds, batched:

- at least every ``flush_seconds`` accrued seconds
- or every ``flush_interval`` seconds of wall-clock time, whichever comes first
- plus a final flush on ``stop()``

Every update carries the epoch given to ``start()`` so the consumer can drop
updates that belong to a turn it has already moved past.
"""

import logging
import queue
import threading
import time
from typing import Callable, Optional


logger = logging.getLogger(__name__)

_START = 'start'
_STOP = 'stop'
_RESET = 'reset'
_SHUTDOWN = 'shutdown'


def _start_thread(target, *args):
    thread = threading.Thread(target=target, args=args, name='speaking-timer', daemon=True)
    thread.start()
    return thread


class TimerService:
    """Pause/resume-capable elapsed-time source.

    Commands are queued to a single worker so that callers never block on
    the timer and updates are delivered in the order they were accrued. With
    ``inline=True`` no worker is spawned: commands run in the caller and time
    only moves when ``advance()`` is called.
    """

    def __init__(
        self,
        on_elapsed: Callable[[int, int], None],
        on_failure: Optional[Callable[[], None]] = None,
        flush_seconds: int = 5,
        flush_interval: float = 3.0,
        tick: float = 1.0,
        heartbeat: float = 0,
        clock: Callable[[], float] = time.monotonic,
        start_background_task: Optional[Callable] = None,
        inline: bool = False,
    ):
        self.on_elapsed = on_elapsed
        self.on_failure = on_failure
        self.flush_seconds = max(1, int(flush_seconds))
        self.flush_interval = float(flush_interval)
        self.tick = float(tick)
        self.heartbeat = float(heartbeat or 0)
        self.inline = inline
        self.failed = False
        self._clock = clock
        self._start_background_task = start_background_task or _start_thread
        self._commands: queue.Queue = queue.Queue()
        self._spawn_lock = threading.Lock()
        self._worker_started = False
        self._closed = False

        # Owned by the worker (or the caller in inline mode)
        self._running = False
        self._epoch = 0
        self._anchor = 0.0
        self._counted = 0
        self._carry = 0.0
        self._pending = 0
        self._last_flush = 0.0
        self._last_heartbeat = 0.0

    @property
    def available(self) -> bool:
        return not (self.failed or self._closed)

    def start(self, epoch: int = 0) -> None:
        self._submit(_START, epoch)

    def stop(self) -> None:
        self._submit(_STOP)

    def reset(self) -> None:
        self._submit(_RESET)

    def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._worker_started:
            self._commands.put((_SHUTDOWN, None))

    def advance(self, now: Optional[float] = None) -> None:
        """Account for time passed up to ``now`` (inline mode)."""
        if not self.available:
            return
        self._guarded(self._pump, self._clock() if now is None else now)

    # ---- worker side ----

    def _submit(self, command: str, arg=None) -> None:
        if not self.available:
            return
        if self.inline:
            self._guarded(self._handle, command, arg, self._clock())
            return
        self._ensure_worker()
        if self.available:
            self._commands.put((command, arg))

    def _ensure_worker(self) -> None:
        with self._spawn_lock:
            if self._worker_started:
                return
            try:
                self._start_background_task(self._run)
            except Exception:
                self._fail()
                return
            self._worker_started = True

    def _run(self) -> None:
        try:
            while True:
                try:
                    command, arg = self._commands.get(timeout=self.tick)
                except queue.Empty:
                    command, arg = None, None
                if command == _SHUTDOWN:
                    return
                now = self._clock()
                if command is not None:
                    self._handle(command, arg, now)
                self._pump(now)
        except Exception:
            self._fail()

    def _guarded(self, fn, *args) -> None:
        try:
            fn(*args)
        except Exception:
            self._fail()

    def _fail(self) -> None:
        logger.exception("[timer-failed] no further elapsed-time updates")
        self.failed = True
        self._running = False
        if self.on_failure is not None:
            try:
                self.on_failure()
            except Exception:
                logger.exception("[timer-failed] failure callback raised")

    def _handle(self, command: str, arg, now: float) -> None:
        if command == _START:
            if self._running:
                return
            self._running = True
            self._epoch = int(arg or 0)
            # Resume where the last run left off inside its current second
            self._anchor = now - self._carry
            self._counted = 0
            self._carry = 0.0
            self._last_flush = now
            self._last_heartbeat = now
            logger.debug(f"[timer-start] epoch={self._epoch}")
        elif command == _STOP:
            if not self._running:
                return
            self._accrue(now)
            self._carry = max(0.0, (now - self._anchor) - self._counted)
            self._running = False
            self._flush(now)
            logger.debug(f"[timer-stop] epoch={self._epoch} carry={self._carry:.3f}")
        elif command == _RESET:
            self._running = False
            self._pending = 0
            self._carry = 0.0
            self._counted = 0
            logger.debug(f"[timer-reset] epoch={self._epoch}")

    def _accrue(self, now: float) -> None:
        if not self._running:
            return
        whole = int(now - self._anchor)
        if whole > self._counted:
            self._pending += whole - self._counted
            self._counted = whole

    def _pump(self, now: float) -> None:
        if not self._running:
            return
        self._accrue(now)
        if self._pending and (
            self._pending >= self.flush_seconds or now - self._last_flush >= self.flush_interval
        ):
            self._flush(now)
        if self.heartbeat and now - self._last_heartbeat >= self.heartbeat:
            self._last_heartbeat = now
            logger.info(f"[timer-heartbeat] epoch={self._epoch} elapsed={self._counted}s pending={self._pending}s")

    def _flush(self, now: float) -> None:
        self._last_flush = now
        if not self._pending:
            return
        delta, self._pending = self._pending, 0
        self.on_elapsed(delta, self._epoch)
