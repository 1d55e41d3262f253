"""Session state machine coordinating capture, dispatch and transcript assembly."""

from __future__ import annotations

import uuid
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Callable, List, Optional

from ...config import SessionPolicy
from ...data.models import AudioChunk, SessionSnapshot, SessionState, TranscriptionResult, TranscriptionUnit
from ...logging import get_logger
from ...services.transcription.base import DispatchError, DispatchTimeout
from ..audio.base import CaptureConstraints, CaptureDevice, CaptureError
from .assembler import TranscriptAssembler
from .buffer import ChunkBuffer
from .capture import CaptureSession
from .dispatcher import TranscriptionDispatcher
from .governor import FailureGovernor, GovernorTripped
from .scheduler import Scheduler, TimerHandle

LOGGER = get_logger(__name__)

DEVICE_ERROR_MESSAGE = "The recording device failed. Check the microphone and start a new recording."

SnapshotListener = Callable[[SessionSnapshot], None]


class SessionStateError(RuntimeError):
    """Raised when a command is not legal in the current session state."""


@dataclass
class _Ticket:
    """One outstanding dispatch, identified by session epoch and sequence."""

    epoch: int
    sequence: int
    unit: TranscriptionUnit
    started_at: float
    final: bool = False
    abandoned: bool = False
    timeout: Optional[TimerHandle] = None


class SessionController:
    """Coordinates one live recording session at a time.

    All methods must run on ``scheduler``'s thread. Async completions carry the
    epoch of the session that issued them and are ignored once the epoch has
    moved on, so a late result can never touch a newer session.
    """

    def __init__(
        self,
        device: CaptureDevice,
        dispatcher: TranscriptionDispatcher,
        scheduler: Scheduler,
        *,
        policy: Optional[SessionPolicy] = None,
        constraints: Optional[CaptureConstraints] = None,
        context_id: Optional[str] = None,
        wall_clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.device = device
        self.dispatcher = dispatcher
        self.scheduler = scheduler
        self.policy = policy or SessionPolicy()
        self.constraints = constraints or CaptureConstraints()
        self.default_context_id = context_id
        self._wall_clock = wall_clock
        self._listeners: List[SnapshotListener] = []

        self._epoch = 0
        self._sequence = 0
        self._base_state = SessionState.IDLE
        self._finishing = False
        self._final_dispatched = False

        self.session_id: Optional[str] = None
        self.context_id: Optional[str] = None
        self._capture: Optional[CaptureSession] = None
        self._buffer: Optional[ChunkBuffer] = None
        self._governor: Optional[FailureGovernor] = None
        self._assembler = self._new_assembler()
        self._in_flight: Optional[_Ticket] = None

        self._flush_timer: Optional[TimerHandle] = None
        self._tick_timer: Optional[TimerHandle] = None
        self._error_timer: Optional[TimerHandle] = None
        self._error_token = 0

        self._active_seconds = 0.0
        self._running_since: Optional[float] = None
        self.elapsed_seconds = 0
        self.last_error: Optional[str] = None
        self.dispatch_count = 0
        self.failure_count = 0

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        if self._base_state is SessionState.RECORDING and self.dispatch_outstanding:
            return SessionState.PROCESSING
        return self._base_state

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def dispatch_outstanding(self) -> bool:
        return self._in_flight is not None and not self._in_flight.abandoned

    @property
    def finishing(self) -> bool:
        return self._finishing

    @property
    def transcript(self) -> str:
        return self._assembler.text

    @property
    def title(self) -> str:
        return self._assembler.title

    @property
    def buffer(self) -> Optional[ChunkBuffer]:
        return self._buffer

    @property
    def governor(self) -> Optional[FailureGovernor]:
        return self._governor

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            state=self.state,
            transcript=self._assembler.text,
            title=self._assembler.title,
            suggested_title=self._assembler.suggested_title,
            key_topics=list(self._assembler.key_topics),
            elapsed_seconds=self.elapsed_seconds,
            last_error=self.last_error,
            dispatch_count=self.dispatch_count,
            failure_count=self.failure_count,
            finishing=self._finishing,
        )

    def add_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SnapshotListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def start(self, context_id: Optional[str] = None) -> None:
        if self._base_state is not SessionState.IDLE:
            raise SessionStateError(f"Cannot start while {self.state.value}")

        self._epoch += 1
        epoch = self._epoch
        now = self.scheduler.now()
        self._sequence = 0
        self._finishing = False
        self._final_dispatched = False
        self._in_flight = None
        self.session_id = uuid.uuid4().hex[:8]
        self.context_id = context_id if context_id is not None else self.default_context_id
        self._buffer = ChunkBuffer()
        self._governor = FailureGovernor(
            now,
            failure_threshold=self.policy.failure_threshold,
            staleness_seconds=self.policy.staleness_seconds,
        )
        self._assembler = self._new_assembler()
        self._active_seconds = 0.0
        self._running_since = None
        self.elapsed_seconds = 0
        self.dispatch_count = 0
        self.failure_count = 0
        self._clear_error()

        capture = CaptureSession(
            self.device,
            self.scheduler,
            sink=partial(self._on_chunk, epoch),
            on_failure=partial(self._on_capture_failure, epoch),
            chunk_seconds=self.policy.chunk_seconds,
        )
        try:
            capture.start(self.constraints)
        except CaptureError as exc:
            LOGGER.error("Could not start audio capture: %s", exc)
            self._buffer = None
            self._governor = None
            self._set_error(f"{DEVICE_ERROR_MESSAGE} ({exc})", transient=False)
            self._notify()
            raise

        self._capture = capture
        handle = capture.handle
        if handle is not None:
            self.dispatcher.sample_rate = handle.sample_rate or self.constraints.sample_rate
            self.dispatcher.channels = handle.channels or self.constraints.channel_count
        self._base_state = SessionState.RECORDING
        self._running_since = now
        self._arm_flush_timer()
        self._arm_tick()
        LOGGER.info("Session %s started (context=%s)", self.session_id, self.context_id or "none")
        self._notify()

    def pause(self) -> None:
        if self._base_state is not SessionState.RECORDING or self._finishing:
            raise SessionStateError(f"Cannot pause while {self.state.value}")
        now = self.scheduler.now()
        assert self._capture is not None and self._governor is not None
        self._capture.pause()
        self._cancel_timer("_flush_timer")
        self._stop_clock(now)
        self._governor.suspend(now)
        self._base_state = SessionState.PAUSED
        LOGGER.info("Session %s paused with %s buffered chunk(s)", self.session_id, len(self._buffer or ()))
        self._notify()

    def resume(self) -> None:
        if self._base_state is not SessionState.PAUSED or self._finishing:
            raise SessionStateError(f"Cannot resume while {self.state.value}")
        now = self.scheduler.now()
        assert self._capture is not None and self._governor is not None
        self._capture.resume()
        self._governor.resume(now)
        self._base_state = SessionState.RECORDING
        self._running_since = now
        self._arm_flush_timer()
        self._arm_tick()
        LOGGER.info("Session %s resumed", self.session_id)
        self._notify()

    def finish(self) -> None:
        """Flush everything still buffered, then release the device and go idle."""

        if self._base_state not in (SessionState.RECORDING, SessionState.PAUSED):
            raise SessionStateError(f"Cannot finish while {self.state.value}")
        if self._finishing:
            return
        now = self.scheduler.now()
        self._finishing = True
        self._cancel_timer("_flush_timer")
        self._stop_clock(now)
        if self._capture is not None:
            # Cuts the pending segment into the buffer and stops emission.
            self._capture.pause()
        LOGGER.info("Finishing session %s", self.session_id)
        self._notify()
        self._continue_finish()

    def stop(self) -> None:
        """Abort immediately, discarding audio that was not dispatched yet."""

        if self._base_state is SessionState.IDLE:
            return
        discarded = len(self._buffer.drain_all()) if self._buffer is not None else 0
        LOGGER.info("Session %s stopped; discarded %s buffered chunk(s)", self.session_id, discarded)
        self._teardown()
        self._notify()

    def flush(self, force: bool = False) -> bool:
        """Drain the buffer into one dispatch; returns ``True`` if a dispatch started.

        Without ``force`` a buffer smaller than ``min_flush_bytes`` is left to
        grow. Nothing is dispatched while another dispatch is outstanding.
        """

        if self._base_state is SessionState.IDLE or self._buffer is None or self._governor is None:
            return False
        now = self.scheduler.now()
        if self._in_flight is not None:
            LOGGER.debug("Dispatch %s still in flight; skipping flush", self._in_flight.sequence)
            # A worker stuck past its timeout still holds the slot.
            if not self._governor.permit(now):
                self._abort_tripped()
            return False

        size = self._buffer.size_bytes()
        if size == 0 or (not force and size < self.policy.min_flush_bytes):
            LOGGER.debug("Skipping flush of %s bytes (minimum %s)", size, self.policy.min_flush_bytes)
            # Silence is not staleness: with no failure outstanding the clock restarts.
            self._governor.record_idle(now)
            return False

        if not self._governor.permit(now):
            self._abort_tripped()
            return False

        chunks = self._buffer.drain_all()
        unit = self.dispatcher.build_unit(chunks, context_id=self.context_id, created_at=now)
        self._sequence += 1
        ticket = _Ticket(
            epoch=self._epoch,
            sequence=self._sequence,
            unit=unit,
            started_at=now,
            final=self._finishing,
        )
        ticket.timeout = self.scheduler.call_later(
            self.policy.dispatch_timeout_seconds, partial(self._on_dispatch_timeout, ticket)
        )
        self._in_flight = ticket
        self.dispatch_count += 1
        self._notify()
        self.scheduler.run_in_background(
            partial(self.dispatcher.dispatch, unit),
            partial(self._on_dispatch_done, ticket),
        )
        return True

    # ------------------------------------------------------------------
    # Event handlers (scheduler thread)
    # ------------------------------------------------------------------
    def _on_chunk(self, epoch: int, chunk: AudioChunk) -> None:
        if epoch != self._epoch or self._buffer is None:
            return
        self._buffer.append(chunk)

    def _on_flush_tick(self, epoch: int) -> None:
        if epoch == self._epoch and self._base_state is SessionState.RECORDING and not self._finishing:
            self.flush()

    def _on_tick(self, epoch: int) -> None:
        if epoch != self._epoch or self._running_since is None:
            return
        self._update_elapsed(self.scheduler.now())
        self._notify()

    def _on_dispatch_done(self, ticket: _Ticket, future: "Future[TranscriptionResult]") -> None:
        if ticket.epoch != self._epoch:
            LOGGER.debug("Ignoring completion of dispatch %s from a previous session", ticket.sequence)
            return
        if self._in_flight is ticket:
            self._in_flight = None
        if ticket.abandoned:
            LOGGER.info("Discarding late result of timed-out dispatch %s", ticket.sequence)
            self._notify()
            self._continue_finish()
            return
        if ticket.timeout is not None:
            ticket.timeout.cancel()

        assert self._governor is not None
        now = self.scheduler.now()
        error = future.exception()
        if error is None:
            result = future.result()
            self._assembler.absorb_result(result)
            self._governor.record_success(now)
            LOGGER.info(
                "Dispatch %s transcribed in %.1fs (%s characters)",
                ticket.sequence,
                now - ticket.started_at,
                len(result.text),
            )
        else:
            self._record_failure(error, now)

        if self._governor.tripped:
            self._abort_tripped()
            return
        self._notify()
        self._continue_finish()

    def _on_dispatch_timeout(self, ticket: _Ticket) -> None:
        if ticket.epoch != self._epoch or self._in_flight is not ticket or ticket.abandoned:
            return
        # The worker keeps the slot until it returns; its result is dropped.
        ticket.abandoned = True
        now = self.scheduler.now()
        self._record_failure(
            DispatchTimeout(f"No transcription after {self.policy.dispatch_timeout_seconds:.0f}s"),
            now,
        )
        assert self._governor is not None
        if self._governor.tripped:
            self._abort_tripped()
            return
        self._notify()
        if ticket.final and self._finishing:
            self._complete_finish()

    def _on_capture_failure(self, epoch: int, error: CaptureError) -> None:
        if epoch != self._epoch or self._base_state is SessionState.IDLE:
            return
        LOGGER.error("Session %s aborted by device error: %s", self.session_id, error)
        self._abort(DEVICE_ERROR_MESSAGE)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _new_assembler(self) -> TranscriptAssembler:
        return TranscriptAssembler(
            trigger_length=self.policy.title_trigger_length,
            title_words=self.policy.title_words,
            max_title_length=self.policy.title_max_length,
            wall_clock=self._wall_clock,
        )

    def _record_failure(self, error: BaseException, now: float) -> None:
        assert self._governor is not None
        if not isinstance(error, DispatchError):
            LOGGER.error("Dispatch failed with unexpected %s: %s", type(error).__name__, error)
        self.failure_count += 1
        self._governor.record_failure(now, error)
        if not self._governor.tripped:
            self._set_error(
                f"Transcription failed ({self._governor.consecutive_failures}/"
                f"{self.policy.failure_threshold}): {error}",
                transient=True,
            )

    def _continue_finish(self) -> None:
        if not self._finishing or self._in_flight is not None:
            return
        if self._buffer is not None and self._buffer and not self._final_dispatched:
            self._final_dispatched = True
            if self.flush(force=True) or self._base_state is SessionState.IDLE:
                return
        self._complete_finish()

    def _complete_finish(self) -> None:
        title = self._assembler.ensure_title()
        LOGGER.info(
            "Session %s finished: %s dispatch(es), %s characters, title %r",
            self.session_id,
            self.dispatch_count,
            len(self._assembler.text),
            title,
        )
        self._teardown()
        self._notify()

    def _abort_tripped(self) -> None:
        assert self._governor is not None and self._governor.trip is not None
        trip: GovernorTripped = self._governor.trip
        LOGGER.error("Session %s aborted: %s (%s)", self.session_id, trip.user_message, trip.detail)
        self._abort(trip.user_message)

    def _abort(self, message: str) -> None:
        if self._buffer is not None:
            self._buffer.drain_all()
        self._set_error(message, transient=False)
        self._teardown()
        self._notify()

    def _teardown(self) -> None:
        now = self.scheduler.now()
        self._stop_clock(now)
        self._epoch += 1
        self._cancel_timer("_flush_timer")
        self._cancel_timer("_tick_timer")
        self._cancel_timer("_error_timer")
        if self._in_flight is not None and self._in_flight.timeout is not None:
            self._in_flight.timeout.cancel()
        self._in_flight = None
        if self._capture is not None:
            self._capture.stop()
            self._capture = None
        self._finishing = False
        self._base_state = SessionState.IDLE

    def _arm_flush_timer(self) -> None:
        self._cancel_timer("_flush_timer")
        self._flush_timer = self.scheduler.call_every(
            self.policy.flush_interval_seconds, partial(self._on_flush_tick, self._epoch)
        )

    def _arm_tick(self) -> None:
        self._cancel_timer("_tick_timer")
        self._tick_timer = self.scheduler.call_every(1.0, partial(self._on_tick, self._epoch))

    def _cancel_timer(self, attribute: str) -> None:
        timer: Optional[TimerHandle] = getattr(self, attribute)
        if timer is not None:
            timer.cancel()
            setattr(self, attribute, None)

    def _update_elapsed(self, now: float) -> None:
        running = now - self._running_since if self._running_since is not None else 0.0
        self.elapsed_seconds = int(self._active_seconds + running)

    def _stop_clock(self, now: float) -> None:
        if self._running_since is None:
            return
        self._update_elapsed(now)
        self._active_seconds += now - self._running_since
        self._running_since = None
        self._cancel_timer("_tick_timer")

    def _set_error(self, message: str, transient: bool) -> None:
        self.last_error = message
        self._error_token += 1
        self._cancel_timer("_error_timer")
        if transient and self.policy.error_clear_seconds > 0:
            self._error_timer = self.scheduler.call_later(
                self.policy.error_clear_seconds, partial(self._expire_error, self._error_token)
            )

    def _expire_error(self, token: int) -> None:
        if token != self._error_token:
            return
        self.last_error = None
        self._error_timer = None
        self._notify()

    def _clear_error(self) -> None:
        self._error_token += 1
        self._cancel_timer("_error_timer")
        self.last_error = None

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                LOGGER.exception("Session listener raised an exception")


__all__ = ["DEVICE_ERROR_MESSAGE", "SessionController", "SessionStateError"]
