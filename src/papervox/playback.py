from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Sequence

from .audio import AudioFormatError, AudioUnavailableError, ClipHandle, ClipPlayer
from .narration import NarrationSegment, SegmentKind, SummarizedPaper, build_segments
from .synthesis import SynthesisAdapter, SynthesisError, VoiceParameters, _debug_log


class PlaybackStopped(Exception):
    """Raised inside a run when the user stopped narration."""


class SessionBusyError(RuntimeError):
    """Raised when narration is started while another session is active."""


class ClipOutcome(Enum):
    FINISHED = "finished"
    CANCELLED = "cancelled"


class NarrationOutcome(str, Enum):
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"


class SessionState(str, Enum):
    IDLE = "idle"
    ANNOUNCING = "announcing"
    PER_ITEM = "per_item"
    CLOSING = "closing"
    STOPPED = "stopped"


_STATE_FOR_KIND = {
    SegmentKind.OPENING: SessionState.ANNOUNCING,
    SegmentKind.TITLE: SessionState.PER_ITEM,
    SegmentKind.BODY: SessionState.PER_ITEM,
    SegmentKind.CLOSING: SessionState.CLOSING,
}


@dataclass
class NarrationResult:
    outcome: NarrationOutcome
    played: int
    total: int
    error: Exception | None = None


class PlaybackSession:
    """
    Transient state of one narration run.

    The cancellation flag belongs to the session, so a stop consumed by one run
    can never carry over into the next. ``cancel`` may be called from any thread.
    """

    def __init__(self, total: int) -> None:
        self.total = total
        self.index = -1
        self.played = 0
        self.state = SessionState.ANNOUNCING
        self._cancel_event = threading.Event()
        self._lock = threading.Lock()
        self._handle: ClipHandle | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._cancel_event.is_set():
                return
            self._cancel_event.set()
            self.state = SessionState.STOPPED
            handle = self._handle
        if handle is not None:
            handle.stop()

    def advance(self, index: int, segment: NarrationSegment) -> None:
        with self._lock:
            self.index = index
            if not self._cancel_event.is_set():
                self.state = _STATE_FOR_KIND[segment.kind]

    def attach(self, handle: ClipHandle) -> None:
        with self._lock:
            cancelled = self._cancel_event.is_set()
            if not cancelled:
                self._handle = handle
        if cancelled:
            handle.stop()

    def detach(self, handle: ClipHandle) -> None:
        with self._lock:
            if self._handle is handle:
                self._handle = None

    def raise_if_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise PlaybackStopped


async def play_clip(
    clip_player: ClipPlayer,
    audio: bytes,
    session: PlaybackSession,
) -> ClipOutcome:
    """
    Play one clip to its terminal event. Whether it ended naturally or was
    stopped is decided by the session flag, not by the audio backend.
    """
    if session.cancelled:
        return ClipOutcome.CANCELLED
    handle = clip_player.play(audio)
    session.attach(handle)
    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(None, handle.wait_done)
    except asyncio.CancelledError:
        handle.stop()
        raise
    finally:
        session.detach(handle)
    if session.cancelled:
        return ClipOutcome.CANCELLED
    return ClipOutcome.FINISHED


def _print_log(message: str) -> None:
    print(f"[papervox] {message}", flush=True)


class NarrationPlayer:
    """
    Drives one narration session at a time: synthesize a segment, play it,
    wait for it to end, then move on.
    """

    def __init__(
        self,
        adapter: SynthesisAdapter,
        clip_player: ClipPlayer,
        params: VoiceParameters | None = None,
        *,
        log: Callable[[str], None] | None = None,
        on_segment: Callable[[int, NarrationSegment], None] | None = None,
    ) -> None:
        self.adapter = adapter
        self.clip_player = clip_player
        self.params = params or VoiceParameters()
        self._log = log or _print_log
        self._on_segment = on_segment
        self._session: PlaybackSession | None = None

    @property
    def session(self) -> PlaybackSession | None:
        return self._session

    @property
    def is_active(self) -> bool:
        return self._session is not None

    @property
    def state(self) -> SessionState:
        session = self._session
        if session is None:
            return SessionState.IDLE
        return session.state

    async def narrate(
        self,
        papers: Iterable[SummarizedPaper],
        params: VoiceParameters | None = None,
    ) -> NarrationResult:
        return await self.start(build_segments(papers), params)

    async def start(
        self,
        segments: Sequence[NarrationSegment],
        params: VoiceParameters | None = None,
    ) -> NarrationResult:
        if self._session is not None:
            raise SessionBusyError("A narration session is already active.")
        segments = list(segments)
        session = PlaybackSession(len(segments))
        self._session = session
        error: Exception | None = None
        try:
            await self._run(session, segments, params or self.params)
        except PlaybackStopped:
            self._log(f"Playback stopped at segment {session.index + 1}/{session.total}.")
            outcome = NarrationOutcome.STOPPED
        except (SynthesisError, AudioFormatError, AudioUnavailableError) as exc:
            if session.cancelled:
                self._log(f"Playback stopped at segment {session.index + 1}/{session.total}.")
                outcome = NarrationOutcome.STOPPED
            else:
                self._log(f"Narration ended early at segment {session.index + 1}: {exc}")
                outcome = NarrationOutcome.FAILED
                error = exc
        else:
            outcome = NarrationOutcome.COMPLETED
        finally:
            self._session = None
        return NarrationResult(outcome, session.played, session.total, error)

    async def _run(
        self,
        session: PlaybackSession,
        segments: list[NarrationSegment],
        params: VoiceParameters,
    ) -> None:
        loop = asyncio.get_running_loop()
        for position, segment in enumerate(segments):
            session.raise_if_cancelled()
            session.advance(position, segment)
            if self._on_segment is not None:
                self._on_segment(position, segment)
            _debug_log(f"segment {position + 1}/{session.total} ({segment.kind.value})")
            audio = await loop.run_in_executor(
                None, self.adapter.synthesize, segment.text, params
            )
            session.raise_if_cancelled()
            outcome = await play_clip(self.clip_player, audio, session)
            if outcome is ClipOutcome.CANCELLED:
                raise PlaybackStopped
            session.played += 1

    def stop(self) -> bool:
        """Stop the active session; returns False when nothing was playing."""
        session = self._session
        if session is None:
            return False
        session.cancel()
        return True


__all__ = [
    "ClipOutcome",
    "NarrationOutcome",
    "NarrationPlayer",
    "NarrationResult",
    "PlaybackSession",
    "PlaybackStopped",
    "SessionBusyError",
    "SessionState",
    "play_clip",
]
