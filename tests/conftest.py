from __future__ import annotations

import math
import threading
import wave
from io import BytesIO
from typing import Callable

import pytest

from papervox.narration import SummarizedPaper
from papervox.synthesis import SynthesisError, VoiceParameters


class FakeHandle:
    def __init__(self, audio: bytes, *, finished: bool) -> None:
        self.audio = audio
        self.stopped = False
        self._done = threading.Event()
        if finished:
            self._done.set()

    def finish(self) -> None:
        self._done.set()

    def stop(self) -> None:
        self.stopped = True
        self._done.set()

    def is_playing(self) -> bool:
        return not self._done.is_set()

    def wait_done(self) -> None:
        self._done.wait(timeout=5)


class FakeClipPlayer:
    """Records played clips; clips end on their own unless ``auto_finish`` is off."""

    def __init__(self) -> None:
        self.auto_finish = True
        self.on_play: Callable[[int, FakeHandle], None] | None = None
        self.handles: list[FakeHandle] = []

    @property
    def played(self) -> list[bytes]:
        return [handle.audio for handle in self.handles]

    def play(self, audio: bytes) -> FakeHandle:
        handle = FakeHandle(audio, finished=self.auto_finish)
        self.handles.append(handle)
        if self.on_play is not None:
            self.on_play(len(self.handles) - 1, handle)
        return handle


class FakeAdapter:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.params: list[VoiceParameters] = []
        self.fail_at: int | None = None
        self.on_call: Callable[[int, str], None] | None = None
        self.closed = False

    def synthesize(self, text: str, params: VoiceParameters) -> bytes:
        index = len(self.calls)
        self.calls.append(text)
        self.params.append(params)
        if self.on_call is not None:
            self.on_call(index, text)
        if self.fail_at is not None and index == self.fail_at:
            raise SynthesisError(f"/synthesis failed with status 500 for call {index}")
        return f"audio:{text}".encode("utf-8")

    def close(self) -> None:
        self.closed = True


def tone_wav_bytes(
    frequency: float = 440.0, duration: float = 0.05, sample_rate: int = 16000
) -> bytes:
    total_frames = int(duration * sample_rate)
    frames = bytearray()
    for idx in range(total_frames):
        value = int(8000 * math.sin(2 * math.pi * frequency * (idx / sample_rate)))
        frames.extend(value.to_bytes(2, byteorder="little", signed=True))
    buffer = BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(2)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(bytes(frames))
    return buffer.getvalue()


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def clip_player() -> FakeClipPlayer:
    return FakeClipPlayer()


@pytest.fixture
def papers() -> list[SummarizedPaper]:
    return [
        SummarizedPaper(title="A", body="b1"),
        SummarizedPaper(title="", body="b2"),
    ]


@pytest.fixture
def wav_bytes() -> bytes:
    return tone_wav_bytes()
