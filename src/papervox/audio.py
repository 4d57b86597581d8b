from __future__ import annotations

import wave
from io import BytesIO
from typing import Protocol

try:  # pragma: no cover - optional dependency
    import simpleaudio as _simpleaudio
except ImportError:  # pragma: no cover - optional dependency
    _simpleaudio = None


class AudioUnavailableError(RuntimeError):
    """Raised when no audio output backend is installed or the device cannot be opened."""


class AudioFormatError(ValueError):
    """Raised when synthesized audio cannot be decoded as WAV."""


class ClipHandle(Protocol):
    def stop(self) -> None:
        ...

    def is_playing(self) -> bool:
        ...

    def wait_done(self) -> None:
        ...


class ClipPlayer(Protocol):
    def play(self, audio: bytes) -> ClipHandle:
        ...


def decode_wav(audio: bytes) -> tuple[bytes, int, int, int]:
    """Return ``(frames, channels, sample_width, sample_rate)`` for WAV bytes."""
    try:
        with wave.open(BytesIO(audio), "rb") as wav_file:
            channels = wav_file.getnchannels()
            sample_width = wav_file.getsampwidth()
            sample_rate = wav_file.getframerate()
            frames = wav_file.readframes(wav_file.getnframes())
    except (wave.Error, EOFError) as exc:
        raise AudioFormatError("Synthesized audio is not a readable WAV file.") from exc
    return frames, channels, sample_width, sample_rate


class SimpleAudioClipHandle:
    def __init__(self, play_obj) -> None:
        self._play_obj = play_obj

    def stop(self) -> None:
        self._play_obj.stop()

    def is_playing(self) -> bool:
        return bool(self._play_obj.is_playing())

    def wait_done(self) -> None:
        self._play_obj.wait_done()


class SimpleAudioClipPlayer:
    """Plays WAV clips on the default output device through simpleaudio."""

    def __init__(self) -> None:
        if _simpleaudio is None:
            raise AudioUnavailableError(
                "Live playback requires the `simpleaudio` package. "
                "Install it with `pip install papervox[live]`."
            )
        self._backend = _simpleaudio

    def play(self, audio: bytes) -> SimpleAudioClipHandle:
        frames, channels, sample_width, sample_rate = decode_wav(audio)
        try:
            play_obj = self._backend.play_buffer(frames, channels, sample_width, sample_rate)
        except Exception as exc:
            raise AudioUnavailableError(f"Audio output failed: {exc}") from exc
        return SimpleAudioClipHandle(play_obj)


__all__ = [
    "AudioFormatError",
    "AudioUnavailableError",
    "ClipHandle",
    "ClipPlayer",
    "SimpleAudioClipHandle",
    "SimpleAudioClipPlayer",
    "decode_wav",
]
