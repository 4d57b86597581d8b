from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Protocol
from urllib.parse import urlparse

import requests

from .voice_defaults import (
    DEFAULT_ENGINE,
    DEFAULT_ENGINE_URL,
    DEFAULT_MASTER_CONTROL,
    DEFAULT_SPEAKER_ID,
    DEFAULT_TIMEOUT,
    ENGINE_CHOICES,
)

_DEBUG_LOG = False
_QUERY_SCALE_KEYS = {
    "speed": "speedScale",
    "pitch": "pitchScale",
    "intonation": "intonationScale",
}


def set_debug_logging(enabled: bool) -> None:
    global _DEBUG_LOG
    _DEBUG_LOG = enabled


def _debug_log(message: str) -> None:
    if _DEBUG_LOG:
        print(f"[papervox synth debug] {message}")


class SynthesisError(RuntimeError):
    """Raised when the voice engine returns an unexpected response."""


class SynthesisUnavailableError(SynthesisError, ConnectionError):
    """Raised when the voice engine is unreachable."""


@dataclass(frozen=True)
class VoiceParameters:
    speaker_id: int = DEFAULT_SPEAKER_ID
    speed: float | None = None
    pitch: float | None = None
    intonation: float | None = None
    master_control: Mapping[str, Any] = field(
        default_factory=lambda: dict(DEFAULT_MASTER_CONTROL)
    )

    def scale_overrides(self) -> dict[str, float]:
        overrides: dict[str, float] = {}
        for name, query_key in _QUERY_SCALE_KEYS.items():
            value = getattr(self, name)
            if value is not None:
                overrides[query_key] = float(value)
        return overrides

    def with_overrides(self, **changes: object) -> "VoiceParameters":
        applied = {key: value for key, value in changes.items() if value is not None}
        return replace(self, **applied)


class SynthesisAdapter(Protocol):
    def synthesize(self, text: str, params: VoiceParameters) -> bytes:
        ...

    def close(self) -> None:
        ...


def normalize_engine_url(base_url: str) -> str:
    trimmed = base_url.strip()
    if not trimmed:
        raise ValueError("Voice engine URL cannot be empty.")
    if "://" not in trimmed:
        trimmed = f"http://{trimmed}"
    parsed = urlparse(trimmed)
    if parsed.scheme not in {"http", "https"}:
        raise ValueError(f"Unsupported voice engine URL scheme: {parsed.scheme}")
    if not parsed.hostname:
        raise ValueError(f"Invalid voice engine URL: {base_url}")
    return trimmed.rstrip("/")


def _check_status(response: requests.Response, endpoint: str) -> None:
    if response.status_code != 200:
        raise SynthesisError(
            f"{endpoint} failed with status {response.status_code}: {response.text}"
        )


def _audio_content(response: requests.Response, endpoint: str) -> bytes:
    audio = response.content
    if not audio:
        raise SynthesisError(f"{endpoint} returned an empty audio body")
    return audio


class VoiceVoxAdapter:
    """
    Two-phase VoiceVox protocol: build an audio query, then synthesize it.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_ENGINE_URL,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = normalize_engine_url(base_url)
        self.timeout = timeout
        self._session = requests.Session()

    def build_audio_query(self, text: str, params: VoiceParameters) -> dict:
        try:
            query_resp = self._session.post(
                f"{self.base_url}/audio_query",
                params={"text": text, "speaker": params.speaker_id},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise SynthesisUnavailableError(
                f"Failed to contact VoiceVox engine at {self.base_url}"
            ) from exc

        _check_status(query_resp, "/audio_query")

        try:
            query_payload = query_resp.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise SynthesisError("VoiceVox returned invalid JSON for /audio_query") from exc
        if not isinstance(query_payload, dict):
            raise SynthesisError("VoiceVox returned a non-object /audio_query payload")

        overrides = params.scale_overrides()
        if overrides:
            _debug_log(f"audio_query overrides: {overrides}")
        query_payload.update(overrides)
        return query_payload

    def synthesize_from_query(self, query_payload: dict, params: VoiceParameters) -> bytes:
        try:
            synth_resp = self._session.post(
                f"{self.base_url}/synthesis",
                params={"speaker": params.speaker_id},
                json=query_payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise SynthesisUnavailableError(
                f"Failed to contact VoiceVox engine during synthesis at {self.base_url}"
            ) from exc

        _check_status(synth_resp, "/synthesis")
        return _audio_content(synth_resp, "/synthesis")

    def synthesize(self, text: str, params: VoiceParameters) -> bytes:
        """
        Generate WAV audio bytes for the provided text via VoiceVox.
        """
        _debug_log(f"synthesize speaker={params.speaker_id} text={text[:40]!r}")
        query_payload = self.build_audio_query(text, params)
        return self.synthesize_from_query(query_payload, params)

    def close(self) -> None:
        self._session.close()


class PresetEngineAdapter:
    """
    Single-call engine: host, voice preset and master control are set up once,
    after which every synthesis is one POST of ``{"Text": ...}``.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_ENGINE_URL,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = normalize_engine_url(base_url)
        self.timeout = timeout
        self._session = requests.Session()
        self._master_control: dict[str, Any] = dict(DEFAULT_MASTER_CONTROL)
        self._prepared = False

    def configure(self, master_control: Mapping[str, Any]) -> None:
        """Replace the master control payload; setup reruns on the next synthesis."""
        updated = dict(master_control)
        if updated != self._master_control:
            self._master_control = updated
            self._prepared = False

    def _post_setup(self, path: str, body: Mapping[str, Any] | None = None) -> None:
        try:
            resp = self._session.post(
                f"{self.base_url}{path}",
                json=body,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise SynthesisUnavailableError(
                f"Failed to contact voice engine at {self.base_url}"
            ) from exc
        _check_status(resp, path)

    def prepare(self) -> None:
        if self._prepared:
            return
        self._post_setup("/host/0")
        self._post_setup("/voice-preset/0")
        self._post_setup("/master-control", self._master_control)
        _debug_log(f"preset engine prepared with master control {self._master_control}")
        self._prepared = True

    def synthesize(self, text: str, params: VoiceParameters) -> bytes:
        self.configure(params.master_control)
        self.prepare()
        _debug_log(f"synthesize text={text[:40]!r}")
        try:
            resp = self._session.post(
                f"{self.base_url}/synthesis",
                json={"Text": text},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise SynthesisUnavailableError(
                f"Failed to contact voice engine during synthesis at {self.base_url}"
            ) from exc
        _check_status(resp, "/synthesis")
        return _audio_content(resp, "/synthesis")

    def close(self) -> None:
        self._session.close()


def create_adapter(
    engine: str = DEFAULT_ENGINE,
    base_url: str = DEFAULT_ENGINE_URL,
    *,
    timeout: float = DEFAULT_TIMEOUT,
) -> SynthesisAdapter:
    if engine == "voicevox":
        return VoiceVoxAdapter(base_url, timeout)
    if engine == "preset":
        return PresetEngineAdapter(base_url, timeout)
    raise ValueError(
        f"Unknown voice engine '{engine}' (expected one of: {', '.join(ENGINE_CHOICES)})"
    )


__all__ = [
    "PresetEngineAdapter",
    "SynthesisAdapter",
    "SynthesisError",
    "SynthesisUnavailableError",
    "VoiceParameters",
    "VoiceVoxAdapter",
    "create_adapter",
    "normalize_engine_url",
    "set_debug_logging",
]
