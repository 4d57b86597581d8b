from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Mapping

from .narration import SummarizedPaper
from .synthesis import VoiceParameters
from .voice_defaults import (
    DEFAULT_ENGINE,
    DEFAULT_ENGINE_URL,
    DEFAULT_INTONATION_SCALE,
    DEFAULT_MASTER_CONTROL,
    DEFAULT_PITCH_SCALE,
    DEFAULT_SPEAKER_ID,
    DEFAULT_SPEED_SCALE,
    ENGINE_CHOICES,
)

PREFERENCES_FILENAME = "preferences.json"
DEFAULT_PROMPT = "100字程度の日本語(口語体)に要約して下さい．"
_SETTING_KEYS = (
    "api_key",
    "prompt",
    "engine",
    "tts_host",
    "speaker",
    "speed",
    "pitch",
    "intonation",
    "master_control",
)


def default_preferences_path() -> Path:
    home = os.environ.get("PAPERVOX_HOME")
    base = Path(home).expanduser() if home else Path.home() / ".papervox"
    return base / PREFERENCES_FILENAME


@dataclass
class Preferences:
    api_key: str = ""
    prompt: str = DEFAULT_PROMPT
    engine: str = DEFAULT_ENGINE
    tts_host: str = DEFAULT_ENGINE_URL
    speaker: int = DEFAULT_SPEAKER_ID
    speed: float = DEFAULT_SPEED_SCALE
    pitch: float = DEFAULT_PITCH_SCALE
    intonation: float = DEFAULT_INTONATION_SCALE
    master_control: dict[str, Any] = field(
        default_factory=lambda: dict(DEFAULT_MASTER_CONTROL)
    )
    summarized_papers: list[SummarizedPaper] = field(default_factory=list)

    def voice_parameters(self) -> VoiceParameters:
        return VoiceParameters(
            speaker_id=self.speaker,
            speed=self.speed,
            pitch=self.pitch,
            intonation=self.intonation,
            master_control=dict(self.master_control),
        )

    def add_paper(self, paper: SummarizedPaper) -> int:
        self.summarized_papers.append(paper)
        return len(self.summarized_papers) - 1

    def remove_paper(self, index: int) -> SummarizedPaper:
        if index < 0 or index >= len(self.summarized_papers):
            raise IndexError(f"No summarized paper at index {index}.")
        return self.summarized_papers.pop(index)

    def clear_papers(self) -> int:
        removed = len(self.summarized_papers)
        self.summarized_papers = []
        return removed

    def settings_payload(self) -> dict[str, object]:
        payload = asdict(self)
        payload.pop("summarized_papers", None)
        return payload

    def update_settings(self, updates: Mapping[str, object]) -> bool:
        unknown = sorted(set(updates) - set(_SETTING_KEYS))
        if unknown:
            raise ValueError(f"Unknown setting(s): {', '.join(unknown)}")
        changed = False
        for key, value in updates.items():
            normalized = _normalize_setting(key, value)
            if getattr(self, key) != normalized:
                setattr(self, key, normalized)
                changed = True
        return changed


def _normalize_setting(key: str, value: object) -> object:
    if key in {"api_key", "prompt", "tts_host"}:
        if not isinstance(value, str):
            raise ValueError(f"{key} must be a string.")
        return value
    if key == "engine":
        if value not in ENGINE_CHOICES:
            raise ValueError(f"engine must be one of: {', '.join(ENGINE_CHOICES)}")
        return value
    if key == "speaker":
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise ValueError("speaker must be an integer.")
        try:
            return int(value)
        except ValueError as exc:
            raise ValueError("speaker must be an integer.") from exc
    if key in {"speed", "pitch", "intonation"}:
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ValueError(f"{key} must be a number.")
        try:
            return float(value)
        except ValueError as exc:
            raise ValueError(f"{key} must be a number.") from exc
    if key == "master_control":
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError as exc:
                raise ValueError("master_control must be a JSON object.") from exc
        if not isinstance(value, Mapping):
            raise ValueError("master_control must be a JSON object.")
        return dict(value)
    raise ValueError(f"Unknown setting: {key}")


def _papers_from_payload(payload: object) -> list[SummarizedPaper]:
    if not isinstance(payload, list):
        return []
    papers: list[SummarizedPaper] = []
    for entry in payload:
        try:
            papers.append(SummarizedPaper.from_payload(entry))
        except ValueError:
            continue
    return papers


def load_preferences(path: Path | None = None) -> Preferences:
    """
    Read preferences from disk. Missing, unreadable or malformed files give
    defaults; individual invalid settings fall back to their default value.
    """
    path = path or default_preferences_path()
    prefs = Preferences()
    if not path.exists():
        return prefs
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return prefs
    if not isinstance(raw, dict):
        return prefs
    for key in _SETTING_KEYS:
        if key not in raw:
            continue
        try:
            setattr(prefs, key, _normalize_setting(key, raw[key]))
        except ValueError:
            continue
    prefs.summarized_papers = _papers_from_payload(raw.get("summarized_papers"))
    return prefs


def save_preferences(prefs: Preferences, path: Path | None = None) -> Path:
    path = path or default_preferences_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = prefs.settings_payload()
    payload["summarized_papers"] = [paper.as_payload() for paper in prefs.summarized_papers]
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(
        json.dumps(payload, ensure_ascii=False, indent=2),
        encoding="utf-8",
    )
    tmp_path.replace(path)
    return path


__all__ = [
    "DEFAULT_PROMPT",
    "PREFERENCES_FILENAME",
    "Preferences",
    "default_preferences_path",
    "load_preferences",
    "save_preferences",
]
