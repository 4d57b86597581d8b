from __future__ import annotations

DEFAULT_ENGINE = "voicevox"
DEFAULT_ENGINE_URL = "http://127.0.0.1:50021"
DEFAULT_TIMEOUT = 30.0

DEFAULT_SPEAKER_ID = 2
DEFAULT_SPEED_SCALE = 1.0
DEFAULT_PITCH_SCALE = 0.0
DEFAULT_INTONATION_SCALE = 1.0

# Payload posted to /master-control by the preset engine.
DEFAULT_MASTER_CONTROL: dict[str, float | int] = {
    "Volume": 1.0,
    "Speed": 1.0,
    "Pitch": 1.0,
    "PitchRange": 1.0,
    "MiddlePause": 150,
    "LongPause": 370,
    "SentencePause": 800,
}

ENGINE_CHOICES = ("voicevox", "preset")
