from .narration import NarrationSegment, SegmentKind, SummarizedPaper, build_segments
from .playback import (
    ClipOutcome,
    NarrationOutcome,
    NarrationPlayer,
    NarrationResult,
    PlaybackSession,
    PlaybackStopped,
    SessionBusyError,
    SessionState,
)
from .synthesis import (
    PresetEngineAdapter,
    SynthesisAdapter,
    SynthesisError,
    SynthesisUnavailableError,
    VoiceParameters,
    VoiceVoxAdapter,
    create_adapter,
)

__all__ = [
    "SummarizedPaper",
    "NarrationSegment",
    "SegmentKind",
    "build_segments",
    "NarrationPlayer",
    "NarrationResult",
    "NarrationOutcome",
    "PlaybackSession",
    "PlaybackStopped",
    "SessionBusyError",
    "SessionState",
    "ClipOutcome",
    "VoiceParameters",
    "SynthesisAdapter",
    "VoiceVoxAdapter",
    "PresetEngineAdapter",
    "SynthesisError",
    "SynthesisUnavailableError",
    "create_adapter",
]
