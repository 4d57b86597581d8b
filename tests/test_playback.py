from __future__ import annotations

import asyncio

import pytest

from papervox.audio import AudioFormatError, AudioUnavailableError
from papervox.narration import SummarizedPaper, build_segments
from papervox.playback import (
    ClipOutcome,
    NarrationOutcome,
    NarrationPlayer,
    PlaybackSession,
    SessionBusyError,
    SessionState,
    play_clip,
)
from papervox.synthesis import SynthesisError, VoiceParameters

EXPECTED_TEXTS = [
    "要約の読み上げを開始します．",
    "1件目，タイトルは「A」です．",
    "b1",
    "2件目，タイトルはありません．",
    "b2",
    "以上，2件の要約を読み上げました．",
]


def _player(adapter, clip_player, logs: list[str] | None = None) -> NarrationPlayer:
    sink = logs if logs is not None else []
    return NarrationPlayer(adapter, clip_player, VoiceParameters(), log=sink.append)


def test_full_run_synthesizes_every_segment_in_order(adapter, clip_player, papers) -> None:
    player = _player(adapter, clip_player)

    result = asyncio.run(player.narrate(papers))

    assert result.outcome is NarrationOutcome.COMPLETED
    assert adapter.calls == EXPECTED_TEXTS
    assert clip_player.played == [f"audio:{text}".encode("utf-8") for text in EXPECTED_TEXTS]
    assert result.played == result.total == 6
    assert player.state is SessionState.IDLE
    assert not player.is_active


@pytest.mark.parametrize("count", [1, 3, 7])
def test_call_count_is_two_per_paper_plus_framing(adapter, clip_player, count: int) -> None:
    papers = [SummarizedPaper(title=f"T{i}", body=f"body {i}") for i in range(count)]
    player = _player(adapter, clip_player)

    asyncio.run(player.narrate(papers))

    assert len(adapter.calls) == 1 + 2 * count + 1


def test_voice_parameters_passed_to_every_call(adapter, clip_player, papers) -> None:
    params = VoiceParameters(speaker_id=8, speed=1.2, pitch=0.05, intonation=1.3)
    player = NarrationPlayer(adapter, clip_player, log=lambda _: None)

    asyncio.run(player.narrate(papers, params))

    assert adapter.params == [params] * 6


def test_stop_during_segment_prevents_later_synthesis(adapter, clip_player, papers) -> None:
    logs: list[str] = []
    player = _player(adapter, clip_player, logs)

    def stop_on_third(index: int, _handle) -> None:
        if index == 2:
            player.stop()

    clip_player.on_play = stop_on_third

    result = asyncio.run(player.narrate(papers))

    assert result.outcome is NarrationOutcome.STOPPED
    assert adapter.calls == EXPECTED_TEXTS[:3]
    assert clip_player.handles[2].stopped
    assert result.played == 2
    assert any("stopped" in line for line in logs)


def test_stop_while_clip_is_playing_cancels_wait(adapter, clip_player, papers) -> None:
    clip_player.auto_finish = False
    player = _player(adapter, clip_player)

    async def scenario():
        task = asyncio.create_task(player.narrate(papers))
        while not clip_player.handles:
            await asyncio.sleep(0.01)
        assert player.state is SessionState.ANNOUNCING
        assert player.stop() is True
        return await task

    result = asyncio.run(scenario())

    assert result.outcome is NarrationOutcome.STOPPED
    assert adapter.calls == EXPECTED_TEXTS[:1]
    assert clip_player.handles[0].stopped


def test_stop_during_synthesis_skips_playback(adapter, clip_player, papers) -> None:
    player = _player(adapter, clip_player)

    def stop_on_body(index: int, _text: str) -> None:
        if index == 2:
            player.stop()

    adapter.on_call = stop_on_body

    result = asyncio.run(player.narrate(papers))

    assert result.outcome is NarrationOutcome.STOPPED
    assert adapter.calls == EXPECTED_TEXTS[:3]
    assert len(clip_player.handles) == 2


def test_stop_without_session_is_noop(adapter, clip_player, papers) -> None:
    player = _player(adapter, clip_player)

    assert player.stop() is False
    assert player.stop() is False

    result = asyncio.run(player.narrate(papers))
    assert result.outcome is NarrationOutcome.COMPLETED
    assert adapter.calls == EXPECTED_TEXTS


def test_stop_is_idempotent_within_session(adapter, clip_player, papers) -> None:
    player = _player(adapter, clip_player)

    def stop_twice(index: int, _handle) -> None:
        if index == 0:
            assert player.stop() is True
            assert player.stop() is True

    clip_player.on_play = stop_twice

    result = asyncio.run(player.narrate(papers))
    assert result.outcome is NarrationOutcome.STOPPED
    assert len(adapter.calls) == 1


def test_new_run_after_stop_completes(adapter, clip_player, papers) -> None:
    player = _player(adapter, clip_player)

    def stop_first_clip(index: int, _handle) -> None:
        if index == 0:
            player.stop()

    clip_player.on_play = stop_first_clip
    first = asyncio.run(player.narrate(papers))
    assert first.outcome is NarrationOutcome.STOPPED

    clip_player.on_play = None
    adapter.calls.clear()
    second = asyncio.run(player.narrate(papers))

    assert second.outcome is NarrationOutcome.COMPLETED
    assert adapter.calls == EXPECTED_TEXTS


def test_synthesis_failure_ends_run_without_raising(adapter, clip_player, papers) -> None:
    logs: list[str] = []
    adapter.fail_at = 3
    player = _player(adapter, clip_player, logs)

    result = asyncio.run(player.narrate(papers))

    assert result.outcome is NarrationOutcome.FAILED
    assert adapter.calls == EXPECTED_TEXTS[:4]
    assert len(clip_player.handles) == 3
    assert result.played == 3
    assert "status 500" in str(result.error)
    assert any("ended early" in line for line in logs)
    assert not player.is_active


def test_second_start_while_active_is_rejected(adapter, clip_player, papers) -> None:
    clip_player.auto_finish = False
    player = _player(adapter, clip_player)

    async def scenario():
        task = asyncio.create_task(player.narrate(papers))
        while not clip_player.handles:
            await asyncio.sleep(0.01)
        with pytest.raises(SessionBusyError):
            await player.narrate(papers)
        player.stop()
        return await task

    result = asyncio.run(scenario())
    assert result.outcome is NarrationOutcome.STOPPED
    assert len(adapter.calls) == 1


def test_state_follows_segment_kinds(adapter, clip_player, papers) -> None:
    player = _player(adapter, clip_player)
    seen: list[SessionState] = []
    clip_player.on_play = lambda _index, _handle: seen.append(player.state)

    asyncio.run(player.start(build_segments(papers)))

    assert seen == [
        SessionState.ANNOUNCING,
        SessionState.PER_ITEM,
        SessionState.PER_ITEM,
        SessionState.PER_ITEM,
        SessionState.PER_ITEM,
        SessionState.CLOSING,
    ]


def test_on_segment_callback_sees_each_segment(adapter, clip_player, papers) -> None:
    seen: list[tuple[int, str]] = []
    player = NarrationPlayer(
        adapter,
        clip_player,
        log=lambda _: None,
        on_segment=lambda position, segment: seen.append((position, segment.text)),
    )

    asyncio.run(player.narrate(papers))

    assert seen == list(enumerate(EXPECTED_TEXTS))


def test_play_clip_reports_finished(clip_player) -> None:
    session = PlaybackSession(total=1)

    outcome = asyncio.run(play_clip(clip_player, b"clip", session))

    assert outcome is ClipOutcome.FINISHED
    assert not clip_player.handles[0].stopped


def test_play_clip_uses_flag_not_backend_event(clip_player) -> None:
    session = PlaybackSession(total=1)

    def end_then_cancel(_index: int, handle) -> None:
        # Audio reached its natural end, but the user pressed stop first.
        session.cancel()
        handle.finish()

    clip_player.on_play = end_then_cancel
    outcome = asyncio.run(play_clip(clip_player, b"clip", session))

    assert outcome is ClipOutcome.CANCELLED


def test_play_clip_skips_when_already_cancelled(clip_player) -> None:
    session = PlaybackSession(total=1)
    session.cancel()

    outcome = asyncio.run(play_clip(clip_player, b"clip", session))

    assert outcome is ClipOutcome.CANCELLED
    assert clip_player.handles == []
    assert session.state is SessionState.STOPPED


def test_undecodable_audio_ends_run_as_failure(adapter, papers) -> None:
    class RejectingClipPlayer:
        def play(self, audio: bytes):
            raise AudioFormatError("Synthesized audio is not a readable WAV file.")

    player = NarrationPlayer(adapter, RejectingClipPlayer(), log=lambda _: None)

    result = asyncio.run(player.narrate(papers))

    assert result.outcome is NarrationOutcome.FAILED
    assert isinstance(result.error, AudioFormatError)
    assert adapter.calls == EXPECTED_TEXTS[:1]


def test_synthesis_error_after_stop_counts_as_stop(adapter, clip_player, papers) -> None:
    logs: list[str] = []
    player = _player(adapter, clip_player, logs)

    def stop_then_drop(index: int, _text: str) -> None:
        if index == 2:
            player.stop()
            raise SynthesisError("engine dropped the request")

    adapter.on_call = stop_then_drop

    result = asyncio.run(player.narrate(papers))

    assert result.outcome is NarrationOutcome.STOPPED
    assert result.error is None
    assert result.played == 2
    assert not any("ended early" in line for line in logs)


def test_audio_device_failure_ends_run_as_failure(adapter, papers) -> None:
    class BrokenDeviceClipPlayer:
        def play(self, audio: bytes):
            raise AudioUnavailableError("Audio output failed: Error opening PCM device")

    player = NarrationPlayer(adapter, BrokenDeviceClipPlayer(), log=lambda _: None)

    result = asyncio.run(player.narrate(papers))

    assert result.outcome is NarrationOutcome.FAILED
    assert isinstance(result.error, AudioUnavailableError)
    assert not player.is_active
