from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from fastapi import Body, FastAPI, HTTPException
from fastapi.responses import JSONResponse

from .audio import AudioUnavailableError, ClipPlayer, SimpleAudioClipPlayer
from .narration import SummarizedPaper
from .playback import NarrationPlayer, NarrationResult
from .preferences import Preferences, load_preferences, save_preferences
from .summarize import SummarizeError, summarize_from_local, summarize_from_url
from .synthesis import SynthesisAdapter, create_adapter
from .voice_defaults import DEFAULT_TIMEOUT


@dataclass(slots=True)
class WebConfig:
    preferences_path: Path | None = None
    host: str = "127.0.0.1"
    port: int = 8050
    timeout: float = DEFAULT_TIMEOUT


def _default_adapter(prefs: Preferences, timeout: float) -> SynthesisAdapter:
    return create_adapter(prefs.engine, prefs.tts_host, timeout=timeout)


def _papers_payload(prefs: Preferences) -> list[dict[str, object]]:
    return [
        {"index": idx, **paper.as_payload()}
        for idx, paper in enumerate(prefs.summarized_papers)
    ]


def _result_payload(result: NarrationResult | None) -> dict[str, object] | None:
    if result is None:
        return None
    return {
        "outcome": result.outcome.value,
        "played": result.played,
        "total": result.total,
        "error": str(result.error) if result.error is not None else None,
    }


def create_app(
    config: WebConfig,
    *,
    adapter_factory: Callable[[Preferences], SynthesisAdapter] | None = None,
    clip_player_factory: Callable[[], ClipPlayer] | None = None,
) -> FastAPI:
    app = FastAPI(title="papervox")
    app.state.config = config
    app.state.player = None
    app.state.narration_task = None
    app.state.last_result = None

    prefs_lock = threading.Lock()
    make_adapter = adapter_factory or (lambda prefs: _default_adapter(prefs, config.timeout))
    make_clip_player = clip_player_factory or SimpleAudioClipPlayer

    def _load() -> Preferences:
        return load_preferences(config.preferences_path)

    def _store_paper(paper: SummarizedPaper) -> JSONResponse:
        with prefs_lock:
            prefs = _load()
            index = prefs.add_paper(paper)
            save_preferences(prefs, config.preferences_path)
        return JSONResponse({"index": index, **paper.as_payload()})

    def _narration_running() -> bool:
        task = app.state.narration_task
        return task is not None and not task.done()

    @app.get("/api/papers")
    def api_papers() -> JSONResponse:
        return JSONResponse({"papers": _papers_payload(_load())})

    @app.post("/api/papers")
    def api_summarize_url(payload: dict[str, object] = Body(...)) -> JSONResponse:
        url = payload.get("url")
        if not isinstance(url, str) or not url.strip():
            raise HTTPException(status_code=400, detail="A document URL is required.")
        prefs = _load()
        try:
            paper = summarize_from_url(prefs.api_key, url.strip(), prefs.prompt)
        except SummarizeError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return _store_paper(paper)

    @app.post("/api/papers/local")
    def api_summarize_local(payload: dict[str, object] = Body(...)) -> JSONResponse:
        path_value = payload.get("path")
        if not isinstance(path_value, str) or not path_value.strip():
            raise HTTPException(status_code=400, detail="A PDF path is required.")
        prefs = _load()
        try:
            paper = summarize_from_local(prefs.api_key, Path(path_value), prefs.prompt)
        except FileNotFoundError as exc:
            raise HTTPException(status_code=404, detail=f"PDF not found: {path_value}") from exc
        except SummarizeError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return _store_paper(paper)

    @app.delete("/api/papers/{index}")
    def api_remove_paper(index: int) -> JSONResponse:
        with prefs_lock:
            prefs = _load()
            try:
                removed = prefs.remove_paper(index)
            except IndexError as exc:
                raise HTTPException(status_code=404, detail=str(exc)) from exc
            save_preferences(prefs, config.preferences_path)
        return JSONResponse({"removed": removed.as_payload(), "remaining": len(prefs.summarized_papers)})

    @app.delete("/api/papers")
    def api_clear_papers() -> JSONResponse:
        with prefs_lock:
            prefs = _load()
            removed = prefs.clear_papers()
            save_preferences(prefs, config.preferences_path)
        return JSONResponse({"removed": removed})

    @app.get("/api/settings")
    def api_settings() -> JSONResponse:
        return JSONResponse(_load().settings_payload())

    @app.patch("/api/settings")
    def api_update_settings(payload: dict[str, object] = Body(...)) -> JSONResponse:
        with prefs_lock:
            prefs = _load()
            try:
                changed = prefs.update_settings(payload)
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            if changed:
                save_preferences(prefs, config.preferences_path)
        return JSONResponse({"changed": changed, "settings": prefs.settings_payload()})

    async def _narrate(player: NarrationPlayer, papers: list[SummarizedPaper]) -> None:
        try:
            app.state.last_result = await player.narrate(papers)
        finally:
            player.adapter.close()

    @app.post("/api/narration/start")
    async def api_start_narration() -> JSONResponse:
        if _narration_running():
            raise HTTPException(status_code=409, detail="Narration is already playing.")
        prefs = _load()
        try:
            clip_player = make_clip_player()
        except AudioUnavailableError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        try:
            adapter = make_adapter(prefs)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        player = NarrationPlayer(adapter, clip_player, prefs.voice_parameters())
        app.state.player = player
        app.state.last_result = None
        app.state.narration_task = asyncio.create_task(
            _narrate(player, list(prefs.summarized_papers))
        )
        return JSONResponse(
            {"status": "started", "papers": len(prefs.summarized_papers)}
        )

    @app.post("/api/narration/stop")
    async def api_stop_narration() -> JSONResponse:
        player = app.state.player
        stopped = player.stop() if player is not None else False
        return JSONResponse({"status": "stopping" if stopped else "idle"})

    @app.get("/api/narration/status")
    async def api_narration_status() -> JSONResponse:
        player = app.state.player
        session = player.session if player is not None else None
        return JSONResponse(
            {
                "state": player.state.value if player is not None else "idle",
                "segment": session.index + 1 if session is not None else None,
                "total": session.total if session is not None else None,
                "last_result": _result_payload(app.state.last_result),
            }
        )

    return app


__all__ = ["WebConfig", "create_app"]
