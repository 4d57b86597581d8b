from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from importlib import metadata
from pathlib import Path

import tomllib
import uvicorn
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .audio import AudioUnavailableError, SimpleAudioClipPlayer
from .narration import NarrationSegment, SummarizedPaper
from .playback import NarrationOutcome, NarrationPlayer, NarrationResult
from .preferences import load_preferences, save_preferences
from .summarize import SummarizeError, summarize_from_local, summarize_from_url
from .synthesis import create_adapter, set_debug_logging
from .voice_defaults import (
    DEFAULT_INTONATION_SCALE,
    DEFAULT_PITCH_SCALE,
    DEFAULT_SPEED_SCALE,
    DEFAULT_TIMEOUT,
    ENGINE_CHOICES,
)
from .web import WebConfig, create_app

_SUBCOMMANDS = ("narrate", "summarize", "papers", "settings", "web")


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("papervox")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0"


def _add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"papervox {__version__}",
    )
    parser.add_argument(
        "--preferences",
        help="Path to the preferences JSON (default: ~/.papervox/preferences.json).",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="papervox",
        description="Summarize papers and narrate the summaries through a voice engine.",
    )
    _add_common_flags(ap)
    ap.add_argument("command", nargs="?", choices=_SUBCOMMANDS)
    return ap


def build_narrate_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="papervox narrate",
        description="Read the saved summaries aloud, one segment at a time. Ctrl-C stops playback.",
    )
    _add_common_flags(ap)
    ap.add_argument(
        "--papers",
        help="JSON file with a list of {title, body} summaries (defaults to the saved list).",
    )
    ap.add_argument(
        "--engine",
        choices=ENGINE_CHOICES,
        help="Voice engine protocol (defaults to the saved preference).",
    )
    ap.add_argument(
        "--engine-url",
        help="Base URL of the voice engine (defaults to the saved preference).",
    )
    ap.add_argument("--speaker", type=int, help="VoiceVox speaker ID.")
    ap.add_argument(
        "--speed",
        type=float,
        help=f"Override VoiceVox speedScale (default: {DEFAULT_SPEED_SCALE}).",
    )
    ap.add_argument(
        "--pitch",
        type=float,
        help=f"Override VoiceVox pitchScale (default: {DEFAULT_PITCH_SCALE}).",
    )
    ap.add_argument(
        "--intonation",
        type=float,
        help=f"Override VoiceVox intonationScale (default: {DEFAULT_INTONATION_SCALE}).",
    )
    ap.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help=f"HTTP timeout in seconds for voice engine requests (default: {DEFAULT_TIMEOUT:g}).",
    )
    ap.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging (voice engine requests).",
    )
    return ap


def build_summarize_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="papervox summarize",
        description="Summarize a PDF (local path or URL) and append it to the saved list.",
    )
    _add_common_flags(ap)
    ap.add_argument("source", help="Path to a .pdf file or an http(s) URL.")
    ap.add_argument("--api-key", help="OpenAI API key (defaults to the saved preference).")
    ap.add_argument("--prompt", help="Summary instruction (defaults to the saved preference).")
    return ap


def build_papers_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="papervox papers",
        description="Show or edit the saved summaries.",
    )
    _add_common_flags(ap)
    ap.add_argument("action", nargs="?", choices=["list", "remove", "clear"], default="list")
    ap.add_argument("number", nargs="?", type=int, help="1-based entry number for `remove`.")
    return ap


def build_settings_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="papervox settings",
        description="Show settings, or update them with KEY=VALUE pairs.",
    )
    _add_common_flags(ap)
    ap.add_argument("assignments", nargs="*", metavar="KEY=VALUE")
    return ap


def build_web_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="papervox web",
        description="Serve the papervox control API.",
    )
    _add_common_flags(ap)
    ap.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1).")
    ap.add_argument("--port", type=int, default=8050, help="Bind port (default: 8050).")
    ap.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help=f"HTTP timeout in seconds for voice engine requests (default: {DEFAULT_TIMEOUT:g}).",
    )
    return ap


def _preferences_path(args: argparse.Namespace) -> Path | None:
    value = getattr(args, "preferences", None)
    return Path(value).expanduser() if value else None


def _load_papers_file(path: Path) -> list[SummarizedPaper]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise SystemExit(f"Papers file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise SystemExit(f"Papers file is not valid JSON: {path}") from exc
    if not isinstance(payload, list):
        raise SystemExit("Papers file must contain a JSON list.")
    try:
        return [SummarizedPaper.from_payload(entry) for entry in payload]
    except ValueError as exc:
        raise SystemExit(f"Invalid summary in {path}: {exc}") from exc


async def _narrate_until_interrupted(
    player: NarrationPlayer,
    papers: list[SummarizedPaper],
) -> NarrationResult:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, player.stop)
        installed = True
    except (NotImplementedError, RuntimeError):  # pragma: no cover - Windows
        installed = False
    try:
        return await player.narrate(papers)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def _run_narrate(args: argparse.Namespace) -> int:
    set_debug_logging(bool(args.debug))
    console = Console()
    prefs = load_preferences(_preferences_path(args))
    if args.papers:
        papers = _load_papers_file(Path(args.papers).expanduser())
    else:
        papers = list(prefs.summarized_papers)
    if not papers:
        console.print("No summaries saved; only the opening and closing lines will play.")

    params = prefs.voice_parameters().with_overrides(
        speaker_id=args.speaker,
        speed=args.speed,
        pitch=args.pitch,
        intonation=args.intonation,
    )
    try:
        clip_player = SimpleAudioClipPlayer()
    except AudioUnavailableError as exc:
        raise SystemExit(str(exc)) from exc
    try:
        adapter = create_adapter(
            args.engine or prefs.engine,
            args.engine_url or prefs.tts_host,
            timeout=args.timeout,
        )
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc

    total = 2 * len(papers) + 2

    def _print_segment(position: int, segment: NarrationSegment) -> None:
        preview = segment.text.replace("\n", " ")
        if len(preview) > 40:
            preview = preview[:40] + "…"
        console.print(f"[{position + 1}/{total}] {segment.kind.value}: {preview}", markup=False)

    player = NarrationPlayer(
        adapter,
        clip_player,
        params,
        log=lambda message: console.print(message, style="yellow", markup=False),
        on_segment=_print_segment,
    )
    try:
        result = asyncio.run(_narrate_until_interrupted(player, papers))
    finally:
        adapter.close()

    if result.outcome is NarrationOutcome.STOPPED:
        console.print("Interrupted. Playback stopped.")
        return 130
    if result.outcome is NarrationOutcome.FAILED:
        return 1
    console.print(f"Narrated {len(papers)} summaries ({result.played} segments).")
    return 0


def _run_summarize(args: argparse.Namespace) -> int:
    console = Console()
    prefs_path = _preferences_path(args)
    prefs = load_preferences(prefs_path)
    api_key = args.api_key or prefs.api_key
    prompt = args.prompt or prefs.prompt
    source = args.source
    try:
        with console.status("Summarizing…"):
            if source.startswith(("http://", "https://")):
                paper = summarize_from_url(api_key, source, prompt)
            else:
                paper = summarize_from_local(api_key, Path(source), prompt)
    except FileNotFoundError as exc:
        raise SystemExit(f"PDF not found: {source}") from exc
    except SummarizeError as exc:
        raise SystemExit(str(exc)) from exc
    index = prefs.add_paper(paper)
    save_preferences(prefs, prefs_path)
    console.print(f"{index + 1}. {paper.title or '(no title)'}", style="bold", markup=False)
    console.print(paper.body, markup=False)
    return 0


def _run_papers(args: argparse.Namespace) -> int:
    console = Console()
    prefs_path = _preferences_path(args)
    prefs = load_preferences(prefs_path)
    if args.action == "clear":
        removed = prefs.clear_papers()
        save_preferences(prefs, prefs_path)
        console.print(f"Removed {removed} summaries.")
        return 0
    if args.action == "remove":
        if args.number is None:
            raise SystemExit("`papers remove` needs the entry number to remove.")
        try:
            removed_paper = prefs.remove_paper(args.number - 1)
        except IndexError as exc:
            raise SystemExit(f"No summary numbered {args.number}.") from exc
        save_preferences(prefs, prefs_path)
        console.print(f"Removed: {removed_paper.title or '(no title)'}", markup=False)
        return 0

    if not prefs.summarized_papers:
        console.print("No summaries saved.")
        return 0
    table = Table("#", "Title", "Summary")
    for number, paper in enumerate(prefs.summarized_papers, start=1):
        table.add_row(str(number), escape(paper.title or "(no title)"), escape(paper.body))
    console.print(table)
    return 0


def _parse_assignment(raw: str) -> tuple[str, str]:
    key, sep, value = raw.partition("=")
    if not sep or not key.strip():
        raise SystemExit(f"Expected KEY=VALUE, got: {raw}")
    return key.strip(), value


def _run_settings(args: argparse.Namespace) -> int:
    console = Console()
    prefs_path = _preferences_path(args)
    prefs = load_preferences(prefs_path)
    if args.assignments:
        updates = dict(_parse_assignment(raw) for raw in args.assignments)
        try:
            changed = prefs.update_settings(updates)
        except ValueError as exc:
            raise SystemExit(str(exc)) from exc
        if changed:
            save_preferences(prefs, prefs_path)
    payload = prefs.settings_payload()
    if payload.get("api_key"):
        payload["api_key"] = "********"
    console.print_json(json.dumps(payload, ensure_ascii=False))
    return 0


def _run_web(args: argparse.Namespace) -> None:
    config = WebConfig(
        preferences_path=_preferences_path(args),
        host=args.host,
        port=args.port,
        timeout=args.timeout,
    )
    app = create_app(config)
    uvicorn.run(app, host=config.host, port=config.port)


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] == "narrate":
        return _run_narrate(build_narrate_parser().parse_args(argv[1:]))
    if argv and argv[0] == "summarize":
        return _run_summarize(build_summarize_parser().parse_args(argv[1:]))
    if argv and argv[0] == "papers":
        return _run_papers(build_papers_parser().parse_args(argv[1:]))
    if argv and argv[0] == "settings":
        return _run_settings(build_settings_parser().parse_args(argv[1:]))
    if argv and argv[0] == "web":
        _run_web(build_web_parser().parse_args(argv[1:]))
        return 0

    parser = build_parser()
    parser.parse_args(argv)
    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
