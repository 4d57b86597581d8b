from __future__ import annotations

import json
from io import BytesIO
from pathlib import Path

import pdfplumber
import requests

from .narration import SummarizedPaper

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_MODEL = "gpt-4-turbo-preview"
DEFAULT_SUMMARY_TIMEOUT = 120.0

SYSTEM_PROMPT = """まず，ユーザーから与えられるテキストから論文のタイトルをそのまま抽出して下さい．
次に，以下に与えるシステムプロンプトに従って論文を加工して下さい．
結果は，{"title": 抽出したタイトル, "body": 加工した論文} という形式のJSONで出力して下さい．
タイトルを抽出できなかった場合は，{"title": null, "body": 加工した論文} として下さい．"""


class SummarizeError(RuntimeError):
    """Raised when a document cannot be fetched, read, or summarized."""


def extract_pdf_text(source: Path | bytes) -> str:
    handle = BytesIO(source) if isinstance(source, bytes) else str(source)
    try:
        with pdfplumber.open(handle) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
    except FileNotFoundError:
        raise
    except Exception as exc:
        raise SummarizeError(f"Failed to read PDF: {exc}") from exc
    text = "\n".join(page for page in pages if page).strip()
    if not text:
        raise SummarizeError("PDF contains no extractable text.")
    return text


def fetch_pdf(
    url: str,
    *,
    session: requests.Session | None = None,
    timeout: float = DEFAULT_SUMMARY_TIMEOUT,
) -> bytes:
    client = session or requests.Session()
    try:
        resp = client.get(url, timeout=timeout)
    except requests.RequestException as exc:
        raise SummarizeError(f"Failed to download {url}: {exc}") from exc
    finally:
        if session is None:
            client.close()
    if resp.status_code != 200:
        raise SummarizeError(f"Download of {url} failed with status {resp.status_code}")
    return resp.content


def build_chat_request(prompt: str, text: str, model: str = DEFAULT_MODEL) -> dict:
    return {
        "model": model,
        "response_format": {"type": "json_object"},
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "system", "content": prompt},
            {"role": "user", "content": text},
        ],
    }


def _require_api_key(api_key: str) -> None:
    if not api_key.strip():
        raise SummarizeError("An OpenAI API key is required to summarize.")


def summarize_text(
    api_key: str,
    prompt: str,
    text: str,
    *,
    model: str = DEFAULT_MODEL,
    session: requests.Session | None = None,
    timeout: float = DEFAULT_SUMMARY_TIMEOUT,
) -> SummarizedPaper:
    _require_api_key(api_key)
    client = session or requests.Session()
    try:
        resp = client.post(
            OPENAI_CHAT_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            json=build_chat_request(prompt, text, model),
            timeout=timeout,
        )
    except requests.RequestException as exc:
        raise SummarizeError(f"Failed to contact OpenAI: {exc}") from exc
    finally:
        if session is None:
            client.close()
    if resp.status_code != 200:
        raise SummarizeError(f"OpenAI request failed with status {resp.status_code}: {resp.text}")
    try:
        payload = resp.json()
    except (json.JSONDecodeError, ValueError) as exc:
        raise SummarizeError("OpenAI returned invalid JSON.") from exc
    try:
        content = payload["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        content = None
    if not isinstance(content, str):
        raise SummarizeError("OpenAI response did not include a summary.")
    try:
        return SummarizedPaper.from_payload(content)
    except ValueError as exc:
        raise SummarizeError(f"Summary could not be parsed: {exc}") from exc


def summarize_from_local(
    api_key: str,
    path: Path,
    prompt: str,
    **kwargs,
) -> SummarizedPaper:
    _require_api_key(api_key)
    text = extract_pdf_text(Path(path).expanduser())
    return summarize_text(api_key, prompt, text, **kwargs)


def summarize_from_url(
    api_key: str,
    url: str,
    prompt: str,
    *,
    session: requests.Session | None = None,
    timeout: float = DEFAULT_SUMMARY_TIMEOUT,
    **kwargs,
) -> SummarizedPaper:
    _require_api_key(api_key)
    document = fetch_pdf(url, session=session, timeout=timeout)
    text = extract_pdf_text(document)
    return summarize_text(api_key, prompt, text, session=session, timeout=timeout, **kwargs)


__all__ = [
    "DEFAULT_MODEL",
    "SYSTEM_PROMPT",
    "SummarizeError",
    "build_chat_request",
    "extract_pdf_text",
    "fetch_pdf",
    "summarize_from_local",
    "summarize_from_url",
    "summarize_text",
]
