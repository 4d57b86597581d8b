from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping

OPENING_LINE = "要約の読み上げを開始します．"
TITLE_LINE = "{index}件目，タイトルは「{title}」です．"
UNTITLED_LINE = "{index}件目，タイトルはありません．"
CLOSING_LINE = "以上，{count}件の要約を読み上げました．"


@dataclass(frozen=True)
class SummarizedPaper:
    title: str
    body: str

    @classmethod
    def from_payload(cls, payload: object) -> "SummarizedPaper":
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as exc:
                raise ValueError("Summary is not valid JSON.") from exc
        if not isinstance(payload, Mapping):
            raise ValueError("Summary must be a JSON object with title and body.")
        body = payload.get("body")
        if not isinstance(body, str):
            raise ValueError("Summary is missing a body.")
        title = payload.get("title")
        # The summarizer reports an unknown title as null.
        if not isinstance(title, str):
            title = ""
        return cls(title=title, body=body)

    def as_payload(self) -> dict[str, str]:
        return {"title": self.title, "body": self.body}


class SegmentKind(str, Enum):
    OPENING = "opening"
    TITLE = "title"
    BODY = "body"
    CLOSING = "closing"


@dataclass(frozen=True)
class NarrationSegment:
    kind: SegmentKind
    text: str
    index: int | None = None


def title_line(index: int, title: str) -> str:
    if title:
        return TITLE_LINE.format(index=index, title=title)
    return UNTITLED_LINE.format(index=index)


def build_segments(papers: Iterable[SummarizedPaper]) -> list[NarrationSegment]:
    """
    Flatten papers into the spoken sequence: opening, title and body per paper
    in list order, then the closing tally.
    """
    segments = [NarrationSegment(SegmentKind.OPENING, OPENING_LINE)]
    count = 0
    for count, paper in enumerate(papers, start=1):
        segments.append(
            NarrationSegment(SegmentKind.TITLE, title_line(count, paper.title), count)
        )
        segments.append(NarrationSegment(SegmentKind.BODY, paper.body, count))
    segments.append(NarrationSegment(SegmentKind.CLOSING, CLOSING_LINE.format(count=count)))
    return segments


__all__ = [
    "CLOSING_LINE",
    "NarrationSegment",
    "OPENING_LINE",
    "SegmentKind",
    "SummarizedPaper",
    "build_segments",
    "title_line",
]
