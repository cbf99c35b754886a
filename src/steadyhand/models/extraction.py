"""Stream/content extraction records."""

from __future__ import annotations

import re
from enum import Enum
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel, Field

_EXTENSION_KINDS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\.m3u8$", re.I), "hls"),
    (re.compile(r"\.(mpd|ism)$", re.I), "dash"),
    (re.compile(r"\.f4m$", re.I), "hds"),
    (re.compile(r"\.(mp4|m4v|webm|ogv|mov|mkv)$", re.I), "video"),
    (re.compile(r"\.(mp3|m4a|aac|oga|ogg|wav|opus|flac)$", re.I), "audio"),
    (re.compile(r"\.(ts|m4s)$", re.I), "segment"),
]


class StreamKind(str, Enum):
    HLS = "hls"
    DASH = "dash"
    HDS = "hds"
    VIDEO = "video"
    AUDIO = "audio"
    SEGMENT = "segment"
    BLOB = "blob"
    EMBED = "embed"
    OTHER = "other"


class DetectionMethod(str, Enum):
    ELEMENT = "element"
    GLOBAL = "global"
    PATTERN = "pattern"
    NETWORK = "network"


def dedup_key(url: str) -> str:
    """Normalize *url* for deduplication: drop query string and fragment."""
    if url.startswith(("blob:", "mediasource:")):
        return url
    parts = urlsplit(url)
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), parts.path, "", ""))


def classify_url(url: str, hint: str = "") -> StreamKind:
    """Guess the stream kind from the URL path, falling back to *hint*."""
    if url.startswith(("blob:", "mediasource:")):
        return StreamKind.BLOB
    path = urlsplit(url).path
    for pattern, kind in _EXTENSION_KINDS:
        if pattern.search(path):
            return StreamKind(kind)
    lowered = url.lower()
    if "manifest" in lowered and "dash" in lowered:
        return StreamKind.DASH
    if "playlist" in lowered or "manifest" in lowered:
        return StreamKind.HLS
    if hint in {k.value for k in StreamKind}:
        return StreamKind(hint)
    return StreamKind.OTHER


class ExtractionRecord(BaseModel):
    """One candidate resource found by an extraction pass."""

    url: str
    kind: StreamKind = StreamKind.OTHER
    detection_method: DetectionMethod
    source: str = ""
    frame_index: int = 0
    frame_url: str = ""

    @property
    def key(self) -> str:
        return dedup_key(self.url)


class ExtractionResult(BaseModel):
    """Deduplicated union of every pass over every scanned frame."""

    success: bool = True
    records: list[ExtractionRecord] = Field(default_factory=list)
    frames_scanned: int = 0
    pass_errors: list[str] = Field(default_factory=list)

    def add(self, record: ExtractionRecord) -> bool:
        """Add *record* unless its dedup key is already present (first seen wins)."""
        key = record.key
        if any(r.key == key for r in self.records):
            return False
        self.records.append(record)
        return True

    def urls(self) -> list[str]:
        return [r.url for r in self.records]

    def summary(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for record in self.records:
            counts[record.kind.value] = counts.get(record.kind.value, 0) + 1
        return counts

    def to_payload(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        data["summary"] = self.summary()
        return data
