"""Multi-pass media stream extraction.

Passes run independently and their union is deduplicated by URL without
query string (first seen wins):

* **element** — ``<video>``, ``<audio>``, ``<source>`` and embed elements.
* **global** — well-known player globals and config objects on ``window``.
* **pattern** — HLS/DASH/progressive regexes over inline scripts and markup.

The three passes repeat for every child frame up to a cap, and a
``response`` listener can record stream URLs seen on the network while the
scan runs.  A pass that fails contributes nothing; extraction itself never
fails.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable
from urllib.parse import urljoin

from steadyhand.models.extraction import (
    DetectionMethod,
    ExtractionRecord,
    ExtractionResult,
    classify_url,
)
from steadyhand.settings.config import ExtractionSettings

if TYPE_CHECKING:
    from playwright.async_api import Frame, Response

    from steadyhand.browser.session import BrowserSession

logger = logging.getLogger(__name__)

STREAM_URL_RE = re.compile(r"\.(m3u8|mpd|mp4|webm|og[gv]|ts|m4s|f4m|ism)(\?|$)", re.I)

# Applied to concatenated inline script text and markup
_STREAM_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"""https?://[^\s"'<>\\]+\.m3u8[^\s"'<>\\]*""", re.I), "hls"),
    (re.compile(r"""["']([^"'\s]*\.m3u8[^"'\s]*)["']""", re.I), "hls"),
    (re.compile(r"""hlsUrl\s*[=:]\s*["']([^"']+)["']""", re.I), "hls"),
    (re.compile(r"""https?://[^\s"'<>\\]+\.mpd[^\s"'<>\\]*""", re.I), "dash"),
    (re.compile(r"""["']([^"'\s]*\.mpd[^"'\s]*)["']""", re.I), "dash"),
    (re.compile(r"""dashUrl\s*[=:]\s*["']([^"']+)["']""", re.I), "dash"),
    (re.compile(r"""manifest(?:Url)?\s*[=:]\s*["']([^"']+)["']""", re.I), ""),
    (re.compile(r"""(?:file|src|source|url)\s*[=:]\s*["']([^"']+\.(?:mp4|webm|m4v|ogv)(?:\?[^"']*)?)["']""", re.I), "video"),
]

_ELEMENT_PASS_JS = """
() => {
    const out = [];
    const push = (url, hint, source) => { if (url) out.push({ url, hint, source }); };
    document.querySelectorAll('video, audio').forEach(el => {
        const tag = el.tagName.toLowerCase();
        push(el.currentSrc || el.src || el.getAttribute('src'), tag, tag + '[src]');
        el.querySelectorAll('source').forEach(s => push(s.src || s.getAttribute('src'), tag, tag + ' > source'));
    });
    document.querySelectorAll('source[src], embed[src], object[data], [data-src], [data-video-src], [data-hls], [data-stream]').forEach(el => {
        const url = el.src || el.getAttribute('data') || el.dataset.src || el.dataset.videoSrc
            || el.dataset.hls || el.dataset.stream;
        push(url, '', el.tagName.toLowerCase());
    });
    document.querySelectorAll('iframe[src]').forEach(el => push(el.src, 'embed', 'iframe'));
    return out;
}
"""

_GLOBAL_PASS_JS = """
(catalogue) => {
    const out = [];
    const push = (url, source) => { if (typeof url === 'string' && url) out.push({ url, hint: '', source }); };
    const fromSources = (list, source) => {
        if (!Array.isArray(list)) return;
        for (const entry of list) {
            if (typeof entry === 'string') push(entry, source);
            else if (entry) push(entry.file || entry.src || entry.url, source);
        }
    };
    for (const name of catalogue.vars) {
        try {
            const value = window[name];
            if (typeof value === 'string') push(value, 'window.' + name);
            else if (Array.isArray(value)) fromSources(value, 'window.' + name);
        } catch (e) {}
    }
    for (const name of catalogue.configs) {
        try {
            const cfg = window[name];
            if (!cfg || typeof cfg !== 'object') continue;
            fromSources(cfg.sources, 'window.' + name + '.sources');
            push(cfg.source, 'window.' + name + '.source');
            push(cfg.file, 'window.' + name + '.file');
            push(cfg.url, 'window.' + name + '.url');
            if (Array.isArray(cfg.playlist)) {
                cfg.playlist.forEach(item => item && fromSources(item.sources, 'window.' + name + '.playlist'));
            }
        } catch (e) {}
    }
    try {
        if (typeof window.jwplayer === 'function') {
            const player = window.jwplayer();
            const playlist = player && player.getPlaylist ? player.getPlaylist() : [];
            (playlist || []).forEach(item => {
                push(item.file, 'jwplayer.playlist');
                fromSources(item.sources, 'jwplayer.playlist');
            });
        }
    } catch (e) {}
    try { fromSources(window.__streamUrls, 'window.__streamUrls'); } catch (e) {}
    return out;
}
"""

_MARKUP_JS = """
(limit) => {
    const scripts = Array.from(document.querySelectorAll('script:not([src])'))
        .map(s => s.textContent || '')
        .join('\\n');
    const markup = document.documentElement ? document.documentElement.outerHTML : '';
    return (scripts + '\\n' + markup).slice(0, limit);
}
"""

GLOBAL_VARIABLES: tuple[str, ...] = (
    "videoSrc",
    "videoUrl",
    "streamUrl",
    "source",
    "sources",
    "hlsUrl",
    "dashUrl",
    "manifestUrl",
    "playlistUrl",
    "cdnUrl",
    "playbackUrl",
    "contentUrl",
)

PLAYER_CONFIGS: tuple[str, ...] = (
    "playerConfig",
    "videoPlayerConfig",
    "jwplayerConfig",
    "videojsConfig",
    "plyrConfig",
    "clapprConfig",
    "flowplayerConfig",
    "mediaelementConfig",
    "dplayerConfig",
    "artplayerConfig",
    "vidstackConfig",
)


def is_stream_url(url: str) -> bool:
    """Return ``True`` for URLs that look like media streams or manifests."""
    if not url:
        return False
    if url.startswith(("blob:", "mediasource:")):
        return True
    lowered = url.lower()
    return bool(STREAM_URL_RE.search(url)) or "manifest" in lowered or "playlist" in lowered


@dataclass
class Candidate:
    """A raw URL proposed by a pass, before normalization."""

    url: str
    hint: str = ""
    source: str = ""


# ---------------------------------------------------------------------------
# Passes
# ---------------------------------------------------------------------------


@runtime_checkable
class ExtractionPass(Protocol):
    """One heuristic scan over a single frame."""

    method: DetectionMethod

    async def run(self, frame: Frame) -> list[Candidate]:
        ...


class ElementPass:
    """Read source attributes of media elements directly."""

    method = DetectionMethod.ELEMENT

    async def run(self, frame: Frame) -> list[Candidate]:
        raw = await frame.evaluate(_ELEMENT_PASS_JS)
        out: list[Candidate] = []
        for item in raw or []:
            url = item.get("url") or ""
            hint = item.get("hint") or ""
            if url.startswith("data:"):
                continue
            # Direct media element sources count even without a stream extension
            if hint in ("video", "audio") or is_stream_url(url):
                out.append(Candidate(url=url, hint=hint, source=item.get("source", "")))
            elif hint == "embed" and ("player" in url.lower() or "embed" in url.lower()):
                out.append(Candidate(url=url, hint="embed", source="iframe"))
        return out


class GlobalStatePass:
    """Look up well-known globals and player config objects on ``window``."""

    method = DetectionMethod.GLOBAL

    async def run(self, frame: Frame) -> list[Candidate]:
        raw = await frame.evaluate(
            _GLOBAL_PASS_JS,
            {"vars": list(GLOBAL_VARIABLES), "configs": list(PLAYER_CONFIGS)},
        )
        return [
            Candidate(url=item["url"], source=item.get("source", ""))
            for item in raw or []
            if is_stream_url(item.get("url", ""))
        ]


class PatternPass:
    """Regex scan over inline script text and markup."""

    method = DetectionMethod.PATTERN

    def __init__(self, max_chars: int = 500_000) -> None:
        self.max_chars = max_chars

    async def run(self, frame: Frame) -> list[Candidate]:
        text = await frame.evaluate(_MARKUP_JS, self.max_chars)
        return scan_text(text or "")


def scan_text(text: str) -> list[Candidate]:
    """Apply the stream regexes to *text*, preserving match order per pattern."""
    out: list[Candidate] = []
    seen: set[str] = set()
    for pattern, hint in _STREAM_PATTERNS:
        for match in pattern.finditer(text):
            url = (match.group(1) if match.groups() else match.group(0)).replace("\\/", "/")
            url = url.replace("&amp;", "&")
            if url in seen or not is_stream_url(url):
                continue
            seen.add(url)
            out.append(Candidate(url=url, hint=hint, source=pattern.pattern[:40]))
    return out


def default_passes(max_markup_chars: int = 500_000) -> list[ExtractionPass]:
    return [ElementPass(), GlobalStatePass(), PatternPass(max_chars=max_markup_chars)]


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ExtractionEngine:
    """Run every pass on every scanned frame and merge the results.

    Args:
        session: The injected browser session.
        settings: Frame cap, network capture and markup limits.
        passes: Override the pass list (order decides first-seen wins).
    """

    def __init__(
        self,
        session: BrowserSession,
        settings: ExtractionSettings | None = None,
        passes: list[ExtractionPass] | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or ExtractionSettings()
        self._passes = passes if passes is not None else default_passes(self._settings.max_markup_chars)

    async def extract(
        self,
        *,
        scan_frames: bool = True,
        max_frames: int | None = None,
        capture_network: bool | None = None,
        capture_window_ms: int | None = None,
    ) -> ExtractionResult:
        """Scan the page and return the deduplicated records.

        Args:
            scan_frames: Repeat the passes for child frames.
            max_frames: Cap on child frames scanned (main frame always included).
            capture_network: Record stream URLs seen in responses during the scan.
            capture_window_ms: Extra time to keep listening after the passes.
        """
        page = self._session.page
        result = ExtractionResult()
        network_hits: list[Candidate] = []
        capture = self._settings.capture_network if capture_network is None else capture_network
        window_ms = self._settings.capture_window_ms if capture_window_ms is None else capture_window_ms

        def on_response(response: Response) -> None:
            url = response.url
            content_type = (response.headers or {}).get("content-type", "")
            if is_stream_url(url) or "mpegurl" in content_type or "dash+xml" in content_type:
                network_hits.append(Candidate(url=url, source=content_type))

        if capture:
            page.on("response", on_response)
        try:
            for index, frame in enumerate(self._frames(scan_frames, max_frames)):
                result.frames_scanned += 1
                await self._scan_frame(frame, index, result)
            if capture and window_ms > 0:
                await asyncio.sleep(window_ms / 1000)
        finally:
            if capture:
                page.remove_listener("response", on_response)

        for hit in network_hits:
            self._add(result, hit, DetectionMethod.NETWORK, 0, page.url)

        logger.info(
            "Extraction found %d record(s) across %d frame(s) (%d pass error(s))",
            len(result.records),
            result.frames_scanned,
            len(result.pass_errors),
        )
        return result

    def _frames(self, scan_frames: bool, max_frames: int | None) -> list[Frame]:
        page = self._session.page
        main = page.main_frame
        if not scan_frames:
            return [main]
        cap = self._settings.max_frames if max_frames is None else max_frames
        children = []
        for frame in page.frames:
            if frame is main:
                continue
            if frame.is_detached() or not frame.url or frame.url == "about:blank":
                logger.debug("Skipping unloaded frame %r", frame.url)
                continue
            children.append(frame)
        return [main, *children[:cap]]

    async def _scan_frame(self, frame: Frame, index: int, result: ExtractionResult) -> None:
        frame_url = frame.url
        for extraction_pass in self._passes:
            try:
                candidates = await extraction_pass.run(frame)
            except Exception as exc:
                message = f"{extraction_pass.method.value}@frame{index}: {exc}"
                logger.warning("Extraction pass failed: %s", message)
                result.pass_errors.append(message)
                continue
            for candidate in candidates:
                self._add(result, candidate, extraction_pass.method, index, frame_url)

    @staticmethod
    def _add(
        result: ExtractionResult,
        candidate: Candidate,
        method: DetectionMethod,
        frame_index: int,
        frame_url: str,
    ) -> None:
        url = candidate.url.strip()
        if not url:
            return
        if not url.startswith(("http://", "https://", "blob:", "mediasource:")) and frame_url:
            url = urljoin(frame_url, url)
        record = ExtractionRecord(
            url=url,
            kind=classify_url(url, candidate.hint),
            detection_method=method,
            source=candidate.source,
            frame_index=frame_index,
            frame_url=frame_url,
        )
        result.add(record)
