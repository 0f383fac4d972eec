"""Candidate media URL mining.

XHS serves extension-less CDN URLs and escapes them inside inline JSON
(``http:\\u002F\\u002Fsns-webpic-qc.xhscdn.com\\u002F...``), so a single
tag/extension scan misses most assets. Several overlapping passes run over the
same HTML and their union is handed to the classifier; duplicates are expected
and collapsed later.

Tag and data-attribute scans go through a ``TagScanner`` so a DOM parser can
replace the regex implementation without touching the CDN sweeps.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Protocol
from urllib.parse import parse_qsl, quote, unquote, urlparse

from xhs_relay.core.config import Settings
from xhs_relay.domain.models import CandidateLink, SourcePass

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".gif", ".heic", ".avif")
VIDEO_EXTENSIONS = (".mp4", ".mov", ".webm", ".m4v")
MANIFEST_EXTENSIONS = (".m3u8", ".mpd")

SCRIPT_JSON_KEYS = (
    "url",
    "image",
    "imageUrl",
    "picUrl",
    "pic",
    "src",
    "cover",
    "thumbnail",
    "masterUrl",
    "urlDefault",
    "urlPre",
)
TAG_SRC_NAMES = ("img", "video", "source")
DATA_ATTRIBUTES = (
    "data-src",
    "data-url",
    "data-image",
    "data-original",
    "data-lazy-src",
    "data-clipboard-text",
    "data-href",
)
# Query keys under which helper/download endpoints carry the real media URL.
EMBEDDED_URL_KEYS = frozenset(
    {"url", "u", "target", "link", "down", "download", "dl", "file", "f", "media", "media_url", "src", "s"}
)

_UNICODE_ESCAPE_RE = re.compile(r"\\u([0-9a-fA-F]{4})")
_AMP_ENTITY_RE = re.compile(r"&amp;", re.IGNORECASE)
_SCRIPT_RE = re.compile(r"<script\b[^>]*>(.*?)</script>", re.IGNORECASE | re.DOTALL)
_ABS_URL_RE = re.compile(r"https?://[^\s\"'<>]+", re.IGNORECASE)
_ENCODED_URL_RE = re.compile(r"^https?%3A%2F%2F", re.IGNORECASE)
_TRAILING_CHARS = "\\，。,.;；)）]}>\"'"
# Reserved characters stay literal when a decoded URL is re-quoted.
_URL_SAFE_CHARS = ":/?#[]@!$&'()*+,;=%~"


def decode_escapes(text: str) -> str:
    """Decode ``\\uXXXX`` escapes and ``\\/`` as they appear inside inline JSON."""
    text = _UNICODE_ESCAPE_RE.sub(lambda m: chr(int(m.group(1), 16)), text or "")
    return text.replace("\\/", "/")


def normalize_candidate(raw: str) -> str:
    u = decode_escapes((raw or "").strip())
    u = _AMP_ENTITY_RE.sub("&", u)
    while u and u[-1] in _TRAILING_CHARS:
        u = u[:-1]
    if _ENCODED_URL_RE.match(u):
        u = quote(unquote(u), safe=_URL_SAFE_CHARS)
    if u.startswith("//"):
        u = "https:" + u
    return u


def is_absolute_http(url: str) -> bool:
    try:
        p = urlparse(url)
    except ValueError:
        return False
    return p.scheme in {"http", "https"} and bool(p.netloc)


def path_extension_in(url: str, extensions: Iterable[str]) -> bool:
    try:
        path = urlparse(url).path.lower()
    except ValueError:
        return False
    return path.endswith(tuple(extensions))


def embedded_urls(url: str) -> list[str]:
    try:
        query = urlparse(url).query
    except ValueError:
        return []
    out: list[str] = []
    for key, value in parse_qsl(query, keep_blank_values=False):
        if key.lower() in EMBEDDED_URL_KEYS and value.lower().startswith(("http://", "https://")):
            out.append(value)
    return out


class TagScanner(Protocol):
    def scan_src(self, html_text: str, tags: Iterable[str]) -> Iterator[tuple[str, str, str]]:
        """Yield ``(tag, value, raw)`` for each ``src`` attribute of the given tags."""

    def scan_attributes(self, html_text: str, attributes: Iterable[str]) -> Iterator[tuple[str, str, str]]:
        """Yield ``(attribute, value, raw)`` for each occurrence of the given attributes."""


class RegexTagScanner:
    """Regex scanner; tolerant of the malformed markup XHS and helper sites emit."""

    def scan_src(self, html_text: str, tags: Iterable[str]) -> Iterator[tuple[str, str, str]]:
        names = "|".join(re.escape(t) for t in tags)
        pattern = re.compile(
            rf"<({names})\b[^>]*?(?<![\w-])src\s*=\s*([\"'])(.*?)\2",
            re.IGNORECASE | re.DOTALL,
        )
        for m in pattern.finditer(html_text or ""):
            yield m.group(1).lower(), m.group(3), m.group(0)

    def scan_attributes(self, html_text: str, attributes: Iterable[str]) -> Iterator[tuple[str, str, str]]:
        names = "|".join(re.escape(a) for a in attributes)
        pattern = re.compile(rf"(?<![\w-])({names})\s*=\s*([\"'])(.*?)\2", re.IGNORECASE | re.DOTALL)
        for m in pattern.finditer(html_text or ""):
            yield m.group(1).lower(), m.group(3), m.group(0)


@dataclass(frozen=True)
class MinerConfig:
    cdn_fragment: str = "xhscdn"
    script_json_keys: tuple[str, ...] = SCRIPT_JSON_KEYS
    tag_names: tuple[str, ...] = TAG_SRC_NAMES
    data_attributes: tuple[str, ...] = DATA_ATTRIBUTES
    passes: tuple[SourcePass, ...] = (
        SourcePass.SCRIPT_JSON,
        SourcePass.IMG_TAG,
        SourcePass.VIDEO_TAG,
        SourcePass.DATA_ATTR,
        SourcePass.GENERIC_SWEEP,
    )

    @classmethod
    def from_settings(cls, settings: Settings) -> "MinerConfig":
        return cls(cdn_fragment=settings.cdn_fragment)


class MediaMiner:
    def __init__(self, config: Optional[MinerConfig] = None, scanner: Optional[TagScanner] = None):
        self.config = config or MinerConfig()
        self.scanner = scanner or RegexTagScanner()
        frag = re.escape(self.config.cdn_fragment)
        self._cdn_url_re = re.compile(rf"https?://[^\s\"'<>]*?{frag}[^\s\"'<>]*", re.IGNORECASE)
        keys = "|".join(re.escape(k) for k in self.config.script_json_keys)
        self._json_kv_re = re.compile(rf"\"(?:{keys})\"\s*:\s*\"([^\"]+)\"", re.IGNORECASE)

    def mine(self, html_text: str) -> list[CandidateLink]:
        """Run every configured pass; first discovery of a URL wins."""
        found: dict[str, CandidateLink] = {}
        runners = {
            SourcePass.SCRIPT_JSON: self._script_json_pass,
            SourcePass.IMG_TAG: self._tag_pass,
            SourcePass.VIDEO_TAG: self._tag_pass,
            SourcePass.DATA_ATTR: self._data_attr_pass,
            SourcePass.GENERIC_SWEEP: self._generic_sweep_pass,
        }
        seen_runners = set()
        for source_pass in self.config.passes:
            runner = runners[source_pass]
            if runner in seen_runners:
                continue
            seen_runners.add(runner)
            for cand in runner(html_text or ""):
                if cand.source_pass not in self.config.passes:
                    continue
                self._add(found, cand)
        return list(found.values())

    def _add(self, found: dict[str, CandidateLink], cand: CandidateLink) -> None:
        url = normalize_candidate(cand.url)
        if not is_absolute_http(url):
            return
        if url not in found:
            found[url] = CandidateLink(url=url, source_pass=cand.source_pass, raw_context=cand.raw_context)
        for inner in embedded_urls(url):
            inner = normalize_candidate(inner)
            if is_absolute_http(inner) and inner not in found:
                found[inner] = CandidateLink(url=inner, source_pass=cand.source_pass, raw_context=url)

    def _script_json_pass(self, html_text: str) -> Iterator[CandidateLink]:
        for script in _SCRIPT_RE.finditer(html_text):
            body = decode_escapes(script.group(1))
            if not body.strip():
                continue
            for m in self._json_kv_re.finditer(body):
                value = m.group(1)
                if value.lower().startswith(("http", "//")):
                    yield CandidateLink(url=value, source_pass=SourcePass.SCRIPT_JSON, raw_context=m.group(0))
            # CDN URLs often have no extension; never require one here.
            for m in self._cdn_url_re.finditer(body):
                yield CandidateLink(url=m.group(0), source_pass=SourcePass.SCRIPT_JSON, raw_context=m.group(0))

    def _tag_pass(self, html_text: str) -> Iterator[CandidateLink]:
        for tag, value, raw in self.scanner.scan_src(html_text, self.config.tag_names):
            source_pass = SourcePass.IMG_TAG if tag == "img" else SourcePass.VIDEO_TAG
            yield CandidateLink(url=value, source_pass=source_pass, raw_context=raw)

    def _data_attr_pass(self, html_text: str) -> Iterator[CandidateLink]:
        for _attr, value, raw in self.scanner.scan_attributes(html_text, self.config.data_attributes):
            yield CandidateLink(url=value, source_pass=SourcePass.DATA_ATTR, raw_context=raw)

    def _generic_sweep_pass(self, html_text: str) -> Iterator[CandidateLink]:
        frag = self.config.cdn_fragment.lower()
        media_exts = IMAGE_EXTENSIONS + VIDEO_EXTENSIONS + MANIFEST_EXTENSIONS
        for m in _ABS_URL_RE.finditer(html_text):
            url = normalize_candidate(m.group(0))
            if frag in url.lower() or path_extension_in(url, media_exts):
                yield CandidateLink(url=url, source_pass=SourcePass.GENERIC_SWEEP, raw_context=m.group(0))


def debug_candidates(candidates: Iterable[CandidateLink], limit: int = 20) -> list[str]:
    """A few media-looking candidates for client-side troubleshooting."""
    interesting = re.compile(r"mp4|xhscdn|video|download|dl=|down=", re.IGNORECASE)
    out: list[str] = []
    for cand in candidates:
        if interesting.search(cand.url) and cand.url not in out:
            out.append(cand.url)
            if len(out) >= limit:
                break
    return out
