from __future__ import annotations

import asyncio
from typing import Iterable
from urllib.parse import urlparse

import httpx

from xhs_relay.core.config import Settings
from xhs_relay.domain.models import VideoProbe

ACCESSIBLE_STATUSES = {200, 206}

_EXPECTED_TYPES = {
    ".mp4": ("video/mp4",),
    ".mov": ("video/quicktime",),
    ".webm": ("video/webm",),
    ".m3u8": ("mpegurl",),
    ".mpd": ("dash+xml",),
}


def _extension(url: str) -> str:
    path = urlparse(url).path.lower()
    for ext in _EXPECTED_TYPES:
        if path.endswith(ext):
            return ext
    # CDN video URLs sometimes carry ".mp4" mid-path or in the query.
    return ".mp4" if ".mp4" in url.lower() else ""


def _type_matches(content_type: str, ext: str) -> bool:
    ct = (content_type or "").lower()
    if not ct:
        return False
    expected = _EXPECTED_TYPES.get(ext)
    if expected:
        return any(e in ct for e in expected)
    return ct.startswith("video/")


def probe_headers(settings: Settings) -> dict[str, str]:
    return {
        "User-Agent": settings.user_agent,
        "Referer": settings.site_referer,
        "Range": "bytes=0-",
        "Accept-Encoding": "identity;q=1, *;q=0",
    }


def _evaluate(url: str, resp: httpx.Response) -> VideoProbe:
    ext = _extension(url)
    final_url = str(resp.url)
    ctype = (resp.headers.get("content-type") or "").split(";", 1)[0].strip()
    ok_status = resp.status_code in ACCESSIBLE_STATUSES
    ext_kept = bool(ext) and urlparse(final_url).path.lower().endswith(ext)
    return VideoProbe(
        url=url,
        final_url=final_url,
        status=resp.status_code,
        content_type=ctype,
        accessible=ok_status and (_type_matches(ctype, ext) or ext_kept),
    )


async def probe_video(client: httpx.AsyncClient, url: str, settings: Settings) -> VideoProbe:
    """HEAD with a byte range; fall back to a streamed GET (body never read)."""
    headers = probe_headers(settings)
    head_probe: VideoProbe | None = None
    try:
        head = await client.head(url, headers=headers, follow_redirects=True)
        head_probe = _evaluate(url, head)
        if head_probe.accessible and _type_matches(head_probe.content_type, _extension(url)):
            return head_probe
    except httpx.HTTPError as exc:
        head_probe = VideoProbe(url=url, error=f"HEAD: {exc.__class__.__name__}")

    try:
        async with client.stream("GET", url, headers=headers, follow_redirects=True) as resp:
            return _evaluate(url, resp)
    except httpx.HTTPError as exc:
        if head_probe is not None and head_probe.status:
            return head_probe
        return VideoProbe(url=url, error=f"GET: {exc.__class__.__name__}")


async def verify_videos(client: httpx.AsyncClient, urls: Iterable[str], settings: Settings) -> list[VideoProbe]:
    """Probe up to ``verify_max`` URLs concurrently; one failing probe never cancels the rest."""
    sample = list(urls)[: settings.verify_max]
    if not sample:
        return []
    results = await asyncio.gather(*(probe_video(client, u, settings) for u in sample), return_exceptions=True)
    probes: list[VideoProbe] = []
    for url, res in zip(sample, results):
        if isinstance(res, BaseException):
            if isinstance(res, asyncio.CancelledError):
                raise res
            probes.append(VideoProbe(url=url, error=f"{res.__class__.__name__}: {res}"))
        else:
            probes.append(res)
    return probes
