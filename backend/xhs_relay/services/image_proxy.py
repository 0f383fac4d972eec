from __future__ import annotations

from typing import Iterator
from urllib.parse import urlparse

import requests

from xhs_relay.core.config import Settings

CACHE_CONTROL = "public, max-age=86400"
CHUNK_SIZE = 64 * 1024


def _safe_allowed(url: str, strict: bool = True) -> bool:
    try:
        p = urlparse(url)
    except ValueError:
        return False
    if p.scheme not in {"http", "https"} or not p.hostname:
        return False
    if not strict:
        return True

    host = p.hostname.lower()
    # Strict suffix match on known XHS media hosts (no substring SSRF):
    # - sns-webpic-*.xhscdn.com / sns-video-*.xhscdn.com: note media
    # - *.xhsimg.com: legacy
    # - picasso-static.xiaohongshu.com: web assets occasionally used as og:image
    if host == "picasso-static.xiaohongshu.com":
        return True
    return host.endswith((".xhscdn.com", ".xhsimg.com")) or host in {"xhscdn.com", "xhsimg.com"}


def upstream_headers(settings: Settings) -> dict[str, str]:
    headers = {
        "User-Agent": settings.user_agent,
        "Referer": settings.site_referer,
        "Accept": "image/avif,image/webp,image/apng,image/*,*/*;q=0.8",
    }
    if settings.cookie:
        headers["Cookie"] = settings.cookie
    return headers


def open_image(url: str, settings: Settings) -> requests.Response:
    """Open a streamed upstream response. Raises ValueError for URLs the proxy refuses.

    Network failures propagate as ``requests.RequestException``; the caller owns the
    response and must close it (see ``iter_body``).
    """
    url = (url or "").strip()
    if not url:
        raise ValueError("url required")
    if not _safe_allowed(url, strict=settings.proxy_strict_hosts):
        raise ValueError("image url not allowed")
    return requests.get(url, headers=upstream_headers(settings), timeout=settings.http_timeout_s, stream=True)


def content_type_of(resp: requests.Response) -> str:
    return (resp.headers.get("content-type") or "application/octet-stream").split(";", 1)[0].strip()


def iter_body(resp: requests.Response, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    try:
        for chunk in resp.iter_content(chunk_size=chunk_size):
            if chunk:
                yield chunk
    finally:
        resp.close()
