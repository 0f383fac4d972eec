from __future__ import annotations

import html
import re
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx

from xhs_relay.core.config import Settings
from xhs_relay.domain.errors import FetchFailed


@dataclass
class FetchedPage:
    url: str
    final_url: str
    status: int
    html: str


def _origin(url: str) -> str:
    p = urlparse(url)
    if p.scheme in {"http", "https"} and p.netloc:
        return f"{p.scheme}://{p.netloc}/"
    return ""


def page_headers(url: str, settings: Settings) -> dict[str, str]:
    # XHS blocks requests that lack a same-site referer.
    headers = {
        "User-Agent": settings.user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
        "Accept-Language": settings.accept_language,
        "Referer": _origin(url) or settings.site_referer,
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": '"macOS"',
    }
    if settings.cookie:
        headers["Cookie"] = settings.cookie
    return headers


async def fetch_page(client: httpx.AsyncClient, url: str, settings: Settings) -> FetchedPage:
    try:
        resp = await client.get(url, headers=page_headers(url, settings), follow_redirects=True)
    except httpx.HTTPError as exc:
        raise FetchFailed(f"Failed to fetch page: {exc.__class__.__name__}: {exc}") from exc

    if not resp.is_success:
        raise FetchFailed(f"Failed to fetch page: HTTP {resp.status_code}", http_status=resp.status_code)

    return FetchedPage(url=url, final_url=str(resp.url), status=resp.status_code, html=resp.text or "")


def _collapse_text(value: str) -> str:
    return re.sub(r"\s+", " ", (value or "").strip())


def _extract_meta(html_text: str, key: str) -> str:
    patterns = [
        rf'<meta[^>]+property=["\']{re.escape(key)}["\'][^>]+content=["\']([^"\']*)["\']',
        rf'<meta[^>]+content=["\']([^"\']*)["\'][^>]+property=["\']{re.escape(key)}["\']',
        rf'<meta[^>]+name=["\']{re.escape(key)}["\'][^>]+content=["\']([^"\']*)["\']',
        rf'<meta[^>]+content=["\']([^"\']*)["\'][^>]+name=["\']{re.escape(key)}["\']',
    ]
    for pattern in patterns:
        match = re.search(pattern, html_text, flags=re.IGNORECASE)
        if match:
            return html.unescape(match.group(1)).strip()
    return ""


def _clean_title(title: str) -> str:
    """Strip the site suffix and collapse whitespace."""
    t = _collapse_text(title or "")
    if not t:
        return ""
    return re.sub(r"\s*[-|｜]\s*小红书\s*$", "", t).strip()


def extract_title(html_text: str) -> str:
    meta_title = _extract_meta(html_text or "", "og:title")
    if meta_title:
        return _clean_title(meta_title)
    match = re.search(r"<title[^>]*>(.*?)</title>", html_text or "", flags=re.IGNORECASE | re.DOTALL)
    if not match:
        return ""
    return _clean_title(html.unescape(match.group(1)))
