"""Pull a share link out of pasted text and follow short-link redirects.

Share text from the XHS app looks like
``"标题... http://xhslink.com/o/abc123 复制本条信息..."``; the first absolute URL is
the link. Short links redirect (sometimes only for GET) to the canonical
``www.xiaohongshu.com`` note page.
"""

from __future__ import annotations

import re
from typing import Iterable
from urllib.parse import parse_qs, urlparse

import httpx

from xhs_relay.core.config import Settings
from xhs_relay.domain.errors import NoUrlFound, ResolutionFailed
from xhs_relay.domain.models import ResolvedTarget

# A URL ends at whitespace, quotes/brackets, CJK punctuation or full-width forms.
_URL_PATTERN = re.compile(r"https?://[^\s<>\"'\u3000-\u303f\uff00-\uffef]+", re.IGNORECASE)
_TRAILING_URL_CHARS = "，。,.!！?？\"'）)]}>;；、"

# Ranged GET is enough to observe the redirect chain without pulling the page.
SHORT_LINK_PROBE_RANGE = "bytes=0-8191"


def _strip_url(candidate: str) -> str:
    url = (candidate or "").strip()
    while url and url[-1] in _TRAILING_URL_CHARS:
        url = url[:-1]
    return url


def extract_urls(text: str) -> list[str]:
    out: list[str] = []
    for match in _URL_PATTERN.findall(text or ""):
        candidate = _strip_url(match)
        if candidate and urlparse(candidate).netloc and candidate not in out:
            out.append(candidate)
    return out


def extract_first_url(text: str) -> str:
    urls = extract_urls(text)
    if not urls:
        raise NoUrlFound()
    return urls[0]


def host_matches(host: str, domains: Iterable[str]) -> bool:
    """Strict suffix match: ``a.xhslink.com`` matches ``xhslink.com``, ``evilxhslink.com`` does not."""
    h = (host or "").lower().split(":", 1)[0]
    for d in domains:
        d = (d or "").lower().strip(".")
        if d and (h == d or h.endswith("." + d)):
            return True
    return False


def is_short_link(url: str, settings: Settings) -> bool:
    try:
        host = urlparse(url).netloc
    except ValueError:
        return False
    return host_matches(host, settings.short_link_hosts)


def unwrap_helper_url(url: str, settings: Settings) -> str:
    """Helper-site pages carry the real share link in ``?url=``."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    if not host_matches(parsed.netloc, settings.helper_hosts):
        return url
    embedded = (parse_qs(parsed.query).get("url") or [""])[0].strip()
    if embedded.lower().startswith(("http://", "https://")):
        return embedded
    return url


def _probe_headers(settings: Settings) -> dict[str, str]:
    return {
        "User-Agent": settings.user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": settings.accept_language,
    }


async def follow_short_link(client: httpx.AsyncClient, url: str, settings: Settings) -> str:
    """Landing URL of a short link; raises ResolutionFailed when neither probe gets through."""
    headers = _probe_headers(settings)
    final: str | None = None
    errors: list[str] = []

    try:
        head = await client.head(url, headers=headers, follow_redirects=True)
        final = str(head.url) or url
    except httpx.HTTPError as exc:
        errors.append(f"HEAD: {exc!r}")

    if final is None or is_short_link(final, settings):
        # HEAD not honored (or raised); a tiny ranged GET usually is.
        try:
            get = await client.get(url, headers={**headers, "Range": SHORT_LINK_PROBE_RANGE}, follow_redirects=True)
            final = str(get.url) or final or url
        except httpx.HTTPError as exc:
            errors.append(f"GET: {exc!r}")

    if final is None:
        raise ResolutionFailed("Failed to resolve short URL: " + "; ".join(errors))
    # Still on the short-link host after both attempts: proceed with whatever we got.
    return final


async def resolve_link(client: httpx.AsyncClient, url: str, settings: Settings) -> ResolvedTarget:
    """Resolve a short link to its landing URL.

    Never raises for network problems: on total failure ``resolution_error`` is
    set and ``canonical_url`` stays the original URL so extraction can still be
    attempted.
    """
    original = url
    url = unwrap_helper_url(url, settings)
    if not is_short_link(url, settings):
        return ResolvedTarget(original_url=original, canonical_url=url)
    try:
        final = await follow_short_link(client, url, settings)
    except ResolutionFailed as exc:
        return ResolvedTarget(original_url=original, canonical_url=url, resolution_error=str(exc))
    return ResolvedTarget(original_url=original, canonical_url=final)
