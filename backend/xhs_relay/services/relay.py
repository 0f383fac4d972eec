"""Replay a captured helper-site request to harvest extra media URLs.

The headers/body come from an operator-supplied JSON template
(``XHS_RELAY_TEMPLATE``); the share link is injected into ``url_field``.
"""

from __future__ import annotations

import json
import re
import time
from typing import Any

import httpx

from xhs_relay.core.config import RelayTemplate, Settings
from xhs_relay.domain.errors import RelayFailed

_HTTP_RE = re.compile(r"https?://", re.IGNORECASE)
_URL_RE = re.compile(r"https?://[^\s\"'<>]+", re.IGNORECASE)


def build_relay_request(template: RelayTemplate, target_url: str, settings: Settings) -> tuple[dict[str, str], dict[str, Any]]:
    headers = {
        "User-Agent": settings.user_agent,
        "Accept-Language": settings.accept_language,
        "Accept": "application/json, text/plain, */*",
        "Content-Type": "application/json",
    }
    headers.update(template.headers)

    body = {k: v for k, v in template.body.items() if v not in (None, "")}
    body[template.url_field] = target_url
    if "ts" in template.body and not template.body.get("ts"):
        body["ts"] = int(time.time())
    return headers, body


def collect_urls(value: Any, out: list[str]) -> None:
    """Walk a decoded JSON value and collect every string that carries an http(s) URL."""
    if value is None:
        return
    if isinstance(value, str):
        if _HTTP_RE.search(value):
            out.append(value)
    elif isinstance(value, list):
        for item in value:
            collect_urls(item, out)
    elif isinstance(value, dict):
        for item in value.values():
            collect_urls(item, out)


async def fetch_relay_urls(client: httpx.AsyncClient, target_url: str, settings: Settings) -> list[str]:
    template = settings.relay_template
    if template is None:
        return []

    headers, body = build_relay_request(template, target_url, settings)
    try:
        resp = await client.post(template.endpoint, headers=headers, content=json.dumps(body), follow_redirects=True)
    except httpx.HTTPError as exc:
        raise RelayFailed(f"relay request failed: {exc.__class__.__name__}") from exc
    if not resp.is_success:
        raise RelayFailed(f"relay request failed: HTTP {resp.status_code}")

    found: list[str] = []
    try:
        collect_urls(resp.json(), found)
    except ValueError:
        found = [resp.text or ""]

    urls: list[str] = []
    for chunk in found:
        for u in _URL_RE.findall(chunk):
            if u not in urls:
                urls.append(u)
    return urls
