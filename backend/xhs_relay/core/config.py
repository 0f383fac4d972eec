from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/141.0.0.0 Safari/537.36"
)
DEFAULT_ACCEPT_LANGUAGE = "zh-CN,zh;q=0.9,en-US;q=0.8,en;q=0.7"


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off"}:
        return False
    return default


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or "").strip() or default


def env_list(name: str, default: tuple[str, ...] = ()) -> tuple[str, ...]:
    """Comma separated list; blank entries dropped."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return tuple(p.strip().lower() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class RelayTemplate:
    """Captured request replayed against a helper endpoint (headers/body injected, never hard-coded)."""

    endpoint: str
    headers: dict[str, str] = field(default_factory=dict)
    body: dict[str, Any] = field(default_factory=dict)
    url_field: str = "requestURL"

    @classmethod
    def load(cls, path: str | Path) -> "RelayTemplate":
        with open(Path(path).expanduser(), "r", encoding="utf-8") as f:
            raw = json.load(f)
        if not isinstance(raw, dict):
            raise ValueError("relay template must be a JSON object")
        endpoint = str(raw.get("endpoint") or "").strip()
        if not endpoint.startswith(("http://", "https://")):
            raise ValueError("relay template needs an absolute http(s) endpoint")
        headers = {str(k): str(v) for k, v in (raw.get("headers") or {}).items() if v not in (None, "")}
        body = dict(raw.get("body") or {})
        url_field = str(raw.get("url_field") or "requestURL")
        return cls(endpoint=endpoint, headers=headers, body=body, url_field=url_field)


@dataclass(frozen=True)
class Settings:
    user_agent: str = DEFAULT_USER_AGENT
    accept_language: str = DEFAULT_ACCEPT_LANGUAGE
    cookie: str = ""
    site_referer: str = "https://www.xiaohongshu.com/"

    http_timeout_s: float = 20.0
    request_timeout_s: float = 60.0
    batch_max_urls: int = 20

    short_link_hosts: tuple[str, ...] = ("xhslink.com",)
    helper_hosts: tuple[str, ...] = ("dy.kukutool.com",)
    cdn_fragment: str = "xhscdn"

    min_image_width: int = 720
    min_segment_length: int = 10
    extra_exclude_keywords: tuple[str, ...] = ()
    prefer_mp4: bool = True

    verify_videos: bool = False
    verify_max: int = 4

    relay_template: Optional[RelayTemplate] = None

    proxy_strict_hosts: bool = True

    postbridge_base_url: str = "https://api.post-bridge.com"
    postbridge_api_key: str = ""
    postbridge_retry_attempts: int = 3
    postbridge_default_ig: str = ""
    postbridge_default_x: str = ""

    @classmethod
    def from_env(cls) -> "Settings":
        relay_path = env_str("XHS_RELAY_TEMPLATE")
        relay = RelayTemplate.load(relay_path) if relay_path else None
        return cls(
            user_agent=env_str("XHS_USER_AGENT", DEFAULT_USER_AGENT),
            accept_language=env_str("XHS_ACCEPT_LANGUAGE", DEFAULT_ACCEPT_LANGUAGE),
            cookie=env_str("XHS_COOKIE"),
            site_referer=env_str("XHS_SITE_REFERER", "https://www.xiaohongshu.com/"),
            http_timeout_s=env_float("XHS_HTTP_TIMEOUT", 20.0),
            request_timeout_s=env_float("XHS_REQUEST_TIMEOUT", 60.0),
            batch_max_urls=env_int("XHS_BATCH_MAX_URLS", 20),
            short_link_hosts=env_list("XHS_SHORT_LINK_HOSTS", ("xhslink.com",)),
            helper_hosts=env_list("XHS_HELPER_HOSTS", ("dy.kukutool.com",)),
            cdn_fragment=env_str("XHS_CDN_FRAGMENT", "xhscdn").lower(),
            min_image_width=env_int("XHS_MIN_IMAGE_WIDTH", 720),
            min_segment_length=env_int("XHS_MIN_SEGMENT_LENGTH", 10),
            extra_exclude_keywords=env_list("XHS_EXCLUDE_KEYWORDS"),
            prefer_mp4=env_bool("XHS_PREFER_MP4", True),
            verify_videos=env_bool("XHS_VERIFY_VIDEOS", False),
            verify_max=max(env_int("XHS_VERIFY_MAX", 4), 0),
            relay_template=relay,
            proxy_strict_hosts=env_bool("XHS_PROXY_STRICT_HOSTS", True),
            postbridge_base_url=env_str("POSTBRIDGE_BASE_URL", "https://api.post-bridge.com").rstrip("/"),
            postbridge_api_key=env_str("POSTBRIDGE_API_KEY"),
            postbridge_retry_attempts=max(env_int("POSTBRIDGE_RETRY_ATTEMPTS", 3), 1),
            postbridge_default_ig=env_str("POSTBRIDGE_DEFAULT_IG"),
            postbridge_default_x=env_str("POSTBRIDGE_DEFAULT_X"),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
