from __future__ import annotations

import random
import re
import time
from typing import Any, Iterable, Optional, Sequence

import requests

from xhs_relay.core.config import Settings
from xhs_relay.core.logger import TaskLogger
from xhs_relay.domain.errors import PostBridgeError
from xhs_relay.domain.models import Destination

DESTINATION_PATHS = (
    "/v1/destinations",
    "/destinations",
    "/v1/accounts",
    "/v1/social-accounts",
    "/v1/channels",
)
POST_LIST_PATHS = ("/v1/posts", "/posts", "/v1/content", "/content")
SCHEDULED_STATES = {"scheduled", "pending"}
POSTED_STATES = {"posted", "published", "completed"}
RETRYABLE_STATUSES = {429, 500, 502, 503, 504, 520}
ALLOWED_MIME_TYPES = ("image/png", "image/jpeg", "image/webp", "image/gif", "video/mp4", "video/quicktime")
_MIME_BY_EXTENSION = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".qt": "video/quicktime",
}
_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
_VIDEO_URL_RE = re.compile(r"\.(mp4|mov|m3u8|mpd)(\?|$)", re.IGNORECASE)
_IMAGE_URL_RE = re.compile(r"\.(jpg|jpeg|png|webp|gif)(\?|$)", re.IGNORECASE)


def _first(raw: dict, *keys: str) -> Any:
    for k in keys:
        v = raw.get(k)
        if v not in (None, ""):
            return v
    return None


def normalize_platform(value: str) -> str:
    p = (value or "").strip().lower()
    if "insta" in p:
        return "instagram"
    if "twitter" in p or p == "x":
        return "x"
    return p


def unwrap_list(payload: Any, *keys: str) -> list:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for k in keys:
            v = payload.get(k)
            if isinstance(v, list):
                return v
    return []


def normalize_destination(raw: Any) -> Optional[Destination]:
    if not isinstance(raw, dict):
        return None
    dest_id = _first(raw, "id", "account_id", "destination_id", "_id")
    platform = _first(raw, "platform", "provider", "network", "type")
    handle = _first(raw, "handle", "username", "name", "screen_name")
    if dest_id is None or not platform or not handle:
        return None
    return Destination(
        id=str(dest_id),
        platform=normalize_platform(str(platform)),
        handle=str(handle),
        display_name=_first(raw, "displayName", "title", "name"),
        avatar_url=_first(raw, "avatar", "avatarUrl", "picture"),
    )


def infer_mime_type(name: str, mime_type: Optional[str]) -> str:
    """Normalize an upload's MIME type to one Post-Bridge accepts (ValueError otherwise)."""
    mime = (mime_type or "").strip().lower()
    lower_name = (name or "").lower()
    if not mime or mime == "application/octet-stream":
        for ext, guessed in _MIME_BY_EXTENSION.items():
            if lower_name.endswith(ext):
                mime = guessed
                break
        else:
            raise ValueError(
                f"Could not determine file type for {name}. Supported types: {', '.join(ALLOWED_MIME_TYPES)}"
            )
    if mime == "image/jpg":
        mime = "image/jpeg"
    elif mime == "video/x-quicktime":
        mime = "video/quicktime"
    elif mime.startswith("video/") and mime not in ALLOWED_MIME_TYPES and lower_name.endswith(".mp4"):
        mime = "video/mp4"
    if mime not in ALLOWED_MIME_TYPES:
        raise ValueError(f"Unsupported file type: {mime}. Supported types: {', '.join(ALLOWED_MIME_TYPES)}")
    return mime


def build_post_payload(
    *,
    social_accounts: Iterable[str],
    media_urls: Sequence[str] = (),
    media_ids: Sequence[str] = (),
    caption: str = "",
    title: str = "",
    scheduled_at: Optional[str] = None,
) -> dict[str, Any]:
    """Body for ``POST /v1/posts``.

    Media URLs win over ids; among URLs, videos win over images (and switch the
    Instagram placement to reels). Destination ids must be numeric.
    """
    media_urls = [u for u in media_urls if u]
    media_ids = [str(i) for i in media_ids if i]
    payload: dict[str, Any] = {}

    if media_urls:
        videos = [u for u in media_urls if _VIDEO_URL_RE.search(u)]
        images = [u for u in media_urls if _IMAGE_URL_RE.search(u)]
        payload["media_urls"] = videos or images or media_urls
        if videos:
            payload["platform_configurations"] = {"instagram": {"placement": "reel"}}
    elif media_ids:
        if _UUID_RE.match(media_ids[0]):
            payload["media"] = media_ids
        else:
            payload["media_ids"] = media_ids
    else:
        raise PostBridgeError("No media provided (URLs or IDs)", status_code=400)

    if caption and caption.strip():
        payload["caption"] = caption.strip()
    if title and title.strip():
        payload["title"] = title.strip()

    numeric = [int(a) for a in (str(x).strip() for x in social_accounts) if a.isdigit()]
    if not numeric:
        raise PostBridgeError(
            "No valid numeric social account IDs resolved. Please select a valid account.",
            status_code=400,
        )
    payload["social_accounts"] = numeric

    if scheduled_at:
        payload["scheduled_at"] = scheduled_at
    payload["processing_enabled"] = True
    return payload


def _error_message(resp: requests.Response) -> tuple[str, Any]:
    text = resp.text or ""
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        msg = body.get("message") or body.get("error") or body.get("detail")
        if msg:
            return str(msg), body
    return text or f"HTTP {resp.status_code}", body


class PostBridgeClient:
    def __init__(self, settings: Settings, task: Optional[TaskLogger] = None, timeout: float = 30.0):
        self.base_url = settings.postbridge_base_url.rstrip("/")
        self.api_key = settings.postbridge_api_key
        self.max_attempts = max(settings.postbridge_retry_attempts, 1)
        self.default_ig = settings.postbridge_default_ig
        self.default_x = settings.postbridge_default_x
        self.timeout = timeout
        self.task = task or TaskLogger()
        self._sleep = time.sleep

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _require_key(self) -> None:
        if not self.configured:
            raise PostBridgeError(
                "POSTBRIDGE_API_KEY missing. Set it in backend/.env and restart.",
                status_code=500,
            )

    def _backoff(self, attempt: int) -> None:
        self._sleep(min(12.0, (0.8 * attempt) + random.uniform(0.0, 0.6 * attempt)))

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        """Authenticated call with retry on 429/5xx and network errors."""
        self._require_key()
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"}
        headers.update(kwargs.pop("headers", None) or {})

        for attempt in range(1, self.max_attempts + 1):
            try:
                resp = requests.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
            except requests.RequestException:
                if attempt >= self.max_attempts:
                    raise
                self._backoff(attempt)
                continue
            if resp.status_code in RETRYABLE_STATUSES and attempt < self.max_attempts:
                self.task.warning("postbridge.retry", path=path, status_code=resp.status_code, attempt=attempt)
                self._backoff(attempt)
                continue
            return resp
        raise RuntimeError("unreachable")

    # --- destinations ---

    def _raw_destinations(self) -> tuple[list[dict], str]:
        last_error = ""
        for path in DESTINATION_PATHS:
            try:
                resp = self._request("GET", path)
            except requests.RequestException as exc:
                last_error = f"{path}: {exc.__class__.__name__}"
                continue
            if not resp.ok:
                last_error = resp.text or f"HTTP {resp.status_code}"
                continue
            try:
                items = unwrap_list(resp.json(), "destinations", "accounts", "data", "items")
            except ValueError:
                continue
            items = [i for i in items if isinstance(i, dict)]
            if items:
                return items, ""
        return [], last_error

    def list_destinations(self) -> dict[str, Any]:
        raw, last_error = self._raw_destinations()
        dests = [d for d in (normalize_destination(r) for r in raw) if d is not None]

        if not dests:
            if self.default_ig:
                dests.append(Destination(id=f"instagram:{self.default_ig}", platform="instagram", handle=self.default_ig))
            if self.default_x:
                dests.append(Destination(id=f"x:{self.default_x}", platform="x", handle=self.default_x))
            last_error = last_error or "Could not fetch destinations from API; using env defaults."

        platforms: dict[str, list[dict]] = {"instagram": [], "x": []}
        for d in dests:
            platforms.setdefault(d.platform, []).append(d.to_dict())

        defaults: list[str] = []
        for platform, handle in (("instagram", self.default_ig), ("x", self.default_x)):
            if not handle:
                continue
            match = next((d for d in dests if d.platform == platform and d.handle.lower() == handle.lower()), None)
            if match is not None:
                defaults.append(match.id)

        out: dict[str, Any] = {"platforms": platforms, "defaults": defaults}
        if last_error and not any(d for d in dests if ":" not in d.id):
            out["error"] = last_error
        return out

    def resolve_destinations(self, tokens: Iterable[str]) -> list[str]:
        """``platform:handle`` tokens -> account ids; unknown tokens pass through."""
        tokens = [str(t).strip() for t in tokens if str(t).strip()]
        if not any(":" in t for t in tokens):
            return tokens
        raw, _ = self._raw_destinations()

        out: list[str] = []
        for token in tokens:
            if ":" not in token:
                out.append(token)
                continue
            platform, handle = token.split(":", 1)
            found = None
            for d in raw:
                p = normalize_platform(str(_first(d, "platform", "provider", "network", "type") or ""))
                h = str(_first(d, "handle", "username", "name", "screen_name") or "").lower()
                if p == platform.lower() and h == handle.lower():
                    found = d
                    break
            raw_id = _first(found, "account_id", "social_account_id", "destination_id", "id", "_id") if found else None
            out.append(str(raw_id) if raw_id is not None else token)
        return out

    # --- posts ---

    def publish(
        self,
        *,
        destinations: Sequence[str],
        media_urls: Sequence[str] = (),
        media_ids: Sequence[str] = (),
        caption: str = "",
        title: str = "",
        scheduled_at: Optional[str] = None,
    ) -> dict[str, Any]:
        self._require_key()
        if not destinations:
            raise PostBridgeError("No destinations provided", status_code=400)
        if not media_urls and not media_ids:
            raise PostBridgeError("No media provided (URLs or IDs)", status_code=400)

        accounts = self.resolve_destinations(destinations)
        payload = build_post_payload(
            social_accounts=accounts,
            media_urls=media_urls,
            media_ids=media_ids,
            caption=caption,
            title=title,
            scheduled_at=scheduled_at,
        )
        self.task.info(
            "postbridge.publish",
            social_accounts=payload["social_accounts"],
            media_urls=len(payload.get("media_urls") or []),
            media_ids=len(payload.get("media") or payload.get("media_ids") or []),
            scheduled=bool(scheduled_at),
        )

        resp = self._request("POST", "/v1/posts", json=payload)
        if not resp.ok:
            message, details = _error_message(resp)
            self.task.error("postbridge.publish_failed", status_code=resp.status_code, error=message)
            raise PostBridgeError(message, status_code=resp.status_code, details=details)
        try:
            return resp.json()
        except ValueError:
            return {"success": True, "ok": True}

    def upload_media(self, name: str, data: bytes, mime_type: Optional[str] = None) -> dict[str, Any]:
        """create-upload-url, then PUT the bytes to the signed URL. Returns ``{mediaId, name, mimeType}``."""
        self._require_key()
        try:
            mime = infer_mime_type(name, mime_type)
        except ValueError as exc:
            raise PostBridgeError(str(exc), status_code=400) from exc
        if not data:
            raise PostBridgeError(f"Invalid file size for {name}: 0", status_code=400)

        resp = self._request(
            "POST",
            "/v1/media/create-upload-url",
            json={"name": name, "mime_type": mime, "size_bytes": len(data)},
        )
        if not resp.ok:
            message, details = _error_message(resp)
            raise PostBridgeError(
                f'Failed to generate signed URL for file "{name}": {message}',
                status_code=resp.status_code,
                details=details,
            )
        try:
            info = resp.json()
        except ValueError:
            info = {}
        if not isinstance(info, dict):
            info = {}
        upload_url = _first(info, "upload_url", "uploadUrl", "signed_url", "signedUrl")
        media_id = _first(info, "media_id", "mediaId", "id")
        if not upload_url or not media_id:
            raise PostBridgeError(f"Incomplete upload response from Post-Bridge: {info}", details=info)

        put = requests.put(upload_url, data=data, headers={"Content-Type": mime}, timeout=self.timeout)
        if not put.ok:
            raise PostBridgeError(
                f"Failed to upload file to signed URL: {put.text or put.status_code}",
                status_code=put.status_code,
            )
        self.task.info("postbridge.uploaded", name=name, mime_type=mime, size_bytes=len(data))
        return {"mediaId": str(media_id), "name": name, "mimeType": mime}

    def post_results(
        self,
        offset: int = 0,
        limit: int = 10,
        post_ids: Sequence[str] = (),
        platforms: Sequence[str] = (),
    ) -> dict[str, Any]:
        params: list[tuple[str, Any]] = [("offset", offset), ("limit", limit)]
        params += [("post_id", v) for v in post_ids if v]
        params += [("platform", v) for v in platforms if v]

        resp = self._request("GET", "/v1/post-results", params=params)
        if not resp.ok:
            message, details = _error_message(resp)
            raise PostBridgeError(message, status_code=resp.status_code, details=details)
        try:
            body = resp.json()
        except ValueError:
            body = None
        total = None
        if isinstance(body, dict):
            total = (body.get("pagination") or {}).get("total", body.get("total"))
        return {
            "data": unwrap_list(body, "data", "results", "items"),
            "offset": offset,
            "limit": limit,
            "total": total,
        }

    def _fetch_posts(self, params: list[tuple[str, Any]]) -> tuple[list[dict], str]:
        last_error = ""
        fallback: Optional[list[dict]] = None
        for path in POST_LIST_PATHS:
            try:
                resp = self._request("GET", path, params=params)
            except requests.RequestException as exc:
                last_error = f"{path}: {exc.__class__.__name__}"
                continue
            if not resp.ok:
                last_error = resp.text or f"HTTP {resp.status_code}"
                continue
            try:
                items = unwrap_list(resp.json(), "posts", "data", "items", "results")
            except ValueError:
                continue
            items = [i for i in items if isinstance(i, dict)]
            if items:
                return items, ""
            if fallback is None:
                fallback = items
        return fallback or [], last_error

    def list_posts(self, destination_id: Optional[str] = None, status: Optional[str] = None) -> dict[str, Any]:
        """Posts for one destination; ``status`` is ``scheduled`` or ``posted`` (None for all)."""
        params: list[tuple[str, Any]] = []
        if destination_id:
            for key in ("social_account_id", "social_account_ids", "destination_id", "destination_ids", "account_id"):
                params.append((key, destination_id))
        if status:
            params.append(("status", status))
        params.append(("limit", 50))

        posts, last_error = self._fetch_posts(params)
        if status:
            posts = [p for p in posts if _post_matches_status(p, status)]

        out: dict[str, Any] = {"success": True, "posts": posts, "total": len(posts)}
        if not posts:
            out["error"] = last_error or "No posts found"
        return out


def _post_matches_status(post: dict, status: str) -> bool:
    state = str(post.get("status") or post.get("state") or "").lower()
    if status == "scheduled":
        return state in SCHEDULED_STATES or bool(_first(post, "scheduled_at", "scheduledAt"))
    if status == "posted":
        return state in POSTED_STATES or bool(_first(post, "published_at", "publishedAt"))
    return True
