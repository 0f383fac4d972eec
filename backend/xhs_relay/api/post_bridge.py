from __future__ import annotations

from typing import List, Optional

import requests
from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from xhs_relay.core.config import Settings, get_settings
from xhs_relay.core.logger import TaskLogger
from xhs_relay.domain.errors import PostBridgeError
from xhs_relay.services.post_bridge import PostBridgeClient

router = APIRouter(prefix="/post-bridge", tags=["post-bridge"])


class PublishRequest(BaseModel):
    destinations: List[str] = Field(default_factory=list)
    media_urls: List[str] = Field(default_factory=list, alias="mediaUrls")
    media_ids: List[str] = Field(default_factory=list, alias="mediaIds")
    caption: str = ""
    title: str = ""
    scheduled_at: Optional[str] = Field(None, alias="scheduledAt")

    model_config = {"populate_by_name": True}


def get_post_bridge(settings: Settings = Depends(get_settings)) -> PostBridgeClient:
    return PostBridgeClient(settings)


def _error_response(exc: PostBridgeError) -> JSONResponse:
    body = {"error": str(exc)}
    if exc.details is not None:
        body["details"] = exc.details
    return JSONResponse(body, status_code=exc.status_code)


@router.get("/destinations")
def destinations(client: PostBridgeClient = Depends(get_post_bridge)):
    try:
        return client.list_destinations()
    except PostBridgeError as exc:
        return _error_response(exc)


@router.post("/publish")
def publish(body: PublishRequest, client: PostBridgeClient = Depends(get_post_bridge)):
    try:
        return client.publish(
            destinations=body.destinations,
            media_urls=body.media_urls,
            media_ids=body.media_ids,
            caption=body.caption,
            title=body.title,
            scheduled_at=body.scheduled_at,
        )
    except PostBridgeError as exc:
        return _error_response(exc)
    except requests.RequestException as exc:
        raise HTTPException(status_code=502, detail=f"post-bridge unreachable: {exc.__class__.__name__}") from exc


@router.post("/upload-media")
async def upload_media(
    files: List[UploadFile] = File(..., description="images / videos to upload"),
    client: PostBridgeClient = Depends(get_post_bridge),
):
    if not client.configured:
        return _error_response(PostBridgeError("POSTBRIDGE_API_KEY missing", status_code=500))

    media_ids: list[str] = []
    errors: list[str] = []
    for f in files:
        data = await f.read()
        name = f.filename or "upload"
        try:
            uploaded = client.upload_media(name, data, f.content_type)
        except PostBridgeError as exc:
            errors.append(f"{name}: {exc}")
            continue
        except requests.RequestException as exc:
            errors.append(f"{name}: {exc.__class__.__name__}")
            continue
        media_ids.append(uploaded["mediaId"])

    if not media_ids:
        TaskLogger().error("postbridge.upload_failed", errors=errors)
        return JSONResponse(
            {"success": False, "error": f"All uploads failed: {'; '.join(errors)}", "mediaIds": [], "count": 0},
            status_code=500,
        )
    out = {"success": True, "mediaIds": media_ids, "count": len(media_ids)}
    if errors:
        out["errors"] = errors
    return out


@router.get("/post-results")
def post_results(
    offset: int = Query(0, ge=0),
    limit: int = Query(10, ge=1, le=100),
    post_id: Optional[List[str]] = Query(None),
    platform: Optional[List[str]] = Query(None),
    client: PostBridgeClient = Depends(get_post_bridge),
):
    try:
        return client.post_results(offset=offset, limit=limit, post_ids=post_id or [], platforms=platform or [])
    except PostBridgeError as exc:
        return _error_response(exc)
    except requests.RequestException as exc:
        raise HTTPException(status_code=502, detail=f"post-bridge unreachable: {exc.__class__.__name__}") from exc


@router.get("/posts")
def posts(
    destination_id: Optional[str] = Query(None, alias="destinationId"),
    status: Optional[str] = Query(None, pattern="^(scheduled|posted)$"),
    client: PostBridgeClient = Depends(get_post_bridge),
):
    try:
        return client.list_posts(destination_id=destination_id, status=status)
    except PostBridgeError as exc:
        return _error_response(exc)
    except requests.RequestException as exc:
        raise HTTPException(status_code=502, detail=f"post-bridge unreachable: {exc.__class__.__name__}") from exc
