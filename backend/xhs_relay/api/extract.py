from __future__ import annotations

import uuid
from typing import List, Optional

import httpx
import requests
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, Field

from xhs_relay.core.config import Settings, get_settings
from xhs_relay.core.logger import TaskLogger, redact_url
from xhs_relay.domain.errors import ExtractionError
from xhs_relay.services import image_proxy
from xhs_relay.services.pipeline import MediaExtractor, collect_batch_urls

router = APIRouter(tags=["extract"])


class ExtractRequest(BaseModel):
    url: str = Field("", description="小红书分享文案或链接")
    verify: Optional[bool] = None


class BatchExtractRequest(BaseModel):
    urls: Optional[List[str]] = None
    url: Optional[str] = None


def get_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Outbound transport for extraction; tests override this with a MockTransport."""
    return None


def _task_for(request: Request) -> TaskLogger:
    trace_id = (request.headers.get("X-Trace-Id") or "").strip() or str(uuid.uuid4())
    return TaskLogger(trace_id)


def _error_body(exc: ExtractionError) -> dict:
    return {"success": False, "error": exc.code, "message": str(exc)}


@router.post("/extract")
async def extract(
    body: ExtractRequest,
    request: Request,
    settings: Settings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_transport),
):
    task = _task_for(request)
    try:
        async with MediaExtractor(settings, transport=transport, task=task) as extractor:
            result = await extractor.extract(body.url or "", verify=body.verify)
    except ExtractionError as exc:
        task.error("xhs.stage", stage="error", status_code=exc.status_code, error=str(exc))
        return JSONResponse(_error_body(exc), status_code=exc.status_code, headers={"X-Trace-Id": task.trace_id})
    except Exception as exc:
        task.logger.exception("extract failed")
        raise HTTPException(status_code=500, detail=f"extract failed: {exc}") from exc
    return JSONResponse(result.to_dict(), status_code=result.status_code, headers={"X-Trace-Id": task.trace_id})


@router.post("/extract-batch")
async def extract_batch(
    body: BatchExtractRequest,
    request: Request,
    settings: Settings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_transport),
):
    task = _task_for(request)
    urls = collect_batch_urls(body.urls, body.url)
    try:
        async with MediaExtractor(settings, transport=transport, task=task) as extractor:
            result = await extractor.extract_batch(urls)
    except ExtractionError as exc:
        task.error("xhs.stage", stage="error", status_code=exc.status_code, error=str(exc))
        return JSONResponse(_error_body(exc), status_code=exc.status_code, headers={"X-Trace-Id": task.trace_id})
    except Exception as exc:
        task.logger.exception("extract-batch failed")
        raise HTTPException(status_code=500, detail=f"extract-batch failed: {exc}") from exc
    return JSONResponse(result.to_dict(), headers={"X-Trace-Id": task.trace_id})


@router.get("/proxy-image")
def proxy_image(
    url: str = Query("", description="XHS CDN image url"),
    settings: Settings = Depends(get_settings),
):
    try:
        upstream = image_proxy.open_image(url, settings)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except requests.RequestException as exc:
        TaskLogger().warning("proxy.failed", url=redact_url(url), error=exc.__class__.__name__)
        raise HTTPException(status_code=502, detail=f"image proxy failed: {exc.__class__.__name__}") from exc

    if not upstream.ok:
        status = upstream.status_code
        upstream.close()
        return Response(
            content=f"upstream returned HTTP {status}",
            status_code=status,
            media_type="text/plain",
            headers={"Access-Control-Allow-Origin": "*"},
        )

    return StreamingResponse(
        image_proxy.iter_body(upstream),
        media_type=image_proxy.content_type_of(upstream),
        headers={
            "Cache-Control": image_proxy.CACHE_CONTROL,
            "Access-Control-Allow-Origin": "*",
        },
    )
