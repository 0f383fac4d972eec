"""Share text -> media links.

pasted text -> resolve short link -> fetch page (+ optional relay) -> mine ->
classify/filter -> dedupe -> (optional) verify videos.

Every stage degrades instead of aborting: a failed short-link resolution falls
back to the original URL, an empty page yields an informational result. Only a
missing URL is a hard error (``NoUrlFound``).
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional

import httpx

from xhs_relay.core.config import Settings
from xhs_relay.core.logger import TaskLogger, redact_url
from xhs_relay.domain.errors import ExtractionError, FetchFailed, NoUrlFound, RelayFailed
from xhs_relay.domain.models import (
    BatchResult,
    CandidateLink,
    ClassifiedLink,
    ExtractionResult,
    MediaKind,
    PostExtraction,
)
from xhs_relay.services.classifier import ExclusionRules, classify_all
from xhs_relay.services.dedup import dedupe_images
from xhs_relay.services.link_resolver import extract_first_url, extract_urls, resolve_link
from xhs_relay.services.media_miner import MediaMiner, MinerConfig, debug_candidates
from xhs_relay.services.page_fetcher import extract_title, fetch_page
from xhs_relay.services.relay import fetch_relay_urls
from xhs_relay.services.verifier import verify_videos


@dataclass
class PageAnalysis:
    candidates: list[CandidateLink] = field(default_factory=list)
    classified: list[ClassifiedLink] = field(default_factory=list)
    images: list[str] = field(default_factory=list)
    videos: list[str] = field(default_factory=list)

    @property
    def has_media(self) -> bool:
        return bool(self.images or self.videos)


def no_media_message(scanned: int) -> str:
    return f"No media matched. Scanned {scanned} URLs."


def collect_batch_urls(urls: Optional[Iterable[str]], text: Optional[str]) -> list[str]:
    """One entry per list item (its first URL, else the raw item); a text field is split into its URLs."""
    if urls:
        out: list[str] = []
        for item in urls:
            raw = str(item or "").strip()
            found = extract_urls(raw)
            out.append(found[0] if found else raw)
        return out
    if text:
        return extract_urls(text)
    return []


def build_client(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.http_timeout_s),
        follow_redirects=True,
        headers={"User-Agent": settings.user_agent},
        transport=transport,
    )


class MediaExtractor:
    def __init__(
        self,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        task: Optional[TaskLogger] = None,
    ):
        self.settings = settings
        self.task = task or TaskLogger()
        self.miner = MediaMiner(MinerConfig.from_settings(settings))
        self.rules = ExclusionRules.from_settings(settings)
        self._transport = transport
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "MediaExtractor":
        if self._client is None:
            self._client = build_client(self.settings, self._transport)
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("MediaExtractor must be used as an async context manager")
        return self._client

    # --- pure stages ---

    def analyze(self, html_text: str) -> PageAnalysis:
        candidates = self.miner.mine(html_text)
        classified = classify_all(candidates, self.rules)
        images = dedupe_images(
            (c for c in classified if c.kind == MediaKind.IMAGE),
            min_width=self.settings.min_image_width,
        )
        videos: list[str] = []
        for c in classified:
            if c.kind == MediaKind.VIDEO and c.url not in videos:
                videos.append(c.url)
        if self.settings.prefer_mp4:
            mp4 = [v for v in videos if ".mp4" in v.lower()]
            if mp4:
                videos = mp4
        return PageAnalysis(candidates=candidates, classified=classified, images=images, videos=videos)

    # --- single ---

    async def extract(self, raw_input: str, verify: Optional[bool] = None) -> ExtractionResult:
        url = extract_first_url(raw_input)
        try:
            return await asyncio.wait_for(self._extract(url, verify), timeout=self.settings.request_timeout_s)
        except asyncio.TimeoutError:
            self.task.stage("error", error="timeout", timeout_s=self.settings.request_timeout_s)
            return ExtractionResult(
                success=False,
                error=f"Extraction timed out after {self.settings.request_timeout_s:.0f}s",
                resolved_url=url,
                status_code=504,
            )

    async def _extract(self, url: str, verify: Optional[bool]) -> ExtractionResult:
        t0 = time.monotonic()
        self.task.stage("extract_start", source_url=redact_url(url))
        errors: list[str] = []

        target = await resolve_link(self.client, url, self.settings)
        if target.resolution_error:
            errors.append(target.resolution_error)
        self.task.stage(
            "resolved",
            canonical_url=redact_url(target.canonical_url),
            resolution_error=target.resolution_error or "none",
        )

        html_text = ""
        title = ""
        fetch_error: Optional[FetchFailed] = None
        try:
            page = await fetch_page(self.client, target.canonical_url, self.settings)
            html_text = page.html
            title = extract_title(page.html)
            self.task.stage("fetched", status_code=page.status, html_len=len(page.html))
        except FetchFailed as exc:
            fetch_error = exc
            self.task.stage("fetched", error=str(exc), http_status=exc.http_status)

        relay_urls: list[str] = []
        if self.settings.relay_template is not None:
            try:
                relay_urls = await fetch_relay_urls(self.client, target.canonical_url, self.settings)
            except RelayFailed as exc:
                errors.append(str(exc))
            if relay_urls:
                html_text = html_text + "\n" + "\n".join(relay_urls)

        if fetch_error is not None:
            if not relay_urls:
                return ExtractionResult(
                    success=False,
                    error="; ".join([str(fetch_error)] + errors),
                    resolved_url=target.canonical_url,
                    status_code=fetch_error.status_code,
                )
            errors.append(str(fetch_error))

        analysis = self.analyze(html_text)
        self.task.stage("mined", candidates=len(analysis.candidates))
        self.task.stage(
            "classified",
            images=len(analysis.images),
            videos=len(analysis.videos),
            rejected=sum(1 for c in analysis.classified if c.kind == MediaKind.REJECTED),
        )

        result = ExtractionResult(
            success=True,
            image_links=analysis.images,
            video_links=list(analysis.videos),
            debug_urls=debug_candidates(analysis.candidates),
            resolved_url=target.canonical_url,
            title=title or None,
        )

        should_verify = self.settings.verify_videos if verify is None else verify
        if should_verify and analysis.videos:
            result.video_probes = await verify_videos(self.client, analysis.videos, self.settings)
            for probe in result.video_probes:
                if probe.accessible and probe.final_url and probe.final_url not in result.video_links:
                    result.video_links.append(probe.final_url)
            self.task.stage(
                "verified",
                probed=len(result.video_probes),
                accessible=sum(1 for p in result.video_probes if p.accessible),
            )

        if not analysis.has_media:
            result.error = "; ".join([no_media_message(len(analysis.candidates))] + errors)
        elif errors:
            result.error = "; ".join(errors)

        self.task.stage(
            "extract_done",
            image_count=len(result.image_links),
            video_count=len(result.video_links),
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        return result

    # --- batch ---

    async def extract_batch(self, urls: list[str]) -> BatchResult:
        if not urls:
            raise NoUrlFound("No valid URLs found in input")
        if len(urls) > self.settings.batch_max_urls:
            raise ExtractionError(
                f"Too many URLs: {len(urls)} > {self.settings.batch_max_urls}",
                status_code=400,
            )

        results = await asyncio.gather(*(self._extract_post_bounded(u) for u in urls), return_exceptions=True)

        posts: list[PostExtraction] = []
        for url, res in zip(urls, results):
            if isinstance(res, asyncio.CancelledError):
                raise res
            if isinstance(res, BaseException):
                self.task.stage("error", url=redact_url(url), error=repr(res))
                posts.append(PostExtraction(url=url, resolved_url=url, error=str(res) or "Unknown error processing URL"))
            else:
                posts.append(res)

        errors = [f"URL {i + 1}: {p.error}" for i, p in enumerate(posts) if p.error]
        return BatchResult(
            success=any(p.images or p.videos for p in posts),
            posts=posts,
            error="; ".join(errors) or None,
        )

    async def _extract_post_bounded(self, url: str) -> PostExtraction:
        try:
            return await asyncio.wait_for(self._extract_post(url), timeout=self.settings.request_timeout_s)
        except asyncio.TimeoutError:
            return PostExtraction(
                url=url,
                resolved_url=url,
                error=f"Extraction timed out after {self.settings.request_timeout_s:.0f}s",
            )

    async def _extract_post(self, item: str) -> PostExtraction:
        try:
            url = extract_first_url(item)
        except NoUrlFound as exc:
            return PostExtraction(url=item, resolved_url=item, error=str(exc))
        target = await resolve_link(self.client, url, self.settings)
        try:
            page = await fetch_page(self.client, target.canonical_url, self.settings)
        except FetchFailed as exc:
            errors = [e for e in (target.resolution_error, str(exc)) if e]
            return PostExtraction(url=url, resolved_url=target.canonical_url, error="; ".join(errors))

        analysis = self.analyze(page.html)
        post = PostExtraction(
            url=url,
            resolved_url=target.canonical_url,
            images=analysis.images,
            videos=analysis.videos,
            title=extract_title(page.html) or None,
        )
        if not analysis.has_media:
            post.error = no_media_message(len(analysis.candidates))
        if target.resolution_error:
            post.error = "; ".join(e for e in (target.resolution_error, post.error) if e)
        return post
