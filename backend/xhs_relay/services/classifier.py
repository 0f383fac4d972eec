from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional
from urllib.parse import unquote, urlparse

from xhs_relay.core.config import Settings
from xhs_relay.domain.models import CandidateLink, ClassifiedLink, MediaKind, SourcePass
from xhs_relay.services.dedup import has_resize_params, is_default_variant, parse_width
from xhs_relay.services.link_resolver import host_matches
from xhs_relay.services.media_miner import IMAGE_EXTENSIONS, MANIFEST_EXTENSIONS, VIDEO_EXTENSIONS

# Matched against host + path + query.
UI_KEYWORDS = (
    "logo",
    "icon",
    "avatar",
    "watermark",
    "badge",
    "banner",
    "sprite",
    "placeholder",
    "emoji",
    "emoticon",
    "spacer",
    "1x1",
)
# Matched against the decoded path only: brand names also appear in legitimate hosts.
PATH_MARKERS = (
    "/static/",
    "/assets/",
    "/common/",
    "/components/",
    "/widgets/",
    "xiaohongshu",
    "redbook",
    "rednote",
    "小红书",
)
AD_PATH_SEGMENTS = frozenset({"ad", "ads", "advert", "adserver"})
TRACKER_HOSTS = (
    "doubleclick.net",
    "googletagmanager.com",
    "googlesyndication.com",
    "google-analytics.com",
    "adservice.google.com",
    "gstatic.com",
    "taboola.com",
    "outbrain.com",
    "travelaudience.com",
    "fundingchoicesmessages.google.com",
)
_TRACKER_HOST_RE = re.compile(r"(^|[.-])(adsystem|adservice)([.-]|$)")
_LONG_ID_RE = re.compile(r"\d{12,}")


@dataclass(frozen=True)
class ExclusionRules:
    cdn_fragment: str = "xhscdn"
    ui_keywords: tuple[str, ...] = UI_KEYWORDS
    path_markers: tuple[str, ...] = PATH_MARKERS
    ad_path_segments: frozenset[str] = AD_PATH_SEGMENTS
    tracker_hosts: tuple[str, ...] = TRACKER_HOSTS
    short_link_hosts: tuple[str, ...] = ("xhslink.com",)
    min_segment_length: int = 10
    min_image_width: int = 720
    image_extensions: tuple[str, ...] = IMAGE_EXTENSIONS
    video_extensions: tuple[str, ...] = VIDEO_EXTENSIONS
    manifest_extensions: tuple[str, ...] = MANIFEST_EXTENSIONS
    video_host_prefixes: tuple[str, ...] = ("sns-video",)
    extra_keywords: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExclusionRules":
        return cls(
            cdn_fragment=settings.cdn_fragment,
            short_link_hosts=settings.short_link_hosts,
            min_segment_length=settings.min_segment_length,
            min_image_width=settings.min_image_width,
            extra_keywords=settings.extra_exclude_keywords,
        )

    def exclusion_reason(self, url: str) -> Optional[str]:
        """Why a URL is UI chrome / noise, or None when it may be content."""
        p = urlparse(url)
        host = (p.hostname or "").lower()
        path = unquote(p.path or "").lower()
        haystack = f"{host}{path}?{p.query.lower()}"

        if host_matches(host, self.short_link_hosts):
            return "short-link"
        if host_matches(host, self.tracker_hosts) or _TRACKER_HOST_RE.search(host):
            return "tracker"
        for kw in self.ui_keywords + self.extra_keywords:
            if kw and kw in haystack:
                return f"keyword:{kw}"
        for marker in self.path_markers:
            if marker in path:
                return f"path:{marker.strip('/')}"
        if any(seg in self.ad_path_segments for seg in path.split("/") if seg):
            return "ad-path"

        last = path.rsplit("/", 1)[-1]
        has_ext = last.endswith(self.image_extensions + self.video_extensions + self.manifest_extensions)
        if len(last) < self.min_segment_length and not has_ext and not _LONG_ID_RE.search(url):
            return "short-segment"
        return None


def _looks_like_video(candidate: CandidateLink, host: str, path: str, rules: ExclusionRules) -> bool:
    if path.endswith(rules.video_extensions) or path.endswith(rules.manifest_extensions):
        return True
    lower = candidate.url.lower()
    if rules.cdn_fragment in lower and ".mp4" in lower:
        return True
    # <video>/<source> targets and video CDN hosts are streams even without an extension.
    if path.endswith(rules.image_extensions):
        return False
    return candidate.source_pass == SourcePass.VIDEO_TAG or host.startswith(rules.video_host_prefixes)


def classify(candidate: CandidateLink, rules: ExclusionRules) -> ClassifiedLink:
    url = candidate.url

    def reject(reason: str) -> ClassifiedLink:
        return ClassifiedLink(candidate=candidate, kind=MediaKind.REJECTED, reject_reason=reason)

    try:
        p = urlparse(url)
    except ValueError:
        return reject("unparseable")
    if p.scheme not in {"http", "https"} or not p.hostname:
        return reject("scheme")

    reason = rules.exclusion_reason(url)
    if reason:
        return reject(reason)

    path = p.path.lower()
    host = p.hostname.lower()
    if _looks_like_video(candidate, host, path, rules):
        return ClassifiedLink(candidate=candidate, kind=MediaKind.VIDEO)

    is_image = path.endswith(rules.image_extensions) or rules.cdn_fragment in host
    if not is_image:
        return reject("not-media")

    if has_resize_params(url) and not is_default_variant(url):
        width = parse_width(url)
        if width is not None and width < rules.min_image_width:
            return reject(f"low-resolution:{width}")

    return ClassifiedLink(candidate=candidate, kind=MediaKind.IMAGE)


def classify_all(candidates: Iterable[CandidateLink], rules: ExclusionRules) -> list[ClassifiedLink]:
    return [classify(c, rules) for c in candidates]
