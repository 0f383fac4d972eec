from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class SourcePass(str, Enum):
    SCRIPT_JSON = "script-json"
    IMG_TAG = "img-tag"
    VIDEO_TAG = "video-tag"
    DATA_ATTR = "data-attr"
    GENERIC_SWEEP = "generic-sweep"


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    REJECTED = "rejected"


@dataclass
class ResolvedTarget:
    original_url: str
    canonical_url: str
    resolution_error: Optional[str] = None


@dataclass(frozen=True)
class CandidateLink:
    url: str
    source_pass: SourcePass
    raw_context: str = ""


@dataclass(frozen=True)
class ClassifiedLink:
    candidate: CandidateLink
    kind: MediaKind
    reject_reason: Optional[str] = None

    @property
    def url(self) -> str:
        return self.candidate.url


@dataclass
class MediaGroup:
    base_key: str
    variants: List[ClassifiedLink] = field(default_factory=list)


@dataclass
class VideoProbe:
    url: str
    final_url: str = ""
    status: int = 0
    content_type: str = ""
    accessible: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "url": self.url,
            "finalUrl": self.final_url or self.url,
            "status": self.status,
            "contentType": self.content_type,
            "accessible": self.accessible,
        }
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class ExtractionResult:
    success: bool
    image_links: List[str] = field(default_factory=list)
    video_links: List[str] = field(default_factory=list)
    error: Optional[str] = None
    debug_urls: List[str] = field(default_factory=list)
    resolved_url: Optional[str] = None
    title: Optional[str] = None
    video_probes: List[VideoProbe] = field(default_factory=list)
    # HTTP status the route should answer with.
    status_code: int = 200

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "success": self.success,
            "imageLinks": list(self.image_links),
            "videoLinks": list(self.video_links),
        }
        if self.error:
            out["error"] = self.error
        if self.resolved_url:
            out["resolvedUrl"] = self.resolved_url
        if self.title:
            out["title"] = self.title
        if self.debug_urls:
            out["debugUrls"] = list(self.debug_urls)
        if self.video_probes:
            first = self.video_probes[0]
            out["testedVideoUrl"] = first.url
            out["testResult"] = {
                "status": first.status,
                "contentType": first.content_type,
                "accessible": first.accessible,
            }
            out["videoProbes"] = [p.to_dict() for p in self.video_probes]
        return out


@dataclass
class PostExtraction:
    url: str
    resolved_url: str
    images: List[str] = field(default_factory=list)
    videos: List[str] = field(default_factory=list)
    title: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "url": self.url,
            "resolvedUrl": self.resolved_url,
            "images": list(self.images),
            "videos": list(self.videos),
        }
        if self.title:
            out["title"] = self.title
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class BatchResult:
    success: bool
    posts: List[PostExtraction] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success, "posts": [p.to_dict() for p in self.posts]}
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class Destination:
    id: str
    platform: str
    handle: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"id": self.id, "platform": self.platform, "handle": self.handle}
        if self.display_name:
            out["displayName"] = self.display_name
        if self.avatar_url:
            out["avatarUrl"] = self.avatar_url
        return out
