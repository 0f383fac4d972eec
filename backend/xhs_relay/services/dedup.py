"""Collapse resolution variants of the same image.

XHS hands out the same asset several times: ``...!nd_prv_wlteh_webp_3`` (preview)
next to ``...!nd_dft_wlteh_webp_3`` (default/high-res), or with
``?imageView2/2/w/540`` style resize parameters. All of them share a base key
(host + path with the ``!variant`` suffix and resize parameters removed).
"""

from __future__ import annotations

import re
from typing import Iterable, Optional
from urllib.parse import parse_qsl, urlencode, urlparse

from xhs_relay.domain.models import ClassifiedLink, MediaGroup

RESIZE_QUERY_PREFIXES = ("imageview2", "imagemogr2", "imageview", "x-oss-process")
SIZE_QUERY_KEYS = frozenset({"w", "h", "width", "height", "q", "quality", "format", "fm"})

_WIDTH_PATTERNS = (
    re.compile(r"imageView2/\d+(?:/[a-z]+/[^/?&#]+)*?/w/(\d+)", re.IGNORECASE),
    re.compile(r"imageMogr2/(?:[^?&#]*?/)?thumbnail/!?(\d+)x", re.IGNORECASE),
    re.compile(r"x-oss-process=image/resize,(?:[a-z]_\d+,)*?w_(\d+)", re.IGNORECASE),
    re.compile(r"[?&](?:w|width)=(\d+)", re.IGNORECASE),
)
_MARKER_WIDTH_RE = re.compile(r"^w(\d+)$")


def _last_segment(url: str) -> str:
    try:
        path = urlparse(url).path
    except ValueError:
        return ""
    return path.rsplit("/", 1)[-1]


def variant_tokens(url: str) -> list[str]:
    """Tokens of the ``!variant`` suffix: ``foo!nd_dft_w720`` -> ``["nd", "dft", "w720"]``."""
    seg = _last_segment(url)
    if "!" not in seg:
        return []
    return [t for t in seg.split("!", 1)[1].lower().split("_") if t]


def is_default_variant(url: str) -> bool:
    return "dft" in variant_tokens(url)


def is_preview_variant(url: str) -> bool:
    return "prv" in variant_tokens(url)


def has_resize_params(url: str) -> bool:
    try:
        query = urlparse(url).query.lower()
    except ValueError:
        return False
    return any(prefix in query for prefix in RESIZE_QUERY_PREFIXES)


def parse_width(url: str) -> Optional[int]:
    """Requested width carried by resize parameters or the variant marker, if any."""
    for pattern in _WIDTH_PATTERNS:
        m = pattern.search(url or "")
        if m:
            return int(m.group(1))
    for token in variant_tokens(url):
        m = _MARKER_WIDTH_RE.match(token)
        if m:
            return int(m.group(1))
    return None


def _is_resize_key(key: str) -> bool:
    k = key.lower()
    return k.startswith(RESIZE_QUERY_PREFIXES) or k in SIZE_QUERY_KEYS


def base_key(url: str) -> str:
    try:
        p = urlparse(url)
    except ValueError:
        return url
    head, _, last = p.path.rpartition("/")
    path = f"{head}/{last.split('!', 1)[0]}" if head or p.path.startswith("/") else last.split("!", 1)[0]
    kept = [(k, v) for k, v in parse_qsl(p.query, keep_blank_values=True) if not _is_resize_key(k)]
    key = f"{p.netloc.lower()}{path}"
    if kept:
        key += "?" + urlencode(sorted(kept))
    return key


def group_by_base_key(links: Iterable[ClassifiedLink]) -> list[MediaGroup]:
    groups: dict[str, MediaGroup] = {}
    for link in links:
        key = base_key(link.url)
        group = groups.get(key)
        if group is None:
            group = groups[key] = MediaGroup(base_key=key)
        if all(v.url != link.url for v in group.variants):
            group.variants.append(link)
    return list(groups.values())


def pick_best(group: MediaGroup, min_width: int) -> ClassifiedLink:
    variants = group.variants
    if len(variants) == 1:
        return variants[0]

    # (a) default/high-res marker beats preview
    for v in variants:
        if is_default_variant(v.url):
            return v

    # (b) widest variant at or above the content threshold
    best: Optional[ClassifiedLink] = None
    best_width = -1
    for v in variants:
        w = parse_width(v.url)
        if w is not None and w >= min_width and w > best_width:
            best, best_width = v, w
    if best is not None:
        return best

    # (c) first discovered
    return variants[0]


def dedupe_images(links: Iterable[ClassifiedLink], min_width: int) -> list[str]:
    return [pick_best(group, min_width).url for group in group_by_base_key(links)]
