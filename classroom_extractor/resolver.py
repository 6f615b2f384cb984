"""Platform classification and canonical URL resolution for media references."""

import re
from typing import Iterable, List, NamedTuple, Optional
from urllib.parse import urlparse

from pydantic import ValidationError

from .models import ResourceRef, VideoRef

INTERNAL_DOMAIN = "skool.com"

# substring -> platform, checked in order
EMBED_PLATFORMS = (
    ("loom.com", "loom"),
    ("vimeo.com", "vimeo"),
    ("youtube.com", "youtube"),
    ("youtu.be", "youtube"),
    ("wistia", "wistia"),
)
# iframes from these hosts are never videos (checkout, maps, forms)
SKIPPED_IFRAME_HOSTS = ("stripe.com", "google")
IGNORED_IMAGE_MARKERS = ("avatar", "favicon", "emoji")

_VIMEO_ID = re.compile(r"video/(\d+)")
_URL_IN_TEXT = re.compile(r"https?://[^\s\"'<>)]+")


class ResolvedVideo(NamedTuple):
    url: str
    platform: str


def canonical_video_url(url: str) -> str:
    """Rewrite player embed URLs to the public page yt-dlp understands."""
    if "loom.com/embed/" in url:
        return url.replace("/embed/", "/share/", 1)
    if "player.vimeo.com/video/" in url:
        m = _VIMEO_ID.search(url)
        if m:
            return f"https://vimeo.com/{m.group(1)}"
    return url


def resolve_video(ref) -> Optional[ResolvedVideo]:
    """Return the canonical URL and platform tag for a video reference of any shape.

    ``ref`` may be a :class:`VideoRef` or the raw mapping read from a classroom tree.
    Returns ``None`` when no URL field is present; never raises.
    """
    if not isinstance(ref, VideoRef):
        try:
            ref = VideoRef.model_validate(ref)
        except ValidationError:
            return None
    url = ref.link
    if not url:
        return None
    return ResolvedVideo(canonical_video_url(url), ref.kind)


def classify_embed(src: Optional[str]) -> Optional[str]:
    """Platform tag for an iframe source, or None when the iframe is not a player."""
    if not src:
        return None
    if any(host in src for host in SKIPPED_IFRAME_HOSTS):
        return None
    for needle, platform in EMBED_PLATFORMS:
        if needle in src:
            return platform
    return "iframe"


def is_internal(url: str, domain: str = INTERNAL_DOMAIN) -> bool:
    host = urlparse(url).netloc.lower()
    return host == domain or host.endswith("." + domain)


def is_resource_link(href: Optional[str], domain: str = INTERNAL_DOMAIN) -> bool:
    if not href or href == "#" or href.startswith("javascript:"):
        return False
    if is_internal(href, domain):
        path = urlparse(href).path
        return "/download" in path or "/file" in path
    return True


def is_content_image(src: Optional[str]) -> bool:
    if not src:
        return False
    lowered = src.lower()
    return not any(marker in lowered for marker in IGNORED_IMAGE_MARKERS)


def links_in_text(text: str, domain: str = INTERNAL_DOMAIN) -> List[ResourceRef]:
    """External URLs mentioned in lesson text, in order of first appearance."""
    if not text:
        return []
    resources = []
    seen = set()
    for url in _URL_IN_TEXT.findall(text):
        if url in seen or is_internal(url, domain):
            continue
        seen.add(url)
        resources.append(ResourceRef(href=url, text=url, is_download=False))
    return resources


def merge_resources(existing: List[ResourceRef], extra: Iterable[ResourceRef]) -> List[ResourceRef]:
    merged = list(existing)
    known = {r.link for r in merged}
    for resource in extra:
        if resource.link and resource.link not in known:
            known.add(resource.link)
            merged.append(resource)
    return merged
