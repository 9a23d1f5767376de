"""
Asset URL helpers.

Post content written against earlier storage backends embeds absolute image
URLs. These helpers rewrite them onto the local ``/api/assets/`` route so the
content keeps rendering after a storage migration.
"""

from __future__ import annotations

import enum
import re
from typing import List, Optional, TypedDict, Union
from urllib.parse import urlsplit

ASSET_PREFIX = "/api/assets/"
FALLBACK_IMAGE_PATH = "/Dagher_Logo_2024_Mark.png"


class ContentNode(TypedDict, total=False):
    type: str
    url: str
    children: List["ContentValue"]


Scalar = Union[str, int, float, bool, None]
ContentValue = Union[Scalar, ContentNode, List["ContentValue"]]


class LegacyPolicy(enum.Enum):
    KEEP = "keep"
    FALLBACK = "fallback"


# Host substrings of storage backends used before the current one.
LEGACY_ASSET_HOSTS: dict[str, LegacyPolicy] = {
    "167.99.174.79": LegacyPolicy.KEEP,
    "cloud.appwrite.io": LegacyPolicy.KEEP,
    "supabase.co": LegacyPolicy.FALLBACK,
}

# Key prefixes that already address the bucket layout directly.
STORAGE_PREFIXES = (
    "blog/",
    "site-assets/",
    "user-uploads/",
    "documents/",
    "argus/",
    "directus/",
)

_TIMESTAMPED_COVER = re.compile(r"^\d{13}-")

MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "avif": "image/avif",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "mp3": "audio/mpeg",
    "pdf": "application/pdf",
}

_ASSET_EXTENSIONS = {
    "image": {"jpg", "jpeg", "png", "gif", "webp", "svg", "ico", "bmp", "tiff", "avif"},
    "video": {"mp4", "webm", "ogg", "mov", "avi", "wmv", "flv", "mkv", "m4v"},
    "audio": {"mp3", "wav", "ogg", "aac", "flac", "m4a", "wma", "opus"},
    "document": {
        "pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx", "txt", "rtf", "odt", "ods", "odp",
    },
}


def normalize_url(url: str) -> str:
    if not url or not isinstance(url, str):
        return url
    if url.startswith("/") or url.startswith("blob:"):
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if parts.scheme and parts.netloc and parts.path.startswith(ASSET_PREFIX):
        return parts.path
    return url


def normalize_image_urls(content: ContentValue) -> ContentValue:
    """
    Return a copy of a content tree with every image ``url`` rewritten.

    Lists are mapped element-wise and dicts are shallow-copied; only the
    ``url`` of ``type == "image"`` nodes and the ``children`` list change.
    Applying it twice gives the same result as applying it once.
    """
    if isinstance(content, list):
        return [normalize_image_urls(node) for node in content]
    if isinstance(content, dict):
        normalized = dict(content)
        url = normalized.get("url")
        if normalized.get("type") == "image" and isinstance(url, str) and url:
            normalized["url"] = normalize_url(url)
        children = normalized.get("children")
        if isinstance(children, list):
            normalized["children"] = [normalize_image_urls(child) for child in children]
        return normalized
    return content


def legacy_policy(url: str) -> Optional[LegacyPolicy]:
    for host, policy in LEGACY_ASSET_HOSTS.items():
        if host in url:
            return policy
    return None


def migrate_image_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    if legacy_policy(url) is LegacyPolicy.FALLBACK:
        return FALLBACK_IMAGE_PATH
    return url


def asset_path(key: str) -> str:
    return f"{ASSET_PREFIX}{key.lstrip('/')}"


def get_safe_image_url(url: Optional[str]) -> str:
    """Resolve a stored image reference to something a page can render."""
    migrated = migrate_image_url(url)
    if not migrated:
        return FALLBACK_IMAGE_PATH
    if migrated.startswith("http") or migrated.startswith("/"):
        return migrated
    return asset_path(migrated)


def resolve_storage_key(segments: List[str]) -> str:
    """Map the path segments of an ``/api/assets/...`` request to a bucket key."""
    key = "/".join(segments)
    if key.startswith(STORAGE_PREFIXES):
        return key
    filename = segments[-1]
    if _TIMESTAMPED_COVER.match(filename):
        return f"blog/covers/{filename}"
    if filename == "Gerald-Dagher-Product-Management-Resume.pdf":
        return f"documents/{filename}"
    return key


def candidate_storage_keys(key: str) -> List[str]:
    # Directus uploads land under directus/ even when referenced without it.
    if key.startswith("directus/"):
        return [key]
    return [key, f"directus/{key}"]


def _extension(key: str) -> str:
    return key.rsplit(".", 1)[-1].lower() if "." in key else ""


def guess_content_type(key: str, reported: Optional[str] = None) -> str:
    content_type = reported or "application/octet-stream"
    if content_type == "application/octet-stream":
        return MIME_TYPES.get(_extension(key), content_type)
    return content_type


def get_asset_type(key: str, mime_type: Optional[str] = None) -> str:
    if mime_type:
        for prefix in ("image", "video", "audio"):
            if mime_type.startswith(f"{prefix}/"):
                return prefix
        if any(marker in mime_type for marker in ("pdf", "document", "text")):
            return "document"
    extension = _extension(key)
    for asset_type, extensions in _ASSET_EXTENSIONS.items():
        if extension in extensions:
            return asset_type
    return "other"
