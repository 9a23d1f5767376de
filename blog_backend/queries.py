"""
Content queries against the CMS, wrapped in the query cache where the
result set is small and keyed by a fixed name or a single slug.

Parameterized post listings are deliberately left uncached here; callers
cache those at the HTTP layer through ``Cache-Control`` headers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from blog_backend.assets import asset_path, normalize_image_urls
from blog_backend.cache import QueryCache
from blog_backend.cms import CmsClient, FieldSpec, ItemQuery
from blog_backend.text import calculate_reading_time, plain_text, slugify

TAXONOMY_TTL = 300
POST_TTL = 60

TAXONOMY_FIELDS: list[FieldSpec] = ["id", "name", "slug", "description"]

POST_LIST_FIELDS: list[FieldSpec] = [
    "id",
    "title",
    "slug",
    "excerpt",
    "content",
    "cover_image",
    "status",
    "featured",
    "published_at",
    "reading_time",
    "view_count",
    {"author": ["id", "first_name", "last_name", "avatar", "author_slug"]},
    {"category": ["id", "name", "slug"]},
    {"tags": [{"tags_id": ["id", "name", "slug"]}]},
]

POST_DETAIL_FIELDS: list[FieldSpec] = [
    "*",
    {
        "author": [
            "id",
            "first_name",
            "last_name",
            "email",
            "avatar",
            "bio",
            "author_slug",
            "job_title",
        ]
    },
    {"category": ["*"]},
    {"tags": [{"tags_id": ["*"]}]},
]


@dataclass
class PostFilter:
    limit: int = 10
    offset: int = 0
    status: Optional[str] = None
    featured: Optional[bool] = None
    category: Optional[int] = None
    search: Optional[str] = None
    sort: list[str] = field(default_factory=lambda: ["-published_at"])

    def to_filter(self) -> dict:
        flt: dict[str, Any] = {}
        if self.status:
            flt["status"] = {"_eq": self.status}
        if self.featured is not None:
            flt["featured"] = {"_eq": self.featured}
        if self.category:
            flt["category"] = {"_eq": self.category}
        if self.search:
            flt["_or"] = [
                {"title": {"_contains": self.search}},
                {"excerpt": {"_contains": self.search}},
                {"content": {"_contains": self.search}},
            ]
        return flt


def _tag_id(tag: Any) -> Any:
    if isinstance(tag, dict):
        related = tag.get("tags_id")
        if isinstance(related, dict) and related.get("id") is not None:
            return str(related["id"])
        if tag.get("id") is not None:
            return str(tag["id"])
        return tag
    if isinstance(tag, (str, int)) and not isinstance(tag, bool):
        return str(tag)
    return tag


def _decode_content(content: Any) -> Any:
    # Older posts store the editor value as a JSON string.
    if isinstance(content, str) and content.lstrip().startswith(("[", "{")):
        try:
            return json.loads(content)
        except ValueError:
            return content
    return content


def normalize_content(content: Any) -> Any:
    """
    Rewrite image URLs in stored post content.

    Handles a bare node list and the ``{"type": "slate", "content": [...]}``
    wrapper; the wrapper's other keys are kept.
    """
    if isinstance(content, dict) and content.get("type") == "slate":
        nodes = content.get("content")
        if isinstance(nodes, list):
            return {**content, "content": normalize_image_urls(nodes)}
        return content
    if isinstance(content, (list, dict)):
        return normalize_image_urls(content)
    return content


def normalize_post(post: Optional[dict]) -> Optional[dict]:
    """
    Fill in derived post fields and point assets at the local asset route.

    Missing slugs come from the title. Missing reading times and excerpts
    come from the content. Tag relations collapse to string ids and a bare
    ``cover_image`` key becomes ``/api/assets/<key>``. JSON-string content
    is decoded before image URLs in it are rewritten.
    """
    if not post:
        return post
    normalized = dict(post)
    if "content" in normalized:
        normalized["content"] = _decode_content(normalized["content"])

    if not normalized.get("slug") and normalized.get("title"):
        normalized["slug"] = slugify(normalized["title"])

    if not normalized.get("reading_time") and normalized.get("content"):
        normalized["reading_time"] = calculate_reading_time(normalized["content"])

    if not normalized.get("excerpt") and normalized.get("content"):
        normalized["excerpt"] = plain_text(normalized["content"])

    tags = normalized.get("tags")
    if isinstance(tags, list):
        normalized["tags"] = [t for t in (_tag_id(tag) for tag in tags) if t]

    cover = normalized.get("cover_image")
    if isinstance(cover, str) and cover and not cover.startswith(("http", "/")):
        normalized["cover_image"] = asset_path(cover)

    if "content" in normalized:
        normalized["content"] = normalize_content(normalized["content"])

    return normalized


class ContentQueries:
    """Read-side queries for categories, tags and posts."""

    def __init__(self, client: CmsClient, cache: QueryCache):
        self.client = client
        self.cache = cache

    def _first(self, collection: str, slug: str, fields=None) -> Optional[dict]:
        items = self.client.read_items(
            collection,
            ItemQuery(filter={"slug": {"_eq": slug}}, fields=fields, limit=1),
        )
        return items[0] if items else None

    def get_categories(self) -> list[dict]:
        return self.cache.get_or_fetch(
            "categories",
            None,
            lambda: self.client.read_items(
                "categories", ItemQuery(sort=["name"], fields=TAXONOMY_FIELDS)
            ),
            ttl=TAXONOMY_TTL,
            tags=["categories"],
        )

    def get_category_by_slug(self, slug: str) -> Optional[dict]:
        return self.cache.get_or_fetch(
            "category",
            {"slug": slug},
            lambda: self._first("categories", slug),
            ttl=TAXONOMY_TTL,
            tags=["categories", f"category-{slug}"],
        )

    def get_category_by_id(self, category_id: int) -> Optional[dict]:
        return self.client.read_item("categories", category_id)

    def get_tags(self) -> list[dict]:
        return self.cache.get_or_fetch(
            "tags",
            None,
            lambda: self.client.read_items(
                "tags", ItemQuery(sort=["name"], fields=TAXONOMY_FIELDS)
            ),
            ttl=TAXONOMY_TTL,
            tags=["tags"],
        )

    def get_tag_by_slug(self, slug: str) -> Optional[dict]:
        return self.cache.get_or_fetch(
            "tag",
            {"slug": slug},
            lambda: self._first("tags", slug),
            ttl=TAXONOMY_TTL,
            tags=["tags", f"tag-{slug}"],
        )

    def get_tag_by_id(self, tag_id: int) -> Optional[dict]:
        return self.client.read_item("tags", tag_id)

    def get_posts(self, post_filter: Optional[PostFilter] = None) -> list[dict]:
        post_filter = post_filter or PostFilter()
        posts = self.client.read_items(
            "posts",
            ItemQuery(
                filter=post_filter.to_filter(),
                fields=POST_LIST_FIELDS,
                sort=post_filter.sort,
                limit=post_filter.limit,
                offset=post_filter.offset,
            ),
        )
        return [normalize_post(post) for post in posts]

    def get_post_by_slug(self, slug: str) -> Optional[dict]:
        return self.cache.get_or_fetch(
            "post",
            {"slug": slug},
            lambda: normalize_post(self._first("posts", slug, POST_DETAIL_FIELDS)),
            ttl=POST_TTL,
            tags=["posts", f"post-{slug}"],
        )

    def get_post_by_id(self, post_id: int) -> Optional[dict]:
        return normalize_post(
            self.client.read_item("posts", post_id, fields=POST_DETAIL_FIELDS)
        )
