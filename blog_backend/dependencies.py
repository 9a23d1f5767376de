"""
Dependency wiring for the FastAPI app.

Clients are constructed once per process from settings and then handed to
the components that need them; nothing below re-reads the environment after
the first call.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Request

from blog_backend.cache import InMemoryCacheStore, QueryCache, RedisCacheStore
from blog_backend.cms import CmsClient, InMemoryDirectusClient, build_cms_client
from blog_backend.config import get_settings
from blog_backend.queries import ContentQueries
from blog_backend.storage import InMemoryStorageClient, R2StorageClient, StorageClient
from blog_backend.threads import ThreadsClient, build_threads_client

SESSION_COOKIE = "directus_session_token"

_cms_client: CmsClient | None = None
_query_cache: QueryCache | None = None
_storage_client: StorageClient | None = None
_threads_client: ThreadsClient | None = None


def get_cms_client() -> CmsClient:
    """
    Return the process-wide CMS client, building it on first use.
    """
    global _cms_client
    if _cms_client:
        return _cms_client

    settings = get_settings()
    if settings.use_in_memory_backends:
        _cms_client = InMemoryDirectusClient()
    else:
        _cms_client = build_cms_client(settings)
    return _cms_client


def get_query_cache() -> QueryCache:
    global _query_cache
    if _query_cache:
        return _query_cache

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        store = RedisCacheStore(url=settings.redis_url, prefix=settings.redis_cache_prefix)
    else:
        store = InMemoryCacheStore()
    _query_cache = QueryCache(store)
    return _query_cache


def get_content_queries(
    client: CmsClient = Depends(get_cms_client),
    cache: QueryCache = Depends(get_query_cache),
) -> ContentQueries:
    return ContentQueries(client, cache)


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.r2_endpoint:
        _storage_client = InMemoryStorageClient()
    else:
        _storage_client = R2StorageClient(
            bucket=settings.r2_bucket,
            endpoint=settings.r2_endpoint,
            access_key_id=settings.r2_access_key or "",
            secret_access_key=settings.r2_secret_key or "",
        )
    return _storage_client


def get_threads_client() -> ThreadsClient:
    global _threads_client
    if _threads_client:
        return _threads_client
    _threads_client = build_threads_client(get_settings())
    return _threads_client


def _session_token(request: Request) -> Optional[str]:
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        return token
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return None


def get_current_user(
    request: Request, client: CmsClient = Depends(get_cms_client)
) -> dict:
    """Resolve the caller's CMS session to a user, or answer 401."""
    token = _session_token(request)
    user = client.read_me(token) if token else None
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


def reset_dependencies() -> None:
    """Forget every memoized client so the next call rebuilds from settings."""
    global _cms_client, _query_cache, _storage_client, _threads_client
    _cms_client = None
    _query_cache = None
    _storage_client = None
    _threads_client = None
