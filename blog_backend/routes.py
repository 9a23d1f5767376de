"""
HTTP routes for the blog backend API.
"""

from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    Header,
    HTTPException,
    Query,
    Response,
    UploadFile,
)
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse

from blog_backend.assets import (
    asset_path,
    candidate_storage_keys,
    get_asset_type,
    guess_content_type,
    resolve_storage_key,
)
from blog_backend.cache import QueryCache
from blog_backend.cms import CmsClient, ItemQuery
from blog_backend.config import Settings, get_settings
from blog_backend.csrf import csrf_headers, generate_csrf_token, require_csrf
from blog_backend.dependencies import (
    get_cms_client,
    get_content_queries,
    get_current_user,
    get_query_cache,
    get_storage_client,
    get_threads_client,
)
from blog_backend.errors import ConfigurationError
from blog_backend.queries import ContentQueries, PostFilter
from blog_backend.schemas import (
    AssetSummary,
    DataResponse,
    DocumentTypeCreate,
    MainPageResponse,
    PostListResponse,
    RevalidateRequest,
    RevalidateResponse,
    TagCreate,
)
from blog_backend.storage import StorageClient
from blog_backend.threads import ThreadsClient, ThreadsTokenExpired, authorize_url

logger = logging.getLogger(__name__)

router = APIRouter()

PUBLIC_CACHE_CONTROL = "public, s-maxage=300, stale-while-revalidate=900"
NO_STORE = "no-store"
ASSET_CACHE_CONTROL = "public, max-age=31536000, immutable"


def _cache_control(public: bool) -> str:
    return PUBLIC_CACHE_CONTROL if public else NO_STORE


@router.get("/posts", response_model=PostListResponse)
def list_posts(
    response: Response,
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    search: Optional[str] = Query(None),
    category: Optional[int] = Query(None),
    category_id: Optional[int] = Query(None, alias="categoryId"),
    featured: Optional[str] = Query(None),
    status: str = Query("published"),
    queries: ContentQueries = Depends(get_content_queries),
):
    posts = queries.get_posts(
        PostFilter(
            limit=limit,
            offset=offset,
            status=status,
            category=category_id or category,
            featured=True if featured == "true" else None,
            search=search or None,
        )
    )
    response.headers["Cache-Control"] = _cache_control(status == "published")
    return PostListResponse(data=posts, total=len(posts))


@router.get("/posts/main-page", response_model=MainPageResponse)
def main_page(
    response: Response,
    limit: int = Query(6, ge=1, le=100),
    queries: ContentQueries = Depends(get_content_queries),
):
    posts = queries.get_posts(PostFilter(limit=limit, status="published", featured=True))
    response.headers["Cache-Control"] = PUBLIC_CACHE_CONTROL
    return MainPageResponse(
        posts=posts, categories=queries.get_categories(), tags=queries.get_tags()
    )


@router.get("/posts/{slug}")
def get_post(
    slug: str,
    response: Response,
    queries: ContentQueries = Depends(get_content_queries),
):
    post = queries.get_post_by_slug(slug)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    response.headers["Cache-Control"] = _cache_control(post.get("status") == "published")
    return post


@router.get("/categories", response_model=DataResponse)
def list_categories(queries: ContentQueries = Depends(get_content_queries)):
    return DataResponse(data=queries.get_categories())


@router.get("/categories/{slug}", response_model=DataResponse)
def get_category(slug: str, queries: ContentQueries = Depends(get_content_queries)):
    category = queries.get_category_by_slug(slug)
    if category is None:
        raise HTTPException(status_code=404, detail="Category not found")
    return DataResponse(data=category)


@router.get("/tags", response_model=DataResponse)
def list_tags(queries: ContentQueries = Depends(get_content_queries)):
    return DataResponse(data=queries.get_tags())


@router.get("/tags/{slug}", response_model=DataResponse)
def get_tag(slug: str, queries: ContentQueries = Depends(get_content_queries)):
    tag = queries.get_tag_by_slug(slug)
    if tag is None:
        raise HTTPException(status_code=404, detail="Tag not found")
    return DataResponse(data=tag)


@router.get("/admin/tags", response_model=DataResponse)
def admin_list_tags(client: CmsClient = Depends(get_cms_client)):
    return DataResponse(data=client.read_items("tags", ItemQuery(limit=100, sort=["name"])))


@router.post(
    "/admin/tags",
    response_model=DataResponse,
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def create_tag(
    payload: TagCreate,
    user: dict = Depends(get_current_user),
    client: CmsClient = Depends(get_cms_client),
    cache: QueryCache = Depends(get_query_cache),
):
    created = client.create_item("tags", payload.model_dump(exclude_none=True))
    logger.info("Tag %s created by %s", payload.slug, user.get("id"))
    cache.invalidate_tags(["tags", f"tag-{payload.slug}"])
    return DataResponse(data=created)


@router.get("/admin/roles", response_model=DataResponse)
def list_roles(client: CmsClient = Depends(get_cms_client)):
    return DataResponse(data=client.read_roles(fields=["id", "name", "description"]))


@router.get("/admin/document-types", response_model=DataResponse)
def list_document_types(client: CmsClient = Depends(get_cms_client)):
    return DataResponse(
        data=client.read_items("document_types", ItemQuery(limit=100, sort=["sort", "name"]))
    )


@router.post(
    "/admin/document-types",
    response_model=DataResponse,
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def create_document_type(
    payload: DocumentTypeCreate,
    user: dict = Depends(get_current_user),
    client: CmsClient = Depends(get_cms_client),
):
    created = client.create_item("document_types", payload.model_dump(exclude_none=True))
    return DataResponse(data=created)


@router.get("/admin/users", response_model=DataResponse)
def list_users(
    user: dict = Depends(get_current_user),
    client: CmsClient = Depends(get_cms_client),
):
    users = client.read_users(
        ItemQuery(fields=["id", "first_name", "last_name", "email", "role"], limit=100)
    )
    return DataResponse(data=users)


@router.get("/admin/assets", response_model=list[AssetSummary])
def list_assets(
    prefix: Optional[str] = Query(None),
    user: dict = Depends(get_current_user),
    storage: StorageClient = Depends(get_storage_client),
):
    return [
        AssetSummary(
            key=obj["Key"],
            url=asset_path(obj["Key"]),
            size=obj.get("Size"),
            type=get_asset_type(obj["Key"]),
        )
        for obj in storage.list_objects(prefix)
    ]


@router.post(
    "/admin/assets",
    response_model=AssetSummary,
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
async def upload_asset(
    file: UploadFile = File(...),
    prefix: str = Form("blog/"),
    user: dict = Depends(get_current_user),
    storage: StorageClient = Depends(get_storage_client),
):
    if not file.filename:
        raise HTTPException(status_code=400, detail="File name required")
    body = await file.read()
    folder = prefix.strip("/")
    key = f"{folder}/{file.filename}" if folder else file.filename
    content_type = guess_content_type(key, file.content_type)
    url = storage.put_object(key, body, content_type)
    logger.info("Asset %s uploaded by %s", key, user.get("id"))
    return AssetSummary(
        key=key, url=url, size=len(body), type=get_asset_type(key, content_type)
    )


@router.delete(
    "/admin/assets/{key:path}",
    status_code=204,
    dependencies=[Depends(require_csrf)],
)
def delete_asset(
    key: str,
    user: dict = Depends(get_current_user),
    storage: StorageClient = Depends(get_storage_client),
):
    storage.delete_object(key)
    logger.info("Asset %s deleted by %s", key, user.get("id"))
    return Response(status_code=204)


@router.get("/assets/{path:path}")
def get_asset(path: str, storage: StorageClient = Depends(get_storage_client)):
    segments = [segment for segment in path.split("/") if segment]
    if not segments:
        raise HTTPException(status_code=400, detail="Invalid asset path")

    key = resolve_storage_key(segments)
    for candidate in candidate_storage_keys(key):
        try:
            stored = storage.get_object(candidate)
        except FileNotFoundError:
            continue
        return Response(
            content=stored.body,
            media_type=guess_content_type(candidate, stored.content_type),
            headers={
                "Cache-Control": ASSET_CACHE_CONTROL,
                "Access-Control-Allow-Origin": "*",
                "Access-Control-Allow-Methods": "GET",
            },
        )
    raise HTTPException(status_code=404, detail="Asset not found")


@router.post("/revalidate", response_model=RevalidateResponse)
def revalidate(
    payload: RevalidateRequest,
    secret: Optional[str] = Header(None, alias="x-revalidate-secret"),
    cache: QueryCache = Depends(get_query_cache),
    settings: Settings = Depends(get_settings),
):
    """
    Webhook target for the CMS: evict every cache entry carrying the tags.
    """
    expected = settings.revalidate_secret
    if not expected:
        raise ConfigurationError("REVALIDATE_SECRET is not configured")
    if not secret or not hmac.compare_digest(secret.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Invalid revalidation secret")
    evicted = cache.invalidate_tags(payload.tags)
    return RevalidateResponse(revalidated=payload.tags, evicted=evicted)


@router.get("/threads/list")
def list_threads(
    response: Response,
    limit: int = Query(25, ge=1, le=100),
    after: Optional[str] = Query(None),
    threads: ThreadsClient = Depends(get_threads_client),
):
    try:
        data = threads.list_threads(limit=limit, after=after)
    except ThreadsTokenExpired as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    response.headers["Cache-Control"] = NO_STORE
    return data


@router.get("/threads/refresh", response_class=PlainTextResponse)
def refresh_threads_token(threads: ThreadsClient = Depends(get_threads_client)):
    result = threads.refresh_token()
    return PlainTextResponse(result.access_token, headers={"Cache-Control": NO_STORE})


@router.get("/threads/login")
def threads_login(settings: Settings = Depends(get_settings)):
    return RedirectResponse(authorize_url(settings), status_code=307)


@router.get("/csrf")
def issue_csrf_token(settings: Settings = Depends(get_settings)):
    token = generate_csrf_token()
    return JSONResponse(
        {"token": token},
        headers={**csrf_headers(token, secure=settings.is_production), "Cache-Control": NO_STORE},
    )
