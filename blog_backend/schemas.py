"""
Pydantic schemas for the blog backend.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class TagCreate(BaseModel):
    name: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    description: Optional[str] = None
    status: Optional[str] = None
    color: Optional[str] = None
    sort_order: Optional[int] = None


class DocumentTypeCreate(BaseModel):
    name: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    description: Optional[str] = None
    sort: Optional[int] = None


class DataResponse(BaseModel):
    data: Any


class PostListResponse(BaseModel):
    data: list[dict]
    total: int


class MainPageResponse(BaseModel):
    posts: list[dict]
    categories: list[dict]
    tags: list[dict]


class RevalidateRequest(BaseModel):
    tags: list[str] = Field(..., min_length=1)


class RevalidateResponse(BaseModel):
    revalidated: list[str]
    evicted: int


class AssetSummary(BaseModel):
    key: str
    url: str
    size: Optional[int] = None
    type: str
