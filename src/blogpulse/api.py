"""
FastAPI server for the blog dashboard.
Blog record CRUD, feed refresh, activity stats and an RSS pass-through proxy.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Literal, Optional
from urllib.parse import urlparse

import httpx
from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException

from .activity import ActivityStatus, classify, filter_by_status, sort_blogs, summarize
from .config import Config, get_config
from .store import BlogRecord, MemoryStore
from .sync import SyncError, add_blog, refresh_all, refresh_blog

logger = logging.getLogger(__name__)


def _http_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("Please enter a valid URL")
    return value


class PostIn(BaseModel):
    id: Optional[str] = None
    title: Optional[str] = None
    url: Optional[str] = None
    date: Optional[datetime] = None


class PostOut(BaseModel):
    id: str
    title: str
    url: str
    date: datetime


class BlogAdd(BaseModel):
    """Body of the add-blog action: the feed is fetched server side."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1)
    url: str
    rss_url: str = Field(alias="rssUrl")

    @field_validator("url", "rss_url")
    @classmethod
    def check_urls(cls, value: str) -> str:
        return _http_url(value)


class BlogCreate(BlogAdd):
    last_posted: Optional[datetime] = Field(default=None, alias="lastPosted")
    total_posts: int = Field(default=0, ge=0, alias="totalPosts")
    posts: List[PostIn] = Field(default_factory=list)


class BlogPatch(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(default=None, min_length=1)
    url: Optional[str] = None
    rss_url: Optional[str] = Field(default=None, alias="rssUrl")
    last_posted: Optional[datetime] = Field(default=None, alias="lastPosted")
    total_posts: Optional[int] = Field(default=None, ge=0, alias="totalPosts")
    posts: Optional[List[PostIn]] = None

    @field_validator("url", "rss_url")
    @classmethod
    def check_urls(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _http_url(value)


class BlogOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    name: str
    url: str
    rss_url: str = Field(alias="rssUrl")
    last_posted: Optional[datetime] = Field(alias="lastPosted")
    total_posts: int = Field(alias="totalPosts")
    posts: List[PostOut]
    created_at: datetime = Field(alias="createdAt")
    status: ActivityStatus

    @classmethod
    def from_record(cls, blog: BlogRecord, now: Optional[datetime] = None) -> "BlogOut":
        return cls(
            id=blog.id,
            name=blog.name,
            url=blog.url,
            rss_url=blog.rss_url,
            last_posted=blog.last_posted,
            total_posts=blog.total_posts,
            posts=[PostOut(id=p.id, title=p.title, url=p.url, date=p.date) for p in blog.posts],
            created_at=blog.created_at,
            status=classify(blog.last_posted, now),
        )


class RefreshResult(BaseModel):
    blogs: List[BlogOut]
    failures: List[dict]


class Stats(BaseModel):
    total: int
    active: int
    inactive: int


def create_app(store: Optional[MemoryStore] = None, cfg: Optional[Config] = None) -> FastAPI:
    """Build the API around an explicitly owned store."""
    store = store if store is not None else MemoryStore()
    cfg = cfg or get_config()

    app = FastAPI(
        title="blogpulse",
        description="Activity dashboard API for association blogs",
        version="0.1.0",
    )
    app.state.store = store
    app.state.config = cfg

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origin_list,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if any(err.get("loc", ("",))[0] == "path" for err in errors):
            message = "Invalid blog ID"
        else:
            message = "; ".join(
                f"{'.'.join(str(part) for part in err['loc'][1:])}: {err['msg']}"
                for err in errors
            )
        return JSONResponse(status_code=400, content={"message": message})

    def _get_or_404(blog_id: int) -> BlogRecord:
        blog = store.get(blog_id)
        if blog is None:
            raise HTTPException(status_code=404, detail="Blog not found")
        return blog

    # ============================================
    # BLOGS
    # ============================================

    @app.get("/api/blogs", response_model=List[BlogOut])
    async def list_blogs(
        status: Literal["all", "active", "inactive"] = Query(default="all"),
        sort: Literal["name", "date"] = Query(default="name"),
    ):
        now = datetime.now(timezone.utc)
        blogs = sort_blogs(filter_by_status(store.list(), status, now), sort)
        return [BlogOut.from_record(blog, now) for blog in blogs]

    @app.get("/api/blogs/{blog_id}", response_model=BlogOut)
    async def get_blog(blog_id: int):
        return BlogOut.from_record(_get_or_404(blog_id))

    @app.post("/api/blogs", response_model=BlogOut, status_code=201)
    async def create_blog(body: BlogCreate):
        blog = store.create(
            name=body.name,
            url=body.url,
            rss_url=body.rss_url,
            last_posted=body.last_posted,
            total_posts=body.total_posts,
            posts=[post.model_dump(exclude_none=True) for post in body.posts],
        )
        return BlogOut.from_record(blog)

    @app.post("/api/blogs/add", response_model=BlogOut, status_code=201)
    async def add_blog_from_feed(body: BlogAdd):
        try:
            blog = await add_blog(
                store,
                name=body.name,
                url=body.url,
                rss_url=body.rss_url,
                timeout=cfg.fetch_timeout,
                user_agent=cfg.user_agent,
            )
        except SyncError as e:
            logger.warning("Could not add feed %s: %s", body.rss_url, e)
            raise HTTPException(
                status_code=422,
                detail="Could not add this feed. Please check the RSS URL.",
            ) from e
        return BlogOut.from_record(blog)

    @app.post("/api/blogs/refresh", response_model=RefreshResult)
    async def refresh_blogs():
        blogs, failures = await refresh_all(
            store, timeout=cfg.fetch_timeout, user_agent=cfg.user_agent
        )
        now = datetime.now(timezone.utc)
        return RefreshResult(
            blogs=[BlogOut.from_record(blog, now) for blog in blogs],
            failures=failures,
        )

    @app.post("/api/blogs/{blog_id}/refresh", response_model=BlogOut)
    async def refresh_one(blog_id: int):
        _get_or_404(blog_id)
        try:
            blog = await refresh_blog(
                store, blog_id, timeout=cfg.fetch_timeout, user_agent=cfg.user_agent
            )
        except SyncError as e:
            raise HTTPException(
                status_code=422,
                detail="Could not refresh this feed.",
            ) from e
        if blog is None:
            raise HTTPException(status_code=404, detail="Blog not found")
        return BlogOut.from_record(blog)

    @app.patch("/api/blogs/{blog_id}", response_model=BlogOut)
    async def update_blog(blog_id: int, body: BlogPatch):
        _get_or_404(blog_id)
        # only last_posted and posts may be cleared with null
        changes = {
            key: value
            for key, value in body.model_dump(exclude_unset=True).items()
            if value is not None or key in ("last_posted", "posts")
        }
        if "posts" in changes:
            changes["posts"] = [
                {k: v for k, v in post.items() if v is not None}
                for post in changes["posts"] or []
            ]
        blog = store.update(blog_id, **changes)
        return BlogOut.from_record(blog)

    @app.delete("/api/blogs/{blog_id}", status_code=204)
    async def delete_blog(blog_id: int):
        if not store.delete(blog_id):
            raise HTTPException(status_code=404, detail="Blog not found")
        return Response(status_code=204)

    @app.get("/api/stats", response_model=Stats)
    async def stats():
        summary = summarize(store.list())
        return Stats(total=summary.total, active=summary.active, inactive=summary.inactive)

    # ============================================
    # RSS PROXY
    # ============================================

    @app.get("/api/proxy/rss")
    async def proxy_rss(url: Optional[str] = None):
        """Fetch a feed server side so browsers avoid cross-origin limits."""
        if not url:
            raise HTTPException(status_code=400, detail="URL parameter is required")
        try:
            async with httpx.AsyncClient(
                timeout=cfg.fetch_timeout, trust_env=True, follow_redirects=True
            ) as client:
                upstream = await client.get(url, headers={"User-Agent": cfg.user_agent})
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning("Proxy fetch failed for %s: %s", url, e)
            raise HTTPException(
                status_code=500, detail="Failed to proxy RSS feed request"
            ) from e

        if upstream.is_error:
            return JSONResponse(
                status_code=upstream.status_code,
                content={"message": f"Failed to fetch RSS feed: {upstream.reason_phrase}"},
            )
        return Response(
            content=upstream.content,
            media_type=upstream.headers.get("content-type", "application/xml"),
        )

    return app
