"""In-memory blog record store."""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

MAX_POSTS = 5

_POST_ID_ALPHABET = string.ascii_lowercase + string.digits


@dataclass
class PostSummary:
    """A post kept on a blog record for display."""

    id: str
    title: str
    url: str
    date: datetime


@dataclass
class BlogRecord:
    """Represents a tracked blog."""

    id: int
    name: str
    url: str
    rss_url: str
    last_posted: Optional[datetime] = None
    total_posts: int = 0
    posts: List[PostSummary] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _random_post_id() -> str:
    return "post-" + "".join(secrets.choice(_POST_ID_ALPHABET) for _ in range(9))


def normalize_posts(posts: Iterable[Any], now: Optional[datetime] = None) -> List[PostSummary]:
    """Coerce posts (PostSummary or plain dicts) and keep at most MAX_POSTS.

    Missing ids get a random ``post-`` id, missing titles and urls become
    empty strings and missing dates become ``now``.
    """
    now = now or datetime.now(timezone.utc)
    result: List[PostSummary] = []
    for post in posts:
        if isinstance(post, PostSummary):
            data = {"id": post.id, "title": post.title, "url": post.url, "date": post.date}
        else:
            data = dict(post)
        date = data.get("date")
        if isinstance(date, str):
            date = datetime.fromisoformat(date.replace("Z", "+00:00"))
        result.append(
            PostSummary(
                id=data.get("id") or _random_post_id(),
                title=data.get("title") or "",
                url=data.get("url") or "",
                date=date or now,
            )
        )
        if len(result) == MAX_POSTS:
            break
    return result


class MemoryStore:
    """Blog records keyed by an auto-increment id. Not durable."""

    _fields = {"name", "url", "rss_url", "last_posted", "total_posts", "posts"}

    def __init__(self) -> None:
        self._blogs: dict[int, BlogRecord] = {}
        self._next_id = 1

    def list(self) -> List[BlogRecord]:
        return list(self._blogs.values())

    def get(self, blog_id: int) -> Optional[BlogRecord]:
        return self._blogs.get(blog_id)

    def create(
        self,
        name: str,
        url: str,
        rss_url: str,
        last_posted: Optional[datetime] = None,
        total_posts: int = 0,
        posts: Optional[Iterable[Any]] = None,
    ) -> BlogRecord:
        blog = BlogRecord(
            id=self._next_id,
            name=name,
            url=url,
            rss_url=rss_url,
            last_posted=last_posted,
            total_posts=total_posts or 0,
            posts=normalize_posts(posts or []),
        )
        self._next_id += 1
        self._blogs[blog.id] = blog
        return blog

    def update(self, blog_id: int, **changes: Any) -> Optional[BlogRecord]:
        """Overwrite the given fields of a record. Returns None if unknown."""
        blog = self._blogs.get(blog_id)
        if blog is None:
            return None

        unknown = set(changes) - self._fields
        if unknown:
            raise ValueError(f"Unknown blog field(s): {', '.join(sorted(unknown))}")

        if "posts" in changes:
            changes["posts"] = normalize_posts(changes["posts"] or [])
        updated = replace(blog, **changes)
        self._blogs[blog_id] = updated
        return updated

    def delete(self, blog_id: int) -> bool:
        return self._blogs.pop(blog_id, None) is not None

    def __len__(self) -> int:
        return len(self._blogs)
