"""Feed fetching and blog record synchronization."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import httpx

from .feed import CanonicalFeed, ParseError, normalize
from .store import MAX_POSTS, BlogRecord, MemoryStore, PostSummary

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0
DEFAULT_USER_AGENT = "blogpulse/0.1.0 (+https://example.local)"
ACCEPT = "application/rss+xml, application/atom+xml, application/xml;q=0.9, */*;q=0.8"


class FeedFetchError(Exception):
    """Raised when a feed cannot be retrieved."""


class SyncError(Exception):
    """Raised when a blog cannot be added or refreshed from its feed."""


@dataclass
class FeedSnapshot:
    """What a single feed fetch says about a blog."""

    last_posted: Optional[datetime]
    total_posts: int
    posts: List[PostSummary] = field(default_factory=list)


async def fetch_feed_text(
    url: str,
    timeout: float = DEFAULT_TIMEOUT,
    user_agent: str = DEFAULT_USER_AGENT,
) -> str:
    """Fetch raw feed markup."""
    # trust_env=True makes httpx use HTTP_PROXY, HTTPS_PROXY, ALL_PROXY env vars
    try:
        async with httpx.AsyncClient(
            timeout=timeout, trust_env=True, follow_redirects=True
        ) as client:
            response = await client.get(
                url, headers={"User-Agent": user_agent, "Accept": ACCEPT}
            )
            response.raise_for_status()
            return response.text
    except httpx.HTTPError as e:
        raise FeedFetchError(f"HTTP error fetching {url}: {e}") from e


async def fetch_feed(
    url: str,
    timeout: float = DEFAULT_TIMEOUT,
    user_agent: str = DEFAULT_USER_AGENT,
) -> CanonicalFeed:
    """Fetch and normalize a single feed."""
    text = await fetch_feed_text(url, timeout=timeout, user_agent=user_agent)
    feed = normalize(text)
    for note in feed.diagnostics:
        logger.info("%s: %s", url, note)
    return feed


def snapshot(feed: CanonicalFeed) -> FeedSnapshot:
    """Derive last posted, total posts and the recent posts from a feed."""
    recent = sorted(feed.items, key=lambda item: item.publish_timestamp, reverse=True)
    return FeedSnapshot(
        last_posted=recent[0].publish_timestamp if recent else None,
        total_posts=len(feed.items),
        posts=[
            PostSummary(
                id=item.id,
                title=item.title,
                url=item.link,
                date=item.publish_timestamp,
            )
            for item in recent[:MAX_POSTS]
        ],
    )


async def _load_snapshot(url: str, timeout: float, user_agent: str) -> FeedSnapshot:
    try:
        feed = await fetch_feed(url, timeout=timeout, user_agent=user_agent)
    except (FeedFetchError, ParseError) as e:
        raise SyncError(str(e)) from e
    except Exception as e:
        logger.exception("Unexpected error loading feed %s", url)
        raise SyncError(f"Unexpected error loading feed: {e}") from e
    return snapshot(feed)


async def add_blog(
    store: MemoryStore,
    name: str,
    url: str,
    rss_url: str,
    timeout: float = DEFAULT_TIMEOUT,
    user_agent: str = DEFAULT_USER_AGENT,
) -> BlogRecord:
    """Create a blog record after checking its feed can be fetched and parsed.

    Nothing is stored when the feed fails.
    """
    snap = await _load_snapshot(rss_url, timeout, user_agent)
    blog = store.create(
        name=name,
        url=url,
        rss_url=rss_url,
        last_posted=snap.last_posted,
        total_posts=snap.total_posts,
        posts=snap.posts,
    )
    logger.info("Added blog %d %r with %d posts", blog.id, name, snap.total_posts)
    return blog


async def refresh_blog(
    store: MemoryStore,
    blog_id: int,
    timeout: float = DEFAULT_TIMEOUT,
    user_agent: str = DEFAULT_USER_AGENT,
) -> Optional[BlogRecord]:
    """Overwrite a record from a fresh fetch. Returns None for unknown ids.

    An empty feed keeps the previous last posted date.
    """
    blog = store.get(blog_id)
    if blog is None:
        return None

    snap = await _load_snapshot(blog.rss_url, timeout, user_agent)
    return store.update(
        blog_id,
        last_posted=snap.last_posted or blog.last_posted,
        total_posts=snap.total_posts,
        posts=snap.posts,
    )


async def refresh_all(
    store: MemoryStore,
    timeout: float = DEFAULT_TIMEOUT,
    user_agent: str = DEFAULT_USER_AGENT,
) -> tuple[List[BlogRecord], List[dict]]:
    """Refresh every blog one after another.

    A failing blog keeps its previous state and does not stop the others.

    Returns:
        Tuple of (blogs in store order, failures)
    """
    blogs: List[BlogRecord] = []
    failures: List[dict] = []

    for blog in store.list():
        try:
            updated = await refresh_blog(store, blog.id, timeout=timeout, user_agent=user_agent)
        except Exception as e:
            logger.warning("Failed to refresh blog %d (%s): %s", blog.id, blog.rss_url, e)
            failures.append(
                {
                    "id": blog.id,
                    "name": blog.name,
                    "url": blog.rss_url,
                    "error": str(e),
                }
            )
            blogs.append(blog)
            continue
        blogs.append(updated or blog)

    return blogs, failures
