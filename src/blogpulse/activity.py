"""Blog activity classification and dashboard views."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Iterable, List, Literal, Optional

if TYPE_CHECKING:
    from .store import BlogRecord

ACTIVITY_WINDOW = timedelta(days=14)

StatusFilter = Literal["all", "active", "inactive"]
SortOrder = Literal["name", "date"]


class ActivityStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


def _utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def classify(
    last_posted: Optional[datetime], now: Optional[datetime] = None
) -> ActivityStatus:
    """Active when the last post is strictly newer than ``now - 14 days``."""
    if last_posted is None:
        return ActivityStatus.INACTIVE
    now = _utc(now) if now else datetime.now(timezone.utc)
    if _utc(last_posted) > now - ACTIVITY_WINDOW:
        return ActivityStatus.ACTIVE
    return ActivityStatus.INACTIVE


@dataclass
class ActivitySummary:
    total: int
    active: int
    inactive: int


def summarize(
    blogs: Iterable["BlogRecord"], now: Optional[datetime] = None
) -> ActivitySummary:
    """Count blogs per status."""
    blogs = list(blogs)
    active = sum(
        1 for blog in blogs if classify(blog.last_posted, now) is ActivityStatus.ACTIVE
    )
    return ActivitySummary(total=len(blogs), active=active, inactive=len(blogs) - active)


def filter_by_status(
    blogs: Iterable["BlogRecord"],
    status: StatusFilter = "all",
    now: Optional[datetime] = None,
) -> List["BlogRecord"]:
    """Keep blogs whose current status matches ``status`` ('all' keeps everything)."""
    if status == "all":
        return list(blogs)
    wanted = ActivityStatus(status)
    return [blog for blog in blogs if classify(blog.last_posted, now) is wanted]


def sort_blogs(blogs: Iterable["BlogRecord"], order: SortOrder = "name") -> List["BlogRecord"]:
    """Sort by name, or by most recent post with never-posted blogs last."""
    if order == "date":
        epoch = datetime.fromtimestamp(0, tz=timezone.utc)
        return sorted(
            blogs,
            key=lambda blog: _utc(blog.last_posted) if blog.last_posted else epoch,
            reverse=True,
        )
    return sorted(blogs, key=lambda blog: blog.name.casefold())
