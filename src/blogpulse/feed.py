"""Feed normalization: RSS, Atom and Naver blog markup to canonical items."""

from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import List, Optional

import feedparser

logger = logging.getLogger(__name__)

EXCERPT_LENGTH = 150

# "+0900" at the end of a date string
_COMPACT_OFFSET = re.compile(r"(\s*)([+-])(\d{2})(\d{2})\s*$")
# "+09:00" at the end of a date string
_COLON_OFFSET = re.compile(r"([+-])(\d{2}):(\d{2})\s*$")
# whitespace between the time and a trailing offset
_SPACED_OFFSET = re.compile(r"\s+(?=[+-]\d{2}:?\d{2}$)")


class ParseError(ValueError):
    """Raised when a document is not parseable markup at all."""


@dataclass(frozen=True)
class CanonicalItem:
    """One feed entry after normalization."""

    id: str
    title: str
    link: str
    raw_publish_date: str
    publish_timestamp: datetime
    excerpt: str
    date_is_fallback: bool = False

    @property
    def iso_date(self) -> str:
        return self.publish_timestamp.isoformat()


@dataclass(frozen=True)
class CanonicalFeed:
    """Feed metadata plus items in document order."""

    title: str
    description: Optional[str] = None
    link: Optional[str] = None
    items: List[CanonicalItem] = field(default_factory=list)
    dialect: str = "rss"
    diagnostics: List[str] = field(default_factory=list)

    @property
    def has_fallback_dates(self) -> bool:
        return any(item.date_is_fallback for item in self.items)


@dataclass
class RawEntry:
    """Field values pulled out of one feedparser entry, before date parsing."""

    title: str = ""
    link: str = ""
    date: str = ""
    parsed: Optional[tuple] = None
    content: str = ""
    guid: str = ""


# --- dates -------------------------------------------------------------------


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def repair_offset(value: str) -> str:
    """Rewrite a trailing ``+0900`` style offset to ``+09:00``."""
    return _COMPACT_OFFSET.sub(r"\1\2\3:\4", value.strip())


def struct_to_datetime(parsed) -> Optional[datetime]:
    """Convert one of feedparser's ``*_parsed`` UTC structs to a datetime."""
    if not parsed:
        return None
    try:
        return datetime(*parsed[:6], tzinfo=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def parse_timestamp(value: str, parsed=None) -> Optional[datetime]:
    """Parse a feed date into an aware UTC datetime.

    feedparser's already-parsed struct is preferred, since its handlers
    cover W3DTF and a long tail of regional formats. Otherwise the raw
    string is tried as ISO 8601, then RFC 822. Returns None when nothing
    matches or the instant is outside the representable range.
    """
    result = struct_to_datetime(parsed)
    if result is not None:
        return result

    value = (value or "").strip()
    if not value:
        return None

    # ISO 8601 (handle trailing Z)
    try:
        iso_val = _SPACED_OFFSET.sub("", value.replace("Z", "+00:00"))
        return _as_utc(datetime.fromisoformat(iso_val))
    except (ValueError, OverflowError):
        pass

    # RFC 822 only understands compact offsets
    try:
        return _as_utc(parsedate_to_datetime(_COLON_OFFSET.sub(r"\1\2\3", value)))
    except (TypeError, ValueError, IndexError, OverflowError):
        pass

    return None


# --- dialects ----------------------------------------------------------------


def _link(element) -> str:
    """Alternate link href, falling back to the first link with any href."""
    links = [link for link in element.get("links", []) if link.get("href")]
    for link in links:
        if link.get("rel") == "alternate":
            return link["href"].strip()
    if links:
        return links[0]["href"].strip()
    return ""


def _first_content(entry) -> str:
    contents = entry.get("content")
    if isinstance(contents, list) and contents:
        return contents[0].get("value", "")
    return ""


class Dialect:
    """Extraction strategy for one syntactic family of feeds."""

    name = ""

    def matches(self, parsed) -> bool:
        raise NotImplementedError

    def metadata(self, parsed) -> tuple[str, str, str]:
        feed = parsed.feed
        return (
            feed.get("title", ""),
            feed.get("subtitle", ""),
            _link(feed) or feed.get("link", ""),
        )

    def content(self, entry) -> str:
        return entry.get("summary") or _first_content(entry)

    def extract(self, entry) -> RawEntry:
        date, parsed = "", None
        for name in ("published", "updated"):
            if entry.get(name):
                date, parsed = entry[name], entry.get(f"{name}_parsed")
                break
        return RawEntry(
            title=entry.get("title", ""),
            link=_link(entry),
            date=date,
            parsed=parsed,
            content=self.content(entry),
            guid=entry.get("id", ""),
        )

    def timestamp(self, raw: RawEntry) -> Optional[datetime]:
        return parse_timestamp(raw.date, raw.parsed)


class RSSDialect(Dialect):
    """RSS 0.9x, 1.0 and 2.0."""

    name = "rss"

    def matches(self, parsed) -> bool:
        return parsed.get("version", "").startswith("rss")


class NaverDialect(RSSDialect):
    """Naver blog RSS: RSS-like, with compact timezone offsets."""

    name = "naver"
    markers = ("blog.naver.com", "naver blog")

    def matches(self, parsed) -> bool:
        if not super().matches(parsed):
            return False
        feed = parsed.feed
        found = f"{feed.get('link', '')} {feed.get('generator', '')}".lower()
        return any(marker in found for marker in self.markers)

    def extract(self, entry) -> RawEntry:
        raw = super().extract(entry)
        if not raw.link:
            raw.link = raw.guid
        return raw

    def timestamp(self, raw: RawEntry) -> Optional[datetime]:
        # The repaired string wins over feedparser's own reading of it
        return parse_timestamp(repair_offset(raw.date)) or struct_to_datetime(raw.parsed)


class AtomDialect(Dialect):
    """Atom 0.3 and 1.0 feeds."""

    name = "atom"

    def matches(self, parsed) -> bool:
        return parsed.get("version", "").startswith("atom")

    def content(self, entry) -> str:
        return _first_content(entry) or entry.get("summary", "")


# Ranked: first confident match wins.
DIALECTS: tuple[Dialect, ...] = (NaverDialect(), AtomDialect(), RSSDialect())

_RSS = RSSDialect()


def detect_dialect(parsed) -> Optional[Dialect]:
    """Return the first dialect that matches the document, if any."""
    for dialect in DIALECTS:
        if dialect.matches(parsed):
            return dialect
    return None


def parse_markup(raw) -> feedparser.FeedParserDict:
    """Run raw feed text or bytes through feedparser.

    Raises ParseError when feedparser had to give up on the document and
    recovered neither a feed version nor any entries.
    """
    if isinstance(raw, str):
        raw = raw.encode("utf-8")
    elif not isinstance(raw, bytes):
        raise ParseError(f"Expected str or bytes, got {type(raw).__name__}")
    raw = raw.lstrip(b"\xef\xbb\xbf \t\r\n")
    if not raw:
        raise ParseError("Empty feed document")

    # A file object keeps feedparser from treating the text as a path or URL
    parsed = feedparser.parse(
        io.BytesIO(raw), sanitize_html=False, resolve_relative_uris=False
    )
    if parsed.bozo and not (parsed.get("version") or parsed.entries):
        raise ParseError(f"Malformed feed document: {parsed.get('bozo_exception')}")
    return parsed


def _normalize_entry(
    raw: RawEntry,
    dialect: Dialect,
    now: datetime,
    index: int,
    diagnostics: List[str],
) -> CanonicalItem:
    timestamp = dialect.timestamp(raw) if raw.date else None
    fallback = timestamp is None
    if fallback:
        timestamp = now
        if raw.date:
            note = f"item {index}: unparsable date {raw.date!r}, using current time"
        else:
            note = f"item {index}: missing date, using current time"
        diagnostics.append(note)
        logger.debug(note)

    millis = int(timestamp.timestamp() * 1000)
    return CanonicalItem(
        id=raw.guid or f"{raw.link}-{millis}",
        title=raw.title,
        link=raw.link,
        raw_publish_date=raw.date,
        publish_timestamp=timestamp,
        excerpt=raw.content[:EXCERPT_LENGTH],
        date_is_fallback=fallback,
    )


def normalize(raw, now: Optional[datetime] = None) -> CanonicalFeed:
    """Parse raw feed markup into a CanonicalFeed.

    Only markup that cannot be parsed at all raises ParseError. Missing
    fields, bad dates and empty feeds degrade to defaults; every date that
    falls back to ``now`` is recorded in ``diagnostics``.
    """
    parsed = parse_markup(raw)
    now = _as_utc(now) if now else datetime.now(timezone.utc)
    diagnostics: List[str] = []

    if parsed.bozo:
        note = f"recovered from malformed markup: {parsed.get('bozo_exception')}"
        diagnostics.append(note)
        logger.debug(note)

    dialect = detect_dialect(parsed)
    if dialect is None:
        dialect = _RSS
        if parsed.entries:
            diagnostics.append(
                f"no recognized feed root, found {len(parsed.entries)} "
                "entries by structural search"
            )

    title, description, link = dialect.metadata(parsed)
    items = [
        _normalize_entry(dialect.extract(entry), dialect, now, index, diagnostics)
        for index, entry in enumerate(parsed.entries)
    ]

    logger.debug(
        "Normalized %s feed %r: %d items, %d diagnostics",
        dialect.name, title, len(items), len(diagnostics),
    )
    return CanonicalFeed(
        title=title,
        description=description or None,
        link=link or None,
        items=items,
        dialect=dialect.name,
        diagnostics=diagnostics,
    )
