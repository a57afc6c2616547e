"""Tests for feed module."""

import time
import pytest
from datetime import datetime, timezone

from blogpulse.feed import (
    CanonicalFeed,
    ParseError,
    normalize,
    parse_timestamp,
    repair_offset,
    EXCERPT_LENGTH,
)


NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def rss_document(count: int) -> str:
    items = "".join(
        f"""
    <item>
      <title>Post {i}</title>
      <link>https://example.com/posts/{i}</link>
      <guid>post-{i}</guid>
      <description>Body {i}</description>
      <pubDate>Mon, {10 + i:02d} Jan 2024 10:00:00 GMT</pubDate>
    </item>"""
        for i in range(count)
    )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example Blog</title>
    <link>https://example.com</link>
    <description>An example</description>{items}
  </channel>
</rss>"""


def atom_document(entries: str, title: str = "Atom Blog") -> str:
    return f"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>{title}</title>
  <subtitle>Notes</subtitle>
  <link rel="self" href="https://atom.example.com/feed.xml"/>
  <link rel="alternate" href="https://atom.example.com/"/>
  <id>urn:uuid:feed</id>
  <updated>2024-01-01T00:00:00Z</updated>{entries}
</feed>"""


NAVER_DOC = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>경기 블로그</title>
    <link>https://blog.naver.com/tester</link>
    <description>Naver blog</description>
    <generator>Naver Blog</generator>
    <item>
      <author>tester</author>
      <title><![CDATA[첫 번째 글]]></title>
      <link>https://blog.naver.com/tester/223001</link>
      <guid>https://blog.naver.com/tester/223001</guid>
      <description><![CDATA[<p>안녕하세요</p>]]></description>
      <pubDate>Mon, 15 Jan 2024 10:00:00 +0900</pubDate>
    </item>
    <item>
      <title>두 번째 글</title>
      <guid>https://blog.naver.com/tester/223002</guid>
      <pubDate>2024-01-16 08:30:00 +0900</pubDate>
    </item>
  </channel>
</rss>"""


class TestRSS:
    """Tests for RSS 2.0 documents."""

    @pytest.mark.parametrize("count", [0, 1, 5])
    def test_item_count(self, count):
        """Test that every item element becomes one canonical item."""
        feed = normalize(rss_document(count), now=NOW)
        assert len(feed.items) == count
        assert feed.dialect == "rss"

    def test_document_order(self):
        """Test that items keep document order instead of date order."""
        feed = normalize(rss_document(3), now=NOW)
        assert [item.title for item in feed.items] == ["Post 0", "Post 1", "Post 2"]

    def test_feed_metadata(self):
        """Test channel title, description and link."""
        feed = normalize(rss_document(1), now=NOW)
        assert feed.title == "Example Blog"
        assert feed.description == "An example"
        assert feed.link == "https://example.com"

    def test_item_fields(self):
        """Test per-item extraction."""
        item = normalize(rss_document(1), now=NOW).items[0]
        assert item.id == "post-0"
        assert item.link == "https://example.com/posts/0"
        assert item.raw_publish_date == "Mon, 10 Jan 2024 10:00:00 GMT"
        assert item.publish_timestamp == datetime(2024, 1, 10, 10, 0, tzinfo=timezone.utc)
        assert item.excerpt == "Body 0"
        assert item.date_is_fallback is False

    def test_missing_description_is_none(self):
        """Test that absent feed-level description becomes None."""
        doc = "<rss><channel><title>T</title></channel></rss>"
        feed = normalize(doc, now=NOW)
        assert feed.description is None
        assert feed.link is None
        assert feed.items == []

    def test_missing_fields_default_to_empty(self):
        """Test that an empty item degrades to empty strings."""
        doc = "<rss><channel><title>T</title><item></item></channel></rss>"
        item = normalize(doc, now=NOW).items[0]
        assert item.title == ""
        assert item.link == ""
        assert item.excerpt == ""
        assert item.raw_publish_date == ""

    def test_content_encoded_fallback(self):
        """Test that content:encoded is used when description is missing."""
        doc = """<rss xmlns:content="http://purl.org/rss/1.0/modules/content/">
  <channel><title>T</title>
    <item><title>A</title><content:encoded><![CDATA[Full text]]></content:encoded></item>
  </channel>
</rss>"""
        item = normalize(doc, now=NOW).items[0]
        assert item.excerpt == "Full text"

    def test_atom_link_in_rss_item(self):
        """Test that an atom:link href is used when there is no link text."""
        doc = """<rss xmlns:atom="http://www.w3.org/2005/Atom">
  <channel><title>T</title>
    <item><title>A</title><atom:link href="https://example.com/a" rel="alternate"/></item>
  </channel>
</rss>"""
        item = normalize(doc, now=NOW).items[0]
        assert item.link == "https://example.com/a"

    def test_excerpt_truncated(self):
        """Test that the excerpt is the first 150 raw characters."""
        body = "가" * 100 + "b" * 100
        doc = f"<rss><channel><item><description>{body}</description></item></channel></rss>"
        item = normalize(doc, now=NOW).items[0]
        assert len(item.excerpt) == EXCERPT_LENGTH
        assert item.excerpt == body[:150]

    def test_excerpt_keeps_markup(self):
        """Test that CDATA markup is not stripped from the excerpt."""
        doc = "<rss><channel><item><description><![CDATA[<p>Hi</p>]]></description></item></channel></rss>"
        assert normalize(doc, now=NOW).items[0].excerpt == "<p>Hi</p>"

    def test_excerpt_keeps_inner_whitespace(self):
        """Test that the excerpt is cut from the content value as delivered."""
        body = "<p>Line one</p>\n\n   <p>Line two</p>"
        doc = f"<rss><channel><item><description><![CDATA[{body}]]></description></item></channel></rss>"
        assert normalize(doc, now=NOW).items[0].excerpt == body


class TestAtom:
    """Tests for Atom documents."""

    def test_entry_count(self):
        """Test that every entry becomes one canonical item."""
        entries = "".join(
            f"<entry><title>E{i}</title><id>e{i}</id>"
            f"<updated>2024-01-0{i + 1}T00:00:00Z</updated></entry>"
            for i in range(4)
        )
        feed = normalize(atom_document(entries), now=NOW)
        assert feed.dialect == "atom"
        assert [item.id for item in feed.items] == ["e0", "e1", "e2", "e3"]

    def test_feed_metadata(self):
        """Test title, subtitle and alternate link."""
        feed = normalize(atom_document(""), now=NOW)
        assert feed.title == "Atom Blog"
        assert feed.description == "Notes"
        assert feed.link == "https://atom.example.com/"

    def test_alternate_link_preferred(self):
        """Test that the alternate link wins when several links exist."""
        entry = """
  <entry>
    <title>Linked</title>
    <link rel="replies" href="https://atom.example.com/1#comments"/>
    <link rel="alternate" href="https://atom.example.com/1"/>
    <id>tag:1</id>
  </entry>"""
        item = normalize(atom_document(entry), now=NOW).items[0]
        assert item.link == "https://atom.example.com/1"

    def test_first_link_without_alternate(self):
        """Test that the first link's href is used without an alternate link."""
        entry = """
  <entry>
    <link href="https://atom.example.com/first"/>
    <link rel="related" href="https://atom.example.com/second"/>
  </entry>"""
        item = normalize(atom_document(entry), now=NOW).items[0]
        assert item.link == "https://atom.example.com/first"

    def test_published_preferred_over_updated(self):
        """Test date field priority."""
        entry = """
  <entry>
    <updated>2024-02-02T00:00:00Z</updated>
    <published>2024-01-01T00:00:00Z</published>
  </entry>"""
        item = normalize(atom_document(entry), now=NOW).items[0]
        assert item.raw_publish_date == "2024-01-01T00:00:00Z"

    def test_updated_fallback(self):
        """Test that updated is used when published is missing."""
        entry = "<entry><updated>2024-02-02T00:00:00Z</updated></entry>"
        item = normalize(atom_document(entry), now=NOW).items[0]
        assert item.publish_timestamp == datetime(2024, 2, 2, tzinfo=timezone.utc)

    def test_summary_fallback(self):
        """Test that summary is used when content is missing."""
        entry = "<entry><summary>Short</summary></entry>"
        item = normalize(atom_document(entry), now=NOW).items[0]
        assert item.excerpt == "Short"

    def test_hello_entry(self):
        """Test the single-entry scenario end to end."""
        entry = """
  <entry>
    <title>Hello</title>
    <link href="https://atom.example.com/hello"/>
    <id>urn:uuid:hello</id>
    <published>2024-01-01T00:00:00Z</published>
  </entry>"""
        feed = normalize(atom_document(entry), now=NOW)
        assert len(feed.items) == 1
        item = feed.items[0]
        assert item.title == "Hello"
        assert item.publish_timestamp == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert item.id == "urn:uuid:hello"

    def test_hello_entry_without_id(self):
        """Test that the id is synthesized from link and millis."""
        entry = """
  <entry>
    <title>Hello</title>
    <link href="https://atom.example.com/hello"/>
    <published>2024-01-01T00:00:00Z</published>
  </entry>"""
        item = normalize(atom_document(entry), now=NOW).items[0]
        assert item.id == "https://atom.example.com/hello-1704067200000"


class TestNaver:
    """Tests for the Naver blog dialect."""

    def test_detected(self):
        """Test that channel metadata selects the Naver strategy."""
        feed = normalize(NAVER_DOC, now=NOW)
        assert feed.dialect == "naver"
        assert feed.title == "경기 블로그"
        assert len(feed.items) == 2

    def test_compact_offset(self):
        """Test that +0900 offsets parse to the +09:00 instant."""
        item = normalize(NAVER_DOC, now=NOW).items[0]
        assert item.raw_publish_date == "Mon, 15 Jan 2024 10:00:00 +0900"
        assert item.publish_timestamp == datetime(2024, 1, 15, 1, 0, tzinfo=timezone.utc)
        assert item.date_is_fallback is False

    def test_iso_like_date_with_compact_offset(self):
        """Test the space-separated date form."""
        item = normalize(NAVER_DOC, now=NOW).items[1]
        assert item.publish_timestamp == datetime(2024, 1, 15, 23, 30, tzinfo=timezone.utc)

    def test_link_falls_back_to_guid(self):
        """Test that a missing link is filled from the guid."""
        item = normalize(NAVER_DOC, now=NOW).items[1]
        assert item.link == "https://blog.naver.com/tester/223002"

    def test_marker_in_item_content_does_not_trigger(self):
        """Test that only channel metadata is inspected."""
        doc = """<rss><channel><title>Other</title><link>https://other.example.com</link>
  <item><description>I moved from blog.naver.com</description></item>
</channel></rss>"""
        assert normalize(doc, now=NOW).dialect == "rss"


class TestDates:
    """Tests for date normalization."""

    def test_unparsable_date_keeps_item(self):
        """Test that a bad date falls back to now without failing."""
        doc = """<rss><channel>
  <item><title>Bad</title><link>https://example.com/bad</link><pubDate>sometime last week</pubDate></item>
  <item><title>Good</title><pubDate>Tue, 02 Jan 2024 00:00:00 GMT</pubDate></item>
</channel></rss>"""
        feed = normalize(doc, now=NOW)
        assert len(feed.items) == 2
        bad = feed.items[0]
        assert bad.publish_timestamp == NOW
        assert bad.date_is_fallback is True
        assert bad.raw_publish_date == "sometime last week"
        assert bad.id == f"https://example.com/bad-{int(NOW.timestamp() * 1000)}"
        assert feed.has_fallback_dates
        assert any("sometime last week" in note for note in feed.diagnostics)
        assert feed.items[1].date_is_fallback is False

    def test_missing_date_uses_now(self):
        """Test that a missing date falls back to now."""
        doc = "<rss><channel><item><title>No date</title></item></channel></rss>"
        feed = normalize(doc, now=NOW)
        assert feed.items[0].publish_timestamp == NOW
        assert feed.items[0].date_is_fallback is True
        assert len(feed.diagnostics) == 1

    def test_repeat_normalization(self):
        """Test that only fallback dates differ between runs."""
        doc = """<rss><channel>
  <item><title>Dated</title><guid>a</guid><pubDate>Tue, 02 Jan 2024 00:00:00 GMT</pubDate></item>
  <item><title>Undated</title><guid>b</guid></item>
</channel></rss>"""
        later = datetime(2024, 6, 2, tzinfo=timezone.utc)
        first = normalize(doc, now=NOW)
        second = normalize(doc, now=later)
        assert first.items[0] == second.items[0]
        assert first.items[1].publish_timestamp != second.items[1].publish_timestamp
        assert first.items[1].title == second.items[1].title

    def test_out_of_range_dates_fall_back(self):
        """Test that dates outside the datetime range fall back to now."""
        doc = """<rss version="2.0"><channel>
  <item><title>Early</title><guid>early</guid><pubDate>0001-01-01T00:00:00+09:00</pubDate></item>
  <item><title>Late</title><guid>late</guid><pubDate>9999-12-31T23:59:59-05:00</pubDate></item>
  <item><title>Good</title><guid>good</guid><pubDate>Tue, 02 Jan 2024 00:00:00 GMT</pubDate></item>
</channel></rss>"""
        feed = normalize(doc, now=NOW)
        assert [item.id for item in feed.items] == ["early", "late", "good"]
        for item in feed.items[:2]:
            assert item.date_is_fallback is True
            assert item.publish_timestamp == NOW
        assert any("0001-01-01T00:00:00+09:00" in note for note in feed.diagnostics)
        assert any("9999-12-31T23:59:59-05:00" in note for note in feed.diagnostics)
        assert feed.items[2].publish_timestamp == datetime(2024, 1, 2, tzinfo=timezone.utc)

    def test_regional_format(self):
        """Test a Korean date format read through feedparser's handlers."""
        doc = """<rss version="2.0"><channel>
  <item><title>Afternoon</title><pubDate>2024-01-15 오후 3:15:00</pubDate></item>
</channel></rss>"""
        item = normalize(doc, now=NOW).items[0]
        assert item.date_is_fallback is False
        assert item.publish_timestamp.date() == datetime(2024, 1, 15).date()


class TestParseTimestamp:
    """Tests for parse_timestamp function."""

    def test_rfc822(self):
        assert parse_timestamp("Mon, 15 Jan 2024 10:00:00 GMT") == datetime(
            2024, 1, 15, 10, 0, tzinfo=timezone.utc
        )

    def test_rfc822_colon_offset(self):
        assert parse_timestamp("Mon, 15 Jan 2024 10:00:00 +09:00") == datetime(
            2024, 1, 15, 1, 0, tzinfo=timezone.utc
        )

    def test_iso_with_offset(self):
        assert parse_timestamp("2024-01-15T10:00:00+09:00") == datetime(
            2024, 1, 15, 1, 0, tzinfo=timezone.utc
        )

    def test_naive_is_utc(self):
        assert parse_timestamp("2024-01-15T10:00:00") == datetime(
            2024, 1, 15, 10, 0, tzinfo=timezone.utc
        )

    def test_parsed_struct_preferred(self):
        """Test that feedparser's UTC struct wins over the raw string."""
        parsed = time.struct_time((2024, 1, 15, 1, 0, 0, 0, 15, 0))
        assert parse_timestamp("garbled", parsed) == datetime(2024, 1, 15, 1, 0, tzinfo=timezone.utc)

    def test_out_of_range_struct_falls_through(self):
        parsed = time.struct_time((10000, 1, 1, 0, 0, 0, 0, 1, 0))
        assert parse_timestamp("Mon, 15 Jan 2024 10:00:00 GMT", parsed) == datetime(
            2024, 1, 15, 10, 0, tzinfo=timezone.utc
        )

    @pytest.mark.parametrize("value", ["0001-01-01T00:00:00+09:00", "9999-12-31T23:59:59-05:00"])
    def test_out_of_range_instant(self, value):
        assert parse_timestamp(value) is None

    def test_spaced_compact_offset(self):
        assert parse_timestamp("2024-01-16 08:30:00 +09:00") == datetime(
            2024, 1, 15, 23, 30, tzinfo=timezone.utc
        )

    def test_empty(self):
        assert parse_timestamp("") is None
        assert parse_timestamp("   ") is None

    def test_garbage(self):
        assert parse_timestamp("not a date") is None


class TestRepairOffset:
    """Tests for repair_offset function."""

    def test_compact_offset(self):
        assert repair_offset("Mon, 15 Jan 2024 10:00:00 +0900") == "Mon, 15 Jan 2024 10:00:00 +09:00"

    def test_keeps_separator(self):
        assert repair_offset("2024-01-16 08:30:00 +0900") == "2024-01-16 08:30:00 +09:00"

    def test_negative_offset(self):
        assert repair_offset("2024-01-15T10:00:00-0530") == "2024-01-15T10:00:00-05:30"

    def test_untouched(self):
        assert repair_offset("Mon, 15 Jan 2024 10:00:00 GMT") == "Mon, 15 Jan 2024 10:00:00 GMT"
        assert repair_offset("2024-01-15T10:00:00+09:00") == "2024-01-15T10:00:00+09:00"


class TestStructure:
    """Tests for parsing failures and structural fallbacks."""

    def test_malformed_raises(self):
        """Test that unparseable markup raises ParseError."""
        with pytest.raises(ParseError):
            normalize('{"title": "not a feed"}')

    def test_truncated_feed_recovers(self):
        """Test that a broken RSS document still yields a feed with a diagnostic."""
        feed = normalize("<rss><channel><title>Broken</channel>", now=NOW)
        assert feed.dialect == "rss"
        assert any("malformed markup" in note for note in feed.diagnostics)

    def test_not_markup_raises(self):
        with pytest.raises(ParseError):
            normalize("this is not xml")

    def test_empty_raises(self):
        with pytest.raises(ParseError):
            normalize("")

    def test_bytes_with_bom(self):
        """Test bytes input with a byte order mark and declaration."""
        raw = b"\xef\xbb\xbf" + rss_document(2).encode("utf-8")
        feed = normalize(raw, now=NOW)
        assert len(feed.items) == 2

    def test_leading_whitespace(self):
        feed = normalize("\n\n  " + rss_document(1), now=NOW)
        assert len(feed.items) == 1

    def test_unknown_dialect_is_empty(self):
        """Test that unrelated markup degrades to an empty feed."""
        feed = normalize("<html><body><p>hi</p></body></html>", now=NOW)
        assert isinstance(feed, CanonicalFeed)
        assert feed.items == []
        assert feed.title == ""

    def test_rdf_items_outside_channel(self):
        """Test that RSS 1.0 items outside the channel are found."""
        doc = """<?xml version="1.0"?>
<rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#"
         xmlns="http://purl.org/rss/1.0/"
         xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel rdf:about="https://example.com/">
    <title>RDF Feed</title>
    <link>https://example.com/</link>
  </channel>
  <item rdf:about="https://example.com/1">
    <title>One</title>
    <link>https://example.com/1</link>
    <dc:date>2024-01-02T03:04:05Z</dc:date>
  </item>
</rdf:RDF>"""
        feed = normalize(doc, now=NOW)
        assert feed.title == "RDF Feed"
        assert len(feed.items) == 1
        assert feed.dialect == "rss"
        assert feed.items[0].publish_timestamp == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert feed.diagnostics == []

    def test_atom_entries_in_mislabeled_root(self):
        """Test that entries are found under an unexpected root."""
        doc = """<wrapper>
  <entry><title>Lost</title><link href="https://example.com/lost"/><id>x</id></entry>
</wrapper>"""
        feed = normalize(doc, now=NOW)
        assert [item.link for item in feed.items] == ["https://example.com/lost"]
        assert any("structural search" in note for note in feed.diagnostics)
