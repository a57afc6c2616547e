"""Seed blog loading - supports OPML and TOML formats."""

from __future__ import annotations

import tomllib
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import List


@dataclass
class Subscription:
    """A blog to track."""

    name: str
    url: str
    rss_url: str


def _collect_outlines(element: ET.Element, subscriptions: List[Subscription]) -> None:
    """Recursively collect blog outlines from OPML."""
    for outline in element.findall("outline"):
        xml_url = outline.get("xmlUrl")
        if xml_url:
            subscriptions.append(
                Subscription(
                    name=outline.get("title") or outline.get("text") or xml_url,
                    url=outline.get("htmlUrl") or xml_url,
                    rss_url=xml_url,
                )
            )
        _collect_outlines(outline, subscriptions)


def load_opml_subscriptions(opml_path: str) -> List[Subscription]:
    """Load blogs from an OPML file."""
    tree = ET.parse(opml_path)
    root = tree.getroot()

    subscriptions: List[Subscription] = []
    body = root.find("body")
    if body is not None:
        _collect_outlines(body, subscriptions)

    return subscriptions


def load_toml_subscriptions(toml_path: str) -> List[Subscription]:
    """Load blogs from a TOML file of ``[[blogs]]`` tables."""
    with open(toml_path, "rb") as f:
        data = tomllib.load(f)

    subscriptions: List[Subscription] = []
    for item in data.get("blogs", []):
        if isinstance(item, dict) and item.get("rss_url"):
            subscriptions.append(
                Subscription(
                    name=item.get("name", item["rss_url"]),
                    url=item.get("url", item["rss_url"]),
                    rss_url=item["rss_url"],
                )
            )

    return subscriptions


def load_subscriptions(path: str) -> List[Subscription]:
    """Load blogs from either OPML or TOML file based on extension."""
    p = Path(path)
    if p.suffix.lower() == ".toml":
        return load_toml_subscriptions(path)
    else:
        return load_opml_subscriptions(path)
