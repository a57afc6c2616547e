"""CLI entry point for blogpulse."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from argparse import Namespace

    from .store import MemoryStore
    from .subscriptions import Subscription

LOG_FORMAT = "[%(levelname)s] %(asctime)s - %(message)s"


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    p = argparse.ArgumentParser(
        prog="blogpulse",
        description="Track which association blogs are still posting.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  blogpulse serve                                 # Run the API on 127.0.0.1:5000
  blogpulse serve --seed blogs.toml --port 8000   # Preload blogs from a seed file
  blogpulse check https://rss.blog.naver.com/example.xml
  blogpulse status --seed blogs.opml              # Fetch every seed blog, print a table
  blogpulse config print                          # Show effective configuration
""",
    )

    p.add_argument(
        "--config",
        metavar="PATH",
        help="Path to user config file (TOML)",
    )
    p.add_argument(
        "--config-mode",
        choices=["merge", "override"],
        default="merge",
        help="Config mode: 'merge' (default) lets env vars win, 'override' lets the file win",
    )
    p.add_argument(
        "--env-file",
        metavar="PATH",
        help="Path to .env file for environment variables",
    )
    p.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Enable debug logging. Env: BLOGPULSE_DEBUG or DEBUG",
    )

    sub = p.add_subparsers(dest="command", help="Available commands")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", help="Bind address. Env: BLOGPULSE_HOST")
    serve.add_argument("--port", type=int, help="Port. Env: BLOGPULSE_PORT")
    serve.add_argument(
        "--seed",
        metavar="PATH",
        help="TOML or OPML file of blogs to preload. Env: BLOGPULSE_SEED_PATH",
    )

    check = sub.add_parser("check", help="Fetch one feed and show what was parsed")
    check.add_argument("url", help="Feed URL")
    check.add_argument("--json", action="store_true", help="Print JSON instead of text")
    check.add_argument("--timeout", type=float, help="Fetch timeout in seconds")

    status = sub.add_parser("status", help="Fetch every seed blog and print its status")
    status.add_argument("--seed", metavar="PATH", help="TOML or OPML file of blogs")
    status.add_argument("--sort", choices=["name", "date"], default="name")
    status.add_argument(
        "--only",
        choices=["all", "active", "inactive"],
        default="all",
        help="Show only blogs with this status",
    )

    config_cmd = sub.add_parser("config", help="Configuration management")
    config_sub = config_cmd.add_subparsers(dest="config_command")
    config_print = config_sub.add_parser("print", help="Print effective configuration")
    config_print.add_argument(
        "--format",
        choices=["toml", "json"],
        default="toml",
        help="Output format. Default: toml",
    )
    config_sub.add_parser("path", help="Show config file path")

    sub.add_parser("init", help="Write a default config file")

    return p


def configure_logging(debug: bool) -> None:
    """Send package logs to stderr."""
    logger = logging.getLogger("blogpulse")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "env_file", None):
        from dotenv import load_dotenv

        load_dotenv(args.env_file)

    from .config import load_config, set_config

    cfg = load_config(
        cli_config_path=getattr(args, "config", None),
        config_mode=getattr(args, "config_mode", "merge"),
        cli_overrides=_extract_cli_overrides(args),
    )
    set_config(cfg)
    configure_logging(cfg.debug)

    command = args.command

    if command == "serve":
        return _run_serve(args)
    elif command == "check":
        return _run_check(args)
    elif command == "status":
        return _run_status(args)
    elif command == "config":
        return _run_config(args)
    elif command == "init":
        return _run_init(args)
    else:
        parser.print_help()
        return 1


def _extract_cli_overrides(args: Namespace) -> dict:
    """Extract CLI arguments that override config values."""
    overrides = {}

    cli_to_config = {
        "debug": "debug",
        "host": "host",
        "port": "port",
        "seed": "seed_path",
        "timeout": "fetch_timeout",
    }

    for cli_name, config_name in cli_to_config.items():
        value = getattr(args, cli_name, None)
        if value is not None:
            overrides[config_name] = value

    return overrides


def _load_seed(path: str) -> list[Subscription] | None:
    """Load seed blogs, or None if the file does not exist."""
    from .subscriptions import load_subscriptions

    if not Path(path).exists():
        return None
    return load_subscriptions(path)


def seed_store(store: MemoryStore, subscriptions: list[Subscription]) -> None:
    """Create bare records for seed blogs; feed data arrives on refresh."""
    for sub in subscriptions:
        store.create(name=sub.name, url=sub.url, rss_url=sub.rss_url)


def _run_serve(args: Namespace) -> int:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from .api import create_app
    from .config import get_config
    from .store import MemoryStore

    cfg = get_config()
    store = MemoryStore()

    subscriptions = _load_seed(cfg.seed_path)
    if subscriptions:
        seed_store(store, subscriptions)
        print(f"Loaded {len(subscriptions)} blogs from {cfg.seed_path}")
    elif getattr(args, "seed", None):
        print(f"Error: seed file not found: {cfg.seed_path}", file=sys.stderr)
        return 1

    app = create_app(store=store, cfg=cfg)
    uvicorn.run(
        app,
        host=cfg.host,
        port=cfg.port,
        log_level="debug" if cfg.debug else "info",
    )
    return 0


def _run_check(args: Namespace) -> int:
    """Fetch and normalize one feed, then print the result."""
    from .activity import classify
    from .config import get_config
    from .feed import ParseError
    from .sync import FeedFetchError, fetch_feed, snapshot

    cfg = get_config()
    try:
        feed = asyncio.run(
            fetch_feed(args.url, timeout=cfg.fetch_timeout, user_agent=cfg.user_agent)
        )
    except (FeedFetchError, ParseError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    snap = snapshot(feed)
    status = classify(snap.last_posted)

    if args.json:
        print(
            json.dumps(
                {
                    "title": feed.title,
                    "description": feed.description,
                    "link": feed.link,
                    "dialect": feed.dialect,
                    "status": status.value,
                    "lastPosted": snap.last_posted.isoformat() if snap.last_posted else None,
                    "totalPosts": snap.total_posts,
                    "items": [
                        {
                            "id": item.id,
                            "title": item.title,
                            "link": item.link,
                            "pubDate": item.raw_publish_date,
                            "isoDate": item.iso_date,
                            "contentSnippet": item.excerpt,
                            "dateIsFallback": item.date_is_fallback,
                        }
                        for item in feed.items
                    ],
                    "diagnostics": feed.diagnostics,
                },
                ensure_ascii=False,
                indent=2,
            )
        )
        return 0

    print(f"{feed.title or '(untitled)'} [{feed.dialect}]")
    if feed.link:
        print(feed.link)
    print()
    for item in feed.items:
        marker = " (date unknown)" if item.date_is_fallback else ""
        print(f"  {item.publish_timestamp:%Y-%m-%d}{marker}  {item.title}")
        if item.link:
            print(f"      {item.link}")
    print()
    print(f"Total posts: {snap.total_posts}")
    print(f"Last posted: {snap.last_posted.isoformat() if snap.last_posted else '-'}")
    print(f"Status: {status.value}")
    if feed.diagnostics and get_config().debug:
        print("\nNotes:")
        for note in feed.diagnostics:
            print(f"  - {note}")
    return 0


def _run_status(args: Namespace) -> int:
    """Add every seed blog from its feed and print a status table."""
    from .activity import classify, filter_by_status, sort_blogs, summarize
    from .config import get_config
    from .store import MemoryStore
    from .sync import SyncError, add_blog

    cfg = get_config()
    try:
        subscriptions = _load_seed(cfg.seed_path)
    except Exception as e:
        print(f"Error: could not read {cfg.seed_path}: {e}", file=sys.stderr)
        return 1
    if subscriptions is None:
        print(f"Seed file not found: {cfg.seed_path}", file=sys.stderr)
        return 1

    store = MemoryStore()

    async def _add_all() -> int:
        failed = 0
        for i, sub in enumerate(subscriptions, 1):
            print(f"  [{i}/{len(subscriptions)}] {sub.name}")
            try:
                await add_blog(
                    store,
                    name=sub.name,
                    url=sub.url,
                    rss_url=sub.rss_url,
                    timeout=cfg.fetch_timeout,
                    user_agent=cfg.user_agent,
                )
            except SyncError as e:
                failed += 1
                print(f"    Error: {e}", file=sys.stderr)
        return failed

    failed = asyncio.run(_add_all())

    blogs = sort_blogs(filter_by_status(store.list(), args.only), args.sort)
    print()
    for blog in blogs:
        last = f"{blog.last_posted:%Y-%m-%d}" if blog.last_posted else "-"
        print(
            f"  {classify(blog.last_posted).value:<8}  {last:<10}  "
            f"{blog.total_posts:>4}  {blog.name}"
        )

    summary = summarize(store.list())
    print(
        f"\nTotal: {summary.total}  Active: {summary.active}  "
        f"Inactive: {summary.inactive}  Failed: {failed}"
    )
    return 0 if failed < len(subscriptions) or not subscriptions else 1


def _run_config(args: Namespace) -> int:
    """Run config subcommands."""
    from .config import default_config_path, get_config, resolve_config_path

    config_command = getattr(args, "config_command", None)

    if config_command == "print":
        cfg = get_config()
        output_format = getattr(args, "format", "toml")

        if output_format == "json":
            from dataclasses import asdict

            print(json.dumps(asdict(cfg), indent=2))
        else:
            from dataclasses import fields

            for f in fields(cfg):
                value = getattr(cfg, f.name)
                if isinstance(value, str):
                    print(f'{f.name} = "{value}"')
                elif isinstance(value, bool):
                    print(f"{f.name} = {str(value).lower()}")
                else:
                    print(f"{f.name} = {value}")
        return 0

    elif config_command == "path":
        active_path = resolve_config_path()
        print(active_path or default_config_path())
        return 0

    else:
        print("Usage: blogpulse config <print|path>", file=sys.stderr)
        return 1


DEFAULT_CONFIG = """# blogpulse configuration

[server]
# host = "127.0.0.1"
# port = 5000
# cors_origins = ["http://localhost:5173"]

[feeds]
# seed = "blogs.toml"        # [[blogs]] tables with name, url, rss_url
# timeout = 15.0
# user_agent = "blogpulse/0.1.0 (+https://example.local)"

[runtime]
# debug = false
"""


def _run_init(args: Namespace) -> int:
    """Initialize config in the user config directory."""
    from .config import default_config_path

    config_path = default_config_path()

    if config_path.exists():
        print(f"Config already exists: {config_path}")
        return 0

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(DEFAULT_CONFIG)
    print(f"Created config: {config_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
