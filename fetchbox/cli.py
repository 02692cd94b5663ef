from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from fetchbox.config import get_settings, reset_settings
from fetchbox.exceptions import FetchboxConfigError, FetchboxError
from fetchbox.extract.extractor import ContentExtractor
from fetchbox.extract.models import ExtractOptions
from fetchbox.fetch.client import FetchClient
from fetchbox.fetch.models import FetchOptions
from fetchbox.logging_setup import configure_logging

logger = logging.getLogger("fetchbox.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fetchbox",
        description="Sandboxed containers, browser contexts and web fetching as tools.",
    )
    parser.add_argument("--env-file", help="Load environment variables from this file.")
    parser.add_argument("--log-level", help="Log level override (DEBUG, INFO, ...).")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Serve the tool catalogue over HTTP.")
    serve.add_argument("--host", help="Bind address (default FETCHBOX_HOST).")
    serve.add_argument("--port", type=int, help="Port (default FETCHBOX_PORT).")

    sub.add_parser("tools", help="Print the tool catalogue as JSON.")

    fetch = sub.add_parser("fetch", help="Fetch a URL and print the response as JSON.")
    fetch.add_argument("url")
    fetch.add_argument("--method", default="GET", help="HTTP method.")
    fetch.add_argument(
        "-H",
        "--header",
        action="append",
        default=[],
        help="Request header as 'Name: value' (repeatable).",
    )
    fetch.add_argument("--data", help="Request body.")
    fetch.add_argument("--timeout-ms", type=int, help="Request timeout in milliseconds.")
    fetch.add_argument(
        "--no-follow", action="store_true", help="Return redirects instead of following them."
    )

    extract = sub.add_parser("extract", help="Extract readable content from a URL or file.")
    source = extract.add_mutually_exclusive_group(required=True)
    source.add_argument("url", nargs="?", help="Page to fetch and extract.")
    source.add_argument("--file", help="Local HTML file to extract.")
    extract.add_argument("--base-url", help="Base URL for relative images (with --file).")
    extract.add_argument("--selector", help="CSS selector of the main content.")
    extract.add_argument("--no-markdown", action="store_true", help="Skip Markdown conversion.")
    extract.add_argument("--text", action="store_true", help="Print plain text only.")
    return parser


def _parse_headers(raw: List[str]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for item in raw:
        name, sep, value = item.partition(":")
        if not sep or not name.strip():
            raise FetchboxConfigError(
                f"Invalid header {item!r}, expected 'Name: value'",
                code="invalid_header",
            )
        headers[name.strip()] = value.strip()
    return headers


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


async def _fetch(args: argparse.Namespace) -> Dict[str, Any]:
    options = FetchOptions(
        method=args.method,
        headers=_parse_headers(args.header),
        body=args.data,
        timeout_ms=args.timeout_ms,
        follow_redirects=not args.no_follow,
    )
    response = await FetchClient().fetch(args.url, options)
    return response.to_dict()


async def _extract(args: argparse.Namespace) -> Any:
    extractor = ContentExtractor()
    if args.file:
        html = Path(args.file).read_text(encoding="utf-8")
        base_url = args.base_url
    else:
        response = await FetchClient().get(args.url)
        html = response.body
        base_url = response.final_url

    if args.text:
        return extractor.extract_plain_text(html)

    options = ExtractOptions(
        convert_to_markdown=not args.no_markdown,
        main_content_selector=args.selector,
    )
    return extractor.extract(html, base_url, options).to_dict()


def _serve(args: argparse.Namespace) -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "fetchbox.server:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_level=settings.log_level.lower(),
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    if args.env_file:
        load_dotenv(args.env_file, override=True)
    else:
        load_dotenv()
    reset_settings()

    try:
        settings = get_settings()
        configure_logging(args.log_level or settings.log_level, settings.log_dir)

        if args.command == "serve":
            _serve(args)
        elif args.command == "tools":
            from fetchbox.tools import list_tools

            _print_json([spec.to_dict() for spec in list_tools()])
        elif args.command == "fetch":
            _print_json(asyncio.run(_fetch(args)))
        elif args.command == "extract":
            result = asyncio.run(_extract(args))
            if isinstance(result, str):
                print(result)
            else:
                _print_json(result)
        return 0
    except FetchboxError as exc:
        logger.debug("Command failed", exc_info=True)
        print(json.dumps(exc.to_dict(), ensure_ascii=False), file=sys.stderr)
        return 1
    except OSError as exc:
        print(str(exc), file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
