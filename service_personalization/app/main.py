#!/usr/bin/env python3
"""
Personalize a static HTML document from the command line.

Loads the HTML into an in-memory page, fetches the active workflows for
the given URL from the workflow service, runs the page-load pass and
prints the personalized document.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from shared.errors import ConfigurationError
from shared.logging import configure_logging
from .config import EngineConfig, get_config
from .engine import PersonalizationEngine
from .page.base import PageEnvironment
from .page.soup import SoupPage


DEFAULT_USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36"


async def personalize(html: str, *, url: str, config: EngineConfig,
                      viewport_width: int = 1280, viewport_height: int = 800,
                      user_agent: str = DEFAULT_USER_AGENT,
                      settle: float = 0.0) -> Tuple[str, Dict[str, Any]]:
    """Run the page-load pass over html and return the result plus engine stats."""
    page = SoupPage(html, PageEnvironment(
        url=url,
        user_agent=user_agent,
        viewport_width=viewport_width,
        viewport_height=viewport_height
    ))
    engine = PersonalizationEngine(page, config)

    try:
        await engine.start()
        if settle > 0:
            await asyncio.sleep(settle)
        stats = engine.stats()
    finally:
        await engine.teardown()

    return page.serialize(), stats


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Apply personalization workflows to an HTML file.")
    parser.add_argument("html_file", type=Path, help="HTML document to personalize")
    parser.add_argument("--url", required=True, help="URL the document is served at (used for targeting and UTM parameters)")
    parser.add_argument("--api-endpoint", default=None, help="Workflow service base URL (default: PERSONALIZATION_API_ENDPOINT)")
    parser.add_argument("--api-key", default=None, help="API key sent as X-API-Key")
    parser.add_argument("--viewport-width", type=int, default=1280, help="Viewport width used for device detection")
    parser.add_argument("--viewport-height", type=int, default=800, help="Viewport height")
    parser.add_argument("--settle", type=float, default=0.0, help="Seconds to wait for delayed actions before writing output")
    parser.add_argument("--output", type=Path, default=None, help="Write the HTML here instead of stdout")
    parser.add_argument("--stats", action="store_true", help="Print engine stats as JSON to stderr")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)

    overrides: Dict[str, Any] = {"hide_content_during_init": False, "debug": args.debug}
    if args.api_endpoint:
        overrides["api_endpoint"] = args.api_endpoint
    if args.api_key:
        overrides["api_key"] = args.api_key

    try:
        config = get_config(**overrides)
    except ConfigurationError as exc:
        print(exc.to_response().model_dump_json(), file=sys.stderr)
        return 2

    configure_logging("personalization", config.effective_log_level)

    try:
        html = args.html_file.read_text(encoding="utf-8")
        result, stats = asyncio.run(personalize(
            html,
            url=args.url,
            config=config,
            viewport_width=args.viewport_width,
            viewport_height=args.viewport_height,
            settle=args.settle
        ))
    except KeyboardInterrupt:
        return 130
    except Exception as exc:  # pragma: no cover - CLI surface
        print(f"[personalize] failed: {exc}", file=sys.stderr)
        return 1

    if args.output:
        args.output.write_text(result, encoding="utf-8")
    else:
        print(result)

    if args.stats:
        print(json.dumps(stats, indent=2), file=sys.stderr)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
