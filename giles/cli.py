"""Minimal CLI entrypoint for giles."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any
from typing import Sequence

from core.config import GilesConfig
from core.errors import GilesError
from core.structured_logging import emit_json_event
from fetcher import Agent, InMemoryPolicyCache
from fetcher.robots import check_path, parse, serialize_rules


def _emit_cli_event(
    event_type: str,
    *,
    command: str,
    level: str | None = None,
    **payload: Any,
) -> str:
    """Emit one structured CLI event line with standard fields."""
    return emit_json_event(
        event_type=event_type,
        level=level,
        component="cli",
        command=command,
        **payload,
    )


def _cmd_fetch(args: argparse.Namespace) -> int:
    """Fetch one URL through the policy layer."""
    cache_connection: Any = InMemoryPolicyCache() if args.memory_cache else args.redis_url
    with Agent(
        cache_connection=cache_connection,
        user_agent=args.user_agent,
        concurrency_limit=args.concurrency,
        max_size=args.max_size,
        timeout_ms=args.timeout_ms,
        auto_refresh=False,
    ) as agent:
        try:
            result = agent.make_request(args.url)
        except GilesError as exc:
            _emit_cli_event(
                "cli_fetch_failed",
                command="fetch",
                level="error",
                url=args.url,
                error_code=exc.error_code.value,
                error=str(exc),
                redirect_chain=exc.redirect_chain,
            )
            return 1

    if result is None:
        _emit_cli_event("cli_fetch_declined", command="fetch", url=args.url)
        return 3

    payload: dict[str, Any] = {
        "url": args.url,
        "final_url": result.final_url,
        "redirect_chain": result.redirect_chain,
        "bytes_received": result.bytes_received,
    }
    if args.include_body:
        payload["data"] = result.data
    _emit_cli_event("cli_fetch_completed", command="fetch", **payload)
    return 0


def _cmd_check_robots(args: argparse.Namespace) -> int:
    """Evaluate paths against a local robots.txt file."""
    robots_path = Path(args.robots_file)
    if not robots_path.exists():
        raise FileNotFoundError(f"robots.txt not found: {robots_path}")

    rule_set = parse(robots_path.read_text(encoding="utf-8", errors="replace"))
    for path in args.paths:
        _emit_cli_event(
            "robots_check",
            command="check-robots",
            user_agent=args.user_agent,
            path=path,
            allowed=check_path(rule_set, args.user_agent, path),
        )

    _emit_cli_event(
        "robots_serialized",
        command="check-robots",
        user_agent=args.user_agent,
        rules=serialize_rules(rule_set, args.user_agent),
        sitemaps=rule_set.sitemaps,
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Create argument parser for the giles CLI."""
    parser = argparse.ArgumentParser(
        prog="giles",
        description="Policy-enforcing crawl client (blacklist + robots.txt + bounded fetch)",
    )
    parser.add_argument("--version", action="version", version="giles 0.1.0")

    subparsers = parser.add_subparsers(dest="command")

    fetch_parser = subparsers.add_parser(
        "fetch",
        help="Fetch one URL if blacklist and robots.txt allow it",
    )
    fetch_parser.add_argument("url", help="URL to fetch")
    fetch_parser.add_argument(
        "--redis-url",
        default="redis://localhost:6379/0",
        help="Policy cache location",
    )
    fetch_parser.add_argument(
        "--memory-cache",
        action="store_true",
        help="Use a throwaway in-process cache instead of Redis",
    )
    fetch_parser.add_argument("--user-agent", default=GilesConfig.USER_AGENT)
    fetch_parser.add_argument("--max-size", type=int, default=GilesConfig.MAX_BODY_BYTES)
    fetch_parser.add_argument("--timeout-ms", type=int, default=GilesConfig.TIMEOUT_MS)
    fetch_parser.add_argument("--concurrency", type=int, default=GilesConfig.CONCURRENCY_LIMIT)
    fetch_parser.add_argument(
        "--include-body",
        action="store_true",
        help="Include the fetched body in the completion event",
    )
    fetch_parser.set_defaults(func=_cmd_fetch)

    robots_parser = subparsers.add_parser(
        "check-robots",
        help="Evaluate paths against a local robots.txt",
    )
    robots_parser.add_argument("robots_file", help="Path to robots.txt")
    robots_parser.add_argument("paths", nargs="+", help="Paths to check, e.g. /private/x")
    robots_parser.add_argument("--user-agent", default=GilesConfig.USER_AGENT)
    robots_parser.set_defaults(func=_cmd_check_robots)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Execute CLI and return process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    try:
        return int(args.func(args))
    except Exception as exc:
        _emit_cli_event(
            "cli_error",
            command=str(getattr(args, "command", "unknown")),
            level="error",
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return 1


def cli() -> None:
    """Console-script entrypoint."""
    raise SystemExit(main())


if __name__ == "__main__":
    raise SystemExit(main())
