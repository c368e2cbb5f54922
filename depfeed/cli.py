"""
Command line entry point.

    depfeed validate DependencyControl.json
    depfeed resolve DependencyControl.json --namespace arch.AegisubChain
    depfeed checksums https://example.org/DependencyControl.json
    depfeed deps DependencyControl.json
    depfeed fetch https://example.org/DependencyControl.json -o feed.json
    depfeed serve --port 8000
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from depfeed.core.logging import setup_logging
from depfeed.domain.entities import FeedDocument
from depfeed.domain.errors import FeedError
from depfeed.domain.models import RepositoryConfig, ValidationReport
from depfeed.domain.validation import FeedValidator, is_absolute_url
from depfeed.services.checksums import ChecksumVerifier
from depfeed.services.dependencies import DependencyResolver
from depfeed.services.feed_fetcher import download_feed, fetch_feed

logger = logging.getLogger("depfeed.cli")


def _read_source(source: str, config: RepositoryConfig) -> bytes:
    if is_absolute_url(source):
        return asyncio.run(
            fetch_feed(source, timeout=config.fetch_timeout_seconds, retries=config.fetch_retries)
        )
    return Path(source).read_bytes()


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _print_report(report: ValidationReport) -> None:
    for issue in report.issues:
        print(f"{issue.severity:<8} {issue.code:<20} {issue.path}: {issue.message}")
    verdict = "valid" if report.valid else "invalid"
    print(f"{report.feed_name or '<unnamed feed>'}: {verdict} "
          f"({len(report.errors)} errors, {len(report.warnings)} warnings)")


def cmd_validate(args: argparse.Namespace, config: RepositoryConfig) -> int:
    report = FeedValidator(config).validate(_read_source(args.source, config))
    if args.json:
        _print_json(report.to_payload())
    else:
        _print_report(report)
    return 0 if report.valid else 1


def cmd_resolve(args: argparse.Namespace, config: RepositoryConfig) -> int:
    doc = FeedDocument("cli", _read_source(args.source, config), config)
    if args.namespace:
        _print_json(doc.get_record(args.namespace, channel=args.channel))
    else:
        _print_json(doc.resolved())
    return 0


def cmd_checksums(args: argparse.Namespace, config: RepositoryConfig) -> int:
    doc = FeedDocument("cli", _read_source(args.source, config), config)
    results = asyncio.run(ChecksumVerifier(config).verify(doc, namespace=args.namespace, channel=args.channel))
    if args.json:
        _print_json([r.model_dump() for r in results])
    else:
        for r in results:
            line = f"{r.status:<8} {r.namespace} [{r.channel}] {r.url}"
            print(line if not r.detail else f"{line}: {r.detail}")
    return 0 if all(r.status == "ok" for r in results) else 1


def cmd_deps(args: argparse.Namespace, config: RepositoryConfig) -> int:
    doc = FeedDocument("cli", _read_source(args.source, config), config)
    results = asyncio.run(DependencyResolver(config).resolve(doc))
    if args.json:
        _print_json([r.model_dump() for r in results])
    else:
        for r in results:
            required = f" >= {r.required_version}" if r.required_version else ""
            line = f"{r.status:<12} {r.namespace} [{r.channel}] -> {r.module_name}{required}"
            print(line if not r.detail else f"{line}: {r.detail}")
    failed = {"missing", "outdated", "unreachable", "invalid"}
    return 1 if any(r.status in failed for r in results) else 0


def cmd_fetch(args: argparse.Namespace, config: RepositoryConfig) -> int:
    dest = asyncio.run(
        download_feed(
            args.url,
            Path(args.output),
            timeout=config.fetch_timeout_seconds,
            retries=config.fetch_retries,
        )
    )
    print(dest)
    return 0


def cmd_serve(args: argparse.Namespace, config: RepositoryConfig) -> int:
    import uvicorn

    uvicorn.run("depfeed.main:app", host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="depfeed", description="Work with DependencyControl update feeds.")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ... (default: $LOG_LEVEL or INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("validate", help="Check a feed for well-formedness.")
    p.add_argument("source", help="Feed file or URL")
    p.add_argument("--json", action="store_true", help="Print the report as JSON")
    p.set_defaults(func=cmd_validate)

    p = sub.add_parser("resolve", help="Print the feed with all @{...} placeholders expanded.")
    p.add_argument("source", help="Feed file or URL")
    p.add_argument("--namespace", help="Only resolve this macro or module")
    p.add_argument("--channel", help="Only include this channel (with --namespace)")
    p.set_defaults(func=cmd_resolve)

    p = sub.add_parser("checksums", help="Download advertised files and compare their SHA-1.")
    p.add_argument("source", help="Feed file or URL")
    p.add_argument("--namespace")
    p.add_argument("--channel")
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_checksums)

    p = sub.add_parser("deps", help="Resolve required modules against their feeds.")
    p.add_argument("source", help="Feed file or URL")
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_deps)

    p = sub.add_parser("fetch", help="Download a feed to a file.")
    p.add_argument("url")
    p.add_argument("-o", "--output", required=True)
    p.set_defaults(func=cmd_fetch)

    p = sub.add_parser("serve", help="Run the feed repository HTTP server.")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)
    p.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    config = RepositoryConfig()

    try:
        return args.func(args, config)
    except (FeedError, OSError) as e:
        logger.error(str(e))
        return 2


if __name__ == "__main__":
    sys.exit(main())
