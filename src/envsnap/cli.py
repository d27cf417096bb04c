"""Command-line front-end.

Usage:
    envsnap resolve shell.toml -o env.manifest --cache-dir ~/.cache/envsnap
    envsnap fetch shell.toml
    envsnap show env.manifest --paths
    envsnap cache-clear
"""

from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Sequence
from pathlib import Path

from envsnap.cache import SnapshotCache
from envsnap.deadline import Deadline
from envsnap.descriptor import load_descriptor
from envsnap.errors import EnvsnapError
from envsnap.fetch import SnapshotFetcher
from envsnap.manifest import read_manifest
from envsnap.observability import StructuredLogger
from envsnap.pipeline import Pipeline
from envsnap.policy import DEFAULT_MAX_CONCURRENCY, Policy


def default_cache_dir() -> Path:
    base = os.environ.get("XDG_CACHE_HOME")
    root = Path(base) if base else Path.home() / ".cache"
    return root / "envsnap"


def cmd_resolve(args: argparse.Namespace, logger: StructuredLogger) -> int:
    descriptor = load_descriptor(args.descriptor)
    cache_dir = Path(args.cache_dir)
    fetcher = SnapshotFetcher(SnapshotCache(cache_dir), policy=_policy(args), logger=logger)
    store_root = Path(args.store_root) if args.store_root else cache_dir / "store"
    pipeline = Pipeline(fetcher, store_root=store_root, logger=logger)
    manifest = pipeline.run(
        descriptor.sources,
        descriptor.packages,
        args.output,
        timeout=args.timeout,
    )
    for entry in manifest.entries:
        print(f"{entry.name} {entry.version} {entry.path}")
    print(f"Wrote {manifest.path}")
    return 0


def cmd_fetch(args: argparse.Namespace, logger: StructuredLogger) -> int:
    descriptor = load_descriptor(args.descriptor)
    fetcher = SnapshotFetcher(SnapshotCache(args.cache_dir), policy=_policy(args), logger=logger)
    snapshots = fetcher.fetch_many(descriptor.sources, deadline=Deadline.after(args.timeout))
    for snapshot in snapshots:
        print(f"{snapshot.sha256}  {snapshot.locator.resolved_url}")
    return 0


def cmd_show(args: argparse.Namespace, logger: StructuredLogger) -> int:
    _ = logger
    manifest = read_manifest(args.manifest)
    if args.paths:
        print(os.pathsep.join(manifest.search_paths()))
        return 0
    for entry in manifest.entries:
        print(f"{entry.name}\t{entry.version}\t{entry.sha256}\t{entry.path}")
    return 0


def cmd_cache_clear(args: argparse.Namespace, logger: StructuredLogger) -> int:
    SnapshotCache(args.cache_dir).clear()
    logger.log(operation="cache_clear", stage=None, message="Cleared snapshot cache.")
    print(f"Cleared {args.cache_dir}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--cache-dir",
        default=str(default_cache_dir()),
        help="Snapshot cache directory (default: %(default)s)",
    )
    common.add_argument("--log-json", help="Write structured log records to this path")

    parser = argparse.ArgumentParser(
        prog="envsnap",
        description="Resolve pinned package snapshots into environment manifests",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    resolve_p = sub.add_parser(
        "resolve",
        parents=[common],
        help="Fetch, resolve, and write an environment manifest",
    )
    resolve_p.add_argument("descriptor", help="Environment descriptor (TOML)")
    resolve_p.add_argument("-o", "--output", required=True, help="Manifest destination")
    resolve_p.add_argument("--store-root", help="Root used for package paths in the manifest")
    _add_fetch_options(resolve_p)
    resolve_p.set_defaults(handler=cmd_resolve)

    fetch_p = sub.add_parser(
        "fetch",
        parents=[common],
        help="Prefill the cache with the descriptor's snapshots",
    )
    fetch_p.add_argument("descriptor", help="Environment descriptor (TOML)")
    _add_fetch_options(fetch_p)
    fetch_p.set_defaults(handler=cmd_fetch)

    show_p = sub.add_parser(
        "show",
        parents=[common],
        help="Print a manifest",
    )
    show_p.add_argument("manifest", help="Manifest path")
    show_p.add_argument("--paths", action="store_true", help="Print the launcher search path")
    show_p.set_defaults(handler=cmd_show)

    clear_p = sub.add_parser(
        "cache-clear",
        parents=[common],
        help="Evict every cached snapshot",
    )
    clear_p.set_defaults(handler=cmd_cache_clear)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = StructuredLogger()
    try:
        return int(args.handler(args, logger))
    except EnvsnapError as exc:
        print(f"{exc.code}: {exc}", file=sys.stderr)
        return 1
    finally:
        if args.log_json:
            logger.to_json_lines(args.log_json)


def _add_fetch_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--timeout", type=float, help="Seconds before fetch and parse give up")
    parser.add_argument(
        "--jobs",
        type=int,
        default=DEFAULT_MAX_CONCURRENCY,
        help="Concurrent fetches (default: %(default)s)",
    )
    parser.add_argument("--offline", action="store_true", help="Serve snapshots from cache only")
    parser.add_argument(
        "--allow-unpinned",
        action="store_true",
        help="Accept sources without a sha256 pin",
    )
    parser.add_argument(
        "--mutable-revisions",
        choices=("warn", "error", "allow"),
        default="warn",
        help="How to treat branch or tag revisions (default: %(default)s)",
    )


def _policy(args: argparse.Namespace) -> Policy:
    return Policy(
        require_integrity=not args.allow_unpinned,
        network_mode="offline" if args.offline else "online",
        mutable_revision_policy=args.mutable_revisions,
        max_concurrency=args.jobs,
    )


if __name__ == "__main__":
    raise SystemExit(main())
