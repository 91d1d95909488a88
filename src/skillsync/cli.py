from __future__ import annotations

import argparse
import asyncio
import json
import logging
import shutil
import sys
import textwrap
from pathlib import Path

from ._version import __version__
from .catalog import combine, load_catalog, write_shard_artifact
from .client import ListingClient, SkillsyncError, SkillsyncHTTPError
from .config import Config, Paths, config_as_dict, config_path, load_config, resolve_paths
from .memo import RunCache
from .shards import Shard, ShardResult, parse_shard, run_shard
from .sources import LISTING_SOURCES, collect, get_listing, load_sources, write_sources
from .sync import PackageUpdater

LOGGER = logging.getLogger("skillsync")


def _configure_logging(args: argparse.Namespace) -> None:
    level = logging.INFO
    if getattr(args, "verbose", False):
        level = logging.DEBUG
    elif getattr(args, "quiet", False):
        level = logging.WARNING
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s", stream=sys.stderr, force=True)


def _merge_cfg(base: Config, args: argparse.Namespace) -> Config:
    # CLI flags override env and config file (already merged by load_config).
    return Config(
        data_dir=getattr(args, "data_dir", None) or base.data_dir,
        cache_dir=getattr(args, "cache_dir", None) or base.cache_dir,
        concurrency=getattr(args, "concurrency", None) or base.concurrency,
        timeout_s=getattr(args, "timeout_s", None) or base.timeout_s,
        retries=base.retries,
        retry_delay_s=base.retry_delay_s,
        gh_timeout_s=base.gh_timeout_s,
        baseline_file=getattr(args, "baseline_file", None) or base.baseline_file,
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="skillsync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Keep a catalog of SKILL.md packages in sync with their GitHub repositories.",
        epilog=textwrap.dedent(
            """\
            Environment variables:
              SKILLSYNC_CONFIG_PATH, SKILLSYNC_DATA_DIR, SKILLSYNC_CACHE_DIR,
              SKILLSYNC_CONCURRENCY, SKILLSYNC_TIMEOUT_S
            """
        ),
    )
    p.add_argument("--data-dir", help="Directory holding source lists, shards and by-name/ (default: ./data)")
    p.add_argument("--cache-dir", help="Directory for the git clone cache")
    p.add_argument("--concurrency", type=int, help="Repositories processed concurrently per shard")
    p.add_argument("--timeout-s", type=float, help="HTTP timeout in seconds")
    p.add_argument("--baseline-file", help="Single-file catalog read before by-name/")
    verbosity = p.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors")
    p.add_argument("--version", action="version", version=f"skillsync {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    fetch = sub.add_parser("fetch", help="Fetch the skill list from a listing source")
    fetch.add_argument("source", help=f"Listing source ({', '.join(sorted(LISTING_SOURCES))})")

    update = sub.add_parser("update", help="Update skills from fetched source lists (shard format: index/total)")
    update.add_argument("shard", nargs="?", default="1/1", help="Shard to process (default: 1/1)")

    sub.add_parser("combine", help="Combine shard files into the by-name catalog")
    sub.add_parser("clean-cache", help="Remove the git clone cache")

    cfg = sub.add_parser("config", help="Inspect configuration")
    cfg_sub = cfg.add_subparsers(dest="subcmd", required=True)
    cfg_sub.add_parser("path", help="Print config path")
    cfg_sub.add_parser("show", help="Show effective config")

    return p


def _runtime(args: argparse.Namespace) -> tuple[Config, Paths]:
    cfg = _merge_cfg(load_config(), args)
    return cfg, resolve_paths(cfg)


async def _fetch(source: str, cfg: Config, paths: Paths) -> int:
    paginate = get_listing(source)
    async with ListingClient(timeout_s=cfg.timeout_s) as client:
        records = await collect(paginate(client, attempts=cfg.retries, delay_s=cfg.retry_delay_s))
    count = write_sources(paths.source_file(source), records)
    LOGGER.info("wrote %d skills", count)
    return count


def cmd_fetch(args: argparse.Namespace) -> int:
    cfg, paths = _runtime(args)
    get_listing(args.source)
    asyncio.run(_fetch(args.source, cfg, paths))
    return 0


async def _update(shard: Shard, cfg: Config, paths: Paths) -> ShardResult:
    files = [paths.source_custom, *(paths.source_file(name) for name in sorted(LISTING_SOURCES))]
    sources_by_repo = load_sources(files)
    previous = load_catalog(paths.by_name, Path(cfg.baseline_file) if cfg.baseline_file else None)

    updater = PackageUpdater.create(
        clone_cache=paths.clone_cache,
        cache=RunCache(),
        attempts=cfg.retries,
        delay_s=cfg.retry_delay_s,
        gh_timeout_s=cfg.gh_timeout_s,
    )
    result = await run_shard(
        shard,
        sources_by_repo,
        updater=updater,
        previous=previous,
        concurrency=cfg.concurrency,
    )
    path = write_shard_artifact(paths.shard, shard.index, result.artifact())
    LOGGER.info("wrote %d skills to %s", len(result.entries), path)
    return result


def cmd_update(args: argparse.Namespace) -> int:
    cfg, paths = _runtime(args)
    shard = parse_shard(args.shard)
    result = asyncio.run(_update(shard, cfg, paths))
    if result.errors:
        failed = ", ".join(sorted(result.errors))
        print(f"error: {len(result.errors)} repository pipeline(s) failed: {failed}", file=sys.stderr)
        return 1
    return 0


def cmd_combine(args: argparse.Namespace) -> int:
    cfg, paths = _runtime(args)
    result = combine(
        by_name_dir=paths.by_name,
        shard_dir=paths.shard,
        baseline_file=Path(cfg.baseline_file) if cfg.baseline_file else None,
    )
    LOGGER.info("combined %d shard file(s): %d skills in %d prefixes", result.shards, result.total, result.partitions)
    return 0


def cmd_clean_cache(args: argparse.Namespace) -> int:
    _, paths = _runtime(args)
    shutil.rmtree(paths.clone_cache, ignore_errors=True)
    LOGGER.info("cleaned cache")
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    if args.subcmd == "path":
        print(str(config_path()))
        return 0

    if args.subcmd == "show":
        cfg, _ = _runtime(args)
        print(json.dumps(config_as_dict(cfg), indent=2, sort_keys=True))
        return 0

    raise AssertionError("unreachable")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args)
    try:
        if args.cmd == "fetch":
            return cmd_fetch(args)
        if args.cmd == "update":
            return cmd_update(args)
        if args.cmd == "combine":
            return cmd_combine(args)
        if args.cmd == "clean-cache":
            return cmd_clean_cache(args)
        if args.cmd == "config":
            return cmd_config(args)
        raise AssertionError("unreachable")
    except SkillsyncHTTPError as e:
        print(f"error: HTTP {e.status_code} {e.body.strip()[:200]}", file=sys.stderr)
        return 1
    except SkillsyncError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
