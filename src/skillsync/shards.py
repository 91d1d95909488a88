from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Mapping, Sequence, TypeVar

from .catalog import CatalogEntry, ShardArtifact
from .client import InputError
from .config import DEFAULT_CONCURRENCY
from .sources import SourceRecord
from .sync import Failed, PackageUpdater, Unchanged, Updated, expected_pname

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Shard:
    index: int  # 1-based
    total: int

    def __str__(self) -> str:
        return f"{self.index}/{self.total}"


def parse_shard(value: str) -> Shard:
    raw = value.strip()
    index_s, sep, total_s = raw.partition("/")
    if not sep:
        raise InputError(f"invalid shard: {value!r} (expected <index>/<total>)")
    try:
        index, total = int(index_s), int(total_s)
    except ValueError:
        raise InputError(f"invalid shard: {value!r} (expected <index>/<total>)") from None
    if total < 1 or not 1 <= index <= total:
        raise InputError(f"invalid shard: {value!r} (index must be within 1..total)")
    return Shard(index=index, total=total)


def partition(items: Sequence[T], index: int, total: int) -> list[T]:
    """
    Return the ``index``-th (1-based) of ``total`` contiguous slices of ``items``.

    Every slice but the trailing ones holds ``ceil(len(items) / total)`` items; when
    ``total`` exceeds the item count the trailing slices are empty.
    """
    if total < 1 or not 1 <= index <= total:
        raise InputError(f"invalid shard: {index}/{total}")
    unit = math.ceil(len(items) / total)
    return list(items[(index - 1) * unit : index * unit])


@dataclass
class RepositoryOutcome:
    repository: str
    entries: list[CatalogEntry] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class ShardResult:
    shard: Shard
    repositories: int
    entries: list[CatalogEntry]
    dropped: list[str]
    warnings: list[str]
    errors: dict[str, BaseException]

    def artifact(self) -> ShardArtifact:
        return ShardArtifact(name=str(self.shard), skills=tuple(self.entries), dropped=tuple(self.dropped))


def finalize_entries(entries: Sequence[CatalogEntry]) -> list[CatalogEntry]:
    seen: set[str] = set()
    unique: list[CatalogEntry] = []
    for entry in entries:
        if entry.pname in seen:
            continue
        seen.add(entry.pname)
        unique.append(entry)
    return sorted(unique, key=lambda e: e.pname)


async def update_repository(
    repository: str,
    records: Sequence[SourceRecord],
    *,
    updater: PackageUpdater,
    previous: Mapping[str, CatalogEntry],
) -> RepositoryOutcome:
    """Update a repository's packages one after another, in listing order."""
    outcome = RepositoryOutcome(repository=repository)
    for record in records:
        result = await updater.update(record, previous.get(expected_pname(record)), previous=previous)
        if isinstance(result, Updated):
            outcome.entries.append(result.entry)
        elif isinstance(result, Unchanged):
            if result.reason is not None:
                outcome.warnings.append(f"kept previous {result.entry.pname} ({result.reason})")
            outcome.entries.append(result.entry)
        elif isinstance(result, Failed):
            outcome.warnings.append(result.message)
            if result.dropped:
                outcome.dropped.append(result.dropped)
    outcome.entries = finalize_entries(outcome.entries)
    return outcome


async def run_shard(
    shard: Shard,
    sources_by_repo: Mapping[str, Sequence[SourceRecord]],
    *,
    updater: PackageUpdater,
    previous: Mapping[str, CatalogEntry],
    concurrency: int = DEFAULT_CONCURRENCY,
) -> ShardResult:
    repos = partition(sorted(sources_by_repo), shard.index, shard.total)
    LOGGER.info("update shard %s: %d repositories", shard, len(repos))

    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def run_one(repo: str) -> RepositoryOutcome:
        async with semaphore:
            return await update_repository(repo, sources_by_repo[repo], updater=updater, previous=previous)

    results = await asyncio.gather(*(run_one(repo) for repo in repos), return_exceptions=True)

    entries: list[CatalogEntry] = []
    dropped: list[str] = []
    warnings: list[str] = []
    errors: dict[str, BaseException] = {}
    for repo, res in zip(repos, results):
        if isinstance(res, BaseException):
            if not isinstance(res, Exception):
                raise res
            LOGGER.error("repository %s failed: %s", repo, res)
            errors[repo] = res
            continue
        entries.extend(res.entries)
        dropped.extend(res.dropped)
        warnings.extend(res.warnings)

    return ShardResult(
        shard=shard,
        repositories=len(repos),
        entries=entries,
        dropped=dropped,
        warnings=warnings,
        errors=errors,
    )
