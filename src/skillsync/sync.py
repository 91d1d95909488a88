from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Literal, Mapping

from .catalog import CatalogEntry, GitSource, make_pname, utc_timestamp
from .config import DEFAULT_GH_TIMEOUT_S, DEFAULT_RETRIES, DEFAULT_RETRY_DELAY_S
from .manifest import ManifestLocator
from .memo import RunCache
from .process import CommandRunner, run_command
from .revisions import RevisionResolver
from .snapshots import SnapshotFetcher
from .sources import SourceRecord, split_source

LOGGER = logging.getLogger(__name__)

FailureReason = Literal["unresolved", "fetch-failed", "not-found"]


@dataclass(frozen=True)
class Updated:
    entry: CatalogEntry


@dataclass(frozen=True)
class Unchanged:
    """The previous entry is kept; ``reason`` is set when this is a fallback after a failure."""

    entry: CatalogEntry
    reason: FailureReason | None = None


@dataclass(frozen=True)
class Failed:
    reason: FailureReason
    message: str
    dropped: str | None = None  # pname of a previous entry whose manifest is gone


UpdateResult = Updated | Unchanged | Failed


def expected_pname(record: SourceRecord) -> str:
    """
    The pname a record is expected to produce, used to find its previous entry.

    When the listing provides the manifest path its directory name is used; otherwise
    the package name is assumed to match its directory.
    """
    owner, repo = split_source(record.source)
    directory = record.name
    if record.path:
        parent = posixpath.basename(posixpath.dirname(record.path.strip("/")))
        if parent:
            directory = parent
    return make_pname(owner, repo, directory)


class PackageUpdater:
    """Bring one package's catalog entry up to date."""

    def __init__(
        self,
        *,
        resolver: RevisionResolver,
        fetcher: SnapshotFetcher,
        locator: ManifestLocator,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.resolver = resolver
        self.fetcher = fetcher
        self.locator = locator
        self._clock = clock

    @classmethod
    def create(
        cls,
        *,
        clone_cache: Path,
        cache: RunCache | None = None,
        runner: CommandRunner | None = None,
        attempts: int = DEFAULT_RETRIES,
        delay_s: float = DEFAULT_RETRY_DELAY_S,
        gh_timeout_s: float = DEFAULT_GH_TIMEOUT_S,
    ) -> "PackageUpdater":
        cache = cache or RunCache()
        runner = runner or run_command
        return cls(
            resolver=RevisionResolver(
                clone_cache=clone_cache,
                cache=cache,
                runner=runner,
                gh_timeout_s=gh_timeout_s,
                attempts=attempts,
                delay_s=delay_s,
            ),
            fetcher=SnapshotFetcher(cache=cache, runner=runner, attempts=attempts, delay_s=delay_s),
            locator=ManifestLocator(cache=cache),
        )

    def _now(self) -> str:
        return utc_timestamp(self._clock() if self._clock else None)

    async def update(
        self,
        record: SourceRecord,
        prev: CatalogEntry | None = None,
        *,
        previous: Mapping[str, CatalogEntry] | None = None,
    ) -> UpdateResult:
        """
        ``prev`` is the entry found under the record's expected pname. ``previous`` is the
        whole previous catalog, consulted again once the manifest's real pname is known.
        """
        owner, repo = split_source(record.source)

        rev = await self.resolver.resolve(record.source)
        if not rev:
            if prev is not None:
                return Unchanged(prev, reason="unresolved")
            return Failed("unresolved", f"no revision for {record.source}")

        if prev is not None and prev.source.rev == rev:
            return Unchanged(prev)

        snapshot = await self.fetcher.fetch(record.source, rev)
        if snapshot is None:
            if prev is not None:
                return Unchanged(prev, reason="fetch-failed")
            return Failed("fetch-failed", f"snapshot fetch failed for {record.source}@{rev}")

        manifest = await self.locator.locate(snapshot.store_path, record.name)
        if manifest is None:
            LOGGER.warning("skill %s not found in %s", record.name, record.source)
            return Failed(
                "not-found",
                f"skill {record.name} not found in {record.source}",
                dropped=prev.pname if prev is not None else None,
            )

        skill_dir = posixpath.dirname(manifest) or "."
        directory = repo if skill_dir == "." else posixpath.basename(skill_dir)
        pname = make_pname(owner, repo, directory)

        # The manifest directory can differ from the listing name (root manifest, frontmatter match).
        known = prev if prev is not None and prev.pname == pname else (previous or {}).get(pname)
        if known is not None and known.source.rev == rev and known.path == skill_dir:
            return Unchanged(known)

        entry = CatalogEntry(
            pname=pname,
            source=GitSource(owner=owner, repo=repo, rev=rev, hash=snapshot.hash),
            path=skill_dir,
            last_updated=self._now(),
        )
        return Updated(entry)
