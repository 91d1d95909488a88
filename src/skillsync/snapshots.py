from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .client import SkillsyncError, retry_async
from .config import DEFAULT_RETRIES, DEFAULT_RETRY_DELAY_S
from .memo import RunCache
from .process import CommandError, CommandRunner, run_command

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    hash: str
    store_path: Path


def archive_url(source: str, rev: str) -> str:
    return f"https://github.com/{source}/archive/{rev}.tar.gz"


def parse_prefetch_output(stdout: str) -> Snapshot | None:
    """``nix-prefetch-url --print-path`` prints the hash, then the store path."""
    lines = [line.strip() for line in stdout.strip().splitlines() if line.strip()]
    if len(lines) < 2:
        return None
    return Snapshot(hash=lines[0], store_path=Path(lines[1]))


class SnapshotFetcher:
    """Fetch an unpacked, content-addressed snapshot of a repository at a revision."""

    def __init__(
        self,
        *,
        cache: RunCache,
        runner: CommandRunner = run_command,
        attempts: int = DEFAULT_RETRIES,
        delay_s: float = DEFAULT_RETRY_DELAY_S,
    ) -> None:
        self._cache = cache
        self._run = runner
        self.attempts = attempts
        self.delay_s = delay_s

    async def fetch(self, source: str, rev: str) -> Snapshot | None:
        return await self._cache.snapshots.get((source, rev), lambda: self._fetch(source, rev))

    async def _fetch(self, source: str, rev: str) -> Snapshot | None:
        args = ["nix-prefetch-url", "--print-path", "--unpack", archive_url(source, rev)]
        try:
            result = await retry_async(
                lambda: self._run(args),
                attempts=self.attempts,
                delay_s=self.delay_s,
                retry_on=(CommandError, TimeoutError),
                description=f"nix-prefetch-url {source}@{rev}",
            )
        except (SkillsyncError, TimeoutError, OSError) as e:
            LOGGER.warning("nix-prefetch-url failed for %s: %s", source, e)
            return None

        snapshot = parse_prefetch_output(result.stdout)
        if snapshot is None:
            LOGGER.warning("nix-prefetch-url returned unexpected output for %s: %r", source, result.stdout)
        return snapshot
