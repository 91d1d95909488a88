from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path

from .client import TransportError, retry_async
from .config import DEFAULT_GH_TIMEOUT_S, DEFAULT_RETRIES, DEFAULT_RETRY_DELAY_S
from .memo import RunCache
from .process import CommandError, CommandRunner, run_command

LOGGER = logging.getLogger(__name__)

# Clone failures that mean "private, renamed or deleted" rather than a broken transport.
AUTH_REQUIRED_MARKERS = (
    "authentication required",
    "authentication failed",
    "could not read username",
    "terminal prompts disabled",
    "repository not found",
)

GIT_ENV = {"GIT_TERMINAL_PROMPT": "0"}


def clone_dir_for(cache_root: Path, source: str) -> Path:
    return cache_root / source.replace("/", "--")


def is_auth_required(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in AUTH_REQUIRED_MARKERS)


class RevisionResolver:
    """
    Resolve the head commit of a repository's default branch.

    The GitHub metadata API (through the ``gh`` CLI) is tried first; when that fails a
    shallow clone is made and its HEAD is read. Results are memoized in the run cache.
    """

    def __init__(
        self,
        *,
        clone_cache: Path,
        cache: RunCache,
        runner: CommandRunner = run_command,
        gh_timeout_s: float = DEFAULT_GH_TIMEOUT_S,
        attempts: int = DEFAULT_RETRIES,
        delay_s: float = DEFAULT_RETRY_DELAY_S,
    ) -> None:
        self.clone_cache = clone_cache
        self._cache = cache
        self._run = runner
        self.gh_timeout_s = gh_timeout_s
        self.attempts = attempts
        self.delay_s = delay_s

    async def resolve(self, source: str) -> str | None:
        return await self._cache.revisions.get(source, lambda: self._resolve(source))

    async def _resolve(self, source: str) -> str | None:
        rev = await self.rev_from_api(source)
        if rev:
            return rev
        LOGGER.debug("falling back to shallow clone for %s", source)
        rev = await self.rev_from_clone(source)
        if not rev:
            LOGGER.warning("could not resolve a revision for %s", source)
        return rev

    async def rev_from_api(self, source: str) -> str | None:
        args = ["gh", "api", f"repos/{source}/commits/HEAD", "--jq", ".sha"]
        try:
            result = await retry_async(
                lambda: self._run(args, timeout_s=self.gh_timeout_s),
                attempts=self.attempts,
                delay_s=self.delay_s,
                retry_on=(CommandError, TimeoutError),
                description=f"gh api {source}",
            )
        except (CommandError, TimeoutError, OSError) as e:
            LOGGER.debug("gh api lookup failed for %s: %s", source, e)
            return None
        return result.stdout.strip() or None

    async def rev_from_clone(self, source: str) -> str | None:
        clone_path = await self.clone(source)
        if clone_path is None:
            return None
        try:
            result = await self._run(["git", "rev-parse", "HEAD"], cwd=clone_path)
        except (CommandError, TimeoutError) as e:
            raise TransportError(f"failed to read HEAD of {source}: {e}") from e
        return result.stdout.strip() or None

    async def clone(self, source: str) -> Path | None:
        return await self._cache.clones.get(source, lambda: self._clone(source))

    async def _clone(self, source: str) -> Path | None:
        clone_path = clone_dir_for(self.clone_cache, source)
        await asyncio.to_thread(shutil.rmtree, clone_path, ignore_errors=True)
        clone_path.parent.mkdir(parents=True, exist_ok=True)

        url = f"https://github.com/{source}.git"
        try:
            await self._run(
                ["git", "clone", "--depth", "1", "--no-tags", "--quiet", url, str(clone_path)],
                env=GIT_ENV,
            )
        except CommandError as e:
            LOGGER.warning("failed to clone %s: %s", source, e)
            if is_auth_required(str(e)):
                return None
            raise TransportError(f"failed to clone {source}: {e}") from e
        return clone_path
