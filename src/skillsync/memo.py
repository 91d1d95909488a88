from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Hashable, TypeVar

T = TypeVar("T")


class Memo:
    """
    Per-key memoization of async work.

    The first caller for a key starts the work; later callers (including concurrent
    ones) await the same future. Failures are memoized as well, so a key is attempted
    at most once per Memo.
    """

    def __init__(self, name: str = "memo") -> None:
        self.name = name
        self.misses: Counter[Hashable] = Counter()
        self._futures: dict[Hashable, asyncio.Future[Any]] = {}

    def __contains__(self, key: Hashable) -> bool:
        return key in self._futures

    def __len__(self) -> int:
        return len(self._futures)

    async def get(self, key: Hashable, factory: Callable[[], Awaitable[T]]) -> T:
        fut = self._futures.get(key)
        if fut is None:
            self.misses[key] += 1
            fut = asyncio.ensure_future(factory())
            self._futures[key] = fut
        # Shield so one cancelled awaiter does not cancel the shared work.
        return await asyncio.shield(fut)


@dataclass
class RunCache:
    """Memo tables scoped to one synchronization run."""

    revisions: Memo = field(default_factory=lambda: Memo("revisions"))
    clones: Memo = field(default_factory=lambda: Memo("clones"))
    snapshots: Memo = field(default_factory=lambda: Memo("snapshots"))
    manifests: Memo = field(default_factory=lambda: Memo("manifests"))
