from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterable, AsyncIterator, Callable, Iterable

from .client import InputError, ListingClient, SkillsyncError, retry_async
from .config import DEFAULT_RETRIES, DEFAULT_RETRY_DELAY_S
from .storage import read_json, write_json_atomic

LOGGER = logging.getLogger(__name__)

SKILLS_SH_URL = "https://skills.sh/api/skills"
SKILLS_SH_PAGE_SIZE = 100
SKILLSDIRECTORY_URL = "https://www.skillsdirectory.com/api/skills"


@dataclass(frozen=True)
class SourceRecord:
    name: str
    source: str  # "owner/repo"
    path: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.source, self.name)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"name": self.name, "source": self.source}
        if self.path:
            d["path"] = self.path
        return d


def split_source(source: str) -> tuple[str, str]:
    owner, sep, repo = source.partition("/")
    if not sep or not owner or not repo:
        raise SkillsyncError(f"Invalid repository identifier {source!r}. Expected <owner>/<repo>.")
    return owner, repo


def _parse_record(raw: Any) -> SourceRecord | None:
    if not isinstance(raw, dict):
        return None
    name = raw.get("name")
    source = raw.get("source")
    if not isinstance(name, str) or not isinstance(source, str) or not name or "/" not in source:
        return None
    path = raw.get("path")
    return SourceRecord(name=name, source=source, path=path if isinstance(path, str) and path else None)


def dedupe_sources(records: Iterable[SourceRecord]) -> list[SourceRecord]:
    """Drop repeated (source, name) pairs, keeping the first occurrence and input order."""
    seen: set[tuple[str, str]] = set()
    out: list[SourceRecord] = []
    for rec in records:
        if rec.key in seen:
            continue
        seen.add(rec.key)
        out.append(rec)
    return out


async def collect(records: AsyncIterable[SourceRecord]) -> list[SourceRecord]:
    items = [rec async for rec in records]
    return sorted(dedupe_sources(items), key=lambda r: r.key)


def _page_items(data: Any) -> list[Any]:
    if not isinstance(data, dict):
        raise SkillsyncError(f"Unexpected listing payload: {type(data).__name__}")
    items = data.get("skills")
    if not isinstance(items, list):
        raise SkillsyncError("Listing payload has no 'skills' array.")
    return items


async def paginate_skills_sh(
    client: ListingClient,
    *,
    attempts: int = DEFAULT_RETRIES,
    delay_s: float = DEFAULT_RETRY_DELAY_S,
) -> AsyncIterator[SourceRecord]:
    offset = 0
    while True:
        LOGGER.info("fetching skills.sh offset=%d", offset)
        params = {"limit": SKILLS_SH_PAGE_SIZE, "offset": offset}
        data = await retry_async(
            lambda: client.get_json(SKILLS_SH_URL, params=params),
            attempts=attempts,
            delay_s=delay_s,
            description=f"skills.sh offset={offset}",
        )
        items = _page_items(data)
        if not items:
            return
        for item in items:
            if not isinstance(item, dict):
                continue
            name, source = item.get("skillId"), item.get("source")
            if isinstance(name, str) and isinstance(source, str):
                yield SourceRecord(name=name, source=source)
        offset += SKILLS_SH_PAGE_SIZE


async def paginate_skillsdirectory_com(
    client: ListingClient,
    *,
    attempts: int = DEFAULT_RETRIES,
    delay_s: float = DEFAULT_RETRY_DELAY_S,
) -> AsyncIterator[SourceRecord]:
    page = 1
    while True:
        LOGGER.info("fetching skillsdirectory.com page=%d", page)
        params = {"page": page}
        data = await retry_async(
            lambda: client.get_json(SKILLSDIRECTORY_URL, params=params),
            attempts=attempts,
            delay_s=delay_s,
            description=f"skillsdirectory.com page={page}",
        )
        items = _page_items(data)
        if not items:
            return
        for item in items:
            if not isinstance(item, dict):
                continue
            name = item.get("name")
            source = item.get("githubRepoFullName")
            path = item.get("skillFilePath")
            if isinstance(name, str) and isinstance(source, str):
                yield SourceRecord(name=name, source=source, path=path if isinstance(path, str) and path else None)
        page += 1


LISTING_SOURCES: dict[str, Callable[..., AsyncIterator[SourceRecord]]] = {
    "skills.sh": paginate_skills_sh,
    "skillsdirectory.com": paginate_skillsdirectory_com,
}


def get_listing(source: str) -> Callable[..., AsyncIterator[SourceRecord]]:
    try:
        return LISTING_SOURCES[source]
    except KeyError:
        known = ", ".join(sorted(LISTING_SOURCES))
        raise InputError(f"unknown source: {source} (expected one of: {known})") from None


def read_sources(path: Path) -> list[SourceRecord]:
    raw = read_json(path, default=[])
    if not isinstance(raw, list):
        raise SkillsyncError(f"Source list {path} must be a JSON array.")
    out: list[SourceRecord] = []
    for item in raw:
        rec = _parse_record(item)
        if rec is None:
            LOGGER.warning("skipping malformed source record in %s: %r", path, item)
            continue
        out.append(rec)
    return out


def group_by_repository(records: Iterable[SourceRecord]) -> dict[str, list[SourceRecord]]:
    """Group deduplicated records by repository, preserving listing order within each group."""
    grouped: dict[str, list[SourceRecord]] = {}
    for rec in dedupe_sources(records):
        grouped.setdefault(rec.source, []).append(rec)
    return grouped


def load_sources(files: Iterable[Path]) -> dict[str, list[SourceRecord]]:
    records: list[SourceRecord] = []
    for path in files:
        records.extend(read_sources(path))
    return group_by_repository(records)


def write_sources(path: Path, records: Iterable[SourceRecord]) -> int:
    items = [rec.to_dict() for rec in records]
    write_json_atomic(path, items)
    return len(items)
