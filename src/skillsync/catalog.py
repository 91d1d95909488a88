from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from .client import InputError, SkillsyncError
from .storage import read_json, write_json_atomic

LOGGER = logging.getLogger(__name__)

PARTITION_FILENAME = "skills.json"
SOURCE_TYPE = "github"


@dataclass(frozen=True)
class GitSource:
    owner: str
    repo: str
    rev: str
    hash: str
    type: str = SOURCE_TYPE


@dataclass(frozen=True)
class CatalogEntry:
    pname: str
    source: GitSource
    path: str  # manifest directory, relative to the snapshot root
    last_updated: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "pname": self.pname,
            "source": {
                "type": self.source.type,
                "owner": self.source.owner,
                "repo": self.source.repo,
                "rev": self.source.rev,
                "hash": self.source.hash,
            },
            "path": self.path,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "CatalogEntry":
        if not isinstance(raw, dict) or not isinstance(raw.get("source"), dict):
            raise SkillsyncError(f"Malformed catalog entry: {raw!r}")
        src = raw["source"]
        try:
            return cls(
                pname=str(raw["pname"]),
                source=GitSource(
                    owner=str(src["owner"]),
                    repo=str(src["repo"]),
                    rev=str(src["rev"]),
                    hash=str(src["hash"]),
                    type=str(src.get("type", SOURCE_TYPE)),
                ),
                path=str(raw["path"]),
                last_updated=str(raw["lastUpdated"]),
            )
        except KeyError as e:
            raise SkillsyncError(f"Catalog entry is missing field {e.args[0]!r}: {raw!r}") from e


@dataclass(frozen=True)
class ShardArtifact:
    name: str
    skills: tuple[CatalogEntry, ...]
    dropped: tuple[str, ...] = field(default=())

    def to_dict(self) -> dict[str, Any]:
        return {
            "shard": self.name,
            "skills": [e.to_dict() for e in self.skills],
            "dropped": list(self.dropped),
        }

    @classmethod
    def from_json(cls, name: str, raw: Any) -> "ShardArtifact":
        # Older artifacts are a bare list of entries.
        if isinstance(raw, list):
            return cls(name=name, skills=tuple(CatalogEntry.from_dict(x) for x in raw))
        if not isinstance(raw, dict):
            raise SkillsyncError(f"Malformed shard artifact {name}.")
        skills = raw.get("skills") or []
        dropped = raw.get("dropped") or []
        return cls(
            name=str(raw.get("shard") or name),
            skills=tuple(CatalogEntry.from_dict(x) for x in skills),
            dropped=tuple(str(x) for x in dropped),
        )


def make_pname(owner: str, repo: str, directory: str) -> str:
    return f"{owner}.{repo}.{directory}"


def utc_timestamp(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def catalog_prefix(pname: str) -> str:
    """Partition key of a package: the lowercase first character of its name."""
    if not pname:
        raise SkillsyncError("Package name must not be empty.")
    return pname[0].lower()


def entries_to_map(entries: Iterable[CatalogEntry]) -> dict[str, CatalogEntry]:
    return {e.pname: e for e in entries}


def read_entries(path: Path) -> list[CatalogEntry]:
    raw = read_json(path, default=[])
    if isinstance(raw, dict):
        # A single-file catalog may also be stored as a pname -> entry mapping.
        raw = list(raw.values())
    if not isinstance(raw, list):
        raise SkillsyncError(f"Catalog file {path} must hold a JSON array or object.")
    return [CatalogEntry.from_dict(x) for x in raw]


def load_catalog(by_name_dir: Path, baseline_file: Path | None = None) -> dict[str, CatalogEntry]:
    catalog: dict[str, CatalogEntry] = {}
    if baseline_file is not None:
        catalog.update(entries_to_map(read_entries(baseline_file)))
    if by_name_dir.is_dir():
        for part in sorted(p for p in by_name_dir.iterdir() if p.is_dir()):
            catalog.update(entries_to_map(read_entries(part / PARTITION_FILENAME)))
    return catalog


def _shard_sort_key(path: Path) -> tuple[int, int, str]:
    stem = path.stem
    if stem.isdigit():
        return (0, int(stem), stem)
    return (1, 0, stem)


def load_shard_artifacts(shard_dir: Path) -> list[ShardArtifact]:
    if not shard_dir.is_dir():
        return []
    files = sorted((p for p in shard_dir.glob("*.json") if p.is_file()), key=_shard_sort_key)
    return [ShardArtifact.from_json(p.stem, read_json(p)) for p in files]


def write_shard_artifact(shard_dir: Path, index: int, artifact: ShardArtifact) -> Path:
    path = shard_dir / f"{index}.json"
    write_json_atomic(path, artifact.to_dict())
    return path


def merge_catalog(
    existing: dict[str, CatalogEntry],
    artifacts: Iterable[ShardArtifact],
) -> dict[str, CatalogEntry]:
    """
    Overlay shard artifacts on the existing catalog, last write wins per pname.

    Artifacts are applied in the given order. A pname listed as dropped is removed
    unless some artifact also supplies an entry for it.
    """
    artifacts = list(artifacts)
    if not artifacts:
        raise InputError("No shard files found")

    merged = dict(existing)
    supplied: set[str] = set()
    dropped: set[str] = set()
    for artifact in artifacts:
        dropped.update(artifact.dropped)
        for entry in artifact.skills:
            merged[entry.pname] = entry
            supplied.add(entry.pname)

    for pname in sorted(dropped - supplied):
        if merged.pop(pname, None) is not None:
            LOGGER.info("dropped %s (manifest no longer found)", pname)
    return merged


def partition_catalog(catalog: dict[str, CatalogEntry]) -> dict[str, list[CatalogEntry]]:
    parts: dict[str, list[CatalogEntry]] = {}
    for entry in catalog.values():
        parts.setdefault(catalog_prefix(entry.pname), []).append(entry)
    return {prefix: sorted(entries, key=lambda e: e.pname) for prefix, entries in sorted(parts.items())}


def _is_partition_dir(path: Path) -> bool:
    return [p.name for p in path.iterdir()] == [PARTITION_FILENAME]


def save_catalog(by_name_dir: Path, catalog: dict[str, CatalogEntry]) -> dict[str, list[CatalogEntry]]:
    parts = partition_catalog(catalog)
    for prefix, entries in parts.items():
        write_json_atomic(by_name_dir / prefix / PARTITION_FILENAME, [e.to_dict() for e in entries])

    if by_name_dir.is_dir():
        for stale in sorted(p for p in by_name_dir.iterdir() if p.is_dir() and p.name not in parts):
            if not _is_partition_dir(stale):
                LOGGER.debug("leaving unrecognized directory %s", stale)
                continue
            LOGGER.debug("removing empty partition %s", stale)
            shutil.rmtree(stale)
    return parts


@dataclass(frozen=True)
class CombineResult:
    total: int
    partitions: int
    shards: int


def combine(*, by_name_dir: Path, shard_dir: Path, baseline_file: Path | None = None) -> CombineResult:
    artifacts = load_shard_artifacts(shard_dir)
    if not artifacts:
        raise InputError(f"No shard files found in {shard_dir}")

    existing = load_catalog(by_name_dir, baseline_file)
    merged = merge_catalog(existing, artifacts)
    parts = save_catalog(by_name_dir, merged)
    shutil.rmtree(shard_dir, ignore_errors=True)
    return CombineResult(total=len(merged), partitions=len(parts), shards=len(artifacts))
