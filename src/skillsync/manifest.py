from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import yaml

from .memo import RunCache

LOGGER = logging.getLogger(__name__)

MANIFEST_FILENAME = "SKILL.md"


class FrontmatterError(ValueError):
    pass


def parse_frontmatter(text: str) -> dict[str, Any]:
    """
    Parse the YAML block delimited by leading ``---`` lines.

    Documents without a frontmatter block yield an empty mapping.
    """
    lines = text.lstrip("\ufeff").splitlines()
    if not lines or lines[0].strip() != "---":
        return {}
    for end, line in enumerate(lines[1:], start=1):
        if line.strip() in ("---", "..."):
            break
    else:
        raise FrontmatterError("frontmatter block is not terminated")

    try:
        data = yaml.safe_load("\n".join(lines[1:end]))
    except yaml.YAMLError as e:
        raise FrontmatterError(f"invalid YAML frontmatter: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise FrontmatterError("frontmatter must be a mapping")
    return data


def _manifests(root: Path, filename: str) -> list[Path]:
    return sorted(
        (p for p in root.rglob(filename) if p.is_file()),
        key=lambda p: p.relative_to(root).as_posix(),
    )


def find_manifest(root: Path, name: str, *, filename: str = MANIFEST_FILENAME) -> str | None:
    """
    Return the path (relative to ``root``) of the manifest for package ``name``.

    A manifest whose parent directory is literally ``name`` wins over one that only
    declares ``name`` in its frontmatter.
    """
    manifests = _manifests(root, filename)

    for path in manifests:
        if path.parent != root and path.parent.name == name:
            return path.relative_to(root).as_posix()

    wanted = name.lower()
    for path in manifests:
        try:
            data = parse_frontmatter(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, FrontmatterError) as e:
            LOGGER.debug("skipping unreadable manifest %s: %s", path, e)
            continue
        declared = data.get("name")
        if isinstance(declared, str) and declared.lower() == wanted:
            return path.relative_to(root).as_posix()

    return None


class ManifestLocator:
    def __init__(self, *, cache: RunCache, filename: str = MANIFEST_FILENAME) -> None:
        self._cache = cache
        self.filename = filename

    async def locate(self, root: Path, name: str) -> str | None:
        return await self._cache.manifests.get(
            (str(root), name),
            lambda: asyncio.to_thread(find_manifest, root, name, filename=self.filename),
        )
