from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from platformdirs import user_cache_path, user_config_path

DEFAULT_DATA_DIR = "data"
DEFAULT_CONCURRENCY = 10
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_RETRIES = 3
DEFAULT_RETRY_DELAY_S = 1.0
DEFAULT_GH_TIMEOUT_S = 10.0


@dataclass(frozen=True)
class Config:
    data_dir: str = DEFAULT_DATA_DIR
    cache_dir: str | None = None  # defaults to the platform user cache dir
    concurrency: int = DEFAULT_CONCURRENCY
    timeout_s: float = DEFAULT_TIMEOUT_S
    retries: int = DEFAULT_RETRIES  # attempts, not extra tries
    retry_delay_s: float = DEFAULT_RETRY_DELAY_S
    gh_timeout_s: float = DEFAULT_GH_TIMEOUT_S
    baseline_file: str | None = None  # optional single-file catalog read before by-name/


@dataclass(frozen=True)
class Paths:
    """Filesystem layout derived from a Config."""

    data_dir: Path
    cache_dir: Path

    @property
    def by_name(self) -> Path:
        return self.data_dir / "by-name"

    @property
    def shard(self) -> Path:
        return self.data_dir / "shard"

    @property
    def source_custom(self) -> Path:
        return self.data_dir / "source-custom.json"

    @property
    def clone_cache(self) -> Path:
        return self.cache_dir / "git-clone"

    def source_file(self, source: str) -> Path:
        slug = source.replace(".", "-")
        return self.data_dir / f"source-{slug}.json"


def config_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv("SKILLSYNC_CONFIG_PATH"):
        return Path(env).expanduser()
    return user_config_path("skillsync") / "config.json"


def load_config(path_override: str | Path | None = None) -> Config:
    path = config_path(path_override)
    raw: Any = {}
    if path.exists():
        raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raw = {}

    allowed = {f.name for f in Config.__dataclass_fields__.values()}  # type: ignore[attr-defined]
    filtered: dict[str, Any] = {k: v for k, v in raw.items() if k in allowed}
    return apply_env(Config(**filtered))  # type: ignore[arg-type]


def _env_number(name: str, cast: type, fallback: Any) -> Any:
    value = os.getenv(name)
    if value is None:
        return fallback
    try:
        return cast(value)
    except (TypeError, ValueError):
        return fallback


def apply_env(cfg: Config) -> Config:
    # Env overrides the config file; CLI flags override both (see cli._merge_cfg).
    return Config(
        data_dir=os.getenv("SKILLSYNC_DATA_DIR") or cfg.data_dir,
        cache_dir=os.getenv("SKILLSYNC_CACHE_DIR") or cfg.cache_dir,
        concurrency=_env_number("SKILLSYNC_CONCURRENCY", int, cfg.concurrency),
        timeout_s=_env_number("SKILLSYNC_TIMEOUT_S", float, cfg.timeout_s),
        retries=cfg.retries,
        retry_delay_s=cfg.retry_delay_s,
        gh_timeout_s=cfg.gh_timeout_s,
        baseline_file=cfg.baseline_file,
    )


def resolve_paths(cfg: Config) -> Paths:
    cache_dir = Path(cfg.cache_dir).expanduser() if cfg.cache_dir else user_cache_path("skillsync")
    return Paths(data_dir=Path(cfg.data_dir).expanduser(), cache_dir=cache_dir)


def config_as_dict(cfg: Config) -> dict[str, Any]:
    d = asdict(cfg)
    d["cache_dir"] = str(resolve_paths(cfg).cache_dir)
    return d
