from ._version import __version__
from .catalog import CatalogEntry, GitSource, merge_catalog
from .client import InputError, SkillsyncError, SkillsyncHTTPError, TransportError
from .shards import Shard, parse_shard, partition, run_shard
from .sources import SourceRecord, collect
from .sync import Failed, PackageUpdater, Unchanged, Updated

__all__ = [
    "__version__",
    "CatalogEntry",
    "Failed",
    "GitSource",
    "InputError",
    "PackageUpdater",
    "Shard",
    "SkillsyncError",
    "SkillsyncHTTPError",
    "SourceRecord",
    "TransportError",
    "Unchanged",
    "Updated",
    "collect",
    "merge_catalog",
    "parse_shard",
    "partition",
    "run_shard",
]
