"""
Certificate Transparency Log Watcher
Incrementally scans classic CT logs for certificates matching domain and
pattern rules, storing matches and per-log progress in a blob store.
"""

__version__ = "1.0.0"

from .blobstore import BlobStore, LocalBlobStore, S3BlobStore, open_blob_store  # noqa: E402
from .catalog import LogListCatalog  # noqa: E402
from .client import ClassicLogClient, decode_entry  # noqa: E402
from .config import MonitorConfig, Settings  # noqa: E402
from .errors import (  # noqa: E402
    ArtifactWriteError,
    CatalogFetchError,
    CertWatchError,
    ConfigLoadError,
    DecodeError,
    FatalError,
    InvalidPatternError,
    LogUnavailableError,
    SoftError,
    StorePersistError,
)
from .models import (  # noqa: E402
    LogSource,
    RuleSet,
    RunSummary,
    SyncOutcome,
    SyncResult,
    Watermark,
)
from .monitor import CertMonitor  # noqa: E402
from .rules import compile_rules, evaluate, suffix_match  # noqa: E402
from .sync import sync_log  # noqa: E402

__all__ = [
    "__version__",
    "ArtifactWriteError",
    "BlobStore",
    "CatalogFetchError",
    "CertMonitor",
    "CertWatchError",
    "ClassicLogClient",
    "ConfigLoadError",
    "DecodeError",
    "FatalError",
    "InvalidPatternError",
    "LocalBlobStore",
    "LogListCatalog",
    "LogSource",
    "LogUnavailableError",
    "MonitorConfig",
    "RuleSet",
    "RunSummary",
    "S3BlobStore",
    "Settings",
    "SoftError",
    "StorePersistError",
    "SyncOutcome",
    "SyncResult",
    "Watermark",
    "compile_rules",
    "decode_entry",
    "evaluate",
    "open_blob_store",
    "suffix_match",
    "sync_log",
]
