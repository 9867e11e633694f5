"""Data types shared by the sync engine and its adapters."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

from cryptography import x509


class EntryType(IntEnum):
    """CT log entry types"""

    X509_ENTRY = 0
    PRECERT_ENTRY = 1


class SyncOutcome(str, Enum):
    """Terminal state of one log's sync task"""

    UNCHANGED = "unchanged"
    INITIALIZED = "initialized"
    ADVANCED_WITH_MATCHES = "advanced_with_matches"
    ADVANCED_NO_MATCHES = "advanced_no_matches"
    FAILED = "failed"


@dataclass(frozen=True)
class LogSource:
    """A CT log as listed in the catalog"""

    url: str
    operator: str
    description: str
    status: str = "usable"


@dataclass
class Watermark:
    """Persisted progress for a single CT log."""

    url: str
    operator: str = ""
    description: str = ""
    last_fetched: Optional[int] = None  # tree size consumed so far, None = never synced
    last_fetched_time: Optional[datetime] = None

    @classmethod
    def fresh(cls, source: LogSource) -> "Watermark":
        return cls(url=source.url, operator=source.operator, description=source.description)

    @property
    def initialized(self) -> bool:
        return self.last_fetched is not None

    def advanced_to(self, size: int, now: Optional[datetime] = None) -> "Watermark":
        """Return a copy that has consumed the log up to `size`."""
        return Watermark(
            url=self.url,
            operator=self.operator,
            description=self.description,
            last_fetched=size,
            last_fetched_time=now or datetime.now(timezone.utc),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "operator": self.operator,
            "description": self.description,
            "last_fetched": self.last_fetched,
            "last_fetched_time": (
                self.last_fetched_time.isoformat() if self.last_fetched_time else None
            ),
        }

    @classmethod
    def from_dict(cls, url: str, data: Dict[str, Any]) -> "Watermark":
        if isinstance(data, int):
            # Bare index, as written by older state files
            return cls(url=url, last_fetched=data)

        raw_time = data.get("last_fetched_time")
        last_fetched_time = datetime.fromisoformat(raw_time) if raw_time else None
        if last_fetched_time is not None and last_fetched_time.tzinfo is None:
            last_fetched_time = last_fetched_time.replace(tzinfo=timezone.utc)

        last_fetched = data.get("last_fetched")
        if last_fetched is not None:
            last_fetched = int(last_fetched)
            if last_fetched < 0:
                raise ValueError(f"negative last_fetched for {url}: {last_fetched}")

        return cls(
            url=data.get("url", url),
            operator=data.get("operator", ""),
            description=data.get("description", ""),
            last_fetched=last_fetched,
            last_fetched_time=last_fetched_time,
        )


@dataclass(frozen=True)
class RuleSet:
    """Compiled matching rules, shared read-only by every sync task"""

    domains: List[str] = field(default_factory=list)
    patterns: List[re.Pattern] = field(default_factory=list)
    include_precerts: bool = False


@dataclass(frozen=True)
class RuleMatch:
    """Result of evaluating one entry against a RuleSet"""

    matched: bool
    name: str = ""
    rule: str = ""


@dataclass
class RawEntry:
    """Undecoded entry exactly as returned by get-entries."""

    index: int
    payload: Dict[str, str]  # {"leaf_input": b64, "extra_data": b64}


@dataclass
class DecodedEntry:
    """Decoded log entry"""

    index: int
    timestamp: int
    entry_type: EntryType
    certificate: Optional[x509.Certificate] = None
    precertificate: Optional[x509.Certificate] = None


@dataclass
class MatchArtifact:
    """A matched entry ready to be written to the artifact sink"""

    key: str
    payload: bytes  # verbatim get-entries JSON object
    matched_name: str
    rule: str
    kind: str  # "cert" or "precert"


@dataclass
class SyncResult:
    """Terminal result of one log's sync task"""

    source: LogSource
    outcome: SyncOutcome
    watermark: Watermark
    matches: int = 0
    entries_seen: int = 0
    entries_skipped: int = 0
    error: Optional[str] = None


@dataclass
class RunSummary:
    """Statistics for one monitoring run"""

    logs_synced: int = 0
    outcomes: Dict[str, int] = field(default_factory=dict)
    total_matches: int = 0
    total_entries: int = 0

    def record(self, result: SyncResult) -> None:
        self.logs_synced += 1
        key = result.outcome.value
        self.outcomes[key] = self.outcomes.get(key, 0) + 1
        self.total_matches += result.matches
        self.total_entries += result.entries_seen
