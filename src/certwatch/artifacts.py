"""Storage of matched entries."""

import base64
import hashlib
import json
import os
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

from .blobstore import BlobStore
from .errors import ArtifactWriteError
from .models import MatchArtifact

ARTIFACT_PREFIX = "certs/"
# Longest name kept verbatim in a key, in UTF-8 bytes; filesystems cap a
# path segment at 255 bytes
MAX_KEY_NAME_BYTES = 100


class ArtifactSink(Protocol):
    async def store(self, key: str, payload: bytes) -> None:
        ...


def _rfc3339_nano(now: datetime) -> str:
    """Sortable UTC timestamp with nanosecond field width, e.g. 2024-05-01T10:00:00.123456000Z."""
    now = now.astimezone(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond:06d}000Z"


def _key_name(name: str) -> str:
    encoded = name.encode("utf-8")
    if len(encoded) <= MAX_KEY_NAME_BYTES:
        return name
    digest = hashlib.sha256(encoded).hexdigest()[:12]
    return encoded[:MAX_KEY_NAME_BYTES].decode("utf-8", errors="ignore") + "-" + digest


def artifact_key(name: str, now: Optional[datetime] = None) -> str:
    """
    Build a unique, time-sortable key for a matched entry.

    Format: certs/<timestamp>-<16 random bytes, urlsafe base64>-<name>.json

    Names longer than MAX_KEY_NAME_BYTES are cut and suffixed with the first
    12 hex digits of their SHA-256, e.g. `aaaa...aaa-3f1c9b0e77d2`.
    """
    now = now or datetime.now(timezone.utc)
    nonce = base64.urlsafe_b64encode(os.urandom(16)).decode("ascii")
    safe_name = _key_name(name.replace("/", "_"))
    return f"{ARTIFACT_PREFIX}{_rfc3339_nano(now)}-{nonce}-{safe_name}.json"


def build_artifact(payload: Dict[str, str], name: str, rule: str, kind: str) -> MatchArtifact:
    """Wrap the verbatim get-entries object for a matched entry."""
    return MatchArtifact(
        key=artifact_key(name),
        payload=json.dumps(payload).encode("utf-8"),
        matched_name=name,
        rule=rule,
        kind=kind,
    )


class BlobArtifactSink:
    """Writes artifacts into a BlobStore."""

    def __init__(self, blobs: BlobStore):
        self.blobs = blobs

    async def store(self, key: str, payload: bytes) -> None:
        """
        Raises:
            ArtifactWriteError: if the blob store rejects the write
        """
        try:
            await self.blobs.put(key, payload)
        except (OSError, ValueError) as e:
            raise ArtifactWriteError(f"put artifact {key}: {e}") from e
