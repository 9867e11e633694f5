"""Incremental sync of a single CT log."""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol, Tuple

from cryptography import x509

from .artifacts import ArtifactSink, build_artifact
from .client import certificate_names
from .errors import DecodeError, LogUnavailableError
from .models import DecodedEntry, LogSource, RawEntry, RuleSet, SyncOutcome, SyncResult, Watermark
from .rules import evaluate

logger = logging.getLogger(__name__)


class LogClient(Protocol):
    """What the sync task needs from a log transport."""

    async def current_size(self) -> int:
        ...

    async def fetch_range(self, start: int, end: int) -> List[RawEntry]:
        ...

    def decode(self, raw: RawEntry) -> DecodedEntry:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def select_certificate(
    entry: DecodedEntry, include_precerts: bool
) -> Tuple[Optional[x509.Certificate], str]:
    """Pick the certificate to match on: the leaf, or the precert when enabled."""
    if include_precerts and entry.precertificate is not None:
        return entry.precertificate, "precert"
    return entry.certificate, "cert"


async def sync_log(
    source: LogSource,
    watermark: Watermark,
    client: LogClient,
    rules: RuleSet,
    sink: ArtifactSink,
    now: Callable[[], datetime] = _utcnow,
    max_entries: int = 0,
) -> SyncResult:
    """
    Bring one log's watermark up to the log's current size.

    Soft failures (LogUnavailableError) come back as a FAILED result carrying
    the unchanged watermark. Artifact write failures are raised.

    With `max_entries` set, at most that many entries are fetched and the
    watermark stops there; the next run continues from it.
    """
    prefix = f"[{source.url}]"

    try:
        current_size = await client.current_size()
    except LogUnavailableError as e:
        logger.warning(f"{prefix} fetch sth error: {e}")
        return SyncResult(source, SyncOutcome.FAILED, watermark, error=str(e))

    if not watermark.initialized:
        logger.info(f"{prefix} init state at tree size {current_size}")
        return SyncResult(
            source, SyncOutcome.INITIALIZED, watermark.advanced_to(current_size, now())
        )

    if current_size == watermark.last_fetched:
        logger.info(f"{prefix} log not changed")
        return SyncResult(source, SyncOutcome.UNCHANGED, watermark)

    if current_size < watermark.last_fetched:
        logger.warning(
            f"{prefix} tree size {current_size} is behind watermark "
            f"{watermark.last_fetched}, leaving watermark as is"
        )
        return SyncResult(source, SyncOutcome.UNCHANGED, watermark)

    start = watermark.last_fetched
    end = current_size
    if max_entries and end - start > max_entries:
        end = start + max_entries
        logger.info(f"{prefix} catching up, fetching [{start}, {end}) of {current_size}")

    try:
        raw_entries = await client.fetch_range(start, end)
    except LogUnavailableError as e:
        logger.warning(f"{prefix} get raw entries err: {e}")
        return SyncResult(source, SyncOutcome.FAILED, watermark, error=str(e))

    seen = 0
    skipped = 0
    matches = 0

    for raw in raw_entries:
        seen += 1
        try:
            entry = client.decode(raw)
        except DecodeError as e:
            if e.fatal:
                logger.error(
                    f"{prefix} fatal parse error, dropping remaining "
                    f"{len(raw_entries) - seen} entries: {e}"
                )
                break
            logger.warning(f"{prefix} skipping entry: {e}")
            skipped += 1
            continue

        try:
            cert, kind = select_certificate(entry, rules.include_precerts)
            names = certificate_names(cert) if cert is not None else []
        except Exception as e:
            logger.warning(f"{prefix} skipping entry {raw.index}, unreadable certificate: {e}")
            skipped += 1
            continue

        match = evaluate(names, rules)
        if not match.matched:
            continue

        artifact = build_artifact(raw.payload, match.name, match.rule, kind)
        logger.info(
            f"{prefix} match type={kind} rule={match.rule} name={match.name} "
            f"index={raw.index} key={artifact.key}"
        )
        # ArtifactWriteError is fatal for the whole run
        await sink.store(artifact.key, artifact.payload)
        matches += 1

    logger.info(f"{prefix} fetch log done, entry_count={seen} matches={matches}")

    outcome = SyncOutcome.ADVANCED_WITH_MATCHES if matches else SyncOutcome.ADVANCED_NO_MATCHES
    return SyncResult(
        source,
        outcome,
        watermark.advanced_to(end, now()),
        matches=matches,
        entries_seen=seen,
        entries_skipped=skipped,
    )
