"""Watermark persistence: one JSON object mapping log url to progress."""

import json
import logging
from typing import Dict, Iterable

from .blobstore import BlobNotFoundError, BlobStore
from .errors import StorePersistError
from .models import LogSource, Watermark

logger = logging.getLogger(__name__)

LOG_STATE_KEY = "log-state.json"


class WatermarkStore:
    """Loads and saves the per-log watermark map."""

    def __init__(self, store: BlobStore, key: str = LOG_STATE_KEY):
        self.store = store
        self.key = key

    async def load(self) -> Dict[str, Watermark]:
        """
        Load the watermark map.

        A missing or unreadable state object is not an error: every log then
        starts from a fresh, uninitialized watermark and re-initializes on this run.
        """
        try:
            raw = await self.store.get(self.key)
        except BlobNotFoundError:
            logger.warning(f"No existing log state at {self.key}, starting fresh")
            return {}
        except OSError as e:
            logger.error(f"Could not read log state {self.key}, starting fresh: {e}")
            return {}

        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError(f"expected an object, got {type(data).__name__}")
            return {url: Watermark.from_dict(url, entry) for url, entry in data.items()}
        except (ValueError, TypeError, AttributeError) as e:
            logger.error(f"Corrupt log state {self.key}, starting fresh: {e}")
            return {}

    async def save(self, watermarks: Dict[str, Watermark]) -> None:
        """
        Overwrite the whole watermark map in one write.

        Raises:
            StorePersistError: if the object could not be written
        """
        body = json.dumps(
            {url: wm.to_dict() for url, wm in sorted(watermarks.items())},
            indent=2,
        ).encode("utf-8")

        try:
            await self.store.put(self.key, body)
        except (OSError, ValueError) as e:
            raise StorePersistError(f"put state file {self.key}: {e}") from e

        logger.info(f"Saved log state for {len(watermarks)} logs")


def watermark_for(source: LogSource, watermarks: Dict[str, Watermark]) -> Watermark:
    """Return the stored watermark for `source`, or a fresh one."""
    existing = watermarks.get(source.url)
    if existing is None:
        return Watermark.fresh(source)
    return existing


def merge_watermarks(
    watermarks: Dict[str, Watermark], updates: Iterable[Watermark]
) -> Dict[str, Watermark]:
    """
    Merge task results into the map, keyed by url.

    A stored watermark never moves backwards: an update with a smaller
    `last_fetched` than what is already recorded, or an uninitialized update
    over an initialized one, is ignored.
    """
    merged = dict(watermarks)
    for update in updates:
        current = merged.get(update.url)
        if current is not None and current.initialized and (
            not update.initialized or update.last_fetched < current.last_fetched
        ):
            logger.warning(
                f"Ignoring regressing watermark for {update.url}: "
                f"{update.last_fetched} < {current.last_fetched}"
            )
            continue
        merged[update.url] = update
    return merged
