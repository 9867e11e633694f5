"""
Run coordinator.

One run loads the config, the log list and the stored watermarks, syncs every
usable log concurrently, and writes the merged watermark map back once.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Tuple

import httpx

from .artifacts import ArtifactSink, BlobArtifactSink
from .blobstore import BlobStore, open_blob_store
from .catalog import LogListCatalog, select_logs
from .client import DEFAULT_USER_AGENT, ClassicLogClient
from .config import LOG_LIST_URL, MonitorConfig, Settings, load_config
from .errors import FatalError
from .httpx_ratelimit import RateLimitedTransport
from .models import LogSource, RuleSet, RunSummary, SyncOutcome, SyncResult, Watermark
from .rules import compile_rules
from .state import WatermarkStore, merge_watermarks, watermark_for
from .sync import LogClient, sync_log

logger = logging.getLogger(__name__)

ClientFactory = Callable[[LogSource, httpx.AsyncClient], LogClient]


def default_client_factory(source: LogSource, http: httpx.AsyncClient) -> LogClient:
    return ClassicLogClient(source, http=http)


class CertMonitor:
    """
    Syncs every usable CT log once and persists progress.

    Example:
        monitor = CertMonitor(open_blob_store("cert-monitor"))
        summary = await monitor.run()
    """

    def __init__(
        self,
        store: BlobStore,
        catalog: Optional[LogListCatalog] = None,
        client_factory: ClientFactory = default_client_factory,
        sink: Optional[ArtifactSink] = None,
        max_concurrency: int = 0,
        max_entries: int = 0,
        include_logs: Optional[List[str]] = None,
        exclude_logs: Optional[List[str]] = None,
        timeout: float = 30.0,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            store: Blob store holding the config object, state file and artifacts
            catalog: Log list provider (defaults to the public v3 log list)
            client_factory: Builds a log client for a source
            sink: Where matched entries go (defaults to `store`)
            max_concurrency: Max logs synced at once, 0 for no limit
            max_entries: Max entries fetched per log in one run, 0 for no limit
            include_logs: Only sync logs whose url contains one of these
            exclude_logs: Skip logs whose url contains one of these
            timeout: HTTP request timeout
            user_agent: Custom user agent string
            transport: httpx transport shared by all log clients
        """
        self.store = store
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.catalog = catalog or LogListCatalog(LOG_LIST_URL, user_agent=self.user_agent)
        self.client_factory = client_factory
        self.sink = sink or BlobArtifactSink(store)
        self.watermarks = WatermarkStore(store)
        self.max_concurrency = max_concurrency
        self.max_entries = max_entries
        self.include_logs = include_logs
        self.exclude_logs = exclude_logs
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "CertMonitor":
        user_agent = settings.user_agent or DEFAULT_USER_AGENT
        return cls(
            store=open_blob_store(settings.bucket, endpoint_url=settings.s3_endpoint_url),
            catalog=LogListCatalog(settings.log_list_url, user_agent=user_agent),
            max_concurrency=settings.max_concurrency,
            max_entries=settings.max_entries,
            include_logs=settings.include_logs,
            exclude_logs=settings.exclude_logs,
            timeout=settings.timeout,
            user_agent=user_agent,
        )

    async def _load(self) -> Tuple[MonitorConfig, List[LogSource], Dict[str, Watermark]]:
        """Load config, catalog and watermarks concurrently."""
        config, catalog, watermarks = await asyncio.gather(
            load_config(self.store),
            self.catalog.fetch_catalog(),
            self.watermarks.load(),
            return_exceptions=True,
        )
        for result in (config, catalog, watermarks):
            if isinstance(result, BaseException):
                raise result
        return config, catalog, watermarks

    async def _sync_one(
        self,
        source: LogSource,
        watermark: Watermark,
        http: httpx.AsyncClient,
        rules: RuleSet,
        gate: Optional[asyncio.Semaphore],
    ) -> SyncResult:
        async def run() -> SyncResult:
            client = self.client_factory(source, http)
            try:
                return await sync_log(
                    source, watermark, client, rules, self.sink, max_entries=self.max_entries
                )
            except FatalError:
                raise
            except Exception as e:
                # Per-entry certificate errors are skipped inside sync_log; what reaches
                # here is a transport or client failure, retried from the same watermark
                logger.error(f"[{source.url}] unexpected sync error: {e}", exc_info=True)
                return SyncResult(source, SyncOutcome.FAILED, watermark, error=str(e))

        if gate is None:
            return await run()
        async with gate:
            return await run()

    async def _collect(self, tasks: List[asyncio.Task]) -> List[SyncResult]:
        """
        Wait for every sync task.

        On the first fatal error the remaining tasks are cancelled and the
        error is re-raised; no result is returned.
        """
        results: List[SyncResult] = []
        pending = set(tasks)

        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    result = task.result()
                    logger.info(
                        f"got state result url={result.source.url} outcome={result.outcome.value} "
                        f"({len(results) + 1}/{len(tasks)})"
                    )
                    results.append(result)
        except BaseException:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                logger.info(f"Cancelled {len(pending)} in-flight sync tasks")
            # Several tasks can fail in the same wakeup; mark every error retrieved
            for task in tasks:
                if task.done() and not task.cancelled():
                    task.exception()
            raise

        return results

    async def run(self) -> RunSummary:
        """
        Perform one monitoring run.

        Raises:
            FatalError: config, catalog, pattern, artifact or state write
                failure; the watermark file is left untouched
        """
        config, catalog, watermarks = await self._load()

        rules = compile_rules(config.domains, config.patterns, config.include_precerts)
        sources = select_logs(catalog, self.include_logs, self.exclude_logs)
        logger.info(
            f"Syncing {len(sources)} of {len(catalog)} CT logs "
            f"({len(rules.domains)} domains, {len(rules.patterns)} patterns, "
            f"precerts={'on' if rules.include_precerts else 'off'})"
        )

        gate = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency > 0 else None

        async with httpx.AsyncClient(
            timeout=self.timeout,
            headers={"User-Agent": self.user_agent},
            transport=self._transport or RateLimitedTransport(),
        ) as http:
            tasks = [
                asyncio.create_task(
                    self._sync_one(source, watermark_for(source, watermarks), http, rules, gate)
                )
                for source in sources
            ]
            try:
                results = await self._collect(tasks)
            except FatalError as e:
                logger.error(f"got fatal client error: {e}")
                raise

        summary = RunSummary()
        for result in results:
            summary.record(result)

        merged = merge_watermarks(watermarks, (r.watermark for r in results))
        await self.watermarks.save(merged)

        logger.info(
            f"Run complete: {summary.logs_synced} logs, {summary.total_entries} entries, "
            f"{summary.total_matches} matches, outcomes={summary.outcomes}"
        )
        return summary
