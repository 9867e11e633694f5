"""CT log catalog backed by the public v3 log list."""

import logging
from typing import Any, Dict, List, Optional, cast

import httpx

from .config import LOG_LIST_URL
from .errors import CatalogFetchError
from .models import LogSource

logger = logging.getLogger(__name__)

USABLE_STATUS = "usable"
KNOWN_STATUSES = ("pending", "qualified", "usable", "readonly", "retired", "rejected")


def log_status(log: Dict[str, Any]) -> str:
    """Return the status key of a log list `state` object ("usable", "retired", ...)."""
    state = log.get("state") or {}
    for status in KNOWN_STATUSES:
        if status in state:
            return status
    return "unknown"


def parse_log_list(log_list: Dict[str, Any]) -> List[LogSource]:
    """Flatten the operators/logs tree of a v3 log list into LogSources."""
    sources: List[LogSource] = []
    for operator in log_list.get("operators", []):
        operator_name = operator.get("name", "Unknown")

        # Only RFC 6962 logs; tiled logs speak a different read API
        for log in operator.get("logs", []):
            url = log.get("url", "")
            if not url:
                continue
            sources.append(
                LogSource(
                    url=url,
                    operator=operator_name,
                    description=log.get("description", ""),
                    status=log_status(log),
                )
            )
    return sources


def select_logs(
    sources: List[LogSource],
    include_logs: Optional[List[str]] = None,
    exclude_logs: Optional[List[str]] = None,
) -> List[LogSource]:
    """Keep usable logs that pass the include/exclude url substring filters."""
    selected: List[LogSource] = []
    for source in sources:
        if source.status != USABLE_STATUS:
            continue
        if include_logs and not any(pattern in source.url for pattern in include_logs):
            continue
        if exclude_logs and any(pattern in source.url for pattern in exclude_logs):
            continue
        selected.append(source)
    return selected


class LogListCatalog:
    """Fetches the list of known CT logs."""

    def __init__(
        self,
        url: str = LOG_LIST_URL,
        user_agent: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.user_agent = user_agent
        self.timeout = timeout
        self._transport = transport

    async def fetch_catalog(self) -> List[LogSource]:
        """
        Fetch and parse the log list.

        Raises:
            CatalogFetchError: on transport errors or an unparseable list
        """
        headers = {"User-Agent": self.user_agent} if self.user_agent else {}
        try:
            async with httpx.AsyncClient(headers=headers, transport=self._transport) as client:
                response = await client.get(self.url, timeout=self.timeout)
                response.raise_for_status()
                data = cast(Dict[str, Any], response.json())
        except httpx.HTTPError as e:
            raise CatalogFetchError(f"fetch log list err: {e}") from e
        except ValueError as e:
            raise CatalogFetchError(f"log list is not valid JSON: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("operators"), list):
            raise CatalogFetchError("log list has no 'operators' array")

        try:
            sources = parse_log_list(data)
        except (AttributeError, TypeError) as e:
            raise CatalogFetchError(f"malformed log list: {e}") from e

        logger.info(f"Fetched log list: {len(sources)} logs from {self.url}")
        return sources
