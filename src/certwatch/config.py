"""
Configuration.

Settings come from the environment (and CLI overrides); matching rules come
from a TOML object stored in the bucket next to the state file:

    domains = ["example.com"]
    patterns = ["^www\\..*"]
    include_pre_certs = false
"""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from typing import List, Optional

from .blobstore import BlobNotFoundError, BlobStore
from .errors import ConfigLoadError, SettingsError

logger = logging.getLogger(__name__)

CONFIG_KEY = "cert-monitor.toml"
LOG_LIST_URL = "https://www.gstatic.com/ct/log_list/v3/log_list.json"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _parse_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError as e:
        raise SettingsError(f"{name} must be an integer, got {value!r}") from e


def _parse_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError as e:
        raise SettingsError(f"{name} must be a number, got {value!r}") from e


@dataclass(frozen=True)
class Settings:
    """Process settings for one run."""

    bucket: str
    timeout: float = 30.0
    max_concurrency: int = 0  # 0 = one task per log, no cap
    max_entries: int = 0  # entries fetched per log per run, 0 = no cap
    user_agent: Optional[str] = None
    log_list_url: str = LOG_LIST_URL
    include_logs: List[str] = field(default_factory=list)
    exclude_logs: List[str] = field(default_factory=list)
    log_level: str = "INFO"
    s3_endpoint_url: Optional[str] = None

    def __post_init__(self):
        if not self.bucket:
            raise SettingsError("environment var CERT_MONITOR_BUCKET not set")
        if self.timeout <= 0:
            raise SettingsError(f"timeout must be positive, got {self.timeout}")
        if self.max_concurrency < 0:
            raise SettingsError(f"max_concurrency must be >= 0, got {self.max_concurrency}")
        if self.max_entries < 0:
            raise SettingsError(f"max_entries must be >= 0, got {self.max_entries}")
        if self.log_level not in LOG_LEVELS:
            raise SettingsError(f"unknown log level {self.log_level!r}")

    @classmethod
    def from_env(cls, environ=None, **overrides) -> "Settings":
        """Build Settings from environment variables; `overrides` that are not None win."""
        env = os.environ if environ is None else environ
        values = dict(
            bucket=env.get("CERT_MONITOR_BUCKET", ""),
            timeout=_parse_float("CERTWATCH_TIMEOUT", env.get("CERTWATCH_TIMEOUT", "30")),
            max_concurrency=_parse_int(
                "CERTWATCH_MAX_CONCURRENCY", env.get("CERTWATCH_MAX_CONCURRENCY", "0")
            ),
            max_entries=_parse_int("CERTWATCH_MAX_ENTRIES", env.get("CERTWATCH_MAX_ENTRIES", "0")),
            user_agent=env.get("CERTWATCH_USER_AGENT") or None,
            log_list_url=env.get("CERTWATCH_LOG_LIST_URL", LOG_LIST_URL),
            include_logs=_parse_list(env.get("CERTWATCH_INCLUDE_LOGS")),
            exclude_logs=_parse_list(env.get("CERTWATCH_EXCLUDE_LOGS")),
            log_level=env.get("CERTWATCH_LOG_LEVEL", "INFO").upper(),
            s3_endpoint_url=env.get("CERTWATCH_S3_ENDPOINT_URL") or None,
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass(frozen=True)
class MonitorConfig:
    """Matching rules loaded from the bucket."""

    domains: List[str] = field(default_factory=list)
    patterns: List[str] = field(default_factory=list)
    include_precerts: bool = False

    @classmethod
    def from_toml(cls, text: str) -> "MonitorConfig":
        """
        Parse the TOML config document.

        Raises:
            ConfigLoadError: on syntax errors or wrongly typed keys
        """
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as e:
            raise ConfigLoadError(f"parse {CONFIG_KEY}: {e}") from e

        domains = data.get("domains", [])
        patterns = data.get("patterns", [])
        include_precerts = data.get("include_pre_certs", False)

        for name, value in (("domains", domains), ("patterns", patterns)):
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ConfigLoadError(f"{CONFIG_KEY}: '{name}' must be a list of strings")
        if not isinstance(include_precerts, bool):
            raise ConfigLoadError(f"{CONFIG_KEY}: 'include_pre_certs' must be a boolean")

        if not domains and not patterns:
            logger.warning(f"{CONFIG_KEY} defines no domains or patterns, nothing will match")

        return cls(domains=domains, patterns=patterns, include_precerts=include_precerts)


async def load_config(store: BlobStore, key: str = CONFIG_KEY) -> MonitorConfig:
    """
    Fetch and parse the monitor config object.

    Raises:
        ConfigLoadError: if the object is missing, unreadable or malformed
    """
    try:
        raw = await store.get(key)
    except BlobNotFoundError as e:
        raise ConfigLoadError(f"config object {key} not found") from e
    except OSError as e:
        raise ConfigLoadError(f"read {key}: {e}") from e

    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ConfigLoadError(f"{key} is not valid UTF-8: {e}") from e

    return MonitorConfig.from_toml(text)
