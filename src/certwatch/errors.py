"""
Error taxonomy.

Every adapter raises either a SoftError (degrades one log for one run) or a
FatalError (aborts the whole run). DecodeError sits outside both: it only
ever affects the entry batch of the log it came from.
"""


class CertWatchError(Exception):
    """Base class for all certwatch errors"""


class SoftError(CertWatchError):
    """Per-log failure; the log keeps its previous watermark and is retried next run."""


class FatalError(CertWatchError):
    """Failure that aborts the run before the watermark file is written."""


class LogUnavailableError(SoftError):
    """A CT log could not be reached or returned an unusable response."""

    def __init__(self, url: str, message: str):
        super().__init__(f"{url}: {message}")
        self.url = url


class DecodeError(CertWatchError):
    """
    A raw log entry could not be decoded.

    A non-fatal error means only this entry is unusable. A fatal error means
    the rest of the fetched batch can't be trusted either.
    """

    def __init__(self, index: int, message: str, fatal: bool = False):
        super().__init__(f"entry {index}: {message}")
        self.index = index
        self.fatal = fatal


class SettingsError(FatalError):
    """Process settings (environment or arguments) are missing or invalid."""


class CatalogFetchError(FatalError):
    """The CT log list could not be fetched or parsed."""


class ConfigLoadError(FatalError):
    """The monitor configuration object is missing or malformed."""


class InvalidPatternError(FatalError):
    """A configured regular expression does not compile."""

    def __init__(self, pattern: str, message: str):
        super().__init__(f"invalid pattern {pattern!r}: {message}")
        self.pattern = pattern


class ArtifactWriteError(FatalError):
    """A matched entry could not be written to the blob store."""


class StorePersistError(FatalError):
    """The watermark file could not be written."""
