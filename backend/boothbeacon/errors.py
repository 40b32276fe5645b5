"""Crawler error taxonomy.

Every error carries the pipeline stage it came from and whether a retry is
worth attempting. Source-level errors are contained by the coordinator;
errors marked ``systemic`` abort the remaining batch.
"""


class CrawlerError(Exception):
    """Base error for the crawl pipeline."""

    stage: str = "unknown"
    retryable: bool = False
    systemic: bool = False

    def __init__(self, message: str, *, stage: str | None = None, retryable: bool | None = None) -> None:
        super().__init__(message)
        self.message = message
        if stage is not None:
            self.stage = stage
        if retryable is not None:
            self.retryable = retryable


class FetchError(CrawlerError):
    """Scrape service failure: network, timeout, non-2xx status or empty body."""

    stage = "fetching"
    retryable = True

    # Statuses where a retry cannot change the outcome
    NON_RETRYABLE_STATUSES = frozenset({400, 401, 402, 403, 404})

    def __init__(self, message: str, *, status_code: int | None = None, retryable: bool | None = None) -> None:
        if retryable is None:
            retryable = status_code not in self.NON_RETRYABLE_STATUSES
        super().__init__(message, retryable=retryable)
        self.status_code = status_code


class ExtractionError(CrawlerError):
    """LLM transport failure. Unparseable output is not an error."""

    stage = "extracting"
    retryable = True


class ValidationRejection(CrawlerError):
    """A single field (or the whole candidate) failed a validation check."""

    stage = "validating"

    def __init__(self, field: str, reason: str, *, fatal: bool = False) -> None:
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason
        self.fatal = fatal


class PersistenceConflict(CrawlerError):
    """Slug collision or concurrent merge race that survived one retry."""

    stage = "committing"
    retryable = True


class ConfigurationError(CrawlerError):
    """Invalid configuration.

    Source-level problems (bad URL, unknown strategy) disable only that
    source. Missing service credentials are systemic.
    """

    stage = "configuring"

    def __init__(self, message: str, *, systemic: bool = False) -> None:
        super().__init__(message, retryable=False)
        self.systemic = systemic


class StoreUnavailableError(CrawlerError):
    """The database cannot be reached."""

    stage = "committing"
    systemic = True


class RunTimeoutError(CrawlerError):
    """The per-source deadline expired mid-pipeline."""

    stage = "timeout"


class SourceNotFoundError(CrawlerError):
    """No source matches the requested id or name."""

    stage = "pending"
