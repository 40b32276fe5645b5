"""Typed records passed between pipeline stages.

RawContent (stored row) -> CandidateRecord -> ValidatedRecord -> Resolution.
Each stage builds the next record explicitly, so a later stage can only read
fields an earlier stage actually populated.
"""

import enum
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Union

from boothbeacon.services.normalization import content_hash as hash_body

# Booth attributes shared by candidate, validated and stored records
BOOTH_FIELDS = (
    "name",
    "address",
    "city",
    "state",
    "country",
    "postal_code",
    "latitude",
    "longitude",
    "phone",
    "website",
    "hours",
    "cost",
    "machine_model",
    "machine_manufacturer",
    "booth_type",
    "is_operational",
    "status",
    "description",
)


@dataclass
class FetchedPage:
    """One page returned by the scrape service."""

    url: str
    markdown: str = ""
    html: str = ""
    status_code: int | None = None
    elapsed_ms: int = 0

    @property
    def body(self) -> str:
        return self.markdown or self.html

    @property
    def content_hash(self) -> str:
        return hash_body(self.body)


@dataclass
class CandidateRecord:
    """Unvalidated booth guess produced by the LLM."""

    name: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    postal_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    phone: str | None = None
    website: str | None = None
    hours: str | None = None
    cost: str | None = None
    machine_model: str | None = None
    machine_manufacturer: str | None = None
    booth_type: str | None = None
    is_operational: bool | None = None
    status: str | None = None
    description: str | None = None

    # Provenance
    source_id: uuid.UUID | None = None
    source_name: str | None = None
    source_url: str | None = None
    extracted_at: datetime | None = None


@dataclass
class ParseResult:
    """Outcome of locating a JSON array in model output. Never raised."""

    items: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ExtractionResult:
    candidates: list[CandidateRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    chunks: int = 0
    transport_failures: int = 0


class ValidationOutcome(str, enum.Enum):
    ACCEPTED = "accepted"
    NEEDS_REVIEW = "needs_review"
    REJECTED = "rejected"


@dataclass
class ValidationIssue:
    field: str
    reason: str
    action: str = "dropped"  # dropped, sanitized, truncated, rejected, flagged


@dataclass
class ValidatedRecord:
    """Sanitized candidate plus its validation outcome."""

    outcome: ValidationOutcome
    issues: list[ValidationIssue] = field(default_factory=list)
    confidence: float = 1.0

    name: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    postal_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    phone: str | None = None
    website: str | None = None
    hours: str | None = None
    cost: str | None = None
    machine_model: str | None = None
    machine_manufacturer: str | None = None
    booth_type: str | None = None
    is_operational: bool | None = None
    status: str | None = None
    description: str | None = None

    source_id: uuid.UUID | None = None
    source_name: str | None = None
    source_url: str | None = None
    extracted_at: datetime | None = None

    @property
    def accepted(self) -> bool:
        return self.outcome != ValidationOutcome.REJECTED

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def booth_fields(self) -> dict[str, Any]:
        """Non-null booth attributes."""
        return {name: getattr(self, name) for name in BOOTH_FIELDS if getattr(self, name) is not None}

    def review_notes(self) -> list[str]:
        return [f"{issue.field}: {issue.reason}" for issue in self.issues if issue.action in ("flagged", "rejected")]


@dataclass(frozen=True)
class Insert:
    pass


@dataclass(frozen=True)
class MergeInto:
    target_id: uuid.UUID
    changes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Skip:
    reason: str
    target_id: uuid.UUID | None = None


Resolution = Union[Insert, MergeInto, Skip]


@dataclass
class CommitOutcome:
    action: str  # added, updated, skipped
    booth_id: uuid.UUID | None = None
    slug: str | None = None


class RunState(str, enum.Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    VALIDATING = "validating"
    RESOLVING = "resolving"
    COMMITTING = "committing"
    SUCCEEDED = "succeeded"
    PARTIALLY_SUCCEEDED = "partially_succeeded"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (RunState.SUCCEEDED, RunState.PARTIALLY_SUCCEEDED, RunState.FAILED, RunState.ABORTED)

    @property
    def metric_status(self) -> str:
        return {
            RunState.SUCCEEDED: "success",
            RunState.PARTIALLY_SUCCEEDED: "partial",
            RunState.FAILED: "error",
            RunState.ABORTED: "aborted",
        }.get(self, "running")


@dataclass(frozen=True)
class SourceSnapshot:
    """Immutable view of a source's config and health taken before a run."""

    id: uuid.UUID
    name: str
    urls: tuple[str, ...]
    strategy: str
    priority: int = 50
    page_limit: int | None = None
    config: dict[str, Any] = field(default_factory=dict)
    consecutive_failures: int = 0


@dataclass
class RunCounts:
    pages_crawled: int = 0
    pages_unchanged: int = 0
    candidates_found: int = 0
    records_added: int = 0
    records_updated: int = 0
    records_skipped: int = 0
    records_rejected: int = 0
    records_needing_review: int = 0


@dataclass
class SourceRunResult:
    """Everything a run produced, including the health to persist."""

    source_id: uuid.UUID
    source_name: str
    state: RunState = RunState.PENDING
    counts: RunCounts = field(default_factory=RunCounts)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    content_unchanged: bool = False
    error_message: str | None = None
    error_stage: str | None = None
    error_type: str | None = None
    extraction_errors: list[str] = field(default_factory=list)
    disable_source: bool = False

    @property
    def failed(self) -> bool:
        return self.state == RunState.FAILED

    @property
    def duration_ms(self) -> int | None:
        if not self.started_at or not self.completed_at:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": str(self.source_id),
            "source_name": self.source_name,
            "status": self.state.metric_status,
            "state": self.state.value,
            "content_unchanged": self.content_unchanged,
            "error_message": self.error_message,
            "error_stage": self.error_stage,
            "error_type": self.error_type,
            "duration_ms": self.duration_ms,
            **asdict(self.counts),
        }


@dataclass
class BatchSummary:
    results: list[SourceRunResult] = field(default_factory=list)
    aborted: bool = False
    error: str | None = None

    def totals(self) -> dict[str, int]:
        by_status: dict[str, int] = {}
        for result in self.results:
            status = result.state.metric_status
            by_status[status] = by_status.get(status, 0) + 1
        return {
            "sources": len(self.results),
            "found": sum(r.counts.candidates_found for r in self.results),
            "added": sum(r.counts.records_added for r in self.results),
            "updated": sum(r.counts.records_updated for r in self.results),
            "skipped": sum(r.counts.records_skipped for r in self.results),
            "rejected": sum(r.counts.records_rejected for r in self.results),
            **{f"status_{status}": count for status, count in sorted(by_status.items())},
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "aborted": self.aborted,
            "error": self.error,
            "totals": self.totals(),
            "results": [r.to_dict() for r in self.results],
        }
