"""Models for scan submission and outcomes."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from shared.quota import format_remaining

MAX_SUBMISSION_LENGTH = 100_000


class Decision(str, Enum):
    """Verdict reported by the analysis service."""

    ALLOW = "ALLOW"
    WARN = "WARN"
    BLOCK = "BLOCK"
    REVIEW = "REVIEW"
    UNKNOWN = "UNKNOWN"


class OutcomeKind(str, Enum):
    """Terminal state of one submission."""

    COMPLETED = "completed"
    RATE_DENIED = "rate_denied"
    QUOTA_DENIED = "quota_denied"
    REMOTE_FAILED = "remote_failed"
    STORAGE_FAILED = "storage_failed"


class FailureKind(str, Enum):
    """Why a remote call failed."""

    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    PAYMENT_REQUIRED = "payment_required"
    REMOTE_ERROR = "remote_error"


class ScanRequest(BaseModel):
    """Request body for submitting text to scan."""

    text: str = Field(..., min_length=1, max_length=MAX_SUBMISSION_LENGTH)

    @field_validator("text")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Reject whitespace-only submissions."""
        if not v.strip():
            raise ValueError("text must not be blank")
        return v


@dataclass
class AnalysisResult:
    """Normalized analysis verdict. Missing fields are uninformative, not errors."""

    decision: Decision = Decision.UNKNOWN
    risk: str = "Unknown"
    reason: str | None = None
    summary: str | None = None
    findings: list[Any] = field(default_factory=list)


@dataclass
class ScanOutcome:
    """Result of one pass through the scan decision engine.

    scans_remaining is None for unlimited accounts.
    """

    kind: OutcomeKind
    account_id: str
    scans_remaining: int | None = None
    result: AnalysisResult | None = None
    retry_after_ms: int | None = None
    failure: FailureKind | None = None
    detail: str | None = None

    @property
    def scans_remaining_display(self) -> str:
        """Remaining scans as shown to the user."""
        return format_remaining(self.scans_remaining)

    @property
    def decision(self) -> Decision | None:
        return self.result.decision if self.result else None

    @property
    def risk(self) -> str | None:
        return self.result.risk if self.result else None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for an API response body."""
        body: dict[str, Any] = {
            "outcome": self.kind.value,
            "account_id": self.account_id,
            "scans_remaining": self.scans_remaining_display,
        }
        if self.result is not None:
            result = asdict(self.result)
            result["decision"] = self.result.decision.value
            body["result"] = result
        if self.retry_after_ms is not None:
            body["retry_after_ms"] = self.retry_after_ms
        if self.failure is not None:
            body["failure"] = self.failure.value
        if self.detail:
            body["detail"] = self.detail
        return body
