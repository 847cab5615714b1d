"""Pydantic models for persisted Scan Gateway state."""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr


class PaymentStatus(str, Enum):
    """Lifecycle of a manual payment request."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"


class RateWindow(BaseModel):
    """Fixed rate-limit window state for one account."""

    model_config = ConfigDict(populate_by_name=True)

    window_start: int = Field(default=0, ge=0, alias="windowStart")
    count: int = Field(default=0, ge=0)


class Account(BaseModel):
    """Usage record for one chat identity.

    Records written by older releases may lack any of these fields; they
    default instead of failing validation.
    """

    model_config = ConfigDict(populate_by_name=True)

    scans_used: int = Field(default=0, ge=0, alias="scansUsed")
    is_paid: bool = Field(default=False, alias="isPaid")
    is_privileged: bool = Field(default=False, alias="isPrivileged")
    rate_window: RateWindow = Field(default_factory=RateWindow, alias="rateWindow")


class Payment(BaseModel):
    """Manual payment request raised by an account."""

    model_config = ConfigDict(populate_by_name=True)

    payment_id: str = Field(..., alias="paymentId")
    account_id: str = Field(..., alias="accountId")
    amount: float = Field(..., ge=0)
    pay_to: str = Field(default="", alias="payTo")
    status: PaymentStatus = PaymentStatus.PENDING
    tx_hash: str | None = Field(default=None, alias="txHash")
    created_at: str = Field(
        default_factory=lambda: datetime.now(UTC).isoformat(), alias="createdAt"
    )


class Document(BaseModel):
    """Persisted state: accounts and their payment requests.

    A store may load only the records of one account.
    """

    model_config = ConfigDict(populate_by_name=True)

    accounts: dict[str, Account] = Field(default_factory=dict)
    payments: dict[str, Payment] = Field(default_factory=dict)

    # Serialized records and account versions as last read or written, for
    # stores that persist each record separately
    _stored: dict[tuple[str, str], str] = PrivateAttr(default_factory=dict)
    _versions: dict[str, int] = PrivateAttr(default_factory=dict)

    def to_storage(self) -> dict:
        """Serialize with the persisted (camelCase) key layout."""
        return self.model_dump(mode="json", by_alias=True)
