"""Pydantic models for account API request validation."""

from pydantic import BaseModel, Field, field_validator

from shared.utils import is_valid_tx_hash


class TransactionSubmitRequest(BaseModel):
    """Request body for attaching a transaction hash to a payment."""

    tx_hash: str = Field(..., min_length=66, max_length=66)

    @field_validator("tx_hash")
    @classmethod
    def validate_tx_hash(cls, v: str) -> str:
        """Validate a 0x-prefixed 32-byte hex hash."""
        if not is_valid_tx_hash(v):
            raise ValueError("tx_hash must be 0x followed by 64 hex characters")
        return v
