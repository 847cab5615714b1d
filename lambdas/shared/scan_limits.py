"""Default quota and rate-limit configuration."""

from dataclasses import dataclass


@dataclass(frozen=True)
class ScanLimits:
    """Default limits for metering the analysis service.

    Every value can be overridden through the environment (see Config).
    """

    # Lifetime free scans per unpaid account
    FREE_SCAN_LIMIT: int = 5

    # Fixed rate window (2 minutes)
    RATE_WINDOW_MS: int = 120_000

    # Requests admitted per rate window
    RATE_MAX_REQUESTS: int = 3

    # Hard timeout for the downstream analysis call
    REQUEST_TIMEOUT_MS: int = 15_000

    # Response body characters kept on remote errors
    ERROR_BODY_LIMIT: int = 300

    # Price of unlimited scans, in USDC
    PRICE_BASIC: float = 0.25

    # Payment requests per account not yet confirmed by the owner
    MAX_OPEN_PAYMENTS: int = 3
