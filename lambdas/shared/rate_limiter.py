"""Fixed-window request throttle per account."""

from dataclasses import dataclass

from aws_lambda_powertools import Logger

from .models import RateWindow

logger = Logger(child=True)


@dataclass
class RateDecision:
    """Outcome of a rate-limit check."""

    allowed: bool
    retry_after_ms: int = 0


def check_and_consume(
    window: RateWindow,
    now_ms: int,
    window_ms: int,
    max_requests: int,
) -> RateDecision:
    """Admit or reject one request, mutating the window in place.

    Fixed window, not sliding: a burst at a window boundary can admit up to
    twice max_requests in quick succession.

    Args:
        window: The account's current window state
        now_ms: Current time in epoch milliseconds
        window_ms: Window duration in milliseconds
        max_requests: Requests admitted per window

    Returns:
        RateDecision, with retry_after_ms set when denied
    """
    elapsed = now_ms - window.window_start

    if window.window_start == 0 or elapsed > window_ms:
        window.window_start = now_ms
        window.count = 1
        return RateDecision(allowed=True)

    if window.count >= max_requests:
        return RateDecision(allowed=False, retry_after_ms=max(0, window_ms - elapsed))

    window.count += 1
    return RateDecision(allowed=True)


class RateLimiter:
    """Applies the configured window to account rate state."""

    def __init__(self, window_ms: int, max_requests: int) -> None:
        """Initialize limiter.

        Args:
            window_ms: Window duration in milliseconds
            max_requests: Requests admitted per window
        """
        self.window_ms = window_ms
        self.max_requests = max_requests

    def check(self, account_id: str, window: RateWindow, now_ms: int) -> RateDecision:
        """Check and consume one slot for account_id.

        Args:
            account_id: Account the window belongs to
            window: The account's window state (mutated)
            now_ms: Current time in epoch milliseconds

        Returns:
            RateDecision for this request
        """
        decision = check_and_consume(window, now_ms, self.window_ms, self.max_requests)
        if not decision.allowed:
            logger.warning(
                "Rate limit reached",
                extra={
                    "account_id": account_id,
                    "count": window.count,
                    "limit": self.max_requests,
                    "retry_after_ms": decision.retry_after_ms,
                },
            )
        return decision
