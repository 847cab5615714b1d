"""User-facing text for scan outcomes."""

from scan.models import FailureKind, OutcomeKind, ScanOutcome
from shared.utils import retry_after_seconds


def get_outcome_message(
    outcome: ScanOutcome,
    price: float | None = None,
    pay_to: str | None = None,
) -> str:
    """Get the message shown to the user for an outcome.

    Args:
        outcome: Result of the decision engine
        price: Price of unlimited scans, shown on quota denial
        pay_to: Payment address, shown on quota denial

    Returns:
        Plain text message
    """
    if outcome.kind == OutcomeKind.COMPLETED:
        return (
            f"Decision: {outcome.decision.value}\n"
            f"Risk: {outcome.risk}\n"
            f"Scans left: {outcome.scans_remaining_display}"
        )

    if outcome.kind == OutcomeKind.RATE_DENIED:
        seconds = retry_after_seconds(outcome.retry_after_ms or 0)
        return f"Too many scans. Try again in {seconds} seconds."

    if outcome.kind == OutcomeKind.QUOTA_DENIED:
        lines = ["Free limit reached."]
        if price is not None and pay_to:
            lines += [
                "",
                "Unlock unlimited scans:",
                f"{price} USDC",
                f"Pay to: {pay_to}",
                "",
                "Request a payment ID to continue.",
            ]
        return "\n".join(lines)

    if outcome.kind == OutcomeKind.REMOTE_FAILED:
        if outcome.failure == FailureKind.PAYMENT_REQUIRED:
            return "The analysis service rejected this gateway. An operator has been notified."
        if outcome.failure == FailureKind.TIMEOUT:
            return "The analysis service took too long. Your scan was not counted. Try again."
        if outcome.failure == FailureKind.REMOTE_ERROR:
            message = "The analysis service returned an error. Your scan was not counted."
            return f"{message} {outcome.detail}" if outcome.detail else message
        return "The analysis service is unreachable. Your scan was not counted. Try again."

    return "Server error. Try again."
