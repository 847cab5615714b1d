"""Lifetime free-scan quota per account."""

from .models import Account

UNLIMITED_DISPLAY = "∞"


def is_unlimited(account: Account) -> bool:
    """Paid and privileged accounts have no quota."""
    return account.is_paid or account.is_privileged


def remaining(account: Account, free_limit: int) -> int | None:
    """Free scans left, or None when the account is unlimited."""
    if is_unlimited(account):
        return None
    return max(0, free_limit - account.scans_used)


def has_quota(account: Account, free_limit: int) -> bool:
    """Check whether the account may consume another scan."""
    return is_unlimited(account) or account.scans_used < free_limit


def consume(account: Account) -> None:
    """Record one successful scan.

    Callers only invoke this after a successful analysis and never for
    unlimited accounts, whose counters stay untouched.
    """
    account.scans_used += 1


def format_remaining(value: int | None) -> str:
    """Render a remaining count for display."""
    return UNLIMITED_DISPLAY if value is None else str(value)


class QuotaLedger:
    """Quota gate bound to a configured free-scan limit."""

    def __init__(self, free_limit: int) -> None:
        self.free_limit = free_limit

    def remaining(self, account: Account) -> int | None:
        return remaining(account, self.free_limit)

    def has_quota(self, account: Account) -> bool:
        return has_quota(account, self.free_limit)

    def consume(self, account: Account) -> None:
        consume(account)
