"""Scan decision engine: privilege, rate limit, quota, remote call, commit."""

from collections.abc import Callable

from aws_lambda_powertools import Logger, Metrics
from aws_lambda_powertools.metrics import MetricUnit

from scan.analysis_client import AnalysisClient
from scan.models import FailureKind, OutcomeKind, ScanOutcome
from shared.config import Config
from shared.exceptions import AnalysisError, StorageError
from shared.locks import KeyedLock
from shared.models import Account
from shared.quota import QuotaLedger
from shared.rate_limiter import RateDecision, RateLimiter
from shared.store import AccountStore
from shared.utils import now_ms

logger = Logger()
metrics = Metrics(namespace="ScanGateway")


class ScanDecisionEngine:
    """Decides whether a submission may reach the analysis service.

    Per request the steps run strictly in order:

    1. privilege check: privileged accounts skip the quota gate and, unless
       configured otherwise, the rate limit
    2. rate check: one window slot is consumed and persisted whether or not
       the request goes on to pass the quota gate
    3. quota check: exhausted accounts are rejected before any remote call
    4. remote call: failures of any kind leave the quota untouched
    5. commit: one free scan consumed after a confirmed success

    Submissions from the same account are serialized by a per-account lock
    held for the whole request. The store's document lock is held only for
    the short gate and commit transactions, never across the remote call.
    """

    def __init__(
        self,
        store: AccountStore,
        client: AnalysisClient,
        config: Config,
        clock: Callable[[], int] = now_ms,
        locks: KeyedLock | None = None,
    ) -> None:
        """Initialize engine.

        Args:
            store: Account document store
            client: Analysis service client
            config: Limits and privilege settings
            clock: Returns the current time in epoch milliseconds
            locks: Per-account lock registry. Creates one if not provided.
        """
        self.store = store
        self.client = client
        self.config = config
        self.clock = clock
        self.locks = locks or KeyedLock()
        self.rate_limiter = RateLimiter(config.rate_window_ms, config.rate_max_requests)
        self.quota = QuotaLedger(config.free_scan_limit)

    def handle_submission(
        self,
        account_id: str,
        text: str,
        is_privileged: bool = False,
    ) -> ScanOutcome:
        """Run one submission through the gates and the analysis service.

        Args:
            account_id: Stable caller identity
            text: Submitted text, transport syntax already stripped
            is_privileged: Caller-asserted privilege (e.g. the bot owner)

        Returns:
            ScanOutcome describing exactly one terminal state. Never raises
            for storage or network failures.
        """
        with self.locks.hold(account_id):
            try:
                return self._process(account_id, text, is_privileged)
            except StorageError as e:
                logger.error(
                    "Account state could not be persisted",
                    extra={"account_id": account_id, "error": e.message},
                )
                return ScanOutcome(
                    kind=OutcomeKind.STORAGE_FAILED,
                    account_id=account_id,
                    detail=e.message,
                )

    def _is_privileged(self, account_id: str, account: Account, asserted: bool) -> bool:
        return asserted or self.config.is_owner(account_id) or account.is_privileged

    def _bypasses_rate_limit(self, account: Account, privileged: bool) -> bool:
        if privileged:
            return self.config.privileged_bypasses_rate_limit
        return account.is_paid and self.config.paid_bypasses_rate_limit

    def _process(self, account_id: str, text: str, asserted: bool) -> ScanOutcome:
        # Gates: the rate window mutation is persisted before quota is checked
        with self.store.transaction(account_id) as document:
            account = self.store.get_or_create_account(document, account_id)
            privileged = self._is_privileged(account_id, account, asserted)
            unlimited = privileged or account.is_paid

            if self._bypasses_rate_limit(account, privileged):
                rate = RateDecision(allowed=True)
            else:
                rate = self.rate_limiter.check(
                    account_id, account.rate_window, self.clock()
                )

            quota_ok = privileged or self.quota.has_quota(account)
            remaining = None if privileged else self.quota.remaining(account)

        if not rate.allowed:
            metrics.add_metric(name="ScansDenied", unit=MetricUnit.Count, value=1)
            return ScanOutcome(
                kind=OutcomeKind.RATE_DENIED,
                account_id=account_id,
                scans_remaining=remaining,
                retry_after_ms=rate.retry_after_ms,
            )

        if not quota_ok:
            logger.warning(
                "Free scan limit reached",
                extra={
                    "account_id": account_id,
                    "scans_used": account.scans_used,
                    "limit": self.quota.free_limit,
                },
            )
            metrics.add_metric(name="ScansDenied", unit=MetricUnit.Count, value=1)
            return ScanOutcome(
                kind=OutcomeKind.QUOTA_DENIED,
                account_id=account_id,
                scans_remaining=0,
            )

        try:
            result = self.client.analyze(text)
        except AnalysisError as e:
            return self._remote_failed(account_id, remaining, e)

        if not unlimited:
            remaining = self._commit(account_id)

        metrics.add_metric(name="ScansCompleted", unit=MetricUnit.Count, value=1)
        logger.info(
            "Scan completed",
            extra={
                "account_id": account_id,
                "decision": result.decision.value,
                "privileged": privileged,
                "scans_remaining": remaining,
            },
        )
        return ScanOutcome(
            kind=OutcomeKind.COMPLETED,
            account_id=account_id,
            scans_remaining=remaining,
            result=result,
        )

    def _commit(self, account_id: str) -> int | None:
        """Consume one free scan and return what remains afterwards."""
        with self.store.transaction(account_id) as document:
            account = self.store.get_or_create_account(document, account_id)
            # An admin grant may have landed while the remote call was running
            if not (account.is_paid or account.is_privileged):
                self.quota.consume(account)
            return self.quota.remaining(account)

    def _remote_failed(
        self,
        account_id: str,
        remaining: int | None,
        error: AnalysisError,
    ) -> ScanOutcome:
        logger.warning(
            "Scan failed at analysis service",
            extra={"account_id": account_id, "failure": error.kind, "error": error.message},
        )
        metrics.add_metric(name="ScanRemoteFailures", unit=MetricUnit.Count, value=1)
        return ScanOutcome(
            kind=OutcomeKind.REMOTE_FAILED,
            account_id=account_id,
            scans_remaining=remaining,
            failure=FailureKind(error.kind),
            detail=error.message,
        )
