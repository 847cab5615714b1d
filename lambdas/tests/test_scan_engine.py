"""Tests for the scan decision engine."""

import threading
from contextlib import contextmanager
from dataclasses import replace
from unittest.mock import MagicMock

import httpx
import pytest

from scan.analysis_client import AnalysisClient
from scan.engine import ScanDecisionEngine
from scan.models import AnalysisResult, Decision, FailureKind, OutcomeKind
from shared.exceptions import (
    AnalysisTimeoutError,
    PaymentRequiredError,
    RemoteError,
    StorageError,
    TransportError,
)
from shared.models import Account, Document, RateWindow
from shared.store import DynamoDBAccountStore, MemoryStore

ALLOW = AnalysisResult(decision=Decision.ALLOW, risk="Low")


@pytest.fixture
def client():
    """Analysis client that always succeeds."""
    mock = MagicMock(spec=AnalysisClient)
    mock.analyze.return_value = ALLOW
    return mock


@pytest.fixture
def roomy_config(config):
    """Defaults with a rate limit wide enough not to interfere."""
    return replace(config, rate_max_requests=1_000)


@pytest.fixture
def engine(store, client, roomy_config, clock):
    """Engine over a memory store."""
    return ScanDecisionEngine(store, client, roomy_config, clock=clock)


def stored(store, account_id) -> Account:
    return store.load().accounts[account_id]


class CommitFailingStore(MemoryStore):
    """Memory store whose second transaction fails to write."""

    def __init__(self) -> None:
        super().__init__()
        self.transactions = 0

    @contextmanager
    def transaction(self, account_id=None):
        self.transactions += 1
        with super().transaction(account_id) as document:
            yield document
            if self.transactions == 2:
                raise StorageError("disk full")


class TestQuota:
    """Free-scan quota behaviour."""

    def test_five_free_scans_then_denied(self, engine, store, client):
        """Five successes count down to zero, the sixth never reaches the service."""
        outcomes = [engine.handle_submission("u1", "code") for _ in range(5)]

        assert [o.kind for o in outcomes] == [OutcomeKind.COMPLETED] * 5
        assert [o.scans_remaining for o in outcomes] == [4, 3, 2, 1, 0]
        assert client.analyze.call_count == 5

        sixth = engine.handle_submission("u1", "code")

        assert sixth.kind == OutcomeKind.QUOTA_DENIED
        assert sixth.scans_remaining == 0
        assert client.analyze.call_count == 5
        assert stored(store, "u1").scans_used == 5

    def test_completed_outcome_carries_verdict(self, engine):
        """Decision and risk come from the analysis result."""
        outcome = engine.handle_submission("u1", "code")

        assert outcome.decision == Decision.ALLOW
        assert outcome.risk == "Low"
        assert outcome.scans_remaining_display == "4"

    def test_paid_account_is_not_charged(self, engine, store):
        """Paid accounts report unlimited and keep their counter."""
        store.save(Document(accounts={"u1": Account(scans_used=5, is_paid=True)}))

        outcome = engine.handle_submission("u1", "code")

        assert outcome.kind == OutcomeKind.COMPLETED
        assert outcome.scans_remaining is None
        assert outcome.scans_remaining_display == "∞"
        assert stored(store, "u1").scans_used == 5

    def test_account_created_on_first_contact(self, engine, store):
        """Unknown accounts are created lazily."""
        engine.handle_submission("fresh", "code")
        assert stored(store, "fresh").scans_used == 1


class TestNoChargeOnFailure:
    """Failed remote calls never cost a scan."""

    @pytest.mark.parametrize(
        "error,failure",
        [
            (AnalysisTimeoutError("slow"), FailureKind.TIMEOUT),
            (TransportError("down"), FailureKind.TRANSPORT),
            (PaymentRequiredError(), FailureKind.PAYMENT_REQUIRED),
            (RemoteError(500, "oops"), FailureKind.REMOTE_ERROR),
        ],
    )
    def test_failure_leaves_quota_unchanged(self, engine, store, client, error, failure):
        """Every failure kind maps to REMOTE_FAILED with scans_used untouched."""
        store.save(Document(accounts={"u1": Account(scans_used=2)}))
        client.analyze.side_effect = error

        outcome = engine.handle_submission("u1", "code")

        assert outcome.kind == OutcomeKind.REMOTE_FAILED
        assert outcome.failure == failure
        assert outcome.scans_remaining == 3
        assert stored(store, "u1").scans_used == 2

    def test_payment_required_still_consumes_rate_slot(self, store, client, config, clock):
        """A 402 leaves quota alone but the rate slot is spent."""
        engine = ScanDecisionEngine(store, client, config, clock=clock)
        client.analyze.side_effect = PaymentRequiredError()

        outcome = engine.handle_submission("u1", "code")

        assert outcome.failure == FailureKind.PAYMENT_REQUIRED
        account = stored(store, "u1")
        assert account.scans_used == 0
        assert account.rate_window.count == 1

    def test_remote_error_detail_included(self, engine, client):
        """Remote errors carry their status for diagnostics."""
        client.analyze.side_effect = RemoteError(503, "maintenance")

        outcome = engine.handle_submission("u1", "code")

        assert "503" in outcome.detail
        assert "maintenance" in outcome.detail

    def test_unencodable_text_is_a_transport_failure(self, store, roomy_config, clock):
        """Text the client cannot encode ends as an outcome, never an exception."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={})

        client = AnalysisClient(
            base_url="https://analyzer.test",
            shared_secret="test-secret",
            transport=httpx.MockTransport(handler),
        )
        engine = ScanDecisionEngine(store, client, roomy_config, clock=clock)

        outcome = engine.handle_submission("u1", "code \ud800")

        assert outcome.kind == OutcomeKind.REMOTE_FAILED
        assert outcome.failure == FailureKind.TRANSPORT
        assert requests == []
        assert stored(store, "u1").scans_used == 0


class TestRateLimit:
    """Rate-limit gate."""

    def test_fourth_call_within_window_is_denied(self, store, client, config, clock):
        """Three calls within 10s succeed, the fourth at +15s waits 105s."""
        engine = ScanDecisionEngine(store, client, config, clock=clock)
        start = clock.now

        for offset in (0, 5_000, 10_000):
            clock.now = start + offset
            assert engine.handle_submission("u1", "code").kind == OutcomeKind.COMPLETED

        clock.now = start + 15_000
        outcome = engine.handle_submission("u1", "code")

        assert outcome.kind == OutcomeKind.RATE_DENIED
        assert outcome.retry_after_ms == 105_000
        assert client.analyze.call_count == 3

    def test_window_resets_after_duration(self, store, client, config, clock):
        """After the window the account is admitted again with count 1."""
        engine = ScanDecisionEngine(store, client, config, clock=clock)
        start = clock.now
        for _ in range(3):
            engine.handle_submission("u1", "code")
        assert engine.handle_submission("u1", "code").kind == OutcomeKind.RATE_DENIED

        clock.now = start + config.rate_window_ms + 1
        outcome = engine.handle_submission("u1", "code")

        assert outcome.kind == OutcomeKind.COMPLETED
        assert stored(store, "u1").rate_window == RateWindow(window_start=clock.now, count=1)

    def test_rate_consumed_even_when_quota_exhausted(self, store, client, config, clock):
        """Exhausted accounts still spend rate-limit budget."""
        store.save(Document(accounts={"u1": Account(scans_used=5)}))
        engine = ScanDecisionEngine(store, client, config, clock=clock)

        kinds = [engine.handle_submission("u1", "code").kind for _ in range(4)]

        assert kinds == [OutcomeKind.QUOTA_DENIED] * 3 + [OutcomeKind.RATE_DENIED]
        assert stored(store, "u1").rate_window.count == 3
        client.analyze.assert_not_called()

    def test_rate_denial_does_not_touch_quota(self, store, client, config, clock):
        """Rate-denied requests cost no scan."""
        store.save(
            Document(
                accounts={
                    "u1": Account(
                        scans_used=1,
                        rate_window=RateWindow(window_start=clock.now, count=3),
                    )
                }
            )
        )
        engine = ScanDecisionEngine(store, client, config, clock=clock)

        outcome = engine.handle_submission("u1", "code")

        assert outcome.kind == OutcomeKind.RATE_DENIED
        assert outcome.scans_remaining == 4
        assert stored(store, "u1").scans_used == 1

    def test_paid_account_is_rate_limited_by_default(self, store, client, config, clock):
        """Paid accounts bypass quota but not the rate limit."""
        store.save(Document(accounts={"u1": Account(is_paid=True)}))
        engine = ScanDecisionEngine(store, client, config, clock=clock)

        kinds = [engine.handle_submission("u1", "code").kind for _ in range(4)]

        assert kinds[-1] == OutcomeKind.RATE_DENIED

    def test_paid_rate_bypass_flag(self, store, client, config, clock):
        """paid_bypasses_rate_limit lifts the rate limit for paid accounts."""
        store.save(Document(accounts={"u1": Account(is_paid=True)}))
        engine = ScanDecisionEngine(
            store, client, replace(config, paid_bypasses_rate_limit=True), clock=clock
        )

        kinds = {engine.handle_submission("u1", "code").kind for _ in range(10)}

        assert kinds == {OutcomeKind.COMPLETED}
        assert stored(store, "u1").rate_window == RateWindow()


class TestPrivilege:
    """Privileged bypass."""

    def test_owner_bypasses_everything(self, store, client, config, clock):
        """The configured owner is never counted or throttled."""
        engine = ScanDecisionEngine(store, client, config, clock=clock)

        outcomes = [engine.handle_submission("owner-1", "code") for _ in range(20)]

        assert {o.kind for o in outcomes} == {OutcomeKind.COMPLETED}
        assert {o.scans_remaining for o in outcomes} == {None}
        account = stored(store, "owner-1")
        assert account.scans_used == 0
        assert account.rate_window == RateWindow()

    def test_caller_asserted_privilege(self, store, client, config, clock):
        """The transport can mark a submission privileged."""
        engine = ScanDecisionEngine(store, client, config, clock=clock)

        for _ in range(10):
            outcome = engine.handle_submission("u1", "code", is_privileged=True)
            assert outcome.kind == OutcomeKind.COMPLETED

        assert stored(store, "u1").scans_used == 0

    def test_granted_privilege_keeps_counter(self, store, client, config, clock):
        """Stored privilege grants leave scans_used as it was."""
        store.save(Document(accounts={"u1": Account(scans_used=5, is_privileged=True)}))
        engine = ScanDecisionEngine(store, client, config, clock=clock)

        outcome = engine.handle_submission("u1", "code")

        assert outcome.kind == OutcomeKind.COMPLETED
        assert stored(store, "u1").scans_used == 5

    def test_privileged_rate_limit_when_bypass_disabled(self, store, client, config, clock):
        """With the bypass off, privileged accounts are throttled but never charged."""
        engine = ScanDecisionEngine(
            store,
            client,
            replace(config, privileged_bypasses_rate_limit=False),
            clock=clock,
        )

        kinds = [engine.handle_submission("owner-1", "code").kind for _ in range(4)]

        assert kinds[-1] == OutcomeKind.RATE_DENIED
        assert stored(store, "owner-1").scans_used == 0

    def test_no_privilege_without_configured_owner(self, store, client, config, clock):
        """Privilege is disabled when no owner is configured."""
        engine = ScanDecisionEngine(
            store, client, replace(config, privileged_account_id=None), clock=clock
        )

        outcome = engine.handle_submission("owner-1", "code")

        assert outcome.scans_remaining == 4


class TestStorageFailure:
    """Persisted-state write failures."""

    def test_gate_write_failure_is_an_outcome(self, client, roomy_config, clock):
        """A failed save is reported, not raised, and no call is made."""
        store = MagicMock()
        store.transaction.side_effect = StorageError("disk full")
        engine = ScanDecisionEngine(store, client, roomy_config, clock=clock)

        outcome = engine.handle_submission("u1", "code")

        assert outcome.kind == OutcomeKind.STORAGE_FAILED
        assert outcome.detail == "disk full"
        client.analyze.assert_not_called()

    def test_commit_write_failure_is_an_outcome(self, client, roomy_config, clock):
        """A failed commit after a successful call is reported and costs nothing."""
        store = CommitFailingStore()
        engine = ScanDecisionEngine(store, client, roomy_config, clock=clock)

        outcome = engine.handle_submission("u1", "code")

        assert outcome.kind == OutcomeKind.STORAGE_FAILED
        assert outcome.detail == "disk full"
        client.analyze.assert_called_once()
        account = stored(store, "u1")
        assert account.scans_used == 0
        assert account.rate_window.count == 1


class TestConcurrency:
    """Same-account submissions under threads."""

    def test_concurrent_submissions_never_overspend(self, store, roomy_config, clock):
        """Racing submissions admit exactly the free limit."""
        barrier = threading.Barrier(10)
        client = MagicMock(spec=AnalysisClient)
        client.analyze.return_value = ALLOW
        engine = ScanDecisionEngine(store, client, roomy_config, clock=clock)
        kinds = []

        def submit():
            barrier.wait()
            kinds.append(engine.handle_submission("u1", "code").kind)

        threads = [threading.Thread(target=submit) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert kinds.count(OutcomeKind.COMPLETED) == 5
        assert kinds.count(OutcomeKind.QUOTA_DENIED) == 5
        assert stored(store, "u1").scans_used == 5

    def test_other_accounts_not_lost(self, store, roomy_config, clock):
        """Concurrent accounts each keep their own update."""
        client = MagicMock(spec=AnalysisClient)
        client.analyze.return_value = ALLOW
        engine = ScanDecisionEngine(store, client, roomy_config, clock=clock)

        threads = [
            threading.Thread(target=engine.handle_submission, args=(f"u{i}", "code"))
            for i in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        accounts = store.load().accounts
        assert {accounts[f"u{i}"].scans_used for i in range(8)} == {1}

    def test_blocked_account_does_not_block_others(self, store, roomy_config, clock):
        """A slow remote call for one account does not hold up another."""
        started = threading.Event()
        release = threading.Event()

        def analyze(text):
            if text == "slow":
                started.set()
                release.wait(timeout=5)
            return ALLOW

        client = MagicMock(spec=AnalysisClient)
        client.analyze.side_effect = analyze
        engine = ScanDecisionEngine(store, client, roomy_config, clock=clock)

        slow = threading.Thread(target=engine.handle_submission, args=("a", "slow"))
        slow.start()
        assert started.wait(timeout=5)

        outcome = engine.handle_submission("b", "fast")

        assert outcome.kind == OutcomeKind.COMPLETED
        assert slow.is_alive()
        release.set()
        slow.join()
        assert stored(store, "a").scans_used == 1
        assert stored(store, "b").scans_used == 1


class TestDynamoDBBackend:
    """Engine over the per-record DynamoDB store."""

    def test_quota_counts_down(self, dynamodb_table, client, roomy_config, clock):
        """Five free scans, then denial, with state in the account's own item."""
        store = DynamoDBAccountStore(dynamodb_table.name)
        engine = ScanDecisionEngine(store, client, roomy_config, clock=clock)

        outcomes = [engine.handle_submission("u1", "code") for _ in range(6)]

        assert [o.kind for o in outcomes] == [OutcomeKind.COMPLETED] * 5 + [
            OutcomeKind.QUOTA_DENIED
        ]
        assert store.load("u1").accounts["u1"].scans_used == 5
