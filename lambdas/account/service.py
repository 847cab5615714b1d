"""Account service - balance, payment requests and administrative grants."""

from aws_lambda_powertools import Logger

from shared.config import Config
from shared.exceptions import ConflictError, ForbiddenError, NotFoundError
from shared.models import Payment, PaymentStatus
from shared.quota import format_remaining, remaining
from shared.scan_limits import ScanLimits
from shared.store import AccountStore
from shared.utils import generate_payment_id, utc_now

logger = Logger()


class AccountService:
    """Service layer for account status and manual payments.

    Payments are recorded for an operator to verify by hand; nothing here
    checks a transaction on chain.
    """

    def __init__(self, store: AccountStore, config: Config) -> None:
        """Initialize account service.

        Args:
            store: Account document store
            config: Limits, price and privileged identity
        """
        self.store = store
        self.config = config

    def get_balance(self, account_id: str) -> dict:
        """Get paid status and scan usage for an account.

        Args:
            account_id: The account's ID

        Returns:
            Balance summary
        """
        with self.store.transaction(account_id) as document:
            account = self.store.get_or_create_account(document, account_id)

        privileged = account.is_privileged or self.config.is_owner(account_id)
        left = None if privileged else remaining(account, self.config.free_scan_limit)
        return {
            "account_id": account_id,
            "is_paid": account.is_paid,
            "is_privileged": privileged,
            "scans_used": account.scans_used,
            "scans_remaining": format_remaining(left),
        }

    def create_payment(self, account_id: str) -> dict:
        """Raise a payment request for unlimited scans.

        Args:
            account_id: The paying account's ID

        Returns:
            The payment request with amount and destination address

        Raises:
            ConflictError: If the account is already paid or has too many
                unconfirmed payment requests
        """
        payment = Payment(
            payment_id=generate_payment_id(),
            account_id=account_id,
            amount=self.config.price_basic,
            pay_to=self.config.pay_to,
            created_at=utc_now(),
        )

        with self.store.transaction(account_id) as document:
            account = self.store.get_or_create_account(document, account_id)
            if account.is_paid:
                raise ConflictError("Account already has unlimited scans")

            open_payments = [
                p
                for p in document.payments.values()
                if p.account_id == account_id and p.status != PaymentStatus.CONFIRMED
            ]
            if len(open_payments) >= ScanLimits.MAX_OPEN_PAYMENTS:
                logger.warning(
                    "Too many open payment requests",
                    extra={"account_id": account_id, "open": len(open_payments)},
                )
                raise ConflictError(
                    f"{len(open_payments)} payment requests are already awaiting "
                    "confirmation by the owner."
                )

            document.payments[payment.payment_id] = payment

        logger.info(
            "Payment requested",
            extra={
                "account_id": account_id,
                "payment_id": payment.payment_id,
                "amount": payment.amount,
            },
        )
        return payment.model_dump(mode="json")

    def submit_transaction(self, account_id: str, payment_id: str, tx_hash: str) -> dict:
        """Attach a transaction hash to one of the caller's payment requests.

        Args:
            account_id: The caller's ID
            payment_id: Payment request to update
            tx_hash: On-chain transaction hash supplied by the caller

        Returns:
            The updated payment request

        Raises:
            NotFoundError: If the payment doesn't exist or isn't the caller's
        """
        with self.store.transaction(account_id) as document:
            payment = document.payments.get(payment_id)
            if payment is None or payment.account_id != account_id:
                raise NotFoundError("Payment", payment_id)
            payment.tx_hash = tx_hash
            if payment.status == PaymentStatus.PENDING:
                payment.status = PaymentStatus.SUBMITTED

        logger.info(
            "Payment transaction submitted",
            extra={"account_id": account_id, "payment_id": payment_id, "tx_hash": tx_hash},
        )
        return payment.model_dump(mode="json")

    def _require_owner(self, requester_id: str) -> None:
        if not self.config.is_owner(requester_id):
            logger.warning(
                "Administrative action refused", extra={"requester_id": requester_id}
            )
            raise ForbiddenError("Only the owner account may grant access")

    def mark_paid(self, requester_id: str, account_id: str) -> dict:
        """Mark an account as paid after manual verification.

        Submitted payments for the account are marked confirmed.

        Args:
            requester_id: Account performing the grant
            account_id: Account to unlock

        Returns:
            Balance summary of the unlocked account

        Raises:
            ForbiddenError: If requester is not the owner
        """
        self._require_owner(requester_id)

        with self.store.transaction(account_id) as document:
            account = self.store.get_or_create_account(document, account_id)
            account.is_paid = True
            for payment in document.payments.values():
                if (
                    payment.account_id == account_id
                    and payment.status == PaymentStatus.SUBMITTED
                ):
                    payment.status = PaymentStatus.CONFIRMED

        logger.info(
            "Account marked paid",
            extra={"requester_id": requester_id, "account_id": account_id},
        )
        return self.get_balance(account_id)

    def grant_unlimited(self, requester_id: str, account_id: str) -> dict:
        """Grant an account privileged, unlimited status.

        Args:
            requester_id: Account performing the grant
            account_id: Account to grant

        Returns:
            Balance summary of the granted account

        Raises:
            ForbiddenError: If requester is not the owner
        """
        self._require_owner(requester_id)

        with self.store.transaction(account_id) as document:
            account = self.store.get_or_create_account(document, account_id)
            account.is_privileged = True

        logger.info(
            "Unlimited access granted",
            extra={"requester_id": requester_id, "account_id": account_id},
        )
        return self.get_balance(account_id)
