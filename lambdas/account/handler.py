"""Account Lambda handler for balance, payments and admin grants."""

from typing import Any

from aws_lambda_powertools import Logger, Tracer
from aws_lambda_powertools.event_handler import APIGatewayRestResolver, CORSConfig, Response
from aws_lambda_powertools.event_handler.exceptions import (
    BadRequestError,
    UnauthorizedError,
)
from aws_lambda_powertools.event_handler.exceptions import (
    NotFoundError as APINotFoundError,
)
from aws_lambda_powertools.utilities.typing import LambdaContext
from pydantic import ValidationError

from account.models import TransactionSubmitRequest
from account.service import AccountService
from shared.config import get_config
from shared.exceptions import ConflictError, ForbiddenError, NotFoundError, StorageError
from shared.store import get_store
from shared.utils import extract_user_id

logger = Logger()
tracer = Tracer()
cors_config = CORSConfig(allow_origin="*", allow_headers=["Content-Type", "X-User-Id"], max_age=300)
app = APIGatewayRestResolver(cors=cors_config)

# Initialize service lazily
_service: AccountService | None = None


def get_service() -> AccountService:
    """Get or create the account service instance."""
    global _service
    if _service is None:
        _service = AccountService(get_store(), get_config())
    return _service


def reset_service() -> None:
    """Reset the service instance (for testing)."""
    global _service
    _service = None


def get_user_id() -> str:
    """Extract and validate user ID from headers.

    Returns:
        The user ID from the X-User-ID header

    Raises:
        UnauthorizedError: If header is missing or invalid
    """
    user_id = extract_user_id(app.current_event.headers)
    if not user_id:
        raise UnauthorizedError("Missing or invalid X-User-ID header")
    return user_id


def error_body(status_code: int, message: str) -> Response:
    """Build a JSON error response."""
    return Response(
        status_code=status_code,
        content_type="application/json",
        body={"error": message},
    )


@app.exception_handler(StorageError)
def handle_storage_error(e: StorageError) -> Response:
    """Account state could not be written."""
    logger.error("Storage failure", extra={"error": e.message})
    return error_body(503, "Account storage unavailable. Try again.")


@app.get("/accounts/me")
@tracer.capture_method
def get_balance() -> dict[str, Any]:
    """Get the caller's paid status and remaining scans.

    Returns:
        200 response with balance
    """
    user_id = get_user_id()
    return get_service().get_balance(user_id)


@app.post("/payments")
@tracer.capture_method
def create_payment() -> Response:
    """Raise a payment request for unlimited scans.

    Returns:
        201 response with payment details, 409 if the account is already
        paid or has too many open requests
    """
    user_id = get_user_id()
    try:
        payment = get_service().create_payment(user_id)
    except ConflictError as e:
        return error_body(409, e.message)
    return Response(
        status_code=201,
        content_type="application/json",
        body=payment,
    )


@app.post("/payments/<payment_id>/transaction")
@tracer.capture_method
def submit_transaction(payment_id: str) -> dict[str, Any]:
    """Attach a transaction hash to a payment request.

    Args:
        payment_id: The payment request's ID

    Returns:
        200 response with updated payment
    """
    user_id = get_user_id()

    try:
        body = app.current_event.json_body or {}
        request = TransactionSubmitRequest(**body)
    except ValidationError as e:
        raise BadRequestError(str(e)) from None

    try:
        return get_service().submit_transaction(user_id, payment_id, request.tx_hash)
    except NotFoundError:
        raise APINotFoundError("Payment not found") from None


@app.post("/accounts/<account_id>/paid")
@tracer.capture_method
def mark_paid(account_id: str) -> Response:
    """Unlock unlimited scans for an account (owner only).

    Args:
        account_id: Account to unlock

    Returns:
        200 response with the account's balance, 403 for non-owners
    """
    user_id = get_user_id()
    try:
        balance = get_service().mark_paid(user_id, account_id)
    except ForbiddenError as e:
        return error_body(403, e.message)
    return Response(status_code=200, content_type="application/json", body=balance)


@app.post("/accounts/<account_id>/unlimited")
@tracer.capture_method
def grant_unlimited(account_id: str) -> Response:
    """Grant privileged status to an account (owner only).

    Args:
        account_id: Account to grant

    Returns:
        200 response with the account's balance, 403 for non-owners
    """
    user_id = get_user_id()
    try:
        balance = get_service().grant_unlimited(user_id, account_id)
    except ForbiddenError as e:
        return error_body(403, e.message)
    return Response(status_code=200, content_type="application/json", body=balance)


@logger.inject_lambda_context
@tracer.capture_lambda_handler
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    """Main Lambda entry point.

    Args:
        event: API Gateway event
        context: Lambda context

    Returns:
        API Gateway response
    """
    return app.resolve(event, context)
