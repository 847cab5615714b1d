"""Scan Lambda handler: text submissions and downstream health."""

from aws_lambda_powertools import Logger, Tracer
from aws_lambda_powertools.event_handler import APIGatewayRestResolver, CORSConfig, Response
from aws_lambda_powertools.event_handler.exceptions import (
    BadRequestError,
    UnauthorizedError,
)
from aws_lambda_powertools.utilities.typing import LambdaContext
from pydantic import ValidationError

from scan.analysis_client import AnalysisClient
from scan.engine import ScanDecisionEngine, metrics
from scan.messages import get_outcome_message
from scan.models import FailureKind, OutcomeKind, ScanOutcome, ScanRequest
from shared.config import get_config
from shared.secrets import get_shared_secret
from shared.store import get_store
from shared.utils import extract_user_id, retry_after_seconds

logger = Logger()
tracer = Tracer()
cors_config = CORSConfig(allow_origin="*", allow_headers=["Content-Type", "X-User-Id"], max_age=300)
app = APIGatewayRestResolver(cors=cors_config)

FAILURE_STATUS = {
    FailureKind.TIMEOUT: 504,
    FailureKind.TRANSPORT: 502,
    FailureKind.PAYMENT_REQUIRED: 502,
    FailureKind.REMOTE_ERROR: 502,
}

# Initialize engine lazily
_engine: ScanDecisionEngine | None = None


def get_engine() -> ScanDecisionEngine:
    """Get or create the scan decision engine instance."""
    global _engine
    if _engine is None:
        config = get_config()
        client = AnalysisClient(
            base_url=config.api_base_url,
            shared_secret=get_shared_secret(),
            analyze_path=config.analyze_path,
            health_path=config.health_path,
            timeout_ms=config.request_timeout_ms,
        )
        _engine = ScanDecisionEngine(get_store(), client, config)
    return _engine


def reset_engine() -> None:
    """Reset the engine instance (for testing)."""
    global _engine
    _engine = None


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


def outcome_status(outcome: ScanOutcome) -> int:
    """Map an outcome to an HTTP status code."""
    if outcome.kind == OutcomeKind.COMPLETED:
        return 200
    if outcome.kind == OutcomeKind.RATE_DENIED:
        return 429
    if outcome.kind == OutcomeKind.QUOTA_DENIED:
        return 402
    if outcome.kind == OutcomeKind.REMOTE_FAILED:
        return FAILURE_STATUS.get(outcome.failure, 502)
    return 503


@app.post("/scans")
@tracer.capture_method
def submit_scan() -> Response:
    """Scan submitted text for the calling account.

    Returns:
        Outcome body with a status matching the outcome kind
    """
    user_id = get_user_id()

    try:
        body = app.current_event.json_body or {}
        request = ScanRequest(**body)
    except ValidationError as e:
        raise BadRequestError(str(e)) from None

    config = get_config()
    outcome = get_engine().handle_submission(user_id, request.text)

    body = outcome.to_dict()
    body["message"] = get_outcome_message(
        outcome, price=config.price_basic, pay_to=config.pay_to
    )

    headers = {}
    if outcome.kind == OutcomeKind.RATE_DENIED:
        headers["Retry-After"] = str(retry_after_seconds(outcome.retry_after_ms or 0))

    return Response(
        status_code=outcome_status(outcome),
        content_type="application/json",
        body=body,
        headers=headers,
    )


@app.get("/health")
@tracer.capture_method
def health() -> Response:
    """Report whether the analysis service is reachable.

    Returns:
        200 when healthy, 503 otherwise
    """
    healthy = get_engine().client.health()
    return Response(
        status_code=200 if healthy else 503,
        content_type="application/json",
        body={"analysis_service": "ok" if healthy else "unavailable"},
    )


@logger.inject_lambda_context
@tracer.capture_lambda_handler
@metrics.log_metrics
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    """Main Lambda entry point.

    Args:
        event: API Gateway event
        context: Lambda context

    Returns:
        API Gateway response
    """
    return app.resolve(event, context)
