"""Custom exceptions for Scan Gateway."""


class ScanGatewayError(Exception):
    """Base exception for all gateway errors."""

    def __init__(self, message: str = "An error occurred") -> None:
        """Initialize exception with message.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(self.message)


class NotFoundError(ScanGatewayError):
    """Resource not found."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        """Initialize not found error.

        Args:
            resource_type: Type of resource (e.g., "Account", "Payment")
            resource_id: ID of the missing resource
        """
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} '{resource_id}' not found")


class ValidationError(ScanGatewayError):
    """Request validation failed."""

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize validation error.

        Args:
            message: Validation error message
            field: Optional field name that failed validation
        """
        self.field = field
        super().__init__(message)


class ForbiddenError(ScanGatewayError):
    """Caller is not allowed to perform an administrative action."""


class ConfigurationError(ScanGatewayError):
    """Configuration or environment error."""

    def __init__(self, message: str, config_key: str | None = None) -> None:
        """Initialize configuration error.

        Args:
            message: Error message
            config_key: Optional configuration key that caused the error
        """
        self.config_key = config_key
        super().__init__(message)


class ConflictError(ScanGatewayError):
    """Request conflicts with the account's current state."""


class StorageError(ScanGatewayError):
    """Persisted account document could not be written."""


class AnalysisError(ScanGatewayError):
    """Base class for downstream analysis failures."""

    kind = "remote_error"


class TransportError(AnalysisError):
    """Downstream service unreachable."""

    kind = "transport"


class AnalysisTimeoutError(TransportError):
    """Downstream service did not answer within the timeout."""

    kind = "timeout"


class PaymentRequiredError(AnalysisError):
    """Downstream answered 402: the shared secret was not honored."""

    kind = "payment_required"

    def __init__(
        self,
        message: str = "Analysis service returned 402; check the shared secret",
    ) -> None:
        super().__init__(message)


class RemoteError(AnalysisError):
    """Downstream answered with a non-success status."""

    kind = "remote_error"

    def __init__(self, status_code: int, body: str = "") -> None:
        """Initialize remote error.

        Args:
            status_code: HTTP status returned by the analysis service
            body: Truncated response body for diagnostics
        """
        self.status_code = status_code
        self.body = body
        detail = f"Analysis service error ({status_code})"
        if body:
            detail = f"{detail}: {body}"
        super().__init__(detail)
