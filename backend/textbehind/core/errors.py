"""API error classes.

HTTP status codes and machine-readable error codes for the request
boundary. Quota denials are not errors and have no class here; the usage
endpoints render them from the gate's decision.
"""


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400).

    Use for malformed plan types, missing session ids, missing webhook
    headers, etc.
    """

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class SetupRequiredError(APIError):
    """Billing is not configured for this deployment (400)."""

    def __init__(
        self,
        message: str = "Stripe is not configured. Please contact support.",
    ) -> None:
        super().__init__(
            code="SETUP_REQUIRED",
            message=message,
            status_code=400,
        )


class WebhookSignatureError(APIError):
    """Inbound webhook failed signature verification (400).

    The payload is never processed when this is raised.
    """

    def __init__(self, message: str = "Invalid webhook signature") -> None:
        super().__init__(
            code="INVALID_SIGNATURE",
            message=message,
            status_code=400,
        )


class UnauthorizedError(APIError):
    """Authentication required (401)."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401,
        )


class ForbiddenError(APIError):
    """Not allowed to access resource (403).

    Use when auth is valid but user lacks permission.
    """

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(
            code="FORBIDDEN",
            message=message,
            status_code=403,
        )


class RequestRejectedError(ForbiddenError):
    """Request failed boundary security checks (403).

    Raised before the usage gate runs: blocked user agent or foreign origin.
    """

    def __init__(self, message: str = "Request rejected") -> None:
        APIError.__init__(
            self,
            code="REQUEST_REJECTED",
            message=message,
            status_code=403,
        )


class NotFoundError(APIError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        resource_id: str | None = None,
        *,
        message: str | None = None,
    ) -> None:
        if message is None and resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        elif message is None:
            message = f"{resource} not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=404,
        )


class BillingSyncError(APIError):
    """Subscription sync failed against the billing provider (500).

    Details carry the provider's error description for the caller.
    """

    def __init__(self, message: str, detail: str) -> None:
        super().__init__(
            code="SYNC_FAILED",
            message=message,
            status_code=500,
            details=[{"details": detail}],
        )


class InternalError(APIError):
    """Unexpected server error (500).

    Use for unhandled exceptions. Never expose stack traces to clients.
    """

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(
            code="INTERNAL_ERROR",
            message=message,
            status_code=500,
        )
