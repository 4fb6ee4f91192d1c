"""
Custom exceptions and the error catalog for the widget API.

Every expected failure is an ``APIException`` carrying a machine-readable
code, an HTTP status and a shopper-facing ``user_message``. The application's
exception handlers turn these into the standard error envelope.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ErrorDefinition:
    """Default message, HTTP status and user-facing text for an error code."""

    code: str
    message: str
    status_code: int
    user_message: str


def _define(code: str, message: str, status_code: int, user_message: str) -> ErrorDefinition:
    return ErrorDefinition(code, message, status_code, user_message)


ERROR_CATALOG: Dict[str, ErrorDefinition] = {
    definition.code: definition
    for definition in (
        # Authentication & authorization
        _define(
            "MISSING_API_KEY",
            "X-Merchant-Key header is required",
            401,
            "Authentication failed. Please check your API key.",
        ),
        _define(
            "INVALID_API_KEY_FORMAT",
            "Invalid API key format",
            401,
            "Authentication failed. Please check your API key.",
        ),
        _define(
            "INVALID_API_KEY",
            "The API key is invalid or has been revoked",
            401,
            "Authentication failed. Please check your API key.",
        ),
        _define(
            "INVALID_MERCHANT_KEY",
            "The merchant API key is invalid or has been revoked",
            401,
            "Authentication failed. Please check your API key.",
        ),
        _define(
            "UNAUTHORIZED",
            "API key authentication required",
            401,
            "Please log in to continue.",
        ),
        _define(
            "ACCOUNT_NOT_VERIFIED",
            "Please verify your email before using the API",
            403,
            "This account has not been verified yet.",
        ),
        _define(
            "MERCHANT_SUSPENDED",
            "Merchant account has been suspended",
            403,
            "Your account has been suspended. Please contact support.",
        ),
        _define(
            "DOMAIN_NOT_ALLOWED",
            "Request origin is not in the merchant's allowed domains",
            403,
            "This domain is not authorized to use the widget.",
        ),
        _define(
            "ACCESS_DENIED",
            "You do not have access to this session",
            403,
            "You do not have permission to access this resource.",
        ),
        # Rate limiting & quota
        _define(
            "RATE_LIMIT_EXCEEDED",
            "Too many requests",
            429,
            "Too many requests. Please wait a moment and try again.",
        ),
        _define(
            "QUOTA_EXCEEDED",
            "Monthly try-on quota has been reached",
            402,
            "Monthly limit reached. Please upgrade your plan.",
        ),
        # Validation
        _define(
            "VALIDATION_ERROR",
            "Request validation failed",
            400,
            "Please check your input and try again.",
        ),
        _define(
            "MISSING_SESSION_ID",
            "Session ID is required",
            400,
            "Session information is missing.",
        ),
        _define(
            "MISSING_PHOTO",
            "Either photo file or photoUrl is required",
            400,
            "Please provide a photo to try on.",
        ),
        _define(
            "INVALID_DOMAIN_FORMAT",
            "Domain format is invalid",
            400,
            "Use format: example.com or *.example.com",
        ),
        _define(
            "INVALID_KEY_TYPE",
            "keyType must be 'live', 'test', or 'both'",
            400,
            "Invalid key type specified.",
        ),
        _define("INVALID_NAME", "Key name is required", 400, "Please name your API key."),
        _define(
            "KEY_LIMIT_REACHED",
            "Maximum number of API keys reached",
            400,
            "Please delete an existing key first.",
        ),
        _define(
            "INVALID_WEBHOOK_URL",
            "Invalid webhook URL format",
            400,
            "Please enter a valid URL starting with https://",
        ),
        _define("NO_UPDATES", "No valid updates provided", 400, "No changes were provided."),
        _define(
            "BATCH_TOO_LARGE",
            "Too many sessions in a single request",
            400,
            "Please delete fewer sessions at once.",
        ),
        # Images
        _define(
            "INVALID_PRODUCT_IMAGE",
            "Failed to fetch product image",
            400,
            "Unable to load the product image. Please try a different image.",
        ),
        _define(
            "INVALID_USER_IMAGE",
            "Failed to fetch user photo from URL",
            400,
            "Unable to process your photo. Please try a different image.",
        ),
        _define(
            "IMAGE_TOO_LARGE",
            "Image file exceeds maximum size",
            400,
            "Image is too large. Please use an image under 10MB.",
        ),
        _define(
            "INVALID_IMAGE_TYPE",
            "Only image files are allowed",
            400,
            "Please upload an image file (JPG, PNG, etc.).",
        ),
        # Sessions
        _define(
            "SESSION_NOT_FOUND",
            "Session not found",
            404,
            "Session not found. Please start a new try-on.",
        ),
        _define(
            "SESSION_EXPIRED",
            "Session has expired",
            410,
            "Your session has expired. Please start over.",
        ),
        _define(
            "SESSION_ALREADY_COMPLETED",
            "This session has already been processed",
            400,
            "This try-on has already been completed.",
        ),
        _define(
            "SESSION_PROCESSING",
            "This session is currently being processed",
            400,
            "Your try-on is still processing. Please wait.",
        ),
        # Not found / conflict
        _define("RESULT_NOT_FOUND", "Result not available yet", 404, "Result not available yet. Please wait."),
        _define("KEY_NOT_FOUND", "API key not found", 404, "API key not found."),
        _define("DOMAIN_NOT_FOUND", "Domain not found in whitelist", 404, "Domain not found."),
        _define("DOMAIN_EXISTS", "Domain already in the whitelist", 409, "This domain is already added."),
        # Processing
        _define(
            "PROCESSING_FAILED",
            "Try-on generation failed",
            500,
            "Unable to generate try-on. Please try again.",
        ),
        _define(
            "FETCH_FAILED",
            "Failed to fetch result image",
            500,
            "Unable to load image. Please try again.",
        ),
        _define(
            "DOWNLOAD_FAILED",
            "Failed to download result image",
            500,
            "Unable to download. Please try again.",
        ),
        # Webhooks
        _define(
            "NO_WEBHOOK_URL",
            "No webhook URL configured. Please configure a webhook URL first.",
            400,
            "Please configure a webhook URL first.",
        ),
        _define(
            "WEBHOOK_FAILED",
            "Webhook delivery failed",
            400,
            "Unable to reach your webhook endpoint.",
        ),
        # Generic
        _define(
            "INTERNAL_ERROR",
            "An internal server error occurred",
            500,
            "Something went wrong. Please try again later.",
        ),
        _define(
            "SERVICE_UNAVAILABLE",
            "Service temporarily unavailable",
            503,
            "Service is temporarily unavailable. Please try again later.",
        ),
    )
}


class APIException(Exception):
    """Base exception for all API errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize API exception.

        Args:
            message: Human-readable error message
            status_code: HTTP status code
            error_code: Machine-readable error code
            details: Additional error details
            user_message: Message safe to show to shoppers
            headers: Extra response headers (e.g. Retry-After)
        """
        self.message = message
        self.status_code = status_code
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        definition = ERROR_CATALOG.get(self.error_code)
        self.user_message = user_message or (
            definition.user_message if definition else ERROR_CATALOG["INTERNAL_ERROR"].user_message
        )
        self.headers = headers or {}
        super().__init__(self.message)

    @classmethod
    def from_code(
        cls,
        error_code: str,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> "APIException":
        """
        Build an exception from the error catalog.

        Args:
            error_code: Catalog key, e.g. ``"SESSION_NOT_FOUND"``
            message: Override for the default message
            details: Additional error details
            headers: Extra response headers

        Raises:
            KeyError: If the code is not in the catalog
        """
        definition = ERROR_CATALOG[error_code]
        return APIException(
            message=message or definition.message,
            status_code=definition.status_code,
            error_code=definition.code,
            details=details,
            user_message=definition.user_message,
            headers=headers,
        )


class AuthenticationError(APIException):
    """Raised when authentication fails."""

    def __init__(self, error_code: str = "UNAUTHORIZED", message: Optional[str] = None):
        definition = ERROR_CATALOG[error_code]
        super().__init__(
            message=message or definition.message,
            status_code=401,
            error_code=error_code,
        )


class AuthorizationError(APIException):
    """Raised when an authenticated account may not perform the request."""

    def __init__(self, error_code: str = "ACCESS_DENIED", message: Optional[str] = None):
        definition = ERROR_CATALOG[error_code]
        super().__init__(
            message=message or definition.message,
            status_code=403,
            error_code=error_code,
        )


class RateLimitExceededError(APIException):
    """Raised when rate limit is exceeded."""

    def __init__(
        self,
        message: str = "Too many requests. Please slow down.",
        retry_after: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        details = {"retryAfter": retry_after} if retry_after is not None else {}
        headers = dict(headers or {})
        if retry_after is not None:
            headers["Retry-After"] = str(retry_after)
        super().__init__(
            message=message,
            status_code=429,
            error_code="RATE_LIMIT_EXCEEDED",
            details=details,
            headers=headers,
        )
        self.retry_after = retry_after


class QuotaExceededError(APIException):
    """Raised when an account has used up its try-on quota."""

    def __init__(self, is_lifetime: bool, used: int, limit: int):
        if is_lifetime:
            message = "Try-on limit reached. Please upgrade to a paid plan for more try-ons."
            user_message = "Try-on limit reached. Please upgrade your plan."
        else:
            message = "Monthly try-on limit reached. Please upgrade your plan."
            user_message = "Monthly limit reached. Please upgrade your plan."
        super().__init__(
            message=message,
            status_code=402,
            error_code="QUOTA_EXCEEDED",
            details={"used": used, "limit": limit, "isLifetime": is_lifetime, "upgradeRequired": True},
            user_message=user_message,
        )


class ValidationError(APIException):
    """Raised when request validation fails."""

    def __init__(
        self,
        message: str = "Request validation failed",
        errors: Optional[list] = None,
        error_code: str = "VALIDATION_ERROR",
    ):
        super().__init__(
            message=message,
            status_code=400,
            error_code=error_code,
            details={"errors": errors} if errors else {},
        )


class ResourceNotFoundError(APIException):
    """Raised when requested resource is not found."""

    def __init__(self, error_code: str, resource_id: Optional[str] = None):
        definition = ERROR_CATALOG[error_code]
        super().__init__(
            message=definition.message,
            status_code=404,
            error_code=error_code,
            details={"resourceId": resource_id} if resource_id else {},
        )


class SessionExpiredError(APIException):
    """Raised when a widget session is past its expiry."""

    def __init__(self, session_id: Optional[str] = None):
        super().__init__(
            message=ERROR_CATALOG["SESSION_EXPIRED"].message,
            status_code=410,
            error_code="SESSION_EXPIRED",
            details={"sessionId": session_id} if session_id else {},
        )


class ExternalServiceError(APIException):
    """Raised when an external service call fails."""

    def __init__(
        self,
        message: str = "External service unavailable",
        service_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
        status_code: Optional[int] = None,
    ):
        details: Dict[str, Any] = {}
        if service_name:
            details["serviceName"] = service_name
        if original_error:
            details["originalError"] = str(original_error)
        if status_code is not None:
            details["statusCode"] = status_code
        super().__init__(
            message=message,
            status_code=503,
            error_code="SERVICE_UNAVAILABLE",
            details=details,
        )

