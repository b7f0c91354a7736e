"""Service error hierarchy shared by the server and the client library.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts, 5xx)
- PermanentError: Non-retryable errors (validation, rejected input)
- AuthorizationError: Non-retryable, requires the user to authenticate again
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts and connection failures
    - Rate limit exceeded (429)
    - Service unavailable (5xx)
    - Malformed responses from an upstream service
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Invalid request parameters (400, 422)
    - Image payload that cannot be decoded
    """

    pass


class AuthorizationError(PermanentError):
    """Caller is unauthenticated or does not own the resource (401, 403).

    Must not be retried automatically; the user has to sign in again.
    Queued work is kept.
    """

    pass


class MalformedResponseError(TransientError):
    """Server answered 2xx with a body that does not match the contract."""

    pass


# Vision analysis errors
class VisionError(ServiceError):
    """Base exception for image analysis errors."""

    pass


class VisionTransientError(TransientError):
    """Model provider timeout, rate limit or outage."""

    pass


class AnalysisResponseError(VisionTransientError):
    """Model output could not be parsed into a count."""

    pass


class VisionPermanentError(PermanentError):
    """Model provider rejected the request (auth, bad request)."""

    pass


class InvalidImageError(PermanentError):
    """Image payload is not a base64 data:image URL."""

    pass
