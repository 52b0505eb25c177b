"""
Custom exception hierarchy for structured error handling.

WHY: Custom exceptions provide:
1. Consistent error handling across the API
2. HTTP status code mapping for FastAPI
3. Structured error responses with contextual data
4. No sensitive data leaks in error messages

Error classes used by the invoice engine:
- Validation errors (bad payment amount, missing send fields): 400
- Illegal lifecycle actions: 400
- Missing invoices / log entries / payments: 404
- Idempotency guard and stale-version conflicts: 409
- Delivery failures of the invoice email: 502
- Store unreachable: 503

IMPORTANT: NEVER use base Exception class. Always use custom exceptions.
"""

from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Base exception class for all application exceptions.

    WHY: Centralizing exception handling in a base class ensures consistent
    error responses, HTTP status code mapping, and prevents sensitive data
    leaks in error messages.

    All custom exceptions should inherit from this class.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        """
        Initialize exception with message and context.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (overrides class default)
            **context: Additional context for debugging (filtered in to_dict)
        """
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize exception to dictionary for JSON response.

        Returns:
            Dictionary with error details (sensitive fields filtered out)
        """
        sensitive_fields = {"password", "token", "secret", "key", "api_key"}
        filtered_context = {
            k: v for k, v in self.context.items() if k.lower() not in sensitive_fields
        }

        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": filtered_context if filtered_context else None,
        }


# ============================================================================
# Authentication & Authorization Exceptions
# ============================================================================


class AuthenticationError(AppException):
    """
    Raised when authentication fails.

    HTTP Status: 401 Unauthorized
    """

    status_code = 401
    default_message = "Authentication failed"


class AuthorizationError(AppException):
    """
    Raised when the caller lacks permissions for an action.

    HTTP Status: 403 Forbidden
    """

    status_code = 403
    default_message = "You do not have permission to perform this action"


class TokenExpiredError(AuthenticationError):
    """Raised when a JWT token has expired."""

    default_message = "Token has expired"


class TokenInvalidError(AuthenticationError):
    """Raised when a JWT token is malformed or has an invalid signature."""

    default_message = "Token is invalid"


class AuditLogImmutableError(AppException):
    """
    Raised when attempting to update or delete an audit log.

    WHY: Audit rows are append-only; once written they cannot change.

    HTTP Status: 403 Forbidden
    """

    status_code = 403
    default_message = "Audit logs are immutable and cannot be modified"


class DeleteLogImmutableError(AppException):
    """
    Raised when attempting to edit or remove a delete-log entry.

    WHY: An entry is the only way back to a deleted invoice. It changes
    once, when it is restored, and is never removed.

    HTTP Status: 403 Forbidden
    """

    status_code = 403
    default_message = "Delete log entries can only change by being restored"


# ============================================================================
# Validation Exceptions
# ============================================================================


class ValidationError(AppException):
    """
    Raised when input validation fails.

    WHY: Non-positive payment amounts, a blank delete reason or a missing
    client email at send time are rejected locally before anything is
    written.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Validation failed"


# ============================================================================
# Resource Exceptions
# ============================================================================


class ResourceNotFoundError(AppException):
    """
    Raised when a requested resource doesn't exist.

    HTTP Status: 404 Not Found
    """

    status_code = 404
    default_message = "Resource not found"


class InvoiceNotFoundError(ResourceNotFoundError):
    """Raised when an invoice is not in the active set."""

    default_message = "Invoice not found"


class PaymentNotFoundError(ResourceNotFoundError):
    """Raised when a payment id matches no recorded payment."""

    default_message = "Payment not found"


class DeleteLogNotFoundError(ResourceNotFoundError):
    """Raised when a delete-log entry does not exist."""

    default_message = "Delete log entry not found"


class ConflictError(AppException):
    """
    Raised when a request conflicts with the current state of a resource.

    HTTP Status: 409 Conflict
    """

    status_code = 409
    default_message = "Request conflicts with current resource state"


class AlreadyRestoredError(ConflictError):
    """
    Raised when restoring a delete-log entry that was already restored.

    WHY: Each log entry may spawn exactly one restored invoice. A second
    attempt is rejected without creating a duplicate.
    """

    default_message = "Invoice has already been restored from this log entry"


class ConcurrencyConflictError(ConflictError):
    """
    Raised when an invoice was modified by someone else since it was read.

    WHY: Payment and totals updates are guarded by the invoice version
    token. A writer holding a stale copy gets this error and must re-read
    instead of overwriting the other writer's payment.
    """

    default_message = "Invoice was modified concurrently, reload and retry"


# ============================================================================
# Business Logic Exceptions
# ============================================================================


class BusinessRuleViolation(AppException):
    """
    Raised when a business rule is violated.

    HTTP Status: 422 Unprocessable Entity
    """

    status_code = 422
    default_message = "Business rule violation"


class InvalidStateTransitionError(BusinessRuleViolation):
    """
    Raised when an action is not allowed from the invoice's current status.

    WHY: e.g. paying a draft, disputing a paid invoice or cancelling an
    invoice that is already cancelled.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Invalid state transition"


# ============================================================================
# External Service Exceptions
# ============================================================================


class ExternalServiceError(AppException):
    """
    Base exception for external service failures.

    HTTP Status: 502 Bad Gateway
    """

    status_code = 502
    default_message = "External service error"


class EmailServiceError(ExternalServiceError):
    """
    Raised when sending the invoice email fails.

    WHY: Sending is only recorded after the mail provider confirms
    delivery. On failure the invoice keeps its previous status and the
    admin re-invokes Send manually.
    """

    default_message = "Email service error"


class DocumentRenderError(AppException):
    """
    Raised when an invoice or receipt PDF cannot be rendered.

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Failed to render document"


# ============================================================================
# Database Exceptions
# ============================================================================


class DatabaseError(AppException):
    """
    Raised when database operations fail.

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Database error"


class DatabaseConnectionError(DatabaseError):
    """
    Raised when the database cannot be reached.

    WHY: Single-document writes are all-or-nothing; the caller retries the
    whole operation.

    HTTP Status: 503 Service Unavailable
    """

    status_code = 503
    default_message = "Database connection failed"
