"""
Catalog API - Custom Exceptions
===============================
Centralized exception hierarchy for structured error handling.
"""

from typing import Optional, Dict, Any


class CatalogBaseException(Exception):
    """Base exception for all Catalog API errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
        }
        if self.original_error:
            result["original_error"] = str(self.original_error)
        return result


# =============================================================================
# Client Errors
# =============================================================================

class ValidationError(CatalogBaseException):
    """Input validation failure."""

    status_code = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None
    ):
        context = {}
        if field:
            context["field"] = field
        if value is not None:
            context["value"] = str(value)[:100]  # Truncate
        super().__init__(message, context)


class AuthenticationError(CatalogBaseException):
    """Credential verification failure."""

    status_code = 401

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class NotFoundError(CatalogBaseException):
    """Referenced entity does not exist."""

    status_code = 404

    def __init__(self, entity: str, entity_id: Optional[Any] = None):
        context = {"entity": entity}
        if entity_id is not None:
            context["id"] = entity_id
        super().__init__(f"{entity} not found", context)


class ConflictError(CatalogBaseException):
    """Unique constraint would be violated."""

    status_code = 409

    def __init__(self, message: str, fields: Optional[list] = None):
        context = {"fields": fields} if fields else {}
        super().__init__(message, context)


class RateLimitExceeded(CatalogBaseException):
    """Client exhausted its request budget."""

    status_code = 429

    def __init__(self, retry_after: float, scope: str = "client"):
        super().__init__(
            "Too many requests, please try again later",
            {"retry_after": round(retry_after, 2), "scope": scope},
        )
        self.retry_after = retry_after


# =============================================================================
# Database Errors
# =============================================================================

class DatabaseError(CatalogBaseException):
    """Query or command failure reported by the database."""

    status_code = 500

    def __init__(
        self,
        message: str = "Database operation failed",
        operation: Optional[str] = None,
        entity: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        context = {}
        if operation:
            context["operation"] = operation
        if entity:
            context["entity"] = entity
        super().__init__(message, context, original_error)


class DatabaseConnectionError(DatabaseError):
    """Database unreachable."""

    status_code = 503

    def __init__(
        self,
        message: str = "Failed to connect to the database",
        original_error: Optional[Exception] = None
    ):
        super().__init__(message, original_error=original_error)


class UpstreamTimeoutError(CatalogBaseException):
    """An awaited upstream operation exceeded its deadline."""

    status_code = 504

    def __init__(self, operation: str, timeout: float):
        super().__init__(
            f"Operation '{operation}' exceeded timeout of {timeout}s",
            {"operation": operation, "timeout": timeout},
        )
