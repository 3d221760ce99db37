"""Custom exceptions for the writing style engine."""

from typing import Any


class StyleEngineException(Exception):
    """Base exception for all writing style engine errors."""

    def __init__(
        self,
        message: str,
        code: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize style engine exception.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            details: Additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class ValidationError(StyleEngineException):
    """Value outside its documented range or schema mismatch."""

    def __init__(
        self, message: str, field: str | None = None, details: dict[str, Any] | None = None
    ) -> None:
        """Initialize validation error.

        Args:
            message: Error message.
            field: Name of the invalid field.
            details: Additional validation details.
        """
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details=error_details,
        )


class ExtractionError(StyleEngineException):
    """Style metric extraction failed.

    Raised for empty input, or when the extractor output cannot be turned
    into a complete feature vector after the repair pipeline.
    """

    def __init__(self, message: str = "Unknown error", attempts: int = 0) -> None:
        """Initialize extraction error.

        Args:
            message: Error details.
            attempts: Number of extractor calls made before giving up.
        """
        super().__init__(
            message=f"Style extraction failed: {message}",
            code="EXTRACTION_ERROR",
            details={"attempts": attempts},
        )


class TransactionConflictError(StyleEngineException):
    """Concurrent write collided on the same connection's row."""

    def __init__(self, connection_id: str, message: str | None = None) -> None:
        """Initialize transaction conflict error.

        Args:
            connection_id: Connection whose style matrix row collided.
            message: Optional error message.
        """
        super().__init__(
            message=message or f"Concurrent update of style matrix for connection '{connection_id}'",
            code="TRANSACTION_CONFLICT",
            details={"connection_id": connection_id},
        )


class DatabaseError(StyleEngineException):
    """Database operation error."""

    def __init__(self, message: str = "A database error occurred") -> None:
        """Initialize database error.

        Args:
            message: Error message.
        """
        super().__init__(
            message=message,
            code="DATABASE_ERROR",
        )


class ExternalServiceError(StyleEngineException):
    """External service error."""

    def __init__(self, service: str, message: str | None = None) -> None:
        """Initialize external service error.

        Args:
            service: Name of the external service.
            message: Optional error message.
        """
        error_message = message or f"Error communicating with {service}"
        super().__init__(
            message=error_message,
            code="EXTERNAL_SERVICE_ERROR",
            details={"service": service},
        )
