"""Kalkia error handling.

Custom exceptions and error codes for the calculation engine.

Every error is raised where it is detected and propagates unchanged to the
caller. The ``details`` dict carries the offending id, field and value so
the calling layer can build a user-facing message without re-deriving it.
"""

from typing import Any, Dict, Optional


# Error Codes
class ErrorCode:
    """Error code constants."""

    # Input Errors (1xxx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    INVALID_PERCENTAGE = "INVALID_PERCENTAGE"

    # Lookup Errors (2xxx)
    NOT_FOUND = "NOT_FOUND"
    COMPONENT_NOT_FOUND = "COMPONENT_NOT_FOUND"
    VARIANT_NOT_FOUND = "VARIANT_NOT_FOUND"
    MATERIAL_NOT_FOUND = "MATERIAL_NOT_FOUND"

    # Catalog Errors (3xxx)
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"
    NO_VARIANTS = "NO_VARIANTS"
    MULTIPLE_DEFAULT_VARIANTS = "MULTIPLE_DEFAULT_VARIANTS"
    INVALID_RULE = "INVALID_RULE"

    # Configuration Errors (4xxx)
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    UNKNOWN_LABOR_TYPE = "UNKNOWN_LABOR_TYPE"
    UNKNOWN_TIME_ADJUSTMENT = "UNKNOWN_TIME_ADJUSTMENT"

    # Arithmetic Errors (5xxx)
    COMPUTATION_ERROR = "COMPUTATION_ERROR"
    NON_FINITE_VALUE = "NON_FINITE_VALUE"


class KalkiaError(Exception):
    """Base exception for Kalkia errors.

    Provides structured error information for API responses.

    Attributes:
        code: Error code from ErrorCode constants
        message: Human-readable error message
        details: Additional error context
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        """Initialize KalkiaError.

        Args:
            code: Error code from ErrorCode constants
            message: Human-readable error message
            details: Additional error context
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for API response.

        Returns:
            Dictionary with code, message, and details.
        """
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(KalkiaError):
    """Malformed or out-of-range input (quantity, percentages)."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
        code: str = ErrorCode.VALIDATION_ERROR,
        details: Optional[Dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            details={**(details or {}), "field": field, "value": value}
        )
        self.field = field
        self.value = value


class NotFoundError(KalkiaError):
    """A referenced component, variant or material is not in the catalog slice."""

    def __init__(
        self,
        entity: str,
        entity_id: str,
        code: str = ErrorCode.NOT_FOUND,
        details: Optional[Dict] = None
    ):
        super().__init__(
            code=code,
            message=f"{entity} {entity_id!r} not found",
            details={**(details or {}), "entity": entity, "entity_id": entity_id}
        )
        self.entity = entity
        self.entity_id = entity_id


class DataIntegrityError(KalkiaError):
    """Structurally invalid catalog data."""

    def __init__(
        self,
        message: str,
        entity: Optional[str] = None,
        entity_id: Optional[str] = None,
        code: str = ErrorCode.DATA_INTEGRITY_ERROR,
        details: Optional[Dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            details={**(details or {}), "entity": entity, "entity_id": entity_id}
        )
        self.entity = entity
        self.entity_id = entity_id


class ConfigurationError(KalkiaError):
    """Unrecognized enum value or setting with no safe default."""

    def __init__(
        self,
        message: str,
        field: str,
        value: Any = None,
        code: str = ErrorCode.CONFIGURATION_ERROR,
        details: Optional[Dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            details={**(details or {}), "field": field, "value": value}
        )
        self.field = field
        self.value = value


class ComputationError(KalkiaError):
    """An arithmetic step produced NaN or an infinite value."""

    def __init__(
        self,
        field: str,
        value: float,
        details: Optional[Dict] = None
    ):
        super().__init__(
            code=ErrorCode.NON_FINITE_VALUE,
            message=f"Computed {field} is not a finite number: {value!r}",
            details={**(details or {}), "field": field, "value": repr(value)}
        )
        self.field = field
        self.value = value
