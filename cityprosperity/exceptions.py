"""City Prosperity Exception Hierarchy.

Exception hierarchy for the City Prosperity Index engine with rich error
context for logging, metrics, and user feedback.

Exception Hierarchy:
    CityProsperityException (base)
    ├── InvalidInputError
    │   └── EmptySelectionError
    ├── InvalidConfigurationError
    ├── RecordNotFoundError
    └── StorageError
        └── ConcurrentUpdateError

All exceptions include rich context:
- error_code: Unique error identifier
- context: Dictionary with error-specific details
- timestamp: When the error occurred
- traceback: Stack at the point of construction

An incomplete composite is not an error; see
``cityprosperity.engine.aggregation.INCOMPLETE``.

Example:
    >>> from cityprosperity.exceptions import InvalidInputError
    >>> raise InvalidInputError(
    ...     message="Denominator must be positive",
    ...     indicator_id="sufficient_living",
    ...     invalid_fields={"total_households": "must be > 0"},
    ... )
"""

import json
import re
import traceback as tb
from datetime import datetime
from typing import Any, Dict, Optional


# ==============================================================================
# Base Exception
# ==============================================================================

class CityProsperityException(Exception):
    """Base exception for all City Prosperity Index errors.

    Attributes:
        message: Human-readable error message
        error_code: Unique error identifier (e.g., "CPI_INVALID_INPUT_ERROR")
        indicator_id: Indicator being processed when the error occurred
        context: Dictionary with error-specific details
        timestamp: When the error occurred
        traceback_str: Stack trace for debugging
    """

    ERROR_PREFIX = "CPI"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        indicator_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        """Initialize the exception with rich context.

        Args:
            message: Human-readable error message
            error_code: Unique error identifier (auto-generated if not provided)
            indicator_id: Indicator or group the error relates to
            context: Dictionary with error-specific details
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self._generate_error_code()
        self.indicator_id = indicator_id
        self.context = context or {}
        self.timestamp = datetime.now()
        self.traceback_str = "".join(tb.format_stack()[:-1])

    def _generate_error_code(self) -> str:
        """Generate an error code from the exception class name.

        Returns:
            Error code like "CPI_INVALID_INPUT_ERROR"
        """
        error_type = re.sub(r'(?<!^)(?=[A-Z])', '_', self.__class__.__name__).upper()
        return f"{self.ERROR_PREFIX}_{error_type}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization.

        Returns:
            Dictionary with all error details
        """
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "indicator_id": self.indicator_id,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "traceback": self.traceback_str,
        }

    def to_json(self) -> str:
        """Convert exception to JSON string."""
        return json.dumps(self.to_dict(), indent=2, default=str)

    def __str__(self) -> str:
        parts = [f"[{self.error_code}]"]
        if self.indicator_id:
            parts.append(f"Indicator: {self.indicator_id}")
        parts.append(self.message)
        return " - ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message='{self.message}', "
            f"error_code='{self.error_code}', "
            f"indicator_id='{self.indicator_id}')"
        )


# ==============================================================================
# Input Exceptions
# ==============================================================================

class InvalidInputError(CityProsperityException):
    """Raw input or request parameters failed validation.

    User-recoverable: the caller should correct the input and retry.

    Example:
        >>> raise InvalidInputError(
        ...     message="Missing raw input: total_households",
        ...     indicator_id="sufficient_living",
        ...     invalid_fields={"total_households": "missing"},
        ... )
    """

    def __init__(
        self,
        message: str,
        indicator_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        invalid_fields: Optional[Dict[str, str]] = None,
    ):
        """Initialize input error.

        Args:
            message: Error message
            indicator_id: Indicator whose inputs were rejected
            context: Error context
            invalid_fields: Dictionary of field_name -> reason
        """
        if invalid_fields:
            context = context or {}
            context["invalid_fields"] = invalid_fields
        super().__init__(message, indicator_id=indicator_id, context=context)

    @property
    def invalid_fields(self) -> Dict[str, str]:
        return self.context.get("invalid_fields", {})


class EmptySelectionError(InvalidInputError):
    """A comparison was requested without any cities."""

    def __init__(self, message: str = "No cities specified", context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context=context)


# ==============================================================================
# Configuration Exceptions
# ==============================================================================

class InvalidConfigurationError(CityProsperityException):
    """The indicator registry or service configuration is defective.

    Raised by the registry self-check at load time, never during scoring.

    Example:
        >>> raise InvalidConfigurationError(
        ...     message="max must be greater than min",
        ...     indicator_id="electricity",
        ...     problems=["electricity: max (7.0) <= min (100.0)"],
        ... )
    """

    def __init__(
        self,
        message: str,
        indicator_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        problems: Optional[list] = None,
    ):
        if problems:
            context = context or {}
            context["problems"] = list(problems)
        super().__init__(message, indicator_id=indicator_id, context=context)

    @property
    def problems(self) -> list:
        return self.context.get("problems", [])


# ==============================================================================
# Storage Exceptions
# ==============================================================================

class RecordNotFoundError(CityProsperityException):
    """Requested record does not exist or is not owned by the caller."""

    def __init__(
        self,
        message: str = "Calculation not found",
        record_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        if record_id:
            context = context or {}
            context["record_id"] = record_id
        super().__init__(message, context=context)


class StorageError(CityProsperityException):
    """Persistence layer failure (connection, query, or serialization)."""


class ConcurrentUpdateError(StorageError):
    """A conditional save found the stored record changed underneath it."""

    def __init__(
        self,
        message: str,
        expected_hash: Optional[str] = None,
        actual_hash: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        context = context or {}
        context["expected_hash"] = expected_hash
        context["actual_hash"] = actual_hash
        super().__init__(message, context=context)


# ==============================================================================
# Utilities
# ==============================================================================

def format_exception_chain(exc: Exception) -> str:
    """Format an exception chain for logging/display.

    Args:
        exc: Exception to format

    Returns:
        Formatted string with the full ``__cause__`` chain
    """
    lines = []
    current = exc

    while current is not None:
        if isinstance(current, CityProsperityException):
            lines.append(str(current))
            if current.context:
                lines.append(f"  Context: {current.context}")
        else:
            lines.append(f"{type(current).__name__}: {current}")
        current = getattr(current, "__cause__", None)

    return "\n".join(lines)


def is_retriable(exc: Exception) -> bool:
    """Check whether an operation that raised ``exc`` may be retried.

    Args:
        exc: Exception to check

    Returns:
        True if the operation should be retried
    """
    return isinstance(exc, ConcurrentUpdateError)


def to_user_message(exc: Exception) -> str:
    """Map an exception to the message shown at the presentation boundary."""
    if isinstance(exc, (InvalidInputError, RecordNotFoundError)):
        return exc.message
    if isinstance(exc, ConcurrentUpdateError):
        return "The record was changed by another request, please retry"
    return "Failed to process calculation"


__all__ = [
    "CityProsperityException",
    "InvalidInputError",
    "EmptySelectionError",
    "InvalidConfigurationError",
    "RecordNotFoundError",
    "StorageError",
    "ConcurrentUpdateError",
    "format_exception_chain",
    "is_retriable",
    "to_user_message",
]
