"""
Ledger error taxonomy and input coercion helpers.

WHY: Every ledger operation rejects bad input before writing anything, and the
routes map each error family to one HTTP status. Keeping the classes here lets
services, the offline replayer and the routes agree on what is retryable.

ERROR FAMILIES:
- ValidationError: bad quantity/amount/date (400). Never retryable.
- NotFoundError: unknown color/sale/return/job id (404). Never retryable.
- InvariantViolation: a business rule would break, e.g. paying more than the
  outstanding balance or returning more than was sold (409). Never retryable.
- Anything else (lock contention, network) is treated as transient.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError


# Maximum money value: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999


class LedgerError(ValueError):
    """Base class for rejected ledger operations."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ValidationError(LedgerError):
    """400-level input problem."""


class NotFoundError(LedgerError):
    """404-level unknown entity."""


class InvariantViolation(LedgerError):
    """409-level business rule conflict."""


class OutstandingExceeded(InvariantViolation):
    """Payment larger than the bill's outstanding balance."""


class ReturnExceedsSold(InvariantViolation):
    """Return quantity larger than sold minus already returned."""


class InsufficientStock(InvariantViolation):
    """Sale quantity larger than the color's current stock."""


def is_retryable(exc: BaseException) -> bool:
    """Whether replaying the same request later could succeed."""
    if isinstance(exc, LedgerError):
        return False
    if isinstance(exc, (OperationalError, StaleDataError)):
        return True
    # Unknown failures are kept in the queue rather than dropped
    return True


def require_positive_int(value: Any, field: str) -> int:
    """Strict integer coercion: rejects floats, bools and scientific notation."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    else:
        raise ValidationError(f"{field} must be an integer")

    if result <= 0:
        raise ValidationError(f"{field} must be greater than zero")
    return result


def require_amount_cents(value: Any, field: str = "amount_cents", *, allow_zero: bool = False) -> int:
    """Validate a money amount in cents."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer number of cents")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(f"{field} must be greater than zero")
    if value > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds maximum of {MAX_AMOUNT_CENTS} cents")
    return value


def optional_text(value: Any, field: str, *, max_length: int = 255) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return text


def require_text(value: Any, field: str, *, max_length: int = 255) -> str:
    text = optional_text(value, field, max_length=max_length)
    if text is None:
        raise ValidationError(f"{field} is required")
    return text
