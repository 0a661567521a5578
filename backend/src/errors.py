"""
Error taxonomy for the punishment tracker.

Every error raised across a module boundary derives from PunishmentTrackerError
so entry points (API, scripts, service loop) can catch one base class.
"""

import uuid
from typing import Any, Optional


class PunishmentTrackerError(Exception):
    """Base exception for punishment tracker errors."""
    pass


class InputValidationError(PunishmentTrackerError, ValueError):
    """Raised for malformed identifiers before any I/O happens."""
    pass


class UpstreamUnavailable(PunishmentTrackerError):
    """Raised when the FPL API times out, fails at transport level or returns a non-success status."""

    def __init__(
        self,
        message: str,
        *,
        timeout: bool = False,
        status_code: Optional[int] = None,
        retryable: bool = True
    ):
        super().__init__(message)
        self.timeout = timeout
        self.status_code = status_code
        self.retryable = retryable


class UpstreamRateLimited(UpstreamUnavailable):
    """Raised on HTTP 429. retry_after is the provider's requested wait in seconds."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, status_code=429, retryable=True)
        self.retry_after = retry_after


class DataShapeError(PunishmentTrackerError):
    """
    Upstream payload is missing an expected substructure.

    Only raised inside the FPL client's parsing helpers; the client catches it,
    logs the anomaly and substitutes a default. Callers never see it.
    """
    pass


class PersistenceError(PunishmentTrackerError):
    """Ledger store failure. Not retried."""
    pass


class DuplicatePunishmentError(PersistenceError):
    """Unique (league, player, gameweek) constraint rejected an insert."""
    pass


class NotFoundError(PunishmentTrackerError):
    """League, participant or punishment record does not exist."""
    pass


def validate_positive_id(value: Any, name: str) -> int:
    """
    Coerce an FPL identifier (league, entry or gameweek) to a positive int.

    Raises:
        InputValidationError: If the value is not a positive integer
    """
    if isinstance(value, bool):
        raise InputValidationError(f"Invalid {name}: {value!r}")
    if isinstance(value, str):
        value = value.strip()
        # isdigit() alone admits non-ASCII digits like "²" that int() rejects
        if not (value.isascii() and value.isdigit()):
            raise InputValidationError(f"Invalid {name}: {value!r}")
        value = int(value)
    if not isinstance(value, int) or value <= 0:
        raise InputValidationError(f"Invalid {name}: {value!r}")
    return value


def validate_record_id(value: Any) -> str:
    """Punishment ids are UUIDs generated by the database."""
    if not isinstance(value, str) or not value.strip():
        raise InputValidationError(f"Invalid punishment id: {value!r}")
    try:
        return str(uuid.UUID(value.strip()))
    except ValueError as e:
        raise InputValidationError(f"Invalid punishment id: {value!r}") from e
