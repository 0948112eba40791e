"""Draft store and sync errors."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fleetzen.errors.fleetzen_errors import FleetZenError

if TYPE_CHECKING:
    from datetime import datetime


class InvalidArgumentError(FleetZenError):
    """Bad enum value or input shape."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=400, code="invalid-argument")


class DraftNotFoundError(FleetZenError):
    """Unknown or already deleted draft."""

    def __init__(self, draft_id: str, *, what: str = "draft") -> None:
        super().__init__(f"{what} not found: {draft_id}", status_code=404, code="draft-not-found")
        self.draft_id = draft_id


class DraftExpiredError(FleetZenError):
    """Operation attempted on a draft past its retention window."""

    def __init__(self, draft_id: str, expires_at: datetime) -> None:
        super().__init__(
            f"draft {draft_id} expired at {expires_at.isoformat()}",
            status_code=410,
            code="draft-expired",
        )
        self.draft_id = draft_id
        self.expires_at = expires_at


class LimitExceededError(FleetZenError):
    """A configured cap (photo count, photo size) would be exceeded."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=422, code="limit-exceeded")


class ConflictError(FleetZenError):
    """Edit or transition not allowed in the draft's current sync state."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=409, code="conflict")


class StorageFailureError(FleetZenError):
    """The underlying storage medium is unavailable or a write failed."""

    def __init__(self, message: str = "draft storage operation failed") -> None:
        super().__init__(message, status_code=503, code="storage-failure")


class SubmissionError(FleetZenError):
    """The remote backend rejected a draft or could not be reached."""

    def __init__(self, reason: str, *, status_code: int = 502) -> None:
        super().__init__(reason, status_code=status_code, code="submission-failed")
        self.reason = reason
