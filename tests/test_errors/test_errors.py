"""Tests for error classes."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from fleetzen.errors.draft_errors import (
    ConflictError,
    DraftExpiredError,
    DraftNotFoundError,
    InvalidArgumentError,
    LimitExceededError,
    StorageFailureError,
    SubmissionError,
)
from fleetzen.errors.fleetzen_errors import FleetZenError

# ---------------------------------------------------------------------------
# FleetZenError base class
# ---------------------------------------------------------------------------


class TestFleetZenError:
    def test_default_attributes(self) -> None:
        err = FleetZenError("something broke")
        assert str(err) == "something broke"
        assert err.message == "something broke"
        assert err.status_code == 500
        assert err.code == "fleetzen-error"

    def test_custom_attributes(self) -> None:
        err = FleetZenError("bad request", status_code=400, code="bad-req")
        assert err.status_code == 400
        assert err.code == "bad-req"


# ---------------------------------------------------------------------------
# Draft errors
# ---------------------------------------------------------------------------


class TestDraftErrors:
    @pytest.mark.parametrize(
        ("err", "code", "status"),
        [
            (InvalidArgumentError("bad"), "invalid-argument", 400),
            (DraftNotFoundError("d1"), "draft-not-found", 404),
            (DraftExpiredError("d1", datetime(2026, 1, 8, tzinfo=UTC)), "draft-expired", 410),
            (LimitExceededError("too many"), "limit-exceeded", 422),
            (ConflictError("busy"), "conflict", 409),
            (StorageFailureError(), "storage-failure", 503),
            (SubmissionError("HTTP 500"), "submission-failed", 502),
        ],
    )
    def test_codes(self, err: FleetZenError, code: str, status: int) -> None:
        assert isinstance(err, FleetZenError)
        assert err.code == code
        assert err.status_code == status

    def test_not_found_message(self) -> None:
        assert DraftNotFoundError("abc").message == "draft not found: abc"
        assert DraftNotFoundError("p9", what="photo").message == "photo not found: p9"

    def test_expired_carries_context(self) -> None:
        expires = datetime(2026, 1, 8, 8, 0, tzinfo=UTC)
        err = DraftExpiredError("d1", expires)
        assert err.draft_id == "d1"
        assert err.expires_at == expires
        assert "2026-01-08T08:00:00+00:00" in err.message

    def test_storage_default_message(self) -> None:
        assert StorageFailureError().message == "draft storage operation failed"

    def test_submission_reason(self) -> None:
        err = SubmissionError("rejected", status_code=422)
        assert err.reason == "rejected"
        assert err.status_code == 422

    def test_catch_as_base(self) -> None:
        with pytest.raises(FleetZenError, match="busy"):
            raise ConflictError("busy")
