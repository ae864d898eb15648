"""
Unit tests for session key naming and record mapping.

These functions are the only join between a session id and its object,
so they must be deterministic and invertible.
"""

from datetime import datetime, timezone

import pytest

from storage_worker.core.sessions.errors import InvalidSessionIdError
from storage_worker.core.sessions.models import ObjectInfo
from storage_worker.core.sessions.naming import (
    object_key_for,
    session_id_from_object_key,
    to_session_record,
    validate_session_id,
)


class TestObjectKeys:
    """Tests for session id <-> object key mapping."""

    @pytest.mark.parametrize(
        "session_id",
        ["abc", "session-123", "a.b_c-d", "0", "7f3c9e2a-1b4d-4c8e-9f00-123456789abc"],
    )
    def test_key_round_trips_to_session_id(self, session_id):
        """The session id is recoverable from its own key."""
        key = object_key_for(session_id)

        assert session_id_from_object_key(key) == session_id

    def test_key_is_deterministic(self):
        """Same id, same key - keys are never randomized."""
        assert object_key_for("abc") == object_key_for("abc")

    def test_key_uses_fixed_artifact_leaf(self):
        """Artifacts live under a per-session prefix."""
        assert object_key_for("abc") == "abc/session.tar.gz"

    def test_distinct_ids_get_distinct_keys(self):
        assert object_key_for("abc") != object_key_for("abd")

    def test_any_key_under_prefix_maps_to_session(self):
        """Extra objects under a session prefix still group by session."""
        assert session_id_from_object_key("abc/extra/file.bin") == "abc"


class TestSessionIdValidation:
    """Tests for the allowed session id character set."""

    @pytest.mark.parametrize(
        "session_id",
        ["", "a/b", "../etc", "..", ".hidden", "with space", "a" * 129, "semi;colon"],
    )
    def test_rejects_unsafe_ids(self, session_id):
        with pytest.raises(InvalidSessionIdError):
            validate_session_id(session_id)

    def test_object_key_validates(self):
        """Keys are never derived from an invalid id."""
        with pytest.raises(InvalidSessionIdError):
            object_key_for("a/b")

    def test_accepts_max_length(self):
        session_id = "a" * 128

        assert validate_session_id(session_id) == session_id


class TestToSessionRecord:
    """Tests for mapping backend entries into SessionRecords."""

    def test_maps_size_and_timestamps(self):
        modified = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        entry = ObjectInfo(name="abc/session.tar.gz", size=42, last_modified=modified)

        record = to_session_record("abc", entry)

        assert record.session_id == "abc"
        assert record.size == 42
        assert record.created_at == modified
        assert record.last_modified == modified

    def test_missing_timestamp_falls_back_to_now(self):
        now = datetime(2024, 6, 1, tzinfo=timezone.utc)
        entry = ObjectInfo(name="abc/session.tar.gz", size=None, last_modified=None)

        record = to_session_record("abc", entry, now=now)

        assert record.last_modified == now
        assert record.size is None
