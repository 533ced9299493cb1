"""Tests for the SQLite ledger store."""

from datetime import UTC, date, datetime

import pytest

from pokerpot.db import Database
from pokerpot.mapping import MEMBERS, SESSIONS
from pokerpot.models import Member, Session


@pytest.fixture
def mock_db(tmp_path):
    """Create a temporary database."""
    db_path = tmp_path / "test.db"
    db = Database(db_path)
    yield db
    db.close()


def make_session(**overrides) -> Session:
    fields = {"name": "Friday Game", "join_code": "ABC123", "date": date(2024, 3, 1)}
    fields.update(overrides)
    return Session(**fields)


class TestSaveAndUpsert:
    """Test local writes."""

    def test_save_flags_and_bumps_timestamp(self, mock_db):
        session = make_session(
            updated_at=datetime(2020, 1, 1, tzinfo=UTC), pending_sync=False
        )

        mock_db.save(session)

        stored = mock_db.get_session(session.id)
        assert stored.pending_sync is True
        assert stored.updated_at > datetime(2020, 1, 1, tzinfo=UTC)

    def test_upsert_keeps_fields_as_given(self, mock_db):
        session = make_session(
            updated_at=datetime(2020, 1, 1, tzinfo=UTC), pending_sync=False
        )

        mock_db.upsert(session)

        stored = mock_db.get_session(session.id)
        assert stored.model_dump() == session.model_dump()

    def test_mark_synced(self, mock_db):
        session = make_session()
        mock_db.save(session)

        mock_db.mark_synced(SESSIONS, [session.id])

        assert mock_db.list_pending_sync(SESSIONS) == []


class TestTransactions:
    """Test atomic groups of writes."""

    def test_rollback_on_error(self, mock_db):
        session = make_session()

        with pytest.raises(RuntimeError):
            with mock_db.transaction():
                mock_db.save(session)
                raise RuntimeError("boom")

        assert mock_db.get_session(session.id) is None

    def test_nested_joins_outer(self, mock_db):
        session = make_session()

        with pytest.raises(RuntimeError):
            with mock_db.transaction():
                with mock_db.transaction():
                    mock_db.save(session)
                raise RuntimeError("boom")

        assert mock_db.get_session(session.id) is None


class TestDeletes:
    """Test deletes and the remote delete queue."""

    def test_delete_cascades_and_queues(self, mock_db):
        session = make_session()
        member = Member(session_id=session.id, name="Bob")
        mock_db.save(session)
        mock_db.save(member)

        assert mock_db.delete(SESSIONS, session.id) is True

        assert mock_db.get(MEMBERS, member.id) is None
        assert mock_db.list_pending_deletes() == [("sessions", session.id)]

    def test_delete_missing(self, mock_db):
        assert mock_db.delete(SESSIONS, "missing") is False
        assert mock_db.list_pending_deletes() == []


class TestMetadata:
    """Test app metadata."""

    def test_last_sync_round_trip(self, mock_db):
        assert mock_db.get_last_sync_at() is None

        mock_db.set_last_sync_at(datetime(2024, 3, 1, 20, 0, tzinfo=UTC))

        assert mock_db.get_last_sync_at() == datetime(2024, 3, 1, 20, 0, tzinfo=UTC)
