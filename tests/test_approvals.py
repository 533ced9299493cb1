"""Tests for the buy-in approval workflow."""

from datetime import UTC, date, datetime

import pytest

from pokerpot.db import Database
from pokerpot.events import EventQueue
from pokerpot.exceptions import (
    NotFoundError,
    PartialBulkFailure,
    PermissionDeniedError,
    SessionCompletedError,
    ValidationError,
)
from pokerpot.models import BuyIn, BuyInApproved, BuyInRequested
from pokerpot.service import LedgerService

ADMIN = "user-alice"
PLAYER = "user-carol"


@pytest.fixture
def mock_db(tmp_path):
    """Create a temporary database."""
    db_path = tmp_path / "test.db"
    db = Database(db_path)
    yield db
    db.close()


@pytest.fixture
def events():
    return EventQueue()


@pytest.fixture
def service(mock_db, events):
    """Create a LedgerService instance."""
    return LedgerService(mock_db, events)


@pytest.fixture
def workflow(service):
    return service.approvals


@pytest.fixture
def session(service):
    """Session administered by Alice, joined by Carol."""
    session = service.create_session(
        "Friday Game", date(2024, 3, 1), user_id=ADMIN, user_name="Alice"
    )
    service.join_session(session.join_code, PLAYER, "Carol")
    return session


@pytest.fixture
def carol(mock_db, session):
    return mock_db.get_member_for_user(session.id, PLAYER)


@pytest.fixture
def bob(service, session):
    """Local-only member."""
    return service.add_member(session.id, "Bob")


class TestRequestBuyIn:
    """Test creating buy-in requests."""

    def test_creates_pending_buy_in(self, workflow, mock_db, session, carol):
        buy_in = workflow.request_buy_in(session.id, carol.id, 2000, PLAYER)

        stored = mock_db.get_buy_in(buy_in.id)
        assert stored is not None
        assert stored.approved is False
        assert stored.amount_cents == 2000
        assert stored.pending_sync is True

    @pytest.mark.parametrize("amount", [0, -100])
    def test_rejects_non_positive_amount(self, workflow, session, carol, amount):
        with pytest.raises(ValidationError):
            workflow.request_buy_in(session.id, carol.id, amount, PLAYER)

    def test_cannot_request_for_another_users_member(self, workflow, session, carol):
        """Members linked to a user are edited only by that user."""
        with pytest.raises(PermissionDeniedError):
            workflow.request_buy_in(session.id, carol.id, 2000, ADMIN)

    def test_anyone_can_request_for_local_member(self, workflow, session, bob):
        buy_in = workflow.request_buy_in(session.id, bob.id, 2000, PLAYER)

        assert buy_in.member_id == bob.id

    def test_unknown_member(self, workflow, session):
        with pytest.raises(NotFoundError):
            workflow.request_buy_in(session.id, "missing", 2000, PLAYER)

    def test_publishes_request_event(self, workflow, events, session, carol):
        events.drain()

        buy_in = workflow.request_buy_in(session.id, carol.id, 2000, PLAYER)

        published = events.drain()
        assert len(published) == 1
        assert isinstance(published[0], BuyInRequested)
        assert published[0].buy_in_id == buy_in.id
        assert published[0].member_name == "Carol"


class TestApproveBuyIn:
    """Test admin approval."""

    def test_admin_approves(self, workflow, mock_db, session, carol):
        buy_in = workflow.request_buy_in(session.id, carol.id, 2000, PLAYER)

        workflow.approve_buy_in(buy_in.id, ADMIN)

        stored = mock_db.get_buy_in(buy_in.id)
        assert stored.approved is True
        assert stored.approved_by == ADMIN
        assert stored.approved_at is not None

    def test_non_admin_cannot_approve(self, workflow, mock_db, session, carol):
        buy_in = workflow.request_buy_in(session.id, carol.id, 2000, PLAYER)

        with pytest.raises(PermissionDeniedError):
            workflow.approve_buy_in(buy_in.id, PLAYER)

        assert mock_db.get_buy_in(buy_in.id).approved is False

    def test_cannot_approve_twice(self, workflow, session, carol):
        buy_in = workflow.request_buy_in(session.id, carol.id, 2000, PLAYER)
        workflow.approve_buy_in(buy_in.id, ADMIN)

        with pytest.raises(ValidationError, match="already approved"):
            workflow.approve_buy_in(buy_in.id, ADMIN)

    def test_unknown_buy_in(self, workflow):
        with pytest.raises(NotFoundError):
            workflow.approve_buy_in("missing", ADMIN)

    def test_refreshes_stored_result(self, workflow, service, mock_db, session, bob):
        """Approving after a cashout updates the member's net."""
        service.record_cashout(session.id, bob.id, 10000, ADMIN)
        buy_in = workflow.request_buy_in(session.id, bob.id, 4000, ADMIN)

        workflow.approve_buy_in(buy_in.id, ADMIN)

        assert mock_db.get_result(session.id, bob.id).net_cents == 6000

    def test_publishes_approved_event(self, workflow, events, session, carol):
        buy_in = workflow.request_buy_in(session.id, carol.id, 2000, PLAYER)
        events.drain()

        workflow.approve_buy_in(buy_in.id, ADMIN)

        published = events.drain()
        assert len(published) == 1
        assert isinstance(published[0], BuyInApproved)
        assert published[0].member_user_id == PLAYER
        assert published[0].amount_cents == 2000


class TestRejectBuyIn:
    """Test admin rejection."""

    def test_reject_deletes_record(self, workflow, mock_db, session, carol):
        buy_in = workflow.request_buy_in(session.id, carol.id, 2000, PLAYER)

        workflow.reject_buy_in(buy_in.id, ADMIN)

        assert mock_db.get_buy_in(buy_in.id) is None
        assert ("buy_ins", buy_in.id) in mock_db.list_pending_deletes()

    def test_cannot_reject_approved(self, workflow, mock_db, session, carol):
        buy_in = workflow.request_buy_in(session.id, carol.id, 2000, PLAYER)
        workflow.approve_buy_in(buy_in.id, ADMIN)

        with pytest.raises(ValidationError):
            workflow.reject_buy_in(buy_in.id, ADMIN)

        assert mock_db.get_buy_in(buy_in.id) is not None

    def test_non_admin_cannot_reject(self, workflow, session, carol):
        buy_in = workflow.request_buy_in(session.id, carol.id, 2000, PLAYER)

        with pytest.raises(PermissionDeniedError):
            workflow.reject_buy_in(buy_in.id, PLAYER)


class TestBulkActions:
    """Test bulk approve and reject."""

    def test_bulk_approve_all(self, workflow, mock_db, session, bob):
        ids = [workflow.request_buy_in(session.id, bob.id, c, ADMIN).id for c in (1000, 2000)]

        approved = workflow.bulk_approve(ids, ADMIN)

        assert {b.id for b in approved} == set(ids)
        assert mock_db.sum_approved_buy_ins(session.id, bob.id) == 3000

    def test_bulk_approve_partial_failure(self, workflow, mock_db, session, bob):
        """Failed items are reported; the others stay approved."""
        first = workflow.request_buy_in(session.id, bob.id, 1000, ADMIN)
        second = workflow.request_buy_in(session.id, bob.id, 2000, ADMIN)

        with pytest.raises(PartialBulkFailure) as exc_info:
            workflow.bulk_approve([first.id, "missing", second.id], ADMIN)

        assert exc_info.value.failed_ids == ["missing"]
        assert exc_info.value.succeeded_ids == [first.id, second.id]
        assert isinstance(exc_info.value.errors["missing"], NotFoundError)
        assert mock_db.sum_approved_buy_ins(session.id, bob.id) == 3000

    def test_bulk_reject(self, workflow, mock_db, session, bob):
        ids = [workflow.request_buy_in(session.id, bob.id, c, ADMIN).id for c in (1000, 2000)]

        workflow.bulk_reject(ids, ADMIN)

        assert workflow.get_pending_buy_ins(session.id) == []

    def test_duplicate_ids_applied_once(self, workflow, session, bob):
        buy_in = workflow.request_buy_in(session.id, bob.id, 1000, ADMIN)

        approved = workflow.bulk_approve([buy_in.id, buy_in.id], ADMIN)

        assert len(approved) == 1


class TestPendingBuyIns:
    """Test the pending queue."""

    def test_newest_first(self, workflow, mock_db, session, bob):
        for hour, cents in ((18, 1000), (20, 3000), (19, 2000)):
            mock_db.save(
                BuyIn(
                    session_id=session.id,
                    member_id=bob.id,
                    amount_cents=cents,
                    created_at=datetime(2024, 3, 1, hour, 0, tzinfo=UTC),
                )
            )

        pending = workflow.get_pending_buy_ins(session.id)

        assert [b.amount_cents for b in pending] == [3000, 2000, 1000]

    def test_excludes_approved(self, workflow, session, bob):
        kept = workflow.request_buy_in(session.id, bob.id, 1000, ADMIN)
        approved = workflow.request_buy_in(session.id, bob.id, 2000, ADMIN)
        workflow.approve_buy_in(approved.id, ADMIN)

        assert [b.id for b in workflow.get_pending_buy_ins(session.id)] == [kept.id]

    def test_unknown_session(self, workflow):
        with pytest.raises(NotFoundError):
            workflow.get_pending_buy_ins("missing")


class TestCompletedSessionIsReadOnly:
    """Buy-ins cannot change once the session is completed."""

    def test_request_after_completion(self, workflow, service, session, bob):
        service.complete_session(session.id, ADMIN)

        with pytest.raises(SessionCompletedError):
            workflow.request_buy_in(session.id, bob.id, 1000, ADMIN)

    def test_approve_after_completion(self, workflow, service, session, bob):
        buy_in = workflow.request_buy_in(session.id, bob.id, 1000, ADMIN)
        service.complete_session(session.id, ADMIN)

        with pytest.raises(SessionCompletedError):
            workflow.approve_buy_in(buy_in.id, ADMIN)
