"""Tests for the balance calculator."""

from datetime import date

import pytest

from pokerpot.balances import BalanceCalculator
from pokerpot.db import Database
from pokerpot.events import EventQueue
from pokerpot.exceptions import NotFoundError
from pokerpot.service import LedgerService

ADMIN = "user-alice"


@pytest.fixture
def mock_db(tmp_path):
    """Create a temporary database."""
    db_path = tmp_path / "test.db"
    db = Database(db_path)
    yield db
    db.close()


@pytest.fixture
def service(mock_db):
    """Create a LedgerService instance."""
    return LedgerService(mock_db, EventQueue())


@pytest.fixture
def calculator(mock_db):
    return BalanceCalculator(mock_db)


@pytest.fixture
def session(service):
    """Create a session run by Alice."""
    return service.create_session(
        "Friday Game", date(2024, 3, 1), user_id=ADMIN, user_name="Alice"
    )


@pytest.fixture
def alice(mock_db, session):
    return mock_db.get_member_for_user(session.id, ADMIN)


@pytest.fixture
def bob(service, session):
    """Local-only member."""
    return service.add_member(session.id, "Bob")


def approved_buy_in(service, session, member, cents):
    """Request and approve a buy-in."""
    buy_in = service.approvals.request_buy_in(session.id, member.id, cents, ADMIN)
    return service.approvals.approve_buy_in(buy_in.id, ADMIN)


def balances_by_name(calculator, session):
    return {b.member_name: b.total_cents for b in calculator.compute_member_balances(session.id)}


class TestComputeMemberBalances:
    """Test per-member session balances."""

    def test_cashout_minus_approved_buy_ins(self, service, calculator, session, bob):
        """Two buy-ins of $50 and $30 with a $100 cashout is +$20."""
        approved_buy_in(service, session, bob, 5000)
        approved_buy_in(service, session, bob, 3000)
        service.record_cashout(session.id, bob.id, 10000, ADMIN)

        assert balances_by_name(calculator, session)["Bob"] == 2000

    def test_pending_buy_ins_do_not_count(self, service, calculator, session, bob):
        """Only approval moves the balance."""
        buy_in = service.approvals.request_buy_in(session.id, bob.id, 2000, ADMIN)
        assert balances_by_name(calculator, session)["Bob"] == 0

        service.approvals.approve_buy_in(buy_in.id, ADMIN)

        assert balances_by_name(calculator, session)["Bob"] == -2000

    def test_member_without_result(self, service, calculator, session, alice, bob):
        """A member who has not cashed out is minus their buy-ins."""
        approved_buy_in(service, session, alice, 4000)

        balances = balances_by_name(calculator, session)

        assert balances == {"Alice": -4000, "Bob": 0}

    def test_balances_carry_user_ids(self, calculator, session, bob):
        balances = {b.member_name: b for b in calculator.compute_member_balances(session.id)}

        assert balances["Alice"].user_id == ADMIN
        assert balances["Bob"].user_id is None

    def test_unknown_session(self, calculator):
        with pytest.raises(NotFoundError):
            calculator.compute_member_balances("missing")

    def test_balanced_session_sums_to_zero(self, service, calculator, session, alice, bob):
        approved_buy_in(service, session, alice, 5000)
        approved_buy_in(service, session, bob, 5000)
        service.record_cashout(session.id, alice.id, 7500, ADMIN)
        service.record_cashout(session.id, bob.id, 2500, ADMIN)

        balances = calculator.compute_member_balances(session.id)

        assert sum(b.total_cents for b in balances) == 0


class TestMemberSummaries:
    """Test display summaries."""

    def test_splits_approved_and_pending(self, service, calculator, session, bob):
        approved_buy_in(service, session, bob, 5000)
        service.approvals.request_buy_in(session.id, bob.id, 1000, ADMIN)

        summary = next(
            s for s in calculator.compute_member_summaries(session.id) if s.member_id == bob.id
        )

        assert summary.approved_buy_ins_cents == 5000
        assert summary.pending_buy_ins_cents == 1000
        assert summary.net_cents is None

    def test_net_once_cashed_out(self, service, calculator, session, bob):
        approved_buy_in(service, session, bob, 5000)
        service.record_cashout(session.id, bob.id, 6500, ADMIN)

        summary = next(
            s for s in calculator.compute_member_summaries(session.id) if s.member_id == bob.id
        )

        assert summary.has_cashed_out
        assert summary.net_cents == 1500


class TestCheckTotals:
    """Test buy-in vs cashout totals."""

    def test_balanced(self, service, calculator, session, alice, bob):
        approved_buy_in(service, session, alice, 3000)
        approved_buy_in(service, session, bob, 2000)
        service.record_cashout(session.id, alice.id, 5000, ADMIN)

        totals = calculator.check_totals(session.id)

        assert totals.total_buy_ins_cents == 5000
        assert totals.total_cashouts_cents == 5000
        assert totals.balanced

    def test_discrepancy(self, service, calculator, session, bob):
        approved_buy_in(service, session, bob, 5000)
        service.record_cashout(session.id, bob.id, 4000, ADMIN)

        totals = calculator.check_totals(session.id)

        assert not totals.balanced
        assert totals.discrepancy_cents == 1000


class TestLifetimeNet:
    """Test lifetime stats."""

    def test_sums_own_results_only(self, service, calculator, session, alice, bob):
        """Other members' results never count toward a user's total."""
        approved_buy_in(service, session, alice, 1000)
        approved_buy_in(service, session, bob, 1000)
        service.record_cashout(session.id, alice.id, 1500, ADMIN)
        service.record_cashout(session.id, bob.id, 500, ADMIN)

        stats = calculator.compute_lifetime_net(ADMIN)

        assert stats.total_net_cents == 500
        assert [entry.session_id for entry in stats.sessions] == [session.id]

    def test_includes_manual_adjustments(self, service, calculator, session, alice):
        approved_buy_in(service, session, alice, 1000)
        service.record_cashout(session.id, alice.id, 1500, ADMIN)
        service.add_manual_adjustment(ADMIN, -200, "Owed from last year")

        stats = calculator.compute_lifetime_net(ADMIN)

        assert stats.adjustments_cents == -200
        assert stats.total_net_cents == 300

    def test_across_sessions_newest_first(self, service, calculator):
        older = service.create_session(
            "Older", date(2024, 1, 5), user_id=ADMIN, user_name="Alice"
        )
        newer = service.create_session(
            "Newer", date(2024, 2, 5), user_id=ADMIN, user_name="Alice"
        )
        for s, cashout in ((older, 3000), (newer, 500)):
            member = service.db.get_member_for_user(s.id, ADMIN)
            approved_buy_in(service, s, member, 1000)
            service.record_cashout(s.id, member.id, cashout, ADMIN)

        stats = calculator.compute_lifetime_net(ADMIN)

        assert [entry.session_name for entry in stats.sessions] == ["Newer", "Older"]
        assert stats.total_net_cents == 2000 - 500

    def test_user_without_history(self, calculator):
        stats = calculator.compute_lifetime_net("nobody")

        assert stats.total_net_cents == 0
        assert stats.sessions == []
