"""Service layer for session lifecycle, cashouts, completion and settlements.

Composes the ledger store, balance calculator, approval workflow and
settlement engine.
"""

import logging
from datetime import date

from .approvals import ApprovalWorkflow, can_edit_member, is_session_admin
from .balances import BalanceCalculator
from .clients.remote import RemoteDataService
from .db import Database
from .events import EventQueue
from .exceptions import (
    NotFoundError,
    PermissionDeniedError,
    PokerPotError,
    SessionCompletedError,
    ValidationError,
)
from .identifiers import generate_join_code, normalize_join_code, utcnow
from .mapping import (
    BUY_INS,
    MANUAL_ADJUSTMENTS,
    MEMBERS,
    RESULTS,
    SESSION_MEMBERS,
    SESSIONS,
    SETTLEMENTS,
)
from .models import (
    ManualAdjustment,
    Member,
    Result,
    Session,
    SessionCompleted,
    SessionMember,
    Settlement,
)
from .settle import calculate_settlements

logger = logging.getLogger(__name__)

MAX_JOIN_CODE_ATTEMPTS = 10

# Tables hydrated from the remote store when joining a session by code
_SESSION_CHILDREN = (SESSION_MEMBERS, MEMBERS, BUY_INS, RESULTS, SETTLEMENTS)


class LedgerService:
    """Session ledger operations on top of the local store."""

    def __init__(
        self,
        database: Database,
        events: EventQueue,
        remote: RemoteDataService | None = None,
    ):
        """Initialize the ledger service."""
        self.db = database
        self.events = events
        self.remote = remote
        self.balances = BalanceCalculator(database)
        self.approvals = ApprovalWorkflow(database, events)

    # ========================================================================
    # Guards
    # ========================================================================

    def get_session(self, session_id: str) -> Session:
        """Get a session or raise NotFoundError."""
        session = self.db.get_session(session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    def _require_active_session(self, session_id: str) -> Session:
        session = self.get_session(session_id)
        if session.is_completed:
            raise SessionCompletedError(session_id)
        return session

    def _require_admin(self, session_id: str, user_id: str | None) -> None:
        if not is_session_admin(self.db, session_id, user_id):
            raise PermissionDeniedError(
                f"User {user_id} is not an admin of session {session_id}"
            )

    def _require_member(self, session_id: str, member_id: str) -> Member:
        member = self.db.get_member(member_id)
        if member is None or member.session_id != session_id:
            raise NotFoundError("Member", member_id)
        return member

    def is_session_admin(self, session_id: str, user_id: str | None) -> bool:
        return is_session_admin(self.db, session_id, user_id)

    # ========================================================================
    # Sessions
    # ========================================================================

    def _unique_join_code(self) -> str:
        for _ in range(MAX_JOIN_CODE_ATTEMPTS):
            code = generate_join_code()
            if not self.db.join_code_exists(code):
                return code
        raise PokerPotError("Could not generate a unique join code")

    def create_session(
        self,
        name: str,
        session_date: date,
        note: str | None = None,
        user_id: str | None = None,
        user_name: str | None = None,
    ) -> Session:
        """
        Create a session with a fresh join code.

        The creator becomes the session admin and, when a display name is
        given, its first member.

        Args:
            name: Session name
            session_date: Date the session is played
            note: Optional free-text note
            user_id: Creating user (made admin)
            user_name: Creator's display name for the member list

        Returns:
            The new session
        """
        if not name.strip():
            raise ValidationError("Session name must not be empty")

        session = Session(
            name=name.strip(),
            join_code=self._unique_join_code(),
            date=session_date,
            note=note,
        )
        with self.db.transaction():
            self.db.save(session)
            if user_id is not None:
                self.db.save(
                    SessionMember(session_id=session.id, user_id=user_id, role="admin")
                )
            if user_name:
                self.db.save(
                    Member(session_id=session.id, user_id=user_id, name=user_name)
                )

        logger.info(f"Created session '{session.name}' ({session.join_code})")
        return session

    def join_session(self, join_code: str, user_id: str, user_name: str) -> Member:
        """
        Join a session by its join code.

        The code is looked up locally first, then on the remote store; a
        session found remotely is copied locally together with its records.
        Joining twice returns the existing member.

        Raises:
            NotFoundError: If no session has this code
        """
        code = normalize_join_code(join_code)
        session = self.db.get_session_by_join_code(code)
        if session is None:
            session = self._fetch_remote_session(code)
        if session is None:
            raise NotFoundError("Session", code, f"No session with join code {code}")

        existing = self.db.get_member_for_user(session.id, user_id)
        if existing is not None:
            logger.info(f"User {user_id} already in session {session.id}")
            return existing

        member = Member(session_id=session.id, user_id=user_id, name=user_name)
        with self.db.transaction():
            if self.db.get_session_member(session.id, user_id) is None:
                self.db.save(
                    SessionMember(session_id=session.id, user_id=user_id, role="member")
                )
            self.db.save(member)

        logger.info(f"{user_name} joined session '{session.name}'")
        return member

    def _fetch_remote_session(self, join_code: str) -> Session | None:
        if self.remote is None:
            return None
        payload = self.remote.fetch_by_join_code(join_code)
        if payload is None:
            return None

        session = SESSIONS.from_remote(payload)
        with self.db.transaction():
            self.db.upsert(session)
            for spec in _SESSION_CHILDREN:
                for record in self.remote.fetch_by_session(spec.name, session.id):
                    self.db.upsert(spec.from_remote(record))

        logger.info(f"Fetched session '{session.name}' from remote")
        return session

    def update_session_note(
        self, session_id: str, note: str | None, acting_user_id: str
    ) -> Session:
        """Change a session's note (admin only, active sessions only)."""
        session = self._require_active_session(session_id)
        self._require_admin(session_id, acting_user_id)
        session.note = note
        self.db.save(session)
        return session

    def delete_session(self, session_id: str, acting_user_id: str) -> None:
        """Delete a session and, by cascade, everything recorded in it."""
        self.get_session(session_id)
        self._require_admin(session_id, acting_user_id)
        self.db.delete(SESSIONS, session_id)
        logger.info(f"Deleted session {session_id}")

    # ========================================================================
    # Members
    # ========================================================================

    def add_member(
        self, session_id: str, name: str, user_id: str | None = None
    ) -> Member:
        """Add a member; without user_id it is a local-only placeholder."""
        self._require_active_session(session_id)
        if not name.strip():
            raise ValidationError("Member name must not be empty")
        member = Member(session_id=session_id, user_id=user_id, name=name.strip())
        self.db.save(member)
        logger.info(f"Added member {member.name} to session {session_id}")
        return member

    def rename_member(
        self, member_id: str, name: str, acting_user_id: str | None
    ) -> Member:
        member = self.db.get_member(member_id)
        if member is None:
            raise NotFoundError("Member", member_id)
        self._require_active_session(member.session_id)
        if not can_edit_member(member, acting_user_id):
            raise PermissionDeniedError(
                f"User {acting_user_id} cannot edit member {member.name}"
            )
        if not name.strip():
            raise ValidationError("Member name must not be empty")
        member.name = name.strip()
        self.db.save(member)
        return member

    def delete_member(self, member_id: str, acting_user_id: str) -> None:
        """Remove a member with their buy-ins, result and settlements."""
        member = self.db.get_member(member_id)
        if member is None:
            raise NotFoundError("Member", member_id)
        self._require_active_session(member.session_id)
        self._require_admin(member.session_id, acting_user_id)
        self.db.delete(MEMBERS, member_id)
        logger.info(f"Deleted member {member.name}")

    # ========================================================================
    # Cashouts
    # ========================================================================

    def record_cashout(
        self,
        session_id: str,
        member_id: str,
        cashout_cents: int,
        acting_user_id: str | None,
    ) -> Result:
        """
        Set a member's cashout and recompute their net result.

        Raises:
            ValidationError: Negative cashout or completed session
            PermissionDeniedError: Member belongs to a different user
        """
        if cashout_cents < 0:
            raise ValidationError(
                f"Cashout must not be negative, got {cashout_cents} cents"
            )
        self._require_active_session(session_id)
        member = self._require_member(session_id, member_id)
        if not can_edit_member(member, acting_user_id):
            raise PermissionDeniedError(
                f"User {acting_user_id} cannot set the cashout for {member.name}"
            )

        net = cashout_cents - self.db.sum_approved_buy_ins(session_id, member_id)
        result = self.db.get_result(session_id, member_id)
        if result is None:
            result = Result(
                session_id=session_id,
                member_id=member_id,
                net_cents=net,
                cashout_cents=cashout_cents,
            )
        else:
            result.cashout_cents = cashout_cents
            result.net_cents = net
        self.db.save(result)

        logger.info(f"Cashout for {member.name}: {cashout_cents} cents (net {net})")
        return result

    # ========================================================================
    # Completion and settlements
    # ========================================================================

    def complete_session(self, session_id: str, admin_user_id: str) -> list[Settlement]:
        """
        Complete a session and record who pays whom.

        Total approved buy-ins must equal total cashouts. Results are
        refreshed against the final buy-ins, settlements are computed from
        the resulting balances, and settlements plus the status change are
        written in one transaction.

        Args:
            session_id: Session to complete
            admin_user_id: Completing admin

        Returns:
            The persisted settlements in payment order

        Raises:
            ValidationError: Totals mismatch (discrepancy_cents is set)
            PermissionDeniedError: Caller is not a session admin
            SessionCompletedError: Session already completed
        """
        session = self._require_active_session(session_id)
        self._require_admin(session_id, admin_user_id)

        totals = self.balances.check_totals(session_id)
        if not totals.balanced:
            raise ValidationError(
                f"Total buy-ins ({totals.total_buy_ins_cents} cents) and cashouts "
                f"({totals.total_cashouts_cents} cents) differ by "
                f"{abs(totals.discrepancy_cents)} cents",
                discrepancy_cents=totals.discrepancy_cents,
            )

        pending = self.db.list_buy_ins(session_id, approved=False)
        if pending:
            logger.warning(
                f"Completing session {session_id} with {len(pending)} "
                f"unapproved buy-ins; they are not counted"
            )

        settled_at = utcnow()
        with self.db.transaction():
            for result in self.db.list_results(session_id):
                net = result.cashout_cents - self.db.sum_approved_buy_ins(
                    session_id, result.member_id
                )
                if net != result.net_cents:
                    result.net_cents = net
                    self.db.save(result)

            transactions = calculate_settlements(
                self.balances.compute_member_balances(session_id)
            )
            settlements = [
                Settlement(
                    session_id=session_id,
                    from_member_id=tx.from_member_id,
                    to_member_id=tx.to_member_id,
                    amount_cents=tx.amount_cents,
                    settled_at=settled_at,
                )
                for tx in transactions
            ]
            for settlement in settlements:
                self.db.save(settlement)

            session.status = "completed"
            self.db.save(session)

        logger.info(
            f"Completed session {session_id} with {len(settlements)} settlements"
        )
        self.events.publish(
            SessionCompleted(session_id=session_id, settlement_count=len(settlements))
        )
        return settlements

    def get_settlements(
        self, session_id: str, paid: bool | None = None
    ) -> list[Settlement]:
        self.get_session(session_id)
        return self.db.list_settlements(session_id, paid=paid)

    def _require_settlement(self, settlement_id: str) -> Settlement:
        settlement = self.db.get_settlement(settlement_id)
        if settlement is None:
            raise NotFoundError("Settlement", settlement_id)
        return settlement

    def mark_settlement_paid(self, settlement_id: str, user_id: str) -> Settlement:
        """Mark a settlement as paid; allowed on completed sessions."""
        settlement = self._require_settlement(settlement_id)
        settlement.paid = True
        settlement.paid_at = utcnow()
        settlement.paid_by = user_id
        self.db.save(settlement)
        return settlement

    def mark_settlement_unpaid(self, settlement_id: str) -> Settlement:
        settlement = self._require_settlement(settlement_id)
        settlement.paid = False
        settlement.paid_at = None
        settlement.paid_by = None
        self.db.save(settlement)
        return settlement

    # ========================================================================
    # Manual adjustments
    # ========================================================================

    def add_manual_adjustment(
        self, user_id: str, amount_cents: int, note: str | None = None
    ) -> ManualAdjustment:
        """Add a correction to a user's lifetime net total."""
        if amount_cents == 0:
            raise ValidationError("Adjustment amount must not be zero")
        adjustment = ManualAdjustment(
            user_id=user_id, amount_cents=amount_cents, note=note
        )
        self.db.save(adjustment)
        return adjustment

    def delete_manual_adjustment(self, adjustment_id: str, user_id: str) -> None:
        adjustment = self.db.get_adjustment(adjustment_id)
        if adjustment is None:
            raise NotFoundError("ManualAdjustment", adjustment_id)
        if adjustment.user_id != user_id:
            raise PermissionDeniedError("Adjustments can only be removed by their owner")
        self.db.delete(MANUAL_ADJUSTMENTS, adjustment_id)
