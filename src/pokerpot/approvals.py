"""Buy-in approval workflow.

States: pending -> approved (admin), pending -> rejected (admin, hard
delete). Approved buy-ins are immutable.
"""

import logging
from collections.abc import Callable

from .db import Database
from .events import EventQueue
from .exceptions import (
    NotFoundError,
    PartialBulkFailure,
    PermissionDeniedError,
    PokerPotError,
    SessionCompletedError,
    ValidationError,
)
from .identifiers import utcnow
from .mapping import BUY_INS
from .models import BuyIn, BuyInApproved, BuyInRequested, Member, Session

logger = logging.getLogger(__name__)


def is_session_admin(db: Database, session_id: str, user_id: str | None) -> bool:
    """Check whether a user holds the admin role in a session."""
    if user_id is None:
        return False
    session_member = db.get_session_member(session_id, user_id)
    return session_member is not None and session_member.role == "admin"


def can_edit_member(member: Member, acting_user_id: str | None) -> bool:
    """A member linked to a user may only be edited by that user."""
    if member.user_id is None:
        return True
    return member.user_id == acting_user_id


def refresh_result_net(db: Database, session_id: str, member_id: str) -> None:
    """Recompute a stored result's net after the member's buy-ins changed."""
    result = db.get_result(session_id, member_id)
    if result is None:
        return
    net = result.cashout_cents - db.sum_approved_buy_ins(session_id, member_id)
    if net != result.net_cents:
        result.net_cents = net
        db.save(result)


class ApprovalWorkflow:
    """Creates, approves and rejects buy-ins."""

    def __init__(self, database: Database, events: EventQueue):
        """Initialize the workflow."""
        self.db = database
        self.events = events

    def _require_active_session(self, session_id: str) -> Session:
        session = self.db.get_session(session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        if session.is_completed:
            raise SessionCompletedError(session_id)
        return session

    def _require_admin(self, session_id: str, user_id: str | None) -> None:
        if not is_session_admin(self.db, session_id, user_id):
            raise PermissionDeniedError(
                f"User {user_id} is not an admin of session {session_id}"
            )

    def _require_pending_buy_in(self, buy_in_id: str) -> BuyIn:
        buy_in = self.db.get_buy_in(buy_in_id)
        if buy_in is None:
            raise NotFoundError("BuyIn", buy_in_id)
        if buy_in.approved:
            raise ValidationError(f"Buy-in {buy_in_id} is already approved")
        return buy_in

    def request_buy_in(
        self,
        session_id: str,
        member_id: str,
        amount_cents: int,
        acting_user_id: str | None,
    ) -> BuyIn:
        """
        Record a pending buy-in for a member.

        Args:
            session_id: Session the buy-in belongs to
            member_id: Member putting money in
            amount_cents: Amount in cents, must be positive
            acting_user_id: User making the request

        Returns:
            The pending buy-in

        Raises:
            ValidationError: Non-positive amount or completed session
            NotFoundError: Unknown session or member
            PermissionDeniedError: Member belongs to a different user
        """
        if amount_cents <= 0:
            raise ValidationError(
                f"Buy-in amount must be positive, got {amount_cents} cents"
            )
        self._require_active_session(session_id)

        member = self.db.get_member(member_id)
        if member is None or member.session_id != session_id:
            raise NotFoundError("Member", member_id)
        if not can_edit_member(member, acting_user_id):
            raise PermissionDeniedError(
                f"User {acting_user_id} cannot add buy-ins for {member.name}"
            )

        buy_in = BuyIn(
            session_id=session_id, member_id=member_id, amount_cents=amount_cents
        )
        self.db.save(buy_in)
        logger.info(f"Buy-in {buy_in.id} requested: {member.name} {amount_cents} cents")

        self.events.publish(
            BuyInRequested(
                session_id=session_id,
                buy_in_id=buy_in.id,
                member_name=member.name,
                amount_cents=amount_cents,
            )
        )
        return buy_in

    def approve_buy_in(self, buy_in_id: str, approver_user_id: str) -> BuyIn:
        """
        Approve a pending buy-in so it counts toward the member's balance.

        Raises:
            NotFoundError: Unknown buy-in
            PermissionDeniedError: Approver is not a session admin
            ValidationError: Buy-in already approved or session completed
        """
        buy_in = self._require_pending_buy_in(buy_in_id)
        self._require_admin(buy_in.session_id, approver_user_id)
        self._require_active_session(buy_in.session_id)

        buy_in.approved = True
        buy_in.approved_by = approver_user_id
        buy_in.approved_at = utcnow()
        with self.db.transaction():
            self.db.save(buy_in)
            refresh_result_net(self.db, buy_in.session_id, buy_in.member_id)
        logger.info(f"Buy-in {buy_in_id} approved by {approver_user_id}")

        member = self.db.get_member(buy_in.member_id)
        self.events.publish(
            BuyInApproved(
                session_id=buy_in.session_id,
                buy_in_id=buy_in.id,
                member_user_id=member.user_id if member else None,
                amount_cents=buy_in.amount_cents,
            )
        )
        return buy_in

    def reject_buy_in(self, buy_in_id: str, acting_user_id: str) -> None:
        """
        Reject a pending buy-in. Rejection deletes the record outright.

        Raises:
            NotFoundError: Unknown buy-in
            PermissionDeniedError: Caller is not a session admin
            ValidationError: Buy-in already approved or session completed
        """
        buy_in = self._require_pending_buy_in(buy_in_id)
        self._require_admin(buy_in.session_id, acting_user_id)
        self._require_active_session(buy_in.session_id)

        self.db.delete(BUY_INS, buy_in_id)
        logger.info(f"Buy-in {buy_in_id} rejected by {acting_user_id}")

    def bulk_approve(self, buy_in_ids: list[str], approver_user_id: str) -> list[BuyIn]:
        """
        Approve several buy-ins, each independently of the others.

        Raises:
            PartialBulkFailure: If any approval failed; the rest stay approved
        """
        approved: list[BuyIn] = []
        self._apply_each(
            "approve",
            buy_in_ids,
            lambda buy_in_id: approved.append(
                self.approve_buy_in(buy_in_id, approver_user_id)
            ),
        )
        return approved

    def bulk_reject(self, buy_in_ids: list[str], acting_user_id: str) -> None:
        """
        Reject several buy-ins, each independently of the others.

        Raises:
            PartialBulkFailure: If any rejection failed; the rest stay deleted
        """
        self._apply_each(
            "reject",
            buy_in_ids,
            lambda buy_in_id: self.reject_buy_in(buy_in_id, acting_user_id),
        )

    def _apply_each(
        self, action: str, buy_in_ids: list[str], apply: Callable[[str], object]
    ) -> None:
        succeeded: list[str] = []
        errors: dict[str, Exception] = {}
        for buy_in_id in dict.fromkeys(buy_in_ids):
            try:
                apply(buy_in_id)
            except PokerPotError as e:
                logger.warning(f"Bulk {action} of buy-in {buy_in_id} failed: {e}")
                errors[buy_in_id] = e
            else:
                succeeded.append(buy_in_id)

        if errors:
            raise PartialBulkFailure(action, list(errors), errors, succeeded)

    def get_pending_buy_ins(self, session_id: str) -> list[BuyIn]:
        """Get buy-ins awaiting approval, newest first."""
        if self.db.get_session(session_id) is None:
            raise NotFoundError("Session", session_id)
        return self.db.list_buy_ins(session_id, approved=False)
