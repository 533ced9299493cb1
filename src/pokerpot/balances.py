"""Derived balances: per-member session results and lifetime stats."""

import logging

from .db import Database
from .exceptions import NotFoundError
from .models import (
    LifetimeStats,
    MemberBalance,
    MemberSummary,
    Session,
    TotalsCheck,
)

logger = logging.getLogger(__name__)


class BalanceCalculator:
    """Read-only calculations over the ledger."""

    def __init__(self, database: Database):
        """Initialize the calculator."""
        self.db = database

    def _require_session(self, session_id: str) -> Session:
        session = self.db.get_session(session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    def compute_member_balances(self, session_id: str) -> list[MemberBalance]:
        """
        Compute each member's net balance for a session.

        total_cents = cashout - approved buy-ins. A member without a result
        has only bought in so far, so their balance is minus their approved
        buy-ins.

        Args:
            session_id: The session to compute balances for

        Returns:
            One balance per member, in member-name order

        Raises:
            NotFoundError: If the session does not exist
        """
        self._require_session(session_id)

        results = {r.member_id: r for r in self.db.list_results(session_id)}
        balances = []
        for member in self.db.list_members(session_id):
            buy_ins = self.db.sum_approved_buy_ins(session_id, member.id)
            result = results.get(member.id)
            cashout = result.cashout_cents if result else 0
            balances.append(
                MemberBalance(
                    member_id=member.id,
                    member_name=member.name,
                    user_id=member.user_id,
                    total_cents=cashout - buy_ins,
                )
            )
        return balances

    def compute_member_summaries(self, session_id: str) -> list[MemberSummary]:
        """Per-member buy-in, pending and cashout figures for display."""
        self._require_session(session_id)

        summaries = {
            member.id: MemberSummary(
                member_id=member.id,
                member_name=member.name,
                user_id=member.user_id,
            )
            for member in self.db.list_members(session_id)
        }
        for buy_in in self.db.list_buy_ins(session_id):
            summary = summaries.get(buy_in.member_id)
            if summary is None:
                continue
            if buy_in.approved:
                summary.approved_buy_ins_cents += buy_in.amount_cents
            else:
                summary.pending_buy_ins_cents += buy_in.amount_cents
        for result in self.db.list_results(session_id):
            if result.member_id in summaries:
                summaries[result.member_id].cashout_cents = result.cashout_cents
        return list(summaries.values())

    def check_totals(self, session_id: str) -> TotalsCheck:
        """Compare total approved buy-ins against total cashouts."""
        self._require_session(session_id)
        total_cashouts = sum(r.cashout_cents for r in self.db.list_results(session_id))
        return TotalsCheck(
            total_buy_ins_cents=self.db.sum_approved_buy_ins(session_id),
            total_cashouts_cents=total_cashouts,
        )

    def compute_lifetime_net(self, user_id: str) -> LifetimeStats:
        """
        Sum a user's own results across sessions plus their manual adjustments.

        Only results of members linked to this user are read, never other
        members' results.
        """
        history = self.db.list_user_history(user_id)
        adjustments = sum(a.amount_cents for a in self.db.list_adjustments(user_id))
        total = sum(entry.net_cents for entry in history) + adjustments

        logger.debug(
            f"Lifetime net for {user_id}: {total} cents over "
            f"{len(history)} sessions ({adjustments} cents adjusted)"
        )
        return LifetimeStats(
            total_net_cents=total,
            adjustments_cents=adjustments,
            sessions=history,
        )
