"""Pydantic domain models for PokerPot."""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from .identifiers import new_id, utcnow

SessionStatus = Literal["active", "completed"]
SessionRole = Literal["admin", "member"]

# ============================================================================
# Ledger Records
# ============================================================================


class SyncedRecord(BaseModel):
    """Fields shared by every record that is reconciled with the remote store.

    ``pending_sync`` is local-only state and never leaves the device.
    """

    id: str = Field(default_factory=new_id)
    updated_at: datetime = Field(default_factory=utcnow)
    pending_sync: bool = True


class Session(SyncedRecord):
    """A poker session."""

    name: str
    join_code: str
    date: date
    note: str | None = None
    status: SessionStatus = "active"
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"


class SessionMember(SyncedRecord):
    """An authenticated user's role within a session."""

    session_id: str
    user_id: str
    role: SessionRole = "member"
    joined_at: datetime = Field(default_factory=utcnow)


class Member(SyncedRecord):
    """A participant in a session.

    Members without a user_id are local-only placeholders anyone may edit.
    """

    session_id: str
    user_id: str | None = None
    name: str
    created_at: datetime = Field(default_factory=utcnow)


class BuyIn(SyncedRecord):
    """Money a member has put into the pot. Counts only once approved."""

    session_id: str
    member_id: str
    amount_cents: int = Field(gt=0)
    approved: bool = False
    approved_by: str | None = None
    approved_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)


class Result(SyncedRecord):
    """A member's cashout for a session.

    cashout_cents == 0 means the member has not cashed out yet.
    """

    session_id: str
    member_id: str
    net_cents: int
    cashout_cents: int = Field(default=0, ge=0)

    @property
    def has_cashed_out(self) -> bool:
        return self.cashout_cents > 0


class Settlement(SyncedRecord):
    """A persisted payment instruction produced at session completion."""

    session_id: str
    from_member_id: str
    to_member_id: str
    amount_cents: int = Field(gt=0)
    settled_at: datetime = Field(default_factory=utcnow)
    note: str | None = None
    paid: bool = False
    paid_at: datetime | None = None
    paid_by: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class ManualAdjustment(SyncedRecord):
    """A user-scoped correction to their lifetime net total."""

    user_id: str
    amount_cents: int
    note: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# Computed Models
# ============================================================================


class MemberBalance(BaseModel):
    """A member's net position within a session."""

    member_id: str
    member_name: str
    user_id: str | None = None
    total_cents: int


class SettleUpTransaction(BaseModel):
    """One directed payment: from_member pays to_member amount_cents."""

    from_member_id: str
    from_member_name: str
    to_member_id: str
    to_member_name: str
    amount_cents: int


class MemberSummary(BaseModel):
    """Per-member session figures for display."""

    member_id: str
    member_name: str
    user_id: str | None = None
    approved_buy_ins_cents: int = 0
    pending_buy_ins_cents: int = 0
    cashout_cents: int = 0

    @property
    def has_cashed_out(self) -> bool:
        return self.cashout_cents > 0

    @property
    def net_cents(self) -> int | None:
        """Net result, or None until the member has cashed out."""
        if not self.has_cashed_out:
            return None
        return self.cashout_cents - self.approved_buy_ins_cents


class TotalsCheck(BaseModel):
    """Chips in vs. chips out for a session."""

    total_buy_ins_cents: int
    total_cashouts_cents: int

    @property
    def discrepancy_cents(self) -> int:
        return self.total_buy_ins_cents - self.total_cashouts_cents

    @property
    def balanced(self) -> bool:
        return self.discrepancy_cents == 0


class SessionHistoryEntry(BaseModel):
    """One session's contribution to a user's lifetime stats."""

    session_id: str
    session_name: str
    date: date
    note: str | None = None
    net_cents: int


class LifetimeStats(BaseModel):
    """A user's net result across all sessions plus manual adjustments."""

    total_net_cents: int
    adjustments_cents: int = 0
    sessions: list[SessionHistoryEntry] = Field(default_factory=list)


class SyncStatus(BaseModel):
    """Snapshot of the reconciler's state."""

    is_syncing: bool
    last_sync_at: datetime | None = None


class SyncReport(BaseModel):
    """Counts of records moved by one sync run, per entity."""

    pushed: dict[str, int] = Field(default_factory=dict)
    pulled: dict[str, int] = Field(default_factory=dict)
    deleted: int = 0
    finished_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# Pot Splits
# ============================================================================


class PotSplit(BaseModel):
    """One pot and the players who share it."""

    pot_name: str
    total_pot_cents: int
    players: list[str]
    amount_per_player_cents: int
    remainder_cents: int = 0  # Odd cents left after the even split


# ============================================================================
# Domain Events
# ============================================================================


class BuyInRequested(BaseModel):
    """A member asked for a buy-in that awaits admin approval."""

    kind: Literal["buy_in_requested"] = "buy_in_requested"
    session_id: str
    buy_in_id: str
    member_name: str
    amount_cents: int


class BuyInApproved(BaseModel):
    """An admin approved a buy-in."""

    kind: Literal["buy_in_approved"] = "buy_in_approved"
    session_id: str
    buy_in_id: str
    member_user_id: str | None = None
    amount_cents: int


class SessionCompleted(BaseModel):
    """A session was completed and its settlements recorded."""

    kind: Literal["session_completed"] = "session_completed"
    session_id: str
    settlement_count: int


DomainEvent = BuyInRequested | BuyInApproved | SessionCompleted
