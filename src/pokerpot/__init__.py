"""PokerPot - Track poker session buy-ins, cashouts and settle-up payments."""

__version__ = "0.1.0"

from .balances import BalanceCalculator
from .config import Settings, load_settings
from .db import Database
from .models import (
    BuyIn,
    Member,
    MemberBalance,
    PotSplit,
    Result,
    Session,
    Settlement,
    SettleUpTransaction,
)
from .money import format_cents_with_sign, parse_dollars_to_cents
from .pots import calculate_side_pots, split_pot_evenly
from .service import LedgerService
from .settle import calculate_settlements
from .sync import SyncReconciler

__all__ = [
    "BalanceCalculator",
    "Settings",
    "load_settings",
    "Database",
    "BuyIn",
    "Member",
    "MemberBalance",
    "PotSplit",
    "Result",
    "Session",
    "Settlement",
    "SettleUpTransaction",
    "format_cents_with_sign",
    "parse_dollars_to_cents",
    "calculate_side_pots",
    "split_pot_evenly",
    "LedgerService",
    "calculate_settlements",
    "SyncReconciler",
]
