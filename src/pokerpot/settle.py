"""Settle-up engine: turn net balances into a short list of payments."""

import logging

from .models import MemberBalance, SettleUpTransaction

logger = logging.getLogger(__name__)


def calculate_settlements(balances: list[MemberBalance]) -> list[SettleUpTransaction]:
    """
    Compute payments that bring every balance to zero.

    Greedy largest-first matching:
    1. Split members into creditors (owed money) and debtors (owe money)
    2. Sort creditors by amount owed to them, largest first; debtors by
       amount they owe, largest first
    3. Walk both lists, moving min(debt, credit) from the current debtor to
       the current creditor and advancing whichever side reaches zero

    Produces at most n - 1 payments for n members with a non-zero balance.
    It is not guaranteed to be the global minimum. Equal amounts keep their
    input order (sorting is stable); any other tie-break is unspecified.

    The balances must sum to zero. Unbalanced input leaves the residual on
    the last creditor or debtor instead of raising.

    Args:
        balances: Net position per member (positive = owed money)

    Returns:
        Payments in the order they were matched
    """
    # Work on copies; the caller's balances are left untouched
    creditors = sorted(
        ([b.member_id, b.member_name, b.total_cents] for b in balances if b.total_cents > 0),
        key=lambda entry: entry[2],
        reverse=True,
    )
    debtors = sorted(
        ([b.member_id, b.member_name, b.total_cents] for b in balances if b.total_cents < 0),
        key=lambda entry: entry[2],
    )

    transactions: list[SettleUpTransaction] = []
    i = 0  # creditor cursor
    j = 0  # debtor cursor

    while i < len(creditors) and j < len(debtors):
        creditor = creditors[i]
        debtor = debtors[j]

        amount = min(-debtor[2], creditor[2])
        transactions.append(
            SettleUpTransaction(
                from_member_id=debtor[0],
                from_member_name=debtor[1],
                to_member_id=creditor[0],
                to_member_name=creditor[1],
                amount_cents=amount,
            )
        )

        creditor[2] -= amount
        debtor[2] += amount

        if creditor[2] == 0:
            i += 1
        if debtor[2] == 0:
            j += 1

    residual = sum(b.total_cents for b in balances)
    if residual != 0:
        logger.warning(
            f"Balances do not net to zero (residual {residual} cents); "
            f"settlements leave it unsettled"
        )

    logger.debug(
        f"Settled {len(creditors)} creditors and {len(debtors)} debtors "
        f"with {len(transactions)} payments"
    )
    return transactions
