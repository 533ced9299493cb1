"""Pot split calculator for chopped pots and all-in side pots."""

import logging

from .exceptions import ValidationError
from .models import PotSplit

logger = logging.getLogger(__name__)

MAIN_POT = "Main Pot"


def split_pot_evenly(total_cents: int, players: list[str]) -> PotSplit:
    """
    Chop one pot evenly between players.

    Each player gets the floor of the even share; the odd cents are reported
    as the remainder rather than handed to anyone.

    Raises:
        ValidationError: Non-positive pot or no players
    """
    if total_cents <= 0:
        raise ValidationError("Pot amount must be positive")
    if not players:
        raise ValidationError("A pot needs at least one player")

    per_player, remainder = divmod(total_cents, len(players))
    return PotSplit(
        pot_name=MAIN_POT,
        total_pot_cents=total_cents,
        players=list(players),
        amount_per_player_cents=per_player,
        remainder_cents=remainder,
    )


def calculate_side_pots(contributions: dict[str, int]) -> list[PotSplit]:
    """
    Layer all-in contributions into a main pot and side pots.

    Players are taken from lowest contribution to highest. Each distinct
    contribution level opens a pot worth (level - previous level) times the
    number of players still in, shared by those players. Players with equal
    contributions share a level, so no empty pots are produced.

    Args:
        contributions: Cents put in per player name

    Returns:
        Pots in order: "Main Pot", then "Side Pot 1", "Side Pot 2", ...

    Raises:
        ValidationError: Negative contribution or nothing contributed
    """
    for name, cents in contributions.items():
        if cents < 0:
            raise ValidationError(f"Contribution for {name} must not be negative")
    if sum(contributions.values()) <= 0:
        raise ValidationError("Enter a contribution for at least one player")

    # Stable sort keeps input order among equal contributions
    remaining = sorted(contributions.items(), key=lambda item: item[1])
    splits: list[PotSplit] = []
    previous = 0
    while remaining:
        lowest = remaining[0][1]
        layer = lowest - previous
        if layer > 0:
            total = layer * len(remaining)
            per_player, remainder = divmod(total, len(remaining))
            splits.append(
                PotSplit(
                    pot_name=MAIN_POT if not splits else f"Side Pot {len(splits)}",
                    total_pot_cents=total,
                    players=[name for name, _ in remaining],
                    amount_per_player_cents=per_player,
                    remainder_cents=remainder,
                )
            )
        previous = lowest
        remaining.pop(0)

    logger.debug(f"Split {sum(contributions.values())} cents into {len(splits)} pots")
    return splits
