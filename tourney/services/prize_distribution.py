"""
Prize distribution tables and award arithmetic

A distribution maps finishing rank (1-based) to a percentage share of the
prize pool. Amounts are computed in Decimal and truncated to the money
precision; the truncation dust goes to first place so a table summing to
100 pays out exactly the pool.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Dict, List, Mapping, Sequence, Union

from tourney.core.exceptions import ValidationError

MONEY_QUANTUM = Decimal("0.00000001")
PERCENT_QUANTUM = Decimal("0.01")
HUNDRED = Decimal("100")

Number = Union[int, str, float, Decimal]


@dataclass(frozen=True)
class Award:
    """Prize for one ranked participant"""
    place: int
    player_id: str
    display_name: str
    amount: Decimal


def to_money(value: Number) -> Decimal:
    """Quantize a value to money precision, truncating"""
    return Decimal(str(value)).quantize(MONEY_QUANTUM, rounding=ROUND_DOWN)


def normalize_distribution(raw: Mapping[Union[int, str], Number]) -> Dict[int, Decimal]:
    """
    Validate a rank -> percent table and return it with int ranks and
    Decimal percents, ordered by rank.

    Raises ValidationError if a rank is not a positive integer, a percent is
    negative or above 100, or the percents sum to more than 100.
    """
    if not raw:
        raise ValidationError("Prize distribution must contain at least one rank")

    table: Dict[int, Decimal] = {}
    for key, value in raw.items():
        try:
            rank = int(key)
        except (TypeError, ValueError):
            raise ValidationError(f"Prize rank {key!r} is not an integer")
        if isinstance(key, float) or rank < 1:
            raise ValidationError(f"Prize rank {key!r} must be a positive integer")
        if rank in table:
            raise ValidationError(f"Prize rank {rank} appears more than once")
        try:
            percent = Decimal(str(value))
        except InvalidOperation:
            raise ValidationError(f"Prize percent for rank {rank} is not a number")
        if not percent.is_finite() or percent < 0 or percent > HUNDRED:
            raise ValidationError(f"Prize percent for rank {rank} must be between 0 and 100")
        if percent != percent.quantize(PERCENT_QUANTUM):
            raise ValidationError(f"Prize percent for rank {rank} allows at most two decimals")
        table[rank] = percent

    total = sum(table.values(), Decimal("0"))
    if total > HUNDRED:
        raise ValidationError(f"Prize percents sum to {total}, more than 100")

    return dict(sorted(table.items()))


def compute_awards(
    prize_pool: Number,
    distribution: Mapping[int, Decimal],
    ranked: Sequence,
) -> List[Award]:
    """
    Assign prizes to ranked participants.

    ``ranked`` is ordered best first; each item needs ``player_id`` and
    ``display_name``. Ranks beyond the number of ranked participants are not
    paid, and participants ranked below the table get nothing.
    """
    pool = Decimal(str(prize_pool))
    paid_ranks = [(rank, percent) for rank, percent in sorted(distribution.items()) if rank <= len(ranked)]
    if not paid_ranks:
        return []

    awards = []
    for rank, percent in paid_ranks:
        participant = ranked[rank - 1]
        awards.append(Award(
            place=rank,
            player_id=participant.player_id,
            display_name=participant.display_name,
            amount=to_money(pool * percent / HUNDRED),
        ))

    target = to_money(pool * sum((p for _, p in paid_ranks), Decimal("0")) / HUNDRED)
    dust = target - sum((a.amount for a in awards), Decimal("0"))
    if dust > 0:
        first = awards[0]
        awards[0] = Award(first.place, first.player_id, first.display_name, first.amount + dust)

    return awards


def net_entry_contribution(entry_fee: Number, platform_fee_percent: Number) -> Decimal:
    """Part of an entry fee that goes into the prize pool"""
    fee = Decimal(str(entry_fee))
    share = HUNDRED - Decimal(str(platform_fee_percent))
    return to_money(fee * share / HUNDRED)
