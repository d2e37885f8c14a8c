from decimal import Decimal
from typing import Dict, List

from models import CommissionEntry, Member
from rolling_engine import HUNDRED, ZERO, fmt_number

PROFIT_TOLERANCE = Decimal("0.01")


def _pct(rate: Decimal) -> str:
    return f"{fmt_number(rate)}%"


def _differential_entry(
    channel: str,
    ancestor: Member,
    prev: Member,
    performer: Member,
    rolling: Decimal,
    leaf_fee: Decimal,
    prev_fee: Decimal,
    tolerance: Decimal,
) -> CommissionEntry:
    """
    casino / slot differential for one ancestor.
    the entry is always returned; amount is 0 when the margin is within tolerance.
    """
    ancestor_rate = ancestor.rate_for(channel)
    curr_fee = rolling * (ancestor_rate / HUNDRED)
    profit = curr_fee - prev_fee

    head = (
        f"[{ancestor.name} upper] {performer.name}'s {channel} fee {fmt_number(leaf_fee)} "
        f"at {_pct(performer.rate_for(channel))} -> rolling {fmt_number(rolling)}. "
        f"{ancestor.name} fee {fmt_number(rolling)} x {_pct(ancestor_rate)} = {fmt_number(curr_fee)}"
    )

    if abs(profit) > tolerance:
        amount = profit
        tail = (
            f" - {prev.name} fee {fmt_number(prev_fee)} = {fmt_number(profit)}"
        )
    else:
        amount = ZERO
        tail = (
            f" - {prev.name} fee {fmt_number(prev_fee)} = {fmt_number(profit)} "
            f"(no margin: {_pct(ancestor_rate)} vs {_pct(prev.rate_for(channel))})"
        )

    return CommissionEntry(
        user_id=ancestor.id,
        user_name=ancestor.name,
        amount=amount,
        role="upper",
        source=channel,
        breakdown=head + tail,
        from_user_id=performer.id,
        from_user_name=performer.name,
    )


def distribute_commission(
    performer: Member,
    rolling: Dict[str, Decimal],
    paid_fees: Dict[str, Decimal],
    losing_amount,
    lineage: List[Member],
    tolerance: Decimal = PROFIT_TOLERANCE,
) -> List[CommissionEntry]:
    """
    walk the lineage (nearest ancestor first) and emit the upper entries
    for one performer.

    rolling:   {"casino": Decimal, "slot": Decimal}  derived rolling volumes
    paid_fees: {"casino": Decimal, "slot": Decimal}  fees already paid to performer
    losing_amount: raw losing cash figure

    casino / slot:
      profit = rolling * ancestor_rate - fee of the previous level
      nothing when rolling == 0.

    losing (fresh per ancestor):
      deduction = sum(rolling * max(0, ancestor_rate - performer_rate))
      net_losing = losing_amount - deduction   (not clamped)
      amount = net_losing * (ancestor.losing_rate - prev.losing_rate)
      only when the rate diff is positive and |amount| > tolerance.
      a losing input of 0 still yields a negative share once margins are deducted.
    """
    losing = Decimal(losing_amount)
    tolerance = Decimal(tolerance)
    entries: List[CommissionEntry] = []

    prev = performer
    # the performer's own fee is the first baseline
    prev_fee = {
        channel: Decimal(paid_fees.get(channel, ZERO)) for channel in ("casino", "slot")
    }

    for ancestor in lineage:
        # 1) + 2) casino / slot differentials
        for channel in ("casino", "slot"):
            channel_rolling = rolling.get(channel, ZERO)
            if channel_rolling == 0:
                continue
            entry = _differential_entry(
                channel,
                ancestor,
                prev,
                performer,
                channel_rolling,
                Decimal(paid_fees.get(channel, ZERO)),
                prev_fee[channel],
                tolerance,
            )
            entries.append(entry)
            prev_fee[channel] = channel_rolling * (ancestor.rate_for(channel) / HUNDRED)

        # 3) losing share against this ancestor's own margins
        entry = _losing_entry(ancestor, prev, performer, rolling, losing, tolerance)
        if entry is not None:
            entries.append(entry)

        # 4) ancestor becomes the baseline for the next level up
        prev = ancestor

    return entries


def _losing_entry(
    ancestor: Member,
    prev: Member,
    performer: Member,
    rolling: Dict[str, Decimal],
    losing: Decimal,
    tolerance: Decimal,
):
    rate_diff = ancestor.losing_rate - prev.losing_rate
    if rate_diff <= 0:
        return None

    parts = []
    total_deduction = ZERO
    for channel in ("casino", "slot"):
        channel_rolling = rolling.get(channel, ZERO)
        margin = max(ZERO, ancestor.rate_for(channel) - performer.rate_for(channel))
        deduction = channel_rolling * (margin / HUNDRED)
        total_deduction += deduction
        parts.append(
            f"{channel} {fmt_number(channel_rolling)} x ({_pct(ancestor.rate_for(channel))} - "
            f"{_pct(performer.rate_for(channel))}) = {fmt_number(deduction)}"
        )

    net_losing = losing - total_deduction
    amount = net_losing * (rate_diff / HUNDRED)
    if abs(amount) <= tolerance:
        return None

    breakdown = (
        f"[{ancestor.name} upper] {performer.name}'s losing base = {fmt_number(losing)} - "
        f"({' + '.join(parts)}) = {fmt_number(net_losing)}\n"
        f"-> {fmt_number(net_losing)} x ({_pct(ancestor.losing_rate)} - {_pct(prev.losing_rate)}) "
        f"= {fmt_number(net_losing)} x {_pct(rate_diff)} = {fmt_number(amount)}"
    )

    return CommissionEntry(
        user_id=ancestor.id,
        user_name=ancestor.name,
        amount=amount,
        role="upper",
        source="losing",
        breakdown=breakdown,
        from_user_id=performer.id,
        from_user_name=performer.name,
    )
