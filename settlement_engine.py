from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger

from commission_engine import PROFIT_TOLERANCE, distribute_commission
from hierarchy import MAX_LINEAGE_DEPTH, get_lineage, index_members
from models import (
    CHANNELS,
    CommissionEntry,
    LeafInput,
    Member,
    SettlementLog,
    normalize_id,
)
from rolling_engine import ZERO, derive_rolling


def compute_batch_commission(
    inputs: List[LeafInput],
    members: List[Member],
    *,
    tolerance: Decimal = PROFIT_TOLERANCE,
    max_depth: int = MAX_LINEAGE_DEPTH,
) -> List[CommissionEntry]:
    """
    run one settlement batch:
      - index the member snapshot
      - for each input: resolve lineage, derive rolling, distribute upward
      - concatenate every entry in processing order

    parameters
    ----------
    inputs : list[LeafInput]
        {performer_id, amounts: {casino, slot, losing}}; casino / slot are
        fees already paid to the performer, losing is raw cash.

    members : list[Member]
        the full, freshly loaded member set.

    returns
    -------
    list[CommissionEntry]
        order of `inputs`, then lineage order per input. entries for the
        same (user_id, source) are NOT merged across inputs.
    """
    members_by_id = index_members(members)
    results: List[CommissionEntry] = []

    for leaf in inputs:
        performer = members_by_id.get(normalize_id(leaf.performer_id))
        if performer is None:
            logger.debug(f"skipping input for unknown performer {leaf.performer_id}")
            continue

        # 1) rolling per channel; zero-rate inputs come back as self entries
        rolling: Dict[str, Decimal] = {}
        paid_fees: Dict[str, Decimal] = {}
        for channel in ("casino", "slot"):
            fee = getattr(leaf.amounts, channel)
            channel_rolling, error_entry = derive_rolling(fee, performer, channel)
            rolling[channel] = channel_rolling
            paid_fees[channel] = fee
            if error_entry is not None:
                results.append(error_entry)

        # 2) lineage [parent, grandparent, ..., root]
        lineage = get_lineage(performer, members_by_id, max_depth=max_depth)

        # 3) upper entries
        results.extend(
            distribute_commission(
                performer,
                rolling,
                paid_fees,
                leaf.amounts.losing,
                lineage,
                tolerance=tolerance,
            )
        )

    return results


calculate = compute_batch_commission


def summarize_results(
    entries: Iterable[CommissionEntry],
    member_ids: Optional[Iterable[Any]] = None,
) -> Dict[str, Any]:
    """
    group the flat entry list by user for display.

    {
      "users": {
        user_id: {
          "user_id", "user_name", "casino", "slot", "losing", "total",
          "by_performer": {
            performer_id: {"from_user_name", "casino", "slot", "losing",
                           "breakdowns": {"casino": [...], "slot": [...], "losing": [...]}}
          }
        }
      },
      "total": Decimal,
    }

    member_ids restricts the grouping (e.g. to one subtree); the grand
    total always covers every entry.
    """
    entries = list(entries)
    allowed = None
    if member_ids is not None:
        allowed = {normalize_id(m) for m in member_ids}

    users: Dict[str, Dict[str, Any]] = {}
    for entry in entries:
        if allowed is not None and entry.user_id not in allowed:
            continue

        rec = users.get(entry.user_id)
        if rec is None:
            rec = {
                "user_id": entry.user_id,
                "user_name": entry.user_name,
                "casino": ZERO,
                "slot": ZERO,
                "losing": ZERO,
                "total": ZERO,
                "by_performer": {},
            }
            users[entry.user_id] = rec

        from_key = entry.from_user_id or "other"
        sub = rec["by_performer"].get(from_key)
        if sub is None:
            sub = {
                "from_user_name": entry.from_user_name or "other",
                "casino": ZERO,
                "slot": ZERO,
                "losing": ZERO,
                "breakdowns": {channel: [] for channel in CHANNELS},
            }
            rec["by_performer"][from_key] = sub

        rec[entry.source] += entry.amount
        rec["total"] += entry.amount
        sub[entry.source] += entry.amount
        if entry.breakdown:
            sub["breakdowns"][entry.source].append(entry.breakdown)

    total = sum((e.amount for e in entries), ZERO)
    return {"users": users, "total": total}


def build_settlement_log(
    inputs: List[LeafInput],
    results: List[CommissionEntry],
    selected_root_id: Optional[Any] = None,
    timestamp: Optional[datetime] = None,
) -> SettlementLog:
    """
    snapshot of one run for the log store: input totals, results, and the
    raw inputs in submitted order. repeated performers stay separate rows,
    so feeding raw_inputs back into compute_batch_commission reproduces results.
    """
    inputs = list(inputs)

    return SettlementLog(
        timestamp=timestamp or datetime.now(timezone.utc),
        total_casino_input=sum((leaf.amounts.casino for leaf in inputs), ZERO),
        total_slot_input=sum((leaf.amounts.slot for leaf in inputs), ZERO),
        total_losing_input=sum((leaf.amounts.losing for leaf in inputs), ZERO),
        results=list(results),
        selected_root_id=normalize_id(selected_root_id),
        raw_inputs=inputs,
    )
