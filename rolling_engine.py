from decimal import Context, Decimal
from typing import Optional, Tuple

from loguru import logger

from models import CommissionEntry, Member

HUNDRED = Decimal("100")
ZERO = Decimal("0")


def fmt_number(value) -> str:
    """
    plain, locale-free rendering for breakdown text.
    max 6 dp, trailing zeros dropped: 10000000, 0.5, -1234.25
    """
    d = Decimal(value)
    # enough digits for the integer part plus 6 dp, whatever the magnitude
    d = d.quantize(Decimal("0.000001"), context=Context(prec=max(28, d.adjusted() + 8)))
    text = format(d, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("-0", ""):
        text = "0"
    return text


def derive_rolling(
    fee_amount,
    member: Member,
    channel: str,
) -> Tuple[Decimal, Optional[CommissionEntry]]:
    """
    fee_amount: fee already paid to `member` on `channel` (casino / slot)
    returns (rolling, error_entry)

    rolling = fee / (rate / 100)

      - fee == 0              -> (0, None)
      - fee != 0, rate == 0   -> (0, zero-amount `self` entry explaining why)
      - otherwise             -> (rolling, None)
    """
    fee = Decimal(fee_amount)
    rate = member.rate_for(channel)

    if fee == 0:
        return ZERO, None

    if rate == 0:
        logger.debug(
            f"{channel} fee {fee} paid to {member.id} but rate is 0%, rolling cannot be derived"
        )
        entry = CommissionEntry(
            user_id=member.id,
            user_name=member.name,
            amount=ZERO,
            role="self",
            source=channel,
            breakdown=(
                f"[{member.name} error] {channel} fee {fmt_number(fee)} was entered "
                f"but {member.name}'s {channel} rate is 0%, so rolling cannot be derived "
                f"({fmt_number(fee)} / 0%). rolling treated as 0, no upper {channel} commission."
            ),
            from_user_id=member.id,
            from_user_name=member.name,
        )
        return ZERO, entry

    return fee / (rate / HUNDRED), None
