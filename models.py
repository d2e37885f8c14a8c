from datetime import datetime
from decimal import Decimal
from typing import Optional, Literal, Dict, List, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# rank labels, highest first
LEVELS = ["grandmaster", "master", "branch", "sub_branch"]

CHANNELS = ("casino", "slot", "losing")

Role = Literal["self", "upper"]
Source = Literal["casino", "slot", "losing"]


def normalize_id(value: Any) -> Optional[str]:
    """
    ids can show up as ints, strings with whitespace, etc.
    compare them by value: everything becomes a stripped str.
    """
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class Member(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    parent_id: Optional[str] = None
    level: Optional[str] = None
    casino_rate: Decimal = Decimal("0")
    slot_rate: Decimal = Decimal("0")
    losing_rate: Decimal = Decimal("0")
    login_id: Optional[str] = None
    member_name: Optional[str] = None
    memo: Optional[str] = None

    @field_validator("id", "parent_id", mode="before")
    @classmethod
    def _normalize_ids(cls, value):
        return normalize_id(value)

    def rate_for(self, channel: str) -> Decimal:
        return getattr(self, f"{channel}_rate")


class Amounts(BaseModel):
    model_config = ConfigDict(frozen=True)

    casino: Decimal = Decimal("0")  # fee already paid to the performer
    slot: Decimal = Decimal("0")  # fee already paid to the performer
    losing: Decimal = Decimal("0")  # raw cash amount


class LeafInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    performer_id: str
    amounts: Amounts = Field(default_factory=Amounts)

    @field_validator("performer_id", mode="before")
    @classmethod
    def _normalize_performer(cls, value):
        return normalize_id(value)


class CommissionEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    user_name: str
    amount: Decimal
    role: Role
    source: Source
    breakdown: str
    from_user_id: Optional[str] = None
    from_user_name: Optional[str] = None


class SettlementLog(BaseModel):
    """
    immutable snapshot of one settlement run, as handed to the log store.
    raw_inputs keeps every input in submitted order (duplicates included),
    so the exact batch can be reloaded and recomputed.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    total_casino_input: Decimal
    total_slot_input: Decimal
    total_losing_input: Decimal
    results: List[CommissionEntry]
    selected_root_id: Optional[str] = None
    raw_inputs: List[LeafInput] = Field(default_factory=list)
