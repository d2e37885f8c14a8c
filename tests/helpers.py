from decimal import Decimal

from models import Amounts, LeafInput, Member


def member(member_id, parent_id=None, casino="0", slot="0", losing="0", level=None, name=None):
    """small factory so tests read like the tree diagrams in their docstrings."""
    return Member(
        id=member_id,
        name=name or str(member_id),
        parent_id=parent_id,
        level=level,
        casino_rate=Decimal(casino),
        slot_rate=Decimal(slot),
        losing_rate=Decimal(losing),
    )


def leaf(performer_id, casino="0", slot="0", losing="0"):
    return LeafInput(
        performer_id=performer_id,
        amounts=Amounts(casino=Decimal(casino), slot=Decimal(slot), losing=Decimal(losing)),
    )


def abc_tree():
    """
    A (casino 1.2%, slot 5%, losing 50%)
      └── B (casino 1.0%, slot 4%, losing 40%)
            └── C (casino 0.5%, slot 3%, losing 30%)
    """
    return [
        member("A", None, casino="1.2", slot="5", losing="50", level="grandmaster"),
        member("B", "A", casino="1.0", slot="4", losing="40", level="master"),
        member("C", "B", casino="0.5", slot="3", losing="30", level="branch"),
    ]
