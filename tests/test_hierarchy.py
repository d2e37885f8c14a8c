import pytest

from hierarchy import (
    LineageDepthError,
    derive_subtree_levels,
    get_children,
    get_descendants,
    get_lineage,
    get_next_level,
    get_top_level_members,
    index_members,
    validate_member,
)
from models import LEVELS
from tests.helpers import abc_tree, member


def test_lineage_nearest_first():
    """
    A -> B -> C
    C's lineage: [B, A]
    """
    members = abc_tree()
    by_id = index_members(members)

    assert [m.id for m in get_lineage(by_id["C"], by_id)] == ["B", "A"]
    assert [m.id for m in get_lineage(by_id["B"], by_id)] == ["A"]
    assert get_lineage(by_id["A"], by_id) == []


def test_lineage_stops_at_broken_parent():
    """parent id points nowhere: lineage just stops, no error."""
    members = [
        member("A"),
        member("B", "A"),
        member("C", "ghost"),
        member("D", "C"),
    ]
    by_id = index_members(members)

    assert [m.id for m in get_lineage(by_id["D"], by_id)] == ["C"]
    assert get_lineage(by_id["C"], by_id) == []


def test_lineage_ids_compared_by_value():
    """int ids and string ids for the same member must match."""
    members = [member(1), member(2, 1), member(3, " 2 ")]
    by_id = index_members(members)

    lineage = get_lineage(by_id["3"], by_id)
    assert [m.id for m in lineage] == ["2", "1"]


def test_lineage_cycle_hits_depth_limit():
    """
    X -> Y -> X (malformed data)
    walking must not loop forever.
    """
    members = [member("X", "Y"), member("Y", "X")]
    by_id = index_members(members)

    with pytest.raises(LineageDepthError):
        get_lineage(by_id["X"], by_id, max_depth=10)


def test_lineage_exactly_at_depth_limit_is_fine():
    members = [member("L0")] + [member(f"L{i}", f"L{i - 1}") for i in range(1, 5)]
    by_id = index_members(members)

    # L4 has 4 ancestors
    assert len(get_lineage(by_id["L4"], by_id, max_depth=4)) == 4
    with pytest.raises(LineageDepthError):
        get_lineage(by_id["L4"], by_id, max_depth=3)


def test_next_level():
    assert get_next_level(None) == LEVELS[0]
    assert get_next_level("grandmaster") == "master"
    assert get_next_level("master") == "branch"
    assert get_next_level("branch") == "sub_branch"
    # lowest level cannot have children
    assert get_next_level("sub_branch") is None
    assert get_next_level("captain") is None


def test_validate_member_top_level():
    by_id = index_members(abc_tree())
    level = validate_member({"parent_id": None, "casino_rate": "2"}, by_id)
    assert level == "grandmaster"


def test_validate_member_derives_level_from_parent():
    by_id = index_members(abc_tree())
    level = validate_member(
        {"parent_id": "C", "casino_rate": "0.3", "slot_rate": "1", "losing_rate": "10"},
        by_id,
    )
    assert level == "sub_branch"


def test_validate_member_rate_above_parent_rejected():
    by_id = index_members(abc_tree())

    with pytest.raises(ValueError, match="casino rate"):
        validate_member({"parent_id": "B", "casino_rate": "1.1"}, by_id)

    with pytest.raises(ValueError, match="losing rate"):
        validate_member({"parent_id": "B", "losing_rate": "41"}, by_id)

    # equal to parent is fine
    assert validate_member({"parent_id": "B", "casino_rate": "1.0"}, by_id) == "branch"


def test_validate_member_negative_rate_rejected():
    by_id = index_members(abc_tree())
    with pytest.raises(ValueError):
        validate_member({"parent_id": None, "slot_rate": "-1"}, by_id)


def test_validate_member_unknown_parent_rejected():
    by_id = index_members(abc_tree())
    with pytest.raises(ValueError, match="not found"):
        validate_member({"parent_id": "nobody"}, by_id)


def test_validate_member_lowest_level_cannot_have_children():
    members = abc_tree() + [member("D", "C", level="sub_branch")]
    by_id = index_members(members)
    with pytest.raises(ValueError):
        validate_member({"parent_id": "D"}, by_id)


def test_validate_member_prevents_cycles():
    """
    A -> B -> C
    moving A under C would close the loop A -> B -> C -> A.
    """
    by_id = index_members(abc_tree())

    with pytest.raises(ValueError, match="cycle"):
        validate_member({"parent_id": "C"}, by_id, member_id="A")

    with pytest.raises(ValueError, match="cycle"):
        validate_member({"parent_id": "B"}, by_id, member_id="B")


def test_children_and_descendants_keep_input_order():
    """
    A
    ├── B
    │   └── D
    └── C
    """
    members = [
        member("A"),
        member("B", "A"),
        member("C", "A"),
        member("D", "B"),
        member("Z"),
    ]

    assert [m.id for m in get_children("A", members)] == ["B", "C"]

    flattened = get_descendants("A", members)
    assert [(m.id, depth) for m, depth in flattened] == [
        ("A", 0),
        ("B", 1),
        ("D", 2),
        ("C", 1),
    ]

    assert get_descendants("missing", members) == []


def test_top_level_members():
    members = abc_tree() + [member("X", level="grandmaster")]
    assert [m.id for m in get_top_level_members(members)] == ["A", "X"]


def test_subtree_levels_follow_the_new_root_level():
    """
    B moves from master to branch:
    B
    ├── C   -> sub_branch
    └── E   -> sub_branch
    """
    members = [
        member("A", level="grandmaster"),
        member("B", "A", level="master"),
        member("C", "B", level="branch"),
        member("E", "B", level="branch"),
    ]

    assert derive_subtree_levels("B", "branch", members) == [
        ("C", "sub_branch"),
        ("E", "sub_branch"),
    ]
    assert derive_subtree_levels("B", "grandmaster", members) == [
        ("C", "master"),
        ("E", "master"),
    ]
    assert derive_subtree_levels("C", "sub_branch", members) == []


def test_subtree_levels_too_deep_rejected():
    members = abc_tree()
    with pytest.raises(ValueError, match="lowest level"):
        derive_subtree_levels("B", "sub_branch", members)
