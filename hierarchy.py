from decimal import Decimal
from typing import Dict, List, Optional, Iterable, Tuple, Any

from loguru import logger

from models import LEVELS, CHANNELS, Member, normalize_id

MAX_LINEAGE_DEPTH = 64


class LineageDepthError(RuntimeError):
    """lineage walk ran past max_depth; the parent links are not a tree."""


def index_members(members: Iterable[Member]) -> Dict[str, Member]:
    """
    build the id -> member map once per run.
    lookups go through this map, never through object references.
    """
    return {normalize_id(m.id): m for m in members}


def get_lineage(
    member: Member,
    members_by_id: Dict[str, Member],
    max_depth: int = MAX_LINEAGE_DEPTH,
) -> List[Member]:
    """
    given a member and the id map, return its ancestors
    [parent, grandparent, ..., root], nearest first.

    stops quietly at a member without a parent, or at a parent id
    that is not in the map (broken reference). raises LineageDepthError
    if the walk goes deeper than max_depth.
    """
    lineage: List[Member] = []
    current = member

    while current.parent_id is not None:
        parent = members_by_id.get(normalize_id(current.parent_id))
        if parent is None:
            logger.debug(
                f"member {current.id} points to unknown parent {current.parent_id}, lineage stops here"
            )
            break
        if len(lineage) >= max_depth:
            raise LineageDepthError(
                f"lineage of member {member.id} exceeds {max_depth} levels (cycle in parent links?)"
            )
        lineage.append(parent)
        current = parent

    return lineage


def get_next_level(parent_level: Optional[str]) -> Optional[str]:
    """
    level a new child of `parent_level` gets.
    no parent -> top level. lowest (or unknown) level -> None, no children allowed.
    """
    if not parent_level:
        return LEVELS[0]
    if parent_level not in LEVELS:
        return None
    idx = LEVELS.index(parent_level)
    if idx >= len(LEVELS) - 1:
        return None
    return LEVELS[idx + 1]


def validate_member(
    fields: Dict[str, Any],
    members_by_id: Dict[str, Member],
    member_id: Optional[str] = None,
) -> str:
    """
    check a member create/update before it is written.

    fields: dict with parent_id and casino_rate / slot_rate / losing_rate
    member_id: id of the member being updated (None on create)

    rules:
      - rates cannot be negative
      - parent must exist
      - re-parenting must NOT create a cycle
      - parent must not be at the lowest level
      - a rate cannot exceed the parent's rate for the same channel

    returns the level the member must carry.
    """
    for channel in CHANNELS:
        rate = Decimal(fields.get(f"{channel}_rate") or 0)
        if rate < 0:
            raise ValueError(f"{channel} rate cannot be negative ({rate}).")

    parent_id = normalize_id(fields.get("parent_id"))
    member_id = normalize_id(member_id)

    if parent_id is None:
        return LEVELS[0]

    parent = members_by_id.get(parent_id)
    if parent is None:
        raise ValueError(f"Parent member {parent_id} not found.")

    # cycle check: walk up from parent; must never hit the member itself
    if member_id is not None:
        current = parent
        for _ in range(len(members_by_id) + 1):
            if current.id == member_id:
                raise ValueError(
                    f"Setting {parent_id} as parent of {member_id} would create a cycle."
                )
            if current.parent_id is None:
                break
            current = members_by_id.get(current.parent_id)
            if current is None:
                break

    level = get_next_level(parent.level)
    if level is None:
        raise ValueError(
            f"Member {parent.name} ({parent.level}) cannot have any more members below it."
        )

    for channel in CHANNELS:
        rate = Decimal(fields.get(f"{channel}_rate") or 0)
        parent_rate = parent.rate_for(channel)
        if rate > parent_rate:
            raise ValueError(
                f"{channel} rate {rate}% exceeds parent {parent.name}'s rate {parent_rate}%."
            )

    return level


def get_children(member_id: Any, members: Iterable[Member]) -> List[Member]:
    """direct children, in input order."""
    member_id = normalize_id(member_id)
    return [m for m in members if m.parent_id == member_id]


def get_descendants(root_id: Any, members: List[Member]) -> List[Tuple[Member, int]]:
    """
    flatten the subtree under root_id depth-first: [(member, depth), ...]
    root comes first at depth 0. unknown root -> [].
    """
    root_id = normalize_id(root_id)
    members_by_id = index_members(members)
    root = members_by_id.get(root_id)
    if root is None:
        return []

    children_map: Dict[str, List[Member]] = {}
    for m in members:
        if m.parent_id is not None:
            children_map.setdefault(m.parent_id, []).append(m)

    result: List[Tuple[Member, int]] = []
    # explicit stack; reversed so children come out in input order
    stack: List[Tuple[Member, int]] = [(root, 0)]
    seen = set()
    while stack:
        member, depth = stack.pop()
        if member.id in seen:
            continue
        seen.add(member.id)
        result.append((member, depth))
        for child in reversed(children_map.get(member.id, [])):
            stack.append((child, depth + 1))

    return result


def derive_subtree_levels(
    root_id: Any,
    root_level: str,
    members: List[Member],
) -> List[Tuple[str, str]]:
    """
    levels every descendant of root_id must carry once root_id sits at
    root_level: [(member_id, level), ...] depth-first, root excluded.
    raises ValueError if the subtree would run past the lowest level.
    """
    base = LEVELS.index(root_level)
    levels: List[Tuple[str, str]] = []
    for member, depth in get_descendants(root_id, members):
        if depth == 0:
            continue
        if base + depth >= len(LEVELS):
            raise ValueError(
                f"Moving {root_id} to {root_level} would push {member.name} below the lowest level."
            )
        levels.append((member.id, LEVELS[base + depth]))
    return levels


def get_top_level_members(members: Iterable[Member]) -> List[Member]:
    return [m for m in members if m.level == LEVELS[0]]
