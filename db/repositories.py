from typing import Tuple, Dict, Any, List

from psycopg import Connection
from psycopg.types.json import Jsonb

from hierarchy import derive_subtree_levels, get_children, index_members, validate_member
from models import Member, SettlementLog, normalize_id

MEMBER_COLUMNS = (
    "id, name, parent_id, level, casino_rate, slot_rate, losing_rate, "
    "login_id, member_name, memo"
)


class NotFoundError(ValueError):
    """unknown member or settlement log id."""


EDITABLE_FIELDS = (
    "name",
    "parent_id",
    "casino_rate",
    "slot_rate",
    "losing_rate",
    "login_id",
    "member_name",
    "memo",
)


def _db_id(value: Any, what: str = "Member") -> int:
    """ids travel as strings; the tables use BIGSERIAL keys."""
    text = normalize_id(value)
    if text is None or not text.isdigit():
        raise NotFoundError(f"{what} {value} not found")
    return int(text)


def _row_to_member(row: Tuple) -> Member:
    return Member(
        id=row[0],
        name=row[1],
        parent_id=row[2],
        level=row[3],
        casino_rate=row[4],
        slot_rate=row[5],
        losing_rate=row[6],
        login_id=row[7],
        member_name=row[8],
        memo=row[9],
    )


# ---------
# member repository
# ---------


def get_all_members(conn: Connection) -> List[Member]:
    """
    the full member set, ordered by id. settlement always runs on this,
    loaded fresh, never on a cached or partial list.
    """
    with conn.cursor() as cur:
        cur.execute(f"SELECT {MEMBER_COLUMNS} FROM members ORDER BY id")
        rows = cur.fetchall()
    return [_row_to_member(r) for r in rows]


def get_member(conn: Connection, member_id: Any) -> Member:
    with conn.cursor() as cur:
        cur.execute(
            f"SELECT {MEMBER_COLUMNS} FROM members WHERE id = %s",
            (_db_id(member_id),),
        )
        row = cur.fetchone()
    if row is None:
        raise NotFoundError(f"Member {member_id} not found")
    return _row_to_member(row)


def create_member(conn: Connection, fields: Dict[str, Any]) -> Member:
    """
    insert a member. level is derived from the parent, and rates are
    checked against the parent's (see hierarchy.validate_member).
    """
    name = (fields.get("name") or "").strip()
    if not name:
        raise ValueError("name cannot be empty")

    members_by_id = index_members(get_all_members(conn))
    level = validate_member(fields, members_by_id)

    parent_id = normalize_id(fields.get("parent_id"))

    with conn.cursor() as cur:
        cur.execute(
            f"""
            INSERT INTO members
                (name, parent_id, level, casino_rate, slot_rate, losing_rate,
                 login_id, member_name, memo)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {MEMBER_COLUMNS}
            """,
            (
                name,
                int(parent_id) if parent_id is not None else None,
                level,
                fields.get("casino_rate") or 0,
                fields.get("slot_rate") or 0,
                fields.get("losing_rate") or 0,
                fields.get("login_id"),
                fields.get("member_name"),
                fields.get("memo"),
            ),
        )
        row = cur.fetchone()
        if row is None:
            raise ValueError("failed to create member")
    return _row_to_member(row)


def update_member(conn: Connection, member_id: Any, updates: Dict[str, Any]) -> Member:
    """
    apply a partial update. the merged record is re-validated
    (parent exists, no cycle, rates within the parent's).
    moving a member to another depth re-levels its whole subtree in the
    same transaction; a subtree that would not fit is rejected up front.
    """
    existing = get_member(conn, member_id)

    merged = existing.model_dump()
    for key, value in updates.items():
        if key in EDITABLE_FIELDS:
            merged[key] = value

    name = (merged.get("name") or "").strip()
    if not name:
        raise ValueError("name cannot be empty")

    all_members = get_all_members(conn)
    level = validate_member(merged, index_members(all_members), member_id=existing.id)

    # a move to another depth re-levels the whole subtree
    relevels = []
    if level != existing.level:
        relevels = derive_subtree_levels(existing.id, level, all_members)

    parent_id = normalize_id(merged.get("parent_id"))

    with conn.cursor() as cur:
        cur.execute(
            f"""
            UPDATE members
            SET name = %s, parent_id = %s, level = %s,
                casino_rate = %s, slot_rate = %s, losing_rate = %s,
                login_id = %s, member_name = %s, memo = %s,
                updated_at = NOW()
            WHERE id = %s
            RETURNING {MEMBER_COLUMNS}
            """,
            (
                name,
                int(parent_id) if parent_id is not None else None,
                level,
                merged.get("casino_rate") or 0,
                merged.get("slot_rate") or 0,
                merged.get("losing_rate") or 0,
                merged.get("login_id"),
                merged.get("member_name"),
                merged.get("memo"),
                _db_id(existing.id),
            ),
        )
        row = cur.fetchone()
        if row is None:
            raise NotFoundError(f"Member {member_id} not found")

        for descendant_id, descendant_level in relevels:
            cur.execute(
                "UPDATE members SET level = %s, updated_at = NOW() WHERE id = %s",
                (descendant_level, _db_id(descendant_id)),
            )
    return _row_to_member(row)


def delete_member(conn: Connection, member_id: Any) -> None:
    """delete a member. members that still have children cannot be deleted."""
    existing = get_member(conn, member_id)

    children = get_children(existing.id, get_all_members(conn))
    if children:
        raise ValueError(
            f"Member {existing.name} still has {len(children)} member(s) below it."
        )

    with conn.cursor() as cur:
        cur.execute("DELETE FROM members WHERE id = %s", (_db_id(existing.id),))
        if cur.rowcount != 1:
            raise NotFoundError(f"Member {member_id} not found")


# ---------
# log store
# ---------


def insert_settlement_log(conn: Connection, log: SettlementLog) -> str:
    """persist one immutable snapshot. returns the generated log id."""
    data = log.model_dump(mode="json")
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO settlement_logs
                (created_at, total_casino_input, total_slot_input, total_losing_input,
                 selected_root_id, results, raw_inputs)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (
                log.timestamp,
                log.total_casino_input,
                log.total_slot_input,
                log.total_losing_input,
                log.selected_root_id,
                Jsonb(data["results"]),
                Jsonb(data["raw_inputs"]),
            ),
        )
        (log_id,) = cur.fetchone()
    return str(log_id)


def get_settlement_log(conn: Connection, log_id: Any) -> SettlementLog:
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT created_at, total_casino_input, total_slot_input, total_losing_input,
                   selected_root_id, results, raw_inputs
            FROM settlement_logs
            WHERE id = %s
            """,
            (_db_id(log_id, "Settlement log"),),
        )
        row = cur.fetchone()
    if row is None:
        raise NotFoundError(f"Settlement log {log_id} not found")

    return SettlementLog(
        timestamp=row[0],
        total_casino_input=row[1],
        total_slot_input=row[2],
        total_losing_input=row[3],
        selected_root_id=row[4],
        results=row[5],
        raw_inputs=row[6],
    )


def list_settlement_logs(conn: Connection, limit: int = 50) -> List[Dict[str, Any]]:
    """newest first; totals only, no result rows."""
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT id, created_at, total_casino_input, total_slot_input,
                   total_losing_input, selected_root_id
            FROM settlement_logs
            ORDER BY created_at DESC, id DESC
            LIMIT %s
            """,
            (limit,),
        )
        rows = cur.fetchall()

    return [
        {
            "log_id": str(r[0]),
            "timestamp": r[1].isoformat() if r[1] else None,
            "total_casino_input": r[2],
            "total_slot_input": r[3],
            "total_losing_input": r[4],
            "selected_root_id": r[5],
        }
        for r in rows
    ]
