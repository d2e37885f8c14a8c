from typing import Dict, Any, List

from loguru import logger

from db.db import get_conn
from db.repositories import (
    create_member,
    delete_member,
    get_all_members,
    get_member,
    update_member,
)
from models import Member


def list_members_db() -> List[Member]:
    with get_conn() as conn:
        return get_all_members(conn)


def get_member_db(member_id: str) -> Member:
    with get_conn() as conn:
        return get_member(conn, member_id)


def create_member_db(fields: Dict[str, Any]) -> Member:
    """
    DB-backed member creation.

    rules (checked against the current tree, in the same transaction):
      - parent must exist and not be at the lowest level
      - rates cannot exceed the parent's rates
    """
    with get_conn() as conn:
        try:
            member = create_member(conn, fields)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
    logger.info(f"member {member.id} ({member.name}) created under {member.parent_id}")
    return member


def update_member_db(member_id: str, updates: Dict[str, Any]) -> Member:
    """
    partial update; re-parenting is rejected if it would create a cycle.
    """
    with get_conn() as conn:
        try:
            member = update_member(conn, member_id, updates)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
    logger.info(f"member {member.id} updated")
    return member


def delete_member_db(member_id: str) -> None:
    with get_conn() as conn:
        try:
            delete_member(conn, member_id)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
    logger.info(f"member {member_id} deleted")
