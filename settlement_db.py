from typing import Optional, Dict, Any, List

from loguru import logger
from psycopg import Connection

from config import get_settings
from db.db import get_conn
from db.repositories import (
    get_all_members,
    get_settlement_log,
    insert_settlement_log,
    list_settlement_logs,
)
from models import LeafInput, SettlementLog
from settlement_engine import build_settlement_log, compute_batch_commission


def run_settlement_db(
    inputs: List[LeafInput],
    selected_root_id: Optional[str] = None,
    save: bool = True,
) -> Dict[str, Any]:
    """
    DB-backed settlement run.

      - load the full member set fresh (never a cached snapshot)
      - compute the batch with the pure engine
      - optionally persist the snapshot to the log store

    returns {"log_id": str | None, "log": SettlementLog}
    """
    with get_conn() as conn:
        try:
            result = _run_settlement_in_tx(conn, inputs, selected_root_id, save)
            conn.commit()
            return result
        except Exception:
            conn.rollback()
            raise


def _run_settlement_in_tx(
    conn: Connection,
    inputs: List[LeafInput],
    selected_root_id: Optional[str],
    save: bool,
) -> Dict[str, Any]:
    settings = get_settings()

    # 1) fresh, complete member snapshot
    members = get_all_members(conn)

    # 2) pure computation
    results = compute_batch_commission(
        inputs,
        members,
        tolerance=settings.profit_tolerance,
        max_depth=settings.max_lineage_depth,
    )

    # 3) snapshot + persist
    log = build_settlement_log(inputs, results, selected_root_id)
    log_id = None
    if save:
        log_id = insert_settlement_log(conn, log)
        logger.info(
            f"settlement log {log_id} saved: {len(inputs)} input(s), {len(results)} entries"
        )
    else:
        logger.info(
            f"settlement computed without saving: {len(inputs)} input(s), {len(results)} entries"
        )

    return {"log_id": log_id, "log": log}


def load_settlement_log_db(log_id: str) -> SettlementLog:
    with get_conn() as conn:
        return get_settlement_log(conn, log_id)


def list_settlement_logs_db(limit: int = 50) -> List[Dict[str, Any]]:
    with get_conn() as conn:
        return list_settlement_logs(conn, limit=limit)
