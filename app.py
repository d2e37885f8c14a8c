from decimal import Decimal
from typing import Optional, List, Dict, Any

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import BaseModel, Field

from config import setup_logging
from db.repositories import NotFoundError
from hierarchy import LineageDepthError, get_descendants
from member_db import (
    create_member_db,
    delete_member_db,
    get_member_db,
    list_members_db,
    update_member_db,
)
from models import Amounts, CommissionEntry, LeafInput, Member, SettlementLog
from settlement_db import (
    list_settlement_logs_db,
    load_settlement_log_db,
    run_settlement_db,
)
from settlement_engine import summarize_results


setup_logging()

app = FastAPI(title="Commission Settlement", version="0.1.0")

# CORS middleware to allow frontend to call the API
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------
# pydantic models (requests)
# ---------

class MemberCreateRequest(BaseModel):
    name: str = Field(..., description="Display name (nickname)")
    parent_id: Optional[str] = Field(None, description="Parent member id; omit for a top-level member")
    casino_rate: Decimal = Field(Decimal("0"), ge=0, le=100)
    slot_rate: Decimal = Field(Decimal("0"), ge=0, le=100)
    losing_rate: Decimal = Field(Decimal("0"), ge=0, le=100)
    login_id: Optional[str] = None
    member_name: Optional[str] = None
    memo: Optional[str] = None

class MemberUpdateRequest(BaseModel):
    name: Optional[str] = None
    parent_id: Optional[str] = None
    casino_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    slot_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    losing_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    login_id: Optional[str] = None
    member_name: Optional[str] = None
    memo: Optional[str] = None

class AmountsRequest(BaseModel):
    casino: Decimal = Field(Decimal("0"), ge=0, description="Casino fee already paid to the performer")
    slot: Decimal = Field(Decimal("0"), ge=0, description="Slot fee already paid to the performer")
    losing: Decimal = Field(Decimal("0"), description="Raw losing amount")

class LeafInputRequest(BaseModel):
    performer_id: str
    amounts: AmountsRequest = Field(default_factory=AmountsRequest)

class SettlementCalculateRequest(BaseModel):
    inputs: List[LeafInputRequest]
    selected_root_id: Optional[str] = Field(None, description="Top-level member the inputs were entered under")
    save: bool = Field(True, description="Persist the run as a settlement log")


# ---------
# helpers
# ---------

def _fmt(v: Decimal) -> str:
    return f"{v:.6f}"


def _member_out(m: Member) -> Dict[str, Any]:
    data = m.model_dump()
    for key in ("casino_rate", "slot_rate", "losing_rate"):
        data[key] = str(data[key])
    return data


def _entry_out(e: CommissionEntry) -> Dict[str, Any]:
    data = e.model_dump()
    data["amount"] = _fmt(e.amount)
    return data


def _summary_out(summary: Dict[str, Any]) -> Dict[str, Any]:
    users = []
    for rec in summary["users"].values():
        users.append(
            {
                "user_id": rec["user_id"],
                "user_name": rec["user_name"],
                "casino": _fmt(rec["casino"]),
                "slot": _fmt(rec["slot"]),
                "losing": _fmt(rec["losing"]),
                "total": _fmt(rec["total"]),
                "by_performer": [
                    {
                        "from_user_id": from_id,
                        "from_user_name": sub["from_user_name"],
                        "casino": _fmt(sub["casino"]),
                        "slot": _fmt(sub["slot"]),
                        "losing": _fmt(sub["losing"]),
                        "breakdowns": sub["breakdowns"],
                    }
                    for from_id, sub in rec["by_performer"].items()
                ],
            }
        )
    return {"users": users, "total": _fmt(summary["total"])}


def _log_out(log: SettlementLog, log_id: Optional[str]) -> Dict[str, Any]:
    return {
        "log_id": log_id,
        "timestamp": log.timestamp.isoformat(),
        "total_casino_input": _fmt(log.total_casino_input),
        "total_slot_input": _fmt(log.total_slot_input),
        "total_losing_input": _fmt(log.total_losing_input),
        "selected_root_id": log.selected_root_id,
        "raw_inputs": [
            {
                "performer_id": leaf.performer_id,
                "amounts": {k: str(v) for k, v in leaf.amounts.model_dump().items()},
            }
            for leaf in log.raw_inputs
        ],
        "results": [_entry_out(e) for e in log.results],
        "summary": _summary_out(summarize_results(log.results)),
    }


# ---------
# members
# ---------


@app.get("/api/members")
def members_list():
    try:
        members = list_members_db()
    except Exception:
        logger.exception("failed to load members")
        raise HTTPException(status_code=500, detail="Internal server error")
    return {"members": [_member_out(m) for m in members]}


@app.get("/api/members/{member_id}")
def members_get(member_id: str):
    try:
        member = get_member_db(member_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception:
        logger.exception(f"failed to load member {member_id}")
        raise HTTPException(status_code=500, detail="Internal server error")
    return _member_out(member)


@app.post("/api/members")
def members_create(payload: MemberCreateRequest):
    """
    create a member under parent_id.
    level comes from the parent; rates above the parent's are rejected with 400.
    """
    try:
        member = create_member_db(payload.model_dump())
    except ValueError as e:
        # business rule violations (unknown parent, rate above parent, lowest level, ...)
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception("failed to create member")
        raise HTTPException(status_code=500, detail="Internal server error")
    return _member_out(member)


@app.patch("/api/members/{member_id}")
def members_update(member_id: str, payload: MemberUpdateRequest):
    try:
        member = update_member_db(member_id, payload.model_dump(exclude_unset=True))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception(f"failed to update member {member_id}")
        raise HTTPException(status_code=500, detail="Internal server error")
    return _member_out(member)


@app.delete("/api/members/{member_id}")
def members_delete(member_id: str):
    try:
        delete_member_db(member_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception(f"failed to delete member {member_id}")
        raise HTTPException(status_code=500, detail="Internal server error")
    return {"status": "deleted", "member_id": member_id}


@app.get("/api/members/{member_id}/tree")
def members_tree(member_id: str):
    """
    flattened subtree under member_id, depth-first, root at depth 0.

    {"root_id": "1", "members": [{"depth": 0, ...}, {"depth": 1, ...}]}
    """
    try:
        members = list_members_db()
    except Exception:
        logger.exception("failed to load members")
        raise HTTPException(status_code=500, detail="Internal server error")

    flattened = get_descendants(member_id, members)
    if not flattened:
        raise HTTPException(status_code=404, detail=f"Member {member_id} not found")

    return {
        "root_id": member_id,
        "members": [{**_member_out(m), "depth": depth} for m, depth in flattened],
    }


# ---------
# settlement
# ---------


@app.post("/api/settlement/calculate")
def settlement_calculate(payload: SettlementCalculateRequest):
    """
    compute commissions for a batch of performer inputs against a fresh
    member snapshot, and (by default) save the run as a settlement log.
    """
    inputs = [
        LeafInput(
            performer_id=i.performer_id,
            amounts=Amounts(**i.amounts.model_dump()),
        )
        for i in payload.inputs
    ]

    try:
        result = run_settlement_db(
            inputs,
            selected_root_id=payload.selected_root_id,
            save=payload.save,
        )
    except LineageDepthError as e:
        logger.error(str(e))
        raise HTTPException(status_code=500, detail="Member tree is malformed (parent links form a cycle)")
    except Exception:
        logger.exception("settlement run failed")
        raise HTTPException(status_code=500, detail="Internal server error")

    return _log_out(result["log"], result["log_id"])


@app.get("/api/settlement/logs")
def settlement_logs(
    limit: int = Query(50, ge=1, le=500, description="Max number of logs to return"),
):
    try:
        logs = list_settlement_logs_db(limit=limit)
    except Exception:
        logger.exception("failed to list settlement logs")
        raise HTTPException(status_code=500, detail="Internal server error")

    return {
        "logs": [
            {
                **log,
                "total_casino_input": _fmt(log["total_casino_input"]),
                "total_slot_input": _fmt(log["total_slot_input"]),
                "total_losing_input": _fmt(log["total_losing_input"]),
            }
            for log in logs
        ]
    }


@app.get("/api/settlement/logs/{log_id}")
def settlement_log_get(log_id: str):
    """reload a saved run, including the raw inputs that produced it."""
    try:
        log = load_settlement_log_db(log_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception:
        logger.exception(f"failed to load settlement log {log_id}")
        raise HTTPException(status_code=500, detail="Internal server error")
    return _log_out(log, log_id)
