# admin.py
import re
import sqlite3
from typing import Callable, Optional

from fastapi import APIRouter, HTTPException, Request

from .errors import NoScores, PotError
from .ledger import PotLedger
from .models import MarkPaidIn, PaymentsPageOut, pot_out
from .payout import PayoutOrchestrator
from .sessions import consteq
from .store import fetch_payments, fetch_top_scores

DAY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def http_error(e: PotError) -> HTTPException:
    headers = {"Retry-After": "5"} if e.retryable else None
    return HTTPException(status_code=e.status_code, detail=str(e), headers=headers)


def check_day(day: str) -> str:
    day = (day or "").strip()
    if not DAY_RE.match(day):
        raise HTTPException(status_code=400, detail="day must be YYYY-MM-DD")
    return day


def create_admin_router(
    db_func: Callable[[], sqlite3.Connection],
    admin_token: str,
    ledger: PotLedger,
    payout: PayoutOrchestrator,
) -> APIRouter:
    router = APIRouter()

    def require_admin(req: Request) -> None:
        token = (req.headers.get("x-admin-token") or "").strip()
        if not token or not consteq(token, admin_token):
            raise HTTPException(status_code=401, detail="Unauthorised.")

    @router.get("/day/{day_key}")
    def admin_day(day_key: str, req: Request):
        """Leader, pot, computed prizes and the recorded settlement for a UTC day."""
        require_admin(req)
        day = check_day(day_key)

        con = db_func()
        try:
            # full address: the operator may have to pay it by hand
            leaders = fetch_top_scores(con, day, limit=1, shorten=False)
        finally:
            con.close()

        record = payout.record(day)
        return {
            "day_key": day,
            "leader": leaders[0] if leaders else None,
            "pot": pot_out(ledger.pot_for(day)).model_dump(),
            "payout_record": record.to_dict() if record else None,
        }

    @router.post("/payout/{day_key}")
    def admin_settle(day_key: str, req: Request):
        require_admin(req)
        day = check_day(day_key)
        try:
            return payout.settle(day).to_dict()
        except NoScores as e:
            # nothing to settle is an outcome, not a failure
            return {"dayKey": day, "status": "no_scores", "detail": str(e)}
        except PotError as e:
            raise http_error(e)

    @router.patch("/payout/{day_key}/mark-paid")
    def admin_mark_paid(day_key: str, req: Request, data: Optional[MarkPaidIn] = None):
        require_admin(req)
        day = check_day(day_key)
        try:
            payout.mark_paid_manually(day, data.notes if data else None)
        except PotError as e:
            raise http_error(e)
        return {"success": True}

    @router.get("/payments", response_model=PaymentsPageOut)
    def admin_payments(req: Request, limit: int = 50, page: int = 1):
        require_admin(req)
        limit = max(1, min(int(limit), 200))
        page = max(int(page), 1)
        con = db_func()
        try:
            rows = fetch_payments(con, limit=limit, page=page)
        finally:
            con.close()
        return PaymentsPageOut(page=page, limit=limit, payments=rows)

    return router
