from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .admin import check_day, create_admin_router, http_error
from .chains import BaseVerifier, ChainVerifier, SolanaVerifier
from .config import DISPLAY_PLACES, NETWORKS, Network, Settings, configure_logging, day_key, load_settings, now_unix
from .errors import PotError
from .ledger import PotLedger, WinnerSelector
from .models import (
    HistoryEntryOut,
    LeaderboardOut,
    NetworkInfoOut,
    PaymentInfoOut,
    PotOut,
    SessionOut,
    SubmitScoreIn,
    SubmitScoreOut,
    VerifyPaymentIn,
    VerifyPaymentOut,
    pot_out,
)
from .payments import PaymentDesk
from .payout import PayoutOrchestrator
from .prices import PriceOracle
from .scores import ScoreAdmission
from .sessions import SessionIssuer
from .store import ConnFactory, db_factory, fetch_top_scores, fetch_winner_history, init_db
from .transfers import Transfer, build_transfers

log = logging.getLogger(__name__)


# ---------------------------
# Wiring
# ---------------------------
@dataclass
class Services:
    settings: Settings
    db: ConnFactory
    oracle: PriceOracle
    issuer: SessionIssuer
    desk: PaymentDesk
    scores: ScoreAdmission
    ledger: PotLedger
    payout: PayoutOrchestrator
    clock: Callable[[], int] = now_unix


def build_verifiers(settings: Settings, clock: Callable[[], int] = now_unix) -> Dict[Network, ChainVerifier]:
    common = dict(
        tolerance=settings.price_tolerance,
        max_age_sec=settings.max_tx_age_sec,
        timeout_sec=settings.rpc_timeout_sec,
        clock=clock,
    )
    return {
        Network.SOLANA: SolanaVerifier(settings.house_wallet_solana, rpc_url=settings.solana_rpc_url, **common),
        Network.BASE: BaseVerifier(settings.house_wallet_base, rpc_url=settings.base_rpc_url, **common),
    }


def build_services(
    settings: Settings,
    verifiers: Optional[Dict[Network, ChainVerifier]] = None,
    transfers: Optional[Dict[Network, Transfer]] = None,
    oracle: Optional[PriceOracle] = None,
    clock: Callable[[], int] = now_unix,
) -> Services:
    db = db_factory(settings.db_path)
    con = db()
    try:
        init_db(con)
    finally:
        con.close()

    oracle = oracle or PriceOracle(ttl_sec=settings.price_ttl_sec, timeout_sec=settings.price_timeout_sec)
    verifiers = verifiers if verifiers is not None else build_verifiers(settings, clock)
    transfers = transfers if transfers is not None else build_transfers(settings)

    issuer = SessionIssuer(db, settings.session_secret, settings.session_ttl_sec, settings.entry_fee_usd, clock)
    desk = PaymentDesk(db, verifiers, oracle, issuer, settings.entry_fee_usd, settings.claim_ttl_sec, clock)
    ledger = PotLedger(db)
    payout = PayoutOrchestrator(db, WinnerSelector(db), ledger, transfers, settings.leg_lock_sec, clock)
    log.info("[startup] automated payouts: %s", sorted(n.value for n in transfers) or "none (manual)")
    return Services(
        settings=settings,
        db=db,
        oracle=oracle,
        issuer=issuer,
        desk=desk,
        scores=ScoreAdmission(db, issuer, clock),
        ledger=ledger,
        payout=payout,
        clock=clock,
    )


# ---------------------------
# App
# ---------------------------
def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    if services is not None:
        settings = services.settings
    if settings is None:
        settings = load_settings()
        configure_logging(settings.log_level)
    svc = services or build_services(settings)

    app = FastAPI(title="arcadepot")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.allowed_origins),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    def health():
        return {"status": "ok", "ts": now_unix()}

    @app.get("/api/payment/info", response_model=PaymentInfoOut)
    def payment_info():
        """Current house addresses and native amounts for the entry fee."""
        try:
            networks = {}
            for net in NETWORKS:
                quote = svc.oracle.payment_amount(net, settings.entry_fee_usd)
                networks[net.value] = NetworkInfoOut(
                    address=settings.house_wallet(net),
                    amount=f"{quote.amount:.{DISPLAY_PLACES[net]}f}",
                    price=quote.price,
                )
        except PotError as e:
            raise http_error(e)
        return PaymentInfoOut(entry_fee_usd=settings.entry_fee_usd, networks=networks)

    @app.post("/api/payment/verify", response_model=VerifyPaymentOut)
    def verify_payment(data: VerifyPaymentIn):
        try:
            token = svc.desk.verify_payment(data.chain, data.tx_signature, data.wallet_address)
        except PotError as e:
            raise http_error(e)
        return VerifyPaymentOut(token=token, expires_in=settings.session_ttl_sec)

    @app.get("/api/payment/session/{token}", response_model=SessionOut)
    def validate_session(token: str):
        status = svc.issuer.validate(token)
        return SessionOut(valid=status.valid, reason=status.reason)

    @app.post("/api/score/submit", response_model=SubmitScoreOut)
    def submit_score(data: SubmitScoreIn):
        if not data.token:
            raise HTTPException(status_code=400, detail="Missing required fields.")
        try:
            admitted = svc.scores.admit(data.token, data.score, data.frames, data.game_mode, data.turbo_mode)
        except PotError as e:
            raise http_error(e)
        return SubmitScoreOut(success=True, rank=admitted.rank, day_key=admitted.day_key)

    @app.get("/api/pot/{day}", response_model=PotOut)
    def get_pot(day: str):
        return pot_out(svc.ledger.pot_for(check_day(day)))

    @app.get("/api/leaderboard", response_model=LeaderboardOut)
    def leaderboard():
        """Today's top 10 scores and prize pot."""
        today = day_key(svc.clock())
        con = svc.db()
        try:
            scores = fetch_top_scores(con, today, limit=10)
        finally:
            con.close()
        return LeaderboardOut(day_key=today, scores=scores, pot=pot_out(svc.ledger.pot_for(today)))

    @app.get("/api/leaderboard/history", response_model=List[HistoryEntryOut])
    def leaderboard_history():
        con = svc.db()
        try:
            return fetch_winner_history(con, limit=7)
        finally:
            con.close()

    app.include_router(
        create_admin_router(svc.db, settings.admin_token, svc.ledger, svc.payout),
        prefix="/api/admin",
    )
    return app


def main() -> None:
    import uvicorn

    port = int(os.getenv("PORT", "3001"))
    uvicorn.run("arcadepot.app:create_app", factory=True, host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
