# =====================================================
# app.py
# =====================================================
import os

# Force unbuffered output (container logs in real time)
os.environ["PYTHONUNBUFFERED"] = "1"

from fastapi import FastAPI, Query, Request, Depends, APIRouter
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

# Local imports
import config
from logging_setup import logger, capture_exception
from db import get_session, get_async_session, init_db, test_connection
from errors import ConfigurationError, RaffleError
from schemas import (
    QuizSubmitRequest,
    SelectWinnerRequest,
    TicketMintRequest,
    ValidateTransactionRequest,
)
from services import payout, quiz, raffle, tickets
from services.ledger import LedgerVerifier, build_ledger_verifier
from tasks import start_background_tasks, stop_background_tasks
from tasks.notifier import alert_payout_failures
from utils.cache import ResponseCache
from utils.questions_loader import load_weekly_questions
from utils.security import require_admin


# -------------------------------------------------
# Initialize FastAPI + routers
# -------------------------------------------------
app = FastAPI(title="RaffleCraft Engine")
app.state.cache = ResponseCache(ttl=config.CACHE_TTL_SECONDS)
app.state.ledger_verifier = None

router = APIRouter(prefix="/raffle", tags=["raffle"])
admin_router = APIRouter(
    prefix="/raffle/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)


def ok(data) -> dict:
    return {"success": True, "data": data}


# -------------------------------------------------
# Dependencies
# -------------------------------------------------
def get_cache(request: Request) -> ResponseCache:
    return request.app.state.cache


def get_ledger_verifier(request: Request) -> LedgerVerifier:
    verifier = request.app.state.ledger_verifier
    if verifier is None:
        verifier = build_ledger_verifier()
        request.app.state.ledger_verifier = verifier
    return verifier


def get_prize_sender() -> payout.PrizeSender | None:
    return payout.build_prize_sender()


# -------------------------------------------------
# Error envelopes
# -------------------------------------------------
@app.exception_handler(RaffleError)
async def raffle_error_handler(request: Request, exc: RaffleError):
    if exc.http_status >= 500:
        logger.warning(f"⚠️ {request.url.path} → {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": "validation_error",
            "message": "Invalid request",
            "retryable": False,
            "details": {"errors": jsonable_encoder(exc.errors())},
        },
    )


# -------------------------------------------------
# Root route
# -------------------------------------------------
@app.get("/")
@app.head("/")
async def root():
    return {
        "status": "ok",
        "message": "RaffleCraft engine is running ✅",
        "health": "Check /health for database status",
    }


# -------------------------------------------------
# Startup event
# -------------------------------------------------
@app.on_event("startup")
async def on_startup():
    logger.info("🚀 Starting up RaffleCraft engine...")

    if config.AUTO_CREATE_TABLES:
        await init_db()

    try:
        async with get_async_session() as session:
            if config.QUIZ_QUESTIONS_PATH:
                await load_weekly_questions(session, config.QUIZ_QUESTIONS_PATH)
            current = await raffle.ensure_next_raffle_exists(session)
            logger.info(f"🎟️ Open raffle: week {current.week_number}")
    except Exception as e:
        logger.exception(f"❌ Startup raffle bootstrap failed: {e}")
        capture_exception(e)

    if config.BACKGROUND_TASKS:
        await start_background_tasks()


# -------------------------------------------------
# Shutdown event
# -------------------------------------------------
@app.on_event("shutdown")
async def on_shutdown():
    try:
        await stop_background_tasks()
    except Exception as e:
        logger.warning(f"⚠️ Error while shutting down: {e}")


# -------------------------------------------------
# Health check endpoint
# -------------------------------------------------
@app.get("/health")
@app.head("/health")
async def health_check(session: AsyncSession = Depends(get_session)):
    db_ok = await test_connection(session)
    return JSONResponse(
        status_code=200 if db_ok else 503,
        content={"status": "ok" if db_ok else "degraded", "database": db_ok},
    )


# =====================================================
# 🎯 QUIZ
# =====================================================
@router.get("/current-quiz")
async def current_quiz(
    session: AsyncSession = Depends(get_session),
    cache: ResponseCache = Depends(get_cache),
):
    data = await cache.get_or_load(("current_quiz",), lambda: quiz.get_current_quiz(session))
    # Countdown is never served from cache
    return ok(quiz.with_time_remaining(data))


@router.post("/quiz/submit")
async def submit_quiz(
    body: QuizSubmitRequest,
    session: AsyncSession = Depends(get_session),
    cache: ResponseCache = Depends(get_cache),
):
    result = await quiz.submit_answer(
        session,
        body.user_address,
        body.week_number,
        body.quiz_question_id,
        body.user_answer,
        time_taken_seconds=body.time_taken_seconds,
    )
    cache.invalidate("stats")
    return ok(result)


@router.get("/user/{address}/quiz-stats")
async def user_quiz_stats(address: str, session: AsyncSession = Depends(get_session)):
    return ok(await quiz.get_user_quiz_stats(session, address))


@router.get("/user/{address}/raffle-stats")
async def user_raffle_stats(address: str, session: AsyncSession = Depends(get_session)):
    return ok(await tickets.get_user_raffle_stats(session, address))


# =====================================================
# 🎟️ TICKETS
# =====================================================
@router.post("/tickets/mint", status_code=201)
async def mint_ticket(
    body: TicketMintRequest,
    session: AsyncSession = Depends(get_session),
    verifier: LedgerVerifier = Depends(get_ledger_verifier),
    cache: ResponseCache = Depends(get_cache),
):
    result = await tickets.mint_ticket(
        session,
        verifier,
        body.user_address,
        body.week_number,
        body.transaction_hash,
        body.amount_paid,
    )
    cache.invalidate("current_quiz", "stats")
    return ok(result)


@router.post("/validate-transaction")
async def validate_transaction(
    body: ValidateTransactionRequest,
    session: AsyncSession = Depends(get_session),
    verifier: LedgerVerifier = Depends(get_ledger_verifier),
):
    details = await tickets.precheck_payment(
        session, verifier, body.user_address, body.transaction_hash, body.expected_amount
    )
    return ok({"valid": True, "details": details.to_dict()})


@router.get("/user/{address}")
async def user_overview(
    address: str,
    week: int | None = Query(default=None, ge=1),
    session: AsyncSession = Depends(get_session),
):
    return ok(await tickets.get_user_overview(session, address, week))


# =====================================================
# 📜 HISTORY
# =====================================================
@router.get("/history")
async def history(
    kind: str = Query(default="raffles", pattern="^(raffles|winners)$"),
    limit: int = Query(default=10, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
):
    return ok(await raffle.get_history(session, kind=kind, limit=limit))


# =====================================================
# 🛠️ ADMIN
# =====================================================
@admin_router.post("/process-raffles")
async def admin_process_raffles(
    session: AsyncSession = Depends(get_session),
    sender: payout.PrizeSender | None = Depends(get_prize_sender),
    cache: ResponseCache = Depends(get_cache),
):
    outcome = await raffle.process_due_raffles(session, prize_sender=sender)
    cache.invalidate()
    await alert_payout_failures(outcome["payout_failures"])
    return ok(outcome)


@admin_router.post("/select-winner")
async def admin_select_winner(
    body: SelectWinnerRequest,
    session: AsyncSession = Depends(get_session),
    cache: ResponseCache = Depends(get_cache),
):
    winner = await raffle.select_winner_manually(session, body.week_number, body.ticket_id)
    cache.invalidate()
    return ok(winner)


@admin_router.post("/distribute-prize/{week_number}")
async def admin_distribute_prize(
    week_number: int,
    session: AsyncSession = Depends(get_session),
    sender: payout.PrizeSender | None = Depends(get_prize_sender),
    cache: ResponseCache = Depends(get_cache),
):
    if sender is None:
        raise ConfigurationError("PAYOUT_SIGNER_URL is not configured")
    result = await payout.distribute_prize(session, week_number, sender)
    cache.invalidate("stats")
    return ok(result)


@admin_router.get("/stats")
async def admin_stats(
    session: AsyncSession = Depends(get_session),
    cache: ResponseCache = Depends(get_cache),
):
    data = await cache.get_or_load(("stats",), lambda: raffle.get_raffle_stats(session))
    return ok(data)


app.include_router(router)
app.include_router(admin_router)
