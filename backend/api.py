"""
ProphetX API - Daily AI Oracle Prediction Market

Main API endpoints:
- /market/* - Daily markets, rationales and admin transitions
- /balance, /deposit, /withdraw - Simulation-money balances
- /bet, /claim, /positions - Betting and payouts
- /stats, /leaderboard, /referral/* - Points and referrals
- /chat - Ask the oracle about the current market

SECURITY:
- CORS restricted to allowed origins
- Admin authentication (X-Admin-Key) for market creation and transitions
- Input length limits on free text
"""

import os
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query, Header, Depends
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator

from agents.prophet_chat import ProphetChat, get_prophet_chat, MAX_QUESTION_LENGTH
from market.errors import MarketError, LimitExceeded
from market.models import MarketStatus, AssetType, Direction, Side, normalize_user
from scheduler import get_scheduler, setup_scheduler, shutdown_scheduler
from service import ProphetService, get_prophet_service

load_dotenv()

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("ProphetX-API")

# ==================== SECURITY CONFIG ====================

ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    os.getenv("FRONTEND_URL", "http://localhost:3000"),
]

# Allow all origins if CORS_ALLOW_ALL is set (for development/testing)
if os.getenv("CORS_ALLOW_ALL", "").lower() == "true":
    ALLOWED_ORIGINS = ["*"]

# Admin API key for protected endpoints
ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "prophetx-admin-key-change-in-prod")

# Background tasks can be disabled for one-off processes
SCHEDULER_ENABLED = os.getenv("PROPHET_SCHEDULER_ENABLED", "true").lower() == "true"

MAX_ADDRESS_LENGTH = 100


def verify_admin_key(x_admin_key: str = Header(None)) -> bool:
    """Verify admin API key for protected endpoints."""
    if not x_admin_key or x_admin_key != ADMIN_API_KEY:
        raise HTTPException(
            status_code=403,
            detail="Invalid or missing admin API key"
        )
    return True


def http_error(e: MarketError) -> HTTPException:
    """Translate a market rejection into an HTTP error with its status code."""
    if isinstance(e, LimitExceeded) and e.current_balance is not None:
        return HTTPException(
            status_code=e.status_code,
            detail={"message": e.message, "current_balance": str(e.current_balance)}
        )
    return HTTPException(status_code=e.status_code, detail=e.message)


# ==================== LIFESPAN (Startup/Shutdown) ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger.info("Starting ProphetX API...")

    if SCHEDULER_ENABLED:
        service = get_prophet_service()
        await setup_scheduler(sweep_interval_seconds=service.config.sweep_interval_seconds)
        logger.info("Background scheduler started")

    yield

    logger.info("Shutting down ProphetX API...")
    if SCHEDULER_ENABLED:
        await shutdown_scheduler()
        logger.info("Background scheduler stopped")


# ==================== FASTAPI APP ====================

app = FastAPI(
    title="ProphetX API",
    description="Daily AI oracle prediction market",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Admin-Key"],
)


# ==================== REQUEST MODELS (with validation) ====================

class UserRequest(BaseModel):
    user_address: str = Field(..., min_length=1, max_length=MAX_ADDRESS_LENGTH)

    @field_validator('user_address')
    @classmethod
    def validate_address(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("User address cannot be empty")
        return v.strip()


class AmountRequest(UserRequest):
    amount: Decimal = Field(..., gt=0)


class BetRequest(AmountRequest):
    market_id: str = Field(..., min_length=1, max_length=100)
    side: str = Field(..., pattern="^(RIGHT|WRONG|right|wrong)$")


class ClaimRequest(UserRequest):
    market_id: str = Field(..., min_length=1, max_length=100)


class ReferralRequest(UserRequest):
    referral_code: str = Field(..., min_length=1, max_length=32)


class ChatRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=MAX_QUESTION_LENGTH)
    market_id: Optional[str] = None

    @field_validator('question')
    @classmethod
    def validate_question(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Question cannot be empty")
        return v.strip()


class CreateMarketRequest(BaseModel):
    asset_type: AssetType
    asset_id: str = Field(..., min_length=1, max_length=100)
    asset_name: str = Field(..., min_length=1, max_length=100)
    asset_logo: Optional[str] = None
    direction: Direction
    threshold_bps: int = Field(..., gt=0, le=10000)
    start_time: datetime
    lock_time: datetime
    end_time: datetime


# ==================== HEALTH CHECK ====================

@app.get("/")
def read_root():
    return {
        "status": "online",
        "service": "ProphetX API",
        "version": "1.0.0",
        "features": [
            "Daily AI oracle markets",
            "Pari-mutuel RIGHT/WRONG betting",
            "Points, leaderboard and referrals",
            "Prophet chat",
        ]
    }


@app.get("/health")
def health_check():
    """Health check with the background task bookkeeping."""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "scheduler": get_scheduler().status(),
    }


# ==================== MARKET ENDPOINTS ====================

@app.get("/market/today")
def get_today_market(service: ProphetService = Depends(get_prophet_service)):
    """The current daily market with its rationale."""
    market = service.lifecycle.get_today_market()
    if not market:
        raise HTTPException(status_code=404, detail="No market available")

    rationale = service.lifecycle.get_rationale(market.id)
    return {
        "market": market.to_dict(),
        "rationale": rationale.to_dict() if rationale else None,
    }


@app.get("/market/list")
def list_markets(
    status: Optional[MarketStatus] = None,
    limit: int = Query(default=20, le=100),
    service: ProphetService = Depends(get_prophet_service),
):
    """List markets newest first, optionally filtered by status."""
    markets = service.lifecycle.list_markets(status)
    return {
        "markets": [m.to_dict() for m in markets[:limit]],
        "total": len(markets)
    }


@app.get("/market/{market_id}")
def get_market(market_id: str, service: ProphetService = Depends(get_prophet_service)):
    """Get single market details."""
    market = service.lifecycle.get_market(market_id)
    if not market:
        raise HTTPException(status_code=404, detail="Market not found")
    return {"market": market.to_dict()}


@app.get("/market/{market_id}/rationale")
def get_rationale(market_id: str, service: ProphetService = Depends(get_prophet_service)):
    rationale = service.lifecycle.get_rationale(market_id)
    if not rationale:
        raise HTTPException(status_code=404, detail="Rationale not found")
    return rationale.to_dict()


@app.post("/market/create")
def create_market(
    request: CreateMarketRequest,
    admin_verified: bool = Depends(verify_admin_key),
    service: ProphetService = Depends(get_prophet_service),
):
    """Create a market (admin only - requires X-Admin-Key header)."""
    try:
        market = service.lifecycle.create_market(
            asset_type=request.asset_type,
            asset_id=request.asset_id,
            asset_name=request.asset_name,
            asset_logo=request.asset_logo,
            direction=request.direction,
            threshold_bps=request.threshold_bps,
            start_time=request.start_time,
            lock_time=request.lock_time,
            end_time=request.end_time,
        )
    except MarketError as e:
        raise http_error(e)

    return {"success": True, "market": market.to_dict()}


@app.post("/market/daily")
def create_daily_market(
    admin_verified: bool = Depends(verify_admin_key),
    service: ProphetService = Depends(get_prophet_service),
):
    """Create a randomly drawn daily market now (admin only)."""
    try:
        market = service.lifecycle.create_daily_market()
    except MarketError as e:
        raise http_error(e)
    return {"success": True, "market": market.to_dict()}


@app.post("/market/{market_id}/lock")
def lock_market(
    market_id: str,
    admin_verified: bool = Depends(verify_admin_key),
    service: ProphetService = Depends(get_prophet_service),
):
    """Lock a market (admin only)."""
    try:
        market = service.lifecycle.lock(market_id)
    except MarketError as e:
        raise http_error(e)
    return {"success": True, "market": market.to_dict()}


@app.post("/market/{market_id}/settle")
def settle_market(
    market_id: str,
    admin_verified: bool = Depends(verify_admin_key),
    service: ProphetService = Depends(get_prophet_service),
):
    """Settle a market (admin only)."""
    try:
        market = service.lifecycle.settle(market_id)
    except MarketError as e:
        raise http_error(e)
    return {"success": True, "market": market.to_dict()}


@app.post("/market/{market_id}/refund")
def refund_market(
    market_id: str,
    admin_verified: bool = Depends(verify_admin_key),
    service: ProphetService = Depends(get_prophet_service),
):
    """Refund a market (admin only)."""
    try:
        market = service.lifecycle.refund(market_id)
    except MarketError as e:
        raise http_error(e)
    return {"success": True, "market": market.to_dict()}


# ==================== BALANCE ENDPOINTS ====================

@app.get("/balance/{user_address}")
def get_balance(user_address: str, service: ProphetService = Depends(get_prophet_service)):
    balance = service.ledger.get_balance(user_address)
    return {"user_address": normalize_user(user_address), "balance": str(balance)}


@app.post("/deposit")
def deposit(request: AmountRequest, service: ProphetService = Depends(get_prophet_service)):
    """Add simulation money, capped at the max balance."""
    try:
        balance = service.ledger.deposit(request.user_address, request.amount)
    except MarketError as e:
        raise http_error(e)
    return {"success": True, "balance": str(balance)}


@app.post("/withdraw")
def withdraw(request: AmountRequest, service: ProphetService = Depends(get_prophet_service)):
    try:
        balance = service.ledger.withdraw(request.user_address, request.amount)
    except MarketError as e:
        raise http_error(e)
    return {"success": True, "balance": str(balance)}


# ==================== BETTING ENDPOINTS ====================

@app.post("/bet")
def place_bet(request: BetRequest, service: ProphetService = Depends(get_prophet_service)):
    """Place a bet on RIGHT or WRONG."""
    try:
        bet = service.ledger.place_bet(
            market_uuid=request.market_id,
            user_address=request.user_address,
            side=Side(request.side.upper()),
            amount=request.amount,
        )
    except MarketError as e:
        raise http_error(e)

    market = service.lifecycle.get_market(request.market_id)
    return {
        "success": True,
        "bet": bet.to_dict(),
        "market": market.to_dict() if market else None,
        "balance": str(service.ledger.get_balance(request.user_address)),
    }


@app.get("/positions/{user_address}")
def get_positions(user_address: str, service: ProphetService = Depends(get_prophet_service)):
    return {"positions": service.ledger.get_positions(user_address)}


@app.post("/claim")
def claim(request: ClaimRequest, service: ProphetService = Depends(get_prophet_service)):
    """Claim winnings or refunds on a finished market."""
    try:
        result = service.claims.claim(request.market_id, request.user_address)
    except MarketError as e:
        raise http_error(e)
    return {"success": True, **result.to_dict()}


@app.get("/activity")
def recent_activity(service: ProphetService = Depends(get_prophet_service)):
    return service.ledger.recent_activity()


# ==================== STATS & REFERRALS ====================

@app.get("/stats/{user_address}")
def get_user_stats(user_address: str, service: ProphetService = Depends(get_prophet_service)):
    return service.stats.get_stats(user_address).to_dict()


@app.get("/leaderboard")
def get_leaderboard(
    limit: int = Query(default=10, le=100),
    service: ProphetService = Depends(get_prophet_service),
):
    """Get top users by points."""
    return {"leaderboard": service.stats.leaderboard(limit)}


@app.post("/referral/generate")
def generate_referral(request: UserRequest, service: ProphetService = Depends(get_prophet_service)):
    try:
        code = service.stats.generate_referral_code(request.user_address)
    except MarketError as e:
        raise http_error(e)
    return {"success": True, "referral_code": code}


@app.post("/referral/apply")
def apply_referral(request: ReferralRequest, service: ProphetService = Depends(get_prophet_service)):
    try:
        result = service.stats.apply_referral_code(request.user_address, request.referral_code)
    except MarketError as e:
        raise http_error(e)
    return {"success": True, **result}


# ==================== PROPHET CHAT ====================

@app.post("/chat")
def chat(
    request: ChatRequest,
    service: ProphetService = Depends(get_prophet_service),
    prophet_chat: ProphetChat = Depends(get_prophet_chat),
):
    """Ask the oracle about a market (the current one by default)."""
    if request.market_id:
        market = service.lifecycle.get_market(request.market_id)
    else:
        market = service.lifecycle.get_today_market()

    context = None
    if market:
        rationale = service.lifecycle.get_rationale(market.id)
        context = {
            "market": market.to_dict(),
            "rationale": rationale.bullets if rationale else [],
        }

    return {"response": prophet_chat.answer(request.question, context)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
