"""FastAPI backend: markets, predictions, proposals, X linking and the monitor."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Iterator

import structlog
from fastapi import BackgroundTasks, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from crowdcast.ai.drafts import GeneratedDraft, generate_market_draft, normalize_category
from crowdcast.api.schemas import (
    AwardBadgeRequest,
    BadgeResponse,
    ConnectionResponse,
    ConvertProposalRequest,
    ConvertProposalResponse,
    CreateMarketRequest,
    CreatePredictionRequest,
    CreateProposalRequest,
    DraftRequest,
    ErrorResponse,
    HasVotedResponse,
    HealthResponse,
    LeaderboardEntry,
    MarketResponse,
    OAuthCompleteRequest,
    OAuthInitiateRequest,
    OAuthInitiateResponse,
    PredictionResponse,
    ResolveMarketRequest,
    ResolveMarketResponse,
    TrackingResponse,
    UserStatsResponse,
    VoteRequest,
    ms_from_datetime,
)
from crowdcast.config import Settings, get_settings
from crowdcast.errors import (
    CrowdcastError,
    DuplicateConnectionError,
    DuplicateVoteError,
    InvalidRequestError,
    NotFoundError,
)
from crowdcast.models import BadgeType, MarketDraft, MarketStatus, MonitoringStatus, Proposal, ProposalStatus
from crowdcast.models.market import DEFAULT_CATEGORY, DEFAULT_RESOLUTION_METHOD
from crowdcast.monitor.registration import register_market_tracking
from crowdcast.monitor.worker import MonitorWorker, SchedulerContext
from crowdcast.social.base import SocialAPIError
from crowdcast.storage import markets as market_store
from crowdcast.storage import proposals as proposal_store
from crowdcast.storage import social as social_store
from crowdcast.storage.db import get_connection, init_schema, now_ms
from crowdcast.storage.tracking import list_market_trackings, set_tracking_status

log = structlog.get_logger(__name__)

# Set by run_api() so lifespan can configure and start the monitor in the same process.
_run_with_monitor = False
_config_profile: str | None = None
_config_dir: Path | None = None

_STATUS_BY_ERROR: dict[type[CrowdcastError], int] = {
    NotFoundError: 404,
    InvalidRequestError: 400,
    DuplicateVoteError: 409,
    DuplicateConnectionError: 409,
}


def configure_app(app: FastAPI, settings: Settings) -> None:
    """Attach settings-derived collaborators to app.state."""
    from crowdcast.ai.provider import OpenAIDraftProvider
    from crowdcast.social.oauth import XOAuth
    from crowdcast.social.state_store import MemoryExpiringStore
    from crowdcast.social.x_client import XClient

    app.state.settings = settings
    app.state.db_path = settings.db_path
    x_client = XClient(
        base_url=settings.x_api_base,
        timeout=settings.x_request_timeout_sec,
        max_results=settings.max_posts_per_fetch,
    )
    app.state.social = x_client
    app.state.oauth = None
    if settings.x_client_id and settings.x_client_secret:
        app.state.oauth = XOAuth(
            client_id=settings.x_client_id,
            client_secret=settings.x_client_secret,
            authorize_url=settings.x_authorize_url,
            token_url=settings.x_token_url,
            redirect_uri=settings.x_redirect_uri,
            scopes=settings.x_scopes,
            store=MemoryExpiringStore(),
            x_client=x_client,
            state_ttl_sec=settings.oauth_state_ttl_sec,
            timeout=settings.x_request_timeout_sec,
        )
    app.state.draft_provider = None
    if settings.ai_api_key:
        app.state.draft_provider = OpenAIDraftProvider(
            api_key=settings.ai_api_key,
            model=settings.ai_model,
            base_url=settings.ai_base_url,
            temperature=settings.ai_temperature,
            default_end_days=settings.default_end_days,
        )
    app.state.scheduler = SchedulerContext(
        poll_interval_sec=settings.poll_interval_sec,
        rate_limit_backoff_sec=settings.rate_limit_backoff_sec,
    )
    app.state.worker = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "settings", None) is None:
        configure_app(app, get_settings(_config_profile, _config_dir))
    settings: Settings = app.state.settings
    conn = get_connection(app.state.db_path)
    try:
        init_schema(conn)
    finally:
        conn.close()

    monitor_task = None
    if _run_with_monitor and settings.monitor_enabled:
        worker = MonitorWorker(
            db_path=app.state.db_path,
            reader=app.state.social,
            ctx=_scheduler(app),
            run_on_start=settings.monitor_run_on_start,
        )
        app.state.worker = worker
        monitor_task = asyncio.create_task(worker.run())

    yield

    if monitor_task is not None:
        app.state.worker.stop()
        await monitor_task
    social = getattr(app.state, "social", None)
    if hasattr(social, "aclose"):
        await social.aclose()


app = FastAPI(title="crowdcast API", version="0.1.0", lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])


def _error_json(code: str, message: str, status_code: int = 404) -> JSONResponse:
    """Return consistent error JSON: { detail, code }."""
    return JSONResponse(
        status_code=status_code,
        content={"detail": message, "code": code},
    )


@app.exception_handler(CrowdcastError)
async def _domain_error(request: Request, exc: CrowdcastError) -> JSONResponse:
    status = next((s for cls, s in _STATUS_BY_ERROR.items() if isinstance(exc, cls)), 400)
    return _error_json(exc.code, exc.message, status)


@app.exception_handler(SocialAPIError)
async def _social_error(request: Request, exc: SocialAPIError) -> JSONResponse:
    log.warning("x_api_error", path=request.url.path, error=str(exc))
    return _error_json("x_api_error", str(exc), 502)


def get_db(request: Request) -> Iterator[Any]:
    conn = get_connection(request.app.state.db_path)
    try:
        yield conn
    finally:
        conn.close()


def _require_market(conn: Any, market_id: str):
    market = market_store.get_market(conn, market_id)
    if market is None:
        raise NotFoundError(f"Market not found: {market_id}")
    return market


_NOT_FOUND = {404: {"description": "Not found", "model": ErrorResponse}}


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="ok")


# --- AI drafts ---


@app.post("/ai/drafts", response_model=GeneratedDraft)
def ai_draft(body: DraftRequest, request: Request) -> GeneratedDraft:
    """Reformulate a casual idea into a market draft. Falls back to a local draft on provider failure."""
    settings = getattr(request.app.state, "settings", None)
    days = settings.default_end_days if settings else 7
    return generate_market_draft(body.user_input, request.app.state.draft_provider, default_days=days)


# --- Markets ---


async def _register_tracking_task(db_path: str, market_id: str, resolver: Any) -> None:
    conn = get_connection(db_path)
    try:
        market = market_store.get_market(conn, market_id)
        if market is not None:
            await register_market_tracking(conn, market, resolver)
    except SocialAPIError as e:
        log.warning("tracking_registration_failed", market_id=market_id, error=str(e))
    finally:
        conn.close()


@app.get("/markets", response_model=list[MarketResponse])
def markets_list(
    status: MarketStatus | None = Query(None),
    conn: Any = Depends(get_db),
) -> list[MarketResponse]:
    return [MarketResponse.from_market(m) for m in market_store.list_markets(conn, status=status)]


@app.get("/markets/{market_id}", response_model=MarketResponse, responses=_NOT_FOUND)
def market_detail(market_id: str, conn: Any = Depends(get_db)) -> MarketResponse:
    return MarketResponse.from_market(_require_market(conn, market_id))


@app.post("/markets", response_model=MarketResponse, status_code=201)
def market_create(
    body: CreateMarketRequest,
    request: Request,
    background: BackgroundTasks,
    conn: Any = Depends(get_db),
) -> MarketResponse:
    """Create a market. Titles mentioning @accounts are registered for X auto-resolution in the background."""
    end_date = ms_from_datetime(body.end_date)
    if end_date <= now_ms():
        raise InvalidRequestError("end_date must be in the future")
    draft = MarketDraft(
        creator_wallet=body.creator_wallet,
        title=body.title,
        description=body.description,
        category=normalize_category(body.category) if body.category else DEFAULT_CATEGORY,
        tags=body.tags,
        end_date=end_date,
        tx_hash=body.tx_hash,
        resolution_method=body.resolution_method or DEFAULT_RESOLUTION_METHOD,
    )
    market = market_store.create_market(conn, draft, body.options)
    social_store.award_badge(conn, body.creator_wallet, BadgeType.MARKET_CREATOR)
    resolver = getattr(request.app.state, "social", None)
    if resolver is not None:
        background.add_task(_register_tracking_task, request.app.state.db_path, market.id, resolver)
    log.info("market_created", market_id=market.id, options=len(market.options))
    return MarketResponse.from_market(market)


@app.post("/markets/{market_id}/resolve", response_model=ResolveMarketResponse, responses=_NOT_FOUND)
def market_resolve(market_id: str, body: ResolveMarketRequest, conn: Any = Depends(get_db)) -> ResolveMarketResponse:
    """Manual resolution. Resolving an already-resolved market changes nothing."""
    changed = market_store.resolve_market(conn, market_id, body.winner_id)
    return ResolveMarketResponse(changed=changed, market=MarketResponse.from_market(_require_market(conn, market_id)))


@app.get("/markets/{market_id}/tracking", response_model=list[TrackingResponse], responses=_NOT_FOUND)
def market_tracking(market_id: str, conn: Any = Depends(get_db)) -> list[TrackingResponse]:
    _require_market(conn, market_id)
    return [TrackingResponse.from_record(r) for r in list_market_trackings(conn, market_id)]


@app.post("/tracking/{tracking_id}/pause", response_model=TrackingResponse, responses=_NOT_FOUND)
def tracking_pause(tracking_id: str, conn: Any = Depends(get_db)) -> TrackingResponse:
    return TrackingResponse.from_record(set_tracking_status(conn, tracking_id, MonitoringStatus.PAUSED))


@app.post("/tracking/{tracking_id}/resume", response_model=TrackingResponse, responses=_NOT_FOUND)
def tracking_resume(tracking_id: str, conn: Any = Depends(get_db)) -> TrackingResponse:
    return TrackingResponse.from_record(set_tracking_status(conn, tracking_id, MonitoringStatus.ACTIVE))


# --- Predictions, stats ---


@app.post("/predictions", response_model=PredictionResponse, status_code=201)
def prediction_create(body: CreatePredictionRequest, conn: Any = Depends(get_db)) -> PredictionResponse:
    p = market_store.create_prediction(
        conn, body.market_id, body.user_wallet, body.option_id, body.amount, tx_hash=body.tx_hash
    )
    return PredictionResponse(id=p.id, market_id=p.market_id, option_id=p.option_id, amount=p.amount)


@app.get("/predictions/{wallet}")
def predictions_for_wallet(wallet: str, conn: Any = Depends(get_db)) -> list[dict[str, Any]]:
    return market_store.list_user_predictions(conn, wallet)


@app.get("/stats/{wallet}", response_model=UserStatsResponse)
def user_stats(wallet: str, conn: Any = Depends(get_db)) -> UserStatsResponse:
    return UserStatsResponse(**market_store.get_user_stats(conn, wallet))


@app.get("/leaderboard", response_model=list[LeaderboardEntry])
def leaderboard(limit: int = Query(10, ge=1, le=100), conn: Any = Depends(get_db)) -> list[LeaderboardEntry]:
    return [LeaderboardEntry(**e) for e in market_store.get_leaderboard(conn, limit=limit)]


# --- Badges ---


@app.get("/badges/{wallet}", response_model=list[BadgeResponse])
def badges_list(wallet: str, conn: Any = Depends(get_db)) -> list[BadgeResponse]:
    return [BadgeResponse.from_badge(b) for b in social_store.list_badges(conn, wallet)]


@app.post("/badges", response_model=BadgeResponse)
def badge_award(body: AwardBadgeRequest, conn: Any = Depends(get_db)) -> BadgeResponse:
    return BadgeResponse.from_badge(social_store.award_badge(conn, body.user_wallet, body.badge_type, body.metadata))


# --- X account linking ---


def _oauth(request: Request):
    oauth = getattr(request.app.state, "oauth", None)
    if oauth is None:
        raise InvalidRequestError("X OAuth is not configured")
    return oauth


@app.post("/auth/x/initiate", response_model=OAuthInitiateResponse)
def x_oauth_initiate(body: OAuthInitiateRequest, request: Request) -> OAuthInitiateResponse:
    return OAuthInitiateResponse(**_oauth(request).initiate(body.wallet_address, body.redirect_uri))


@app.post("/auth/x/complete", response_model=ConnectionResponse)
async def x_oauth_complete(
    body: OAuthCompleteRequest, request: Request, conn: Any = Depends(get_db)
) -> ConnectionResponse:
    """Consume the OAuth state, link the account and award the x_verified badge."""
    connection = await _oauth(request).complete(body.state, body.code)
    stored = social_store.create_connection(conn, connection)
    social_store.award_badge(conn, stored.user_wallet, BadgeType.X_VERIFIED, stored.x_username)
    return ConnectionResponse.from_connection(stored)


@app.get("/auth/x/connection/{wallet}", response_model=ConnectionResponse | None)
def x_connection(wallet: str, conn: Any = Depends(get_db)) -> ConnectionResponse | None:
    c = social_store.get_connection_for(conn, wallet)
    return ConnectionResponse.from_connection(c) if c else None


@app.delete("/auth/x/connection/{wallet}")
def x_connection_delete(wallet: str, conn: Any = Depends(get_db)) -> dict[str, bool]:
    return {"success": True, "deleted": social_store.delete_connection(conn, wallet)}


# --- Proposals ---


def _require_proposal(conn: Any, proposal_id: str) -> Proposal:
    proposal = proposal_store.get_proposal(conn, proposal_id)
    if proposal is None:
        raise NotFoundError(f"Proposal not found: {proposal_id}")
    return proposal


@app.post("/proposals", response_model=Proposal, status_code=201)
def proposal_create(body: CreateProposalRequest, conn: Any = Depends(get_db)) -> Proposal:
    return proposal_store.create_proposal(
        conn,
        body.proposer_wallet,
        body.title,
        body.description,
        normalize_category(body.category) if body.category else DEFAULT_CATEGORY,
        body.tags,
    )


@app.get("/proposals", response_model=list[Proposal])
def proposals_list(status: str | None = Query(None), conn: Any = Depends(get_db)) -> list[Proposal]:
    """Unknown status values are ignored and all proposals are returned."""
    valid = {s.value for s in ProposalStatus}
    return proposal_store.list_proposals(conn, status if status in valid else None)


@app.get("/proposals/{proposal_id}", response_model=Proposal, responses=_NOT_FOUND)
def proposal_detail(proposal_id: str, conn: Any = Depends(get_db)) -> Proposal:
    return _require_proposal(conn, proposal_id)


@app.post(
    "/proposals/{proposal_id}/vote",
    response_model=Proposal,
    responses={409: {"description": "Already voted", "model": ErrorResponse}, **_NOT_FOUND},
)
def proposal_vote(proposal_id: str, body: VoteRequest, conn: Any = Depends(get_db)) -> Proposal:
    return proposal_store.vote_for_proposal(conn, proposal_id, body.voter_wallet)


@app.delete("/proposals/{proposal_id}/vote", response_model=Proposal, responses=_NOT_FOUND)
def proposal_unvote(proposal_id: str, body: VoteRequest, conn: Any = Depends(get_db)) -> Proposal:
    return proposal_store.unvote_for_proposal(conn, proposal_id, body.voter_wallet)


@app.get("/proposals/{proposal_id}/vote/{wallet}", response_model=HasVotedResponse)
def proposal_has_voted(proposal_id: str, wallet: str, conn: Any = Depends(get_db)) -> HasVotedResponse:
    return HasVotedResponse(has_voted=proposal_store.has_voted(conn, proposal_id, wallet))


@app.post("/proposals/{proposal_id}/convert", response_model=ConvertProposalResponse, responses=_NOT_FOUND)
def proposal_convert(
    proposal_id: str, body: ConvertProposalRequest, conn: Any = Depends(get_db)
) -> ConvertProposalResponse:
    market, proposal = proposal_store.convert_proposal_to_market(
        conn, proposal_id, body.creator_wallet, ms_from_datetime(body.end_date), body.options, body.tx_hash
    )
    return ConvertProposalResponse(market=MarketResponse.from_market(market), proposal=proposal)


# --- Monitor ---


def _scheduler(app: FastAPI) -> SchedulerContext:
    """The one SchedulerContext shared by the background worker and manual runs."""
    ctx = getattr(app.state, "scheduler", None)
    if ctx is None:
        ctx = app.state.scheduler = SchedulerContext()
    return ctx


@app.get("/monitor/status")
def monitor_status(request: Request) -> dict[str, Any]:
    worker: MonitorWorker | None = getattr(request.app.state, "worker", None)
    if worker is None:
        return {"enabled": False}
    return {"enabled": True, **worker.status()}


@app.post("/monitor/run")
async def monitor_run(request: Request) -> dict[str, Any]:
    """Run one poll cycle now. Shares the worker's cooldown and overlap guard when one is running."""
    worker: MonitorWorker | None = getattr(request.app.state, "worker", None)
    if worker is None:
        reader = getattr(request.app.state, "social", None)
        if reader is None:
            raise InvalidRequestError("No social reader configured")
        worker = MonitorWorker(request.app.state.db_path, reader, ctx=_scheduler(request.app))
    report = await worker.tick()
    return report.as_dict()


def run_api(
    host: str = "127.0.0.1",
    port: int = 8000,
    with_monitor: bool = False,
    profile: str | None = None,
    config_dir: Path | None = None,
) -> None:
    global _run_with_monitor, _config_profile, _config_dir
    _run_with_monitor = with_monitor
    _config_profile = profile
    _config_dir = config_dir
    import uvicorn
    uvicorn.run("crowdcast.api.main:app", host=host, port=port, reload=False)
