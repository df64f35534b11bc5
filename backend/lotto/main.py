from __future__ import annotations
import asyncio
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from lotto.config import settings
from lotto.context import LottoContext
from lotto.db import SessionLocal
from lotto.errors import LottoError
from lotto.jobs.sweeper import run_sweeper
from lotto.logging_setup import configure_logging
from lotto.routes.system import router as system_router
from lotto.routes.identities import router as identities_router
from lotto.routes.link import router as link_router
from lotto.routes.balance import router as balance_router
from lotto.routes.rounds import router as rounds_router
from lotto.routes.claims import router as claims_router
from lotto.services.balance import BalanceCache, SolanaRpcBalanceSource
from lotto.services.transfers import HttpTransferSink, RecordingTransferSink
import structlog

configure_logging()
log = structlog.get_logger()

def build_context() -> LottoContext:
    source = SolanaRpcBalanceSource(settings.solana_rpc_url, timeout=settings.external_timeout_seconds)
    balances = BalanceCache(
        source,
        settings.wealth_mint,
        ttl=settings.balance_cache_ttl_seconds,
        max_entries=settings.balance_cache_max_entries,
        retries=settings.balance_lookup_retries,
        timeout=settings.external_timeout_seconds,
    )
    if settings.payout_service_url:
        transfers = HttpTransferSink(
            settings.payout_service_url, settings.payout_service_token, timeout=settings.external_timeout_seconds,
        )
    else:
        log.warning("payout_sink_recording_only", env=settings.environment)
        transfers = RecordingTransferSink()
    return LottoContext(sessions=SessionLocal, balances=balances, transfers=transfers, settings=settings)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup; tests install their own context before the app starts
    if getattr(app.state, "ctx", None) is None:
        app.state.ctx = build_context()
    ctx: LottoContext = app.state.ctx
    sweeper = None
    if ctx.settings.sweep_interval_seconds > 0:
        sweeper = asyncio.create_task(run_sweeper(ctx, ctx.settings.sweep_interval_seconds))
    log.info("startup", env=settings.environment, version=settings.app_version, git_sha=settings.git_sha)
    yield
    # Shutdown
    if sweeper is not None:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
    log.info("shutdown")

app = FastAPI(
    title=f"{settings.app_display_name} API",
    version=settings.app_version,
    lifespan=lifespan,
    description=f"{settings.app_display_name} API for wallet linking and round-based token lotto",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.environment == "dev" else settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(system_router)
app.include_router(identities_router)
app.include_router(link_router)
app.include_router(balance_router)
app.include_router(rounds_router)
app.include_router(claims_router)

@app.exception_handler(LottoError)
async def lotto_error_handler(request: Request, exc: LottoError):
    if exc.status_code >= 500:
        log.error("request_failed", error=exc.code, detail=exc.message, path=request.url.path)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = rid
    structlog.contextvars.bind_contextvars(request_id=rid)
    response: Response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    structlog.contextvars.clear_contextvars()
    return response
