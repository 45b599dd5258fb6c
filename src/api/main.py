import logging
import secrets
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from src.config import Config
from src.container import Services, build_services
from src.core.entities.leaderboard import LeaderboardResponse
from src.core.entities.participant import ParticipantSeed
from src.core.entities.refresh import RefreshStatus
from src.core.interfaces.datasource import ILedger, IValuationApi
from src.core.interfaces.persistence import IPersistenceGateway
from src.core.services import SORT_ORDERS, RefreshService
from src.infrastructure.cache.redis_service import RedisService
from src.infrastructure.scheduling.cron import CronTrigger

logger = logging.getLogger("Leaderboard")


# --- Request / Response Models ---

class SeedRequest(BaseModel):
    participants: List[ParticipantSeed]


class SeedResponse(BaseModel):
    success: bool = True
    message: str
    count: int


class RefreshResponse(BaseModel):
    success: bool = True
    message: str


class StatusResponse(BaseModel):
    success: bool = True
    status: str = "operational"
    participants: int
    refresh: Optional[RefreshStatus] = None
    timestamp: datetime


# --- Dependency Injection ---

def get_services(request: Request) -> Services:
    return request.app.state.services


def get_refresh_service(services: Services = Depends(get_services)) -> RefreshService:
    if services.refresh is None:
        raise HTTPException(status_code=503, detail="Refresh is not configured (RPC_URL / USDC_TOKEN_ADDRESS)")
    return services.refresh


def require_admin(
    x_admin_key: Optional[str] = Header(None),
    services: Services = Depends(get_services),
) -> None:
    expected = services.config.admin_key
    if not expected or not x_admin_key or not secrets.compare_digest(x_admin_key, expected):
        raise HTTPException(status_code=401, detail="Unauthorized - Invalid or missing admin key")


def create_app(
    config: Optional[Config] = None,
    repo: Optional[IPersistenceGateway] = None,
    ledger: Optional[ILedger] = None,
    valuation_api: Optional[IValuationApi] = None,
    cache: Optional[RedisService] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Collaborators not passed in are built from config. Services are created
    here rather than in the lifespan so the app is usable without it; the
    lifespan only owns the cron trigger and resource cleanup.
    """
    if config is None:
        load_dotenv()
        config = Config.from_env()

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    services = build_services(config, repo=repo, ledger=ledger, valuation_api=valuation_api, cache=cache)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting leaderboard API on port {config.port}")
        cron = None
        if config.scheduler_enabled and services.refresh is not None:
            refresh = services.refresh
            cron = CronTrigger(config.update_cron, lambda: refresh.start_refresh("scheduled"))
            cron.start()

        yield

        logger.info("Shutting down...")
        if cron is not None:
            await cron.stop()
        await services.close()

    app = FastAPI(
        title="Tournament Leaderboard API",
        version="1.0.0",
        description="On-chain deposit reconciliation and PnL leaderboard",
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.started_at = time.monotonic()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Endpoints ---

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - app.state.started_at, 3),
        }

    @app.get("/leaderboard", response_model=LeaderboardResponse)
    async def get_leaderboard(
        sortBy: str = Query("entry_order", description="'entry_order' or 'pnl'"),
        services: Services = Depends(get_services),
    ):
        if sortBy not in SORT_ORDERS:
            raise HTTPException(
                status_code=400,
                detail='Invalid sortBy parameter. Must be "entry_order" or "pnl".',
            )
        rows = await services.leaderboard.get_leaderboard(sortBy)
        return LeaderboardResponse(
            data=rows,
            sortBy=sortBy,
            count=len(rows),
            timestamp=datetime.now(timezone.utc),
        )

    @app.post("/admin/participants", response_model=SeedResponse, dependencies=[Depends(require_admin)])
    async def seed_participants(body: SeedRequest, services: Services = Depends(get_services)):
        """Bulk seed participants. Wallets already present are left untouched."""
        inserted = await services.repo.seed_participants(body.participants)
        logger.info(f"Seeded {inserted} new of {len(body.participants)} submitted participants")
        if inserted:
            services.leaderboard.invalidate()
        return SeedResponse(
            message=f"Successfully seeded {len(body.participants)} participants",
            count=len(body.participants),
        )

    @app.post("/admin/refresh", response_model=RefreshResponse, dependencies=[Depends(require_admin)])
    async def trigger_refresh(refresh: RefreshService = Depends(get_refresh_service)):
        """
        Fire-and-forget refresh. The response only acknowledges that a run was
        started; per-participant results are visible via logs and /admin/status.
        """
        logger.info("Manual refresh triggered by admin")
        if not refresh.start_refresh("manual"):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A refresh is already in progress")
        return RefreshResponse(message="Refresh initiated. This may take several minutes.")

    @app.post("/admin/refresh/cancel", response_model=RefreshResponse, dependencies=[Depends(require_admin)])
    async def cancel_refresh(refresh: RefreshService = Depends(get_refresh_service)):
        if not refresh.cancel():
            return RefreshResponse(success=False, message="No refresh is running.")
        return RefreshResponse(message="Cancellation requested.")

    @app.get("/admin/status", response_model=StatusResponse, dependencies=[Depends(require_admin)])
    async def get_status(services: Services = Depends(get_services)):
        participants = await services.repo.count_participants()
        return StatusResponse(
            participants=participants,
            refresh=services.refresh.status() if services.refresh else None,
            timestamp=datetime.now(timezone.utc),
        )

    return app


_app: Optional[FastAPI] = None


def __getattr__(name: str):
    # `uvicorn src.api.main:app` builds the app from the environment on first access,
    # so importing this module stays free of database and network connections
    global _app
    if name == "app":
        if _app is None:
            _app = create_app()
        return _app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


if __name__ == "__main__":
    import uvicorn

    load_dotenv()
    _config = Config.from_env()
    uvicorn.run(create_app(_config), host=_config.host, port=_config.port)
