"""TON Lottery Settlement Engine - FastAPI Application."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ton_lottery import __version__
from ton_lottery.core.config import get_settings
from ton_lottery.core.exceptions import (
    InsufficientBalanceError,
    LotteryError,
    NotFoundError,
    ValidationError,
)
from ton_lottery.core.redis import close_redis, init_redis
from ton_lottery.db import async_session_factory, close_db, init_db

logger = logging.getLogger(__name__)


async def _startup_reconcile() -> None:
    """Settle what a previous crash left unfinished before serving requests."""
    from ton_lottery.services.payout_processor import get_payout_processor
    from ton_lottery.services.withdrawal_service import WithdrawalService

    try:
        async with async_session_factory() as db:
            await WithdrawalService(db).reconcile_withdrawals()
        await get_payout_processor().recover_stale_payouts()
    except LotteryError as e:
        logger.error(f"Startup reconciliation incomplete: {e.message}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler.

    Startup: Initialize database tables and Redis, settle unfinished work
    Shutdown: Close Redis and database connections
    """
    # Startup
    await init_db()
    await init_redis()
    if get_settings().startup_reconcile:
        await _startup_reconcile()
    yield
    # Shutdown
    await close_redis()
    await close_db()


def create_app() -> FastAPI:
    """Application factory.

    Returns:
        Configured FastAPI application instance
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Internal settlement API for the TON lottery",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": exc.message, **exc.details})

    @app.exception_handler(ValidationError)
    @app.exception_handler(InsufficientBalanceError)
    async def validation_handler(request: Request, exc: LotteryError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": exc.message, **exc.details})

    from ton_lottery.api import register_routers

    register_routers(app)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


# Application instance
app = create_app()
