"""API module - internal route handlers and common dependencies."""

from fastapi import Depends, FastAPI

from ton_lottery.api.deps import verify_internal_key

__all__ = ["register_routers"]


def register_routers(app: FastAPI) -> None:
    """Register all API routers to the application.

    Args:
        app: FastAPI application instance
    """
    from ton_lottery.api.admin import router as admin_router
    from ton_lottery.api.draws import router as draws_router
    from ton_lottery.api.wallet import router as wallet_router

    internal = [Depends(verify_internal_key)]
    app.include_router(wallet_router, prefix="/api", dependencies=internal)
    app.include_router(draws_router, prefix="/api", dependencies=internal)
    app.include_router(admin_router, prefix="/api", dependencies=internal)
