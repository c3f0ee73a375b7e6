"""TON Lottery - Draw verification endpoint."""

from fastapi import APIRouter

from ton_lottery.api.deps import DbSession
from ton_lottery.schemas.draw import DrawVerification
from ton_lottery.services.draw_service import DrawService

router = APIRouter(prefix="/draws", tags=["Draws"])


@router.get("/{draw_id}/verify", response_model=DrawVerification)
async def verify_draw(draw_id: int, db: DbSession) -> DrawVerification:
    """Provably fair data of an executed draw and the recomputation result."""
    return await DrawService(db).verify_draw(draw_id)
