"""Draw Service - provably fair verification of executed draws."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ton_lottery.core.exceptions import NotFoundError, ValidationError
from ton_lottery.models.lottery import Draw, Lottery
from ton_lottery.schemas.draw import DrawVerification
from ton_lottery.services.provably_fair import verify_commitment, verify_winning_numbers

logger = logging.getLogger(__name__)


class DrawService:
    """Read-only access to draws for verification."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def verify_draw(self, draw_id: int) -> DrawVerification:
        """Recompute a draw from its revealed seeds.

        ``is_valid`` holds only when the server seed matches the hash
        committed before the draw and the numbers recompute exactly.

        Raises:
            NotFoundError: Draw or its lottery does not exist
            ValidationError: Seeds are not revealed yet
        """
        draw = await self.db.get(Draw, draw_id)
        if draw is None:
            raise NotFoundError("Draw not found", {"draw_id": draw_id})
        if not draw.server_seed or not draw.client_seed:
            raise ValidationError("Draw not yet executed - seeds not revealed", {"draw_id": draw_id})

        lottery = await self.db.get(Lottery, draw.lottery_id)
        if lottery is None:
            raise NotFoundError("Lottery not found", {"lottery_id": draw.lottery_id})

        winning_numbers = list(draw.winning_numbers or [])
        commitment_valid = verify_commitment(draw.server_seed, draw.server_seed_hash)
        numbers_valid = verify_winning_numbers(
            draw.server_seed,
            draw.client_seed,
            draw.nonce,
            winning_numbers,
            lottery.numbers_count,
            lottery.numbers_max,
        )
        if not (commitment_valid and numbers_valid):
            logger.warning(
                f"Draw {draw_id} failed verification: commitment={commitment_valid} numbers={numbers_valid}"
            )

        return DrawVerification(
            draw_id=draw.id,
            draw_number=draw.draw_number,
            lottery_id=lottery.id,
            server_seed=draw.server_seed,
            server_seed_hash=draw.server_seed_hash,
            client_seed=draw.client_seed,
            client_seed_block=draw.client_seed_block,
            nonce=draw.nonce,
            winning_numbers=winning_numbers,
            numbers_count=lottery.numbers_count,
            numbers_max=lottery.numbers_max,
            commitment_valid=commitment_valid,
            numbers_valid=numbers_valid,
            is_valid=commitment_valid and numbers_valid,
        )
