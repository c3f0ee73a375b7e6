"""Draw verification schemas."""

from pydantic import BaseModel


class DrawVerification(BaseModel):
    """Everything a player needs to recompute a draw."""

    draw_id: int
    draw_number: int
    lottery_id: int
    server_seed: str
    server_seed_hash: str
    client_seed: str
    client_seed_block: int | None = None
    nonce: int
    winning_numbers: list[int]
    numbers_count: int
    numbers_max: int
    commitment_valid: bool
    numbers_valid: bool
    is_valid: bool
