"""Unmatched deposit review schemas."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from ton_lottery.models.deposit import UnmatchedDepositStatus


class UnmatchedDepositResponse(BaseModel):
    """Inbound transfer awaiting manual attribution."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    tx_hash: str
    amount: Decimal
    currency: str
    comment: str | None = None
    from_address: str | None = None
    reason: str
    status: UnmatchedDepositStatus
    resolved_user_id: int | None = None
    created_at: datetime


class ResolveUnmatchedRequest(BaseModel):
    """Attribute an unmatched deposit to a user."""

    user_id: int
