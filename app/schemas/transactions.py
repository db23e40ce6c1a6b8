from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# -------------------------
# Requests
# -------------------------

class TransactionItemIn(BaseModel):
    ticket_tier_id: int
    quantity: int = Field(..., ge=1)


class TransactionCreateIn(BaseModel):
    event_id: int
    items: List[TransactionItemIn] = Field(..., min_length=1)
    use_points: bool = False
    user_coupon_id: Optional[int] = None
    event_voucher_id: Optional[int] = None


# -------------------------
# Responses
# -------------------------

class TransactionItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_tier_id: int
    quantity: int
    unit_price: int
    line_subtotal: int


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_number: str

    user_id: int
    event_id: int

    subtotal: int
    points_used: int
    coupon_discount: int
    voucher_discount: int
    total_amount: int

    payment_status: str
    payment_deadline: datetime
    confirmation_deadline: Optional[datetime] = None

    payment_proof_url: Optional[str] = None
    proof_uploaded_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None

    user_coupon_id: Optional[int] = None
    event_voucher_id: Optional[int] = None

    created_at: datetime

    items: List[TransactionItemOut] = Field(default_factory=list)


class PaginationOut(BaseModel):
    page: int
    limit: int
    total_count: int
    total_pages: int


class TransactionListOut(BaseModel):
    items: List[TransactionOut] = Field(default_factory=list)
    pagination: PaginationOut


class SweepOut(BaseModel):
    expired: int
    canceled: int
