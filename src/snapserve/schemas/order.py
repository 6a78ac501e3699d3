"""Pydantic schemas for orders.

Learn: Separate schemas for create/update/read keeps the API clean.
- OrderCreate: what a customer POSTs from the table
- OrderUpdate: what staff PUT to advance an order (all optional)
- OrderRead: what the API returns, line items included
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

_STATUS_PATTERN = r"^(pending|preparing|ready|served|cancelled)$"


# ─── Create ──────────────────────────────────────────────

class OrderItemCreate(BaseModel):
    menu_item_id: int
    quantity: int = Field(..., ge=1, le=100)
    notes: Optional[str] = None


class OrderCreate(BaseModel):
    table_id: Optional[int] = None
    items: list[OrderItemCreate] = Field(..., min_length=1)
    notes: Optional[str] = None


# ─── Update ──────────────────────────────────────────────

class OrderUpdate(BaseModel):
    """Partial update: only fields that were sent are applied."""
    status: Optional[str] = Field(None, pattern=_STATUS_PATTERN)
    notes: Optional[str] = None
    estimated_time: Optional[int] = Field(None, ge=0)
    staff_id: Optional[int] = None


# ─── Read ────────────────────────────────────────────────

class OrderItemRead(BaseModel):
    id: int
    menu_item_id: Optional[int]
    quantity: int
    price: Decimal
    notes: Optional[str]

    model_config = {"from_attributes": True}


class OrderRead(BaseModel):
    id: int
    order_number: str
    status: str
    total: Decimal
    notes: Optional[str]
    estimated_time: Optional[int]
    table_id: Optional[int]
    customer_id: Optional[int]
    staff_id: Optional[int]
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemRead] = Field(default_factory=list)

    model_config = {"from_attributes": True}
