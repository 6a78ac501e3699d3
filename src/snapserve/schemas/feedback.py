"""Pydantic schemas for customer feedback."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class FeedbackCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)
    order_id: Optional[int] = None


class FeedbackRead(BaseModel):
    id: int
    rating: int
    comment: Optional[str]
    sentiment: Optional[str]
    sentiment_score: Optional[Decimal]
    order_id: Optional[int]
    customer_id: Optional[int]
    created_at: datetime

    model_config = {"from_attributes": True}
