"""Feedback API routes.

Learn: Anyone can leave feedback after a meal. Sentiment analysis runs
inline before the row is stored; negative verdicts alert staff screens.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from snapserve.ai.sentiment import SentimentAnalyzer
from snapserve.auth.dependencies import (
    CurrentIdentity,
    get_current_user_optional,
    require_role,
)
from snapserve.db.engine import get_db
from snapserve.realtime.hub import get_publisher
from snapserve.realtime.publisher import EventPublisher
from snapserve.schemas.feedback import FeedbackCreate, FeedbackRead
from snapserve.services.feedback_service import FeedbackService

router = APIRouter()


def get_analyzer() -> SentimentAnalyzer:
    """Sentiment client dependency (overridden in tests)."""
    return SentimentAnalyzer()


def _feedback_svc(
    db: AsyncSession = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    analyzer: SentimentAnalyzer = Depends(get_analyzer),
) -> FeedbackService:
    return FeedbackService(db, publisher, analyzer)


@router.post("/feedback", response_model=FeedbackRead, status_code=201)
async def create_feedback(
    body: FeedbackCreate,
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
    svc: FeedbackService = Depends(_feedback_svc),
):
    return await svc.create_feedback(
        rating=body.rating,
        comment=body.comment,
        order_id=body.order_id,
        customer_id=identity.user_id if identity else None,
    )


@router.get(
    "/feedback",
    response_model=list[FeedbackRead],
    dependencies=[Depends(require_role("staff", "admin"))],
)
async def list_feedback(svc: FeedbackService = Depends(_feedback_svc)):
    return await svc.list_feedback()
