"""Feedback service: store customer feedback, alert staff when it's bad.

Learn: The comment is run through sentiment analysis first. The verdict
is stored on the row, and a negative verdict raises a NEGATIVE_FEEDBACK
alert on staff and admin screens with the full analysis attached so the
manager can see what went wrong without opening the feedback page.
"""

from decimal import Decimal
from typing import Any, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from snapserve.ai.sentiment import SentimentAnalysis, SentimentAnalyzer
from snapserve.db.models import Feedback
from snapserve.events.types import negative_feedback
from snapserve.realtime.publisher import EventPublisher
from snapserve.schemas.feedback import FeedbackRead

logger = structlog.get_logger()


def serialize_feedback(feedback: Feedback, analysis: SentimentAnalysis) -> dict[str, Any]:
    """Feedback row merged with the full sentiment analysis."""
    data = FeedbackRead.model_validate(feedback).model_dump(mode="json")
    data.update(analysis.model_dump())
    return data


class FeedbackService:
    """Business logic for customer feedback."""

    def __init__(
        self,
        db: AsyncSession,
        publisher: EventPublisher,
        analyzer: SentimentAnalyzer,
    ):
        self.db = db
        self.publisher = publisher
        self.analyzer = analyzer

    async def create_feedback(
        self,
        *,
        rating: int,
        comment: Optional[str] = None,
        order_id: Optional[int] = None,
        customer_id: Optional[int] = None,
    ) -> Feedback:
        analysis = await self.analyzer.analyze(comment or "")

        feedback = Feedback(
            rating=rating,
            comment=comment,
            order_id=order_id,
            customer_id=customer_id,
            sentiment=analysis.sentiment,
            sentiment_score=Decimal(str(round(analysis.score, 2))),
        )
        self.db.add(feedback)
        await self.db.commit()

        logger.info(
            "snapserve.feedback.created",
            feedback_id=feedback.id,
            rating=rating,
            sentiment=analysis.sentiment,
        )

        if analysis.is_negative:
            await self.publisher.publish_to_staff(
                negative_feedback(serialize_feedback(feedback, analysis))
            )
        return feedback

    async def list_feedback(self) -> list[Feedback]:
        result = await self.db.execute(
            select(Feedback).order_by(Feedback.created_at.desc(), Feedback.id.desc())
        )
        return list(result.scalars().all())
