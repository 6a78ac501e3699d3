"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Unlike a fully protected admin API, most of SnapServe is reachable
from a customer's phone at the table, so role checks live on the
individual staff routes (require_role) rather than at include_router level.
"""

from fastapi import APIRouter

from snapserve.api.feedback import router as feedback_router
from snapserve.api.health import router as health_router
from snapserve.api.orders import router as orders_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(orders_router, tags=["orders"])
api_router.include_router(feedback_router, tags=["feedback"])
