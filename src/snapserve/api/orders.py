"""Order API routes.

Learn: Customers place orders anonymously from the table (a token is
optional and only fills customer_id). Listing and advancing orders is
for staff and admins. The routes only translate HTTP to service calls;
the service commits and then pushes the live event.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from snapserve.auth.dependencies import (
    CurrentIdentity,
    get_current_user_optional,
    require_role,
)
from snapserve.db.engine import get_db
from snapserve.realtime.hub import get_publisher
from snapserve.realtime.publisher import EventPublisher
from snapserve.schemas.order import OrderCreate, OrderRead, OrderUpdate
from snapserve.services.order_service import OrderNotFoundError, OrderService

router = APIRouter()

_staff = require_role("staff", "admin")


def _order_svc(
    db: AsyncSession = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
) -> OrderService:
    return OrderService(db, publisher)


@router.post("/orders", response_model=OrderRead, status_code=201)
async def create_order(
    body: OrderCreate,
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
    svc: OrderService = Depends(_order_svc),
):
    """Place an order from a table. Staff screens get NEW_ORDER."""
    return await svc.create_order(
        items=[item.model_dump() for item in body.items],
        table_id=body.table_id,
        notes=body.notes,
        customer_id=identity.user_id if identity else None,
    )


@router.get("/orders", response_model=list[OrderRead], dependencies=[Depends(_staff)])
async def list_orders(
    status: Optional[str] = Query(None, description="Filter by status"),
    table_id: Optional[int] = Query(None, description="Filter by table"),
    svc: OrderService = Depends(_order_svc),
):
    """List orders, newest first (oldest first when filtering by status)."""
    return await svc.list_orders(status=status, table_id=table_id)


@router.get("/orders/{order_id}", response_model=OrderRead, dependencies=[Depends(_staff)])
async def get_order(
    order_id: int,
    svc: OrderService = Depends(_order_svc),
):
    order = await svc.get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.put("/orders/{order_id}", response_model=OrderRead)
async def update_order(
    order_id: int,
    body: OrderUpdate,
    identity: CurrentIdentity = Depends(_staff),
    svc: OrderService = Depends(_order_svc),
):
    """Advance or annotate an order. Every connected screen gets ORDER_UPDATED."""
    changes = body.model_dump(exclude_unset=True)
    if "status" in changes and "staff_id" not in changes:
        changes["staff_id"] = identity.user_id
    try:
        return await svc.update_order(order_id, **changes)
    except OrderNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
