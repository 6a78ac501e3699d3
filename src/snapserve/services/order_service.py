"""Order service: persistence for table orders plus live staff notifications.

Learn: Every mutation follows the same two steps:
1. Write to the database and commit (the order now exists for real)
2. Publish an event to connected screens

Step 2 is a side channel. The publisher never raises, and a dropped
notification is repaired by the next HTTP fetch, so a flaky socket can
never turn a placed order into a 500.

Routing:
- NEW_ORDER     → staff and admin (kitchen and manager screens)
- ORDER_UPDATED → everyone connected (table displays follow their order too)
"""

import secrets
import time
from decimal import Decimal
from typing import Any, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from snapserve.db.models import MenuItem, Order, OrderItem, utcnow
from snapserve.events.types import new_order, order_updated
from snapserve.realtime.publisher import EventPublisher, TargetRule
from snapserve.schemas.order import OrderRead

logger = structlog.get_logger()

# Prep time estimate: base minutes plus a few per line item.
BASE_PREP_MINUTES = 20
PREP_MINUTES_PER_ITEM = 5

UPDATABLE_FIELDS = ("status", "notes", "estimated_time", "staff_id")


class OrderNotFoundError(Exception):
    """Raised when an order id does not exist."""


def _order_number() -> str:
    return f"ORD-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def serialize_order(order: Order) -> dict[str, Any]:
    """JSON-safe dict of an order and its line items (event payloads)."""
    return OrderRead.model_validate(order).model_dump(mode="json")


class OrderService:
    """Business logic for orders."""

    def __init__(self, db: AsyncSession, publisher: EventPublisher):
        self.db = db
        self.publisher = publisher

    # ─── Create ──────────────────────────────────────────

    async def create_order(
        self,
        *,
        items: list[dict[str, Any]],
        table_id: Optional[int] = None,
        notes: Optional[str] = None,
        customer_id: Optional[int] = None,
    ) -> Order:
        """Create an order priced from the current menu.

        Learn: Each line item copies the menu price at order time, so
        later price changes never rewrite history. Items that reference
        an unknown menu item are skipped rather than failing the order.
        """
        menu_ids = {item["menu_item_id"] for item in items}
        result = await self.db.execute(select(MenuItem).where(MenuItem.id.in_(menu_ids)))
        menu = {m.id: m for m in result.scalars().all()}

        lines: list[OrderItem] = []
        total = Decimal("0.00")
        for item in items:
            menu_item = menu.get(item["menu_item_id"])
            if menu_item is None:
                logger.warning("snapserve.orders.unknown_menu_item", menu_item_id=item["menu_item_id"])
                continue
            quantity = int(item["quantity"])
            total += menu_item.price * quantity
            lines.append(OrderItem(
                menu_item_id=menu_item.id,
                quantity=quantity,
                price=menu_item.price,
                notes=item.get("notes"),
            ))

        order = Order(
            order_number=_order_number(),
            status="pending",
            total=total.quantize(Decimal("0.01")),
            notes=notes,
            estimated_time=BASE_PREP_MINUTES + PREP_MINUTES_PER_ITEM * len(items),
            table_id=table_id,
            customer_id=customer_id,
            items=lines,
        )
        self.db.add(order)
        await self.db.commit()

        logger.info(
            "snapserve.orders.created",
            order_id=order.id,
            order_number=order.order_number,
            table_id=table_id,
            item_count=len(lines),
        )

        await self.publisher.publish_to_staff(new_order(serialize_order(order)))
        return order

    # ─── Read ────────────────────────────────────────────

    async def get_order(self, order_id: int) -> Optional[Order]:
        return await self.db.get(Order, order_id)

    async def list_orders(
        self,
        status: Optional[str] = None,
        table_id: Optional[int] = None,
    ) -> list[Order]:
        """Newest first; a status filter lists oldest first (kitchen queue order)."""
        query = select(Order)
        if status:
            query = query.where(Order.status == status).order_by(Order.created_at, Order.id)
        else:
            query = query.order_by(Order.created_at.desc(), Order.id.desc())
        if table_id is not None:
            query = query.where(Order.table_id == table_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # ─── Update ──────────────────────────────────────────

    async def update_order(self, order_id: int, **changes: Any) -> Order:
        """Apply a partial update and notify every connected screen.

        Raises OrderNotFoundError if the order doesn't exist.
        """
        order = await self.db.get(Order, order_id)
        if not order:
            raise OrderNotFoundError(f"Order {order_id} not found")

        previous_status = order.status
        for name, value in changes.items():
            if name not in UPDATABLE_FIELDS:
                raise ValueError(f"Field {name!r} cannot be updated")
            setattr(order, name, value)
        order.updated_at = utcnow()
        await self.db.commit()

        logger.info(
            "snapserve.orders.updated",
            order_id=order.id,
            old_status=previous_status,
            new_status=order.status,
        )

        await self.publisher.publish(order_updated(serialize_order(order)), TargetRule.everyone())
        return order
