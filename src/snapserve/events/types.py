"""Event type constants and the pushed event record.

Learn: Centralizing event kinds as constants prevents typos and makes
it easy to discover every message the server can push. Both sides of the
WebSocket import from here: services build events with the constructors
below, the client agent maps the same constants to cache collections.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

# ─── Server → client event kinds ─────────────────────────

NEW_ORDER = "NEW_ORDER"
ORDER_UPDATED = "ORDER_UPDATED"
NEGATIVE_FEEDBACK = "NEGATIVE_FEEDBACK"

# ─── Client → server control messages ────────────────────

AUTH = "AUTH"

# ─── Cache collections invalidated by each kind ──────────

ORDERS_COLLECTION = "orders"
FEEDBACK_COLLECTION = "feedback"

EVENT_COLLECTIONS: Mapping[str, str] = MappingProxyType({
    NEW_ORDER: ORDERS_COLLECTION,
    ORDER_UPDATED: ORDERS_COLLECTION,
    NEGATIVE_FEEDBACK: FEEDBACK_COLLECTION,
})


@dataclass(frozen=True)
class Event:
    """An ephemeral, immutable push event.

    There is no id or sequence number: an event is just its kind plus a
    payload whose shape depends on the kind.
    """

    type: str
    payload: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Freeze the payload so fan-out cannot be affected by a caller
        # mutating the dict after publishing.
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    def to_message(self) -> dict[str, Any]:
        """Wire envelope: the payload fields plus the kind tag.

        The tag is written last so a payload key named "type" can never
        replace it.
        """
        return {**self.payload, "type": self.type}


def new_order(order: dict[str, Any]) -> Event:
    return Event(NEW_ORDER, {"order": order})


def order_updated(order: dict[str, Any]) -> Event:
    return Event(ORDER_UPDATED, {"order": order})


def negative_feedback(feedback: dict[str, Any]) -> Event:
    return Event(NEGATIVE_FEEDBACK, {"feedback": feedback})
