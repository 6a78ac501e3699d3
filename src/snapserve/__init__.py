"""SnapServe: QR-code table ordering for restaurants.

Customers order from their table, staff and admins watch orders and
feedback arrive in real time over a WebSocket push channel.
"""

__version__ = "0.1.0"
