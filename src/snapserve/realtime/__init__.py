"""Real-time infrastructure: in-process WebSocket fan-out.

Learn: Events flow in one direction through three pieces:
1. Services → EventPublisher (after the database commit)
2. EventPublisher → ConnectionRegistry.matching(rule) (who should get it)
3. Registry sockets → staff/admin screens (fire-and-forget send)

Inbound traffic is just the AUTH claim, handled by the AuthBinder.
Everything lives in one process, owned by the RealtimeHub on app.state.
"""
