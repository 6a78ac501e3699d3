"""Authentication and authorization.

Learn: One path only: a JWT access token carrying user id and role.
HTTP routes read it from the Authorization header, the WebSocket
handshake from the ?token= query parameter. Both resolve to a
CurrentIdentity.
"""
