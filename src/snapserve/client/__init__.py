"""Client side of the push channel.

ReconnectionAgent keeps one WebSocket open to the server, ResourceCache
holds whole collections and re-fetches them when an event says they
changed.
"""

from snapserve.client.agent import AgentState, ClientIdentity, ReconnectionAgent
from snapserve.client.cache import CacheEntry, ResourceCache

__all__ = ["AgentState", "CacheEntry", "ClientIdentity", "ReconnectionAgent", "ResourceCache"]
