"""Client reconnection agent: keeps a push channel open and the cache honest.

Learn: The agent is a small state machine driven by one asyncio task:

    DISCONNECTED → CONNECTING → OPEN_AUTHENTICATED / OPEN_UNAUTHENTICATED
         ↑                                  │
         └──── (sleep base × attempt) ◄─────┘ channel closed or errored

When the channel opens it immediately identifies itself with an AUTH
frame (if it knows who it is). Every event received invalidates the cache
collection the event concerns; the cache re-fetches it over HTTP. When
the channel drops, the agent waits base_delay × attempt seconds and tries
again, giving up after max_attempts consecutive failures. A connection
that received at least one message counts as a success and resets the
counter. disconnect() stops everything, including a pending retry.
"""

import asyncio
import enum
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

import structlog

from snapserve.client.cache import ResourceCache
from snapserve.client.transport import Channel, Connector
from snapserve.events.types import AUTH, EVENT_COLLECTIONS

logger = structlog.get_logger()

MAX_RECONNECT_ATTEMPTS = 5
RECONNECT_BASE_DELAY = 2.0  # seconds; attempt n waits n × base


class AgentState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN_UNAUTHENTICATED = "open_unauthenticated"
    OPEN_AUTHENTICATED = "open_authenticated"
    CLOSED = "closed"


@dataclass(frozen=True)
class ClientIdentity:
    user_id: int
    role: str


class ReconnectionAgent:
    """Owns one push channel at a time and re-opens it after drops."""

    def __init__(
        self,
        connector: Connector,
        cache: ResourceCache,
        identity: Optional[ClientIdentity] = None,
        *,
        max_attempts: int = MAX_RECONNECT_ATTEMPTS,
        base_delay: float = RECONNECT_BASE_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._connector = connector
        self.cache = cache
        self.identity = identity
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep

        self.state = AgentState.DISCONNECTED
        self._attempts = 0
        self._channel: Optional[Channel] = None
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

    @property
    def attempts(self) -> int:
        """Consecutive failed connections since the last successful one."""
        return self._attempts

    @property
    def is_connected(self) -> bool:
        return self.state in (AgentState.OPEN_AUTHENTICATED, AgentState.OPEN_UNAUTHENTICATED)

    def retry_delay(self, attempt: int) -> float:
        return self.base_delay * attempt

    # ─── Lifecycle ───────────────────────────────────────

    def start(self) -> asyncio.Task:
        """Run the agent in a background task (idempotent while running)."""
        if self._task is None or self._task.done():
            self._stopped = False
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def run(self) -> None:
        """Connect, consume, reconnect; returns once retries are exhausted."""
        while not self._stopped:
            received = await self._connect_once()
            if self._stopped:
                break
            self.state = AgentState.DISCONNECTED

            if received:
                self._attempts = 0
            if self._attempts >= self.max_attempts:
                logger.warning(
                    "snapserve.agent.gave_up",
                    attempts=self._attempts,
                )
                return

            self._attempts += 1
            delay = self.retry_delay(self._attempts)
            logger.info(
                "snapserve.agent.reconnect_scheduled",
                attempt=self._attempts,
                delay=delay,
            )
            await self._sleep(delay)

    async def disconnect(self) -> None:
        """Close the channel and cancel any pending retry."""
        self._stopped = True
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._channel is not None:
            await self._close_channel(self._channel)
            self._channel = None
        self.state = AgentState.CLOSED
        logger.info("snapserve.agent.closed")

    async def send(self, message: dict[str, Any]) -> bool:
        """Send a JSON frame on the open channel. False when not connected."""
        channel = self._channel
        if channel is None or not self.is_connected:
            return False
        try:
            await channel.send(json.dumps(message))
        except Exception as e:
            logger.warning("snapserve.agent.send_failed", error=str(e))
            return False
        return True

    # ─── One connection ──────────────────────────────────

    async def _connect_once(self) -> bool:
        """Open a channel and read it until it closes.

        Returns True if at least one message arrived on it.
        """
        self.state = AgentState.CONNECTING
        try:
            channel = await self._connector()
        except Exception as e:
            logger.info("snapserve.agent.connect_failed", error=str(e))
            return False

        self._channel = channel
        received = False
        try:
            await self._on_open(channel)
            while True:
                raw = await channel.recv()
                received = True
                self._handle_message(raw)
        except Exception as e:
            logger.info("snapserve.agent.channel_closed", error=str(e), received=received)
        finally:
            if self._channel is channel:
                self._channel = None
                await self._close_channel(channel)
        return received

    async def _on_open(self, channel: Channel) -> None:
        if self.identity is None:
            self.state = AgentState.OPEN_UNAUTHENTICATED
            logger.info("snapserve.agent.connected", authenticated=False)
            return
        await channel.send(json.dumps({
            "type": AUTH,
            "userId": self.identity.user_id,
            "role": self.identity.role,
        }))
        self.state = AgentState.OPEN_AUTHENTICATED
        logger.info(
            "snapserve.agent.connected",
            authenticated=True,
            user_id=self.identity.user_id,
            role=self.identity.role,
        )

    def _handle_message(self, raw: Union[str, bytes]) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            message = json.loads(raw)
        except ValueError as e:
            logger.warning("snapserve.agent.bad_frame", error=str(e))
            return
        if not isinstance(message, dict):
            logger.warning("snapserve.agent.bad_frame", error="not a JSON object")
            return

        kind = message.get("type")
        collection = EVENT_COLLECTIONS.get(kind) if isinstance(kind, str) else None
        if collection is None:
            logger.info("snapserve.agent.unknown_event", type=kind)
            return

        logger.debug("snapserve.agent.event", type=kind, collection=collection)
        self.cache.invalidate(collection)

    @staticmethod
    async def _close_channel(channel: Channel) -> None:
        try:
            await channel.close()
        except Exception as e:
            logger.debug("snapserve.agent.close_failed", error=str(e))
