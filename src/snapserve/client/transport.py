"""Network plumbing for the client agent: the push channel and HTTP fetches.

Learn: The agent only needs two things from the outside world:
- a connector: a zero-argument coroutine function returning an open
  channel with send(text), recv() and close()
- a fetcher: a coroutine function returning a whole collection by name

Production uses the websockets library for the first and httpx for the
second. Tests swap in in-memory fakes with the same shape.
"""

from typing import Any, Awaitable, Callable, Optional, Protocol, Union
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx
import websockets


class Channel(Protocol):
    """What the agent needs from an open push channel."""

    async def send(self, message: str) -> None: ...

    async def recv(self) -> Union[str, bytes]: ...

    async def close(self) -> None: ...


Connector = Callable[[], Awaitable[Channel]]


def ws_url_from_api(api_url: str, ws_path: str = "/ws") -> str:
    """http://host:8000 → ws://host:8000/ws (https → wss)."""
    parts = urlsplit(api_url)
    scheme = "wss" if parts.scheme == "https" else "ws"
    return urlunsplit((scheme, parts.netloc, ws_path, "", ""))


def websocket_connector(url: str, token: Optional[str] = None) -> Connector:
    """Connector opening a websockets client connection to ``url``.

    When a token is given it is sent as ?token= so the server can bind a
    verified identity at handshake time.
    """
    if token:
        url = f"{url}{'&' if '?' in url else '?'}{urlencode({'token': token})}"

    async def connect() -> Channel:
        return await websockets.connect(url, ping_interval=20, ping_timeout=20)

    return connect


class HttpCollectionFetcher:
    """Fetches whole collections from the SnapServe API.

    Collection names map to /api/v1/<name> ("orders", "feedback").
    """

    def __init__(
        self,
        api_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __call__(self, collection: str) -> Any:
        r = await self._client.get(f"/api/v1/{collection}")
        r.raise_for_status()
        return r.json()

    async def aclose(self) -> None:
        await self._client.aclose()
