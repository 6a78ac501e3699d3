"""SnapServe CLI: run the server, mint tokens, watch the live feed.

Usage:
    snapserve serve --reload                     # Run the API + WebSocket server
    snapserve token 7 --role staff               # Mint an access token
    snapserve watch --user-id 7 --role staff     # Follow live events, re-fetch on change
    snapserve orders --status pending            # List orders once
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import logging
import os
import sys
from typing import Optional

import click
import httpx
import structlog

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("SNAPSERVE_API_URL", DEFAULT_API_URL).rstrip("/")


def _token(explicit: Optional[str]) -> Optional[str]:
    return explicit or os.environ.get("SNAPSERVE_TOKEN")


def _client(token: Optional[str]) -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the SnapServe backend."""
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return httpx.AsyncClient(base_url=_api_url(), headers=headers, timeout=30.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _status_color(status: str) -> str:
    colors = {
        "pending": "yellow",
        "preparing": "cyan",
        "ready": "green",
        "served": "white",
        "cancelled": "red",
        "negative": "red",
        "positive": "green",
        "neutral": "white",
    }
    return colors.get(status, "white")


def _configure_logging(verbose: bool) -> None:
    """Route structlog through stdlib logging on stderr; stdout is for output."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
    structlog.configure(
        processors=[structlog.processors.KeyValueRenderer(key_order=["event"])],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )


def _print_orders(orders: list[dict]) -> None:
    if not orders:
        click.echo("  (no orders)")
        return
    for o in orders:
        status_str = click.style(f"{o['status']:10s}", fg=_status_color(o["status"]))
        table = o.get("table_id") or "—"
        click.echo(
            f"  #{o['id']:<5d} {o['order_number']:24s} {status_str} "
            f"table={table}  items={len(o.get('items', []))}  total={o['total']}"
        )


def _print_feedback(items: list[dict]) -> None:
    if not items:
        click.echo("  (no feedback)")
        return
    for f in items:
        sentiment = f.get("sentiment") or "—"
        sentiment_str = click.style(f"{sentiment:8s}", fg=_status_color(sentiment))
        comment = (f.get("comment") or "")[:60]
        click.echo(f"  #{f['id']:<5d} rating={f['rating']}  {sentiment_str} {comment}")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="snapserve")
def main():
    """SnapServe: QR table ordering with live updates for staff."""


# ---------------------------------------------------------------------------
# snapserve serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind address (default from settings)")
@click.option("--port", default=None, type=int, help="Port (default from settings)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the HTTP API and the /ws push endpoint."""
    import uvicorn

    from snapserve.config import settings

    uvicorn.run(
        "snapserve.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# snapserve token
# ---------------------------------------------------------------------------


@main.command()
@click.argument("user_id", type=int)
@click.option(
    "--role", "-r", default="staff",
    type=click.Choice(["customer", "staff", "admin"]),
    help="Role carried by the token",
)
@click.option("--minutes", "-m", default=None, type=int, help="Lifetime in minutes")
def token(user_id: int, role: str, minutes: Optional[int]):
    """Mint an access token for USER_ID (signed with SNAPSERVE_JWT_SECRET)."""
    from snapserve.auth.jwt import create_access_token

    click.echo(create_access_token(user_id, role, expires_minutes=minutes))


# ---------------------------------------------------------------------------
# snapserve orders / feedback
# ---------------------------------------------------------------------------


@main.command()
@click.option("--status", "-s", "status_filter", help="Filter by status")
@click.option("--table-id", type=int, help="Filter by table")
@click.option("--token", "token_opt", help="Access token (or set SNAPSERVE_TOKEN)")
def orders(status_filter: Optional[str], table_id: Optional[int], token_opt: Optional[str]):
    """List orders (staff token required)."""
    _run(_orders_impl(status_filter, table_id, _token(token_opt)))


async def _orders_impl(status_filter: Optional[str], table_id: Optional[int],
                       token: Optional[str]):
    params: dict = {}
    if status_filter:
        params["status"] = status_filter
    if table_id is not None:
        params["table_id"] = table_id

    async with _client(token) as c:
        r = await c.get("/api/v1/orders", params=params)
        r.raise_for_status()
        data = r.json()

    click.secho(f"Orders ({len(data)}):", bold=True)
    _print_orders(data)


@main.command()
@click.option("--token", "token_opt", help="Access token (or set SNAPSERVE_TOKEN)")
@click.option("--json", "as_json", is_flag=True, help="Raw JSON output")
def feedback(token_opt: Optional[str], as_json: bool):
    """List customer feedback with sentiment (staff token required)."""
    _run(_feedback_impl(_token(token_opt), as_json))


async def _feedback_impl(token: Optional[str], as_json: bool):
    async with _client(token) as c:
        r = await c.get("/api/v1/feedback")
        r.raise_for_status()
        data = r.json()

    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
        return
    click.secho(f"Feedback ({len(data)}):", bold=True)
    _print_feedback(data)


# ---------------------------------------------------------------------------
# snapserve watch
# ---------------------------------------------------------------------------


@main.command()
@click.option("--user-id", type=int, help="Identity announced in the AUTH frame")
@click.option(
    "--role", "-r", default=None,
    type=click.Choice(["customer", "staff", "admin"]),
    help="Role announced in the AUTH frame",
)
@click.option("--token", "token_opt", help="Access token (or set SNAPSERVE_TOKEN)")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def watch(user_id: Optional[int], role: Optional[str], token_opt: Optional[str], verbose: bool):
    """Follow the live event feed and re-print collections as they change.

    Runs until the connection has failed five times in a row, or Ctrl+C.
    """
    _configure_logging(verbose)
    try:
        _run(_watch_impl(user_id, role, _token(token_opt)))
    except KeyboardInterrupt:
        click.echo("\nStopped.")


async def _watch_impl(user_id: Optional[int], role: Optional[str], token: Optional[str]):
    from snapserve.client.agent import ClientIdentity, ReconnectionAgent
    from snapserve.client.cache import ResourceCache
    from snapserve.client.transport import (
        HttpCollectionFetcher,
        websocket_connector,
        ws_url_from_api,
    )
    from snapserve.config import settings

    fetcher = HttpCollectionFetcher(_api_url(), token=token)

    async def fetch_and_print(collection: str):
        data = await fetcher(collection)
        click.secho(f"\n{collection} changed ({len(data)}):", bold=True)
        if collection == "orders":
            _print_orders(data)
        else:
            _print_feedback(data)
        return data

    identity = None
    if user_id is not None and role:
        identity = ClientIdentity(user_id=user_id, role=role)

    url = ws_url_from_api(_api_url(), settings.ws_path)
    cache = ResourceCache(fetcher=fetch_and_print)
    agent = ReconnectionAgent(websocket_connector(url, token=token), cache, identity)

    click.echo(f"Watching {url} (Ctrl+C to stop)")
    try:
        await agent.start()
        click.secho("Gave up reconnecting.", fg="red", err=True)
    finally:
        await agent.disconnect()
        await cache.aclose()
        await fetcher.aclose()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
