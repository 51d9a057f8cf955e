"""Liveness HTTP server for the reportd daemon.

Hosting platforms (Replit, Render, ...) expect a port that answers; some
also idle the process unless it receives traffic, hence the self-ping.

Endpoints:
    GET /                — plain-text liveness answer
    GET /api/v1/status   — connection state + dispatcher counters
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from aiohttp import web

log = logging.getLogger(__name__)


class HealthServer:
    """aiohttp server exposing liveness and status."""

    def __init__(
        self,
        host: str,
        port: int,
        get_status: Any = None,
        alive_text: str = "Bot is alive ✅",
    ):
        self.host = host
        self.port = port
        self.alive_text = alive_text
        self._get_status = get_status
        self._runner: web.AppRunner | None = None

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/", self._handle_alive)
        app.router.add_get("/api/v1/status", self._handle_status)
        return app

    # ─── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the HTTP server."""
        self._runner = web.AppRunner(self.make_app(), access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        log.info("Health server listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Graceful shutdown."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        log.info("Health server stopped")

    # ─── Endpoints ────────────────────────────────────────────────

    async def _handle_alive(self, request: web.Request) -> web.Response:
        return web.Response(text=self.alive_text)

    async def _handle_status(self, request: web.Request) -> web.Response:
        """GET /api/v1/status — health check + stats."""
        if self._get_status:
            status = self._get_status()
        else:
            status = {"status": "ok"}
        return web.json_response(status, status=200)


async def self_ping_loop(url: str, interval: float,
                         client: httpx.AsyncClient | None = None) -> None:
    """GET url every interval seconds so idle-suspending hosts keep us up."""
    own_client = client is None
    client = client or httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0))
    log.info("Self-ping every %.0fs: %s", interval, url)
    try:
        while True:
            await asyncio.sleep(interval)
            try:
                resp = await client.get(url)
                log.debug("Self-ping OK: %d", resp.status_code)
            except httpx.HTTPError as e:
                log.warning("Self-ping failed: %s", e)
    finally:
        if own_client:
            await client.aclose()
