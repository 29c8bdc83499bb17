from __future__ import annotations

import asyncio
import logging
from typing import Any

import orjson
from aiohttp import web

from ..config import ServerConfig
from ..monitor.hub import BroadcastHub
from ..monitor.scheduler import PollScheduler
from ..targets import Target, TargetStore

LOGGER = logging.getLogger(__name__)

HUB_KEY = web.AppKey("hub", BroadcastHub)
SCHEDULER_KEY = web.AppKey("scheduler", PollScheduler)
TARGETS_KEY = web.AppKey("targets", TargetStore)
KEEPALIVE_KEY = web.AppKey("keepalive_seconds", float)

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _json(data: Any, *, status: int = 200) -> web.Response:
    return web.json_response(data, status=status, dumps=lambda obj: orjson.dumps(obj).decode())


class SseSink:
    def __init__(self, response: web.StreamResponse) -> None:
        self._response = response

    async def send(self, message: dict[str, Any]) -> None:
        await self._response.write(b"data: " + orjson.dumps(message) + b"\n\n")


async def listings_stream(request: web.Request) -> web.StreamResponse:
    hub = request.app[HUB_KEY]
    response = web.StreamResponse(headers=SSE_HEADERS)
    await response.prepare(request)
    client_id = await hub.subscribe(SseSink(response))
    if client_id is None:
        return response
    try:
        # Idle writes surface a closed connection as ConnectionResetError
        while True:
            await asyncio.sleep(request.app[KEEPALIVE_KEY])
            await response.write(b": keepalive\n\n")
    except ConnectionResetError:
        pass
    finally:
        hub.unsubscribe(client_id)
    return response


async def get_stats(request: web.Request) -> web.Response:
    return _json(request.app[SCHEDULER_KEY].stats())


async def get_target(request: web.Request) -> web.Response:
    target = request.app[TARGETS_KEY].get_target()
    return _json({"target": target.to_dict() if target else None})


async def post_target(request: web.Request) -> web.Response:
    try:
        payload = orjson.loads(await request.read())
        target = Target.from_payload(payload)
    except (orjson.JSONDecodeError, ValueError) as exc:
        return _json({"error": str(exc)}, status=400)
    await request.app[TARGETS_KEY].set_target(target)
    return _json({"success": True, "target": target.to_dict()})


async def delete_target(request: web.Request) -> web.Response:
    await request.app[TARGETS_KEY].remove_target()
    return _json({"success": True, "target": None})


async def clear_feed(request: web.Request) -> web.Response:
    await request.app[HUB_KEY].clear_history()
    return _json({"success": True, "message": "Feed history cleared"})


def create_app(
    *,
    hub: BroadcastHub,
    scheduler: PollScheduler,
    targets: TargetStore,
    keepalive_seconds: float = 15.0,
) -> web.Application:
    app = web.Application()
    app[HUB_KEY] = hub
    app[SCHEDULER_KEY] = scheduler
    app[TARGETS_KEY] = targets
    app[KEEPALIVE_KEY] = keepalive_seconds
    app.router.add_get("/api/listings-stream", listings_stream)
    app.router.add_get("/api/stats", get_stats)
    app.router.add_get("/api/target", get_target)
    app.router.add_post("/api/target", post_target)
    app.router.add_delete("/api/target", delete_target)
    app.router.add_post("/api/feed/clear", clear_feed)
    return app


class HttpServer:
    def __init__(self, app: web.Application, config: ServerConfig) -> None:
        self._app = app
        self._config = config
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        self._runner = web.AppRunner(self._app, access_log=None, shutdown_timeout=5.0)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await site.start()
        LOGGER.info("HTTP server listening", extra={"host": self._config.host, "port": self._config.port})

    async def shutdown(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
