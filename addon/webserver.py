#!/usr/bin/env python3
"""Proxy-facing web server.

Inbound proxy commands arrive as HTTP POSTs (or as frames on the events
websocket); outbound notifications stream to every connected events
websocket as {"name": ..., "params": {...}} JSON frames.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set

from aiohttp import WSMsgType, web
from aiohttp.web import Request, Response

from commands import dispatch
from notifier import Notification, Notifier

logger = logging.getLogger(__name__)


class ProxyServer:
    """aiohttp application bridging the proxy to a LightDriver."""

    def __init__(self, driver, notifier: Notifier, port: int = 8099):
        self.driver = driver
        self.notifier = notifier
        self.port = port
        self.app = web.Application()
        self._clients: Set[asyncio.Queue] = set()
        self._unsubscribe = notifier.subscribe(self._broadcast)
        self.setup_routes()

    def setup_routes(self):
        """Set up web routes."""
        self.app.router.add_post('/api/command/{command}', self.handle_command)
        self.app.router.add_get('/api/events', self.handle_events)
        self.app.router.add_get('/api/state', self.get_state)
        self.app.router.add_get('/health', self.health_check)

    def _broadcast(self, notification: Notification) -> None:
        payload = notification.to_dict()
        for queue in list(self._clients):
            queue.put_nowait(payload)

    def _run_command(self, command: str, params: Any) -> bool:
        if params is not None and not isinstance(params, dict):
            logger.warning(f"Ignoring {command}: parameters must be an object, got {type(params).__name__}")
            return False
        return dispatch(self.driver, command, params)

    async def handle_command(self, request: Request) -> Response:
        """Run one proxy command from a JSON body of parameters."""
        command = request.match_info["command"]
        params: Optional[Dict[str, Any]] = None
        if request.can_read_body:
            try:
                params = await request.json()
            except json.JSONDecodeError as e:
                return web.json_response({"error": f"Invalid JSON: {e}"}, status=400)
            if not isinstance(params, dict):
                return web.json_response({"error": "Parameters must be a JSON object"}, status=400)

        try:
            handled = self._run_command(command, params)
        except Exception as e:
            logger.error(f"Error handling proxy command {command}: {e}")
            return web.json_response({"error": str(e)}, status=500)

        if not handled:
            return web.json_response({"handled": False, "error": f"Unknown command {command}"}, status=404)
        return web.json_response({"handled": True})

    async def handle_events(self, request: Request) -> web.WebSocketResponse:
        """Stream notifications to the proxy; accept commands in return."""
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        queue: asyncio.Queue = asyncio.Queue()
        self._clients.add(queue)
        sender = asyncio.create_task(self._send_events(ws, queue))
        logger.info(f"Proxy connected from {request.remote}")

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    self._handle_frame(msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.error(f"Proxy websocket error: {ws.exception()}")
        finally:
            self._clients.discard(queue)
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass
            logger.info("Proxy disconnected")

        return ws

    def _handle_frame(self, data: str) -> None:
        try:
            frame = json.loads(data)
        except json.JSONDecodeError:
            logger.error(f"Failed to decode proxy frame: {data}")
            return
        if not isinstance(frame, dict) or "command" not in frame:
            logger.warning(f"Ignoring proxy frame without a command: {frame}")
            return
        try:
            self._run_command(str(frame["command"]), frame.get("params"))
        except Exception as e:
            logger.error(f"Error handling proxy command {frame['command']}: {e}")

    async def _send_events(self, ws: web.WebSocketResponse, queue: asyncio.Queue) -> None:
        while True:
            payload = await queue.get()
            try:
                await ws.send_json(payload)
            except ConnectionResetError as e:
                logger.warning(f"Dropping notification {payload['name']}: {e}")
                self._clients.discard(queue)
                return

    async def get_state(self, request: Request) -> Response:
        """Current light state as the driver sees it."""
        return web.json_response(self.driver.snapshot())

    async def health_check(self, request: Request) -> Response:
        """Health check endpoint."""
        return web.json_response({"status": "healthy"})

    async def start(self):
        """Start the web server and serve until cancelled."""
        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, '0.0.0.0', self.port)
        await site.start()
        logger.info(f"Proxy server started on port {self.port}")

        try:
            await asyncio.Event().wait()
        finally:
            self._unsubscribe()
            await runner.cleanup()
