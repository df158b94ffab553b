# -*- coding: utf-8 -*-
"""
server.py - WebSocket server for the device channel
Accepts device connections and feeds each frame to the message router
"""

from typing import Callable, Optional

import websockets
from websockets.asyncio.server import Server, ServerConnection, serve

from .router import MessageRouter

# Headroom for base64 expansion and JSON framing around a chunk
FRAME_OVERHEAD = 16 * 1024


class RelayServer:
    """
    WebSocket server relaying messages between devices.
    Each connection is driven by its own handler task.
    """

    def __init__(
        self,
        router: MessageRouter,
        host: str = "localhost",
        port: int = 8443,
        max_chunk_size: int = 64 * 1024,
        on_log: Optional[Callable[[str], None]] = None
    ):
        self.router = router
        self.host = host
        self.port = port
        self.max_message_size = max(1024 * 1024, (max_chunk_size * 4) // 3 + FRAME_OVERHEAD)
        self.on_log = on_log or (lambda x: None)
        self._server: Optional[Server] = None

    def _log(self, message: str):
        self.on_log(f"[SERVER] {message}")

    async def _handler(self, websocket: ServerConnection):
        """Handle client connection"""
        client_addr = websocket.remote_address
        session = self.router.open_session(websocket, remote=str(client_addr))
        self._log(f"Client connected: {client_addr}")

        try:
            async for message in websocket:
                await self.router.handle_raw(session, message)
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            await self.router.close_session(session)
            self._log(f"Client disconnected: {client_addr} ({session.identity or 'unauthenticated'})")

    async def start(self):
        """Start listening"""
        self._server = await serve(
            self._handler,
            self.host,
            self.port,
            ping_interval=30,
            ping_timeout=10,
            max_size=self.max_message_size,
        )
        self._log(f"Server started on ws://{self.host}:{self.port}")

    async def stop(self):
        """Stop the server"""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    @property
    def bound_port(self) -> Optional[int]:
        """Actual listening port, useful when started with port 0"""
        if not self._server or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    @property
    def client_count(self) -> int:
        return len(self.router.registry)
