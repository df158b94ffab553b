# -*- coding: utf-8 -*-
"""
client.py - WebSocket client for the device channel
Connects to the relay, authenticates and exposes send helpers for
clipboard, file relay, host filesystem and shell messages
"""

import asyncio
import base64
import mimetypes
import uuid
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, Iterator, List, Optional

import websockets
from websockets.asyncio.client import ClientConnection, connect

from .protocol import MessageType, REPLACED_CLOSE_CODE, encode, safe_parse


def iter_chunks(fileobj: BinaryIO, chunk_size: int) -> Iterator[str]:
    """Read fileobj in chunk_size pieces, base64 encoded for file_chunk"""
    while True:
        data = fileobj.read(chunk_size)
        if not data:
            return
        yield base64.b64encode(data).decode('ascii')


class BridgeClient:
    """
    WebSocket client for a single device identity.
    Reconnects with exponential back-off until stopped or replaced.
    """

    def __init__(
        self,
        server_url: str,
        token: str,
        device_id: str = "",
        chunk_size: int = 64 * 1024,
        on_message: Optional[Callable[[Dict[str, Any]], None]] = None,
        on_log: Optional[Callable[[str], None]] = None,
        on_connected: Optional[Callable[[bool], None]] = None
    ):
        self.server_url = server_url
        self.token = token
        self.device_id = device_id
        self.chunk_size = chunk_size
        self.on_message = on_message or (lambda x: None)
        self.on_log = on_log or (lambda x: None)
        self.on_connected = on_connected or (lambda x: None)

        self._websocket: Optional[ClientConnection] = None
        self._running = False
        self._connected = False
        self._reconnect_delay = 1
        self.shell_enabled = False
        self.role = "client"

    def _log(self, message: str):
        self.on_log(f"[CLIENT] {message}")

    async def _authenticate(self, websocket: ClientConnection) -> bool:
        await websocket.send(encode({
            'type': MessageType.AUTH.value,
            'token': self.token,
            'deviceId': self.device_id,
        }))
        response = safe_parse(await asyncio.wait_for(websocket.recv(), timeout=10))
        if not response or response.get('type') != MessageType.ACK.value:
            error = response.get('error') if response else "invalid reply"
            self._log(f"Authentication failed: {error}")
            return False

        self.device_id = response.get('deviceId', self.device_id)
        self.role = response.get('role', 'client')
        self.shell_enabled = bool(response.get('shell'))
        return True

    async def run(self):
        """Connect and process messages until stop() or replacement"""
        self._running = True
        while self._running:
            try:
                self._log(f"Connecting to {self.server_url}...")

                async with connect(
                    self.server_url,
                    ping_interval=30,
                    ping_timeout=10
                ) as websocket:
                    self._websocket = websocket
                    if not await self._authenticate(websocket):
                        self._running = False
                        break

                    self._connected = True
                    self._reconnect_delay = 1
                    self._log(f"Connected as {self.device_id}")
                    self.on_connected(True)

                    async for message in websocket:
                        self._handle_message(message)

            except websockets.exceptions.ConnectionClosed as e:
                if e.rcvd is not None and e.rcvd.code == REPLACED_CLOSE_CODE:
                    self._log("Replaced by a newer connection with the same identity")
                    self._running = False
                else:
                    self._log("Connection closed")
            except (OSError, asyncio.TimeoutError) as e:
                self._log(f"Connection error: {e}")

            if self._connected:
                self._connected = False
                self.on_connected(False)
            self._websocket = None

            if self._running:
                self._log(f"Reconnecting in {self._reconnect_delay}s...")
                await asyncio.sleep(self._reconnect_delay)
                self._reconnect_delay = min(self._reconnect_delay * 2, 30)

    def _handle_message(self, message):
        """Handle incoming message from server"""
        data = safe_parse(message)
        if data is None:
            self._log("Invalid JSON received")
            return
        if data.get('type') == MessageType.ERROR.value:
            self._log(f"Server error: {data.get('error')}")
        self.on_message(data)

    async def stop(self):
        """Stop the client"""
        self._running = False
        if self._websocket:
            await self._websocket.close()

    @property
    def is_connected(self) -> bool:
        return self._connected

    # Outbound

    async def send(self, msg: Dict[str, Any]):
        if not self._websocket or not self._connected:
            raise ConnectionError("Not connected")
        await self._websocket.send(encode(msg))

    async def send_clipboard(self, text: str, to: Optional[str] = None):
        msg = {'type': MessageType.CLIPBOARD_UPDATE.value, 'data': text}
        if to:
            msg['to'] = to
        await self.send(msg)

    async def request_clipboard(self, target: str):
        await self.send({'type': MessageType.CLIPBOARD_REQUEST.value, 'targetDevice': target})

    async def respond_clipboard(self, requester: str, text: str):
        await self.send({
            'type': MessageType.CLIPBOARD_RESPONSE.value,
            'requesterDevice': requester,
            'data': text,
        })

    async def set_host_clipboard(self, text: str):
        await self.send({'type': MessageType.HOST_CLIPBOARD_SET.value, 'data': text})

    async def list_dir(self, path: str = ".") -> str:
        """Returns the requestId echoed by fs_list_result"""
        request_id = str(uuid.uuid4())
        await self.send({'type': MessageType.FS_LIST.value, 'requestId': request_id, 'path': path})
        return request_id

    async def run_shell(self, command: str, args: Optional[List[str]] = None) -> str:
        """Returns the requestId carried by shell_output/shell_done"""
        request_id = str(uuid.uuid4())
        await self.send({
            'type': MessageType.SHELL_RUN.value,
            'requestId': request_id,
            'command': command,
            'args': args or [],
        })
        return request_id

    async def send_file(self, path, to: str) -> str:
        """Relay a file to another device; returns the fileId"""
        path = Path(path)
        file_id = str(uuid.uuid4())
        size = path.stat().st_size
        await self.send({
            'type': MessageType.FILE_SEND_INIT.value,
            'fileId': file_id,
            'to': to,
            'name': path.name,
            'size': size,
            'mime': mimetypes.guess_type(path.name)[0] or 'application/octet-stream',
            'chunkSize': self.chunk_size,
        })

        try:
            with open(path, 'rb') as f:
                for seq, data in enumerate(iter_chunks(f, self.chunk_size)):
                    await self.send({
                        'type': MessageType.FILE_CHUNK.value,
                        'fileId': file_id,
                        'seq': seq,
                        'data': data,
                    })
        except OSError as e:
            await self.send({
                'type': MessageType.FILE_CANCEL.value,
                'fileId': file_id,
                'reason': e.strerror or "read error",
            })
            raise

        await self.send({'type': MessageType.FILE_COMPLETE.value, 'fileId': file_id})
        self._log(f"Sent {path.name} ({size} bytes) to {to}")
        return file_id
