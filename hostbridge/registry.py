# -*- coding: utf-8 -*-
"""
registry.py - Device registry
Maps device identity to its live connection and broadcasts presence.
At most one live device per identity: a newcomer replaces the holder.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import websockets

from .protocol import (
    MessageType, REPLACED_CLOSE_CODE, REPLACED_CLOSE_REASON, encode, now_ms,
)


@dataclass(eq=False)
class Device:
    """An authenticated connection endpoint"""
    identity: str
    connection: Any
    connected_at: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.time)


def assign_identity(requested) -> str:
    """Use the caller's identity, or mint one when it is blank"""
    if isinstance(requested, str) and requested.strip():
        return requested.strip()
    return f"device-{uuid.uuid4()}"


class DeviceRegistry:
    """
    Owns the identity -> Device map and message delivery.
    All mutation happens on the event loop, one message at a time.
    """

    def __init__(self, on_log: Optional[Callable[[str], None]] = None):
        self.on_log = on_log or (lambda x: None)
        self._devices: Dict[str, Device] = {}

    def _log(self, message: str):
        self.on_log(f"[REGISTRY] {message}")

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, identity: str) -> bool:
        return identity in self._devices

    @property
    def identities(self) -> List[str]:
        return list(self._devices.keys())

    def lookup(self, identity: str) -> Optional[Device]:
        if not isinstance(identity, str):
            return None
        return self._devices.get(identity)

    def touch(self, identity: str):
        device = self._devices.get(identity)
        if device:
            device.last_seen = time.time()

    async def register(self, identity: str, connection,
                       greeting: Optional[Dict[str, Any]] = None) -> Device:
        """
        Install connection under identity.
        The new device takes the identity at once; the previous holder,
        if any, is then closed with the replaced reason. greeting is sent
        to the new connection after that close and ahead of the presence
        broadcasts.
        """
        # Installed before any await so a concurrent registration sees it
        previous = self._devices.pop(identity, None)
        device = Device(identity=identity, connection=connection)
        self._devices[identity] = device
        if previous is not None and previous.connection is not connection:
            self._log(f"Replacing connection for {identity}")
            try:
                await previous.connection.close(REPLACED_CLOSE_CODE, REPLACED_CLOSE_REASON)
            except websockets.exceptions.WebSocketException as e:
                self._log(f"Close of replaced connection failed: {e}")

        self._log(f"Device online: {identity} (Total: {len(self._devices)})")
        if greeting is not None:
            await self.send(connection, greeting)
        await self.broadcast_presence(identity, "online")
        await self.broadcast_device_list()
        return device

    async def unregister(self, identity: str, connection=None) -> bool:
        """
        Remove identity if it is still held by connection.
        Returns False when a newer connection owns the identity.
        """
        device = self._devices.get(identity)
        if device is None:
            return False
        if connection is not None and device.connection is not connection:
            return False
        del self._devices[identity]
        online = time.time() - device.connected_at
        self._log(f"Device offline: {identity} after {online:.0f}s (Total: {len(self._devices)})")
        await self.broadcast_presence(identity, "offline")
        await self.broadcast_device_list()
        return True

    async def send(self, connection, msg: Dict[str, Any]) -> bool:
        """Deliver to one connection; a closed peer is skipped"""
        try:
            await connection.send(encode(msg))
            return True
        except websockets.exceptions.ConnectionClosed as e:
            self._log(f"Skipped closed connection: {e}")
            return False

    async def forward(self, identity: str, msg: Dict[str, Any]) -> bool:
        """Deliver to a device by identity; False if it is not online"""
        device = self.lookup(identity)
        if device is None:
            return False
        return await self.send(device.connection, msg)

    async def broadcast(self, msg: Dict[str, Any], exclude: Optional[str] = None):
        """Deliver to every device except exclude"""
        for identity, device in list(self._devices.items()):
            if identity == exclude:
                continue
            await self.send(device.connection, msg)

    async def broadcast_presence(self, identity: str, status: str):
        await self.broadcast({
            'type': MessageType.PRESENCE.value,
            'deviceId': identity,
            'status': status,
            'timestamp': now_ms(),
        })

    async def broadcast_device_list(self):
        await self.broadcast({
            'type': MessageType.DEVICE_LIST.value,
            'devices': self.identities,
        })

    async def close_all(self, code: int = 1001, reason: str = "Server shutting down"):
        for device in list(self._devices.values()):
            try:
                await device.connection.close(code, reason)
            except websockets.exceptions.WebSocketException:
                pass
        self._devices.clear()
