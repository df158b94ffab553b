# -*- coding: utf-8 -*-
"""
clipboard_monitor.py - Host clipboard watcher
Polls the host clipboard on the event loop and reports changes,
deduplicated by content hash
"""

import asyncio
import hashlib
from typing import Awaitable, Callable, Optional
from dataclasses import dataclass
from datetime import datetime

from .errors import BridgeError


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode('utf-8')).hexdigest()


@dataclass
class ClipboardItem:
    """Represents a clipboard item"""
    content: str
    content_hash: str
    timestamp: datetime
    source: str = "host"

    @classmethod
    def from_content(cls, content: str, source: str = "host") -> 'ClipboardItem':
        """Create ClipboardItem from content string"""
        return cls(
            content=content,
            content_hash=content_hash(content),
            timestamp=datetime.now(),
            source=source
        )


class ClipboardWatcher:
    """
    Polls the clipboard at a fixed interval and triggers on_change when
    the content hash differs from the last one seen. Only the poll loop
    touches the stored hash.
    """

    def __init__(
        self,
        read_fn: Callable[[], Awaitable[str]],
        on_change: Callable[[ClipboardItem], Awaitable[None]],
        interval_ms: int = 2000,
        on_log: Optional[Callable[[str], None]] = None
    ):
        self.read_fn = read_fn
        self.on_change = on_change
        self.interval = interval_ms / 1000.0
        self.on_log = on_log or (lambda x: None)
        self._last_hash: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._read_failing = False

    def _log(self, message: str):
        self.on_log(f"[WATCHER] {message}")

    @property
    def last_hash(self) -> Optional[str]:
        return self._last_hash

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def poll_once(self) -> Optional[ClipboardItem]:
        """Read, hash, compare; report and return the item if it changed"""
        try:
            content = await self.read_fn()
        except BridgeError as e:
            # Logged once per failure streak
            if not self._read_failing:
                self._log(f"Clipboard read failed: {e.message}")
            self._read_failing = True
            return None
        self._read_failing = False

        content = content or ""
        new_hash = content_hash(content)
        if new_hash == self._last_hash:
            return None
        self._last_hash = new_hash
        # A cleared clipboard is remembered but not reported
        if not content:
            return None

        item = ClipboardItem.from_content(content)
        await self.on_change(item)
        return item

    async def _monitor_loop(self):
        """Main monitoring loop"""
        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._log(f"Clipboard watcher error: {e}")
            await asyncio.sleep(self.interval)

    def start(self):
        """Start monitoring clipboard"""
        if self.running:
            return
        self._task = asyncio.create_task(self._monitor_loop())
        self._log(f"Watching host clipboard every {self.interval:g}s")

    async def stop(self):
        """Stop monitoring clipboard"""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
