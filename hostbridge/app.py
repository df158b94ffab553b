# -*- coding: utf-8 -*-
"""
app.py - Main application controller for HostBridge
Coordinates all components: relay server, file API, host integration,
clipboard watcher
"""

import asyncio
import logging
import os
import signal
from typing import Optional

from .api import ApiServer, create_app
from .clipboard_monitor import ClipboardWatcher
from .config import Config, config as default_config
from .host_integration import HostIntegration
from .registry import DeviceRegistry
from .router import MessageRouter
from .server import RelayServer
from .transfer_ledger import TransferLedger

logger = logging.getLogger("hostbridge")


class BridgeApp:
    """
    Main application controller.
    Builds one instance of every component and owns their lifetime.
    """

    def __init__(self, cfg: Optional[Config] = None):
        self.config = cfg or default_config
        self._stop_event: Optional[asyncio.Event] = None

        self.host = HostIntegration(self.config, on_log=self._log)
        self.registry = DeviceRegistry(on_log=self._log)
        self.ledger = TransferLedger(
            max_file_size=self.config.max_file_size,
            max_chunk_size=self.config.max_chunk_size,
            on_log=self._log
        )
        self.router = MessageRouter(
            self.registry, self.ledger, self.host, self.config, on_log=self._log
        )
        self.watcher = ClipboardWatcher(
            read_fn=self.host.read_clipboard,
            on_change=self.router.broadcast_host_clipboard,
            interval_ms=self.config.clipboard_interval_ms,
            on_log=self._log
        )
        self.server = RelayServer(
            self.router,
            host=self.config.host,
            port=self.config.server_port,
            max_chunk_size=self.config.max_chunk_size,
            on_log=self._log
        )
        self.api = ApiServer(
            create_app(self.host.sandbox, self.config, on_log=self._log),
            host=self.config.host,
            port=self.config.api_port,
            on_log=self._log
        )

    def _log(self, message: str):
        logger.info(message)

    async def start(self):
        if self.config.uses_default_token:
            logger.warning("Using the default token; set SERVER_TOKEN before exposing this server")
        await self.server.start()
        await self.api.start()
        if self.config.clipboard_watch_enabled:
            self.watcher.start()
        self._log(f"Sandbox root: {self.host.sandbox.root}")
        self._log(
            f"Shell allowed: {self.config.allow_shell}, "
            f"Clipboard set allowed: {self.config.allow_remote_clipboard_set}"
        )

    async def stop(self):
        await self.watcher.stop()
        await self.api.stop()
        await self.registry.close_all()
        await self.server.stop()
        await self.router.shutdown()
        self._log("Server stopped")

    def request_stop(self):
        if self._stop_event:
            self._stop_event.set()

    async def run(self):
        """Run until SIGINT/SIGTERM"""
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError):
                pass

        await self.start()
        try:
            await self._stop_event.wait()
        finally:
            await self.stop()


def main():
    """Application entry point"""
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    app = BridgeApp()
    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
