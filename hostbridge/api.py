# -*- coding: utf-8 -*-
"""
api.py - HTTP file API
Token-authenticated listing, download and upload of sandboxed host files
"""

import os
import secrets
from pathlib import Path
from typing import Callable, List, Optional

from aiohttp import web

from .config import Config, config as default_config
from .errors import (
    AuthFailure, BridgeError, CapacityViolation, ProtocolError, from_os_error,
)
from .host_integration import Sandbox

TOKEN_HEADER = "X-Auth-Token"
WRITE_CHUNK_SIZE = 64 * 1024


def _error(text: str, status: int) -> web.Response:
    return web.json_response({'error': text}, status=status)


class FileApi:
    """Request handlers over a Sandbox"""

    def __init__(
        self,
        sandbox: Sandbox,
        cfg: Optional[Config] = None,
        on_log: Optional[Callable[[str], None]] = None
    ):
        self.sandbox = sandbox
        self.config = cfg or default_config
        self.on_log = on_log or (lambda x: None)

    def _log(self, message: str):
        self.on_log(f"[API] {message}")

    def check_token(self, request: web.Request):
        token = request.headers.get(TOKEN_HEADER, "")
        if not secrets.compare_digest(token.encode('utf-8'), self.config.token.encode('utf-8')):
            raise AuthFailure("Unauthorized")

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response({'ok': True})

    async def list_dir(self, request: web.Request) -> web.Response:
        rel = request.query.get('path') or "."
        return web.json_response(self.sandbox.list_directory(rel))

    async def download(self, request: web.Request) -> web.StreamResponse:
        path = self.sandbox.resolve_file(request.query.get('path'))
        filename = path.name.replace('"', '')
        self._log(f"Download: {request.query.get('path')}")
        return web.FileResponse(path, headers={
            'Content-Disposition': f'attachment; filename="{filename}"',
        })

    async def upload(self, request: web.Request) -> web.Response:
        if not request.content_type.startswith("multipart/"):
            raise ProtocolError("multipart/form-data required")
        dest = self.sandbox.ensure_directory(request.query.get('dest') or ".")
        reader = await request.multipart()
        saved: List[dict] = []

        async for part in reader:
            filename = getattr(part, 'filename', None)
            if not filename:
                continue
            name = Sandbox.safe_filename(filename)
            # Re-check through the sandbox so an existing symlink cannot redirect the write
            out = self.sandbox.resolve_path(os.path.relpath(dest / name, self.sandbox.root))
            size = await self._write_part(part, out)
            saved.append({'file': name, 'size': size})
            self._log(f"Saved upload {name} ({size} bytes)")

        return web.json_response({'saved': saved})

    async def _write_part(self, part, out: Path) -> int:
        size = 0
        try:
            with open(out, 'wb') as f:
                while True:
                    chunk = await part.read_chunk(WRITE_CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > self.config.max_file_size:
                        raise CapacityViolation("File too large")
                    f.write(chunk)
        except BaseException:
            # No partial file survives a failed or aborted upload
            out.unlink(missing_ok=True)
            raise
        return size


def create_app(
    sandbox: Sandbox,
    cfg: Optional[Config] = None,
    on_log: Optional[Callable[[str], None]] = None
) -> web.Application:
    """Build the aiohttp application"""
    api = FileApi(sandbox, cfg, on_log)
    expose = api.config.expose_error_details

    @web.middleware
    async def errors_middleware(request: web.Request, handler):
        try:
            if request.path.startswith('/api/'):
                api.check_token(request)
            return await handler(request)
        except BridgeError as e:
            return _error(e.message, e.http_status)
        except OSError as e:
            return _error(from_os_error(e, expose).message, 400)

    app = web.Application(middlewares=[errors_middleware])
    app.router.add_get('/health', api.health)
    app.router.add_get('/api/dir', api.list_dir)
    app.router.add_get('/api/download', api.download)
    app.router.add_post('/api/upload', api.upload)
    return app


class ApiServer:
    """Runs the file API on its own port"""

    def __init__(
        self,
        app: web.Application,
        host: str = "localhost",
        port: int = 8444,
        on_log: Optional[Callable[[str], None]] = None
    ):
        self.app = app
        self.host = host
        self.port = port
        self.on_log = on_log or (lambda x: None)
        self._runner: Optional[web.AppRunner] = None

    async def start(self):
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        self.on_log(f"[API] Listening on http://{self.host}:{self.port}")

    async def stop(self):
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
