# -*- coding: utf-8 -*-
"""
router.py - Per-connection protocol state machine
Authenticates connections, dispatches messages by kind and applies the
forward/broadcast policy. Messages from one connection are handled in
arrival order; nothing here is shared across threads.
"""

import logging
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from .clipboard_monitor import ClipboardItem
from .config import Config, config as default_config
from .errors import (
    AuthFailure, BridgeError, ConfigurationDenied, DeviceNotFound,
    ProtocolError, from_os_error,
)
from .host_integration import HostIntegration
from .protocol import HOST_IDENTITY, MessageType, error_message, now_ms, safe_parse
from .registry import DeviceRegistry, assign_identity
from .transfer_ledger import TransferLedger

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


@dataclass(eq=False)
class Session:
    """Protocol state of one connection"""
    connection: Any
    remote: str = ""
    state: ConnectionState = ConnectionState.UNAUTHENTICATED
    identity: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.state is ConnectionState.AUTHENTICATED


Handler = Callable[[Session, Dict[str, Any]], Awaitable[None]]


class MessageRouter:
    """
    Dispatcher shared by every connection of the process.
    Owns no transport: the websocket server feeds it raw frames.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        ledger: TransferLedger,
        host: HostIntegration,
        cfg: Optional[Config] = None,
        on_log: Optional[Callable[[str], None]] = None
    ):
        self.registry = registry
        self.ledger = ledger
        self.host = host
        self.config = cfg or default_config
        self.on_log = on_log or (lambda x: None)

        self._handlers: Dict[MessageType, Handler] = {
            MessageType.CLIPBOARD_UPDATE: self._on_clipboard_update,
            MessageType.CLIPBOARD_REQUEST: self._on_clipboard_request,
            MessageType.CLIPBOARD_RESPONSE: self._on_clipboard_response,
            MessageType.HOST_CLIPBOARD_SET: self._on_host_clipboard_set,
            MessageType.FILE_SEND_INIT: self._on_file_send_init,
            MessageType.FILE_CHUNK: self._on_file_chunk,
            MessageType.FILE_COMPLETE: self._on_file_complete,
            MessageType.FILE_CANCEL: self._on_file_cancel,
            MessageType.FS_LIST: self._on_fs_list,
            MessageType.SHELL_RUN: self._on_shell_run,
        }

    def _log(self, message: str):
        self.on_log(f"[ROUTER] {message}")

    # Connection lifecycle

    def open_session(self, connection, remote: str = "") -> Session:
        return Session(connection=connection, remote=remote)

    async def close_session(self, session: Session):
        """Unregister the device and cancel the transfers it was part of"""
        was_authenticated = session.authenticated
        session.state = ConnectionState.CLOSED
        if not was_authenticated or session.identity is None:
            return

        identity = session.identity
        if not await self.registry.unregister(identity, session.connection):
            # A newer connection holds the identity
            return

        for transfer in self.ledger.drop_device(identity):
            peer = transfer.peer_of(identity)
            await self.registry.forward(peer, {
                'type': MessageType.FILE_CANCEL.value,
                'fileId': transfer.file_id,
                'from': identity,
                'reason': "Peer disconnected",
            })

    # Inbound

    async def handle_raw(self, session: Session, raw):
        msg = safe_parse(raw)
        if msg is None:
            await self.registry.send(session.connection, error_message("Invalid JSON"))
            return
        await self.handle_message(session, msg)

    async def handle_message(self, session: Session, msg: Dict[str, Any]):
        """Dispatch one decoded message; every failure becomes a reply"""
        request_id = msg.get('requestId')
        try:
            await self._dispatch(session, msg)
        except BridgeError as e:
            if e.request_id is None:
                e.request_id = request_id
            await self.registry.send(session.connection, e.to_message())
        except OSError as e:
            err = from_os_error(e, self.config.expose_error_details, request_id)
            await self.registry.send(session.connection, err.to_message())
        except Exception:
            logger.exception("Unhandled error for message type %r", msg.get('type'))
            await self.registry.send(session.connection, error_message("Internal error", request_id))

    async def _dispatch(self, session: Session, msg: Dict[str, Any]):
        kind = msg.get('type')
        if kind == MessageType.AUTH.value:
            await self._on_auth(session, msg)
            return

        if not session.authenticated:
            raise AuthFailure("Not authenticated")
        self.registry.touch(session.identity)

        handler = self._handlers.get(MessageType.lookup(kind))
        if handler is None:
            raise ProtocolError(f"Unknown message type: {kind}")
        await handler(session, msg)

    async def _on_auth(self, session: Session, msg: Dict[str, Any]):
        if session.authenticated:
            raise ProtocolError("Already authenticated")

        token = msg.get('token')
        if not isinstance(token, str) or not secrets.compare_digest(
                token.encode('utf-8'), self.config.token.encode('utf-8')):
            self._log(f"Rejected auth from {session.remote or 'unknown'}")
            raise AuthFailure("Unauthorized")

        identity = assign_identity(msg.get('deviceId'))
        session.identity = identity
        session.state = ConnectionState.AUTHENTICATED
        await self.registry.register(identity, session.connection, greeting={
            'type': MessageType.ACK.value,
            'deviceId': identity,
            'role': 'host' if identity == HOST_IDENTITY else 'client',
            'shell': self.config.allow_shell,
        })

    async def _forward_or_fail(self, target: str, msg: Dict[str, Any]):
        if not await self.registry.forward(target, msg):
            raise DeviceNotFound(target)

    # Clipboard

    async def _on_clipboard_update(self, session, msg):
        if not isinstance(msg.get('data'), str):
            raise ProtocolError("Invalid clipboard data")
        enriched = {**msg, 'from': session.identity, 'timestamp': now_ms()}
        target = msg.get('to')
        if target:
            await self._forward_or_fail(target, enriched)
        else:
            await self.registry.broadcast(enriched, exclude=session.identity)

    async def _on_clipboard_request(self, session, msg):
        target = msg.get('targetDevice') or msg.get('to')
        if not target:
            raise ProtocolError("targetDevice required")
        await self._forward_or_fail(target, {**msg, 'from': session.identity})

    async def _on_clipboard_response(self, session, msg):
        target = msg.get('requesterDevice') or msg.get('to')
        if not target:
            raise ProtocolError("requesterDevice required")
        await self._forward_or_fail(target, {**msg, 'from': session.identity})

    async def _on_host_clipboard_set(self, session, msg):
        if not self.config.allow_remote_clipboard_set:
            raise ConfigurationDenied("Host clipboard setting disabled")
        data = msg.get('data')
        if not isinstance(data, str):
            raise ProtocolError("Invalid clipboard data")
        await self.host.write_clipboard(data)
        self._log(f"Host clipboard set by {session.identity}")
        await self.registry.broadcast(self._host_clipboard_message(data))

    def _host_clipboard_message(self, text: str) -> Dict[str, Any]:
        return {
            'type': MessageType.HOST_CLIPBOARD_UPDATE.value,
            'data': text,
            'from': HOST_IDENTITY,
            'timestamp': now_ms(),
        }

    async def broadcast_host_clipboard(self, item: ClipboardItem):
        """Clipboard watcher sink"""
        await self.registry.broadcast(self._host_clipboard_message(item.content))

    # File relay

    async def _on_file_send_init(self, session, msg):
        transfer = self.ledger.init(msg.get('fileId'), session.identity, msg.get('to'), msg.get('size'))
        forwarded = await self.registry.forward(transfer.recipient, {**msg, 'from': session.identity})
        if not forwarded:
            self.ledger.cancel(transfer.file_id, session.identity)
            raise DeviceNotFound(transfer.recipient)

    async def _on_file_chunk(self, session, msg):
        transfer = self.ledger.chunk(msg.get('fileId'), session.identity, msg.get('data'))
        await self.registry.forward(transfer.recipient, {**msg, 'from': session.identity})

    async def _on_file_complete(self, session, msg):
        transfer = self.ledger.complete(msg.get('fileId'), session.identity)
        if transfer:
            await self.registry.forward(transfer.recipient, {**msg, 'from': session.identity})

    async def _on_file_cancel(self, session, msg):
        transfer = self.ledger.cancel(msg.get('fileId'), session.identity)
        if transfer:
            await self.registry.forward(transfer.recipient, {
                **msg,
                'from': session.identity,
                'reason': msg.get('reason') or "",
            })

    # Host filesystem and shell

    async def _on_fs_list(self, session, msg):
        data = self.host.list_directory(msg.get('path') or ".")
        await self.registry.send(session.connection, {
            'type': MessageType.FS_LIST_RESULT.value,
            'requestId': msg.get('requestId'),
            'data': data,
        })

    async def _on_shell_run(self, session, msg):
        request_id = msg.get('requestId')
        connection = session.connection

        async def on_output(stream: str, text: str):
            await self.registry.send(connection, {
                'type': MessageType.SHELL_OUTPUT.value,
                'requestId': request_id,
                'stream': stream,
                'data': text,
            })

        async def on_exit(code: int):
            await self.registry.send(connection, {
                'type': MessageType.SHELL_DONE.value,
                'requestId': request_id,
                'code': code,
            })

        args = msg.get('args')
        await self.host.run_command(
            msg.get('command'),
            [] if args is None else args,
            on_output,
            on_exit,
            request_id=request_id,
        )
        self._log(f"Shell request {request_id} from {session.identity}")

    async def shutdown(self):
        await self.host.shutdown()
