# -*- coding: utf-8 -*-
"""
transfer_ledger.py - Byte accounting for relayed file transfers
Tracks in-flight device-to-device transfers and enforces size limits.
Chunks are never buffered here; the router relays each one as it arrives.
"""

import base64
import binascii
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from .errors import CapacityViolation, ProtocolError


class TransferState(Enum):
    """Transfer state enumeration"""
    INIT = "init"
    ACTIVE = "active"
    COMPLETE = "complete"
    CANCELED = "canceled"


@dataclass
class FileTransferSession:
    """Server-side bookkeeping for one file relay"""
    file_id: str
    sender: str
    recipient: str
    size: int
    received_bytes: int = 0
    chunks: int = 0
    state: TransferState = TransferState.INIT
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def involves(self, identity: str) -> bool:
        return identity in (self.sender, self.recipient)

    def peer_of(self, identity: str) -> str:
        return self.recipient if identity == self.sender else self.sender

    @property
    def progress(self) -> float:
        """Transfer progress as percentage"""
        if self.size == 0:
            return 0.0
        return (self.received_bytes / self.size) * 100


def payload_length(data) -> int:
    """Decoded length of a base64 chunk payload"""
    if not isinstance(data, str):
        raise ProtocolError("Chunk data must be a base64 string")
    try:
        return len(base64.b64decode(data))
    except (binascii.Error, ValueError):
        raise ProtocolError("Invalid chunk encoding")


class TransferLedger:
    """
    In-flight transfers keyed by fileId.

    A session leaves the ledger on completion, cancellation, or a size
    violation. received_bytes never exceeds the declared size while a
    session is present.
    """

    def __init__(
        self,
        max_file_size: int,
        max_chunk_size: Optional[int] = None,
        on_log: Optional[Callable[[str], None]] = None
    ):
        self.max_file_size = max_file_size
        self.max_chunk_size = max_chunk_size
        self.on_log = on_log or (lambda x: None)
        self._sessions: Dict[str, FileTransferSession] = {}

    def _log(self, message: str):
        self.on_log(f"[LEDGER] {message}")

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, file_id: str) -> bool:
        return file_id in self._sessions

    def get(self, file_id: str) -> Optional[FileTransferSession]:
        return self._sessions.get(file_id)

    def sessions(self) -> List[FileTransferSession]:
        return list(self._sessions.values())

    def _owned(self, file_id, sender: str) -> FileTransferSession:
        session = self._sessions.get(file_id) if isinstance(file_id, str) else None
        if session is None or session.sender != sender:
            raise ProtocolError("Unknown fileId")
        return session

    def init(self, file_id, sender: str, recipient, size) -> FileTransferSession:
        """Open a session; raises before anything is recorded"""
        if not file_id or not isinstance(file_id, str) or not recipient or not isinstance(recipient, str):
            raise ProtocolError("Missing file init params")
        if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
            raise ProtocolError("Missing file init params")
        if size > self.max_file_size:
            raise CapacityViolation("File too large")
        if file_id in self._sessions:
            raise ProtocolError("Duplicate fileId")

        session = FileTransferSession(
            file_id=file_id,
            sender=sender,
            recipient=recipient,
            size=size,
            state=TransferState.ACTIVE,
        )
        self._sessions[file_id] = session
        self._log(f"Transfer {file_id}: {sender} -> {recipient}, {size} bytes")
        return session

    def chunk(self, file_id, sender: str, data) -> FileTransferSession:
        """
        Account for one chunk.

        Returns the session when the chunk may be relayed. On a size or
        chunk-limit violation the session is destroyed and
        CapacityViolation is raised; the chunk must not be forwarded.
        """
        session = self._owned(file_id, sender)
        nbytes = payload_length(data)

        if self.max_chunk_size is not None and nbytes > self.max_chunk_size:
            self._drop(session, TransferState.CANCELED)
            self._log(f"Transfer {file_id}: chunk of {nbytes} bytes over limit, dropped")
            raise CapacityViolation("Chunk too large")

        if session.received_bytes + nbytes > session.size:
            self._drop(session, TransferState.CANCELED)
            self._log(f"Transfer {file_id}: size exceeded, dropped")
            raise CapacityViolation("File size exceeded")

        session.received_bytes += nbytes
        session.chunks += 1
        session.updated_at = time.time()
        return session

    def complete(self, file_id, sender: str) -> Optional[FileTransferSession]:
        """Close a finished session; None if unknown"""
        try:
            session = self._owned(file_id, sender)
        except ProtocolError:
            return None
        self._drop(session, TransferState.COMPLETE)
        self._log(f"Transfer {file_id}: complete, {session.received_bytes}/{session.size} bytes ({session.progress:.0f}%)")
        return session

    def cancel(self, file_id, sender: str) -> Optional[FileTransferSession]:
        """Cancel regardless of prior state; None if unknown"""
        try:
            session = self._owned(file_id, sender)
        except ProtocolError:
            return None
        self._drop(session, TransferState.CANCELED)
        self._log(f"Transfer {file_id}: canceled at {session.progress:.0f}%")
        return session

    def drop_device(self, identity: str) -> List[FileTransferSession]:
        """Remove every session the device sends or receives"""
        dropped = [s for s in self._sessions.values() if s.involves(identity)]
        for session in dropped:
            self._drop(session, TransferState.CANCELED)
        if dropped:
            self._log(f"Dropped {len(dropped)} transfer(s) of {identity}")
        return dropped

    def _drop(self, session: FileTransferSession, state: TransferState):
        session.state = state
        session.updated_at = time.time()
        self._sessions.pop(session.file_id, None)
