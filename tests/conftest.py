"""
Global test fixtures for HostBridge tests
"""
import asyncio
import json
import pytest
import tempfile
import shutil
from pathlib import Path
from typing import Generator, List

import websockets

from hostbridge.config import Config
from hostbridge.host_integration import HostIntegration, ProcessSpawner
from hostbridge.registry import DeviceRegistry
from hostbridge.router import MessageRouter
from hostbridge.transfer_ledger import TransferLedger


class FakeConnection:
    """Records what the server sends; stands in for a websocket connection"""

    def __init__(self, name: str, events: List[tuple] = None):
        self.name = name
        self.events = events if events is not None else []
        self.sent: List[dict] = []
        self.closed = False
        self.close_code = None
        self.close_reason = None

    async def send(self, text: str):
        if self.closed:
            raise websockets.exceptions.ConnectionClosedOK(None, None)
        msg = json.loads(text)
        self.sent.append(msg)
        self.events.append((self.name, 'send', msg))

    async def close(self, code: int = 1000, reason: str = ""):
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self.events.append((self.name, 'close', reason))

    def of_type(self, msg_type: str) -> List[dict]:
        return [m for m in self.sent if m.get('type') == msg_type]

    def clear(self):
        self.sent.clear()


class SlowCloseConnection(FakeConnection):
    """close() blocks until the gate opens, like a dead peer"""

    def __init__(self, name: str, events: List[tuple] = None):
        super().__init__(name, events)
        self.gate = asyncio.Event()

    async def close(self, code: int = 1000, reason: str = ""):
        await self.gate.wait()
        await super().close(code, reason)


class FakeProcess:
    def __init__(self):
        self.stdout = None
        self.stderr = None
        self.returncode = 0

    async def wait(self):
        return self.returncode

    def kill(self):
        pass


class RecordingSpawner(ProcessSpawner):
    """Records spawn calls instead of starting processes"""

    def __init__(self):
        self.calls = []

    async def spawn(self, command, args, cwd):
        self.calls.append((command, list(args), cwd))
        return FakeProcess()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files"""
    path = Path(tempfile.mkdtemp(prefix="hostbridge_test_"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def sandbox_root(temp_dir: Path) -> Path:
    """A sandbox tree with a few files and a sibling outside it"""
    root = temp_dir / "root"
    (root / "docs").mkdir(parents=True)
    (root / "docs" / "readme.txt").write_text("hello")
    (root / "notes.txt").write_text("some notes")
    (temp_dir / "root2").mkdir()
    (temp_dir / "root2" / "secret.txt").write_text("outside")
    (temp_dir / "secret.txt").write_text("outside")
    return root


@pytest.fixture
def cfg(sandbox_root: Path) -> Config:
    return Config(
        token="secret",
        root_dir=str(sandbox_root),
        max_file_size=1000,
        max_chunk_size=100,
    )


@pytest.fixture
def spawner() -> RecordingSpawner:
    return RecordingSpawner()


@pytest.fixture
def host(cfg: Config, spawner: RecordingSpawner) -> HostIntegration:
    return HostIntegration(cfg, spawner=spawner)


@pytest.fixture
def registry() -> DeviceRegistry:
    return DeviceRegistry()


@pytest.fixture
def ledger(cfg: Config) -> TransferLedger:
    return TransferLedger(cfg.max_file_size, cfg.max_chunk_size)


@pytest.fixture
def router(registry, ledger, host, cfg) -> MessageRouter:
    return MessageRouter(registry, ledger, host, cfg)


@pytest.fixture
def events() -> List[tuple]:
    return []


@pytest.fixture
def make_connection(events):
    """Factory for fake connections sharing one event log"""
    def _make(name: str) -> FakeConnection:
        return FakeConnection(name, events)
    return _make


@pytest.fixture
def make_slow_connection(events):
    """Factory for connections whose close() waits on their gate"""
    def _make(name: str) -> SlowCloseConnection:
        return SlowCloseConnection(name, events)
    return _make
