"""
Unit tests for transfer_ledger.py - Transfer byte accounting
"""
import base64

import pytest

from hostbridge.errors import CapacityViolation, ProtocolError
from hostbridge.transfer_ledger import (
    FileTransferSession, TransferLedger, TransferState, payload_length,
)


def b64(n: int) -> str:
    return base64.b64encode(b"x" * n).decode("ascii")


@pytest.fixture
def ledger() -> TransferLedger:
    return TransferLedger(max_file_size=1000, max_chunk_size=100)


class TestInit:
    """Tests for TransferLedger.init"""

    def test_creates_active_session(self, ledger):
        session = ledger.init("f1", "A", "B", 100)
        assert session.state == TransferState.ACTIVE
        assert session.received_bytes == 0
        assert ledger.get("f1") is session
        assert len(ledger) == 1

    def test_too_large_rejected(self, ledger):
        with pytest.raises(CapacityViolation, match="File too large"):
            ledger.init("f1", "A", "B", 1001)
        assert len(ledger) == 0

    @pytest.mark.parametrize("file_id,to,size", [
        (None, "B", 10),
        ("f1", None, 10),
        ("f1", "B", 0),
        ("f1", "B", -5),
        ("f1", "B", "10"),
        ("f1", "B", True),
        ("f1", "B", 1.5),
    ])
    def test_missing_params(self, ledger, file_id, to, size):
        with pytest.raises(ProtocolError):
            ledger.init(file_id, "A", to, size)
        assert len(ledger) == 0

    def test_duplicate_file_id(self, ledger):
        ledger.init("f1", "A", "B", 10)
        with pytest.raises(ProtocolError, match="Duplicate fileId"):
            ledger.init("f1", "C", "D", 10)
        assert ledger.get("f1").sender == "A"


class TestChunk:
    """Tests for TransferLedger.chunk"""

    def test_accumulates_decoded_bytes(self, ledger):
        ledger.init("f1", "A", "B", 100)
        ledger.chunk("f1", "A", b64(50))
        session = ledger.chunk("f1", "A", b64(50))
        assert session.received_bytes == 100
        assert session.chunks == 2
        assert session.progress == 100.0

    def test_unknown_file_id(self, ledger):
        with pytest.raises(ProtocolError, match="Unknown fileId"):
            ledger.chunk("nope", "A", b64(1))

    def test_only_sender_may_send_chunks(self, ledger):
        ledger.init("f1", "A", "B", 100)
        with pytest.raises(ProtocolError, match="Unknown fileId"):
            ledger.chunk("f1", "B", b64(10))
        assert ledger.get("f1").received_bytes == 0

    def test_size_exceeded_destroys_session(self):
        ledger = TransferLedger(max_file_size=1000)
        ledger.init("f1", "A", "B", 10)
        ledger.chunk("f1", "A", b64(6))
        with pytest.raises(CapacityViolation, match="File size exceeded"):
            ledger.chunk("f1", "A", b64(5))
        assert "f1" not in ledger
        with pytest.raises(ProtocolError, match="Unknown fileId"):
            ledger.chunk("f1", "A", b64(1))

    def test_exact_size_is_allowed(self, ledger):
        ledger.init("f1", "A", "B", 10)
        assert ledger.chunk("f1", "A", b64(10)).received_bytes == 10

    def test_chunk_over_limit_destroys_session(self, ledger):
        ledger.init("f1", "A", "B", 500)
        with pytest.raises(CapacityViolation, match="Chunk too large"):
            ledger.chunk("f1", "A", b64(101))
        assert len(ledger) == 0

    def test_invalid_encoding_keeps_session(self, ledger):
        ledger.init("f1", "A", "B", 100)
        with pytest.raises(ProtocolError, match="Invalid chunk encoding"):
            ledger.chunk("f1", "A", "abc")
        with pytest.raises(ProtocolError):
            ledger.chunk("f1", "A", None)
        assert ledger.get("f1").received_bytes == 0


class TestCompleteCancel:
    """Tests for completion, cancellation and device drop"""

    def test_chunks_then_complete_empties_ledger(self, ledger):
        ledger.init("f1", "A", "B", 30)
        for _ in range(3):
            ledger.chunk("f1", "A", b64(10))
        session = ledger.complete("f1", "A")
        assert session.state == TransferState.COMPLETE
        assert len(ledger) == 0

    def test_cancel_at_any_point(self, ledger):
        ledger.init("f1", "A", "B", 30)
        ledger.chunk("f1", "A", b64(10))
        session = ledger.cancel("f1", "A")
        assert session.state == TransferState.CANCELED
        assert session.progress == pytest.approx(100 / 3)
        assert len(ledger) == 0

    def test_cancel_right_after_init(self, ledger):
        ledger.init("f1", "A", "B", 30)
        assert ledger.cancel("f1", "A") is not None
        assert len(ledger) == 0

    def test_progress_in_log(self):
        logs = []
        ledger = TransferLedger(max_file_size=1000, on_log=logs.append)
        ledger.init("f1", "A", "B", 40)
        ledger.chunk("f1", "A", b64(10))
        ledger.cancel("f1", "A")
        assert logs[-1] == "[LEDGER] Transfer f1: canceled at 25%"

    def test_unknown_complete_and_cancel_return_none(self, ledger):
        assert ledger.complete("nope", "A") is None
        assert ledger.cancel("nope", "A") is None

    def test_drop_device(self, ledger):
        ledger.init("f1", "A", "B", 10)
        ledger.init("f2", "C", "A", 10)
        ledger.init("f3", "C", "B", 10)
        dropped = ledger.drop_device("A")
        assert {s.file_id for s in dropped} == {"f1", "f2"}
        assert [s.file_id for s in ledger.sessions()] == ["f3"]


class TestSession:

    def test_peer_of(self):
        session = FileTransferSession("f1", "A", "B", 10)
        assert session.peer_of("A") == "B"
        assert session.peer_of("B") == "A"
        assert session.involves("A") and not session.involves("C")

    def test_payload_length(self):
        assert payload_length(b64(7)) == 7
        assert payload_length("") == 0
