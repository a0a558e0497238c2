# tests/test_streams_api.py
"""
Tests for the stream dashboard endpoint.
"""
import pytest
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from app.core.config import Settings
from app.main import create_app
from app.paygate.ledger import InMemoryLedgerReader, LedgerError, LedgerReader, StreamRecord
from app.paygate.routes import RoutePolicyTable

SENDER = "0x1111111111111111111111111111111111111111"
RECIPIENT = "0x2222222222222222222222222222222222222222"


def make_client(ledger) -> TestClient:
    app = create_app(
        settings=Settings(PAYGATE_ENABLED=True, PAYGATE_API_KEY=None, PAYGATE_AUDIT_LOG_PATH=None),
        ledger_reader=ledger,
        route_table=RoutePolicyTable.from_mapping({"/api/weather": {"price": "0.0001"}}),
    )
    return TestClient(app)


class TestGetStream:
    """Test GET /api/streams/{stream_id}."""

    def test_existing_stream(self):
        ledger = InMemoryLedgerReader(
            {
                7: StreamRecord(
                    sender=SENDER,
                    recipient=RECIPIENT,
                    total_amount=10 ** 18,
                    flow_rate=10 ** 16,
                    start_time=1000,
                    stop_time=1100,
                    amount_withdrawn=10 ** 17,
                    is_active=True,
                    metadata="weather-agent",
                )
            },
            clock=lambda: 1050,
        )
        response = make_client(ledger).get("/api/streams/7")

        assert response.status_code == 200
        body = response.json()
        assert body["streamId"] == "7"
        assert body["sender"] == SENDER
        assert body["totalAmount"] == str(10 ** 18)
        assert body["flowRate"] == str(10 ** 16)
        assert body["isActive"] is True
        assert body["metadata"] == "weather-agent"
        assert body["claimableBalance"] == str(4 * 10 ** 17)

    def test_unknown_stream(self):
        response = make_client(InMemoryLedgerReader()).get("/api/streams/12345")
        assert response.status_code == 404

    def test_invalid_stream_id(self):
        client = make_client(InMemoryLedgerReader())
        assert client.get("/api/streams/abc").status_code == 422
        assert client.get("/api/streams/-1").status_code == 422

    def test_ledger_failure(self):
        ledger = MagicMock(spec=LedgerReader)
        ledger.is_test_double = True
        ledger.get_stream_record.side_effect = LedgerError("RPC Error")

        response = make_client(ledger).get("/api/streams/1")

        assert response.status_code == 502
        assert response.json()["detail"] == "Failed to read stream from ledger"

    def test_not_gated(self):
        """Dashboard reads do not require payment."""
        response = make_client(InMemoryLedgerReader()).get("/api/streams/1")
        assert response.status_code != 402


class AsyncLedger(LedgerReader):
    """Ledger reader with coroutine methods."""

    is_test_double = True

    def __init__(self, record):
        self.record = record

    async def is_stream_active(self, stream_id):
        return self.record.is_active

    async def get_claimable_balance(self, stream_id):
        return 123

    async def get_stream_record(self, stream_id):
        return self.record


class TestAsyncLedger:
    """Test the dashboard and gate with an async ledger reader."""

    def test_dashboard_awaits_reader(self):
        record = StreamRecord(
            sender=SENDER,
            recipient=RECIPIENT,
            total_amount=10 ** 18,
            flow_rate=10 ** 16,
            start_time=0,
            stop_time=100,
            is_active=True,
        )
        client = make_client(AsyncLedger(record))

        response = client.get("/api/streams/3")
        assert response.status_code == 200
        assert response.json()["claimableBalance"] == "123"
        assert response.json()["isActive"] is True

        gated = client.get("/api/weather", headers={"X-PayStream-Stream-ID": "3"})
        assert gated.status_code == 200

    def test_dashboard_unknown_stream(self):
        record = StreamRecord(
            sender="0x0000000000000000000000000000000000000000",
            recipient="0x0000000000000000000000000000000000000000",
            total_amount=0,
            flow_rate=0,
            start_time=0,
            stop_time=0,
            is_active=False,
        )
        response = make_client(AsyncLedger(record)).get("/api/streams/3")
        assert response.status_code == 404
