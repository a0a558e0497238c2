# tests/test_paygate_decision.py
"""
Unit tests for the access decision engine.
"""
import asyncio
import json
import pytest
from unittest.mock import AsyncMock

from app.paygate.decision import (
    AccessDecisionEngine,
    GateConfig,
    Outcome,
    PaymentContext,
)
from app.paygate.ledger import InMemoryLedgerReader, LedgerError, LedgerReader, StreamRecord
from app.paygate.routes import RoutePolicyTable
from app.paygate.vocabulary import PAYSTREAM, FLOWPAY

TX_HASH = "0x" + "cd" * 32

ROUTES = {
    "/api/weather": {"price": "0.0001", "mode": "streaming", "minDeposit": "0.36"},
    "/api/premium": {"price": "1.0", "mode": "per-request"},
}


class StubLedger(LedgerReader):
    """Stand-in for the real ledger; direct payments are format checked."""

    def __init__(self, active=None, error=None):
        self.active = active or {}
        self.error = error
        self.calls = []

    def is_stream_active(self, stream_id):
        self.calls.append(stream_id)
        if self.error is not None:
            raise self.error
        return self.active.get(stream_id, False)


def active_record(is_active=True):
    return StreamRecord(
        sender="0x1111111111111111111111111111111111111111",
        recipient="0x2222222222222222222222222222222222222222",
        total_amount=10 ** 18,
        flow_rate=10 ** 14,
        start_time=0,
        stop_time=10 ** 10,
        is_active=is_active,
    )


def make_engine(ledger=None, **config):
    config.setdefault("contract_address", "0xContract")
    config.setdefault("recipient_address", "0xRecipient")
    return AccessDecisionEngine(
        route_table=RoutePolicyTable.from_mapping(ROUTES),
        ledger=ledger if ledger is not None else StubLedger(),
        config=GateConfig(**config),
    )


def decide(engine, path, headers=None):
    return asyncio.run(engine.decide(path, headers or {}))


class TestRouteLookup:
    """Test unprotected paths."""

    def test_unregistered_path_allowed_without_context(self):
        ledger = StubLedger()
        decision = decide(make_engine(ledger), "/api/free", {"X-PayStream-Stream-ID": "1"})
        assert decision.outcome == Outcome.UNPROTECTED
        assert decision.allowed is True
        assert decision.context is None
        assert ledger.calls == []

    def test_unregistered_path_ignores_api_key(self):
        decision = decide(make_engine(api_key="secret"), "/api/free")
        assert decision.allowed is True


class TestApiKeyCheck:
    """Test the API key gate."""

    def test_missing_key_unauthorized(self):
        decision = decide(make_engine(api_key="secret"), "/api/weather")
        assert decision.outcome == Outcome.UNAUTHORIZED
        assert decision.requirement is None

    def test_key_checked_before_payment(self):
        """Valid payment does not excuse a wrong API key."""
        ledger = StubLedger(active={100: True})
        decision = decide(
            make_engine(ledger, api_key="secret"),
            "/api/weather",
            {"X-API-Key": "wrong", "X-PayStream-Stream-ID": "100", "X-PayStream-Tx-Hash": TX_HASH},
        )
        assert decision.outcome == Outcome.UNAUTHORIZED
        assert ledger.calls == []

    def test_correct_key_proceeds(self):
        decision = decide(make_engine(api_key="secret"), "/api/weather", {"X-API-Key": "secret"})
        assert decision.outcome == Outcome.PAYMENT_REQUIRED


class TestNoEvidence:
    """Test requests without payment headers."""

    def test_requirement_matches_rule(self):
        decision = decide(make_engine(), "/api/weather")
        assert decision.outcome == Outcome.PAYMENT_REQUIRED
        requirement = decision.requirement
        assert requirement.mode == "streaming"
        assert requirement.price == "0.0001"
        assert requirement.min_deposit == "0.36"
        assert requirement.contract_address == "0xContract"
        assert requirement.recipient_address == "0xRecipient"
        assert requirement.currency == PAYSTREAM.currency

    def test_currency_override(self):
        decision = decide(make_engine(currency="USDC"), "/api/weather")
        assert decision.requirement.currency == "USDC"

    def test_flowpay_default_currency(self):
        decision = decide(make_engine(vocabulary=FLOWPAY), "/api/weather")
        assert decision.requirement.currency == FLOWPAY.currency


class TestDirectPayment:
    """Test transaction hash evidence."""

    def test_well_formed_hash_allowed(self):
        decision = decide(make_engine(), "/api/premium", {"X-PayStream-Tx-Hash": TX_HASH})
        assert decision.outcome == Outcome.ALLOWED
        assert decision.context == PaymentContext(mode="direct", tx_hash=TX_HASH)

    def test_direct_wins_over_stream(self):
        """A valid hash is accepted without consulting the ledger."""
        ledger = StubLedger(active={99: False})
        decision = decide(
            make_engine(ledger),
            "/api/weather",
            {"X-PayStream-Tx-Hash": TX_HASH, "X-PayStream-Stream-ID": "99"},
        )
        assert decision.context.mode == "direct"
        assert ledger.calls == []

    def test_malformed_hash_denied(self):
        decision = decide(make_engine(), "/api/premium", {"X-PayStream-Tx-Hash": "0x1234"})
        assert decision.outcome == Outcome.PAYMENT_REQUIRED

    def test_malformed_hash_falls_back_to_stream(self):
        ledger = StubLedger(active={100: True})
        decision = decide(
            make_engine(ledger),
            "/api/weather",
            {"X-PayStream-Tx-Hash": "not-a-hash", "X-PayStream-Stream-ID": "100"},
        )
        assert decision.context == PaymentContext(mode="stream", stream_id="100")
        assert ledger.calls == [100]

    def test_test_double_accepts_any_reference(self):
        decision = decide(make_engine(InMemoryLedgerReader()), "/api/premium", {"X-PayStream-Tx-Hash": "demo-tx"})
        assert decision.outcome == Outcome.ALLOWED
        assert decision.context.tx_hash == "demo-tx"


class TestStreamPayment:
    """Test stream id evidence."""

    def test_active_stream_allowed(self):
        ledger = StubLedger(active={100: True})
        decision = decide(make_engine(ledger), "/api/weather", {"X-PayStream-Stream-ID": "100"})
        assert decision.outcome == Outcome.ALLOWED
        assert decision.context.stream_id == "100"
        assert ledger.calls == [100]

    def test_stream_id_canonicalised(self):
        ledger = StubLedger(active={7: True})
        decision = decide(make_engine(ledger), "/api/weather", {"X-PayStream-Stream-ID": " 007 "})
        assert decision.context.stream_id == "7"

    def test_inactive_stream(self):
        ledger = StubLedger(active={99: False})
        decision = decide(make_engine(ledger), "/api/weather", {"X-PayStream-Stream-ID": "99"})
        assert decision.outcome == Outcome.STREAM_INACTIVE
        assert decision.requirement is None

    def test_ledger_failure_falls_back_to_negotiation(self):
        ledger = StubLedger(error=LedgerError("RPC Error"))
        decision = decide(make_engine(ledger), "/api/weather", {"X-PayStream-Stream-ID": "0"})
        assert decision.outcome == Outcome.PAYMENT_REQUIRED
        assert decision.requirement.price == "0.0001"
        assert decision.ledger_error == "RPC Error"

    def test_unexpected_ledger_exception_contained(self):
        ledger = StubLedger(error=RuntimeError("boom"))
        decision = decide(make_engine(ledger), "/api/weather", {"X-PayStream-Stream-ID": "1"})
        assert decision.outcome == Outcome.PAYMENT_REQUIRED

    @pytest.mark.parametrize("raw", ["abc", "-1", "0x10", "1.5"])
    def test_malformed_stream_id(self, raw):
        ledger = StubLedger(active={16: True})
        decision = decide(make_engine(ledger), "/api/weather", {"X-PayStream-Stream-ID": raw})
        assert decision.outcome == Outcome.PAYMENT_REQUIRED
        assert ledger.calls == []

    def test_async_ledger_awaited(self):
        ledger = StubLedger()
        ledger.is_stream_active = AsyncMock(return_value=True)
        decision = decide(make_engine(ledger), "/api/weather", {"X-PayStream-Stream-ID": "5"})
        assert decision.outcome == Outcome.ALLOWED
        ledger.is_stream_active.assert_awaited_once_with(5)

    def test_in_memory_ledger(self):
        ledger = InMemoryLedgerReader({100: active_record(), 99: active_record(is_active=False)})
        engine = make_engine(ledger)
        assert decide(engine, "/api/weather", {"X-PayStream-Stream-ID": "100"}).allowed is True
        assert decide(engine, "/api/weather", {"X-PayStream-Stream-ID": "99"}).outcome == Outcome.STREAM_INACTIVE


class TestRespond:
    """Test rendering of decisions."""

    def test_allowed_has_no_response(self):
        engine = make_engine(StubLedger(active={1: True}))
        decision = decide(engine, "/api/weather", {"X-PayStream-Stream-ID": "1"})
        assert engine.respond(decision) is None

    def test_payment_required_response(self):
        engine = make_engine()
        response = engine.respond(decide(engine, "/api/premium"))
        assert response.status_code == 402
        body = json.loads(response.body.decode())
        assert body["requirements"]["price"] == "1.0"
        assert response.headers["x-paystream-mode"] == "per-request"

    def test_unauthorized_response(self):
        engine = make_engine(api_key="secret")
        response = engine.respond(decide(engine, "/api/premium"))
        assert response.status_code == 401

    def test_stream_inactive_response(self):
        engine = make_engine(StubLedger(active={99: False}))
        response = engine.respond(decide(engine, "/api/weather", {"X-PayStream-Stream-ID": "99"}))
        assert response.status_code == 402
        assert json.loads(response.body.decode())["error"] == "Stream is inactive"


class TestPaymentContext:
    """Test context serialization."""

    def test_as_dict(self):
        assert PaymentContext(mode="stream", stream_id="5").as_dict() == {"mode": "stream", "streamId": "5"}
        assert PaymentContext(mode="direct", tx_hash=TX_HASH).as_dict() == {"mode": "direct", "txHash": TX_HASH}
