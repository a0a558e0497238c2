# app/paygate/decision.py
"""
Access decision engine for payment-gated routes.

For every request the engine walks a small state machine:

1. Route lookup: unconfigured paths are let through untouched
2. API key check (when a key is configured): failure is a 401
3. Evidence: direct transaction hash, then stream id, then nothing
   - a well-formed transaction hash is accepted as payment
   - a stream id is accepted when the ledger reports it active
   - everything else ends in a 402 negotiation response

The engine keeps no per-request state and never retries a ledger read;
a failed read is answered with the generic 402 so the client always gets
something it can act on.

Direct payments are only checked for shape. Nothing confirms that the
transaction exists, pays the recipient enough, or has not already been
presented for an earlier request.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Literal, Mapping, Optional

from starlette.responses import JSONResponse

from app.paygate.evidence import (
    DirectReference,
    StreamReference,
    extract_api_key,
    extract_evidence,
    is_api_key_valid,
    is_tx_hash_well_formed,
    parse_stream_id,
)
from app.paygate.ledger import LedgerReader, read_ledger
from app.paygate.negotiation import (
    NegotiationRequirement,
    build_requirement,
    create_402_response,
    create_stream_inactive_response,
    create_unauthorized_response,
)
from app.paygate.routes import RoutePolicyTable, RouteRule
from app.paygate.vocabulary import PAYSTREAM, WireVocabulary

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentContext:
    """Proof of payment attached to an accepted request."""
    mode: Literal["direct", "stream"]
    tx_hash: Optional[str] = None
    stream_id: Optional[str] = None

    def as_dict(self) -> Dict[str, str]:
        if self.mode == "direct":
            return {"mode": self.mode, "txHash": self.tx_hash}
        return {"mode": self.mode, "streamId": self.stream_id}


@dataclass(frozen=True)
class GateConfig:
    """Static settings shared by every decision."""
    contract_address: str = ""
    recipient_address: str = ""
    vocabulary: WireVocabulary = PAYSTREAM
    currency: Optional[str] = None
    api_key: Optional[str] = None

    @property
    def resolved_currency(self) -> str:
        return self.currency or self.vocabulary.currency


class Outcome(Enum):
    UNPROTECTED = "unprotected"
    ALLOWED = "allowed"
    UNAUTHORIZED = "unauthorized"
    STREAM_INACTIVE = "stream_inactive"
    PAYMENT_REQUIRED = "payment_required"


@dataclass(frozen=True)
class AccessDecision:
    outcome: Outcome
    rule: Optional[RouteRule] = None
    context: Optional[PaymentContext] = None
    requirement: Optional[NegotiationRequirement] = None
    reason: str = ""
    ledger_error: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.outcome in (Outcome.UNPROTECTED, Outcome.ALLOWED)


class AccessDecisionEngine:
    """Decides whether a request is served, refused (401) or asked to pay (402)."""

    def __init__(
        self,
        route_table: RoutePolicyTable,
        ledger: LedgerReader,
        config: Optional[GateConfig] = None,
    ):
        self.route_table = route_table
        self.ledger = ledger
        self.config = config or GateConfig()

        if not ledger.is_test_double:
            logger.warning(
                f"{self.tag}: direct payments are accepted on transaction hash format alone "
                f"(no receipt, recipient, amount or replay checks)"
            )

    @property
    def vocabulary(self) -> WireVocabulary:
        return self.config.vocabulary

    @property
    def tag(self) -> str:
        return self.vocabulary.log_tag

    async def decide(self, path: str, headers: Mapping[str, str]) -> AccessDecision:
        rule = self.route_table.lookup(path)
        if rule is None:
            return AccessDecision(outcome=Outcome.UNPROTECTED)

        if not is_api_key_valid(extract_api_key(headers), self.config.api_key):
            logger.warning(f"{self.tag}: Rejected request for {path}: invalid or missing API key")
            return AccessDecision(outcome=Outcome.UNAUTHORIZED, rule=rule, reason="invalid or missing API key")

        evidence = extract_evidence(headers, self.vocabulary)

        if isinstance(evidence, DirectReference):
            if self._is_direct_payment_valid(evidence.tx_hash):
                logger.info(f"{self.tag}: Request accepted for {path} using direct payment tx {evidence.tx_hash}")
                return AccessDecision(
                    outcome=Outcome.ALLOWED,
                    rule=rule,
                    context=PaymentContext(mode="direct", tx_hash=evidence.tx_hash),
                )
            logger.info(f"{self.tag}: Malformed transaction hash for {path}: {evidence.tx_hash!r}")
            if evidence.fallback is None:
                return self._payment_required(rule, "malformed transaction hash")
            evidence = evidence.fallback

        if isinstance(evidence, StreamReference):
            return await self._check_stream(path, rule, evidence.stream_id)

        logger.info(f"{self.tag}: No payment evidence for {path}, requesting payment of {rule.unit_price}")
        return self._payment_required(rule, "no payment evidence")

    def _is_direct_payment_valid(self, tx_hash: str) -> bool:
        if self.ledger.is_test_double:
            return bool(tx_hash)
        return is_tx_hash_well_formed(tx_hash)

    async def _check_stream(self, path: str, rule: RouteRule, raw_stream_id: str) -> AccessDecision:
        stream_id = parse_stream_id(raw_stream_id)
        if stream_id is None:
            logger.info(f"{self.tag}: Malformed stream id for {path}: {raw_stream_id!r}")
            return self._payment_required(rule, "malformed stream id")

        logger.info(f"{self.tag}: Verifying stream #{stream_id} for {path}...")
        try:
            active = await read_ledger(self.ledger.is_stream_active, stream_id)
        except Exception as e:
            logger.error(f"{self.tag}: Stream #{stream_id} verification failed: {e}")
            return self._payment_required(rule, "stream verification failed", ledger_error=str(e))

        if not active:
            logger.info(f"{self.tag}: Stream #{stream_id} verification result: INACTIVE")
            return AccessDecision(outcome=Outcome.STREAM_INACTIVE, rule=rule, reason=f"stream {stream_id} inactive")

        logger.info(f"{self.tag}: Request accepted for {path} using stream #{stream_id}")
        return AccessDecision(
            outcome=Outcome.ALLOWED,
            rule=rule,
            context=PaymentContext(mode="stream", stream_id=str(stream_id)),
        )

    def _payment_required(self, rule: RouteRule, reason: str, ledger_error: Optional[str] = None) -> AccessDecision:
        requirement = build_requirement(
            rule,
            currency=self.config.resolved_currency,
            contract_address=self.config.contract_address,
            recipient_address=self.config.recipient_address,
        )
        return AccessDecision(
            outcome=Outcome.PAYMENT_REQUIRED,
            rule=rule,
            requirement=requirement,
            reason=reason,
            ledger_error=ledger_error,
        )

    def respond(self, decision: AccessDecision) -> Optional[JSONResponse]:
        """
        Render a denial as an HTTP response.

        Returns:
            None for decisions that let the request through.
        """
        if decision.outcome == Outcome.UNAUTHORIZED:
            return create_unauthorized_response()
        if decision.outcome == Outcome.STREAM_INACTIVE:
            return create_stream_inactive_response(self.vocabulary)
        if decision.outcome == Outcome.PAYMENT_REQUIRED:
            return create_402_response(decision.requirement, self.vocabulary)
        return None
