# app/paygate/middleware.py
"""
FastAPI middleware for stream payment verification.

This module provides HTTP middleware that:
1. Intercepts requests to routes listed in the route policy table
2. Checks the optional API key
3. Accepts a direct payment tx hash or an active payment stream id
4. Returns 402 Payment Required with negotiation details otherwise

Accepted requests carry their PaymentContext in `request.state.payment`;
route handlers read it through the `get_payment_context` dependency.
"""
import logging
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.paygate.audit import AuditLog
from app.paygate.decision import AccessDecisionEngine, PaymentContext

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    # Check for forwarded headers first
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


class PaymentGateMiddleware(BaseHTTPMiddleware):
    """
    Stream payment gate for FastAPI.

    When enabled, this middleware:
    - Lets requests to unconfigured paths through unchanged
    - Rejects protected requests with a missing or wrong API key (401)
    - Serves protected requests that present valid payment evidence
    - Returns HTTP 402 with payment requirements otherwise

    When disabled, all requests pass through unchanged.
    """

    def __init__(
        self,
        app,
        engine: AccessDecisionEngine,
        enabled: bool = True,
        audit_log: Optional[AuditLog] = None,
    ):
        super().__init__(app)
        self.engine = engine
        self.enabled = enabled
        self.audit_log = audit_log

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        request.state.payment = None

        if not self.enabled:
            return await call_next(request)

        path = request.url.path
        decision = await self.engine.decide(path, request.headers)

        if self.audit_log is not None:
            self.audit_log.record_decision(decision, request.method, path, client_ip=get_client_ip(request))

        if decision.allowed:
            request.state.payment = decision.context
            return await call_next(request)

        logger.info(
            f"{self.engine.tag}: Denied {request.method} {path} from {get_client_ip(request)} "
            f"({decision.outcome.value}: {decision.reason})"
        )
        return self.engine.respond(decision)


def get_payment_context(request: Request) -> Optional[PaymentContext]:
    """
    FastAPI dependency returning the payment that unlocked this request.

    None when the gate is disabled or the path is not in the route table.
    """
    return getattr(request.state, "payment", None)
