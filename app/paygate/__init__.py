# app/paygate/__init__.py
"""
Stream payment gate.

Protects HTTP routes behind on-chain payment streams. A request is served
when it carries a direct payment transaction hash or the id of a stream
the ledger reports as active; otherwise it receives a 402 response that
tells the client what to pay, in which currency, and to which contract.

Key components:
- routes: route policy table (path -> price and mode)
- evidence: payment header parsing
- ledger: read-only stream ledger access
- decision: the access decision engine
- negotiation: 401/402 response rendering
- vocabulary: PayStream / FlowPay header naming
- middleware: FastAPI integration
- audit: decision audit trail

Configuration is loaded from environment variables via app.core.config.
"""

__version__ = "0.1.0"
