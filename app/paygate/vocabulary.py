# app/paygate/vocabulary.py
"""
Wire vocabularies for the payment gate.

The gate speaks the same protocol under two brand names. A vocabulary
fixes the header names, the default currency label and the log tag, so a
single decision engine can serve either family of clients.
"""
from dataclasses import dataclass
from typing import Dict, Optional

PAYMENT_REQUIRED_HEADER = "X-Payment-Required"
API_KEY_HEADER = "X-API-Key"


@dataclass(frozen=True)
class WireVocabulary:
    """Header naming and defaults for one brand of the payment protocol."""
    name: str
    header_prefix: str
    currency: str
    inactive_detail: str
    legacy_recipient_header: Optional[str] = None

    def header(self, suffix: str) -> str:
        """Build a branded header name, e.g. header("Mode") -> "X-PayStream-Mode"."""
        return f"X-{self.header_prefix}-{suffix}"

    @property
    def stream_id_header(self) -> str:
        return self.header("Stream-ID")

    @property
    def tx_hash_header(self) -> str:
        return self.header("Tx-Hash")

    @property
    def log_tag(self) -> str:
        return self.name


PAYSTREAM = WireVocabulary(
    name="paystream",
    header_prefix="PayStream",
    currency="TCRO",
    inactive_detail="The provided stream ID is not active. Please open a new stream.",
)

FLOWPAY = WireVocabulary(
    name="flowpay",
    header_prefix="FlowPay",
    currency="MNEE",
    inactive_detail="The provided stream ID is not active. Please open a new stream or top up.",
    legacy_recipient_header="X-MNEE-Address",
)

VOCABULARIES: Dict[str, WireVocabulary] = {
    PAYSTREAM.name: PAYSTREAM,
    FLOWPAY.name: FLOWPAY,
}


def get_vocabulary(name: str) -> WireVocabulary:
    """Look up a vocabulary by name (case-insensitive)."""
    try:
        return VOCABULARIES[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown payment vocabulary '{name}'. Expected one of: {', '.join(sorted(VOCABULARIES))}"
        )
