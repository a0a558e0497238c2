# app/paygate/evidence.py
"""
Payment evidence extraction.

Turns request headers into exactly one kind of payment evidence:
- NoEvidence: neither payment header was sent
- DirectReference: a one-shot transaction hash
- StreamReference: a claimed stream id (raw header text, parsed later)

When both headers are present the direct reference is examined first and
the stream id is kept as the fallback.
"""
import hmac
import re
from dataclasses import dataclass
from typing import Mapping, Optional, Union

from app.paygate.ledger import UINT256_MAX, UINT256_MAX_DIGITS
from app.paygate.vocabulary import API_KEY_HEADER, WireVocabulary

# 32-byte transaction hash, hex encoded with a 0x prefix
TX_HASH_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")
STREAM_ID_PATTERN = re.compile(r"^[0-9]+$")


@dataclass(frozen=True)
class NoEvidence:
    pass


@dataclass(frozen=True)
class StreamReference:
    stream_id: str


@dataclass(frozen=True)
class DirectReference:
    tx_hash: str
    fallback: Optional[StreamReference] = None


PaymentEvidence = Union[NoEvidence, DirectReference, StreamReference]


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is None:
        # Plain dicts in tests are not case-insensitive like Starlette headers
        value = headers.get(name.lower())
    if value is None or not value.strip():
        return None
    return value


def extract_evidence(headers: Mapping[str, str], vocabulary: WireVocabulary) -> PaymentEvidence:
    """Classify the payment headers of a request."""
    tx_hash = _header(headers, vocabulary.tx_hash_header)
    stream_id = _header(headers, vocabulary.stream_id_header)

    stream = StreamReference(stream_id=stream_id) if stream_id is not None else None
    if tx_hash is not None:
        return DirectReference(tx_hash=tx_hash.strip(), fallback=stream)
    if stream is not None:
        return stream
    return NoEvidence()


def extract_api_key(headers: Mapping[str, str]) -> Optional[str]:
    return _header(headers, API_KEY_HEADER)


def is_api_key_valid(provided: Optional[str], expected: Optional[str]) -> bool:
    """
    Check a caller's API key against the configured one.

    With no key configured every caller is accepted.
    """
    if not expected:
        return True
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def is_tx_hash_well_formed(tx_hash: str) -> bool:
    return bool(TX_HASH_PATTERN.match(tx_hash))


def parse_stream_id(raw: str) -> Optional[int]:
    """
    Parse a stream id header as a uint256.

    Returns:
        The integer id, or None if the value is not a non-negative
        decimal integer within range.
    """
    value = raw.strip()
    if not STREAM_ID_PATTERN.match(value):
        return None
    # int() refuses very long digit strings, so bound the length first
    digits = value.lstrip("0") or "0"
    if len(digits) > UINT256_MAX_DIGITS:
        return None
    stream_id = int(digits)
    if stream_id > UINT256_MAX:
        return None
    return stream_id
