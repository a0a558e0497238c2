# app/paygate/negotiation.py
"""
HTTP responses for denied requests.

A generic denial is a 402 whose JSON body and headers carry the same
payment requirements, so a client may read either. Two denials carry no
requirements: a missing/wrong API key (401) and a stream the ledger
reports as inactive (402 with an error body).
"""
from decimal import Decimal
from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field
from starlette.responses import JSONResponse

from app.paygate.routes import RouteRule
from app.paygate.vocabulary import PAYMENT_REQUIRED_HEADER, WireVocabulary

PAYMENT_REQUIRED_MESSAGE = "Payment Required"
STREAM_INACTIVE_ERROR = "Stream is inactive"
UNAUTHORIZED_ERROR = "Unauthorized: Invalid or missing API Key"


class NegotiationRequirement(BaseModel):
    """What a client must pay, and to whom, to access a route."""
    mode: Literal["streaming", "per-request"]
    price: str
    currency: str
    contract_address: str = Field(..., alias="contract")
    recipient_address: str = Field(..., alias="recipient")
    min_deposit: str = Field(..., alias="minDeposit")
    description: Optional[str] = None

    class Config:
        populate_by_name = True


def format_price(value: str) -> str:
    """
    Canonical decimal rendering of an amount.

    Trailing zeros are dropped but one fractional digit is always kept,
    e.g. "1" -> "1.0", "0.00010" -> "0.0001", "1E+3" -> "1000.0".
    """
    whole, _, fraction = format(Decimal(value), "f").partition(".")
    fraction = fraction.rstrip("0") or "0"
    return f"{whole}.{fraction}"


def build_requirement(
    rule: RouteRule,
    currency: str,
    contract_address: str,
    recipient_address: str,
) -> NegotiationRequirement:
    return NegotiationRequirement(
        mode=rule.mode,
        price=format_price(rule.unit_price),
        currency=currency,
        contract=contract_address,
        recipient=recipient_address,
        minDeposit=rule.min_deposit,
        description=rule.description,
    )


def negotiation_headers(requirement: NegotiationRequirement, vocabulary: WireVocabulary) -> Dict[str, str]:
    """Response headers mirroring the requirement body."""
    headers = {
        PAYMENT_REQUIRED_HEADER: "true",
        vocabulary.header("Mode"): requirement.mode,
        vocabulary.header("Rate"): requirement.price,
        vocabulary.header("Recipient"): requirement.recipient_address,
        vocabulary.header("Contract"): requirement.contract_address,
        vocabulary.header("Currency"): requirement.currency,
        vocabulary.header("MinDeposit"): requirement.min_deposit,
    }
    if requirement.description:
        headers[vocabulary.header("Description")] = requirement.description
    if vocabulary.legacy_recipient_header:
        headers[vocabulary.legacy_recipient_header] = requirement.recipient_address
    return headers


def create_402_response(requirement: NegotiationRequirement, vocabulary: WireVocabulary) -> JSONResponse:
    """Generic payment-required response with requirements in body and headers."""
    return JSONResponse(
        status_code=402,
        content={
            "message": PAYMENT_REQUIRED_MESSAGE,
            "requirements": requirement.model_dump(by_alias=True, exclude_none=True),
        },
        headers=negotiation_headers(requirement, vocabulary),
    )


def create_stream_inactive_response(vocabulary: WireVocabulary) -> JSONResponse:
    return JSONResponse(
        status_code=402,
        content={"error": STREAM_INACTIVE_ERROR, "detail": vocabulary.inactive_detail},
    )


def create_unauthorized_response() -> JSONResponse:
    return JSONResponse(status_code=401, content={"error": UNAUTHORIZED_ERROR})
