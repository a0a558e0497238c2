from typing import Optional

from fastapi import APIRouter, Depends
import logging

from app.paygate.decision import PaymentContext
from app.paygate.middleware import get_payment_context
from app.api.models.content import WeatherResponse, ContentResponse, FreeContentResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def paid_with(context: Optional[PaymentContext]) -> dict:
    """Echo the payment that unlocked the request back to the caller."""
    if context is None:
        return {}
    if context.mode == "stream":
        return {"paidWithStream": context.stream_id}
    return {"paidWithTx": context.tx_hash}


@router.get("/weather", response_model=WeatherResponse, response_model_exclude_none=True)
async def get_weather(payment: Optional[PaymentContext] = Depends(get_payment_context)) -> WeatherResponse:
    """
    Real-time weather data, billed per second of an open stream.
    """
    return WeatherResponse(temperature=22, city="London", condition="Cloudy", **paid_with(payment))


@router.get("/premium", response_model=ContentResponse, response_model_exclude_none=True)
async def get_premium(payment: Optional[PaymentContext] = Depends(get_payment_context)) -> ContentResponse:
    return ContentResponse(content="This is premium content.", **paid_with(payment))


@router.get("/expensive", response_model=ContentResponse, response_model_exclude_none=True)
async def get_expensive(payment: Optional[PaymentContext] = Depends(get_payment_context)) -> ContentResponse:
    """Priced far above typical budgets so clients can exercise budget limits."""
    return ContentResponse(content="This is very expensive premium content.", **paid_with(payment))


@router.get("/free", response_model=FreeContentResponse)
async def get_free() -> FreeContentResponse:
    return FreeContentResponse(message="This is free content.")
