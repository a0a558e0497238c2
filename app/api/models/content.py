from pydantic import BaseModel
from typing import Optional


class PaidResponse(BaseModel):
    """Fields identifying the payment that unlocked a protected response."""
    paidWithStream: Optional[str] = None
    paidWithTx: Optional[str] = None


class WeatherResponse(PaidResponse):
    temperature: int
    city: str
    condition: str


class ContentResponse(PaidResponse):
    content: str


class FreeContentResponse(BaseModel):
    message: str
