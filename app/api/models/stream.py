from pydantic import BaseModel, Field


class StreamResponse(BaseModel):
    """
    Ledger view of a payment stream, served to dashboards.
    Amounts are wei as decimal strings to survive JSON number limits.
    """
    streamId: str = Field(..., description="Stream identifier on the ledger contract.")
    sender: str = Field(..., description="Address funding the stream.")
    recipient: str = Field(..., description="Address receiving the stream.")
    totalAmount: str = Field(..., description="Total deposit in wei.")
    flowRate: str = Field(..., description="Wei streamed per second.")
    startTime: int = Field(..., description="Unix timestamp the stream started.")
    stopTime: int = Field(..., description="Unix timestamp the stream stops.")
    amountWithdrawn: str = Field(..., description="Wei already withdrawn by the recipient.")
    isActive: bool = Field(..., description="Whether the ledger reports the stream as active.")
    metadata: str = Field("", description="Free-form metadata stored with the stream.")
    claimableBalance: str = Field(..., description="Wei the recipient can withdraw now.")

    class Config:
        json_schema_extra = {
            "example": {
                "streamId": "100",
                "sender": "0x1f973bc13Fe975570949b09C022dCCB46944F5ED",
                "recipient": "0x155A00fBE3D290a8935ca4Bf5244283685Bb0035",
                "totalAmount": "360000000000000000",
                "flowRate": "100000000000000",
                "startTime": 1760700000,
                "stopTime": 1760703600,
                "amountWithdrawn": "0",
                "isActive": True,
                "metadata": "weather-agent",
                "claimableBalance": "50000000000000000"
            }
        }
