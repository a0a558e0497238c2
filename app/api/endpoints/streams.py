from fastapi import APIRouter, HTTPException, Path, Request
import logging

from app.paygate.ledger import LedgerError, LedgerReader, UINT256_MAX, read_ledger
from app.api.models.stream import StreamResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def get_ledger_reader(request: Request) -> LedgerReader:
    return request.app.state.ledger_reader


@router.get("/{stream_id}", response_model=StreamResponse)
async def get_stream(
    request: Request,
    stream_id: int = Path(..., ge=0, le=UINT256_MAX, description="Stream identifier on the ledger contract"),
) -> StreamResponse:
    """
    Get a payment stream and its claimable balance from the ledger.

    Returns:
        StreamResponse: Stream record plus the recipient's claimable balance

    Raises:
        HTTPException: 404 if the ledger has no such stream, 502 if the ledger cannot be read
    """
    ledger = get_ledger_reader(request)
    try:
        record = await read_ledger(ledger.get_stream_record, stream_id)
        if not record.exists:
            raise HTTPException(status_code=404, detail=f"Stream {stream_id} not found")
        claimable = await read_ledger(ledger.get_claimable_balance, stream_id)

    except LedgerError as e:
        logger.error(f"Failed to read stream {stream_id} from ledger: {e}")
        raise HTTPException(
            status_code=502,
            detail="Failed to read stream from ledger"
        )

    logger.info(f"Stream endpoint accessed for stream #{stream_id} (active={record.is_active})")
    return StreamResponse(
        streamId=str(stream_id),
        sender=record.sender,
        recipient=record.recipient,
        totalAmount=str(record.total_amount),
        flowRate=str(record.flow_rate),
        startTime=record.start_time,
        stopTime=record.stop_time,
        amountWithdrawn=str(record.amount_withdrawn),
        isActive=record.is_active,
        metadata=record.metadata,
        claimableBalance=str(claimable),
    )
