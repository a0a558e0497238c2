# app/paygate/ledger.py
"""
Read-only access to the payment stream ledger contract.

The gate only ever asks the ledger whether a stream is active. Stream
records and claimable balances are exposed for the dashboard endpoints.

Two readers are provided:
- RpcLedgerReader: JSON-RPC `eth_call` against the deployed contract
- InMemoryLedgerReader: deterministic test double backed by a dict
"""
import inspect
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import requests
from requests.exceptions import RequestException
from eth_abi import decode as abi_decode, encode as abi_encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
UINT256_MAX = 2 ** 256 - 1
UINT256_MAX_DIGITS = len(str(UINT256_MAX))

IS_STREAM_ACTIVE_SIGNATURE = "isStreamActive(uint256)"
GET_CLAIMABLE_BALANCE_SIGNATURE = "getClaimableBalance(uint256)"
STREAMS_SIGNATURE = "streams(uint256)"

STREAM_RECORD_TYPES = [
    "address",  # sender
    "address",  # recipient
    "uint256",  # totalAmount
    "uint256",  # flowRate
    "uint256",  # startTime
    "uint256",  # stopTime
    "uint256",  # amountWithdrawn
    "bool",     # isActive
    "string",   # metadata
]


class LedgerError(Exception):
    """Raised when the ledger cannot be read or returns a malformed answer."""


class StreamRecord(BaseModel):
    """A payment stream as stored by the ledger contract. Amounts are in wei."""
    sender: str
    recipient: str
    total_amount: int = Field(..., ge=0)
    flow_rate: int = Field(..., ge=0)
    start_time: int = Field(..., ge=0)
    stop_time: int = Field(..., ge=0)
    amount_withdrawn: int = Field(0, ge=0)
    is_active: bool
    metadata: str = ""

    @property
    def exists(self) -> bool:
        """The contract returns a zeroed record for unknown stream ids."""
        return self.sender.lower() != ZERO_ADDRESS

    def streamed_amount(self, now: int) -> int:
        """Amount that has flowed to the recipient by `now`, capped at the deposit."""
        elapsed = max(0, min(now, self.stop_time) - self.start_time)
        return min(self.flow_rate * elapsed, self.total_amount)


class LedgerReader:
    """
    Interface of the stream ledger as seen by the gate.

    Subclasses set `is_test_double` to True when they are not backed by
    the real ledger; the decision engine relaxes direct-payment checks
    for them. Methods may be plain or `async def`; callers go through
    `read_ledger`.
    """
    is_test_double = False

    def is_stream_active(self, stream_id: int) -> bool:
        raise NotImplementedError

    def get_claimable_balance(self, stream_id: int) -> int:
        raise NotImplementedError

    def get_stream_record(self, stream_id: int) -> StreamRecord:
        raise NotImplementedError


async def read_ledger(method: Callable[..., Any], *args: Any) -> Any:
    """Call a ledger reader method, awaiting coroutines and running blocking calls in the threadpool."""
    if inspect.iscoroutinefunction(method):
        return await method(*args)
    return await run_in_threadpool(method, *args)


def _encode_call_data(signature: str, arg_types: Sequence[str], args: Sequence[Any]) -> str:
    selector = function_signature_to_4byte_selector(signature)
    return "0x" + (selector + abi_encode(arg_types, args)).hex()


def _check_stream_id(stream_id: int) -> None:
    if stream_id < 0 or stream_id > UINT256_MAX:
        raise ValueError(f"Stream id out of uint256 range: {stream_id}")


class RpcLedgerReader(LedgerReader):
    """Reads the ledger contract through a JSON-RPC endpoint."""

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self.timeout = timeout
        self._session = session or requests.Session()

    def _rpc_request(self, method: str, params: List[Any]) -> Any:
        """
        Send a JSON-RPC request and return its `result`.

        Raises:
            LedgerError: On transport failure, RPC error or missing result.
        """
        try:
            response = self._session.post(
                self.rpc_url,
                json={
                    "jsonrpc": "2.0",
                    "method": method,
                    "params": params,
                    "id": 1
                },
                timeout=self.timeout
            )
            response.raise_for_status()
            result = response.json()
        except RequestException as e:
            raise LedgerError(f"RPC request failed for {method}: {e}") from e
        except ValueError as e:
            raise LedgerError(f"RPC returned invalid JSON for {method}: {e}") from e

        if not isinstance(result, dict):
            raise LedgerError(f"RPC returned invalid response for {method}")
        if result.get("error"):
            raise LedgerError(f"RPC error for {method}: {result['error']}")
        if "result" not in result:
            raise LedgerError(f"Invalid RPC response for {method}: missing 'result' field")

        return result["result"]

    def _call(self, signature: str, stream_id: int, return_types: Sequence[str]) -> tuple:
        _check_stream_id(stream_id)
        call = {
            "to": self.contract_address,
            "data": _encode_call_data(signature, ["uint256"], [stream_id]),
        }
        raw = self._rpc_request("eth_call", [call, "latest"])

        if not isinstance(raw, str) or not raw.startswith("0x") or len(raw) <= 2:
            raise LedgerError(f"Empty or malformed eth_call result for {signature}: {raw!r}")
        try:
            return abi_decode(return_types, bytes.fromhex(raw[2:]))
        except (DecodingError, ValueError) as e:
            raise LedgerError(f"Failed to decode {signature} result: {e}") from e

    def is_stream_active(self, stream_id: int) -> bool:
        (active,) = self._call(IS_STREAM_ACTIVE_SIGNATURE, stream_id, ["bool"])
        return bool(active)

    def get_claimable_balance(self, stream_id: int) -> int:
        (balance,) = self._call(GET_CLAIMABLE_BALANCE_SIGNATURE, stream_id, ["uint256"])
        return int(balance)

    def get_stream_record(self, stream_id: int) -> StreamRecord:
        values = self._call(STREAMS_SIGNATURE, stream_id, STREAM_RECORD_TYPES)
        sender, recipient, total, rate, start, stop, withdrawn, active, metadata = values
        return StreamRecord(
            sender=sender,
            recipient=recipient,
            total_amount=total,
            flow_rate=rate,
            start_time=start,
            stop_time=stop,
            amount_withdrawn=withdrawn,
            is_active=active,
            metadata=metadata,
        )


class InMemoryLedgerReader(LedgerReader):
    """
    Deterministic ledger double.

    Unknown stream ids read as inactive zeroed records, like the contract,
    unless `raise_on_unknown` is set, in which case every read of an
    unknown id raises LedgerError. Ids in `failing_ids` always raise.
    """
    is_test_double = True

    def __init__(
        self,
        streams: Optional[Dict[int, StreamRecord]] = None,
        failing_ids: Iterable[int] = (),
        raise_on_unknown: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self._streams: Dict[int, StreamRecord] = dict(streams or {})
        self._failing_ids = set(failing_ids)
        self._raise_on_unknown = raise_on_unknown
        self._clock = clock

    def _record(self, stream_id: int) -> StreamRecord:
        if stream_id in self._failing_ids:
            raise LedgerError(f"Simulated ledger failure for stream {stream_id}")
        record = self._streams.get(stream_id)
        if record is None:
            if self._raise_on_unknown:
                raise LedgerError(f"Unknown stream {stream_id}")
            return StreamRecord(
                sender=ZERO_ADDRESS,
                recipient=ZERO_ADDRESS,
                total_amount=0,
                flow_rate=0,
                start_time=0,
                stop_time=0,
                is_active=False,
            )
        return record

    def is_stream_active(self, stream_id: int) -> bool:
        return self._record(stream_id).is_active

    def get_claimable_balance(self, stream_id: int) -> int:
        record = self._record(stream_id)
        if not record.is_active:
            return 0
        streamed = record.streamed_amount(int(self._clock()))
        return max(0, streamed - record.amount_withdrawn)

    def get_stream_record(self, stream_id: int) -> StreamRecord:
        return self._record(stream_id)
