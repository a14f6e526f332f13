from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .coerce import parse_int_or_zero
from .rate_limiter import RateLimitError, SlidingWindowRateLimiter


logger = logging.getLogger(__name__)

# Structured rejection codes sent by the gateway in {"error": {"code": ...}}
CODE_USER_REJECTED = "USER_REJECTED"
CODE_ALREADY_VERIFIED = "ALREADY_VERIFIED"
# Wallet-level code relayed as-is by gateways fronting an ethers signer
CODE_ACTION_REJECTED = "ACTION_REJECTED"

_USER_REJECTED_CODES = (CODE_USER_REJECTED, CODE_ACTION_REJECTED)
_ALREADY_VERIFIED_CODES = (CODE_ALREADY_VERIFIED,)

# Message markers, checked whatever the code (relayed node errors carry generic
# codes such as CALL_EXCEPTION)
_USER_REJECTED_MARKERS = ("user rejected", "user denied")
_ALREADY_VERIFIED_MARKERS = ("already verified",)


class LedgerError(RuntimeError):
    """Base error for the ledger gateway client."""


class LedgerApiError(LedgerError):
    """Gateway returned an error status or an unexpected payload."""


class LedgerRateLimitError(LedgerError):
    """Local rate limiting prevented the request."""


class LedgerRejectedError(LedgerApiError):
    """The gateway (or the chain behind it) refused a call or reverted a transaction."""

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code

    def _matches(self, codes: tuple[str, ...], markers: tuple[str, ...]) -> bool:
        if self.code is not None and self.code.upper() in codes:
            return True
        text = (self.message or "").lower()
        return any(m in text for m in markers)

    @property
    def user_rejected(self) -> bool:
        return self._matches(_USER_REJECTED_CODES, _USER_REJECTED_MARKERS)

    @property
    def already_verified(self) -> bool:
        return self._matches(_ALREADY_VERIFIED_CODES, _ALREADY_VERIFIED_MARKERS)


class LedgerRecord(BaseModel):
    """
    Record body as returned by `GET /records/{id}`.

    Field names follow the contract getter (`publicValue1` is hours worked,
    `publicValue2` the performance score). Numeric fields parse with a default
    of 0; `decrypted_value` is only kept when the record is verified.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    public_hours: int = Field(default=0, alias="publicValue1")
    public_performance: int = Field(default=0, alias="publicValue2")
    description: str = ""
    timestamp: int = 0
    creator: str = ""
    is_verified: bool = Field(default=False, alias="isVerified")
    decrypted_value: Optional[int] = Field(default=None, alias="decryptedValue")

    @field_validator("public_hours", "public_performance", "timestamp", mode="before")
    @classmethod
    def _parse_counts(cls, v: Any) -> int:
        return parse_int_or_zero(v)

    @field_validator("decrypted_value", mode="before")
    @classmethod
    def _parse_decrypted(cls, v: Any) -> Optional[int]:
        return None if v is None else parse_int_or_zero(v)

    @field_validator("description", "creator", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("is_verified", mode="before")
    @classmethod
    def _none_to_false(cls, v: Any) -> Any:
        return False if v is None else v

    @model_validator(mode="after")
    def _drop_unverified_value(self) -> "LedgerRecord":
        if not self.is_verified:
            self.decrypted_value = None
        return self


class PendingTransaction:
    """A submitted transaction; `await tx.wait()` blocks until the ledger confirms it."""

    def __init__(self, client: "LedgerClient", tx_hash: str) -> None:
        self._client = client
        self.tx_hash = tx_hash

    async def wait(self) -> None:
        await self._client.wait_for_receipt(self.tx_hash)

    def __repr__(self) -> str:
        return f"PendingTransaction({self.tx_hash!r})"


class LedgerClient:
    """
    Client for the payroll ledger gateway (JSON over HTTP).

    Notes
    - Read routes need no identity; write routes carry the sender address in
      the body and are signed by the gateway's wallet for that address.
    - GETs are retried on transport errors and 429/5xx with exponential
      backoff. POSTs are never retried, so a transaction is submitted at most
      once per call.
    - A local sliding-window limiter smooths bursts during a full sync.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_token: Optional[str] = None,
        target_address: Optional[str] = None,
        timeout: float = 15.0,
        max_per_second: int = 20,
        poll_interval: float = 1.0,
        retry_backoff: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self._base_url = base_url.rstrip("/")
        self._target_address = target_address
        self._poll_interval = poll_interval
        self._retry_backoff = retry_backoff
        self._owns_client = client is None
        headers = {"Authorization": f"Bearer {api_token}"} if api_token else None
        self._client = client or httpx.AsyncClient(base_url=self._base_url, timeout=timeout, headers=headers)
        self._limiter = SlidingWindowRateLimiter(max_calls=max_per_second, per_seconds=1.0)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "LedgerClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # --------------- Reads ---------------
    async def get_all_record_ids(self) -> List[str]:
        data = await self._request("GET", "/records")
        ids = data.get("ids")
        if not isinstance(ids, list):
            raise LedgerApiError("Malformed record id list from ledger gateway")
        return [str(i) for i in ids]

    async def get_record(self, record_id: str) -> LedgerRecord:
        data = await self._request("GET", f"/records/{quote(record_id, safe='')}")
        try:
            return LedgerRecord.model_validate(data)
        except ValidationError as ve:
            raise LedgerApiError(f"Failed to parse record {record_id}: {ve}") from ve

    async def get_ciphertext_handle(self, record_id: str) -> str:
        data = await self._request("GET", f"/records/{quote(record_id, safe='')}/ciphertext")
        handle = data.get("handle")
        if not isinstance(handle, str) or not handle:
            raise LedgerApiError(f"Missing ciphertext handle for record {record_id}")
        return handle

    async def is_available(self) -> bool:
        data = await self._request("GET", "/health")
        return data.get("available") is True

    async def target_address(self) -> str:
        """Address of the payroll contract; encryption and decryption are scoped to it."""
        if self._target_address:
            return self._target_address
        data = await self._request("GET", "/contract")
        address = data.get("address")
        if not isinstance(address, str) or not address:
            raise LedgerApiError("Missing contract address from ledger gateway")
        self._target_address = address
        return address

    # --------------- Writes ---------------
    async def create_record(
        self,
        record_id: str,
        name: str,
        ciphertext: str,
        proof: str,
        hours: int,
        performance: int,
        description: str,
        *,
        sender: str,
    ) -> PendingTransaction:
        body = {
            "id": record_id,
            "name": name,
            "ciphertext": ciphertext,
            "proof": proof,
            "publicValue1": hours,
            "publicValue2": performance,
            "description": description,
            "from": sender,
        }
        data = await self._request("POST", "/records", json_body=body, retry=False)
        return self._pending(data)

    async def submit_verification(
        self,
        record_id: str,
        encoded_clear_values: str,
        proof: str,
        *,
        sender: str,
    ) -> PendingTransaction:
        body = {"clearValues": encoded_clear_values, "proof": proof, "from": sender}
        data = await self._request(
            "POST", f"/records/{quote(record_id, safe='')}/verification", json_body=body, retry=False
        )
        return self._pending(data)

    async def wait_for_receipt(self, tx_hash: str) -> None:
        """Poll the receipt route until the transaction is confirmed or reverted."""
        while True:
            data = await self._request("GET", f"/transactions/{quote(tx_hash, safe='')}")
            status = str(data.get("status", "")).lower()
            if status == "confirmed":
                return
            if status in ("reverted", "failed"):
                reason = data.get("reason") or f"Transaction {tx_hash} reverted"
                raise LedgerRejectedError(str(reason), code=data.get("code"))
            await asyncio.sleep(self._poll_interval)

    # --------------- Internal ---------------
    def _pending(self, data: Dict[str, Any]) -> PendingTransaction:
        tx_hash = data.get("txHash")
        if not isinstance(tx_hash, str) or not tx_hash:
            raise LedgerApiError("Missing txHash in ledger gateway response")
        return PendingTransaction(self, tx_hash)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[Dict[str, Any]] = None,
        retry: bool = True,
    ) -> Dict[str, Any]:
        try:
            await self._limiter.acquire(blocking=True)
        except RateLimitError as rl:
            raise LedgerRateLimitError("Local rate limiter prevented request") from rl

        max_attempts = 4 if retry else 1
        attempt = 0
        backoff = self._retry_backoff
        last_exc: Optional[Exception] = None
        while attempt < max_attempts:
            try:
                resp = await self._client.request(method, path, json=json_body)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_exc = exc
            else:
                if 200 <= resp.status_code < 300:
                    try:
                        payload = resp.json()
                    except ValueError as exc:
                        raise LedgerApiError("Failed to parse JSON from ledger gateway") from exc
                    if not isinstance(payload, dict):
                        raise LedgerApiError("Malformed response from ledger gateway")
                    return payload
                if retry and resp.status_code in (429, 500, 502, 503, 504):
                    last_exc = LedgerApiError(f"HTTP {resp.status_code} from ledger gateway")
                else:
                    raise self._error_from_response(resp)

            attempt += 1
            if attempt < max_attempts:
                logger.debug("Retrying %s %s after %s (attempt %d)", method, path, last_exc, attempt)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 8.0)

        if last_exc is not None:
            raise LedgerError(f"{method} {path} failed after {max_attempts} attempt(s)") from last_exc
        raise LedgerError(f"{method} {path} failed (unknown error)")

    @staticmethod
    def _error_from_response(resp: httpx.Response) -> LedgerApiError:
        code: Optional[str] = None
        message: Optional[str] = None
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            err = body["error"]
            code = err.get("code") if isinstance(err.get("code"), str) else None
            message = err.get("message") if isinstance(err.get("message"), str) else None
        if message is None:
            message = f"HTTP {resp.status_code} from ledger gateway: {resp.text[:200]}"
        if 400 <= resp.status_code < 500:
            return LedgerRejectedError(message, code=code, status_code=resp.status_code)
        return LedgerApiError(message)


__all__ = [
    "LedgerClient",
    "LedgerRecord",
    "PendingTransaction",
    "LedgerError",
    "LedgerApiError",
    "LedgerRateLimitError",
    "LedgerRejectedError",
    "CODE_USER_REJECTED",
    "CODE_ALREADY_VERIFIED",
    "CODE_ACTION_REJECTED",
]
