from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterable, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .coerce import parse_int_or_zero
from .rate_limiter import RateLimitError, SlidingWindowRateLimiter


class ComputeError(RuntimeError):
    """Base error for the confidential-compute client."""


class ComputeApiError(ComputeError):
    """Service returned an error status or an unexpected payload."""


class ComputeRateLimitError(ComputeError):
    """Local rate limiting prevented the request."""


class EncryptedInput(BaseModel):
    """Ciphertext handle plus the input proof the ledger checks on submission."""

    ciphertext: str
    proof: str


class DecryptionResult(BaseModel):
    """
    Outcome of a verifiable decryption.

    - clear_values: handle -> clear integer
    - encoded_clear_values: ABI-encoded clear values, submitted verbatim to the ledger
    - proof: decryption proof the ledger verifies before recording the value
    """

    model_config = ConfigDict(populate_by_name=True)

    clear_values: Dict[str, int] = Field(alias="clearValues")
    encoded_clear_values: str = Field(alias="encodedClearValues")
    proof: str

    @field_validator("clear_values", mode="before")
    @classmethod
    def _parse_values(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(k): parse_int_or_zero(val) for k, val in v.items()}
        return v


class ComputeClient:
    """
    Client for the confidential-compute (FHE relayer) service.

    Notes
    - `initialize()` is idempotent: once the service reports ready, later calls
      return without a network round trip.
    - Encryption and decryption are always scoped to a ledger target address.
    - Only `initialize` is retried (it has no side effects beyond readiness);
      encrypt/decrypt requests are sent once.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_token: Optional[str] = None,
        timeout: float = 60.0,
        max_per_second: int = 5,
        retry_backoff: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self._base_url = base_url.rstrip("/")
        self._retry_backoff = retry_backoff
        self._ready = False
        self._owns_client = client is None
        headers = {"Authorization": f"Bearer {api_token}"} if api_token else None
        self._client = client or httpx.AsyncClient(base_url=self._base_url, timeout=timeout, headers=headers)
        self._limiter = SlidingWindowRateLimiter(max_calls=max_per_second, per_seconds=1.0)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ComputeClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def ready(self) -> bool:
        return self._ready

    # --------------- Public API ---------------
    async def initialize(self) -> bool:
        if self._ready:
            return True
        data = await self._request("/initialize", {}, retry=True)
        if data.get("ready") is not True:
            raise ComputeApiError("Confidential compute service did not report ready")
        self._ready = True
        return True

    async def encrypt(self, target: str, submitter: str, value: int) -> EncryptedInput:
        """Encrypt a 32-bit unsigned value for `target`, bound to `submitter`."""
        data = await self._request("/encrypt", {"target": target, "submitter": submitter, "value": value})
        try:
            return EncryptedInput.model_validate(data)
        except ValidationError as ve:
            raise ComputeApiError(f"Failed to parse encryption payload: {ve}") from ve

    async def request_verifiable_decryption(self, handles: Iterable[str], target: str) -> DecryptionResult:
        handle_list: List[str] = list(dict.fromkeys(handles))
        if not handle_list:
            raise ValueError("at least one handle is required")
        data = await self._request("/decrypt", {"handles": handle_list, "target": target})
        try:
            result = DecryptionResult.model_validate(data)
        except ValidationError as ve:
            raise ComputeApiError(f"Failed to parse decryption payload: {ve}") from ve
        missing = [h for h in handle_list if h not in result.clear_values]
        if missing:
            raise ComputeApiError(f"Decryption result missing handles: {', '.join(missing)}")
        return result

    # --------------- Internal ---------------
    async def _request(self, path: str, json_body: Dict[str, Any], *, retry: bool = False) -> Dict[str, Any]:
        try:
            await self._limiter.acquire(blocking=True)
        except RateLimitError as rl:
            raise ComputeRateLimitError("Local rate limiter prevented request") from rl

        max_attempts = 3 if retry else 1
        attempt = 0
        backoff = self._retry_backoff
        last_exc: Optional[Exception] = None
        while attempt < max_attempts:
            try:
                resp = await self._client.post(path, json=json_body)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_exc = exc
            else:
                if 200 <= resp.status_code < 300:
                    try:
                        payload = resp.json()
                    except ValueError as exc:
                        raise ComputeApiError("Failed to parse JSON from compute service") from exc
                    if not isinstance(payload, dict):
                        raise ComputeApiError("Malformed response from compute service")
                    return payload
                if retry and resp.status_code in (429, 500, 502, 503, 504):
                    last_exc = ComputeApiError(f"HTTP {resp.status_code} from compute service")
                else:
                    raise ComputeApiError(
                        f"HTTP {resp.status_code} from compute service: {resp.text[:200]}"
                    )

            attempt += 1
            if attempt < max_attempts:
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 8.0)

        if last_exc is not None:
            raise ComputeError(f"{path} failed after {max_attempts} attempt(s)") from last_exc
        raise ComputeError(f"{path} failed (unknown error)")


__all__ = [
    "ComputeClient",
    "ComputeError",
    "ComputeApiError",
    "ComputeRateLimitError",
    "EncryptedInput",
    "DecryptionResult",
]
