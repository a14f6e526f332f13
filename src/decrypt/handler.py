from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional, Set

from common.compute import ComputeClient
from common.config import DEFAULT_CONFIRM_TIMEOUT, Settings, load_settings
from common.errors import (
    AlreadyVerifiedError,
    ConfirmationTimeoutError,
    DecryptionFailedError,
    NotConnectedError,
    PayrollError,
    SubmissionFailedError,
    SubmissionRejectedByUserError,
)
from common.ledger import LedgerClient, LedgerRecord, LedgerRejectedError
from common.oplog import OperationLog
from common.status import StatusBoard
from session.controller import SessionController
from state.record_store import RecordStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecryptResult:
    """
    Outcome of a decrypt-verify run.

    `already_verified` is set when the stored value was returned instead of
    decrypting, either up front or after losing a verification race. In the
    race case `error` carries the `AlreadyVerifiedError` for inspection even
    though `ok` is True.
    """

    ok: bool
    value: Optional[int] = None
    already_verified: bool = False
    error: Optional[PayrollError] = None


def _stored_value(record: LedgerRecord) -> int:
    return record.decrypted_value if record.decrypted_value is not None else 0


class DecryptVerifyWorkflow:
    """
    Reveal a record's salary once and record the proof on the ledger.

    The record is re-read from the ledger (not the local store) first. A
    verified record short-circuits to its stored value without any decryption
    request. Otherwise the ciphertext handle is decrypted verifiably and the
    proof submitted; if another actor verified the record in the meantime the
    ledger rejects the proof as already verified, the proof is dropped and the
    value is re-read rather than resubmitted.
    """

    def __init__(
        self,
        *,
        session: SessionController,
        ledger: Any,
        compute: Any,
        store: RecordStore,
        oplog: Optional[OperationLog] = None,
        status: Optional[StatusBoard] = None,
        confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT,
    ) -> None:
        self._session = session
        self._ledger = ledger
        self._compute = compute
        self._store = store
        self._oplog = oplog if oplog is not None else OperationLog()
        self._status = status if status is not None else session.status
        self._confirm_timeout = confirm_timeout
        self._decrypting: Set[str] = set()

    @property
    def decrypting(self) -> FrozenSet[str]:
        return frozenset(self._decrypting)

    async def run(self, record_id: str) -> DecryptResult:
        try:
            address = await self._session.require_ready()
        except NotConnectedError as err:
            return self._fail(record_id, err)

        self._decrypting.add(record_id)
        try:
            return await self._run(record_id, address)
        except PayrollError as err:
            return self._fail(record_id, err)
        finally:
            self._decrypting.discard(record_id)

    async def _run(self, record_id: str, address: str) -> DecryptResult:
        try:
            record = await self._ledger.get_record(record_id)
        except Exception as exc:
            raise DecryptionFailedError(f"Decryption failed: {exc}") from exc

        if record.is_verified:
            logger.debug("Record %s already verified; returning stored value", record_id)
            self._status.success("Salary already verified on-chain")
            self._oplog.record(f"Viewed verified salary for record {record_id}")
            return DecryptResult(ok=True, value=_stored_value(record), already_verified=True)

        try:
            handle = await self._ledger.get_ciphertext_handle(record_id)
            target = await self._ledger.target_address()
            result = await self._compute.request_verifiable_decryption([handle], target)
        except Exception as exc:
            raise DecryptionFailedError(f"Decryption failed: {exc}") from exc

        self._status.pending("Verifying decryption on-chain...")
        try:
            tx = await self._ledger.submit_verification(
                record_id, result.encoded_clear_values, result.proof, sender=address
            )
            await asyncio.wait_for(tx.wait(), timeout=self._confirm_timeout)
        except asyncio.TimeoutError as exc:
            raise ConfirmationTimeoutError(
                f"Verification failed: no confirmation within {self._confirm_timeout:g}s"
            ) from exc
        except LedgerRejectedError as exc:
            if exc.already_verified:
                return await self._resolve_lost_race(record_id)
            if exc.user_rejected:
                raise SubmissionRejectedByUserError("Transaction rejected by user") from exc
            raise SubmissionFailedError(f"Verification failed: {exc.message}") from exc
        except Exception as exc:
            raise SubmissionFailedError(f"Verification failed: {exc}") from exc

        await self._store.sync_all()
        value = result.clear_values[handle]
        self._oplog.record(f"Decrypted and verified salary for record {record_id}")
        self._status.success("Salary decrypted and verified successfully!")
        return DecryptResult(ok=True, value=value)

    async def _resolve_lost_race(self, record_id: str) -> DecryptResult:
        # The in-flight proof is dropped; the ledger's stored value is authoritative.
        race = AlreadyVerifiedError(record_id)
        logger.info("Record %s was verified concurrently; discarding proof", record_id)
        await self._store.sync_all()

        value: Optional[int] = None
        try:
            record = await self._ledger.get_record(record_id)
        except Exception as exc:
            logger.warning("Could not re-read verified record %s: %s", record_id, exc)
        else:
            if record.is_verified:
                value = _stored_value(record)

        self._status.success("Salary is already verified on-chain")
        return DecryptResult(ok=True, value=value, already_verified=True, error=race)

    def _fail(self, record_id: str, err: PayrollError) -> DecryptResult:
        logger.warning("Decrypt-verify for record %s failed: %s", record_id, err.message)
        self._status.error(err.message)
        return DecryptResult(ok=False, error=err)


def _result(record_id: Optional[str], *, ok: bool, error: Optional[str], history: list, **extra: Any) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "ok": ok,
        "record_id": record_id,
        "value": None,
        "already_verified": False,
        "error": error,
        "history": history,
    }
    out.update(extra)
    return out


async def run_async(settings: Settings, record_id: str) -> Dict[str, Any]:
    """Connect, initialize compute and decrypt-verify one record."""
    status = StatusBoard(ttl=settings.status_ttl)
    oplog = OperationLog()

    async with LedgerClient(
        settings.ledger_url,
        api_token=settings.ledger_api_token,
        target_address=settings.ledger_target,
    ) as ledger, ComputeClient(settings.compute_url, api_token=settings.compute_api_token) as compute:
        session = SessionController(compute, status=status)
        session.connect(settings.account)
        if not await session.ensure_ready():
            return _result(
                record_id, ok=False, error="Confidential compute initialization failed", history=oplog.lines()
            )

        store = RecordStore(ledger, session, oplog=oplog, status=status)
        workflow = DecryptVerifyWorkflow(
            session=session,
            ledger=ledger,
            compute=compute,
            store=store,
            oplog=oplog,
            status=status,
            confirm_timeout=settings.confirm_timeout,
        )
        result = await workflow.run(record_id)

    # A lost verification race still succeeds; its error is informational only.
    error = result.error.message if result.error is not None and not result.ok else None
    return _result(
        record_id,
        ok=result.ok,
        error=error,
        history=oplog.lines(),
        value=result.value,
        already_verified=result.already_verified,
    )


def run_once(event: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Decrypt and verify the record named by `event["recordId"]`.

    Returns: {"ok", "record_id", "value", "already_verified", "error", "history"}.
    A missing recordId is reported without touching either service.
    """
    record_id = str((event or {}).get("recordId") or "").strip()
    if not record_id:
        return _result(None, ok=False, error="recordId is required", history=[])
    settings = load_settings()
    return asyncio.run(run_async(settings, record_id))


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    return run_once(event)


__all__ = ["DecryptVerifyWorkflow", "DecryptResult", "run_async", "run_once", "lambda_handler"]
