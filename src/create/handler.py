from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from common.compute import ComputeClient
from common.config import DEFAULT_CONFIRM_TIMEOUT, Settings, load_settings
from common.errors import (
    ConfirmationTimeoutError,
    EncryptionFailedError,
    InvalidInputError,
    NotConnectedError,
    PayrollError,
    ServiceUnavailableError,
    SubmissionFailedError,
    SubmissionRejectedByUserError,
)
from common.ledger import LedgerClient, LedgerRejectedError
from common.oplog import OperationLog
from common.status import StatusBoard
from session.controller import SessionController
from state.models import PayrollForm
from state.record_store import RecordStore


logger = logging.getLogger(__name__)

RECORD_ID_PREFIX = "payroll-"


class RecordIdFactory:
    """
    Record ids derived from the creation time in milliseconds.

    Ids are unique per process (a second id in the same millisecond is bumped
    forward); across processes uniqueness relies on human-rate creation.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._last_ms = 0

    def __call__(self) -> str:
        ms = int(self._clock() * 1000)
        if ms <= self._last_ms:
            ms = self._last_ms + 1
        self._last_ms = ms
        return f"{RECORD_ID_PREFIX}{ms}"


@dataclass(frozen=True)
class CreateResult:
    ok: bool
    record_id: Optional[str] = None
    error: Optional[PayrollError] = None


class CreatePayrollWorkflow:
    """
    Encrypt a salary client-side and submit a new payroll record.

    Steps, in order: new record id -> encrypt salary for (ledger target,
    submitter) -> submit creation transaction -> wait for confirmation ->
    resync the store, log, reset the form. Every outcome is mirrored on the
    status board; failures come back as `CreateResult.error`.
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
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self._session = session
        self._ledger = ledger
        self._compute = compute
        self._store = store
        self._oplog = oplog if oplog is not None else OperationLog()
        self._status = status if status is not None else session.status
        self._confirm_timeout = confirm_timeout
        self._new_id = id_factory or RecordIdFactory()
        self._creating = False
        self._form_open = False
        self.form = PayrollForm()

    @property
    def creating(self) -> bool:
        return self._creating

    @property
    def form_open(self) -> bool:
        return self._form_open

    def open_form(self) -> None:
        self._form_open = True

    def close_form(self) -> None:
        self._form_open = False
        self.form = PayrollForm()

    def update_form(self, **fields: Any) -> PayrollForm:
        """Merge raw field values into the pending form ("salary": "150000", ...)."""
        self.form = PayrollForm.model_validate({**self.form.model_dump(), **fields})
        return self.form

    async def run(self, form: Optional[PayrollForm] = None) -> CreateResult:
        """Submit `form`, or the pending form when omitted; only the pending form is reset on success."""
        from_pending = form is None
        form = self.form if from_pending else form
        try:
            address = await self._session.require_ready()
        except NotConnectedError as err:
            return self._fail(err)
        if not form.employee_name:
            return self._fail(InvalidInputError("Employee name is required"))

        self._creating = True
        self._status.pending("Creating encrypted payroll record...")
        try:
            record_id = await self._submit(form, address)
        except PayrollError as err:
            return self._fail(err)
        finally:
            self._creating = False

        self._status.success("Payroll created successfully!")
        await self._store.sync_all()
        self._oplog.record(f"Created payroll for {form.employee_name}")
        if from_pending:
            self.close_form()
        return CreateResult(ok=True, record_id=record_id)

    async def _submit(self, form: PayrollForm, address: str) -> str:
        record_id = self._new_id()

        try:
            target = await self._ledger.target_address()
        except Exception as exc:
            raise ServiceUnavailableError(f"Ledger unavailable: {exc}") from exc

        try:
            encrypted = await self._compute.encrypt(target, address, form.salary)
        except Exception as exc:
            raise EncryptionFailedError(f"Encryption failed: {exc}") from exc

        try:
            tx = await self._ledger.create_record(
                record_id,
                form.employee_name,
                encrypted.ciphertext,
                encrypted.proof,
                form.hours,
                form.performance,
                form.description,
                sender=address,
            )
            self._status.pending("Waiting for transaction confirmation...")
            await asyncio.wait_for(tx.wait(), timeout=self._confirm_timeout)
        except asyncio.TimeoutError as exc:
            raise ConfirmationTimeoutError(
                f"Submission failed: no confirmation within {self._confirm_timeout:g}s"
            ) from exc
        except LedgerRejectedError as exc:
            if exc.user_rejected:
                raise SubmissionRejectedByUserError("Transaction rejected by user") from exc
            raise SubmissionFailedError(f"Submission failed: {exc.message}") from exc
        except Exception as exc:
            raise SubmissionFailedError(f"Submission failed: {exc}") from exc

        logger.info("Created payroll record %s", record_id)
        return record_id

    def _fail(self, err: PayrollError) -> CreateResult:
        logger.warning("Create payroll failed: %s", err.message)
        self._status.error(err.message)
        return CreateResult(ok=False, error=err)


def form_from_event(event: Optional[Dict[str, Any]]) -> PayrollForm:
    """Build a form from an invocation event: employeeName, salary, hours, performance, description."""
    event = event or {}
    return PayrollForm(
        employee_name=event.get("employeeName"),
        salary=event.get("salary"),
        hours=event.get("hours"),
        performance=event.get("performance"),
        description=event.get("description"),
    )


async def run_async(settings: Settings, form: PayrollForm) -> Dict[str, Any]:
    """Connect, initialize compute and submit one payroll record."""
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
            return {
                "ok": False,
                "record_id": None,
                "error": "Confidential compute initialization failed",
                "history": oplog.lines(),
            }

        store = RecordStore(ledger, session, oplog=oplog, status=status)
        workflow = CreatePayrollWorkflow(
            session=session,
            ledger=ledger,
            compute=compute,
            store=store,
            oplog=oplog,
            status=status,
            confirm_timeout=settings.confirm_timeout,
        )
        result = await workflow.run(form)

    return {
        "ok": result.ok,
        "record_id": result.record_id,
        "error": result.error.message if result.error is not None else None,
        "records": len(store),
        "history": oplog.lines(),
    }


def run_once(event: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Create one payroll record from `event`.

    Returns: {"ok", "record_id", "error", "records", "history"}; `records` is
    the store size after the post-creation sync.
    """
    settings = load_settings()
    return asyncio.run(run_async(settings, form_from_event(event)))


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    return run_once(event)


__all__ = [
    "CreatePayrollWorkflow",
    "CreateResult",
    "RecordIdFactory",
    "form_from_event",
    "run_async",
    "run_once",
    "lambda_handler",
]
