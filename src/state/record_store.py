from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from common.errors import SyncPartialFailure
from common.oplog import OperationLog
from common.status import StatusBoard

from .models import PayrollRecord

if TYPE_CHECKING:
    from session.controller import SessionController


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncReport:
    """
    Outcome of one `sync_all` call.

    - applied: the fetched set replaced the store contents
    - loaded: number of records in the fetched set
    - failures: per-record fetch failures (those ids were skipped)
    - error: set when the sync could not run at all (not ready, id list failed)
    """

    applied: bool
    loaded: int = 0
    failures: Tuple[SyncPartialFailure, ...] = field(default_factory=tuple)
    error: Optional[str] = None

    @property
    def skipped(self) -> int:
        return len(self.failures)


class RecordStore:
    """
    In-memory mirror of the ledger's payroll records.

    `sync_all` is the only writer: it fetches every record and swaps the whole
    mapping in one assignment, so readers never see a blend of two syncs.
    Workflows that change ledger state call `sync_all` afterwards instead of
    editing the store.

    Overlapping syncs each take a ticket when they start. A sync that finishes
    after a later-started sync was already applied is discarded.
    """

    def __init__(
        self,
        ledger: Any,
        session: "SessionController",
        *,
        oplog: Optional[OperationLog] = None,
        status: Optional[StatusBoard] = None,
    ) -> None:
        self._ledger = ledger
        self._session = session
        self._oplog = oplog if oplog is not None else OperationLog()
        self._status = status if status is not None else session.status
        self._records: Dict[str, PayrollRecord] = {}
        self._tickets_issued = 0
        self._applied_ticket = 0
        self._in_flight = 0

    # -------- Reads --------
    @property
    def refreshing(self) -> bool:
        return self._in_flight > 0

    def get(self, record_id: str) -> Optional[PayrollRecord]:
        return self._records.get(record_id)

    def snapshot(self) -> List[PayrollRecord]:
        return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    # -------- Sync --------
    async def sync_all(self) -> SyncReport:
        """Replace the store with the ledger's current records. Never raises."""
        if not self._session.ready:
            logger.debug("Sync skipped: session not ready")
            return SyncReport(applied=False, error="Session not ready")

        self._tickets_issued += 1
        ticket = self._tickets_issued
        self._in_flight += 1
        try:
            return await self._sync(ticket)
        finally:
            self._in_flight -= 1

    async def _sync(self, ticket: int) -> SyncReport:
        try:
            record_ids = await self._ledger.get_all_record_ids()
        except Exception as exc:
            logger.warning("Failed to load payroll record ids: %s", exc)
            self._status.error("Failed to load data")
            return SyncReport(applied=False, error=str(exc))

        fetched: Dict[str, PayrollRecord] = {}
        failures: List[SyncPartialFailure] = []
        for record_id in record_ids:
            try:
                raw = await self._ledger.get_record(record_id)
                fetched[record_id] = PayrollRecord.from_ledger(record_id, raw)
            except Exception as exc:
                logger.warning("Skipping payroll record %s: %s", record_id, exc)
                failures.append(SyncPartialFailure(record_id, f"Error loading record {record_id}: {exc}"))

        if ticket < self._applied_ticket:
            logger.info("Discarding stale sync #%d (sync #%d already applied)", ticket, self._applied_ticket)
            return SyncReport(applied=False, loaded=len(fetched), failures=tuple(failures), error="stale")

        self._records = fetched
        self._applied_ticket = ticket
        self._oplog.record(f"Loaded {len(fetched)} payroll records")
        return SyncReport(applied=True, loaded=len(fetched), failures=tuple(failures))


__all__ = ["RecordStore", "SyncReport"]
