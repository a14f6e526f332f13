from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from common.compute import ComputeClient
from common.config import Settings, load_settings
from common.errors import ServiceUnavailableError
from common.ledger import LedgerClient
from common.oplog import OperationLog
from common.report import format_stats_report
from common.stats import compute_stats, performance_distribution
from common.status import StatusBoard
from session.controller import SessionController
from state.record_store import RecordStore


logger = logging.getLogger(__name__)

AVAILABILITY_STATUS_TTL = 2.0


async def check_availability(ledger: Any, *, status: StatusBoard, oplog: OperationLog) -> bool:
    """Ask the ledger whether the payroll contract is available; mirror the answer on the status board."""
    try:
        available = await ledger.is_available()
    except Exception as exc:
        err = ServiceUnavailableError("Availability check failed")
        logger.warning("%s: %s", err.message, exc)
        status.error(err.message, ttl=AVAILABILITY_STATUS_TTL)
        return False

    if available:
        status.success("Contract is available and ready", ttl=AVAILABILITY_STATUS_TTL)
        oplog.record("Checked contract availability - Ready")
    else:
        status.error("Contract is not available", ttl=AVAILABILITY_STATUS_TTL)
    return available


def _skipped(note: str, history: Optional[list] = None) -> Dict[str, Any]:
    return {
        "ok": False,
        "records": 0,
        "verified": 0,
        "skipped": 0,
        "note": note,
        "history": history or [],
    }


async def run_async(settings: Settings) -> Dict[str, Any]:
    """Connect, initialize compute, sync every record and summarize."""
    status = StatusBoard(ttl=settings.status_ttl)
    oplog = OperationLog()

    async with LedgerClient(
        settings.ledger_url,
        api_token=settings.ledger_api_token,
        target_address=settings.ledger_target,
    ) as ledger, ComputeClient(settings.compute_url, api_token=settings.compute_api_token) as compute:
        if not await check_availability(ledger, status=status, oplog=oplog):
            return _skipped("Ledger unavailable", oplog.lines())

        session = SessionController(compute, status=status)
        session.connect(settings.account)
        if not await session.ensure_ready():
            return _skipped("Confidential compute initialization failed", oplog.lines())

        store = RecordStore(ledger, session, oplog=oplog, status=status)
        report = await store.sync_all()
        if not report.applied:
            return _skipped(f"Sync failed: {report.error}", oplog.lines())
        records = store.snapshot()

    stats = compute_stats(records)
    return {
        "ok": True,
        "records": stats.total_payments,
        "verified": stats.verified_payments,
        "skipped": report.skipped,
        "avg_performance": round(stats.avg_performance, 1),
        "total_hours": stats.total_hours,
        "report": format_stats_report(stats, performance_distribution(records)),
        "history": oplog.lines(),
    }


def run_once() -> Dict[str, Any]:
    """
    Snapshot the payroll ledger once.

    - Resolves settings from env (and API tokens from SSM under PARAM_PREFIX).
    - Checks ledger availability, connects as PAYROLL_ACCOUNT, initializes
      confidential compute and runs a full sync.

    Returns: {"ok", "records", "verified", "skipped", "avg_performance",
    "total_hours", "report", "history"}; on an early stop, {"ok": False, "note", ...}.
    """
    settings = load_settings()
    return asyncio.run(run_async(settings))


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    return run_once()
