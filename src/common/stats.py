from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, List, Sequence

if TYPE_CHECKING:
    from state.models import PayrollRecord


PERFORMANCE_BUCKETS = 10


@dataclass(frozen=True)
class PayrollStats:
    total_payments: int
    verified_payments: int
    avg_performance: float
    total_hours: int


def compute_stats(records: Iterable["PayrollRecord"]) -> PayrollStats:
    """Summary metrics over a store snapshot. Recomputed on every call.

    Performance and hours are public, so unverified records count too.
    """
    items: Sequence["PayrollRecord"] = list(records)
    total = len(items)
    verified = sum(1 for r in items if r.verified)
    avg = sum(r.public_performance for r in items) / total if total else 0.0
    hours = sum(r.public_hours for r in items)
    return PayrollStats(
        total_payments=total,
        verified_payments=verified,
        avg_performance=avg,
        total_hours=hours,
    )


def performance_distribution(records: Iterable["PayrollRecord"]) -> List[int]:
    """Count of records per performance score 1..10; other scores are ignored."""
    buckets = [0] * PERFORMANCE_BUCKETS
    for r in records:
        if 1 <= r.public_performance <= PERFORMANCE_BUCKETS:
            buckets[r.public_performance - 1] += 1
    return buckets


def filter_records(records: Iterable["PayrollRecord"], term: str) -> List["PayrollRecord"]:
    """Case-insensitive match of `term` against employee name or description."""
    needle = (term or "").lower()
    return [
        r
        for r in records
        if needle in r.employee_name.lower() or needle in r.description.lower()
    ]


__all__ = [
    "PayrollStats",
    "compute_stats",
    "performance_distribution",
    "filter_records",
    "PERFORMANCE_BUCKETS",
]
