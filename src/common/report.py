from __future__ import annotations

from typing import Sequence

from .stats import PERFORMANCE_BUCKETS, PayrollStats


def _fmt_score(value: float) -> str:
    return f"{value:.1f}/{PERFORMANCE_BUCKETS}"


def _fmt_bar(count: int, peak: int, *, width: int = 20) -> str:
    if peak <= 0 or count <= 0:
        return ""
    return "#" * max(1, round(width * count / peak))


def format_stats_report(stats: PayrollStats, distribution: Sequence[int] = ()) -> str:
    """Return a plain-text payroll summary.

    The distribution section is omitted when no distribution is given or
    every bucket is empty.
    """
    parts = [
        "[PAYROLL SUMMARY]",
        f"Total Payments: {stats.total_payments} (encrypted records)",
        f"Verified: {stats.verified_payments}/{stats.total_payments} (on-chain)",
        f"Avg Performance: {_fmt_score(stats.avg_performance)}",
        f"Total Hours: {stats.total_hours}",
    ]

    peak = max(distribution) if distribution else 0
    if peak > 0:
        parts.append("")
        parts.append("Performance distribution:")
        for score, count in enumerate(distribution, start=1):
            parts.append(f"{score:>2} | {count:>3} {_fmt_bar(count, peak)}".rstrip())

    return "\n".join(parts)


__all__ = ["format_stats_report"]
