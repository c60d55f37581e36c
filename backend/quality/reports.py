"""
Quality Reports — Read-only projections over data_quality_log.

  - latest_quality_report: today's findings, most severe first
  - quality_trends: rolling per-day, per-category totals
"""

from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Any

from sqlalchemy import case, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import DataQualityLog, Severity

TREND_WINDOW_DAYS = 30

_severity_rank = case(
    {severity.value: severity.rank for severity in Severity},
    value=DataQualityLog.severity,
    else_=len(Severity),
)


def error_rate_pct(issues_found: int, records_checked: int) -> float | None:
    if not records_checked:
        return None
    return round(issues_found / records_checked * 100, 2)


async def latest_quality_report(db: AsyncSession, day: date | None = None) -> list[dict[str, Any]]:
    """Findings logged on `day` (default today), by severity then issue count."""
    day = day or datetime.utcnow().date()
    day_start = datetime.combine(day, time.min)
    result = await db.execute(
        select(DataQualityLog)
        .where(
            DataQualityLog.checked_at >= day_start,
            DataQualityLog.checked_at < day_start + timedelta(days=1),
        )
        .order_by(_severity_rank, DataQualityLog.issues_found.desc(), DataQualityLog.log_id)
    )
    return [
        {
            "check_name": row.check_name,
            "check_category": row.check_category,
            "records_checked": row.records_checked,
            "issues_found": row.issues_found,
            "severity": row.severity,
            "error_rate_pct": error_rate_pct(row.issues_found, row.records_checked),
            "issue_details": row.issue_details,
            "checked_at": row.checked_at.isoformat(),
        }
        for row in result.scalars().all()
    ]


async def quality_trends(
    db: AsyncSession,
    day: date | None = None,
    window_days: int = TREND_WINDOW_DAYS,
) -> list[dict[str, Any]]:
    """
    Per check date and category over the trailing window:
    total checks, total issues, average issues per check.

    Newest date first, categories alphabetical within a date.
    """
    day = day or datetime.utcnow().date()
    window_start = datetime.combine(day - timedelta(days=window_days), time.min)
    result = await db.execute(
        select(DataQualityLog.checked_at, DataQualityLog.check_category, DataQualityLog.issues_found).where(
            DataQualityLog.checked_at >= window_start
        )
    )

    buckets: dict[tuple[date, str], list[int]] = defaultdict(list)
    for row in result.all():
        buckets[(row.checked_at.date(), row.check_category)].append(row.issues_found)

    trends = []
    for (check_date, category), issues in sorted(buckets.items(), key=lambda kv: (-kv[0][0].toordinal(), kv[0][1])):
        trends.append(
            {
                "check_date": check_date.isoformat(),
                "check_category": category,
                "total_checks": len(issues),
                "total_issues": sum(issues),
                "avg_issues_per_check": round(sum(issues) / len(issues), 2),
            }
        )
    return trends
