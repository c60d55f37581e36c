"""
Quality Check Engine — Runs the check families and logs findings.

Pipeline (run_all_checks, one transaction):
  1. Prune findings older than the retention window
  2. Missing Data
  3. Data Consistency
  4. Business Rules
  5. Referential Integrity
  6. Data Anomalies
  7. Summarize today's findings by severity

Checks only read business tables. A check whose precondition fails
(InconsistentStateError) is skipped for the run; every other error rolls the
whole run back.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.errors import InconsistentStateError
from db.models import CheckCategory, DataQualityLog, Severity
from db.session import atomic
from quality.checks import CHECK_FAMILIES, QualityCheck, resolve_family

logger = structlog.get_logger()


@dataclass
class Finding:
    check_name: str
    category: CheckCategory
    severity: Severity
    records_checked: int
    issues_found: int
    detail: str
    checked_at: datetime

    def as_dict(self) -> dict[str, Any]:
        return {
            "check_name": self.check_name,
            "category": self.category.value,
            "severity": self.severity.value,
            "records_checked": self.records_checked,
            "issues_found": self.issues_found,
            "detail": self.detail,
            "checked_at": self.checked_at.isoformat(),
        }


@dataclass
class FamilyResult:
    category: CheckCategory
    findings: list[Finding] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "findings": [f.as_dict() for f in self.findings],
            "skipped": list(self.skipped),
        }


@dataclass
class SeverityRollup:
    severity: Severity
    finding_count: int = 0
    issues: int = 0
    categories: list[str] = field(default_factory=list)


@dataclass
class QualitySummary:
    """Today's findings, rolled up Critical first."""

    total_issues: int
    finding_count: int
    findings_by_severity: dict[Severity, SeverityRollup]
    pruned: int = 0
    skipped: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_issues": self.total_issues,
            "finding_count": self.finding_count,
            "findings_by_severity": {
                severity.value: {
                    "finding_count": rollup.finding_count,
                    "issues": rollup.issues,
                    "categories": list(rollup.categories),
                }
                for severity, rollup in self.findings_by_severity.items()
            },
            "pruned": self.pruned,
            "skipped": list(self.skipped),
        }


# ──────────────────────────────────────────────────────────────────────────
# Single check
# ──────────────────────────────────────────────────────────────────────────


async def run_check(db: AsyncSession, check: QualityCheck, now: datetime, today: date) -> Finding | None:
    """
    Evaluate one check and log a finding if it counted any issues.

    `now` stamps the finding; `today` is the business date the checks measure
    ship dates and recent orders against.

    Raises InconsistentStateError when the check's precondition fails.
    """
    if check.precondition is not None:
        await check.precondition(db)

    issues_found = (await db.execute(check.issues(today))).scalar() or 0
    if issues_found <= 0:
        return None
    records_checked = (await db.execute(check.records(today))).scalar() or 0

    finding = Finding(
        check_name=check.name,
        category=check.category,
        severity=check.severity,
        records_checked=records_checked,
        issues_found=issues_found,
        detail=check.describe(issues_found),
        checked_at=now,
    )
    db.add(
        DataQualityLog(
            check_name=finding.check_name,
            check_category=finding.category.value,
            records_checked=finding.records_checked,
            issues_found=finding.issues_found,
            severity=finding.severity.value,
            issue_details=finding.detail,
            checked_at=finding.checked_at,
        )
    )
    logger.info(
        "quality.finding",
        check=check.name,
        category=check.category.value,
        severity=check.severity.value,
        issues_found=issues_found,
        records_checked=records_checked,
    )
    return finding


async def _run_family(db: AsyncSession, category: CheckCategory, now: datetime, today: date) -> FamilyResult:
    result = FamilyResult(category=category)
    for check in CHECK_FAMILIES[category]:
        try:
            finding = await run_check(db, check, now, today)
        except InconsistentStateError as exc:
            logger.warning("quality.check_skipped", check=check.name, reason=str(exc))
            result.skipped.append(check.name)
            continue
        if finding is not None:
            result.findings.append(finding)
    return result


async def run_check_family(
    db: AsyncSession,
    family: str | CheckCategory,
    now: datetime | None = None,
    today: date | None = None,
) -> FamilyResult:
    """Run one check family on its own, for targeted re-runs. Does not prune."""
    category = resolve_family(family)
    now = now or datetime.utcnow()
    today = today or date.today()
    async with atomic(db, f"quality.{category.name.lower()}"):
        result = await _run_family(db, category, now, today)
    return result


# ──────────────────────────────────────────────────────────────────────────
# Log maintenance + summary
# ──────────────────────────────────────────────────────────────────────────


async def prune_findings(db: AsyncSession, now: datetime, retention_days: int) -> int:
    """Delete findings older than the retention window. Returns rows removed."""
    cutoff = now - timedelta(days=retention_days)
    result = await db.execute(
        delete(DataQualityLog)
        .where(DataQualityLog.checked_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def summarize_findings(db: AsyncSession, now: datetime) -> QualitySummary:
    """Roll up findings logged on now's calendar day by severity."""
    day_start = datetime.combine(now.date(), time.min)
    rows = (
        await db.execute(
            select(DataQualityLog.severity, DataQualityLog.check_category, DataQualityLog.issues_found).where(
                DataQualityLog.checked_at >= day_start,
                DataQualityLog.checked_at < day_start + timedelta(days=1),
            )
        )
    ).all()

    rollups: dict[Severity, SeverityRollup] = {}
    for row in rows:
        severity = Severity(row.severity)
        rollup = rollups.setdefault(severity, SeverityRollup(severity=severity))
        rollup.finding_count += 1
        rollup.issues += row.issues_found
        if row.check_category not in rollup.categories:
            rollup.categories.append(row.check_category)

    ordered: dict[Severity, SeverityRollup] = {}
    for severity in sorted(rollups, key=lambda s: s.rank):
        rollup = rollups[severity]
        rollup.categories.sort()
        ordered[severity] = rollup

    return QualitySummary(
        total_issues=sum(r.issues for r in ordered.values()),
        finding_count=sum(r.finding_count for r in ordered.values()),
        findings_by_severity=ordered,
    )


# ──────────────────────────────────────────────────────────────────────────
# Full run
# ──────────────────────────────────────────────────────────────────────────


async def run_all_checks(
    db: AsyncSession,
    now: datetime | None = None,
    today: date | None = None,
) -> QualitySummary:
    """Prune the log, run every family in order, and summarize today's findings."""
    now = now or datetime.utcnow()
    today = today or date.today()
    retention_days = get_settings().quality_log_retention_days

    async with atomic(db, "quality.run_all_checks"):
        pruned = await prune_findings(db, now, retention_days)
        skipped: list[str] = []
        for category in CHECK_FAMILIES:
            family = await _run_family(db, category, now, today)
            skipped.extend(family.skipped)
        await db.flush()
        summary = await summarize_findings(db, now)

    summary.pruned = pruned
    summary.skipped = skipped
    logger.info(
        "quality.run_complete",
        total_issues=summary.total_issues,
        finding_count=summary.finding_count,
        pruned=pruned,
        skipped=len(skipped),
    )
    return summary
