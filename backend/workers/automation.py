"""
Automation Workers — Entry points for the external driver.

Each operation opens its own engine and session, runs as one transaction,
and returns a JSON-serialisable summary. The same registry backs the Celery
tasks below and scripts/run_automation.py.

  run_quality_checks      all five check families (+ log pruning)
  run_quality_family      one family, by name
  apply_discount          commit the tiered discount for an order
  preview_discount        compute it without writing
  detect_stale_pricing    products with no price change in 180+ days
  cleanup_orders          dedupe / prune orders and items
  standardize_data        normalize text, money and order totals
  quality_report          today's findings + 30-day trend
"""

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import AlreadyDiscountedError, NotFoundError, TransactionFailure
from workers.celery_app import celery_app

logger = structlog.get_logger()


@asynccontextmanager
async def session_scope():
    from core.config import get_settings
    from db.session import build_engine, build_session_factory

    settings = get_settings()
    engine = build_engine(settings.database_url)
    try:
        async with build_session_factory(engine)() as db:
            yield db
    finally:
        await engine.dispose()


# ──────────────────────────────────────────────────────────────────────────
# Operation registry
# ──────────────────────────────────────────────────────────────────────────


async def _run_quality_checks(db: AsyncSession) -> dict[str, Any]:
    from quality.engine import run_all_checks

    return (await run_all_checks(db)).as_dict()


async def _run_quality_family(db: AsyncSession, family: str) -> dict[str, Any]:
    from quality.engine import run_check_family

    return (await run_check_family(db, family)).as_dict()


async def _apply_discount(db: AsyncSession, order_id: int, allow_compounding: bool = False) -> dict[str, Any]:
    from rules.discount import apply_discount

    return (await apply_discount(db, int(order_id), allow_compounding=allow_compounding)).as_dict()


async def _preview_discount(db: AsyncSession, order_id: int) -> dict[str, Any]:
    from rules.discount import preview_discount

    return (await preview_discount(db, int(order_id))).as_dict()


async def _detect_stale_pricing(db: AsyncSession) -> dict[str, Any]:
    from rules.pricing import detect_stale_pricing

    return (await detect_stale_pricing(db)).as_dict()


async def _cleanup_orders(db: AsyncSession, days_threshold: int | None = None) -> dict[str, Any]:
    from core.config import get_settings
    from rules.maintenance import cleanup_orders

    if days_threshold is None:
        days_threshold = get_settings().cleanup_days_threshold
    return (await cleanup_orders(db, int(days_threshold))).as_dict()


async def _standardize_data(db: AsyncSession) -> dict[str, Any]:
    from rules.standardize import standardize_data

    return (await standardize_data(db)).as_dict()


async def _quality_report(db: AsyncSession) -> dict[str, Any]:
    from quality.reports import latest_quality_report, quality_trends

    return {
        "latest": await latest_quality_report(db),
        "trends": await quality_trends(db),
    }


OPERATIONS: dict[str, Callable[..., Awaitable[dict[str, Any]]]] = {
    "run_quality_checks": _run_quality_checks,
    "run_quality_family": _run_quality_family,
    "apply_discount": _apply_discount,
    "preview_discount": _preview_discount,
    "detect_stale_pricing": _detect_stale_pricing,
    "cleanup_orders": _cleanup_orders,
    "standardize_data": _standardize_data,
    "quality_report": _quality_report,
}


async def run_operation(name: str, **kwargs) -> dict[str, Any]:
    """
    Run one registered operation against the configured store.

    Operation-scoped failures come back as a failed summary instead of an
    exception: NotFound, an already-discounted order, an invalid argument
    or a rolled-back transaction never leak into another operation's run.
    """
    operation = OPERATIONS.get(name)
    if operation is None:
        return {"status": "failed", "operation": name, "reason": "unknown_operation"}

    logger.info("automation.started", operation=name, **kwargs)
    try:
        async with session_scope() as db:
            payload = await operation(db, **kwargs)
    except NotFoundError as exc:
        logger.warning("automation.not_found", operation=name, error=str(exc))
        return {"status": "failed", "operation": name, "reason": "not_found", "error": str(exc)}
    except AlreadyDiscountedError as exc:
        logger.warning("automation.already_discounted", operation=name, error=str(exc))
        return {"status": "failed", "operation": name, "reason": "already_discounted", "error": str(exc)}
    except TransactionFailure as exc:
        logger.error("automation.rolled_back", operation=name, error=str(exc))
        return {"status": "failed", "operation": name, "reason": "transaction_failure", "error": str(exc)}
    except ValueError as exc:
        # Unknown check family, negative cleanup threshold
        logger.warning("automation.invalid_argument", operation=name, error=str(exc))
        return {"status": "failed", "operation": name, "reason": "invalid_argument", "error": str(exc)}

    return {
        "status": "success",
        "operation": name,
        "result": payload,
        "completed_at": datetime.now(timezone.utc).isoformat(),
    }


# ──────────────────────────────────────────────────────────────────────────
# Celery tasks
# ──────────────────────────────────────────────────────────────────────────


def _run_task(task, name: str, **kwargs) -> dict[str, Any]:
    run_id = task.request.id or "manual"
    summary = asyncio.run(run_operation(name, **kwargs))
    summary["run_id"] = run_id
    logger.info("automation.finished", operation=name, status=summary["status"], run_id=run_id)
    return summary


@celery_app.task(name="workers.automation.run_quality_checks", bind=True, acks_late=True)
def run_quality_checks(self):
    """Prune the finding log and run every quality check family."""
    return _run_task(self, "run_quality_checks")


@celery_app.task(name="workers.automation.run_quality_family", bind=True, acks_late=True)
def run_quality_family(self, family: str):
    return _run_task(self, "run_quality_family", family=family)


@celery_app.task(name="workers.automation.apply_discount", bind=True)
def apply_discount(self, order_id: int, allow_compounding: bool = False):
    """One-shot: never retried, re-running would compound the reduction."""
    return _run_task(self, "apply_discount", order_id=order_id, allow_compounding=allow_compounding)


@celery_app.task(name="workers.automation.preview_discount", bind=True)
def preview_discount(self, order_id: int):
    return _run_task(self, "preview_discount", order_id=order_id)


@celery_app.task(name="workers.automation.detect_stale_pricing", bind=True)
def detect_stale_pricing(self):
    return _run_task(self, "detect_stale_pricing")


@celery_app.task(name="workers.automation.cleanup_orders", bind=True, acks_late=True)
def cleanup_orders(self, days_threshold: int | None = None):
    return _run_task(self, "cleanup_orders", days_threshold=days_threshold)


@celery_app.task(name="workers.automation.standardize_data", bind=True, acks_late=True)
def standardize_data(self):
    return _run_task(self, "standardize_data")
