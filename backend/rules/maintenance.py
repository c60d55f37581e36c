"""
Order Maintenance Service — Deduplicate, prune and repair orders.

Stages, run in order inside one transaction (all commit or none do):
  1. delete_duplicate_orders  - same customer, order date and total: keep the
                                lowest order_id
  2. delete_expired_orders    - Cancelled/Failed/Refunded older than the
                                threshold
  3. delete_orphaned_items    - items whose order no longer exists
  4. mark_incomplete_orders   - Pending orders left with no items

Precondition: single writer. Stage 1 picks survivors from the full order
set, so a concurrent insert between read and delete would reintroduce a
duplicate. On PostgreSQL the run takes a transaction-scoped advisory lock;
on other backends the caller must serialize runs.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

import structlog
from sqlalchemy import exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from db.models import Order, OrderItem, OrderStatus
from db.session import atomic

logger = structlog.get_logger()

EXPIRABLE_STATUSES = (
    OrderStatus.CANCELLED.value,
    OrderStatus.FAILED.value,
    OrderStatus.REFUNDED.value,
)

# Arbitrary fixed key shared by every cleanup run
CLEANUP_LOCK_KEY = 0x0C1EA7


@dataclass
class StageResult:
    deleted: int = 0
    updated: int = 0


@dataclass
class CleanupResult:
    days_threshold: int
    deleted: int = 0
    updated: int = 0
    stages: dict[str, StageResult] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "days_threshold": self.days_threshold,
            "deleted": self.deleted,
            "updated": self.updated,
            "stages": {name: {"deleted": s.deleted, "updated": s.updated} for name, s in self.stages.items()},
        }


async def _delete_all(db: AsyncSession, rows) -> int:
    count = 0
    for row in rows:
        await db.delete(row)
        count += 1
    await db.flush()
    return count


# ──────────────────────────────────────────────────────────────────────────
# Stages
# ──────────────────────────────────────────────────────────────────────────


async def delete_duplicate_orders(db: AsyncSession, days_threshold: int, today: date) -> StageResult:
    survivor = aliased(Order)
    has_lower_twin = exists().where(
        survivor.customer_id == Order.customer_id,
        survivor.order_date == Order.order_date,
        survivor.total_amount == Order.total_amount,
        survivor.order_id < Order.order_id,
    )
    duplicates = (await db.execute(select(Order).where(has_lower_twin))).scalars().all()
    return StageResult(deleted=await _delete_all(db, duplicates))


async def delete_expired_orders(db: AsyncSession, days_threshold: int, today: date) -> StageResult:
    # age > days_threshold  <=>  order_date < today - days_threshold
    try:
        cutoff = today - timedelta(days=days_threshold)
    except OverflowError:
        # Threshold reaches past year 1: nothing can be that old
        cutoff = date.min
    expired = (
        (
            await db.execute(
                select(Order).where(
                    Order.order_status.in_(EXPIRABLE_STATUSES),
                    Order.order_date < cutoff,
                )
            )
        )
        .scalars()
        .all()
    )
    return StageResult(deleted=await _delete_all(db, expired))


async def delete_orphaned_items(db: AsyncSession, days_threshold: int, today: date) -> StageResult:
    parent_exists = exists().where(Order.order_id == OrderItem.order_id)
    orphans = (await db.execute(select(OrderItem).where(~parent_exists))).scalars().all()
    return StageResult(deleted=await _delete_all(db, orphans))


async def mark_incomplete_orders(db: AsyncSession, days_threshold: int, today: date) -> StageResult:
    has_items = exists().where(OrderItem.order_id == Order.order_id)
    pending = (
        (
            await db.execute(
                select(Order).where(
                    Order.order_status == OrderStatus.PENDING.value,
                    ~has_items,
                )
            )
        )
        .scalars()
        .all()
    )
    for order in pending:
        order.order_status = OrderStatus.INCOMPLETE.value
    await db.flush()
    return StageResult(updated=len(pending))


Stage = Callable[[AsyncSession, int, date], Awaitable[StageResult]]

CLEANUP_STAGES: tuple[tuple[str, Stage], ...] = (
    ("delete_duplicate_orders", delete_duplicate_orders),
    ("delete_expired_orders", delete_expired_orders),
    ("delete_orphaned_items", delete_orphaned_items),
    ("mark_incomplete_orders", mark_incomplete_orders),
)


# ──────────────────────────────────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────────────────────────────────


async def _acquire_cleanup_lock(db: AsyncSession) -> None:
    if db.get_bind().dialect.name == "postgresql":
        await db.execute(select(func.pg_advisory_xact_lock(CLEANUP_LOCK_KEY)))


async def cleanup_orders(
    db: AsyncSession,
    days_threshold: int,
    today: date | None = None,
) -> CleanupResult:
    """Run every cleanup stage atomically. Returns rows deleted and updated."""
    if days_threshold < 0:
        raise ValueError("days_threshold must be non-negative")
    today = today or date.today()
    result = CleanupResult(days_threshold=days_threshold)

    async with atomic(db, "orders.cleanup"):
        await _acquire_cleanup_lock(db)
        for name, stage in CLEANUP_STAGES:
            stage_result = await stage(db, days_threshold, today)
            result.stages[name] = stage_result
            result.deleted += stage_result.deleted
            result.updated += stage_result.updated
            logger.info(
                "cleanup.stage_complete",
                stage=name,
                deleted=stage_result.deleted,
                updated=stage_result.updated,
            )

    logger.info("cleanup.complete", deleted=result.deleted, updated=result.updated, days_threshold=days_threshold)
    return result
