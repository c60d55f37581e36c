"""
Stale Pricing Detector — Flags products whose price has not moved recently.

Last update = newest pricing_history.effective_date for the product, or the
configured epoch sentinel when the product has no history (never updated).

Reported only when days_stale > 180:
  - days_stale > 365        → Critical - review immediately
  - 180 < days_stale ≤ 365  → High - review this month

There is no "monitor" tier: anything at or under 180 days is not reported.
Read-only.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.models import PricingHistory, Product

logger = structlog.get_logger()

STALE_AFTER_DAYS = 180
CRITICAL_AFTER_DAYS = 365

ACTION_CRITICAL = "Critical - review immediately"
ACTION_HIGH = "High - review this month"


@dataclass
class StaleEntry:
    product_id: int
    product_name: str
    category: str | None
    current_price: Decimal | None
    last_update_date: date
    days_stale: int
    action: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "category": self.category,
            "current_price": None if self.current_price is None else str(self.current_price),
            "last_update_date": self.last_update_date.isoformat(),
            "days_stale": self.days_stale,
            "action": self.action,
        }


@dataclass
class CategoryRollup:
    category: str | None
    stale_products: int
    avg_days_stale: float
    max_days_stale: int


@dataclass
class StalePricingReport:
    entries: list[StaleEntry] = field(default_factory=list)
    categories: list[CategoryRollup] = field(default_factory=list)

    @property
    def products_flagged(self) -> int:
        return len(self.entries)

    def as_dict(self) -> dict[str, Any]:
        return {
            "products_flagged": self.products_flagged,
            "entries": [e.as_dict() for e in self.entries],
            "categories": [
                {
                    "category": c.category,
                    "stale_products": c.stale_products,
                    "avg_days_stale": c.avg_days_stale,
                    "max_days_stale": c.max_days_stale,
                }
                for c in self.categories
            ],
        }


def classify_staleness(days_stale: int) -> str | None:
    """Action label for a staleness age, or None when it is not reportable."""
    if days_stale > CRITICAL_AFTER_DAYS:
        return ACTION_CRITICAL
    if days_stale > STALE_AFTER_DAYS:
        return ACTION_HIGH
    return None


def rollup_by_category(entries: list[StaleEntry]) -> list[CategoryRollup]:
    grouped: dict[str | None, list[int]] = defaultdict(list)
    for entry in entries:
        grouped[entry.category].append(entry.days_stale)

    rollups = [
        CategoryRollup(
            category=category,
            stale_products=len(days),
            avg_days_stale=round(sum(days) / len(days), 2),
            max_days_stale=max(days),
        )
        for category, days in grouped.items()
    ]
    rollups.sort(key=lambda r: (-r.stale_products, r.category or ""))
    return rollups


async def detect_stale_pricing(db: AsyncSession, today: date | None = None) -> StalePricingReport:
    """Report every product whose last price change is more than 180 days old."""
    today = today or date.today()
    epoch = get_settings().stale_pricing_epoch

    result = await db.execute(
        select(
            Product.product_id,
            Product.product_name,
            Product.category,
            Product.unit_price,
            func.max(PricingHistory.effective_date).label("last_update"),
        )
        .outerjoin(PricingHistory, PricingHistory.product_id == Product.product_id)
        .group_by(Product.product_id, Product.product_name, Product.category, Product.unit_price)
    )

    entries = []
    for row in result.all():
        last_update = row.last_update or epoch
        days_stale = (today - last_update).days
        action = classify_staleness(days_stale)
        if action is None:
            continue
        entries.append(
            StaleEntry(
                product_id=row.product_id,
                product_name=row.product_name,
                category=row.category,
                current_price=row.unit_price,
                last_update_date=last_update,
                days_stale=days_stale,
                action=action,
            )
        )

    entries.sort(key=lambda e: (-e.days_stale, e.product_id))
    report = StalePricingReport(entries=entries, categories=rollup_by_category(entries))
    logger.info("pricing.stale_detected", products_flagged=report.products_flagged, as_of=today.isoformat())
    return report
