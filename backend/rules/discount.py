"""
Discount Calculator — Tiered order discount from loyalty and order economics.

Rules (additive, then capped):
  1. Loyalty tier base: Platinum 15%, Gold 10%, Silver 5%, otherwise 0%
  2. High-value order: +5% when the order total exceeds $1,000
  3. Loyal customer: +3% when lifetime delivered spend (excluding this
     order) exceeds $5,000
  4. Cap at 25%

Applying a discount rewrites the order total, so it is a one-shot mutation:
apply_discount refuses an order that already carries a discount unless the
caller opts into compounding. preview_discount computes the same result
without writing anything.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import AlreadyDiscountedError, NotFoundError
from db.models import Customer, LoyaltyTier, Order, OrderStatus
from db.session import atomic

logger = structlog.get_logger()

LOYALTY_BASE_DISCOUNT: dict[LoyaltyTier, int] = {
    LoyaltyTier.PLATINUM: 15,
    LoyaltyTier.GOLD: 10,
    LoyaltyTier.SILVER: 5,
}
HIGH_VALUE_ORDER_THRESHOLD = Decimal("1000")
HIGH_VALUE_ORDER_BONUS = 5
LIFETIME_VALUE_THRESHOLD = Decimal("5000")
LIFETIME_VALUE_BONUS = 3
MAX_DISCOUNT_PERCENT = 25

CENTS = Decimal("0.01")


@dataclass
class DiscountResult:
    order_id: int
    customer_id: int
    loyalty_tier: str | None
    lifetime_value: Decimal
    applied_percent: int
    original_amount: Decimal
    final_amount: Decimal

    def as_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "loyalty_tier": self.loyalty_tier,
            "lifetime_value": str(self.lifetime_value),
            "applied_percent": self.applied_percent,
            "original_amount": str(self.original_amount),
            "final_amount": str(self.final_amount),
        }


def _to_money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENTS, rounding=ROUND_HALF_UP)


def _tier(raw: str | None) -> LoyaltyTier | None:
    try:
        return LoyaltyTier(raw)
    except ValueError:
        return None


def calculate_discount_percent(loyalty_tier: str | None, order_total, lifetime_value) -> int:
    """Pure rule evaluation. Unknown or missing tiers earn no base discount."""
    tier = _tier(loyalty_tier)
    percent = LOYALTY_BASE_DISCOUNT.get(tier, 0) if tier else 0
    if Decimal(str(order_total or 0)) > HIGH_VALUE_ORDER_THRESHOLD:
        percent += HIGH_VALUE_ORDER_BONUS
    if Decimal(str(lifetime_value or 0)) > LIFETIME_VALUE_THRESHOLD:
        percent += LIFETIME_VALUE_BONUS
    return min(percent, MAX_DISCOUNT_PERCENT)


def discounted_amount(total, percent: int) -> Decimal:
    """total * (1 - percent/100), rounded to cents."""
    factor = Decimal(1) - Decimal(percent) / Decimal(100)
    return (Decimal(str(total or 0)) * factor).quantize(CENTS, rounding=ROUND_HALF_UP)


async def _lifetime_value(db: AsyncSession, customer_id: int, excluding_order_id: int) -> Decimal:
    result = await db.execute(
        select(func.coalesce(func.sum(Order.total_amount), 0)).where(
            Order.customer_id == customer_id,
            Order.order_status == OrderStatus.DELIVERED.value,
            Order.order_id != excluding_order_id,
        )
    )
    return _to_money(result.scalar())


async def _evaluate(db: AsyncSession, order_id: int) -> tuple[Order, DiscountResult]:
    order = await db.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order", order_id)

    customer = await db.get(Customer, order.customer_id) if order.customer_id is not None else None
    if customer is None:
        raise NotFoundError("Customer", order.customer_id)

    lifetime_value = await _lifetime_value(db, customer.customer_id, order.order_id)
    original_amount = _to_money(order.total_amount)
    percent = calculate_discount_percent(customer.loyalty_tier, original_amount, lifetime_value)

    return order, DiscountResult(
        order_id=order.order_id,
        customer_id=customer.customer_id,
        loyalty_tier=customer.loyalty_tier,
        lifetime_value=lifetime_value,
        applied_percent=percent,
        original_amount=original_amount,
        final_amount=discounted_amount(original_amount, percent),
    )


async def preview_discount(db: AsyncSession, order_id: int) -> DiscountResult:
    """Compute the discount an order would receive. Read-only."""
    _, result = await _evaluate(db, order_id)
    return result


async def apply_discount(
    db: AsyncSession,
    order_id: int,
    allow_compounding: bool = False,
) -> DiscountResult:
    """
    Compute and commit the discount for an order.

    Sets discount_percent and rewrites total_amount in one transaction.
    Raises NotFoundError when the order or its customer is missing and
    AlreadyDiscountedError when the order already carries a discount
    (unless allow_compounding is set).
    """
    async with atomic(db, "discount.apply"):
        order, result = await _evaluate(db, order_id)

        current = Decimal(str(order.discount_percent or 0))
        if current > 0 and not allow_compounding:
            raise AlreadyDiscountedError(order_id, current)

        order.discount_percent = Decimal(result.applied_percent)
        order.total_amount = result.final_amount

    logger.info(
        "discount.applied",
        order_id=result.order_id,
        customer_id=result.customer_id,
        loyalty_tier=result.loyalty_tier,
        applied_percent=result.applied_percent,
        original_amount=str(result.original_amount),
        final_amount=str(result.final_amount),
    )
    return result
