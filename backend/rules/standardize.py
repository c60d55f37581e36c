"""
Standardization Service — Best-effort formatting of text and money fields.

Never rejects a record; only reshapes it. All changes commit together.

  Customers: two-token ALL-CAPS / all-lower names → Title Case (anything
             else is left alone), email lower + trim, phone digits only,
             state upper + trim, city trim
  Products:  name and category/subcategory title case + trim, unit price
             and cost rounded to cents, supplier trim
  Orders:    total_amount = sum of item line totals, for orders with items

Every rule is idempotent, so a second run reports zero changes.
"""

import re
import string
from collections import Counter
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Customer, Order, OrderItem, Product
from db.session import atomic

logger = structlog.get_logger()

CENTS = Decimal("0.01")
_TWO_TOKEN_UNIFORM_CASE = re.compile(r"^(?:[A-Z]+ [A-Z]+|[a-z]+ [a-z]+)$")
_NON_DIGITS = re.compile(r"\D")


@dataclass
class StandardizationResult:
    fields_touched: int = 0
    by_field: Counter = field(default_factory=Counter)

    def as_dict(self) -> dict[str, Any]:
        return {"fields_touched": self.fields_touched, "by_field": dict(sorted(self.by_field.items()))}


# ──────────────────────────────────────────────────────────────────────────
# Field normalizers (pure)
# ──────────────────────────────────────────────────────────────────────────


def normalize_customer_name(name: str | None) -> str | None:
    """'JOHN SMITH' / 'john smith' → 'John Smith'. Other shapes pass through."""
    if name is None or not _TWO_TOKEN_UNIFORM_CASE.match(name):
        return name
    return " ".join(token.capitalize() for token in name.split(" "))


def normalize_email(email: str | None) -> str | None:
    return email.strip().lower() if email is not None else None


def normalize_phone(phone: str | None) -> str | None:
    return _NON_DIGITS.sub("", phone) if phone is not None else None


def normalize_state(state: str | None) -> str | None:
    return state.strip().upper() if state is not None else None


def normalize_product_name(name: str | None) -> str | None:
    """Capitalize each word's first letter; keep the rest (SKUs, 'USB-C')."""
    if name is None:
        return None
    return " ".join(word[:1].upper() + word[1:] for word in name.strip().split(" "))


def normalize_category(value: str | None) -> str | None:
    return string.capwords(value.strip()) if value is not None else None


def strip_text(value: str | None) -> str | None:
    return value.strip() if value is not None else None


def round_money(value) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


# ──────────────────────────────────────────────────────────────────────────
# Table passes
# ──────────────────────────────────────────────────────────────────────────

CUSTOMER_RULES = (
    ("customer_name", normalize_customer_name),
    ("email", normalize_email),
    ("phone", normalize_phone),
    ("state", normalize_state),
    ("city", strip_text),
)

PRODUCT_RULES = (
    ("product_name", normalize_product_name),
    ("category", normalize_category),
    ("subcategory", normalize_category),
    ("unit_price", round_money),
    ("cost", round_money),
    ("supplier", strip_text),
)


def _apply_rules(row, rules, table: str, result: StandardizationResult) -> None:
    for attr, rule in rules:
        current = getattr(row, attr)
        updated = rule(current)
        if updated != current:
            setattr(row, attr, updated)
            result.by_field[f"{table}.{attr}"] += 1
            result.fields_touched += 1


async def _standardize_customers(db: AsyncSession, result: StandardizationResult) -> None:
    for customer in (await db.execute(select(Customer))).scalars().all():
        _apply_rules(customer, CUSTOMER_RULES, "customers", result)


async def _standardize_products(db: AsyncSession, result: StandardizationResult) -> None:
    for product in (await db.execute(select(Product))).scalars().all():
        _apply_rules(product, PRODUCT_RULES, "products", result)


async def _reconcile_order_totals(db: AsyncSession, result: StandardizationResult) -> None:
    item_totals = (
        await db.execute(
            select(OrderItem.order_id, func.sum(OrderItem.line_total).label("items_total"))
            .where(OrderItem.order_id.is_not(None))
            .group_by(OrderItem.order_id)
        )
    ).all()
    totals = {row.order_id: round_money(row.items_total or 0) for row in item_totals}
    if not totals:
        return

    orders = (await db.execute(select(Order).where(Order.order_id.in_(list(totals))))).scalars().all()
    for order in orders:
        expected = totals[order.order_id]
        if order.total_amount is None or round_money(order.total_amount) != expected:
            order.total_amount = expected
            result.by_field["orders.total_amount"] += 1
            result.fields_touched += 1


async def standardize_data(db: AsyncSession) -> StandardizationResult:
    """Normalize every customer, product and order total in one transaction."""
    result = StandardizationResult()
    async with atomic(db, "data.standardize"):
        await _standardize_customers(db, result)
        await _standardize_products(db, result)
        await _reconcile_order_totals(db, result)

    logger.info("standardize.complete", fields_touched=result.fields_touched, by_field=dict(result.by_field))
    return result
