"""
Quality Check Families — Declarative count checks over the order dataset.

Each check is a named stage made of two count queries: the defect count and
the population it was measured against (records_checked). Checks never
mutate business tables; the engine turns a non-zero defect count into one
data_quality_log row.

Families, in run order:
  1. Missing Data
  2. Data Consistency
  3. Business Rules
  4. Referential Integrity
  5. Data Anomalies
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date, timedelta

from sqlalchemy import Select, distinct, exists, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from core.errors import InconsistentStateError
from db.models import CheckCategory, Customer, Order, OrderItem, OrderStatus, Product, Severity

# ──────────────────────────────────────────────────────────────────────────
# Thresholds
# ──────────────────────────────────────────────────────────────────────────

MAX_DISCOUNT_PERCENT = 30
MAX_LINE_QUANTITY = 100
ANOMALOUS_ORDER_MULTIPLIER = 10
RECENT_ORDER_DAYS = 7
EMAIL_SHAPE = "%@%.%"

# Statuses that legitimately carry no money or no items
_CLOSED_STATUSES = (OrderStatus.CANCELLED.value, OrderStatus.REFUNDED.value)
_ITEMLESS_STATUSES = (OrderStatus.CANCELLED.value, OrderStatus.INCOMPLETE.value)


CountQuery = Callable[[date], Select]
Precondition = Callable[[AsyncSession], Awaitable[None]]


@dataclass(frozen=True)
class QualityCheck:
    """One named check: what it counts, against what, and how bad it is."""

    name: str
    category: CheckCategory
    severity: Severity
    detail: str
    issues: CountQuery
    records: CountQuery
    precondition: Precondition | None = None

    def describe(self, issues_found: int) -> str:
        return self.detail.format(count=issues_found)


def _count(entity, *criteria) -> Select:
    return select(func.count()).select_from(entity).where(*criteria)


def _blank(column):
    return or_(column.is_(None), column == "")


_order_has_items = exists().where(OrderItem.order_id == Order.order_id)
_item_order_exists = exists().where(Order.order_id == OrderItem.order_id)
_item_product_exists = exists().where(Product.product_id == OrderItem.product_id)
_order_customer_exists = exists().where(Customer.customer_id == Order.customer_id)


# ──────────────────────────────────────────────────────────────────────────
# 1. Missing Data
# ──────────────────────────────────────────────────────────────────────────


def _delivered(*criteria) -> Select:
    return _count(Order, Order.order_status == OrderStatus.DELIVERED.value, *criteria)


MISSING_DATA_CHECKS = (
    QualityCheck(
        name="Missing Customer Emails",
        category=CheckCategory.MISSING_DATA,
        severity=Severity.MEDIUM,
        detail="{count} customers have missing email addresses",
        issues=lambda today: _count(Customer, _blank(Customer.email)),
        records=lambda today: _count(Customer),
    ),
    QualityCheck(
        name="Missing Customer Phones",
        category=CheckCategory.MISSING_DATA,
        severity=Severity.LOW,
        detail="{count} customers have missing phone numbers",
        issues=lambda today: _count(Customer, _blank(Customer.phone)),
        records=lambda today: _count(Customer),
    ),
    QualityCheck(
        name="Missing Product Categories",
        category=CheckCategory.MISSING_DATA,
        severity=Severity.HIGH,
        detail="{count} products have missing categories",
        issues=lambda today: _count(Product, _blank(Product.category)),
        records=lambda today: _count(Product),
    ),
    QualityCheck(
        name="Missing/Invalid Ship Dates",
        category=CheckCategory.MISSING_DATA,
        severity=Severity.CRITICAL,
        detail="{count} delivered orders have invalid ship dates",
        issues=lambda today: _delivered(or_(Order.ship_date.is_(None), Order.ship_date > today)),
        records=lambda today: _delivered(),
    ),
)


# ──────────────────────────────────────────────────────────────────────────
# 2. Data Consistency
# ──────────────────────────────────────────────────────────────────────────

DATA_CONSISTENCY_CHECKS = (
    QualityCheck(
        name="Negative Prices",
        category=CheckCategory.DATA_CONSISTENCY,
        severity=Severity.CRITICAL,
        detail="{count} products have negative prices or costs",
        issues=lambda today: _count(Product, or_(Product.unit_price < 0, Product.cost < 0)),
        records=lambda today: _count(Product),
    ),
    QualityCheck(
        name="Unprofitable Products",
        category=CheckCategory.DATA_CONSISTENCY,
        severity=Severity.HIGH,
        detail="{count} products have cost greater than selling price",
        issues=lambda today: _count(Product, Product.cost > Product.unit_price),
        records=lambda today: _count(Product),
    ),
    QualityCheck(
        name="Invalid Date Sequence",
        category=CheckCategory.DATA_CONSISTENCY,
        severity=Severity.CRITICAL,
        detail="{count} orders have ship date before order date",
        issues=lambda today: _count(Order, Order.ship_date < Order.order_date),
        records=lambda today: _count(Order),
    ),
    QualityCheck(
        name="Negative Stock",
        category=CheckCategory.DATA_CONSISTENCY,
        severity=Severity.HIGH,
        detail="{count} products have negative stock quantities",
        issues=lambda today: _count(Product, Product.stock_quantity < 0),
        records=lambda today: _count(Product),
    ),
    QualityCheck(
        name="Invalid Email Format",
        category=CheckCategory.DATA_CONSISTENCY,
        severity=Severity.MEDIUM,
        detail="{count} customers have invalid email formats",
        issues=lambda today: _count(
            Customer,
            Customer.email.is_not(None),
            Customer.email != "",
            Customer.email.not_like(EMAIL_SHAPE),
        ),
        records=lambda today: _count(Customer, Customer.email.is_not(None)),
    ),
)


# ──────────────────────────────────────────────────────────────────────────
# 3. Business Rules
# ──────────────────────────────────────────────────────────────────────────

BUSINESS_RULE_CHECKS = (
    QualityCheck(
        name="Excessive Discounts",
        category=CheckCategory.BUSINESS_RULES,
        severity=Severity.HIGH,
        detail=f"{{count}} orders have discounts exceeding {MAX_DISCOUNT_PERCENT}% threshold",
        issues=lambda today: _count(Order, Order.discount_percent > MAX_DISCOUNT_PERCENT),
        records=lambda today: _count(Order),
    ),
    QualityCheck(
        name="Zero Value Orders",
        category=CheckCategory.BUSINESS_RULES,
        severity=Severity.CRITICAL,
        detail="{count} active orders have zero or negative amounts",
        issues=lambda today: _count(Order, Order.total_amount <= 0, Order.order_status.not_in(_CLOSED_STATUSES)),
        records=lambda today: _count(Order),
    ),
    QualityCheck(
        name="Orders Missing Items",
        category=CheckCategory.BUSINESS_RULES,
        severity=Severity.CRITICAL,
        detail="{count} orders have no associated items",
        issues=lambda today: _count(Order, ~_order_has_items, Order.order_status.not_in(_ITEMLESS_STATUSES)),
        records=lambda today: _count(Order),
    ),
    QualityCheck(
        name="Unusually High Quantities",
        category=CheckCategory.BUSINESS_RULES,
        severity=Severity.MEDIUM,
        detail=f"{{count}} order items have quantities exceeding {MAX_LINE_QUANTITY} units",
        issues=lambda today: _count(OrderItem, OrderItem.quantity > MAX_LINE_QUANTITY),
        records=lambda today: _count(OrderItem),
    ),
)


# ──────────────────────────────────────────────────────────────────────────
# 4. Referential Integrity
# ──────────────────────────────────────────────────────────────────────────

REFERENTIAL_INTEGRITY_CHECKS = (
    QualityCheck(
        name="Orphaned Order Items",
        category=CheckCategory.REFERENTIAL_INTEGRITY,
        severity=Severity.CRITICAL,
        detail="{count} order items reference non-existent orders",
        issues=lambda today: _count(OrderItem, ~_item_order_exists),
        records=lambda today: _count(OrderItem),
    ),
    QualityCheck(
        name="Invalid Product References",
        category=CheckCategory.REFERENTIAL_INTEGRITY,
        severity=Severity.CRITICAL,
        detail="{count} order items reference non-existent products",
        issues=lambda today: _count(OrderItem, ~_item_product_exists),
        records=lambda today: _count(OrderItem),
    ),
    QualityCheck(
        name="Invalid Customer References",
        category=CheckCategory.REFERENTIAL_INTEGRITY,
        severity=Severity.CRITICAL,
        detail="{count} orders reference non-existent customers",
        issues=lambda today: _count(Order, ~_order_customer_exists),
        records=lambda today: _count(Order),
    ),
)


# ──────────────────────────────────────────────────────────────────────────
# 5. Data Anomalies
# ──────────────────────────────────────────────────────────────────────────


async def _require_average_order_value(db: AsyncSession) -> None:
    average = (await db.execute(select(func.avg(Order.total_amount)))).scalar()
    if average is None:
        raise InconsistentStateError("average order value is undefined: no orders with a total")


def _anomalous_orders(today: date) -> Select:
    # Fresh average every run; aliased so it does not correlate to the outer orders
    all_orders = aliased(Order)
    average = select(func.avg(all_orders.total_amount)).scalar_subquery()
    return _count(
        Order,
        Order.total_amount > average * ANOMALOUS_ORDER_MULTIPLIER,
        Order.order_status.not_in(_CLOSED_STATUSES),
    )


def _duplicate_emails(today: date) -> Select:
    shared = (
        select(Customer.email)
        .where(Customer.email.is_not(None), Customer.email != "")
        .group_by(Customer.email)
        .having(func.count() > 1)
        .subquery()
    )
    return select(func.count()).select_from(shared)


def _zero_stock_recently_ordered(today: date) -> Select:
    return (
        select(func.count(distinct(Product.product_id)))
        .select_from(Product)
        .join(OrderItem, OrderItem.product_id == Product.product_id)
        .join(Order, Order.order_id == OrderItem.order_id)
        .where(
            Product.stock_quantity == 0,
            Order.order_date > today - timedelta(days=RECENT_ORDER_DAYS),
        )
    )


DATA_ANOMALY_CHECKS = (
    QualityCheck(
        name="Anomalous Order Values",
        category=CheckCategory.DATA_ANOMALIES,
        severity=Severity.MEDIUM,
        detail=f"{{count}} orders have values {ANOMALOUS_ORDER_MULTIPLIER}x above average (potential outliers)",
        issues=_anomalous_orders,
        records=lambda today: _count(Order),
        precondition=_require_average_order_value,
    ),
    QualityCheck(
        name="Duplicate Customer Emails",
        category=CheckCategory.DATA_ANOMALIES,
        severity=Severity.HIGH,
        detail="{count} email addresses are used by multiple customers",
        issues=_duplicate_emails,
        records=lambda today: select(func.count(distinct(Customer.email))),
    ),
    QualityCheck(
        name="Zero Stock Active Products",
        category=CheckCategory.DATA_ANOMALIES,
        severity=Severity.MEDIUM,
        detail="{count} products with zero stock have recent orders",
        issues=_zero_stock_recently_ordered,
        records=lambda today: _count(Product),
    ),
)


# Ordered pipeline of families; the engine runs them top to bottom
CHECK_FAMILIES: dict[CheckCategory, tuple[QualityCheck, ...]] = {
    CheckCategory.MISSING_DATA: MISSING_DATA_CHECKS,
    CheckCategory.DATA_CONSISTENCY: DATA_CONSISTENCY_CHECKS,
    CheckCategory.BUSINESS_RULES: BUSINESS_RULE_CHECKS,
    CheckCategory.REFERENTIAL_INTEGRITY: REFERENTIAL_INTEGRITY_CHECKS,
    CheckCategory.DATA_ANOMALIES: DATA_ANOMALY_CHECKS,
}


def resolve_family(name: str | CheckCategory) -> CheckCategory:
    """Accept a CheckCategory, its value ("Missing Data") or its name ("missing_data")."""
    if isinstance(name, CheckCategory):
        return name
    normalized = name.strip()
    for category in CheckCategory:
        if normalized == category.value or normalized.upper().replace("-", "_") == category.name:
            return category
    raise ValueError(f"Unknown check family '{name}'")
