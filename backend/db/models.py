"""
RetailRules Database Models

Six tables for the retail order dataset and its rule engine.

Tables:
  Business (1-5):
  1. customers         - Buyers (+ loyalty tier driving discounts)
  2. products          - Product catalog (+ stock, supplier)
  3. orders            - Order headers (+ status, total, discount)
  4. order_items       - Order line items
  5. pricing_history   - Price-change audit trail (stale pricing input)

  Rule Engine (6):
  6. data_quality_log  - Append-only quality findings, pruned by age

Cross-table references (order -> customer, item -> order/product) are plain
indexed columns, and customer email is indexed but not unique. Both are
invariants the quality engine monitors and the maintenance service repairs,
so the store has to be able to hold the broken states.
"""

import enum
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)

from db.session import Base

# ─── Enums ──────────────────────────────────────────────────────────────────


class LoyaltyTier(str, enum.Enum):
    """Customer classification, Bronze lowest; each tier above earns a larger base discount."""

    BRONZE = "Bronze"
    SILVER = "Silver"
    GOLD = "Gold"
    PLATINUM = "Platinum"


class OrderStatus(str, enum.Enum):
    PENDING = "Pending"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    REFUNDED = "Refunded"
    FAILED = "Failed"
    INCOMPLETE = "Incomplete"


class Severity(str, enum.Enum):
    """Finding severity; rank 0 is the most severe."""

    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER = [Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW]


class CheckCategory(str, enum.Enum):
    """Check families, in the order the quality engine runs them."""

    MISSING_DATA = "Missing Data"
    DATA_CONSISTENCY = "Data Consistency"
    BUSINESS_RULES = "Business Rules"
    REFERENTIAL_INTEGRITY = "Referential Integrity"
    DATA_ANOMALIES = "Data Anomalies"


def _in_list(column: str, enum_cls) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


# ─── 1. Customers ──────────────────────────────────────────────────────────


class Customer(Base):
    __tablename__ = "customers"

    customer_id = Column(Integer, primary_key=True, autoincrement=True)
    customer_name = Column(String(100), nullable=False)
    email = Column(String(100), index=True)
    phone = Column(String(20))
    customer_segment = Column(String(50))
    registration_date = Column(Date)
    city = Column(String(50))
    state = Column(String(50))
    loyalty_tier = Column(String(20), default=LoyaltyTier.BRONZE.value)

    __table_args__ = (CheckConstraint(_in_list("loyalty_tier", LoyaltyTier), name="ck_customer_loyalty_tier"),)


# ─── 2. Products ────────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    product_id = Column(Integer, primary_key=True, autoincrement=True)
    product_name = Column(String(150), nullable=False)
    category = Column(String(50))
    subcategory = Column(String(50))
    unit_price = Column(Numeric(10, 2))
    cost = Column(Numeric(10, 2))
    supplier = Column(String(100))
    # Negative stock is a finding, not a constraint violation
    stock_quantity = Column(Integer, default=0)
    last_updated = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# ─── 3. Orders ──────────────────────────────────────────────────────────────


class Order(Base):
    __tablename__ = "orders"

    order_id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, index=True)
    order_date = Column(Date)
    ship_date = Column(Date)
    ship_mode = Column(String(50))
    order_status = Column(String(50), default=OrderStatus.PENDING.value)
    total_amount = Column(Numeric(10, 2))
    discount_percent = Column(Numeric(5, 2), default=0)

    __table_args__ = (
        CheckConstraint(_in_list("order_status", OrderStatus), name="ck_order_status"),
        CheckConstraint("discount_percent >= 0 AND discount_percent <= 100", name="ck_order_discount_range"),
        Index("ix_orders_dedup_key", "customer_id", "order_date", "total_amount"),
    )


# ─── 4. Order Items ─────────────────────────────────────────────────────────


class OrderItem(Base):
    __tablename__ = "order_items"

    order_item_id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, index=True)
    product_id = Column(Integer, index=True)
    quantity = Column(Integer)
    unit_price = Column(Numeric(10, 2))
    discount_amount = Column(Numeric(10, 2), default=0)
    # line_total == unit_price * quantity - discount_amount
    line_total = Column(Numeric(10, 2))


# ─── 5. Pricing History ─────────────────────────────────────────────────────


class PricingHistory(Base):
    __tablename__ = "pricing_history"

    price_id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, nullable=False, index=True)
    old_price = Column(Numeric(10, 2))
    new_price = Column(Numeric(10, 2))
    effective_date = Column(Date, nullable=False)
    updated_by = Column(String(50))


# ─── 6. Data Quality Log ────────────────────────────────────────────────────


class DataQualityLog(Base):
    __tablename__ = "data_quality_log"

    log_id = Column(Integer, primary_key=True, autoincrement=True)
    check_name = Column(String(100), nullable=False)
    check_category = Column(String(50), nullable=False)
    records_checked = Column(Integer, nullable=False, default=0)
    issues_found = Column(Integer, nullable=False)
    severity = Column(String(20), nullable=False)
    issue_details = Column(Text)
    checked_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(_in_list("severity", Severity), name="ck_quality_severity"),
        CheckConstraint(_in_list("check_category", CheckCategory), name="ck_quality_category"),
        Index("ix_quality_checked_at", "checked_at"),
    )
