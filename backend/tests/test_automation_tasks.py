import asyncio
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.config import Settings
from db.session import Base
from workers.automation import (
    OPERATIONS,
    apply_discount,
    cleanup_orders,
    detect_stale_pricing,
    preview_discount,
    run_operation,
    run_quality_checks,
    run_quality_family,
    standardize_data,
)


@pytest.fixture
def automation_db(tmp_path, monkeypatch):
    """A seeded SQLite store the workers open through settings."""
    from db.models import Customer, Order, OrderItem, Product

    db_url = f"sqlite+aiosqlite:///{tmp_path / 'automation.db'}"
    engine = create_async_engine(db_url, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def _seed() -> dict:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        async with session_factory() as db:
            customer = Customer(
                customer_name="ANNA LEE",
                email="anna@example.com",
                phone="555 0102",
                state="wa",
                loyalty_tier="Platinum",
            )
            product = Product(
                product_name="Desk Lamp",
                category="Home",
                unit_price=Decimal("40.00"),
                cost=Decimal("18.00"),
                stock_quantity=12,
            )
            db.add_all([customer, product])
            await db.flush()

            order = Order(
                customer_id=customer.customer_id,
                order_date=date.today() - timedelta(days=3),
                order_status="Pending",
                total_amount=Decimal("1200.00"),
                discount_percent=Decimal("0"),
            )
            db.add(order)
            await db.flush()
            db.add(
                OrderItem(
                    order_id=order.order_id,
                    product_id=product.product_id,
                    quantity=30,
                    unit_price=Decimal("40.00"),
                    line_total=Decimal("1200.00"),
                )
            )
            # Missing phone finding
            db.add(Customer(customer_name="No Phone", email="np@example.com", phone=None))
            await db.commit()
            return {"order_id": order.order_id}

    ids = asyncio.run(_seed())
    monkeypatch.setattr("core.config.get_settings", lambda: Settings(database_url=db_url))

    def _query(statement):
        async def _run():
            async with session_factory() as db:
                return (await db.execute(statement)).all()

        return asyncio.run(_run())

    yield {"url": db_url, "query": _query, **ids}
    asyncio.run(engine.dispose())


class TestAutomationTasks:
    def test_operation_registry_names(self):
        assert set(OPERATIONS) == {
            "run_quality_checks",
            "run_quality_family",
            "apply_discount",
            "preview_discount",
            "detect_stale_pricing",
            "cleanup_orders",
            "standardize_data",
            "quality_report",
        }

    def test_run_quality_checks_logs_findings(self, automation_db):
        from db.models import DataQualityLog

        result = run_quality_checks.run()

        assert result["status"] == "success"
        assert result["operation"] == "run_quality_checks"
        assert result["run_id"] == "manual"
        assert result["result"]["total_issues"] == 1
        assert result["result"]["findings_by_severity"]["Low"]["categories"] == ["Missing Data"]
        names = automation_db["query"](select(DataQualityLog.check_name))
        assert [row.check_name for row in names] == ["Missing Customer Phones"]

    def test_run_single_family(self, automation_db):
        result = run_quality_family.run(family="business_rules")

        assert result["status"] == "success"
        assert result["result"]["category"] == "Business Rules"
        assert result["result"]["findings"] == []

    def test_apply_discount_commits_and_reports(self, automation_db):
        from db.models import Order

        preview = preview_discount.run(order_id=automation_db["order_id"])
        assert preview["result"]["applied_percent"] == 20

        result = apply_discount.run(order_id=automation_db["order_id"])

        assert result["status"] == "success"
        assert result["result"]["final_amount"] == "960.00"
        (row,) = automation_db["query"](
            select(Order.total_amount, Order.discount_percent).where(Order.order_id == automation_db["order_id"])
        )
        assert Decimal(str(row.total_amount)) == Decimal("960.00")
        assert Decimal(str(row.discount_percent)) == Decimal("20")

    def test_second_apply_reports_already_discounted(self, automation_db):
        apply_discount.run(order_id=automation_db["order_id"])

        result = apply_discount.run(order_id=automation_db["order_id"])

        assert result["status"] == "failed"
        assert result["reason"] == "already_discounted"

    def test_missing_order_is_not_found(self, automation_db):
        result = apply_discount.run(order_id=99999)

        assert result["status"] == "failed"
        assert result["reason"] == "not_found"
        assert "Order 99999 not found" in result["error"]

    def test_cleanup_defaults_to_configured_threshold(self, automation_db):
        result = cleanup_orders.run()

        assert result["status"] == "success"
        assert result["result"]["days_threshold"] == 90
        assert result["result"]["deleted"] == 0

    def test_standardize_and_stale_pricing(self, automation_db):
        standardized = standardize_data.run()
        assert standardized["result"]["by_field"] == {
            "customers.customer_name": 1,
            "customers.phone": 1,
            "customers.state": 1,
        }

        stale = detect_stale_pricing.run()
        assert stale["status"] == "success"
        # Desk Lamp has no price history, so it falls back to the epoch
        assert stale["result"]["products_flagged"] == 1

    def test_unknown_family_is_invalid_argument(self, automation_db):
        result = run_quality_family.run(family="Spelling")

        assert result["status"] == "failed"
        assert result["reason"] == "invalid_argument"
        assert "Unknown check family" in result["error"]
        assert result["run_id"] == "manual"

    def test_negative_cleanup_threshold_is_invalid_argument(self, automation_db):
        from db.models import Order

        result = cleanup_orders.run(days_threshold=-5)

        assert result["status"] == "failed"
        assert result["reason"] == "invalid_argument"
        assert len(automation_db["query"](select(Order.order_id))) == 1

    def test_unknown_operation(self, automation_db):
        result = asyncio.run(run_operation("reindex_everything"))

        assert result == {"status": "failed", "operation": "reindex_everything", "reason": "unknown_operation"}

    def test_quality_report_operation(self, automation_db):
        run_quality_checks.run()

        result = asyncio.run(run_operation("quality_report"))

        assert result["status"] == "success"
        (latest,) = result["result"]["latest"]
        assert latest["check_name"] == "Missing Customer Phones"
        assert latest["error_rate_pct"] == 50.0
        assert result["result"]["trends"][0]["total_issues"] == 1
