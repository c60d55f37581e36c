"""
Tests for the standardization service and its field normalizers.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from db.models import Customer, Order, OrderItem, Product
from rules.standardize import (
    normalize_category,
    normalize_customer_name,
    normalize_email,
    normalize_phone,
    normalize_product_name,
    normalize_state,
    round_money,
    standardize_data,
)


class TestNormalizers:
    def test_customer_name_two_uniform_tokens(self):
        assert normalize_customer_name("JOHN SMITH") == "John Smith"
        assert normalize_customer_name("jane doe") == "Jane Doe"

    def test_customer_name_other_shapes_pass_through(self):
        assert normalize_customer_name("mary ann jones") == "mary ann jones"
        assert normalize_customer_name("JOHN smith") == "JOHN smith"
        assert normalize_customer_name("Ronald McDonald") == "Ronald McDonald"
        assert normalize_customer_name("CHER") == "CHER"
        assert normalize_customer_name(None) is None

    def test_contact_fields(self):
        assert normalize_email("  John.Smith@Email.COM ") == "john.smith@email.com"
        assert normalize_phone("(555) 010-1234") == "5550101234"
        assert normalize_phone("+1 555.0101") == "15550101"
        assert normalize_state(" tx ") == "TX"
        assert normalize_email(None) is None

    def test_product_text(self):
        assert normalize_product_name("  wireless mouse ") == "Wireless Mouse"
        assert normalize_product_name("usb-C hub XL") == "Usb-C Hub XL"
        assert normalize_category("home & garden") == "Home & Garden"
        assert normalize_category("ELECTRONICS") == "Electronics"

    def test_round_money_half_up(self):
        assert round_money(Decimal("10.005")) == Decimal("10.01")
        assert round_money("3.14159") == Decimal("3.14")
        assert round_money(None) is None


@pytest.mark.asyncio
class TestStandardizeData:
    async def test_order_total_reconciled_to_item_sum(self, test_db, seeded_db):
        order = Order(
            customer_id=seeded_db["customer"].customer_id,
            order_date=date(2024, 5, 1),
            order_status="Pending",
            total_amount=Decimal("90.00"),
            discount_percent=Decimal("0"),
        )
        test_db.add(order)
        await test_db.flush()
        product_id = seeded_db["product"].product_id
        test_db.add_all(
            [
                OrderItem(order_id=order.order_id, product_id=product_id, quantity=1,
                          unit_price=Decimal("50.00"), line_total=Decimal("50.00")),
                OrderItem(order_id=order.order_id, product_id=product_id, quantity=3,
                          unit_price=Decimal("12.50"), line_total=Decimal("37.50")),
            ]
        )
        await test_db.commit()
        order_id = order.order_id

        result = await standardize_data(test_db)

        total = (await test_db.execute(select(Order.total_amount).where(Order.order_id == order_id))).scalar_one()
        assert Decimal(str(total)) == Decimal("87.50")
        assert result.by_field["orders.total_amount"] == 1

    async def test_orders_without_items_keep_their_total(self, test_db, seeded_db):
        order = Order(
            customer_id=seeded_db["customer"].customer_id,
            order_date=date(2024, 5, 1),
            order_status="Pending",
            total_amount=Decimal("42.00"),
            discount_percent=Decimal("0"),
        )
        test_db.add(order)
        await test_db.commit()

        await standardize_data(test_db)

        total = (await test_db.execute(select(Order.total_amount).where(Order.order_id == order.order_id))).scalar_one()
        assert Decimal(str(total)) == Decimal("42.00")

    async def test_customer_and_product_fields(self, test_db):
        test_db.add_all(
            [
                Customer(
                    customer_name="JANE DOE",
                    email="  Jane.Doe@Example.COM",
                    phone="(555) 867-5309",
                    city="  Austin ",
                    state="tx",
                ),
                Product(
                    product_name=" bluetooth speaker",
                    category="ELECTRONICS",
                    subcategory="audio gear",
                    unit_price=Decimal("49.99"),
                    cost=Decimal("20.00"),
                    supplier=" SoundCo ",
                    stock_quantity=3,
                ),
            ]
        )
        await test_db.commit()

        result = await standardize_data(test_db)

        customer = (
            await test_db.execute(
                select(Customer.customer_name, Customer.email, Customer.phone, Customer.city, Customer.state)
            )
        ).one()
        assert tuple(customer) == ("Jane Doe", "jane.doe@example.com", "5558675309", "Austin", "TX")

        product = (
            await test_db.execute(
                select(Product.product_name, Product.category, Product.subcategory, Product.supplier)
            )
        ).one()
        assert tuple(product) == ("Bluetooth Speaker", "Electronics", "Audio Gear", "SoundCo")

        assert result.fields_touched == 9
        assert result.by_field["customers.customer_name"] == 1
        assert result.by_field["products.category"] == 1
        assert "products.unit_price" not in result.by_field

    async def test_clean_store_is_untouched_and_rerun_is_idempotent(self, test_db, seeded_db):
        test_db.add(Customer(customer_name="bob ross", email=" BOB@Example.com", phone="555-0000", state="ca"))
        await test_db.commit()

        first = await standardize_data(test_db)
        second = await standardize_data(test_db)

        assert first.fields_touched == 4
        assert second.fields_touched == 0
        assert second.as_dict() == {"fields_touched": 0, "by_field": {}}

    async def test_nulls_are_left_alone(self, test_db):
        test_db.add(Customer(customer_name="Solo", email=None, phone=None, state=None, city=None))
        await test_db.commit()

        result = await standardize_data(test_db)

        assert result.fields_touched == 0
