# Overview: Pytest coverage for checkout, deferred confirmation, discard and void.

"""
Settlement engine tests.

Every checkout re-validates stock under the write lock and either commits the
sale with all of its movements or leaves nothing behind.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import make_combo, make_product, receive
from stockledger.errors import (
    AlreadyVoidedError,
    InsufficientStockError,
    InvalidStateError,
    SaleNotFoundError,
    TaxConfigurationError,
    ValidationError,
)
from stockledger.models import CustomerCredit, InventoryMovement, Sale
from stockledger.models.inventory import DIRECTION_IN, DIRECTION_OUT, REASON_SALE, REASON_VOID
from stockledger.services import combo_service, communications_service, ledger_service, sales_service, settings_service
from stockledger.services.settings_service import KEY_TAX_ENABLED, KEY_TAX_RATE
from stockledger.time_utils import today


def stock(tenant, product):
    return ledger_service.get_current_stock(tenant.id, product.id)


class TestCheckout:

    def test_cash_sale_completes_and_moves_stock(self, db_session, tenant, soda):
        receive(tenant.id, soda.id, 10)

        sale = sales_service.checkout(tenant.id, [{"product_id": soda.id, "quantity": 3}], "CASH")

        assert sale.status == "COMPLETED"
        assert sale.payment_status == "PAID"
        assert sale.total_amount == Decimal("4.50")
        assert sale.amount_paid == Decimal("4.50")
        assert stock(tenant, soda) == Decimal("7")

        movements = ledger_service.get_sale_movements(tenant.id, sale.id)
        assert [(m.direction, m.reason, m.quantity) for m in movements] == [(DIRECTION_OUT, REASON_SALE, Decimal("3"))]

    def test_presentation_sale_writes_one_movement_on_the_pool(self, db_session, tenant, soda, soda_6pack):
        receive(tenant.id, soda.id, 20)

        sale = sales_service.checkout(tenant.id, [{"product_id": soda_6pack.id, "quantity": 2}], "CARD")

        movements = ledger_service.get_sale_movements(tenant.id, sale.id)
        assert len(movements) == 1
        assert movements[0].product_id == soda.id
        assert movements[0].quantity == Decimal("12")
        assert db_session.query(InventoryMovement).filter_by(product_id=soda_6pack.id).count() == 0
        assert stock(tenant, soda) == Decimal("8")

    def test_insufficient_stock_leaves_nothing_behind(self, db_session, tenant, soda):
        receive(tenant.id, soda.id, 10)

        with pytest.raises(InsufficientStockError) as exc:
            sales_service.checkout(tenant.id, [{"product_id": soda.id, "quantity": 11}], "CASH")

        items = exc.value.details["items"]
        assert len(items) == 1
        assert items[0]["product_id"] == soda.id
        assert items[0]["available"] == 10
        assert db_session.query(Sale).count() == 0
        assert stock(tenant, soda) == Decimal("10")

    def test_every_short_line_is_reported(self, db_session, tenant, soda, chips):
        with pytest.raises(InsufficientStockError) as exc:
            sales_service.checkout(
                tenant.id,
                [{"product_id": soda.id, "quantity": 1}, {"product_id": chips.id, "quantity": 1}],
                "CASH",
            )

        assert {item["product_id"] for item in exc.value.details["items"]} == {soda.id, chips.id}

    def test_lines_on_one_pool_are_checked_together(self, db_session, tenant, soda, soda_6pack):
        receive(tenant.id, soda.id, 10)

        with pytest.raises(InsufficientStockError) as exc:
            sales_service.checkout(
                tenant.id,
                [{"product_id": soda_6pack.id, "quantity": 1}, {"product_id": soda.id, "quantity": 5}],
                "CASH",
            )
        assert [item["product_id"] for item in exc.value.details["items"]] == [soda.id]

        sales_service.checkout(
            tenant.id,
            [{"product_id": soda_6pack.id, "quantity": 1}, {"product_id": soda.id, "quantity": 4}],
            "CASH",
        )
        assert stock(tenant, soda) == Decimal("0")

    def test_combo_and_component_in_one_cart(self, db_session, tenant, soda, chips, party_pack):
        receive(tenant.id, soda.id, 4)
        receive(tenant.id, chips.id, 2)

        with pytest.raises(InsufficientStockError):
            sales_service.checkout(
                tenant.id,
                [{"product_id": party_pack.id, "quantity": 1}, {"product_id": soda.id, "quantity": 1}],
                "CASH",
            )
        assert stock(tenant, soda) == Decimal("4")

    def test_client_unit_price(self, db_session, tenant, soda):
        receive(tenant.id, soda.id, 10)

        sale = sales_service.checkout(
            tenant.id, [{"product_id": soda.id, "quantity": 3, "unit_price": "1.00"}], "CASH"
        )

        assert sale.total_amount == Decimal("3.00")

    def test_rejects_bad_input(self, db_session, tenant, soda, party_pack):
        receive(tenant.id, soda.id, 10)
        bad_calls = [
            ([{"product_id": soda.id, "quantity": 1}], "BITCOIN", {}),
            ([{"product_id": soda.id, "quantity": 0}], "CASH", {}),
            ([{"product_id": 99999, "quantity": 1}], "CASH", {}),
            ([{"product_id": party_pack.id, "quantity": "1.5"}], "CASH", {}),
            ([], "CASH", {}),
            ([{"product_id": soda.id, "quantity": 1}], "CASH", {"channel": "GROUP"}),
        ]
        for items, method, kwargs in bad_calls:
            with pytest.raises(ValidationError):
                sales_service.checkout(tenant.id, items, method, **kwargs)
        assert db_session.query(Sale).count() == 0

    def test_inactive_product_cannot_be_sold(self, db_session, tenant, soda):
        receive(tenant.id, soda.id, 10)
        soda.is_active = False
        db_session.commit()

        with pytest.raises(ValidationError):
            sales_service.checkout(tenant.id, [{"product_id": soda.id, "quantity": 1}], "CASH")

    def test_other_tenants_products_are_invisible(self, db_session, tenant, other_tenant, soda):
        receive(tenant.id, soda.id, 10)

        with pytest.raises(ValidationError):
            sales_service.checkout(other_tenant.id, [{"product_id": soda.id, "quantity": 1}], "CASH")


class TestTax:

    def test_tax_on_taxable_lines_only(self, db_session, taxed, soda, chips):
        receive(taxed.id, soda.id, 10)
        receive(taxed.id, chips.id, 10)

        sale = sales_service.checkout(
            taxed.id,
            [{"product_id": soda.id, "quantity": 2}, {"product_id": chips.id, "quantity": 1}],
            "CASH",
        )

        assert sale.subtotal == Decimal("5.00")
        assert sale.taxable_subtotal == Decimal("3.00")
        assert sale.tax_rate == Decimal("16")
        assert sale.tax_amount == Decimal("0.48")
        assert sale.total_amount == Decimal("5.48")

    def test_fine_grained_rate_is_rounded_to_stored_scale(self, db_session, tenant):
        settings_service.set_setting(tenant.id, KEY_TAX_ENABLED, True, commit=False)
        settings_service.set_setting(tenant.id, KEY_TAX_RATE, "12.345", value_type="number")
        bike = make_product(tenant.id, "BIKE", "1000.00")
        receive(tenant.id, bike.id, 1)

        sale = sales_service.checkout(tenant.id, [{"product_id": bike.id, "quantity": 1}], "CARD")
        db_session.refresh(sale)

        assert sale.tax_rate == Decimal("12.35")
        assert sale.tax_amount == Decimal("123.50")
        assert sale.total_amount == Decimal("1123.50")

    def test_missing_rate_is_a_configuration_error(self, db_session, tenant, soda):
        receive(tenant.id, soda.id, 10)
        settings_service.set_setting(tenant.id, KEY_TAX_ENABLED, True)

        with pytest.raises(TaxConfigurationError):
            sales_service.checkout(tenant.id, [{"product_id": soda.id, "quantity": 1}], "CASH")
        assert stock(tenant, soda) == Decimal("10")

    def test_out_of_range_rate(self, db_session, tenant, soda):
        receive(tenant.id, soda.id, 10)
        settings_service.set_setting(tenant.id, KEY_TAX_ENABLED, True, commit=False)
        settings_service.set_setting(tenant.id, KEY_TAX_RATE, 150)

        with pytest.raises(TaxConfigurationError):
            sales_service.checkout(tenant.id, [{"product_id": soda.id, "quantity": 1}], "CASH")

    def test_stock_is_checked_before_tax(self, db_session, tenant, soda):
        settings_service.set_setting(tenant.id, KEY_TAX_ENABLED, True)

        with pytest.raises(InsufficientStockError):
            sales_service.checkout(tenant.id, [{"product_id": soda.id, "quantity": 1}], "CASH")


class TestDeferredSales:
    """TRANSFER and portal CASH wait for staff; nothing touches the ledger until then."""

    def test_transfer_is_pending_without_movements(self, db_session, tenant, soda):
        receive(tenant.id, soda.id, 10)

        sale = sales_service.checkout(
            tenant.id, [{"product_id": soda.id, "quantity": 2}], "TRANSFER", transfer_reference="REF-123"
        )

        assert sale.status == "PENDING"
        assert sale.payment_status == "PENDING"
        assert sale.transfer_reference == "REF-123"
        assert ledger_service.get_sale_movements(tenant.id, sale.id) == []
        assert stock(tenant, soda) == Decimal("10")

        notifications = communications_service.list_notifications(tenant.id)
        assert [(n.type, n.sale_id) for n in notifications] == [("PENDING_TRANSFER", sale.id)]

    def test_portal_cash_is_deferred_but_pos_cash_is_not(self, db_session, tenant, soda):
        receive(tenant.id, soda.id, 10)

        portal = sales_service.checkout(tenant.id, [{"product_id": soda.id, "quantity": 1}], "CASH", channel="PORTAL")
        pos = sales_service.checkout(tenant.id, [{"product_id": soda.id, "quantity": 1}], "CASH", channel="POS")

        assert portal.status == "PENDING"
        assert pos.status == "COMPLETED"
        assert communications_service.list_notifications(tenant.id)[0].type == "PENDING_CASH"

    def test_confirm_writes_movements(self, db_session, tenant, soda):
        receive(tenant.id, soda.id, 10)
        sale = sales_service.checkout(tenant.id, [{"product_id": soda.id, "quantity": 2}], "TRANSFER")

        confirmed = sales_service.confirm_deferred_sale(tenant.id, sale.id)

        assert confirmed.status == "COMPLETED"
        assert confirmed.payment_status == "PAID"
        assert confirmed.amount_paid == confirmed.total_amount
        assert stock(tenant, soda) == Decimal("8")
        assert communications_service.list_notifications(tenant.id) == []
        assert len(communications_service.list_notifications(tenant.id, include_dismissed=True)) == 1

        with pytest.raises(InvalidStateError):
            sales_service.confirm_deferred_sale(tenant.id, sale.id)

    def test_confirm_revalidates_stock(self, db_session, tenant, soda):
        receive(tenant.id, soda.id, 5)
        pending = sales_service.checkout(tenant.id, [{"product_id": soda.id, "quantity": 5}], "TRANSFER")
        sales_service.checkout(tenant.id, [{"product_id": soda.id, "quantity": 3}], "CASH")

        with pytest.raises(InsufficientStockError):
            sales_service.confirm_deferred_sale(tenant.id, pending.id)

        assert sales_service.get_sale(tenant.id, pending.id).status == "PENDING"
        assert stock(tenant, soda) == Decimal("2")

    def test_discard(self, db_session, tenant, soda):
        receive(tenant.id, soda.id, 5)
        sale = sales_service.checkout(tenant.id, [{"product_id": soda.id, "quantity": 1}], "TRANSFER")

        discarded = sales_service.discard_pending_sale(tenant.id, sale.id, reason="No transfer received")

        assert discarded.status == "DISCARDED"
        assert discarded.payment_status == "CANCELLED"
        assert discarded.void_reason == "No transfer received"
        assert ledger_service.get_sale_movements(tenant.id, sale.id) == []
        assert communications_service.list_notifications(tenant.id) == []
        with pytest.raises(InvalidStateError):
            sales_service.confirm_deferred_sale(tenant.id, sale.id)

    def test_completed_sale_cannot_be_discarded(self, db_session, tenant, soda):
        receive(tenant.id, soda.id, 5)
        sale = sales_service.checkout(tenant.id, [{"product_id": soda.id, "quantity": 1}], "CASH")

        with pytest.raises(InvalidStateError):
            sales_service.discard_pending_sale(tenant.id, sale.id)


class TestVoid:

    def test_void_restores_stock_with_compensating_rows(self, db_session, tenant, soda):
        receive(tenant.id, soda.id, 10)
        sale = sales_service.checkout(tenant.id, [{"product_id": soda.id, "quantity": 4}], "CASH")

        voided = sales_service.void_sale(tenant.id, sale.id, "Customer returned")

        assert voided.status == "VOIDED"
        assert voided.payment_status == "VOIDED"
        assert voided.void_reason == "Customer returned"
        assert stock(tenant, soda) == Decimal("10")
        movements = ledger_service.get_sale_movements(tenant.id, sale.id)
        assert [(m.direction, m.reason) for m in movements] == [(DIRECTION_OUT, REASON_SALE), (DIRECTION_IN, REASON_VOID)]

    def test_void_combo_sale(self, db_session, tenant, soda, chips, party_pack):
        receive(tenant.id, soda.id, 10)
        receive(tenant.id, chips.id, 10)
        sale = sales_service.checkout(tenant.id, [{"product_id": party_pack.id, "quantity": 2}], "CARD")
        assert stock(tenant, soda) == Decimal("2")
        assert stock(tenant, chips) == Decimal("6")

        sales_service.void_sale(tenant.id, sale.id, "Wrong item")

        assert stock(tenant, soda) == Decimal("10")
        assert stock(tenant, chips) == Decimal("10")
        assert len(ledger_service.get_sale_movements(tenant.id, sale.id)) == 4

    def test_void_combo_after_recipe_change_returns_what_was_sold(self, db_session, tenant, soda, chips):
        receive(tenant.id, soda.id, 5)
        receive(tenant.id, chips.id, 5)
        twin = make_combo(tenant.id, "TWIN", "2.80", [(soda, 2)])
        sale = sales_service.checkout(tenant.id, [{"product_id": twin.id, "quantity": 1}], "CASH")
        assert stock(tenant, soda) == Decimal("3")

        combo_service.set_components(tenant.id, twin.id, [{"component_product_id": chips.id, "qty_per_combo": 1}])
        sales_service.void_sale(tenant.id, sale.id, "Returned")

        assert stock(tenant, soda) == Decimal("5")
        assert stock(tenant, chips) == Decimal("5")
        voids = [m for m in ledger_service.get_sale_movements(tenant.id, sale.id) if m.reason == REASON_VOID]
        assert [(m.product_id, m.quantity) for m in voids] == [(soda.id, Decimal("2"))]

    def test_void_presentation_after_pack_size_change(self, db_session, tenant, soda, soda_6pack):
        receive(tenant.id, soda.id, 12)
        sale = sales_service.checkout(tenant.id, [{"product_id": soda_6pack.id, "quantity": 1}], "CASH")

        soda_6pack.units_per_sale = Decimal("4")
        db_session.commit()
        sales_service.void_sale(tenant.id, sale.id, "Returned")

        assert stock(tenant, soda) == Decimal("12")

    def test_second_void_is_rejected(self, db_session, tenant, soda):
        receive(tenant.id, soda.id, 10)
        sale = sales_service.checkout(tenant.id, [{"product_id": soda.id, "quantity": 1}], "CASH")
        sales_service.void_sale(tenant.id, sale.id, "Oops")

        with pytest.raises(AlreadyVoidedError):
            sales_service.void_sale(tenant.id, sale.id, "Oops again")
        assert stock(tenant, soda) == Decimal("10")

    def test_void_needs_reason_and_completed_sale(self, db_session, tenant, soda):
        receive(tenant.id, soda.id, 10)
        completed = sales_service.checkout(tenant.id, [{"product_id": soda.id, "quantity": 1}], "CASH")
        pending = sales_service.checkout(tenant.id, [{"product_id": soda.id, "quantity": 1}], "TRANSFER")

        with pytest.raises(ValidationError):
            sales_service.void_sale(tenant.id, completed.id, "   ")
        with pytest.raises(InvalidStateError):
            sales_service.void_sale(tenant.id, pending.id, "Not paid")
        with pytest.raises(SaleNotFoundError):
            sales_service.void_sale(tenant.id, 99999, "Missing")


class TestCreditSales:

    def test_credit_sale_opens_a_credit(self, db_session, tenant, soda, customer):
        receive(tenant.id, soda.id, 10)
        due = today() + timedelta(days=30)

        sale = sales_service.checkout(
            tenant.id,
            [{"product_id": soda.id, "quantity": 2}],
            "CREDIT",
            customer_id=customer.id,
            credit_due_date=due.isoformat(),
            credit_interest_rate="0.1",
        )

        assert sale.status == "COMPLETED"
        assert sale.payment_status == "CREDIT"
        assert sale.amount_paid == Decimal("0")
        assert stock(tenant, soda) == Decimal("8")

        credit = db_session.query(CustomerCredit).filter_by(sale_id=sale.id).one()
        assert credit.customer_id == customer.id
        assert credit.initial_amount == Decimal("3.00")
        assert credit.current_balance == Decimal("3.00")
        assert credit.interest_rate == Decimal("0.001")
        assert credit.due_date == due
        assert credit.status == "ACTIVE"

    def test_default_interest_rate(self, app, db_session, tenant, soda, customer):
        receive(tenant.id, soda.id, 10)

        sale = sales_service.checkout(
            tenant.id,
            [{"product_id": soda.id, "quantity": 1}],
            "CREDIT",
            customer_id=customer.id,
            credit_due_date=(today() + timedelta(days=7)).isoformat(),
        )

        credit = db_session.query(CustomerCredit).filter_by(sale_id=sale.id).one()
        assert credit.interest_rate == app.config["DEFAULT_CREDIT_INTEREST_RATE"]

    def test_credit_terms_are_required(self, db_session, tenant, soda, customer):
        receive(tenant.id, soda.id, 10)
        items = [{"product_id": soda.id, "quantity": 1}]
        future = (today() + timedelta(days=7)).isoformat()
        past = (today() - timedelta(days=1)).isoformat()

        with pytest.raises(ValidationError):
            sales_service.checkout(tenant.id, items, "CREDIT", credit_due_date=future)
        with pytest.raises(ValidationError):
            sales_service.checkout(tenant.id, items, "CREDIT", customer_id=customer.id)
        with pytest.raises(ValidationError):
            sales_service.checkout(tenant.id, items, "CREDIT", customer_id=customer.id, credit_due_date=past)
        assert db_session.query(CustomerCredit).count() == 0

    def test_void_cancels_the_credit(self, db_session, tenant, soda, customer):
        receive(tenant.id, soda.id, 10)
        sale = sales_service.checkout(
            tenant.id,
            [{"product_id": soda.id, "quantity": 2}],
            "CREDIT",
            customer_id=customer.id,
            credit_due_date=(today() + timedelta(days=30)).isoformat(),
        )

        sales_service.void_sale(tenant.id, sale.id, "Returned")

        credit = db_session.query(CustomerCredit).filter_by(sale_id=sale.id).one()
        assert credit.status == "CANCELLED"
        assert credit.cancelled_at is not None


class TestPartyPackScenario:
    """Party Pack: 2x A (stock 5) + 1x B (stock 1)."""

    def test_second_pack_is_short_on_b(self, db_session, tenant):
        a = make_product(tenant.id, "A", "3.00")
        b = make_product(tenant.id, "B", "4.00")
        pack = make_combo(tenant.id, "PARTY-PACK", "9.00", [(a, 2), (b, 1)])
        receive(tenant.id, a.id, 5)
        receive(tenant.id, b.id, 1)

        assert combo_service.calculate_combo_stock(tenant.id, pack.id) == 1

        sales_service.checkout(tenant.id, [{"product_id": pack.id, "quantity": 1}], "CASH")
        assert stock(tenant, a) == Decimal("3")
        assert stock(tenant, b) == Decimal("0")

        with pytest.raises(InsufficientStockError) as exc:
            sales_service.checkout(tenant.id, [{"product_id": pack.id, "quantity": 1}], "CASH")
        missing = exc.value.details["items"][0]["missing_components"]
        assert [m["component_id"] for m in missing] == [b.id]
