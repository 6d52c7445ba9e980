# Overview: Pytest coverage for stock receipts, supplier payables and manual adjustments.

from datetime import date, timedelta
from decimal import Decimal

import pytest

from stockledger.errors import InsufficientStockError, InvalidStateError, OverpaymentError, ValidationError
from stockledger.models import InventoryMovement, Supplier
from stockledger.services import inventory_service, ledger_service, purchase_service


class TestReceivePurchase:

    def test_presentation_lands_in_pool_at_base_unit_cost(self, db_session, tenant, soda, soda_6pack):
        order = purchase_service.receive_purchase(
            tenant.id, [{"product_id": soda_6pack.id, "quantity": 2, "unit_cost": "6.00"}]
        )

        assert order.status == "PAID"
        assert order.total_amount == Decimal("12.00")
        assert ledger_service.get_current_stock(tenant.id, soda.id) == Decimal("12")
        assert ledger_service.get_average_cost(tenant.id, soda.id) == Decimal("1.0000")

        item = order.items[0]
        movement = db_session.get(InventoryMovement, item.movement_id)
        assert movement.product_id == soda.id
        assert movement.reason == "PURCHASE"
        assert movement.ref_type == "PURCHASE_ORDER"
        assert movement.ref_id == order.id

    def test_combo_cannot_be_received(self, db_session, tenant, party_pack):
        with pytest.raises(ValidationError):
            purchase_service.receive_purchase(tenant.id, [{"product_id": party_pack.id, "quantity": 1}])
        assert db_session.query(InventoryMovement).count() == 0

    def test_unknown_supplier(self, db_session, tenant, soda):
        with pytest.raises(ValidationError):
            purchase_service.receive_purchase(tenant.id, [{"product_id": soda.id, "quantity": 1}], supplier_id=99999)


class TestPayables:

    @pytest.fixture
    def supplier(self, db_session, tenant):
        supplier = Supplier(tenant_id=tenant.id, name="Bottler Inc", default_credit_days=30)
        db_session.add(supplier)
        db_session.commit()
        return supplier

    def test_supplier_terms_create_a_payable(self, db_session, tenant, soda, supplier):
        order = purchase_service.receive_purchase(
            tenant.id,
            [{"product_id": soda.id, "quantity": 24, "unit_cost": "0.50"}],
            supplier.id,
            purchase_date=date(2024, 3, 1),
        )

        assert order.status == "PENDING"
        assert order.due_date == date(2024, 3, 31)
        payables = purchase_service.list_payables(tenant.id, as_of=date(2024, 4, 1))
        assert [(p["id"], p["outstanding"], p["is_overdue"]) for p in payables] == [(order.id, "12.00", True)]

    def test_pay_down_a_payable(self, db_session, tenant, soda, supplier):
        order = purchase_service.receive_purchase(
            tenant.id, [{"product_id": soda.id, "quantity": 24, "unit_cost": "0.50"}], supplier.id
        )

        assert purchase_service.pay_purchase_order(tenant.id, order.id, "5.00").status == "PARTIAL"
        with pytest.raises(OverpaymentError):
            purchase_service.pay_purchase_order(tenant.id, order.id, "7.01")

        paid = purchase_service.pay_purchase_order(tenant.id, order.id, "7.00")
        assert paid.status == "PAID"
        assert paid.amount_paid == Decimal("12.00")
        assert purchase_service.list_payables(tenant.id) == []

        with pytest.raises(InvalidStateError):
            purchase_service.pay_purchase_order(tenant.id, order.id, "1.00")

    def test_zero_credit_days_overrides_supplier(self, db_session, tenant, soda, supplier):
        order = purchase_service.receive_purchase(
            tenant.id, [{"product_id": soda.id, "quantity": 1, "unit_cost": "0.50"}], supplier.id, credit_days=0
        )

        assert order.status == "PAID"
        assert order.due_date is None


class TestAdjustStock:

    def test_count_correction_and_waste(self, db_session, tenant, soda):
        inventory_service.adjust_stock(tenant.id, soda.id, "IN", 5, note="Found in back room")
        inventory_service.adjust_stock(tenant.id, soda.id, "OUT", 2, reason="WASTE")

        assert ledger_service.get_current_stock(tenant.id, soda.id) == Decimal("3")

    def test_presentation_adjusts_its_pool(self, db_session, tenant, soda, soda_6pack):
        movement = inventory_service.adjust_stock(tenant.id, soda_6pack.id, "IN", 1)

        assert movement.product_id == soda.id
        assert movement.quantity == Decimal("6")

    def test_cannot_go_negative(self, db_session, tenant, soda):
        inventory_service.adjust_stock(tenant.id, soda.id, "IN", 1)

        with pytest.raises(InsufficientStockError):
            inventory_service.adjust_stock(tenant.id, soda.id, "OUT", 2)
        assert ledger_service.get_current_stock(tenant.id, soda.id) == Decimal("1")

    def test_rejects_bad_adjustments(self, db_session, tenant, soda, party_pack):
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(tenant.id, soda.id, "IN", 1, reason="WASTE")
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(tenant.id, soda.id, "IN", 1, reason="SALE")
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(tenant.id, party_pack.id, "IN", 1)
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(tenant.id, soda.id, "UP", 1)
