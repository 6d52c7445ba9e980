# Overview: Pytest coverage for the append-only movement ledger.

from decimal import Decimal

import pytest

from conftest import receive
from stockledger.errors import ImmutableLedgerError, ValidationError
from stockledger.models import InventoryMovement
from stockledger.models.inventory import DIRECTION_IN, DIRECTION_OUT, REASON_ADJUST, REASON_SALE, REASON_VOID
from stockledger.services import ledger_service
from stockledger.services.ledger_service import MovementQuery, append_movement


class TestCurrentStock:
    """Stock is the signed sum of the ledger, never a stored figure."""

    def test_no_movements_is_zero(self, db_session, soda, tenant):
        assert ledger_service.get_current_stock(tenant.id, soda.id) == Decimal("0")

    def test_in_minus_out(self, db_session, soda, tenant):
        receive(tenant.id, soda.id, 10)
        append_movement(
            tenant_id=tenant.id, product_id=soda.id, direction=DIRECTION_OUT,
            reason=REASON_ADJUST, quantity=Decimal("3.5"),
        )
        db_session.commit()

        assert ledger_service.get_current_stock(tenant.id, soda.id) == Decimal("6.5")

    def test_stock_map_defaults_missing_products_to_zero(self, db_session, soda, chips, tenant):
        receive(tenant.id, soda.id, 4)

        stock = ledger_service.get_stock_map(tenant.id, [soda.id, chips.id])

        assert stock == {soda.id: Decimal("4"), chips.id: Decimal("0")}

    def test_stock_is_tenant_scoped(self, db_session, soda, tenant, other_tenant):
        receive(tenant.id, soda.id, 10)

        assert ledger_service.get_current_stock(other_tenant.id, soda.id) == Decimal("0")


class TestAppendMovement:

    def test_rejects_non_positive_quantity(self, db_session, soda, tenant):
        for bad in (0, -1):
            with pytest.raises(ValidationError):
                append_movement(
                    tenant_id=tenant.id, product_id=soda.id, direction=DIRECTION_IN,
                    reason=REASON_ADJUST, quantity=bad,
                )

    def test_rejects_reason_direction_mismatch(self, db_session, soda, tenant):
        with pytest.raises(ValidationError):
            append_movement(
                tenant_id=tenant.id, product_id=soda.id, direction=DIRECTION_IN,
                reason=REASON_SALE, quantity=1,
            )
        with pytest.raises(ValidationError):
            append_movement(
                tenant_id=tenant.id, product_id=soda.id, direction=DIRECTION_OUT,
                reason=REASON_VOID, quantity=1,
            )

    def test_rejects_unknown_direction(self, db_session, soda, tenant):
        with pytest.raises(ValidationError):
            append_movement(
                tenant_id=tenant.id, product_id=soda.id, direction="SIDEWAYS",
                reason=REASON_ADJUST, quantity=1,
            )

    def test_unit_cost_only_on_in(self, db_session, soda, tenant):
        with pytest.raises(ValidationError):
            append_movement(
                tenant_id=tenant.id, product_id=soda.id, direction=DIRECTION_OUT,
                reason=REASON_ADJUST, quantity=1, unit_cost=Decimal("1.00"),
            )


class TestAverageCost:

    def test_mean_of_in_costs(self, db_session, soda, tenant):
        receive(tenant.id, soda.id, 10, unit_cost=Decimal("0.50"))
        receive(tenant.id, soda.id, 10, unit_cost=Decimal("1.00"))
        # Rows without a cost never move the average
        receive(tenant.id, soda.id, 5)

        assert ledger_service.get_average_cost(tenant.id, soda.id) == Decimal("0.7500")

    def test_zero_without_purchases(self, db_session, soda, tenant):
        assert ledger_service.get_average_cost(tenant.id, soda.id) == Decimal("0")


class TestImmutability:
    """Ledger rows cannot be edited or deleted through the ORM."""

    def test_update_is_rejected(self, db_session, soda, tenant):
        movement = receive(tenant.id, soda.id, 5)

        movement.quantity = Decimal("99")
        with pytest.raises(ImmutableLedgerError):
            db_session.commit()
        db_session.rollback()

        assert ledger_service.get_current_stock(tenant.id, soda.id) == Decimal("5")

    def test_delete_is_rejected(self, db_session, soda, tenant):
        movement = receive(tenant.id, soda.id, 5)

        db_session.delete(movement)
        with pytest.raises(ImmutableLedgerError):
            db_session.commit()
        db_session.rollback()

        assert db_session.query(InventoryMovement).count() == 1


class TestListMovements:

    def test_filters(self, db_session, soda, chips, tenant):
        receive(tenant.id, soda.id, 5)
        receive(tenant.id, chips.id, 3)
        append_movement(
            tenant_id=tenant.id, product_id=soda.id, direction=DIRECTION_OUT,
            reason=REASON_ADJUST, quantity=1,
        )
        db_session.commit()

        soda_rows = ledger_service.list_movements(tenant.id, MovementQuery(product_id=soda.id))
        outs = ledger_service.list_movements(tenant.id, MovementQuery(direction=DIRECTION_OUT))

        assert [m.direction for m in soda_rows] == [DIRECTION_IN, DIRECTION_OUT]
        assert len(outs) == 1 and outs[0].product_id == soda.id

    def test_limit(self, db_session, soda, tenant):
        for _ in range(3):
            receive(tenant.id, soda.id, 1)

        assert len(ledger_service.list_movements(tenant.id, MovementQuery(limit=2))) == 2
