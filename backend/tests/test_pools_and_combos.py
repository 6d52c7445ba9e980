# Overview: Pytest coverage for pool/presentation resolution and combo availability.

from decimal import Decimal

import pytest

from conftest import make_combo, make_product, receive
from stockledger.errors import NotFoundError, ValidationError
from stockledger.models.inventory import PRODUCT_COMBO
from stockledger.services import combo_service, inventory_service, pool_service


class TestPoolResolution:
    """Presentations draw on their base product's pool."""

    def test_presentation_resolves_to_pool(self, db_session, soda, soda_6pack):
        resolved = pool_service.resolve_movement(soda_6pack, Decimal("2"))

        assert resolved.product_id == soda.id
        assert resolved.quantity == Decimal("12")

    def test_own_pool_ignores_units_per_sale(self, db_session, tenant):
        loose = make_product(tenant.id, "LOOSE", "1.00", units_per_sale=Decimal("12"))

        assert pool_service.effective_units_per_sale(loose) == Decimal("1")
        assert pool_service.resolve_movement(loose, 3).product_id == loose.id

    def test_combo_cannot_be_resolved(self, db_session, party_pack):
        with pytest.raises(ValidationError):
            pool_service.resolve_movement(party_pack, 1)

    def test_presentation_availability_is_floored(self, db_session, tenant, soda, soda_6pack):
        receive(tenant.id, soda.id, 20)

        single = inventory_service.get_availability(tenant.id, soda.id)
        pack = inventory_service.get_availability(tenant.id, soda_6pack.id)

        assert single["current_stock"] == 20
        assert pack["current_stock"] == 3
        assert Decimal(pack["base_stock"]) == Decimal("20")
        assert pack["base_product_id"] == soda.id

    def test_validate_quantity_reports_missing_base_units(self, db_session, tenant, soda, soda_6pack):
        receive(tenant.id, soda.id, 20)

        check = pool_service.validate_quantity(tenant.id, soda_6pack, 4)

        assert not check.can_sell
        assert check.required_base_units == Decimal("24")
        assert check.missing_base_units == Decimal("4")

    def test_validate_quantity_counts_reserved_units(self, db_session, tenant, soda, soda_6pack):
        receive(tenant.id, soda.id, 12)

        assert pool_service.validate_quantity(tenant.id, soda_6pack, 2).can_sell
        assert not pool_service.validate_quantity(
            tenant.id, soda_6pack, 2, reserved_base_units=Decimal("1")
        ).can_sell


class TestBelowMinimum:

    def test_strictly_below(self, db_session, tenant, soda):
        receive(tenant.id, soda.id, 10)
        assert not inventory_service.get_availability(tenant.id, soda.id)["is_below_min"]
        assert inventory_service.list_below_min(tenant.id) == []

    def test_listed_when_below(self, db_session, tenant, soda, chips):
        receive(tenant.id, soda.id, 9)
        receive(tenant.id, chips.id, 1)

        rows = inventory_service.list_below_min(tenant.id)

        assert [row["product_id"] for row in rows] == [soda.id]


class TestComboStock:
    """A combo's stock is the minimum over its components of floor(available / required)."""

    def test_limited_by_scarcest_component(self, db_session, tenant, soda, chips, party_pack):
        receive(tenant.id, soda.id, 10)
        receive(tenant.id, chips.id, 10)

        availability = combo_service.get_combo_availability(tenant.id, party_pack.id)

        assert combo_service.calculate_combo_stock(tenant.id, party_pack.id) == 2
        assert availability["current_stock"] == 2
        by_id = {c["component_id"]: c for c in availability["components"]}
        assert by_id[soda.id]["is_limiting"] is True
        assert by_id[soda.id]["max_combos"] == 2
        assert by_id[chips.id]["is_limiting"] is False
        assert by_id[chips.id]["max_combos"] == 5

    def test_empty_component_means_zero(self, db_session, tenant, soda, party_pack):
        receive(tenant.id, soda.id, 100)

        assert combo_service.calculate_combo_stock(tenant.id, party_pack.id) == 0

    def test_components_sharing_a_pool(self, db_session, tenant, soda, soda_6pack):
        mix = make_combo(tenant.id, "MIX", "10.00", [(soda, 1), (soda_6pack, 1)])
        receive(tenant.id, soda.id, 13)

        assert combo_service.calculate_combo_stock(tenant.id, mix.id) == 1

        receive(tenant.id, soda.id, 1)
        assert combo_service.calculate_combo_stock(tenant.id, mix.id) == 2

    def test_combo_without_components(self, db_session, tenant):
        empty = make_product(tenant.id, "EMPTY", "5.00", product_type=PRODUCT_COMBO)

        result = combo_service.validate_combo_sale(tenant.id, empty.id, 1)

        assert combo_service.calculate_combo_stock(tenant.id, empty.id) == 0
        assert result["can_sell"] is False

    def test_validate_sale_lists_every_short_component(self, db_session, tenant, soda, chips, party_pack):
        receive(tenant.id, soda.id, 10)
        receive(tenant.id, chips.id, 2)

        result = combo_service.validate_combo_sale(tenant.id, party_pack.id, 3)

        assert result["can_sell"] is False
        missing = {m["component_id"]: m for m in result["missing_components"]}
        assert set(missing) == {soda.id, chips.id}
        assert Decimal(missing[soda.id]["required_stock"]) == Decimal("12")
        assert Decimal(missing[soda.id]["missing_qty"]) == Decimal("2")
        assert Decimal(missing[chips.id]["missing_qty"]) == Decimal("4")

    def test_simple_product_is_not_a_combo(self, db_session, tenant, soda):
        with pytest.raises(ValidationError):
            combo_service.calculate_combo_stock(tenant.id, soda.id)
        with pytest.raises(NotFoundError):
            combo_service.calculate_combo_stock(tenant.id, 99999)


class TestComboCost:

    def test_cost_and_margin(self, db_session, tenant, soda, chips, party_pack):
        receive(tenant.id, soda.id, 10, unit_cost=Decimal("0.50"))
        receive(tenant.id, soda.id, 10, unit_cost=Decimal("1.00"))
        receive(tenant.id, chips.id, 10, unit_cost=Decimal("1.00"))

        cost = combo_service.calculate_combo_cost(tenant.id, party_pack.id)

        assert cost["combo_cost"] == "5.00"
        assert cost["component_price_sum"] == "10.00"
        assert cost["combo_sale_price"] == "9.00"
        assert cost["implied_discount"] == "1.00"
        assert cost["combo_margin"] == "4.00"
        assert cost["margin_percentage"] == "44.44"


class TestSetComponents:

    def test_replace_components(self, db_session, tenant, soda, chips, party_pack):
        combo = combo_service.set_components(tenant.id, party_pack.id, [
            {"component_product_id": soda.id, "qty_per_combo": 2},
            {"component_product_id": chips.id, "qty_per_combo": 1},
        ])

        assert [(c.component_product_id, c.qty_per_combo) for c in combo.components] == [
            (soda.id, Decimal("2")),
            (chips.id, Decimal("1")),
        ]

    def test_rejects_bad_components(self, db_session, tenant, soda, party_pack):
        other_combo = make_combo(tenant.id, "OTHER", "3.00", [(soda, 1)])
        cases = [
            [],
            [{"component_product_id": party_pack.id, "qty_per_combo": 1}],
            [{"component_product_id": other_combo.id, "qty_per_combo": 1}],
            [{"component_product_id": soda.id, "qty_per_combo": 0}],
            [{"component_product_id": soda.id, "qty_per_combo": 1}, {"component_product_id": soda.id, "qty_per_combo": 1}],
            [{"component_product_id": 99999, "qty_per_combo": 1}],
        ]
        for components in cases:
            with pytest.raises(ValidationError):
                combo_service.set_components(tenant.id, party_pack.id, components)
