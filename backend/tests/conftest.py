"""
Pytest fixtures for stock ledger backend tests.

Provides the test database, tenant fixtures, a product catalog with pools,
presentations and a combo, and the test client.
"""

from decimal import Decimal

import pytest

from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Customer, Product, ProductComponent, Tenant
from stockledger.models.inventory import DIRECTION_IN, PRODUCT_COMBO, REASON_PURCHASE
from stockledger.services import settings_service
from stockledger.services.ledger_service import append_movement
from stockledger.services.settings_service import KEY_TAX_ENABLED, KEY_TAX_RATE


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema (Core deletes skip the ledger guard)
        db.session.rollback()
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def tenant(db_session):
    """Tenant A with tax disabled; tax tests switch it on explicitly."""
    tenant = Tenant(name="Tenant A - Corner Shop", code="SHOP-A", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    settings_service.set_setting(tenant.id, KEY_TAX_ENABLED, False)
    return tenant


@pytest.fixture(scope='function')
def other_tenant(db_session):
    tenant = Tenant(name="Tenant B - Kiosk", code="SHOP-B", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    settings_service.set_setting(tenant.id, KEY_TAX_ENABLED, False)
    return tenant


@pytest.fixture(scope='function')
def taxed(tenant):
    """Tax on at 16% for tenant A."""
    settings_service.set_setting(tenant.id, KEY_TAX_ENABLED, True, commit=False)
    settings_service.set_setting(tenant.id, KEY_TAX_RATE, "16", value_type="number")
    return tenant


def make_product(tenant_id, sku, price, **kwargs):
    product = Product(tenant_id=tenant_id, sku=sku, name=kwargs.pop("name", sku), sale_price=Decimal(str(price)), **kwargs)
    db.session.add(product)
    db.session.commit()
    return product


def receive(tenant_id, product_id, quantity, unit_cost=None):
    """Put stock straight on the ledger (base units)."""
    movement = append_movement(
        tenant_id=tenant_id,
        product_id=product_id,
        direction=DIRECTION_IN,
        reason=REASON_PURCHASE,
        quantity=quantity,
        unit_cost=unit_cost,
        ref_type="TEST",
    )
    db.session.commit()
    return movement


def make_combo(tenant_id, sku, price, components):
    """components: [(product, qty_per_combo)]"""
    combo = make_product(tenant_id, sku, price, product_type=PRODUCT_COMBO)
    for position, (component, per_combo) in enumerate(components):
        db.session.add(ProductComponent(
            tenant_id=tenant_id,
            combo_product_id=combo.id,
            component_product_id=component.id,
            qty_per_combo=Decimal(str(per_combo)),
            position=position,
        ))
    db.session.commit()
    return combo


@pytest.fixture(scope='function')
def soda(tenant):
    """Base pool: single soda cans."""
    return make_product(tenant.id, "SODA-CAN", "1.50", stock_min=Decimal("10"))


@pytest.fixture(scope='function')
def soda_6pack(tenant, soda):
    """Presentation of the soda pool: 6 cans per sale."""
    return make_product(
        tenant.id, "SODA-6PK", "8.00", base_product_id=soda.id, units_per_sale=Decimal("6")
    )


@pytest.fixture(scope='function')
def chips(tenant):
    return make_product(tenant.id, "CHIPS", "2.00", tax_applies=False)


@pytest.fixture(scope='function')
def party_pack(tenant, soda, chips):
    """COMBO: 4 sodas + 2 chips."""
    return make_combo(tenant.id, "PARTY", "9.00", [(soda, 4), (chips, 2)])


@pytest.fixture(scope='function')
def customer(tenant):
    customer = Customer(tenant_id=tenant.id, name="Ana", is_active=True)
    db.session.add(customer)
    db.session.commit()
    return customer


@pytest.fixture(scope='function')
def second_customer(tenant):
    customer = Customer(tenant_id=tenant.id, name="Luis", is_active=True)
    db.session.add(customer)
    db.session.commit()
    return customer


def tenant_headers(tenant) -> dict:
    """Helper to create tenant context headers."""
    return {'X-Tenant-ID': str(tenant.id)}
