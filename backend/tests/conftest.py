"""
Pytest fixtures for WishCraft backend tests.

Provides an in-memory database app, per-test table wipe, registry/item
factories, Shopify order payload builders and a signed webhook client.
"""

import json

import pytest

from wishcraft import create_app
from wishcraft.decorators import HMAC_HEADER, compute_shopify_hmac
from wishcraft.extensions import db
from wishcraft.models import Registry, RegistryItem

WEBHOOK_SECRET = "test-secret"

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'SHOPIFY_WEBHOOK_SECRET': WEBHOOK_SECRET,
    'ALLOW_INACTIVE_ITEM_PURCHASES': True,
    'GROUP_GIFT_OVERAGE_TOLERANCE_CENTS': None,
    'DB_RETRY_ATTEMPTS': 3,
    'DB_RETRY_BACKOFF_SECONDS': 0,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def registry(db_session):
    """Registry owned by a customer."""
    registry = Registry(shop_domain="gifts.myshopify.com", title="Sam & Alex Wedding", customer_email="sam@example.com")
    db_session.add(registry)
    db_session.commit()
    return registry


@pytest.fixture(scope='function')
def make_item(db_session, registry):
    """Factory for registry items (defaults: wants 4 at $15.00)."""
    def _make(**overrides):
        values = {
            "registry_id": registry.id,
            "product_id": "prod_1",
            "variant_id": "var_1",
            "product_title": "Stand Mixer",
            "quantity": 4,
            "quantity_purchased": 0,
            "unit_price_cents": 1500,
            "currency_code": "USD",
        }
        values.update(overrides)
        item = RegistryItem(**values)
        db_session.add(item)
        db_session.commit()
        return item

    return _make


@pytest.fixture(scope='function')
def item(make_item):
    return make_item()


@pytest.fixture(scope='function')
def tagged_line():
    """Build a Shopify line item tagged for a registry item."""
    def _line(line_item_id, registry_item_id, *, quantity=1, price="15.00", **properties):
        props = [{"name": "_registry_item_id", "value": str(registry_item_id)}]
        props.extend({"name": name, "value": value} for name, value in properties.items())
        return {
            "id": line_item_id,
            "title": "Stand Mixer",
            "quantity": quantity,
            "price": price,
            "properties": props,
        }

    return _line


@pytest.fixture(scope='function')
def make_order():
    """Build a Shopify orders/create payload."""
    def _order(order_id="ord_1", line_items=None, *, financial_status="paid", customer=True, **extra):
        payload = {
            "id": order_id,
            "name": f"#{order_id}",
            "email": "guest@example.com",
            "currency": "USD",
            "financial_status": financial_status,
            "created_at": "2026-05-01T12:00:00-04:00",
            "line_items": line_items or [],
        }
        if customer:
            payload["customer"] = {"first_name": "Jordan", "last_name": "Lee", "email": "jordan@example.com"}
        else:
            payload["billing_address"] = {"name": "Riley Guest"}
        payload.update(extra)
        return payload

    return _order


@pytest.fixture(scope='function')
def signed_post(client):
    """POST a JSON body with a valid (or overridden) Shopify HMAC header."""
    def _post(path, payload, *, secret=WEBHOOK_SECRET, signature=None, raw=None):
        body = raw if raw is not None else json.dumps(payload).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Shop-Domain": "gifts.myshopify.com",
            HMAC_HEADER: signature if signature is not None else compute_shopify_hmac(secret, body),
        }
        return client.post(path, data=body, headers=headers)

    return _post
