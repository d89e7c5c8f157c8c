# Overview: Pytest coverage for the registry item store.

import pytest

from wishcraft.errors import InactiveItemError, RegistryItemNotFoundError, RegistryNotFoundError, ValidationError
from wishcraft.models import RegistryActivity, RegistryItem
from wishcraft.models.registries import ITEM_STATUS_INACTIVE
from wishcraft.services import registry_service


class TestIncrementPurchased:
    def test_increment_adds_delta(self, db_session, item):
        updated = registry_service.increment_purchased(item.id, 3)
        db_session.commit()

        assert updated.quantity_purchased == 3
        assert registry_service.get_item(item.id).quantity_purchased == 3

    def test_increment_past_target_is_flagged_not_clamped(self, db_session, make_item):
        item = make_item(quantity=1)

        registry_service.increment_purchased(item.id, 2)
        db_session.commit()

        item = registry_service.get_item(item.id)
        assert item.quantity_purchased == 2
        assert item.is_over_purchased is True
        assert item.quantity_remaining == 0
        assert item.to_dict()["is_over_purchased"] is True

    @pytest.mark.parametrize("delta", [0, -1, True, 1.5, "2"])
    def test_rejects_non_positive_or_non_integer_delta(self, db_session, item, delta):
        with pytest.raises(ValidationError):
            registry_service.increment_purchased(item.id, delta)

    def test_missing_item(self, db_session):
        with pytest.raises(RegistryItemNotFoundError):
            registry_service.increment_purchased(99999, 1)

    def test_inactive_item_rejected_unless_allowed(self, db_session, make_item):
        item = make_item(status=ITEM_STATUS_INACTIVE)

        with pytest.raises(InactiveItemError):
            registry_service.increment_purchased(item.id, 1)

        updated = registry_service.increment_purchased(item.id, 1, allow_inactive=True)
        db_session.commit()
        assert updated.quantity_purchased == 1

    def test_increment_does_not_commit(self, db_session, item):
        """Runs inside the caller's transaction: a rollback undoes it."""
        registry_service.increment_purchased(item.id, 2)
        db_session.rollback()

        assert registry_service.get_item(item.id).quantity_purchased == 0


class TestReleasePurchased:
    def test_release_subtracts(self, db_session, make_item):
        item = make_item(quantity_purchased=3)

        registry_service.release_purchased(item.id, 2)
        db_session.commit()

        assert registry_service.get_item(item.id).quantity_purchased == 1

    def test_release_floors_at_zero(self, db_session, make_item):
        item = make_item(quantity_purchased=1)

        registry_service.release_purchased(item.id, 5)
        db_session.commit()

        assert registry_service.get_item(item.id).quantity_purchased == 0

    def test_release_works_on_inactive_item(self, db_session, make_item):
        item = make_item(quantity_purchased=2, status=ITEM_STATUS_INACTIVE)

        registry_service.release_purchased(item.id, 1)
        db_session.commit()

        assert registry_service.get_item(item.id).quantity_purchased == 1


class TestRegistryManagement:
    def test_create_registry_and_add_item_logs_activity(self, db_session):
        registry = registry_service.create_registry(
            shop_domain="gifts.myshopify.com",
            title="Baby Shower",
            customer_email="parent@example.com",
        )
        item = registry_service.add_item(
            registry_id=registry.id,
            product_id="prod_9",
            product_title="Crib",
            unit_price_cents=25000,
            quantity=1,
        )

        assert item.registry_id == registry.id
        assert item.quantity_purchased == 0
        assert item.currency_code == "USD"

        activity = db_session.query(RegistryActivity).filter_by(registry_id=registry.id).one()
        assert activity.action == "item_added"
        assert activity.actor_type == "customer"
        assert activity.actor_email == "parent@example.com"
        assert activity.registry_item_id == item.id

    def test_add_item_to_missing_registry(self, db_session):
        with pytest.raises(RegistryNotFoundError):
            registry_service.add_item(
                registry_id=99999,
                product_id="prod_9",
                product_title="Crib",
                unit_price_cents=100,
            )

    def test_add_item_validates_input(self, registry):
        with pytest.raises(ValidationError):
            registry_service.add_item(
                registry_id=registry.id,
                product_id="prod_9",
                product_title="Crib",
                unit_price_cents=-5,
            )
        with pytest.raises(ValidationError):
            registry_service.add_item(
                registry_id=registry.id,
                product_id="prod_9",
                product_title="Crib",
                unit_price_cents=100,
                quantity=0,
            )

    def test_deactivate_is_soft_and_idempotent(self, db_session, item):
        registry_service.deactivate_item(item.id)
        registry_service.deactivate_item(item.id)

        refreshed = registry_service.get_item(item.id)
        assert refreshed.status == ITEM_STATUS_INACTIVE
        assert registry_service.list_items(item.registry_id) == []
        assert [i.id for i in registry_service.list_items(item.registry_id, include_inactive=True)] == [item.id]

        removed = db_session.query(RegistryActivity).filter_by(action="item_removed").all()
        assert len(removed) == 1
        assert removed[0].is_system is True


class TestRegistryRelationships:
    def test_children_link_back_through_parent_registry(self, db_session, registry, item):
        registry_service.deactivate_item(item.id)
        activity = db_session.query(RegistryActivity).filter_by(action="item_removed").one()

        assert item.parent_registry is registry
        assert activity.parent_registry is registry
        assert registry.items == [item]

    def test_declarative_registry_name_not_shadowed(self):
        for model in (RegistryItem, RegistryActivity):
            assert "registry" not in model.__mapper__.relationships
            assert "parent_registry" in model.__mapper__.relationships
