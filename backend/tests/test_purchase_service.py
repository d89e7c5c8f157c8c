# Overview: Pytest coverage for the purchase ledger.

"""
Purchase Ledger Tests

Covers:
- exactly-once recording per (order_id, line_item_id)
- the concurrent-insert race resolving to the winner's row
- unresolvable references and the inactive-item policy
- cancellation and fulfillment bookkeeping
"""

import pytest

from wishcraft.errors import InactiveItemError, UnresolvableReferenceError, ValidationError
from wishcraft.models import Purchase, RegistryActivity
from wishcraft.models.registries import ITEM_STATUS_INACTIVE
from wishcraft.services import purchase_service, registry_service
from wishcraft.services.order_payload import Purchaser


def _record(item_id, *, order_id="ord_1", line_item_id="li_1", quantity=2, **kwargs):
    return purchase_service.record_purchase(
        order_id=order_id,
        line_item_id=line_item_id,
        registry_item_id=item_id,
        quantity=quantity,
        unit_price_cents=kwargs.pop("unit_price_cents", 1500),
        **kwargs,
    )


class TestRecordPurchase:
    def test_records_purchase_and_increments(self, db_session, item):
        purchase = _record(
            item.id,
            purchaser=Purchaser(purchaser_type="customer", email="jordan@example.com", name="Jordan Lee"),
        )

        assert purchase.total_amount_cents == 3000
        assert purchase.status == "confirmed"
        assert purchase.purchaser_email == "jordan@example.com"
        assert registry_service.get_item(item.id).quantity_purchased == 2

        activity = db_session.query(RegistryActivity).filter_by(action="item_purchased").one()
        assert activity.purchase_id == purchase.id
        assert activity.actor_type == "customer"
        assert activity.metadata_dict["order_id"] == "ord_1"
        assert activity.metadata_dict["quantity"] == 2

    def test_repeat_calls_are_no_ops(self, db_session, item):
        first = _record(item.id)
        for _ in range(4):
            again = _record(item.id)
            assert again.id == first.id

        assert db_session.query(Purchase).count() == 1
        assert registry_service.get_item(item.id).quantity_purchased == 2
        assert db_session.query(RegistryActivity).filter_by(action="item_purchased").count() == 1

    def test_same_line_id_on_different_orders_is_distinct(self, db_session, item):
        _record(item.id, order_id="ord_1", line_item_id="li_1", quantity=1)
        _record(item.id, order_id="ord_2", line_item_id="li_1", quantity=1)

        assert db_session.query(Purchase).count() == 2
        assert registry_service.get_item(item.id).quantity_purchased == 2

    def test_concurrent_insert_returns_winner_without_increment(self, db_session, item, monkeypatch):
        """
        The fast-path lookup misses (a concurrent delivery has not committed
        yet), the insert then hits the unique constraint.
        """
        winner = _record(item.id)
        winner_id = winner.id

        real_lookup = purchase_service._find_existing_purchase
        calls = []

        def stale_then_real(order_id, line_item_id):
            calls.append((order_id, line_item_id))
            if len(calls) == 1:
                return None
            return real_lookup(order_id, line_item_id)

        monkeypatch.setattr(purchase_service, "_find_existing_purchase", stale_then_real)

        result = _record(item.id)

        assert len(calls) == 2
        assert result.id == winner_id
        assert db_session.query(Purchase).count() == 1
        assert registry_service.get_item(item.id).quantity_purchased == 2
        assert db_session.query(RegistryActivity).filter_by(action="item_purchased").count() == 1

    def test_missing_item_is_unresolvable(self, db_session):
        with pytest.raises(UnresolvableReferenceError) as excinfo:
            _record(99999)

        assert excinfo.value.reference == "registry_item:99999"
        assert db_session.query(Purchase).count() == 0

    def test_registry_mismatch_is_unresolvable(self, db_session, item):
        with pytest.raises(UnresolvableReferenceError):
            _record(item.id, registry_id=item.registry_id + 1000)

    def test_inactive_item_recorded_when_policy_allows(self, db_session, make_item):
        item = make_item(status=ITEM_STATUS_INACTIVE)

        _record(item.id)

        assert registry_service.get_item(item.id).quantity_purchased == 2

    def test_inactive_item_rejected_when_policy_forbids(self, app, db_session, make_item, monkeypatch):
        monkeypatch.setitem(app.config, "ALLOW_INACTIVE_ITEM_PURCHASES", False)
        item = make_item(status=ITEM_STATUS_INACTIVE)

        with pytest.raises(InactiveItemError):
            _record(item.id)

        assert db_session.query(Purchase).count() == 0
        assert registry_service.get_item(item.id).quantity_purchased == 0

    def test_gift_message_is_sanitized(self, db_session, item):
        purchase = _record(item.id, gift_message="  Congrats!<script>alert(1)</script> <b>Love</b>  ")

        assert purchase.gift_message == "Congrats! Love"

    def test_gift_message_truncated_to_configured_length(self, app, db_session, item, monkeypatch):
        monkeypatch.setitem(app.config, "GIFT_MESSAGE_MAX_LENGTH", 10)

        purchase = _record(item.id, gift_message="a" * 50)

        assert purchase.gift_message == "a" * 10

    @pytest.mark.parametrize("quantity", [0, -2, "abc"])
    def test_invalid_quantity(self, db_session, item, quantity):
        with pytest.raises(ValidationError):
            _record(item.id, quantity=quantity)


class TestOrderLifecycle:
    def test_cancel_releases_quantity_and_is_idempotent(self, db_session, item):
        _record(item.id, line_item_id="li_1", quantity=2)
        _record(item.id, line_item_id="li_2", quantity=1)
        assert registry_service.get_item(item.id).quantity_purchased == 3

        cancelled = purchase_service.cancel_order_purchases("ord_1")
        assert len(cancelled) == 2
        assert registry_service.get_item(item.id).quantity_purchased == 0

        again = purchase_service.cancel_order_purchases("ord_1")
        assert again == []
        assert registry_service.get_item(item.id).quantity_purchased == 0

        rows = db_session.query(Purchase).filter_by(order_id="ord_1").all()
        assert {p.status for p in rows} == {"cancelled"}
        assert {p.payment_status for p in rows} == {"refunded"}
        assert db_session.query(RegistryActivity).filter_by(action="purchase_cancelled").count() == 2

    def test_fulfillment_updates_selected_lines(self, db_session, item):
        _record(item.id, line_item_id="li_1")
        _record(item.id, line_item_id="li_2")

        updated = purchase_service.update_fulfillment_status("ord_1", "fulfilled", line_item_ids=["li_2"])

        assert [p.line_item_id for p in updated] == ["li_2"]
        statuses = {p.line_item_id: p.fulfillment_status for p in purchase_service.list_item_purchases(item.id)}
        assert statuses == {"li_1": "unfulfilled", "li_2": "fulfilled"}

    def test_fulfillment_rejects_unknown_status(self, db_session, item):
        with pytest.raises(ValidationError):
            purchase_service.update_fulfillment_status("ord_1", "shipped")
