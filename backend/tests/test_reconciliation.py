# Overview: Pytest coverage for webhook reconciliation.

"""
Webhook Reconciliation Tests

The orchestrator must:
1. Record each tagged line exactly once, however often Shopify redelivers
2. Skip a bad line without losing its siblings
3. Reject structurally broken payloads outright
4. Surface database outages so the webhook is retried
"""

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from wishcraft.errors import MalformedPayloadError, TransientInfrastructureError
from wishcraft.models import GroupGiftContribution, Purchase, RegistryActivity
from wishcraft.models.registries import ITEM_STATUS_INACTIVE
from wishcraft.services import contribution_service, reconciliation_service, registry_service


class TestOrderCreated:
    def test_records_tagged_line(self, db_session, item, make_order, tagged_line):
        payload = make_order("ord_1", [tagged_line("li_1", item.id, quantity=2, price="15.00")])

        result = reconciliation_service.reconcile_order_created(payload)

        assert result.state == "recorded"
        assert result.recorded_count == 1
        purchase = db_session.query(Purchase).one()
        assert purchase.order_id == "ord_1"
        assert purchase.line_item_id == "li_1"
        assert purchase.total_amount_cents == 3000
        assert purchase.payment_status == "paid"
        assert purchase.purchaser_type == "customer"
        assert purchase.purchaser_name == "Jordan Lee"
        assert purchase.purchaser_email == "guest@example.com"
        assert registry_service.get_item(item.id).quantity_purchased == 2

    def test_redelivery_is_duplicate(self, db_session, item, make_order, tagged_line):
        payload = make_order("ord_1", [tagged_line("li_1", item.id, quantity=2)])

        reconciliation_service.reconcile_order_created(payload)
        for _ in range(3):
            again = reconciliation_service.reconcile_order_created(payload)
            assert again.duplicate_count == 1
            assert again.recorded_count == 0

        assert db_session.query(Purchase).count() == 1
        assert registry_service.get_item(item.id).quantity_purchased == 2
        assert db_session.query(RegistryActivity).filter_by(action="item_purchased").count() == 1

    def test_untagged_lines_are_ignored(self, db_session, item, make_order, tagged_line):
        untagged = {"id": "li_9", "quantity": 1, "price": "3.00", "properties": [{"name": "color", "value": "red"}]}
        payload = make_order("ord_1", [untagged, tagged_line("li_1", item.id)])

        result = reconciliation_service.reconcile_order_created(payload)

        assert result.untagged_count == 1
        assert result.recorded_count == 1

    def test_bad_line_skipped_siblings_recorded(self, db_session, make_item, make_order, tagged_line):
        first = make_item(product_id="prod_a")
        second = make_item(product_id="prod_b")
        payload = make_order("ord_1", [
            tagged_line("li_1", first.id),
            tagged_line("li_2", 99999),
            tagged_line("li_3", second.id, quantity="lots"),
            tagged_line("li_4", second.id, quantity=3),
        ])

        result = reconciliation_service.reconcile_order_created(payload)

        outcomes = {line.line_item_id: line.outcome for line in result.lines}
        assert outcomes == {"li_1": "recorded", "li_2": "skipped", "li_3": "skipped", "li_4": "recorded"}
        skipped = next(line for line in result.lines if line.line_item_id == "li_2")
        assert "99999" in skipped.reason
        assert registry_service.get_item(first.id).quantity_purchased == 1
        assert registry_service.get_item(second.id).quantity_purchased == 3

    def test_non_numeric_registry_item_id_is_skipped(self, db_session, make_order):
        line = {"id": "li_1", "quantity": 1, "price": "1.00", "properties": [{"name": "_registry_item_id", "value": "abc"}]}

        result = reconciliation_service.reconcile_order_created(make_order("ord_1", [line]))

        assert result.skipped_count == 1

    @pytest.mark.parametrize("field, value", [
        ("quantity", "²"),
        ("quantity", "9" * 5000),
        ("quantity", 10 ** 12),
        ("price", "1e30"),
        ("price", "1e999999999"),
    ])
    def test_out_of_range_line_values_are_skipped(self, db_session, make_item, make_order, tagged_line, field, value):
        first = make_item(product_id="prod_a")
        second = make_item(product_id="prod_b")
        odd = tagged_line("li_2", first.id)
        odd[field] = value
        payload = make_order("ord_1", [tagged_line("li_1", first.id), odd, tagged_line("li_3", second.id)])

        result = reconciliation_service.reconcile_order_created(payload)

        outcomes = {line.line_item_id: line.outcome for line in result.lines}
        assert outcomes == {"li_1": "recorded", "li_2": "skipped", "li_3": "recorded"}
        assert registry_service.get_item(first.id).quantity_purchased == 1
        assert registry_service.get_item(second.id).quantity_purchased == 1

    def test_superscript_registry_item_id_is_skipped(self, db_session, item, make_order, tagged_line):
        line = {"id": "li_1", "quantity": 1, "price": "1.00", "properties": [{"name": "_registry_item_id", "value": "¹"}]}

        result = reconciliation_service.reconcile_order_created(make_order("ord_1", [line, tagged_line("li_2", item.id)]))

        assert result.skipped_count == 1
        assert result.recorded_count == 1

    def test_anonymous_group_gift_buyer_not_named_in_activity(self, db_session, make_item, make_order, tagged_line):
        gift_item = make_item(product_title="Espresso Machine", quantity=1, unit_price_cents=20000)
        gift = contribution_service.create_group_gift(registry_item_id=gift_item.id)
        line = tagged_line(
            "li_1",
            gift_item.id,
            price="50.00",
            _group_gift_id=str(gift.id),
            _contributor_anonymous="true",
        )

        reconciliation_service.reconcile_order_created(make_order("ord_1", [line]))

        rows = db_session.query(RegistryActivity).filter(
            RegistryActivity.action.in_(["item_purchased", "contribution_received"])
        ).all()
        assert len(rows) == 2
        for row in rows:
            assert row.actor_email is None
            assert row.actor_name is None
        # The ledger keeps the buyer for fulfillment
        assert db_session.query(Purchase).filter_by(order_id="ord_1").one().purchaser_email == "guest@example.com"

    def test_inactive_item_still_reconciled(self, db_session, make_item, make_order, tagged_line):
        item = make_item(status=ITEM_STATUS_INACTIVE)

        result = reconciliation_service.reconcile_order_created(make_order("ord_1", [tagged_line("li_1", item.id)]))

        assert result.recorded_count == 1
        assert registry_service.get_item(item.id).quantity_purchased == 1

    def test_guest_checkout(self, db_session, item, make_order, tagged_line):
        payload = make_order("ord_1", [tagged_line("li_1", item.id)], customer=False, financial_status="pending")

        reconciliation_service.reconcile_order_created(payload)

        purchase = db_session.query(Purchase).one()
        assert purchase.purchaser_type == "guest"
        assert purchase.purchaser_name == "Riley Guest"
        assert purchase.payment_status == "pending"

    def test_gift_message_explicit_property(self, db_session, item, make_order, tagged_line):
        line = tagged_line("li_1", item.id, _gift_message="<b>Happy</b> wedding!", note_for_gift="ignored")

        reconciliation_service.reconcile_order_created(make_order("ord_1", [line]))

        assert db_session.query(Purchase).one().gift_message == "Happy wedding!"

    def test_gift_message_legacy_property_name(self, db_session, item, make_order, tagged_line):
        line = tagged_line("li_1", item.id, **{"Gift Note": "Enjoy the mixer"})

        reconciliation_service.reconcile_order_created(make_order("ord_1", [line]))

        assert db_session.query(Purchase).one().gift_message == "Enjoy the mixer"

    def test_gift_purchase_flag(self, db_session, item, make_order, tagged_line):
        line = tagged_line("li_1", item.id, _gift_purchase="false")

        reconciliation_service.reconcile_order_created(make_order("ord_1", [line]))

        assert db_session.query(Purchase).one().is_gift is False


class TestMalformedPayloads:
    @pytest.mark.parametrize("payload", [
        None,
        [],
        "order",
        {"line_items": []},
        {"id": "", "line_items": []},
        {"id": "ord_1"},
        {"id": "ord_1", "line_items": {"id": "li_1"}},
        {"id": "ord_1", "line_items": ["li_1"]},
        {"id": "ord_1", "line_items": [], "currency": "DOLLARS"},
    ])
    def test_rejected_without_writes(self, db_session, payload):
        with pytest.raises(MalformedPayloadError):
            reconciliation_service.reconcile_order_created(payload)

        assert db_session.query(Purchase).count() == 0


class TestTransientFailures:
    def test_exhausted_retries_raise_transient(self, app, db_session, item, make_order, tagged_line, monkeypatch):
        attempts = []

        def locked_db(order, line):
            attempts.append(line.line_item_id)
            raise OperationalError("INSERT INTO registry_purchases", {}, Exception("database is locked"))

        monkeypatch.setattr(reconciliation_service, "_reconcile_line_locked", locked_db)

        with pytest.raises(TransientInfrastructureError):
            reconciliation_service.reconcile_order_created(make_order("ord_1", [tagged_line("li_1", item.id)]))

        assert len(attempts) == app.config["DB_RETRY_ATTEMPTS"]
        assert db_session.query(Purchase).count() == 0

    def test_exhausted_version_conflicts_raise_transient(self, db_session, item, make_order, tagged_line, monkeypatch):
        def stale(order, line):
            raise StaleDataError("UPDATE statement on table 'registry_purchases' expected to update 1 row(s)")

        monkeypatch.setattr(reconciliation_service, "_reconcile_line_locked", stale)

        with pytest.raises(TransientInfrastructureError):
            reconciliation_service.reconcile_order_created(make_order("ord_1", [tagged_line("li_1", item.id)]))

    def test_cancel_version_conflict_raises_transient(self, db_session, monkeypatch):
        def stale(order_id):
            raise StaleDataError("UPDATE statement on table 'registry_purchases' expected to update 1 row(s)")

        monkeypatch.setattr(reconciliation_service, "_cancel_order_purchases_locked", stale)

        with pytest.raises(TransientInfrastructureError):
            reconciliation_service.reconcile_order_cancelled({"id": "ord_1"})

    def test_retry_succeeds_after_transient_error(self, db_session, item, make_order, tagged_line, monkeypatch):
        real = reconciliation_service._reconcile_line_locked
        attempts = []

        def flaky(order, line):
            attempts.append(line.line_item_id)
            if len(attempts) == 1:
                raise OperationalError("INSERT INTO registry_purchases", {}, Exception("database is locked"))
            return real(order, line)

        monkeypatch.setattr(reconciliation_service, "_reconcile_line_locked", flaky)

        result = reconciliation_service.reconcile_order_created(make_order("ord_1", [tagged_line("li_1", item.id)]))

        assert result.recorded_count == 1
        assert len(attempts) == 2
        assert registry_service.get_item(item.id).quantity_purchased == 1


class TestGroupGiftLines:
    @pytest.fixture
    def group_gift(self, db_session, make_item):
        gift_item = make_item(product_title="Espresso Machine", quantity=1, unit_price_cents=20000)
        return contribution_service.create_group_gift(registry_item_id=gift_item.id)

    def test_paid_line_completes_contribution(self, db_session, group_gift, make_order, tagged_line):
        line = tagged_line(
            "li_1",
            group_gift.registry_item_id,
            price="50.00",
            _group_gift_id=str(group_gift.id),
            _contributor_anonymous="true",
        )

        result = reconciliation_service.reconcile_order_created(make_order("ord_1", [line]))

        assert result.recorded_count == 1
        assert result.lines[0].contribution_id is not None
        contribution = db_session.query(GroupGiftContribution).one()
        assert contribution.amount_cents == 5000
        assert contribution.payment_status == "completed"
        assert contribution.is_anonymous is True
        assert contribution.order_id == "ord_1"

        line_purchase = db_session.query(Purchase).filter_by(order_id="ord_1").one()
        assert line_purchase.is_group_gift is True
        assert line_purchase.group_gift_id == group_gift.id

        state = contribution_service.get_completion_state(group_gift.id)
        assert state.percent_complete == 25
        # Funded only once the target is met
        assert registry_service.get_item(group_gift.registry_item_id).quantity_purchased == 0

    def test_unpaid_line_stays_pending(self, db_session, group_gift, make_order, tagged_line):
        line = tagged_line("li_1", group_gift.registry_item_id, price="50.00", _group_gift_id=str(group_gift.id))

        reconciliation_service.reconcile_order_created(make_order("ord_1", [line], financial_status="pending"))

        assert db_session.query(GroupGiftContribution).one().payment_status == "pending"
        assert contribution_service.get_completion_state(group_gift.id).total_collected_cents == 0

    def test_funding_line_credits_item(self, db_session, group_gift, make_order, tagged_line):
        line = tagged_line("li_1", group_gift.registry_item_id, price="200.00", _group_gift_id=str(group_gift.id))

        reconciliation_service.reconcile_order_created(make_order("ord_1", [line]))

        assert contribution_service.get_completion_state(group_gift.id).is_funded is True
        assert registry_service.get_item(group_gift.registry_item_id).quantity_purchased == 1

    def test_unknown_group_gift_is_skipped(self, db_session, item, make_order, tagged_line):
        line = tagged_line("li_1", item.id, _group_gift_id="99999")

        result = reconciliation_service.reconcile_order_created(make_order("ord_1", [line]))

        assert result.skipped_count == 1
        assert db_session.query(Purchase).count() == 0


class TestOrderCancelledAndFulfilled:
    def test_cancel_reverses_purchases(self, db_session, item, make_order, tagged_line):
        payload = make_order("ord_1", [tagged_line("li_1", item.id, quantity=2)])
        reconciliation_service.reconcile_order_created(payload)

        result = reconciliation_service.reconcile_order_cancelled({"id": "ord_1"})
        assert result.affected_count == 1
        assert registry_service.get_item(item.id).quantity_purchased == 0

        again = reconciliation_service.reconcile_order_cancelled({"id": "ord_1"})
        assert again.affected_count == 0

    def test_cancel_refunds_group_gift_contribution(self, db_session, make_item, make_order, tagged_line):
        gift_item = make_item(quantity=1, unit_price_cents=20000)
        gift = contribution_service.create_group_gift(registry_item_id=gift_item.id)
        line = tagged_line("li_1", gift_item.id, price="200.00", _group_gift_id=str(gift.id))
        reconciliation_service.reconcile_order_created(make_order("ord_1", [line]))
        assert registry_service.get_item(gift_item.id).quantity_purchased == 1

        reconciliation_service.reconcile_order_cancelled({"id": "ord_1"})

        contribution = db_session.query(GroupGiftContribution).one()
        assert contribution.payment_status == "refunded"
        state = contribution_service.get_completion_state(gift.id)
        assert state.total_collected_cents == 0
        assert state.is_funded is False
        assert registry_service.get_item(gift_item.id).quantity_purchased == 0

    def test_fulfilled_marks_purchases(self, db_session, item, make_order, tagged_line):
        reconciliation_service.reconcile_order_created(make_order("ord_1", [
            tagged_line("li_1", item.id),
            tagged_line("li_2", item.id),
        ]))

        result = reconciliation_service.reconcile_order_fulfilled({
            "id": "ord_1",
            "fulfillment_status": "partial",
            "fulfillments": [{"line_items": [{"id": "li_2"}]}],
        })

        assert result.affected_count == 1
        statuses = {p.line_item_id: p.fulfillment_status for p in db_session.query(Purchase)}
        assert statuses == {"li_1": "unfulfilled", "li_2": "fulfilled"}

        reconciliation_service.reconcile_order_fulfilled({"id": "ord_1", "fulfillment_status": "fulfilled"})
        statuses = {p.line_item_id: p.fulfillment_status for p in db_session.query(Purchase)}
        assert statuses == {"li_1": "fulfilled", "li_2": "fulfilled"}

    def test_cancel_requires_order_id(self, db_session):
        with pytest.raises(MalformedPayloadError):
            reconciliation_service.reconcile_order_cancelled({"line_items": []})
