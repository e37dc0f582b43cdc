"""Tests for per-item preparation tracking and status overrides."""

import pytest
from sqlalchemy import select, update

from rivercafe.core.errors import InvalidState, InvalidStatus, NoEligibleOrder, NotFound, ValidationError
from rivercafe.models import AuditLogEntry, Order, OrderStatus
from rivercafe.services import order_state
from rivercafe.services.fulfillment_service import FulfillmentService


def _prepared(order):
    return [item.prepared_count for item in order.items]


class TestPrepareByProduct:

    def test_fifo_across_orders(self, db_session, make_order, canteen_staff):
        first = make_order(items=[("Burger", 1, 0)])
        second = make_order(items=[("Burger", 1, 0)])
        service = FulfillmentService(db_session)

        assert service.prepare_one_unit("Burger", canteen_staff.id).id == first.id
        assert service.prepare_one_unit("Burger", canteen_staff.id).id == second.id
        with pytest.raises(NoEligibleOrder):
            service.prepare_one_unit("Burger", canteen_staff.id)

    def test_status_follows_counts(self, db_session, make_order, canteen_staff):
        order = make_order(items=[("Burger", 2, 0), ("Chips", 1, 0)])
        service = FulfillmentService(db_session)

        service.prepare_one_unit("burger", canteen_staff.id)
        db_session.refresh(order)
        assert order.status == OrderStatus.PREPARING
        assert order.prepared_count == 1
        assert order.prep_by == canteen_staff.id

        service.prepare_one_unit("BURGER", canteen_staff.id)
        service.prepare_one_unit(" chips ", canteen_staff.id)
        db_session.refresh(order)
        assert order.status == OrderStatus.READY
        assert _prepared(order) == [2, 1]
        assert order.version == 4

    def test_burger_and_soda_walkthrough(self, db_session, make_order, canteen_staff):
        order = make_order(items=[("Burger", 2, 0), ("Soda", 1, 0)])
        service = FulfillmentService(db_session)

        result = service.prepare_one_unit("Burger", canteen_staff.id)
        assert (_prepared(result), result.prepared_count, result.status) == ([1, 0], 1, OrderStatus.PREPARING)

        service.prepare_one_unit("Burger", canteen_staff.id)
        result = service.prepare_one_unit("Soda", canteen_staff.id)
        assert result.id == order.id
        assert (_prepared(result), result.prepared_count, result.status) == ([2, 1], 3, OrderStatus.READY)

    def test_items_decide_eligibility_not_the_aggregate(self, db_session, make_order, canteen_staff):
        # Aggregate says everything is done, the item says otherwise
        order = make_order(items=[("Burger", 2, 0)], prepared_count=2)
        result = FulfillmentService(db_session).prepare_one_unit("Burger", canteen_staff.id)
        assert result.id == order.id
        assert result.prepared_count == 1
        assert result.status == OrderStatus.PREPARING

    def test_skips_terminal_orders(self, db_session, make_order, canteen_staff):
        make_order(items=[("Burger", 1, 0)], status=OrderStatus.CANCELLED)
        live = make_order(items=[("Burger", 1, 0)])
        assert FulfillmentService(db_session).prepare_one_unit("Burger", canteen_staff.id).id == live.id

    def test_unprepare_is_lifo(self, db_session, make_order, canteen_staff):
        older = make_order(items=[("Pie", 1, 1)])
        newer = make_order(items=[("Pie", 2, 1)])
        service = FulfillmentService(db_session)

        result = service.unprepare_one_unit("Pie", canteen_staff.id)
        assert result.id == newer.id
        assert result.status == OrderStatus.PLACED

        result = service.unprepare_one_unit("Pie", canteen_staff.id)
        assert result.id == older.id
        with pytest.raises(NoEligibleOrder):
            service.unprepare_one_unit("Pie", canteen_staff.id)

    def test_unprepare_never_goes_negative(self, db_session, make_order, canteen_staff):
        make_order(items=[("Pie", 1, 0)])
        with pytest.raises(NoEligibleOrder):
            FulfillmentService(db_session).unprepare_one_unit("Pie", canteen_staff.id)

    def test_non_ascii_names_match_case_insensitively(self, db_session, make_order, canteen_staff):
        eclair = make_order(items=[("ÉCLAIR", 1, 0)])
        brulee = make_order(items=[("Crème BRÛLÉE", 1, 0)])
        service = FulfillmentService(db_session)

        assert service.prepare_one_unit("ÉCLAIR", canteen_staff.id).id == eclair.id
        assert service.prepare_one_unit("crème brûlée", canteen_staff.id).id == brulee.id
        assert service.unprepare_one_unit("éclair", canteen_staff.id).id == eclair.id

    def test_blank_product_name(self, db_session):
        with pytest.raises(ValidationError):
            FulfillmentService(db_session).prepare_one_unit("  ")

    def test_each_unit_is_audited(self, db_session, make_order, canteen_staff):
        order = make_order(items=[("Burger", 1, 0)])
        FulfillmentService(db_session).prepare_one_unit("Burger", canteen_staff.id, "10.0.0.5")
        entry = db_session.scalars(select(AuditLogEntry).where(AuditLogEntry.action == "prepare_unit")).one()
        assert entry.document_id == str(order.id)
        assert entry.ip_address == "10.0.0.5"
        assert entry.changes["status"] == "ready"


class TestConcurrentWriters:

    def test_lost_race_is_retried(self, db_session, make_order, canteen_staff, monkeypatch):
        order = make_order(items=[("Burger", 2, 0)])
        original = order_state.next_to_prepare
        calls = {"n": 0}

        def racing(items, key=None):
            calls["n"] += 1
            if calls["n"] == 1:
                # Another terminal bumps the version between our read and our write
                db_session.execute(
                    update(Order).where(Order.id == order.id).values(version=Order.version + 1)
                    .execution_options(synchronize_session=False)
                )
            return original(items, key)

        monkeypatch.setattr(order_state, "next_to_prepare", racing)
        result = FulfillmentService(db_session).prepare_one_unit("Burger", canteen_staff.id)

        assert calls["n"] == 2
        assert result.id == order.id
        assert _prepared(result) == [1]

    def test_gives_up_after_max_attempts(self, db_session, make_order, canteen_staff, monkeypatch):
        order = make_order(items=[("Burger", 2, 0)])
        original = order_state.next_to_prepare

        def always_racing(items, key=None):
            db_session.execute(
                update(Order).where(Order.id == order.id).values(version=Order.version + 1)
                .execution_options(synchronize_session=False)
            )
            return original(items, key)

        monkeypatch.setattr(order_state, "next_to_prepare", always_racing)
        with pytest.raises(InvalidState):
            FulfillmentService(db_session, max_attempts=2).prepare_one_unit("Burger", canteen_staff.id)

        db_session.refresh(order)
        assert _prepared(order) == [0]


class TestOrderCardControls:

    def test_increment_and_decrement(self, db_session, make_order, canteen_staff):
        order = make_order(items=[("Burger", 1, 0), ("Chips", 1, 0)])
        service = FulfillmentService(db_session)

        assert _prepared(service.set_item_prepared_delta(order.id, 1, canteen_staff.id)) == [1, 0]
        assert _prepared(service.set_item_prepared_delta(order.id, 1, canteen_staff.id)) == [1, 1]
        assert service.get_order(order.id).status == OrderStatus.READY
        assert _prepared(service.set_item_prepared_delta(order.id, -1, canteen_staff.id)) == [1, 0]

    def test_bounds_are_no_ops(self, db_session, make_order):
        order = make_order(items=[("Burger", 1, 0)])
        service = FulfillmentService(db_session)
        result = service.set_item_prepared_delta(order.id, -1)
        assert _prepared(result) == [0]
        assert result.version == 1

        service.set_item_prepared_delta(order.id, 1)
        result = service.set_item_prepared_delta(order.id, 1)
        assert _prepared(result) == [1]
        assert result.version == 2

    def test_terminal_order_is_rejected(self, db_session, make_order):
        order = make_order(status=OrderStatus.COLLECTED)
        with pytest.raises(InvalidState):
            FulfillmentService(db_session).set_item_prepared_delta(order.id, 1)

    def test_unknown_order(self, db_session):
        with pytest.raises(NotFound):
            FulfillmentService(db_session).set_item_prepared_delta(4040, 1)


class TestSetStatus:

    def test_override_bypasses_derived_status(self, db_session, make_order, canteen_staff):
        order = make_order(items=[("Burger", 2, 0)])
        result = FulfillmentService(db_session).set_status(order.id, "ready", canteen_staff.id)
        assert result.status == OrderStatus.READY
        assert _prepared(result) == [0]

    def test_preparing_records_staff(self, db_session, make_order, canteen_staff):
        order = make_order()
        result = FulfillmentService(db_session).set_status(order.id, "preparing", canteen_staff.id)
        assert result.prep_by == canteen_staff.id

    def test_collected_stamps_collector(self, db_session, make_order, canteen_staff):
        order = make_order(items=[("Burger", 1, 1)])
        result = FulfillmentService(db_session).set_status(
            order.id, "collected", canteen_staff.id, collected_by_reg_number="R2024001"
        )
        assert result.status == OrderStatus.COLLECTED
        assert result.collected_at is not None
        assert result.collected_by_reg_number == "R2024001"
        assert result.collected_by_operator == canteen_staff.id

    def test_terminal_orders_stay_terminal(self, db_session, make_order):
        order = make_order(status=OrderStatus.CANCELLED)
        with pytest.raises(InvalidState):
            FulfillmentService(db_session).set_status(order.id, "placed")

    def test_unknown_status(self, db_session, make_order):
        order = make_order()
        with pytest.raises(InvalidStatus):
            FulfillmentService(db_session).set_status(order.id, "teleported")

    def test_set_collected_by_requires_reg_number(self, db_session, make_order):
        order = make_order()
        with pytest.raises(ValidationError):
            FulfillmentService(db_session).set_collected_by(order.id, " ")

    def test_active_orders_excludes_terminal(self, db_session, make_order):
        live = make_order()
        make_order(status=OrderStatus.COLLECTED)
        assert [o.id for o in FulfillmentService(db_session).active_orders()] == [live.id]
