"""Tests for the pickup counter."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from rivercafe.core.config import settings
from rivercafe.core.errors import Expired, InvalidState, NotFound, ValidationError
from rivercafe.core.timeutils import ensure_aware, get_zone, utcnow
from rivercafe.models import AuditLogEntry, ExternalCode, OrderStatus
from rivercafe.services.collection_service import CollectionService


class TestCollect:

    def test_collect_ready_order_by_id(self, db_session, make_order, student, canteen_staff):
        order = make_order(items=[("Burger", 1, 1)], user=student)
        result = CollectionService(db_session).collect(
            order_id=order.id, collected_by_reg_number=student.reg_number, actor_id=canteen_staff.id
        )

        assert result.order.status == OrderStatus.COLLECTED
        assert result.order.collected_at is not None
        assert result.order.collected_by_reg_number == student.reg_number
        assert result.order.collected_by_operator == canteen_staff.id
        assert db_session.scalars(
            select(AuditLogEntry).where(AuditLogEntry.action == "collect_order")
        ).one().document_id == str(order.id)

    def test_preparing_orders_can_be_collected(self, db_session, make_order):
        order = make_order(items=[("Burger", 2, 1)])
        assert CollectionService(db_session).collect(order_id=order.id).order.status == OrderStatus.COLLECTED

    def test_collect_by_code(self, db_session, make_order):
        order = make_order(items=[("Burger", 1, 1)], code="RC-AB12")
        result = CollectionService(db_session).collect(code=" RC-AB12 ")
        assert result.order.id == order.id

    def test_second_collection_is_rejected(self, db_session, make_order):
        order = make_order(items=[("Burger", 1, 1)])
        service = CollectionService(db_session)
        first = service.collect(order_id=order.id)
        collected_at = first.order.collected_at

        with pytest.raises(InvalidState) as exc_info:
            service.collect(order_id=order.id)
        assert exc_info.value.extra["status"] == "collected"
        db_session.refresh(order)
        assert order.collected_at == collected_at

    def test_placed_order_cannot_be_collected(self, db_session, make_order):
        order = make_order(items=[("Burger", 1, 0)])
        with pytest.raises(InvalidState):
            CollectionService(db_session).collect(order_id=order.id)

    def test_existing_collection_time_is_kept(self, db_session, make_order):
        earlier = utcnow() - timedelta(hours=2)
        order = make_order(items=[("Burger", 1, 1)])
        order.collected_at = earlier
        db_session.commit()

        result = CollectionService(db_session).collect(order_id=order.id)
        assert abs(ensure_aware(result.order.collected_at) - earlier) < timedelta(seconds=1)

    def test_expired_code(self, db_session, make_order):
        order = make_order(items=[("Burger", 1, 1)], external=True,
                           expires_at=utcnow() - timedelta(minutes=1))
        with pytest.raises(Expired):
            CollectionService(db_session).collect(order_id=order.id)
        db_session.refresh(order)
        assert order.status == OrderStatus.READY

    def test_missing_reference(self, db_session):
        with pytest.raises(ValidationError):
            CollectionService(db_session).collect()

    def test_unknown_order(self, db_session):
        with pytest.raises(NotFound):
            CollectionService(db_session).collect(code="RC-ZZZZ")


class TestExternalCodes:

    @pytest.fixture
    def external_order(self, db_session, make_order, admin):
        order = make_order(
            items=[("Burger", 1, 1)], code="RC-EXT1", external=True,
            expires_at=utcnow() + timedelta(hours=1), issued_to_name="Visiting parent",
        )
        db_session.add(ExternalCode(
            code=order.code, order_id=order.id, issued_to_name="Visiting parent",
            issued_by=admin.id, expires_at=order.expires_at,
        ))
        db_session.commit()
        return order

    def test_code_is_used_once(self, db_session, external_order):
        result = CollectionService(db_session).collect(code="RC-EXT1", collected_by_reg_number="CASH")

        assert result.issued_to_name == "Visiting parent"
        ext = db_session.scalars(select(ExternalCode).where(ExternalCode.code == "RC-EXT1")).one()
        assert ext.used is True
        assert ext.used_at is not None
        assert ext.used_by_reg_number == "CASH"

        with pytest.raises(InvalidState):
            CollectionService(db_session).collect(code="RC-EXT1")


class TestLookups:

    def test_lookup_by_code(self, db_session, make_order):
        order = make_order(code="RC-LOOK")
        assert CollectionService(db_session).lookup_by_code("RC-LOOK").id == order.id

    def test_lookup_expired(self, db_session, make_order):
        make_order(code="RC-OLD1", expires_at=utcnow() - timedelta(seconds=5))
        with pytest.raises(Expired):
            CollectionService(db_session).lookup_by_code("RC-OLD1")

    def test_lookup_requires_code(self, db_session):
        with pytest.raises(ValidationError):
            CollectionService(db_session).lookup_by_code("")

    def test_list_collectable(self, db_session, make_order, make_user):
        rudo = make_user(name="Rudo Chikore", reg_number="R7001")
        ready = make_order(items=[("Burger", 1, 1)], user=rudo)
        preparing = make_order(items=[("Burger", 2, 1)])
        make_order(items=[("Burger", 1, 0)])
        make_order(items=[("Burger", 1, 1)], status=OrderStatus.COLLECTED)
        make_order(items=[("Burger", 1, 1)], expires_at=utcnow() - timedelta(minutes=5))

        service = CollectionService(db_session)
        assert [o.id for o in service.list_collectable()] == [ready.id, preparing.id]
        assert [o.id for o in service.list_collectable(q="rudo")] == [ready.id]
        assert [o.id for o in service.list_collectable(q="R7001")] == [ready.id]

    def test_list_collectable_by_date(self, db_session, make_order):
        today = make_order(items=[("Burger", 1, 1)], created_at=utcnow())
        make_order(items=[("Burger", 1, 1)], created_at=utcnow() - timedelta(days=3))

        local_today = utcnow().astimezone(get_zone(settings.timezone)).date()
        found = CollectionService(db_session).list_collectable(on_date=local_today)
        assert [o.id for o in found] == [today.id]
