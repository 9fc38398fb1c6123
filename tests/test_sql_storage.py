from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

import sql_storage
from sql_models import Client, Course, DiscountCode, Order, Service

from helpers import client_payload, order_payload


def count(store, model):
    with store.Session() as session:
        return session.scalar(select(func.count()).select_from(model))


class TestSeeding:

    def test_double_initialize_keeps_one_catalog(self, sql_store):
        before = count(sql_store, Service)
        sql_store.initialize()
        assert count(sql_store, Service) == before == 5

    def test_reseed_ignores_existing_rows(self, sql_store):
        # Empty catalog triggers a reseed; codes and courses already exist
        with sql_store.Session.begin() as session:
            session.execute(delete(Service))
        sql_store.initialize()
        assert count(sql_store, Service) == 5
        assert count(sql_store, DiscountCode) == 3
        assert count(sql_store, Course) == 4


class TestAggregates:

    def test_dashboard_stats_windowed_revenue(self, sql_store):
        old = datetime.now(timezone.utc) - timedelta(days=70)
        paid_now = sql_store.create_order(order_payload(price=300))
        paid_old = sql_store.create_order(order_payload(price=700, created_at=old))
        sql_store.create_order(order_payload(price=50))
        sql_store.complete_order_payment(paid_now["id"], "paypal")
        sql_store.complete_order_payment(paid_old["id"], "paypal")
        sql_store.update_order_status(paid_now["id"], "completed")

        stats = sql_store.get_dashboard_stats()
        assert stats["total_orders"] == 3
        assert stats["total_revenue"] == 1000
        assert stats["monthly_revenue"] == 300
        assert stats["pending_orders"] == 2

    def test_matches_in_memory_aggregation(self, sql_store, memory_store):
        for store in (sql_store, memory_store):
            order = store.create_order(order_payload(price=120))
            store.complete_order_payment(order["id"], "card")
            store.create_order(order_payload(price=80))
            project = store.create_project({"client_id": "c1", "project_name": "Site"})
            store.update_project_status(project["id"], "completed")
            enrollment = store.create_enrollment({"student_id": "s1", "course_id": "course-python"})
            store.complete_enrollment(enrollment["id"])
        assert sql_store.get_dashboard_stats() == memory_store.get_dashboard_stats()


class TestEmailJoin:

    def test_renaming_client_email_orphans_orders(self, sql_store):
        client = sql_store.create_client(client_payload())
        sql_store.create_order(order_payload())
        assert len(sql_store.get_client_orders(client["id"])) == 1

        with sql_store.Session.begin() as session:
            session.get(Client, client["id"]).email = "sara.new@example.com"

        assert sql_store.get_client_orders(client["id"]) == []
        assert len(sql_store.list_orders()) == 1


class TestTransactions:

    def test_failed_invoice_rolls_back_payment(self, sql_store, monkeypatch):
        order = sql_store.create_order(order_payload())

        def broken_invoice(order):
            raise RuntimeError("invoice numbering unavailable")

        monkeypatch.setattr(sql_storage, "build_invoice", broken_invoice)
        with pytest.raises(RuntimeError):
            sql_store.complete_order_payment(order["id"], "paypal")

        assert sql_store.get_order(order["id"])["payment_status"] == "pending"
        assert sql_store.get_order_invoice(order["id"]) is None

    def test_order_numbers_are_unique(self, sql_store):
        order = sql_store.create_order(order_payload())
        with pytest.raises(IntegrityError):
            with sql_store.Session.begin() as session:
                session.add(Order(order_number=order["order_number"], customer_name="X",
                                  customer_email="x@example.com", service_name="Site", price=1))

    def test_one_invoice_per_order(self, sql_store):
        order = sql_store.create_order(order_payload())
        sql_store.complete_order_payment(order["id"], "paypal")
        sql_store.complete_order_payment(order["id"], "paypal")
        assert len(sql_store.list_invoices()) == 1
