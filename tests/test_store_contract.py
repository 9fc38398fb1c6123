"""
Behaviour every backend shares, run against memory, SQLite and mongomock.
"""
from datetime import datetime, timedelta, timezone

import pytest

from mongo_storage import _oid
from sql_models import Order
from storage import EntityNotFound, InvoiceNotAllowed

from helpers import client_payload, order_payload


def set_stored_price(store, order_id, price):
    if store.backend_name == "relational":
        with store.Session.begin() as session:
            session.get(Order, order_id).price = price
    elif store.backend_name == "document":
        store.db["order"].update_one({"_id": _oid(order_id)}, {"$set": {"price": price}})
    else:
        store.tables["order"][order_id]["price"] = price


class TestCatalog:

    def test_seeded_catalog(self, any_store):
        services = any_store.list_services()
        assert {s["id"] for s in services} == {"ind-1", "ind-2", "rest-1", "comp-1", "comp-2"}
        assert len(any_store.list_courses()) == 4
        assert any_store.get_discount_code("MA3K20")["discount_percentage"] == 20

    def test_initialize_twice_does_not_duplicate(self, any_store):
        any_store.initialize()
        any_store.initialize()
        assert len(any_store.list_services()) == 5
        assert len(any_store.list_courses()) == 4

    def test_features_survive_round_trip(self, any_store):
        service = any_store.create_service({"name": "Landing Page", "price": 150,
                                            "features": ["One page", "Contact form"]})
        assert any_store.get_service(service["id"])["features"] == ["One page", "Contact form"]

    def test_inactive_services_are_hidden(self, any_store):
        hidden = any_store.create_service({"name": "Retired", "price": 1, "is_active": False})
        assert hidden["id"] not in {s["id"] for s in any_store.list_services()}
        assert any_store.get_service(hidden["id"])["is_active"] is False


class TestOrders:

    def test_create_order_defaults(self, any_store):
        order = any_store.create_order(order_payload())
        assert order["status"] == "pending"
        assert order["payment_status"] == "pending"
        assert order["order_number"].startswith("ORD-")
        assert order["service_id"] == "ind-1"
        assert any_store.get_order_by_number(order["order_number"])["id"] == order["id"]

    def test_unknown_service_becomes_null_link(self, any_store):
        order = any_store.create_order(order_payload(service_id="does-not-exist"))
        assert order["service_id"] is None
        assert any_store.get_order(order["id"])["service_id"] is None

    def test_missing_ids_read_as_none(self, any_store):
        assert any_store.get_order("missing") is None
        assert any_store.update_order_status("missing", "confirmed") is None
        assert any_store.complete_order_payment("missing", "paypal") is None

    def test_orders_listed_newest_first(self, any_store):
        earlier = datetime.now(timezone.utc) - timedelta(minutes=5)
        first = any_store.create_order(order_payload(price=1, created_at=earlier))
        second = any_store.create_order(order_payload(price=2))
        ids = [o["id"] for o in any_store.list_orders()]
        assert ids.index(second["id"]) < ids.index(first["id"])

    def test_status_update(self, any_store):
        order = any_store.create_order(order_payload())
        updated = any_store.update_order_status(order["id"], "confirmed")
        assert updated["status"] == "confirmed"
        assert updated["payment_status"] == "pending"
        assert updated["updated_at"] is not None


class TestInvoices:

    def test_unpaid_order_is_rejected(self, any_store):
        order = any_store.create_order(order_payload())
        with pytest.raises(InvoiceNotAllowed):
            any_store.create_invoice(order["id"])

    def test_unknown_order_raises_not_found(self, any_store):
        with pytest.raises(EntityNotFound):
            any_store.create_invoice("missing")

    def test_complete_payment_creates_one_invoice(self, any_store):
        order = any_store.create_order(order_payload())
        paid, invoice = any_store.complete_order_payment(order["id"], "paypal")
        assert paid["payment_status"] == "completed"
        assert paid["payment_method"] == "paypal"
        assert invoice["amount"] == 500
        assert invoice["order_id"] == order["id"]

        again = any_store.create_invoice(order["id"])
        assert again["id"] == invoice["id"]
        assert len(any_store.list_invoices()) == 1

    def test_invoice_keeps_amount_after_order_changes(self, any_store):
        order = any_store.create_order(order_payload())
        _, invoice = any_store.complete_order_payment(order["id"], "bank_transfer")
        # Price has no update operation; rewrite it underneath the store
        set_stored_price(any_store, order["id"], 9999)
        any_store.update_order_status(order["id"], "cancelled")
        assert any_store.get_order(order["id"])["price"] == 9999
        assert any_store.get_invoice(invoice["id"])["amount"] == 500
        assert any_store.create_invoice(order["id"])["amount"] == 500
        assert any_store.get_order_invoice(order["id"])["customer_name"] == "Sara Ali"


class TestAccounts:

    def test_client_lookup_by_email(self, any_store):
        client = any_store.create_client(client_payload())
        assert any_store.get_client_by_email("sara@example.com")["id"] == client["id"]
        assert any_store.get_client_by_email("nobody@example.com") is None

    def test_client_orders_join_by_email(self, any_store):
        client = any_store.create_client(client_payload())
        mine = any_store.create_order(order_payload())
        any_store.create_order(order_payload(customer_email="other@example.com"))
        assert [o["id"] for o in any_store.get_client_orders(client["id"])] == [mine["id"]]
        assert any_store.get_client_orders("missing") == []

    def test_student_free_courses(self, any_store):
        student = any_store.create_student({"full_name": "Omar", "email": "omar@example.com",
                                            "password": "x"})
        assert student["free_courses_taken"] == 0
        assert any_store.update_student_free_courses(student["id"], 2)["free_courses_taken"] == 2

    def test_employee_photo(self, any_store):
        employee = any_store.create_employee({"full_name": "Lina", "email": "lina@example.com",
                                              "password": "x"})
        updated = any_store.update_employee_photo(employee["id"], "https://cdn.example.com/l.png")
        assert updated["photo_url"] == "https://cdn.example.com/l.png"
        assert updated["is_admin"] is False


class TestAcademy:

    def test_lessons_ordered_by_position(self, any_store):
        any_store.create_lesson({"course_id": "course-python", "title": "Loops", "order": 2})
        any_store.create_lesson({"course_id": "course-python", "title": "Variables", "order": 1})
        titles = [l["title"] for l in any_store.get_course_lessons("course-python")]
        assert titles == ["Variables", "Loops"]

    def test_lesson_quiz_and_final_exam(self, any_store):
        lesson = any_store.create_lesson({"course_id": "course-java", "title": "Classes", "order": 1})
        any_store.create_quiz({"lesson_id": lesson["id"], "course_id": "course-java", "title": "Q1",
                               "questions": [{"q": "What is a class?", "options": ["a", "b"], "answer": 0}]})
        any_store.create_quiz({"course_id": "course-java", "title": "Final", "is_final_exam": True})
        quiz = any_store.get_lesson_quiz(lesson["id"])
        assert quiz["title"] == "Q1"
        assert quiz["passing_score"] == 70
        assert quiz["questions"][0]["answer"] == 0
        assert any_store.get_course_final_exam("course-java")["title"] == "Final"

    def test_lesson_progress_is_upserted(self, any_store):
        enrollment = any_store.create_enrollment({"student_id": "s1", "course_id": "course-python"})
        any_store.update_lesson_progress(enrollment["id"], "l1", False)
        done = any_store.update_lesson_progress(enrollment["id"], "l1", True)
        progress = any_store.get_enrollment_progress(enrollment["id"])
        assert len(progress) == 1
        assert done["is_completed"] is True
        assert done["completed_at"] is not None

    def test_enrollment_lifecycle(self, any_store):
        enrollment = any_store.create_enrollment({"student_id": "s1", "course_id": "course-python"})
        assert (enrollment["progress"], enrollment["status"]) == (0, "active")
        assert any_store.update_enrollment_progress(enrollment["id"], 40)["progress"] == 40
        assert any_store.update_enrollment_exam_score(enrollment["id"], 88)["final_exam_score"] == 88
        completed = any_store.complete_enrollment(enrollment["id"])
        assert completed["status"] == "completed"
        assert completed["progress"] == 100
        assert completed["completed_at"] is not None
        assert [e["id"] for e in any_store.get_student_enrollments("s1")] == [enrollment["id"]]

    def test_quiz_attempts(self, any_store):
        any_store.create_quiz_attempt({"enrollment_id": "e1", "quiz_id": "q1",
                                       "answers": {"1": 0}, "score": 80, "passed": True})
        attempts = any_store.get_enrollment_quiz_attempts("e1")
        assert attempts[0]["answers"] == {"1": 0}
        assert attempts[0]["attempt_number"] == 1

    def test_certificate_requires_approval(self, any_store):
        cert = any_store.create_certificate({"student_id": "s1", "course_id": "course-python",
                                             "student_name": "Omar", "course_name": "Python",
                                             "final_score": 91})
        assert cert["status"] == "pending"
        assert cert["certificate_number"].startswith("CERT-")
        approved = any_store.approve_certificate(cert["id"], "emp-1")
        assert approved["status"] == "approved"
        assert approved["approved_by"] == "emp-1"
        assert any_store.get_certificate_by_number(cert["certificate_number"])["status"] == "approved"


class TestProjectsAndTasks:

    def test_project_defaults_and_updates(self, any_store):
        project = any_store.create_project({"client_id": "c1", "project_name": "Sara's Shop"})
        assert project["status"] == "analysis"
        assert project["assigned_employees"] == []
        assert any_store.update_project_status(project["id"], "design")["status"] == "design"
        assert any_store.update_project_idea(project["id"], "Bakery")["website_idea"] == "Bakery"
        assert any_store.update_project_days_remaining(project["id"], 12)["days_remaining"] == 12
        assert [p["id"] for p in any_store.get_client_projects("c1")] == [project["id"]]

    def test_task_fields_update_independently(self, any_store):
        task = any_store.create_employee_task({"employee_id": "e1", "title": "Header",
                                               "hours_remaining": 6})
        updated = any_store.update_employee_task(task["id"], hours_remaining=2)
        assert (updated["is_completed"], updated["hours_remaining"]) == (False, 2)
        updated = any_store.update_employee_task(task["id"], is_completed=True)
        assert (updated["is_completed"], updated["hours_remaining"]) == (True, 2)


class TestReviewsAndNotifications:

    def test_only_approved_reviews_count(self, any_store):
        base = {"user_id": "u1", "user_type": "client", "user_name": "Sara",
                "target_id": "ind-1", "target_type": "service"}
        first = any_store.create_review({**base, "rating": 5})
        any_store.create_review({**base, "rating": 1})
        assert any_store.get_reviews("ind-1", "service") == []
        assert any_store.get_average_rating("ind-1", "service") == 0
        any_store.approve_review(first["id"])
        assert any_store.get_average_rating("ind-1", "service") == 5.0

    def test_notification_read_flags(self, any_store):
        for title in ("One", "Two"):
            any_store.create_notification({"user_id": "u1", "user_type": "client",
                                           "title": title, "message": "hi"})
        any_store.create_notification({"user_id": "u2", "user_type": "client",
                                       "title": "Other", "message": "hi"})
        notes = any_store.get_user_notifications("u1", "client")
        assert any_store.get_unread_notification_count("u1", "client") == 2
        any_store.mark_notification_read(notes[0]["id"])
        assert any_store.get_unread_notification_count("u1", "client") == 1
        any_store.mark_all_notifications_read("u1", "client")
        assert any_store.get_unread_notification_count("u1", "client") == 0
        assert any_store.get_unread_notification_count("u2", "client") == 1


class TestDashboard:

    def test_end_to_end_sara(self, any_store):
        sara = any_store.create_client(client_payload())
        project = any_store.create_project({"client_id": sara["id"], "project_name": "Sara's Site"})
        assert project["status"] == "analysis"
        order = any_store.create_order(order_payload(client_id=sara["id"]))
        assert order["payment_status"] == "pending"

        any_store.complete_order_payment(order["id"], "paypal")

        assert any_store.get_order_invoice(order["id"])["amount"] == 500
        stats = any_store.get_dashboard_stats()
        assert stats["total_revenue"] == 500
        assert stats["monthly_revenue"] == 500
        assert stats["total_clients"] == 1
        assert stats["total_projects"] == 1
        assert stats["active_projects"] == 1
        assert stats["pending_orders"] == 1

    def test_empty_dashboard(self, any_store):
        stats = any_store.get_dashboard_stats()
        assert stats == {
            "total_orders": 0, "total_students": 0, "total_clients": 0, "total_projects": 0,
            "total_revenue": 0, "monthly_revenue": 0, "pending_orders": 0,
            "active_projects": 0, "completed_courses": 0,
        }
