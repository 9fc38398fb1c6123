"""
Document backend over pymongo.

Collections are named after the entity (``db["order"]``). Seed documents keep
their fixed string ``_id``; everything created at runtime gets an ObjectId.
Chat, change requests and the project workspace are not available here: this
class does not subclass those segments, so ``require_capability`` rejects them.
"""
import copy
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

from analytics import dashboard_stats
from seed_data import DEFAULT_COURSES, DEFAULT_DISCOUNT_CODES, DEFAULT_SERVICES
from storage import (
    FIELDS, TRACKS_UPDATES, EntityNotFound, EntityStore, Record, as_utc, build_invoice,
    generate_number, new_record, resolve_service_ref, utcnow,
)

logger = logging.getLogger(__name__)

UNIQUE_INDEXES = [
    ("order", "order_number"),
    ("invoice", "invoice_number"),
    ("invoice", "order_id"),
    ("certificate", "certificate_number"),
    ("discount_code", "code"),
    ("student", "email"),
    ("client", "email"),
    ("employee", "email"),
]


def _oid(record_id):
    if isinstance(record_id, str) and ObjectId.is_valid(record_id):
        return ObjectId(record_id)
    return record_id


def to_record(entity: str, doc: Optional[dict]) -> Optional[Record]:
    if doc is None:
        return None
    record = {"id": str(doc["_id"])}
    for key, default in FIELDS[entity].items():
        value = doc.get(key, default)
        record[key] = as_utc(value) if isinstance(value, datetime) else copy.deepcopy(value)
    record["created_at"] = as_utc(doc.get("created_at"))
    if entity in TRACKS_UPDATES:
        record["updated_at"] = as_utc(doc.get("updated_at"))
    return record


class MongoStorage(EntityStore):
    backend_name = "document"

    def __init__(self, db: Database):
        self.db = db

    def initialize(self):
        for entity, field in UNIQUE_INDEXES:
            self.db[entity].create_index([(field, ASCENDING)], unique=True)
        for entity, rows in (("service", DEFAULT_SERVICES), ("discount_code", DEFAULT_DISCOUNT_CODES),
                             ("course", DEFAULT_COURSES)):
            for row in rows:
                self.db[entity].update_one(
                    {"_id": row["id"]},
                    {"$setOnInsert": new_record(entity, row)},
                    upsert=True,
                )
        logger.info("Document storage seeded with default catalog")

    def close(self):
        self.db.client.close()

    # Generic helpers

    def _insert(self, entity: str, data: Record) -> Record:
        doc = new_record(entity, data)
        result = self.db[entity].insert_one(doc)
        doc["_id"] = result.inserted_id
        return to_record(entity, doc)

    def _get(self, entity: str, record_id: str) -> Optional[Record]:
        return to_record(entity, self.db[entity].find_one({"_id": _oid(record_id)}))

    def _find(self, entity: str, query: Optional[dict] = None, sort: str = "created_at",
              newest_first: bool = False) -> List[Record]:
        cursor = self.db[entity].find(query or {}).sort(sort, DESCENDING if newest_first else ASCENDING)
        return [to_record(entity, doc) for doc in cursor]

    def _first(self, entity: str, query: dict) -> Optional[Record]:
        return to_record(entity, self.db[entity].find_one(query))

    def _update(self, entity: str, record_id: str, **fields) -> Optional[Record]:
        if entity in TRACKS_UPDATES:
            fields["updated_at"] = utcnow()
        doc = self.db[entity].find_one_and_update(
            {"_id": _oid(record_id)},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        return to_record(entity, doc)

    # Services

    def list_services(self) -> List[Record]:
        return self._find("service", {"is_active": True})

    def get_service(self, service_id: str) -> Optional[Record]:
        return self._get("service", service_id)

    def create_service(self, data: Record) -> Record:
        return self._insert("service", data)

    # Orders

    def list_orders(self) -> List[Record]:
        return self._find("order", newest_first=True)

    def get_order(self, order_id: str) -> Optional[Record]:
        return self._get("order", order_id)

    def get_order_by_number(self, order_number: str) -> Optional[Record]:
        return self._first("order", {"order_number": order_number})

    def create_order(self, data: Record) -> Record:
        service_id = data.get("service_id")
        ref = resolve_service_ref(service_id, self.get_service(service_id) if service_id else None)
        return self._insert("order", {
            **data,
            "order_number": generate_number("ORD"),
            "service_id": ref.service_id,
            "status": "pending",
            "payment_status": "pending",
        })

    def update_order_status(self, order_id: str, status: str) -> Optional[Record]:
        return self._update("order", order_id, status=status)

    def update_order_payment(self, order_id, payment_method, payment_status):
        return self._update("order", order_id, payment_method=payment_method,
                            payment_status=payment_status)

    def complete_order_payment(self, order_id: str,
                               payment_method: Optional[str]) -> Optional[Tuple[Record, Record]]:
        # Two separate writes; analytics.orders_missing_invoice reports any gap
        order = self.update_order_payment(order_id, payment_method, "completed")
        if order is None:
            return None
        try:
            invoice = self.create_invoice(order_id)
        except Exception:
            logger.exception("Order %s marked paid but invoice creation failed", order["order_number"])
            raise
        return order, invoice

    # Invoices

    def create_invoice(self, order_id: str) -> Record:
        order = self.get_order(order_id)
        if order is None:
            raise EntityNotFound("Order", order_id)
        existing = self.get_order_invoice(order_id)
        if existing:
            return existing
        return self._insert("invoice", build_invoice(order))

    def get_invoice(self, invoice_id: str) -> Optional[Record]:
        return self._get("invoice", invoice_id)

    def get_order_invoice(self, order_id: str) -> Optional[Record]:
        return self._first("invoice", {"order_id": order_id})

    def list_invoices(self) -> List[Record]:
        return self._find("invoice", newest_first=True)

    # Consultations and contact messages

    def create_consultation(self, data: Record) -> Record:
        return self._insert("consultation", {**data, "status": "pending"})

    def list_consultations(self) -> List[Record]:
        return self._find("consultation", newest_first=True)

    def create_contact_message(self, data: Record) -> Record:
        return self._insert("contact_message", {**data, "status": "pending"})

    def list_contact_messages(self) -> List[Record]:
        return self._find("contact_message", newest_first=True)

    # Students

    def get_student(self, student_id: str) -> Optional[Record]:
        return self._get("student", student_id)

    def get_student_by_email(self, email: str) -> Optional[Record]:
        return self._first("student", {"email": email})

    def list_students(self) -> List[Record]:
        return self._find("student", newest_first=True)

    def create_student(self, data: Record) -> Record:
        return self._insert("student", {**data, "free_courses_taken": 0})

    def update_student_free_courses(self, student_id: str, count: int) -> Optional[Record]:
        return self._update("student", student_id, free_courses_taken=count)

    # Clients

    def get_client(self, client_id: str) -> Optional[Record]:
        return self._get("client", client_id)

    def get_client_by_email(self, email: str) -> Optional[Record]:
        return self._first("client", {"email": email})

    def list_clients(self) -> List[Record]:
        return self._find("client", newest_first=True)

    def create_client(self, data: Record) -> Record:
        return self._insert("client", data)

    def get_client_orders(self, client_id: str) -> List[Record]:
        client = self.get_client(client_id)
        if client is None:
            return []
        return self._find("order", {"customer_email": client["email"]}, newest_first=True)

    # Employees

    def get_employee(self, employee_id: str) -> Optional[Record]:
        return self._get("employee", employee_id)

    def get_employee_by_email(self, email: str) -> Optional[Record]:
        return self._first("employee", {"email": email})

    def list_employees(self) -> List[Record]:
        return self._find("employee", newest_first=True)

    def create_employee(self, data: Record) -> Record:
        return self._insert("employee", data)

    def update_employee_photo(self, employee_id: str, photo_url: str) -> Optional[Record]:
        return self._update("employee", employee_id, photo_url=photo_url)

    # Courses, lessons, quizzes

    def list_courses(self) -> List[Record]:
        return self._find("course", {"is_active": True})

    def get_course(self, course_id: str) -> Optional[Record]:
        return self._get("course", course_id)

    def create_course(self, data: Record) -> Record:
        return self._insert("course", data)

    def get_course_lessons(self, course_id: str) -> List[Record]:
        return self._find("lesson", {"course_id": course_id}, sort="order")

    def get_lesson(self, lesson_id: str) -> Optional[Record]:
        return self._get("lesson", lesson_id)

    def create_lesson(self, data: Record) -> Record:
        return self._insert("lesson", data)

    def get_lesson_quiz(self, lesson_id: str) -> Optional[Record]:
        return self._first("quiz", {"lesson_id": lesson_id, "is_final_exam": False})

    def get_course_final_exam(self, course_id: str) -> Optional[Record]:
        return self._first("quiz", {"course_id": course_id, "is_final_exam": True})

    def create_quiz(self, data: Record) -> Record:
        return self._insert("quiz", data)

    def update_lesson_progress(self, enrollment_id: str, lesson_id: str, is_completed: bool) -> Record:
        completed_at = utcnow() if is_completed else None
        existing = self._first("lesson_progress", {"enrollment_id": enrollment_id, "lesson_id": lesson_id})
        if existing:
            return self._update("lesson_progress", existing["id"],
                                is_completed=is_completed, completed_at=completed_at)
        return self._insert("lesson_progress", {
            "enrollment_id": enrollment_id,
            "lesson_id": lesson_id,
            "is_completed": is_completed,
            "completed_at": completed_at,
        })

    def get_enrollment_progress(self, enrollment_id: str) -> List[Record]:
        return self._find("lesson_progress", {"enrollment_id": enrollment_id})

    def create_quiz_attempt(self, data: Record) -> Record:
        return self._insert("quiz_attempt", data)

    def get_enrollment_quiz_attempts(self, enrollment_id: str) -> List[Record]:
        return self._find("quiz_attempt", {"enrollment_id": enrollment_id})

    # Enrollments

    def get_enrollment(self, enrollment_id: str) -> Optional[Record]:
        return self._get("enrollment", enrollment_id)

    def list_enrollments(self) -> List[Record]:
        return self._find("enrollment")

    def get_student_enrollments(self, student_id: str) -> List[Record]:
        return self._find("enrollment", {"student_id": student_id})

    def create_enrollment(self, data: Record) -> Record:
        return self._insert("enrollment", {**data, "progress": 0, "status": "active"})

    def update_enrollment_progress(self, enrollment_id: str, progress: int) -> Optional[Record]:
        return self._update("enrollment", enrollment_id, progress=progress)

    def update_enrollment_exam_score(self, enrollment_id: str, score: int) -> Optional[Record]:
        return self._update("enrollment", enrollment_id, final_exam_score=score)

    def complete_enrollment(self, enrollment_id: str) -> Optional[Record]:
        return self._update("enrollment", enrollment_id, status="completed", progress=100,
                            completed_at=utcnow())

    # Certificates

    def get_certificate(self, certificate_id: str) -> Optional[Record]:
        return self._get("certificate", certificate_id)

    def get_certificate_by_number(self, certificate_number: str) -> Optional[Record]:
        return self._first("certificate", {"certificate_number": certificate_number})

    def get_student_certificates(self, student_id: str) -> List[Record]:
        return self._find("certificate", {"student_id": student_id})

    def create_certificate(self, data: Record) -> Record:
        return self._insert("certificate", {
            **data,
            "certificate_number": generate_number("CERT"),
            "status": "pending",
        })

    def approve_certificate(self, certificate_id: str, approved_by: str) -> Optional[Record]:
        return self._update("certificate", certificate_id, status="approved",
                            approved_by=approved_by, approved_at=utcnow())

    # Projects

    def get_project(self, project_id: str) -> Optional[Record]:
        return self._get("project", project_id)

    def list_projects(self) -> List[Record]:
        return self._find("project", newest_first=True)

    def get_client_projects(self, client_id: str) -> List[Record]:
        return self._find("project", {"client_id": client_id}, newest_first=True)

    def create_project(self, data: Record) -> Record:
        return self._insert("project", data)

    def update_project_status(self, project_id: str, status: str) -> Optional[Record]:
        return self._update("project", project_id, status=status)

    def update_project_idea(self, project_id: str, idea: str) -> Optional[Record]:
        return self._update("project", project_id, website_idea=idea)

    def update_project_days_remaining(self, project_id: str, days: int) -> Optional[Record]:
        return self._update("project", project_id, days_remaining=days)

    # Discount codes

    def get_discount_code(self, code: str) -> Optional[Record]:
        return self._first("discount_code", {"code": code})

    # Employee tasks

    def list_employee_tasks(self) -> List[Record]:
        return self._find("employee_task")

    def get_employee_tasks(self, employee_id: str) -> List[Record]:
        return self._find("employee_task", {"employee_id": employee_id})

    def create_employee_task(self, data: Record) -> Record:
        return self._insert("employee_task", data)

    def update_employee_task(self, task_id, is_completed=None, hours_remaining=None):
        fields = {}
        if is_completed is not None:
            fields["is_completed"] = is_completed
        if hours_remaining is not None:
            fields["hours_remaining"] = hours_remaining
        return self._update("employee_task", task_id, **fields)

    # Reviews

    def get_reviews(self, target_id: str, target_type: str) -> List[Record]:
        return self._find("review", {"target_id": target_id, "target_type": target_type, "is_approved": True})

    def create_review(self, data: Record) -> Record:
        return self._insert("review", {**data, "is_approved": False})

    def approve_review(self, review_id: str) -> Optional[Record]:
        return self._update("review", review_id, is_approved=True)

    # Notifications

    def get_user_notifications(self, user_id: str, user_type: str) -> List[Record]:
        return self._find("notification", {"user_id": user_id, "user_type": user_type}, newest_first=True)

    def create_notification(self, data: Record) -> Record:
        return self._insert("notification", {**data, "is_read": False})

    def mark_notification_read(self, notification_id: str) -> Optional[Record]:
        return self._update("notification", notification_id, is_read=True)

    def mark_all_notifications_read(self, user_id: str, user_type: str):
        self.db["notification"].update_many(
            {"user_id": user_id, "user_type": user_type},
            {"$set": {"is_read": True}},
        )

    def get_unread_notification_count(self, user_id: str, user_type: str) -> int:
        return self.db["notification"].count_documents(
            {"user_id": user_id, "user_type": user_type, "is_read": False}
        )

    # Reporting

    def get_dashboard_stats(self, now: Optional[datetime] = None) -> Record:
        orders = self._find("order")
        projects = self._find("project")
        enrollments = self._find("enrollment", {"status": "completed"})
        stats = dashboard_stats(orders, [], [], projects, enrollments, now)
        stats["total_students"] = self.db["student"].count_documents({})
        stats["total_clients"] = self.db["client"].count_documents({})
        return stats
