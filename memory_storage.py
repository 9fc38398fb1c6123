import copy
import logging
import threading
import uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

import analytics
from seed_data import DEFAULT_COURSES, DEFAULT_DISCOUNT_CODES, DEFAULT_SERVICES
from storage import (
    FIELDS, TRACKS_UPDATES, ChatStore, EntityNotFound, EntityStore, ProjectWorkspaceStore,
    Record, RequestStore, build_invoice, new_record, resolve_service_ref, generate_number, utcnow,
)

logger = logging.getLogger(__name__)


class MemoryStorage(EntityStore, ChatStore, RequestStore, ProjectWorkspaceStore):
    """
    Process-local backend: one dict per entity family keyed by id.

    Every instance owns its own state, so tests build a fresh one each time.
    Nothing survives a restart. Records handed out are copies; mutating them
    never changes what is stored.
    """

    backend_name = "memory"

    def __init__(self, seed: bool = True):
        self.tables: Dict[str, Dict[str, Record]] = {entity: {} for entity in FIELDS}
        # Route handlers run in a threadpool; compound operations hold this across steps
        self.lock = threading.RLock()
        if seed:
            self.initialize()

    # Generic table helpers

    def _insert(self, entity: str, data: Record, ignore_conflict: bool = False) -> Record:
        record = new_record(entity, data)
        # Fixed ids only come from the seed catalog
        record["id"] = (ignore_conflict and data.get("id")) or str(uuid.uuid4())
        with self.lock:
            table = self.tables[entity]
            if ignore_conflict and record["id"] in table:
                return copy.deepcopy(table[record["id"]])
            table[record["id"]] = record
            return copy.deepcopy(record)

    def _get(self, entity: str, record_id: Optional[str]) -> Optional[Record]:
        with self.lock:
            record = self.tables[entity].get(record_id)
            return copy.deepcopy(record) if record else None

    def _find(self, entity: str, where: Optional[Callable[[Record], bool]] = None,
              order_by: str = "created_at", newest_first: bool = False, **filters) -> List[Record]:
        with self.lock:
            rows = [
                r for r in self.tables[entity].values()
                if all(r.get(k) == v for k, v in filters.items()) and (where is None or where(r))
            ]
            rows = copy.deepcopy(rows)
        rows.sort(key=lambda r: r[order_by], reverse=newest_first)
        return rows

    def _first(self, entity: str, **filters) -> Optional[Record]:
        rows = self._find(entity, **filters)
        return rows[0] if rows else None

    def _update(self, entity: str, record_id: str, **fields) -> Optional[Record]:
        with self.lock:
            record = self.tables[entity].get(record_id)
            if record is None:
                return None
            record.update(fields)
            if entity in TRACKS_UPDATES:
                record["updated_at"] = utcnow()
            return copy.deepcopy(record)

    # Lifecycle

    def initialize(self):
        for service in DEFAULT_SERVICES:
            self._insert("service", service, ignore_conflict=True)
        for code in DEFAULT_DISCOUNT_CODES:
            self._insert("discount_code", code, ignore_conflict=True)
        for course in DEFAULT_COURSES:
            self._insert("course", course, ignore_conflict=True)
        logger.info("In-memory storage seeded with default catalog")

    # Services

    def list_services(self) -> List[Record]:
        return self._find("service", is_active=True)

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
        return self._first("order", order_number=order_number)

    def create_order(self, data: Record) -> Record:
        ref = resolve_service_ref(data.get("service_id"), self.get_service(data.get("service_id")))
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
        with self.lock:
            order = self.update_order_payment(order_id, payment_method, "completed")
            if order is None:
                return None
            return order, self.create_invoice(order_id)

    # Invoices

    def create_invoice(self, order_id: str) -> Record:
        with self.lock:
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
        return self._first("invoice", order_id=order_id)

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
        return self._first("student", email=email)

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
        return self._first("client", email=email)

    def list_clients(self) -> List[Record]:
        return self._find("client", newest_first=True)

    def create_client(self, data: Record) -> Record:
        return self._insert("client", data)

    def get_client_orders(self, client_id: str) -> List[Record]:
        client = self.get_client(client_id)
        if client is None:
            return []
        return self._find("order", newest_first=True, customer_email=client["email"])

    # Employees

    def get_employee(self, employee_id: str) -> Optional[Record]:
        return self._get("employee", employee_id)

    def get_employee_by_email(self, email: str) -> Optional[Record]:
        return self._first("employee", email=email)

    def list_employees(self) -> List[Record]:
        return self._find("employee", newest_first=True)

    def create_employee(self, data: Record) -> Record:
        return self._insert("employee", data)

    def update_employee_photo(self, employee_id: str, photo_url: str) -> Optional[Record]:
        return self._update("employee", employee_id, photo_url=photo_url)

    # Courses, lessons, quizzes

    def list_courses(self) -> List[Record]:
        return self._find("course", is_active=True)

    def get_course(self, course_id: str) -> Optional[Record]:
        return self._get("course", course_id)

    def create_course(self, data: Record) -> Record:
        return self._insert("course", data)

    def get_course_lessons(self, course_id: str) -> List[Record]:
        return self._find("lesson", order_by="order", course_id=course_id)

    def get_lesson(self, lesson_id: str) -> Optional[Record]:
        return self._get("lesson", lesson_id)

    def create_lesson(self, data: Record) -> Record:
        return self._insert("lesson", data)

    def get_lesson_quiz(self, lesson_id: str) -> Optional[Record]:
        return self._first("quiz", lesson_id=lesson_id, is_final_exam=False)

    def get_course_final_exam(self, course_id: str) -> Optional[Record]:
        return self._first("quiz", course_id=course_id, is_final_exam=True)

    def create_quiz(self, data: Record) -> Record:
        return self._insert("quiz", data)

    def update_lesson_progress(self, enrollment_id: str, lesson_id: str, is_completed: bool) -> Record:
        completed_at = utcnow() if is_completed else None
        with self.lock:
            existing = self._first("lesson_progress", enrollment_id=enrollment_id, lesson_id=lesson_id)
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
        return self._find("lesson_progress", enrollment_id=enrollment_id)

    def create_quiz_attempt(self, data: Record) -> Record:
        return self._insert("quiz_attempt", data)

    def get_enrollment_quiz_attempts(self, enrollment_id: str) -> List[Record]:
        return self._find("quiz_attempt", enrollment_id=enrollment_id)

    # Enrollments

    def get_enrollment(self, enrollment_id: str) -> Optional[Record]:
        return self._get("enrollment", enrollment_id)

    def list_enrollments(self) -> List[Record]:
        return self._find("enrollment")

    def get_student_enrollments(self, student_id: str) -> List[Record]:
        return self._find("enrollment", student_id=student_id)

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
        return self._first("certificate", certificate_number=certificate_number)

    def get_student_certificates(self, student_id: str) -> List[Record]:
        return self._find("certificate", student_id=student_id)

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
        return self._find("project", newest_first=True, client_id=client_id)

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
        return self._first("discount_code", code=code)

    # Employee tasks

    def list_employee_tasks(self) -> List[Record]:
        return self._find("employee_task")

    def get_employee_tasks(self, employee_id: str) -> List[Record]:
        return self._find("employee_task", employee_id=employee_id)

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
        return self._find("review", target_id=target_id, target_type=target_type, is_approved=True)

    def create_review(self, data: Record) -> Record:
        return self._insert("review", {**data, "is_approved": False})

    def approve_review(self, review_id: str) -> Optional[Record]:
        return self._update("review", review_id, is_approved=True)

    # Notifications

    def get_user_notifications(self, user_id: str, user_type: str) -> List[Record]:
        return self._find("notification", newest_first=True, user_id=user_id, user_type=user_type)

    def create_notification(self, data: Record) -> Record:
        return self._insert("notification", {**data, "is_read": False})

    def mark_notification_read(self, notification_id: str) -> Optional[Record]:
        return self._update("notification", notification_id, is_read=True)

    def mark_all_notifications_read(self, user_id: str, user_type: str):
        with self.lock:
            for record in self.tables["notification"].values():
                if record["user_id"] == user_id and record["user_type"] == user_type:
                    record["is_read"] = True

    def get_unread_notification_count(self, user_id: str, user_type: str) -> int:
        return len(self._find("notification", user_id=user_id, user_type=user_type, is_read=False))

    # Reporting

    def get_dashboard_stats(self, now: Optional[datetime] = None) -> Record:
        return analytics.dashboard_stats(
            self._find("order"), self._find("student"), self._find("client"),
            self._find("project"), self._find("enrollment"), now,
        )

    # Chat

    def create_chat_conversation(self, data: Record) -> Record:
        return self._insert("chat_conversation", data)

    def get_chat_conversation(self, conversation_id: str) -> Optional[Record]:
        return self._get("chat_conversation", conversation_id)

    def get_client_conversations(self, client_id: str) -> List[Record]:
        return self._find("chat_conversation", newest_first=True, client_id=client_id)

    def get_employee_conversations(self, employee_id: str) -> List[Record]:
        return self._find("chat_conversation", newest_first=True, employee_id=employee_id)

    def get_project_conversation(self, project_id: str) -> Optional[Record]:
        return self._first("chat_conversation", project_id=project_id)

    def create_chat_message(self, data: Record) -> Record:
        with self.lock:
            message = self._insert("chat_message", {**data, "is_read": False})
            self._update("chat_conversation", message["conversation_id"],
                         last_message_at=message["created_at"])
        return message

    def get_chat_messages(self, conversation_id: str) -> List[Record]:
        return self._find("chat_message", conversation_id=conversation_id)

    def mark_messages_read(self, conversation_id: str, reader_id: str) -> int:
        marked = 0
        with self.lock:
            for record in self.tables["chat_message"].values():
                if (record["conversation_id"] == conversation_id and record["sender_id"] != reader_id
                        and not record["is_read"]):
                    record["is_read"] = True
                    marked += 1
        return marked

    def get_unread_messages_count(self, user_id: str, user_type: str) -> int:
        key = "client_id" if user_type == "client" else "employee_id"
        conversations = {c["id"] for c in self._find("chat_conversation", **{key: user_id})}
        return len(self._find(
            "chat_message",
            where=lambda m: m["conversation_id"] in conversations and m["sender_id"] != user_id,
            is_read=False,
        ))

    # Change requests

    def create_modification_request(self, data: Record) -> Record:
        return self._insert("modification_request", {**data, "status": "pending"})

    def get_modification_request(self, request_id: str) -> Optional[Record]:
        return self._get("modification_request", request_id)

    def get_project_modification_requests(self, project_id: str) -> List[Record]:
        return self._find("modification_request", newest_first=True, project_id=project_id)

    def get_client_modification_requests(self, client_id: str) -> List[Record]:
        return self._find("modification_request", newest_first=True, client_id=client_id)

    def list_modification_requests(self) -> List[Record]:
        return self._find("modification_request", newest_first=True)

    def update_modification_request_status(self, request_id, status, assigned_to=None):
        fields = {"status": status}
        if assigned_to is not None:
            fields["assigned_to"] = assigned_to
        return self._update("modification_request", request_id, **fields)

    def create_feature_request(self, data: Record) -> Record:
        return self._insert("feature_request", {
            **data,
            "status": "pending",
            "admin_notes": None,
            "estimated_cost": None,
            "estimated_days": None,
        })

    def get_feature_request(self, request_id: str) -> Optional[Record]:
        return self._get("feature_request", request_id)

    def get_project_feature_requests(self, project_id: str) -> List[Record]:
        return self._find("feature_request", newest_first=True, project_id=project_id)

    def get_client_feature_requests(self, client_id: str) -> List[Record]:
        return self._find("feature_request", newest_first=True, client_id=client_id)

    def list_feature_requests(self) -> List[Record]:
        return self._find("feature_request", newest_first=True)

    def update_feature_request_status(self, request_id, status, admin_notes=None,
                                      estimated_cost=None, estimated_days=None):
        fields = {"status": status}
        for key, value in (("admin_notes", admin_notes), ("estimated_cost", estimated_cost),
                           ("estimated_days", estimated_days)):
            if value is not None:
                fields[key] = value
        return self._update("feature_request", request_id, **fields)

    # Project workspace

    def create_project_file(self, data: Record) -> Record:
        return self._insert("project_file", data)

    def get_project_files(self, project_id: str) -> List[Record]:
        return self._find("project_file", newest_first=True, project_id=project_id)

    def delete_project_file(self, file_id: str) -> bool:
        with self.lock:
            return self.tables["project_file"].pop(file_id, None) is not None

    def initialize_project_questions(self, project_id: str) -> List[Record]:
        with self.lock:
            return super().initialize_project_questions(project_id)

    def create_project_question(self, data: Record) -> Record:
        return self._insert("project_question", data)

    def get_project_questions(self, project_id: str) -> List[Record]:
        return self._find("project_question", order_by="order", project_id=project_id)

    def answer_project_question(self, question_id: str, answer: str) -> Optional[Record]:
        return self._update("project_question", question_id, answer=answer, answered_at=utcnow())
