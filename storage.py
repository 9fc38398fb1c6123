"""
Entity Store Interface shared by every storage backend.

Entities cross this boundary as plain dicts (snake_case keys, opaque string
``id``, timezone-aware UTC datetimes) so route handlers can return them as JSON
without a mapping layer. Mutations are deliberately narrow: each ``update_*``
method names the one business transition it performs.

Chat, change requests and project workspace operations live in separate
capability segments. A backend supports a segment only by subclassing it;
``require_capability`` is the single gate callers go through.
"""
import copy
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar, Union

Record = Dict[str, Any]


# Errors

class StoreError(Exception):
    """Base class for storage-layer failures."""


class EntityNotFound(StoreError):
    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class InvoiceNotAllowed(StoreError):
    """Raised when an invoice is requested for an order that is not paid."""


class UnsupportedCapability(StoreError):
    def __init__(self, backend: str, capability: str):
        super().__init__(f"{capability} is not supported by the {backend} backend")
        self.backend = backend
        self.capability = capability


# Helpers

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite and pymongo hand back naive datetimes that are already UTC
    if value is None or not isinstance(value, datetime):
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def generate_number(prefix: str) -> str:
    """Business identifier such as ``ORD-1718000000000-9F2A1C``."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(3).upper()}"


def is_discount_valid(code: Optional[Record], now: Optional[datetime] = None) -> bool:
    if not code or not code.get("is_active"):
        return False
    expires_at = as_utc(code.get("expires_at"))
    if expires_at is not None and (now or utcnow()) > expires_at:
        return False
    return True


def average_rating(reviews: List[Record]) -> float:
    if not reviews:
        return 0
    total = sum(r.get("rating", 0) for r in reviews)
    return round(total / len(reviews), 1)


@dataclass(frozen=True)
class ValidService:
    service_id: str


@dataclass(frozen=True)
class MissingService:
    requested_id: Optional[str]

    @property
    def service_id(self) -> None:
        return None


ServiceRef = Union[ValidService, MissingService]


def resolve_service_ref(requested_id: Optional[str], service: Optional[Record]) -> ServiceRef:
    """An order pointing at an unknown service keeps a null link instead of failing."""
    if requested_id and service is not None:
        return ValidService(service["id"])
    return MissingService(requested_id)


def build_invoice(order: Record) -> Record:
    """Snapshot of the order taken at invoicing time."""
    if order.get("payment_status") != "completed":
        raise InvoiceNotAllowed(f"Order {order.get('order_number')} is not paid")
    return {
        "invoice_number": generate_number("INV"),
        "order_id": order["id"],
        "client_id": order.get("client_id"),
        "customer_name": order["customer_name"],
        "customer_email": order["customer_email"],
        "customer_phone": order.get("customer_phone"),
        "service_name": order["service_name"],
        "amount": order["price"],
        "payment_method": order.get("payment_method"),
        "paid_at": utcnow(),
    }


# Field layout of every entity family, with defaults. Backends without a fixed
# schema build records from this table so all backends return the same keys.
FIELDS: Dict[str, Dict[str, Any]] = {
    "service": {
        "name": None, "description": None, "price": 0, "original_price": None,
        "category": None, "subcategory": None, "features": [], "is_active": True,
        "is_featured": False,
    },
    "order": {
        "order_number": None, "client_id": None, "customer_name": None,
        "customer_email": None, "customer_phone": None, "service_id": None,
        "service_name": None, "price": 0, "description": None, "status": "pending",
        "payment_method": None, "payment_status": "pending",
    },
    "invoice": {
        "invoice_number": None, "order_id": None, "client_id": None,
        "customer_name": None, "customer_email": None, "customer_phone": None,
        "service_name": None, "amount": 0, "payment_method": None, "paid_at": None,
    },
    "consultation": {
        "name": None, "email": None, "phone": None, "project_type": None,
        "description": None, "status": "pending",
    },
    "contact_message": {
        "name": None, "email": None, "phone": None, "message": None, "status": "pending",
    },
    "student": {
        "full_name": None, "email": None, "password": None, "phone": None, "age": None,
        "selected_language": None, "learning_goal": None, "free_courses_taken": 0,
    },
    "client": {
        "full_name": None, "email": None, "password": None, "phone": None,
        "website_type": None, "budget": None, "website_idea": None,
    },
    "employee": {
        "employee_number": None, "full_name": None, "email": None, "password": None,
        "position": None, "job_title": None, "photo_url": None, "is_admin": False,
    },
    "course": {
        "name": None, "language": None, "description": None, "price": 0,
        "original_price": None, "is_free": True, "is_active": True,
    },
    "lesson": {
        "course_id": None, "title": None, "description": None, "order": 0,
        "video_url": None, "content": None, "duration": None, "is_active": True,
    },
    "lesson_progress": {
        "enrollment_id": None, "lesson_id": None, "is_completed": False, "completed_at": None,
    },
    "quiz": {
        "lesson_id": None, "course_id": None, "title": None, "description": None,
        "questions": [], "passing_score": 70, "is_final_exam": False, "is_active": True,
    },
    "quiz_attempt": {
        "enrollment_id": None, "quiz_id": None, "answers": {}, "score": 0,
        "passed": False, "attempt_number": 1,
    },
    "enrollment": {
        "student_id": None, "course_id": None, "progress": 0, "status": "active",
        "final_exam_score": None, "completed_at": None,
    },
    "certificate": {
        "certificate_number": None, "student_id": None, "course_id": None,
        "student_name": None, "course_name": None, "final_score": 0,
        "status": "pending", "approved_by": None, "approved_at": None,
    },
    "project": {
        "client_id": None, "order_id": None, "project_name": None, "website_idea": None,
        "status": "analysis", "days_remaining": None, "target_date": None,
        "domain": None, "email": None, "tools_used": [], "assigned_employees": [],
    },
    "discount_code": {
        "code": None, "discount_percentage": 0, "is_active": True, "expires_at": None,
    },
    "employee_task": {
        "employee_id": None, "project_id": None, "title": None, "is_completed": False,
        "hours_remaining": None, "notes": None,
    },
    "review": {
        "user_id": None, "user_type": None, "user_name": None, "target_id": None,
        "target_type": None, "rating": 0, "comment": None, "is_approved": False,
    },
    "notification": {
        "user_id": None, "user_type": None, "title": None, "message": None,
        "type": "info", "is_read": False, "link": None,
    },
    "chat_conversation": {
        "project_id": None, "client_id": None, "employee_id": None, "last_message_at": None,
    },
    "chat_message": {
        "conversation_id": None, "sender_id": None, "sender_type": None,
        "content": None, "is_read": False,
    },
    "modification_request": {
        "project_id": None, "client_id": None, "title": None, "description": None,
        "priority": "normal", "status": "pending", "assigned_to": None,
    },
    "feature_request": {
        "project_id": None, "client_id": None, "title": None, "description": None,
        "status": "pending", "admin_notes": None, "estimated_cost": None,
        "estimated_days": None,
    },
    "project_file": {
        "project_id": None, "uploaded_by": None, "uploader_type": None,
        "file_name": None, "file_url": None, "file_type": None, "description": None,
    },
    "project_question": {
        "project_id": None, "question": None, "category": None, "order": 0,
        "answer": None, "answered_at": None,
    },
}

# Entities whose mutations bump ``updated_at``
TRACKS_UPDATES = {"order", "project", "employee_task", "modification_request", "feature_request"}


def new_record(entity: str, data: Record, now: Optional[datetime] = None) -> Record:
    """Fill a create payload out to the entity's full field layout (without ``id``)."""
    now = now or utcnow()
    record = {}
    for key, default in FIELDS[entity].items():
        value = data.get(key)
        if value is None:
            value = default
        record[key] = as_utc(value) if isinstance(value, datetime) else copy.deepcopy(value)
    record["created_at"] = as_utc(data.get("created_at")) or now
    if entity in TRACKS_UPDATES:
        record["updated_at"] = as_utc(data.get("updated_at")) or now
    return record


DEFAULT_PROJECT_QUESTIONS = [
    ("What is the main goal of the website?", "general"),
    ("Who is the target audience?", "general"),
    ("Which pages or sections do you need?", "content"),
    ("Do you have a preferred color scheme or brand identity?", "design"),
    ("Are there websites you like that we can use as a reference?", "design"),
    ("Do you already own a domain name?", "technical"),
    ("Which payment methods should be supported, if any?", "technical"),
]


# Interface

class EntityStore(ABC):
    backend_name = "abstract"

    def initialize(self):
        """Idempotent first-boot work (schema, seed data)."""

    def close(self):
        pass

    # Services
    @abstractmethod
    def list_services(self) -> List[Record]: ...

    @abstractmethod
    def get_service(self, service_id: str) -> Optional[Record]: ...

    @abstractmethod
    def create_service(self, data: Record) -> Record: ...

    # Orders
    @abstractmethod
    def list_orders(self) -> List[Record]: ...

    @abstractmethod
    def get_order(self, order_id: str) -> Optional[Record]: ...

    @abstractmethod
    def get_order_by_number(self, order_number: str) -> Optional[Record]: ...

    @abstractmethod
    def create_order(self, data: Record) -> Record: ...

    @abstractmethod
    def update_order_status(self, order_id: str, status: str) -> Optional[Record]: ...

    @abstractmethod
    def update_order_payment(self, order_id: str, payment_method: Optional[str],
                             payment_status: str) -> Optional[Record]: ...

    @abstractmethod
    def complete_order_payment(self, order_id: str,
                               payment_method: Optional[str]) -> Optional[Tuple[Record, Record]]: ...

    # Invoices
    @abstractmethod
    def create_invoice(self, order_id: str) -> Record: ...

    @abstractmethod
    def get_invoice(self, invoice_id: str) -> Optional[Record]: ...

    @abstractmethod
    def get_order_invoice(self, order_id: str) -> Optional[Record]: ...

    @abstractmethod
    def list_invoices(self) -> List[Record]: ...

    # Consultations and contact messages
    @abstractmethod
    def create_consultation(self, data: Record) -> Record: ...

    @abstractmethod
    def list_consultations(self) -> List[Record]: ...

    @abstractmethod
    def create_contact_message(self, data: Record) -> Record: ...

    @abstractmethod
    def list_contact_messages(self) -> List[Record]: ...

    # Students
    @abstractmethod
    def get_student(self, student_id: str) -> Optional[Record]: ...

    @abstractmethod
    def get_student_by_email(self, email: str) -> Optional[Record]: ...

    @abstractmethod
    def list_students(self) -> List[Record]: ...

    @abstractmethod
    def create_student(self, data: Record) -> Record: ...

    @abstractmethod
    def update_student_free_courses(self, student_id: str, count: int) -> Optional[Record]: ...

    # Clients
    @abstractmethod
    def get_client(self, client_id: str) -> Optional[Record]: ...

    @abstractmethod
    def get_client_by_email(self, email: str) -> Optional[Record]: ...

    @abstractmethod
    def list_clients(self) -> List[Record]: ...

    @abstractmethod
    def create_client(self, data: Record) -> Record: ...

    @abstractmethod
    def get_client_orders(self, client_id: str) -> List[Record]: ...

    # Employees
    @abstractmethod
    def get_employee(self, employee_id: str) -> Optional[Record]: ...

    @abstractmethod
    def get_employee_by_email(self, email: str) -> Optional[Record]: ...

    @abstractmethod
    def list_employees(self) -> List[Record]: ...

    @abstractmethod
    def create_employee(self, data: Record) -> Record: ...

    @abstractmethod
    def update_employee_photo(self, employee_id: str, photo_url: str) -> Optional[Record]: ...

    # Courses, lessons, quizzes
    @abstractmethod
    def list_courses(self) -> List[Record]: ...

    @abstractmethod
    def get_course(self, course_id: str) -> Optional[Record]: ...

    @abstractmethod
    def create_course(self, data: Record) -> Record: ...

    @abstractmethod
    def get_course_lessons(self, course_id: str) -> List[Record]: ...

    @abstractmethod
    def get_lesson(self, lesson_id: str) -> Optional[Record]: ...

    @abstractmethod
    def create_lesson(self, data: Record) -> Record: ...

    @abstractmethod
    def get_lesson_quiz(self, lesson_id: str) -> Optional[Record]: ...

    @abstractmethod
    def get_course_final_exam(self, course_id: str) -> Optional[Record]: ...

    @abstractmethod
    def create_quiz(self, data: Record) -> Record: ...

    @abstractmethod
    def update_lesson_progress(self, enrollment_id: str, lesson_id: str,
                               is_completed: bool) -> Record: ...

    @abstractmethod
    def get_enrollment_progress(self, enrollment_id: str) -> List[Record]: ...

    @abstractmethod
    def create_quiz_attempt(self, data: Record) -> Record: ...

    @abstractmethod
    def get_enrollment_quiz_attempts(self, enrollment_id: str) -> List[Record]: ...

    # Enrollments
    @abstractmethod
    def get_enrollment(self, enrollment_id: str) -> Optional[Record]: ...

    @abstractmethod
    def list_enrollments(self) -> List[Record]: ...

    @abstractmethod
    def get_student_enrollments(self, student_id: str) -> List[Record]: ...

    @abstractmethod
    def create_enrollment(self, data: Record) -> Record: ...

    @abstractmethod
    def update_enrollment_progress(self, enrollment_id: str, progress: int) -> Optional[Record]: ...

    @abstractmethod
    def update_enrollment_exam_score(self, enrollment_id: str, score: int) -> Optional[Record]: ...

    @abstractmethod
    def complete_enrollment(self, enrollment_id: str) -> Optional[Record]: ...

    # Certificates
    @abstractmethod
    def get_certificate(self, certificate_id: str) -> Optional[Record]: ...

    @abstractmethod
    def get_certificate_by_number(self, certificate_number: str) -> Optional[Record]: ...

    @abstractmethod
    def get_student_certificates(self, student_id: str) -> List[Record]: ...

    @abstractmethod
    def create_certificate(self, data: Record) -> Record: ...

    @abstractmethod
    def approve_certificate(self, certificate_id: str, approved_by: str) -> Optional[Record]: ...

    # Projects
    @abstractmethod
    def get_project(self, project_id: str) -> Optional[Record]: ...

    @abstractmethod
    def list_projects(self) -> List[Record]: ...

    @abstractmethod
    def get_client_projects(self, client_id: str) -> List[Record]: ...

    @abstractmethod
    def create_project(self, data: Record) -> Record: ...

    @abstractmethod
    def update_project_status(self, project_id: str, status: str) -> Optional[Record]: ...

    @abstractmethod
    def update_project_idea(self, project_id: str, idea: str) -> Optional[Record]: ...

    @abstractmethod
    def update_project_days_remaining(self, project_id: str, days: int) -> Optional[Record]: ...

    # Discount codes
    @abstractmethod
    def get_discount_code(self, code: str) -> Optional[Record]: ...

    def validate_discount_code(self, code: str, now: Optional[datetime] = None) -> Optional[Record]:
        discount = self.get_discount_code(code)
        return discount if is_discount_valid(discount, now) else None

    # Employee tasks
    @abstractmethod
    def list_employee_tasks(self) -> List[Record]: ...

    @abstractmethod
    def get_employee_tasks(self, employee_id: str) -> List[Record]: ...

    @abstractmethod
    def create_employee_task(self, data: Record) -> Record: ...

    @abstractmethod
    def update_employee_task(self, task_id: str, is_completed: Optional[bool] = None,
                             hours_remaining: Optional[int] = None) -> Optional[Record]: ...

    # Reviews
    @abstractmethod
    def get_reviews(self, target_id: str, target_type: str) -> List[Record]: ...

    @abstractmethod
    def create_review(self, data: Record) -> Record: ...

    @abstractmethod
    def approve_review(self, review_id: str) -> Optional[Record]: ...

    def get_average_rating(self, target_id: str, target_type: str) -> float:
        return average_rating(self.get_reviews(target_id, target_type))

    # Notifications
    @abstractmethod
    def get_user_notifications(self, user_id: str, user_type: str) -> List[Record]: ...

    @abstractmethod
    def create_notification(self, data: Record) -> Record: ...

    @abstractmethod
    def mark_notification_read(self, notification_id: str) -> Optional[Record]: ...

    @abstractmethod
    def mark_all_notifications_read(self, user_id: str, user_type: str): ...

    @abstractmethod
    def get_unread_notification_count(self, user_id: str, user_type: str) -> int: ...

    # Reporting
    @abstractmethod
    def get_dashboard_stats(self, now: Optional[datetime] = None) -> Record: ...


class ChatStore(ABC):
    @abstractmethod
    def create_chat_conversation(self, data: Record) -> Record: ...

    @abstractmethod
    def get_chat_conversation(self, conversation_id: str) -> Optional[Record]: ...

    @abstractmethod
    def get_client_conversations(self, client_id: str) -> List[Record]: ...

    @abstractmethod
    def get_employee_conversations(self, employee_id: str) -> List[Record]: ...

    @abstractmethod
    def get_project_conversation(self, project_id: str) -> Optional[Record]: ...

    @abstractmethod
    def create_chat_message(self, data: Record) -> Record: ...

    @abstractmethod
    def get_chat_messages(self, conversation_id: str) -> List[Record]: ...

    @abstractmethod
    def mark_messages_read(self, conversation_id: str, reader_id: str) -> int: ...

    @abstractmethod
    def get_unread_messages_count(self, user_id: str, user_type: str) -> int: ...


class RequestStore(ABC):
    @abstractmethod
    def create_modification_request(self, data: Record) -> Record: ...

    @abstractmethod
    def get_modification_request(self, request_id: str) -> Optional[Record]: ...

    @abstractmethod
    def get_project_modification_requests(self, project_id: str) -> List[Record]: ...

    @abstractmethod
    def get_client_modification_requests(self, client_id: str) -> List[Record]: ...

    @abstractmethod
    def list_modification_requests(self) -> List[Record]: ...

    @abstractmethod
    def update_modification_request_status(self, request_id: str, status: str,
                                           assigned_to: Optional[str] = None) -> Optional[Record]: ...

    @abstractmethod
    def create_feature_request(self, data: Record) -> Record: ...

    @abstractmethod
    def get_feature_request(self, request_id: str) -> Optional[Record]: ...

    @abstractmethod
    def get_project_feature_requests(self, project_id: str) -> List[Record]: ...

    @abstractmethod
    def get_client_feature_requests(self, client_id: str) -> List[Record]: ...

    @abstractmethod
    def list_feature_requests(self) -> List[Record]: ...

    @abstractmethod
    def update_feature_request_status(self, request_id: str, status: str,
                                      admin_notes: Optional[str] = None,
                                      estimated_cost: Optional[int] = None,
                                      estimated_days: Optional[int] = None) -> Optional[Record]: ...

    def get_all_pending_requests(self) -> Record:
        return {
            "modifications": [r for r in self.list_modification_requests() if r["status"] == "pending"],
            "features": [r for r in self.list_feature_requests() if r["status"] == "pending"],
        }


class ProjectWorkspaceStore(ABC):
    @abstractmethod
    def create_project_file(self, data: Record) -> Record: ...

    @abstractmethod
    def get_project_files(self, project_id: str) -> List[Record]: ...

    @abstractmethod
    def delete_project_file(self, file_id: str) -> bool: ...

    @abstractmethod
    def create_project_question(self, data: Record) -> Record: ...

    @abstractmethod
    def get_project_questions(self, project_id: str) -> List[Record]: ...

    @abstractmethod
    def answer_project_question(self, question_id: str, answer: str) -> Optional[Record]: ...

    def initialize_project_questions(self, project_id: str) -> List[Record]:
        existing = self.get_project_questions(project_id)
        if existing:
            return existing
        for order, (question, category) in enumerate(DEFAULT_PROJECT_QUESTIONS, start=1):
            self.create_project_question({
                "project_id": project_id,
                "question": question,
                "category": category,
                "order": order,
            })
        return self.get_project_questions(project_id)


Segment = TypeVar("Segment")

CAPABILITY_SEGMENTS = (ChatStore, RequestStore, ProjectWorkspaceStore)


def require_capability(store: EntityStore, segment: Type[Segment]) -> Segment:
    if not isinstance(store, segment):
        raise UnsupportedCapability(store.backend_name, segment.__name__)
    return store


def supported_capabilities(store: EntityStore) -> List[str]:
    return [seg.__name__ for seg in CAPABILITY_SEGMENTS if isinstance(store, seg)]
