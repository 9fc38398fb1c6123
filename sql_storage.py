"""
Relational backend over SQLAlchemy.

Runs against any SQLAlchemy engine; PostgreSQL in production and SQLite in
tests. Multi-row writes that must land together (payment plus invoice, chat
message plus conversation touch) share one transaction.
"""
import copy
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from analytics import start_of_month
from seed_data import DEFAULT_COURSES, DEFAULT_DISCOUNT_CODES, DEFAULT_SERVICES
from sql_models import (
    MODELS, Base, ChatConversation, ChatMessage, Client, Enrollment, Invoice, Notification,
    Order, Project, Service, Student,
)
from storage import (
    FIELDS, TRACKS_UPDATES, ChatStore, EntityNotFound, EntityStore, ProjectWorkspaceStore,
    Record, RequestStore, as_utc, build_invoice, generate_number, new_record,
    resolve_service_ref, utcnow,
)

logger = logging.getLogger(__name__)

DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def to_record(entity: str, row) -> Record:
    record = {"id": row.id}
    for key in FIELDS[entity]:
        value = getattr(row, key)
        record[key] = as_utc(value) if isinstance(value, datetime) else copy.deepcopy(value)
    record["created_at"] = as_utc(row.created_at)
    if entity in TRACKS_UPDATES:
        record["updated_at"] = as_utc(row.updated_at)
    return record


class SQLStorage(EntityStore, ChatStore, RequestStore, ProjectWorkspaceStore):
    backend_name = "relational"

    def __init__(self, engine: Engine):
        self.engine = engine
        self.Session = sessionmaker(bind=engine, expire_on_commit=False)

    def initialize(self):
        Base.metadata.create_all(self.engine)
        with self.Session.begin() as session:
            if session.scalar(select(func.count(Service.id))):
                logger.info("Service catalog present, skipping seed")
                return
            self._insert_ignore(session, "service", DEFAULT_SERVICES)
            self._insert_ignore(session, "discount_code", DEFAULT_DISCOUNT_CODES)
            self._insert_ignore(session, "course", DEFAULT_COURSES)
        logger.info("Relational storage seeded with default catalog")

    def close(self):
        self.engine.dispose()

    def _insert_ignore(self, session: Session, entity: str, rows: List[Record]):
        model = MODELS[entity]
        values = [{**new_record(entity, row), "id": row["id"]} for row in rows]
        insert = DIALECT_INSERTS.get(self.engine.dialect.name)
        if insert is not None:
            session.execute(insert(model).values(values).on_conflict_do_nothing())
            return
        existing = set(session.scalars(select(model.id).where(model.id.in_([v["id"] for v in values]))))
        for value in values:
            if value["id"] not in existing:
                session.add(model(**value))

    # Generic helpers

    def _add(self, session: Session, entity: str, data: Record) -> Record:
        row = MODELS[entity](**new_record(entity, data))
        session.add(row)
        session.flush()
        return to_record(entity, row)

    def _insert(self, entity: str, data: Record) -> Record:
        with self.Session.begin() as session:
            return self._add(session, entity, data)

    def _get(self, entity: str, record_id: str) -> Optional[Record]:
        with self.Session() as session:
            row = session.get(MODELS[entity], record_id)
            return to_record(entity, row) if row else None

    def _find(self, entity: str, *criteria, order_by: str = "created_at",
              newest_first: bool = False, **filters) -> List[Record]:
        model = MODELS[entity]
        column = getattr(model, order_by)
        stmt = select(model).filter_by(**filters)
        if criteria:
            stmt = stmt.where(*criteria)
        stmt = stmt.order_by(column.desc() if newest_first else column)
        with self.Session() as session:
            return [to_record(entity, row) for row in session.scalars(stmt)]

    def _first(self, entity: str, **filters) -> Optional[Record]:
        rows = self._find(entity, **filters)
        return rows[0] if rows else None

    def _update(self, entity: str, record_id: str, **fields) -> Optional[Record]:
        with self.Session.begin() as session:
            row = session.get(MODELS[entity], record_id)
            if row is None:
                return None
            for key, value in fields.items():
                setattr(row, key, value)
            session.flush()
            return to_record(entity, row)

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
        with self.Session.begin() as session:
            service = session.get(Service, data.get("service_id")) if data.get("service_id") else None
            ref = resolve_service_ref(data.get("service_id"), to_record("service", service) if service else None)
            return self._add(session, "order", {
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
        with self.Session.begin() as session:
            row = session.get(Order, order_id)
            if row is None:
                return None
            row.payment_method = payment_method
            row.payment_status = "completed"
            session.flush()
            order = to_record("order", row)
            return order, self._invoice_for(session, order)

    # Invoices

    def _invoice_for(self, session: Session, order: Record) -> Record:
        existing = session.scalars(select(Invoice).filter_by(order_id=order["id"])).first()
        if existing is not None:
            return to_record("invoice", existing)
        return self._add(session, "invoice", build_invoice(order))

    def create_invoice(self, order_id: str) -> Record:
        with self.Session.begin() as session:
            row = session.get(Order, order_id)
            if row is None:
                raise EntityNotFound("Order", order_id)
            return self._invoice_for(session, to_record("order", row))

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
        # Orders reference clients by email, not by foreign key
        with self.Session() as session:
            email = session.scalar(select(Client.email).where(Client.id == client_id))
        if email is None:
            return []
        return self._find("order", newest_first=True, customer_email=email)

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
        model = MODELS["lesson_progress"]
        with self.Session.begin() as session:
            row = session.scalars(
                select(model).filter_by(enrollment_id=enrollment_id, lesson_id=lesson_id)
            ).first()
            if row is None:
                return self._add(session, "lesson_progress", {
                    "enrollment_id": enrollment_id,
                    "lesson_id": lesson_id,
                    "is_completed": is_completed,
                    "completed_at": completed_at,
                })
            row.is_completed = is_completed
            row.completed_at = completed_at
            session.flush()
            return to_record("lesson_progress", row)

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
        with self.Session.begin() as session:
            session.execute(
                update(Notification)
                .where(Notification.user_id == user_id, Notification.user_type == user_type)
                .values(is_read=True)
            )

    def get_unread_notification_count(self, user_id: str, user_type: str) -> int:
        with self.Session() as session:
            return session.scalar(
                select(func.count(Notification.id)).where(
                    Notification.user_id == user_id,
                    Notification.user_type == user_type,
                    Notification.is_read.is_(False),
                )
            )

    # Reporting

    def get_dashboard_stats(self, now: Optional[datetime] = None) -> Record:
        month_start = start_of_month(now)
        paid = Order.payment_status == "completed"
        with self.Session() as session:
            orders = session.execute(select(
                func.count(Order.id),
                func.coalesce(func.sum(case((paid, Order.price), else_=0)), 0),
                func.coalesce(func.sum(case((and_(paid, Order.created_at >= month_start), Order.price),
                                            else_=0)), 0),
                func.coalesce(func.sum(case((Order.status != "completed", 1), else_=0)), 0),
            )).one()
            projects = session.execute(select(
                func.count(Project.id),
                func.coalesce(func.sum(case((Project.status != "completed", 1), else_=0)), 0),
            )).one()
            completed_courses = session.scalar(
                select(func.count(Enrollment.id)).where(Enrollment.status == "completed")
            )
            total_students = session.scalar(select(func.count(Student.id)))
            total_clients = session.scalar(select(func.count(Client.id)))
        return {
            "total_orders": orders[0],
            "total_students": total_students,
            "total_clients": total_clients,
            "total_projects": projects[0],
            "total_revenue": int(orders[1]),
            "monthly_revenue": int(orders[2]),
            "pending_orders": int(orders[3]),
            "active_projects": int(projects[1]),
            "completed_courses": completed_courses,
        }

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
        with self.Session.begin() as session:
            message = self._add(session, "chat_message", {**data, "is_read": False})
            session.execute(
                update(ChatConversation)
                .where(ChatConversation.id == message["conversation_id"])
                .values(last_message_at=message["created_at"])
            )
            return message

    def get_chat_messages(self, conversation_id: str) -> List[Record]:
        return self._find("chat_message", conversation_id=conversation_id)

    def mark_messages_read(self, conversation_id: str, reader_id: str) -> int:
        with self.Session.begin() as session:
            result = session.execute(
                update(ChatMessage)
                .where(
                    ChatMessage.conversation_id == conversation_id,
                    ChatMessage.sender_id != reader_id,
                    ChatMessage.is_read.is_(False),
                )
                .values(is_read=True)
            )
            return result.rowcount

    def get_unread_messages_count(self, user_id: str, user_type: str) -> int:
        owner = ChatConversation.client_id if user_type == "client" else ChatConversation.employee_id
        with self.Session() as session:
            return session.scalar(
                select(func.count(ChatMessage.id))
                .join(ChatConversation, ChatConversation.id == ChatMessage.conversation_id)
                .where(owner == user_id, ChatMessage.sender_id != user_id, ChatMessage.is_read.is_(False))
            )

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
        with self.Session.begin() as session:
            row = session.get(MODELS["project_file"], file_id)
            if row is None:
                return False
            session.delete(row)
            return True

    def create_project_question(self, data: Record) -> Record:
        return self._insert("project_question", data)

    def get_project_questions(self, project_id: str) -> List[Record]:
        return self._find("project_question", order_by="order", project_id=project_id)

    def answer_project_question(self, question_id: str, answer: str) -> Optional[Record]:
        return self._update("project_question", question_id, answer=answer, answered_at=utcnow())
