"""SQLAlchemy tables for the relational backend.

Column names match the keys in ``storage.FIELDS`` so rows convert to records
without a mapping table.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from storage import utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class IdMixin:
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class UpdatedMixin:
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


# Sales

class Service(IdMixin, Base):
    __tablename__ = "services"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    price: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    original_price: Mapped[Optional[int]] = mapped_column(Integer)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    subcategory: Mapped[Optional[str]] = mapped_column(String(100))
    features: Mapped[List[str]] = mapped_column(JSON, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False)


class Order(IdMixin, UpdatedMixin, Base):
    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    client_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(320), index=True, nullable=False)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(50))
    # Nullable on purpose: orders for unknown services keep a null link
    service_id: Mapped[Optional[str]] = mapped_column(String(36))
    service_name: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(32), default="pending", nullable=False)
    payment_method: Mapped[Optional[str]] = mapped_column(String(32))
    payment_status: Mapped[str] = mapped_column(String(32), default="pending", nullable=False)


class Invoice(IdMixin, Base):
    __tablename__ = "invoices"

    invoice_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    order_id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    client_id: Mapped[Optional[str]] = mapped_column(String(36))
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(320), nullable=False)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(50))
    service_name: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_method: Mapped[Optional[str]] = mapped_column(String(32))
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class Consultation(IdMixin, Base):
    __tablename__ = "consultations"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    project_type: Mapped[Optional[str]] = mapped_column(String(100))
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(32), default="pending")


class ContactMessage(IdMixin, Base):
    __tablename__ = "contact_messages"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    message: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="pending")


class DiscountCode(IdMixin, Base):
    __tablename__ = "discount_codes"

    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    discount_percentage: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


# Accounts

class Student(IdMixin, Base):
    __tablename__ = "students"

    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    password: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    age: Mapped[Optional[int]] = mapped_column(Integer)
    selected_language: Mapped[Optional[str]] = mapped_column(String(50))
    learning_goal: Mapped[Optional[str]] = mapped_column(Text)
    free_courses_taken: Mapped[int] = mapped_column(Integer, default=0)


class Client(IdMixin, Base):
    __tablename__ = "clients"

    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    password: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    website_type: Mapped[Optional[str]] = mapped_column(String(100))
    budget: Mapped[Optional[str]] = mapped_column(String(100))
    website_idea: Mapped[Optional[str]] = mapped_column(Text)


class Employee(IdMixin, Base):
    __tablename__ = "employees"

    employee_number: Mapped[Optional[str]] = mapped_column(String(50), unique=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    password: Mapped[str] = mapped_column(String(255), nullable=False)
    position: Mapped[Optional[str]] = mapped_column(String(100))
    job_title: Mapped[Optional[str]] = mapped_column(String(100))
    photo_url: Mapped[Optional[str]] = mapped_column(Text)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)


# Academy

class Course(IdMixin, Base):
    __tablename__ = "courses"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    language: Mapped[Optional[str]] = mapped_column(String(50))
    description: Mapped[Optional[str]] = mapped_column(Text)
    price: Mapped[int] = mapped_column(Integer, default=0)
    original_price: Mapped[Optional[int]] = mapped_column(Integer)
    is_free: Mapped[bool] = mapped_column(Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class Lesson(IdMixin, Base):
    __tablename__ = "lessons"

    course_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    order: Mapped[int] = mapped_column(Integer, default=0)
    video_url: Mapped[Optional[str]] = mapped_column(Text)
    content: Mapped[Optional[str]] = mapped_column(Text)
    duration: Mapped[Optional[int]] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class LessonProgress(IdMixin, Base):
    __tablename__ = "lesson_progress"
    __table_args__ = (UniqueConstraint("enrollment_id", "lesson_id"),)

    enrollment_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    lesson_id: Mapped[str] = mapped_column(String(36), nullable=False)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class Quiz(IdMixin, Base):
    __tablename__ = "quizzes"

    lesson_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    course_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    questions: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    passing_score: Mapped[int] = mapped_column(Integer, default=70)
    is_final_exam: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class QuizAttempt(IdMixin, Base):
    __tablename__ = "quiz_attempts"

    enrollment_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    quiz_id: Mapped[str] = mapped_column(String(36), nullable=False)
    answers: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    score: Mapped[int] = mapped_column(Integer, default=0)
    passed: Mapped[bool] = mapped_column(Boolean, default=False)
    attempt_number: Mapped[int] = mapped_column(Integer, default=1)


class Enrollment(IdMixin, Base):
    __tablename__ = "enrollments"

    student_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    course_id: Mapped[str] = mapped_column(String(36), nullable=False)
    progress: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(32), default="active")
    final_exam_score: Mapped[Optional[int]] = mapped_column(Integer)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class Certificate(IdMixin, Base):
    __tablename__ = "certificates"

    certificate_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    student_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    course_id: Mapped[str] = mapped_column(String(36), nullable=False)
    student_name: Mapped[str] = mapped_column(String(200), nullable=False)
    course_name: Mapped[str] = mapped_column(String(200), nullable=False)
    final_score: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(32), default="pending")
    approved_by: Mapped[Optional[str]] = mapped_column(String(36))
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


# Delivery

class Project(IdMixin, UpdatedMixin, Base):
    __tablename__ = "projects"

    client_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    order_id: Mapped[Optional[str]] = mapped_column(String(36))
    project_name: Mapped[str] = mapped_column(String(200), nullable=False)
    website_idea: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(32), default="analysis")
    days_remaining: Mapped[Optional[int]] = mapped_column(Integer)
    target_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    domain: Mapped[Optional[str]] = mapped_column(String(255))
    email: Mapped[Optional[str]] = mapped_column(String(320))
    tools_used: Mapped[List[str]] = mapped_column(JSON, default=list)
    assigned_employees: Mapped[List[str]] = mapped_column(JSON, default=list)


class EmployeeTask(IdMixin, UpdatedMixin, Base):
    __tablename__ = "employee_tasks"

    employee_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    project_id: Mapped[Optional[str]] = mapped_column(String(36))
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    hours_remaining: Mapped[Optional[int]] = mapped_column(Integer)
    notes: Mapped[Optional[str]] = mapped_column(Text)


class Review(IdMixin, Base):
    __tablename__ = "reviews"

    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    user_type: Mapped[str] = mapped_column(String(32), nullable=False)
    user_name: Mapped[str] = mapped_column(String(200), nullable=False)
    target_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text)
    is_approved: Mapped[bool] = mapped_column(Boolean, default=False)


class Notification(IdMixin, Base):
    __tablename__ = "notifications"

    user_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    user_type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(32), default="info")
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    link: Mapped[Optional[str]] = mapped_column(Text)


# Chat

class ChatConversation(IdMixin, Base):
    __tablename__ = "chat_conversations"

    project_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    client_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    employee_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    last_message_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class ChatMessage(IdMixin, Base):
    __tablename__ = "chat_messages"

    conversation_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    sender_id: Mapped[str] = mapped_column(String(36), nullable=False)
    sender_type: Mapped[str] = mapped_column(String(32), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)


# Change requests

class ModificationRequest(IdMixin, UpdatedMixin, Base):
    __tablename__ = "modification_requests"

    project_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    client_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[str] = mapped_column(String(32), default="normal")
    status: Mapped[str] = mapped_column(String(32), default="pending")
    assigned_to: Mapped[Optional[str]] = mapped_column(String(36))


class FeatureRequest(IdMixin, UpdatedMixin, Base):
    __tablename__ = "feature_requests"

    project_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    client_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="pending")
    admin_notes: Mapped[Optional[str]] = mapped_column(Text)
    estimated_cost: Mapped[Optional[int]] = mapped_column(Integer)
    estimated_days: Mapped[Optional[int]] = mapped_column(Integer)


# Project workspace

class ProjectFile(IdMixin, Base):
    __tablename__ = "project_files"

    project_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    uploaded_by: Mapped[str] = mapped_column(String(36), nullable=False)
    uploader_type: Mapped[str] = mapped_column(String(32), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_url: Mapped[str] = mapped_column(Text, nullable=False)
    file_type: Mapped[Optional[str]] = mapped_column(String(100))
    description: Mapped[Optional[str]] = mapped_column(Text)


class ProjectQuestion(IdMixin, Base):
    __tablename__ = "project_questions"

    project_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(50))
    order: Mapped[int] = mapped_column(Integer, default=0)
    answer: Mapped[Optional[str]] = mapped_column(Text)
    answered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


MODELS = {
    "service": Service,
    "order": Order,
    "invoice": Invoice,
    "consultation": Consultation,
    "contact_message": ContactMessage,
    "discount_code": DiscountCode,
    "student": Student,
    "client": Client,
    "employee": Employee,
    "course": Course,
    "lesson": Lesson,
    "lesson_progress": LessonProgress,
    "quiz": Quiz,
    "quiz_attempt": QuizAttempt,
    "enrollment": Enrollment,
    "certificate": Certificate,
    "project": Project,
    "employee_task": EmployeeTask,
    "review": Review,
    "notification": Notification,
    "chat_conversation": ChatConversation,
    "chat_message": ChatMessage,
    "modification_request": ModificationRequest,
    "feature_request": FeatureRequest,
    "project_file": ProjectFile,
    "project_question": ProjectQuestion,
}
