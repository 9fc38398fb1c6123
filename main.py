import logging
from contextlib import asynccontextmanager
from typing import Optional, List

from fastapi import FastAPI, APIRouter, Depends, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError

import analytics
from auth import create_access_token, decode_access_token, get_password_hash, public_account, verify_password
from config import Settings, configure_logging
from database import build_store
from mailer import Mailer, notify_order
from schemas import (
    AnswerIn, CertificateIn, ChatMessageIn, ClientRegister, ConsultationIn, ContactMessageIn,
    ConversationIn, CourseIn, DaysRemainingUpdate, DiscountCodeCheck, EmployeeCreate,
    EmployeeRegister, EmployeeTaskIn, EmployeeTaskUpdate, EnrollmentIn, ExamScoreUpdate,
    FeatureRequestIn, FeatureStatusUpdate, InvoiceRequest, LessonIn, LessonProgressIn,
    LoginPayload, MarkReadIn, ModificationRequestIn, ModificationStatusUpdate, NotificationIn,
    OrderIn, OrderStatusUpdate, PaymentUpdate, PhotoUpdate, ProgressUpdate, ProjectFileIn,
    ProjectIdeaUpdate, ProjectIn, ProjectStatusUpdate, QuizAttemptIn, QuizIn, ReviewIn,
    ServiceIn, StudentRegister, Token,
)
from storage import (
    ChatStore, EntityNotFound, EntityStore, InvoiceNotAllowed, ProjectWorkspaceStore,
    RequestStore, UnsupportedCapability, generate_number, require_capability,
    supported_capabilities,
)

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

ACCOUNT_TYPES = ("student", "client", "employee")


# Dependencies
def get_store(request: Request) -> EntityStore:
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer


def chat_store(store: EntityStore = Depends(get_store)) -> ChatStore:
    return require_capability(store, ChatStore)


def request_store(store: EntityStore = Depends(get_store)) -> RequestStore:
    return require_capability(store, RequestStore)


def workspace_store(store: EntityStore = Depends(get_store)) -> ProjectWorkspaceStore:
    return require_capability(store, ProjectWorkspaceStore)


def find_account(store: EntityStore, account_type: str, account_id: str) -> Optional[dict]:
    lookup = {
        "student": store.get_student,
        "client": store.get_client,
        "employee": store.get_employee,
    }[account_type]
    return lookup(account_id)


def find_account_by_email(store: EntityStore, account_type: str, email: str) -> Optional[dict]:
    lookup = {
        "student": store.get_student_by_email,
        "client": store.get_client_by_email,
        "employee": store.get_employee_by_email,
    }[account_type]
    return lookup(email)


def get_current_account(token: str = Depends(oauth2_scheme),
                        store: EntityStore = Depends(get_store),
                        settings: Settings = Depends(get_settings)) -> dict:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_access_token(token, settings.secret_key)
    except JWTError:
        raise credentials_exception
    account_id, account_type = payload.get("sub"), payload.get("typ")
    if account_id is None or account_type not in ACCOUNT_TYPES:
        raise credentials_exception
    account = find_account(store, account_type, account_id)
    if account is None:
        raise credentials_exception
    return {**account, "account_type": account_type}


def get_admin_account(current: dict = Depends(get_current_account)) -> dict:
    if current["account_type"] != "employee" or not current.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin privileges required")
    return current


def found(record, entity: str, entity_id: str):
    if record is None:
        raise EntityNotFound(entity, entity_id)
    return record


def issue_token(settings: Settings, account: dict, account_type: str) -> Token:
    access_token = create_access_token(account["id"], account_type, settings.secret_key,
                                       settings.access_token_expire_minutes)
    return Token(access_token=access_token, account_type=account_type,
                 account=public_account(account))


router = APIRouter(prefix="/api")


# Authentication
@router.post("/auth/register-student", response_model=Token, status_code=201, tags=["auth"])
def register_student(body: StudentRegister, store: EntityStore = Depends(get_store),
                     settings: Settings = Depends(get_settings)):
    if store.get_student_by_email(body.email):
        raise HTTPException(status_code=400, detail="Email already registered")
    data = body.model_dump()
    data["password"] = get_password_hash(body.password)
    return issue_token(settings, store.create_student(data), "student")


@router.post("/auth/register-client", response_model=Token, status_code=201, tags=["auth"])
def register_client(body: ClientRegister, store: EntityStore = Depends(get_store),
                    settings: Settings = Depends(get_settings)):
    if store.get_client_by_email(body.email):
        raise HTTPException(status_code=400, detail="Email already registered")
    data = body.model_dump()
    data["password"] = get_password_hash(body.password)
    return issue_token(settings, store.create_client(data), "client")


def _create_employee(store: EntityStore, body: EmployeeCreate) -> dict:
    if store.get_employee_by_email(body.email):
        raise HTTPException(status_code=400, detail="Email already registered")
    data = body.model_dump(exclude={"employee_code"})
    data["password"] = get_password_hash(body.password)
    data["employee_number"] = body.employee_number or generate_number("EMP")
    return store.create_employee(data)


@router.post("/auth/register-employee", response_model=Token, status_code=201, tags=["auth"])
def register_employee(body: EmployeeRegister, store: EntityStore = Depends(get_store),
                      settings: Settings = Depends(get_settings)):
    if body.employee_code != settings.employee_registration_code:
        raise HTTPException(status_code=403, detail="Invalid employee registration code")
    return issue_token(settings, _create_employee(store, body), "employee")


@router.post("/auth/login", response_model=Token, tags=["auth"])
def login(form_data: OAuth2PasswordRequestForm = Depends(), store: EntityStore = Depends(get_store),
          settings: Settings = Depends(get_settings)):
    # Accounts are checked in a fixed order; the first password match wins
    for account_type in ACCOUNT_TYPES:
        account = find_account_by_email(store, account_type, form_data.username)
        if account and verify_password(form_data.password, account["password"]):
            return issue_token(settings, account, account_type)
    raise HTTPException(status_code=401, detail="Incorrect email or password")


@router.post("/auth/{account_type}/login", response_model=Token, tags=["auth"])
def login_as(account_type: str, body: LoginPayload, store: EntityStore = Depends(get_store),
             settings: Settings = Depends(get_settings)):
    if account_type not in ACCOUNT_TYPES:
        raise HTTPException(status_code=404, detail="Unknown account type")
    account = find_account_by_email(store, account_type, body.email)
    if not account or not verify_password(body.password, account["password"]):
        raise HTTPException(status_code=401, detail="Incorrect email or password")
    return issue_token(settings, account, account_type)


@router.get("/auth/me", tags=["auth"])
def me(current: dict = Depends(get_current_account)):
    return public_account(current)


# Services
@router.get("/services", tags=["services"])
def list_services(store: EntityStore = Depends(get_store)) -> List[dict]:
    return store.list_services()


@router.get("/services/{service_id}", tags=["services"])
def get_service(service_id: str, store: EntityStore = Depends(get_store)):
    return found(store.get_service(service_id), "Service", service_id)


@router.post("/admin/services", status_code=201, tags=["admin"])
def admin_create_service(body: ServiceIn, store: EntityStore = Depends(get_store),
                         _: dict = Depends(get_admin_account)):
    return store.create_service(body.model_dump())


# Orders and payments
@router.post("/orders", status_code=201, tags=["orders"])
def create_order(body: OrderIn, store: EntityStore = Depends(get_store),
                 mailer: Mailer = Depends(get_mailer)):
    order = store.create_order(body.model_dump())
    notify_order(mailer, order)
    return order


@router.get("/orders/{order_id}", tags=["orders"])
def get_order(order_id: str, store: EntityStore = Depends(get_store)):
    return found(store.get_order(order_id), "Order", order_id)


@router.get("/orders/number/{order_number}", tags=["orders"])
def get_order_by_number(order_number: str, store: EntityStore = Depends(get_store)):
    return found(store.get_order_by_number(order_number), "Order", order_number)


@router.put("/orders/{order_id}/status", tags=["orders"])
def update_order_status(order_id: str, body: OrderStatusUpdate, store: EntityStore = Depends(get_store)):
    return found(store.update_order_status(order_id, body.status), "Order", order_id)


@router.put("/orders/{order_id}/payment", tags=["orders"])
def update_order_payment(order_id: str, body: PaymentUpdate, store: EntityStore = Depends(get_store),
                         mailer: Mailer = Depends(get_mailer)):
    if body.payment_status != "completed":
        return found(store.update_order_payment(order_id, body.payment_method, body.payment_status),
                     "Order", order_id)
    order, invoice = found(store.complete_order_payment(order_id, body.payment_method), "Order", order_id)
    logger.info("Payment completed for order %s, invoice %s", order["order_number"], invoice["invoice_number"])
    notify_order(mailer, order, invoice)
    return order


@router.get("/orders/{order_id}/invoice", tags=["invoices"])
def get_order_invoice(order_id: str, store: EntityStore = Depends(get_store)):
    return found(store.get_order_invoice(order_id), "Invoice for order", order_id)


# Invoices
@router.post("/invoices", status_code=201, tags=["invoices"])
def create_invoice(body: InvoiceRequest, store: EntityStore = Depends(get_store)):
    return store.create_invoice(body.order_id)


@router.get("/invoices/{invoice_id}", tags=["invoices"])
def get_invoice(invoice_id: str, store: EntityStore = Depends(get_store)):
    return found(store.get_invoice(invoice_id), "Invoice", invoice_id)


# Consultations and contact
@router.post("/consultations", status_code=201, tags=["contact"])
def create_consultation(body: ConsultationIn, store: EntityStore = Depends(get_store)):
    return store.create_consultation(body.model_dump())


@router.post("/messages", status_code=201, tags=["contact"])
def create_contact_message(body: ContactMessageIn, store: EntityStore = Depends(get_store)):
    return store.create_contact_message(body.model_dump())


@router.post("/discount-codes/validate", tags=["orders"])
def validate_discount_code(body: DiscountCodeCheck, store: EntityStore = Depends(get_store)):
    discount = store.validate_discount_code(body.code)
    if discount is None:
        raise HTTPException(status_code=404, detail="Invalid or expired discount code")
    return discount


# Accounts
@router.get("/students/{student_id}", tags=["accounts"])
def get_student(student_id: str, store: EntityStore = Depends(get_store)):
    return public_account(found(store.get_student(student_id), "Student", student_id))


@router.get("/clients/{client_id}", tags=["accounts"])
def get_client(client_id: str, store: EntityStore = Depends(get_store)):
    return public_account(found(store.get_client(client_id), "Client", client_id))


@router.get("/clients/{client_id}/orders", tags=["accounts"])
def get_client_orders(client_id: str, store: EntityStore = Depends(get_store)):
    return store.get_client_orders(client_id)


@router.get("/clients/{client_id}/projects", tags=["accounts"])
def get_client_projects(client_id: str, store: EntityStore = Depends(get_store)):
    return store.get_client_projects(client_id)


@router.get("/employees/{employee_id}", tags=["accounts"])
def get_employee(employee_id: str, store: EntityStore = Depends(get_store)):
    return public_account(found(store.get_employee(employee_id), "Employee", employee_id))


@router.get("/employees/{employee_id}/tasks", tags=["accounts"])
def get_employee_tasks(employee_id: str, store: EntityStore = Depends(get_store)):
    return store.get_employee_tasks(employee_id)


@router.put("/employees/{employee_id}/photo", tags=["accounts"])
def update_employee_photo(employee_id: str, body: PhotoUpdate, store: EntityStore = Depends(get_store)):
    employee = found(store.update_employee_photo(employee_id, body.photo_url), "Employee", employee_id)
    return public_account(employee)


# Academy
@router.get("/courses", tags=["academy"])
def list_courses(store: EntityStore = Depends(get_store)):
    return store.list_courses()


@router.get("/courses/{course_id}", tags=["academy"])
def get_course(course_id: str, store: EntityStore = Depends(get_store)):
    return found(store.get_course(course_id), "Course", course_id)


@router.get("/courses/{course_id}/lessons", tags=["academy"])
def get_course_lessons(course_id: str, store: EntityStore = Depends(get_store)):
    return store.get_course_lessons(course_id)


@router.get("/courses/{course_id}/final-exam", tags=["academy"])
def get_course_final_exam(course_id: str, store: EntityStore = Depends(get_store)):
    return found(store.get_course_final_exam(course_id), "Final exam for course", course_id)


@router.get("/lessons/{lesson_id}", tags=["academy"])
def get_lesson(lesson_id: str, store: EntityStore = Depends(get_store)):
    return found(store.get_lesson(lesson_id), "Lesson", lesson_id)


@router.get("/lessons/{lesson_id}/quiz", tags=["academy"])
def get_lesson_quiz(lesson_id: str, store: EntityStore = Depends(get_store)):
    return found(store.get_lesson_quiz(lesson_id), "Quiz for lesson", lesson_id)


@router.post("/admin/courses", status_code=201, tags=["admin"])
def admin_create_course(body: CourseIn, store: EntityStore = Depends(get_store),
                        _: dict = Depends(get_admin_account)):
    return store.create_course(body.model_dump())


@router.post("/admin/lessons", status_code=201, tags=["admin"])
def admin_create_lesson(body: LessonIn, store: EntityStore = Depends(get_store),
                        _: dict = Depends(get_admin_account)):
    found(store.get_course(body.course_id), "Course", body.course_id)
    return store.create_lesson(body.model_dump())


@router.post("/admin/quizzes", status_code=201, tags=["admin"])
def admin_create_quiz(body: QuizIn, store: EntityStore = Depends(get_store),
                      _: dict = Depends(get_admin_account)):
    return store.create_quiz(body.model_dump())


@router.post("/courses/enroll", status_code=201, tags=["academy"])
def enroll(body: EnrollmentIn, store: EntityStore = Depends(get_store)):
    student = found(store.get_student(body.student_id), "Student", body.student_id)
    course = found(store.get_course(body.course_id), "Course", body.course_id)
    enrollment = store.create_enrollment(body.model_dump())
    if course.get("is_free"):
        store.update_student_free_courses(student["id"], (student.get("free_courses_taken") or 0) + 1)
    return enrollment


@router.get("/enrollments/student/{student_id}", tags=["academy"])
def get_student_enrollments(student_id: str, store: EntityStore = Depends(get_store)):
    return store.get_student_enrollments(student_id)


@router.put("/enrollments/{enrollment_id}/progress", tags=["academy"])
def update_enrollment_progress(enrollment_id: str, body: ProgressUpdate,
                               store: EntityStore = Depends(get_store)):
    return found(store.update_enrollment_progress(enrollment_id, body.progress), "Enrollment", enrollment_id)


@router.put("/enrollments/{enrollment_id}/exam-score", tags=["academy"])
def update_enrollment_exam_score(enrollment_id: str, body: ExamScoreUpdate,
                                 store: EntityStore = Depends(get_store)):
    return found(store.update_enrollment_exam_score(enrollment_id, body.score), "Enrollment", enrollment_id)


@router.put("/enrollments/{enrollment_id}/complete", tags=["academy"])
def complete_enrollment(enrollment_id: str, store: EntityStore = Depends(get_store)):
    return found(store.complete_enrollment(enrollment_id), "Enrollment", enrollment_id)


@router.get("/enrollments/{enrollment_id}/progress", tags=["academy"])
def get_enrollment_progress(enrollment_id: str, store: EntityStore = Depends(get_store)):
    return store.get_enrollment_progress(enrollment_id)


@router.post("/lesson-progress", tags=["academy"])
def update_lesson_progress(body: LessonProgressIn, store: EntityStore = Depends(get_store)):
    return store.update_lesson_progress(body.enrollment_id, body.lesson_id, body.is_completed)


@router.post("/quiz-attempts", status_code=201, tags=["academy"])
def create_quiz_attempt(body: QuizAttemptIn, store: EntityStore = Depends(get_store)):
    return store.create_quiz_attempt(body.model_dump())


@router.get("/enrollments/{enrollment_id}/quiz-attempts", tags=["academy"])
def get_enrollment_quiz_attempts(enrollment_id: str, store: EntityStore = Depends(get_store)):
    return store.get_enrollment_quiz_attempts(enrollment_id)


@router.post("/certificates", status_code=201, tags=["academy"])
def create_certificate(body: CertificateIn, store: EntityStore = Depends(get_store)):
    return store.create_certificate(body.model_dump())


@router.get("/certificates/number/{certificate_number}", tags=["academy"])
def get_certificate_by_number(certificate_number: str, store: EntityStore = Depends(get_store)):
    return found(store.get_certificate_by_number(certificate_number), "Certificate", certificate_number)


@router.get("/certificates/student/{student_id}", tags=["academy"])
def get_student_certificates(student_id: str, store: EntityStore = Depends(get_store)):
    return store.get_student_certificates(student_id)


@router.put("/admin/certificates/{certificate_id}/approve", tags=["admin"])
def approve_certificate(certificate_id: str, store: EntityStore = Depends(get_store),
                        admin: dict = Depends(get_admin_account)):
    return found(store.approve_certificate(certificate_id, admin["id"]), "Certificate", certificate_id)


# Projects
@router.post("/projects", status_code=201, tags=["projects"])
def create_project(body: ProjectIn, store: EntityStore = Depends(get_store)):
    found(store.get_client(body.client_id), "Client", body.client_id)
    return store.create_project(body.model_dump())


@router.get("/projects/{project_id}", tags=["projects"])
def get_project(project_id: str, store: EntityStore = Depends(get_store)):
    return found(store.get_project(project_id), "Project", project_id)


@router.put("/projects/{project_id}/status", tags=["projects"])
def update_project_status(project_id: str, body: ProjectStatusUpdate, store: EntityStore = Depends(get_store)):
    return found(store.update_project_status(project_id, body.status), "Project", project_id)


@router.put("/projects/{project_id}/idea", tags=["projects"])
def update_project_idea(project_id: str, body: ProjectIdeaUpdate, store: EntityStore = Depends(get_store)):
    return found(store.update_project_idea(project_id, body.website_idea), "Project", project_id)


@router.put("/projects/{project_id}/days-remaining", tags=["projects"])
def update_project_days_remaining(project_id: str, body: DaysRemainingUpdate,
                                  store: EntityStore = Depends(get_store)):
    return found(store.update_project_days_remaining(project_id, body.days_remaining), "Project", project_id)


# Employee tasks
@router.post("/employee-tasks", status_code=201, tags=["tasks"])
def create_employee_task(body: EmployeeTaskIn, store: EntityStore = Depends(get_store)):
    return store.create_employee_task(body.model_dump())


@router.put("/employee-tasks/{task_id}", tags=["tasks"])
def update_employee_task(task_id: str, body: EmployeeTaskUpdate, store: EntityStore = Depends(get_store)):
    task = store.update_employee_task(task_id, body.is_completed, body.hours_remaining)
    return found(task, "Employee task", task_id)


# Reviews
@router.get("/reviews/{target_type}/{target_id}", tags=["reviews"])
def get_reviews(target_type: str, target_id: str, store: EntityStore = Depends(get_store)):
    return store.get_reviews(target_id, target_type)


@router.get("/reviews/{target_type}/{target_id}/average", tags=["reviews"])
def get_average_rating(target_type: str, target_id: str, store: EntityStore = Depends(get_store)):
    return {"average": store.get_average_rating(target_id, target_type)}


@router.post("/reviews", status_code=201, tags=["reviews"])
def create_review(body: ReviewIn, store: EntityStore = Depends(get_store)):
    return store.create_review(body.model_dump())


@router.put("/admin/reviews/{review_id}/approve", tags=["admin"])
def approve_review(review_id: str, store: EntityStore = Depends(get_store),
                   _: dict = Depends(get_admin_account)):
    return found(store.approve_review(review_id), "Review", review_id)


# Notifications
@router.get("/notifications/{user_type}/{user_id}", tags=["notifications"])
def get_user_notifications(user_type: str, user_id: str, store: EntityStore = Depends(get_store)):
    return store.get_user_notifications(user_id, user_type)


@router.get("/notifications/{user_type}/{user_id}/unread-count", tags=["notifications"])
def get_unread_notification_count(user_type: str, user_id: str, store: EntityStore = Depends(get_store)):
    return {"count": store.get_unread_notification_count(user_id, user_type)}


@router.post("/notifications", status_code=201, tags=["notifications"])
def create_notification(body: NotificationIn, store: EntityStore = Depends(get_store)):
    return store.create_notification(body.model_dump())


@router.put("/notifications/{notification_id}/read", tags=["notifications"])
def mark_notification_read(notification_id: str, store: EntityStore = Depends(get_store)):
    return found(store.mark_notification_read(notification_id), "Notification", notification_id)


@router.put("/notifications/{user_type}/{user_id}/read-all", tags=["notifications"])
def mark_all_notifications_read(user_type: str, user_id: str, store: EntityStore = Depends(get_store)):
    store.mark_all_notifications_read(user_id, user_type)
    return {"success": True}


# Chat
@router.post("/chat/conversations", status_code=201, tags=["chat"])
def create_conversation(body: ConversationIn, chat: ChatStore = Depends(chat_store)):
    if body.project_id:
        existing = chat.get_project_conversation(body.project_id)
        if existing:
            return existing
    return chat.create_chat_conversation(body.model_dump())


@router.get("/chat/conversations/{conversation_id}", tags=["chat"])
def get_conversation(conversation_id: str, chat: ChatStore = Depends(chat_store)):
    return found(chat.get_chat_conversation(conversation_id), "Conversation", conversation_id)


@router.get("/chat/clients/{client_id}/conversations", tags=["chat"])
def get_client_conversations(client_id: str, chat: ChatStore = Depends(chat_store)):
    return chat.get_client_conversations(client_id)


@router.get("/chat/employees/{employee_id}/conversations", tags=["chat"])
def get_employee_conversations(employee_id: str, chat: ChatStore = Depends(chat_store)):
    return chat.get_employee_conversations(employee_id)


@router.get("/chat/conversations/{conversation_id}/messages", tags=["chat"])
def get_chat_messages(conversation_id: str, chat: ChatStore = Depends(chat_store)):
    return chat.get_chat_messages(conversation_id)


@router.post("/chat/conversations/{conversation_id}/messages", status_code=201, tags=["chat"])
def create_chat_message(conversation_id: str, body: ChatMessageIn, chat: ChatStore = Depends(chat_store)):
    found(chat.get_chat_conversation(conversation_id), "Conversation", conversation_id)
    return chat.create_chat_message({**body.model_dump(), "conversation_id": conversation_id})


@router.put("/chat/conversations/{conversation_id}/read", tags=["chat"])
def mark_messages_read(conversation_id: str, body: MarkReadIn, chat: ChatStore = Depends(chat_store)):
    return {"marked": chat.mark_messages_read(conversation_id, body.reader_id)}


@router.get("/chat/unread/{user_type}/{user_id}", tags=["chat"])
def get_unread_messages_count(user_type: str, user_id: str, chat: ChatStore = Depends(chat_store)):
    return {"count": chat.get_unread_messages_count(user_id, user_type)}


# Change requests
@router.post("/modification-requests", status_code=201, tags=["requests"])
def create_modification_request(body: ModificationRequestIn, requests: RequestStore = Depends(request_store)):
    return requests.create_modification_request(body.model_dump())


@router.get("/projects/{project_id}/modification-requests", tags=["requests"])
def get_project_modification_requests(project_id: str, requests: RequestStore = Depends(request_store)):
    return requests.get_project_modification_requests(project_id)


@router.get("/clients/{client_id}/modification-requests", tags=["requests"])
def get_client_modification_requests(client_id: str, requests: RequestStore = Depends(request_store)):
    return requests.get_client_modification_requests(client_id)


@router.put("/admin/modification-requests/{request_id}", tags=["admin"])
def update_modification_request(request_id: str, body: ModificationStatusUpdate,
                                requests: RequestStore = Depends(request_store),
                                _: dict = Depends(get_admin_account)):
    updated = requests.update_modification_request_status(request_id, body.status, body.assigned_to)
    return found(updated, "Modification request", request_id)


@router.post("/feature-requests", status_code=201, tags=["requests"])
def create_feature_request(body: FeatureRequestIn, requests: RequestStore = Depends(request_store)):
    return requests.create_feature_request(body.model_dump())


@router.get("/projects/{project_id}/feature-requests", tags=["requests"])
def get_project_feature_requests(project_id: str, requests: RequestStore = Depends(request_store)):
    return requests.get_project_feature_requests(project_id)


@router.get("/clients/{client_id}/feature-requests", tags=["requests"])
def get_client_feature_requests(client_id: str, requests: RequestStore = Depends(request_store)):
    return requests.get_client_feature_requests(client_id)


@router.put("/admin/feature-requests/{request_id}", tags=["admin"])
def update_feature_request(request_id: str, body: FeatureStatusUpdate,
                           requests: RequestStore = Depends(request_store),
                           _: dict = Depends(get_admin_account)):
    updated = requests.update_feature_request_status(
        request_id, body.status, body.admin_notes, body.estimated_cost, body.estimated_days,
    )
    return found(updated, "Feature request", request_id)


@router.get("/admin/requests/pending", tags=["admin"])
def get_pending_requests(requests: RequestStore = Depends(request_store),
                         _: dict = Depends(get_admin_account)):
    return requests.get_all_pending_requests()


# Project workspace
@router.get("/projects/{project_id}/files", tags=["workspace"])
def get_project_files(project_id: str, workspace: ProjectWorkspaceStore = Depends(workspace_store)):
    return workspace.get_project_files(project_id)


@router.post("/projects/{project_id}/files", status_code=201, tags=["workspace"])
def create_project_file(project_id: str, body: ProjectFileIn,
                        workspace: ProjectWorkspaceStore = Depends(workspace_store)):
    return workspace.create_project_file({**body.model_dump(), "project_id": project_id})


@router.delete("/files/{file_id}", tags=["workspace"])
def delete_project_file(file_id: str, workspace: ProjectWorkspaceStore = Depends(workspace_store)):
    if not workspace.delete_project_file(file_id):
        raise EntityNotFound("File", file_id)
    return {"deleted": True}


@router.get("/projects/{project_id}/questions", tags=["workspace"])
def get_project_questions(project_id: str, workspace: ProjectWorkspaceStore = Depends(workspace_store)):
    return workspace.initialize_project_questions(project_id)


@router.put("/questions/{question_id}/answer", tags=["workspace"])
def answer_project_question(question_id: str, body: AnswerIn,
                            workspace: ProjectWorkspaceStore = Depends(workspace_store)):
    return found(workspace.answer_project_question(question_id, body.answer), "Question", question_id)


# Admin
@router.get("/dashboard/stats", tags=["admin"])
def dashboard_stats(store: EntityStore = Depends(get_store), _: dict = Depends(get_admin_account)):
    return store.get_dashboard_stats()


@router.get("/admin/analytics", tags=["admin"])
def admin_analytics(store: EntityStore = Depends(get_store), _: dict = Depends(get_admin_account)):
    return analytics.build_report(store)


@router.get("/admin/reconciliation", tags=["admin"])
def admin_reconciliation(store: EntityStore = Depends(get_store), _: dict = Depends(get_admin_account)):
    missing = analytics.orders_missing_invoice(store.list_orders(), store.list_invoices())
    return {"orders_missing_invoice": [o["id"] for o in missing]}


@router.post("/admin/employees", status_code=201, tags=["admin"])
def admin_create_employee(body: EmployeeCreate, store: EntityStore = Depends(get_store),
                          _: dict = Depends(get_admin_account)):
    return public_account(_create_employee(store, body))


@router.get("/admin/employees", tags=["admin"])
def admin_list_employees(store: EntityStore = Depends(get_store), _: dict = Depends(get_admin_account)):
    return [public_account(e) for e in store.list_employees()]


@router.get("/admin/students", tags=["admin"])
def admin_list_students(store: EntityStore = Depends(get_store), _: dict = Depends(get_admin_account)):
    return [public_account(s) for s in store.list_students()]


@router.get("/admin/clients", tags=["admin"])
def admin_list_clients(store: EntityStore = Depends(get_store), _: dict = Depends(get_admin_account)):
    return [public_account(c) for c in store.list_clients()]


@router.get("/admin/orders", tags=["admin"])
def admin_list_orders(store: EntityStore = Depends(get_store), _: dict = Depends(get_admin_account)):
    return store.list_orders()


@router.get("/admin/invoices", tags=["admin"])
def admin_list_invoices(store: EntityStore = Depends(get_store), _: dict = Depends(get_admin_account)):
    return store.list_invoices()


@router.get("/admin/projects", tags=["admin"])
def admin_list_projects(store: EntityStore = Depends(get_store), _: dict = Depends(get_admin_account)):
    return store.list_projects()


@router.get("/admin/consultations", tags=["admin"])
def admin_list_consultations(store: EntityStore = Depends(get_store), _: dict = Depends(get_admin_account)):
    return store.list_consultations()


@router.get("/admin/messages", tags=["admin"])
def admin_list_contact_messages(store: EntityStore = Depends(get_store), _: dict = Depends(get_admin_account)):
    return store.list_contact_messages()


@router.get("/admin/tasks", tags=["admin"])
def admin_list_tasks(store: EntityStore = Depends(get_store), _: dict = Depends(get_admin_account)):
    return store.list_employee_tasks()


# Error mapping
def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]
    return JSONResponse(status_code=400, content={"detail": "Invalid request data", "errors": errors})


async def not_found_handler(request: Request, exc: EntityNotFound):
    return _error(404, f"{exc.entity} not found")


async def invoice_not_allowed_handler(request: Request, exc: InvoiceNotAllowed):
    return _error(400, str(exc))


async def unsupported_handler(request: Request, exc: UnsupportedCapability):
    logger.error("Capability gap: %s", exc)
    return _error(501, str(exc))


async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error")


def create_app(store: Optional[EntityStore] = None, mailer: Optional[Mailer] = None,
               settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.store is None
        if owned:
            app.state.store = build_store(settings)
        app.state.store.initialize()
        yield
        if owned:
            app.state.store.close()

    app = FastAPI(title="Agency Platform API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.mailer = mailer or Mailer()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(EntityNotFound, not_found_handler)
    app.add_exception_handler(InvoiceNotAllowed, invoice_not_allowed_handler)
    app.add_exception_handler(UnsupportedCapability, unsupported_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    @app.get("/", tags=["meta"])
    def read_root():
        return {"message": "Agency Platform API running"}

    @app.get("/test", tags=["meta"])
    def test_storage(request: Request):
        current = request.app.state.store
        return {
            "backend": current.backend_name if current else None,
            "capabilities": supported_capabilities(current) if current else [],
        }

    app.include_router(router)
    return app


settings = Settings.from_env()
configure_logging(settings.log_level)
app = create_app(settings=settings)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
