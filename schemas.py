from pydantic import BaseModel, Field, EmailStr
from typing import Optional, List, Literal, Dict, Any
from datetime import datetime

OrderStatus = Literal['pending', 'confirmed', 'in_progress', 'completed', 'cancelled']
PaymentStatus = Literal['pending', 'completed', 'failed', 'refunded']
PaymentMethod = Literal['paypal', 'bank_transfer', 'stc_pay', 'ur_pay', 'alinma_pay', 'card']
ProjectStatus = Literal['analysis', 'design', 'backend', 'deployment', 'completed']
RequestStatus = Literal['pending', 'approved', 'in_progress', 'completed', 'rejected']
AccountType = Literal['student', 'client', 'employee']
ReviewTarget = Literal['service', 'course', 'employee']


# Auth
class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    account_type: AccountType
    account: Dict[str, Any]

class LoginPayload(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

class StudentRegister(BaseModel):
    full_name: str = Field(..., min_length=2, max_length=200)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None
    age: Optional[int] = Field(None, ge=5, le=120)
    selected_language: Optional[str] = None
    learning_goal: Optional[str] = None

class ClientRegister(BaseModel):
    full_name: str = Field(..., min_length=2, max_length=200)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None
    website_type: Optional[str] = None
    budget: Optional[str] = None
    website_idea: Optional[str] = None

class EmployeeCreate(BaseModel):
    employee_number: Optional[str] = None
    full_name: str = Field(..., min_length=2, max_length=200)
    email: EmailStr
    password: str = Field(..., min_length=6)
    position: Optional[str] = None
    job_title: Optional[str] = None
    photo_url: Optional[str] = None
    is_admin: bool = False

class EmployeeRegister(EmployeeCreate):
    employee_code: str = Field(..., min_length=1)


# Sales
class ServiceIn(BaseModel):
    name: str = Field(..., min_length=2, max_length=200)
    description: Optional[str] = None
    price: int = Field(..., ge=0)
    original_price: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    subcategory: Optional[str] = None
    features: List[str] = []
    is_active: bool = True
    is_featured: bool = False

class OrderIn(BaseModel):
    customer_name: str = Field(..., min_length=2, max_length=200)
    customer_email: EmailStr
    customer_phone: Optional[str] = None
    service_id: Optional[str] = None
    service_name: str = Field(..., min_length=1)
    price: int = Field(..., ge=0)
    description: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    client_id: Optional[str] = None

class OrderStatusUpdate(BaseModel):
    status: OrderStatus

class PaymentUpdate(BaseModel):
    payment_method: Optional[PaymentMethod] = None
    payment_status: PaymentStatus

class InvoiceRequest(BaseModel):
    order_id: str

class ConsultationIn(BaseModel):
    name: str = Field(..., min_length=2)
    email: EmailStr
    phone: Optional[str] = None
    project_type: Optional[str] = None
    description: Optional[str] = None

class ContactMessageIn(BaseModel):
    name: str = Field(..., min_length=2)
    email: EmailStr
    phone: Optional[str] = None
    message: str = Field(..., min_length=1, max_length=5000)

class DiscountCodeCheck(BaseModel):
    code: str = Field(..., min_length=1)


# Academy
class CourseIn(BaseModel):
    name: str = Field(..., min_length=2)
    language: Optional[str] = None
    description: Optional[str] = None
    price: int = Field(0, ge=0)
    original_price: Optional[int] = Field(None, ge=0)
    is_free: bool = True
    is_active: bool = True

class LessonIn(BaseModel):
    course_id: str
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    order: int = Field(0, ge=0)
    video_url: Optional[str] = None
    content: Optional[str] = None
    duration: Optional[int] = Field(None, ge=0)

class QuizIn(BaseModel):
    lesson_id: Optional[str] = None
    course_id: Optional[str] = None
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    questions: List[Dict[str, Any]] = []
    passing_score: int = Field(70, ge=0, le=100)
    is_final_exam: bool = False

class EnrollmentIn(BaseModel):
    student_id: str
    course_id: str

class ProgressUpdate(BaseModel):
    progress: int = Field(..., ge=0, le=100)

class ExamScoreUpdate(BaseModel):
    score: int = Field(..., ge=0, le=100)

class LessonProgressIn(BaseModel):
    enrollment_id: str
    lesson_id: str
    is_completed: bool = True

class QuizAttemptIn(BaseModel):
    enrollment_id: str
    quiz_id: str
    answers: Dict[str, Any] = {}
    score: int = Field(..., ge=0, le=100)
    passed: bool = False
    attempt_number: int = Field(1, ge=1)

class CertificateIn(BaseModel):
    student_id: str
    course_id: str
    student_name: str
    course_name: str
    final_score: int = Field(..., ge=0, le=100)


# Delivery
class ProjectIn(BaseModel):
    client_id: str
    order_id: Optional[str] = None
    project_name: str = Field(..., min_length=2)
    website_idea: Optional[str] = None
    status: ProjectStatus = 'analysis'
    days_remaining: Optional[int] = Field(None, ge=0)
    target_date: Optional[datetime] = None
    domain: Optional[str] = None
    email: Optional[str] = None
    tools_used: List[str] = []
    assigned_employees: List[str] = []

class ProjectStatusUpdate(BaseModel):
    status: ProjectStatus

class ProjectIdeaUpdate(BaseModel):
    website_idea: str = Field(..., min_length=1)

class DaysRemainingUpdate(BaseModel):
    days_remaining: int = Field(..., ge=0)

class EmployeeTaskIn(BaseModel):
    employee_id: str
    project_id: Optional[str] = None
    title: str = Field(..., min_length=1)
    hours_remaining: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None

class EmployeeTaskUpdate(BaseModel):
    is_completed: Optional[bool] = None
    hours_remaining: Optional[int] = Field(None, ge=0)

class PhotoUpdate(BaseModel):
    photo_url: str = Field(..., min_length=1)

class ReviewIn(BaseModel):
    user_id: str
    user_type: AccountType
    user_name: str
    target_id: str
    target_type: ReviewTarget
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None

class NotificationIn(BaseModel):
    user_id: str
    user_type: AccountType
    title: str
    message: str
    type: Literal['info', 'success', 'warning', 'error'] = 'info'
    link: Optional[str] = None


# Chat
class ConversationIn(BaseModel):
    project_id: Optional[str] = None
    client_id: str
    employee_id: Optional[str] = None

class ChatMessageIn(BaseModel):
    sender_id: str
    sender_type: AccountType
    content: str = Field(..., min_length=1, max_length=5000)

class MarkReadIn(BaseModel):
    reader_id: str


# Change requests
class ModificationRequestIn(BaseModel):
    project_id: str
    client_id: str
    title: str = Field(..., min_length=2)
    description: str = Field(..., min_length=1)
    priority: Literal['low', 'normal', 'high', 'urgent'] = 'normal'

class ModificationStatusUpdate(BaseModel):
    status: RequestStatus
    assigned_to: Optional[str] = None

class FeatureRequestIn(BaseModel):
    project_id: str
    client_id: str
    title: str = Field(..., min_length=2)
    description: str = Field(..., min_length=1)

class FeatureStatusUpdate(BaseModel):
    status: RequestStatus
    admin_notes: Optional[str] = None
    estimated_cost: Optional[int] = Field(None, ge=0)
    estimated_days: Optional[int] = Field(None, ge=0)


# Project workspace
class ProjectFileIn(BaseModel):
    uploaded_by: str
    uploader_type: AccountType
    file_name: str = Field(..., min_length=1)
    file_url: str = Field(..., min_length=1)
    file_type: Optional[str] = None
    description: Optional[str] = None

class AnswerIn(BaseModel):
    answer: str = Field(..., min_length=1)
