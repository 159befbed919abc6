from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    CLIENT = "client"
    PROVIDER = "provider"
    ADMIN = "admin"


class RequestStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class ProposalStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class AppointmentStatus(str, Enum):
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PaymentStatus(str, Enum):
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"
    REFUSED = "refused"


class NotificationChannel(str, Enum):
    IN_APP = "in_app"
    EMAIL = "email"
    SMS = "sms"
    WEBPUSH = "webpush"


class User(BaseModel):
    id: int
    name: str
    email: str
    role: Role
    phone: Optional[str] = None
    location: Optional[str] = None
    status: Literal["active", "suspended"] = "active"
    created_at: str


class ServiceRequest(BaseModel):
    id: int
    client_id: int
    provider_id: Optional[int] = None
    title: str
    category: str
    description: str
    location: str
    budget: Optional[str] = None
    urgency: Urgency = Urgency.MEDIUM
    status: RequestStatus
    scheduled_at: Optional[str] = None
    created_at: str
    updated_at: str
    proposal_count: int = 0


class Proposal(BaseModel):
    id: int
    request_id: int
    provider_id: int
    provider_name: Optional[str] = None
    proposed_price: float
    message: Optional[str] = None
    status: ProposalStatus
    created_at: str
    updated_at: str


class Appointment(BaseModel):
    id: int
    request_id: int
    provider_id: int
    client_id: int
    scheduled_for: Optional[str] = None
    status: AppointmentStatus
    created_at: str
    updated_at: str


class Message(BaseModel):
    id: int
    request_id: int
    sender_id: int
    sender_name: Optional[str] = None
    recipient_id: int
    content: Optional[str] = None
    attachment_url: Optional[str] = None
    attachment_type: Optional[str] = None
    created_at: str


class Review(BaseModel):
    id: int
    provider_id: int
    client_id: int
    client_name: Optional[str] = None
    rating: int
    comment: Optional[str] = None
    created_at: str


class ReviewStats(BaseModel):
    user_id: int
    user_name: Optional[str] = None
    total_reviews: int = 0
    average_rating: float = 0.0
    rating_distribution: Dict[int, int] = Field(default_factory=lambda: {star: 0 for star in range(1, 6)})


class Payment(BaseModel):
    id: int
    request_id: int
    provider_id: int
    client_id: int
    amount: float
    currency: str = "BRL"
    status: PaymentStatus
    checkout_url: Optional[str] = None
    description: Optional[str] = None
    provider_name: Optional[str] = None
    client_name: Optional[str] = None
    created_at: str
    updated_at: str


class NotificationRecord(BaseModel):
    id: int
    user_id: int
    channel: NotificationChannel = NotificationChannel.IN_APP
    title: str
    body: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    read_at: Optional[str] = None
    created_at: str


class OutboxEntry(BaseModel):
    id: int
    notification_id: int
    user_id: int
    channel: NotificationChannel
    title: str
    body: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    status: Literal["pending", "delivered", "skipped", "failed"] = "pending"
    attempts: int = 0
    last_error: Optional[str] = None


class AuthRegisterRequest(BaseModel):
    name: str
    email: str
    password: str = Field(min_length=6)
    role: Literal["client", "provider"] = "client"
    phone: Optional[str] = None
    location: Optional[str] = None


class AuthLoginRequest(BaseModel):
    email: str
    password: str


class AuthLoginResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    user: User
    expires_at: str


class ServiceRequestCreate(BaseModel):
    title: str
    description: str
    category: str
    location: str
    budget: Optional[str] = None
    urgency: Urgency = Urgency.MEDIUM
    scheduled_at: Optional[str] = None


class RequestStatusUpdateRequest(BaseModel):
    status: Literal["pending", "accepted", "rejected", "completed"]
    scheduled_at: Optional[str] = None


class ProposalCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    proposed_price: float = Field(alias="proposedPrice", gt=0)
    message: Optional[str] = None


class ProposalActionRequest(BaseModel):
    action: Literal["accept", "reject"]


class NotificationReadRequest(BaseModel):
    ids: list[int] = Field(default_factory=list)


class DeviceTokenRegisterRequest(BaseModel):
    device_token: str
    platform: Literal["android", "ios", "web"] = "web"


class AppointmentUpdateRequest(BaseModel):
    status: Literal["confirmed", "completed", "cancelled"]
    scheduled_for: Optional[str] = None


class MessageCreateRequest(BaseModel):
    content: Optional[str] = None
    attachment_url: Optional[str] = None
    attachment_type: Optional[str] = None


class ReviewCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    provider_id: int = Field(alias="providerId", gt=0)
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=1000)


class PaymentCreateRequest(BaseModel):
    request_id: int = Field(gt=0)
    amount: float = Field(gt=0)
    checkout_url: Optional[str] = None


class PaymentStatusUpdateRequest(BaseModel):
    status: Literal["awaiting_payment", "paid", "refused"]
