from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

UserRole = Literal["CLIENT", "PROVIDER", "ADMIN"]

BookingStatus = Literal[
    "REQUESTED",
    "ACCEPTED",
    "DECLINED",
    "IN_PROGRESS",
    "COMPLETED",
    "CANCELED",
]

PaymentStatus = Literal["PENDING", "AUTHORIZED", "CAPTURED", "REFUNDED", "FAILED"]

TimeSlot = Literal["MORNING", "AFTERNOON", "EVENING"]

PricingType = Literal["HOURLY", "FIXED"]

ReportStatus = Literal["PENDING", "INVESTIGATING", "RESOLVED", "DISMISSED"]

ReportType = Literal[
    "INAPPROPRIATE_CONTENT",
    "FRAUD",
    "HARASSMENT",
    "SPAM",
    "SAFETY_CONCERN",
    "OTHER",
]


class User(BaseModel):
    id: str
    email: str
    name: str
    phone: Optional[str] = None
    role: UserRole = "CLIENT"
    created_at: str


class UserRegisterRequest(BaseModel):
    email: str
    name: str
    phone: Optional[str] = None
    role: Literal["CLIENT", "PROVIDER"] = "CLIENT"


class Category(BaseModel):
    id: str
    slug: str
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    sort_order: int = 0


class ProviderLocation(BaseModel):
    postal_code: str
    city: str
    canton: Optional[str] = "JU"


class ProviderAvailability(BaseModel):
    weekday: int
    time_slot: str


class ProviderPricing(BaseModel):
    category_id: str
    category_name: Optional[str] = None
    pricing_type: str
    hourly_rate: Optional[float] = None
    fixed_price: Optional[float] = None
    min_hours: Optional[float] = None
    currency: str = "CHF"


class ProviderProfileRequest(BaseModel):
    user_id: str
    bio: str = ""
    photo_url: Optional[str] = None
    languages: list[str] = Field(default_factory=list)
    category_ids: list[str] = Field(default_factory=list)
    locations: list[ProviderLocation] = Field(default_factory=list)
    # None keeps the stored rows, an empty list clears them.
    availabilities: Optional[list[ProviderAvailability]] = None
    pricings: Optional[list[ProviderPricing]] = None


class ProviderProfile(BaseModel):
    id: str
    user_id: str
    name: str
    email: str
    phone: Optional[str] = None
    bio: str = ""
    photo_url: Optional[str] = None
    languages: list[str] = Field(default_factory=list)
    is_verified: bool = False
    verification_notes: Optional[str] = None
    response_time_minutes: Optional[int] = None
    average_rating: Optional[float] = None
    rating_count: int = 0
    created_at: str
    updated_at: str
    categories: list[Category] = Field(default_factory=list)
    locations: list[ProviderLocation] = Field(default_factory=list)
    availabilities: list[ProviderAvailability] = Field(default_factory=list)
    pricings: list[ProviderPricing] = Field(default_factory=list)


class ProviderVerifyRequest(BaseModel):
    verified: bool
    notes: Optional[str] = None


class MatchRequest(BaseModel):
    category_id: str
    postal_code: Optional[str] = None
    city: Optional[str] = None
    preferred_time: Optional[datetime] = None


class ProviderMatch(BaseModel):
    id: str
    user_id: str
    name: str
    photo_url: Optional[str] = None
    bio: str = ""
    languages: list[str] = Field(default_factory=list)
    is_verified: bool = False
    average_rating: Optional[float] = None
    rating_count: int = 0
    city: Optional[str] = None
    pricing_type: Optional[PricingType] = None
    hourly_rate: Optional[float] = None
    fixed_price: Optional[float] = None
    min_hours: Optional[float] = None
    currency: Optional[str] = None
    response_time_minutes: Optional[int] = None


class BookingCreateRequest(BaseModel):
    client_id: str
    category_id: Optional[str] = None
    provider_id: Optional[str] = None
    description: str = ""
    postal_code: str = ""
    city: str = ""
    address_text: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    urgency: Optional[str] = None
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None


class BookingActionRequest(BaseModel):
    actor_user_id: str


class BookingDeclineRequest(BookingActionRequest):
    reason: Optional[str] = None


class BookingReassignRequest(BookingActionRequest):
    provider_id: str


class AdminBookingStatusRequest(BaseModel):
    status: BookingStatus


class BookingParty(BaseModel):
    id: str
    name: str
    email: str
    phone: Optional[str] = None


class BookingProviderSummary(BookingParty):
    photo_url: Optional[str] = None
    is_verified: bool = False
    average_rating: Optional[float] = None


class Rating(BaseModel):
    id: str
    booking_id: str
    score: int
    comment: Optional[str] = None
    created_at: str


class RatingCreateRequest(BaseModel):
    client_id: str
    score: int
    comment: Optional[str] = None


class Booking(BaseModel):
    id: str
    status: BookingStatus
    description: str
    postal_code: str
    city: str
    address_text: Optional[str] = None
    scheduled_at: Optional[str] = None
    urgency: Optional[str] = None
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None
    payment_status: PaymentStatus = "PENDING"
    created_at: str
    updated_at: str
    completed_at: Optional[str] = None
    category: Category
    client: BookingParty
    provider: Optional[BookingProviderSummary] = None
    rating: Optional[Rating] = None
    unread_message_count: int = 0


class BookingPage(BaseModel):
    content: list[Booking]
    page: int
    size: int
    total_elements: int
    total_pages: int
    first: bool
    last: bool


class BookingStatusChange(BaseModel):
    actor_user_id: Optional[str] = None
    from_status: str
    to_status: str
    note: str = ""
    created_at: str


class Message(BaseModel):
    id: str
    booking_id: str
    sender_id: str
    sender_name: str
    content: str
    is_read: bool = False
    is_own_message: bool = False
    created_at: str


class SendMessageRequest(BaseModel):
    sender_id: str
    content: str


class AuthLoginRequest(BaseModel):
    email: str
    password: str


class AuthLoginResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    user_id: str
    role: UserRole
    expires_at: str


class AuthMeResponse(BaseModel):
    user: User


class DeviceTokenRegisterRequest(BaseModel):
    user_id: str
    device_token: str
    platform: Literal["android", "ios", "web"] = "web"


class NotificationRecord(BaseModel):
    id: str
    user_id: str
    title: str
    body: str
    category: Literal["booking", "message", "rating", "verification", "system"] = "system"
    read: bool = False
    created_at: str
    deep_link: Optional[str] = None


class ReportCreateRequest(BaseModel):
    reporter_id: str
    reported_user_id: Optional[str] = None
    reported_booking_id: Optional[str] = None
    report_type: ReportType
    description: str


class Report(BaseModel):
    id: str
    reporter_id: str
    reporter_name: str
    reporter_email: str
    reported_user_id: Optional[str] = None
    reported_user_name: Optional[str] = None
    reported_booking_id: Optional[str] = None
    report_type: ReportType
    description: str
    status: ReportStatus
    admin_notes: Optional[str] = None
    resolved_by_id: Optional[str] = None
    resolved_by_name: Optional[str] = None
    resolved_at: Optional[str] = None
    created_at: str
    updated_at: str


class ReportStatusUpdateRequest(BaseModel):
    status: ReportStatus
    admin_notes: Optional[str] = None


class ReportPage(BaseModel):
    content: list[Report]
    page: int
    size: int
    total_elements: int
    total_pages: int
    first: bool
    last: bool


class ReportStatistics(BaseModel):
    pending: int = 0
    investigating: int = 0
    resolved: int = 0
    dismissed: int = 0
    total: int = 0


class DashboardStats(BaseModel):
    reports: ReportStatistics
    bookings_by_status: dict[str, int]
    providers_awaiting_verification: int
    pending_actions: int
