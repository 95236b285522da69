from pydantic import BaseModel, EmailStr, Field, validator
from datetime import datetime, timezone
from typing import Optional, List

# Auth
class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=72)
    full_name: Optional[str] = Field(None, max_length=100)

class UserLogin(BaseModel):
    email: EmailStr
    password: str

class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"

class TokenRefresh(BaseModel):
    refresh_token: str

class PasswordChange(BaseModel):
    old_password: str
    new_password: str = Field(..., min_length=6, max_length=72)

# Profile
class ProfileResponse(BaseModel):
    id: int
    email: str
    full_name: Optional[str] = None
    phone: Optional[str] = None
    age: Optional[int] = None
    role: str
    onboarding_completed: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class HealthDeclarationResponse(BaseModel):
    is_healthy: bool
    medical_conditions: Optional[str] = None

    class Config:
        from_attributes = True

class OnboardingRequest(BaseModel):
    full_name: str = Field(..., min_length=2, max_length=100)
    age: int = Field(..., ge=14, le=120)
    phone: str = Field(..., min_length=9, max_length=20, pattern=r"^[\d-]+$")
    is_healthy: bool
    medical_conditions: Optional[str] = None

    @validator("medical_conditions", always=True)
    def conditions_required_when_not_healthy(cls, v, values):
        if values.get("is_healthy") is False and not (v or "").strip():
            raise ValueError("Please describe your medical conditions")
        return v

class ProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=2, max_length=100)
    phone: Optional[str] = Field(None, min_length=9, max_length=20, pattern=r"^[\d-]+$")
    is_healthy: Optional[bool] = None
    medical_conditions: Optional[str] = None

class ProfileDetailResponse(BaseModel):
    profile: ProfileResponse
    health: Optional[HealthDeclarationResponse] = None
    balance: int

# Sessions
def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Times are stored as naive UTC"""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value

class SessionCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    max_capacity: int = Field(10, ge=1)

    @validator("start_time")
    def start_as_utc(cls, v):
        return _to_naive_utc(v)

    @validator("end_time")
    def end_after_start(cls, v, values):
        v = _to_naive_utc(v)
        start = values.get("start_time")
        if v is not None and start is not None and v <= start:
            raise ValueError("end_time must be after start_time")
        return v

class SessionResponse(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    max_capacity: int
    current_bookings: int = 0
    is_registered: bool = False
    is_full: bool = False

class SessionBrief(BaseModel):
    id: int
    title: str
    start_time: datetime
    end_time: datetime

    class Config:
        from_attributes = True

class MyBookingResponse(BaseModel):
    id: int
    status: str
    created_at: Optional[datetime] = None
    session: SessionBrief

    class Config:
        from_attributes = True

# Procedure results
class ProcedureResult(BaseModel):
    success: bool
    message: str

class BookingResult(ProcedureResult):
    session_id: int
    balance: int

class DeleteSessionResult(ProcedureResult):
    session_id: int
    refunded_user_ids: List[int] = []

class BalanceResult(ProcedureResult):
    user_id: int
    balance: int

# Tickets & subscriptions
class TicketsResponse(BaseModel):
    balance: int

class SubscriptionResponse(BaseModel):
    tier_name: str
    display_name: str
    sessions_granted: int
    price_nis: int
    started_at: datetime
    expires_at: datetime
    is_active: bool

class TierResponse(BaseModel):
    id: int
    name: str
    display_name: str
    sessions: int
    price_nis: int
    price_per_session: float

    class Config:
        from_attributes = True

class TiersResponse(BaseModel):
    success: bool = True
    tiers: List[TierResponse]
    fallback: bool = False

# Payments
class PaymentRequest(BaseModel):
    type: str
    tier_id: Optional[int] = None
    quantity: Optional[int] = None

class PaymentResponse(BaseModel):
    success: bool
    message: str
    transaction_id: Optional[str] = None
    data: Optional[dict] = None

# Notifications
class NotificationRequest(BaseModel):
    title: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    target_role: Optional[str] = None
    target_user_ids: Optional[List[int]] = None
    url: Optional[str] = None

class GrantNotificationRequest(BaseModel):
    user_id: int
    amount: int

class NotificationResponse(BaseModel):
    success: bool
    id: Optional[str] = None
    recipients: int = 0

# Admin
class GrantTicketsRequest(BaseModel):
    quantity: int

    @validator("quantity")
    def quantity_not_zero(cls, v):
        if v == 0:
            raise ValueError("quantity must not be zero")
        return v

class SetBalanceRequest(BaseModel):
    balance: int = Field(..., ge=0)

class TraineeResponse(BaseModel):
    id: int
    email: str
    full_name: Optional[str] = None
    phone: Optional[str] = None
    role: str
    balance: int = 0

class StatsResponse(BaseModel):
    active_users: int
    sessions_today: int
    open_bookings: int

class LedgerEntryResponse(BaseModel):
    id: int
    amount: int
    balance_after: int
    kind: str
    session_id: Optional[int] = None
    reference: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
