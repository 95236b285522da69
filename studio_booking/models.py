"""
Database models for the studio booking system
"""
import enum
from datetime import datetime

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, Float, ForeignKey, Integer,
    String, Text, UniqueConstraint, func,
)
from sqlalchemy.orm import relationship

from .database import Base


class UserRole(str, enum.Enum):
    TRAINEE = "trainee"
    ADMINISTRATOR = "administrator"


class BookingStatus(str, enum.Enum):
    CONFIRMED = "confirmed"
    # pending bookings hold no ticket and do not count towards capacity
    PENDING = "pending"


class CreditKind(str, enum.Enum):
    BOOKING = "booking"
    CANCELLATION_REFUND = "cancellation_refund"
    SESSION_DELETED_REFUND = "session_deleted_refund"
    ADMIN_GRANT = "admin_grant"
    ADMIN_SET = "admin_set"
    SUBSCRIPTION = "subscription"
    TICKET_PURCHASE = "ticket_purchase"


class Profile(Base):
    """Trainee or administrator"""
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(100), nullable=True)
    phone = Column(String(20), nullable=True)
    age = Column(Integer, nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.TRAINEE.value)
    onboarding_completed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, nullable=True)

    # Relationships
    credits = relationship("UserCredit", back_populates="profile", uselist=False)
    health = relationship("HealthDeclaration", back_populates="profile", uselist=False)
    bookings = relationship("Booking", back_populates="user")


class HealthDeclaration(Base):
    __tablename__ = "health_declarations"

    id = Column(Integer, ForeignKey("profiles.id"), primary_key=True)
    is_healthy = Column(Boolean, nullable=False, default=True)
    medical_conditions = Column(Text, nullable=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    profile = relationship("Profile", back_populates="health")


class GymSession(Base):
    """A scheduled, capacity-bounded class"""
    __tablename__ = "gym_sessions"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    max_capacity = Column(Integer, nullable=False, default=10)
    created_at = Column(DateTime, server_default=func.now())

    bookings = relationship("Booking", back_populates="session")

    __table_args__ = (
        CheckConstraint("max_capacity >= 1", name="check_session_capacity_positive"),
    )


class Booking(Base):
    """Reservation of one spot in a session; deleting the row cancels it"""
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("gym_sessions.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("profiles.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=BookingStatus.CONFIRMED.value)
    created_at = Column(DateTime, server_default=func.now())

    # Relationships
    session = relationship("GymSession", back_populates="bookings")
    user = relationship("Profile", back_populates="bookings")

    # One booking per user per session
    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="unique_session_user_booking"),
    )


class UserCredit(Base):
    """Ticket balance"""
    __tablename__ = "user_credits"

    user_id = Column(Integer, ForeignKey("profiles.id"), primary_key=True)
    balance = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    profile = relationship("Profile", back_populates="credits")

    __table_args__ = (
        CheckConstraint("balance >= 0", name="check_credit_balance_non_negative"),
    )


class CreditTransaction(Base):
    """A single ticket movement; positive amount means tickets in"""
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("profiles.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    kind = Column(String(30), nullable=False)
    # Plain column: the session may be deleted later
    session_id = Column(Integer, nullable=True)
    reference = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class SubscriptionTier(Base):
    __tablename__ = "subscription_tiers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False, unique=True)
    display_name = Column(String(100), nullable=False)
    sessions = Column(Integer, nullable=False)
    price_nis = Column(Integer, nullable=False)
    price_per_session = Column(Float, nullable=False)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("profiles.id"), nullable=False, index=True)
    tier_id = Column(Integer, ForeignKey("subscription_tiers.id"), nullable=False)
    sessions_granted = Column(Integer, nullable=False)
    price_nis = Column(Integer, nullable=False)
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    tier = relationship("SubscriptionTier")


class IdempotencyKey(Base):
    """Stored response of a mutation, replayed when the same key is sent again"""
    __tablename__ = "idempotency_keys"

    key = Column(String(100), primary_key=True)
    user_id = Column(Integer, ForeignKey("profiles.id"), nullable=False)
    operation = Column(String(50), nullable=False)
    # What the request targeted, e.g. "session:12"
    fingerprint = Column(String(100), nullable=False)
    response = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
