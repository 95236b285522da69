"""
Booking and ticket procedures.

Every mutating procedure runs as one database transaction: rows are locked
(SELECT ... FOR UPDATE where the backend supports it), the booking rows and
the ticket balance change together, a ledger row records each balance change,
and the whole thing is committed once or rolled back.

Business-rule failures raise BookingError; the routers turn the message into
the HTTP error detail.
"""
import json
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models
from .settings import (
    CANCELLATION_WINDOW_HOURS,
    FALLBACK_TIERS,
    SUBSCRIPTION_PERIOD_DAYS,
)

logger = logging.getLogger(__name__)


class BookingError(Exception):
    """A booking or ticket rule was violated"""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@contextmanager
def _transaction(db: Session):
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise


# ---------- Idempotency ----------

def session_fingerprint(session_id: int) -> str:
    return f"session:{session_id}"


def subscription_fingerprint(tier_id: int) -> str:
    return f"tier:{tier_id}"


def tickets_fingerprint(quantity: int) -> str:
    return f"quantity:{quantity}"


def find_replay(
    db: Session,
    key: Optional[str],
    user_id: int,
    operation: str,
    fingerprint: str,
) -> Optional[dict]:
    """Stored result for a repeated key, or None for a new one"""
    if not key:
        return None
    row = db.get(models.IdempotencyKey, key)
    if row is None:
        return None
    if row.user_id != user_id or row.operation != operation or row.fingerprint != fingerprint:
        raise BookingError("Idempotency key was already used for a different request", 409)
    logger.info(f"Replaying {operation} ({fingerprint}) for key {key}")
    result = json.loads(row.response)
    result["replayed"] = True
    return result


def _remember(
    db: Session,
    key: Optional[str],
    user_id: int,
    operation: str,
    fingerprint: str,
    result: dict,
):
    if key:
        db.add(models.IdempotencyKey(
            key=key,
            user_id=user_id,
            operation=operation,
            fingerprint=fingerprint,
            response=json.dumps(result, default=str),
        ))


# ---------- Ticket balance ----------

def _credit_row(db: Session, user_id: int) -> models.UserCredit:
    row = (
        db.query(models.UserCredit)
        .filter(models.UserCredit.user_id == user_id)
        .with_for_update()
        .first()
    )
    if row is None:
        row = models.UserCredit(user_id=user_id, balance=0)
        db.add(row)
        db.flush()
    return row


def _apply_credit(
    db: Session,
    user_id: int,
    amount: int,
    kind: models.CreditKind,
    session_id: Optional[int] = None,
    reference: Optional[str] = None,
) -> int:
    """Change a balance by `amount` and ledger it. Returns the new balance."""
    row = _credit_row(db, user_id)
    new_balance = row.balance + amount
    if new_balance < 0:
        if kind == models.CreditKind.BOOKING:
            raise BookingError("Not enough tickets. Please purchase more.", 400)
        raise BookingError("Ticket balance cannot go below zero", 400)

    row.balance = new_balance
    db.add(models.CreditTransaction(
        user_id=user_id,
        amount=amount,
        balance_after=new_balance,
        kind=kind.value,
        session_id=session_id,
        reference=reference,
    ))
    return new_balance


def get_available_tickets(db: Session, user_id: int) -> int:
    row = db.query(models.UserCredit).filter(models.UserCredit.user_id == user_id).first()
    return row.balance if row else 0


# ---------- Sessions ----------

def confirmed_counts(db: Session, session_ids: Iterable[int]) -> Dict[int, int]:
    """Live count of confirmed bookings per session"""
    session_ids = list(session_ids)
    if not session_ids:
        return {}
    rows = (
        db.query(models.Booking.session_id, func.count(models.Booking.id))
        .filter(
            models.Booking.session_id.in_(session_ids),
            models.Booking.status == models.BookingStatus.CONFIRMED.value,
        )
        .group_by(models.Booking.session_id)
        .all()
    )
    return {session_id: count for session_id, count in rows}


def list_sessions(db: Session, user_id: int, upcoming_only: bool = True) -> List[dict]:
    """Sessions ordered by start time with fill level and the caller's registration"""
    query = db.query(models.GymSession)
    if upcoming_only:
        query = query.filter(models.GymSession.start_time >= datetime.utcnow())
    sessions = query.order_by(models.GymSession.start_time).all()

    counts = confirmed_counts(db, [s.id for s in sessions])
    registered = {
        b.session_id
        for b in db.query(models.Booking).filter(
            models.Booking.user_id == user_id,
            models.Booking.status == models.BookingStatus.CONFIRMED.value,
        )
    }

    result = []
    for s in sessions:
        current = counts.get(s.id, 0)
        result.append({
            "id": s.id,
            "title": s.title,
            "description": s.description,
            "start_time": s.start_time,
            "end_time": s.end_time,
            "max_capacity": s.max_capacity,
            "current_bookings": current,
            "is_registered": s.id in registered,
            "is_full": current >= s.max_capacity,
        })
    return result


def create_session(
    db: Session,
    title: str,
    start_time: datetime,
    max_capacity: int,
    duration_minutes: int,
    description: Optional[str] = None,
    end_time: Optional[datetime] = None,
) -> models.GymSession:
    session = models.GymSession(
        title=title,
        description=description,
        start_time=start_time,
        end_time=end_time or start_time + timedelta(minutes=duration_minutes),
        max_capacity=max_capacity,
    )
    with _transaction(db):
        db.add(session)
    db.refresh(session)
    logger.info(f"Session #{session.id} '{title}' created for {start_time}")
    return session


def book_session(
    db: Session,
    user: models.Profile,
    session_id: int,
    idempotency_key: Optional[str] = None,
) -> dict:
    """Reserve a spot: capacity check, one ticket debited, booking confirmed"""
    try:
        with _transaction(db):
            fingerprint = session_fingerprint(session_id)
            replay = find_replay(db, idempotency_key, user.id, "book_session", fingerprint)
            if replay is not None:
                return replay

            session = (
                db.query(models.GymSession)
                .filter(models.GymSession.id == session_id)
                .with_for_update()
                .first()
            )
            if session is None:
                raise BookingError("Session not found", 404)
            if session.start_time <= datetime.utcnow():
                raise BookingError("This session has already started", 400)

            booking = (
                db.query(models.Booking)
                .filter(
                    models.Booking.session_id == session_id,
                    models.Booking.user_id == user.id,
                )
                .with_for_update()
                .first()
            )
            if booking is not None and booking.status == models.BookingStatus.CONFIRMED.value:
                raise BookingError("You are already registered for this session", 409)

            taken = confirmed_counts(db, [session_id]).get(session_id, 0)
            if taken >= session.max_capacity:
                raise BookingError("This session is full", 409)

            balance = _apply_credit(
                db, user.id, -1, models.CreditKind.BOOKING, session_id=session_id
            )

            if booking is None:
                db.add(models.Booking(
                    session_id=session_id,
                    user_id=user.id,
                    status=models.BookingStatus.CONFIRMED.value,
                ))
            else:
                # A pending hold becomes a confirmed booking
                booking.status = models.BookingStatus.CONFIRMED.value

            result = {
                "success": True,
                "message": "Booked successfully",
                "session_id": session_id,
                "balance": balance,
            }
            _remember(db, idempotency_key, user.id, "book_session", fingerprint, result)
    except IntegrityError:
        logger.warning(f"Concurrent booking of session #{session_id} by user #{user.id}")
        raise BookingError("You are already registered for this session", 409)

    logger.info(f"User #{user.id} booked session #{session_id}, balance {balance}")
    return result


def cancel_booking(
    db: Session,
    user: models.Profile,
    session_id: int,
    idempotency_key: Optional[str] = None,
) -> dict:
    """Delete the caller's booking and refund its ticket"""
    with _transaction(db):
        fingerprint = session_fingerprint(session_id)
        replay = find_replay(db, idempotency_key, user.id, "cancel_booking", fingerprint)
        if replay is not None:
            return replay

        booking = (
            db.query(models.Booking)
            .filter(
                models.Booking.session_id == session_id,
                models.Booking.user_id == user.id,
            )
            .with_for_update()
            .first()
        )
        if booking is None:
            raise BookingError("No booking found for this session", 404)

        hours_until_start = (booking.session.start_time - datetime.utcnow()).total_seconds() / 3600
        if hours_until_start < CANCELLATION_WINDOW_HOURS:
            raise BookingError(
                f"Too late to cancel (less than {CANCELLATION_WINDOW_HOURS:g} hours notice)", 400
            )

        held_ticket = booking.status == models.BookingStatus.CONFIRMED.value
        db.delete(booking)
        if held_ticket:
            balance = _apply_credit(
                db, user.id, 1, models.CreditKind.CANCELLATION_REFUND, session_id=session_id
            )
        else:
            balance = _credit_row(db, user.id).balance

        result = {
            "success": True,
            "message": "Booking cancelled, your ticket was returned" if held_ticket else "Booking cancelled",
            "session_id": session_id,
            "balance": balance,
        }
        _remember(db, idempotency_key, user.id, "cancel_booking", fingerprint, result)

    logger.info(f"User #{user.id} cancelled session #{session_id}, balance {balance}")
    return result


def delete_session(
    db: Session,
    admin: models.Profile,
    session_id: int,
    idempotency_key: Optional[str] = None,
) -> dict:
    """Refund every confirmed booking, then remove the bookings and the session"""
    with _transaction(db):
        fingerprint = session_fingerprint(session_id)
        replay = find_replay(db, idempotency_key, admin.id, "delete_session", fingerprint)
        if replay is not None:
            return replay

        session = (
            db.query(models.GymSession)
            .filter(models.GymSession.id == session_id)
            .with_for_update()
            .first()
        )
        if session is None:
            raise BookingError("Session not found", 404)

        bookings = (
            db.query(models.Booking)
            .filter(models.Booking.session_id == session_id)
            .with_for_update()
            .all()
        )
        refunded = []
        for booking in bookings:
            if booking.status == models.BookingStatus.CONFIRMED.value:
                _apply_credit(
                    db,
                    booking.user_id,
                    1,
                    models.CreditKind.SESSION_DELETED_REFUND,
                    session_id=session_id,
                    reference=f"admin:{admin.id}",
                )
                refunded.append(booking.user_id)
            db.delete(booking)
        db.flush()
        db.delete(session)

        result = {
            "success": True,
            "message": f"Session deleted, {len(refunded)} tickets refunded",
            "session_id": session_id,
            "refunded_user_ids": refunded,
        }
        _remember(db, idempotency_key, admin.id, "delete_session", fingerprint, result)

    logger.info(f"Session #{session_id} deleted by admin #{admin.id}, refunded {refunded}")
    return result


# ---------- Admin balance changes ----------

def _get_profile(db: Session, user_id: int) -> models.Profile:
    profile = db.get(models.Profile, user_id)
    if profile is None:
        raise BookingError("Trainee not found", 404)
    return profile


def admin_grant_tickets(
    db: Session,
    admin: models.Profile,
    user_id: int,
    quantity: int,
    idempotency_key: Optional[str] = None,
) -> dict:
    with _transaction(db):
        fingerprint = f"user:{user_id}:{quantity:+d}"
        replay = find_replay(db, idempotency_key, admin.id, "admin_grant_tickets", fingerprint)
        if replay is not None:
            return replay

        if quantity == 0:
            raise BookingError("Quantity must not be zero", 400)
        _get_profile(db, user_id)
        balance = _apply_credit(
            db, user_id, quantity, models.CreditKind.ADMIN_GRANT, reference=f"admin:{admin.id}"
        )
        result = {
            "success": True,
            "message": f"Balance updated by {quantity:+d}",
            "user_id": user_id,
            "balance": balance,
        }
        _remember(db, idempotency_key, admin.id, "admin_grant_tickets", fingerprint, result)

    logger.info(f"Admin #{admin.id} granted {quantity} tickets to user #{user_id}, balance {balance}")
    return result


def admin_set_balance(
    db: Session,
    admin: models.Profile,
    user_id: int,
    balance: int,
    idempotency_key: Optional[str] = None,
) -> dict:
    with _transaction(db):
        fingerprint = f"user:{user_id}:={balance}"
        replay = find_replay(db, idempotency_key, admin.id, "admin_set_balance", fingerprint)
        if replay is not None:
            return replay

        _get_profile(db, user_id)
        current = _credit_row(db, user_id).balance
        if balance != current:
            _apply_credit(
                db, user_id, balance - current, models.CreditKind.ADMIN_SET,
                reference=f"admin:{admin.id}",
            )
        result = {
            "success": True,
            "message": "Balance updated",
            "user_id": user_id,
            "balance": balance,
        }
        _remember(db, idempotency_key, admin.id, "admin_set_balance", fingerprint, result)

    logger.info(f"Admin #{admin.id} set balance of user #{user_id} to {balance}")
    return result


def promote_admins(db: Session, emails: Iterable[str]) -> List[int]:
    """Give the administrator role to existing profiles with these emails"""
    emails = [e.lower() for e in emails]
    if not emails:
        return []
    with _transaction(db):
        profiles = (
            db.query(models.Profile)
            .filter(
                func.lower(models.Profile.email).in_(emails),
                models.Profile.role != models.UserRole.ADMINISTRATOR.value,
            )
            .all()
        )
        promoted = []
        for profile in profiles:
            profile.role = models.UserRole.ADMINISTRATOR.value
            promoted.append(profile.id)
    if promoted:
        logger.info(f"Promoted profiles {promoted} to administrator")
    return promoted


# ---------- Subscriptions ----------

def seed_subscription_tiers(db: Session):
    """Insert the default tiers into an empty table"""
    if db.query(models.SubscriptionTier).count():
        return
    with _transaction(db):
        for tier in FALLBACK_TIERS:
            db.add(models.SubscriptionTier(**tier))
    logger.info("Default subscription tiers created")


def _active_subscription(db: Session, user_id: int) -> Optional[models.Subscription]:
    return (
        db.query(models.Subscription)
        .filter(
            models.Subscription.user_id == user_id,
            models.Subscription.is_active.is_(True),
            models.Subscription.expires_at > datetime.utcnow(),
        )
        .order_by(models.Subscription.expires_at.desc())
        .first()
    )


def _subscription_dict(subscription: models.Subscription) -> dict:
    return {
        "tier_name": subscription.tier.name,
        "display_name": subscription.tier.display_name,
        "sessions_granted": subscription.sessions_granted,
        "price_nis": subscription.price_nis,
        "started_at": subscription.started_at,
        "expires_at": subscription.expires_at,
        "is_active": subscription.is_active and subscription.expires_at > datetime.utcnow(),
    }


def get_user_subscription(db: Session, user_id: int) -> Optional[dict]:
    subscription = _active_subscription(db, user_id)
    return _subscription_dict(subscription) if subscription else None


def purchase_subscription(
    db: Session,
    user: models.Profile,
    tier_id: int,
    reference: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> dict:
    """Replace the active subscription and grant the tier's tickets"""
    with _transaction(db):
        fingerprint = subscription_fingerprint(tier_id)
        replay = find_replay(db, idempotency_key, user.id, "purchase_subscription", fingerprint)
        if replay is not None:
            return replay

        tier = db.get(models.SubscriptionTier, tier_id)
        if tier is None:
            raise BookingError("Subscription tier not found", 404)

        now = datetime.utcnow()
        db.query(models.Subscription).filter(
            models.Subscription.user_id == user.id,
            models.Subscription.is_active.is_(True),
        ).update({models.Subscription.is_active: False}, synchronize_session=False)

        subscription = models.Subscription(
            user_id=user.id,
            tier=tier,
            sessions_granted=tier.sessions,
            price_nis=tier.price_nis,
            started_at=now,
            expires_at=now + timedelta(days=SUBSCRIPTION_PERIOD_DAYS),
            is_active=True,
        )
        db.add(subscription)
        balance = _apply_credit(
            db, user.id, tier.sessions, models.CreditKind.SUBSCRIPTION, reference=reference
        )

        result = {
            "success": True,
            "message": f"{tier.display_name} subscription activated",
            "transaction_id": reference,
            "balance": balance,
            "subscription": _subscription_dict(subscription),
        }
        _remember(db, idempotency_key, user.id, "purchase_subscription", fingerprint, result)

    logger.info(f"User #{user.id} purchased tier '{tier.name}', balance {balance}")
    return result


def purchase_additional_tickets(
    db: Session,
    user: models.Profile,
    quantity: int,
    reference: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> dict:
    """Top up tickets at the active tier's per-session price"""
    with _transaction(db):
        fingerprint = tickets_fingerprint(quantity)
        replay = find_replay(db, idempotency_key, user.id, "purchase_additional_tickets", fingerprint)
        if replay is not None:
            return replay

        if quantity < 1:
            raise BookingError("Invalid quantity", 400)
        subscription = _active_subscription(db, user.id)
        if subscription is None:
            raise BookingError("Additional tickets require an active subscription", 400)

        price = round(quantity * subscription.tier.price_per_session, 2)
        balance = _apply_credit(
            db, user.id, quantity, models.CreditKind.TICKET_PURCHASE, reference=reference
        )
        result = {
            "success": True,
            "message": f"{quantity} tickets added",
            "transaction_id": reference,
            "quantity": quantity,
            "price_nis": price,
            "balance": balance,
        }
        _remember(db, idempotency_key, user.id, "purchase_additional_tickets", fingerprint, result)

    logger.info(f"User #{user.id} bought {quantity} tickets for {price}, balance {balance}")
    return result
