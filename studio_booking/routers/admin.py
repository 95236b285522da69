from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from .. import booking_service, models, push_service, schemas, settings
from ..booking_service import BookingError
from ..database import get_db
from ..security import get_current_admin
from ..telegram_service import telegram_notifier

router = APIRouter(prefix="/api/admin", tags=["Admin"])

@router.get("/stats", response_model=schemas.StatsResponse)
def get_stats(
    db: Session = Depends(get_db),
    admin: models.Profile = Depends(get_current_admin)
):
    """Dashboard counters"""
    start_of_today = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)

    return {
        "active_users": db.query(models.Profile).count(),
        "sessions_today": db.query(models.GymSession).filter(
            models.GymSession.start_time >= start_of_today,
            models.GymSession.start_time < start_of_today + timedelta(days=1)
        ).count(),
        "open_bookings": db.query(models.Booking).count(),
    }

@router.get("/sessions", response_model=List[schemas.SessionResponse])
def get_all_sessions(
    db: Session = Depends(get_db),
    admin: models.Profile = Depends(get_current_admin)
):
    """Whole schedule, past sessions included"""
    return booking_service.list_sessions(db, admin.id, upcoming_only=False)

@router.post("/sessions", response_model=schemas.SessionResponse, status_code=status.HTTP_201_CREATED)
def create_session(
    data: schemas.SessionCreate,
    db: Session = Depends(get_db),
    admin: models.Profile = Depends(get_current_admin)
):
    session = booking_service.create_session(
        db,
        title=data.title,
        description=data.description,
        start_time=data.start_time,
        end_time=data.end_time,
        max_capacity=data.max_capacity,
        duration_minutes=settings.DEFAULT_SESSION_MINUTES,
    )

    return schemas.SessionResponse(
        id=session.id,
        title=session.title,
        description=session.description,
        start_time=session.start_time,
        end_time=session.end_time,
        max_capacity=session.max_capacity,
    )

@router.delete("/sessions/{session_id}", response_model=schemas.DeleteSessionResult)
def delete_session(
    session_id: int,
    background_tasks: BackgroundTasks,
    idempotency_key: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    admin: models.Profile = Depends(get_current_admin)
):
    """Delete a session, refunding every confirmed booking in the same transaction"""
    session = db.get(models.GymSession, session_id)
    title = session.title if session else None
    start_time = session.start_time if session else None

    result = booking_service.delete_session(db, admin, session_id, idempotency_key)

    if title is not None:
        background_tasks.add_task(
            push_service.notify_session_cancelled, result["refunded_user_ids"], title
        )
        background_tasks.add_task(
            telegram_notifier.send_session_deleted_notification,
            session_title=title,
            start_time=start_time,
            refunded=len(result["refunded_user_ids"])
        )

    return result

@router.get("/trainees", response_model=List[schemas.TraineeResponse])
def get_trainees(
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    admin: models.Profile = Depends(get_current_admin)
):
    """Roster with balances, filtered by name, email or phone"""
    query = db.query(models.Profile)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            models.Profile.full_name.ilike(pattern),
            models.Profile.email.ilike(pattern),
            models.Profile.phone.like(pattern),
        ))

    profiles = query.order_by(models.Profile.full_name).all()
    return [
        schemas.TraineeResponse(
            id=p.id,
            email=p.email,
            full_name=p.full_name,
            phone=p.phone,
            role=p.role,
            balance=p.credits.balance if p.credits else 0,
        )
        for p in profiles
    ]

@router.post("/trainees/{user_id}/tickets", response_model=schemas.BalanceResult)
def grant_tickets(
    user_id: int,
    data: schemas.GrantTicketsRequest,
    background_tasks: BackgroundTasks,
    idempotency_key: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    admin: models.Profile = Depends(get_current_admin)
):
    """Add (or remove) tickets and tell the trainee"""
    result = booking_service.admin_grant_tickets(db, admin, user_id, data.quantity, idempotency_key)
    if not result.get("replayed"):
        background_tasks.add_task(push_service.notify_tickets_granted, user_id, data.quantity)
    return result

@router.put("/trainees/{user_id}/credits", response_model=schemas.BalanceResult)
def set_balance(
    user_id: int,
    data: schemas.SetBalanceRequest,
    idempotency_key: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    admin: models.Profile = Depends(get_current_admin)
):
    return booking_service.admin_set_balance(db, admin, user_id, data.balance, idempotency_key)

@router.get("/trainees/{user_id}/ledger", response_model=List[schemas.LedgerEntryResponse])
def get_ledger(
    user_id: int,
    db: Session = Depends(get_db),
    admin: models.Profile = Depends(get_current_admin)
):
    if db.get(models.Profile, user_id) is None:
        raise BookingError("Trainee not found", 404)

    return (
        db.query(models.CreditTransaction)
        .filter(models.CreditTransaction.user_id == user_id)
        .order_by(models.CreditTransaction.id.desc())
        .all()
    )
