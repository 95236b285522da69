from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException
from fastapi.responses import Response
from sqlalchemy.orm import Session

from .. import booking_service, models, schemas
from ..database import get_db
from ..security import get_current_user, get_onboarded_user
from ..telegram_service import telegram_notifier

router = APIRouter(tags=["Sessions"])

@router.get("/api/sessions", response_model=List[schemas.SessionResponse])
def get_sessions(
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Upcoming sessions with live fill level"""
    return booking_service.list_sessions(db, current_user.id)

@router.post("/api/sessions/{session_id}/book", response_model=schemas.BookingResult)
def book_session(
    session_id: int,
    background_tasks: BackgroundTasks,
    idempotency_key: Optional[str] = Header(None),
    current_user: models.Profile = Depends(get_onboarded_user),
    db: Session = Depends(get_db)
):
    result = booking_service.book_session(db, current_user, session_id, idempotency_key)

    session = db.get(models.GymSession, session_id)
    if session is not None and not result.get("replayed"):
        background_tasks.add_task(
            telegram_notifier.send_booking_notification,
            client_name=current_user.full_name or current_user.email,
            session_title=session.title,
            start_time=session.start_time,
            balance=result["balance"]
        )

    return result

@router.post("/api/sessions/{session_id}/cancel", response_model=schemas.BookingResult)
def cancel_booking(
    session_id: int,
    background_tasks: BackgroundTasks,
    idempotency_key: Optional[str] = Header(None),
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    result = booking_service.cancel_booking(db, current_user, session_id, idempotency_key)

    session = db.get(models.GymSession, session_id)
    if session is not None and not result.get("replayed"):
        background_tasks.add_task(
            telegram_notifier.send_cancellation_notification,
            client_name=current_user.full_name or current_user.email,
            session_title=session.title,
            start_time=session.start_time
        )

    return result

def _ics_time(value: datetime) -> str:
    return value.strftime("%Y%m%dT%H%M%SZ")

def _ics_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace(";", "\\;").replace(",", "\\,").replace("\n", "\\n")

@router.get("/api/sessions/{session_id}/calendar.ics")
def session_calendar(
    session_id: int,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Calendar file for adding a session to the phone calendar"""
    session = db.get(models.GymSession, session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Studio Booking//EN",
        "BEGIN:VEVENT",
        f"UID:session-{session.id}@studio-booking",
        f"DTSTAMP:{_ics_time(datetime.utcnow())}",
        f"DTSTART:{_ics_time(session.start_time)}",
        f"DTEND:{_ics_time(session.end_time)}",
        f"SUMMARY:{_ics_escape(session.title)}",
    ]
    if session.description:
        lines.append(f"DESCRIPTION:{_ics_escape(session.description)}")
    lines += ["END:VEVENT", "END:VCALENDAR"]

    return Response(
        content="\r\n".join(lines) + "\r\n",
        media_type="text/calendar",
        headers={"Content-Disposition": f'attachment; filename="session-{session.id}.ics"'}
    )

@router.get("/api/bookings/me", response_model=List[schemas.MyBookingResponse])
def get_my_bookings(
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Confirmed and pending bookings from the start of today, soonest first"""
    start_of_today = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)

    bookings = (
        db.query(models.Booking)
        .join(models.GymSession)
        .filter(
            models.Booking.user_id == current_user.id,
            models.Booking.status.in_([
                models.BookingStatus.CONFIRMED.value,
                models.BookingStatus.PENDING.value,
            ]),
            models.GymSession.start_time >= start_of_today
        )
        .order_by(models.GymSession.start_time)
        .all()
    )

    return bookings
