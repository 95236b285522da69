"""
Studio booking API: sessions, bookings, tickets and subscriptions
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import models, settings
from .booking_service import BookingError, promote_admins, seed_subscription_tiers
from .database import SessionLocal, engine
from .routers import admin, auth, notifications, payments, profile, sessions

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Create tables
models.Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = SessionLocal()
    try:
        seed_subscription_tiers(db)
        promote_admins(db, settings.ADMIN_EMAILS)
    finally:
        db.close()
    logger.info("Studio booking API started")
    yield
    logger.info("Studio booking API shutting down")


app = FastAPI(title="Studio Booking System", version="1.0.0", lifespan=lifespan)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    """Rule violations reach the client as the plain message"""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


app.include_router(auth.router)
app.include_router(profile.router)
app.include_router(sessions.router)
app.include_router(payments.router)
app.include_router(notifications.router)
app.include_router(admin.router)


@app.get("/health")
async def health():
    return {"status": "ok"}
