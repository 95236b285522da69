"""
Tickets, subscriptions and the mock payment gateway.

The gateway simulates a real processor: a random delay, then a
probabilistic success. Only a successful charge reaches the purchase
procedures.
"""
import asyncio
import logging
import random
import time
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .. import booking_service, models, schemas, settings
from ..booking_service import BookingError
from ..database import get_db
from ..security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Payments"])

@router.get("/api/tickets", response_model=schemas.TicketsResponse)
def get_tickets(
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return {"balance": booking_service.get_available_tickets(db, current_user.id)}

@router.get("/api/subscription", response_model=Optional[schemas.SubscriptionResponse])
def get_subscription(
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Active subscription or null"""
    return booking_service.get_user_subscription(db, current_user.id)

@router.get("/api/payment/mock", response_model=schemas.TiersResponse)
def get_tiers(db: Session = Depends(get_db)):
    tiers = db.query(models.SubscriptionTier).order_by(models.SubscriptionTier.sessions).all()
    if not tiers:
        logger.info("subscription_tiers is empty, using fallback tiers")
        return {"success": True, "tiers": settings.FALLBACK_TIERS, "fallback": True}
    return {"success": True, "tiers": tiers}

def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "transaction_id": None}
    )

def _success(data: dict) -> dict:
    return {
        "success": True,
        "message": data["message"],
        "transaction_id": data.get("transaction_id"),
        "data": data
    }

def charge() -> bool:
    """Whether the simulated card charge goes through"""
    return random.random() < settings.PAYMENT_MOCK_SUCCESS_RATE

def new_transaction_id() -> str:
    return f"TXN_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6].upper()}"

@router.post("/api/payment/mock", response_model=schemas.PaymentResponse)
async def mock_payment(
    payment: schemas.PaymentRequest,
    idempotency_key: Optional[str] = Header(None),
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if payment.type == "subscription":
        if not payment.tier_id:
            return _failure(400, "Missing subscription tier")
        operation = "purchase_subscription"
        fingerprint = booking_service.subscription_fingerprint(payment.tier_id)
    elif payment.type == "additional_tickets":
        if not payment.quantity or payment.quantity < 1:
            return _failure(400, "Invalid quantity")
        operation = "purchase_additional_tickets"
        fingerprint = booking_service.tickets_fingerprint(payment.quantity)
    else:
        return _failure(400, "Invalid payment type")

    # A repeated key answers with the original purchase, without charging again
    try:
        replay = await run_in_threadpool(
            booking_service.find_replay, db, idempotency_key, current_user.id, operation, fingerprint
        )
    except BookingError as e:
        return _failure(e.status_code, e.message)
    if replay is not None:
        return _success(replay)

    await asyncio.sleep(random.uniform(settings.PAYMENT_MOCK_MIN_DELAY, settings.PAYMENT_MOCK_MAX_DELAY))

    if not charge():
        logger.info(f"Mock payment declined for user #{current_user.id}")
        return _failure(402, "Payment failed. Please try again.")

    transaction_id = new_transaction_id()

    try:
        if payment.type == "subscription":
            data = await run_in_threadpool(
                booking_service.purchase_subscription,
                db, current_user, payment.tier_id,
                reference=transaction_id, idempotency_key=idempotency_key
            )
        else:
            data = await run_in_threadpool(
                booking_service.purchase_additional_tickets,
                db, current_user, payment.quantity,
                reference=transaction_id, idempotency_key=idempotency_key
            )
    except BookingError as e:
        logger.error(f"Purchase after payment {transaction_id} failed: {e.message}")
        return _failure(e.status_code, e.message)

    return _success(data)
