import logging

import requests
from fastapi import APIRouter, Depends, HTTPException

from .. import models, push_service, schemas
from ..security import get_current_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])

def _send(payload: dict) -> dict:
    try:
        result = push_service.send_push(payload)
    except push_service.PushNotConfigured as e:
        raise HTTPException(status_code=500, detail=str(e))
    except push_service.PushError as e:
        raise HTTPException(status_code=400, detail={"error": str(e), "details": e.details})
    except requests.RequestException as e:
        logger.error(f"Notification API error: {e}")
        raise HTTPException(status_code=502, detail="Notification service unavailable")

    return {"success": True, "id": result.get("id"), "recipients": result.get("recipients") or 0}

@router.post("", response_model=schemas.NotificationResponse)
def send_notification(
    data: schemas.NotificationRequest,
    admin: models.Profile = Depends(get_current_admin)
):
    """Push to specific users, or to everyone with a role (administrators by default)"""
    payload = push_service.build_payload(
        data.title,
        data.message,
        target_user_ids=data.target_user_ids,
        target_role=data.target_role,
        url=data.url,
    )
    return _send(payload)

@router.post("/grant-tickets", response_model=schemas.NotificationResponse)
def send_grant_notification(
    data: schemas.GrantNotificationRequest,
    admin: models.Profile = Depends(get_current_admin)
):
    if not data.amount:
        raise HTTPException(status_code=400, detail="Missing required fields")
    return _send(push_service.grant_tickets_payload(data.user_id, data.amount))
