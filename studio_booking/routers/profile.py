from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..booking_service import get_available_tickets
from ..database import get_db
from ..security import get_current_user

router = APIRouter(prefix="/api/profile", tags=["Profile"])

def _upsert_health(db: Session, profile_id: int, is_healthy: bool, medical_conditions: Optional[str]):
    health = db.get(models.HealthDeclaration, profile_id)
    if health is None:
        health = models.HealthDeclaration(id=profile_id)
        db.add(health)
    health.is_healthy = is_healthy
    health.medical_conditions = None if is_healthy else medical_conditions

def _detail(db: Session, profile: models.Profile) -> dict:
    return {
        "profile": profile,
        "health": db.get(models.HealthDeclaration, profile.id),
        "balance": get_available_tickets(db, profile.id),
    }

@router.get("", response_model=schemas.ProfileDetailResponse)
def get_profile(
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Profile, health declaration and ticket balance"""
    return _detail(db, current_user)

@router.post("/onboarding", response_model=schemas.ProfileDetailResponse)
def complete_onboarding(
    data: schemas.OnboardingRequest,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if current_user.onboarding_completed:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Onboarding already completed"
        )

    current_user.full_name = data.full_name
    current_user.age = data.age
    current_user.phone = data.phone
    current_user.onboarding_completed = True
    current_user.updated_at = datetime.utcnow()
    _upsert_health(db, current_user.id, data.is_healthy, data.medical_conditions)
    db.commit()
    db.refresh(current_user)

    return _detail(db, current_user)

@router.put("", response_model=schemas.ProfileDetailResponse)
def update_profile(
    data: schemas.ProfileUpdate,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if data.full_name is not None:
        current_user.full_name = data.full_name
    if data.phone is not None:
        current_user.phone = data.phone

    if data.is_healthy is not None:
        if not data.is_healthy and not (data.medical_conditions or "").strip():
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Please describe your medical conditions"
            )
        _upsert_health(db, current_user.id, data.is_healthy, data.medical_conditions)

    current_user.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(current_user)

    return _detail(db, current_user)
