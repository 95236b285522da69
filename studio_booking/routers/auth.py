from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import models, schemas, settings
from ..database import get_db
from ..security import (
    get_password_hash,
    verify_password,
    create_access_token,
    create_refresh_token,
    verify_token,
    get_current_user,
)

router = APIRouter(prefix="/api/auth", tags=["Authentication"])

def _initial_role(email: str) -> str:
    if email.lower() in settings.ADMIN_EMAILS:
        return models.UserRole.ADMINISTRATOR.value
    return models.UserRole.TRAINEE.value

def _token_pair(user: models.Profile) -> dict:
    return {
        "access_token": create_access_token(data={"sub": user.email}),
        "refresh_token": create_refresh_token(data={"sub": user.email}),
        "token_type": "bearer"
    }

@router.post("/register", response_model=schemas.ProfileResponse, status_code=status.HTTP_201_CREATED)
def register(user_data: schemas.UserCreate, db: Session = Depends(get_db)):
    """Register a new profile; emails listed in ADMIN_EMAILS become administrators"""

    if db.query(models.Profile).filter(models.Profile.email == user_data.email).first():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A user with this email already exists"
        )

    new_user = models.Profile(
        email=user_data.email,
        full_name=user_data.full_name,
        password_hash=get_password_hash(user_data.password),
        role=_initial_role(user_data.email)
    )
    db.add(new_user)
    db.flush()
    # Every profile owns a balance row from the start
    db.add(models.UserCredit(user_id=new_user.id, balance=0))
    db.commit()
    db.refresh(new_user)

    return new_user

@router.post("/login", response_model=schemas.TokenResponse)
def login(user_credentials: schemas.UserLogin, db: Session = Depends(get_db)):
    user = db.query(models.Profile).filter(models.Profile.email == user_credentials.email).first()

    if not user or not verify_password(user_credentials.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return _token_pair(user)

@router.post("/refresh", response_model=schemas.TokenResponse)
def refresh_token(token_data: schemas.TokenRefresh, db: Session = Depends(get_db)):
    """Exchange a refresh token for a new token pair"""

    email = verify_token(token_data.refresh_token, "refresh")
    if not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid refresh token"
        )

    user = db.query(models.Profile).filter(models.Profile.email == email).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    return _token_pair(user)

@router.post("/change-password")
def change_password(
    password_data: schemas.PasswordChange,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if not verify_password(password_data.old_password, current_user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Old password is incorrect"
        )

    current_user.password_hash = get_password_hash(password_data.new_password)
    db.commit()

    return {"message": "Password changed"}

@router.get("/me", response_model=schemas.ProfileResponse)
def get_current_user_info(current_user: models.Profile = Depends(get_current_user)):
    return current_user
