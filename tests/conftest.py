import os

# Must be set before the app modules read their settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["ONESIGNAL_REST_API_KEY"] = ""
os.environ["PAYMENT_MOCK_MIN_DELAY"] = "0"
os.environ["PAYMENT_MOCK_MAX_DELAY"] = "0"

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from studio_booking import models
from studio_booking.database import Base, SessionLocal, engine
from studio_booking.main import app
from studio_booking.security import create_access_token, get_password_hash

PASSWORD = "secret123"
# Hashing is slow, do it once
PASSWORD_HASH = get_password_hash(PASSWORD)


@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(db):
    def _make_user(email, role=models.UserRole.TRAINEE, balance=0, onboarded=True, full_name="Dana Levi"):
        user = models.Profile(
            email=email,
            password_hash=PASSWORD_HASH,
            full_name=full_name,
            phone="050-1234567",
            role=role.value,
            onboarding_completed=onboarded,
        )
        db.add(user)
        db.flush()
        db.add(models.UserCredit(user_id=user.id, balance=balance))
        db.commit()
        db.refresh(user)
        return user
    return _make_user


@pytest.fixture
def make_session(db):
    def _make_session(hours_from_now=48, capacity=10, title="Morning HIIT"):
        start = datetime.utcnow() + timedelta(hours=hours_from_now)
        session = models.GymSession(
            title=title,
            start_time=start,
            end_time=start + timedelta(hours=1),
            max_capacity=capacity,
        )
        db.add(session)
        db.commit()
        db.refresh(session)
        return session
    return _make_session


@pytest.fixture
def trainee(make_user):
    return make_user("dana@example.com", balance=3)


@pytest.fixture
def admin(make_user):
    return make_user("talia@example.com", role=models.UserRole.ADMINISTRATOR, full_name="Talia Admin")


def headers_for(user):
    return {"Authorization": f"Bearer {create_access_token(data={'sub': user.email})}"}


@pytest.fixture
def trainee_headers(trainee):
    return headers_for(trainee)


@pytest.fixture
def admin_headers(admin):
    return headers_for(admin)


def balance_of(user_id):
    """Read a balance through a fresh session"""
    with SessionLocal() as s:
        row = s.get(models.UserCredit, user_id)
        return row.balance if row else 0
