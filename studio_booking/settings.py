"""
Central settings for the studio booking service.
Values come from the environment (or a local .env file).
"""
import os
from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./studio.db")

# JWT
SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-please-change-in-production")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))

# Profiles registered with these emails get the administrator role
ADMIN_EMAILS = [
    email.strip().lower()
    for email in os.getenv("ADMIN_EMAILS", "").split(",")
    if email.strip()
]

# Booking rules
# Bookings can only be cancelled (and refunded) this many hours before start
CANCELLATION_WINDOW_HOURS = float(os.getenv("CANCELLATION_WINDOW_HOURS", "10"))
SUBSCRIPTION_PERIOD_DAYS = int(os.getenv("SUBSCRIPTION_PERIOD_DAYS", "30"))
DEFAULT_SESSION_MINUTES = int(os.getenv("DEFAULT_SESSION_MINUTES", "60"))

# Tiers offered when the subscription_tiers table is empty
FALLBACK_TIERS = [
    {"id": 1, "name": "basic", "display_name": "Basic", "sessions": 4, "price_nis": 240, "price_per_session": 60.0},
    {"id": 2, "name": "standard", "display_name": "Standard", "sessions": 8, "price_nis": 450, "price_per_session": 56.25},
    {"id": 3, "name": "premium", "display_name": "Premium", "sessions": 12, "price_nis": 650, "price_per_session": 54.16},
]

# Mock payment gateway
PAYMENT_MOCK_SUCCESS_RATE = float(os.getenv("PAYMENT_MOCK_SUCCESS_RATE", "0.95"))
PAYMENT_MOCK_MIN_DELAY = float(os.getenv("PAYMENT_MOCK_MIN_DELAY", "1.0"))
PAYMENT_MOCK_MAX_DELAY = float(os.getenv("PAYMENT_MOCK_MAX_DELAY", "2.0"))

# OneSignal push
ONESIGNAL_API_URL = os.getenv("ONESIGNAL_API_URL", "https://onesignal.com/api/v1/notifications")
ONESIGNAL_APP_ID = os.getenv("ONESIGNAL_APP_ID", "")
ONESIGNAL_REST_API_KEY = os.getenv("ONESIGNAL_REST_API_KEY", "")
ONESIGNAL_ANDROID_CHANNEL_ID = os.getenv("ONESIGNAL_ANDROID_CHANNEL_ID", "")
PUSH_TIMEOUT_SECONDS = float(os.getenv("PUSH_TIMEOUT_SECONDS", "10"))

# Telegram admin alerts
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
TELEGRAM_ADMIN_CHAT_IDS = os.getenv("TELEGRAM_ADMIN_CHAT_IDS", "")

# Client-side cache freshness
CACHE_TTL_SECONDS = int(os.getenv("CACHE_TTL_SECONDS", "300"))
