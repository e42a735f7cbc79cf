import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./healthbook.db")

# Identity service (opaque bearer tokens are introspected, never decoded locally)
AUTH_SERVICE_URL = os.getenv("AUTH_SERVICE_URL", "http://localhost:9000")
AUTH_SERVICE_TIMEOUT = float(os.getenv("AUTH_SERVICE_TIMEOUT", "5"))

# Razorpay-style payment gateway (order-create / payment-verify contract)
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET")
RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET")
RAZORPAY_API_BASE = os.getenv("RAZORPAY_API_BASE", "https://api.razorpay.com/v1")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "INR")
PAYMENT_GATEWAY_TIMEOUT = float(os.getenv("PAYMENT_GATEWAY_TIMEOUT", "15"))

# A payment_pending appointment older than this is released by the reservation sweep
RESERVATION_TIMEOUT_MINUTES = int(os.getenv("RESERVATION_TIMEOUT_MINUTES", "30"))

# Clinic wall clock used for "session has ended" checks
CLINIC_TIMEZONE = os.getenv("CLINIC_TIMEZONE", "Asia/Kolkata")
DEFAULT_AVG_CONSULTATION_MINUTES = int(os.getenv("DEFAULT_AVG_CONSULTATION_MINUTES", "20"))

# Availability cache (Redis) - entries carry the session version they were built from
CACHE_ENABLED = os.getenv("CACHE_ENABLED", "true").lower() == "true"
AVAILABILITY_CACHE_TTL = int(os.getenv("AVAILABILITY_CACHE_TTL", "60"))

# Notification bridge pub/sub channel
NOTIFICATION_CHANNEL = os.getenv("NOTIFICATION_CHANNEL", "appointments.events")
NOTIFICATIONS_ENABLED = os.getenv("NOTIFICATIONS_ENABLED", "true").lower() == "true"

# Frontend base URL (CORS default)
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

# Comma-separated CORS origins
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", FRONTEND_URL).split(",")
    if origin.strip()
]
