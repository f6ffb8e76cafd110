import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./companion_booking.db")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Frontend base URL for links in emails
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", FRONTEND_URL).split(",")
    if origin.strip()
]

# Stripe Configuration (manual-capture PaymentIntents)
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_API_URL = os.getenv("STRIPE_API_URL", "https://api.stripe.com/v1")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "usd")

# Nominatim (OpenStreetMap) geocoding - no API key, just a user agent
NOMINATIM_BASE_URL = os.getenv("NOMINATIM_BASE_URL", "https://nominatim.openstreetmap.org")
NOMINATIM_USER_AGENT = os.getenv("NOMINATIM_USER_AGENT", "CompanionBooking/1.0")
GEOCODE_CACHE_SECONDS = int(os.getenv("GEOCODE_CACHE_SECONDS", "86400"))

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Companion Booking <noreply@example.com>")
# "send" delivers through Resend, "log" only logs the rendered subject (local dev)
EMAIL_MODE = os.getenv("EMAIL_MODE", "send")

# Booking policy
AUTO_COMPLETE_GRACE_MINUTES = int(os.getenv("AUTO_COMPLETE_GRACE_MINUTES", "15"))
VERIFICATION_WINDOW_MINUTES = int(os.getenv("VERIFICATION_WINDOW_MINUTES", "10"))
VERIFICATION_EXTENSION_MINUTES = int(os.getenv("VERIFICATION_EXTENSION_MINUTES", "10"))
PROXIMITY_THRESHOLD_METERS = float(os.getenv("PROXIMITY_THRESHOLD_METERS", "5000"))
CODE_ISSUE_LEAD_MINUTES = int(os.getenv("CODE_ISSUE_LEAD_MINUTES", "30"))
MIN_BOOKING_HOURS = float(os.getenv("MIN_BOOKING_HOURS", "0.5"))
MAX_BOOKING_HOURS = float(os.getenv("MAX_BOOKING_HOURS", "12"))
PLATFORM_FEE_PERCENTAGE = float(os.getenv("PLATFORM_FEE_PERCENTAGE", "0.15"))

# Rate limit for meeting code submissions (per party, per booking)
VERIFY_OTP_RATE_LIMIT = int(os.getenv("VERIFY_OTP_RATE_LIMIT", "10"))
VERIFY_OTP_RATE_WINDOW_SECONDS = int(os.getenv("VERIFY_OTP_RATE_WINDOW_SECONDS", "600"))
