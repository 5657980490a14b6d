# app/core/config.py

import os
from dotenv import load_dotenv

load_dotenv()

# Database
MONGO_URI = os.getenv("MONGO_URI")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "setkar")

# Auth
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
JWT_ALGORITHM = "HS256"

# Booking rules
BOOKING_TIMEZONE = os.getenv("BOOKING_TIMEZONE", "Asia/Kolkata")
DEFAULT_MAX_APPOINTMENTS_PER_DAY = int(os.getenv("DEFAULT_MAX_APPOINTMENTS_PER_DAY", "10"))
PAYMENT_TIMEOUT_SECONDS = int(os.getenv("PAYMENT_TIMEOUT_SECONDS", "60"))

# Per-day ledger lock
SLOT_LOCK_TTL_SECONDS = int(os.getenv("SLOT_LOCK_TTL_SECONDS", "30"))
SLOT_LOCK_RETRIES = int(os.getenv("SLOT_LOCK_RETRIES", "5"))
SLOT_LOCK_BACKOFF_SECONDS = float(os.getenv("SLOT_LOCK_BACKOFF_SECONDS", "0.05"))

# Background worker
EXPIRY_SWEEP_INTERVAL_SECONDS = int(os.getenv("EXPIRY_SWEEP_INTERVAL_SECONDS", "300"))
ENABLE_EXPIRY_SWEEP = os.getenv("ENABLE_EXPIRY_SWEEP", "false").lower() == "true"

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]
