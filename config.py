"""
Central configuration

Values are read from the environment (or a local .env file) once at import.
"""
import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "pharmacy")

NOTIFIER_URL = os.getenv("NOTIFIER_URL", "")
NOTIFIER_TIMEOUT = float(os.getenv("NOTIFIER_TIMEOUT", "5"))

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
CURRENCY = os.getenv("CURRENCY", "inr")

PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

ALTERNATIVES_LIMIT = 8
RECOMMENDATIONS_LIMIT = 10
ANCHOR_COUNT = 5

EXPIRY_WARNING_DAYS = 90
LOW_STOCK_THRESHOLD = 10

GUEST_USER_ID = "guest"
