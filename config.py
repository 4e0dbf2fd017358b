"""
config.py
---------
Loads environment variables (and an optional .env file) and exposes them
as typed constants for the rest of the API.
"""

import os
from dotenv import load_dotenv

load_dotenv()


# ── Database ──────────────────────────────────────────────
DATABASE_URL: str = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME: str = os.getenv("DATABASE_NAME", "delivery_app")

# ── Auth ──────────────────────────────────────────────────
SECRET_KEY: str = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM: str = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(30 * 24 * 60)))

# ── HTTP ──────────────────────────────────────────────────
_raw_origins = os.getenv("ALLOWED_ORIGINS", "")
ALLOWED_ORIGINS: list = (
    [o.strip() for o in _raw_origins.split(",") if o.strip()]
    if _raw_origins
    else ["*"]
)
ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

# ── Pricing ───────────────────────────────────────────────
TAX_RATE: float = float(os.getenv("TAX_RATE", "0.10"))
SERVICE_FEE_RATE: float = float(os.getenv("SERVICE_FEE_RATE", "0.05"))
MIN_DELIVERY_FEE: float = float(os.getenv("MIN_DELIVERY_FEE", "2.99"))
DELIVERY_FEE_PER_KM: float = float(os.getenv("DELIVERY_FEE_PER_KM", "0.5"))
BASE_DELIVERY_MINUTES: int = int(os.getenv("BASE_DELIVERY_MINUTES", "20"))
MINUTES_PER_KM: int = int(os.getenv("MINUTES_PER_KM", "3"))
LOYALTY_POINT_VALUE: int = int(os.getenv("LOYALTY_POINT_VALUE", "10"))

# ── Carts & reviews ───────────────────────────────────────
CART_TTL_HOURS: int = int(os.getenv("CART_TTL_HOURS", "24"))
REVIEW_REPORT_THRESHOLD: int = int(os.getenv("REVIEW_REPORT_THRESHOLD", "5"))
