# ============================================================
# schoolcash/core/config.py
#
# All configuration is read from environment variables
# (or a local .env file during development).
#
# Usage anywhere in the app:
#   from schoolcash.core.config import settings
#   print(settings.SCHOOL_API_BASE_URL)
# ============================================================

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional
from pathlib import Path


class Settings(BaseSettings):
    """
    Settings come from environment variables.
    Pydantic reads the .env file at the repo root when running locally.
    """

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[3] / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── App Identity ─────────────────────────────────────────
    APP_NAME: str = "SchoolCash Desk"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"        # development | production
    # Keep production logs at INFO and suppress verbose HTTP wire logs by default.
    HTTP_CLIENT_DEBUG_LOGS: bool = False

    # ── API Settings ─────────────────────────────────────────
    API_PREFIX: str = "/api/v1"
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",            # Next.js dashboard
        "http://localhost:5173",            # Vite dev server
    ]

    # ── School backend (REST) ────────────────────────────────
    # The school management API that owns students, pricing,
    # installments, payments and transactions.
    SCHOOL_API_BASE_URL: str                # e.g. https://school.example.com
    SCHOOL_API_TOKEN: Optional[str] = None  # Sent as Bearer token when set
    HTTP_TIMEOUT_SECONDS: float = 15.0

    # ── Cash desk rules ──────────────────────────────────────
    CURRENCY: str = "FCFA"
    # Wire value the backend expects for a cash collection.
    COLLECTION_TRANSACTION_TYPE: str = "encaissement"
    DISCOUNT_WARNING_PERCENT: int = 50
    DISCOUNT_STRONG_WARNING_PERCENT: int = 90
    # Largest amount (major units) the desk accepts from anyone.
    MAX_AMOUNT: int = 1_000_000_000_000
    # Idle desks are dropped from process memory after this long.
    DESK_SESSION_TTL_SECONDS: int = 8 * 3600

    # ── Receipts ─────────────────────────────────────────────
    RECEIPT_PREFIX: str = "REC"

    # ── Timezone ─────────────────────────────────────────────
    TIMEZONE: str = "Africa/Abidjan"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


# Single instance, import this everywhere
settings = Settings()
