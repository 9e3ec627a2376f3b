from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent.parent  # project root
ENV_PATH = BASE_DIR / ".env"

load_dotenv(dotenv_path=ENV_PATH)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        case_sensitive=False,
    )

    BACKEND_API_BASE_URL: str = "https://aeroenix.com/v1/api"
    BACKEND_TIMEOUT_SECONDS: float = 15.0

    # Used only when the backend config endpoint cannot be reached.
    STRIPE_PUBLISHABLE_KEY: str | None = None

    DATABASE_URL: str = "sqlite+aiosqlite:///./certconsole.db"

    # Sent when fetching the provider config outside any user request.
    BACKEND_SERVICE_TOKEN: str | None = None

    # Optional: when set, bearer tokens must be JWTs signed with it and dialogs
    # are owned by the token subject. The backend verifies every call anyway.
    JWT_SECRET: str | None = None
    JWT_ALG: str = "HS256"

    RECEIPT_MAX_BYTES: int = 10 * 1024 * 1024
    RECEIPT_ALLOWED_TYPES: list[str] = [
        "application/pdf",
        "image/jpeg",
        "image/png",
    ]
    MANUAL_AMOUNT_TOLERANCE: Decimal = Decimal("0.01")
    MIN_SUBSCRIPTION_AMOUNT: Decimal = Decimal("1.00")
    DEFAULT_CURRENCY: str = "USD"

    DISCOUNT_UNSCOPED_APPLIES_TO_ALL_COURSES: bool = True

    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]
    LOG_LEVEL: str = "INFO"


settings = Settings()
