import os
from pathlib import Path
from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


class Settings:
    """Runtime configuration read from the environment."""

    ENV = os.getenv("ENV", "development")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if ENV == "development" else "INFO")

    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./orderflow.db")

    JWT_SECRET = os.getenv("JWT_SECRET", "change-me")
    JWT_ALGORITHM = "HS256"
    JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", str(60 * 24 * 7)))

    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
    STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "usd")

    MAX_ITEMS_PER_ORDER = int(os.getenv("MAX_ITEMS_PER_ORDER", "50"))

    GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10"))
    GATEWAY_MAX_RETRIES = int(os.getenv("GATEWAY_MAX_RETRIES", "2"))
    GATEWAY_RETRY_BACKOFF_SECONDS = float(os.getenv("GATEWAY_RETRY_BACKOFF_SECONDS", "0.5"))

    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

    @property
    def is_production(self) -> bool:
        return self.ENV == "production"


settings = Settings()
