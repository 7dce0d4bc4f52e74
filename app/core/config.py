# app/core/config.py
import os
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv
from functools import lru_cache

# Project root (where app/ and main.py live)
BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Used when running the app normally (e.g. with uvicorn).
# conftest.py points DOTENV_PATH at .env.test before anything imports this module.
DOTENV = os.getenv("DOTENV_PATH", os.path.join(BASE_DIR, '.env'))
if os.path.exists(DOTENV):
    load_dotenv(dotenv_path=DOTENV)

class Settings(BaseSettings):
    # App Environment
    ENVIRONMENT: str = "development"
    API_V1_STR: str = "/api/v1"
    APP_NAME: str = "Workspace Hub"

    model_config = SettingsConfigDict(
         case_sensitive=True,
         env_file_encoding = 'utf-8'
     )

    # Database Configuration (required from environment)
    DB_HOST: str
    DB_PORT: int
    DB_USER: str
    DB_PASSWORD: str
    DB_NAME: str
    DB_SSL_MODE: str = "prefer"
    DB_CA_CERT_FILE: Optional[str] = None

    @property
    def DATABASE_URL(self) -> str:
        dsn = f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}?sslmode={self.DB_SSL_MODE}"
        if self.DB_SSL_MODE in ['verify-ca', 'verify-full'] and self.DB_CA_CERT_FILE:
            # certs/ is relative to the project root
            ca_cert_path = os.path.join(BASE_DIR, 'certs', self.DB_CA_CERT_FILE)
            dsn = f"{dsn}&sslrootcert={ca_cert_path}"
        return dsn

    # Firebase (Gatekeeper)
    FIREBASE_SERVICE_ACCOUNT_KEY_PATH: str = "service-account.json"

    # Sentry
    SENTRY_DSN: Optional[str] = None

    # Outbound invitation email (SendGrid v3 HTTP API)
    SENDGRID_API_KEY: Optional[str] = None
    SENDGRID_API_URL: str = "https://api.sendgrid.com/v3/mail/send"
    EMAIL_FROM: str = "no-reply@example.com"
    FRONTEND_URL: str = "http://localhost:3000"
    NOTIFIER_TIMEOUT_SECONDS: float = 30.0

    # Invitation lifecycle
    INVITATION_TTL_DAYS: int = 7
    INVITATION_RETENTION_DAYS: int = 30
    SWEEP_INTERVAL_SECONDS: int = 3600  # 0 disables the background sweeper

# Cache settings in production/development; tests need to be able to reload them.
if os.getenv('ENVIRONMENT') == 'test':
    def get_settings() -> Settings:
        """Get settings without caching for tests."""
        return Settings()
else:
    @lru_cache()
    def get_settings() -> Settings:
        """Get cached settings for production/development."""
        return Settings()

# Singleton instance used throughout the app
settings = get_settings()
