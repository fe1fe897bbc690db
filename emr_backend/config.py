"""
Configuration settings for the EMR Gateway
"""
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "EMR Gateway"
    DEBUG: bool = True
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    PUBLIC_BASE_URL: Optional[str] = None  # Origin used for OAuth redirect URIs

    # Database
    DATABASE_URL: str = f"sqlite:///{BASE_DIR}/data/emr_gateway.db"
    SQL_ECHO: bool = False
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10

    # Seed data written on first start
    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: str = "admin123"
    ADMIN_EMAIL: str = "admin@emr.local"
    DEFAULT_TENANT_SLUG: str = "default"
    DEFAULT_TENANT_NAME: str = "Default"

    # Aidbox FHIR server
    AIDBOX_BASE_URL: str = "http://localhost:8888"
    AIDBOX_CLIENT_ID: str = "emr-api"
    AIDBOX_CLIENT_SECRET: str = "emr-secret"
    FHIR_TIMEOUT_SECONDS: float = 30.0

    # Auth
    JWT_SECRET_KEY: Optional[str] = None
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 480  # 8 hours

    # AI providers
    AI_SCRIBE_PROVIDER: str = "openai"
    LLM_MOCK: bool = False
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_CHAT_MODEL: str = "gpt-4-turbo-preview"
    OPENAI_TRANSCRIBE_MODEL: str = "whisper-1"

    # Google Gemini via Vertex AI
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = None
    GEMINI_MODEL: str = "gemini-1.5-flash-001"
    GEMINI_LOCATION: str = "us-central1"

    # BastionGPT (HIPAA-compliant hosted LLM)
    BASTIONGPT_BASE_URL: str = "https://api.bastiongpt.com/v1"
    BASTIONGPT_API_KEY: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    class Config:
        env_file = ".env"
        extra = "allow"


settings = Settings()

# Ensure local data directory exists for the default SQLite database
(BASE_DIR / "data").mkdir(parents=True, exist_ok=True)
