"""Application configuration"""

from decimal import Decimal
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # API
    API_V1_PREFIX: str = "/api"
    PROJECT_NAME: str = "Fulfillment Billing API"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Security
    JWT_SECRET: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_MINUTES: int = 1440  # 24 hours

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./billing.db"

    # CORS
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]

    # Invoicing
    # WHY: A single flat rate is the default for new invoices; admins can
    # override the tax amount per invoice.
    SALES_TAX_RATE: Decimal = Decimal("0.06625")
    INVOICE_DUE_DAYS: int = 2
    PAYMENT_HISTORY_PAGE_SIZE: int = 10

    # Company branding (PDF header, email sender name)
    COMPANY_NAME: str = "Prep Services FBA"
    COMPANY_ADDRESS: str = "7000 Atrium Way B05"
    COMPANY_CITY_STATE_ZIP: str = "Mount Laurel, NJ, 08054"
    COMPANY_COUNTRY: str = "United States"
    COMPANY_PHONE: str = "+1-347-661-3010"
    COMPANY_EMAIL: str = "info@prepservicesfba.com"

    # Email
    RESEND_API_KEY: Optional[str] = None
    EMAIL_FROM: Optional[str] = None

    @property
    def async_database_url(self) -> str:
        """Get async database URL"""
        return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")


settings = Settings()
