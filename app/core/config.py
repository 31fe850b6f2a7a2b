"""
Application configuration management using Pydantic Settings
Handles all environment variables and application settings
"""

from pydantic_settings import BaseSettings
from typing import Optional, List
from functools import lru_cache

class Settings(BaseSettings):
    """Main application settings"""

    # Application Settings
    APP_NAME: str = "Metchi API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # Database Configuration
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30
    DATABASE_ECHO: bool = False

    # Redis Configuration
    REDIS_URL: str = "redis://localhost:6379"
    REDIS_DECODE_RESPONSES: bool = True
    REDIS_MAX_CONNECTIONS: int = 50

    # Security Settings
    SECRET_KEY: str
    ALGORITHM: str = "HS256"

    # CORS Configuration
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]
    CORS_ALLOW_CREDENTIALS: bool = True

    # Celery Configuration
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"
    CELERY_TIMEZONE: str = "Africa/Nairobi"

    # M-Pesa (TheLiberec Card API)
    LIBEREC_BASE_URL: str = "https://card-api.theliberec.com"
    LIBEREC_EMAIL: Optional[str] = None
    LIBEREC_PASSWORD: Optional[str] = None

    # Solana / USDT deposits (Swapuzi)
    SWAPUZI_BASE_URL: str = "https://api.swapuzi.com"
    SWAPUZI_EMAIL: Optional[str] = None
    SWAPUZI_PASSWORD: Optional[str] = None

    # Webhooks
    WEBHOOK_BASE_URL: Optional[str] = None
    PAYMENT_WEBHOOK_SECRET: Optional[str] = None

    # Provider HTTP clients
    PROVIDER_TOKEN_TTL_SECONDS: int = 300
    PROVIDER_HTTP_TIMEOUT: float = 30.0
    EXCHANGE_RATE_CACHE_SECONDS: int = 60

    # Pricing (minor units, KES cents)
    CURRENCY: str = "KES"
    PLATFORM_FEE_SMALL_CENTS: int = 20000
    PLATFORM_FEE_LARGE_CENTS: int = 50000
    PLATFORM_FEE_THRESHOLD_CENTS: int = 200000
    COMPANION_PAYOUT_RATE: float = 0.95

    # Referrals
    REFERRAL_COMMISSION_RATE: float = 0.05
    REFERRAL_MAX_TRANSACTIONS: int = 2
    REFERRAL_BONUS_REFERRER_CENTS: int = 10000
    REFERRAL_BONUS_REFERRED_CENTS: int = 20000

    # Interaction lifecycle
    REQUEST_EXPIRY_MINUTES: int = 30
    DEFAULT_DURATION_MINUTES: int = 1440
    MAX_DURATION_MINUTES: int = 1440

    # M-Pesa STK polling
    STK_POLL_INTERVAL_SECONDS: float = 2.0
    STK_POLL_TIMEOUT_SECONDS: float = 90.0

    # Unconfirmed payments are expired and their wallet holds returned
    PUSH_PAYMENT_EXPIRY_MINUTES: int = 10
    CRYPTO_DEPOSIT_EXPIRY_MINUTES: int = 60

    # Profile boost
    BOOST_PRICE_KES: int = 1000
    BOOST_DURATION_DAYS: int = 30

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def database_url_async(self) -> str:
        """Convert sync database URL to async"""
        if self.DATABASE_URL.startswith("postgresql://"):
            return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")
        elif self.DATABASE_URL.startswith("sqlite://"):
            return self.DATABASE_URL.replace("sqlite://", "sqlite+aiosqlite://")
        return self.DATABASE_URL

    def webhook_url(self, path: str) -> str:
        """Absolute callback URL for a provider webhook, empty when unset"""
        if not self.WEBHOOK_BASE_URL:
            return ""
        base = self.WEBHOOK_BASE_URL.rstrip("/")
        if not base.startswith("http"):
            base = f"https://{base}"
        return f"{base}/api/v1/webhooks/{path}"

@lru_cache()
def get_settings() -> Settings:
    """
    Create cached settings instance
    This ensures settings are loaded only once
    """
    return Settings()

# Global settings instance
settings = get_settings()
