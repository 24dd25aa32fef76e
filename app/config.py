"""Application configuration."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Application
    APP_ENV: str = "development"
    SECRET_KEY: str
    API_V1_PREFIX: str = "/api"
    APP_URL: str = "http://localhost:8000"
    LOG_LEVEL: str = "INFO"

    # Frontend
    FRONTEND_URL: str = "http://localhost:3000"

    # Inbound rate limiting (slowapi)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "200/minute"
    RATE_LIMIT_STRICT: str = "10/minute"

    # POS provider (ready2order)
    POS_API_BASE_URL: str = "https://api.ready2order.com/v1"
    POS_DEVELOPER_TOKEN: str = ""
    POS_ENCRYPTION_KEY: str = ""
    POS_WEBHOOK_SECRET: str = ""
    POS_RATE_LIMIT_MAX_REQUESTS: int = 60
    POS_RATE_LIMIT_WINDOW_MS: int = 60_000
    POS_HTTP_TIMEOUT_SECONDS: float = 10.0
    POS_PRODUCT_GROUP_NAME: str = "Lounge Inventory"
    POS_WEBHOOK_EVENTS: List[str] = ["invoice.created"]

    # CORS
    @property
    def ALLOWED_ORIGINS(self) -> List[str]:
        if self.APP_ENV == "development":
            return ["*"]
        return [self.FRONTEND_URL]

    @property
    def POS_CALLBACK_PATH(self) -> str:
        return f"{self.API_V1_PREFIX}/pos/callback"

    @property
    def POS_WEBHOOK_PATH(self) -> str:
        return f"{self.API_V1_PREFIX}/pos/webhooks"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True
    )


settings = Settings()
