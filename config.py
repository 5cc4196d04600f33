from __future__ import annotations
import os
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
    DATABASE_NAME: str = os.getenv("DATABASE_NAME", "storefront")
    # Transactions need a replica set; standalone servers rely on compensation only
    USE_TRANSACTIONS: bool = False

    FREE_SHIPPING_THRESHOLD: float = 100.0
    SHIPPING_FEE: float = 10.0

    JWT_ACCESS_SECRET: str = "dev-access-secret-change-me-0123456789"
    JWT_REFRESH_SECRET: str = "dev-refresh-secret-change-me-0123456789"
    JWT_ACCESS_EXPIRE_MINUTES: int = 15

    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["*"]
    DEFAULT_LANGUAGE: str = "fr"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"


settings = Settings()


def get_settings() -> Settings:
    return settings
