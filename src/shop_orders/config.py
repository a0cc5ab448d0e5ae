import os
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file="../.env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    ORDERS_DB_USER: str       = os.getenv("ORDERS_DB_USER", "")
    ORDERS_DB_PASSWORD: str   = os.getenv("ORDERS_DB_PASSWORD", "")
    ORDERS_DB_NAME: str       = os.getenv("ORDERS_DB_NAME", "")
    ORDERS_DB_HOST: str       = os.getenv("ORDERS_DB_HOST", "")
    ORDERS_DB_PORT: int       = int(os.getenv("ORDERS_DB_PORT", "5432"))
    # overrides the postgres DSN above, e.g. sqlite+aiosqlite:///./orders.db
    DATABASE_URL: str         = os.getenv("DATABASE_URL", "")
    DB_ECHO: bool             = os.getenv("DB_ECHO", "0") == "1"

    RABBIT_USER: str          = os.getenv("RABBIT_USER", "")
    RABBIT_PASSWORD: str      = os.getenv("RABBIT_PASSWORD", "")
    RABBIT_HOST: str          = os.getenv("RABBIT_HOST", "")
    RABBIT_PORT: int          = int(os.getenv("RABBIT_PORT", "5672"))

    ORDER_TTL: int            = int(os.getenv("ORDER_TTL", "1800"))
    PLACE_MAX_ATTEMPTS: int   = int(os.getenv("PLACE_MAX_ATTEMPTS", "3"))
    PLACE_RETRY_DELAY: float  = float(os.getenv("PLACE_RETRY_DELAY", "0.05"))
    # "pre_discount" or "post_discount"
    COUPON_MIN_AMOUNT_BASIS: str = os.getenv("COUPON_MIN_AMOUNT_BASIS", "pre_discount")
    CART_REMOVAL_ENABLED: bool   = os.getenv("CART_REMOVAL_ENABLED", "1") == "1"

    RESULT_CONSUMER_PREFETCH: int = int(os.getenv("RESULT_CONSUMER_PREFETCH", "10"))
    CLOSE_CONSUMER_PREFETCH: int  = int(os.getenv("CLOSE_CONSUMER_PREFETCH", "10"))

    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://"
            f"{self.ORDERS_DB_USER}:"
            f"{self.ORDERS_DB_PASSWORD}"
            f"@{self.ORDERS_DB_HOST}:"
            f"{self.ORDERS_DB_PORT}/"
            f"{self.ORDERS_DB_NAME}"
        )

settings = Settings()
