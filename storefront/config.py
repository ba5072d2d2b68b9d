from typing import List, Optional
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENV: str = "local"
    LOG_LEVEL: str = "INFO"

    # Full URL wins over the postgres_* parts (tests use sqlite)
    DATABASE_URL: Optional[str] = None

    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_db: str = "storefront"
    postgres_host: str = "localhost"
    postgres_port: str = "5432"

    # Tokens are issued by the hosted auth provider, we only verify them
    secret_key: str = "change-me"
    algorithm: str = "HS256"
    ADMIN_ROLE: str = "admin"

    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_CURRENCY: str = "usd"

    SHIPPING_FLAGGED_CITY: str = "Yerevan"
    SHIPPING_SURCHARGE: float = 5.00

    ORDER_PAGE_SIZE: int = 10
    STORE_TIMEOUT_SECONDS: float = 10.0
    PAYMENT_POLL_INTERVAL_SECONDS: float = 2.0
    PAYMENT_POLL_MAX_ATTEMPTS: int = 15
    DISCONNECT_POLL_SECONDS: float = 0.5

    CORS_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]

    @property
    def database_url(self):
        if self.DATABASE_URL:
            return self.DATABASE_URL
        encoded_password = quote_plus(self.postgres_password)
        return (
            f"postgresql+psycopg2://{self.postgres_user}:"
            f"{encoded_password}@{self.postgres_host}:"
            f"{self.postgres_port}/{self.postgres_db}"
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "allow"

settings = Settings()
