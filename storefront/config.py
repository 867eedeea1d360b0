"""Runtime configuration for the storefront (read from the environment)."""
import os
from decimal import Decimal
from typing import NamedTuple

from dotenv import load_dotenv

load_dotenv()


class Settings(NamedTuple):
    database_url: str = "sqlite+aiosqlite:///./storefront.db"
    jwt_secret: str = "dev-secret"
    token_ttl_seconds: int = 60 * 60 * 24  # 1 day
    cache_ttl_seconds: float = 30.0
    max_stock: int = 10000
    max_price: Decimal = Decimal("99999.99")
    upload_dir: str = "uploads"
    max_upload_bytes: int = 5 * 1024 * 1024
    checkpoint_interval_seconds: float = 30.0
    admin_username: str = "admin"
    admin_email: str = "admin@skateboard.com"
    admin_password: str = "admin123"
    log_level: str = "INFO"


def load_settings() -> Settings:
    defaults = Settings()
    return Settings(
        database_url=os.getenv("DATABASE_URL", defaults.database_url),
        jwt_secret=os.getenv("JWT_SECRET", defaults.jwt_secret),
        token_ttl_seconds=int(os.getenv("TOKEN_TTL_SECONDS", defaults.token_ttl_seconds)),
        cache_ttl_seconds=float(os.getenv("CACHE_TTL_SECONDS", defaults.cache_ttl_seconds)),
        max_stock=int(os.getenv("MAX_STOCK", defaults.max_stock)),
        max_price=Decimal(os.getenv("MAX_PRICE", str(defaults.max_price))),
        upload_dir=os.getenv("UPLOAD_DIR", defaults.upload_dir),
        max_upload_bytes=int(os.getenv("MAX_UPLOAD_BYTES", defaults.max_upload_bytes)),
        checkpoint_interval_seconds=float(
            os.getenv("CHECKPOINT_INTERVAL_SECONDS", defaults.checkpoint_interval_seconds)
        ),
        admin_username=os.getenv("ADMIN_USERNAME", defaults.admin_username),
        admin_email=os.getenv("ADMIN_EMAIL", defaults.admin_email),
        admin_password=os.getenv("ADMIN_PASSWORD", defaults.admin_password),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level),
    )
