import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent.parent

DEFAULT_ORIGINS = frozenset({
    "https://www.arkfurniture.ca",
    "https://arkfurniture.ca",
    "https://arkfurniture.myshopify.com",
})

REQUIRED_ENVS = ("SQUARE_ACCESS_TOKEN", "SQUARE_LOCATION_ID")


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def _origins(value: Optional[str]) -> FrozenSet[str]:
    extra = {o.strip() for o in (value or "").split(",") if o.strip()}
    return DEFAULT_ORIGINS | extra


@dataclass(frozen=True)
class Settings:
    square_access_token: Optional[str] = None
    square_env: str = "sandbox"
    square_version: str = "2024-10-17"
    location_id: Optional[str] = None
    site_base_url: str = "https://www.arkfurniture.ca"
    booking_path: str = "/pages/book-touchup"
    currency: str = "CAD"
    allowed_origins: FrozenSet[str] = field(default_factory=lambda: DEFAULT_ORIGINS)
    min_price: float = 120.0
    min_minutes: int = 60
    search_window_hours: int = 24
    verbose_errors: bool = False
    database_url: Optional[str] = None
    debug_jwt_secret: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.square_env == "production"

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "Settings":
        # Force-load .env from the project root
        load_dotenv(dotenv_path=env_file or BASE_DIR / ".env")

        for key in REQUIRED_ENVS:
            if not os.getenv(key):
                logger.warning("Missing env %s; Square calls will fail until it is set", key)

        env = (os.getenv("SQUARE_ENV") or "sandbox").strip().lower()
        return cls(
            square_access_token=os.getenv("SQUARE_ACCESS_TOKEN") or None,
            square_env="production" if env == "production" else "sandbox",
            square_version=os.getenv("SQUARE_VERSION") or cls.square_version,
            location_id=os.getenv("SQUARE_LOCATION_ID") or None,
            site_base_url=(os.getenv("SITE_BASE_URL") or cls.site_base_url).rstrip("/"),
            booking_path=os.getenv("BOOKING_PATH") or cls.booking_path,
            currency=(os.getenv("CURRENCY") or cls.currency).upper(),
            allowed_origins=_origins(os.getenv("ALLOWED_ORIGINS")),
            min_price=float(os.getenv("MIN_PRICE") or cls.min_price),
            min_minutes=int(os.getenv("MIN_MINUTES") or cls.min_minutes),
            search_window_hours=int(os.getenv("SEARCH_WINDOW_HOURS") or cls.search_window_hours),
            verbose_errors=_flag(os.getenv("VERBOSE_ERRORS")),
            database_url=os.getenv("DATABASE_URL") or None,
            debug_jwt_secret=os.getenv("DEBUG_JWT_SECRET") or None,
        )
