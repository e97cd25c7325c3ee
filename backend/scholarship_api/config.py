"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    DATABASE_URL: str
    DATABASE_BUSY_TIMEOUT: float
    SCHEDULE_TIMEZONE: str
    DEFAULT_PAGE_SIZE: int
    MAX_PAGE_SIZE: int
    BOOKING_RATE_LIMIT_PER_MIN: int
    BOOKING_RATE_LIMIT_WINDOW_SECONDS: int

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'app.db'}")
        self.DATABASE_BUSY_TIMEOUT = float(os.getenv("DATABASE_BUSY_TIMEOUT", "15"))
        self.SCHEDULE_TIMEZONE = os.getenv("SCHEDULE_TIMEZONE", "UTC")
        self.DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))
        self.MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "100"))
        self.BOOKING_RATE_LIMIT_PER_MIN = int(os.getenv("BOOKING_RATE_LIMIT_PER_MIN", "30"))
        self.BOOKING_RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("BOOKING_RATE_LIMIT_WINDOW_SECONDS", "60"))
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.DEFAULT_PAGE_SIZE < 1 or self.MAX_PAGE_SIZE < self.DEFAULT_PAGE_SIZE:
            raise RuntimeError("DEFAULT_PAGE_SIZE must be >= 1 and <= MAX_PAGE_SIZE")


settings = Settings()
