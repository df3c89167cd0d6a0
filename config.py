import os
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

log = logging.getLogger("coast2cart.config")

DEV_JWT_SECRET = "dev-secret-change-me"


def _int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


@dataclass
class Settings:
    database_url: Optional[str] = None
    database_name: Optional[str] = None

    jwt_secret: str = DEV_JWT_SECRET
    jwt_algorithm: str = "HS256"
    jwt_expires_days: int = 7

    otp_length: int = 6
    otp_ttl_seconds: int = 300

    philsms_api_url: Optional[str] = None
    philsms_api_key: Optional[str] = None
    philsms_sender_id: Optional[str] = None

    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None
    cloudinary_folder: str = "coast2cart/items"
    max_image_bytes: int = 10 * 1024 * 1024

    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        # Load environment variables from .env file
        load_dotenv()
        origins = os.getenv("CORS_ORIGINS", "*")
        settings = cls(
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME"),
            jwt_secret=os.getenv("JWT_SECRET", DEV_JWT_SECRET),
            jwt_expires_days=_int("JWT_EXPIRES_DAYS", 7),
            otp_length=_int("OTP_LENGTH", 6),
            otp_ttl_seconds=_int("OTP_TTL_SECONDS", 300),
            philsms_api_url=os.getenv("PHILSMS_API_URL"),
            philsms_api_key=os.getenv("PHILSMS_API_KEY"),
            philsms_sender_id=os.getenv("PHILSMS_SENDER_ID"),
            cloudinary_cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME"),
            cloudinary_api_key=os.getenv("CLOUDINARY_API_KEY"),
            cloudinary_api_secret=os.getenv("CLOUDINARY_API_SECRET"),
            cloudinary_folder=os.getenv("CLOUDINARY_FOLDER", "coast2cart/items"),
            max_image_bytes=_int("MAX_IMAGE_BYTES", 10 * 1024 * 1024),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            port=_int("PORT", 8000),
        )
        if settings.jwt_secret == DEV_JWT_SECRET:
            log.warning("JWT_SECRET is not set, using the development secret")
        return settings
