import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

CHECKOUT_FLOWS = ("payment_proof", "no_payment")
UPLOAD_BACKENDS = ("storage", "cdn")


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str] = None
    database_name: Optional[str] = None
    public_base_url: str = "http://localhost:8000"
    admin_password: Optional[str] = None
    admin_session_ttl_minutes: int = 480
    image_upload_backend: str = "storage"  # "storage" or "cdn"
    image_cdn_url: str = "https://api.imgbb.com/1/upload"
    image_cdn_api_key: Optional[str] = None
    max_image_bytes: int = 5 * 1024 * 1024
    checkout_flow: str = "payment_proof"  # "payment_proof" or "no_payment"
    geocoder_url: str = "https://nominatim.openstreetmap.org"
    geocoder_user_agent: str = "storefront-api"
    log_level: str = "INFO"


def _choice(name: str, default: str, allowed) -> str:
    value = os.getenv(name, default).strip().lower()
    if value not in allowed:
        raise ValueError(f"{name} must be one of {', '.join(allowed)}, got '{value}'")
    return value


def load_settings() -> Settings:
    load_dotenv()
    return Settings(
        database_url=os.getenv("DATABASE_URL"),
        database_name=os.getenv("DATABASE_NAME"),
        public_base_url=os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/"),
        admin_password=os.getenv("ADMIN_PASSWORD") or None,
        admin_session_ttl_minutes=int(os.getenv("ADMIN_SESSION_TTL_MINUTES", 480)),
        image_upload_backend=_choice("IMAGE_UPLOAD_BACKEND", "storage", UPLOAD_BACKENDS),
        image_cdn_url=os.getenv("IMAGE_CDN_URL", "https://api.imgbb.com/1/upload"),
        image_cdn_api_key=os.getenv("IMAGE_CDN_API_KEY") or None,
        max_image_bytes=int(os.getenv("MAX_IMAGE_BYTES", 5 * 1024 * 1024)),
        checkout_flow=_choice("CHECKOUT_FLOW", "payment_proof", CHECKOUT_FLOWS),
        geocoder_url=os.getenv("GEOCODER_URL", "https://nominatim.openstreetmap.org").rstrip("/"),
        geocoder_user_agent=os.getenv("GEOCODER_USER_AGENT", "storefront-api"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


settings = load_settings()
