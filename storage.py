"""
Object storage for product images and payment screenshots.

Blobs are write-once and addressed by path. Two backends exist and are
chosen with IMAGE_UPLOAD_BACKEND: GridFS inside the shop database (served
back through /files/...) or an ImgBB-compatible image CDN.
"""

import base64
import re
import time
from typing import NamedTuple, Optional
from urllib.parse import quote

import gridfs
import httpx
import structlog
from gridfs.errors import NoFile
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import Settings

logger = structlog.get_logger()

ACCEPTED_IMAGE_TYPES = frozenset({"image/png", "image/jpeg"})
ACCEPTED_SCREENSHOT_TYPES = frozenset({"image/png", "image/jpeg", "image/webp"})


class StorageError(Exception):
    """Upload to the object store failed."""


class ImageRejected(ValueError):
    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(message)


class StoredFile(NamedTuple):
    data: bytes
    content_type: str


def validate_image(
    data: Optional[bytes],
    content_type: Optional[str],
    max_bytes: int,
    accepted=ACCEPTED_IMAGE_TYPES,
    field: str = "image",
) -> None:
    if not data:
        raise ImageRejected(field, "An image file is required")
    if content_type not in accepted:
        allowed = ", ".join(sorted(accepted))
        raise ImageRejected(field, f"Unsupported image type '{content_type}', expected one of: {allowed}")
    if len(data) > max_bytes:
        raise ImageRejected(field, f"Image is larger than {max_bytes} bytes")


def _safe_name(filename: Optional[str]) -> str:
    name = (filename or "upload").replace("\\", "/").rsplit("/", 1)[-1]
    return re.sub(r"[^A-Za-z0-9._-]", "_", name) or "upload"


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


def product_image_path(filename: Optional[str]) -> str:
    return f"products/{_timestamp_ms()}_{_safe_name(filename)}"


def screenshot_path(user_id: str, filename: Optional[str]) -> str:
    return f"payment_screenshots/{user_id}/{_timestamp_ms()}_{_safe_name(filename)}"


class GridFSStorage:
    def __init__(self, database: Database, base_url: str):
        self._bucket = gridfs.GridFSBucket(database)
        self._base_url = base_url.rstrip("/")

    def put(self, path: str, data: bytes, content_type: str) -> str:
        try:
            self._bucket.upload_from_stream(path, data, metadata={"contentType": content_type})
        except PyMongoError as e:
            raise StorageError(f"Could not store {path}: {e}") from e
        logger.info("blob_stored", path=path, size=len(data))
        return f"{self._base_url}/files/{quote(path)}"

    def get(self, path: str) -> StoredFile:
        try:
            stream = self._bucket.open_download_stream_by_name(path)
        except NoFile:
            raise FileNotFoundError(path)
        with stream:
            metadata = stream.metadata or {}
            return StoredFile(stream.read(), metadata.get("contentType", "application/octet-stream"))


class ImageCdnStorage:
    """Uploads to an ImgBB-style API and returns the URL the CDN hands back."""

    def __init__(self, api_url: str, api_key: str, client: Optional[httpx.Client] = None):
        self._api_url = api_url
        self._api_key = api_key
        self._client = client or httpx.Client(timeout=30.0)

    def put(self, path: str, data: bytes, content_type: str) -> str:
        name = path.rsplit("/", 1)[-1]
        try:
            resp = self._client.post(
                self._api_url,
                params={"key": self._api_key},
                data={"image": base64.b64encode(data).decode("ascii"), "name": name},
            )
            resp.raise_for_status()
            url = resp.json()["data"]["url"]
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            raise StorageError(f"Image CDN upload failed for {path}: {e}") from e
        logger.info("blob_stored", path=path, size=len(data), backend="cdn")
        return url

    def get(self, path: str) -> StoredFile:
        # Files live on the CDN and are fetched from there directly.
        raise FileNotFoundError(path)


def make_storage(settings: Settings, database: Database):
    if settings.image_upload_backend == "cdn":
        if not settings.image_cdn_api_key:
            raise RuntimeError("IMAGE_CDN_API_KEY is required when IMAGE_UPLOAD_BACKEND=cdn")
        return ImageCdnStorage(settings.image_cdn_url, settings.image_cdn_api_key)
    return GridFSStorage(database, settings.public_base_url)
