"""
Media Store - דחיסת תמונות והעלאה ל-Cloudflare R2 (S3 compatible).

upload(raw_bytes, content_type, folder) -> public_url
"""
from __future__ import annotations

import asyncio
import io
import mimetypes
import threading
import uuid

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image, UnidentifiedImageError

from app.core.circuit_breaker import get_media_storage_circuit_breaker
from app.core.config import settings
from app.core.exceptions import MediaStorageError
from app.core.logging import get_logger, log_sync_operation

logger = get_logger(__name__)


class MediaFolder:
    """תיקיות בדלי"""

    REPORTS = "traffic_buddy"
    RESOLUTIONS = "traffic_buddy_resolutions"
    DOCUMENTS = "TrafficBuddyDocs"


COMPRESSIBLE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/webp", "image/heic", "image/heif"}


def guess_extension(content_type: str) -> str:
    if content_type in ("image/jpeg", "image/jpg"):
        return "jpg"
    mapped = mimetypes.guess_extension(content_type or "") or ".bin"
    return mapped.lstrip(".")


@log_sync_operation("image compression")
def compress_image(data: bytes, content_type: str, quality: int | None = None) -> tuple[bytes, str]:
    """
    המרה ל-JPEG באיכות IMAGE_JPEG_QUALITY.

    קבצים שאינם תמונה (PDF של מסמך) חוזרים כמו שהם. כשל בדחיסה
    לא מפיל את ההעלאה - מוחזר המקור.
    """
    if content_type not in COMPRESSIBLE_TYPES:
        return data, content_type

    quality = quality or settings.IMAGE_JPEG_QUALITY
    try:
        with Image.open(io.BytesIO(data)) as img:
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            buf = io.BytesIO()
            img.save(buf, format="JPEG", quality=quality, optimize=True)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.warning(
            "Image compression failed, uploading original",
            extra_data={"content_type": content_type, "size": len(data), "error": str(e)},
        )
        return data, content_type

    compressed = buf.getvalue()
    logger.debug(
        "Image compressed",
        extra_data={"original_size": len(data), "compressed_size": len(compressed)},
    )
    return compressed, "image/jpeg"


class MediaStore:
    """עטיפה מעל boto3 להעלאת מדיה של דיווחים"""

    def __init__(self, client=None) -> None:
        self._client = client
        self._bucket = settings.R2_BUCKET_NAME
        self._public_url = settings.R2_PUBLIC_URL.rstrip("/")
        self._circuit_breaker = get_media_storage_circuit_breaker()

    @staticmethod
    def is_configured() -> bool:
        return bool(settings.R2_ENDPOINT_URL and settings.R2_ACCESS_KEY_ID and settings.R2_SECRET_ACCESS_KEY)

    def _get_client(self):
        if self._client is None:
            if not self.is_configured():
                raise MediaStorageError("object storage is not configured")
            session = boto3.session.Session(
                aws_access_key_id=settings.R2_ACCESS_KEY_ID,
                aws_secret_access_key=settings.R2_SECRET_ACCESS_KEY,
            )
            self._client = session.client(
                service_name="s3",
                endpoint_url=settings.R2_ENDPOINT_URL,
                region_name=settings.R2_REGION,
                config=Config(
                    signature_version="s3v4",
                    connect_timeout=settings.MEDIA_TIMEOUT_SECONDS,
                    read_timeout=settings.MEDIA_TIMEOUT_SECONDS,
                    retries={"max_attempts": 2},
                ),
            )
        return self._client

    def public_url(self, key: str) -> str:
        if self._public_url:
            return f"{self._public_url}/{key}"
        return f"{settings.R2_ENDPOINT_URL}/{self._bucket}/{key}"

    def _put_object(self, key: str, data: bytes, content_type: str) -> None:
        try:
            self._get_client().put_object(
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as exc:
            raise MediaStorageError(f"put_object failed for {key}: {exc}") from exc

    async def upload(self, data: bytes, content_type: str, folder: str = MediaFolder.REPORTS) -> str:
        """דחיסה + העלאה. מחזיר URL ציבורי"""
        if not data:
            raise MediaStorageError("empty media payload")
        if len(data) > settings.MAX_FILE_SIZE:
            raise MediaStorageError(
                "media exceeds size limit",
                details={"size": len(data), "limit": settings.MAX_FILE_SIZE},
            )

        body, final_type = await asyncio.to_thread(compress_image, data, content_type)
        key = f"{folder}/{uuid.uuid4().hex}.{guess_extension(final_type)}"

        await self._circuit_breaker.execute(asyncio.to_thread, self._put_object, key, body, final_type)

        logger.info(
            "Media uploaded",
            extra_data={"key": key, "size": len(body), "content_type": final_type},
        )
        return self.public_url(key)


_media_store: MediaStore | None = None
_lock = threading.Lock()


def get_media_store() -> MediaStore:
    global _media_store
    if _media_store is None:
        with _lock:
            if _media_store is None:
                _media_store = MediaStore()
    return _media_store
