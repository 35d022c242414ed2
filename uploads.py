"""Upload storage: local disk in development, Cloudinary when configured.

Cloudinary is selected when ``FINCONTROL_CLOUDINARY_CLOUD_NAME``,
``FINCONTROL_CLOUDINARY_API_KEY`` and ``FINCONTROL_CLOUDINARY_API_SECRET`` are
all set. Local files are written below ``Settings.upload_dir`` and served by
the application under ``/uploads``.
"""

import logging
import re
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import cloudinary
import cloudinary.uploader

from config import Settings, get_settings

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif"}
AVATAR_TRANSFORMATION = [{"width": 256, "height": 256, "crop": "fill", "gravity": "face"}]

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class UploadError(ValueError):
    pass


@dataclass(frozen=True)
class UploadResult:
    url: str
    public_id: str


def file_extension(filename: str, default: str = "") -> str:
    return Path(filename or "").suffix.lower() or default


def ensure_image(filename: str) -> None:
    if file_extension(filename) not in IMAGE_EXTENSIONS:
        raise UploadError("Only jpg, jpeg, png, webp and gif images are allowed")


class UploadService:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        upload_dir: Optional[Path] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.upload_dir = Path(upload_dir or self.settings.upload_dir)
        self.max_bytes = self.settings.max_upload_bytes
        self.is_cloudinary = self.settings.use_cloudinary and upload_dir is None
        self._configured = False

    @property
    def mode(self) -> str:
        return "cloudinary" if self.is_cloudinary else "local"

    def upload(
        self,
        content: bytes,
        filename: str,
        folder: str,
        *,
        name_prefix: Optional[str] = None,
    ) -> UploadResult:
        if not content:
            raise UploadError("Empty file")
        if len(content) > self.max_bytes:
            raise UploadError(
                f"File too large (max {self.max_bytes // (1024 * 1024)}MB)"
            )
        if self.is_cloudinary:
            return self._upload_to_cloudinary(content, folder)
        return self._upload_to_disk(content, filename, folder, name_prefix)

    def remove(self, public_id: Optional[str]) -> None:
        if not public_id:
            return
        if self.is_cloudinary:
            self._configure()
            try:
                cloudinary.uploader.destroy(public_id)
            except Exception as exc:
                logger.warning(f"upload_remove_failed: public_id={public_id} error={exc}")
            return
        path = (self.upload_dir / public_id).resolve()
        if self.upload_dir.resolve() not in path.parents:
            logger.warning(f"upload_remove_skipped: public_id={public_id}")
            return
        path.unlink(missing_ok=True)
        logger.info(f"upload_removed: mode=local public_id={public_id}")

    def _upload_to_disk(
        self,
        content: bytes,
        filename: str,
        folder: str,
        name_prefix: Optional[str],
    ) -> UploadResult:
        target_dir = self.upload_dir / folder
        target_dir.mkdir(parents=True, exist_ok=True)
        ext = file_extension(filename, ".bin")
        prefix = name_prefix or uuid.uuid4().hex[:12]
        stored_name = _UNSAFE_CHARS.sub("_", f"{prefix}-{int(time.time() * 1000)}{ext}")
        (target_dir / stored_name).write_bytes(content)
        logger.info(f"upload_stored: mode=local folder={folder} name={stored_name}")
        return UploadResult(
            url=f"/uploads/{folder}/{stored_name}",
            public_id=f"{folder}/{stored_name}",
        )

    def _upload_to_cloudinary(self, content: bytes, folder: str) -> UploadResult:
        self._configure()
        options: dict[str, object] = {
            "folder": f"fincontrol/{folder}",
            "resource_type": "auto",
        }
        if folder == "avatars":
            options["transformation"] = AVATAR_TRANSFORMATION
        result = cloudinary.uploader.upload(content, **options)
        logger.info(
            f"upload_stored: mode=cloudinary folder={folder} public_id={result['public_id']}"
        )
        return UploadResult(url=result["secure_url"], public_id=result["public_id"])

    def _configure(self) -> None:
        if not self._configured:
            cloudinary.config(
                cloud_name=self.settings.cloudinary_cloud_name,
                api_key=self.settings.cloudinary_api_key,
                api_secret=self.settings.cloudinary_api_secret,
                secure=True,
            )
            self._configured = True
