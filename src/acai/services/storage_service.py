from __future__ import annotations

import logging
import mimetypes
from pathlib import Path

import requests

from acai.config import StorageSettings
from acai.domain.errors import PersistenceError, ValidationError

log = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = {"image/png", "image/jpeg", "image/webp", "image/gif"}
MAX_LOGO_BYTES = 2_000_000


class StorageService:
    """Uploads files to an object-storage bucket and hands back their public URL."""

    def __init__(self, settings: StorageSettings, timeout: int = 15):
        self.settings = settings
        self.timeout = timeout

    def _object_url(self, object_path: str) -> str:
        return f"{self.settings.base_url}/storage/v1/object/{self.settings.bucket}/{object_path}"

    def public_url(self, object_path: str) -> str:
        return f"{self.settings.base_url}/storage/v1/object/public/{self.settings.bucket}/{object_path}"

    def _post(self, url: str, data: bytes, content_type: str) -> None:
        r = requests.post(
            url,
            data=data,
            headers={
                "Authorization": f"Bearer {self.settings.api_key}",
                "apikey": self.settings.api_key,
                "Content-Type": content_type,
                "x-upsert": "true",
            },
            timeout=self.timeout,
        )
        r.raise_for_status()

    def upload_image(self, object_path: str, data: bytes, content_type: str) -> str:
        if content_type not in ALLOWED_IMAGE_TYPES:
            raise ValidationError("Logo must be a PNG, JPEG, WEBP or GIF image.")
        if not data:
            raise ValidationError("Image file is empty.")
        if len(data) > MAX_LOGO_BYTES:
            raise ValidationError("Image must be at most 2 MB.")

        try:
            self._post(self._object_url(object_path), data, content_type)
        except requests.RequestException as e:
            log.warning("upload_failed path=%s error=%s", object_path, e)
            raise PersistenceError(f"Upload failed: {e}") from e

        log.info("upload_ok path=%s bytes=%s", object_path, len(data))
        return self.public_url(object_path)

    def upload_file(self, object_path: str, file_path: Path | str) -> str:
        p = Path(file_path)
        if not p.is_file():
            raise ValidationError(f"File not found: {p}")
        content_type = mimetypes.guess_type(p.name)[0] or "application/octet-stream"
        return self.upload_image(object_path, p.read_bytes(), content_type)
