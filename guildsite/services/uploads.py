"""
MediaUploadStore Class - Chat image/video uploads

Stores accepted files under the uploads directory and returns the public URL
that chat image/video messages must point at.
"""

import os
from typing import FrozenSet

from guildsite.config import ALLOWED_UPLOAD_MIMES, MEDIA_URL_PREFIX
from guildsite.errors import UploadRejectedError
from guildsite.models.data_models import UploadResult
from guildsite.utils.helpers import ensure_dir, now_ms, safe_filename
from guildsite.utils.logger import get_logger

log = get_logger("services.uploads")


def media_kind(content_type: str) -> str:
    if content_type.startswith("image/"):
        return "image"
    if content_type.startswith("video/"):
        return "video"
    return "file"


class MediaUploadStore:
    def __init__(
        self,
        uploads_dir: str,
        max_bytes: int = 10 * 1024 * 1024,
        allowed_mimes: FrozenSet[str] = ALLOWED_UPLOAD_MIMES,
        url_prefix: str = MEDIA_URL_PREFIX,
    ):
        self.uploads_dir = uploads_dir
        self.max_bytes = max_bytes
        self.allowed_mimes = allowed_mimes
        self.url_prefix = url_prefix

    def check_type(self, content_type: str) -> None:
        if content_type not in self.allowed_mimes:
            raise UploadRejectedError("File type not allowed", status_code=400)

    def save(self, filename: str, content_type: str, data: bytes) -> UploadResult:
        content_type = (content_type or "").lower()
        self.check_type(content_type)
        if not data:
            raise UploadRejectedError("No file", status_code=400)
        if len(data) > self.max_bytes:
            raise UploadRejectedError("File too large", status_code=413)

        ensure_dir(self.uploads_dir)
        stored = f"{now_ms()}_{safe_filename(filename)}"
        with open(os.path.join(self.uploads_dir, stored), "wb") as f:
            f.write(data)

        log.info("Stored chat upload %s (%s, %d bytes)", stored, content_type, len(data))
        return UploadResult(url=f"{self.url_prefix}{stored}", type=media_kind(content_type))
