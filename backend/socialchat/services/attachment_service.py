# backend/socialchat/services/attachment_service.py
"""
Attachment handling for message sends.

Validates declared mime type and size, hands bytes to the media collaborator
(R2 or the null client) and releases deletion handles when messages are
deleted.
"""

from dataclasses import dataclass
import logging
from typing import Optional, Protocol

import ulid

from ..core.config import Settings, settings as default_settings
from ..core.exceptions import StorageException, ValidationException
from ..models.message import ATTACHMENT_KINDS
from .r2_storage_client import MediaStorageError, R2StorageClient, StoredMedia
from .storage_null_client import NullStorageClient

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "application/pdf": "pdf",
    "video/mp4": "mp4",
    "video/webm": "webm",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/ogg": "ogg",
    "audio/webm": "weba",
}


class MediaStorage(Protocol):
    def store(
        self, object_key: str, data: bytes, content_type: str, with_thumbnail: bool = False
    ) -> StoredMedia: ...

    def release(self, handle: str) -> bool: ...


@dataclass
class AttachmentRef:
    """An attachment that already lives in the media store."""

    url: str
    kind: str
    thumbnail_url: Optional[str] = None
    handle: Optional[str] = None


def kind_for_mime(content_type: str) -> str:
    major = (content_type or "").split("/", 1)[0].lower()
    if major in ("image", "video", "audio"):
        return major
    return "document"


def build_storage_client(config: Optional[Settings] = None) -> MediaStorage:
    """R2 when configured, otherwise the null client."""
    config = config or default_settings
    if config.r2_configured:
        return R2StorageClient(config)
    logger.info("[MEDIA] R2 not configured; using null storage client")
    return NullStorageClient(config.r2_public_base_url)


class AttachmentService:
    """Policy plus media collaborator for message attachments."""

    def __init__(self, storage: MediaStorage, config: Optional[Settings] = None):
        self.storage = storage
        self.config = config or default_settings

    def validate(self, content_type: Optional[str], size: int) -> None:
        """
        Raises:
            ValidationException: mime type outside the accepted set, or too large
        """
        if not content_type or content_type.lower() not in self.config.allowed_attachment_types:
            raise ValidationException(
                "Invalid file type. Only images, PDFs, videos, and audio are allowed.",
                code="UNSUPPORTED_MEDIA_TYPE",
                details={"content_type": content_type},
            )
        if size > self.config.max_attachment_bytes:
            raise ValidationException(
                "File too large",
                code="ATTACHMENT_TOO_LARGE",
                details={"size": size, "max_size": self.config.max_attachment_bytes},
            )

    def upload(self, data: bytes, content_type: str, owner_id: str) -> AttachmentRef:
        """
        Validate and store an attachment.

        Raises:
            ValidationException: policy violation (nothing is uploaded)
            StorageException: the media collaborator failed
        """
        self.validate(content_type, len(data))
        content_type = content_type.lower()
        kind = kind_for_mime(content_type)
        object_key = f"chat/{owner_id}/{ulid.ULID()}.{_EXTENSIONS.get(content_type, 'bin')}"
        try:
            stored = self.storage.store(
                object_key, data, content_type, with_thumbnail=(kind == "video")
            )
        except MediaStorageError as e:
            raise StorageException(f"Failed to upload file: {e}", code="MEDIA_UPLOAD_FAILED")
        logger.info(f"[MEDIA] Stored {kind} attachment {object_key} ({len(data)} bytes)")
        return AttachmentRef(
            url=stored.url, kind=kind, thumbnail_url=stored.thumbnail_url, handle=stored.handle
        )

    def release(self, handle: Optional[str]) -> bool:
        """Best-effort release of a deletion handle; failures are logged only."""
        if not handle:
            return True
        try:
            released = self.storage.release(handle)
        except MediaStorageError as e:
            logger.warning(f"[MEDIA] Failed to release {handle}: {e}")
            return False
        if not released:
            logger.warning(f"[MEDIA] Media store refused to release {handle}")
        return released

    @staticmethod
    def parse_reference(raw: Optional[dict]) -> Optional[AttachmentRef]:
        """
        Build an AttachmentRef from a client-supplied reference to an already
        uploaded file (real-time sends).

        Deletion handles are only issued by server-side uploads. A reference
        never carries one, whatever the client sends.

        Raises:
            ValidationException: malformed reference
        """
        if not raw:
            return None
        url = raw.get("url") or raw.get("fileUrl")
        kind = raw.get("kind") or raw.get("fileType")
        if not isinstance(url, str) or not url.strip():
            raise ValidationException("Attachment reference requires a url")
        if kind not in ATTACHMENT_KINDS:
            raise ValidationException(f"Invalid attachment kind: {kind}")
        thumbnail = raw.get("thumbnailUrl")
        return AttachmentRef(
            url=url.strip(),
            kind=str(kind),
            thumbnail_url=thumbnail if isinstance(thumbnail, str) else None,
            handle=None,
        )
