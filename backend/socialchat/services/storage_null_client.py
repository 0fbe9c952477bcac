from typing import List, Optional

from .r2_storage_client import StoredMedia


class NullStorageClient:
    """Storage client used when Cloudflare R2 is not configured (local dev, tests)."""

    def __init__(self, public_base_url: str = "https://media.socialchat.local") -> None:
        self.public_base_url = public_base_url.rstrip("/")
        self.released: List[str] = []

    def store(
        self, object_key: str, data: bytes, content_type: str, with_thumbnail: bool = False
    ) -> StoredMedia:
        url = f"{self.public_base_url}/{object_key}"
        thumbnail: Optional[str] = f"{url}.thumb.jpg" if with_thumbnail else None
        return StoredMedia(url=url, handle=object_key, thumbnail_url=thumbnail)

    def release(self, handle: str) -> bool:
        self.released.append(handle)
        return True
