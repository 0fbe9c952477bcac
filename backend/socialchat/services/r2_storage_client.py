"""
R2StorageClient - Cloudflare R2 (S3-compatible) media collaborator

Stores message attachments through SigV4 presigned PUT URLs and releases them
through presigned DELETE URLs, without requiring boto3. Attachments are served
from ``r2_public_base_url``; video thumbnails are derived through Cloudflare
media transformations on that host.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
import hashlib
import hmac
import logging
from typing import Dict, Optional
from urllib.parse import quote

import requests

from ..core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def _hmac(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


@dataclass
class PresignedUrl:
    url: str
    headers: Dict[str, str]
    expires_at: str


@dataclass
class StoredMedia:
    """Result of storing bytes: public URL, opaque deletion handle, optional thumbnail."""

    url: str
    handle: str
    thumbnail_url: Optional[str] = None


class MediaStorageError(Exception):
    """Raised when the object store rejects or cannot be reached for an upload."""


class R2StorageClient:
    """
    Minimal SigV4 signer for Cloudflare R2 requests.

    Note: Uses query-string authentication with UNSIGNED-PAYLOAD for simplicity.
    """

    def __init__(self, config: Optional[Settings] = None) -> None:
        config = config or default_settings
        if (
            not config.r2_bucket_name
            or not config.r2_access_key_id
            or not config.r2_secret_access_key.get_secret_value()
        ):
            raise RuntimeError("R2 configuration is missing; check r2_* settings")

        self.account_id = config.r2_account_id
        self.access_key_id = config.r2_access_key_id
        self.secret_key = config.r2_secret_access_key.get_secret_value()
        self.bucket_name = config.r2_bucket_name
        self.public_base_url = config.r2_public_base_url.rstrip("/")
        self.thumbnail_size = config.video_thumbnail_size
        self.host = f"{self.account_id}.r2.cloudflarestorage.com"
        self.region = "auto"
        self.service = "s3"
        self.algorithm = "AWS4-HMAC-SHA256"

    def _build_presigned_url(
        self,
        method: str,
        object_key: str,
        expires_seconds: int,
        content_type: Optional[str] = None,
    ) -> PresignedUrl:
        now = datetime.now(timezone.utc)
        amz_date = now.strftime("%Y%m%dT%H%M%SZ")
        datestamp = now.strftime("%Y%m%d")

        canonical_uri = f"/{self.bucket_name}/{object_key}"
        signed_headers = "host"
        credential_scope = f"{datestamp}/{self.region}/{self.service}/aws4_request"

        params: Dict[str, str] = {
            "X-Amz-Algorithm": self.algorithm,
            "X-Amz-Credential": f"{self.access_key_id}/{credential_scope}",
            "X-Amz-Date": amz_date,
            "X-Amz-Expires": str(expires_seconds),
            "X-Amz-SignedHeaders": signed_headers,
            "X-Amz-Content-Sha256": "UNSIGNED-PAYLOAD",
        }
        if content_type:
            params["content-type"] = content_type

        canonical_querystring = "&".join(
            f"{quote(k, safe='-_.~')}={quote(str(params[k]), safe='-_.~')}"
            for k in sorted(params.keys())
        )
        canonical_request = "\n".join(
            [
                method.upper(),
                canonical_uri,
                canonical_querystring,
                f"host:{self.host}\n",
                signed_headers,
                "UNSIGNED-PAYLOAD",
            ]
        )
        string_to_sign = "\n".join(
            [
                self.algorithm,
                amz_date,
                credential_scope,
                hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
            ]
        )

        k_date = _hmac(("AWS4" + self.secret_key).encode("utf-8"), datestamp)
        k_region = _hmac(k_date, self.region)
        k_service = _hmac(k_region, self.service)
        k_signing = _hmac(k_service, "aws4_request")
        signature = hmac.new(k_signing, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()

        url = f"https://{self.host}{canonical_uri}?{canonical_querystring}&X-Amz-Signature={signature}"
        headers = {"Content-Type": content_type} if content_type else {}
        return PresignedUrl(url=url, headers=headers, expires_at=now.replace(microsecond=0).isoformat())

    def generate_presigned_put(
        self, object_key: str, content_type: str, expires_seconds: int = 300
    ) -> PresignedUrl:
        return self._build_presigned_url("PUT", object_key, expires_seconds, content_type)

    def generate_presigned_delete(
        self, object_key: str, expires_seconds: int = 300
    ) -> PresignedUrl:
        return self._build_presigned_url("DELETE", object_key, expires_seconds)

    def public_url(self, object_key: str) -> str:
        return f"{self.public_base_url}/{object_key}"

    def thumbnail_url(self, object_key: str) -> str:
        """First-frame jpg cover thumbnail for a stored video."""
        size = self.thumbnail_size
        options = f"mode=frame,time=0s,width={size},height={size},fit=cover,format=jpg"
        return f"{self.public_base_url}/cdn-cgi/media/{options}/{self.public_url(object_key)}"

    def store(
        self, object_key: str, data: bytes, content_type: str, with_thumbnail: bool = False
    ) -> StoredMedia:
        """
        Upload bytes under ``object_key``.

        Raises:
            MediaStorageError: If the upload does not succeed
        """
        pre = self.generate_presigned_put(object_key, content_type)
        try:
            resp = requests.put(pre.url, data=data, headers=pre.headers, timeout=60)
        except requests.RequestException as e:
            logger.error(f"Failed to upload {object_key}: {e}")
            raise MediaStorageError(f"Upload failed: {e}") from e
        if not 200 <= resp.status_code < 300:
            logger.error(f"Failed to upload {object_key}: status={resp.status_code}")
            raise MediaStorageError(f"Upload rejected with status {resp.status_code}")
        return StoredMedia(
            url=self.public_url(object_key),
            handle=object_key,
            thumbnail_url=self.thumbnail_url(object_key) if with_thumbnail else None,
        )

    def release(self, handle: str) -> bool:
        """Delete a stored object; a missing object counts as released."""
        try:
            pre = self.generate_presigned_delete(handle)
            resp = requests.delete(pre.url, timeout=30)
            return 200 <= resp.status_code < 300 or resp.status_code == 404
        except requests.RequestException as e:
            logger.error(f"Failed to delete {handle}: {e}")
            return False
