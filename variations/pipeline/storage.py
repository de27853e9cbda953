"""
Upload stage: durable storage for the shared source image.

Objects are stored on Cloudflare R2 (S3 API) under a content-hash key:
  variations/sources/{sha256}.png

so storing the same bytes twice yields the same reference.
"""

import os
import asyncio
import hashlib
import logging
from typing import Optional
from urllib.parse import parse_qs, urlparse

import httpx

from .errors import UploadError
from .models import AssetStore
from .preview import decode_data_url

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

R2_PUBLIC_URL = os.getenv("R2_PUBLIC_URL", "")
R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID", "")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID", "")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY", "")
R2_BUCKET_NAME = os.getenv("R2_BUCKET_NAME", "assets")
R2_SIGNED_URL_TTL = int(os.getenv("R2_SIGNED_URL_TTL", "3600"))

PROXY_PATH = "/api/storage/proxy"

_STORED_MARKERS = ("/api/storage/", ".r2.cloudflarestorage.com", ".r2.dev")


class StorageRefError(ValueError):
    """A reference that cannot be turned into a signed URL."""


# ── Reference helpers ────────────────────────────────────────────────────────

def source_key(data: bytes, content_type: str = "image/png") -> str:
    """Content-addressed object key for a source image."""
    digest = hashlib.sha256(data).hexdigest()
    ext = content_type.split("/")[-1] if "/" in content_type else "bin"
    if ext == "jpeg":
        ext = "jpg"
    return f"variations/sources/{digest}.{ext}"


def is_stored_url(ref: Optional[str], public_base: str = R2_PUBLIC_URL) -> bool:
    """True when `ref` already points at durable storage."""
    if not ref:
        return False
    if public_base and ref.startswith(public_base.rstrip("/")):
        return True
    return any(marker in ref for marker in _STORED_MARKERS)


def extract_signed_url_from_proxy(ref: str) -> Optional[str]:
    """Signed URL embedded in a /api/storage/proxy?url=... link, if any."""
    parsed = urlparse(ref)
    if parsed.path != PROXY_PATH and not parsed.path.endswith(PROXY_PATH):
        return None
    values = parse_qs(parsed.query).get("url")
    return values[0] if values else None


def to_signed_url(ref: Optional[str]) -> str:
    """
    Normalize a stored reference into a URL an external service can fetch.

    - proxy link: the embedded signed URL
    - absolute http(s) URL: unchanged
    - empty, data:, relative or malformed: StorageRefError
    """
    if not ref:
        raise StorageRefError("Empty storage reference")
    if ref.startswith("data:"):
        raise StorageRefError("Data URLs must be uploaded before they can be signed")

    embedded = extract_signed_url_from_proxy(ref)
    if embedded is not None:
        ref = embedded

    parsed = urlparse(ref)
    if parsed.scheme not in ("http", "https"):
        if not parsed.scheme and not parsed.netloc:
            raise StorageRefError(f"Relative storage reference: {ref}")
        raise StorageRefError(f"Unsupported URL scheme: {parsed.scheme}")
    if not parsed.netloc:
        raise StorageRefError(f"Malformed storage URL: {ref}")
    return ref


# ── Byte loading ─────────────────────────────────────────────────────────────

async def load_source_bytes(
    src_ref: str, transport: Optional[httpx.AsyncBaseTransport] = None
) -> tuple[bytes, str]:
    """(bytes, content_type) for a data URL or an http(s) source."""
    if src_ref.startswith("data:"):
        return decode_data_url(src_ref)
    url = to_signed_url(src_ref)
    async with httpx.AsyncClient(timeout=30, transport=transport, follow_redirects=True) as client:
        resp = await client.get(url)
        resp.raise_for_status()
        content_type = resp.headers.get("content-type", "image/png").split(";")[0]
        return resp.content, content_type


# ── R2 store ─────────────────────────────────────────────────────────────────

class R2AssetStore:
    """AssetStore backed by Cloudflare R2 through boto3."""

    def __init__(
        self,
        bucket: str = R2_BUCKET_NAME,
        public_base: str = R2_PUBLIC_URL,
        signed_url_ttl: int = R2_SIGNED_URL_TTL,
        client=None,
    ):
        self.bucket = bucket
        self.public_base = public_base.rstrip("/")
        self.signed_url_ttl = signed_url_ttl
        self._client = client

    @property
    def client(self):
        if self._client is None:
            import boto3
            from botocore.config import Config as BotoConfig

            self._client = boto3.client(
                "s3",
                endpoint_url=f"https://{R2_ACCOUNT_ID}.r2.cloudflarestorage.com",
                aws_access_key_id=R2_ACCESS_KEY_ID,
                aws_secret_access_key=R2_SECRET_ACCESS_KEY,
                config=BotoConfig(signature_version="s3v4"),
                region_name="auto",
            )
        return self._client

    def is_stored(self, ref: str) -> bool:
        return is_stored_url(ref, self.public_base)

    async def store(self, data: bytes, content_type: str = "image/png") -> str:
        key = source_key(data, content_type)
        await asyncio.to_thread(
            self.client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
        )
        url = f"{self.public_base}/{key}" if self.public_base else f"r2://{self.bucket}/{key}"
        logger.info(f"Uploaded to R2: {url}")
        return url

    def _key_for(self, ref: str) -> Optional[str]:
        if self.public_base and ref.startswith(self.public_base + "/"):
            return ref[len(self.public_base) + 1:]
        prefix = f"r2://{self.bucket}/"
        if ref.startswith(prefix):
            return ref[len(prefix):]
        return None

    def resolve(self, ref: str) -> str:
        key = self._key_for(ref)
        if key is None:
            return to_signed_url(ref)
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=self.signed_url_ttl,
        )


# ── Upload stage ─────────────────────────────────────────────────────────────

async def ensure_stored(
    store: AssetStore,
    src_ref: str,
    data: Optional[bytes] = None,
    content_type: str = "image/png",
) -> str:
    """
    Return a durable reference for the source, uploading it when needed.

    A no-op for references the store already owns. Bytes fetched during
    preparation can be passed in to skip a second download.
    """
    if store.is_stored(src_ref):
        return src_ref

    try:
        if data is None:
            data, content_type = await load_source_bytes(src_ref)
        stored = await store.store(data, content_type)
    except UploadError:
        raise
    except Exception as e:
        raise UploadError(f"Upload failed: {e}") from e

    if not stored:
        raise UploadError("Upload failed: storage returned an empty reference")
    return stored
