import io
from typing import Iterable, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings
from .errors import BlobStoreError, ValidationError

PDF_CONTENT_TYPE = "application/pdf"


def artifact_key(certificate_id: str) -> str:
    """Deterministic object key so re-uploads overwrite the same artifact."""
    cid = str(certificate_id or "").strip().strip("/")
    if not cid:
        raise ValidationError("Artifact key requires a certificate id")
    return f"{cid}.pdf"


class BlobStore(Protocol):
    def upload_stream(self, chunks: Iterable[bytes], key: str, content_type: str) -> str:
        ...


class ChunkReader(io.RawIOBase):
    """Read-only file object over an iterator of byte chunks."""

    def __init__(self, chunks: Iterable[bytes]):
        self._chunks = iter(chunks)
        self._pending = b""

    def readable(self) -> bool:
        return True

    def readinto(self, buf) -> int:
        while not self._pending:
            try:
                self._pending = next(self._chunks)
            except StopIteration:
                return 0
        n = min(len(buf), len(self._pending))
        buf[:n] = self._pending[:n]
        self._pending = self._pending[n:]
        return n


class S3BlobStore:
    def __init__(self, settings: Settings, client=None):
        self.bucket = (settings.blob_bucket or "").strip()
        self.prefix = (settings.blob_prefix or "").strip().strip("/")
        self.region = (settings.blob_region or "").strip()
        self.public_base_url = (settings.blob_public_base_url or "").rstrip("/")
        self._client = client

    @property
    def client(self):
        if self._client is None:
            if self.region:
                self._client = boto3.client("s3", region_name=self.region)
            else:
                self._client = boto3.client("s3")
        return self._client

    def object_key(self, key: str) -> str:
        k = str(key or "").lstrip("/")
        if not k:
            raise ValidationError("Blob key must be non-empty")
        return f"{self.prefix}/{k}" if self.prefix else k

    def public_url(self, object_key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{object_key}"
        if self.region:
            return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{object_key}"
        return f"https://{self.bucket}.s3.amazonaws.com/{object_key}"

    def upload_stream(self, chunks: Iterable[bytes], key: str, content_type: str = PDF_CONTENT_TYPE) -> str:
        if not self.bucket:
            raise BlobStoreError("Blob bucket missing. Set CERTIWIPE_GATEWAY_BLOB_BUCKET.")
        k = self.object_key(key)
        extra = {"ContentType": content_type} if content_type else {}
        try:
            self.client.upload_fileobj(ChunkReader(chunks), self.bucket, k, ExtraArgs=extra)
        except (ClientError, BotoCoreError) as e:
            raise BlobStoreError(f"Upload failed: s3://{self.bucket}/{k} ({e})") from e
        return self.public_url(k)
