from __future__ import annotations
import uuid
from datetime import timedelta
from minio import Minio
from minio.error import S3Error
import structlog
from stepleague.config import Settings

log = structlog.get_logger()

EXT_FOR_CONTENT_TYPE = {"image/jpeg": "jpg", "image/png": "png", "image/webp": "webp"}


def _parse_endpoint(ep: str) -> tuple[str, bool]:
    # Return (host:port, secure)
    secure = ep.startswith("https://")
    host = ep.replace("http://", "").replace("https://", "")
    return host, secure


class ProofStorage:
    """Proof screenshots bucket. Built once per process in the app lifespan."""

    def __init__(self, settings: Settings, client: Minio | None = None):
        self.bucket = settings.s3_bucket_proofs
        self.expiry = timedelta(seconds=settings.s3_presign_expiry_seconds)
        if client is None:
            host, secure = _parse_endpoint(settings.s3_endpoint)
            client = Minio(host, access_key=settings.s3_access_key, secret_key=settings.s3_secret_key, secure=secure)
        self._client = client

    def ensure_bucket(self) -> None:
        try:
            if not self._client.bucket_exists(self.bucket):
                self._client.make_bucket(self.bucket)
        except S3Error as e:
            # concurrent workers may race on creation
            log.warning("bucket_ensure_failed", bucket=self.bucket, code=e.code)

    def sign_upload(self, owner_id: str, content_type: str) -> tuple[str, str]:
        """
        Reserve an object key under the owner's prefix and presign a PUT for it.
        Returns (upload_url, path). The path is what submissions store as proof_path.
        """
        ext = EXT_FOR_CONTENT_TYPE.get(content_type, "bin")
        path = f"{owner_id}/{uuid.uuid4().hex}.{ext}"
        url = self._client.presigned_put_object(self.bucket, path, expires=self.expiry)
        return url, path

    def get_bytes(self, key: str) -> tuple[bytes, str]:
        """
        Retrieve object from storage.
        Returns (data, content_type).
        """
        try:
            response = self._client.get_object(self.bucket, key)
            try:
                data = response.read()
                content_type = response.headers.get("Content-Type", "application/octet-stream")
            finally:
                response.close()
                response.release_conn()
            return data, content_type
        except S3Error as e:
            if e.code == "NoSuchKey":
                raise FileNotFoundError(f"Object not found: {key}")
            raise
