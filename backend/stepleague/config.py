from __future__ import annotations
import os
from pydantic import BaseModel

class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "stepleague-api")
    app_display_name: str = os.getenv("APP_DISPLAY_NAME", "StepLeague")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    git_sha: str = os.getenv("GIT_SHA", "dev")
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    database_url: str = os.getenv("DATABASE_URL", "postgresql+asyncpg://postgres:postgres@db:5432/stepleague_dev")
    redis_url: str = os.getenv("REDIS_URL", "redis://redis:6379/0")

    # Auth
    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret-change-me")
    access_ttl_min: int = int(os.getenv("ACCESS_TTL_MIN", "15"))
    refresh_ttl_min: int = int(os.getenv("REFRESH_TTL_MIN", "10080"))  # 7d

    # Proof storage (MinIO / S3)
    s3_endpoint: str = os.getenv("S3_ENDPOINT", "http://minio:9000")
    s3_access_key: str = os.getenv("S3_ACCESS_KEY", "minioadmin")
    s3_secret_key: str = os.getenv("S3_SECRET_KEY", "minioadmin")
    s3_bucket_proofs: str = os.getenv("S3_BUCKET_PROOFS", "stepleague-proofs-dev")
    s3_presign_expiry_seconds: int = int(os.getenv("S3_PRESIGN_EXPIRY_SECONDS", "300"))

    # Upload limits (bytes)
    max_upload_bytes: int = int(os.getenv("MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))
    compress_threshold_bytes: int = int(os.getenv("COMPRESS_THRESHOLD_BYTES", str(2 * 1024 * 1024)))
    compress_max_dimension: int = int(os.getenv("COMPRESS_MAX_DIMENSION", "1920"))

    # AI screenshot verification service
    verification_url: str = os.getenv("VERIFICATION_URL", "http://verifier:8080/verify")
    verification_api_key: str = os.getenv("VERIFICATION_API_KEY", "")
    verification_timeout_seconds: float = float(os.getenv("VERIFY_TIMEOUT_SECONDS", "30"))
    verification_default_retry_after: int = int(os.getenv("VERIFY_DEFAULT_RETRY_AFTER", "60"))

settings = Settings()
