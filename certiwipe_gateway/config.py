from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CERTIWIPE_GATEWAY_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Compute service (CertiWipe engine)
    compute_base_url: str = "http://localhost:8000"
    compute_wipe_timeout: float = Field(default=30.0, gt=0)
    compute_artifact_timeout: float = Field(default=120.0, gt=0)
    internal_service_token: Optional[str] = None
    internal_token_header: str = "Bzubs--Token"

    # Caller identity
    jwt_secret: str = "supersecretkey"
    jwt_algorithm: str = "HS256"

    # Document store
    db_path: str = "certiwipe_gateway.db"

    # Blob store
    blob_bucket: Optional[str] = None
    blob_prefix: str = "certificates"
    blob_region: Optional[str] = None
    blob_public_base_url: Optional[str] = None

    cors_origins: List[str] = ["*"]
    log_json: bool = True
    log_level: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
