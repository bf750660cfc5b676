"""
Application configuration.

This module provides centralized configuration management using Pydantic.
Values can be overridden with ``ADBULK_``-prefixed environment variables, using
``__`` to reach nested sections (e.g. ``ADBULK_BULK__POLL_INTERVAL=2``).
"""

from typing import Optional
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from adbulk.bulk.models import ResponseMode

class BulkConfig(BaseModel):
    """Bulk upload configuration."""
    poll_interval: float = Field(default=5.0, gt=0, description="Seconds between status polls")
    timeout: float = Field(default=600.0, gt=0, description="Seconds before tracking gives up")
    file_directory: str = Field(default="bulk_files", description="Directory for upload and result files")
    upload_file_name: str = "upload.jsonl"
    result_file_name: str = "result.jsonl"
    response_mode: ResponseMode = ResponseMode.ERRORS_AND_RESULTS
    overwrite_result_file: bool = True

class NetworkConfig(BaseModel):
    """Network configuration."""
    retry_count: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)
    timeout: int = 30
    pool_size: int = 10

class ApiConfig(BaseModel):
    """Remote bulk service configuration."""
    environment: str = Field(default="sandbox", description="sandbox or http")
    base_url: str = "https://bulk.api.example.com/v13"
    account_id: int = 0
    customer_id: Optional[int] = None
    developer_token: Optional[str] = None
    access_token: Optional[str] = None

class Settings(BaseSettings):
    """Application settings."""
    bulk: BulkConfig = Field(default_factory=BulkConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    model_config = SettingsConfigDict(
        env_prefix="ADBULK_",
        env_nested_delimiter="__",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

# Create global settings instance
settings = Settings()

# Export individual configs for convenience
bulk_config = settings.bulk
network_config = settings.network
api_config = settings.api
