"""
Configuration management using pydantic-settings.

Values come from ``HASHVAULT_*`` environment variables or a ``.env`` file.
"""

import hashlib

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings for a vault.

    Both store locations accept any pyfilesystem2 FS URL, e.g. ``mem://`` or
    ``osfs:///var/lib/hashvault/blobs``, or a plain directory path.
    """

    model_config = SettingsConfigDict(
        env_prefix="HASHVAULT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    content_url: str = Field(default="mem://",
                             description="Filesystem holding payload blobs")
    metadata_url: str = Field(default="mem://",
                              description="Filesystem holding file records")

    shard_depth: int = Field(default=4, ge=0, le=16)
    shard_width: int = Field(default=1, ge=1, le=8)
    algorithm: str = Field(default="sha256")

    content_timeout: float = Field(
        default=30.0, gt=0,
        description="Seconds to wait on a single content store operation")
    id_attempts: int = Field(default=3, ge=1)
    append_attempts: int = Field(default=3, ge=1)

    log_level: str = Field(default="INFO")

    @field_validator("algorithm")
    @classmethod
    def validate_algorithm(cls, v: str) -> str:
        v = v.lower()
        if v not in hashlib.algorithms_available:
            raise ValueError(f"Unsupported hash algorithm: {v}")
        if not hashlib.new(v).digest_size:
            raise ValueError(f"Variable-length hash algorithm: {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return v
