"""
Configuration management via environment variables.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="REGISTRY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Files
    credential_file: str = Field(
        default="config.json",
        description="Credential file holding the password hash and session secret",
    )
    data_file: str = Field(
        default="data/nodes.json",
        description="Node collection file, rewritten on every mutation",
    )

    # Login abuse control
    trust_proxy_headers: bool = Field(
        default=True,
        description="Derive client identity from CF-Connecting-IP / X-Forwarded-For. "
        "Disable unless the service sits behind a trusted proxy chain.",
    )
    max_login_failures: int = Field(
        default=4,
        ge=1,
        description="Consecutive failures that open a lockout window",
    )
    lockout_seconds: int = Field(
        default=300,
        ge=1,
        description="Lockout window length in seconds",
    )
    failed_login_delay_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Fixed delay before answering a failed login",
    )

    # Session settings
    session_cookie_name: str = Field(
        default="registry_session",
        description="Name of the session cookie",
    )
    session_max_age: int = Field(
        default=28800,
        description="Absolute session lifetime in seconds (default 8 hours)",
    )
    session_bind_client: bool = Field(
        default=False,
        description="Reject sessions presented from a different client id",
    )
    cookie_secure: bool = Field(
        default=False,
        description="Mark the session cookie Secure (enable behind TLS)",
    )

    # Server
    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=3000, description="Listen port")
    log_level: str = Field(default="INFO", description="Root log level")

    # Paths
    base_dir: Path = Field(
        default_factory=lambda: Path(__file__).parent.parent,
        description="Base directory of the application",
    )

    @computed_field
    @property
    def credential_path(self) -> Path:
        return self.base_dir / self.credential_file

    @computed_field
    @property
    def data_path(self) -> Path:
        return self.base_dir / self.data_file


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
