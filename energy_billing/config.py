"""
Application configuration.
Uses pydantic-settings to read environment variables and the .env file.
"""

import socket
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///./energy_billing.db"
    database_timeout_seconds: float = 30.0  # Busy timeout for store I/O

    # API
    api_title: str = "Energy Billing"
    api_description: str = "Monthly billing runs and invoices for hourly energy readings"
    api_version: str = "1.0.0"

    # CORS
    cors_allow_origins: List[str] = ["*"]  # Restrict to known domains in production
    cors_allow_credentials: bool = True
    cors_allow_methods: List[str] = ["*"]
    cors_allow_headers: List[str] = ["*"]

    # Logging
    log_level: str = "INFO"

    # Billing runs
    billing_max_workers: int = 4
    billing_regeneration_policy: str = "replace"  # 'replace', 'skip' or 'fail'
    billing_max_consecutive_store_failures: int = 3
    billing_run_lease_seconds: int = 900
    billing_include_estimated: bool = True

    # Identifies this process in billing run leases (host name when empty)
    instance_id: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @property
    def owner_id(self) -> str:
        return self.instance_id or socket.gethostname()


# Global settings instance
settings = Settings()
