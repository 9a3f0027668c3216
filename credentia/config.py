"""
Credentia — Configuration System

All configuration is Pydantic-validated and loaded from:
1. default.yaml (defaults)
2. Environment variables (overrides)

Every tunable parameter of the issuance core lives here.
"""

from __future__ import annotations

import os
import string
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ─── Sub-configs ──────────────────────────────────────────────────


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000
    api_key_header: str = "X-Credentia-API-Key"
    # When empty, auth is disabled (dev mode).
    api_keys: list[str] = Field(default_factory=list)


class StoreConfig(BaseModel):
    backend: str = "memory"  # "memory" | "redis"

    @field_validator("backend")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        if value not in ("memory", "redis"):
            raise ValueError(f"Unknown store backend: {value}")
        return value


class RedisConfig(BaseModel):
    url: str = "redis://redis:6379/0"
    prefix: str = "credentia"
    password: str = ""

    @property
    def full_url(self) -> str:
        """Build URL with password injected."""
        clean_pw = self.password.strip() if self.password else ""
        if clean_pw and "://" in self.url:
            scheme, rest = self.url.split("://", 1)
            return f"{scheme}://:{clean_pw}@{rest}"
        return self.url


_CODE_CHARACTERS = string.ascii_uppercase + string.digits


class IssuanceConfig(BaseModel):
    verification_base_url: str = "https://certificates.example.com/verify"
    code_alphabet: str = _CODE_CHARACTERS
    placeholder_email: str = "unknown@example.com"
    placeholder_id_prefix: str = "pending_"
    default_issuer_name: str = "Certificate Authority"
    default_organization_id: str = "default_org"
    default_organization_name: str = "Certificate Authority"
    validity_days: int | None = None  # None = non-expiring
    commit_retry_attempts: int = 3
    # Re-mints after a verification code or token collides with an existing one
    mint_collision_retries: int = 3

    @field_validator("commit_retry_attempts", "mint_collision_retries")
    @classmethod
    def _bounded_retries(cls, value: int) -> int:
        if not 0 <= value <= 10:
            raise ValueError("retry counts must be between 0 and 10")
        return value

    @field_validator("code_alphabet")
    @classmethod
    def _code_characters(cls, value: str) -> str:
        if not value or not set(value) <= set(_CODE_CHARACTERS):
            raise ValueError("code_alphabet must be non-empty and drawn from A-Z0-9")
        if len(set(value)) != len(value):
            raise ValueError("code_alphabet must not repeat characters")
        return value


class NotificationConfig(BaseModel):
    strategy: str = "log"  # "log" | "webhook"
    webhook_url: str = ""
    webhook_token: str = ""
    timeout_s: float = 5.0


class VerificationConfig(BaseModel):
    # scrypt cost parameters for access-password hashes
    scrypt_n: int = 2**14
    scrypt_r: int = 8
    scrypt_p: int = 1


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "console"  # "console" | "json"


# ─── Root Configuration ──────────────────────────────────────────


class CredentiaConfig(BaseSettings):
    """
    Root configuration. Loads from YAML, overridable by env vars.
    """

    model_config = SettingsConfigDict(
        env_prefix="CREDENTIA_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    issuance: IssuanceConfig = Field(default_factory=IssuanceConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    verification: VerificationConfig = Field(default_factory=VerificationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> CredentiaConfig:
    """
    Load configuration from YAML file, then apply environment variable overrides.
    """
    raw: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                raw = yaml.safe_load(f) or {}

    # Inject secrets from environment
    if redis_url := os.environ.get("CREDENTIA_REDIS__URL"):
        raw.setdefault("redis", {})["url"] = redis_url
    if redis_pw := os.environ.get("CREDENTIA_REDIS_PASSWORD"):
        raw.setdefault("redis", {})["password"] = redis_pw
    if backend := os.environ.get("CREDENTIA_STORE__BACKEND"):
        raw.setdefault("store", {})["backend"] = backend
    if webhook_token := os.environ.get("CREDENTIA_NOTIFICATIONS__WEBHOOK_TOKEN"):
        raw.setdefault("notifications", {})["webhook_token"] = webhook_token
    if api_keys := os.environ.get("CREDENTIA_API_KEYS"):
        raw.setdefault("server", {})["api_keys"] = [
            k.strip() for k in api_keys.split(",") if k.strip()
        ]

    if overrides:
        raw = _deep_merge(raw, overrides)

    return CredentiaConfig(**raw)
