"""Configuration management for the VIA MCP gateway.

Supports YAML configuration files and environment variable overrides:
every VIA_* variable wins over the same key in the YAML file.
Configuration is loaded once and cached for performance.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from shared.errors import ConfigurationError


class EnvFirstSettings(BaseSettings):
    """Settings where environment variables take precedence over explicit values."""

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return env_settings, dotenv_settings, init_settings, file_secret_settings


class ServerSettings(EnvFirstSettings):
    """HTTP surface and session configuration."""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)
    name: str = Field(default="via-agent-demo")
    version: str = Field(default="0.1.0")
    protocol_version: str = Field(default="2025-03-26")
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    session_ttl_minutes: int = Field(default=60, ge=0)

    model_config = SettingsConfigDict(
        env_prefix="VIA_SERVER_",
        env_file=".env",
        extra="ignore"
    )


class KnowledgeBaseSettings(EnvFirstSettings):
    """Document corpus configuration."""
    root: str = Field(default="kb", description="Directory holding one folder per corpus")
    corpora: list[str] = Field(default_factory=lambda: ["human", "technical"])
    default_limit: int = Field(default=20, gt=0)
    max_limit: int = Field(default=100, gt=0)
    render_top_k: int = Field(default=3, gt=0)
    excerpt_chars: int = Field(default=280, ge=16)

    model_config = SettingsConfigDict(
        env_prefix="VIA_KB_",
        env_file=".env",
        extra="ignore"
    )


class StoreSettings(EnvFirstSettings):
    """Backing store (PostgREST) configuration."""
    backend: str = Field(default="postgrest", description="Store backend: postgrest, memory")
    url: Optional[str] = Field(default=None, description="PostgREST / Supabase project URL")
    api_key: Optional[str] = Field(default=None, description="Anon or service key")
    timeout_seconds: float = Field(default=10.0, gt=0)

    merchants_table: str = Field(default="merchants")
    intents_table: str = Field(default="intents")
    policies_table: str = Field(default="kb_corpus_policies")
    trust_table: str = Field(default="kb_requester_trust")
    audit_table: str = Field(default="kb_audit_log")

    model_config = SettingsConfigDict(
        env_prefix="VIA_STORE_",
        env_file=".env",
        extra="ignore"
    )


class AuditSettings(EnvFirstSettings):
    """Audit sink configuration."""
    enabled: bool = Field(default=True)
    sink: str = Field(default="file", description="Audit sink: file, postgrest, log")
    log_path: str = Field(default="logs/kb_audit.log")
    source: str = Field(default="via-mcp-server")

    model_config = SettingsConfigDict(
        env_prefix="VIA_AUDIT_",
        env_file=".env",
        extra="ignore"
    )


class AuthSettings(EnvFirstSettings):
    """Requester identity configuration."""
    require_auth: bool = Field(default=False)
    secret_key: str = Field(default="change-me-in-production")
    algorithm: str = Field(default="HS256")
    token_expire_minutes: int = Field(default=60)
    trusted_clients: list[str] = Field(default_factory=lambda: ["via-agent"])
    default_requester_type: str = Field(default="anonymous")

    model_config = SettingsConfigDict(
        env_prefix="VIA_AUTH_",
        env_file=".env",
        extra="ignore"
    )


class Settings(EnvFirstSettings):
    """Main application settings."""
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Component settings
    server: ServerSettings = Field(default_factory=ServerSettings)
    kb: KnowledgeBaseSettings = Field(default_factory=KnowledgeBaseSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)

    model_config = SettingsConfigDict(
        env_prefix="VIA_",
        env_file=".env",
        extra="ignore"
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file; environment variables override its values."""
        data = load_yaml_config(path)
        sections = {
            "server": ServerSettings,
            "kb": KnowledgeBaseSettings,
            "store": StoreSettings,
            "audit": AuditSettings,
            "auth": AuthSettings,
        }
        for name, section_cls in sections.items():
            if isinstance(data.get(name), dict):
                data[name] = section_cls(**data[name])
        return cls(**data)

    def require_store_credentials(self) -> tuple[str, str]:
        """Return the PostgREST url and key, failing fast when either is missing."""
        if not self.store.url:
            raise ConfigurationError("Missing VIA_STORE_URL")
        if not self.store.api_key:
            raise ConfigurationError("Missing VIA_STORE_API_KEY")
        return self.store.url, self.store.api_key


def load_yaml_config(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file."""
    path = Path(path)
    if not path.exists():
        return {}

    with open(path) as f:
        return yaml.safe_load(f) or {}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    config_path = os.environ.get("VIA_CONFIG_PATH", "config/settings.yaml")
    return Settings.from_yaml(config_path)
