"""Configuration management for PackStudio."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class DatabaseConfig(BaseModel):
    """Database configuration."""

    url: str = "sqlite:///data/db/packstudio.db"
    echo: bool = False


class AIConfig(BaseModel):
    """Model selection and retry settings for the AI providers."""

    chat_model: str = "gpt-4"
    vision_model: str = "gpt-4o"
    image_model: str = "gemini-2.5-flash-image-preview"
    image_pro_model: str = "gemini-3-pro-image-preview"
    image_fallback_model: str = "gemini-2.5-flash-image-preview"
    chat_max_retries: int = 2
    chat_retry_base_delay: float = 0.6
    image_retries: int = 3
    image_retry_initial_delay: float = 2.0
    request_timeout: float = 120.0


class StorageConfig(BaseModel):
    """Object storage configuration."""

    url: str = ""
    bucket: str = "fileuploads"
    max_attempts: int = 3
    timeout: float = 60.0


class AuthConfig(BaseModel):
    """Hosted auth service configuration."""

    url: str = ""
    timeout: float = 10.0


class CreditsConfig(BaseModel):
    """Credit cost of each paid operation."""

    multiview_edit_cost: int = 5
    single_view_cost: int = 1


class AnalysisCacheConfig(BaseModel):
    """Image analysis cache configuration."""

    ttl_days: int = 30


class ScheduleConfig(BaseModel):
    """Scheduling configuration."""

    cache_cleanup_hour: int = 3
    plan_expiry_hours: int = 6
    ai_log_retention_days: int = 90
    max_instances_per_job: int = 1
    misfire_grace_time_seconds: int = 300


class APIConfig(BaseModel):
    """API configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "text"
    file: str = "data/logs/packstudio.log"


class Config(BaseModel):
    """Main configuration model."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    credits: CreditsConfig = Field(default_factory=CreditsConfig)
    analysis_cache: AnalysisCacheConfig = Field(default_factory=AnalysisCacheConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class Settings(BaseSettings):
    """Environment-based settings."""

    # Database
    database_url: str = ""

    # AI providers
    openai_api_key: str = ""
    gemini_api_key: str = ""

    # Hosted backend (auth + storage share a project URL)
    backend_url: str = ""
    backend_anon_key: str = ""
    backend_service_key: str = ""

    # Logging
    log_level: str = ""
    log_format: str = ""

    # API
    api_host: str = ""
    api_port: int = 0

    # Deployment environment recorded in AI logs
    environment: str = "development"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


class ConfigManager:
    """Configuration manager for loading and merging config sources."""

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to YAML configuration file
        """
        load_dotenv()

        if config_path is None:
            config_path = Path(__file__).parent.parent.parent / "config" / "config.yaml"

        self.config_path = config_path
        self.yaml_config = self._load_yaml()

        self.env_settings = Settings()

        self.config = self._merge_config()

    def _load_yaml(self) -> Dict[str, Any]:
        """Load YAML configuration file."""
        if not self.config_path.exists():
            return {}

        with open(self.config_path, "r") as f:
            return yaml.safe_load(f) or {}

    def _merge_config(self) -> Config:
        """Merge YAML config with environment variables."""
        merged = self.yaml_config.copy()

        if self.env_settings.database_url:
            merged.setdefault("database", {})["url"] = self.env_settings.database_url

        if self.env_settings.backend_url:
            backend = self.env_settings.backend_url.rstrip("/")
            merged.setdefault("storage", {}).setdefault("url", backend)
            merged.setdefault("auth", {}).setdefault("url", backend)

        if self.env_settings.log_level:
            merged.setdefault("logging", {})["level"] = self.env_settings.log_level

        if self.env_settings.log_format:
            merged.setdefault("logging", {})["format"] = self.env_settings.log_format

        if self.env_settings.api_host:
            merged.setdefault("api", {})["host"] = self.env_settings.api_host

        if self.env_settings.api_port:
            merged.setdefault("api", {})["port"] = self.env_settings.api_port

        return Config(**merged)


# Global config instance
_config_manager: Optional[ConfigManager] = None


def get_config() -> Config:
    """Get global configuration instance."""
    return get_config_manager().config


def get_settings() -> Settings:
    """Get environment settings."""
    return get_config_manager().env_settings


def get_config_manager() -> ConfigManager:
    """Get configuration manager instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def reset_config():
    """Drop the cached configuration so the next access reloads it."""
    global _config_manager
    _config_manager = None
