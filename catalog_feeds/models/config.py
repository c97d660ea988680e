"""Configuration management for feed generation and the commerce API client."""

import os
from pathlib import Path
from typing import Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from catalog_feeds.models.data_models import FeedType


def _validate_http_url(value: str) -> str:
    if not value.startswith(('http://', 'https://')):
        raise ValueError(f"URL must start with http:// or https://, got: {value}")
    return value


class RequestPolicy(BaseModel):
    """Retry policy for one outbound request type."""
    retry_limit: int = Field(default=5, description="Maximum retries of one logical request")
    retry_codes: List[int] = Field(
        default_factory=list,
        description="Error codes this request type treats as retryable (empty: none)"
    )

    @field_validator('retry_limit')
    @classmethod
    def validate_retry_limit(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"retry_limit must not be negative, got: {v}")
        return v


class SourceConfig(BaseModel):
    """Where a feed's records come from."""
    kind: Literal["memory", "file", "http"] = Field(default="memory", description="Record source adapter")
    path: Optional[str] = Field(default=None, description="JSON or JSON-lines file for kind=file")
    url: Optional[str] = Field(default=None, description="Paginated collection URL for kind=http")
    page_param: str = Field(default="page", description="Query parameter carrying the batch number")
    per_page_param: str = Field(default="per_page", description="Query parameter carrying the batch size")
    records: List[Dict] = Field(default_factory=list, description="Inline records for kind=memory")

    @model_validator(mode='after')
    def validate_location(self) -> "SourceConfig":
        if self.kind == "file" and not self.path:
            raise ValueError("file sources require a path")
        if self.kind == "http":
            if not self.url:
                raise ValueError("http sources require a url")
            _validate_http_url(self.url)
        return self


class FeedConfig(BaseModel):
    """Per feed type settings."""
    feed_type: FeedType = Field(description="Feed type (name, value or data stream name)")
    enabled: bool = Field(default=True, description="Whether the registry exposes this feed")
    batch_size: Union[int, Literal["unbounded"], None] = Field(
        default=None,
        description="Records per batch, 'unbounded' for one-shot, unset for the feed default"
    )
    regeneration_interval_seconds: Optional[int] = Field(
        default=None,
        description="Override of the feed type's regeneration interval"
    )
    source: SourceConfig = Field(default_factory=SourceConfig)

    @field_validator('feed_type', mode='before')
    @classmethod
    def parse_feed_type(cls, v):
        return FeedType.parse(v)

    @field_validator('batch_size')
    @classmethod
    def validate_batch_size(cls, v):
        if isinstance(v, int) and v < 1:
            raise ValueError(f"batch_size must be at least 1, got: {v}")
        return v

    @field_validator('regeneration_interval_seconds')
    @classmethod
    def validate_interval(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError(f"regeneration_interval_seconds must be positive, got: {v}")
        return v


class ApiConfig(BaseModel):
    """Commerce platform API client settings."""
    base_url: str = Field(default="https://graph.facebook.com", description="API root URL")
    api_version: str = Field(default="v21.0", description="Version path segment")
    access_token: Optional[str] = Field(default=None, description="Bearer token for API calls")
    commerce_partner_integration_id: Optional[str] = Field(
        default=None,
        description="Integration node that receives feed upload requests"
    )
    catalog_id: Optional[str] = Field(default=None, description="Product catalog node id")

    connect_timeout: float = Field(default=3.0, description="HTTP connect timeout in seconds")
    read_timeout: float = Field(default=8.0, description="HTTP read timeout in seconds")

    retry_base_delay: float = Field(default=0.5, description="Base delay for exponential backoff")
    retry_max_delay: float = Field(default=4.0, description="Maximum retry delay")
    retry_jitter_max: float = Field(default=0.5, description="Maximum jitter for retry delay")

    request_policies: Dict[str, RequestPolicy] = Field(
        default_factory=dict,
        description="Retry policy per request type name"
    )

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        return _validate_http_url(v).rstrip('/')

    def policy_for(self, request_type: str) -> RequestPolicy:
        """Configured policy for a request type, or the default policy."""
        return self.request_policies.get(request_type, RequestPolicy())


class AppConfig(BaseModel):
    """Top-level configuration."""

    # Files
    output_directory: str = Field(default="out/feeds", description="Directory for working and published feeds")
    state_directory: str = Field(default="out/state", description="Directory for persisted job state")
    feed_base_url: str = Field(default="http://localhost:8080", description="Public root of the feed endpoint")

    # Generation
    batch_timeout: float = Field(default=30.0, description="Seconds one batch invocation may take")
    max_batch_attempts: int = Field(default=3, description="Attempts per batch before the job fails")
    upload_on_complete: bool = Field(default=True, description="Request a feed upload after generation")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    structured_logging: bool = Field(default=True, description="Enable structured logging")

    api: ApiConfig = Field(default_factory=ApiConfig)
    feeds: List[FeedConfig] = Field(default_factory=list, description="Configured feeds")

    @field_validator('batch_timeout')
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"batch_timeout must be positive, got: {v}")
        return v

    @field_validator('max_batch_attempts')
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"max_batch_attempts must be positive, got: {v}")
        return v

    @field_validator('feed_base_url')
    @classmethod
    def validate_feed_base_url(cls, v: str) -> str:
        return _validate_http_url(v).rstrip('/')

    @model_validator(mode='after')
    def validate_unique_feeds(self) -> "AppConfig":
        seen = set()
        for feed in self.feeds:
            if feed.feed_type in seen:
                raise ValueError(f"Feed {feed.feed_type.name} is configured more than once")
            seen.add(feed.feed_type)
        return self

    @property
    def output_path(self) -> Path:
        return Path(self.output_directory)

    @property
    def state_path(self) -> Path:
        return Path(self.state_directory)

    def feed_config(self, feed_type: FeedType) -> Optional[FeedConfig]:
        """Enabled configuration for a feed type, if any."""
        for feed in self.feeds:
            if feed.feed_type == feed_type and feed.enabled:
                return feed
        return None

    # Environment variable overrides
    @classmethod
    def env_overrides(cls) -> Dict[str, str]:
        """Field overrides taken from CATALOG_FEEDS_* environment variables."""
        env_mappings = {
            "CATALOG_FEEDS_OUTPUT_DIR": "output_directory",
            "CATALOG_FEEDS_STATE_DIR": "state_directory",
            "CATALOG_FEEDS_BASE_URL": "feed_base_url",
            "CATALOG_FEEDS_BATCH_TIMEOUT": "batch_timeout",
            "CATALOG_FEEDS_MAX_BATCH_ATTEMPTS": "max_batch_attempts",
            "CATALOG_FEEDS_LOG_LEVEL": "log_level",
        }
        return {
            field_name: os.environ[env_var]
            for env_var, field_name in env_mappings.items()
            if env_var in os.environ
        }


class ConfigManager:
    """Manages configuration loading with override precedence."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = config_file or Path("config/config.yaml")
        self._config: Optional[AppConfig] = None

    def load_config(self, cli_overrides: Optional[Dict] = None) -> AppConfig:
        """
        Load configuration with override precedence: CLI > ENV > YAML.

        Args:
            cli_overrides: Optional dictionary of CLI flag overrides

        Returns:
            Fully merged AppConfig instance

        Raises:
            ValueError: If configuration validation fails
        """
        config_dict: Dict = {}

        if self.config_file.exists():
            with open(self.config_file, 'r', encoding='utf-8') as f:
                yaml_config = yaml.safe_load(f)
                if yaml_config:
                    config_dict.update(yaml_config)

        # Access tokens are never committed to the YAML file
        token = os.environ.get("CATALOG_FEEDS_ACCESS_TOKEN")
        if token:
            config_dict.setdefault("api", {})
            config_dict["api"] = {**config_dict["api"], "access_token": token}

        config_dict.update(AppConfig.env_overrides())

        if cli_overrides:
            config_dict.update({k: v for k, v in cli_overrides.items() if v is not None})

        self._config = AppConfig(**config_dict)
        return self._config

    @property
    def config(self) -> AppConfig:
        """Get the loaded configuration."""
        if self._config is None:
            self._config = self.load_config()
        return self._config
