"""
Configuration management for the data connector.
Handles loading and validation of settings from YAML files.
"""

import logging
import yaml
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from .const import (
    DEFAULT_BASE_DELAY,
    DEFAULT_LOAD_ENTITY_PAGE_SIZE,
    DEFAULT_MAX_PAGES,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PAGE_LIMIT,
    DEFAULT_TIMEOUT,
)


class APISettings(BaseModel):
    """API connection settings."""
    user_id: str = Field(description="Caller identity sent as the userID header")
    data_url: str = Field(description="Host serving metadata and time-series endpoints")
    ds_url: Optional[str] = Field(default=None, description="Host serving cluster endpoints (defaults to data_url)")
    on_prem: bool = Field(default=False, description="Route requests to the on-premises deployment")
    tz: str = Field(default="UTC", description="Timezone for naive input times and ISO output")
    timeout: int = Field(default=DEFAULT_TIMEOUT, gt=0, description="Request timeout in seconds")


class RetrySettings(BaseModel):
    """Backoff settings for idempotent reads."""
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=1, description="Total attempts per request")
    base_delay: float = Field(default=DEFAULT_BASE_DELAY, ge=0.0, description="Delay after the first failure in seconds")


class PaginationSettings(BaseModel):
    """Page sizes and the hard page cap."""
    page_limit: int = Field(default=DEFAULT_PAGE_LIMIT, ge=1, description="Rows requested per time-series page")
    max_pages: int = Field(default=DEFAULT_MAX_PAGES, ge=1, description="Hard cap on pages per query")
    load_entity_page_size: int = Field(default=DEFAULT_LOAD_ENTITY_PAGE_SIZE, ge=1, description="Clusters per page")


class LoggingSettings(BaseModel):
    """Logging configuration settings."""
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    file: Optional[str] = Field(default=None)

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate logging level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper


class ConnectorConfig(BaseModel):
    """Complete connector configuration."""
    api: APISettings
    retry: RetrySettings = Field(default_factory=RetrySettings)
    pagination: PaginationSettings = Field(default_factory=PaginationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def from_yaml(cls, config_path: str | Path) -> 'ConnectorConfig':
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            ConnectorConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid
        """
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, 'r') as f:
                config_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file: {e}")

        if config_data is None:
            raise ValueError("Empty configuration file")

        try:
            return cls(**config_data)
        except Exception as e:
            raise ValueError(f"Error loading configuration: {e}")

    @classmethod
    def from_dict(cls, config_dict: dict) -> 'ConnectorConfig':
        """Create configuration from dictionary."""
        return cls(**config_dict)

    def save_yaml(self, config_path: str | Path) -> None:
        """
        Save configuration to YAML file.

        Args:
            config_path: Path where to save configuration
        """
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        # The user id is the only credential the connector carries
        config_dict = self.model_dump()
        config_dict['api']['user_id'] = '***REDACTED***'

        with open(config_path, 'w') as f:
            yaml.dump(config_dict, f, default_flow_style=False)


def configure_logging(settings: Optional[LoggingSettings] = None) -> logging.Logger:
    """
    Configure the `connector` logger hierarchy.

    Args:
        settings: Logging settings (defaults if None)

    Returns:
        The package logger
    """
    settings = settings or LoggingSettings()
    logger = logging.getLogger('connector')
    logger.setLevel(settings.level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(settings.format)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.file:
        log_path = Path(settings.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def load_config(config_path: Optional[str | Path] = None) -> ConnectorConfig:
    """
    Load configuration from file.

    Args:
        config_path: Optional path to config file

    Returns:
        ConnectorConfig instance
    """
    if config_path is None:
        # Try to find config in common locations
        possible_paths = [
            Path('connector_config.yaml'),
            Path('config/connector_config.yaml'),
            Path('../config/connector_config.yaml'),
        ]

        for path in possible_paths:
            if path.exists():
                return ConnectorConfig.from_yaml(path)

        # No config found - caller must provide the user id and hosts
        raise FileNotFoundError(
            "No configuration file found. Please create connector_config.yaml with API settings."
        )

    return ConnectorConfig.from_yaml(config_path)
