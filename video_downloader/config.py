"""
Manages loading, saving, and validating the application configuration using Pydantic.

This module defines the configuration schema as a Pydantic model (`Settings`)
and provides a manager class (`ConfigManager`) to handle persistence to a JSON file.
"""

import json
import time
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, ValidationError

from .constants import (
    DEFAULT_FORMAT_SELECTOR, DEFAULT_SAVE_DIR, DEFAULT_TARGET_CONTAINER, DEFAULT_WORK_DIR,
    DELETE_WAIT_TIMEOUT, JOB_LIST_FILE, SUPPORTED_CONTAINERS
)


class Settings(BaseModel):
    """
    Defines the application's configuration schema using Pydantic.

    This class provides type hints, default values, and validation logic for all
    configuration settings.
    """
    save_directory: Path = Field(default=DEFAULT_SAVE_DIR)
    work_directory: Path = Field(default=DEFAULT_WORK_DIR)
    job_list_path: Path = Field(default=JOB_LIST_FILE)
    target_container: str = DEFAULT_TARGET_CONTAINER
    format_selector: str = DEFAULT_FORMAT_SELECTOR
    delete_wait_timeout: float = Field(default=DELETE_WAIT_TIMEOUT, gt=0, le=600)
    yt_dlp_path: Optional[Path] = None
    ffmpeg_path: Optional[Path] = None
    host: str = '127.0.0.1'
    port: int = Field(default=8080, ge=1, le=65535)
    log_level: str = 'INFO'

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Ensures log_level is a valid logging level string."""
        upper_value = value.upper()
        allowed_levels: List[str] = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if upper_value not in allowed_levels:
            raise ValueError(f"'{value}' is not a valid log level. Must be one of {allowed_levels}.")
        return upper_value

    @field_validator('target_container')
    @classmethod
    def validate_target_container(cls, value: str) -> str:
        """Normalizes the container to a bare, lower-case extension."""
        container = value.lower().lstrip('.')
        if container not in SUPPORTED_CONTAINERS:
            raise ValueError(f"'{value}' is not a supported container. Must be one of {list(SUPPORTED_CONTAINERS)}.")
        return container

    @field_validator('format_selector')
    @classmethod
    def validate_format_selector(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Format selector cannot be empty.")
        return value.strip()


class ConfigManager:
    """Handles loading and saving the application configuration file."""
    def __init__(self, config_path: Path):
        """
        Initializes the ConfigManager.

        Args:
            config_path: The path to the configuration file.
        """
        self.config_path = config_path
        self.logger = logging.getLogger(__name__)
        # Ensure the configuration directory exists
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> Settings:
        """
        Loads config from file, merges with defaults, validates, and returns it.

        If the file doesn't exist, is invalid, or an error occurs, a default
        configuration is returned. Invalid files are backed up.

        Returns:
            A validated Settings object.
        """
        if not self.config_path.exists():
            self.logger.info("Config file not found. Creating with default settings.")
            default_settings = Settings()
            self.save(default_settings)
            return default_settings

        try:
            config_data = json.loads(self.config_path.read_text(encoding='utf-8'))
            return Settings.model_validate(config_data)
        except (ValidationError, json.JSONDecodeError, IOError) as e:
            self.logger.error(f"Error loading {self.config_path}: {e}. Backing up and using defaults.")
            try:
                backup_path = self.config_path.with_suffix(f".{int(time.time())}.bak")
                self.config_path.rename(backup_path)
                self.logger.info(f"Backed up corrupted config to {backup_path}")
            except IOError as backup_e:
                self.logger.error(f"Could not back up corrupted config file: {backup_e}")
            return Settings()

    def save(self, settings: Settings):
        """
        Saves the provided settings object to the config file.

        Args:
            settings: The Settings object to save.
        """
        try:
            self.config_path.write_text(settings.model_dump_json(indent=4), encoding='utf-8')
        except IOError as e:
            self.logger.error(f"Error saving config file to {self.config_path}: {e}")
