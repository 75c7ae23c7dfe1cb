"""
Configuration Management System

Centralized configuration loading and validation for the order-flow engine.
Supports a YAML configuration file with environment variable substitution
and schema validation. Every threshold that shapes the engine's output
(dead-zones, decay ratios, normalization constants) is a named value here
so it can be tuned and tested without touching the analysis code.

Time Complexity: O(1) for config access after loading
Space Complexity: O(n) where n is total config size
"""

import os
import re
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime
from pydantic import BaseModel, Field, ValidationError, field_validator
import logging

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "engine_config.yml"


class SeriesConfig(BaseModel):
    """Rolling windows shared by the base, bias and trigger series"""
    period: int = Field(14, ge=1)
    bias_smoothing: int = Field(5, ge=1)
    tick_size: float = Field(0.25, gt=0)
    ticks_per_level: int = Field(4, ge=1)
    value_area_percent: float = 0.70
    delta_efficiency_oldest_weight: float = 0.05
    trigger_delta_ewm_span: int = Field(5, ge=1)
    bias_vwap_refresh_tolerance: float = Field(0.0001, ge=0)
    secondary_fast_period: int = Field(8, ge=1)
    secondary_slow_period: int = Field(21, ge=1)

    @field_validator('value_area_percent')
    @classmethod
    def validate_value_area(cls, v):
        if not 0 < v <= 1:
            raise ValueError('value_area_percent must be in (0, 1]')
        return v

    @field_validator('delta_efficiency_oldest_weight')
    @classmethod
    def validate_oldest_weight(cls, v):
        if not 0 < v < 1:
            raise ValueError('delta_efficiency_oldest_weight must be in (0, 1)')
        return v

    @property
    def level_size(self) -> float:
        return self.tick_size * self.ticks_per_level


class EmaConfig(BaseModel):
    """Fast/slow EMA trend tracker"""
    fast_period: int = Field(5, ge=1)
    slow_period: int = Field(9, ge=1)
    slope_buffer_size: int = Field(15, ge=2)
    slow_history_size: int = Field(20, ge=3)
    slope_flat_threshold: float = Field(0.01, ge=0)
    slope_epsilon: float = Field(1e-6, ge=0)


class ClusterConfig(BaseModel):
    """Imbalance price-zone clustering"""
    lookback: int = Field(20, ge=1)
    bucket_size: float = Field(1.0, gt=0)
    strength_norm: float = Field(20.0, gt=0)
    nearest_threshold: int = Field(3, ge=1)
    nearest_max_buckets: int = Field(50, ge=0)


class MetricsConfig(BaseModel):
    """Rolling order-flow metrics thresholds"""
    lookback: int = Field(20, ge=1)
    atr_floor: float = Field(1e-9, gt=0)
    poc_dead_zone: float = 0.01
    va_dead_zone: float = 0.01
    compression_threshold: float = -0.001
    polarization_threshold: float = 0.4
    vwap_dead_zone: float = 0.05
    delta_dead_zone: float = 0.01
    conviction_imbalance_dead_zone: float = 0.1
    skew_extreme: float = Field(0.2, gt=0, lt=0.5)
    divergence_position_threshold: float = 0.4


class FeatureAssemblerConfig(BaseModel):
    """30-slot enriched feature vector"""
    atr_floor: float = Field(0.01, gt=0)
    zscore_lookback: int = Field(5, ge=2)
    edge_bars: int = Field(3, ge=1)
    session_start_minutes: float = 570.0
    session_span_minutes: float = Field(385.0, gt=0)
    channel_epsilon: float = Field(0.0001, ge=0)


class ImbalanceConfig(BaseModel):
    """Diagonal bid/ask imbalance detection on volume ladders"""
    ratio: float = Field(3.0, gt=0)
    min_volume: int = Field(10, ge=0)


class LoggingConfig(BaseModel):
    """Logging outputs"""
    level: str = "INFO"
    log_dir: str = "logs"
    console_output: bool = True
    file_output: bool = False
    structured: bool = True

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        if v.upper() not in ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']:
            raise ValueError(f'unknown log level: {v}')
        return v.upper()


class EngineConfig(BaseModel):
    """Complete engine configuration schema"""
    series: SeriesConfig = Field(default_factory=SeriesConfig)
    ema: EmaConfig = Field(default_factory=EmaConfig)
    clusters: ClusterConfig = Field(default_factory=ClusterConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    features: FeatureAssemblerConfig = Field(default_factory=FeatureAssemblerConfig)
    imbalance: ImbalanceConfig = Field(default_factory=ImbalanceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class ConfigManager:
    """
    Centralized configuration management

    Loads the engine YAML file, substitutes environment variables,
    validates it against EngineConfig and provides dotted-path access.
    """

    def __init__(self, config_dir: str = "configs", validate: bool = True,
                 filename: str = DEFAULT_CONFIG_FILE):
        """
        Initialize configuration manager

        Args:
            config_dir: Directory containing configuration files
            validate: Whether to validate configuration against the schema
            filename: YAML filename inside config_dir
        """
        self.config_dir = Path(config_dir)
        self.validate = validate
        self.filename = filename
        self._config: Dict[str, Any] = {}
        self._loaded_at: Optional[datetime] = None

        self.load()

    def load(self) -> None:
        """Load the configuration file"""
        config_path = self.config_dir / self.filename

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, 'r') as f:
                content = f.read()

            content = self._substitute_env_vars(content)
            config_data = yaml.safe_load(content) or {}

            if self.validate:
                config_data = EngineConfig(**config_data).model_dump()

        except ValidationError as e:
            logger.error(f"Invalid configuration in {config_path}: {e}")
            raise ConfigurationError(f"Invalid configuration in {config_path}") from e
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse configuration {config_path}: {e}")
            raise ConfigurationError(f"Malformed YAML in {config_path}") from e

        self._config = config_data
        self._loaded_at = datetime.now()
        logger.info(f"Loaded configuration from {config_path}")

    def _substitute_env_vars(self, content: str) -> str:
        """
        Substitute environment variables in configuration content

        Args:
            content: Raw configuration content

        Returns:
            Content with environment variables substituted
        """
        def replace_env_var(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) else ""
            return os.getenv(var_name, default_value)

        # Pattern: ${VAR_NAME} or ${VAR_NAME:default_value}
        pattern = r'\$\{([^}:]+?)(?::([^}]*))?\}'
        return re.sub(pattern, replace_env_var, content)

    def get(self, section: str, key_path: str = None, default: Any = None) -> Any:
        """
        Get configuration value by path

        Args:
            section: Top-level section name (e.g. 'metrics')
            key_path: Dot-separated path inside the section
            default: Default value if key not found

        Returns:
            Configuration value
        """
        if section not in self._config:
            logger.warning(f"Configuration section not found: {section}")
            return default

        current = self._config[section]
        if key_path is None:
            return current

        try:
            for key in key_path.split('.'):
                current = current[key]
            return current
        except (KeyError, TypeError):
            logger.warning(f"Configuration key not found: {section}.{key_path}")
            return default

    def set(self, section: str, key_path: str, value: Any) -> None:
        """
        Set configuration value (runtime only, not persisted)

        Args:
            section: Top-level section name
            key_path: Dot-separated path to the value
            value: Value to set
        """
        current = self._config.setdefault(section, {})
        keys = key_path.split('.')

        for key in keys[:-1]:
            current = current.setdefault(key, {})

        current[keys[-1]] = value
        logger.info(f"Set configuration: {section}.{key_path} = {value}")

    def reload(self) -> None:
        """Reload the configuration file"""
        self.load()

    def engine_config(self) -> EngineConfig:
        """Validated configuration model (re-validates runtime overrides)"""
        try:
            return EngineConfig(**self._config)
        except ValidationError as e:
            raise ConfigurationError("Runtime configuration is invalid") from e

    def export_config(self, output_path: str) -> None:
        """
        Export configuration to file

        Args:
            output_path: Path to save the configuration
        """
        with open(output_path, 'w') as f:
            yaml.dump(self._config, f, default_flow_style=False)

        logger.info(f"Exported configuration to {output_path}")

    @property
    def loaded_at(self) -> Optional[datetime]:
        return self._loaded_at

    def __repr__(self) -> str:
        sections = list(self._config.keys())
        return f"ConfigManager(sections={sections}, validate={self.validate})"


# Global configuration manager instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """Get or create global configuration manager instance"""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def load_config(config_dir: str = "configs", validate: bool = True) -> ConfigManager:
    """
    Load configuration and return manager instance

    Args:
        config_dir: Directory containing configuration files
        validate: Whether to validate configuration

    Returns:
        ConfigManager instance
    """
    global _config_manager
    _config_manager = ConfigManager(config_dir, validate)
    return _config_manager
