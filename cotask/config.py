"""Configuration Management with Pydantic.

Driver behaviour and logging settings are modelled with Pydantic and loaded
from YAML (or JSON) files, with environment variable overrides applied on
top of the file contents.
"""

import os
import threading
from pathlib import Path

import structlog
import yaml
from pydantic import BaseModel, Field

from cotask.log_config import configure_logging

logger = structlog.get_logger(__name__)

DEFAULT_CONFIG_FILES = ("cotask.yaml", "cotask.yml", "cotask.json")
TRUE_VALUES = ("true", "1", "yes", "on")


class DriverConfig(BaseModel):
    """Coroutine driver settings.

    Attributes:
        max_steps: Upper bound on resumes per driver run (None for unbounded)
        trace_steps: Emit a debug log line for every resume
        coerce_collections: Gather yielded lists, tuples and dicts
        coerce_generators: Drive yielded generator objects as nested runs
    """

    max_steps: int | None = Field(
        default=None,
        ge=1,
        description="Maximum resumes per run",
    )
    trace_steps: bool = Field(
        default=False,
        description="Log every resume at debug level",
    )
    coerce_collections: bool = Field(
        default=True,
        description="Treat yielded lists, tuples and dicts as gathered handles",
    )
    coerce_generators: bool = Field(
        default=True,
        description="Treat yielded generators as nested driver runs",
    )


class LoggingConfig(BaseModel):
    """Logging settings.

    Attributes:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Render JSON lines instead of console output
    """

    level: str = Field(
        default="INFO",
        description="Logging level",
        pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
    )
    json_logs: bool = Field(
        default=True,
        description="Render logs as JSON",
    )


class CotaskConfig(BaseModel):
    """Top-level configuration combining all sections.

    Attributes:
        driver: Coroutine driver settings
        logging: Logging settings
    """

    driver: DriverConfig = Field(default_factory=DriverConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def apply_logging(self) -> None:
        """Configure structlog from the logging section."""
        configure_logging(level=self.logging.level, json_logs=self.logging.json_logs)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "CotaskConfig":
        """Load configuration from a YAML file.

        Args:
            path: Path to the YAML configuration file

        Returns:
            Parsed and validated CotaskConfig instance

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If the file is empty or not valid YAML
            pydantic.ValidationError: If a value fails validation
        """
        config_path = Path(path)

        if not config_path.exists():
            msg = f"Configuration file not found: {config_path}"
            raise FileNotFoundError(msg)

        logger.info("loading_configuration", path=str(config_path))

        try:
            with config_path.open() as f:
                config_data = yaml.safe_load(f)

            if not config_data:
                msg = "Configuration file is empty"
                raise ValueError(msg)

            config_data = cls._apply_env_overrides(config_data)
            config = cls(**config_data)
        except yaml.YAMLError as e:
            logger.exception("yaml_parse_error", error=str(e), path=str(config_path))
            msg = f"Invalid YAML in configuration file: {e}"
            raise ValueError(msg) from e
        else:
            logger.info(
                "configuration_loaded",
                max_steps=config.driver.max_steps,
                logging_level=config.logging.level,
            )

            return config

    @classmethod
    def _apply_env_overrides(cls, config_data: dict) -> dict:
        """Apply environment variable overrides to configuration.

        Environment variables follow the pattern: COTASK_<SECTION>_<KEY>
        Example: COTASK_DRIVER_MAX_STEPS, COTASK_LOGGING_LEVEL

        Args:
            config_data: Base configuration dictionary from file

        Returns:
            Configuration dictionary with environment overrides applied
        """
        env_overrides = {
            ("driver", "max_steps"): "COTASK_DRIVER_MAX_STEPS",
            ("driver", "trace_steps"): "COTASK_DRIVER_TRACE_STEPS",
            ("driver", "coerce_collections"): "COTASK_DRIVER_COERCE_COLLECTIONS",
            ("driver", "coerce_generators"): "COTASK_DRIVER_COERCE_GENERATORS",
            ("logging", "level"): "COTASK_LOGGING_LEVEL",
            ("logging", "json_logs"): "COTASK_LOGGING_JSON",
        }

        for path, env_var in env_overrides.items():
            value = os.environ.get(env_var)
            if value is None:
                continue

            current = config_data
            for key in path[:-1]:
                if not isinstance(current.get(key), dict):
                    current[key] = {}
                current = current[key]

            final_key = path[-1]
            if env_var.endswith("_MAX_STEPS"):
                value = int(value)
            elif env_var.endswith(("_TRACE_STEPS", "_COLLECTIONS", "_GENERATORS", "_JSON")):
                value = value.lower() in TRUE_VALUES
            elif env_var.endswith("_LEVEL"):
                value = value.upper()

            current[final_key] = value
            logger.debug(
                "env_override_applied",
                env_var=env_var,
                config_path=".".join(path),
            )

        return config_data


class ConfigManager:
    """Configuration manager using singleton pattern."""

    _instance: CotaskConfig | None = None
    _init_lock: threading.Lock = threading.Lock()

    @classmethod
    def load_config(cls, config_path: str | Path | None = None) -> CotaskConfig:
        """Load configuration from file.

        Args:
            config_path: Path to configuration file. If None, looks for
                cotask.yaml, cotask.yml or cotask.json in the current directory.

        Returns:
            Loaded CotaskConfig instance

        Raises:
            FileNotFoundError: If config file not found
            ValueError: If config file is invalid
        """
        if config_path is None:
            for default_name in DEFAULT_CONFIG_FILES:
                default_path = Path(default_name)
                if default_path.exists():
                    config_path = default_path
                    break
            else:
                msg = "No configuration file found. Expected " + ", ".join(DEFAULT_CONFIG_FILES)
                raise FileNotFoundError(msg)

        return CotaskConfig.from_yaml(config_path)

    @classmethod
    def get_config(
        cls,
        config_path: str | Path | None = None,
        reload: bool = False,
    ) -> CotaskConfig:
        """Get configuration instance (singleton pattern).

        Uses double-checked locking so concurrent first calls load once.

        Args:
            config_path: Path to configuration file. Only used on first call or when reload=True.
            reload: If True, force reload configuration from file.

        Returns:
            CotaskConfig instance
        """
        if cls._instance is not None and not reload:
            return cls._instance

        with cls._init_lock:
            if cls._instance is None or reload:
                cls._instance = cls.load_config(config_path)

            return cls._instance

    @classmethod
    def loaded(cls) -> CotaskConfig | None:
        """Return the cached configuration without loading one."""
        return cls._instance

    @classmethod
    def reset_config(cls) -> None:
        """Reset the configuration instance."""
        cls._instance = None


def load_config(config_path: str | Path | None = None) -> CotaskConfig:
    """Load configuration from file."""
    return ConfigManager.load_config(config_path)


def get_config(config_path: str | Path | None = None, reload: bool = False) -> CotaskConfig:
    """Get configuration instance (singleton pattern)."""
    return ConfigManager.get_config(config_path, reload)


def reset_config() -> None:
    """Reset the configuration instance."""
    ConfigManager.reset_config()


def default_driver_config() -> DriverConfig:
    """Driver settings from the loaded configuration, or the defaults if none is loaded."""
    config = ConfigManager.loaded()
    return config.driver if config is not None else DriverConfig()


__all__ = [
    "ConfigManager",
    "CotaskConfig",
    "DriverConfig",
    "LoggingConfig",
    "default_driver_config",
    "get_config",
    "load_config",
    "reset_config",
]
