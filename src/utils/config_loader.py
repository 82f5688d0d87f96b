"""Configuration file loader with validation"""

import yaml
import os
from pathlib import Path
from typing import Dict, Any, Optional
from dotenv import load_dotenv
from pydantic import ValidationError
from .errors import ConfigurationError

DEFAULT_CONFIG_PATH = "config/detection.yaml"
REQUIRED_KEYS = ['version', 'detection', 'fingerprint']


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load YAML configuration file with validation.
    DUPLICATE_DETECTION_CONFIG (from the environment or a .env file)
    overrides the default path.

    Args:
        config_path: Path to configuration file

    Returns:
        Dictionary with configuration

    Raises:
        ConfigurationError: If file doesn't exist or invalid YAML
    """
    load_dotenv()
    if config_path is None:
        config_path = os.getenv("DUPLICATE_DETECTION_CONFIG", DEFAULT_CONFIG_PATH)

    try:
        config_file = Path(config_path)

        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        with open(config_file, 'r') as f:
            config = yaml.safe_load(f)

        if not isinstance(config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")

        missing_keys = [key for key in REQUIRED_KEYS if key not in config]

        if missing_keys:
            raise ConfigurationError(f"Missing required configuration keys: {missing_keys}")

        return config

    except ConfigurationError:
        raise
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}") from e
    except Exception as e:
        raise ConfigurationError(f"Error loading configuration: {e}") from e


def save_config(config_path: str, config: Dict[str, Any]) -> None:
    """
    Save configuration to YAML file

    Args:
        config_path: Path to configuration file
        config: Configuration dictionary

    Raises:
        ConfigurationError: If unable to write file
    """
    try:
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w') as f:
            yaml.dump(config, f, default_flow_style=False, sort_keys=False)

    except Exception as e:
        raise ConfigurationError(f"Error saving configuration: {e}") from e


def load_settings(config_path: Optional[str] = None):
    """
    Load and validate configuration into DetectionSettings

    Raises:
        ConfigurationError: If the file is missing, unreadable or fails validation
    """
    from src.models.settings import DetectionSettings

    config = load_config(config_path)
    try:
        return DetectionSettings.from_config(config)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid detection settings: {e}") from e
