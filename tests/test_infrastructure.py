"""Unit tests for core infrastructure components."""

import asyncio
import json
import logging
from pathlib import Path
import pytest
import yaml
from src.models.settings import DetectionSettings
from src.orchestrator.retry_handler import retry_with_exponential_backoff
from src.utils.config_loader import load_config, save_config, load_settings
from src.utils.errors import ConfigurationError, RecordStoreError, DuplicateDetectionError
from src.utils.logging import JSONFormatter, get_logger

REPO_CONFIG = Path(__file__).parent.parent / "config" / "detection.yaml"


def test_repository_config_loads():
    """Shipped configuration is valid and matches the built-in defaults"""
    settings = load_settings(str(REPO_CONFIG))

    assert settings.model_dump() == DetectionSettings().model_dump()
    assert settings.review_threshold == 0.60
    assert settings.fingerprint.weights["symbol"] == 0.30


def test_config_path_from_environment(monkeypatch):
    """DUPLICATE_DETECTION_CONFIG overrides the default path"""
    monkeypatch.setenv("DUPLICATE_DETECTION_CONFIG", str(REPO_CONFIG))
    config = load_config()
    assert config["version"] == 1


def test_missing_config_file(tmp_path):
    """A missing file raises ConfigurationError"""
    with pytest.raises(ConfigurationError):
        load_config(str(tmp_path / "nope.yaml"))


def test_missing_required_keys(tmp_path):
    """Configs without the required sections are rejected"""
    path = tmp_path / "partial.yaml"
    path.write_text("version: 1\ndetection: {}\n")

    with pytest.raises(ConfigurationError, match="fingerprint"):
        load_config(str(path))


def test_invalid_yaml(tmp_path):
    """Unparseable YAML raises ConfigurationError"""
    path = tmp_path / "broken.yaml"
    path.write_text("version: [1\n")

    with pytest.raises(ConfigurationError):
        load_config(str(path))


def test_invalid_settings_rejected(tmp_path):
    """Weights that do not sum to 1.0 fail validation"""
    config = yaml.safe_load(REPO_CONFIG.read_text())
    config["fingerprint"]["weights"]["symbol"] = 0.9
    path = tmp_path / "bad_weights.yaml"
    save_config(str(path), config)

    with pytest.raises(ConfigurationError, match="sum to 1.0"):
        load_settings(str(path))


def test_floor_above_review_threshold_rejected(tmp_path):
    """The level-3 floor may not exceed the review threshold"""
    config = yaml.safe_load(REPO_CONFIG.read_text())
    config["detection"]["level3_min_similarity"] = 0.7
    path = tmp_path / "bad_bands.yaml"
    save_config(str(path), config)

    with pytest.raises(ConfigurationError):
        load_settings(str(path))


def test_save_config_round_trip(tmp_path):
    """A saved config loads back unchanged"""
    config = yaml.safe_load(REPO_CONFIG.read_text())
    path = tmp_path / "nested" / "copy.yaml"

    save_config(str(path), config)

    assert load_config(str(path)) == config


def test_json_formatter_includes_fields():
    """Keyword fields appear in the JSON log line"""
    record = logging.LogRecord("dedupe", logging.INFO, __file__, 1, "Stored email record", None, None)
    record.fields = {"record_id": "rec-1", "portfolio_id": "portfolio-1"}

    payload = json.loads(JSONFormatter().format(record))

    assert payload["message"] == "Stored email record"
    assert payload["level"] == "INFO"
    assert payload["record_id"] == "rec-1"


def test_get_logger_does_not_duplicate_handlers():
    """Repeated get_logger calls attach a single handler"""
    first = get_logger("tests.handlers")
    second = get_logger("tests.handlers")

    assert first.logger is second.logger
    assert len(second.logger.handlers) == 1


def test_structured_records_propagate(caplog):
    """Records reach ancestor handlers, so pytest and host apps capture them"""
    logger = get_logger("tests.propagation")

    with caplog.at_level(logging.INFO, logger="tests.propagation"):
        logger.info("Stored email record", record_id="rec-1")

    assert logger.logger.propagate
    assert caplog.records[-1].getMessage() == "Stored email record"
    assert caplog.records[-1].fields == {"record_id": "rec-1"}


def test_error_hierarchy():
    """All project errors derive from DuplicateDetectionError"""
    assert issubclass(RecordStoreError, DuplicateDetectionError)
    assert issubclass(ConfigurationError, DuplicateDetectionError)


def test_retry_handler():
    """Test retry logic with exponential backoff"""
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("Test failure")
        return "success"

    result = asyncio.run(retry_with_exponential_backoff(flaky, max_retries=5, base_delay=0))
    assert result == "success"
    assert len(attempts) == 3


def test_retry_handler_exhaustion():
    """Test that retry handler raises error after max attempts"""
    async def always_fail():
        raise ConnectionError("Always fails")

    with pytest.raises(RecordStoreError, match="Failed after 3 attempts"):
        asyncio.run(retry_with_exponential_backoff(always_fail, max_retries=3, base_delay=0))


def test_retry_handler_passes_arguments():
    """Positional and keyword arguments reach the retried call"""
    async def echo(value, suffix=""):
        return value + suffix

    assert asyncio.run(retry_with_exponential_backoff(echo, "a", suffix="b", max_retries=1)) == "ab"
