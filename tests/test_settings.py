import pytest
from pydantic import ValidationError

from fogmap.config.settings import get_logging_config, get_settings


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_packaged_defaults_load():
    settings = get_settings()
    assert settings.reveal.radius_miles == 0.1
    assert settings.reveal.steps == 32
    assert settings.significance.strategy == "last_point"
    assert settings.significance.live_min_distance_miles == 0.02
    assert settings.significance.manual_min_distance_miles == 0.005
    assert settings.transport.chunk_size_bytes == 180
    assert settings.transport.max_poll_attempts == 100


def test_env_overrides_apply(monkeypatch, tmp_path):
    monkeypatch.setenv("FOGMAP_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("FOGMAP_LOG_LEVEL", "debug")
    monkeypatch.setenv("FOGMAP_SIGNIFICANCE_STRATEGY", " Neighborhood ")

    settings = get_settings()
    assert settings.storage.db_path == str(tmp_path / "env.db")
    assert settings.app.log_level == "debug"
    assert settings.significance.strategy == "neighborhood"


def test_external_config_file_replaces_defaults(monkeypatch, tmp_path):
    path = tmp_path / "fog.yaml"
    path.write_text("reveal:\n  radius_miles: 0.25\n  steps: 64\n", encoding="utf-8")
    monkeypatch.setenv("FOGMAP_CONFIG_PATH", str(path))

    settings = get_settings()
    assert settings.reveal.radius_miles == 0.25
    assert settings.reveal.steps == 64
    # Sections missing from the file fall back to model defaults.
    assert settings.transport.chunk_delay_seconds == 0.05


def test_invalid_values_are_rejected(monkeypatch, tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("reveal:\n  steps: 4\n", encoding="utf-8")
    monkeypatch.setenv("FOGMAP_CONFIG_PATH", str(path))

    with pytest.raises(ValidationError):
        get_settings()


def test_logging_config_has_console_handler():
    config = get_logging_config()
    assert config["version"] == 1
    assert "console" in config["handlers"]
