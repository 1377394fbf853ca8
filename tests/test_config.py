from pathlib import Path

import pytest

from config import DEFAULT_API_URL, load_settings


def test_defaults(monkeypatch):
    for name in ("STORYBOARD_API_URL", "STORYBOARD_API_KEY", "JOB_TIMEOUT_SECONDS", "POLL_INTERVAL_MS",
                 "REQUEST_TIMEOUT_SECONDS", "PROJECTS_DIR", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    settings = load_settings()
    assert settings.api_url == DEFAULT_API_URL
    assert settings.job_timeout == 900
    assert settings.poll_interval_ms == 3000
    assert settings.log_level == "INFO"


def test_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("STORYBOARD_API_URL", "https://img.example.test/api/")
    monkeypatch.setenv("JOB_TIMEOUT_SECONDS", "30")
    monkeypatch.setenv("POLL_INTERVAL_MS", "500")
    monkeypatch.setenv("PROJECTS_DIR", str(tmp_path))
    monkeypatch.setenv("LOG_LEVEL", "debug")
    settings = load_settings()
    assert settings.api_url == "https://img.example.test/api"
    assert settings.job_timeout == 30.0
    assert settings.poll_interval_ms == 500
    assert settings.projects_dir == Path(tmp_path)
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize("value", ["soon", "-5", "0"])
def test_invalid_numbers(monkeypatch, value):
    monkeypatch.setenv("JOB_TIMEOUT_SECONDS", value)
    with pytest.raises(ValueError, match="JOB_TIMEOUT_SECONDS"):
        load_settings()
