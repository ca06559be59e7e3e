import logging

from flowrelay.core.config import LauncherConfig, PollingConfig
from flowrelay.core.logging_config import coerce_level
from flowrelay.core.settings import RelaySettings


def test_defaults_match_polling_policy(monkeypatch):
    for name in ("RELAY_POLL_MAX_ATTEMPTS", "RELAY_POLL_HARD_TIMEOUT", "RELAY_ENGINE_BASE_URL"):
        monkeypatch.delenv(name, raising=False)
    settings = RelaySettings(_env_file=None)

    polling = PollingConfig.from_app_settings(settings)

    assert polling.max_attempts == 1000
    assert polling.max_consecutive_failures == 10
    assert polling.error_interval == 15.0
    assert polling.hard_timeout is None
    assert polling.continue_on_workflow_error is True


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("RELAY_ENGINE_BASE_URL", "https://n8n.example/base")
    monkeypatch.setenv("RELAY_POLL_MAX_ATTEMPTS", "50")
    monkeypatch.setenv("RELAY_POLL_HARD_TIMEOUT", "3600")
    monkeypatch.setenv("RELAY_REWRITE_STATUS_HOST", "false")
    monkeypatch.setenv("RELAY_PROBE_TIMEOUT", "2.5")
    settings = RelaySettings(_env_file=None)

    polling = PollingConfig.from_app_settings(settings)
    launcher = LauncherConfig.from_app_settings(settings)

    assert polling.max_attempts == 50
    assert polling.hard_timeout == 3600
    assert launcher.base_url == "https://n8n.example/base/"
    assert launcher.rewrite_status_host is False
    assert launcher.probe_timeout == 2.5
    assert launcher.lookup_timeout == 15.0


def test_coerce_level():
    assert coerce_level("debug") == logging.DEBUG
    assert coerce_level(logging.ERROR) == logging.ERROR
    assert coerce_level("nonsense") == logging.INFO
    assert coerce_level(None) == logging.INFO
