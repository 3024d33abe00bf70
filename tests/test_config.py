from __future__ import annotations

from datetime import datetime, timezone

import pytest

from vespa_sync.config import get_settings
from vespa_sync.telemetry import clear_listeners, emit_event, event_counts, register_listener


@pytest.fixture()
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_settings_read_prefixed_environment(monkeypatch, fresh_settings) -> None:
    monkeypatch.setenv("VESPA_KNACK_APP_ID", "app-from-env")
    monkeypatch.setenv("VESPA_CACHE_PREFIX", "env-cache")
    monkeypatch.setenv("VESPA_REQUEST_MAX_ATTEMPTS", "5")

    settings = get_settings()

    assert settings.knack_app_id == "app-from-env"
    assert settings.cache_prefix == "env-cache"
    assert settings.request_max_attempts == 5
    assert get_settings() is settings


def test_invalid_settings_raise_runtime_error(monkeypatch, fresh_settings) -> None:
    monkeypatch.setenv("VESPA_REQUEST_MAX_ATTEMPTS", "0")

    with pytest.raises(RuntimeError, match="Invalid sync configuration"):
        get_settings()


def test_telemetry_counts_tiers_and_sanitizes_payloads() -> None:
    clear_listeners()
    seen = []
    register_listener(seen.append)

    def broken_listener(event) -> None:
        raise ValueError("listener bug")

    register_listener(broken_listener)
    emit_event("cache_lookup", key="k", tier="shared")
    emit_event(
        "verification_secondary_write_failed",
        error=RuntimeError("down"),
        at=datetime(2024, 6, 1, tzinfo=timezone.utc),
    )

    try:
        assert event_counts() == {"cache_lookup.shared": 1, "verification_secondary_write_failed": 1}
        assert seen[1].payload == {"error": "RuntimeError: down", "at": "2024-06-01T00:00:00+00:00"}
    finally:
        clear_listeners()
