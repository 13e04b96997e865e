import os
from datetime import time
from pathlib import Path

import pytest

from sitewatch.tracking.config import MINUTE_MS, TrackingConfig, load_config


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """load_dotenv が書き込む環境変数をテスト間で漏らさない"""
    env = {k: v for k, v in os.environ.items() if not k.startswith(("SITEWATCH_", "GEOCODING_"))}
    monkeypatch.setattr(os, "environ", env)
    return env


def test_defaults(tmp_path):
    cfg = load_config(tmp_path / "missing.env")

    assert cfg.radius_m == 50.0
    assert cfg.dwell_ms == 30 * MINUTE_MS
    assert cfg.min_samples == 3
    assert cfg.history_size == 10
    assert cfg.max_accuracy_m == 100.0
    assert cfg.moving_speed_mps == 1.4
    assert cfg.poll_default_ms == 5 * MINUTE_MS
    assert cfg.poll_frequent_ms == 2 * MINUTE_MS
    assert cfg.work_start == time(7, 30)
    assert cfg.work_end == time(18, 0)
    assert cfg.tz_name == "Australia/Adelaide"
    assert cfg.geocoding_provider == "backend"
    assert cfg.location_provider == "termux"


def test_environment_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("SITEWATCH_DWELL_MIN", "20")
    monkeypatch.setenv("SITEWATCH_WORK_START", "06:45")
    monkeypatch.setenv("SITEWATCH_TZ", "Australia/Perth")
    monkeypatch.setenv("SITEWATCH_DISMISSAL_STORE", str(tmp_path / "d.json"))
    monkeypatch.setenv("GEOCODING_PROVIDER", " Nominatim ")
    monkeypatch.setenv("GEOCODING_URL", "http://backend:8080/")

    cfg = load_config(tmp_path / "missing.env")

    assert cfg.dwell_ms == 20 * MINUTE_MS
    assert cfg.work_start == time(6, 45)
    assert cfg.tz_name == "Australia/Perth"
    assert cfg.dismissal_store == tmp_path / "d.json"
    assert cfg.geocoding_provider == "nominatim"
    assert cfg.geocoding_url == "http://backend:8080"


def test_env_file_is_loaded_without_overriding(tmp_path, monkeypatch):
    env_file = tmp_path / ".env.local"
    env_file.write_text("SITEWATCH_RADIUS_M=75\nSITEWATCH_TZ=Australia/Perth\n", encoding="utf-8")
    monkeypatch.setenv("SITEWATCH_TZ", "Australia/Sydney")

    cfg = load_config(env_file)

    assert cfg.radius_m == 75.0
    # 既存の環境変数が優先される
    assert cfg.tz_name == "Australia/Sydney"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("SITEWATCH_RADIUS_M", "wide"),
        ("SITEWATCH_DWELL_MIN", "1.5"),
        ("SITEWATCH_WORK_END", "6pm"),
        ("SITEWATCH_TZ", "Mars/Olympus"),
        ("GEOCODING_PROVIDER", "google"),
        ("SITEWATCH_LOCATION_PROVIDER", "bluetooth"),
    ],
)
def test_invalid_values_raise(tmp_path, monkeypatch, name, value):
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError):
        load_config(tmp_path / "missing.env")


def test_working_window_must_be_ordered():
    with pytest.raises(ValueError, match="work_start"):
        TrackingConfig(work_start=time(18, 0), work_end=time(7, 30))


def test_history_must_cover_min_samples():
    with pytest.raises(ValueError, match="history_size"):
        TrackingConfig(min_samples=5, history_size=4)


def test_default_store_lives_under_home():
    assert TrackingConfig().dismissal_store == Path.home() / ".sitewatch" / "dismissed_sites.json"
