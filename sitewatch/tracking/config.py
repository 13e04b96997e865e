"""Tracking engine settings and their environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import time
from pathlib import Path

from dotenv import load_dotenv

from sitewatch.tracking.timeutils import parse_hhmm, tzinfo_from_name

MINUTE_MS = 60 * 1000
DEFAULT_ENV_FILE = Path(".env.local")
DEFAULT_DISMISSAL_STORE = Path.home() / ".sitewatch" / "dismissed_sites.json"


@dataclass(frozen=True)
class TrackingConfig:
    """Tunable thresholds and collaborator settings for the tracking engine.

    The detector thresholds encode the tolerance for GPS jitter versus a real
    dwell at a job site; they are settings, not derived values.
    """

    # stationary detector
    radius_m: float = 50.0
    dwell_ms: int = 30 * MINUTE_MS
    min_samples: int = 3
    history_size: int = 10
    max_accuracy_m: float = 100.0
    moving_speed_mps: float = 1.4

    # adaptive polling
    poll_default_ms: int = 5 * MINUTE_MS
    poll_frequent_ms: int = 2 * MINUTE_MS
    frequent_after_checks: int = 2
    work_start: time = time(7, 30)
    work_end: time = time(18, 0)

    # dismissal ledger
    dismissal_radius_m: float = 50.0
    dismissal_store: Path = field(default_factory=lambda: DEFAULT_DISMISSAL_STORE)

    tz_name: str = "Australia/Adelaide"
    default_country: str = "Australia"

    # collaborators
    geocoding_provider: str = "backend"  # "backend" | "nominatim"
    geocoding_url: str = "http://localhost:8080"
    geocoding_timeout_s: float = 10.0
    location_provider: str = "termux"  # "termux" | "push"
    location_timeout_s: float = 30.0
    max_age_low_ms: int = 120_000
    max_age_high_ms: int = 10_000

    def __post_init__(self) -> None:
        if self.min_samples < 1 or self.history_size < self.min_samples:
            msg = "history_size must be >= min_samples >= 1"
            raise ValueError(msg)
        if self.work_start >= self.work_end:
            msg = "work_start must be earlier than work_end"
            raise ValueError(msg)
        if self.geocoding_provider not in {"backend", "nominatim"}:
            msg = f"unknown geocoding provider: {self.geocoding_provider!r}"
            raise ValueError(msg)
        if self.location_provider not in {"termux", "push"}:
            msg = f"unknown location provider: {self.location_provider!r}"
            raise ValueError(msg)
        tzinfo_from_name(self.tz_name)


DEFAULT_CONFIG = TrackingConfig()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        msg = f"{name} must be a number, got {raw!r}"
        raise ValueError(msg) from exc


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        msg = f"{name} must be an integer, got {raw!r}"
        raise ValueError(msg) from exc


def load_config(env_file: str | Path | None = None) -> TrackingConfig:
    """環境変数から設定を読み込む.

    ``.env.local``（または ``env_file``）があれば先に読み込む。
    未設定の項目は既定値のまま。

    環境変数:
    - SITEWATCH_TZ: 作業時間帯と日付境界に使うタイムゾーン
    - SITEWATCH_WORK_START / SITEWATCH_WORK_END: 作業時間帯（HH:MM）
    - SITEWATCH_RADIUS_M / SITEWATCH_DWELL_MIN / SITEWATCH_MAX_ACCURACY_M /
      SITEWATCH_MOVING_SPEED_MPS: 停留判定のしきい値
    - SITEWATCH_DISMISSAL_STORE: 却下済み地点の保存先 JSON
    - SITEWATCH_LOCATION_PROVIDER: termux | push
    - GEOCODING_PROVIDER / GEOCODING_URL / GEOCODING_TIMEOUT
    """
    path = Path(env_file) if env_file is not None else DEFAULT_ENV_FILE
    if path.exists():
        load_dotenv(dotenv_path=path, override=False)

    d = DEFAULT_CONFIG
    store = os.getenv("SITEWATCH_DISMISSAL_STORE")
    return TrackingConfig(
        radius_m=_env_float("SITEWATCH_RADIUS_M", d.radius_m),
        dwell_ms=_env_int("SITEWATCH_DWELL_MIN", d.dwell_ms // MINUTE_MS) * MINUTE_MS,
        max_accuracy_m=_env_float("SITEWATCH_MAX_ACCURACY_M", d.max_accuracy_m),
        moving_speed_mps=_env_float("SITEWATCH_MOVING_SPEED_MPS", d.moving_speed_mps),
        work_start=parse_hhmm(os.getenv("SITEWATCH_WORK_START", "07:30")),
        work_end=parse_hhmm(os.getenv("SITEWATCH_WORK_END", "18:00")),
        dismissal_radius_m=_env_float("SITEWATCH_DISMISSAL_RADIUS_M", d.dismissal_radius_m),
        dismissal_store=Path(store).expanduser() if store else d.dismissal_store,
        tz_name=os.getenv("SITEWATCH_TZ", d.tz_name),
        default_country=os.getenv("SITEWATCH_DEFAULT_COUNTRY", d.default_country),
        geocoding_provider=os.getenv("GEOCODING_PROVIDER", d.geocoding_provider).strip().lower(),
        geocoding_url=os.getenv("GEOCODING_URL", d.geocoding_url).rstrip("/"),
        geocoding_timeout_s=_env_float("GEOCODING_TIMEOUT", d.geocoding_timeout_s),
        location_provider=os.getenv("SITEWATCH_LOCATION_PROVIDER", d.location_provider)
        .strip()
        .lower(),
        location_timeout_s=_env_float("SITEWATCH_LOCATION_TIMEOUT", d.location_timeout_s),
    )
