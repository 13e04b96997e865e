"""位置情報ソース（Termux API のワンショット取得 / API 経由のプッシュ）."""

from __future__ import annotations

import json
import subprocess
import threading
import time
from collections.abc import Callable
from typing import Any, Protocol

from sitewatch.model.errors import LocationUnavailableError
from sitewatch.model.models import LocationSample
from sitewatch.watchers.logger import logger

TERMUX_LOCATION = "termux-location"


def _now_ms() -> int:
    return int(time.time() * 1000)


class LocationSource(Protocol):
    def current(self, *, high_accuracy: bool = False) -> LocationSample:
        """現在位置を1回取得する。取得できなければ LocationUnavailableError."""
        ...


def sample_from_termux(data: dict[str, Any], now_ms: int) -> LocationSample:
    """termux-location の JSON 出力を LocationSample に変換.

    ``elapsedMs`` は測位からの経過時間なので、取得時刻から逆算する。

    Raises:
        LocationUnavailableError: 必須項目が欠けている場合
    """
    if "API_ERROR" in data:
        msg = f"location API error: {data['API_ERROR']}"
        raise LocationUnavailableError(msg)
    try:
        latitude = float(data["latitude"])
        longitude = float(data["longitude"])
    except (KeyError, TypeError, ValueError) as exc:
        msg = "location fix has no coordinates"
        raise LocationUnavailableError(msg) from exc

    accuracy = data.get("accuracy")
    speed = data.get("speed")
    elapsed_ms = int(data.get("elapsedMs") or 0)
    return LocationSample(
        latitude=latitude,
        longitude=longitude,
        captured_at_ms=now_ms - max(0, elapsed_ms),
        # 精度不明は信頼しない
        accuracy_m=float(accuracy) if accuracy is not None else float("inf"),
        speed_mps=float(speed) if speed is not None else None,
    )


class TermuxLocationSource:
    """Termux:API の termux-location コマンドで位置を取得する.

    低精度モードはネットワーク測位（省電力）、高精度モードは GPS を使う。
    キャッシュ済みの測位（``-r last``）が許容鮮度以内ならそれを使い、
    古ければ新しく測位する（``-r once``）。
    """

    def __init__(
        self,
        timeout: float = 30.0,
        max_age_low_ms: int = 120_000,
        max_age_high_ms: int = 10_000,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self.timeout = timeout
        self.max_age_low_ms = max_age_low_ms
        self.max_age_high_ms = max_age_high_ms
        self._clock_ms = clock_ms
        self.consecutive_failures = 0

    def current(self, *, high_accuracy: bool = False) -> LocationSample:
        provider = "gps" if high_accuracy else "network"
        max_age = self.max_age_high_ms if high_accuracy else self.max_age_low_ms

        try:
            cached = self._read(provider, "last")
        except LocationUnavailableError:
            cached = None
        if cached is not None and self._clock_ms() - cached.captured_at_ms <= max_age:
            self.consecutive_failures = 0
            return cached

        try:
            sample = self._read(provider, "once")
        except LocationUnavailableError:
            self.consecutive_failures += 1
            raise
        self.consecutive_failures = 0
        return sample

    def _read(self, provider: str, request: str) -> LocationSample:
        try:
            result = subprocess.run(  # noqa: S603
                [TERMUX_LOCATION, "-p", provider, "-r", request],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            msg = f"{TERMUX_LOCATION} not found (install the Termux:API package)"
            raise LocationUnavailableError(msg) from exc
        except subprocess.TimeoutExpired as exc:
            msg = f"position fix timed out after {self.timeout:.0f}s"
            raise LocationUnavailableError(msg) from exc

        if result.returncode != 0:
            error_msg = result.stderr.strip() if result.stderr else "unknown error"
            msg = f"{TERMUX_LOCATION} failed: {error_msg}"
            raise LocationUnavailableError(msg)
        if not result.stdout or not result.stdout.strip():
            msg = "no position fix available"
            raise LocationUnavailableError(msg)

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            msg = "unparseable position fix"
            raise LocationUnavailableError(msg) from exc
        if not isinstance(data, dict):
            msg = "unexpected position fix format"
            raise LocationUnavailableError(msg)
        return sample_from_termux(data, self._clock_ms())


class PushedLocationSource:
    """外部（スマホの位置共有アプリ等）から POST された最新位置を返す."""

    def __init__(
        self,
        max_age_low_ms: int = 120_000,
        max_age_high_ms: int = 10_000,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self.max_age_low_ms = max_age_low_ms
        self.max_age_high_ms = max_age_high_ms
        self._clock_ms = clock_ms
        self._latest: LocationSample | None = None
        self._lock = threading.Lock()

    def push(self, sample: LocationSample) -> None:
        with self._lock:
            if self._latest is not None and sample.captured_at_ms < self._latest.captured_at_ms:
                logger.info("Ignoring out-of-order location sample")
                return
            self._latest = sample

    @property
    def latest(self) -> LocationSample | None:
        with self._lock:
            return self._latest

    def current(self, *, high_accuracy: bool = False) -> LocationSample:
        max_age = self.max_age_high_ms if high_accuracy else self.max_age_low_ms
        latest = self.latest
        if latest is None:
            msg = "no location has been pushed yet"
            raise LocationUnavailableError(msg)
        age = self._clock_ms() - latest.captured_at_ms
        if age > max_age:
            msg = f"latest pushed location is stale ({age // 1000}s old)"
            raise LocationUnavailableError(msg)
        return latest
