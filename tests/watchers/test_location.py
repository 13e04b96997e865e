import json
import subprocess
from unittest.mock import Mock, patch

import pytest

from sitewatch.model.errors import LocationUnavailableError
from sitewatch.watchers.location import (
    PushedLocationSource,
    TermuxLocationSource,
    sample_from_termux,
)
from tests.helpers import SITE_LAT, SITE_LNG, make_sample

NOW_MS = 1_773_100_000_000


def _completed(payload=None, returncode=0, stdout=None, stderr=""):
    result = Mock()
    result.returncode = returncode
    result.stdout = stdout if stdout is not None else json.dumps(payload or {})
    result.stderr = stderr
    return result


def _fix(elapsed_ms=0, accuracy=12.0, speed=0.0):
    return {
        "latitude": SITE_LAT,
        "longitude": SITE_LNG,
        "accuracy": accuracy,
        "speed": speed,
        "elapsedMs": elapsed_ms,
        "provider": "network",
    }


class TestSampleFromTermux:
    """termux-location 出力の変換"""

    def test_converts_fields(self):
        sample = sample_from_termux(_fix(elapsed_ms=1500, accuracy=8.5, speed=0.3), NOW_MS)

        assert sample.latitude == SITE_LAT
        assert sample.longitude == SITE_LNG
        assert sample.captured_at_ms == NOW_MS - 1500
        assert sample.accuracy_m == 8.5
        assert sample.speed_mps == 0.3

    def test_missing_accuracy_is_untrusted(self):
        data = _fix()
        del data["accuracy"]
        del data["speed"]

        sample = sample_from_termux(data, NOW_MS)

        assert sample.accuracy_m == float("inf")
        assert sample.speed_mps is None

    def test_api_error(self):
        with pytest.raises(LocationUnavailableError, match="API error"):
            sample_from_termux({"API_ERROR": "Location permission denied"}, NOW_MS)

    def test_missing_coordinates(self):
        with pytest.raises(LocationUnavailableError):
            sample_from_termux({"accuracy": 5.0}, NOW_MS)


class TestTermuxLocationSource:
    """Termux:API 位置ソース"""

    @pytest.fixture
    def source(self):
        return TermuxLocationSource(timeout=30.0, clock_ms=lambda: NOW_MS)

    def test_fresh_cached_fix_is_used(self, source):
        """許容鮮度内の -r last をそのまま使う"""
        with patch("subprocess.run", return_value=_completed(_fix(elapsed_ms=60_000))) as mock_run:
            sample = source.current()

        mock_run.assert_called_once()
        args = mock_run.call_args.args[0]
        assert args == ["termux-location", "-p", "network", "-r", "last"]
        assert sample.captured_at_ms == NOW_MS - 60_000

    def test_stale_cached_fix_triggers_new_fix(self, source):
        """低精度でも2分より古ければ新しく測位する"""
        with patch(
            "subprocess.run",
            side_effect=[_completed(_fix(elapsed_ms=180_000)), _completed(_fix(elapsed_ms=0))],
        ) as mock_run:
            sample = source.current()

        assert mock_run.call_count == 2
        assert mock_run.call_args.args[0][-1] == "once"
        assert sample.captured_at_ms == NOW_MS

    def test_high_accuracy_uses_gps_and_tighter_age(self, source):
        """高精度モードは GPS・10秒"""
        with patch(
            "subprocess.run",
            side_effect=[_completed(_fix(elapsed_ms=15_000)), _completed(_fix(elapsed_ms=0))],
        ) as mock_run:
            source.current(high_accuracy=True)

        first, second = (c.args[0] for c in mock_run.call_args_list)
        assert first == ["termux-location", "-p", "gps", "-r", "last"]
        assert second == ["termux-location", "-p", "gps", "-r", "once"]
        assert mock_run.call_args.kwargs["timeout"] == 30.0

    def test_missing_command(self, source):
        with patch("subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(LocationUnavailableError, match="not found"):
                source.current()
        assert source.consecutive_failures == 1

    def test_timeout(self, source):
        with patch(
            "subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="termux-location", timeout=30),
        ):
            with pytest.raises(LocationUnavailableError, match="timed out"):
                source.current()

    @pytest.mark.parametrize(
        "result",
        [
            _completed(returncode=1, stderr="permission denied"),
            _completed(stdout=""),
            _completed(stdout="{broken"),
            _completed(stdout="[1, 2]"),
        ],
    )
    def test_bad_output(self, source, result):
        with patch("subprocess.run", return_value=result):
            with pytest.raises(LocationUnavailableError):
                source.current()

    def test_success_resets_failure_count(self, source):
        source.consecutive_failures = 3
        with patch("subprocess.run", return_value=_completed(_fix())):
            source.current()

        assert source.consecutive_failures == 0


class TestPushedLocationSource:
    """API 経由でプッシュされた位置"""

    @pytest.fixture
    def source(self):
        return PushedLocationSource(clock_ms=lambda: NOW_MS)

    def test_nothing_pushed(self, source):
        with pytest.raises(LocationUnavailableError, match="no location"):
            source.current()

    def test_returns_latest(self, source):
        sample = make_sample(NOW_MS - 30_000)
        source.push(sample)

        assert source.current() == sample

    def test_out_of_order_sample_is_ignored(self, source):
        newer = make_sample(NOW_MS - 10_000)
        source.push(newer)
        source.push(make_sample(NOW_MS - 50_000))

        assert source.latest == newer

    def test_staleness_depends_on_accuracy_mode(self, source):
        source.push(make_sample(NOW_MS - 30_000))

        assert source.current(high_accuracy=False).captured_at_ms == NOW_MS - 30_000
        with pytest.raises(LocationUnavailableError, match="stale"):
            source.current(high_accuracy=True)
