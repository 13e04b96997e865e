from unittest.mock import Mock, patch

import psutil
import requests

from scripts.boot.utils import api_url, http_ok, running_pid
from scripts.stop import disable_tracking, stop_by_pid_file


class TestHttpOk:
    """起動確認のヘルスチェック"""

    def test_rejects_non_http_url(self):
        with patch("requests.get") as mock_get:
            assert http_ok("file:///etc/passwd") is False
            mock_get.assert_not_called()

    def test_success_status(self):
        with patch("requests.get", return_value=Mock(status_code=200)):
            assert http_ok("http://127.0.0.1:5577/status") is True

    def test_server_error(self):
        with patch("requests.get", return_value=Mock(status_code=503)):
            assert http_ok("http://127.0.0.1:5577/status") is False

    def test_connection_refused(self):
        with patch("requests.get", side_effect=requests.ConnectionError()):
            assert http_ok("http://127.0.0.1:5577/status") is False


class TestStopByPidFile:
    """PIDファイルによる停止"""

    def test_missing_file_is_noop(self, tmp_path):
        with patch("psutil.Process") as mock_process:
            stop_by_pid_file(tmp_path / "none.pid")
            mock_process.assert_not_called()

    def test_terminates_and_removes_file(self, tmp_path):
        pid_file = tmp_path / "api_server.pid"
        pid_file.write_text("4242", encoding="ascii")

        with patch("psutil.Process") as mock_process:
            stop_by_pid_file(pid_file)

        mock_process.assert_called_once_with(4242)
        mock_process.return_value.terminate.assert_called_once()
        assert not pid_file.exists()

    def test_already_stopped_process(self, tmp_path):
        pid_file = tmp_path / "tracking_pump.pid"
        pid_file.write_text("4242", encoding="ascii")

        with patch("psutil.Process", side_effect=psutil.NoSuchProcess(4242)):
            stop_by_pid_file(pid_file)

        assert not pid_file.exists()

    def test_kills_when_terminate_times_out(self, tmp_path):
        pid_file = tmp_path / "tracking_pump.pid"
        pid_file.write_text("4242", encoding="ascii")

        with patch("psutil.Process") as mock_process:
            mock_process.return_value.wait.side_effect = psutil.TimeoutExpired(10.0, pid=4242)
            stop_by_pid_file(pid_file, timeout=10.0)

        mock_process.return_value.kill.assert_called_once()
        assert not pid_file.exists()


def test_disable_tracking_tolerates_missing_api():
    with patch("requests.post", side_effect=requests.ConnectionError()) as mock_post:
        disable_tracking()

    mock_post.assert_called_once_with(api_url("/tracking/disable"), timeout=2.5)


class TestRunningPid:
    """起動済みプロセスの検出"""

    def test_live_process(self, tmp_path):
        pid_file = tmp_path / "api_server.pid"
        pid_file.write_text("4242\n", encoding="ascii")

        with patch("psutil.pid_exists", return_value=True):
            assert running_pid(pid_file) == 4242
        assert pid_file.exists()

    def test_stale_file_is_removed(self, tmp_path):
        pid_file = tmp_path / "api_server.pid"
        pid_file.write_text("4242", encoding="ascii")

        with patch("psutil.pid_exists", return_value=False):
            assert running_pid(pid_file) is None
        assert not pid_file.exists()

    def test_garbage_file_is_removed(self, tmp_path):
        pid_file = tmp_path / "api_server.pid"
        pid_file.write_text("not-a-pid", encoding="ascii")

        assert running_pid(pid_file) is None
        assert not pid_file.exists()

    def test_no_file(self, tmp_path):
        assert running_pid(tmp_path / "none.pid") is None
