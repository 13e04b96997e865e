import logging
import os
import subprocess
from pathlib import Path
from typing import cast

import psutil
import requests
from dotenv import load_dotenv

REPO_ROOT = Path(__file__).resolve().parent.parent.parent
LOG_DIR = REPO_ROOT / "log"
API_PID_FILE = REPO_ROOT / "api_server.pid"
PUMP_PID_FILE = REPO_ROOT / "tracking_pump.pid"

API_HOST = "127.0.0.1"
API_PORT = int(os.getenv("SITEWATCH_API_PORT", "5577"))

HTTP_OK_MIN = 200
HTTP_OK_MAX = 400

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger("sitewatch.boot")


def api_url(path: str = "/status") -> str:
    return f"http://{API_HOST}:{API_PORT}{path}"


def http_ok(url: str, timeout: float = 2.5) -> bool:
    if not url.lower().startswith(("http://", "https://")):
        return False
    try:
        resp = requests.get(url, timeout=timeout)
    except requests.RequestException:
        return False
    else:
        status = cast("int", getattr(resp, "status_code", 0))
        return HTTP_OK_MIN <= status < HTTP_OK_MAX


def running_pid(pid_file: Path) -> int | None:
    """PIDファイルのプロセスが生きていればその PID を返す（古いファイルは削除）."""
    if not pid_file.exists():
        return None
    try:
        pid = int(pid_file.read_text(encoding="ascii").strip())
    except (OSError, ValueError):
        pid = -1
    if pid > 0 and psutil.pid_exists(pid):
        return pid
    pid_file.unlink(missing_ok=True)
    return None


def run_command(command: list[str]) -> None:
    subprocess.run(command, check=False)  # noqa: S603


def load_local_env() -> None:
    load_dotenv(dotenv_path=REPO_ROOT / ".env.local", override=True)
