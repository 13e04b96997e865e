#!/usr/bin/env python3
import contextlib
import os
from pathlib import Path

import psutil
import requests

from scripts.boot.utils import (
    API_PID_FILE,
    PUMP_PID_FILE,
    REPO_ROOT,
    api_url,
    logger,
)

TERMINATE_WAIT_SEC = 10.0


def disable_tracking() -> None:
    """API が動いていれば先に追跡を止めて、表示中のプロンプトを閉じる."""
    try:
        requests.post(api_url("/tracking/disable"), timeout=2.5)
    except requests.RequestException:
        logger.info("API に接続できないため、そのまま停止します")


def stop_by_pid_file(path: Path, timeout: float = TERMINATE_WAIT_SEC) -> None:
    """PIDファイルのプロセスを終了する.

    SIGTERM で終わらなければ kill する（pump は SIGTERM でセッションを閉じて
    タイマー停止を済ませてから終了する）。
    """
    if not path.exists():
        return
    pid = int(path.read_text(encoding="ascii"))
    try:
        proc = psutil.Process(pid)
        proc.terminate()
        try:
            proc.wait(timeout=timeout)
        except psutil.TimeoutExpired:
            logger.warning("%s (PID %d) が終了しないため kill します", path.stem, pid)
            proc.kill()
    except psutil.NoSuchProcess:
        logger.info("すでに停止済みです")
    with contextlib.suppress(OSError):
        path.unlink(missing_ok=True)


def main() -> int:
    os.chdir(REPO_ROOT)

    logger.info("============== Sitewatch 停止中 ================")

    if API_PID_FILE.exists():
        disable_tracking()
    stop_by_pid_file(API_PID_FILE)
    stop_by_pid_file(PUMP_PID_FILE)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
