#!/usr/bin/env python3
import os
import subprocess
import sys
from pathlib import Path
from typing import Any

from scripts.boot.utils import (
    API_HOST,
    API_PID_FILE,
    API_PORT,
    LOG_DIR,
    PUMP_PID_FILE,
    REPO_ROOT,
    api_url,
    http_ok,
    load_local_env,
    logger,
    run_command,
    running_pid,
)


def _detach_kwargs() -> dict[str, Any]:
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NO_WINDOW}
    return {"start_new_session": True}


def background_popen(
    cmd: list[str], stdout_path: Path, stderr_path: Path, env: dict[str, str]
) -> subprocess.Popen[bytes]:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    with (
        stdout_path.open("ab", buffering=0) as stdout_f,
        stderr_path.open("ab", buffering=0) as stderr_f,
    ):
        return subprocess.Popen(  # noqa: S603
            cmd,
            cwd=str(REPO_ROOT),
            stdout=stdout_f,
            stderr=stderr_f,
            env=env,
            **_detach_kwargs(),
        )


def start_api(env: dict[str, str]) -> None:
    pid = running_pid(API_PID_FILE)
    if pid is not None:
        logger.info(f"API Server はすでに起動しています (PID {pid})")
        return
    proc = background_popen(
        [
            "uv",
            "run",
            "uvicorn",
            "sitewatch.api.main:app",
            "--port",
            str(API_PORT),
            "--host",
            API_HOST,
        ],
        stdout_path=LOG_DIR / "api.log",
        stderr_path=LOG_DIR / "api.err.log",
        env=env,
    )
    API_PID_FILE.write_text(str(proc.pid), encoding="ascii")
    if http_ok(api_url("/status"), 30):
        logger.info(f"API Server: {api_url('')} が起動 (PID {proc.pid})")
    else:
        logger.warning("FastAPI が応答しません ./log/ 以下を見て")


def start_pump(env: dict[str, str]) -> None:
    pid = running_pid(PUMP_PID_FILE)
    if pid is not None:
        logger.info(f"Tracking pump はすでに起動しています (PID {pid})")
        return
    proc = background_popen(
        ["uv", "run", "python", "-m", "sitewatch.watchers.pump"],
        stdout_path=LOG_DIR / "pump.out.log",
        stderr_path=LOG_DIR / "pump.err.log",
        env=env,
    )
    PUMP_PID_FILE.write_text(str(proc.pid), encoding="ascii")
    logger.info(f"Tracking pump: が起動 (PID {proc.pid})")


def main() -> int:
    os.chdir(REPO_ROOT)

    logger.info("================ Sitewatch Starting up... ===============")

    load_local_env()
    # api: 位置を API で受け取る / headless: 端末上で termux-location を直接使う
    mode = os.environ.get("SITEWATCH_MODE", "api").strip().lower()

    child_env = os.environ.copy()

    run_command(["uv", "sync", "--dev"])

    if mode == "headless":
        start_pump(child_env)
    else:
        start_api(child_env)

    logger.info("\n============== Sitewatch is now running! =================\n")
    logger.info("\nLogs: ./log/api.log, ./log/pump.log")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
