"""API サーバーなしで端末上で追跡を回すランナー（Termux 等）."""

import os
import signal
import threading
from types import FrameType

from sitewatch.model.errors import LocationUnavailableError
from sitewatch.tracking.config import load_config
from sitewatch.tracking.session import create_tracking_session
from sitewatch.watchers.logger import logger

WAIT_SEC = 1.0


def run(stop: threading.Event) -> int:
    """セッションを開始し、stop がセットされるまで待つ.

    Returns:
        int: 終了コード（位置情報が取れず開始できなければ 1）

    """
    config = load_config(os.getenv("SITEWATCH_ENV_FILE"))
    session = create_tracking_session(config)
    try:
        try:
            sample = session.start_tracking()
        except LocationUnavailableError as exc:
            logger.error("位置情報を取得できないため開始できません: %s", exc)
            return 1
        logger.info(
            "追跡を開始しました | lat=%.5f lng=%.5f accuracy=%.0fm",
            sample.latitude,
            sample.longitude,
            sample.accuracy_m,
        )
        while not stop.wait(WAIT_SEC):
            pass
    finally:
        session.close()
        logger.info("追跡を停止しました")
    return 0


def main() -> int:
    """メイン関数."""
    stop = threading.Event()

    def _handle_signal(signum: int, _frame: FrameType | None) -> None:
        logger.info("signal %d received, stopping", signum)
        stop.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    try:
        return run(stop)
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
