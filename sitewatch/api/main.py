"""FastAPI app exposing the tracking session controls and the job prompt."""

import os
from collections import deque
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from sitewatch.model.errors import LocationUnavailableError
from sitewatch.model.models import LocationSample
from sitewatch.tracking.config import load_config
from sitewatch.tracking.session import TrackingSession, create_tracking_session
from sitewatch.tracking.timeutils import epoch_ms_from_dt
from sitewatch.ui.notifications import NotificationService
from sitewatch.watchers.location import PushedLocationSource
from sitewatch.watchers.logger import LOG_DIR, logger

# --- Pydanticモデル定義 ---


class LocationIn(BaseModel):
    """プッシュされる位置情報."""

    lat: float = Field(..., ge=-90.0, le=90.0, allow_inf_nan=False)
    lng: float = Field(..., ge=-180.0, le=180.0, allow_inf_nan=False)
    accuracy: float = Field(..., ge=0.0, allow_inf_nan=False, description="meters")
    speed: float | None = Field(None, ge=0.0, allow_inf_nan=False, description="m/s")
    timestamp: int | None = Field(None, description="epoch ms（省略時は受信時刻）")


class PromptDecision(BaseModel):
    """プロンプトへの応答."""

    dont_ask_again: bool = False


# --- ロギング ---


def log_message(request: Request, message: str) -> None:
    """ロガーに出力し、アプリのログキューにも追加する."""
    logger.info(message)
    request.app.state.logs.append(message)


def _get_pump_log_tail(max_lines: int = 200) -> list[str]:
    """``log/pump.log`` の末尾を取得する（存在しなければ空）."""
    path = LOG_DIR / "pump.log"
    if not path.exists():
        return []
    try:
        with open(path, encoding="utf-8", errors="ignore") as f:
            lines = f.read().splitlines()
    except OSError:
        return []
    return lines[-max_lines:]


def _session(request: Request) -> TrackingSession:
    session: TrackingSession | None = request.app.state.session
    if session is None:
        raise HTTPException(status_code=503, detail="Tracking session not available")
    return session


# --- アプリケーション ---


def create_app(session: TrackingSession | None = None) -> FastAPI:
    """アプリを生成する.

    Args:
        session: 既存のセッション。None の場合は起動時に環境設定から生成し、
            トラッキングを有効化する（停止時に破棄）。

    """
    app = FastAPI(
        title="Sitewatch",
        description="Stationary job-site detection for field installers",
    )
    app.state.session = session
    app.state.logs = deque(maxlen=100)
    owns_session = session is None

    # Deprecated on_event usage is temporarily retained for simplicity.
    @app.on_event("startup")  # pyright: ignore[reportDeprecated]
    async def startup_event() -> None:
        """起動時にトラッキングセッションを生成して有効化."""
        if not owns_session:
            return
        env_file = os.getenv("SITEWATCH_ENV_FILE")
        created = create_tracking_session(load_config(env_file))
        created.enable()
        app.state.session = created
        logger.info("Tracking session started")

    @app.on_event("shutdown")  # pyright: ignore[reportDeprecated]
    async def shutdown_event() -> None:
        if owns_session and app.state.session is not None:
            app.state.session.close()
            app.state.session = None

    # --- APIエンドポイント定義 ---

    @app.get("/status")
    async def get_current_status(request: Request) -> dict[str, Any]:
        """現在のセッション状態を取得する."""
        return _session(request).status().to_dict()

    @app.post("/tracking/enable")
    async def enable_tracking(request: Request) -> dict[str, Any]:
        session = _session(request)
        session.enable()
        log_message(request, "Tracking enabled via API")
        return {"ok": True, "status": session.status().to_dict()}

    @app.post("/tracking/disable")
    async def disable_tracking(request: Request) -> dict[str, Any]:
        session = _session(request)
        session.disable()
        log_message(request, "Tracking disabled via API")
        return {"ok": True, "status": session.status().to_dict()}

    @app.post("/tracking/start")
    def start_tracking(request: Request) -> dict[str, Any]:
        """ユーザー操作による開始。位置が取れなければ 503 で通知する."""
        session = _session(request)
        try:
            sample = session.start_tracking()
        except LocationUnavailableError as exc:
            log_message(request, f"Start tracking failed: {exc}")
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return {
            "ok": True,
            "location": {"lat": sample.latitude, "lng": sample.longitude, "accuracy": sample.accuracy_m},
            "status": session.status().to_dict(),
        }

    @app.post("/location")
    async def push_location(req: LocationIn, request: Request) -> dict[str, Any]:
        """位置共有アプリからの位置をセッションに渡す."""
        session = _session(request)
        source = session.source
        if not isinstance(source, PushedLocationSource):
            raise HTTPException(status_code=409, detail="Location source does not accept pushes")
        captured_at = req.timestamp
        if captured_at is None:
            captured_at = epoch_ms_from_dt(session.now())
        source.push(
            LocationSample(
                latitude=req.lat,
                longitude=req.lng,
                captured_at_ms=captured_at,
                accuracy_m=req.accuracy,
                speed_mps=req.speed,
            )
        )
        return {"ok": True}

    @app.get("/prompt")
    async def get_prompt(request: Request) -> dict[str, Any]:
        prompt = _session(request).pending_prompt
        return {"prompt": prompt.to_dict() if prompt else None}

    @app.post("/prompt/accept")
    async def accept_prompt(req: PromptDecision, request: Request) -> dict[str, Any]:
        """「ジョブを作成」: ジョブ作成フォーム用の住所情報を返す."""
        session = _session(request)
        if session.pending_prompt is None:
            raise HTTPException(status_code=404, detail="No pending prompt")
        job = session.accept_prompt(dont_ask_again=req.dont_ask_again)
        if job is None:
            raise HTTPException(status_code=404, detail="No pending prompt")
        log_message(request, f"Job location handed off: {job.street_address}")
        return {"ok": True, "location": job.to_payload()}

    @app.post("/prompt/decline")
    async def decline_prompt(req: PromptDecision, request: Request) -> dict[str, Any]:
        """「今はしない」: dont_ask_again なら今日はこの地点で再表示しない."""
        session = _session(request)
        if session.pending_prompt is None:
            raise HTTPException(status_code=404, detail="No pending prompt")
        session.decline_prompt(dont_ask_again=req.dont_ask_again)
        log_message(request, f"Prompt declined (dont_ask_again={req.dont_ask_again})")
        return {"ok": True}

    @app.get("/dismissals")
    async def get_dismissals(request: Request) -> dict[str, Any]:
        return {"dismissed_today": [s.to_dict() for s in _session(request).ledger.sites]}

    # --- モニタリング用エンドポイント ---

    @app.get("/api/monitoring_data")
    async def get_monitoring_data(request: Request) -> dict[str, Any]:
        session = _session(request)
        data: dict[str, Any] = {
            "status": session.status().to_dict(),
            "logs": list(request.app.state.logs),
            "pump_logs": _get_pump_log_tail(),
        }
        # 通知サービス以外のフロントエンドは履歴を持たない
        if isinstance(session.notifier, NotificationService):
            data["notifications"] = session.notifier.get_notification_history(limit=20)
            data["prompt_visible"] = session.notifier.current_prompt is not None
        return data

    return app


app = create_app()
