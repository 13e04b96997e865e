import platform
import sys
import threading
import time
from dataclasses import dataclass
from typing import Any, Protocol

from sitewatch.model.models import PendingPrompt
from sitewatch.watchers.logger import logger

if sys.platform == "win32":
    from win10toast import ToastNotifier  # type: ignore[import-untyped, unused-ignore]

PROMPT_TITLE = "Create Job for This Location?"


class PromptNotifier(Protocol):
    """What the tracking session needs from the UI."""

    def show_prompt(self, prompt: PendingPrompt) -> None: ...

    def close_prompt(self) -> None: ...


@dataclass
class NotificationConfig:
    """Configuration for :class:`NotificationService`."""

    sound: bool = False
    toast_duration: int = 10


class NotificationService:
    """Notification service with history tracking and the job prompt surface."""

    def __init__(self, config: NotificationConfig | None = None) -> None:
        self.platform = platform.system()
        self.config = config or NotificationConfig()
        self._history: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._current_prompt: PendingPrompt | None = None

    def notify(
        self,
        title: str,
        message: str,
        *,
        sound: bool | None = None,
    ) -> bool:
        """Display a notification and record it.

        On Windows a toast is shown. Elsewhere the notification is only
        recorded and ``False`` is returned.
        """
        sound = self.config.sound if sound is None else sound

        success = False
        if self.platform == "Windows" and sys.platform == "win32":
            notifier = ToastNotifier()
            notifier.show_toast(  # pyright: ignore[reportUnknownMemberType]
                title, message, duration=self.config.toast_duration, threaded=True
            )
            success = True
        with self._lock:
            self._history.append(
                {
                    "title": title,
                    "message": message,
                    "sound": sound,
                    "timestamp": time.time(),
                    "delivered": success,
                },
            )
        return success

    # ------------------------------------------------------------------
    # Prompt surface
    def show_prompt(self, prompt: PendingPrompt) -> None:
        with self._lock:
            self._current_prompt = prompt
        logger.info(
            "Prompting for job at %s (%d+ min)", prompt.site.address, prompt.duration_minutes
        )
        self.notify(PROMPT_TITLE, format_prompt_message(prompt), sound=True)

    def close_prompt(self) -> None:
        with self._lock:
            self._current_prompt = None

    @property
    def current_prompt(self) -> PendingPrompt | None:
        with self._lock:
            return self._current_prompt

    # ------------------------------------------------------------------
    # Query helpers
    def get_notification_history(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Return a copy of the notification history, newest last."""
        with self._lock:
            history = list(self._history)
        if limit is not None:
            return history[-limit:]
        return history


def format_prompt_message(prompt: PendingPrompt) -> str:
    """Body text for the job prompt."""
    return (
        f"You've been at this location for {prompt.duration_minutes}+ minutes. "
        f"Would you like to create a job?\n"
        f"{prompt.site.address}"
    )
