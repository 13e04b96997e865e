"""Tracking session: wires the sample source, detector, ledger and prompt UI.

One ``TrackingSession`` is built at startup and handed to whoever needs it.
It owns the only polling timer. Each poll runs one cycle:

    sample -> detector -> (trigger?) -> ledger check -> reverse geocode -> prompt

A cycle never overlaps another one. ``disable()`` cancels the pending timer
at once; a cycle already in flight is allowed to finish, and its result is
thrown away instead of reviving the session.

After a prompt is answered without "don't ask again", the same anchor does
not prompt again. A new anchor (after relocating or after moving fast enough
to reset the detector) can prompt again.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime
from enum import Enum

from sitewatch.api.services.geocoding import Geocoder, create_geocoding_service
from sitewatch.model.errors import GeocodingError, LocationUnavailableError
from sitewatch.model.models import (
    DetectorState,
    JobLocation,
    LocationSample,
    PendingPrompt,
    PromptAction,
    PromptSite,
    SessionPhase,
    SessionStatus,
)
from sitewatch.tracking.address import job_location_from_prompt
from sitewatch.tracking.config import TrackingConfig
from sitewatch.tracking.detector import advance, held_for_ms
from sitewatch.tracking.ledger import DismissalLedger, JsonFileDismissalRepository
from sitewatch.tracking.scheduler import (
    RepeatingTask,
    TimerFactory,
    is_working_hours,
    ms_until_working_hours,
    next_delay_ms,
)
from sitewatch.tracking.timeutils import epoch_ms_from_dt, tzinfo_from_name
from sitewatch.ui.notifications import NotificationService, PromptNotifier
from sitewatch.watchers.location import LocationSource, PushedLocationSource, TermuxLocationSource
from sitewatch.watchers.logger import logger


class TickOutcome(Enum):
    """What a single poll cycle ended up doing."""

    DISABLED = "disabled"
    OUTSIDE_HOURS = "outside_hours"
    NO_SAMPLE = "no_sample"
    TRACKED = "tracked"
    PROMPTED = "prompted"
    SUPPRESSED = "suppressed"
    DISMISSED = "dismissed"
    GEOCODE_FAILED = "geocode_failed"
    DISCARDED = "discarded"


class TrackingSession:
    def __init__(
        self,
        config: TrackingConfig,
        source: LocationSource,
        geocoder: Geocoder,
        ledger: DismissalLedger,
        notifier: PromptNotifier,
        *,
        clock: Callable[[], datetime] | None = None,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self.config = config
        self.source = source
        self.geocoder = geocoder
        self.ledger = ledger
        self.notifier = notifier
        tz = tzinfo_from_name(config.tz_name)
        self._clock = clock or (lambda: datetime.now(tz))

        self._lock = threading.Lock()
        self._cycle_lock = threading.Lock()
        self._enabled = False
        self._generation = 0
        self._state = DetectorState.empty()
        self._consecutive_checks = 0
        self._pending: PendingPrompt | None = None
        self._answered_anchor_ms: int | None = None
        self._task = RepeatingTask(
            self.tick,
            self._next_delay,
            timer_factory=timer_factory,
            name="tracking-poll",
        )

    # ------------------------------------------------------------------
    # lifecycle
    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def detector_state(self) -> DetectorState:
        with self._lock:
            return self._state

    @property
    def consecutive_stationary_checks(self) -> int:
        with self._lock:
            return self._consecutive_checks

    @property
    def pending_prompt(self) -> PendingPrompt | None:
        with self._lock:
            return self._pending

    def now(self) -> datetime:
        """Current local time as the session sees it."""
        return self._clock()

    def enable(self) -> None:
        """Start polling. Outside working hours the first poll waits for the window to open."""
        with self._lock:
            if self._enabled and self._task.running:
                return
            self._enabled = True
            self._generation += 1
        now = self._clock()
        if is_working_hours(now, self.config):
            logger.info("Tracking enabled")
            self._task.start(0)
        else:
            delay = ms_until_working_hours(now, self.config)
            logger.info("Tracking enabled outside working hours, first poll in %d min", delay // 60_000)
            self._task.start(delay)

    def disable(self) -> None:
        """Stop polling and forget the detector state."""
        self._task.cancel()
        with self._lock:
            self._enabled = False
            self._generation += 1
            self._state = DetectorState.empty()
            self._consecutive_checks = 0
            self._pending = None
            self._answered_anchor_ms = None
        self.notifier.close_prompt()
        logger.info("Tracking disabled")

    def start_tracking(self) -> LocationSample:
        """User-initiated start: take one precise fix first so sensor problems surface.

        Raises:
            LocationUnavailableError: If no position can be obtained.
        """
        sample = self.source.current(high_accuracy=True)
        self.enable()
        return sample

    def close(self) -> None:
        self.disable()
        self.ledger.stop_expiry()

    def _next_delay(self) -> int:
        now = self._clock()
        if not is_working_hours(now, self.config):
            return ms_until_working_hours(now, self.config)
        with self._lock:
            checks = self._consecutive_checks
        return next_delay_ms(checks, self.config)

    # ------------------------------------------------------------------
    # poll cycle
    def tick(self) -> TickOutcome:
        """Run one poll/detect/act cycle."""
        with self._cycle_lock:
            with self._lock:
                if not self._enabled:
                    return TickOutcome.DISABLED
                generation = self._generation

            if not is_working_hours(self._clock(), self.config):
                logger.info("Outside working hours, skipping poll")
                return TickOutcome.OUTSIDE_HOURS

            try:
                # low accuracy to save battery
                sample = self.source.current(high_accuracy=False)
            except LocationUnavailableError as exc:
                logger.warning("Location poll failed: %s", exc)
                return TickOutcome.NO_SAMPLE

            return self._process(sample, generation)

    def _process(self, sample: LocationSample, generation: int) -> TickOutcome:
        with self._lock:
            if generation != self._generation or not self._enabled:
                logger.info("Discarding sample from a cycle started before teardown")
                return TickOutcome.DISCARDED
            new_state, should_prompt = advance(sample, self._state, self.config)
            self._state = new_state
            if new_state.stationary_start_ms != self._answered_anchor_ms:
                self._answered_anchor_ms = None

            if not should_prompt:
                if new_state.is_stationary and new_state.anchor is not None:
                    self._consecutive_checks += 1
                else:
                    self._consecutive_checks = 0
                return TickOutcome.TRACKED

            if self._pending is not None or self._answered_anchor_ms is not None:
                return TickOutcome.SUPPRESSED

            anchor = new_state.anchor
            start_ms = new_state.stationary_start_ms
        if anchor is None or start_ms is None:
            return TickOutcome.TRACKED

        if self.ledger.is_dismissed(anchor.latitude, anchor.longitude):
            logger.info("Location already dismissed today, skipping prompt")
            return TickOutcome.DISMISSED

        try:
            address = self.geocoder.reverse(anchor.latitude, anchor.longitude)
        except GeocodingError as exc:
            logger.warning("Reverse geocoding failed, retrying next poll: %s", exc)
            return TickOutcome.GEOCODE_FAILED

        prompt = PendingPrompt(
            site=PromptSite(latitude=anchor.latitude, longitude=anchor.longitude, address=address),
            stationary_duration_ms=max(0, epoch_ms_from_dt(self._clock()) - start_ms),
            anchor_started_ms=start_ms,
        )
        with self._lock:
            if generation != self._generation or not self._enabled:
                logger.info("Discarding prompt from a cycle started before teardown")
                return TickOutcome.DISCARDED
            self._pending = prompt
            self._consecutive_checks = 0
        self.notifier.show_prompt(prompt)
        return TickOutcome.PROMPTED

    # ------------------------------------------------------------------
    # prompt decisions
    def resolve_prompt(self, action: PromptAction, *, dont_ask_again: bool = False) -> JobLocation | None:
        """Apply the user's answer to the outstanding prompt.

        Returns the job-creation hand-off for ``PromptAction.CREATE``, else None.
        """
        with self._lock:
            prompt = self._pending
            if prompt is None:
                return None
            self._pending = None
            self._answered_anchor_ms = prompt.anchor_started_ms

        try:
            if action is PromptAction.DISMISS or dont_ask_again:
                site = prompt.site
                self.ledger.record_dismissal(site.latitude, site.longitude, site.address)
        finally:
            self.notifier.close_prompt()

        if action is PromptAction.CREATE:
            job = job_location_from_prompt(prompt, self.config.default_country)
            logger.info("Job requested at %s", prompt.site.address)
            return job
        return None

    def accept_prompt(self, *, dont_ask_again: bool = False) -> JobLocation | None:
        return self.resolve_prompt(PromptAction.CREATE, dont_ask_again=dont_ask_again)

    def decline_prompt(self, *, dont_ask_again: bool = False) -> None:
        action = PromptAction.DISMISS if dont_ask_again else PromptAction.IGNORE
        self.resolve_prompt(action)

    # ------------------------------------------------------------------
    def status(self) -> SessionStatus:
        now = self._clock()
        in_hours = is_working_hours(now, self.config)
        with self._lock:
            if not self._enabled:
                phase = SessionPhase.DISABLED
            elif self._pending is not None:
                phase = SessionPhase.PROMPTING
            elif in_hours:
                phase = SessionPhase.ACTIVE
            else:
                phase = SessionPhase.IDLE
            return SessionStatus(
                enabled=self._enabled,
                tracking=self._enabled and in_hours and self._task.running,
                phase=phase,
                consecutive_stationary_checks=self._consecutive_checks,
                anchor=self._state.anchor,
                stationary_start_ms=self._state.stationary_start_ms,
                pending_prompt=self._pending,
                dismissed_today=self.ledger.sites,
                held_for_ms=held_for_ms(self._state, epoch_ms_from_dt(now)),
            )


def create_tracking_session(
    config: TrackingConfig,
    *,
    notifier: PromptNotifier | None = None,
    timer_factory: TimerFactory = threading.Timer,
) -> TrackingSession:
    """設定から実際の協調オブジェクトを組み立てるファクトリ関数.

    却下済み地点をストアから読み込み、深夜0時の期限切れタスクも開始する。
    """
    tz = tzinfo_from_name(config.tz_name)

    def clock() -> datetime:
        return datetime.now(tz)

    ledger = DismissalLedger(JsonFileDismissalRepository(config.dismissal_store), clock, config)
    ledger.load()
    ledger.start_expiry(timer_factory)

    source: LocationSource
    if config.location_provider == "push":
        source = PushedLocationSource(config.max_age_low_ms, config.max_age_high_ms)
    else:
        source = TermuxLocationSource(
            timeout=config.location_timeout_s,
            max_age_low_ms=config.max_age_low_ms,
            max_age_high_ms=config.max_age_high_ms,
        )

    return TrackingSession(
        config,
        source,
        create_geocoding_service(config),
        ledger,
        notifier or NotificationService(),
        clock=clock,
        timer_factory=timer_factory,
    )
