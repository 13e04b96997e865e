"""Day-scoped ledger of sites the user asked not to be prompted about again.

The ledger keeps one list of ``DismissedSite`` records in memory and mirrors
it to a repository on every change. Only dismissals made on the current local
day survive a reload; everything is dropped at local midnight.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from sitewatch.model.models import DismissedSite
from sitewatch.tracking.config import DEFAULT_CONFIG, TrackingConfig
from sitewatch.tracking.geo import flat_distance_m
from sitewatch.tracking.scheduler import RepeatingTask, TimerFactory
from sitewatch.tracking.timeutils import (
    dt_from_epoch_ms,
    epoch_ms_from_dt,
    ms_until,
    next_midnight,
    same_local_day,
)
from sitewatch.watchers.logger import logger


class DismissalRepository(Protocol):
    def load(self) -> list[DismissedSite]:
        """Return stored dismissals, an empty list if the store is missing or unreadable."""
        ...

    def save(self, sites: list[DismissedSite]) -> None: ...


class InMemoryDismissalRepository:
    def __init__(self, sites: list[DismissedSite] | None = None) -> None:
        self.sites: list[DismissedSite] = list(sites or [])

    def load(self) -> list[DismissedSite]:
        return list(self.sites)

    def save(self, sites: list[DismissedSite]) -> None:
        self.sites = list(sites)


class JsonFileDismissalRepository:
    """Dismissals persisted as one JSON list in a single file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[DismissedSite]:
        if not self._path.exists():
            return []
        try:
            text = self._path.read_text(encoding="utf-8").strip()
        except OSError:
            logger.warning("Dismissal store unreadable: %s", self._path)
            return []
        if not text:
            return []
        try:
            raw = json.loads(text)
        except json.JSONDecodeError:
            self._discard_broken(text)
            return []
        if not isinstance(raw, list):
            self._discard_broken(text)
            return []

        sites: list[DismissedSite] = []
        for rec in raw:
            if not isinstance(rec, dict):
                continue
            try:
                site = DismissedSite.from_dict(rec)
                dt_from_epoch_ms(site.dismissed_at_ms, UTC)
            except (KeyError, TypeError, ValueError, OverflowError, OSError):
                # skip the broken record, keep the rest
                continue
            sites.append(site)
        return sites

    def save(self, sites: list[DismissedSite]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(
            json.dumps([s.to_dict() for s in sites], ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        tmp.replace(self._path)

    def _discard_broken(self, text: str) -> None:
        backup = self._path.with_suffix(self._path.suffix + ".broken")
        logger.warning("Dismissal store corrupted, starting empty (backup: %s)", backup)
        try:
            backup.write_text(text, encoding="utf-8")
            self._path.unlink()
        except OSError:
            return


class DismissalLedger:
    """Dismissed sites for the current local day."""

    def __init__(
        self,
        repository: DismissalRepository,
        clock: Callable[[], datetime],
        config: TrackingConfig = DEFAULT_CONFIG,
    ) -> None:
        self._repo = repository
        self._clock = clock
        self._config = config
        self._lock = threading.Lock()
        self._sites: list[DismissedSite] = []
        self._expiry_task: RepeatingTask | None = None

    @property
    def sites(self) -> list[DismissedSite]:
        with self._lock:
            return list(self._sites)

    def load(self) -> list[DismissedSite]:
        """Reload from the repository, keeping only today's dismissals.

        Stale entries are dropped from the store as well.
        """
        now = self._clock()
        stored = self._repo.load()
        today = [s for s in stored if same_local_day(s.dismissed_at_ms, now)]
        with self._lock:
            self._sites = today
        if len(today) != len(stored):
            logger.info("Dropped %d dismissal(s) from previous days", len(stored) - len(today))
            self._persist(today)
        return list(today)

    def is_dismissed(self, lat: float, lng: float) -> bool:
        radius = self._config.dismissal_radius_m
        with self._lock:
            return any(
                flat_distance_m(s.latitude, s.longitude, lat, lng) < radius for s in self._sites
            )

    def record_dismissal(self, lat: float, lng: float, address: str) -> DismissedSite:
        site = DismissedSite(
            latitude=lat,
            longitude=lng,
            address=address,
            dismissed_at_ms=epoch_ms_from_dt(self._clock()),
        )
        with self._lock:
            self._sites = [*self._sites, site]
            snapshot = list(self._sites)
        self._persist(snapshot)
        logger.info("Dismissed site for today: %.5f,%.5f %s", lat, lng, address)
        return site

    def expire(self) -> None:
        """Forget every dismissal. Not recoverable."""
        with self._lock:
            count = len(self._sites)
            self._sites = []
        self._persist([])
        logger.info("Midnight rollover: cleared %d dismissal(s)", count)

    def _persist(self, sites: list[DismissedSite]) -> None:
        # the in-memory list stays authoritative for today if the store cannot be written
        try:
            self._repo.save(sites)
        except OSError:
            logger.exception("Could not write dismissal store")

    def ms_until_midnight(self) -> int:
        now = self._clock()
        return ms_until(now, next_midnight(now))

    def start_expiry(self, timer_factory: TimerFactory | None = None) -> RepeatingTask:
        """Clear the ledger at every local midnight from now on."""
        if self._expiry_task is None:
            kwargs = {} if timer_factory is None else {"timer_factory": timer_factory}
            self._expiry_task = RepeatingTask(
                self.expire,
                self.ms_until_midnight,
                name="dismissal-expiry",
                **kwargs,
            )
        self._expiry_task.start(self.ms_until_midnight())
        return self._expiry_task

    def stop_expiry(self) -> None:
        if self._expiry_task is not None:
            self._expiry_task.cancel()
