"""Data models shared by the tracking engine, the API and the prompt UI."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypedDict

__all__ = [
    "DetectorState",
    "DismissedSite",
    "JobLocation",
    "JobLocationPayload",
    "LocationSample",
    "PendingPrompt",
    "PromptAction",
    "PromptSite",
    "SessionPhase",
    "SessionStatus",
]


@dataclass(frozen=True, slots=True)
class LocationSample:
    """A single position fix.

    Attributes:
        latitude: Latitude in decimal degrees.
        longitude: Longitude in decimal degrees.
        captured_at_ms: Unix epoch milliseconds when the fix was taken.
        accuracy_m: Horizontal accuracy radius in meters.
        speed_mps: Ground speed in meters/second, None when the device
            does not report it.
    """

    latitude: float
    longitude: float
    captured_at_ms: int
    accuracy_m: float
    speed_mps: float | None = None


@dataclass(frozen=True, slots=True)
class DetectorState:
    """Stationary detector state. Never mutated, always replaced."""

    is_stationary: bool = False
    anchor: LocationSample | None = None
    stationary_start_ms: int | None = None
    recent_samples: tuple[LocationSample, ...] = ()

    @classmethod
    def empty(cls) -> DetectorState:
        return cls()


@dataclass(frozen=True, slots=True)
class DismissedSite:
    """A site the user asked not to be prompted about again today."""

    latitude: float
    longitude: float
    address: str
    dismissed_at_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "lat": self.latitude,
            "lng": self.longitude,
            "address": self.address,
            "dismissedAt": self.dismissed_at_ms,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> DismissedSite:
        """Build from a stored record.

        Raises:
            KeyError, TypeError, ValueError: If the record is malformed.
        """
        return cls(
            latitude=float(raw["lat"]),
            longitude=float(raw["lng"]),
            address=str(raw.get("address") or ""),
            dismissed_at_ms=int(raw["dismissedAt"]),
        )


@dataclass(frozen=True, slots=True)
class PromptSite:
    latitude: float
    longitude: float
    address: str


@dataclass(frozen=True, slots=True)
class PendingPrompt:
    """The prompt handed to the UI between a trigger and the user's decision."""

    site: PromptSite
    stationary_duration_ms: int
    anchor_started_ms: int = 0

    @property
    def duration_minutes(self) -> int:
        return self.stationary_duration_ms // (1000 * 60)

    def to_dict(self) -> dict[str, Any]:
        return {
            "site": {
                "lat": self.site.latitude,
                "lng": self.site.longitude,
                "address": self.site.address,
            },
            "stationaryDurationMs": self.stationary_duration_ms,
            "durationMinutes": self.duration_minutes,
        }


class JobLocationPayload(TypedDict):
    """Job-creation hand-off payload (wire format)."""

    streetAddress: str
    city: str
    state: str
    postalCode: str
    country: str
    latitude: float
    longitude: float


@dataclass(frozen=True, slots=True)
class JobLocation:
    street_address: str
    city: str
    state: str
    postal_code: str
    country: str
    latitude: float
    longitude: float

    def to_payload(self) -> JobLocationPayload:
        return {
            "streetAddress": self.street_address,
            "city": self.city,
            "state": self.state,
            "postalCode": self.postal_code,
            "country": self.country,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }


class PromptAction(Enum):
    """What the user did with a prompt."""

    CREATE = "create"
    DISMISS = "dismiss"
    IGNORE = "ignore"


class SessionPhase(Enum):
    DISABLED = "disabled"
    IDLE = "idle"
    ACTIVE = "active"
    PROMPTING = "prompting"


@dataclass(frozen=True, slots=True)
class SessionStatus:
    """Point-in-time view of a tracking session."""

    enabled: bool
    tracking: bool
    phase: SessionPhase
    consecutive_stationary_checks: int
    anchor: LocationSample | None
    stationary_start_ms: int | None
    pending_prompt: PendingPrompt | None
    dismissed_today: list[DismissedSite] = field(default_factory=list)
    held_for_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        anchor = None
        if self.anchor is not None:
            anchor = {
                "lat": self.anchor.latitude,
                "lng": self.anchor.longitude,
                "accuracy": self.anchor.accuracy_m,
                "timestamp": self.anchor.captured_at_ms,
            }
        return {
            "enabled": self.enabled,
            "tracking": self.tracking,
            "phase": self.phase.value,
            "consecutive_stationary_checks": self.consecutive_stationary_checks,
            "anchor": anchor,
            "stationary_start_ms": self.stationary_start_ms,
            "held_for_ms": self.held_for_ms,
            "held_for_minutes": self.held_for_ms // (1000 * 60),
            "pending_prompt": self.pending_prompt.to_dict() if self.pending_prompt else None,
            "dismissed_today": [d.to_dict() for d in self.dismissed_today],
        }
