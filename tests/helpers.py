"""テスト用の共通部品（時計・タイマー・位置ソース）"""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from sitewatch.model.errors import LocationUnavailableError
from sitewatch.model.models import LocationSample
from sitewatch.tracking.timeutils import epoch_ms_from_dt

ADELAIDE = ZoneInfo("Australia/Adelaide")
SITE_LAT = -34.9285
SITE_LNG = 138.6007
MINUTE_MS = 60 * 1000
ADDRESS = "12 King William St, Adelaide, SA 5000, Australia"


class FakeClock:
    """手動で進める時計"""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)

    def ms(self) -> int:
        return epoch_ms_from_dt(self.now)


class FakeTimer:
    """threading.Timer の代わり。fire() で手動発火する"""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function(*self.args, **self.kwargs)


class FakeTimerFactory:
    def __init__(self):
        self.timers: list[FakeTimer] = []

    def __call__(self, interval, function, args=None, kwargs=None):
        timer = FakeTimer(interval, function, args=args, kwargs=kwargs)
        self.timers.append(timer)
        return timer

    @property
    def last(self) -> FakeTimer:
        return self.timers[-1]


class ScriptedLocationSource:
    """キューに積んだ位置（または例外）を順に返す位置ソース"""

    def __init__(self) -> None:
        self.queue: list[LocationSample | Exception] = []
        self.calls: list[bool] = []

    def current(self, *, high_accuracy: bool = False) -> LocationSample:
        self.calls.append(high_accuracy)
        if not self.queue:
            msg = "no fix queued"
            raise LocationUnavailableError(msg)
        item = self.queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def make_sample(
    t_ms: int,
    lat: float = SITE_LAT,
    lng: float = SITE_LNG,
    accuracy: float = 20.0,
    speed: float | None = 0.0,
) -> LocationSample:
    return LocationSample(
        latitude=lat,
        longitude=lng,
        captured_at_ms=t_ms,
        accuracy_m=accuracy,
        speed_mps=speed,
    )


def local(hour: int, minute: int = 0, day: int = 10) -> datetime:
    """2026-03-<day> のアデレード時刻"""
    return datetime(2026, 3, day, hour, minute, tzinfo=ADELAIDE)
