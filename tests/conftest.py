from unittest.mock import Mock

import pytest

from sitewatch.tracking.config import TrackingConfig
from sitewatch.tracking.ledger import DismissalLedger, InMemoryDismissalRepository
from sitewatch.tracking.session import TrackingSession
from tests.helpers import ADDRESS, FakeClock, FakeTimerFactory, ScriptedLocationSource, local


@pytest.fixture
def config():
    return TrackingConfig()


@pytest.fixture
def clock():
    """作業時間内（火曜 10:00 アデレード）から始まる時計"""
    return FakeClock(local(10, 0))


@pytest.fixture
def timer_factory():
    return FakeTimerFactory()


@pytest.fixture
def source():
    return ScriptedLocationSource()


@pytest.fixture
def geocoder():
    """逆ジオコーディングのモック"""
    mock = Mock()
    mock.reverse = Mock(return_value=ADDRESS)
    return mock


@pytest.fixture
def notifier():
    """プロンプト表示のモック"""
    mock = Mock()
    mock.show_prompt = Mock()
    mock.close_prompt = Mock()
    return mock


@pytest.fixture
def repository():
    return InMemoryDismissalRepository()


@pytest.fixture
def ledger(repository, clock, config):
    return DismissalLedger(repository, clock, config)


@pytest.fixture
def session(config, source, geocoder, ledger, notifier, clock, timer_factory):
    return TrackingSession(
        config,
        source,
        geocoder,
        ledger,
        notifier,
        clock=clock,
        timer_factory=timer_factory,
    )
