__all__ = ["GeocodingError", "LocationUnavailableError", "SitewatchError"]


class SitewatchError(Exception):
    """Base class for errors raised by the tracking engine's collaborators."""


class LocationUnavailableError(SitewatchError):
    """位置情報が取得できない（センサー無効・権限拒否・タイムアウト等）."""


class GeocodingError(SitewatchError):
    """逆ジオコーディングに失敗した（通信エラー・結果なし等）."""
