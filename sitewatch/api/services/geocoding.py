import threading
import time
from typing import Any, Protocol

import requests

from sitewatch.model.errors import GeocodingError
from sitewatch.tracking.config import TrackingConfig
from sitewatch.watchers.logger import logger

HTTP_OK = 200
CACHE_PRECISION = 5  # 小数点以下5桁（約1m）
CACHE_MAX_ENTRIES = 256


class Geocoder(Protocol):
    def reverse(self, lat: float, lng: float) -> str:
        """座標を整形済み住所に変換する。失敗時は GeocodingError."""
        ...


def coord_key(lat: float, lng: float, precision: int = CACHE_PRECISION) -> str:
    """座標を丸めたキャッシュキー（"lat,lng"）."""
    return f"{round(lat, precision):.{precision}f},{round(lng, precision):.{precision}f}"


class _CachingGeocoder:
    """丸め座標キーのメモリキャッシュとレート制限を共通化する基底クラス."""

    def __init__(self, timeout: float, min_call_interval: float = 0.0) -> None:
        self.timeout = timeout
        self.min_call_interval = min_call_interval
        self.last_call_time: float = 0.0
        self._cache: dict[str, str] = {}
        self._lock = threading.Lock()

    def reverse(self, lat: float, lng: float) -> str:
        key = coord_key(lat, lng)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            logger.info("Geocode cache hit: %s", key)
            return cached

        self._rate_limit()
        address = self._fetch(lat, lng)

        with self._lock:
            if len(self._cache) >= CACHE_MAX_ENTRIES:
                self._cache.pop(next(iter(self._cache)))
            self._cache[key] = address
        return address

    def _fetch(self, lat: float, lng: float) -> str:
        raise NotImplementedError

    def _rate_limit(self) -> None:
        """レート制限を適用."""
        if self.min_call_interval <= 0:
            return
        now = time.time()
        elapsed = now - self.last_call_time
        if elapsed < self.min_call_interval:
            time.sleep(self.min_call_interval - elapsed)
        self.last_call_time = time.time()


class BackendGeocodingService(_CachingGeocoder):
    """業務バックエンドの逆ジオコーディングAPIクライアント.

    ``POST {base_url}/api/geocoding/reverse?latitude=..&longitude=..`` を呼び、
    レスポンスの ``formattedAddress`` を返す。
    """

    def __init__(self, base_url: str, timeout: float = 10.0) -> None:
        """初期化

        Args:
        base_url: バックエンドのベースURL（例: http://localhost:8080）
        timeout: APIタイムアウト(秒)

        """
        super().__init__(timeout=timeout)
        self.base_url = base_url.rstrip("/")
        self.reverse_url = f"{self.base_url}/api/geocoding/reverse"

    def _fetch(self, lat: float, lng: float) -> str:
        try:
            response = requests.post(
                self.reverse_url,
                params={"latitude": lat, "longitude": lng},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as exc:
            msg = f"reverse geocoding timed out for {lat},{lng}"
            raise GeocodingError(msg) from exc
        except requests.RequestException as exc:
            msg = f"reverse geocoding request failed for {lat},{lng}: {exc}"
            raise GeocodingError(msg) from exc

        if response.status_code != HTTP_OK:
            msg = f"reverse geocoding returned HTTP {response.status_code}"
            raise GeocodingError(msg)

        try:
            data: dict[str, Any] = response.json()
        except ValueError as exc:
            msg = "reverse geocoding returned invalid JSON"
            raise GeocodingError(msg) from exc

        address = str(data.get("formattedAddress") or "").strip()
        if not address:
            msg = f"no address found for {lat},{lng}"
            raise GeocodingError(msg)
        return address


class NominatimGeocodingService(_CachingGeocoder):
    """OpenStreetMap Nominatim の reverse API クライアント.

    利用規約に従い、1秒以上の間隔と識別可能な User-Agent を設定すること。
    """

    def __init__(
        self,
        base_url: str = "https://nominatim.openstreetmap.org/reverse",
        timeout: float = 10.0,
        user_agent: str = "sitewatch/0.1.0 (stationary job prompt)",
        accept_language: str = "en-AU",
        min_call_interval: float = 1.0,
    ) -> None:
        super().__init__(timeout=timeout, min_call_interval=min_call_interval)
        self.base_url = base_url
        self.user_agent = user_agent
        self.accept_language = accept_language

    def _fetch(self, lat: float, lng: float) -> str:
        params = {
            "format": "jsonv2",
            "lat": f"{lat:.8f}",
            "lon": f"{lng:.8f}",
            "zoom": "18",
            "addressdetails": "0",
            "accept-language": self.accept_language,
        }
        headers = {"User-Agent": self.user_agent, "Accept": "application/json"}
        try:
            response = requests.get(
                self.base_url, params=params, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as exc:
            msg = f"nominatim request failed for {lat},{lng}: {exc}"
            raise GeocodingError(msg) from exc

        if response.status_code != HTTP_OK:
            msg = f"nominatim returned HTTP {response.status_code}"
            raise GeocodingError(msg)
        try:
            data: dict[str, Any] = response.json()
        except ValueError as exc:
            msg = "nominatim returned invalid JSON"
            raise GeocodingError(msg) from exc

        address = str(data.get("display_name") or "").strip()
        if not address:
            msg = f"no address found for {lat},{lng}"
            raise GeocodingError(msg)
        return address


# 便利関数
def create_geocoding_service(config: TrackingConfig) -> Geocoder:
    """設定に応じた逆ジオコーディングサービスのファクトリ関数."""
    if config.geocoding_provider == "nominatim":
        return NominatimGeocodingService(timeout=config.geocoding_timeout_s)
    return BackendGeocodingService(
        base_url=config.geocoding_url, timeout=config.geocoding_timeout_s
    )
