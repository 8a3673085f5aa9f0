import os
from dataclasses import dataclass, field, replace
from typing import Optional, Union


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value not in (None, '') else default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value not in (None, '') else default


def _camera_source(value: Optional[str]) -> Union[int, str]:
    # Numeric sources are device indexes, anything else is a URL or file path
    if value is None or value == '':
        return 0
    return int(value) if value.isdigit() else value


@dataclass(frozen=True)
class Settings:
    # Camera
    camera_source: Union[int, str] = 0
    camera_width: int = 1280
    camera_height: int = 720

    # Scan loop
    scan_interval: float = 3.0
    realtime_quality: float = 0.7
    single_shot_quality: float = 0.8
    max_frame_width: int = 1280
    analysis_timeout: float = 15.0
    failure_notify_every: int = 10
    failure_max_run: int = 5
    success_notify_every: int = 3

    # Inference proxy
    proxy_url: str = 'http://127.0.0.1:8000/functions/v1/analyze-product'
    openai_api_key: Optional[str] = field(default=None, repr=False)
    openai_model: str = 'gpt-4o-mini'
    openai_base_url: str = 'https://api.openai.com/v1'
    upstream_timeout: float = 30.0

    # Store and checkout
    database_path: str = 'smartcart.db'
    tax_rate: float = 0.08
    currency_symbol: str = '$'
    low_stock_threshold: int = 5

    @classmethod
    def from_env(cls) -> 'Settings':
        """Build settings from SMARTCART_* environment variables"""
        defaults = cls()
        return cls(
            camera_source=_camera_source(os.environ.get('SMARTCART_CAMERA_SOURCE')),
            camera_width=_env_int('SMARTCART_CAMERA_WIDTH', defaults.camera_width),
            camera_height=_env_int('SMARTCART_CAMERA_HEIGHT', defaults.camera_height),
            scan_interval=_env_float('SMARTCART_SCAN_INTERVAL', defaults.scan_interval),
            realtime_quality=_env_float('SMARTCART_REALTIME_QUALITY', defaults.realtime_quality),
            single_shot_quality=_env_float('SMARTCART_SINGLE_SHOT_QUALITY', defaults.single_shot_quality),
            max_frame_width=_env_int('SMARTCART_MAX_FRAME_WIDTH', defaults.max_frame_width),
            analysis_timeout=_env_float('SMARTCART_ANALYSIS_TIMEOUT', defaults.analysis_timeout),
            failure_notify_every=_env_int('SMARTCART_FAILURE_NOTIFY_EVERY', defaults.failure_notify_every),
            failure_max_run=_env_int('SMARTCART_FAILURE_MAX_RUN', defaults.failure_max_run),
            success_notify_every=_env_int('SMARTCART_SUCCESS_NOTIFY_EVERY', defaults.success_notify_every),
            proxy_url=os.environ.get('SMARTCART_PROXY_URL', defaults.proxy_url),
            openai_api_key=os.environ.get('OPENAI_API_KEY') or None,
            openai_model=os.environ.get('SMARTCART_OPENAI_MODEL', defaults.openai_model),
            openai_base_url=os.environ.get('SMARTCART_OPENAI_BASE_URL', defaults.openai_base_url),
            upstream_timeout=_env_float('SMARTCART_UPSTREAM_TIMEOUT', defaults.upstream_timeout),
            database_path=os.environ.get('SMARTCART_DATABASE', defaults.database_path),
            tax_rate=_env_float('SMARTCART_TAX_RATE', defaults.tax_rate),
            currency_symbol=os.environ.get('SMARTCART_CURRENCY', defaults.currency_symbol),
            low_stock_threshold=_env_int('SMARTCART_LOW_STOCK', defaults.low_stock_threshold),
        )

    def with_overrides(self, **changes) -> 'Settings':
        return replace(self, **changes)
