"""FXPilot — application configuration.

Loads .env variables into a typed config object.
Validates values on startup.
"""

import math
import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    bridge_url: str  # empty = no bridge, offline broker
    bridge_token: str
    symbols: tuple[str, ...]
    autopilot_interval_seconds: float
    monitor_interval_seconds: float
    execution_threshold: float
    fallback_bar_count: int
    log_level: str
    api_port: int

    @property
    def bridge_configured(self) -> bool:
        return bool(self.bridge_url)

    @property
    def default_symbol(self) -> str:
        return self.symbols[0]


def _parse(name: str, default: str, cast):
    raw = os.environ.get(name, default)
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from None


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the offending variable when
    a value is missing or out of range.
    """
    load_dotenv(dotenv_path=env_path)

    bridge_url = os.environ.get("BRIDGE_URL", "").strip().rstrip("/")
    bridge_token = os.environ.get("BRIDGE_TOKEN", "").strip()
    if bridge_url and not bridge_token:
        raise ValueError(
            "Missing required environment variable(s): BRIDGE_TOKEN"
        )

    symbols = tuple(
        s.strip().upper()
        for s in os.environ.get("SYMBOLS", "EURUSD").split(",")
        if s.strip()
    )
    if not symbols:
        raise ValueError("SYMBOLS must name at least one symbol")

    autopilot_interval = _parse("AUTOPILOT_INTERVAL_SECONDS", "8", float)
    monitor_interval = _parse("MONITOR_INTERVAL_SECONDS", "15", float)
    threshold = _parse("EXECUTION_THRESHOLD", "0.6", float)
    bar_count = _parse("FALLBACK_BAR_COUNT", "120", int)
    api_port = _parse("API_PORT", "8080", int)

    if not math.isfinite(autopilot_interval) or autopilot_interval <= 0:
        raise ValueError("AUTOPILOT_INTERVAL_SECONDS must be a positive number")
    if not math.isfinite(monitor_interval) or monitor_interval <= 0:
        raise ValueError("MONITOR_INTERVAL_SECONDS must be a positive number")
    if not 0.0 <= threshold <= 1.0:
        raise ValueError("EXECUTION_THRESHOLD must be 0.0–1.0")
    if bar_count <= 0:
        raise ValueError("FALLBACK_BAR_COUNT must be positive")

    return Config(
        bridge_url=bridge_url,
        bridge_token=bridge_token,
        symbols=symbols,
        autopilot_interval_seconds=autopilot_interval,
        monitor_interval_seconds=monitor_interval,
        execution_threshold=threshold,
        fallback_bar_count=bar_count,
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=api_port,
    )
