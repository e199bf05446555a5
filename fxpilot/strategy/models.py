"""Strategy data models — price bars, strategy parameters, and signals."""

import math
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from typing import Literal, Mapping

from fxpilot.errors import ValidationError

Action = Literal["BUY", "SELL", "HOLD"]

BUY: Action = "BUY"
SELL: Action = "SELL"
HOLD: Action = "HOLD"
ACTIONS: tuple[str, ...] = (BUY, SELL, HOLD)


@dataclass(frozen=True)
class PriceBar:
    """A single OHLCV bar."""

    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


# ── Strategy parameters ──────────────────────────────────────────────────

# field → (minimum, maximum, integral)
PARAMETER_RANGES: dict[str, tuple[float, float, bool]] = {
    "short_window": (4, 48, True),
    "long_window": (12, 240, True),
    "risk_reward": (1.0, 5.0, False),
    "max_concurrent_positions": (1, 20, True),
    "risk_per_trade_pct": (0.1, 5.0, False),
}

# Wire names used by the HTTP adapter
_WIRE_NAMES: dict[str, str] = {
    "short_window": "shortWindow",
    "long_window": "longWindow",
    "risk_reward": "riskReward",
    "max_concurrent_positions": "maxConcurrentPositions",
    "risk_per_trade_pct": "riskPerTradePct",
}


@dataclass(frozen=True)
class StrategyParameters:
    """Active strategy configuration.

    Instances are immutable; the parameter store swaps whole objects.
    """

    short_window: int = 12
    long_window: int = 48
    risk_reward: float = 2.2
    max_concurrent_positions: int = 4
    risk_per_trade_pct: float = 0.8

    def validate(self) -> list[str]:
        """Return every range or invariant violation (empty when valid)."""
        errors: list[str] = []
        for name, (lo, hi, integral) in PARAMETER_RANGES.items():
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                errors.append(f"{name} must be a number, got {value!r}")
                continue
            if not math.isfinite(value):
                errors.append(f"{name} must be finite, got {value}")
                continue
            if integral and value != int(value):
                errors.append(f"{name} must be an integer, got {value}")
                continue
            if not lo <= value <= hi:
                errors.append(f"{name} must be {lo}–{hi}, got {value}")

        if not errors and self.short_window >= self.long_window:
            errors.append(
                f"short_window ({self.short_window}) must be less than "
                f"long_window ({self.long_window})"
            )
        return errors

    def to_dict(self) -> dict:
        """Return the camelCase wire representation."""
        return {_WIRE_NAMES[k]: v for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: Mapping) -> "StrategyParameters":
        """Build parameters from a wire (camelCase) or snake_case mapping.

        Every field is required. Raises ``ValidationError`` listing missing
        fields. Integral window fields are coerced to ``int``; the values are
        not range-checked here (see :meth:`validate`).
        """
        values: dict = {}
        missing: list[str] = []
        for name, wire in _WIRE_NAMES.items():
            if wire in data:
                values[name] = data[wire]
            elif name in data:
                values[name] = data[name]
            else:
                missing.append(wire)
        if missing:
            raise ValidationError([f"missing field: {m}" for m in missing])

        for name, (_, _, integral) in PARAMETER_RANGES.items():
            value = values[name]
            if (
                integral
                and isinstance(value, float)
                and value.is_integer()
            ):
                values[name] = int(value)
        return cls(**values)


# ── Signal ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Signal:
    """A trading recommendation for one symbol.

    ``synthetic`` is ``True`` when the signal was computed from locally
    synthesized bars rather than market data.
    """

    symbol: str
    action: Action
    confidence: float
    stop_loss: float
    take_profit: float
    timestamp: datetime
    synthetic: bool = False

    def as_synthetic(self) -> "Signal":
        return replace(self, synthetic=True)

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "action": self.action,
            "confidence": self.confidence,
            "stopLoss": self.stop_loss,
            "takeProfit": self.take_profit,
            "timestamp": self.timestamp.isoformat(),
            "synthetic": self.synthetic,
        }
