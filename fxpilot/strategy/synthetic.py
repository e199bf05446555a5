"""Fallback bar synthesizer.

Produces a usable bar series when the market-data source is down so the
signal engine still has input. The shape is a deterministic sine drift
around a per-symbol base price; only the micro-noise is random, drawn from
a seedable ``numpy`` generator so tests can pin it.

Signals computed from these bars must be flagged ``synthetic``.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Optional

import numpy as np

from fxpilot.strategy.models import PriceBar

DEFAULT_BAR_COUNT = 120
MAX_BAR_COUNT = 240
BAR_INTERVAL = timedelta(hours=1)

# Approximate reference prices; anything unknown is treated as a major pair
_BASE_PRICES: dict[str, float] = {
    "XAUUSD": 2300.0,
    "XAGUSD": 27.0,
    "USDJPY": 150.0,
    "EURJPY": 162.0,
    "GBPJPY": 190.0,
    "GBPUSD": 1.26,
    "EURUSD": 1.08,
}
_DEFAULT_BASE = 1.08

# Relative amplitudes (fractions of the base price)
_DRIFT_AMPLITUDE = 0.001
_DRIFT_PERIOD = 6.0
_CLOSE_NOISE = 0.0004
_OPEN_NOISE = 0.0004
_WICK_NOISE = 0.0007


def base_price(symbol: str) -> float:
    """Reference price for *symbol* (``EUR_USD`` and ``EURUSD`` both work)."""
    key = symbol.replace("_", "").replace("/", "").upper()
    return _BASE_PRICES.get(key, _DEFAULT_BASE)


def synthesize_bars(
    symbol: str,
    count: int = DEFAULT_BAR_COUNT,
    rng: Optional[np.random.Generator] = None,
    end: Optional[datetime] = None,
    interval: timedelta = BAR_INTERVAL,
) -> list[PriceBar]:
    """Generate *count* hourly bars ending one *interval* before *end*.

    Args:
        symbol: Instrument; selects the base price.
        count: Number of bars, clamped to ``[1, MAX_BAR_COUNT]``.
        rng: Noise source.  Defaults to an unseeded generator.
        end: Reference time (default: now, UTC).
        interval: Spacing between bars.

    Returns:
        Bars oldest-first with strictly increasing timestamps and
        ``low <= min(open, close) <= max(open, close) <= high``.
    """
    count = max(1, min(int(count), MAX_BAR_COUNT))
    if rng is None:
        rng = np.random.default_rng()
    if end is None:
        end = datetime.now(timezone.utc)

    base = base_price(symbol)
    noise = rng.random((count, 5))

    bars: list[PriceBar] = []
    for idx in range(count):
        u_close, u_open, u_high, u_low, u_vol = (float(x) for x in noise[idx])
        drift = math.sin(idx / _DRIFT_PERIOD) * _DRIFT_AMPLITUDE + u_close * _CLOSE_NOISE
        close = base * (1.0 + drift)
        open_ = close - base * u_open * _OPEN_NOISE
        high = max(open_, close) + base * u_high * _WICK_NOISE
        low = min(open_, close) - base * u_low * _WICK_NOISE
        bars.append(
            PriceBar(
                time=end - (count - idx) * interval,
                open=open_,
                high=high,
                low=low,
                close=close,
                volume=800.0 + u_vol * 200.0,
            )
        )
    return bars
