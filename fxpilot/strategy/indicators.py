"""Technical indicators — SMA and ATR. Pure functions, no I/O."""

from typing import Sequence

from fxpilot.strategy.models import PriceBar


def calculate_sma(bars: Sequence[PriceBar], period: int) -> float:
    """Simple moving average of ``close`` over the last *period* bars.

    Raises ``ValueError`` if fewer than *period* bars are provided.
    """
    if period <= 0:
        raise ValueError(f"period must be positive, got {period}")
    if len(bars) < period:
        raise ValueError(
            f"Need at least {period} bars for SMA({period}), got {len(bars)}"
        )
    window = bars[-period:]
    return sum(b.close for b in window) / period


def calculate_atr(bars: Sequence[PriceBar], period: int) -> float:
    """Average True Range over the last *period* bars.

    Uses the standard True Range definition:
        TR = max(high - low, |high - prev_close|, |low - prev_close|)

    Requires at least ``period + 1`` bars (need a previous close for TR).

    Raises ``ValueError`` if insufficient data.
    """
    if period <= 0:
        raise ValueError(f"period must be positive, got {period}")
    if len(bars) < period + 1:
        raise ValueError(
            f"Need at least {period + 1} bars for ATR({period}), "
            f"got {len(bars)}"
        )

    true_ranges: list[float] = []
    for i in range(len(bars) - period, len(bars)):
        high = bars[i].high
        low = bars[i].low
        prev_close = bars[i - 1].close
        true_ranges.append(
            max(high - low, abs(high - prev_close), abs(low - prev_close))
        )
    return sum(true_ranges) / period
