"""Signal engine — moving-average crossover with ATR-sized exits.

Pure function of ``(symbol, bars, params)``: no I/O, no clock, no
randomness. The same input always yields the same ``Signal``.

Algorithm:
    1. MA_short / MA_long = SMA(close) over the last short / long window.
    2. r = (MA_short − MA_long) / MA_long  (dimensionless spread).
    3. BUY if r > ACTIVATION_THRESHOLD, SELL if r < −ACTIVATION_THRESHOLD,
       HOLD otherwise.
    4. confidence = min(1, |r| / REFERENCE_SPREAD).
    5. Exits sized by ATR over the short window:
       BUY  → SL = p − atr, TP = p + atr × risk_reward
       SELL → SL = p + atr, TP = p − atr × risk_reward
       HOLD → SL = TP = p
"""

import math
from typing import Sequence

from fxpilot.errors import InsufficientHistory, InvalidMarketData, ValidationError
from fxpilot.strategy.indicators import calculate_atr, calculate_sma
from fxpilot.strategy.models import BUY, HOLD, SELL, PriceBar, Signal, StrategyParameters

# Versioned strategy defaults. Changing any of these changes the strategy,
# so bump STRATEGY_VERSION with them.
STRATEGY_VERSION = "sma-cross/1"
ACTIVATION_THRESHOLD = 0.0005  # 5 bps spread before a direction is taken
REFERENCE_SPREAD = 0.005  # 50 bps spread saturates confidence at 1.0
ATR_MULTIPLIER = 1.0  # stop distance in ATRs

# Spreads below this are float rounding from averaging identical closes
_SPREAD_EPSILON = 1e-12


def compute_signal(
    symbol: str,
    bars: Sequence[PriceBar],
    params: StrategyParameters,
) -> Signal:
    """Compute a trading signal from the trailing bars.

    Args:
        symbol: Instrument the bars belong to, e.g. ``"EURUSD"``.
        bars: Price bars, oldest-first, strictly increasing timestamps.
        params: Strategy parameters (windows and risk:reward).

    Returns:
        A fresh ``Signal`` stamped with the last bar's time.

    Raises:
        ValidationError: ``short_window >= long_window``.
        InsufficientHistory: fewer than ``long_window`` bars.
        InvalidMarketData: non-finite prices, out-of-order timestamps, or a
            zero long moving average.
    """
    if params.short_window >= params.long_window:
        raise ValidationError([
            f"short_window ({params.short_window}) must be less than "
            f"long_window ({params.long_window})"
        ])
    if len(bars) < params.long_window:
        raise InsufficientHistory(params.long_window, len(bars))

    window = list(bars[-params.long_window:])
    _check_window(window)

    ma_short = calculate_sma(window, params.short_window)
    ma_long = calculate_sma(window, params.long_window)
    if ma_long == 0:
        raise InvalidMarketData("Long moving average is zero")

    spread = (ma_short - ma_long) / ma_long
    if abs(spread) < _SPREAD_EPSILON:
        spread = 0.0

    if spread > ACTIVATION_THRESHOLD:
        action = BUY
    elif spread < -ACTIVATION_THRESHOLD:
        action = SELL
    else:
        action = HOLD

    confidence = min(1.0, abs(spread) / REFERENCE_SPREAD)

    price = window[-1].close
    atr = calculate_atr(window, params.short_window) * ATR_MULTIPLIER
    if not math.isfinite(atr):
        raise InvalidMarketData("ATR is not finite")

    if action == BUY:
        stop_loss = price - atr
        take_profit = price + atr * params.risk_reward
    elif action == SELL:
        stop_loss = price + atr
        take_profit = price - atr * params.risk_reward
    else:
        stop_loss = price
        take_profit = price

    return Signal(
        symbol=symbol,
        action=action,
        confidence=confidence,
        stop_loss=stop_loss,
        take_profit=take_profit,
        timestamp=window[-1].time,
    )


def _check_window(window: list[PriceBar]) -> None:
    """Reject bars that would make the averages meaningless."""
    prev_time = None
    for bar in window:
        for value in (bar.open, bar.high, bar.low, bar.close):
            if not math.isfinite(value):
                raise InvalidMarketData(f"Non-finite price in bar at {bar.time}")
        if prev_time is not None and bar.time <= prev_time:
            raise InvalidMarketData(
                f"Bar timestamps not increasing at {bar.time}"
            )
        prev_time = bar.time
