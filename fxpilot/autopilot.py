"""FXPilot — Autopilot loop (orchestration).

Connects the parameter store, signal source, and execution adapter into a
single supervised polling loop for one symbol.

While engaged, each cycle obtains a signal (market data first, synthetic
bars on failure), decides, and submits at most one execution request.
While disengaged, the loop only runs a passive monitoring heartbeat.
"""

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Optional

import numpy as np

from fxpilot.broker.execution import guarded_execute
from fxpilot.broker.models import BrokerStatus, ExecutionRequest, ExecutionTicket
from fxpilot.config import Config
from fxpilot.errors import FXPilotError, SignalError, ValidationError
from fxpilot.state import ParameterStore
from fxpilot.strategy.models import HOLD, Signal, StrategyParameters
from fxpilot.strategy.signal_engine import compute_signal
from fxpilot.strategy.synthetic import synthesize_bars

logger = logging.getLogger("fxpilot.autopilot")

HISTORY_LIMIT = 50


async def obtain_signal(
    broker,
    symbol: str,
    params: StrategyParameters,
    fallback_bar_count: int = 120,
    rng: Optional[np.random.Generator] = None,
) -> Signal:
    """Fetch a market signal for *symbol*, or compute one from synthetic bars.

    Any market-data failure (including a signal for the wrong symbol) falls
    back to ``max(fallback_bar_count, params.long_window)`` synthesized bars;
    the resulting signal has ``synthetic=True``.

    Raises:
        SignalError / ValidationError: the fallback computation failed.
    """
    try:
        signal = await broker.fetch_signal(symbol)
        if signal.symbol != symbol:
            raise FXPilotError(f"market data returned {signal.symbol} for {symbol}")
        return signal
    except Exception as exc:
        logger.warning("%s market data unavailable (%s); using synthetic bars.", symbol, exc)

    count = max(fallback_bar_count, params.long_window)
    bars = synthesize_bars(symbol, count=count, rng=rng)
    return compute_signal(symbol, bars, params).as_synthetic()


class AutopilotLoop:
    """Runs the poll → decide → maybe execute cycle for one symbol.

    Args:
        config: Application configuration (intervals, threshold).
        store: Shared ``ParameterStore``; read once per cycle.
        broker: Object implementing ``fetch_signal`` and ``execute``.
            ``get_status`` and ``list_open_trades`` are used when present.
        symbol: Instrument this loop trades.  Defaults to the config's
            first symbol.
        rng: Noise source for fallback bars (seed it in tests).
        tick: Granularity, in seconds, of the interruptible sleep.
    """

    def __init__(
        self,
        config: Config,
        store: ParameterStore,
        broker,
        symbol: Optional[str] = None,
        rng: Optional[np.random.Generator] = None,
        tick: float = 1.0,
    ) -> None:
        self._config = config
        self._store = store
        self._broker = broker
        self._symbol = symbol or config.default_symbol
        self._rng = rng if rng is not None else np.random.default_rng()
        self._tick = tick
        self._running: bool = False
        self._cycle_count: int = 0
        self._history: deque[dict] = deque(maxlen=HISTORY_LIMIT)
        self._last_signal: Optional[Signal] = None
        self._broker_status: Optional[BrokerStatus] = None
        self._last_heartbeat: Optional[str] = None

    # ── Observability ────────────────────────────────────────────────────

    @property
    def symbol(self) -> str:
        return self._symbol

    @property
    def running(self) -> bool:
        return self._running

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def last_signal(self) -> Optional[Signal]:
        return self._last_signal

    @property
    def broker_status(self) -> Optional[BrokerStatus]:
        return self._broker_status

    def history(self, limit: int = HISTORY_LIMIT) -> list[dict]:
        """Recent cycle records, newest first."""
        records = list(self._history)[-limit:]
        records.reverse()
        return records

    def get_status(self) -> dict:
        return {
            "symbol": self._symbol,
            "running": self._running,
            "engaged": self._store.get_autopilot_state(),
            "cycle_count": self._cycle_count,
            "last_heartbeat": self._last_heartbeat,
            "last_signal": self._last_signal.to_dict() if self._last_signal else None,
        }

    # ── Lifecycle ────────────────────────────────────────────────────────

    def stop(self) -> None:
        """Signal the loop to stop after the current iteration."""
        self._running = False

    async def run(self, max_iterations: int = 0) -> list[dict]:
        """Run until stopped.

        Engaged iterations run a cycle and wait
        ``autopilot_interval_seconds``; disengaged iterations run the
        monitoring heartbeat and wait ``monitor_interval_seconds``.  Waits
        end early when the autopilot flag flips or ``stop()`` is called.

        Args:
            max_iterations: Stop after this many iterations (0 = unlimited).

        Returns:
            Per-cycle result dicts from engaged iterations.
        """
        self._running = True
        results: list[dict] = []
        iteration = 0

        while self._running:
            iteration += 1
            engaged = self._store.get_autopilot_state()

            if engaged:
                try:
                    result = await self.run_once()
                except Exception as exc:
                    logger.error("%s cycle error: %s", self._symbol, exc)
                    result = self._record({"status": "error", "reason": str(exc)})
                results.append(result)
                interval = self._config.autopilot_interval_seconds
            else:
                await self._monitor()
                interval = self._config.monitor_interval_seconds

            if max_iterations > 0 and iteration >= max_iterations:
                break

            await self._interruptible_sleep(interval, engaged)

        self._running = False
        return results

    async def _interruptible_sleep(self, seconds: float, engaged: bool) -> None:
        """Sleep in ticks; wake when stopped or the autopilot flag flips."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + seconds
        while self._running:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return
            await asyncio.sleep(min(self._tick, remaining))
            if self._store.get_autopilot_state() != engaged:
                return

    async def _monitor(self) -> None:
        """Passive heartbeat while disengaged: refresh broker status."""
        self._last_heartbeat = datetime.now(timezone.utc).isoformat()
        get_status = getattr(self._broker, "get_status", None)
        if get_status is None:
            return
        try:
            self._broker_status = await get_status()
        except Exception as exc:
            logger.debug("%s status check failed: %s", self._symbol, exc)
            self._broker_status = BrokerStatus(connected=False)

    # ── Single cycle ─────────────────────────────────────────────────────

    async def run_once(self) -> dict:
        """Execute one autopilot cycle.

        Returns a dict describing the outcome:

        - ``{"status": "skipped", "reason": "..."}``
        - ``{"status": "discarded", "reason": "disengaged"}``
        - ``{"status": "executed", "ticket": "..."}``
        - ``{"status": "execution_failed", "diagnostic": "..."}``
        """
        params, engaged = self._store.snapshot()
        if not engaged:
            return {"status": "skipped", "reason": "disengaged", "symbol": self._symbol}

        self._cycle_count += 1

        # 1 ── Signal (market data, else synthetic fallback)
        try:
            signal = await self._obtain_signal(params)
        except (SignalError, ValidationError) as exc:
            reason = getattr(exc, "reason", "invalid_strategy")
            logger.warning("%s signal unavailable (%s): %s", self._symbol, reason, exc)
            return self._record({"status": "skipped", "reason": reason, "detail": str(exc)})

        self._last_signal = signal
        base = {"signal": signal.to_dict()}

        # 2 ── Disengaged while we were waiting on the network?
        if not self._store.get_autopilot_state():
            logger.info("%s autopilot disengaged mid-cycle; discarding signal.", self._symbol)
            return self._record({**base, "status": "discarded", "reason": "disengaged"})

        # 3 ── Decision
        if signal.action == HOLD:
            return self._record({**base, "status": "skipped", "reason": "hold"})
        if signal.confidence < self._config.execution_threshold:
            return self._record({**base, "status": "skipped", "reason": "low_confidence"})

        # 4 ── Position guard
        if await self._at_position_limit(params):
            return self._record({**base, "status": "skipped", "reason": "max_concurrent_positions"})

        if not self._store.get_autopilot_state():
            logger.info("%s autopilot disengaged before execution; discarding signal.", self._symbol)
            return self._record({**base, "status": "discarded", "reason": "disengaged"})

        # 5 ── Execute (committed from here on)
        request = ExecutionRequest.from_signal(signal)
        result = await guarded_execute(self._broker, request)

        if isinstance(result, ExecutionTicket):
            return self._record({**base, "status": "executed", "ticket": result.ticket})

        logger.warning(
            "%s execution failed (%s): %s", self._symbol, result.reason, result.diagnostic,
        )
        return self._record({
            **base,
            "status": "execution_failed",
            "reason": result.reason,
            "diagnostic": result.diagnostic,
        })

    async def _obtain_signal(self, params: StrategyParameters) -> Signal:
        return await obtain_signal(
            self._broker,
            self._symbol,
            params,
            fallback_bar_count=self._config.fallback_bar_count,
            rng=self._rng,
        )

    async def _at_position_limit(self, params: StrategyParameters) -> bool:
        list_open_trades = getattr(self._broker, "list_open_trades", None)
        if list_open_trades is None:
            return False
        try:
            trades = await list_open_trades()
        except Exception as exc:
            # Can't check; the broker enforces its own limits
            logger.debug("%s could not list open trades: %s", self._symbol, exc)
            return False
        open_count = sum(1 for t in trades if t.symbol == self._symbol)
        return open_count >= params.max_concurrent_positions

    def _record(self, outcome: dict) -> dict:
        outcome.setdefault("symbol", self._symbol)
        outcome["evaluated_at"] = datetime.now(timezone.utc).isoformat()
        self._history.append(outcome)
        logger.info(
            "%s cycle %d: %s%s",
            self._symbol,
            self._cycle_count,
            outcome["status"],
            f" ({outcome['reason']})" if outcome.get("reason") else "",
        )
        return outcome
