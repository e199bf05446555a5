"""AutopilotManager — runs one AutopilotLoop per symbol concurrently.

Every loop shares the same ``ParameterStore`` (read-only snapshots) and
broker, and nothing else.  Loops run as concurrent ``asyncio`` tasks and
can be stopped individually or en masse.
"""

import asyncio
import logging
from typing import Optional

from fxpilot.autopilot import AutopilotLoop
from fxpilot.config import Config
from fxpilot.state import ParameterStore

logger = logging.getLogger("fxpilot.autopilot_manager")


class AutopilotManager:
    """Lifecycle manager for one-or-many autopilot loops.

    Args:
        config:  Global ``Config`` loaded from ``.env``.
        store:   Shared ``ParameterStore``.
        broker:  Shared broker (bridge client or offline broker).
        symbols: Symbols to trade; defaults to ``config.symbols``.
    """

    def __init__(
        self,
        config: Config,
        store: ParameterStore,
        broker,
        symbols: Optional[list[str]] = None,
    ) -> None:
        self._config = config
        self._store = store
        self._broker = broker
        self._symbols = list(dict.fromkeys(symbols or config.symbols))
        self._loops: dict[str, AutopilotLoop] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    # ── Public API ───────────────────────────────────────────────────────

    @property
    def loops(self) -> dict[str, AutopilotLoop]:
        """Map of symbol → ``AutopilotLoop``."""
        return dict(self._loops)

    @property
    def symbols(self) -> list[str]:
        return list(self._loops.keys())

    def build_loops(self) -> None:
        """Instantiate an ``AutopilotLoop`` per symbol.  Call once."""
        for symbol in self._symbols:
            self._loops[symbol] = AutopilotLoop(
                config=self._config,
                store=self._store,
                broker=self._broker,
                symbol=symbol,
            )
            logger.info("Registered autopilot loop for %s", symbol)

    async def run_all(self, max_iterations: int = 0) -> dict[str, list[dict]]:
        """Launch every loop concurrently and wait for them to finish.

        Returns:
            ``{symbol: [cycle_results]}`` for every loop.
        """
        if not self._loops:
            self.build_loops()

        tasks = {
            symbol: asyncio.create_task(loop.run(max_iterations=max_iterations))
            for symbol, loop in self._loops.items()
        }
        self._tasks = tasks

        results: dict[str, list[dict]] = {}
        for symbol, task in tasks.items():
            try:
                results[symbol] = await task
            except Exception as exc:  # pragma: no cover
                logger.error("Autopilot loop '%s' crashed: %s", symbol, exc)
                results[symbol] = [{"status": "error", "reason": str(exc)}]

        return results

    def stop_all(self) -> None:
        """Signal every loop to stop gracefully."""
        for symbol, loop in self._loops.items():
            loop.stop()
            logger.info("Stop signal sent to %s loop.", symbol)

    def stop_symbol(self, symbol: str) -> None:
        """Stop a single loop by symbol."""
        loop = self._loops.get(symbol)
        if loop:
            loop.stop()
            logger.info("Stop signal sent to %s loop.", symbol)

    def get_status(self, symbol: Optional[str] = None) -> dict:
        """Return aggregated or per-symbol loop status."""
        if symbol is not None:
            loop = self._loops.get(symbol)
            if loop is None:
                return {"error": f"Unknown symbol: {symbol}"}
            return loop.get_status()

        return {
            "engaged": self._store.get_autopilot_state(),
            "loops": {s: loop.get_status() for s, loop in self._loops.items()},
        }
