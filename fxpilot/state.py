"""Parameter store — active strategy parameters and the autopilot flag.

One instance is created at startup and handed to the autopilot loops and
the API routers. All access goes through the methods below; updates
replace the whole ``StrategyParameters`` object under a lock, so readers
see either the old or the new value, never a mix.
"""

import logging
import threading
from typing import Mapping, Union

from fxpilot.errors import ValidationError
from fxpilot.strategy.models import StrategyParameters

logger = logging.getLogger("fxpilot")


class ParameterStore:
    """Thread-safe holder for the strategy configuration and autopilot flag.

    Args:
        strategy: Initial parameters (defaults to ``StrategyParameters()``).
            Validated like any update.
    """

    def __init__(self, strategy: StrategyParameters | None = None) -> None:
        initial = strategy if strategy is not None else StrategyParameters()
        errors = initial.validate()
        if errors:
            raise ValidationError(errors)
        self._lock = threading.Lock()
        self._strategy = initial
        self._autopilot_enabled = False

    # ── Strategy ─────────────────────────────────────────────────────────

    def get_strategy(self) -> StrategyParameters:
        with self._lock:
            return self._strategy

    def update_strategy(
        self,
        candidate: Union[StrategyParameters, Mapping],
    ) -> StrategyParameters:
        """Validate *candidate* and commit it as the active strategy.

        Accepts a ``StrategyParameters`` or a mapping (camelCase or
        snake_case keys).  On any violation raises ``ValidationError`` with
        every problem listed; the committed value is left untouched.

        Returns:
            The committed parameters.
        """
        if not isinstance(candidate, StrategyParameters):
            candidate = StrategyParameters.from_dict(candidate)

        errors = candidate.validate()
        if errors:
            logger.warning("Rejected strategy update: %s", "; ".join(errors))
            raise ValidationError(errors)

        with self._lock:
            self._strategy = candidate
        logger.info("Strategy updated: %s", candidate)
        return candidate

    # ── Autopilot ────────────────────────────────────────────────────────

    def get_autopilot_state(self) -> bool:
        with self._lock:
            return self._autopilot_enabled

    def set_autopilot_state(self, enabled: bool) -> None:
        """Engage (``True``) or disengage (``False``) the autopilot."""
        if not isinstance(enabled, bool):
            raise TypeError(f"enabled must be a bool, got {enabled!r}")
        with self._lock:
            changed = self._autopilot_enabled != enabled
            self._autopilot_enabled = enabled
        if changed:
            logger.info("Autopilot %s.", "engaged" if enabled else "disengaged")

    def snapshot(self) -> tuple[StrategyParameters, bool]:
        """Return ``(strategy, autopilot_enabled)`` read atomically."""
        with self._lock:
            return self._strategy, self._autopilot_enabled
