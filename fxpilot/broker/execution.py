"""Collaborator contracts — market data, execution, and the guarded boundary.

The autopilot only talks to brokers through these protocols. Execution is
required to be non-throwing from the core's point of view; ``guarded_execute``
enforces that for any adapter.
"""

import logging
from typing import Protocol, runtime_checkable

from fxpilot.broker.models import (
    AccountMetrics,
    BrokerStatus,
    ExecutionFailure,
    ExecutionRequest,
    ExecutionResult,
    ExecutionTicket,
    OpenTrade,
)
from fxpilot.errors import CollaboratorUnavailable
from fxpilot.strategy.models import Signal

logger = logging.getLogger("fxpilot")

NOT_CONFIGURED_DIAGNOSTIC = "Execution fallback - check broker bridge credentials."


@runtime_checkable
class MarketDataSource(Protocol):
    """Supplies market-derived signals for a symbol."""

    async def fetch_signal(self, symbol: str) -> Signal:
        """Return a signal or raise ``CollaboratorUnavailable``."""
        ...


@runtime_checkable
class ExecutionAdapter(Protocol):
    """Submits orders to a broker."""

    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Return a ticket or an ``ExecutionFailure``; never raise."""
        ...


async def guarded_execute(
    adapter: ExecutionAdapter,
    request: ExecutionRequest,
) -> ExecutionResult:
    """Call ``adapter.execute`` and translate any exception into a failure."""
    try:
        result = await adapter.execute(request)
    except Exception as exc:
        logger.warning(
            "Execution adapter raised for %s %s: %s",
            request.action, request.symbol, exc,
        )
        return ExecutionFailure(reason="error", diagnostic=str(exc) or type(exc).__name__)

    if not isinstance(result, (ExecutionTicket, ExecutionFailure)):
        return ExecutionFailure(
            reason="bad_response",
            diagnostic=f"Execution adapter returned {result!r}",
        )
    return result


class OfflineBroker:
    """Broker used when no bridge is configured.

    Market data, positions and metrics are always unavailable (so the
    autopilot falls back to synthetic bars) and every execution fails with
    a diagnostic.
    """

    async def fetch_signal(self, symbol: str) -> Signal:
        raise CollaboratorUnavailable("No broker bridge configured")

    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        return ExecutionFailure(
            reason="not_configured",
            diagnostic=NOT_CONFIGURED_DIAGNOSTIC,
        )

    async def get_status(self) -> BrokerStatus:
        return BrokerStatus(connected=False)

    async def list_open_trades(self) -> list[OpenTrade]:
        raise CollaboratorUnavailable("No broker bridge configured")

    async def get_account_metrics(self) -> AccountMetrics:
        raise CollaboratorUnavailable("No broker bridge configured")
