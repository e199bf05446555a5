"""Internal API routers — strategy, autopilot, signal, execute, status, trades, metrics.

No business logic. Delegates to the parameter store, broker, and autopilot
manager injected at startup.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from fxpilot.autopilot import obtain_signal
from fxpilot.broker.execution import guarded_execute
from fxpilot.broker.models import ExecutionRequest, ExecutionTicket
from fxpilot.errors import SignalError, ValidationError
from fxpilot.state import ParameterStore
from fxpilot.strategy.models import ACTIONS, HOLD

logger = logging.getLogger("fxpilot")
router = APIRouter()

# ── Dependencies (set during app startup) ────────────────────────────────

_store: Optional[ParameterStore] = None
_broker = None
_autopilot_manager = None
_fallback_bar_count: int = 120


def configure_routers(
    store: ParameterStore,
    broker=None,
    autopilot_manager=None,
    fallback_bar_count: int = 120,
) -> None:
    """Inject dependencies from the application startup.

    Args:
        store: The process-wide ``ParameterStore``.
        broker: Bridge client or offline broker.
        autopilot_manager: ``AutopilotManager`` for status and history.
        fallback_bar_count: Synthetic bar count for ``/signal`` fallbacks.
    """
    global _store, _broker, _autopilot_manager, _fallback_bar_count  # noqa: PLW0603
    _store = store
    _broker = broker
    _autopilot_manager = autopilot_manager
    _fallback_bar_count = fallback_bar_count


def _get_store() -> ParameterStore:
    if _store is None:
        raise RuntimeError("Routers not configured: call configure_routers() first")
    return _store


def _bad_request(error: str, errors: Optional[list[str]] = None) -> JSONResponse:
    content: dict = {"error": error}
    if errors:
        content["errors"] = errors
    return JSONResponse(content, status_code=400)


# ── Strategy ─────────────────────────────────────────────────────────────


@router.get("/strategy")
async def get_strategy():
    """Return the active strategy parameters."""
    return _get_store().get_strategy().to_dict()


@router.post("/strategy")
async def post_strategy(body: dict):
    """Replace the active strategy.  Rejected payloads change nothing."""
    try:
        committed = _get_store().update_strategy(body)
    except ValidationError as exc:
        return _bad_request("Invalid strategy payload", exc.errors)
    return committed.to_dict()


# ── Autopilot ────────────────────────────────────────────────────────────


@router.get("/autopilot")
async def get_autopilot():
    return {"enabled": _get_store().get_autopilot_state()}


@router.post("/autopilot")
async def post_autopilot(body: dict):
    """Engage or disengage the autopilot: ``{"enabled": bool}``."""
    enabled = body.get("enabled")
    if not isinstance(enabled, bool):
        return _bad_request("Invalid toggle payload")
    _get_store().set_autopilot_state(enabled)
    return {"enabled": enabled}


@router.get("/autopilot/history")
async def get_autopilot_history(
    limit: int = Query(default=20, ge=1, le=50),
    symbol: Optional[str] = Query(default=None),
):
    """Return recent autopilot cycle records, newest first."""
    if _autopilot_manager is None:
        return {"cycles": []}
    records: list[dict] = []
    for sym, loop in _autopilot_manager.loops.items():
        if symbol is None or sym == symbol.upper():
            records.extend(loop.history(limit))
    records.sort(key=lambda r: r.get("evaluated_at", ""), reverse=True)
    return {"cycles": records[:limit]}


# ── Signal / execution ───────────────────────────────────────────────────


@router.get("/signal")
async def get_signal(symbol: str = Query(default="EURUSD")):
    """Return the current signal, falling back to synthetic bars."""
    symbol = symbol.upper()
    try:
        signal = await obtain_signal(
            _broker,
            symbol,
            _get_store().get_strategy(),
            fallback_bar_count=_fallback_bar_count,
        )
    except (SignalError, ValidationError) as exc:
        return JSONResponse({"error": str(exc)}, status_code=422)
    return signal.to_dict()


def _parse_execution_request(body: dict) -> ExecutionRequest:
    """Build an ``ExecutionRequest`` from the wire payload.

    Raises ``ValueError`` naming the first bad field.
    """
    symbol = body.get("symbol")
    if not isinstance(symbol, str) or not symbol:
        raise ValueError("symbol is required")
    action = body.get("action")
    if action not in ACTIONS:
        raise ValueError(f"action must be one of {', '.join(ACTIONS)}")

    numbers = {}
    for field in ("stopLoss", "takeProfit", "confidence"):
        value = body.get(field)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{field} must be a number")
        if not math.isfinite(value):
            raise ValueError(f"{field} must be finite")
        numbers[field] = float(value)
    if not 0.0 <= numbers["confidence"] <= 1.0:
        raise ValueError("confidence must be 0.0–1.0")

    raw_ts = body.get("timestamp")
    if raw_ts is None:
        timestamp = datetime.now(timezone.utc)
    else:
        timestamp = datetime.fromisoformat(str(raw_ts).replace("Z", "+00:00"))

    return ExecutionRequest(
        symbol=symbol.upper(),
        action=action,
        stop_loss=numbers["stopLoss"],
        take_profit=numbers["takeProfit"],
        confidence=numbers["confidence"],
        timestamp=timestamp,
    )


@router.post("/execute")
async def post_execute(body: dict):
    """Submit a signal for execution.

    Broker problems are never an HTTP error: the response is
    ``{"ticket": "..."}`` or ``{"ticket": null, "error": "..."}``.
    """
    try:
        request = _parse_execution_request(body)
    except ValueError as exc:
        return _bad_request("Invalid execution payload", [str(exc)])

    if request.action == HOLD:
        return {"ticket": None, "error": "HOLD signals are not executable."}
    if _broker is None:
        return {"ticket": None, "error": "No broker configured."}

    result = await guarded_execute(_broker, request)
    if isinstance(result, ExecutionTicket):
        return {"ticket": result.ticket}
    return {"ticket": None, "error": result.diagnostic}


# ── Status ───────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status():
    """Return broker connection status and autopilot loop status."""
    broker_status = {
        "connected": False,
        "accountId": None,
        "broker": None,
        "lastSync": None,
    }
    get_broker_status = getattr(_broker, "get_status", None)
    if get_broker_status is not None:
        try:
            status = await get_broker_status()
            broker_status = {
                "connected": status.connected,
                "accountId": status.account_id,
                "broker": status.broker,
                "lastSync": status.last_sync,
            }
        except Exception as exc:
            logger.debug("Broker status unavailable: %s", exc)

    autopilot = (
        _autopilot_manager.get_status()
        if _autopilot_manager is not None
        else {"engaged": _get_store().get_autopilot_state(), "loops": {}}
    )
    return {**broker_status, "autopilot": autopilot}


# ── Trades / metrics ─────────────────────────────────────────────────────


@router.get("/trades")
async def get_trades():
    """Return open positions; ``connected`` is false when the bridge is down."""
    list_open_trades = getattr(_broker, "list_open_trades", None)
    if list_open_trades is None:
        return {"connected": False, "trades": []}
    try:
        trades = await list_open_trades()
    except Exception as exc:
        logger.warning("Open trades unavailable: %s", exc)
        return {"connected": False, "trades": []}
    return {"connected": True, "trades": [t.to_dict() for t in trades]}


@router.get("/metrics")
async def get_metrics():
    """Return account metrics, or ``metrics: null`` when the bridge is down."""
    get_account_metrics = getattr(_broker, "get_account_metrics", None)
    if get_account_metrics is None:
        return {"connected": False, "metrics": None}
    try:
        metrics = await get_account_metrics()
    except Exception as exc:
        logger.warning("Account metrics unavailable: %s", exc)
        return {"connected": False, "metrics": None}
    return {"connected": True, "metrics": metrics.to_dict()}
