"""Broker bridge REST client (async).

Talks JSON to the bridge process that fronts the trading terminal:
market signals, order execution, connection status, open trades and
account metrics.

Failure contract:
    - ``fetch_signal`` raises ``CollaboratorUnavailable`` on any failure.
    - ``execute`` never raises; failures come back as ``ExecutionFailure``.
    - ``get_status`` never raises; failures report ``connected=False``.
    - ``list_open_trades`` and ``get_account_metrics`` raise
      ``CollaboratorUnavailable`` on any failure.
"""

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Optional

import httpx

from fxpilot.broker.models import (
    AccountMetrics,
    BrokerStatus,
    ExecutionFailure,
    ExecutionRequest,
    ExecutionResult,
    ExecutionTicket,
    OpenTrade,
)
from fxpilot.config import Config
from fxpilot.errors import CollaboratorUnavailable
from fxpilot.strategy.models import ACTIONS, Signal

logger = logging.getLogger("fxpilot.bridge")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 1.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}
_TIMEOUT = 10.0


def _parse_time(raw: str) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) as aware UTC."""
    if not isinstance(raw, str):
        raise TypeError(f"timestamp must be an ISO-8601 string, got {raw!r}")
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class BridgeClient:
    """Async client for the broker bridge.

    Implements both ``MarketDataSource`` and ``ExecutionAdapter``.
    """

    def __init__(self, config: Config) -> None:
        self._config = config
        self._base_url = config.bridge_url
        self._headers = {
            "Authorization": f"Bearer {config.bridge_token}",
            "Content-Type": "application/json",
        }

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        retries: int = _MAX_RETRIES,
        **kwargs,
    ) -> httpx.Response:
        """Execute an HTTP request with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504), rate-limits
        (429) and transport errors.  Other HTTP errors are raised
        immediately.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(retries):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await getattr(client, method)(
                        url,
                        headers=self._headers,
                        timeout=_TIMEOUT,
                        **kwargs,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    if attempt + 1 < retries:
                        delay = _RETRY_BASE_DELAY * (2 ** attempt)
                        logger.warning(
                            "Bridge %s %s returned %d, retry %d/%d in %.1fs",
                            method.upper(), url, resp.status_code,
                            attempt + 1, retries, delay,
                        )
                        await asyncio.sleep(delay)
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                last_exc = exc
                if attempt + 1 < retries:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "Bridge %s %s transport error (%s), retry %d/%d in %.1fs",
                        method.upper(), url, exc,
                        attempt + 1, retries, delay,
                    )
                    await asyncio.sleep(delay)

        # Retries exhausted
        raise last_exc  # type: ignore[misc]

    # ── Market data ──────────────────────────────────────────────────────

    async def fetch_signal(self, symbol: str) -> Signal:
        """Fetch the bridge's current signal for *symbol*.

        Raises:
            CollaboratorUnavailable: on transport/HTTP errors or a payload
                that does not describe a valid signal.
        """
        url = f"{self._base_url}/signal"
        try:
            resp = await self._request_with_retry("get", url, params={"symbol": symbol})
            data = resp.json()
            action = str(data["action"]).upper()
            confidence = float(data["confidence"])
            if action not in ACTIONS:
                raise ValueError(f"unknown action {data['action']!r}")
            if not 0.0 <= confidence <= 1.0:
                raise ValueError(f"confidence out of range: {confidence}")
            stop_loss = float(data["stopLoss"])
            take_profit = float(data["takeProfit"])
            if not (math.isfinite(stop_loss) and math.isfinite(take_profit)):
                raise ValueError("stopLoss and takeProfit must be finite")
            return Signal(
                symbol=str(data.get("symbol", symbol)),
                action=action,
                confidence=confidence,
                stop_loss=stop_loss,
                take_profit=take_profit,
                timestamp=_parse_time(data["timestamp"]),
            )
        except httpx.HTTPError as exc:
            raise CollaboratorUnavailable(f"Bridge signal request failed: {exc}") from exc
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise CollaboratorUnavailable(f"Bridge returned a malformed signal: {exc}") from exc

    # ── Execution ────────────────────────────────────────────────────────

    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Submit *request* as a market order with SL/TP.

        Orders are sent once (no retry) so a lost response cannot turn
        into a duplicate position.
        """
        url = f"{self._base_url}/orders"
        try:
            resp = await self._request_with_retry(
                "post", url, retries=1, json=request.to_dict(),
            )
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status in (401, 403):
                return ExecutionFailure(
                    reason="auth",
                    diagnostic=f"Bridge rejected credentials (HTTP {status}).",
                )
            return ExecutionFailure(
                reason="rejected",
                diagnostic=f"Bridge rejected order (HTTP {status}): {exc.response.text[:200]}",
            )
        except httpx.HTTPError as exc:
            return ExecutionFailure(
                reason="transport",
                diagnostic=f"Bridge unreachable: {exc}",
            )

        try:
            ticket = resp.json()["ticket"]
        except (KeyError, TypeError, ValueError):
            ticket = None
        if ticket in (None, ""):
            return ExecutionFailure(
                reason="bad_response",
                diagnostic="Bridge response did not include a ticket.",
            )
        logger.info("Order filled: %s %s ticket=%s", request.action, request.symbol, ticket)
        return ExecutionTicket(ticket=str(ticket))

    # ── Status / positions ───────────────────────────────────────────────

    async def get_status(self) -> BrokerStatus:
        """Return the bridge's connection status (disconnected on failure)."""
        url = f"{self._base_url}/status"
        try:
            resp = await self._request_with_retry("get", url, retries=1)
            data = resp.json()
            return BrokerStatus(
                connected=bool(data.get("connected", False)),
                account_id=data.get("accountId"),
                broker=data.get("broker"),
                last_sync=data.get("lastSync"),
            )
        except (httpx.HTTPError, AttributeError, ValueError) as exc:
            logger.debug("Bridge status unavailable: %s", exc)
            return BrokerStatus(connected=False)

    async def list_open_trades(self) -> list[OpenTrade]:
        """Return all open trades on the account."""
        url = f"{self._base_url}/trades"
        try:
            resp = await self._request_with_retry("get", url)
            trades: list[OpenTrade] = []
            for t in resp.json():
                trades.append(
                    OpenTrade(
                        ticket=str(t["ticket"]),
                        symbol=t["symbol"],
                        action=t["action"],
                        volume=float(t.get("volume", 0)),
                        open_price=float(t.get("openPrice", 0)),
                        current_price=_optional_float(t.get("currentPrice")),
                        profit=_optional_float(t.get("profit")),
                        opened_at=t.get("openedAt"),
                    )
                )
            return trades
        except httpx.HTTPError as exc:
            raise CollaboratorUnavailable(f"Bridge trades request failed: {exc}") from exc
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise CollaboratorUnavailable(f"Bridge returned malformed trades: {exc}") from exc

    async def get_account_metrics(self) -> AccountMetrics:
        """Return balance, equity and performance figures for the account."""
        url = f"{self._base_url}/metrics"
        try:
            resp = await self._request_with_retry("get", url)
            data = resp.json()
            return AccountMetrics(
                balance=float(data["balance"]),
                equity=float(data["equity"]),
                daily_return_pct=float(data["dailyReturnPct"]),
                win_rate=float(data["winRate"]),
                max_drawdown_pct=float(data["maxDrawdownPct"]),
            )
        except httpx.HTTPError as exc:
            raise CollaboratorUnavailable(f"Bridge metrics request failed: {exc}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise CollaboratorUnavailable(f"Bridge returned malformed metrics: {exc}") from exc


def _optional_float(value) -> Optional[float]:
    return None if value is None else float(value)
