"""Broker data models — execution requests/results and bridge status."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from fxpilot.strategy.models import Action, Signal


@dataclass(frozen=True)
class ExecutionRequest:
    """An order proposal derived from a signal."""

    symbol: str
    action: Action
    stop_loss: float
    take_profit: float
    confidence: float
    timestamp: datetime

    @classmethod
    def from_signal(cls, signal: Signal) -> "ExecutionRequest":
        return cls(
            symbol=signal.symbol,
            action=signal.action,
            stop_loss=signal.stop_loss,
            take_profit=signal.take_profit,
            confidence=signal.confidence,
            timestamp=signal.timestamp,
        )

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "action": self.action,
            "stopLoss": self.stop_loss,
            "takeProfit": self.take_profit,
            "confidence": self.confidence,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class ExecutionTicket:
    """Successful execution — the broker's ticket identifier."""

    ticket: str

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ExecutionFailure:
    """Failed execution with a human-readable diagnostic.

    ``reason`` is a short slug (``transport``, ``auth``, ``rejected``,
    ``bad_response``, ``not_configured``, ``error``).
    """

    reason: str
    diagnostic: str

    @property
    def ok(self) -> bool:
        return False


ExecutionResult = Union[ExecutionTicket, ExecutionFailure]


@dataclass(frozen=True)
class BrokerStatus:
    """Connection state reported by the broker bridge."""

    connected: bool
    account_id: Optional[str] = None
    broker: Optional[str] = None
    last_sync: Optional[str] = None


@dataclass(frozen=True)
class OpenTrade:
    """An open position as reported by the bridge."""

    ticket: str
    symbol: str
    action: str  # "BUY" or "SELL"
    volume: float
    open_price: float
    current_price: Optional[float] = None
    profit: Optional[float] = None
    opened_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "ticket": self.ticket,
            "symbol": self.symbol,
            "action": self.action,
            "volume": self.volume,
            "openPrice": self.open_price,
            "currentPrice": self.current_price,
            "profit": self.profit,
            "openedAt": self.opened_at,
        }


@dataclass(frozen=True)
class AccountMetrics:
    """Account balance and performance figures reported by the bridge."""

    balance: float
    equity: float
    daily_return_pct: float
    win_rate: float
    max_drawdown_pct: float

    def to_dict(self) -> dict:
        return {
            "balance": self.balance,
            "equity": self.equity,
            "dailyReturnPct": self.daily_return_pct,
            "winRate": self.win_rate,
            "maxDrawdownPct": self.max_drawdown_pct,
        }
