"""Tests for the autopilot loop orchestration.

Verifies the cycle: fetch signal → decide → execute, the synthetic
fallback, disengage handling, and loop resilience.
Uses mock brokers to avoid real bridge calls.
"""

import asyncio
from datetime import datetime, timezone

import numpy as np
import pytest

from fxpilot.autopilot import AutopilotLoop, obtain_signal
from fxpilot.broker.models import (
    BrokerStatus,
    ExecutionFailure,
    ExecutionTicket,
    OpenTrade,
)
from fxpilot.config import Config
from fxpilot.errors import CollaboratorUnavailable
from fxpilot.state import ParameterStore
from fxpilot.strategy.models import BUY, HOLD, SELL, Signal, StrategyParameters

NOW = datetime(2025, 2, 1, 12, 0, tzinfo=timezone.utc)


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_config(**overrides) -> Config:
    """Build a Config with sensible test defaults."""
    defaults = dict(
        bridge_url="",
        bridge_token="",
        symbols=("EURUSD",),
        autopilot_interval_seconds=0.01,
        monitor_interval_seconds=0.01,
        execution_threshold=0.6,
        fallback_bar_count=120,
        log_level="WARNING",
        api_port=8080,
    )
    defaults.update(overrides)
    return Config(**defaults)


def _signal(action=BUY, confidence=0.9, symbol="EURUSD") -> Signal:
    if action == BUY:
        sl, tp = 1.0800, 1.0900
    elif action == SELL:
        sl, tp = 1.0900, 1.0800
    else:
        sl = tp = 1.0850
    return Signal(
        symbol=symbol,
        action=action,
        confidence=confidence,
        stop_loss=sl,
        take_profit=tp,
        timestamp=NOW,
    )


class MockBroker:
    """Duck-typed bridge replacement for autopilot tests."""

    def __init__(self, signal=None, fail=False, result=None) -> None:
        self.signal = signal if signal is not None else _signal()
        self.fail = fail
        self.result = result if result is not None else ExecutionTicket("T-1")
        self.executed: list = []
        self.events: list[str] = []

    async def fetch_signal(self, symbol: str) -> Signal:
        self.events.append("fetch")
        if self.fail:
            raise CollaboratorUnavailable("bridge down")
        return self.signal

    async def execute(self, request):
        self.events.append("execute")
        self.executed.append(request)
        return self.result


def _engaged_store(**params) -> ParameterStore:
    store = ParameterStore(StrategyParameters(**params) if params else None)
    store.set_autopilot_state(True)
    return store


# ── Single cycle ─────────────────────────────────────────────────────────


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_disengaged_cycle_does_nothing(self):
        broker = MockBroker()
        loop = AutopilotLoop(_make_config(), ParameterStore(), broker)

        result = await loop.run_once()

        assert result["status"] == "skipped"
        assert result["reason"] == "disengaged"
        assert broker.events == []

    @pytest.mark.asyncio
    async def test_confident_signal_is_executed(self):
        broker = MockBroker(signal=_signal(BUY, 0.9))
        loop = AutopilotLoop(_make_config(), _engaged_store(), broker)

        result = await loop.run_once()

        assert result["status"] == "executed"
        assert result["ticket"] == "T-1"
        assert result["signal"]["synthetic"] is False
        assert len(broker.executed) == 1
        req = broker.executed[0]
        assert req.symbol == "EURUSD"
        assert req.action == BUY
        assert req.stop_loss == 1.0800
        assert req.take_profit == 1.0900
        assert req.confidence == 0.9
        assert req.timestamp == NOW

    @pytest.mark.asyncio
    async def test_hold_is_not_executed(self):
        broker = MockBroker(signal=_signal(HOLD, 1.0))
        loop = AutopilotLoop(_make_config(), _engaged_store(), broker)

        result = await loop.run_once()

        assert result["status"] == "skipped"
        assert result["reason"] == "hold"
        assert broker.executed == []

    @pytest.mark.asyncio
    async def test_low_confidence_is_not_executed(self):
        broker = MockBroker(signal=_signal(SELL, 0.3))
        loop = AutopilotLoop(_make_config(execution_threshold=0.6), _engaged_store(), broker)

        result = await loop.run_once()

        assert result["status"] == "skipped"
        assert result["reason"] == "low_confidence"
        assert broker.executed == []

    @pytest.mark.asyncio
    async def test_threshold_is_inclusive(self):
        broker = MockBroker(signal=_signal(SELL, 0.6))
        loop = AutopilotLoop(_make_config(execution_threshold=0.6), _engaged_store(), broker)

        result = await loop.run_once()

        assert result["status"] == "executed"

    @pytest.mark.asyncio
    async def test_execution_failure_is_recorded(self):
        failure = ExecutionFailure(reason="transport", diagnostic="Bridge unreachable")
        broker = MockBroker(result=failure)
        store = _engaged_store()
        loop = AutopilotLoop(_make_config(), store, broker)

        result = await loop.run_once()

        assert result["status"] == "execution_failed"
        assert result["reason"] == "transport"
        assert result["diagnostic"] == "Bridge unreachable"
        assert store.get_autopilot_state() is True
        assert loop.history()[0] is result

    @pytest.mark.asyncio
    async def test_raising_adapter_degrades_to_failure(self):
        class ExplodingBroker(MockBroker):
            async def execute(self, request):
                raise ConnectionError("socket closed")

        loop = AutopilotLoop(_make_config(), _engaged_store(), ExplodingBroker())

        result = await loop.run_once()

        assert result["status"] == "execution_failed"
        assert result["reason"] == "error"
        assert "socket closed" in result["diagnostic"]


# ── Fallback provenance ─────────────────────────────────────────────────


class TestFallback:
    @pytest.mark.asyncio
    async def test_market_data_failure_uses_synthetic_signal(self):
        broker = MockBroker(fail=True)
        loop = AutopilotLoop(
            _make_config(execution_threshold=0.0),
            _engaged_store(),
            broker,
            rng=np.random.default_rng(11),
        )

        result = await loop.run_once()

        assert result["signal"]["synthetic"] is True
        assert loop.last_signal.synthetic is True
        assert len(broker.executed) <= 1
        if loop.last_signal.action != HOLD:
            assert result["status"] == "executed"
            assert len(broker.executed) == 1

    @pytest.mark.asyncio
    async def test_at_most_one_execution_per_cycle(self):
        broker = MockBroker(fail=True)
        loop = AutopilotLoop(
            _make_config(execution_threshold=0.0),
            _engaged_store(),
            broker,
            rng=np.random.default_rng(12),
        )

        for expected_max in range(1, 6):
            await loop.run_once()
            assert len(broker.executed) <= expected_max

    @pytest.mark.asyncio
    async def test_wrong_symbol_from_market_data_falls_back(self):
        broker = MockBroker(signal=_signal(BUY, 0.9, symbol="GBPUSD"))
        loop = AutopilotLoop(_make_config(), _engaged_store(), broker, rng=np.random.default_rng(1))

        await loop.run_once()

        assert loop.last_signal.symbol == "EURUSD"
        assert loop.last_signal.synthetic is True

    @pytest.mark.asyncio
    async def test_fallback_covers_long_window(self):
        broker = MockBroker(fail=True)
        signal = await obtain_signal(
            broker,
            "EURUSD",
            StrategyParameters(short_window=48, long_window=240),
            fallback_bar_count=120,
            rng=np.random.default_rng(2),
        )
        assert signal.synthetic is True

    @pytest.mark.asyncio
    async def test_signal_error_skips_cycle(self, monkeypatch):
        import fxpilot.autopilot as autopilot_mod

        real = autopilot_mod.synthesize_bars
        monkeypatch.setattr(
            autopilot_mod,
            "synthesize_bars",
            lambda symbol, count, rng: real(symbol, count=5, rng=rng),
        )
        broker = MockBroker(fail=True)
        loop = AutopilotLoop(_make_config(), _engaged_store(), broker)

        result = await loop.run_once()

        assert result["status"] == "skipped"
        assert result["reason"] == "insufficient_history"
        assert broker.executed == []


# ── Disengage / cancellation ────────────────────────────────────────────


class TestDisengage:
    @pytest.mark.asyncio
    async def test_disengage_during_fetch_discards_signal(self):
        store = _engaged_store()

        class FlippingBroker(MockBroker):
            async def fetch_signal(self, symbol):
                store.set_autopilot_state(False)
                return await super().fetch_signal(symbol)

        broker = FlippingBroker(signal=_signal(BUY, 0.95))
        loop = AutopilotLoop(_make_config(), store, broker)

        result = await loop.run_once()

        assert result["status"] == "discarded"
        assert broker.executed == []

    @pytest.mark.asyncio
    async def test_disengage_during_position_check_discards_signal(self):
        store = _engaged_store()

        class FlippingBroker(MockBroker):
            async def list_open_trades(self):
                store.set_autopilot_state(False)
                return []

        broker = FlippingBroker(signal=_signal(BUY, 0.95))
        loop = AutopilotLoop(_make_config(), store, broker)

        result = await loop.run_once()

        assert result["status"] == "discarded"
        assert broker.executed == []


# ── Position guard ───────────────────────────────────────────────────────


class TestPositionGuard:
    @pytest.mark.asyncio
    async def test_max_positions_blocks_execution(self):
        class FullBroker(MockBroker):
            async def list_open_trades(self):
                return [
                    OpenTrade(f"T{i}", "EURUSD", "BUY", 1.0, 1.08) for i in range(2)
                ] + [OpenTrade("X", "GBPUSD", "SELL", 1.0, 1.26)]

        broker = FullBroker()
        store = _engaged_store(max_concurrent_positions=2)
        loop = AutopilotLoop(_make_config(), store, broker)

        result = await loop.run_once()

        assert result["reason"] == "max_concurrent_positions"
        assert broker.executed == []

    @pytest.mark.asyncio
    async def test_below_limit_executes(self):
        class OneOpenBroker(MockBroker):
            async def list_open_trades(self):
                return [OpenTrade("T0", "EURUSD", "BUY", 1.0, 1.08)]

        broker = OneOpenBroker()
        loop = AutopilotLoop(_make_config(), _engaged_store(max_concurrent_positions=2), broker)

        result = await loop.run_once()

        assert result["status"] == "executed"

    @pytest.mark.asyncio
    async def test_trade_listing_failure_does_not_block(self):
        class BrokenListBroker(MockBroker):
            async def list_open_trades(self):
                raise RuntimeError("bridge timeout")

        broker = BrokenListBroker()
        loop = AutopilotLoop(_make_config(), _engaged_store(), broker)

        result = await loop.run_once()

        assert result["status"] == "executed"


# ── Polling loop ─────────────────────────────────────────────────────────


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_cycles_are_sequential(self):
        broker = MockBroker()
        loop = AutopilotLoop(_make_config(), _engaged_store(), broker, tick=0.001)

        results = await loop.run(max_iterations=3)

        assert [r["status"] for r in results] == ["executed"] * 3
        assert broker.events == ["fetch", "execute"] * 3
        assert loop.cycle_count == 3
        assert loop.running is False

    @pytest.mark.asyncio
    async def test_loop_survives_execution_failures(self):
        broker = MockBroker(result=ExecutionFailure("rejected", "no margin"))
        store = _engaged_store()
        loop = AutopilotLoop(_make_config(), store, broker, tick=0.001)

        results = await loop.run(max_iterations=3)

        assert len(results) == 3
        assert all(r["status"] == "execution_failed" for r in results)
        assert store.get_autopilot_state() is True

    @pytest.mark.asyncio
    async def test_loop_survives_unexpected_errors(self, monkeypatch):
        loop = AutopilotLoop(_make_config(), _engaged_store(), MockBroker(), tick=0.001)

        async def _boom():
            raise RuntimeError("boom")

        monkeypatch.setattr(loop, "run_once", _boom)
        results = await loop.run(max_iterations=2)

        assert [r["status"] for r in results] == ["error", "error"]
        assert results[0]["reason"] == "boom"

    @pytest.mark.asyncio
    async def test_disengaged_loop_only_monitors(self):
        class StatusBroker(MockBroker):
            async def get_status(self):
                return BrokerStatus(connected=True, account_id="A-1", broker="Demo")

        broker = StatusBroker()
        loop = AutopilotLoop(_make_config(), ParameterStore(), broker, tick=0.001)

        results = await loop.run(max_iterations=2)

        assert results == []
        assert broker.events == []
        assert loop.broker_status.connected is True
        assert loop.get_status()["last_heartbeat"] is not None

    @pytest.mark.asyncio
    async def test_engaging_wakes_monitoring_sleep(self):
        store = ParameterStore()
        broker = MockBroker()
        loop = AutopilotLoop(
            _make_config(monitor_interval_seconds=60, autopilot_interval_seconds=60),
            store,
            broker,
            tick=0.005,
        )

        task = asyncio.create_task(loop.run())
        await asyncio.sleep(0.05)
        assert broker.events == []

        store.set_autopilot_state(True)
        await asyncio.sleep(0.1)
        loop.stop()
        results = await asyncio.wait_for(task, timeout=2)

        assert len(results) == 1
        assert results[0]["status"] == "executed"

    @pytest.mark.asyncio
    async def test_disengaging_stops_new_cycles(self):
        store = _engaged_store()
        broker = MockBroker()
        loop = AutopilotLoop(
            _make_config(monitor_interval_seconds=60, autopilot_interval_seconds=0.02),
            store,
            broker,
            tick=0.005,
        )

        task = asyncio.create_task(loop.run())
        await asyncio.sleep(0.005)
        store.set_autopilot_state(False)
        await asyncio.sleep(0.05)
        executed_after_disengage = len(broker.executed)
        await asyncio.sleep(0.1)
        loop.stop()
        await asyncio.wait_for(task, timeout=2)

        assert len(broker.executed) == executed_after_disengage

    @pytest.mark.asyncio
    async def test_strategy_update_applies_next_cycle(self):
        broker = MockBroker(fail=True)
        store = _engaged_store()
        loop = AutopilotLoop(
            _make_config(execution_threshold=1.1),
            store,
            broker,
            rng=np.random.default_rng(3),
            tick=0.001,
        )

        await loop.run_once()
        store.update_strategy(StrategyParameters(short_window=30, long_window=200))
        # Fallback must synthesize enough bars for the new long window
        result = await loop.run_once()

        assert result["status"] == "skipped"
        assert result["signal"]["synthetic"] is True
