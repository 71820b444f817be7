"""
Unit tests for per-symbol processing.

Tests cover:
- Decisions are persisted before risk gating
- Dry run never submits orders
- Live BUY sizing (risk cap, precision, minimum notional)
- Multi-leg CLOSE
- Order rejections and risk denials leave decisions unexecuted
"""

from unittest.mock import MagicMock

import pytest

from vibe_trader.controllers.symbol_processor import SymbolProcessor
from vibe_trader.decision_provider import OracleResult
from vibe_trader.errors import ExchangeError
from vibe_trader.models import AccountBalance, MarketTicker, OrderRequest, OrderResult, Position
from vibe_trader.risk_manager import RiskManager

from conftest import make_config, make_decision


def order_result(order_id="1001", side="BUY", qty="0.001", position_side="BOTH"):
    return OrderResult(order_id=order_id, symbol="BTCUSDT", side=side, type="MARKET", status="NEW",
                       orig_qty=qty, avg_price="50000.0", cum_quote="50.0", position_side=position_side)


@pytest.fixture
def gateway():
    gateway = MagicMock()
    gateway.get_ticker.return_value = MarketTicker(
        symbol="BTCUSDT", last_price=50000.0, price_change_percent=1.5,
        volume="1000", high_price="51000", low_price="49000",
    )
    gateway.get_positions.return_value = []
    gateway.get_balance.return_value = [AccountBalance(asset="USDT", balance=1000.0, available_balance=1000.0)]
    gateway.get_quantity_precision.return_value = 3
    gateway.get_min_notional.return_value = 5.0
    gateway.place_order.return_value = order_result()
    return gateway


@pytest.fixture
def provider():
    provider = MagicMock()
    provider.decide.return_value = OracleResult(decision=make_decision("HOLD"), prompt="prompt", raw_response="{}")
    return provider


def build(gateway, provider, store, **config_overrides):
    config = make_config(**config_overrides)
    return SymbolProcessor(config, gateway, provider, RiskManager(config.risk), store)


def decide(provider, decision):
    provider.decide.return_value = OracleResult(decision=decision, prompt="prompt", raw_response="raw")


class TestDecisionFlow:
    """Tests for the decide and persist steps."""

    def test_hold_is_persisted_without_risk_check(self, gateway, provider, store):
        result = build(gateway, provider, store).process_symbol("BTCUSDT")

        assert result.decision.action == "HOLD"
        assert result.risk_check is None
        assert result.orders == []
        decisions = store.find_decisions()
        assert len(decisions) == 1
        assert decisions[0]["action"] == "HOLD"
        assert decisions[0]["executed"] is False
        assert decisions[0]["price"] == 50000.0
        gateway.place_order.assert_not_called()

    def test_decision_record_fields(self, gateway, provider, store):
        decide(provider, make_decision("BUY", size=0.001))
        build(gateway, provider, store).process_symbol("BTCUSDT")

        record = store.find_decisions()[0]
        assert record["prompt"] == "prompt"
        assert record["llmResponse"] == "raw"
        assert record["side"] == "BUY"
        assert record["quantity"] == "0.001"
        assert record["marketData"]["high"] == "51000"

    def test_performance_from_resolved_decisions(self, gateway, provider, store):
        store.create_decision({"symbol": "BTCUSDT", "profitable": True, "pnl": 10.0})
        store.create_decision({"symbol": "BTCUSDT", "profitable": False, "pnl": -4.0})
        store.create_decision({"symbol": "ETHUSDT", "profitable": True, "pnl": 99.0})

        build(gateway, provider, store).process_symbol("BTCUSDT")

        performance = provider.decide.call_args.args[4]
        assert performance.win_rate == 50.0
        assert performance.total_pnl == 6.0
        assert performance.last_trades == 2

    def test_drawdown_reported_to_oracle(self, gateway, provider, store):
        build(gateway, provider, store, dry_run=False).process_symbol("BTCUSDT", peak_balance=1250.0)
        risk_metrics = provider.decide.call_args.args[3]
        assert risk_metrics.account_balance == 1000.0
        assert risk_metrics.current_drawdown == pytest.approx(20.0)

    def test_drawdown_uses_account_value_not_free_margin(self, gateway, provider, store):
        """Margin committed to a position lowers available balance, not account value."""
        gateway.get_balance.return_value = [AccountBalance(asset="USDT", balance=1000.0, available_balance=400.0)]
        gateway.get_positions.return_value = [
            Position(symbol="BTCUSDT", position_side="LONG", position_amt=0.01, unrealized_profit=-50.0),
        ]

        result = build(gateway, provider, store, dry_run=False).process_symbol("BTCUSDT", peak_balance=1000.0)

        risk_metrics = provider.decide.call_args.args[3]
        assert risk_metrics.account_balance == 400.0
        assert risk_metrics.current_drawdown == pytest.approx(5.0)
        assert result.account_balance == 400.0
        assert result.account_value == pytest.approx(950.0)


class TestExecution:
    """Tests for risk gating and order submission."""

    def test_dry_run_never_submits(self, gateway, provider, store):
        decide(provider, make_decision("BUY"))

        result = build(gateway, provider, store, dry_run=True).process_symbol("BTCUSDT")

        assert result.risk_check.allowed
        assert result.risk_check.adjusted_size == pytest.approx(20.0)
        assert result.account_balance == 1000.0
        gateway.place_order.assert_not_called()
        gateway.get_balance.assert_not_called()
        assert store.find_decisions()[0]["executed"] is False

    def test_live_buy_sized_and_recorded(self, gateway, provider, store):
        """$20 at $50,000 rounds to zero, so the order is lifted to the $5 floor: 0.001."""
        decide(provider, make_decision("BUY"))

        result = build(gateway, provider, store, dry_run=False).process_symbol("BTCUSDT")

        gateway.place_order.assert_called_once_with(
            OrderRequest(symbol="BTCUSDT", side="BUY", quantity="0.001")
        )
        assert [o.order_id for o in result.orders] == ["1001"]

        decision = store.find_decisions()[0]
        assert decision["executed"] is True
        assert decision["orderId"] == "1001"

        trades = store.find_trades()
        assert len(trades) == 1
        assert trades[0]["decisionId"] == decision["id"]
        assert trades[0]["price"] == "50000.0"
        assert trades[0]["realizedPnl"] is None

    def test_close_flattens_every_leg(self, gateway, provider, store):
        gateway.get_positions.return_value = [
            Position(symbol="BTCUSDT", position_side="LONG", position_amt=0.01),
            Position(symbol="BTCUSDT", position_side="SHORT", position_amt=-0.02),
            Position(symbol="BTCUSDT", position_side="BOTH", position_amt=0.0),
        ]
        gateway.place_order.side_effect = [
            order_result("1", "SELL", "0.010", "LONG"),
            order_result("2", "BUY", "0.020", "SHORT"),
        ]
        decide(provider, make_decision("CLOSE"))

        result = build(gateway, provider, store, dry_run=False).process_symbol("BTCUSDT")

        requests = [c.args[0] for c in gateway.place_order.call_args_list]
        assert requests == [
            OrderRequest(symbol="BTCUSDT", side="SELL", quantity="0.010", position_side="LONG"),
            OrderRequest(symbol="BTCUSDT", side="BUY", quantity="0.020", position_side="SHORT"),
        ]
        assert len(result.orders) == 2
        assert len(store.find_trades()) == 2
        assert store.find_decisions()[0]["executed"] is True

    def test_close_without_position(self, gateway, provider, store):
        decide(provider, make_decision("CLOSE"))
        result = build(gateway, provider, store, dry_run=False).process_symbol("BTCUSDT")
        assert result.orders == []
        gateway.place_order.assert_not_called()
        assert store.find_decisions()[0]["executed"] is False

    def test_denied_decision_stays_unexecuted(self, gateway, provider, store):
        decide(provider, make_decision("BUY", confidence=0.5))

        result = build(gateway, provider, store, dry_run=False).process_symbol("BTCUSDT")

        assert not result.risk_check.allowed
        gateway.place_order.assert_not_called()
        assert store.find_decisions()[0]["executed"] is False

    def test_daily_loss_from_todays_trades(self, gateway, provider, store):
        store.create_trade({"orderId": "x", "realizedPnl": -250.0})
        decide(provider, make_decision("SELL"))

        result = build(gateway, provider, store, dry_run=False).process_symbol("BTCUSDT")

        assert not result.risk_check.allowed
        assert "Daily loss" in result.risk_check.reason

    def test_order_rejection_is_contained(self, gateway, provider, store):
        gateway.place_order.side_effect = ExchangeError("Margin is insufficient.", status=400, code=-2019)
        decide(provider, make_decision("BUY"))

        result = build(gateway, provider, store, dry_run=False).process_symbol("BTCUSDT")

        assert result.orders == []
        assert store.find_decisions()[0]["executed"] is False
        alerts = store.find_alerts(alert_type="ERROR")
        assert len(alerts) == 1
        assert "-2019" in alerts[0]["message"]

    def test_market_data_failure_propagates(self, gateway, provider, store):
        gateway.get_ticker.side_effect = ExchangeError("unreachable")
        with pytest.raises(ExchangeError):
            build(gateway, provider, store).process_symbol("BTCUSDT")
        assert store.find_decisions() == []

    def test_end_to_end_two_percent_sizing(self, gateway, provider, store):
        """$500 proposed on a $1000 account is resized to a $20 order, not the $50 cap."""
        gateway.get_quantity_precision.return_value = 4
        decide(provider, make_decision("BUY", confidence=0.85, size=0.01))

        result = build(gateway, provider, store, dry_run=False).process_symbol("BTCUSDT")

        assert result.risk_check.adjusted_size == pytest.approx(20.0)
        gateway.place_order.assert_called_once_with(
            OrderRequest(symbol="BTCUSDT", side="BUY", quantity="0.0004")
        )
