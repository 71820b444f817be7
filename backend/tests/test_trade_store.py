"""
Unit tests for the JSON trade store.

Tests cover:
- Record creation, update and resolution
- Query filters and ordering
- Agent state round trip
- Durability across instances and write failures
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from vibe_trader.errors import PersistenceError
from vibe_trader.memory.trade_store import JsonTradeStore
from vibe_trader.models import AgentState


def ts(minutes_ago):
    return (datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)).isoformat()


class TestDecisions:
    """Tests for decision records."""

    def test_create_assigns_defaults(self, store):
        record = store.create_decision({"symbol": "BTCUSDT", "action": "BUY"})
        assert record["id"]
        assert record["timestamp"]
        assert record["executed"] is False
        assert record["orderId"] is None
        assert record["profitable"] is None

    def test_update(self, store):
        record = store.create_decision({"symbol": "BTCUSDT", "action": "BUY"})
        updated = store.update_decision(record["id"], executed=True, orderId="42")
        assert updated["executed"] is True
        assert store.get_decision(record["id"])["orderId"] == "42"

    def test_update_unknown_raises(self, store):
        with pytest.raises(PersistenceError):
            store.update_decision("missing", executed=True)

    def test_resolve(self, store):
        win = store.create_decision({"symbol": "BTCUSDT"})
        loss = store.create_decision({"symbol": "BTCUSDT"})
        assert store.resolve_decision(win["id"], 12.5)["profitable"] is True
        assert store.resolve_decision(loss["id"], -3)["profitable"] is False
        assert store.get_decision(loss["id"])["pnl"] == -3.0

    def test_find_filters_and_orders(self, store):
        store.create_decision({"symbol": "BTCUSDT", "timestamp": ts(3), "profitable": False, "pnl": -1})
        store.create_decision({"symbol": "ETHUSDT", "timestamp": ts(2), "profitable": True, "pnl": 2})
        store.create_decision({"symbol": "BTCUSDT", "timestamp": ts(1), "profitable": True, "pnl": 3})
        store.create_decision({"symbol": "BTCUSDT", "timestamp": ts(0)})

        btc = store.find_decisions(symbol="BTCUSDT")
        assert [d["pnl"] for d in btc] == [None, 3, -1]

        resolved = store.find_decisions(resolved_only=True, limit=2)
        assert [d["pnl"] for d in resolved] == [3, 2]

    def test_get_missing(self, store):
        assert store.get_decision("missing") is None


class TestTradesAndAlerts:
    """Tests for trade and alert records."""

    def test_find_trades_since(self, store):
        store.create_trade({"orderId": "old", "timestamp": ts(120)})
        store.create_trade({"orderId": "new", "timestamp": ts(1)})
        since = datetime.now(timezone.utc) - timedelta(minutes=60)
        assert [t["orderId"] for t in store.find_trades(since=since)] == ["new"]
        assert len(store.find_trades()) == 2

    def test_alert_filters(self, store):
        store.create_alert("ERROR", "HIGH", "boom", {"symbol": "BTCUSDT"})
        store.create_alert("CIRCUIT_BREAKER", "HIGH", "paused")
        errors = store.find_alerts(alert_type="ERROR")
        assert len(errors) == 1
        assert errors[0]["metadata"] == {"symbol": "BTCUSDT"}
        assert store.find_alerts(alert_type="CIRCUIT_BREAKER")[0]["metadata"] == {}

    def test_trimmed_to_max_records(self, tmp_path):
        store = JsonTradeStore(str(tmp_path / "store.json"), max_records=2)
        for i in range(3):
            store.create_alert("ERROR", "LOW", f"error {i}", {"n": i})
        assert sorted(a["metadata"]["n"] for a in store.find_alerts()) == [1, 2]

    def test_file_never_exceeds_max_records(self, tmp_path):
        path = tmp_path / "store.json"
        store = JsonTradeStore(str(path), max_records=2)
        for i in range(3):
            store.create_alert("ERROR", "LOW", f"error {i}", {"n": i})
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
        assert [a["metadata"]["n"] for a in raw["alerts"]] == [1, 2]


class TestAgentState:
    """Tests for agent state persistence."""

    def test_missing_state(self, store):
        assert store.load_agent_state() is None

    def test_round_trip(self, store):
        heartbeat = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
        store.save_agent_state(AgentState(running=True, paused=True, last_heartbeat=heartbeat,
                                          peak_balance=1234.5, config={"dryRun": True}))
        state = store.load_agent_state()
        assert state.running and state.paused
        assert state.last_heartbeat == heartbeat
        assert state.peak_balance == 1234.5
        assert state.config == {"dryRun": True}


class TestDurability:
    """Tests for the on-disk file."""

    def test_reload_from_disk(self, tmp_path):
        path = str(tmp_path / "nested" / "store.json")
        first = JsonTradeStore(path)
        record = first.create_decision({"symbol": "BTCUSDT", "action": "HOLD"})

        second = JsonTradeStore(path)
        assert second.get_decision(record["id"])["action"] == "HOLD"

    def test_camel_case_schema_on_disk(self, tmp_path):
        path = tmp_path / "store.json"
        store = JsonTradeStore(str(path))
        store.save_agent_state(AgentState(running=True, peak_balance=10.0))
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
        assert raw["agentState"]["peakBalance"] == 10.0
        assert set(raw) == {"decisions", "trades", "alerts", "agentState"}

    def test_corrupt_file_starts_fresh(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("{not json", encoding="utf-8")
        store = JsonTradeStore(str(path))
        assert store.find_decisions() == []

    def test_write_failure_raises_and_rolls_back(self, tmp_path):
        """A path that cannot be replaced surfaces PersistenceError and keeps memory consistent."""
        path = tmp_path / "occupied"
        path.mkdir()
        store = JsonTradeStore(str(path))
        with pytest.raises(PersistenceError):
            store.create_alert("ERROR", "HIGH", "disk full")
        assert store.find_alerts() == []

    def test_failed_update_rolls_back(self, tmp_path):
        """A failed write must not leak into the next successful one."""
        path = tmp_path / "store.json"
        store = JsonTradeStore(str(path))
        record = store.create_decision({"symbol": "BTCUSDT", "action": "BUY"})

        with patch.object(store, "_save", side_effect=PersistenceError("disk full")):
            with pytest.raises(PersistenceError):
                store.update_decision(record["id"], executed=True, orderId="42")
        assert store.get_decision(record["id"])["executed"] is False

        store.create_alert("ERROR", "HIGH", "later write")
        reloaded = JsonTradeStore(str(path)).get_decision(record["id"])
        assert reloaded["executed"] is False
        assert reloaded["orderId"] is None

    def test_failed_agent_state_save_rolls_back(self, tmp_path):
        path = tmp_path / "store.json"
        store = JsonTradeStore(str(path))
        store.save_agent_state(AgentState(running=True, peak_balance=10.0))

        with patch.object(store, "_save", side_effect=PersistenceError("disk full")):
            with pytest.raises(PersistenceError):
                store.save_agent_state(AgentState(running=False, peak_balance=99.0))
        assert store.load_agent_state().peak_balance == 10.0

        store.create_alert("ERROR", "HIGH", "later write")
        assert JsonTradeStore(str(path)).load_agent_state().running is True
