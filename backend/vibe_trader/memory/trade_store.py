"""Persistent store for decisions, trades, alerts and agent state.

The JSON implementation keeps a compact file with every record, so the agent
and the control surface can see decision history across restarts without an
external database. Schema:

  {
    "decisions": [{"id": "...", "timestamp": "2025-01-01T00:00:00+00:00",
                   "symbol": "BTCUSDT", "action": "BUY", "executed": false,
                   "profitable": null, "pnl": null, ...}],
    "trades":    [{"id": "...", "decisionId": "...", "orderId": "...",
                   "realizedPnl": null, ...}],
    "alerts":    [{"id": "...", "type": "ERROR", "severity": "HIGH",
                   "message": "...", "metadata": {}}],
    "agentState": {"running": true, "paused": false, "lastHeartbeat": "...",
                   "peakBalance": 1000.0, "config": {...}}
  }
"""

from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from vibe_trader.errors import PersistenceError
from vibe_trader.models import AgentState


logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value)


class TradeStore(ABC):
    """Operations the agent core needs from its persistence collaborator."""

    @abstractmethod
    def create_decision(self, record: Dict[str, Any]) -> Dict[str, Any]: ...

    @abstractmethod
    def update_decision(self, decision_id: str, **fields: Any) -> Dict[str, Any]: ...

    @abstractmethod
    def get_decision(self, decision_id: str) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    def find_decisions(self, symbol: Optional[str] = None, resolved_only: bool = False,
                       limit: Optional[int] = None) -> List[Dict[str, Any]]: ...

    @abstractmethod
    def create_trade(self, record: Dict[str, Any]) -> Dict[str, Any]: ...

    @abstractmethod
    def find_trades(self, since: Optional[datetime] = None) -> List[Dict[str, Any]]: ...

    @abstractmethod
    def create_alert(self, alert_type: str, severity: str, message: str,
                     metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]: ...

    @abstractmethod
    def find_alerts(self, since: Optional[datetime] = None,
                    alert_type: Optional[str] = None) -> List[Dict[str, Any]]: ...

    @abstractmethod
    def load_agent_state(self) -> Optional[AgentState]: ...

    @abstractmethod
    def save_agent_state(self, state: AgentState) -> None: ...

    def resolve_decision(self, decision_id: str, pnl: float) -> Dict[str, Any]:
        """Record the realized outcome of an executed decision."""
        return self.update_decision(decision_id, pnl=float(pnl), profitable=pnl > 0)


class JsonTradeStore(TradeStore):
    """Thread-safe JSON-file-backed TradeStore."""

    def __init__(self, path: str, max_records: int = 10000) -> None:
        """
        Args:
            path: JSON file location (parent directory is created if missing)
            max_records: Per-collection cap; oldest records are trimmed first
        """
        self.path = path
        self.max_records = max_records
        self._lock = threading.RLock()
        self._data: Dict[str, Any] = self._empty()
        self._load()

    @staticmethod
    def _empty() -> Dict[str, Any]:
        return {"decisions": [], "trades": [], "alerts": [], "agentState": None}

    def _load(self) -> None:
        if not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Store file {self.path} unreadable, starting fresh: {e}")
            return
        if isinstance(raw, dict):
            for key in ("decisions", "trades", "alerts"):
                self._data[key] = list(raw.get(key) or [])
            self._data["agentState"] = raw.get("agentState")

    def _save(self) -> None:
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            tmp_path = f"{self.path}.tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self._data, f, ensure_ascii=False, separators=(",", ":"))
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to write store {self.path}: {e}") from e

    def _append(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        stored = dict(record)
        stored.setdefault("id", uuid.uuid4().hex)
        stored.setdefault("timestamp", _now().isoformat())
        with self._lock:
            previous = self._data[collection]
            # Oldest records are trimmed before the write, never after
            self._data[collection] = (previous + [stored])[-self.max_records:]
            try:
                self._save()
            except PersistenceError:
                self._data[collection] = previous
                raise
        return dict(stored)

    @staticmethod
    def _newest_first(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return sorted(records, key=lambda r: _parse_ts(r["timestamp"]), reverse=True)

    # Decisions

    def create_decision(self, record: Dict[str, Any]) -> Dict[str, Any]:
        stored = {"executed": False, "orderId": None, "profitable": None, "pnl": None}
        stored.update(record)
        return self._append("decisions", stored)

    def update_decision(self, decision_id: str, **fields: Any) -> Dict[str, Any]:
        with self._lock:
            decisions = self._data["decisions"]
            for index, record in enumerate(decisions):
                if record["id"] == decision_id:
                    updated = dict(record)
                    updated.update(fields)
                    decisions[index] = updated
                    try:
                        self._save()
                    except PersistenceError:
                        decisions[index] = record
                        raise
                    return dict(updated)
        raise PersistenceError(f"Decision {decision_id} not found")

    def get_decision(self, decision_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            for record in self._data["decisions"]:
                if record["id"] == decision_id:
                    return dict(record)
        return None

    def find_decisions(self, symbol: Optional[str] = None, resolved_only: bool = False,
                       limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with self._lock:
            records = [
                dict(r) for r in self._data["decisions"]
                if (symbol is None or r.get("symbol") == symbol)
                and (not resolved_only or r.get("profitable") is not None)
            ]
        records = self._newest_first(records)
        return records[:limit] if limit is not None else records

    # Trades

    def create_trade(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return self._append("trades", record)

    def find_trades(self, since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        with self._lock:
            records = [
                dict(r) for r in self._data["trades"]
                if since is None or _parse_ts(r["timestamp"]) >= since
            ]
        return self._newest_first(records)

    # Alerts

    def create_alert(self, alert_type: str, severity: str, message: str,
                     metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._append("alerts", {
            "type": alert_type,
            "severity": severity,
            "message": message,
            "metadata": metadata or {},
        })

    def find_alerts(self, since: Optional[datetime] = None,
                    alert_type: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            records = [
                dict(r) for r in self._data["alerts"]
                if (since is None or _parse_ts(r["timestamp"]) >= since)
                and (alert_type is None or r.get("type") == alert_type)
            ]
        return self._newest_first(records)

    # Agent state

    def load_agent_state(self) -> Optional[AgentState]:
        with self._lock:
            raw = self._data.get("agentState")
        return AgentState.from_dict(raw) if raw else None

    def save_agent_state(self, state: AgentState) -> None:
        with self._lock:
            previous = self._data["agentState"]
            self._data["agentState"] = state.to_dict()
            try:
                self._save()
            except PersistenceError:
                self._data["agentState"] = previous
                raise
