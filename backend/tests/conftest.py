"""
Shared fixtures for Vibe Trader tests.

Provides a ready-made Config, a throwaway JSON store, a well-known test
signing key and small builders for decisions and venue responses.
"""

import json
from typing import Any, Optional
from unittest.mock import MagicMock

import pytest
from eth_account import Account

from vibe_trader.config import Config
from vibe_trader.memory.trade_store import JsonTradeStore
from vibe_trader.models import Decision, RiskConfig

# Throwaway key used only in tests
TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
TEST_SIGNER_ADDRESS = Account.from_key(TEST_PRIVATE_KEY).address
TEST_USER_ADDRESS = "0x1111111111111111111111111111111111111111"


def make_config(**overrides: Any) -> Config:
    """Config with test defaults; keyword arguments override fields."""
    values = dict(
        aster_user_address=TEST_USER_ADDRESS,
        aster_signer_address=TEST_SIGNER_ADDRESS,
        aster_private_key=TEST_PRIVATE_KEY,
        aster_base_url="https://fapi.example.test",
        recv_window=50000,
        request_timeout_seconds=5.0,
        llm_api_key="sk-test",
        llm_base_url="https://llm.example.test",
        llm_model="test-model",
        symbols=["BTCUSDT", "ETHUSDT"],
        loop_interval_seconds=1,
        dry_run=True,
        dry_run_balance=1000.0,
        error_window_seconds=900,
        store_path="unused.json",
        api_host="127.0.0.1",
        api_port=8000,
        risk=RiskConfig(),
    )
    values.update(overrides)
    return Config(**values)


def make_decision(action: str = "BUY", symbol: str = "BTCUSDT", confidence: float = 0.9,
                  size: Optional[float] = None) -> Decision:
    return Decision(
        action=action,
        symbol=symbol,
        confidence=confidence,
        reasoning="test reasoning",
        vibe="bullish",
        timeframe="short",
        risk_level="medium",
        size=size,
    )


def make_response(status: int = 200, body: Any = None, text: Optional[str] = None,
                  reason: str = "OK") -> MagicMock:
    """Fake requests.Response with JSON (or raw) content."""
    response = MagicMock()
    response.status_code = status
    response.ok = status < 400
    response.reason = reason
    response.text = text if text is not None else json.dumps(body)
    return response


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def store(tmp_path):
    """Empty JSON store in a temporary directory."""
    return JsonTradeStore(str(tmp_path / "store.json"))
