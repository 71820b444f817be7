"""Configuration module for the Vibe Trader agent."""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from vibe_trader.models import RiskConfig


DEFAULT_BASE_URL = "https://fapi.asterdex.com"
DEFAULT_SYMBOLS = "BTCUSDT,ETHUSDT,BNBUSDT"
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

_TRUTHY = ("1", "true", "yes", "y")


def _get_float(name: str, default: str) -> float:
    try:
        return float(os.getenv(name, default))
    except ValueError:
        raise ValueError(f"{name} must be a valid float")


def _get_int(name: str, default: str) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError:
        raise ValueError(f"{name} must be a valid integer")


def _get_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


@dataclass
class Config:
    """Configuration for the trading agent loaded from environment variables."""

    # Aster identity
    aster_user_address: str
    aster_signer_address: str
    aster_private_key: Optional[str]
    aster_base_url: str
    recv_window: int
    request_timeout_seconds: float

    # Decision oracle
    llm_api_key: str
    llm_base_url: str
    llm_model: str

    # Agent behavior
    symbols: List[str]
    loop_interval_seconds: int
    dry_run: bool
    dry_run_balance: float
    error_window_seconds: int

    # Persistence and control surface
    store_path: str
    api_host: str
    api_port: int

    risk: RiskConfig = field(default_factory=RiskConfig)

    def redacted(self) -> Dict[str, Any]:
        """Return a JSON-safe view of the config with secrets masked."""
        return {
            "asterUserAddress": self.aster_user_address,
            "asterSignerAddress": self.aster_signer_address,
            "asterPrivateKey": "***REDACTED***" if self.aster_private_key else None,
            "asterBaseUrl": self.aster_base_url,
            "llmBaseUrl": self.llm_base_url,
            "llmModel": self.llm_model,
            "symbols": list(self.symbols),
            "intervalSeconds": self.loop_interval_seconds,
            "dryRun": self.dry_run,
            "risk": {
                "maxPositionSizeUSD": self.risk.max_position_size_usd,
                "maxDailyLossPercent": self.risk.max_daily_loss_percent,
                "maxOpenPositions": self.risk.max_open_positions,
                "minConfidence": self.risk.min_confidence,
                "stopLossPercent": self.risk.stop_loss_percent,
                "takeProfitPercent": self.risk.take_profit_percent,
            },
        }

    @classmethod
    def from_env(cls) -> "Config":
        """
        Load configuration from environment variables with validation.

        Returns:
            Config: Validated configuration object

        Raises:
            ValueError: If required fields are missing or invalid
        """
        load_dotenv()

        dry_run = _get_bool("DRY_RUN_MODE", "true")

        symbols_str = os.getenv("SYMBOLS", DEFAULT_SYMBOLS)
        symbols = [s.strip().upper() for s in symbols_str.split(",") if s.strip()]
        if not symbols:
            raise ValueError("SYMBOLS must contain at least one valid symbol")

        llm_api_key = os.getenv("LLM_API_KEY")
        user_address = os.getenv("ASTER_USER_ADDRESS")
        signer_address = os.getenv("ASTER_SIGNER_ADDRESS")
        private_key = os.getenv("ASTER_PRIVATE_KEY")

        required_fields = {"LLM_API_KEY": llm_api_key}
        if not dry_run:
            # Signed endpoints are only reached outside dry run
            required_fields.update({
                "ASTER_USER_ADDRESS": user_address,
                "ASTER_SIGNER_ADDRESS": signer_address,
                "ASTER_PRIVATE_KEY": private_key,
            })

        missing_fields = [name for name, value in required_fields.items() if not value]
        if missing_fields:
            raise ValueError(f"Missing required environment variables: {', '.join(missing_fields)}")

        for name, value in (
            ("ASTER_USER_ADDRESS", user_address),
            ("ASTER_SIGNER_ADDRESS", signer_address),
            ("ASTER_PRIVATE_KEY", private_key),
        ):
            if value and not value.startswith("0x"):
                raise ValueError(f"{name} must be 0x-prefixed")

        recv_window = _get_int("ASTER_RECV_WINDOW", "50000")
        request_timeout_seconds = _get_float("REQUEST_TIMEOUT_SECONDS", "10")
        loop_interval_seconds = _get_int("TRADE_INTERVAL_SECONDS", "60")
        dry_run_balance = _get_float("DRY_RUN_BALANCE", "1000")
        error_window_seconds = _get_int("ERROR_WINDOW_SECONDS", "900")
        api_port = _get_int("API_PORT", "8000")

        risk = RiskConfig(
            max_position_size_usd=_get_float("MAX_POSITION_SIZE_USD", "50"),
            max_daily_loss_percent=_get_float("MAX_DAILY_LOSS_PERCENT", "20"),
            max_open_positions=_get_int("MAX_OPEN_POSITIONS", "3"),
            min_confidence=_get_float("MIN_CONFIDENCE", "0.7"),
            stop_loss_percent=_get_float("STOP_LOSS_PERCENT", "3"),
            take_profit_percent=_get_float("TAKE_PROFIT_PERCENT", "5"),
        )

        # Validate numeric ranges
        if loop_interval_seconds <= 0:
            raise ValueError("TRADE_INTERVAL_SECONDS must be greater than 0")
        if recv_window <= 0:
            raise ValueError("ASTER_RECV_WINDOW must be greater than 0")
        if request_timeout_seconds <= 0:
            raise ValueError("REQUEST_TIMEOUT_SECONDS must be greater than 0")
        if dry_run_balance < 0:
            raise ValueError("DRY_RUN_BALANCE must be non-negative")
        if error_window_seconds <= 0:
            raise ValueError("ERROR_WINDOW_SECONDS must be greater than 0")
        if risk.max_position_size_usd <= 0:
            raise ValueError("MAX_POSITION_SIZE_USD must be greater than 0")
        if risk.max_daily_loss_percent <= 0:
            raise ValueError("MAX_DAILY_LOSS_PERCENT must be greater than 0")
        if risk.max_open_positions < 1:
            raise ValueError("MAX_OPEN_POSITIONS must be at least 1")
        if not 0.0 <= risk.min_confidence <= 1.0:
            raise ValueError("MIN_CONFIDENCE must be between 0.0 and 1.0")
        if risk.stop_loss_percent < 0 or risk.take_profit_percent < 0:
            raise ValueError("STOP_LOSS_PERCENT and TAKE_PROFIT_PERCENT must be non-negative")

        return cls(
            aster_user_address=user_address or ZERO_ADDRESS,
            aster_signer_address=signer_address or ZERO_ADDRESS,
            aster_private_key=private_key or None,
            aster_base_url=os.getenv("ASTER_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
            recv_window=recv_window,
            request_timeout_seconds=request_timeout_seconds,
            llm_api_key=llm_api_key,
            llm_base_url=os.getenv("LLM_BASE_URL", "https://api.deepseek.com"),
            llm_model=os.getenv("LLM_MODEL", "deepseek-chat"),
            symbols=symbols,
            loop_interval_seconds=loop_interval_seconds,
            dry_run=dry_run,
            dry_run_balance=dry_run_balance,
            error_window_seconds=error_window_seconds,
            store_path=os.getenv("STORE_PATH", os.path.join("data", "vibe_trader.json")),
            api_host=os.getenv("API_HOST", "0.0.0.0"),
            api_port=api_port,
            risk=risk,
        )
