"""Data models for the Vibe Trader agent."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


ACTIONS = ("BUY", "SELL", "HOLD", "CLOSE")
OPENING_ACTIONS = ("BUY", "SELL")


class AgentStatus(str, Enum):
    """Lifecycle states of the agent loop."""

    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


@dataclass
class AgentState:
    """Process-wide agent state, persisted for external observability."""

    running: bool = False
    paused: bool = False
    last_heartbeat: Optional[datetime] = None
    peak_balance: float = 0.0
    config: Dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> AgentStatus:
        if not self.running:
            return AgentStatus.STOPPED
        return AgentStatus.PAUSED if self.paused else AgentStatus.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "paused": self.paused,
            "lastHeartbeat": self.last_heartbeat.isoformat() if self.last_heartbeat else None,
            "peakBalance": self.peak_balance,
            "config": self.config,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentState":
        heartbeat = data.get("lastHeartbeat")
        return cls(
            running=bool(data.get("running", False)),
            paused=bool(data.get("paused", False)),
            last_heartbeat=datetime.fromisoformat(heartbeat) if heartbeat else None,
            peak_balance=float(data.get("peakBalance") or 0.0),
            config=dict(data.get("config") or {}),
        )


@dataclass(frozen=True)
class Decision:
    """Validated trading decision produced by the oracle adapter."""

    action: str  # "BUY" | "SELL" | "HOLD" | "CLOSE"
    symbol: str
    confidence: float  # 0.0 to 1.0
    reasoning: str
    vibe: str  # "bullish" | "bearish" | "neutral" | "chaos"
    timeframe: str  # "scalp" | "short" | "medium" | "long"
    risk_level: str  # "low" | "medium" | "high"
    size: Optional[float] = None  # base-asset quantity
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None

    @property
    def side(self) -> Optional[str]:
        return self.action if self.action in OPENING_ACTIONS else None


@dataclass(frozen=True)
class RiskCheck:
    """Outcome of gating one decision."""

    allowed: bool
    reason: Optional[str] = None
    adjusted_size: Optional[float] = None  # USD notional


@dataclass(frozen=True)
class CircuitBreakerResult:
    """Whether the agent should pause, and why."""

    pause: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class RiskConfig:
    """Hard risk limits, loaded once at startup."""

    max_position_size_usd: float = 50.0
    max_daily_loss_percent: float = 20.0
    max_open_positions: int = 3
    min_confidence: float = 0.7
    stop_loss_percent: float = 3.0
    take_profit_percent: float = 5.0


@dataclass
class MarketTicker:
    """24h ticker statistics for one symbol."""

    symbol: str
    last_price: float
    price_change_percent: float
    volume: str
    high_price: str
    low_price: str


@dataclass
class MarketContext:
    """Market slice handed to the oracle."""

    current_price: float
    price_change: float
    volume: str
    high: str
    low: str

    @classmethod
    def from_ticker(cls, ticker: MarketTicker) -> "MarketContext":
        return cls(
            current_price=ticker.last_price,
            price_change=ticker.price_change_percent,
            volume=ticker.volume,
            high=ticker.high_price,
            low=ticker.low_price,
        )


@dataclass
class Position:
    """Open (or flat) futures position leg."""

    symbol: str
    position_side: str
    position_amt: float
    entry_price: float = 0.0
    mark_price: float = 0.0
    unrealized_profit: float = 0.0
    leverage: str = "1"

    @property
    def is_open(self) -> bool:
        return self.position_amt != 0


@dataclass
class AccountBalance:
    """Balance of one asset in the futures wallet."""

    asset: str
    balance: float
    available_balance: float
    cross_wallet_balance: float = 0.0


@dataclass
class RiskMetrics:
    """Account-level risk figures handed to the oracle."""

    account_balance: float
    max_position_size: float
    current_drawdown: float
    open_positions: int
    max_open_positions: int


@dataclass
class PerformanceSummary:
    """Recent resolved-decision performance for one symbol."""

    win_rate: float  # percent
    total_pnl: float
    last_trades: int


@dataclass
class OrderRequest:
    """Venue-facing order parameters."""

    symbol: str
    side: str  # "BUY" | "SELL"
    quantity: str  # pre-formatted at the symbol's precision
    type: str = "MARKET"
    position_side: str = "BOTH"
    price: Optional[str] = None
    time_in_force: Optional[str] = None
    reduce_only: Optional[bool] = None

    def to_params(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "side": self.side,
            "type": self.type,
            "positionSide": self.position_side,
            "quantity": self.quantity,
            "price": self.price,
            "timeInForce": self.time_in_force,
            "reduceOnly": self.reduce_only,
        }


@dataclass
class OrderResult:
    """Venue confirmation of an order."""

    order_id: str
    symbol: str
    side: str
    type: str
    status: str
    orig_qty: str
    executed_qty: str = "0"
    avg_price: Optional[str] = None
    cum_quote: Optional[str] = None
    position_side: str = "BOTH"


@dataclass
class SymbolFilters:
    """Trading filters for one symbol, as published in exchange metadata."""

    symbol: str
    quantity_precision: Optional[int] = None
    step_size: Optional[str] = None
    min_notional: Optional[float] = None


@dataclass(frozen=True)
class SignedRequest:
    """Wire-level authenticated payload for one call."""

    params: Dict[str, Any]
    nonce: int
    signature: str
    user_address: str
    signer_address: str

    def to_wire(self) -> Dict[str, Any]:
        wire = dict(self.params)
        wire.update({
            "user": self.user_address,
            "signer": self.signer_address,
            "nonce": str(self.nonce),
            "signature": self.signature,
        })
        return wire


@dataclass
class SymbolResult:
    """What happened to one symbol during a cycle."""

    symbol: str
    decision: Optional[Decision] = None
    risk_check: Optional[RiskCheck] = None
    orders: List[OrderResult] = field(default_factory=list)
    account_balance: float = 0.0
    account_value: float = 0.0
