"""Risk management layer for the Vibe Trader agent."""

import logging
from typing import Iterable

from vibe_trader.models import (
    OPENING_ACTIONS,
    CircuitBreakerResult,
    Position,
    RiskCheck,
    RiskConfig,
)


logger = logging.getLogger(__name__)

MAX_RISK_PER_TRADE_PCT = 0.02

MAX_CONSECUTIVE_LOSSES = 3
MAX_DRAWDOWN_PERCENT = 15.0
MAX_RECENT_ERRORS = 5


class RiskManager:
    """Validates trading decisions against hard risk limits.

    Stateless: every method is a pure function of its arguments and the
    shared, read-only RiskConfig.
    """

    def __init__(self, config: RiskConfig):
        """
        Initialize risk manager with configuration.

        Args:
            config: Risk limits shared by reference with the agent
        """
        self.config = config

    def evaluate(
        self,
        action: str,
        size_usd: float,
        confidence: float,
        positions: Iterable[Position],
        balance: float,
        daily_pnl: float,
    ) -> RiskCheck:
        """
        Run all risk checks and return approval, denial or a resized approval.

        Checks run in a fixed order and the first denial wins. The two size
        caps both apply; the tighter one is reported as ``adjusted_size``.

        Args:
            action: Proposed action ("BUY", "SELL", "HOLD", "CLOSE")
            size_usd: Proposed notional in USD
            confidence: Oracle confidence, 0.0 to 1.0
            positions: Current position legs
            balance: Available account balance in USD
            daily_pnl: Realized P&L since the start of the day

        Returns:
            RiskCheck with the outcome and a human-readable reason
        """
        # HOLD never creates an order, so it passes regardless of confidence
        if action == "HOLD":
            return RiskCheck(allowed=True)

        # Rule 1: Confidence threshold
        if confidence < self.config.min_confidence:
            reason = f"Confidence {confidence:.2f} below threshold {self.config.min_confidence}"
            logger.info(f"Risk check: denied - {reason}")
            return RiskCheck(allowed=False, reason=reason)

        # Rule 2: Balance must be known before any percentage check
        if balance <= 0:
            reason = f"Account balance unavailable (${balance:.2f})"
            logger.warning(f"Risk check: denied - {reason}")
            return RiskCheck(allowed=False, reason=reason)

        # Rule 3: Daily loss circuit breaker
        daily_loss_pct = daily_pnl / balance * 100
        if daily_loss_pct <= -self.config.max_daily_loss_percent:
            reason = (
                f"Daily loss limit reached: {daily_loss_pct:.2f}% "
                f"(max: -{self.config.max_daily_loss_percent}%)"
            )
            logger.warning(f"Risk check: denied - {reason}")
            return RiskCheck(allowed=False, reason=reason)

        # Rule 4: Open position count (new positions only)
        if action in OPENING_ACTIONS:
            open_count = sum(1 for p in positions if p.is_open)
            if open_count >= self.config.max_open_positions:
                reason = f"Max open positions reached: {open_count}/{self.config.max_open_positions}"
                logger.warning(f"Risk check: denied - {reason}")
                return RiskCheck(allowed=False, reason=reason)

        adjusted_size = None
        reason = None

        # Rule 5: Configured position cap
        if size_usd > self.config.max_position_size_usd:
            adjusted_size = self.config.max_position_size_usd
            reason = (
                f"Position size reduced from ${size_usd:.2f} "
                f"to ${self.config.max_position_size_usd:.2f}"
            )

        # Rule 6: Never risk more than 2% of the account on one trade
        max_risk_per_trade = balance * MAX_RISK_PER_TRADE_PCT
        effective_size = adjusted_size if adjusted_size is not None else size_usd
        if effective_size > max_risk_per_trade:
            adjusted_size = max_risk_per_trade
            reason = f"Position size reduced to 2% of account: ${max_risk_per_trade:.2f}"

        if adjusted_size is not None:
            logger.info(f"Risk check: approved with adjustment - {reason}")
            return RiskCheck(allowed=True, reason=reason, adjusted_size=adjusted_size)

        logger.info("Risk check: approved")
        return RiskCheck(allowed=True)

    def circuit_breaker(
        self,
        consecutive_losses: int,
        drawdown_percent: float,
        error_count: int,
    ) -> CircuitBreakerResult:
        """
        Check whether trading should pause.

        Never mutates agent state; the caller decides what a trip means.
        """
        if consecutive_losses >= MAX_CONSECUTIVE_LOSSES:
            return CircuitBreakerResult(
                pause=True, reason=f"Circuit breaker: {consecutive_losses} consecutive losses"
            )
        if drawdown_percent > MAX_DRAWDOWN_PERCENT:
            return CircuitBreakerResult(
                pause=True, reason=f"Circuit breaker: {drawdown_percent:.2f}% drawdown"
            )
        if error_count >= MAX_RECENT_ERRORS:
            return CircuitBreakerResult(
                pause=True, reason=f"Circuit breaker: {error_count} recent errors"
            )
        return CircuitBreakerResult(pause=False)

    def calculate_stop_loss(self, entry_price: float, side: str) -> float:
        if side == "BUY":
            return entry_price * (1 - self.config.stop_loss_percent / 100)
        return entry_price * (1 + self.config.stop_loss_percent / 100)

    def calculate_take_profit(self, entry_price: float, side: str) -> float:
        if side == "BUY":
            return entry_price * (1 + self.config.take_profit_percent / 100)
        return entry_price * (1 - self.config.take_profit_percent / 100)

    @staticmethod
    def calculate_drawdown(peak_balance: float, balance: float) -> float:
        """Percent decline of ``balance`` from ``peak_balance``; 0 without a peak."""
        if peak_balance <= 0 or balance >= peak_balance:
            return 0.0
        return (peak_balance - balance) / peak_balance * 100

    @staticmethod
    def calculate_quantity(usd_value: float, price: float) -> float:
        """Base-asset quantity for a USD notional."""
        return usd_value / price

    @staticmethod
    def get_kelly_size(win_rate: float, avg_win: float, avg_loss: float, balance: float) -> float:
        """
        Advisory half-Kelly position size in USD.

        Args:
            win_rate: Historical win rate in percent (0-100)
            avg_win: Average winning trade size
            avg_loss: Average losing trade size (positive number)
            balance: Account balance

        Returns:
            USD amount, clamped to 0-5% of balance; 1% of balance without data
        """
        if win_rate <= 0 or avg_win <= 0 or avg_loss <= 0:
            return balance * 0.01

        win_prob = win_rate / 100
        win_loss_ratio = avg_win / avg_loss
        kelly = win_prob - (1 - win_prob) / win_loss_ratio
        half_kelly = kelly / 2
        capped = min(max(half_kelly, 0.0), 0.05)
        return balance * capped
