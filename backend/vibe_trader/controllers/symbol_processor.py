"""Symbol processing controller for individual trading symbols."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple

from vibe_trader.config import Config
from vibe_trader.decision_provider import DecisionProvider
from vibe_trader.errors import ExchangeError, ProtocolError
from vibe_trader.exchange_adapters.aster_client import AsterClient
from vibe_trader.memory.trade_store import TradeStore
from vibe_trader.models import (
    OPENING_ACTIONS,
    Decision,
    MarketContext,
    OrderRequest,
    OrderResult,
    PerformanceSummary,
    Position,
    RiskCheck,
    RiskMetrics,
    SymbolResult,
)
from vibe_trader.position_calculators.order_sizer import adjust_for_min_notional, format_quantity
from vibe_trader.risk_manager import RiskManager


logger = logging.getLogger(__name__)

RECENT_DECISIONS_WINDOW = 10


class SymbolProcessor:
    """Processes one symbol through decide -> persist -> gate -> execute."""

    def __init__(self, config: Config, gateway: AsterClient, decision_provider: DecisionProvider,
                 risk_manager: RiskManager, store: TradeStore):
        """
        Initialize symbol processor.

        Args:
            config: Configuration object
            gateway: Exchange gateway
            decision_provider: Decision oracle adapter
            risk_manager: RiskManager instance
            store: Persistence collaborator
        """
        self.config = config
        self.gateway = gateway
        self.decision_provider = decision_provider
        self.risk_manager = risk_manager
        self.store = store

    def process_symbol(self, symbol: str, peak_balance: float = 0.0) -> SymbolResult:
        """
        Run one decision cycle for a symbol.

        Args:
            symbol: Trading symbol, e.g. "BTCUSDT"
            peak_balance: Highest account value observed so far, for drawdown

        Returns:
            SymbolResult describing the decision, risk outcome and orders

        Raises:
            ExchangeError, ProtocolError: If market or account data cannot be read
            PersistenceError: If the decision cannot be stored
        """
        logger.info(f"Analyzing {symbol}...")

        # Step 1: Gather market and account data
        ticker = self.gateway.get_ticker(symbol)
        market = MarketContext.from_ticker(ticker)
        positions, balance, account_value = self._fetch_account()
        symbol_positions = [p for p in positions if p.symbol == symbol]
        open_positions = [p for p in positions if p.is_open]
        result = SymbolResult(symbol=symbol, account_balance=balance, account_value=account_value)

        # Step 2: Risk metrics and recent performance
        risk_metrics = RiskMetrics(
            account_balance=balance,
            max_position_size=self.config.risk.max_position_size_usd,
            current_drawdown=RiskManager.calculate_drawdown(max(peak_balance, account_value), account_value),
            open_positions=len(open_positions),
            max_open_positions=self.config.risk.max_open_positions,
        )
        performance = self._recent_performance(symbol)

        # Step 3: Ask the oracle
        oracle = self.decision_provider.decide(symbol, market, symbol_positions, risk_metrics, performance)
        decision = oracle.decision
        result.decision = decision
        logger.info(f"  {symbol}: Decision {decision.action} (confidence: {decision.confidence:.2f})")
        logger.info(f"  {symbol}: Vibe {decision.vibe} | Risk {decision.risk_level}")
        logger.info(f"  {symbol}: Reasoning: {decision.reasoning}")

        # Step 4: Persist before any risk check or order
        record = self.store.create_decision(
            self._decision_record(symbol, market, decision, oracle.prompt, oracle.raw_response)
        )

        if decision.action == "HOLD":
            return result

        # Step 5: Risk gate
        size_usd = (
            decision.size * market.current_price
            if decision.size
            else self.config.risk.max_position_size_usd
        )
        daily_pnl = self.get_daily_pnl()
        risk_check = self.risk_manager.evaluate(
            decision.action, size_usd, decision.confidence, positions, balance, daily_pnl
        )
        result.risk_check = risk_check

        if not risk_check.allowed:
            logger.warning(f"  {symbol}: Trade blocked: {risk_check.reason}")
            return result
        if risk_check.adjusted_size is not None:
            logger.info(f"  {symbol}: Position size adjusted: ${risk_check.adjusted_size:.2f}")

        # Step 6: Execute
        if self.config.dry_run:
            logger.info(f"  {symbol}: DRY RUN MODE - {decision.action} not executed")
            return result

        result.orders = self._execute_trade(symbol, decision, risk_check, market.current_price, record["id"])
        return result

    def get_daily_pnl(self) -> float:
        """Realized P&L of trades since 00:00 UTC."""
        midnight = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        return sum(float(t.get("realizedPnl") or 0) for t in self.store.find_trades(since=midnight))

    def _fetch_account(self) -> Tuple[List[Position], float, float]:
        """Positions, available balance and account value (wallet plus unrealized P&L)."""
        if self.config.dry_run:
            return [], self.config.dry_run_balance, self.config.dry_run_balance
        positions = self.gateway.get_positions()
        balances = self.gateway.get_balance()
        available = sum(b.available_balance for b in balances)
        account_value = sum(b.balance for b in balances) + sum(p.unrealized_profit for p in positions)
        return positions, available, account_value

    def _recent_performance(self, symbol: str) -> PerformanceSummary:
        recent = self.store.find_decisions(symbol=symbol, resolved_only=True, limit=RECENT_DECISIONS_WINDOW)
        wins = [d for d in recent if d.get("profitable") is True]
        win_rate = len(wins) / len(recent) * 100 if recent else 0.0
        total_pnl = sum(float(d.get("pnl") or 0) for d in recent)
        return PerformanceSummary(win_rate=win_rate, total_pnl=total_pnl, last_trades=len(recent))

    @staticmethod
    def _decision_record(symbol: str, market: MarketContext, decision: Decision,
                         prompt: str, raw_response: str) -> Dict[str, Any]:
        return {
            "symbol": symbol,
            "price": market.current_price,
            "marketData": {
                "currentPrice": market.current_price,
                "priceChange": market.price_change,
                "volume": market.volume,
                "high": market.high,
                "low": market.low,
            },
            "prompt": prompt,
            "llmResponse": raw_response,
            "reasoning": decision.reasoning,
            "action": decision.action,
            "side": decision.side,
            "quantity": str(decision.size) if decision.size is not None else None,
            "confidence": decision.confidence,
            "vibe": decision.vibe,
            "timeframe": decision.timeframe,
            "stopLoss": decision.stop_loss,
            "takeProfit": decision.take_profit,
            "riskLevel": decision.risk_level,
        }

    def _execute_trade(self, symbol: str, decision: Decision, risk_check: RiskCheck,
                       price: float, decision_id: str) -> List[OrderResult]:
        """
        Submit the order(s) for an approved decision.

        Venue rejections are logged and recorded as alerts; they never
        propagate. Orders placed before a rejection are still persisted.
        """
        logger.info(f"  {symbol}: Executing {decision.action}...")
        orders: List[OrderResult] = []
        try:
            precision = self.gateway.get_quantity_precision(symbol)
            logger.info(f"  {symbol}: Using {precision} decimal places")

            if decision.action in OPENING_ACTIONS:
                quantity = self._opening_quantity(decision, risk_check, price)
                min_notional = self.gateway.get_min_notional(symbol)
                quantity = adjust_for_min_notional(quantity, price, precision, min_notional)
                request = OrderRequest(
                    symbol=symbol,
                    side=decision.action,
                    quantity=format_quantity(quantity, precision),
                )
                orders.append(self._place_and_record(request, price, decision_id))
            elif decision.action == "CLOSE":
                legs = [p for p in self.gateway.get_positions(symbol) if p.is_open]
                if not legs:
                    logger.info(f"  {symbol}: No open position to close")
                for leg in legs:
                    request = OrderRequest(
                        symbol=symbol,
                        side="SELL" if leg.position_amt > 0 else "BUY",
                        quantity=format_quantity(abs(leg.position_amt), precision),
                        position_side=leg.position_side,
                    )
                    orders.append(self._place_and_record(request, price, decision_id))
        except (ExchangeError, ProtocolError) as e:
            logger.error(f"  {symbol}: Failed to execute {decision.action}: {e}")
            self.store.create_alert("ERROR", "MEDIUM", f"Order failed for {symbol}: {e}",
                                    {"symbol": symbol, "decisionId": decision_id, "stage": "order"})

        if orders:
            self.store.update_decision(decision_id, executed=True, orderId=orders[0].order_id)
        return orders

    def _opening_quantity(self, decision: Decision, risk_check: RiskCheck, price: float) -> float:
        if risk_check.adjusted_size is not None:
            return self.risk_manager.calculate_quantity(risk_check.adjusted_size, price)
        if decision.size:
            return decision.size
        return self.risk_manager.calculate_quantity(self.config.risk.max_position_size_usd, price)

    def _place_and_record(self, request: OrderRequest, price: float, decision_id: str) -> OrderResult:
        order = self.gateway.place_order(request)
        logger.info(f"  {request.symbol}: Order placed: {order.order_id} ({request.side} {request.quantity})")
        self.store.create_trade({
            "decisionId": decision_id,
            "orderId": order.order_id,
            "symbol": order.symbol,
            "side": order.side,
            "type": order.type,
            "positionSide": request.position_side,
            "price": self._fill_price(order, price),
            "quantity": order.orig_qty,
            "quoteQty": order.cum_quote,
            "status": order.status,
            "realizedPnl": None,
        })
        return order

    @staticmethod
    def _fill_price(order: OrderResult, fallback: float) -> str:
        if order.avg_price and float(order.avg_price) > 0:
            return order.avg_price
        return str(fallback)
