"""Decision oracle interface and the OpenAI-compatible implementation."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from openai import OpenAI

from vibe_trader.decision_parser import DecisionParser
from vibe_trader.models import (
    Decision,
    MarketContext,
    PerformanceSummary,
    Position,
    RiskMetrics,
)


logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are "Vibe Trader", an autonomous crypto futures trading agent.

TRADING RULES:
1. Never risk more than 2% of account balance on a single trade
2. Always propose a stop-loss and take-profit for BUY/SELL
3. Be honest about confidence (0-1); only act with confidence >= 0.7
4. Respect daily loss limits and drawdown thresholds

RESPONSE FORMAT:
Respond with exactly one JSON object and nothing else:
{
  "action": "BUY" | "SELL" | "HOLD" | "CLOSE",
  "symbol": "<symbol>",
  "size": <base-asset quantity, optional for HOLD/CLOSE>,
  "confidence": <0.0-1.0>,
  "reasoning": "<2-4 sentences>",
  "vibe": "bullish" | "bearish" | "neutral" | "chaos",
  "timeframe": "scalp" | "short" | "medium" | "long",
  "stopLoss": <price, optional>,
  "takeProfit": <price, optional>,
  "riskLevel": "low" | "medium" | "high"
}"""


@dataclass
class OracleResult:
    """A validated decision together with what was sent and received."""

    decision: Decision
    prompt: str
    raw_response: str


class DecisionProvider(ABC):
    """Abstract base class for decision oracles."""

    def __init__(self, parser: Optional[DecisionParser] = None):
        self.parser = parser or DecisionParser()

    @abstractmethod
    def complete(self, system_prompt: str, prompt: str) -> str:
        """
        Send one request to the oracle.

        Returns:
            str: Raw oracle text (expected to contain one JSON object)
        """

    def decide(
        self,
        symbol: str,
        market: MarketContext,
        positions: List[Position],
        risk: RiskMetrics,
        performance: Optional[PerformanceSummary] = None,
    ) -> OracleResult:
        """
        Ask the oracle for a decision and validate it.

        Never raises for bad oracle output; invalid or missing answers
        become the fallback HOLD decision.
        """
        prompt = build_prompt(symbol, market, positions, risk, performance)
        raw_response = self.complete(SYSTEM_PROMPT, prompt)
        decision = self.parser.parse(raw_response, symbol)
        return OracleResult(decision=decision, prompt=prompt, raw_response=raw_response)


class OpenAIDecisionProvider(DecisionProvider):
    """Decision oracle backed by any OpenAI-compatible chat completions API."""

    def __init__(self, api_key: str, base_url: str, model: str, timeout: float = 30.0,
                 parser: Optional[DecisionParser] = None):
        """
        Initialize the provider.

        Args:
            api_key: API key for the completions endpoint
            base_url: OpenAI-compatible endpoint (e.g. DeepSeek)
            model: Model name
            timeout: Request timeout in seconds
            parser: Decision parser (defaults to a new DecisionParser)
        """
        super().__init__(parser)
        self.model = model
        self.timeout = timeout
        self.client = OpenAI(api_key=api_key, base_url=base_url)

    def complete(self, system_prompt: str, prompt: str) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.7,
                max_tokens=2048,
                timeout=self.timeout,
            )
            return response.choices[0].message.content or ""
        except Exception as e:
            # Returned as text so the parser turns it into the fallback HOLD
            logger.error(f"Oracle request failed: {e}")
            return f"Oracle API error: {e}"


def build_prompt(
    symbol: str,
    market: MarketContext,
    positions: List[Position],
    risk: RiskMetrics,
    performance: Optional[PerformanceSummary] = None,
) -> str:
    """Render the structured context prompt for one symbol."""
    current = next((p for p in positions if p.symbol == symbol and p.is_open), None)
    if current:
        position_block = (
            f"Position Side: {current.position_side}\n"
            f"Amount: {current.position_amt}\n"
            f"Entry Price: ${current.entry_price}\n"
            f"Mark Price: ${current.mark_price}\n"
            f"Unrealized P&L: {current.unrealized_profit}\n"
            f"Leverage: {current.leverage}x"
        )
    else:
        position_block = "No open position"

    sign = "+" if market.price_change > 0 else ""
    lines = [
        f"Current Market State for {symbol}:",
        f"Price: ${market.current_price:.2f}",
        f"24h Change: {sign}{market.price_change:.2f}%",
        f"24h High: ${market.high}",
        f"24h Low: ${market.low}",
        f"24h Volume: {market.volume}",
        "",
        "Current Position:",
        position_block,
        "",
        "Account Risk Metrics:",
        f"Available Balance: ${risk.account_balance:.2f}",
        f"Max Position Size: ${risk.max_position_size:.2f}",
        f"Current Drawdown: {risk.current_drawdown:.2f}%",
        f"Open Positions: {risk.open_positions}/{risk.max_open_positions}",
    ]
    if performance is not None:
        lines += [
            "",
            "Recent Performance:",
            f"Win Rate: {performance.win_rate:.1f}%",
            f"Total P&L: ${performance.total_pnl:.2f}",
            f"Last {performance.last_trades} Trades",
        ]
    lines += ["", "Analyze the market state and respond with the JSON decision only."]
    return "\n".join(lines)
