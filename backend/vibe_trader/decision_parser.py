"""Decision parsing and validation layer."""

import json
import logging
import re
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from vibe_trader.errors import OracleValidationError
from vibe_trader.models import Decision


logger = logging.getLogger(__name__)

FALLBACK_REASONING = "fallback: parse failure"

# Fences may share a line with the JSON they wrap
_OPENING_FENCE = re.compile(r"^```(?:json)?\s*")
_CLOSING_FENCE = re.compile(r"\s*```$")


class DecisionSchema(BaseModel):
    """Strict shape the oracle's JSON object must satisfy."""

    model_config = ConfigDict(strict=True, extra="ignore")

    action: Literal["BUY", "SELL", "HOLD", "CLOSE"]
    symbol: str
    size: Optional[float] = Field(default=None, ge=0)
    confidence: float = Field(ge=0, le=1)
    reasoning: str
    vibe: Literal["bullish", "bearish", "neutral", "chaos"]
    timeframe: Literal["scalp", "short", "medium", "long"]
    stopLoss: Optional[float] = None
    takeProfit: Optional[float] = None
    riskLevel: Literal["low", "medium", "high"]


def fallback_decision(symbol: str) -> Decision:
    """The fixed safe decision used whenever oracle output cannot be trusted."""
    return Decision(
        action="HOLD",
        symbol=symbol,
        confidence=0.0,
        reasoning=FALLBACK_REASONING,
        vibe="neutral",
        timeframe="short",
        risk_level="low",
    )


def strip_code_fences(raw_response: str) -> str:
    """Remove a surrounding ```json ... ``` block if present."""
    cleaned = _OPENING_FENCE.sub("", raw_response.strip())
    return _CLOSING_FENCE.sub("", cleaned).strip()


class DecisionParser:
    """Parses and validates oracle output into a Decision."""

    def validate(self, raw_response: str) -> Decision:
        """
        Parse and validate oracle output.

        Raises:
            OracleValidationError: If the text is not one valid Decision object
        """
        try:
            data = json.loads(strip_code_fences(raw_response or ""))
        except json.JSONDecodeError as e:
            raise OracleValidationError(f"JSON parsing failed: {e}") from e

        if not isinstance(data, dict):
            raise OracleValidationError(f"Parsed JSON is not an object: {type(data).__name__}")

        try:
            schema = DecisionSchema.model_validate(data)
        except ValidationError as e:
            raise OracleValidationError(f"Decision failed validation: {e.error_count()} error(s): {e}") from e

        return Decision(
            action=schema.action,
            symbol=schema.symbol,
            size=schema.size,
            confidence=schema.confidence,
            reasoning=schema.reasoning,
            vibe=schema.vibe,
            timeframe=schema.timeframe,
            stop_loss=schema.stopLoss,
            take_profit=schema.takeProfit,
            risk_level=schema.riskLevel,
        )

    def parse(self, raw_response: str, symbol: str) -> Decision:
        """
        Parse oracle output, falling back to a safe HOLD on any violation.

        Args:
            raw_response: Raw text returned by the oracle
            symbol: Symbol the decision was requested for

        Returns:
            Validated Decision, or the fallback HOLD decision
        """
        try:
            return self.validate(raw_response)
        except OracleValidationError as e:
            logger.error(f"{symbol}: {e}. Raw response: {raw_response!r}")
            return fallback_decision(symbol)
