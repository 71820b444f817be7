"""Aster futures API client (V3 signed endpoints, V1 public endpoints)."""

import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, TypeVar

import requests

from vibe_trader.errors import ExchangeError, ProtocolError, SigningError
from vibe_trader.exchange_adapters.request_signer import RequestSigner, stringify_value
from vibe_trader.models import (
    AccountBalance,
    MarketTicker,
    OrderRequest,
    OrderResult,
    Position,
    SymbolFilters,
)


logger = logging.getLogger(__name__)

DEFAULT_QUANTITY_PRECISION = 3
DEFAULT_MIN_NOTIONAL = 5.0
DEFAULT_RECV_WINDOW = 50000
USER_AGENT = "VibeTrader/1.0"

T = TypeVar("T")


def _fractional_digits(step_size: str) -> int:
    """Significant fractional digits in a step size such as '0.00100000'."""
    if "." not in step_size:
        return 0
    return len(step_size.split(".", 1)[1].rstrip("0"))


def _parse_ticker(data: Any) -> MarketTicker:
    if isinstance(data, list):
        if not data:
            raise KeyError("empty ticker list")
        data = data[0]
    return MarketTicker(
        symbol=data["symbol"],
        last_price=float(data["lastPrice"]),
        price_change_percent=float(data.get("priceChangePercent") or 0),
        volume=str(data.get("volume") or "0"),
        high_price=str(data.get("highPrice") or "0"),
        low_price=str(data.get("lowPrice") or "0"),
    )


def _parse_position(data: Dict[str, Any]) -> Position:
    return Position(
        symbol=data["symbol"],
        position_side=data.get("positionSide", "BOTH"),
        position_amt=float(data["positionAmt"]),
        entry_price=float(data.get("entryPrice") or 0),
        mark_price=float(data.get("markPrice") or 0),
        unrealized_profit=float(data.get("unRealizedProfit") or 0),
        leverage=str(data.get("leverage") or "1"),
    )


def _parse_balance(data: Dict[str, Any]) -> AccountBalance:
    return AccountBalance(
        asset=data["asset"],
        balance=float(data["balance"]),
        available_balance=float(data["availableBalance"]),
        cross_wallet_balance=float(data.get("crossWalletBalance") or 0),
    )


def _parse_order(data: Dict[str, Any]) -> OrderResult:
    return OrderResult(
        order_id=str(data["orderId"]),
        symbol=data["symbol"],
        side=data["side"],
        type=data.get("type", "MARKET"),
        status=data["status"],
        orig_qty=str(data.get("origQty", "0")),
        executed_qty=str(data.get("executedQty", "0")),
        avg_price=data.get("avgPrice"),
        cum_quote=data.get("cumQuote"),
        position_side=data.get("positionSide", "BOTH"),
    )


def _parse_list(data: Any, parser: Callable[[Dict[str, Any]], T]) -> List[T]:
    if not isinstance(data, list):
        raise TypeError(f"expected a list, got {type(data).__name__}")
    return [parser(item) for item in data]


class AsterClient:
    """Typed, authenticated access to the Aster futures venue."""

    def __init__(
        self,
        signer: Optional[RequestSigner],
        base_url: str = "https://fapi.asterdex.com",
        recv_window: int = DEFAULT_RECV_WINDOW,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            signer: Request signer; None restricts the client to public endpoints
            base_url: Venue REST root
            recv_window: Default recvWindow (ms) for signed calls
            timeout: Per-request timeout in seconds
            session: Optional pre-built requests session
        """
        self.signer = signer
        self.base_url = base_url.rstrip("/")
        self.recv_window = recv_window
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def place_order(self, order: OrderRequest) -> OrderResult:
        """Submit a new order."""
        data = self._signed_request("/fapi/v3/order", "POST", order.to_params())
        return self._parse(data, _parse_order, "order")

    def cancel_order(self, symbol: str, order_id: Optional[int] = None,
                     orig_client_order_id: Optional[str] = None) -> OrderResult:
        data = self._signed_request("/fapi/v3/order", "DELETE", {
            "symbol": symbol,
            "orderId": order_id,
            "origClientOrderId": orig_client_order_id,
        })
        return self._parse(data, _parse_order, "order")

    def get_order(self, symbol: str, order_id: Optional[int] = None,
                  orig_client_order_id: Optional[str] = None) -> OrderResult:
        data = self._signed_request("/fapi/v3/order", "GET", {
            "symbol": symbol,
            "orderId": order_id,
            "origClientOrderId": orig_client_order_id,
        })
        return self._parse(data, _parse_order, "order")

    def get_open_orders(self, symbol: Optional[str] = None) -> List[OrderResult]:
        data = self._signed_request("/fapi/v3/openOrders", "GET", {"symbol": symbol})
        return self._parse(data, lambda d: _parse_list(d, _parse_order), "open orders")

    def get_all_orders(self, symbol: str, limit: Optional[int] = None) -> List[OrderResult]:
        data = self._signed_request("/fapi/v3/allOrders", "GET", {"symbol": symbol, "limit": limit})
        return self._parse(data, lambda d: _parse_list(d, _parse_order), "orders")

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    def get_positions(self, symbol: Optional[str] = None) -> List[Position]:
        data = self._signed_request("/fapi/v3/positionRisk", "GET", {"symbol": symbol})
        return self._parse(data, lambda d: _parse_list(d, _parse_position), "positions")

    def get_balance(self) -> List[AccountBalance]:
        data = self._signed_request("/fapi/v3/balance", "GET", {})
        return self._parse(data, lambda d: _parse_list(d, _parse_balance), "balance")

    def get_account(self) -> Dict[str, Any]:
        data = self._signed_request("/fapi/v3/account", "GET", {})
        if not isinstance(data, dict):
            raise ProtocolError("Unexpected account response", body=json.dumps(data))
        return data

    def change_leverage(self, symbol: str, leverage: int) -> Dict[str, Any]:
        return self._signed_request("/fapi/v3/leverage", "POST", {"symbol": symbol, "leverage": leverage})

    def change_margin_type(self, symbol: str, margin_type: str) -> Dict[str, Any]:
        """Switch a symbol between ISOLATED and CROSSED margin."""
        return self._signed_request("/fapi/v3/marginType", "POST", {"symbol": symbol, "marginType": margin_type})

    # ------------------------------------------------------------------
    # Public market data
    # ------------------------------------------------------------------

    def get_ticker(self, symbol: str) -> MarketTicker:
        """24h rolling ticker statistics for a symbol."""
        data = self._public_request("/fapi/v1/ticker/24hr", {"symbol": symbol})
        return self._parse(data, _parse_ticker, "ticker")

    def get_exchange_info(self, symbol: Optional[str] = None) -> Dict[str, Any]:
        data = self._public_request("/fapi/v1/exchangeInfo", {"symbol": symbol})
        if not isinstance(data, dict):
            raise ProtocolError("Unexpected exchangeInfo response", body=json.dumps(data))
        return data

    def get_depth(self, symbol: str, limit: int = 20) -> Dict[str, Any]:
        return self._public_request("/fapi/v1/depth", {"symbol": symbol, "limit": limit})

    def get_mark_price(self, symbol: Optional[str] = None) -> Any:
        return self._public_request("/fapi/v1/premiumIndex", {"symbol": symbol})

    def ping(self) -> Dict[str, Any]:
        return self._public_request("/fapi/v1/ping", {})

    def get_server_time(self) -> int:
        data = self._public_request("/fapi/v1/time", {})
        return self._parse(data, lambda d: int(d["serverTime"]), "server time")

    # ------------------------------------------------------------------
    # Symbol filters
    # ------------------------------------------------------------------

    def get_symbol_filters(self, symbol: str) -> SymbolFilters:
        """
        Read precision and notional filters for a symbol from exchange metadata.

        Raises:
            ExchangeError: If the venue rejects the request or is unreachable
            ProtocolError: If the metadata cannot be understood
        """
        info = self.get_exchange_info(symbol)
        symbol_info = next((s for s in info.get("symbols") or [] if s.get("symbol") == symbol), None)
        if symbol_info is None:
            return SymbolFilters(symbol=symbol)

        filters = {f.get("filterType"): f for f in symbol_info.get("filters") or []}
        lot_size = filters.get("LOT_SIZE") or {}
        min_notional_filter = filters.get("MIN_NOTIONAL") or {}
        min_notional = min_notional_filter.get("notional", min_notional_filter.get("minNotional"))

        precision = symbol_info.get("quantityPrecision")
        try:
            return SymbolFilters(
                symbol=symbol,
                quantity_precision=int(precision) if precision is not None else None,
                step_size=lot_size.get("stepSize"),
                min_notional=float(min_notional) if min_notional is not None else None,
            )
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"Invalid filters for {symbol}: {e}", body=json.dumps(symbol_info))

    def get_quantity_precision(self, symbol: str) -> int:
        """
        Resolve the number of quantity decimals the venue accepts for a symbol.

        Resolution order: quantityPrecision, then the LOT_SIZE step size, then
        a conservative default. Never raises; metadata outages fall back to
        the default so order placement is not blocked.
        """
        try:
            filters = self.get_symbol_filters(symbol)
        except (ExchangeError, ProtocolError) as e:
            logger.warning(f"Precision lookup failed for {symbol}, using default {DEFAULT_QUANTITY_PRECISION}: {e}")
            return DEFAULT_QUANTITY_PRECISION

        if filters.quantity_precision is not None:
            return filters.quantity_precision
        if filters.step_size:
            return _fractional_digits(str(filters.step_size))
        return DEFAULT_QUANTITY_PRECISION

    def get_min_notional(self, symbol: str) -> float:
        """Minimum order notional in USD, falling back to the venue's standard floor."""
        try:
            filters = self.get_symbol_filters(symbol)
        except (ExchangeError, ProtocolError) as e:
            logger.warning(f"Min notional lookup failed for {symbol}, using ${DEFAULT_MIN_NOTIONAL:.2f}: {e}")
            return DEFAULT_MIN_NOTIONAL
        if filters.min_notional and filters.min_notional > 0:
            return filters.min_notional
        return DEFAULT_MIN_NOTIONAL

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _signed_request(self, endpoint: str, method: str, params: Dict[str, Any]) -> Any:
        """
        Sign and send a request.

        GET/DELETE carry the parameters in the query string, POST in a
        form-encoded body.

        Raises:
            SigningError: If the request cannot be signed
            ExchangeError: If the venue rejects the request or is unreachable
            ProtocolError: If a success response is not valid JSON
        """
        if self.signer is None:
            raise SigningError(f"Signed endpoint {endpoint} requires signing credentials")

        request_params = dict(params)
        request_params["recvWindow"] = params.get("recvWindow") or self.recv_window
        request_params["timestamp"] = int(time.time() * 1000)

        signed = self.signer.sign_request(request_params)
        wire = {key: stringify_value(value) for key, value in signed.to_wire().items()}
        url = f"{self.base_url}{endpoint}"

        try:
            if method in ("GET", "DELETE"):
                response = self.session.request(method, url, params=wire, timeout=self.timeout)
            else:
                response = self.session.request(
                    method,
                    url,
                    data=wire,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    timeout=self.timeout,
                )
        except requests.exceptions.RequestException as e:
            raise ExchangeError(str(e)) from e

        return self._handle_response(response)

    def _public_request(self, endpoint: str, params: Dict[str, Any]) -> Any:
        query = {key: stringify_value(value) for key, value in params.items() if value is not None}
        try:
            response = self.session.get(f"{self.base_url}{endpoint}", params=query or None, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ExchangeError(str(e)) from e
        return self._handle_response(response)

    @staticmethod
    def _handle_response(response: requests.Response) -> Any:
        text = response.text

        if not response.ok:
            try:
                error_data = json.loads(text)
                code = error_data["code"]
                msg = error_data.get("msg", "")
            except (ValueError, TypeError, KeyError):
                raise ExchangeError(response.reason or "", status=response.status_code, body=text)
            raise ExchangeError(msg, status=response.status_code, code=code)

        try:
            return json.loads(text)
        except ValueError:
            raise ProtocolError(f"Failed to parse Aster API response: {text[:200]}", body=text)

    @staticmethod
    def _parse(data: Any, parser: Callable[[Any], T], what: str) -> T:
        try:
            return parser(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ProtocolError(f"Unexpected {what} response: {e}", body=json.dumps(data))
