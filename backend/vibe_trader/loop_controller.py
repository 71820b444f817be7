"""Loop controller for the Vibe Trader agent."""

import logging
from typing import Any, Dict, Optional

from vibe_trader.config import Config
from vibe_trader.controllers.cycle_controller import CycleController
from vibe_trader.controllers.symbol_processor import SymbolProcessor
from vibe_trader.decision_parser import DecisionParser
from vibe_trader.decision_provider import DecisionProvider, OpenAIDecisionProvider
from vibe_trader.exchange_adapters.aster_client import AsterClient
from vibe_trader.exchange_adapters.request_signer import RequestSigner
from vibe_trader.memory.trade_store import JsonTradeStore, TradeStore
from vibe_trader.risk_manager import RiskManager


logger = logging.getLogger(__name__)


class LoopController:
    """Wires the agent's components together and exposes its control surface."""

    def __init__(self, config: Config, decision_provider: Optional[DecisionProvider] = None,
                 store: Optional[TradeStore] = None):
        """
        Initialize loop controller with all components.

        Args:
            config: Configuration object
            decision_provider: Oracle override (defaults to the OpenAI-compatible provider)
            store: Persistence override (defaults to a JsonTradeStore at config.store_path)
        """
        self.config = config

        logger.info("Initializing loop controller components...")

        self.signer = self._init_signer(config)
        self.gateway = AsterClient(
            self.signer,
            base_url=config.aster_base_url,
            recv_window=config.recv_window,
            timeout=config.request_timeout_seconds,
        )
        self.decision_provider = decision_provider or OpenAIDecisionProvider(
            config.llm_api_key, config.llm_base_url, config.llm_model, parser=DecisionParser()
        )
        self.risk_manager = RiskManager(config.risk)
        self.store = store or JsonTradeStore(config.store_path)

        self.symbol_processor = SymbolProcessor(
            config, self.gateway, self.decision_provider, self.risk_manager, self.store
        )
        self.cycle_controller = CycleController(
            config, self.gateway, self.symbol_processor, self.risk_manager, self.store
        )

        logger.info("Loop controller initialized successfully")

    @staticmethod
    def _init_signer(config: Config) -> Optional[RequestSigner]:
        if not config.aster_private_key:
            logger.info("No signing key configured; signed endpoints are unavailable")
            return None
        return RequestSigner(
            config.aster_user_address, config.aster_signer_address, config.aster_private_key
        )

    def startup(self) -> bool:
        """Delegate startup to cycle controller."""
        return self.cycle_controller.startup()

    def run(self) -> None:
        """Delegate run to cycle controller."""
        self.cycle_controller.run()

    def start(self) -> bool:
        return self.cycle_controller.start()

    def pause(self, reason: Optional[str] = None) -> bool:
        return self.cycle_controller.pause(reason)

    def resume(self) -> bool:
        return self.cycle_controller.resume()

    def stop(self) -> None:
        self.cycle_controller.stop()

    def status(self) -> Dict[str, Any]:
        return self.cycle_controller.status()

    def shutdown(self) -> None:
        """Delegate shutdown to cycle controller."""
        self.cycle_controller.shutdown()

    def register_signal_handlers(self) -> None:
        """Delegate signal handler registration to cycle controller."""
        self.cycle_controller.shutdown_service.register_signal_handlers()
