"""Cycle controller for orchestrating trading cycles."""

import logging
import re
import threading
import time
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from vibe_trader.config import Config
from vibe_trader.controllers.symbol_processor import SymbolProcessor
from vibe_trader.errors import ExchangeError, PersistenceError, ProtocolError, SigningError
from vibe_trader.exchange_adapters.aster_client import AsterClient
from vibe_trader.memory.trade_store import TradeStore
from vibe_trader.models import AgentState, SymbolResult
from vibe_trader.risk_manager import RiskManager
from vibe_trader.services.shutdown_service import ShutdownService

logger = logging.getLogger(__name__)

RECENT_OUTCOMES_WINDOW = 10

# Errors that will not go away by retrying next cycle
_CRITICAL_ERROR = re.compile(r"unauthori[sz]ed|authenticat|signature|api[-_ ]?key|balance", re.IGNORECASE)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CycleController:
    """Owns the agent state machine and runs the periodic trading loop.

    State is Stopped, Running or Paused. ``start``, ``pause``, ``resume``
    and ``stop`` may be called from any thread (the control API); the loop
    observes them at symbol and sleep boundaries. Signal handlers run on the
    loop's own thread and must only call ``request_stop``.
    """

    def __init__(self, config: Config, gateway: AsterClient, symbol_processor: SymbolProcessor,
                 risk_manager: RiskManager, store: TradeStore):
        """
        Initialize cycle controller.

        Args:
            config: Configuration object
            gateway: Exchange gateway, used for the startup connectivity check
            symbol_processor: SymbolProcessor instance
            risk_manager: RiskManager instance
            store: Persistence collaborator
        """
        self.config = config
        self.gateway = gateway
        self.symbol_processor = symbol_processor
        self.risk_manager = risk_manager
        self.store = store
        self.shutdown_service = ShutdownService(self)

        self._state = AgentState()
        self._lock = threading.Lock()
        self._wake = threading.Event()
        self._stop_requested = threading.Event()
        self._stopped = False
        self._last_account_value: Optional[float] = None
        self.cycle_count = 0

        logger.info("Cycle controller initialized successfully")

    # State machine

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._state.running

    @property
    def is_paused(self) -> bool:
        with self._lock:
            return self._state.paused

    def start(self) -> bool:
        """
        Transition Stopped -> Running.

        Returns:
            bool: True if the agent started, False if it was already running
            or has been stopped for good

        Raises:
            PersistenceError: If the initial state cannot be written
        """
        with self._lock:
            if self._stopped:
                logger.warning("Agent was stopped; restart the process to run again")
                return False
            if self._state.running:
                logger.warning("Agent already running")
                return False

            previous = self._load_previous_state()
            self._state = AgentState(
                running=True,
                paused=False,
                last_heartbeat=_now(),
                peak_balance=previous.peak_balance if previous else 0.0,
                config=self.config.redacted(),
            )
            snapshot = replace(self._state)

        try:
            self.store.save_agent_state(snapshot)
        except PersistenceError:
            with self._lock:
                self._state.running = False
            raise

        logger.info("Vibe Trader started")
        return True

    def pause(self, reason: Optional[str] = None) -> bool:
        """Transition Running -> Paused. No-op if not running or already paused."""
        with self._lock:
            if not self._state.running or self._state.paused:
                return False
            self._state.paused = True
        logger.warning(f"Agent paused{': ' + reason if reason else ''}")
        self._persist_state()
        return True

    def resume(self) -> bool:
        """Transition Paused -> Running. No-op if not paused."""
        with self._lock:
            if not self._state.running or not self._state.paused:
                return False
            self._state.paused = False
        logger.info("Agent resumed")
        self._persist_state()
        return True

    def stop(self) -> None:
        """Transition to Stopped from any state and wake the loop."""
        with self._lock:
            already_stopped = self._stopped and not self._state.running
            self._stopped = True
            self._state.running = False
            self._state.paused = False
        self._wake.set()
        if already_stopped:
            return
        logger.info("Agent stopping...")
        self._persist_state()

    def request_stop(self) -> None:
        """Ask the loop to stop at its next boundary. Takes no locks."""
        self._stop_requested.set()
        self._wake.set()

    def shutdown(self) -> None:
        """Gracefully shutdown the agent."""
        self.shutdown_service.shutdown()

    def status(self) -> Dict[str, Any]:
        """Read-only snapshot of the agent state."""
        with self._lock:
            state = replace(self._state)
        return {
            "status": state.status.value,
            "running": state.running,
            "paused": state.paused,
            "lastHeartbeat": state.last_heartbeat.isoformat() if state.last_heartbeat else None,
            "peakBalance": state.peak_balance,
            "cycleCount": self.cycle_count,
            "symbols": list(self.config.symbols),
            "dryRun": self.config.dry_run,
        }

    # Loop

    def startup(self) -> bool:
        """
        Test exchange connectivity before starting main loop.

        Returns:
            bool: True if all connectivity tests pass, False otherwise
        """
        logger.info("=" * 60)
        logger.info("STARTING VIBE TRADER")
        logger.info("=" * 60)

        logger.info("Testing exchange connectivity...")
        try:
            self.gateway.ping()
            if self.config.dry_run:
                logger.info("DRY RUN MODE: Skipping balance fetch")
                logger.info(f"Simulated balance: ${self.config.dry_run_balance:.2f}")
            else:
                balances = self.gateway.get_balance()
                total = sum(b.available_balance for b in balances)
                logger.info(f"Available balance: ${total:.2f}")
            logger.info("Exchange connectivity OK")
        except (ExchangeError, ProtocolError, SigningError) as e:
            logger.error(f"Exchange connectivity FAILED: {e}")
            return False

        logger.info(f"Trading {', '.join(self.config.symbols)} every {self.config.loop_interval_seconds}s")
        logger.info("=" * 60)
        return True

    def run(self) -> None:
        """
        Execute agent cycles until stopped.

        Errors in a cycle are recorded as alerts and never end the loop.
        """
        if self._stop_requested.is_set():
            self.stop()
            return
        if not self.is_running and not self.start():
            return

        while self.is_running:
            if self._stop_requested.is_set():
                self.stop()
                break

            cycle_start_time = time.time()
            try:
                if self.is_paused:
                    logger.info("Agent is PAUSED - skipping cycle")
                else:
                    self.run_cycle()
                if self.is_running:
                    self._heartbeat()
            except Exception as e:
                logger.error(f"Cycle {self.cycle_count} failed: {e}", exc_info=True)
                self._handle_cycle_error(e)

            self._sleep_until_next_cycle(cycle_start_time)

        logger.info("Vibe Trader stopped")

    def run_cycle(self) -> List[SymbolResult]:
        """
        Process every configured symbol once.

        Returns:
            Results for the symbols that completed, in configured order
        """
        self.cycle_count += 1
        logger.info(f"CYCLE {self.cycle_count} - {_now().strftime('%H:%M:%S')}")

        results = []
        for symbol in self.config.symbols:
            if self._stop_requested.is_set() or not self.is_running or self.is_paused:
                logger.info(f"Skipping remaining symbols from {symbol} (agent not running)")
                break

            try:
                with self._lock:
                    peak_balance = self._state.peak_balance
                result = self.symbol_processor.process_symbol(symbol, peak_balance=peak_balance)
                results.append(result)
                self._track_account_value(result.account_value)
            except Exception as e:
                logger.error(f"Error processing {symbol}: {e}", exc_info=True)
                self._record_error(f"Error processing {symbol}: {e}", {"symbol": symbol})
                if self._is_critical(e):
                    self.pause(f"critical error on {symbol}: {e}")
                    break

            self._check_circuit_breaker()

        logger.info(f"CYCLE {self.cycle_count} COMPLETE")
        return results

    def _check_circuit_breaker(self) -> None:
        consecutive_losses = self._consecutive_losses()
        with self._lock:
            peak_balance = self._state.peak_balance
        value = self._last_account_value if self._last_account_value is not None else peak_balance
        drawdown = RiskManager.calculate_drawdown(peak_balance, value)
        since = _now() - timedelta(seconds=self.config.error_window_seconds)
        error_count = len(self.store.find_alerts(since=since, alert_type="ERROR"))

        breaker = self.risk_manager.circuit_breaker(consecutive_losses, drawdown, error_count)
        if not breaker.pause:
            return

        logger.warning(breaker.reason)
        self.pause(breaker.reason)
        try:
            self.store.create_alert("CIRCUIT_BREAKER", "HIGH", breaker.reason, {
                "consecutiveLosses": consecutive_losses,
                "drawdownPercent": drawdown,
                "errorCount": error_count,
            })
        except PersistenceError as e:
            logger.error(f"Failed to record circuit breaker alert: {e}")

    def _consecutive_losses(self) -> int:
        """Losses among the most recent resolved decisions, counted until the first win."""
        count = 0
        for decision in self.store.find_decisions(resolved_only=True, limit=RECENT_OUTCOMES_WINDOW):
            if decision.get("profitable"):
                break
            count += 1
        return count

    def _track_account_value(self, value: float) -> None:
        self._last_account_value = value
        with self._lock:
            if value > self._state.peak_balance:
                self._state.peak_balance = value

    def _handle_cycle_error(self, error: Exception) -> None:
        self._record_error(f"Cycle error: {error}", {"cycle": self.cycle_count})
        if self._is_critical(error):
            self.pause(f"critical error: {error}")

    @staticmethod
    def _is_critical(error: Exception) -> bool:
        if isinstance(error, ExchangeError) and error.status in (401, 403):
            return True
        return bool(_CRITICAL_ERROR.search(str(error)))

    def _record_error(self, message: str, metadata: Dict[str, Any]) -> None:
        try:
            self.store.create_alert("ERROR", "HIGH", message, metadata)
        except PersistenceError as e:
            logger.error(f"Failed to record alert: {e}")

    def _heartbeat(self) -> None:
        with self._lock:
            self._state.last_heartbeat = _now()
            snapshot = replace(self._state)
        self.store.save_agent_state(snapshot)

    def _persist_state(self) -> None:
        with self._lock:
            snapshot = replace(self._state)
        try:
            self.store.save_agent_state(snapshot)
        except PersistenceError as e:
            logger.error(f"Failed to persist agent state: {e}")

    def _load_previous_state(self) -> Optional[AgentState]:
        try:
            return self.store.load_agent_state()
        except PersistenceError as e:
            logger.warning(f"Could not load previous agent state: {e}")
            return None

    def _sleep_until_next_cycle(self, cycle_start_time: float) -> None:
        """Sleep until the next cycle based on configured interval; stop wakes it early."""
        if not self.is_running or self._stop_requested.is_set():
            return
        cycle_duration = time.time() - cycle_start_time
        sleep_time = max(0, self.config.loop_interval_seconds - cycle_duration)

        if sleep_time > 0:
            logger.debug(f"Sleeping for {sleep_time:.1f} seconds until next cycle")
            self._wake.wait(sleep_time)
        else:
            logger.warning(f"Cycle took {cycle_duration:.1f}s, longer than interval {self.config.loop_interval_seconds}s")
