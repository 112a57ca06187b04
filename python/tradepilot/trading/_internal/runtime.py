from __future__ import annotations

import asyncio
import contextlib
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Set

from loguru import logger

from ..constants import (
    CYCLE_HISTORY_LIMIT,
    CYCLE_HISTORY_VIEW_LIMIT,
    RECENT_ACTIONS_LIMIT,
)
from ..data import BaseMarketDataService, MarketDataService
from ..decision import BaseDecisionResolver, LlmDecisionResolver, create_providers
from ..execution import BaseExchangeGateway, create_exchange_gateway
from ..history import (
    BaseCycleRecorder,
    BasePerformanceTracker,
    JsonFileCycleRecorder,
    SqlPerformanceTracker,
)
from ..models import (
    AppConfig,
    CycleHistoryEntry,
    CycleRecord,
    EngineState,
    EngineStatus,
    ExecutionResult,
    RecentAction,
    TradingMode,
)
from ..risk import RiskManager
from .coordinator import DefaultDecisionCoordinator


def _pair_results(record: CycleRecord) -> List[Optional[ExecutionResult]]:
    """Execution result for each decision of the record, None when never submitted."""
    pending = list(record.execution_results)
    paired: List[Optional[ExecutionResult]] = []
    for decision in record.decisions:
        match = next((r for r in pending if r.decision is decision), None)
        if match is None:
            match = next((r for r in pending if r.decision == decision), None)
        if match is not None:
            pending.remove(match)
        paired.append(match)
    return paired


class TradingEngine:
    """Timer-driven owner of the cycle counter and the bounded status buffers.

    ``start()`` runs the first cycle right away and then arms a repeating
    timer. A tick that fires while a cycle is still running is skipped unless
    ``allow_cycle_overlap`` is set.
    """

    def __init__(self, coordinator: DefaultDecisionCoordinator, config: AppConfig) -> None:
        self._coordinator = coordinator
        self._config = config
        self._state = EngineState.STOPPED
        self._cycle_number = 0
        self._in_flight = 0
        self._recent_actions: Deque[RecentAction] = deque(maxlen=RECENT_ACTIONS_LIMIT)
        self._cycle_history: Deque[CycleHistoryEntry] = deque(maxlen=CYCLE_HISTORY_LIMIT)
        self._timer_task: Optional[asyncio.Task] = None
        self._cycle_tasks: Set[asyncio.Task] = set()

    @property
    def trader_id(self) -> str:
        return self._coordinator.trader_id

    @property
    def is_running(self) -> bool:
        return self._state == EngineState.RUNNING

    @property
    def cycle_number(self) -> int:
        return self._cycle_number

    @property
    def interval_seconds(self) -> float:
        return self._config.trading_config.decision_interval_ms / 1000.0

    async def start(self) -> None:
        if self.is_running:
            logger.info("Trading engine {} is already running", self.trader_id)
            return
        self._state = EngineState.RUNNING
        logger.info(
            "Starting trading engine {} (interval {:g}s)", self.trader_id, self.interval_seconds
        )
        self._timer_task = asyncio.create_task(self._timer_loop())
        await self.run_cycle()

    async def stop(self) -> None:
        """Disarm the timer. A cycle already in flight runs to completion."""
        if not self.is_running:
            logger.info("Trading engine {} is already stopped", self.trader_id)
            return
        self._state = EngineState.STOPPED
        task, self._timer_task = self._timer_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("Trading engine {} stopped after {} cycles", self.trader_id, self._cycle_number)

    async def shutdown(self) -> None:
        """Stop, wait for in-flight cycles and release collaborators."""
        await self.stop()
        if self._cycle_tasks:
            await asyncio.gather(*self._cycle_tasks, return_exceptions=True)
        await self._coordinator.close()

    async def _timer_loop(self) -> None:
        while self.is_running:
            await asyncio.sleep(self.interval_seconds)
            if not self.is_running:
                break
            self._on_tick()

    def _on_tick(self) -> None:
        if self._in_flight and not self._config.trading_config.allow_cycle_overlap:
            logger.warning(
                "Skipping timer tick: cycle #{} is still running", self._cycle_number
            )
            return
        task = asyncio.create_task(self.run_cycle())
        self._cycle_tasks.add(task)
        task.add_done_callback(self._cycle_tasks.discard)

    async def run_cycle(self) -> CycleRecord:
        """Run one cycle with the next cycle number. Never raises."""
        self._cycle_number += 1
        number = self._cycle_number
        self._in_flight += 1
        try:
            record = await self._coordinator.run_cycle(number)
        finally:
            self._in_flight -= 1
        self._remember(record)
        return record

    def _remember(self, record: CycleRecord) -> None:
        equity = record.post_execution_equity
        if equity is None and record.account is not None:
            equity = record.account.total_equity
        self._cycle_history.append(
            CycleHistoryEntry(
                cycle_number=record.cycle_number,
                timestamp=record.timestamp,
                equity=equity,
                decision_count=len(record.decisions),
                success=record.success,
            )
        )
        for decision, outcome in zip(record.decisions, _pair_results(record)):
            self._recent_actions.append(
                RecentAction(
                    cycle_number=record.cycle_number,
                    timestamp=record.timestamp,
                    action=decision.action,
                    symbol=decision.symbol,
                    reasoning=decision.reasoning,
                    confidence=decision.confidence,
                    success=outcome.success if outcome is not None else None,
                )
            )

    def get_status(self) -> EngineStatus:
        account = self._coordinator.last_account
        return EngineStatus(
            running=self.is_running,
            state=self._state,
            cycle_number=self._cycle_number,
            trader_id=self.trader_id,
            last_account=account,
            recent_actions=list(self._recent_actions)[-RECENT_ACTIONS_LIMIT:],
            cycle_history=list(self._cycle_history)[-CYCLE_HISTORY_VIEW_LIMIT:],
            risk_summary=(
                self._coordinator.risk_manager.get_risk_summary(account) if account else None
            ),
        )


@dataclass
class TradingRuntime:
    config: AppConfig
    engine: TradingEngine
    coordinator: DefaultDecisionCoordinator

    async def run_cycle(self) -> CycleRecord:
        return await self.engine.run_cycle()


async def _check_exchange_account(gateway: BaseExchangeGateway, config: AppConfig) -> None:
    """Log the starting balance outside paper mode; trading goes on regardless."""
    if config.exchange_config.trading_mode == TradingMode.PAPER:
        return
    try:
        account = await gateway.get_account_info()
    except Exception:  # noqa: BLE001
        logger.exception(
            "Failed to fetch exchange account for {} mode; cycles will retry",
            config.exchange_config.trading_mode.value,
        )
        return
    if account.total_equity <= 0:
        logger.error(
            "Exchange account equity is {}. Orders will be rejected until the account is funded.",
            account.total_equity,
        )
    else:
        logger.info(
            "Exchange account ready: equity={:.2f}, available={:.2f}",
            account.total_equity,
            account.available_balance,
        )


async def create_trading_runtime(
    config: AppConfig,
    *,
    gateway: Optional[BaseExchangeGateway] = None,
    market_data: Optional[BaseMarketDataService] = None,
    resolver: Optional[BaseDecisionResolver] = None,
    performance_tracker: Optional[BasePerformanceTracker] = None,
    cycle_recorder: Optional[BaseCycleRecorder] = None,
    inter_order_delay: Optional[float] = None,
) -> TradingRuntime:
    """Wire every collaborator of one trader into a ready-to-start runtime.

    Any collaborator may be injected; missing ones are built from ``config``:

    - gateway: ``create_exchange_gateway`` (paper account or ccxt venue)
    - market data: ``MarketDataService`` over the gateway
    - resolver: ``LlmDecisionResolver`` over the credentialed providers
    - performance tracker: ``SqlPerformanceTracker`` at ``performance_db_url``
    - cycle recorder: ``JsonFileCycleRecorder`` under ``decision_log_dir``

    Raises:
        ConfigurationError / UnsupportedExchangeError: the exchange cannot be built.

    Example:
        >>> runtime = await create_trading_runtime(load_config_from_env())
        >>> await runtime.engine.start()
    """
    trading = config.trading_config
    if gateway is None:
        gateway = create_exchange_gateway(config.exchange_config)
        await _check_exchange_account(gateway, config)

    if market_data is None:
        market_data = MarketDataService(gateway, min_liquidity_usd=trading.min_liquidity_usd)

    if resolver is None:
        providers = create_providers(config.providers)
        if not providers:
            logger.warning("No reasoning provider has credentials; every cycle will wait")
        resolver = LlmDecisionResolver(
            providers,
            risk_config=config.risk_config,
            confidence_threshold=trading.confidence_threshold,
        )
        logger.info("Reasoning providers: {}", " -> ".join(resolver.provider_names) or "none")

    if performance_tracker is None:
        performance_tracker = SqlPerformanceTracker(
            trading.trader_id, database_url=trading.performance_db_url
        )
    if cycle_recorder is None:
        cycle_recorder = JsonFileCycleRecorder(trading.decision_log_dir, trading.trader_id)

    coordinator = DefaultDecisionCoordinator(
        trading_config=trading,
        gateway=gateway,
        market_data=market_data,
        resolver=resolver,
        risk_manager=RiskManager(config.risk_config),
        performance_tracker=performance_tracker,
        cycle_recorder=cycle_recorder,
        inter_order_delay=inter_order_delay,
    )
    return TradingRuntime(
        config=config,
        engine=TradingEngine(coordinator, config),
        coordinator=coordinator,
    )
