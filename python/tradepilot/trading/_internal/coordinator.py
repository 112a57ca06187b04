from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import List, Optional

from loguru import logger

from tradepilot.utils.ts import get_current_timestamp_ms
from tradepilot.utils.uuid import generate_uuid

from ..constants import INTER_ORDER_DELAY_SECONDS
from ..data import BaseMarketDataService
from ..decision import BaseDecisionResolver
from ..execution import BaseExchangeGateway
from ..history import BaseCycleRecorder, BasePerformanceTracker
from ..models import (
    AccountSnapshot,
    CycleRecord,
    DecisionResult,
    ExecutionResult,
    HistoricalFeedback,
    MarketSample,
    Position,
    PositionSide,
    TradeRecord,
    TradingConfig,
    TradingDecision,
)
from ..risk import RiskManager

TAKE_PROFIT_CLOSE_REASON = "take_profit"

# Core interface for orchestration.
# The coordinator owns one cycle end-to-end; scheduling, cycle numbering and
# the bounded status buffers live in the runtime.


class DecisionCoordinator(ABC):
    """Coordinates a single decision cycle end-to-end.

    A cycle performs, strictly in order:
        1) historical feedback
        2) account snapshot
        3) positions (+ take-profit review) and their market samples
        4) ranked opportunity samples
        5) decision resolution
        6) execution, closes before opens
        7) post-execution equity and one persisted CycleRecord
    """

    @abstractmethod
    async def run_cycle(self, cycle_number: int) -> CycleRecord:
        """Execute one cycle and return its record. Never raises."""
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """Release any held resources."""
        raise NotImplementedError


class DefaultDecisionCoordinator(DecisionCoordinator):
    """Default implementation that wires the full decision pipeline."""

    def __init__(
        self,
        *,
        trading_config: TradingConfig,
        gateway: BaseExchangeGateway,
        market_data: BaseMarketDataService,
        resolver: BaseDecisionResolver,
        risk_manager: RiskManager,
        performance_tracker: BasePerformanceTracker,
        cycle_recorder: BaseCycleRecorder,
        inter_order_delay: Optional[float] = None,
    ) -> None:
        self._config = trading_config
        self.trader_id = trading_config.trader_id
        self._gateway = gateway
        self._market_data = market_data
        self._resolver = resolver
        self._risk = risk_manager
        self._tracker = performance_tracker
        self._recorder = cycle_recorder
        self._inter_order_delay = (
            trading_config.inter_order_delay_seconds
            if inter_order_delay is None
            else inter_order_delay
        )
        self.last_account: Optional[AccountSnapshot] = None

    @property
    def risk_manager(self) -> RiskManager:
        return self._risk

    async def run_cycle(self, cycle_number: int) -> CycleRecord:
        started_ms = get_current_timestamp_ms()
        logger.info("=== Cycle #{} started for {} ===", cycle_number, self.trader_id)

        account: Optional[AccountSnapshot] = None
        feedback: Optional[HistoricalFeedback] = None
        samples: List[MarketSample] = []
        result = DecisionResult()
        execution_results: List[ExecutionResult] = []
        meta = {}
        success = True
        error: Optional[str] = None

        try:
            feedback = await self._load_feedback()

            account = await self._gateway.get_account_info()
            self.last_account = account
            logger.info(
                "Account: equity={:.2f}, available={:.2f}, margin usage={:.1%}",
                account.total_equity,
                account.available_balance,
                account.margin_usage_ratio,
            )

            positions = await self._gateway.get_positions()
            tp_closed = await self.auto_close_by_take_profit(positions)
            if tp_closed:
                meta["take_profit_closes"] = [f"{p.symbol}_{p.side.value}" for p in tp_closed]
                account = await self._gateway.get_account_info()
                self.last_account = account
                positions = await self._gateway.get_positions()

            position_samples = await self._market_data.get_samples_for_positions(positions)
            ranked = await self._market_data.get_ranked_samples(
                self._config.coin_selection_mode, self._config.min_liquidity_usd
            )
            samples = list(position_samples) + list(ranked)
            logger.info(
                "Market context: {} position samples, {} ranked candidates",
                len(position_samples),
                len(ranked),
            )

            result = await self._resolver.resolve(account, samples, feedback, positions)
            logger.info(
                "Resolver ({}) returned {} decision(s)",
                result.provider or "none",
                len(result.decisions),
            )
            for idx, decision in enumerate(result.decisions):
                logger.info(
                    "  Decision {}: {} {} qty={} lev={} conf={}",
                    idx,
                    decision.action.value,
                    decision.symbol or "-",
                    decision.quantity,
                    decision.leverage,
                    decision.confidence,
                )

            execution_results = await self.execute_decisions(result.decisions, account)
        except Exception as exc:  # noqa: BLE001
            success = False
            error = str(exc) or exc.__class__.__name__
            logger.exception("Cycle #{} failed: {}", cycle_number, error)

        post_equity = await self._refresh_equity()

        record = CycleRecord(
            cycle_id=generate_uuid("cycle"),
            trader_id=self.trader_id,
            cycle_number=cycle_number,
            timestamp=started_ms,
            account=account,
            market_samples=samples,
            historical_feedback=feedback,
            chain_of_thought=result.chain_of_thought,
            prompt=result.prompt,
            raw_response=result.raw_response,
            decisions=result.decisions,
            execution_results=execution_results,
            post_execution_equity=post_equity,
            success=success,
            error=error,
            duration_ms=get_current_timestamp_ms() - started_ms,
            meta=meta,
        )
        try:
            self._recorder.record(record)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to persist cycle record #{}", cycle_number)

        logger.info(
            "=== Cycle #{} finished ({}) in {} ms ===",
            cycle_number,
            "ok" if success else "failed",
            record.duration_ms,
        )
        return record

    async def _load_feedback(self) -> HistoricalFeedback:
        try:
            return await self._tracker.get_historical_feedback(
                self._config.historical_cycles_count
            )
        except Exception:  # noqa: BLE001
            logger.warning("Historical feedback unavailable, using neutral defaults", exc_info=True)
            return HistoricalFeedback()

    async def _refresh_equity(self) -> Optional[float]:
        try:
            account = await self._gateway.get_account_info()
        except Exception:  # noqa: BLE001
            logger.warning("Failed to refresh account after execution", exc_info=True)
            return None
        self.last_account = account
        daily_pnl = account.daily_pnl or 0.0
        start_equity = account.total_equity - daily_pnl
        daily_pct = (daily_pnl / start_equity * 100.0) if start_equity > 0 else 0.0
        try:
            await self._tracker.record_equity_snapshot(account.total_equity, daily_pnl, daily_pct)
        except Exception:  # noqa: BLE001
            logger.warning("Failed to record equity snapshot", exc_info=True)
        return account.total_equity

    # -- position review -------------------------------------------------

    async def auto_close_by_take_profit(self, positions: List[Position]) -> List[Position]:
        """Close positions whose tracked take-profit was crossed without a resting TP order.

        LONG closes at ``current_price >= take_profit``, SHORT at
        ``current_price <= take_profit``. Failures are logged per position.
        """
        closed: List[Position] = []
        for position in positions:
            try:
                trade = await self._tracker.get_open_trade(position.symbol, position.side)
                if trade is None or not trade.take_profit:
                    continue
                tp = trade.take_profit
                price = position.current_price
                reached = price >= tp if position.side == PositionSide.LONG else price <= tp
                if not reached:
                    continue

                orders = await self._gateway.get_open_orders(position.symbol)
                if any("take_profit" in (o.type or "").lower() for o in orders):
                    continue

                logger.info(
                    "Take-profit reached for {} {}: price {} vs TP {}, closing",
                    position.symbol,
                    position.side.value,
                    price,
                    tp,
                )
                fill = await self._gateway.close_position(position.symbol, position.side)
                await self._tracker.record_close_trade(
                    position.symbol,
                    position.side,
                    fill.price,
                    order_id=fill.order_id,
                    reason=TAKE_PROFIT_CLOSE_REASON,
                )
                closed.append(position)
            except Exception:  # noqa: BLE001
                logger.warning(
                    "Take-profit review failed for {} {}",
                    position.symbol,
                    position.side.value,
                    exc_info=True,
                )
        return closed

    # -- execution -------------------------------------------------------

    async def execute_decisions(
        self, decisions: List[TradingDecision], account: AccountSnapshot
    ) -> List[ExecutionResult]:
        """Run every close decision, then every open decision, in resolver order.

        Opens missing symbol, quantity or leverage are skipped without a
        result. Each submitted decision yields exactly one ExecutionResult
        and is followed by the inter-order delay.
        """
        closes = [d for d in decisions if d.action.is_close and d.symbol]
        opens = [d for d in decisions if d.action.is_open]
        results: List[ExecutionResult] = []

        for decision in closes:
            results.append(await self._execute_close(decision, account))
            await self._throttle()

        for decision in opens:
            if not (decision.symbol and decision.quantity and decision.leverage):
                logger.debug(
                    "Skipping incomplete open decision: symbol={}, quantity={}, leverage={}",
                    decision.symbol,
                    decision.quantity,
                    decision.leverage,
                )
                continue
            results.append(await self._execute_open(decision, account))
            await self._throttle()

        return results

    async def _throttle(self) -> None:
        if self._inter_order_delay > 0:
            await asyncio.sleep(self._inter_order_delay)

    @staticmethod
    def _failed(decision: TradingDecision, reason: str) -> ExecutionResult:
        logger.warning(
            "Decision {} {} not executed: {}", decision.action.value, decision.symbol, reason
        )
        return ExecutionResult(decision=decision, success=False, error=reason)

    async def _execute_close(
        self, decision: TradingDecision, account: AccountSnapshot
    ) -> ExecutionResult:
        symbol = decision.symbol
        side = decision.action.position_side
        check = self._risk.check_close_position(symbol, side, account)
        if not check.allowed:
            return self._failed(decision, check.reason or "Close blocked by risk manager")

        try:
            # quantity None closes the whole position
            fill = await self._gateway.close_position(symbol, side, decision.quantity)
        except Exception as exc:  # noqa: BLE001
            return self._failed(decision, f"Exchange error: {exc}")

        try:
            await self._tracker.record_close_trade(
                symbol,
                side,
                fill.price,
                order_id=fill.order_id,
                quantity=fill.quantity if decision.quantity else None,
            )
        except Exception:  # noqa: BLE001
            logger.warning("Failed to record closed trade {} {}", symbol, side.value, exc_info=True)

        logger.info("Closed {} {} @ {} (order {})", side.value, symbol, fill.price, fill.order_id)
        return ExecutionResult(
            decision=decision,
            success=True,
            order_id=fill.order_id,
            executed_price=fill.price,
            executed_quantity=fill.quantity,
        )

    async def _execute_open(
        self, decision: TradingDecision, account: AccountSnapshot
    ) -> ExecutionResult:
        symbol = decision.symbol
        side = decision.action.position_side
        quantity = float(decision.quantity)
        leverage = float(decision.leverage)

        try:
            price = await self._gateway.get_market_price(symbol)
        except Exception as exc:  # noqa: BLE001
            return self._failed(decision, f"Failed to fetch market price: {exc}")

        check = self._risk.check_new_position(symbol, side, quantity, leverage, price, account)
        if not check.allowed:
            return self._failed(decision, check.reason or "Open blocked by risk manager")

        protection = self._risk.validate_stop_loss_take_profit(
            side, price, decision.stop_loss, decision.take_profit
        )
        if not protection.valid:
            return self._failed(decision, protection.reason or "Invalid stop-loss/take-profit")

        try:
            fill = await self._gateway.open_position(
                symbol,
                side,
                quantity,
                leverage,
                stop_loss=decision.stop_loss,
                take_profit=decision.take_profit,
            )
        except Exception as exc:  # noqa: BLE001
            return self._failed(decision, f"Exchange error: {exc}")

        try:
            await self._tracker.record_open_trade(
                TradeRecord(
                    trader_id=self.trader_id,
                    symbol=fill.symbol,
                    side=side,
                    entry_price=fill.price,
                    quantity=fill.quantity,
                    leverage=leverage,
                    open_time=fill.timestamp,
                    open_order_id=fill.order_id,
                    stop_loss=decision.stop_loss,
                    take_profit=decision.take_profit,
                )
            )
        except Exception:  # noqa: BLE001
            logger.warning("Failed to record opened trade {} {}", symbol, side.value, exc_info=True)

        logger.info(
            "Opened {} {} {:g} @ {} ({:g}x, order {})",
            side.value,
            symbol,
            fill.quantity,
            fill.price,
            leverage,
            fill.order_id,
        )
        return ExecutionResult(
            decision=decision,
            success=True,
            order_id=fill.order_id,
            executed_price=fill.price,
            executed_quantity=fill.quantity,
        )

    async def close(self) -> None:
        for name, closer in (("gateway", self._gateway.close), ("tracker", self._tracker.close)):
            try:
                await closer()
            except Exception:  # noqa: BLE001
                logger.warning("Failed to close {}", name, exc_info=True)
