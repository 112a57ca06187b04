"""SQL-backed trade ledger and historical feedback.

P&L of a closed trade includes leverage:

    pct_change = (exit - entry) / entry        (LONG; inverted for SHORT)
    pnl        = quantity * entry * pct_change * leverage
    pnl_pct    = pct_change * leverage * 100
"""

from __future__ import annotations

import asyncio
from typing import List, Optional

import numpy as np
from loguru import logger
from sqlalchemy import case, func
from sqlalchemy.orm import Session, sessionmaker

from ...utils.ts import format_duration_ms, get_current_timestamp_ms
from ..constants import (
    AVOID_SYMBOL_WIN_RATE,
    DEFAULT_HISTORICAL_CYCLES_COUNT,
    FAVOR_SYMBOL_WIN_RATE,
    MIN_TRADES_FOR_SYMBOL_VERDICT,
    NO_LOSS_PROFIT_FACTOR,
)
from ..models import (
    EquitySnapshot,
    HistoricalFeedback,
    PositionSide,
    SymbolPerformance,
    TradeRecord,
    TradeStatus,
)
from .db import EquitySnapshotRow, TradeRow, create_session_factory
from .interfaces import BasePerformanceTracker

BEST_WORST_LIMIT = 5
RECENT_TRADES_LIMIT = 5
PARTIAL_CLOSE_EPSILON = 1e-9


def _to_record(row: TradeRow) -> TradeRecord:
    return TradeRecord(
        id=row.id,
        trader_id=row.trader_id,
        symbol=row.symbol,
        side=PositionSide(row.side),
        entry_price=row.entry_price,
        quantity=row.quantity,
        leverage=row.leverage,
        open_time=row.open_time,
        open_order_id=row.open_order_id,
        stop_loss=row.stop_loss,
        take_profit=row.take_profit,
        exit_price=row.exit_price,
        close_time=row.close_time,
        close_order_id=row.close_order_id,
        pnl=row.pnl,
        pnl_percent=row.pnl_percent,
        holding_duration=(
            format_duration_ms(row.holding_duration) if row.holding_duration is not None else None
        ),
        status=TradeStatus(row.status),
        close_reason=row.close_reason,
    )


def _max_streak(pnls: List[float], winning: bool) -> int:
    best = current = 0
    for pnl in pnls:
        if (pnl > 0) if winning else (pnl < 0):
            current += 1
            best = max(best, current)
        else:
            current = 0
    return best


class SqlPerformanceTracker(BasePerformanceTracker):
    """Performance tracker over the ``trades`` / ``equity_snapshots`` tables.

    Sessions are short-lived: each method opens one, works and closes it.
    """

    def __init__(
        self,
        trader_id: str,
        database_url: str = "sqlite:///data/performance.db",
        session_factory: Optional[sessionmaker] = None,
    ) -> None:
        self.trader_id = trader_id
        self._session_factory = session_factory or create_session_factory(database_url)
        logger.info("Performance tracker initialized for {}", trader_id)

    def _get_session(self) -> Session:
        return self._session_factory()

    def _open_query(self, session: Session, symbol: str, side: PositionSide):
        return (
            session.query(TradeRow)
            .filter(
                TradeRow.trader_id == self.trader_id,
                TradeRow.symbol_side == f"{symbol}_{side.value}",
                TradeRow.status == TradeStatus.OPEN.value,
            )
            .order_by(TradeRow.open_time.desc(), TradeRow.id.desc())
        )

    # Session work is blocking; the public coroutines run it in a worker thread.

    async def record_open_trade(self, trade: TradeRecord) -> int:
        return await asyncio.to_thread(self._record_open_trade, trade)

    async def record_close_trade(
        self,
        symbol: str,
        side: PositionSide,
        exit_price: float,
        order_id: Optional[str] = None,
        reason: str = "ai_decision",
        quantity: Optional[float] = None,
    ) -> Optional[TradeRecord]:
        return await asyncio.to_thread(
            self._record_close_trade, symbol, side, exit_price, order_id, reason, quantity
        )

    async def record_equity_snapshot(
        self, equity: float, daily_pnl: float = 0.0, daily_pnl_percent: float = 0.0
    ) -> None:
        await asyncio.to_thread(
            self._record_equity_snapshot, equity, daily_pnl, daily_pnl_percent
        )

    async def get_historical_feedback(
        self, window: int = DEFAULT_HISTORICAL_CYCLES_COUNT
    ) -> HistoricalFeedback:
        return await asyncio.to_thread(self._get_historical_feedback, window)

    async def get_open_trades(self) -> List[TradeRecord]:
        return await asyncio.to_thread(self._get_open_trades)

    async def get_open_trade(self, symbol: str, side: PositionSide) -> Optional[TradeRecord]:
        return await asyncio.to_thread(self._get_open_trade, symbol, side)

    async def get_equity_history(self, limit: int = 100) -> List[EquitySnapshot]:
        """Most recent ``limit`` snapshots, oldest first."""
        return await asyncio.to_thread(self._get_equity_history, limit)

    def _record_open_trade(self, trade: TradeRecord) -> int:
        session = self._get_session()
        try:
            row = TradeRow(
                trader_id=self.trader_id,
                symbol=trade.symbol,
                side=trade.side.value,
                symbol_side=f"{trade.symbol}_{trade.side.value}",
                entry_price=trade.entry_price,
                quantity=trade.quantity,
                leverage=trade.leverage,
                open_time=trade.open_time,
                open_order_id=trade.open_order_id,
                stop_loss=trade.stop_loss or None,
                take_profit=trade.take_profit or None,
                status=TradeStatus.OPEN.value,
                created_at=get_current_timestamp_ms(),
            )
            session.add(row)
            session.commit()
            logger.info(
                "Recorded open trade: {} {} @ {}", trade.symbol, trade.side.value, trade.entry_price
            )
            return int(row.id)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _record_close_trade(
        self,
        symbol: str,
        side: PositionSide,
        exit_price: float,
        order_id: Optional[str],
        reason: str,
        quantity: Optional[float],
    ) -> Optional[TradeRecord]:
        session = self._get_session()
        try:
            row = self._open_query(session, symbol, side).first()
            if row is None:
                logger.warning("No open trade found for {}_{}", symbol, side.value)
                return None

            if quantity and 0 < quantity < row.quantity - PARTIAL_CLOSE_EPSILON:
                # Partial close: the open row keeps the remainder
                row.quantity -= quantity
                row = TradeRow(
                    trader_id=row.trader_id,
                    symbol=row.symbol,
                    side=row.side,
                    symbol_side=row.symbol_side,
                    entry_price=row.entry_price,
                    quantity=quantity,
                    leverage=row.leverage,
                    open_time=row.open_time,
                    open_order_id=row.open_order_id,
                    stop_loss=row.stop_loss,
                    take_profit=row.take_profit,
                    status=TradeStatus.OPEN.value,
                    created_at=get_current_timestamp_ms(),
                )
                session.add(row)

            close_time = get_current_timestamp_ms()
            if side == PositionSide.LONG:
                pct_change = (exit_price - row.entry_price) / row.entry_price
            else:
                pct_change = (row.entry_price - exit_price) / row.entry_price

            row.exit_price = exit_price
            row.close_time = close_time
            row.close_order_id = order_id
            row.pnl = row.quantity * row.entry_price * pct_change * row.leverage
            row.pnl_percent = pct_change * row.leverage * 100.0
            row.holding_duration = max(0, close_time - row.open_time)
            row.status = TradeStatus.CLOSED.value
            row.close_reason = reason
            session.commit()
            logger.info(
                "Closed trade: {} {}, PnL: ${:.2f} ({:.2f}%)",
                symbol,
                side.value,
                row.pnl,
                row.pnl_percent,
            )
            return _to_record(row)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _record_equity_snapshot(
        self, equity: float, daily_pnl: float = 0.0, daily_pnl_percent: float = 0.0
    ) -> None:
        session = self._get_session()
        try:
            session.add(
                EquitySnapshotRow(
                    trader_id=self.trader_id,
                    timestamp=get_current_timestamp_ms(),
                    equity=equity,
                    daily_pnl=daily_pnl,
                    daily_pnl_percent=daily_pnl_percent,
                )
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _per_symbol_stats(self, session: Session) -> List[SymbolPerformance]:
        total_pnl = func.sum(TradeRow.pnl).label("total_pnl")
        rows = (
            session.query(
                TradeRow.symbol,
                func.count(TradeRow.id),
                func.sum(case((TradeRow.pnl > 0, 1), else_=0)),
                func.avg(TradeRow.pnl),
                total_pnl,
                func.max(TradeRow.pnl),
                func.min(TradeRow.pnl),
            )
            .filter(
                TradeRow.trader_id == self.trader_id,
                TradeRow.status == TradeStatus.CLOSED.value,
            )
            .group_by(TradeRow.symbol)
            .order_by(total_pnl.desc())
            .all()
        )
        return [
            SymbolPerformance(
                symbol=symbol,
                total_trades=int(count),
                win_rate=(float(wins or 0) / count * 100.0) if count else 0.0,
                average_pnl=float(avg or 0.0),
                total_pnl=float(total or 0.0),
                best_trade=float(best or 0.0),
                worst_trade=float(worst or 0.0),
            )
            for symbol, count, wins, avg, total, best, worst in rows
        ]

    def _max_drawdown(self, session: Session) -> float:
        equities = [
            value
            for (value,) in session.query(EquitySnapshotRow.equity)
            .filter(EquitySnapshotRow.trader_id == self.trader_id)
            .order_by(EquitySnapshotRow.timestamp.asc(), EquitySnapshotRow.id.asc())
            .all()
        ]
        if not equities:
            return 0.0
        series = np.asarray(equities, dtype=float)
        peaks = np.maximum.accumulate(series)
        with np.errstate(divide="ignore", invalid="ignore"):
            drawdowns = np.where(peaks > 0, (peaks - series) / peaks * 100.0, 0.0)
        return float(drawdowns.max())

    def _get_historical_feedback(
        self, window: int = DEFAULT_HISTORICAL_CYCLES_COUNT
    ) -> HistoricalFeedback:
        session = self._get_session()
        try:
            rows = (
                session.query(TradeRow)
                .filter(
                    TradeRow.trader_id == self.trader_id,
                    TradeRow.status == TradeStatus.CLOSED.value,
                )
                .order_by(TradeRow.close_time.desc(), TradeRow.id.desc())
                .limit(window)
                .all()
            )
            if not rows:
                return HistoricalFeedback()

            pnls = [row.pnl or 0.0 for row in rows]
            wins = [p for p in pnls if p > 0]
            losses = [p for p in pnls if p < 0]
            total_profit = sum(wins)
            total_loss = abs(sum(losses))
            if total_loss > 0:
                profit_factor = total_profit / total_loss
            else:
                profit_factor = NO_LOSS_PROFIT_FACTOR if total_profit > 0 else 0.0

            returns = np.asarray([row.pnl_percent or 0.0 for row in rows], dtype=float)
            std = float(returns.std())
            sharpe = float(returns.mean()) / std if std > 0 else 0.0

            per_symbol = self._per_symbol_stats(session)
            best = per_symbol[:BEST_WORST_LIMIT]
            worst = list(reversed(per_symbol[-BEST_WORST_LIMIT:]))

            return HistoricalFeedback(
                total_trades=len(rows),
                winning_trades=len(wins),
                losing_trades=len(losses),
                win_rate=len(wins) / len(rows) * 100.0,
                average_profit=(total_profit / len(wins)) if wins else 0.0,
                average_loss=(total_loss / len(losses)) if losses else 0.0,
                profit_factor=profit_factor,
                sharpe_ratio=sharpe,
                max_drawdown=self._max_drawdown(session),
                per_symbol=per_symbol,
                best_symbols=best,
                worst_symbols=worst,
                recent_trades=[_to_record(row) for row in rows[:RECENT_TRADES_LIMIT]],
                consecutive_wins=_max_streak(pnls, winning=True),
                consecutive_losses=_max_streak(pnls, winning=False),
                avoid_symbols=[
                    s.symbol
                    for s in worst
                    if s.win_rate < AVOID_SYMBOL_WIN_RATE
                    and s.total_trades >= MIN_TRADES_FOR_SYMBOL_VERDICT
                ],
                favor_symbols=[
                    s.symbol
                    for s in best
                    if s.win_rate > FAVOR_SYMBOL_WIN_RATE
                    and s.total_trades >= MIN_TRADES_FOR_SYMBOL_VERDICT
                ],
            )
        finally:
            session.close()

    def _get_open_trades(self) -> List[TradeRecord]:
        session = self._get_session()
        try:
            rows = (
                session.query(TradeRow)
                .filter(
                    TradeRow.trader_id == self.trader_id,
                    TradeRow.status == TradeStatus.OPEN.value,
                )
                .order_by(TradeRow.open_time.desc())
                .all()
            )
            return [_to_record(row) for row in rows]
        finally:
            session.close()

    def _get_open_trade(self, symbol: str, side: PositionSide) -> Optional[TradeRecord]:
        session = self._get_session()
        try:
            row = self._open_query(session, symbol, side).first()
            return _to_record(row) if row is not None else None
        finally:
            session.close()

    def _get_equity_history(self, limit: int = 100) -> List[EquitySnapshot]:
        session = self._get_session()
        try:
            rows = (
                session.query(EquitySnapshotRow)
                .filter(EquitySnapshotRow.trader_id == self.trader_id)
                .order_by(EquitySnapshotRow.timestamp.desc(), EquitySnapshotRow.id.desc())
                .limit(limit)
                .all()
            )
            return [
                EquitySnapshot(
                    trader_id=row.trader_id,
                    timestamp=row.timestamp,
                    equity=row.equity,
                    daily_pnl=row.daily_pnl,
                    daily_pnl_percent=row.daily_pnl_percent,
                )
                for row in reversed(rows)
            ]
        finally:
            session.close()

    async def close(self) -> None:
        engine = self._session_factory.kw.get("bind")
        if engine is not None:
            engine.dispose()
