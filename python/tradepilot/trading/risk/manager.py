from __future__ import annotations

from typing import Optional

from loguru import logger

from ..constants import DEFAULT_RISK_PERCENTAGE
from ..models import (
    AccountSnapshot,
    PositionLimit,
    PositionSide,
    RiskCheckResult,
    RiskConfig,
    RiskLevel,
    StopLossTakeProfitValidation,
)
from ..utils import is_major_symbol

# Fraction of the requested quantity suggested when projected margin usage
# would breach the ceiling.
MARGIN_FALLBACK_FRACTION = 0.3


class RiskManager:
    """Stateless policy evaluator for opening and closing positions.

    Every method is a pure function of its arguments plus the static
    :class:`RiskConfig` the manager was built with. Violations are returned as
    :class:`RiskCheckResult` values carrying a human-readable reason, never
    raised.
    """

    def __init__(self, config: Optional[RiskConfig] = None) -> None:
        self._config = config or RiskConfig()

    @property
    def config(self) -> RiskConfig:
        return self._config

    def is_major(self, symbol: str) -> bool:
        return is_major_symbol(symbol, self._config.major_symbols)

    def _caps_for(self, symbol: str) -> tuple[bool, float, float]:
        major = self.is_major(symbol)
        if major:
            return (
                True,
                self._config.max_leverage_major,
                self._config.max_position_size_major_multiplier,
            )
        return (
            False,
            self._config.max_leverage_altcoin,
            self._config.max_position_size_altcoin_multiplier,
        )

    # ------------------------------------------------------------------

    def check_close_position(
        self, symbol: str, side: PositionSide, account: AccountSnapshot
    ) -> RiskCheckResult:
        if account.find_position(symbol, side) is None:
            return RiskCheckResult(
                allowed=False,
                reason=f"No {side.value} position found for {symbol}",
            )
        return RiskCheckResult(allowed=True)

    def check_new_position(
        self,
        symbol: str,
        side: PositionSide,
        quantity: float,
        leverage: float,
        price: float,
        account: AccountSnapshot,
    ) -> RiskCheckResult:
        """Gate a new position against stacking, leverage, size and margin limits.

        Checks run in order and the first violation wins:
        1. no existing position on the same symbol and side
        2. leverage within the major/altcoin cap
        3. notional within the class multiplier of equity
        4. open position count below ``max_positions``
        5. projected margin usage within ``max_margin_usage``
        6. required margin covered by the available balance

        Required margin is ``quantity * price / leverage``.
        """
        if quantity <= 0 or leverage <= 0 or price <= 0:
            return RiskCheckResult(
                allowed=False,
                reason=(
                    f"Invalid order parameters for {symbol}: quantity={quantity}, "
                    f"leverage={leverage}, price={price}"
                ),
            )
        equity = float(account.total_equity)
        if equity <= 0:
            return RiskCheckResult(
                allowed=False, reason=f"Account equity {equity:.2f} is not positive"
            )

        if account.find_position(symbol, side) is not None:
            return RiskCheckResult(
                allowed=False,
                reason=f"Already have a {side.value} position on {symbol}. Anti-stacking protection.",
            )

        major, max_leverage, multiplier = self._caps_for(symbol)
        if leverage > max_leverage:
            return RiskCheckResult(
                allowed=False,
                reason=(
                    f"Leverage {leverage:g}x exceeds maximum {max_leverage:g}x "
                    f"for {'major' if major else 'altcoin'}"
                ),
                adjusted_leverage=max_leverage,
            )

        position_value = quantity * price
        max_position_value = equity * multiplier
        if position_value > max_position_value:
            return RiskCheckResult(
                allowed=False,
                reason=(
                    f"Position value ${position_value:.2f} exceeds maximum "
                    f"${max_position_value:.2f} ({multiplier:g}x equity)"
                ),
                adjusted_quantity=max_position_value / price,
            )

        if account.total_positions >= self._config.max_positions:
            return RiskCheckResult(
                allowed=False,
                reason=f"Already at maximum positions limit ({self._config.max_positions})",
            )

        required_margin = position_value / leverage
        projected_usage = (account.total_margin_used + required_margin) / equity
        if projected_usage > self._config.max_margin_usage:
            max_margin_value = self._config.max_margin_usage * equity
            available_margin = max(0.0, max_margin_value - account.total_margin_used)
            margin_limited_qty = available_margin * leverage / price
            fallback_qty = min(quantity * MARGIN_FALLBACK_FRACTION, margin_limited_qty)
            reason = (
                f"Projected margin usage {projected_usage * 100:.1f}% exceeds maximum "
                f"{self._config.max_margin_usage * 100:.1f}%"
            )
            if 0 < fallback_qty < quantity:
                return RiskCheckResult(
                    allowed=False,
                    reason=f"{reason}. Suggested fallback quantity: {fallback_qty:.6f}",
                    adjusted_quantity=fallback_qty,
                )
            return RiskCheckResult(allowed=False, reason=reason)

        if required_margin > account.available_balance:
            return RiskCheckResult(
                allowed=False,
                reason=(
                    f"Insufficient balance. Required: ${required_margin:.2f}, "
                    f"Available: ${account.available_balance:.2f}"
                ),
            )

        return RiskCheckResult(allowed=True)

    def validate_stop_loss_take_profit(
        self,
        side: PositionSide,
        current_price: float,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
    ) -> StopLossTakeProfitValidation:
        """Check that protective levels sit on the correct side of the price.

        LONG: stop-loss below and take-profit above ``current_price``; SHORT
        the inverse. A missing (or non-positive) level means no bound was
        requested. With both levels present the reward/risk distance ratio
        must reach ``min_risk_reward_ratio``.
        """
        sl = stop_loss if stop_loss and stop_loss > 0 else None
        tp = take_profit if take_profit and take_profit > 0 else None
        if sl is None and tp is None:
            return StopLossTakeProfitValidation(valid=True)
        if current_price <= 0:
            return StopLossTakeProfitValidation(
                valid=False, reason=f"Invalid current price {current_price}"
            )

        is_long = side == PositionSide.LONG
        if sl is not None:
            if is_long and sl >= current_price:
                return StopLossTakeProfitValidation(
                    valid=False,
                    reason="Stop-loss must be below entry price for LONG positions",
                )
            if not is_long and sl <= current_price:
                return StopLossTakeProfitValidation(
                    valid=False,
                    reason="Stop-loss must be above entry price for SHORT positions",
                )
        if tp is not None:
            if is_long and tp <= current_price:
                return StopLossTakeProfitValidation(
                    valid=False,
                    reason="Take-profit must be above entry price for LONG positions",
                )
            if not is_long and tp >= current_price:
                return StopLossTakeProfitValidation(
                    valid=False,
                    reason="Take-profit must be below entry price for SHORT positions",
                )

        if sl is None or tp is None:
            return StopLossTakeProfitValidation(valid=True)

        risk = abs(current_price - sl)
        reward = abs(tp - current_price)
        ratio = reward / risk
        if ratio < self._config.min_risk_reward_ratio:
            return StopLossTakeProfitValidation(
                valid=False,
                reason=(
                    f"Risk-reward ratio {ratio:.2f} is below minimum "
                    f"{self._config.min_risk_reward_ratio:g}"
                ),
                risk_reward_ratio=ratio,
            )
        return StopLossTakeProfitValidation(valid=True, risk_reward_ratio=ratio)

    # ------------------------------------------------------------------

    def get_position_limit(self, symbol: str, account: AccountSnapshot) -> PositionLimit:
        major, max_leverage, multiplier = self._caps_for(symbol)
        max_position_value = account.total_equity * multiplier
        current_exposure = sum(
            p.notional for p in account.positions if p.symbol == symbol
        )
        return PositionLimit(
            symbol=symbol,
            is_major=major,
            max_leverage=max_leverage,
            max_position_multiplier=multiplier,
            max_position_value=max_position_value,
            current_exposure=current_exposure,
            available_room=max(0.0, max_position_value - current_exposure),
        )

    def calculate_recommended_position_size(
        self,
        symbol: str,
        price: float,
        leverage: float,
        account: AccountSnapshot,
        risk_percentage: float = DEFAULT_RISK_PERCENTAGE,
    ) -> float:
        """Quantity that commits ``risk_percentage`` of equity as margin.

        Capped by the remaining room under the symbol's position limit.
        """
        if price <= 0:
            return 0.0
        limit = self.get_position_limit(symbol, account)
        risk_amount = account.total_equity * (risk_percentage / 100.0)
        position_value = min(risk_amount * leverage, limit.available_room)
        return max(0.0, position_value / price)

    def get_risk_level(self, account: AccountSnapshot) -> RiskLevel:
        margin_pct = account.margin_usage_ratio * 100
        positions_pct = account.total_positions / self._config.max_positions * 100
        if margin_pct > 70 or positions_pct > 80:
            return RiskLevel.HIGH
        if margin_pct > 50 or positions_pct > 60:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def get_risk_summary(self, account: AccountSnapshot) -> str:
        """One-line synopsis for logs and the status view."""
        level = self.get_risk_level(account)
        summary = (
            f"Risk Level: {level.value} | "
            f"Margin: {account.margin_usage_ratio * 100:.1f}%/"
            f"{self._config.max_margin_usage * 100:.1f}% | "
            f"Positions: {account.total_positions}/{self._config.max_positions}"
        )
        logger.debug("Risk summary: {}", summary)
        return summary
