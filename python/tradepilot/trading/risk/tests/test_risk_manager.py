import pytest

from tradepilot.trading.models import (
    AccountSnapshot,
    Position,
    PositionSide,
    RiskConfig,
    RiskLevel,
)
from tradepilot.trading.risk import RiskManager


def _position(symbol="SOLUSDT", side=PositionSide.LONG, qty=10.0, price=100.0, lev=5.0):
    return Position(
        symbol=symbol,
        side=side,
        quantity=qty,
        entry_price=price,
        current_price=price,
        leverage=lev,
    )


def _account(equity=10_000.0, margin_used=1_000.0, available=9_000.0, positions=None):
    positions = positions or []
    return AccountSnapshot(
        total_equity=equity,
        available_balance=available,
        total_margin_used=margin_used,
        margin_usage_ratio=margin_used / equity if equity else 0.0,
        positions=positions,
    )


@pytest.fixture()
def manager() -> RiskManager:
    return RiskManager(RiskConfig())


def test_close_blocked_without_matching_position(manager):
    account = _account(positions=[_position(side=PositionSide.SHORT)])
    result = manager.check_close_position("SOLUSDT", PositionSide.LONG, account)
    assert not result.allowed
    assert result.reason == "No LONG position found for SOLUSDT"


def test_close_allowed_with_matching_position(manager):
    account = _account(positions=[_position()])
    assert manager.check_close_position("SOLUSDT", PositionSide.LONG, account).allowed


def test_new_position_passes_within_limits(manager):
    result = manager.check_new_position(
        "ADAUSDT", PositionSide.SHORT, 100.0, 5.0, 1.0, _account()
    )
    assert result.allowed
    assert result.reason is None


def test_anti_stacking_blocks_same_symbol_and_side(manager):
    account = _account(positions=[_position()])
    result = manager.check_new_position(
        "SOLUSDT", PositionSide.LONG, 1.0, 2.0, 100.0, account
    )
    assert not result.allowed
    assert "Anti-stacking" in result.reason


def test_leverage_cap_depends_on_symbol_class(manager):
    alt = manager.check_new_position(
        "DOGEUSDT", PositionSide.LONG, 10.0, 25.0, 0.1, _account()
    )
    assert not alt.allowed
    assert "exceeds maximum 20x for altcoin" in alt.reason
    assert alt.adjusted_leverage == 20.0

    major = manager.check_new_position(
        "BTCUSDT", PositionSide.LONG, 0.01, 25.0, 60_000.0, _account()
    )
    assert major.allowed


def test_notional_over_multiplier_is_blocked_with_suggestion(manager):
    # altcoin cap: 1.5 x 10k equity = 15k notional
    result = manager.check_new_position(
        "SOLUSDT", PositionSide.LONG, 200.0, 10.0, 100.0, _account()
    )
    assert not result.allowed
    assert "exceeds maximum $15000.00" in result.reason
    assert result.adjusted_quantity == pytest.approx(150.0)


def test_max_positions_limit(manager):
    positions = [
        _position(symbol=f"C{i}USDT", qty=1.0, price=10.0) for i in range(5)
    ]
    result = manager.check_new_position(
        "XRPUSDT", PositionSide.LONG, 10.0, 2.0, 1.0, _account(positions=positions)
    )
    assert not result.allowed
    assert "maximum positions limit (5)" in result.reason


def test_margin_ceiling_blocks_and_suggests_fallback(manager):
    account = _account(margin_used=8_800.0, available=1_200.0)
    # 14k notional at 10x -> 1.4k margin -> 102% projected usage
    result = manager.check_new_position(
        "SOLUSDT", PositionSide.LONG, 140.0, 10.0, 100.0, account
    )
    assert not result.allowed
    assert result.reason.startswith("Projected margin usage 102.0% exceeds maximum 90.0%")
    assert result.adjusted_quantity == pytest.approx(20.0)
    assert "Suggested fallback quantity" in result.reason


def test_insufficient_available_balance(manager):
    account = _account(margin_used=0.0, available=100.0)
    result = manager.check_new_position(
        "SOLUSDT", PositionSide.LONG, 10.0, 2.0, 100.0, account
    )
    assert not result.allowed
    assert result.reason.startswith("Insufficient balance")


def test_invalid_inputs_are_blocked(manager):
    result = manager.check_new_position(
        "SOLUSDT", PositionSide.LONG, 0.0, 2.0, 100.0, _account()
    )
    assert not result.allowed


def test_long_stop_above_price_is_invalid(manager):
    result = manager.validate_stop_loss_take_profit(PositionSide.LONG, 100.0, 105.0, 120.0)
    assert not result.valid
    assert result.reason


def test_long_levels_on_correct_side_are_valid(manager):
    result = manager.validate_stop_loss_take_profit(PositionSide.LONG, 100.0, 95.0, 110.0)
    assert result.valid
    assert result.risk_reward_ratio == pytest.approx(2.0)


def test_short_levels_are_mirrored(manager):
    assert manager.validate_stop_loss_take_profit(
        PositionSide.SHORT, 100.0, 105.0, 90.0
    ).valid
    bad = manager.validate_stop_loss_take_profit(PositionSide.SHORT, 100.0, 95.0, 90.0)
    assert not bad.valid
    assert "above entry price for SHORT" in bad.reason


def test_missing_levels_are_valid(manager):
    assert manager.validate_stop_loss_take_profit(PositionSide.LONG, 100.0).valid
    assert manager.validate_stop_loss_take_profit(
        PositionSide.LONG, 100.0, stop_loss=90.0
    ).valid
    assert manager.validate_stop_loss_take_profit(
        PositionSide.SHORT, 100.0, take_profit=80.0
    ).valid


def test_poor_risk_reward_is_invalid(manager):
    result = manager.validate_stop_loss_take_profit(PositionSide.LONG, 100.0, 90.0, 110.0)
    assert not result.valid
    assert result.reason == "Risk-reward ratio 1.00 is below minimum 2"


def test_position_limit_and_recommended_size(manager):
    account = _account(positions=[_position(qty=10.0, price=100.0)])
    limit = manager.get_position_limit("SOLUSDT", account)
    assert not limit.is_major
    assert limit.max_position_value == pytest.approx(15_000.0)
    assert limit.current_exposure == pytest.approx(1_000.0)
    assert limit.available_room == pytest.approx(14_000.0)

    qty = manager.calculate_recommended_position_size("SOLUSDT", 100.0, 5.0, account)
    # 2% of 10k = 200 margin * 5x = 1000 notional / 100
    assert qty == pytest.approx(10.0)


def test_risk_summary_levels(manager):
    low = manager.get_risk_summary(_account())
    assert low == "Risk Level: LOW | Margin: 10.0%/90.0% | Positions: 0/5"

    high = _account(margin_used=7_500.0)
    assert manager.get_risk_level(high) == RiskLevel.HIGH

    medium = _account(margin_used=5_500.0)
    assert manager.get_risk_level(medium) == RiskLevel.MEDIUM
