"""
Stop Geometry
==============

Initial stop placement and short-side stop evolution.

Initial width is direction-asymmetric:
- longs: 1.0R - 1.5R, tighter as spread stability improves
- shorts: 1.35R - 1.5R, structurally wider because shorts see a sharp
  snapback before follow-through

Short stops additionally run a two-phase lifecycle:
- Phase A (first N candles): no shrink, let the snapback happen
- Phase B (MFE >= 1.2R): trail above the last N-bar high + buffer

Short stop distance = max(k * ATR(5), spread * 3, swing high + buffer - entry),
floored at 2x current spread. All distances are floored to a small epsilon
so downstream R math never divides by zero.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from trade_governance.config import RouterConfig, ShortStopConfig
from trade_governance.models import Direction, GovernanceContext, ShortRegime, StopGeometry
from trade_governance.router import classify_short_regime


# (atr multiplier, no-shrink candles, trail activation MFE) per short regime
REGIME_STOP_ADJUSTMENTS: Dict[ShortRegime, Dict[str, float]] = {
    ShortRegime.SHOCK_BREAKDOWN: {
        "initial_stop_atr_multiplier": 1.2,
        "no_shrink_candle_count": 3,
        "trail_activation_mfe_multiple": 1.0,
    },
    ShortRegime.LIQUIDITY_VACUUM: {
        "initial_stop_atr_multiplier": 2.0,
        "no_shrink_candle_count": 8,
        "trail_activation_mfe_multiple": 1.5,
    },
    ShortRegime.BREAKDOWN_CONTINUATION: {
        "initial_stop_atr_multiplier": 1.3,
        "no_shrink_candle_count": 4,
        "trail_activation_mfe_multiple": 1.1,
    },
}


def pip_scale(price: float) -> float:
    """Price value of one pip (JPY-quoted prices sit above 50)."""
    return 0.01 if price > 50 else 0.0001


@dataclass(frozen=True)
class ShortStopLevel:
    """Initial short stop."""

    initial_stop_distance: float
    stop_source: str            # 'atr', 'spread' or 'swing'
    no_shrink_candles: int
    trail_activation_mfe: float


@dataclass(frozen=True)
class ShortStopPhase:
    phase: str                  # 'A' or 'B'
    should_activate_trail: bool


def regime_adjusted_stop_config(regime: ShortRegime, config: Optional[ShortStopConfig] = None) -> ShortStopConfig:
    """Apply the regime's stop overrides to a short stop config."""
    config = config or ShortStopConfig()
    overrides = REGIME_STOP_ADJUSTMENTS.get(regime)
    if not overrides:
        return config
    return config.model_copy(update=overrides)


def compute_short_initial_stop(
    atr5: float,
    current_spread: float,
    recent_swing_high: float,
    entry_price: float,
    config: Optional[ShortStopConfig] = None,
    min_distance: float = 1e-5,
) -> ShortStopLevel:
    """Compute the initial stop distance for a short.

    Takes the widest of the ATR, spread and swing-high candidates, then
    floors it at min_spread_multiple x spread.

    Args:
        atr5: ATR(5) in price units
        current_spread: Current spread in price units
        recent_swing_high: Most recent swing high price
        entry_price: Short entry price
        config: Short stop config
        min_distance: Absolute floor for the distance

    Returns:
        ShortStopLevel
    """
    cfg = config or ShortStopConfig()
    buffer = cfg.swing_high_buffer_pips * pip_scale(entry_price)
    spread = max(0.0, current_spread)

    candidates = [
        ("atr", max(0.0, atr5) * cfg.initial_stop_atr_multiplier),
        ("spread", spread * cfg.initial_stop_spread_multiplier),
        ("swing", max(0.0, recent_swing_high + buffer - entry_price)),
    ]
    # First of equal candidates wins: atr, then spread, then swing
    source, distance = max(candidates, key=lambda c: c[1])

    distance = max(distance, spread * cfg.min_spread_multiple, min_distance)

    return ShortStopLevel(
        initial_stop_distance=distance,
        stop_source=source,
        no_shrink_candles=cfg.no_shrink_candle_count,
        trail_activation_mfe=cfg.trail_activation_mfe_multiple,
    )


def evaluate_short_stop_phase(
    candles_since_entry: int,
    current_mfe: float,
    initial_risk: float,
    config: Optional[ShortStopConfig] = None,
) -> ShortStopPhase:
    """Decide whether a short moves from Phase A (no shrink) to Phase B (trailing)."""
    cfg = config or ShortStopConfig()

    if candles_since_entry < cfg.no_shrink_candle_count:
        return ShortStopPhase(phase="A", should_activate_trail=False)

    mfe_multiple = current_mfe / initial_risk if initial_risk > 0 else 0.0
    activate = mfe_multiple >= cfg.trail_activation_mfe_multiple
    return ShortStopPhase(phase="B" if activate else "A", should_activate_trail=activate)


def compute_short_trailing_stop(
    recent_highs: Sequence[float],
    current_stop: Optional[float] = None,
    config: Optional[ShortStopConfig] = None,
) -> Optional[float]:
    """Phase B trailing stop: last N-bar high plus buffer.

    For shorts the stop sits above price, so a lower level is tighter.
    The trail only ever moves down: an existing current_stop is never
    loosened.

    Returns:
        New stop level, or current_stop when there are no highs
    """
    cfg = config or ShortStopConfig()
    if not recent_highs:
        return current_stop

    structure_high = max(recent_highs[-cfg.trail_structure_bars:])
    level = structure_high + cfg.trail_buffer_pips * pip_scale(structure_high)

    if current_stop is not None:
        return min(current_stop, level)
    return level


def _interpolate_stop_r(rank: float, bounds) -> float:
    low, high = bounds
    return high - (high - low) * (rank / 100)


def compute_stop_geometry(
    direction: Direction,
    ctx: GovernanceContext,
    config: Optional[RouterConfig] = None,
) -> StopGeometry:
    """Initial stop geometry for a new position.

    Args:
        direction: Trade direction
        ctx: Governance context (spread, ATR, swing high, regime)
        config: Router config holding stop ranges and the short stop config

    Returns:
        StopGeometry with stop_distance > 0
    """
    config = config or RouterConfig()
    direction = Direction(direction)
    rank = ctx.spread_stability_rank
    spread = max(0.0, ctx.current_spread)
    atr_live = ctx.atr_value > 0

    if direction == Direction.LONG:
        initial_stop_r = _interpolate_stop_r(rank, config.long_stop_r_range)
        spread_floor = spread * config.short_stop.min_spread_multiple
        distance = max(initial_stop_r * ctx.atr_value, spread_floor) if atr_live else spread_floor
        return StopGeometry(
            direction=direction,
            initial_stop_r=initial_stop_r,
            stop_distance=max(distance, config.min_stop_distance),
            trailing_enabled=True,
            volatility_adaptive=atr_live,
        )

    initial_stop_r = _interpolate_stop_r(rank, config.short_stop_r_range)
    regime = classify_short_regime(ctx).regime
    stop_cfg = regime_adjusted_stop_config(regime, config.short_stop)

    entry = ctx.bid if ctx.bid > 0 else ctx.ask
    atr5 = ctx.indicators.atr5 if ctx.indicators.atr5 is not None else ctx.atr_value
    swing_high = ctx.indicators.recent_swing_high if ctx.indicators.recent_swing_high is not None else entry

    level = compute_short_initial_stop(
        atr5=atr5,
        current_spread=spread,
        recent_swing_high=swing_high,
        entry_price=entry,
        config=stop_cfg,
        min_distance=config.min_stop_distance,
    )

    return StopGeometry(
        direction=direction,
        initial_stop_r=initial_stop_r,
        stop_distance=level.initial_stop_distance,
        trailing_enabled=False,
        volatility_adaptive=atr5 > 0,
        no_shrink_candles=level.no_shrink_candles,
        trail_activation_mfe_r=level.trail_activation_mfe,
    )
