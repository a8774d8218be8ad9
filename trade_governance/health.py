"""
Post-Entry Health Monitor
==========================

Re-scores an open position's health (0-100) on every re-evaluation tick
and recommends a trailing-stop action. Never closes a position: forced
exit is the caller's decision.

Components (weights):
- progress            34%  MFE in R against a 0.60R target
- persistence_delta   18%  momentum persistence now vs at entry
- acceleration_delta  14%  volatility acceleration now vs at entry
- regime_stability    22%  confirmed / early warning / diverging
- drift_penalty       12%  adverse drift once the validation window elapses

Bands: healthy >= 70, caution >= 45, sick >= 30, critical < 30. A
progress failure during regime divergence or early warning is always
critical, whatever the weighted score says.
"""

import logging
from typing import Optional

from trade_governance.config import HealthConfig
from trade_governance.models import (
    Direction,
    GovernanceAction,
    GovernanceActionType,
    HealthBand,
    HealthComponents,
    TradeHealthInput,
    TradeHealthResult,
)
from trade_governance.utils import clamp, pip_multiplier


logger = logging.getLogger(__name__)


def _excursion_pips(direction: Direction, entry: float, price: float, mult: float) -> float:
    if direction == Direction.LONG:
        return (price - entry) * mult
    return (entry - price) * mult


def _band(score: float, config: HealthConfig) -> HealthBand:
    if score >= config.healthy_threshold:
        return HealthBand.HEALTHY
    if score >= config.caution_threshold:
        return HealthBand.CAUTION
    if score >= config.sick_threshold:
        return HealthBand.SICK
    return HealthBand.CRITICAL


def governance_action_for(
    band: HealthBand,
    score: int,
    ue_r: float,
    progress_fail: bool = False,
    regime_diverging: bool = False,
    config: Optional[HealthConfig] = None,
) -> GovernanceAction:
    """Fixed band -> action lookup."""
    config = config or HealthConfig()

    if band == HealthBand.HEALTHY:
        return GovernanceAction(
            type=GovernanceActionType.MAINTAIN,
            trailing_tighten_factor=1.0,
            block_adds=False,
            reason="Trade progressing well, normal trailing",
        )

    if band == HealthBand.CAUTION:
        return GovernanceAction(
            type=GovernanceActionType.TIGHTEN_LIGHT,
            trailing_tighten_factor=config.caution_tighten_factor,
            block_adds=True,
            reason=f"Caution: health {score}, tightening trailing 20%, blocking adds",
        )

    if band == HealthBand.SICK:
        suffix = ", regime diverging" if regime_diverging else ""
        return GovernanceAction(
            type=GovernanceActionType.TIGHTEN_HEAVY,
            trailing_tighten_factor=config.sick_tighten_factor,
            block_adds=True,
            reason=f"Sick: health {score}, tightening trailing 40%{suffix}",
        )

    consider_exit = ue_r < config.consider_exit_ue_r
    return GovernanceAction(
        type=GovernanceActionType.CONSIDER_EXIT if consider_exit else GovernanceActionType.TIGHTEN_AGGRESSIVE,
        trailing_tighten_factor=config.critical_tighten_factor,
        block_adds=True,
        reason=(
            f"Critical: health {score}{' + progress fail' if progress_fail else ''}, "
            f"aggressive tightening{', consider exit' if consider_exit else ''}"
        ),
    )


def compute_trade_health(
    health_input: TradeHealthInput,
    config: Optional[HealthConfig] = None,
) -> TradeHealthResult:
    """Score an open position.

    Args:
        health_input: Position snapshot for this tick
        config: Health monitor configuration

    Returns:
        TradeHealthResult with score, band, progress failure and action

    Example:
        >>> result = compute_trade_health(TradeHealthInput(
        ...     pair="EUR_USD", direction="long", entry_price=1.1000,
        ...     initial_stop_price=1.0990, current_price=1.1008,
        ...     mfe_price=1.1010, bars_since_entry=4, regime_confirmed=True))
        >>> result.health_band
        <HealthBand.HEALTHY: 'healthy'>
    """
    config = config or HealthConfig()
    h = health_input
    mult = pip_multiplier(h.pair)

    r_pips = abs(h.entry_price - h.initial_stop_price) * mult
    r_safe = max(r_pips, config.min_r_pips)

    mfe_price = h.mfe_price if h.mfe_price is not None else h.entry_price
    mfe_r = max(0.0, _excursion_pips(h.direction, h.entry_price, mfe_price, mult)) / r_safe
    ue_r = _excursion_pips(h.direction, h.entry_price, h.current_price, mult) / r_safe

    window = config.validation_window
    if h.volatility_score < config.low_volatility_threshold:
        window = config.low_volatility_window
    in_window = h.bars_since_entry < window

    progress_fail = not in_window and mfe_r < config.progress_fail_mfe_r

    time_to_mfe = h.prev_time_to_mfe_bars
    if time_to_mfe is None and mfe_r > 0:
        time_to_mfe = h.bars_since_entry

    progress = clamp(100 * (mfe_r / config.progress_target_mfe_r))
    persistence = clamp(50 + 1.25 * (h.persistence_now - h.persistence_at_entry))
    acceleration = clamp(50 + (h.acceleration_now - h.acceleration_at_entry))

    regime = 100.0 if h.regime_confirmed else 50.0
    if h.regime_early_warning:
        regime = max(0.0, regime - 35)
    if h.regime_diverging:
        regime = max(0.0, regime - 70)

    if in_window:
        drift = 50.0
    else:
        drift = clamp(100 - 120 * max(0.0, -ue_r) - 60 * max(0.0, 0.20 - mfe_r))

    components = HealthComponents(
        progress=progress,
        persistence_delta=persistence,
        acceleration_delta=acceleration,
        regime_stability=regime,
        drift_penalty=drift,
    )
    w = config.weights
    raw = sum(w[name] * getattr(components, name) for name in w)
    score = int(round(clamp(raw)))

    band = _band(score, config)
    if progress_fail and (h.regime_diverging or h.regime_early_warning) and band != HealthBand.CRITICAL:
        logger.info(
            f"{h.pair} {h.direction.value}: progress fail under regime stress, "
            f"band {band.value} -> critical (score {score})"
        )
        band = HealthBand.CRITICAL

    action = governance_action_for(band, score, ue_r, progress_fail, h.regime_diverging, config)

    return TradeHealthResult(
        r_pips=r_safe,
        mfe_r=mfe_r,
        ue_r=ue_r,
        components=components,
        trade_health_score=score,
        health_band=band,
        progress_fail=progress_fail,
        validation_window=window,
        time_to_mfe_bars=time_to_mfe,
        governance_action=action,
    )
