"""
Short Engine Shadow Validation
==============================

Promotion gates for the short engine while it runs shadow-only, and the
snapback survival summary that explains why short stops sit wider.

Statuses:
- collecting: fewer shadow trades than the minimum
- promoted: every gate passed
- failed: at least one gate failed; failure_report lists which

Gates (once enough trades exist):
- expectancy > 0
- profit factor valid and >= 1.2 (invalid when gross loss < 0.001)
- drawdown density <= baseline * 1.1
- average friction <= baseline * 1.05
- execution quality score >= 70
"""

from enum import Enum
from typing import List, Optional, Sequence

import numpy as np
from pydantic import BaseModel, Field

from trade_governance.config import ShortShadowConfig


SNAPBACK_MAE_R = 0.6
EMPIRICAL_STOP_PERCENTILE = 0.75
EMPIRICAL_STOP_BUFFER = 1.1
DEFAULT_EMPIRICAL_STOP_R = 1.5


class ShortShadowStatus(str, Enum):
    COLLECTING = "collecting"
    PROMOTED = "promoted"
    FAILED = "failed"


class ShortShadowMetrics(BaseModel):
    """Aggregates from the short engine's shadow trades."""

    trade_count: int = Field(ge=0)
    expectancy: float
    gross_profit: float = Field(ge=0.0)
    gross_loss: float = Field(ge=0.0)
    win_rate: float = Field(ge=0.0, le=1.0)
    drawdown_density: float = Field(ge=0.0)
    avg_friction: float = Field(ge=0.0)
    execution_quality_score: float = Field(ge=0.0, le=100.0)

    model_config = {"frozen": True}


class ShortShadowBaseline(BaseModel):
    """Long-engine reference values the short engine must not be worse than."""

    expectancy: float
    drawdown_density: float = Field(ge=0.0)
    avg_friction: float = Field(ge=0.0)

    model_config = {"frozen": True}


class ShortShadowGates(BaseModel):
    expectancy_positive: bool
    profit_factor_stable: bool
    drawdown_not_worse: bool
    friction_not_worse: bool
    execution_quality_ok: bool

    @property
    def all_passed(self) -> bool:
        return all(self.model_dump().values())

    model_config = {"frozen": True}


class ShortShadowResult(BaseModel):
    status: ShortShadowStatus
    trade_count: int
    min_trades_required: int
    gates: Optional[ShortShadowGates] = None
    profit_factor: Optional[float] = None
    failure_report: Optional[str] = None

    @property
    def all_gates_passed(self) -> bool:
        return self.gates is not None and self.gates.all_passed

    model_config = {"frozen": True}


class ShortTradeOutcome(BaseModel):
    """Closed short trade with its adverse / favourable excursions in R."""

    pnl_pips: float
    mae_r: float = Field(ge=0.0)
    mfe_r: float = Field(default=0.0, ge=0.0)

    @property
    def is_win(self) -> bool:
        return self.pnl_pips > 0

    model_config = {"frozen": True}


class SnapbackSurvival(BaseModel):
    """How shorts behave after a sharp adverse move.

    Attributes:
        avg_mae_r: Mean adverse excursion in R
        win_rate_mae_gt_05r: Win rate of trades that went more than 0.5R against
        win_rate_mae_gt_1r: Win rate of trades that went more than 1.0R against
        pct_winners_with_snapback: % of winners that survived > 0.6R MAE
        empirical_stop_r: 75th percentile winner MAE plus a 10% buffer
    """

    avg_mae_r: float
    win_rate_mae_gt_05r: float
    win_rate_mae_gt_1r: float
    pct_winners_with_snapback: float
    empirical_stop_r: float
    sample_size: int

    model_config = {"frozen": True}


def short_profit_factor(gross_profit: float, gross_loss: float, epsilon: float = 0.001) -> Optional[float]:
    """Profit factor, or None when gross loss is too small to divide by."""
    if gross_loss < epsilon:
        return None
    return gross_profit / gross_loss


def evaluate_short_shadow(
    metrics: ShortShadowMetrics,
    baseline: ShortShadowBaseline,
    config: Optional[ShortShadowConfig] = None,
) -> ShortShadowResult:
    """Decide whether the short engine may leave shadow mode.

    Args:
        metrics: Aggregates from shadow trades
        baseline: Long-engine reference values
        config: Promotion thresholds

    Returns:
        ShortShadowResult (collecting, promoted or failed)
    """
    config = config or ShortShadowConfig()

    if metrics.trade_count < config.min_trades:
        return ShortShadowResult(
            status=ShortShadowStatus.COLLECTING,
            trade_count=metrics.trade_count,
            min_trades_required=config.min_trades,
        )

    pf = short_profit_factor(metrics.gross_profit, metrics.gross_loss, config.profit_factor_epsilon)

    gates = ShortShadowGates(
        expectancy_positive=metrics.expectancy > 0,
        profit_factor_stable=pf is not None and pf >= config.min_profit_factor,
        drawdown_not_worse=metrics.drawdown_density <= baseline.drawdown_density * config.drawdown_tolerance,
        friction_not_worse=metrics.avg_friction <= baseline.avg_friction * config.friction_tolerance,
        execution_quality_ok=metrics.execution_quality_score >= config.min_execution_quality,
    )

    failures: List[str] = []
    if not gates.expectancy_positive:
        failures.append(f"Expectancy negative ({metrics.expectancy:.2f})")
    if not gates.profit_factor_stable:
        if pf is None:
            failures.append("PF invalid (gross loss below epsilon)")
        else:
            failures.append(f"PF {pf:.2f} < {config.min_profit_factor}")
    if not gates.drawdown_not_worse:
        failures.append(
            f"Drawdown density {metrics.drawdown_density:.2f} worse than baseline "
            f"{baseline.drawdown_density:.2f}"
        )
    if not gates.friction_not_worse:
        failures.append(
            f"Friction {metrics.avg_friction:.5f} worse than baseline {baseline.avg_friction:.5f}"
        )
    if not gates.execution_quality_ok:
        failures.append(
            f"Execution quality {metrics.execution_quality_score:.0f} < {config.min_execution_quality:.0f}"
        )

    return ShortShadowResult(
        status=ShortShadowStatus.FAILED if failures else ShortShadowStatus.PROMOTED,
        trade_count=metrics.trade_count,
        min_trades_required=config.min_trades,
        gates=gates,
        profit_factor=pf,
        failure_report="; ".join(failures) if failures else None,
    )


def _win_rate(trades: Sequence[ShortTradeOutcome]) -> float:
    if not trades:
        return 0.0
    return sum(1 for t in trades if t.is_win) / len(trades)


def compute_snapback_survival(trades: Sequence[ShortTradeOutcome]) -> SnapbackSurvival:
    if not trades:
        return SnapbackSurvival(
            avg_mae_r=0.0,
            win_rate_mae_gt_05r=0.0,
            win_rate_mae_gt_1r=0.0,
            pct_winners_with_snapback=0.0,
            empirical_stop_r=DEFAULT_EMPIRICAL_STOP_R,
            sample_size=0,
        )

    mae = np.array([t.mae_r for t in trades], dtype=float)
    winners = [t for t in trades if t.is_win]
    winner_mae = np.sort(np.array([t.mae_r for t in winners], dtype=float))

    if winner_mae.size:
        idx = min(int(winner_mae.size * EMPIRICAL_STOP_PERCENTILE), winner_mae.size - 1)
        empirical = float(winner_mae[idx]) * EMPIRICAL_STOP_BUFFER
        pct_snapback = float(np.count_nonzero(winner_mae > SNAPBACK_MAE_R)) / winner_mae.size * 100
    else:
        empirical = DEFAULT_EMPIRICAL_STOP_R
        pct_snapback = 0.0

    return SnapbackSurvival(
        avg_mae_r=float(mae.mean()),
        win_rate_mae_gt_05r=_win_rate([t for t in trades if t.mae_r > 0.5]),
        win_rate_mae_gt_1r=_win_rate([t for t in trades if t.mae_r > 1.0]),
        pct_winners_with_snapback=pct_snapback,
        empirical_stop_r=empirical,
        sample_size=len(trades),
    )
