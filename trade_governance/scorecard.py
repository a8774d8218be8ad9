"""
Agent Scorecards
================

Per-agent performance statistics built from closed trades, used by the
heavy tier-resolver path and the rescue pipeline.

Metrics:
- win rate, expectancy (pips/trade), profit factor, net pips
- Sharpe: per-trade mean / sample std, annualized by sqrt(252)
- max drawdown: deepest fall of cumulative pips from its running peak
- 70/30 chronological out-of-sample split
- session coverage: number of sessions with positive expectancy
- session / regime / pair / direction breakdowns, best expectancy first

Design:
- A trade is a win when its signed pip result is strictly positive;
  flat trades count toward gross loss
- Profit factor uses the sentinel convention from utils.profit_factor
- numpy for the array statistics
"""

from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Optional, Sequence

import numpy as np
from pydantic import BaseModel, Field

from trade_governance.config import TierConfig
from trade_governance.exceptions import InsufficientHistoryError
from trade_governance.models import AgentMetrics, AgentTier, Direction, TradeRecord
from trade_governance.utils import pip_multiplier, profit_factor


TRADING_DAYS_PER_YEAR = 252
OOS_SPLIT = 0.70


class SegmentBreakdown(BaseModel):
    """Performance of one slice (session, regime, pair or direction)."""

    key: str
    trades: int
    wins: int
    win_rate: float
    expectancy: float
    net_pips: float
    profit_factor: float

    model_config = {"frozen": True}


class OutOfSampleSplit(BaseModel):
    in_sample_trades: int
    in_sample_expectancy: float
    out_sample_trades: int
    out_sample_expectancy: float
    out_sample_profit_factor: float
    holds: bool

    model_config = {"frozen": True}


class AgentScorecard(BaseModel):
    """Full performance picture for one agent.

    Attributes:
        tier: Raw tier from classify_tier
        sharpe: Per-trade Sharpe annualized by sqrt(252); 0 below two trades
        max_drawdown: Largest peak-to-trough fall of cumulative pips (>= 0)
        session_coverage: Sessions with positive expectancy
    """

    agent_id: str
    tier: AgentTier
    total_trades: int
    wins: int
    win_rate: float
    expectancy: float
    net_pips: float
    gross_profit: float
    gross_loss: float
    profit_factor: float
    sharpe: float
    max_drawdown: float = Field(ge=0.0)

    long_trades: int = 0
    long_net_pips: float = 0.0
    long_win_rate: float = 0.0
    long_profit_factor: float = 0.0
    short_trades: int = 0
    short_net_pips: float = 0.0
    short_win_rate: float = 0.0
    short_profit_factor: float = 0.0

    session_breakdown: List[SegmentBreakdown] = Field(default_factory=list)
    regime_breakdown: List[SegmentBreakdown] = Field(default_factory=list)
    pair_breakdown: List[SegmentBreakdown] = Field(default_factory=list)
    direction_breakdown: List[SegmentBreakdown] = Field(default_factory=list)

    out_of_sample: OutOfSampleSplit
    session_coverage: int = 0

    @property
    def oos_holds(self) -> bool:
        return self.out_of_sample.holds

    def to_metrics(self) -> AgentMetrics:
        return AgentMetrics(
            trades=self.total_trades,
            win_rate=self.win_rate,
            expectancy=self.expectancy,
            profit_factor=self.profit_factor,
            net_pips=self.net_pips,
        )

    model_config = {"frozen": True}


# ============================================================
# PER-TRADE HELPERS
# ============================================================


def calc_pips(trade: TradeRecord) -> float:
    """Signed pip result of a closed trade (positive = profit)."""
    move = trade.exit_price - trade.entry_price
    if trade.direction == Direction.SHORT:
        move = -move
    return move * pip_multiplier(trade.currency_pair)


def is_win(trade: TradeRecord) -> bool:
    return calc_pips(trade) > 0


def _chronological(trades: Iterable[TradeRecord]) -> List[TradeRecord]:
    return sorted(trades, key=lambda t: t.opened_at or t.closed_at)


# ============================================================
# ARRAY STATISTICS
# ============================================================


def compute_sharpe(pips: Sequence[float]) -> float:
    """Per-trade Sharpe ratio annualized by sqrt(252).

    Returns 0.0 with fewer than two trades or zero dispersion.
    """
    arr = np.asarray(pips, dtype=float)
    if arr.size < 2:
        return 0.0
    std = float(np.std(arr, ddof=1))
    if std == 0.0 or not np.isfinite(std):
        return 0.0
    return float(np.mean(arr) / std * np.sqrt(TRADING_DAYS_PER_YEAR))


def compute_max_drawdown(pips: Sequence[float]) -> float:
    """Largest drop of cumulative pips below its running peak (peak starts at 0)."""
    arr = np.asarray(pips, dtype=float)
    if arr.size == 0:
        return 0.0
    equity = np.concatenate(([0.0], np.cumsum(arr)))
    peaks = np.maximum.accumulate(equity)
    return float(np.max(peaks - equity))


def _summarize(pips: Sequence[float]):
    """(trades, wins, win rate, expectancy, net, gross profit, gross loss)."""
    arr = np.asarray(pips, dtype=float)
    n = int(arr.size)
    if n == 0:
        return 0, 0, 0.0, 0.0, 0.0, 0.0, 0.0
    wins = int(np.count_nonzero(arr > 0))
    gross_profit = float(arr[arr > 0].sum())
    gross_loss = float(abs(arr[arr <= 0].sum()))
    net = float(arr.sum())
    return (
        n,
        wins,
        wins / n,
        net / n,
        net,
        gross_profit,
        gross_loss,
    )


def compute_breakdown(
    trades: Sequence[TradeRecord],
    key_fn: Callable[[TradeRecord], str],
    sentinel: float = 99.0,
) -> List[SegmentBreakdown]:
    """Group trades by key_fn and summarize each group, best expectancy first."""
    groups: Dict[str, List[float]] = defaultdict(list)
    for trade in trades:
        groups[key_fn(trade)].append(calc_pips(trade))

    rows = []
    for key, pips in groups.items():
        n, wins, win_rate, expectancy, net, gp, gl = _summarize(pips)
        rows.append(
            SegmentBreakdown(
                key=key,
                trades=n,
                wins=wins,
                win_rate=win_rate,
                expectancy=expectancy,
                net_pips=net,
                profit_factor=profit_factor(gp, gl, sentinel),
            )
        )
    rows.sort(key=lambda r: r.expectancy, reverse=True)
    return rows


def _out_of_sample(pips: Sequence[float], config: TierConfig) -> OutOfSampleSplit:
    split = int(len(pips) * OOS_SPLIT)
    in_sample, out_sample = list(pips[:split]), list(pips[split:])

    is_n, _, _, is_exp, _, _, _ = _summarize(in_sample)
    oos_n, _, _, oos_exp, _, oos_gp, oos_gl = _summarize(out_sample)
    oos_pf = oos_gp / oos_gl if oos_gl > 0 else config.profit_factor_sentinel

    return OutOfSampleSplit(
        in_sample_trades=is_n,
        in_sample_expectancy=is_exp,
        out_sample_trades=oos_n,
        out_sample_expectancy=oos_exp,
        out_sample_profit_factor=oos_pf if oos_n else 0.0,
        holds=oos_n > 0 and oos_exp > 0 and oos_pf >= config.oos_min_profit_factor,
    )


# ============================================================
# TIERS
# ============================================================


def classify_tier(
    expectancy: float,
    profit_factor_value: float,
    net_pips: float,
    session_coverage: int,
    oos_holds: bool,
    config: Optional[TierConfig] = None,
) -> AgentTier:
    """Raw tier from unconstrained history.

    A: expectancy > 0, PF >= 1.10, >= 3 profitable sessions, OOS holds
    B: net > -1000 and PF >= 0.90
    C: net > -1500
    D: otherwise
    """
    config = config or TierConfig()
    if (
        expectancy > 0
        and profit_factor_value >= config.tier_a_min_profit_factor
        and session_coverage >= config.tier_a_min_session_coverage
        and oos_holds
    ):
        return AgentTier.A
    if net_pips > config.tier_b_min_net_pips and profit_factor_value >= config.tier_b_min_profit_factor:
        return AgentTier.B
    if net_pips > config.tier_c_min_net_pips:
        return AgentTier.C
    return AgentTier.D


def build_agent_scorecard(
    agent_id: str,
    trades: Sequence[TradeRecord],
    config: Optional[TierConfig] = None,
    allow_empty: bool = False,
) -> AgentScorecard:
    """Build the scorecard for one agent.

    Args:
        agent_id: Agent identifier
        trades: The agent's closed trades, any order
        config: Tier thresholds
        allow_empty: Return a zeroed tier-D scorecard instead of raising
            when trades is empty

    Returns:
        AgentScorecard

    Raises:
        InsufficientHistoryError: If trades is empty and allow_empty is False
    """
    config = config or TierConfig()
    if not trades and not allow_empty:
        raise InsufficientHistoryError(f"No closed trades for agent {agent_id}")

    sentinel = config.profit_factor_sentinel
    ordered = _chronological(trades)
    pips = [calc_pips(t) for t in ordered]

    n, wins, win_rate, expectancy, net, gp, gl = _summarize(pips)
    pf = profit_factor(gp, gl, sentinel)

    long_pips = [p for t, p in zip(ordered, pips) if t.direction == Direction.LONG]
    short_pips = [p for t, p in zip(ordered, pips) if t.direction == Direction.SHORT]
    l_n, _, l_wr, _, l_net, l_gp, l_gl = _summarize(long_pips)
    s_n, _, s_wr, _, s_net, s_gp, s_gl = _summarize(short_pips)

    sessions = compute_breakdown(ordered, lambda t: t.session_label or "unknown", sentinel)
    oos = _out_of_sample(pips, config)
    coverage = sum(1 for s in sessions if s.expectancy > 0)

    return AgentScorecard(
        agent_id=agent_id,
        tier=classify_tier(expectancy, pf, net, coverage, oos.holds, config) if n else AgentTier.D,
        total_trades=n,
        wins=wins,
        win_rate=win_rate,
        expectancy=expectancy,
        net_pips=net,
        gross_profit=gp,
        gross_loss=gl,
        profit_factor=pf,
        sharpe=compute_sharpe(pips),
        max_drawdown=compute_max_drawdown(pips),
        long_trades=l_n,
        long_net_pips=l_net,
        long_win_rate=l_wr,
        long_profit_factor=profit_factor(l_gp, l_gl, sentinel),
        short_trades=s_n,
        short_net_pips=s_net,
        short_win_rate=s_wr,
        short_profit_factor=profit_factor(s_gp, s_gl, sentinel),
        session_breakdown=sessions,
        regime_breakdown=compute_breakdown(ordered, lambda t: t.regime_label or "unknown", sentinel),
        pair_breakdown=compute_breakdown(ordered, lambda t: t.currency_pair, sentinel),
        direction_breakdown=compute_breakdown(ordered, lambda t: t.direction.value, sentinel),
        out_of_sample=oos,
        session_coverage=coverage,
    )


def build_all_scorecards(
    trades: Iterable[TradeRecord],
    config: Optional[TierConfig] = None,
) -> Dict[str, AgentScorecard]:
    """Scorecards for every agent present in trades, keyed by agent ID."""
    by_agent: Dict[str, List[TradeRecord]] = defaultdict(list)
    for trade in trades:
        by_agent[trade.agent_id].append(trade)
    return {agent_id: build_agent_scorecard(agent_id, agent_trades, config) for agent_id, agent_trades in by_agent.items()}
