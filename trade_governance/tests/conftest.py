"""Pytest fixtures for trade governance tests."""
from datetime import datetime, timedelta, timezone

import pytest

from trade_governance.config import RouterConfig
from trade_governance.models import (
    Direction,
    GovernanceContext,
    IndicatorSnapshot,
    LiquiditySession,
    SequencingCluster,
    TradeProposal,
    TradeRecord,
    VolatilityPhase,
)


NOMINAL_CONTEXT = dict(
    mtf_alignment_score=80.0,
    htf_supports=True,
    mtf_confirms=True,
    ltf_clean=True,
    volatility_phase=VolatilityPhase.EXPANSION,
    phase_confidence=80.0,
    liquidity_shock_prob=20.0,
    spread_stability_rank=70.0,
    friction_ratio=5.0,
    pair_expectancy=60.0,
    pair_favored=True,
    is_major_pair=True,
    current_session=LiquiditySession.LONDON_OPEN,
    session_aggressiveness=88.0,
    sequencing_cluster=SequencingCluster.NEUTRAL,
    current_spread=0.00012,
    bid=1.1000,
    ask=1.10012,
    slippage_estimate=0.00002,
    total_friction=0.00014,
    atr_value=0.0010,
    atr_avg=0.0010,
    price_data_available=True,
    analysis_available=True,
    indicators=IndicatorSnapshot(
        coalition_confirmed=True,
        phase_transition_valid=True,
        trend_efficiency=0.6,
        adx=28.0,
    ),
)


def make_context(**overrides) -> GovernanceContext:
    """Nominal EUR_USD context with selected fields overridden."""
    return GovernanceContext(**{**NOMINAL_CONTEXT, **overrides})


def make_short_context(**overrides) -> GovernanceContext:
    """Context in a tradeable breakdown-continuation regime with a confirmed short entry."""
    base = dict(
        htf_supports=False,
        mtf_confirms=True,
        ltf_clean=False,
        mtf_alignment_score=45.0,
        indicators=IndicatorSnapshot(
            adx=26.0,
            adx_rising=True,
            donchian_breakdown=True,
            supertrend_bearish=True,
            post_break_ignition=True,
            atr5=0.0008,
            recent_swing_high=1.1006,
        ),
    )
    return make_context(**{**base, **overrides})


@pytest.fixture
def nominal_context():
    """All-clear context: no gate fires, long entry confirmed."""
    return make_context()


@pytest.fixture
def proposal():
    """EUR_USD long proposal from an authorized agent."""
    return TradeProposal(
        pair="EUR_USD",
        direction=Direction.LONG,
        base_win_probability=0.55,
        base_win_range=(8.0, 15.0),
        base_loss_range=(-10.0, -6.0),
        agent_id="forex-macro",
    )


@pytest.fixture
def short_proposal():
    return TradeProposal(
        pair="EUR_USD",
        direction=Direction.SHORT,
        base_win_probability=0.55,
        base_win_range=(8.0, 15.0),
        base_loss_range=(-10.0, -6.0),
        agent_id="forex-macro",
    )


@pytest.fixture
def shorts_router_config():
    """Router with the short engine live."""
    return RouterConfig(short_engine_enabled=True, short_shadow_only=False)


_EPOCH = datetime(2025, 1, 6, 8, 0, tzinfo=timezone.utc)


def make_trade(
    index: int,
    pips: float,
    agent_id: str = "agent-1",
    direction: Direction = Direction.LONG,
    pair: str = "EUR_USD",
    session: str = "london-open",
    regime: str = "trend",
    composite: float = 0.9,
) -> TradeRecord:
    """Closed trade with a signed pip result, ordered in time by index."""
    entry = 1.1000
    pip = 0.01 if "JPY" in pair else 0.0001
    move = pips * pip
    exit_price = entry + move if direction == Direction.LONG else entry - move
    opened = _EPOCH + timedelta(minutes=30 * index)
    return TradeRecord(
        agent_id=agent_id,
        currency_pair=pair,
        direction=direction,
        entry_price=entry,
        exit_price=exit_price,
        opened_at=opened,
        closed_at=opened + timedelta(minutes=20),
        session_label=session,
        regime_label=regime,
        governance_composite=composite,
    )


SESSIONS = ("london-open", "ny-overlap", "asian")


def long_book(
    n: int = 180,
    agent_id: str = "agent-1",
    win: float = 7.5,
    loss: float = -6.0,
    start: int = 0,
    pair: str = "EUR_USD",
):
    """Alternating long wins and losses spread evenly over three sessions."""
    return [
        make_trade(
            start + i,
            win if i % 2 == 0 else loss,
            agent_id=agent_id,
            pair=pair,
            session=SESSIONS[i % 3],
        )
        for i in range(n)
    ]


@pytest.fixture
def context_factory():
    return make_context


@pytest.fixture
def short_context_factory():
    return make_short_context


@pytest.fixture
def trade_factory():
    return make_trade


@pytest.fixture
def long_book_factory():
    return long_book
