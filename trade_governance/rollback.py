"""
Ensemble Rollback Monitor
=========================

Hysteresis band for falling back from the adaptive ensemble to baseline
behaviour.

States:
- INACTIVE: adaptive ensemble in control
- ACTIVE: rolled back to baseline

Transitions:
- INACTIVE -> ACTIVE when current < 0.80 x baseline
- ACTIVE -> INACTIVE only when current > 1.05 x baseline
- a baseline <= 0 never activates (ratio undefined); an already active
  rollback stays active until a positive baseline clears it

The asymmetric band keeps noisy short-window metrics from flapping the
ensemble on and off.
"""

import logging
import threading
from typing import Optional

from trade_governance.config import RollbackConfig
from trade_governance.models import RollbackState


logger = logging.getLogger(__name__)


class RollbackMonitor:
    """Stateful rollback evaluator. One instance per monitored ensemble."""

    def __init__(self, config: Optional[RollbackConfig] = None):
        self.config = config or RollbackConfig()
        self._active = False
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        with self._lock:
            return self._active

    def evaluate(self, current: float, baseline: float) -> RollbackState:
        """Update the hysteresis flag from one performance reading.

        Args:
            current: Current-window performance (e.g. expectancy)
            baseline: Recorded baseline performance

        Returns:
            RollbackState after this reading
        """
        cfg = self.config
        with self._lock:
            was_active = self._active

            if baseline <= 0:
                ratio = None
                reason = (
                    "Baseline non-positive, rollback remains active"
                    if was_active else "Baseline non-positive, rollback not evaluated"
                )
            else:
                ratio = current / baseline
                if not was_active and ratio < cfg.activation_ratio:
                    self._active = True
                    reason = f"Performance {ratio:.2f}x baseline below {cfg.activation_ratio:.2f}x, rollback activated"
                elif was_active and ratio > cfg.recovery_ratio:
                    self._active = False
                    reason = f"Performance {ratio:.2f}x baseline above {cfg.recovery_ratio:.2f}x, rollback cleared"
                elif was_active:
                    reason = f"Performance {ratio:.2f}x baseline, holding rollback until {cfg.recovery_ratio:.2f}x"
                else:
                    reason = f"Performance {ratio:.2f}x baseline, within band"

            transitioned = self._active != was_active
            active = self._active

        if transitioned and active:
            logger.warning(reason)
        elif transitioned:
            logger.info(reason)

        return RollbackState(
            active=active,
            current=current,
            baseline=baseline,
            ratio=ratio,
            transitioned=transitioned,
            reason=reason,
        )

    def reset(self) -> None:
        with self._lock:
            self._active = False
