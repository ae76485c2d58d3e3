#!/usr/bin/env python3
"""
Rebalancing Planner
===================

Computes a target allocation for a multi-asset portfolio, the buy/sell
adjustment per asset needed to reach it, and rough cost / tax estimates.

Conventions:
  - ``PortfolioAsset.allocation`` is the USD price per unit, so
    ``amount × allocation`` is the asset's USD value.
  - Ideal allocations are percentages (0–100) per risk tier; their sum
    is not enforced.

Cost models:
  flat      : total_value × fee_rate × number_of_assets
  per_trade : Σ amount_to_adjust × fee_rate

Tax model (assumed gain, not realized gain):
  Σ max(0, current_value × 10%) × 15%   over recognized assets
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from defi_analytics.central_config import RISK_TOLERANCES, RebalancingConfig, config
from defi_analytics.errors import ValidationError
from defi_analytics.stablecoins import normalize_symbol

logger = logging.getLogger(__name__)


def _finite_non_negative(name: str, value: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name} must be a number, got {value!r}") from e
    if not math.isfinite(number) or number < 0:
        raise ValidationError(f"{name} must be a finite non-negative number, got {value!r}")
    return number


def normalize_risk_tolerance(risk_tolerance: str) -> str:
    """'Low ' → 'low'; anything outside low/medium/high is rejected."""
    tier = str(risk_tolerance).strip().lower()
    if tier not in RISK_TOLERANCES:
        raise ValidationError(
            f"risk tolerance must be one of {RISK_TOLERANCES}, got {risk_tolerance!r}"
        )
    return tier


# ── Data ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PortfolioAsset:
    token: str
    amount: float
    allocation: float  # USD price per unit

    def __post_init__(self):
        if not self.token or not str(self.token).strip():
            raise ValidationError("asset token symbol is empty")
        object.__setattr__(self, "amount", _finite_non_negative("amount", self.amount))
        object.__setattr__(
            self, "allocation", _finite_non_negative("allocation", self.allocation)
        )

    @property
    def symbol(self) -> str:
        return normalize_symbol(self.token)

    @property
    def value(self) -> float:
        return self.amount * self.allocation


@dataclass(frozen=True)
class RecommendedAllocation:
    token: str
    ideal_allocation: float  # percent, 0–100

    def __post_init__(self):
        pct = _finite_non_negative("ideal_allocation", self.ideal_allocation)
        if pct > 100:
            raise ValidationError(f"ideal_allocation must be ≤ 100, got {pct}")
        object.__setattr__(self, "ideal_allocation", pct)


@dataclass(frozen=True)
class RebalanceAdjustment:
    """One buy/sell instruction, in USD."""

    token: str
    current_amount: float
    current_allocation: float
    current_value: float
    recommended_allocation: float
    recommended_value: float
    amount_to_adjust: float
    direction: str  # "buy" | "sell"


@dataclass(frozen=True)
class RebalancingStrategy:
    current_portfolio: List[PortfolioAsset]
    recommended_allocation: List[RecommendedAllocation]
    rebalancing_cost: float
    potential_tax_implications: float
    adjustments: List[RebalanceAdjustment] = field(default_factory=list)
    total_value: float = 0.0
    risk_tolerance: Optional[str] = None
    fee_model: str = "flat"


# ── Planner ──────────────────────────────────────────────────────────────


class RebalancingPlanner:
    """
    Stateless planner. One instance can serve any number of requests;
    every call works on its own snapshot of the portfolio.
    """

    def __init__(
        self,
        settings: RebalancingConfig = config.rebalancing,
        fee_model: Optional[str] = None,
    ):
        self.settings = settings
        self.fee_model = fee_model or settings.DEFAULT_FEE_MODEL
        if self.fee_model not in settings.FEE_MODELS:
            raise ValidationError(
                f"fee model must be one of {settings.FEE_MODELS}, got {self.fee_model!r}"
            )

    def ideal_allocation(self, token: str, risk_tolerance: str) -> float:
        """Target percentage for ``token``; 0 when the tier table lacks it."""
        table = self.settings.IDEAL_ALLOCATIONS[normalize_risk_tolerance(risk_tolerance)]
        return table.get(normalize_symbol(token), 0.0)

    def recommended_allocation(
        self, current_portfolio: Sequence[PortfolioAsset], risk_tolerance: str
    ) -> List[RecommendedAllocation]:
        """One entry per recognized token, in first-seen portfolio order."""
        table = self.settings.IDEAL_ALLOCATIONS[normalize_risk_tolerance(risk_tolerance)]
        seen = set()
        out = []
        for asset in current_portfolio:
            symbol = asset.symbol
            if symbol in table and symbol not in seen:
                seen.add(symbol)
                out.append(RecommendedAllocation(token=symbol, ideal_allocation=table[symbol]))
        return out

    def plan(
        self, current_portfolio: Sequence[PortfolioAsset], risk_tolerance: str
    ) -> RebalancingStrategy:
        """Plan against the built-in ideal table for ``risk_tolerance``."""
        tier = normalize_risk_tolerance(risk_tolerance)
        self._require_portfolio(current_portfolio)
        recommended = self.recommended_allocation(current_portfolio, tier)
        return self.plan_against(current_portfolio, recommended, risk_tolerance=tier)

    def plan_against(
        self,
        current_portfolio: Sequence[PortfolioAsset],
        recommended_allocation: Sequence[RecommendedAllocation],
        risk_tolerance: Optional[str] = None,
    ) -> RebalancingStrategy:
        """
        Plan against a caller-supplied target list.

        Assets without a matching target are skipped (no adjustment, no
        tax estimate) but still count toward the total value and the flat
        cost estimate.
        """
        self._require_portfolio(current_portfolio)
        targets: Dict[str, float] = {
            normalize_symbol(r.token): r.ideal_allocation for r in recommended_allocation
        }

        total_value = sum(asset.value for asset in current_portfolio)
        adjustments = self.compute_adjustments(current_portfolio, targets, total_value)

        strategy = RebalancingStrategy(
            current_portfolio=list(current_portfolio),
            recommended_allocation=list(recommended_allocation),
            adjustments=adjustments,
            total_value=total_value,
            rebalancing_cost=self.estimate_rebalancing_cost(
                current_portfolio, adjustments, total_value
            ),
            potential_tax_implications=self.estimate_tax_implications(
                current_portfolio, targets
            ),
            risk_tolerance=risk_tolerance,
            fee_model=self.fee_model,
        )
        logger.debug(
            "Rebalance plan: total=%.2f adjustments=%d cost=%.4f tax=%.4f",
            total_value,
            len(adjustments),
            strategy.rebalancing_cost,
            strategy.potential_tax_implications,
        )
        return strategy

    @staticmethod
    def compute_adjustments(
        current_portfolio: Sequence[PortfolioAsset],
        targets: Dict[str, float],
        total_value: float,
    ) -> List[RebalanceAdjustment]:
        """
        Per-asset trade toward the target value.

            recommended_value = total_value × ideal% / 100
            amount_to_adjust  = |recommended_value − current_value|
            direction         = buy if recommended > current else sell
        """
        adjustments = []
        for asset in current_portfolio:
            ideal = targets.get(asset.symbol)
            if ideal is None:
                continue
            current_value = asset.value
            recommended_value = total_value * (ideal / 100)
            adjustments.append(
                RebalanceAdjustment(
                    token=asset.token,
                    current_amount=asset.amount,
                    current_allocation=asset.allocation,
                    current_value=current_value,
                    recommended_allocation=ideal,
                    recommended_value=recommended_value,
                    amount_to_adjust=abs(recommended_value - current_value),
                    direction="buy" if recommended_value > current_value else "sell",
                )
            )
        return adjustments

    def estimate_rebalancing_cost(
        self,
        current_portfolio: Sequence[PortfolioAsset],
        adjustments: Sequence[RebalanceAdjustment],
        total_value: float,
    ) -> float:
        if self.fee_model == "per_trade":
            return sum(a.amount_to_adjust * self.settings.FEE_RATE for a in adjustments)
        return total_value * self.settings.FEE_RATE * len(current_portfolio)

    def estimate_tax_implications(
        self, current_portfolio: Sequence[PortfolioAsset], targets: Dict[str, float]
    ) -> float:
        total = 0.0
        for asset in current_portfolio:
            if asset.symbol not in targets:
                continue
            hypothetical_gain = max(0.0, asset.value * self.settings.ASSUMED_GAIN_RATE)
            total += hypothetical_gain * self.settings.CAPITAL_GAINS_TAX_RATE
        return total

    @staticmethod
    def _require_portfolio(current_portfolio: Sequence[PortfolioAsset]) -> None:
        if not current_portfolio:
            raise ValidationError("portfolio is empty")
