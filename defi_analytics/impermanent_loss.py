#!/usr/bin/env python3
"""
Impermanent Loss Engine
=======================

Projects the value of a two-token constant-product liquidity position
against simply holding the same tokens.

FORMULA SOURCES:
────────────────
1. Constant-product pool value (Uniswap V2 whitepaper §2)
   https://uniswap.org/whitepaper.pdf
   V_pool = √(P0 · P1) · L

2. Hold value — the liquidity amount split 50/50 at entry:
   V_hold = L/2 · P0 + L/2 · P1

3. Impermanent Loss — reference ratio form (Pintail, 2019)
   https://pintail.medium.com/uniswap-a-good-deal-for-liquidity-providers-104c0b6816f2
   IL = 2·√(r) / (1 + r) − 1,  where r = P_current / P_initial
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from defi_analytics.central_config import ImpermanentLossConfig, config
from defi_analytics.errors import ValidationError
from defi_analytics.stablecoins import normalize_symbol

logger = logging.getLogger(__name__)


def _require_non_negative(name: str, value: float) -> float:
    """Reject negative, NaN and infinite inputs."""
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name} must be a number, got {value!r}") from e
    if not math.isfinite(number):
        raise ValidationError(f"{name} must be finite, got {value!r}")
    if number < 0:
        raise ValidationError(f"{name} must be non-negative, got {value!r}")
    return number


# ── Position Data ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Token:
    """Immutable price snapshot for one token."""

    symbol: str
    price: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "symbol", normalize_symbol(self.symbol))
        object.__setattr__(self, "price", _require_non_negative("price", self.price))


@dataclass(frozen=True)
class LiquidityPosition:
    """
    A two-token liquidity position.

    ``initial_price0`` / ``initial_price1`` are the prices at entry;
    the tokens' own ``price`` fields carry the latest known snapshot.
    """

    token0: Token
    token1: Token
    liquidity_amount: float
    initial_price0: float
    initial_price1: float

    def __post_init__(self):
        object.__setattr__(
            self,
            "liquidity_amount",
            _require_non_negative("liquidity_amount", self.liquidity_amount),
        )
        object.__setattr__(
            self, "initial_price0", _require_non_negative("initial_price0", self.initial_price0)
        )
        object.__setattr__(
            self, "initial_price1", _require_non_negative("initial_price1", self.initial_price1)
        )


@dataclass(frozen=True)
class ImpermanentLossParams:
    """Everything one projection needs."""

    token0: Token
    token1: Token
    initial_price0: float
    initial_price1: float
    current_price0: float
    current_price1: float
    liquidity_amount: float

    def __post_init__(self):
        for name in (
            "initial_price0",
            "initial_price1",
            "current_price0",
            "current_price1",
            "liquidity_amount",
        ):
            object.__setattr__(self, name, _require_non_negative(name, getattr(self, name)))

    @classmethod
    def from_position(
        cls,
        position: LiquidityPosition,
        current_price0: Optional[float] = None,
        current_price1: Optional[float] = None,
    ) -> "ImpermanentLossParams":
        """Build params; missing current prices default to the token snapshots."""
        return cls(
            token0=position.token0,
            token1=position.token1,
            initial_price0=position.initial_price0,
            initial_price1=position.initial_price1,
            current_price0=(
                position.token0.price if current_price0 is None else current_price0
            ),
            current_price1=(
                position.token1.price if current_price1 is None else current_price1
            ),
            liquidity_amount=position.liquidity_amount,
        )


@dataclass(frozen=True)
class ImpermanentLossProjection:
    current_value: float
    hold_value: float
    impermanent_loss_percentage: float
    potential_risk: str
    recommended_action: str
    initial_value: float = 0.0
    initial_hold_value: float = 0.0
    current_price0: float = 0.0
    current_price1: float = 0.0


# ── Calculator ───────────────────────────────────────────────────────────


class ImpermanentLossCalculator:
    """
    Pool-vs-hold projection for constant-product positions.
    Pure arithmetic — no I/O except in :meth:`project_live`.
    """

    def __init__(self, settings: ImpermanentLossConfig = config.impermanent_loss):
        self.settings = settings

    def classify_risk(self, loss_pct: float) -> str:
        """
        Risk tier from the absolute loss percentage.

        Thresholds are closed: |loss| = 10 → Low, |loss| = 20 → Medium.
        """
        magnitude = abs(loss_pct)
        if magnitude <= self.settings.LOW_MAX_PCT:
            return "Low"
        if magnitude <= self.settings.MEDIUM_MAX_PCT:
            return "Medium"
        return "High"

    def recommend_action(self, risk: str) -> str:
        if risk == "High":
            return self.settings.ACTION_WITHDRAW
        return self.settings.ACTION_HOLD

    def project(self, params: ImpermanentLossParams) -> ImpermanentLossProjection:
        """
        Project pool value vs hold value.

        Formulae:
            V_pool(t) = √(P0(t) · P1(t)) · L
            V_hold(t) = L/2 · P0(t) + L/2 · P1(t)
            loss %    = (V_pool(now) − V_hold(now)) / V_hold(entry) × 100

        A zero entry hold value (L = 0 or zero prices) yields 0% / Low.
        """
        half = params.liquidity_amount / 2

        initial_pool = math.sqrt(params.initial_price0 * params.initial_price1) * params.liquidity_amount
        current_pool = math.sqrt(params.current_price0 * params.current_price1) * params.liquidity_amount

        initial_hold = half * params.initial_price0 + half * params.initial_price1
        current_hold = half * params.current_price0 + half * params.current_price1

        if initial_hold > 0:
            loss_pct = (current_pool - current_hold) / initial_hold * 100
        else:
            loss_pct = 0.0

        if not all(
            math.isfinite(v)
            for v in (initial_pool, current_pool, initial_hold, current_hold, loss_pct)
        ):
            # overflow on extreme inputs; never leak inf/nan
            raise ValidationError("inputs too large to project")

        risk = self.classify_risk(loss_pct)
        logger.debug(
            "IL %s/%s: pool=%.4f hold=%.4f loss=%.4f%% risk=%s",
            params.token0.symbol,
            params.token1.symbol,
            current_pool,
            current_hold,
            loss_pct,
            risk,
        )

        return ImpermanentLossProjection(
            current_value=current_pool,
            hold_value=current_hold,
            impermanent_loss_percentage=loss_pct,
            potential_risk=risk,
            recommended_action=self.recommend_action(risk),
            initial_value=initial_pool,
            initial_hold_value=initial_hold,
            current_price0=params.current_price0,
            current_price1=params.current_price1,
        )

    async def project_live(
        self,
        position: LiquidityPosition,
        oracle,
        current_price0: Optional[float] = None,
        current_price1: Optional[float] = None,
    ) -> ImpermanentLossProjection:
        """
        Project using the oracle for any current price not supplied.

        ``oracle`` is anything exposing ``async get_prices(symbols)``,
        normally a :class:`PriceOracleAdapter`. Unknown symbols price at 0.
        """
        if current_price0 is None or current_price1 is None:
            prices = await oracle.get_prices({position.token0.symbol, position.token1.symbol})
            if current_price0 is None:
                current_price0 = prices.get(position.token0.symbol, 0.0)
            if current_price1 is None:
                current_price1 = prices.get(position.token1.symbol, 0.0)

        params = ImpermanentLossParams.from_position(position, current_price0, current_price1)
        return self.project(params)


def impermanent_loss_ratio(price_initial: float, price_current: float) -> float:
    """
    Impermanent Loss for a full-range position from one price ratio.

    Formula (Pintail, 2019):
        IL = 2·√(r) / (1 + r) − 1
        where r = P_current / P_initial

    Returns a negative percentage (e.g. −5.7191 = 5.72% loss vs HODL).
    """
    if price_initial <= 0 or price_current < 0:
        return 0.0
    r = price_current / price_initial
    il = 2 * math.sqrt(r) / (1 + r) - 1
    return round(il * 100, 4)
