"""
Project Configuration — price feed, thresholds, allocation tables
==================================================================

Contains the CoinGecko price-feed configuration, the static fallback
price table and every tunable constant used by the analytics engines.
Source: https://docs.coingecko.com/reference/simple-price
"""

import re
from dataclasses import dataclass, field
from importlib.metadata import version, PackageNotFoundError
from pathlib import Path
from types import MappingProxyType
from typing import Iterable

# Version: single source of truth is pyproject.toml
try:
    PROJECT_VERSION = version("defi-portfolio-analytics")
except PackageNotFoundError:
    # Dev / CI: package not installed, read pyproject.toml directly
    _toml = Path(__file__).resolve().parent.parent / "pyproject.toml"
    _m = (
        re.search(r'version\s*=\s*"([^"]+)"', _toml.read_text())
        if _toml.exists()
        else None
    )
    PROJECT_VERSION = _m.group(1) if _m else "0.0.0-dev"
PROJECT_NAME = "DeFi Portfolio Analytics"


# ── Static price table ───────────────────────────────────────────────────
# Used whenever the live feed is unreachable or omits a symbol.

STATIC_PRICES = MappingProxyType(
    {
        "ETH": 2000.0,
        "WETH": 2000.0,
        "WBTC": 35000.0,
        "BTC": 35000.0,
        "USDC": 1.0,
        "USDT": 1.0,
        "DAI": 1.0,
        "AAVE": 80.0,
        "UNI": 5.0,
        "LINK": 15.0,
        "ARB": 1.2,
        "OP": 2.5,
        "MATIC": 0.8,
        "SOL": 100.0,
        "AVAX": 30.0,
    }
)


@dataclass(frozen=True)
class CoinGeckoAPI:
    """Public CoinGecko price-feed configuration."""

    BASE_URL: str = "https://api.coingecko.com/api/v3"
    SIMPLE_PRICE_ENDPOINT: str = "/simple/price"

    TIMEOUT_SECONDS: int = 15

    # Canonical symbol → CoinGecko coin id
    SYMBOL_TO_ID = MappingProxyType(
        {
            "ETH": "ethereum",
            "WETH": "weth",
            "BTC": "bitcoin",
            "WBTC": "wrapped-bitcoin",
            "USDC": "usd-coin",
            "USDT": "tether",
            "DAI": "dai",
            "AAVE": "aave",
            "UNI": "uniswap",
            "LINK": "chainlink",
            "ARB": "arbitrum",
            "OP": "optimism",
            "MATIC": "matic-network",
            "SOL": "solana",
            "AVAX": "avalanche-2",
        }
    )

    @classmethod
    def get_simple_price_url(cls, coin_ids: Iterable[str]) -> str:
        """URL for one batched USD price lookup."""
        ids = ",".join(sorted(set(coin_ids)))
        return f"{cls.BASE_URL}{cls.SIMPLE_PRICE_ENDPOINT}?ids={ids}&vs_currencies=usd"


@dataclass(frozen=True)
class ImpermanentLossConfig:
    """Risk tier thresholds (absolute loss %, closed upper bounds)."""

    LOW_MAX_PCT: float = 10.0
    MEDIUM_MAX_PCT: float = 20.0

    ACTION_HOLD: str = "Hold current position"
    ACTION_WITHDRAW: str = "Consider withdrawing liquidity"


@dataclass(frozen=True)
class RebalancingConfig:
    """Fee and tax assumptions for the rebalancing planner."""

    FEE_RATE: float = 0.001  # 0.1% per asset (flat) or per trade
    ASSUMED_GAIN_RATE: float = 0.10  # 10% of current value treated as gain
    CAPITAL_GAINS_TAX_RATE: float = 0.15

    DEFAULT_FEE_MODEL: str = "flat"
    FEE_MODELS = ("flat", "per_trade")

    # Ideal allocation (%) per risk tier; sums are not enforced.
    IDEAL_ALLOCATIONS = MappingProxyType(
        {
            "low": MappingProxyType({"BTC": 40.0, "ETH": 30.0, "USDC": 30.0}),
            "medium": MappingProxyType({"BTC": 30.0, "ETH": 40.0, "USDC": 30.0}),
            "high": MappingProxyType({"BTC": 20.0, "ETH": 50.0, "USDC": 30.0}),
        }
    )


@dataclass(frozen=True)
class StrategyConfig:
    """Recommender bounds and generator selection."""

    DEFAULT_MODE: str = "rules"
    MODES = ("rules", "provider")

    MIN_STRATEGIES: int = 3
    MAX_STRATEGIES: int = 5

    # (min, max) APY % per risk level
    APY_RANGES = MappingProxyType(
        {
            "Low": (2.0, 7.0),
            "Medium": (5.0, 15.0),
            "High": (10.0, 30.0),
        }
    )

    CONFIDENCE_MIN: int = 70
    CONFIDENCE_MAX: int = 95

    # Optional completion endpoint for provider mode (chat-style JSON API)
    PROVIDER_URL: str = ""
    PROVIDER_TIMEOUT_SECONDS: int = 30
    PROVIDER_TEMPERATURE: float = 0.7


RISK_TOLERANCES = ("low", "medium", "high")
RISK_LEVELS = ("Low", "Medium", "High")


# Unified configuration
@dataclass(frozen=True)
class AnalyticsConfig:
    """Unified configuration for all analytics engines."""

    prices: CoinGeckoAPI = field(default_factory=CoinGeckoAPI)
    impermanent_loss: ImpermanentLossConfig = field(
        default_factory=ImpermanentLossConfig
    )
    rebalancing: RebalancingConfig = field(default_factory=RebalancingConfig)
    strategies: StrategyConfig = field(default_factory=StrategyConfig)


# Global instance
config = AnalyticsConfig()
