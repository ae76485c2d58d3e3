"""
Portfolio Summary — value breakdown, risk text, diversification score
======================================================================

Pure given a price table; :func:`summarize_with_oracle` fetches that
table through the price oracle first.

Diversification score:
    50 + min(5·tokens, 20) + min(7·chains, 20)
       + 5 for each asset class present (stables, majors, altcoins)
    clamped to [30, 95]
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Sequence

from defi_analytics.errors import ValidationError
from defi_analytics.stablecoins import holdings_profile, normalize_symbol
from defi_analytics.strategies import PortfolioItem

logger = logging.getLogger(__name__)

UNKNOWN_PRICE_PLACEHOLDER = 1.0
TOP_ASSETS = 3
CONCENTRATION_LIMIT_PCT = 40
MIN_CHAINS = 3
LOW_DIVERSIFICATION = 60


@dataclass(frozen=True)
class AssetShare:
    token: str
    percentage: int


@dataclass(frozen=True)
class ChainShare:
    chain: str
    percentage: int


@dataclass(frozen=True)
class PortfolioSummary:
    total_value: float
    main_assets: List[AssetShare] = field(default_factory=list)
    chain_distribution: List[ChainShare] = field(default_factory=list)
    risk_assessment: str = ""
    diversification_score: int = 0
    recommendations: List[str] = field(default_factory=list)


def _pct(part: float, whole: float) -> int:
    return round(part / whole * 100) if whole > 0 else 0


def assess_risk(has_stables: bool, has_majors: bool, has_altcoins: bool) -> str:
    if has_stables and has_majors and not has_altcoins:
        return "Low risk portfolio with good balance between stablecoins and major cryptocurrencies."
    if has_stables and has_majors and has_altcoins:
        return "Medium risk portfolio with a mix of stablecoins, major cryptocurrencies, and some altcoins."
    if not has_stables and has_majors:
        return "Medium-high risk portfolio heavily weighted towards major cryptocurrencies with limited stablecoin exposure."
    if has_altcoins and not has_stables:
        return "High risk portfolio with significant altcoin exposure and limited stablecoin protection."
    return "Balanced portfolio with moderate risk profile."


def summarize_portfolio(
    portfolio: Sequence[PortfolioItem], prices: Mapping[str, float]
) -> PortfolioSummary:
    """Summarize holdings valued at ``prices`` (symbol → USD)."""
    if not portfolio:
        raise ValidationError("portfolio is empty")

    values = []
    for item in portfolio:
        price = prices.get(normalize_symbol(item.token)) or UNKNOWN_PRICE_PLACEHOLDER
        values.append((item, item.amount * price))
    total_value = sum(v for _, v in values)

    ranked = sorted(values, key=lambda pair: pair[1], reverse=True)[:TOP_ASSETS]
    main_assets = [AssetShare(item.token, _pct(v, total_value)) for item, v in ranked]

    by_chain: Dict[str, float] = {}
    for item, v in values:
        by_chain[item.chain] = by_chain.get(item.chain, 0.0) + v
    chain_distribution = [ChainShare(c, _pct(v, total_value)) for c, v in by_chain.items()]

    profile = holdings_profile(item.token for item in portfolio)

    score = 50
    score += min(len(portfolio) * 5, 20)
    score += min(len(chain_distribution) * 7, 20)
    score += 5 * sum((profile.has_stablecoins, profile.has_majors, profile.has_altcoins))
    score = max(30, min(95, score))
    logger.debug(
        "Summary: total=%.2f tokens=%d chains=%d score=%d",
        total_value,
        len(portfolio),
        len(chain_distribution),
        score,
    )

    recommendations = []
    if not profile.has_stablecoins:
        recommendations.append("Add stablecoins (USDC, DAI) to reduce portfolio volatility")
    if len(chain_distribution) < MIN_CHAINS:
        recommendations.append(
            "Diversify across more blockchain networks to reduce chain-specific risks"
        )
    if main_assets and main_assets[0].percentage > CONCENTRATION_LIMIT_PCT:
        top = main_assets[0]
        recommendations.append(
            f"Consider reducing {top.token} position ({top.percentage}%) to improve diversification"
        )
    if score < LOW_DIVERSIFICATION:
        recommendations.append(
            "Increase overall portfolio diversification by adding more uncorrelated assets"
        )
    if len(recommendations) < 3:
        recommendations.append(
            "Explore DeFi yield opportunities to grow your holdings while maintaining your risk profile"
        )

    return PortfolioSummary(
        total_value=total_value,
        main_assets=main_assets,
        chain_distribution=chain_distribution,
        risk_assessment=assess_risk(
            profile.has_stablecoins, profile.has_majors, profile.has_altcoins
        ),
        diversification_score=score,
        recommendations=recommendations,
    )


async def summarize_with_oracle(portfolio: Sequence[PortfolioItem], oracle) -> PortfolioSummary:
    """Price the holdings through ``oracle`` then summarize."""
    if not portfolio:
        raise ValidationError("portfolio is empty")
    prices = await oracle.get_prices({item.token for item in portfolio})
    return summarize_portfolio(portfolio, prices)
