"""
DeFi Portfolio Analytics — Command Implementations
===================================================

All CLI command handlers live here, keeping run.py as a thin
argparse dispatcher. Each public function corresponds to a
subcommand (info, prices, il, rebalance, strategies, summary).

Handlers print their report and let ValidationError propagate;
run.py turns it into a one-line error and exit code 1.
"""

from __future__ import annotations

import random

from defi_analytics.central_config import PROJECT_NAME, PROJECT_VERSION, STATIC_PRICES
from defi_analytics.errors import ValidationError
from defi_analytics.impermanent_loss import (
    ImpermanentLossCalculator,
    LiquidityPosition,
    Token,
    impermanent_loss_ratio,
)
from defi_analytics.portfolio_summary import summarize_with_oracle
from defi_analytics.price_oracle import PriceOracleAdapter
from defi_analytics.rebalancing import PortfolioAsset, RebalancingPlanner
from defi_analytics.strategies import (
    HttpCompletionProvider,
    PortfolioItem,
    ProviderStrategyGenerator,
    RuleBasedStrategyGenerator,
    StrategyRecommender,
    StrategyRequest,
)

CLI_DISCLAIMER = "⚠️  Educational estimates only — NOT financial, investment or tax advice."

RISK_ICONS = {"Low": "🟢", "Medium": "🟡", "High": "🔴"}


# ── Argument Helpers ─────────────────────────────────────────────────────


def _split_fields(text: str, fields: int, kind: str) -> list[str]:
    parts = [p.strip() for p in text.split(":")]
    if len(parts) != fields or not all(parts):
        raise ValidationError(f"Invalid {kind} '{text}'")
    return parts


def _number(raw: str, what: str) -> float:
    try:
        return float(raw)
    except ValueError as e:
        raise ValidationError(f"{what} must be a number, got '{raw}'") from e


def parse_asset(text: str) -> PortfolioAsset:
    """'BTC:1:30000' → PortfolioAsset(token, amount, price per unit)."""
    token, amount, price = _split_fields(text, 3, "asset (expected TOKEN:AMOUNT:PRICE)")
    return PortfolioAsset(token=token, amount=_number(amount, "amount"), allocation=_number(price, "price"))


def parse_holding(text: str) -> PortfolioItem:
    """'ETH:2.5:Arbitrum' or 'ETH:2.5' (chain defaults to Ethereum)."""
    parts = text.split(":")
    if len(parts) == 2:
        text = f"{text}:Ethereum"
    token, amount, chain = _split_fields(text, 3, "holding (expected TOKEN:AMOUNT[:CHAIN])")
    return PortfolioItem(token=token, amount=_number(amount, "amount"), chain=chain)


# ── Commands ─────────────────────────────────────────────────────────────


def cmd_info() -> None:
    """Display engine overview."""
    print(f"\n📊 {PROJECT_NAME} v{PROJECT_VERSION}")
    print("=" * 55)
    print("💧 il          — constant-product pool vs hold projection")
    print("⚖️  rebalance   — target allocation, buy/sell, cost & tax")
    print("🧠 strategies  — 3–5 ranked yield strategies (rules / provider)")
    print("📈 summary     — value breakdown & diversification score")
    print("💰 prices      — CoinGecko USD prices, static fallback")
    print()
    print(f"📡 Static fallback covers: {', '.join(sorted(STATIC_PRICES))}")
    print()
    print(CLI_DISCLAIMER)


async def cmd_prices(symbols: list[str], oracle: PriceOracleAdapter | None = None) -> None:
    """Print USD prices for the given symbols."""
    oracle = oracle or PriceOracleAdapter()
    prices = await oracle.get_prices(symbols)
    print(f"\n💰 Prices ({len(prices)} tokens)")
    print("=" * 35)
    for symbol in sorted(prices):
        print(f"  {symbol:<8} ${prices[symbol]:>14,.4f}")


async def cmd_il(
    token0: str,
    token1: str,
    initial0: float,
    initial1: float,
    liquidity: float,
    current0: float | None = None,
    current1: float | None = None,
    oracle: PriceOracleAdapter | None = None,
) -> None:
    """Impermanent loss projection; missing current prices come from the oracle."""
    position = LiquidityPosition(
        token0=Token(token0),
        token1=Token(token1),
        liquidity_amount=liquidity,
        initial_price0=initial0,
        initial_price1=initial1,
    )
    if current0 is None or current1 is None:
        oracle = oracle or PriceOracleAdapter()
    result = await ImpermanentLossCalculator().project_live(position, oracle, current0, current1)
    # resolved current prices, for the ratio reference line
    current0 = result.current_price0
    current1 = result.current_price1

    pair = f"{position.token0.symbol}/{position.token1.symbol}"
    print(f"\n💧 Impermanent Loss — {pair}")
    print("=" * 55)
    print(f"  Liquidity      : {position.liquidity_amount:,.4f}")
    print(f"  Entry hold     : ${result.initial_hold_value:,.2f}")
    print(f"  Pool value now : ${result.current_value:,.2f}")
    print(f"  Hold value now : ${result.hold_value:,.2f}")
    print(f"  Loss vs entry  : {result.impermanent_loss_percentage:+.2f}%")
    if initial0 > 0 and initial1 > 0 and current1 > 0:
        # full-range reference figure from the token0/token1 price ratio
        il_ref = impermanent_loss_ratio(initial0 / initial1, current0 / current1)
        print(f"  Ratio IL (ref) : {il_ref:+.2f}%")
    print(f"  Risk           : {RISK_ICONS[result.potential_risk]} {result.potential_risk}")
    print(f"  Action         : {result.recommended_action}")
    print()
    print(CLI_DISCLAIMER)


def cmd_rebalance(assets: list[str], risk: str, fee_model: str | None = None) -> None:
    """Rebalancing plan for TOKEN:AMOUNT:PRICE assets."""
    portfolio = [parse_asset(text) for text in assets]
    planner = RebalancingPlanner(fee_model=fee_model)
    plan = planner.plan(portfolio, risk)

    print(f"\n⚖️  Rebalancing Plan — {plan.risk_tolerance} risk")
    print("=" * 65)
    print(f"  Portfolio value : ${plan.total_value:,.2f}")
    print()
    if not plan.adjustments:
        print("  No recognized assets to rebalance (targets cover BTC, ETH, USDC).")
    for adj in plan.adjustments:
        arrow = "🟢 BUY " if adj.direction == "buy" else "🔴 SELL"
        print(
            f"  {adj.token:<6} {arrow} ${adj.amount_to_adjust:>12,.2f}   "
            f"(now ${adj.current_value:,.2f} → target {adj.recommended_allocation:.0f}% "
            f"= ${adj.recommended_value:,.2f})"
        )
    print()
    print(f"  Est. cost ({plan.fee_model}) : ${plan.rebalancing_cost:,.2f}")
    print(f"  Est. tax impact      : ${plan.potential_tax_implications:,.2f}")
    print()
    print(CLI_DISCLAIMER)


async def cmd_strategies(
    holdings: list[str],
    risk: str,
    goal: str = "",
    seed: int | None = None,
    mode: str = "rules",
    provider_url: str | None = None,
) -> None:
    """Ranked strategy recommendations."""
    rng = random.Random(seed)
    generators = {"rules": RuleBasedStrategyGenerator(rng)}
    if provider_url:
        generators["provider"] = ProviderStrategyGenerator(HttpCompletionProvider(provider_url), rng)

    request = StrategyRequest(
        portfolio=[parse_holding(text) for text in holdings],
        risk_tolerance=risk,
        investment_goal=goal,
        mode=mode,
    )
    strategies = await StrategyRecommender(generators).recommend(request)

    print(f"\n🧠 Strategies — {request.risk_tolerance} risk ({request.mode})")
    print("=" * 65)
    for i, s in enumerate(strategies, 1):
        print(f"\n  {i}. {s.name}")
        print(f"     Platform   : {s.platform} ({s.chain})")
        print(f"     APY        : {s.apy:.2f}%")
        print(f"     Risk       : {RISK_ICONS.get(s.risk_level, '⚪')} {s.risk_level}")
        print(f"     Confidence : {s.ai_confidence}%")
        print(f"     {s.description}")
    print()
    print(CLI_DISCLAIMER)


async def cmd_summary(holdings: list[str], oracle: PriceOracleAdapter | None = None) -> None:
    """Portfolio value breakdown and diversification score."""
    portfolio = [parse_holding(text) for text in holdings]
    summary = await summarize_with_oracle(portfolio, oracle or PriceOracleAdapter())

    print("\n📈 Portfolio Summary")
    print("=" * 55)
    print(f"  Total value     : ${summary.total_value:,.2f}")
    print(f"  Diversification : {summary.diversification_score}/100")
    print(f"  Risk            : {summary.risk_assessment}")
    print("\n  Main assets:")
    for share in summary.main_assets:
        print(f"    • {share.token:<8} {share.percentage:>3}%")
    print("\n  Chains:")
    for share in summary.chain_distribution:
        print(f"    • {share.chain:<16} {share.percentage:>3}%")
    print("\n  Recommendations:")
    for rec in summary.recommendations:
        print(f"    💡 {rec}")
    print()
    print(CLI_DISCLAIMER)
