#!/usr/bin/env python3
"""
DeFi Portfolio Analytics -- Educational Portfolio Calculator
=============================================================

Impermanent loss, rebalancing and yield-strategy estimates for a
multi-chain DeFi portfolio.

Usage:
  python run.py prices     ETH USDC ARB                              Live prices (static fallback)
  python run.py il         --token0 ETH --token1 USDC \\
                           --initial0 2000 --initial1 1 --liquidity 10  Pool vs hold projection
  python run.py rebalance  --asset BTC:1:30000 --asset ETH:10:2000     Rebalancing plan
  python run.py strategies --holding ETH:2:Arbitrum --risk medium      Strategy recommendations
  python run.py summary    --holding ETH:2 --holding USDC:500:Base      Portfolio summary
  python run.py info                                                  Engine overview

Sources:
  CoinGecko Simple Price : https://docs.coingecko.com/reference/simple-price
  Uniswap V2 Whitepaper  : https://uniswap.org/whitepaper.pdf
"""

import sys
import asyncio
import argparse
import logging
from pathlib import Path

# ── Imports ───────────────────────────────────────────────────────────────

project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from defi_analytics.central_config import PROJECT_VERSION, PROJECT_NAME
from defi_analytics.errors import ValidationError
from defi_analytics.commands import (
    cmd_info,
    cmd_prices,
    cmd_il,
    cmd_rebalance,
    cmd_strategies,
    cmd_summary,
)


# ── CLI Parser ────────────────────────────────────────────────────────────


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="defi-analytics",
        description=f"{PROJECT_NAME} v{PROJECT_VERSION} — Educational Portfolio Calculator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run.py il --token0 ETH --token1 USDC --initial0 2000 --initial1 1 \\
                   --current0 2200 --current1 1 --liquidity 10
  python run.py rebalance --asset BTC:1:30000 --asset ETH:10:2000 --risk low
  python run.py rebalance --asset BTC:1:30000 --risk high --fee-model per_trade
  python run.py strategies --holding USDC:1000:Arbitrum --risk low --goal "passive income"
  python run.py strategies --holding ETH:1 --risk high --seed 7

Asset formats:
  --asset   TOKEN:AMOUNT:PRICE_USD     (rebalance; price per unit)
  --holding TOKEN:AMOUNT[:CHAIN]       (strategies, summary; chain defaults to Ethereum)
""",
    )
    parser.add_argument(
        "--version", action="version", version=f"{PROJECT_NAME} v{PROJECT_VERSION}"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )

    sub = parser.add_subparsers(dest="command", help="Available commands")

    prices_p = sub.add_parser("prices", help="USD prices for token symbols")
    prices_p.add_argument("symbols", nargs="+", help="Token symbols, e.g. ETH USDC")

    il_p = sub.add_parser("il", help="Impermanent loss projection")
    il_p.add_argument("--token0", required=True, help="First token symbol")
    il_p.add_argument("--token1", required=True, help="Second token symbol")
    il_p.add_argument("--initial0", type=float, required=True, help="Entry price of token0 (USD)")
    il_p.add_argument("--initial1", type=float, required=True, help="Entry price of token1 (USD)")
    il_p.add_argument(
        "--current0", type=float, default=None, help="Current price of token0 (default: live)"
    )
    il_p.add_argument(
        "--current1", type=float, default=None, help="Current price of token1 (default: live)"
    )
    il_p.add_argument("--liquidity", type=float, required=True, help="Liquidity amount supplied")

    reb_p = sub.add_parser("rebalance", help="Rebalancing plan")
    reb_p.add_argument(
        "--asset", action="append", required=True, help="TOKEN:AMOUNT:PRICE (repeatable)"
    )
    reb_p.add_argument(
        "--risk", type=str, default="medium", help="Risk tolerance: low, medium, high (default: medium)"
    )
    reb_p.add_argument(
        "--fee-model",
        type=str,
        default=None,
        help="Cost model: flat (default) or per_trade",
    )

    strat_p = sub.add_parser("strategies", help="Yield strategy recommendations")
    strat_p.add_argument(
        "--holding", action="append", default=[], help="TOKEN:AMOUNT[:CHAIN] (repeatable)"
    )
    strat_p.add_argument(
        "--risk", type=str, default="medium", help="Risk tolerance: low, medium, high (default: medium)"
    )
    strat_p.add_argument("--goal", type=str, default="", help="Investment goal, e.g. 'passive income'")
    strat_p.add_argument("--seed", type=int, default=None, help="Seed for reproducible output")
    strat_p.add_argument(
        "--mode", type=str, default="rules", help="Generator: rules (default) or provider"
    )
    strat_p.add_argument(
        "--provider-url", type=str, default=None, help="Chat-completion endpoint for provider mode"
    )

    sum_p = sub.add_parser("summary", help="Portfolio summary")
    sum_p.add_argument(
        "--holding", action="append", required=True, help="TOKEN:AMOUNT[:CHAIN] (repeatable)"
    )

    sub.add_parser("info", help="Engine overview")

    return parser


# ── Main ──────────────────────────────────────────────────────────────────


def main(argv=None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 0

    try:
        if args.command == "info":
            cmd_info()
        elif args.command == "prices":
            asyncio.run(cmd_prices(args.symbols))
        elif args.command == "il":
            asyncio.run(
                cmd_il(
                    token0=args.token0,
                    token1=args.token1,
                    initial0=args.initial0,
                    initial1=args.initial1,
                    liquidity=args.liquidity,
                    current0=args.current0,
                    current1=args.current1,
                )
            )
        elif args.command == "rebalance":
            cmd_rebalance(assets=args.asset, risk=args.risk, fee_model=args.fee_model)
        elif args.command == "strategies":
            asyncio.run(
                cmd_strategies(
                    holdings=args.holding,
                    risk=args.risk,
                    goal=args.goal,
                    seed=args.seed,
                    mode=args.mode,
                    provider_url=args.provider_url,
                )
            )
        elif args.command == "summary":
            asyncio.run(cmd_summary(args.holding))
        else:
            parser.print_help()
    except ValidationError as e:
        print(f"❌ {e}")
        return 1

    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n❌ Cancelled.")
        sys.exit(130)
