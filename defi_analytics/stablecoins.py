"""
Token Classification — Stablecoins, Majors, Altcoins
=====================================================

Provides symbol normalization and asset-class detection for:
  - Strategy selection (stablecoin lending, ETH staking, BTC pools)
  - Portfolio risk assessment (stables / majors / altcoins mix)

Known symbols are recognized in normalized (upper-case) form.
Wrapped variants count as their underlying asset (WETH → ETH family).
"""

from dataclasses import dataclass
from typing import Iterable

# ── Known Symbol Groups ─────────────────────────────────────────────────

STABLECOIN_SYMBOLS: frozenset = frozenset({"USDC", "USDT", "DAI"})
ETH_SYMBOLS: frozenset = frozenset({"ETH", "WETH"})
BTC_SYMBOLS: frozenset = frozenset({"BTC", "WBTC"})

MAJOR_SYMBOLS: frozenset = ETH_SYMBOLS | BTC_SYMBOLS


def normalize_symbol(raw_symbol: str) -> str:
    """
    Canonical form of a token symbol.

    Examples:
        >>> normalize_symbol("  weth ")
        'WETH'
    """
    return raw_symbol.strip().upper()


def is_stablecoin(symbol: str) -> bool:
    """
    Check if a token symbol is a known stablecoin.

    Examples:
        >>> is_stablecoin("usdc")
        True
        >>> is_stablecoin("WETH")
        False
    """
    return normalize_symbol(symbol) in STABLECOIN_SYMBOLS


def is_eth(symbol: str) -> bool:
    return normalize_symbol(symbol) in ETH_SYMBOLS


def is_btc(symbol: str) -> bool:
    return normalize_symbol(symbol) in BTC_SYMBOLS


def classify_asset(symbol: str) -> str:
    """
    Classify a single token.

    Returns:
        "stable" — USD stablecoin
        "major"  — ETH / BTC or a wrapped variant
        "alt"    — anything else
    """
    if is_stablecoin(symbol):
        return "stable"
    if normalize_symbol(symbol) in MAJOR_SYMBOLS:
        return "major"
    return "alt"


@dataclass(frozen=True)
class HoldingsProfile:
    """Which asset families are present in a set of holdings."""

    has_stablecoins: bool = False
    has_eth: bool = False
    has_btc: bool = False
    has_altcoins: bool = False

    @property
    def has_majors(self) -> bool:
        return self.has_eth or self.has_btc


def holdings_profile(symbols: Iterable[str]) -> HoldingsProfile:
    """
    Summarize the asset families found in ``symbols``.

    Examples:
        >>> holdings_profile(["weth", "USDC"]).has_eth
        True
        >>> holdings_profile([]).has_majors
        False
    """
    normalized = {normalize_symbol(s) for s in symbols}
    return HoldingsProfile(
        has_stablecoins=bool(normalized & STABLECOIN_SYMBOLS),
        has_eth=bool(normalized & ETH_SYMBOLS),
        has_btc=bool(normalized & BTC_SYMBOLS),
        has_altcoins=bool(normalized - STABLECOIN_SYMBOLS - MAJOR_SYMBOLS),
    )
