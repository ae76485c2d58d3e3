#!/usr/bin/env python3
"""
Strategy Recommender — Rule Engine, Provider Adapter, Fallback List
====================================================================

Produces 3–5 ranked yield-strategy descriptors for a set of holdings.

Two interchangeable generators share one contract, ``await generate(request)``:

  rules    : deterministic rule table keyed by risk tolerance, with APY and
             confidence jitter drawn from an injected ``random.Random``
  provider : a text-completion callable; the JSON array of strategies is
             pulled out of whatever prose surrounds it

Ordering law of the rule engine:
  tier rule matches  →  goal-keyword filler  →  fallback padding

Failure policy: any exception inside a generator makes the recommender
return ``FALLBACK_STRATEGIES`` verbatim. Nothing is partially recovered.
"""

import json
import logging
import math
import random
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Mapping, Optional, Sequence

import httpx

from defi_analytics.central_config import RISK_LEVELS, StrategyConfig, config
from defi_analytics.errors import UnparseableResponse, UpstreamUnavailable, ValidationError
from defi_analytics.rebalancing import normalize_risk_tolerance
from defi_analytics.stablecoins import holdings_profile, normalize_symbol

logger = logging.getLogger(__name__)


# ── Request / Result ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class PortfolioItem:
    token: str
    amount: float
    chain: str = "Ethereum"

    def __post_init__(self):
        try:
            amount = float(self.amount)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"amount must be a number, got {self.amount!r}") from e
        if not math.isfinite(amount) or amount < 0:
            raise ValidationError(f"amount must be non-negative, got {self.amount!r}")
        object.__setattr__(self, "amount", amount)


@dataclass(frozen=True)
class StrategyRequest:
    """
    ``mode`` picks the generator ("rules" or "provider") per request,
    so no process-wide flag decides between real and synthetic output.
    """

    portfolio: Sequence[PortfolioItem]
    risk_tolerance: str
    investment_goal: str = ""
    mode: str = config.strategies.DEFAULT_MODE

    def __post_init__(self):
        items = []
        for item in self.portfolio or ():
            if isinstance(item, dict):
                try:
                    item = PortfolioItem(**item)
                except TypeError as e:
                    raise ValidationError(f"malformed portfolio item {item!r}") from e
            items.append(item)
        object.__setattr__(self, "portfolio", tuple(items))
        object.__setattr__(self, "risk_tolerance", normalize_risk_tolerance(self.risk_tolerance))
        object.__setattr__(self, "investment_goal", self.investment_goal or "")
        if self.mode not in config.strategies.MODES:
            raise ValidationError(
                f"mode must be one of {config.strategies.MODES}, got {self.mode!r}"
            )

    @property
    def tokens(self) -> List[str]:
        return [normalize_symbol(item.token) for item in self.portfolio]

    @property
    def chains(self) -> List[str]:
        """Distinct chains in first-seen order."""
        return list(dict.fromkeys(item.chain for item in self.portfolio))


@dataclass(frozen=True)
class GeneratedStrategy:
    name: str
    platform: str
    chain: str
    apy: float
    risk_level: str
    description: str
    ai_confidence: int
    potential_yield: Optional[float] = None
    recommended_allocation: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Wire form, camelCase keys as exchanged with the dashboard."""
        out = {
            "name": self.name,
            "platform": self.platform,
            "chain": self.chain,
            "apy": self.apy,
            "riskLevel": self.risk_level,
            "description": self.description,
            "aiConfidence": self.ai_confidence,
        }
        if self.potential_yield is not None:
            out["potentialYield"] = self.potential_yield
        if self.recommended_allocation is not None:
            out["recommendedAllocation"] = self.recommended_allocation
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "GeneratedStrategy":
        """Validate one provider object. Raises UnparseableResponse."""
        if not isinstance(data, dict):
            raise UnparseableResponse("strategy entry is not an object")

        def text(key: str) -> str:
            value = data.get(key)
            if not isinstance(value, str) or not value.strip():
                raise UnparseableResponse(f"strategy field {key!r} missing or empty")
            return value.strip()

        def number(key: str, required: bool = True) -> Optional[float]:
            value = data.get(key)
            if value is None and not required:
                return None
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise UnparseableResponse(f"strategy field {key!r} is not numeric")
            try:
                number_value = float(value)
            except OverflowError as e:
                raise UnparseableResponse(f"strategy field {key!r} out of range") from e
            if not math.isfinite(number_value):
                raise UnparseableResponse(f"strategy field {key!r} is not finite")
            return number_value

        risk = text("riskLevel").capitalize()
        if risk not in RISK_LEVELS:
            raise UnparseableResponse(f"unknown riskLevel {risk!r}")

        return cls(
            name=text("name"),
            platform=text("platform"),
            chain=text("chain"),
            apy=number("apy"),
            risk_level=risk,
            description=text("description"),
            ai_confidence=int(min(max(round(number("aiConfidence")), 0), 100)),
            potential_yield=number("potentialYield", required=False),
            recommended_allocation=number("recommendedAllocation", required=False),
        )


# ── Fallback List ────────────────────────────────────────────────────────

FALLBACK_STRATEGIES = (
    GeneratedStrategy(
        name="Curve 3Pool Yield Optimizer",
        platform="Curve Finance",
        chain="Ethereum",
        apy=6.45,
        risk_level="Low",
        description="AI-driven liquidity provision strategy maximizing stable coin yields with minimal volatility.",
        ai_confidence=92,
    ),
    GeneratedStrategy(
        name="Aave V3 USDC Lending",
        platform="Aave",
        chain="Arbitrum",
        apy=4.87,
        risk_level="Low",
        description="Intelligent lending strategy targeting optimal USDC lending rates across multiple markets.",
        ai_confidence=88,
    ),
    GeneratedStrategy(
        name="Uniswap V3 ETH/USDC Dynamic",
        platform="Uniswap",
        chain="Optimism",
        apy=12.34,
        risk_level="Medium",
        description="Advanced AI-powered concentrated liquidity strategy adapting to market volatility.",
        ai_confidence=85,
    ),
    GeneratedStrategy(
        name="GMX Perpetual Hedging",
        platform="GMX",
        chain="Arbitrum",
        apy=18.65,
        risk_level="High",
        description="Sophisticated AI-managed perpetual trading strategy with dynamic risk management.",
        ai_confidence=79,
    ),
    GeneratedStrategy(
        name="Velocore BTC/ETH LSD LP",
        platform="Velocore",
        chain="Linea",
        apy=15.32,
        risk_level="Medium",
        description="Optimized LP strategy for liquid staking derivatives with auto-compounding.",
        ai_confidence=82,
    ),
)


def fallback_strategies() -> List[GeneratedStrategy]:
    return list(FALLBACK_STRATEGIES)


def complete_strategy_list(
    strategies: Sequence[GeneratedStrategy], settings: StrategyConfig = config.strategies
) -> List[GeneratedStrategy]:
    """Pad from the fallback list up to the minimum, then cap at the maximum."""
    result = list(strategies)
    while len(result) < settings.MIN_STRATEGIES:
        result.append(FALLBACK_STRATEGIES[len(result) % len(FALLBACK_STRATEGIES)])
    return result[: settings.MAX_STRATEGIES]


def calculate_confidence_score(
    risk_level: str,
    risk_tolerance: str,
    rng: random.Random,
    settings: StrategyConfig = config.strategies,
) -> int:
    """
    Confidence for a strategy given the user's tolerance.

        base 85, +7 when the strategy tier matches the tolerance,
        jitter in [−5, +4], clamped to [70, 95]
    """
    score = 85
    if risk_level.lower() == risk_tolerance.lower():
        score += 7
    score += rng.randrange(10) - 5
    return min(max(score, settings.CONFIDENCE_MIN), settings.CONFIDENCE_MAX)


# ── Rule Table ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class StrategyRule:
    """
    One conditional strategy template.

    APY = apy_base + U[0,1) × apy_spread, clamped to the tier's APY range.
    Confidence = confidence_base + randint[0, confidence_spread).
    """

    name: str
    platform: str
    risk_level: str
    description: str
    apy_base: float
    apy_spread: float
    confidence_base: int
    confidence_spread: int
    chain: str = "Ethereum"
    requires: Optional[str] = None  # "stablecoins" | "eth" | "btc"
    preferred_chain: Optional[str] = None  # used when the user holds on it
    use_first_chain: bool = False  # user's first chain, else ``chain``
    tier_follows_request: bool = False  # Low for low tolerance, else Medium

    def applies(self, profile) -> bool:
        if self.requires is None:
            return True
        return {
            "stablecoins": profile.has_stablecoins,
            "eth": profile.has_eth,
            "btc": profile.has_btc,
        }[self.requires]

    def resolve_chain(self, chains: Sequence[str]) -> str:
        if self.use_first_chain and chains and chains[0]:
            return chains[0]
        if self.preferred_chain and any(
            c.lower() == self.preferred_chain.lower() for c in chains
        ):
            return self.preferred_chain
        return self.chain


TIER_RULES = MappingProxyType(
    {
        "low": (
            StrategyRule(
                name="Aave V3 Stablecoin Lending",
                platform="Aave",
                risk_level="Low",
                description="Lend stablecoins on Aave V3 for consistent yield with minimal risk. Automated compounding maximizes returns.",
                apy_base=4.5,
                apy_spread=1.5,
                confidence_base=91,
                confidence_spread=4,
                requires="stablecoins",
                use_first_chain=True,
            ),
            StrategyRule(
                name="Lido ETH Staking + Convex",
                platform="Lido + Convex",
                risk_level="Low",
                description="Stake ETH with Lido to receive stETH, then provide liquidity in Curve stETH pool and stake in Convex for boosted rewards.",
                apy_base=3.8,
                apy_spread=1.2,
                confidence_base=88,
                confidence_spread=4,
                requires="eth",
            ),
            StrategyRule(
                name="Curve 3Pool Yield Optimizer",
                platform="Curve Finance",
                risk_level="Low",
                description="Provide liquidity to Curve's 3pool (USDC/USDT/DAI) with auto-compounding rewards for stable, low-risk yield.",
                apy_base=4.2,
                apy_spread=2.5,
                confidence_base=90,
                confidence_spread=5,
            ),
        ),
        "medium": (
            StrategyRule(
                name="Uniswap V3 ETH/USDC Concentrated LP",
                platform="Uniswap",
                risk_level="Medium",
                description="Provide concentrated liquidity in ETH/USDC pool on Uniswap V3 with dynamic range adjustment based on volatility patterns.",
                apy_base=8.5,
                apy_spread=4.0,
                confidence_base=84,
                confidence_spread=6,
                requires="eth",
                preferred_chain="Optimism",
            ),
            StrategyRule(
                name="Balancer BTC/ETH Weighted Pool",
                platform="Balancer",
                risk_level="Medium",
                description="Provide liquidity to Balancer's weighted BTC/ETH pool with auto-harvesting and compounding of BAL rewards.",
                apy_base=7.8,
                apy_spread=3.5,
                confidence_base=82,
                confidence_spread=5,
                requires="btc",
                preferred_chain="Arbitrum",
            ),
            StrategyRule(
                name="Stargate Cross-Chain Stablecoin Bridge",
                platform="Stargate Finance",
                risk_level="Medium",
                description="Provide liquidity to Stargate's cross-chain bridges to earn fees from cross-chain transfers and STG farming rewards.",
                apy_base=9.2,
                apy_spread=3.0,
                confidence_base=80,
                confidence_spread=7,
                chain="Arbitrum",
                use_first_chain=True,
            ),
        ),
        "high": (
            StrategyRule(
                name="GMX GLP Leveraged Yield",
                platform="GMX",
                risk_level="High",
                description="Provide liquidity to GMX's GLP, with leveraged exposure to trading fees and esGMX rewards, optimized for maximum yield.",
                apy_base=15.5,
                apy_spread=8.0,
                confidence_base=78,
                confidence_spread=8,
                chain="Arbitrum",
            ),
            StrategyRule(
                name="Lyra Options Writing Strategy",
                platform="Lyra",
                risk_level="High",
                description="Automated options writing strategy on Lyra, selling covered calls on ETH with dynamic strike selection based on volatility.",
                apy_base=18.2,
                apy_spread=10.0,
                confidence_base=75,
                confidence_spread=7,
                chain="Optimism",
                requires="eth",
            ),
            StrategyRule(
                name="Pendle Yield Trading Strategy",
                platform="Pendle",
                risk_level="High",
                description="Trade yield tokens on Pendle, capturing yield curve inefficiencies with algorithmic position management.",
                apy_base=20.5,
                apy_spread=12.0,
                confidence_base=72,
                confidence_spread=9,
                preferred_chain="Arbitrum",
            ),
        ),
    }
)

# (keywords, rule); first keyword hit wins.
GOAL_RULES = (
    (
        ("passive", "income"),
        StrategyRule(
            name="Yearn Finance Multi-Strategy Vault",
            platform="Yearn Finance",
            risk_level="Medium",
            description="Deposit into Yearn's automated yield-optimizing vaults that constantly rebalance between multiple strategies.",
            apy_base=6.5,
            apy_spread=3.0,
            confidence_base=86,
            confidence_spread=5,
            tier_follows_request=True,
        ),
    ),
    (
        ("growth", "aggressive"),
        StrategyRule(
            name="Perpetual Protocol Basis Trading",
            platform="Perpetual Protocol",
            risk_level="High",
            description="Algorithmic basis trading between spot and perpetual markets, capturing funding rates with controlled risk.",
            apy_base=14.0,
            apy_spread=8.0,
            confidence_base=74,
            confidence_spread=8,
            chain="Arbitrum",
        ),
    ),
)


# ── Generators ───────────────────────────────────────────────────────────


class StrategyGenerator:
    """Interface: ``await generate(request) -> list[GeneratedStrategy]``."""

    async def generate(self, request: StrategyRequest) -> List[GeneratedStrategy]:
        raise NotImplementedError


class RuleBasedStrategyGenerator(StrategyGenerator):
    """Deterministic for a seeded ``rng``."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        settings: StrategyConfig = config.strategies,
    ):
        self.rng = rng if rng is not None else random.Random()
        self.settings = settings

    async def generate(self, request: StrategyRequest) -> List[GeneratedStrategy]:
        return self.generate_now(request)

    def generate_now(self, request: StrategyRequest) -> List[GeneratedStrategy]:
        """Synchronous body of :meth:`generate`."""
        profile = holdings_profile(request.tokens)
        chains = request.chains

        strategies = [
            self.build(rule, chains)
            for rule in TIER_RULES[request.risk_tolerance]
            if rule.applies(profile)
        ]

        if len(strategies) < self.settings.MIN_STRATEGIES:
            goal_rule = self.match_goal(request)
            if goal_rule is not None:
                strategies.append(self.build(goal_rule, chains))

        return complete_strategy_list(strategies, self.settings)

    @staticmethod
    def match_goal(request: StrategyRequest) -> Optional[StrategyRule]:
        goal = request.investment_goal.lower()
        for keywords, rule in GOAL_RULES:
            if any(k in goal for k in keywords):
                if rule.tier_follows_request:
                    tier = "Low" if request.risk_tolerance == "low" else "Medium"
                    return replace(rule, risk_level=tier)
                return rule
        return None

    def build(self, rule: StrategyRule, chains: Sequence[str]) -> GeneratedStrategy:
        lo, hi = self.settings.APY_RANGES[rule.risk_level]
        apy = rule.apy_base + self.rng.random() * rule.apy_spread
        apy = round(min(max(apy, lo), hi), 2)

        confidence = rule.confidence_base
        if rule.confidence_spread > 0:
            confidence += self.rng.randrange(rule.confidence_spread)
        confidence = min(
            max(confidence, self.settings.CONFIDENCE_MIN), self.settings.CONFIDENCE_MAX
        )

        return GeneratedStrategy(
            name=rule.name,
            platform=rule.platform,
            chain=rule.resolve_chain(chains),
            apy=apy,
            risk_level=rule.risk_level,
            description=rule.description,
            ai_confidence=confidence,
        )


STRATEGY_SYSTEM_PROMPT = (
    "You are a DeFi strategy assistant. Answer with a JSON array of strategy "
    "objects only."
)


def build_strategy_prompt(request: StrategyRequest) -> str:
    """Natural-language prompt embedding the portfolio as JSON."""
    portfolio_json = json.dumps(
        [
            {"token": item.token, "amount": item.amount, "chain": item.chain}
            for item in request.portfolio
        ],
        indent=2,
    )
    return (
        "Based on the following portfolio, generate 3-5 DeFi yield strategies.\n\n"
        f"Portfolio:\n{portfolio_json}\n\n"
        f"Risk tolerance: {request.risk_tolerance}\n"
        f"Investment goal: {request.investment_goal or 'not specified'}\n\n"
        "Return a JSON array where every element has the fields "
        '"name", "platform", "chain", "apy" (number, percent), '
        '"riskLevel" ("Low", "Medium" or "High"), "description" and '
        '"aiConfidence" (integer 0-100).'
    )


_DECODER = json.JSONDecoder()


def _json_values(text: str, opener: str) -> Iterator[Any]:
    """Every JSON value that starts at an ``opener`` character, in order."""
    start = text.find(opener)
    while start != -1:
        try:
            value, _ = _DECODER.raw_decode(text, start)
        except ValueError:
            pass  # prose such as "[Note]"
        else:
            yield value
        start = text.find(opener, start + 1)


def extract_json_payload(text: str) -> List[Any]:
    """
    Pull the strategy array out of free text.

    Returns the first JSON array of objects found at any ``[``, else the
    ``strategies`` array of the first JSON object at any ``{`` carrying one.
    Bracketed prose around the payload (citations, notes) is skipped.
    """
    if not isinstance(text, str):
        raise UnparseableResponse("provider returned no text")

    for value in _json_values(text, "["):
        if isinstance(value, list) and value and all(isinstance(v, dict) for v in value):
            return value

    for value in _json_values(text, "{"):
        if isinstance(value, dict) and isinstance(value.get("strategies"), list):
            return value["strategies"]

    raise UnparseableResponse("no JSON strategy array found in provider response")


def parse_strategies(text: str) -> List[GeneratedStrategy]:
    return [GeneratedStrategy.from_dict(item) for item in extract_json_payload(text)]


class ProviderStrategyGenerator(StrategyGenerator):
    """
    Delegates generation to ``complete(prompt) -> text``.

    With ``rescore_confidence`` the provider's self-reported confidence is
    replaced by :func:`calculate_confidence_score` for the request's tier.
    """

    def __init__(
        self,
        complete: Callable[[str], Awaitable[str]],
        rng: Optional[random.Random] = None,
        rescore_confidence: bool = True,
        settings: StrategyConfig = config.strategies,
    ):
        self.complete = complete
        self.rng = rng if rng is not None else random.Random()
        self.rescore_confidence = rescore_confidence
        self.settings = settings

    async def generate(self, request: StrategyRequest) -> List[GeneratedStrategy]:
        prompt = build_strategy_prompt(request)
        try:
            text = await self.complete(prompt)
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"completion provider unreachable: {type(e).__name__}") from e

        strategies = parse_strategies(text)
        if self.rescore_confidence:
            strategies = [
                replace(
                    s,
                    ai_confidence=calculate_confidence_score(
                        s.risk_level, request.risk_tolerance, self.rng, self.settings
                    ),
                )
                for s in strategies
            ]
        return complete_strategy_list(strategies, self.settings)


class HttpCompletionProvider:
    """
    Chat-style completion endpoint over HTTP.

    POSTs ``{"messages": [...], "temperature": t}`` and reads
    ``choices[0].message.content`` from the JSON reply.
    """

    def __init__(
        self,
        url: str,
        timeout: Optional[float] = None,
        temperature: Optional[float] = None,
        headers: Optional[Mapping[str, str]] = None,
    ):
        self.url = url
        self.timeout = timeout if timeout is not None else config.strategies.PROVIDER_TIMEOUT_SECONDS
        self.temperature = (
            temperature if temperature is not None else config.strategies.PROVIDER_TEMPERATURE
        )
        self.headers = dict(headers or {})

    async def __call__(self, prompt: str) -> str:
        body = {
            "messages": [
                {"role": "system", "content": STRATEGY_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, verify=True) as client:
                response = await client.post(self.url, json=body, headers=self.headers)
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"completion provider unreachable: {type(e).__name__}") from e

        if response.status_code != 200:
            raise UpstreamUnavailable(f"completion provider HTTP {response.status_code}")

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise UnparseableResponse("completion reply has no message content") from e

        if not isinstance(content, str):
            raise UnparseableResponse("completion content is not text")
        return content


# ── Recommender ──────────────────────────────────────────────────────────


class StrategyRecommender:
    """Selects a generator by ``request.mode`` and applies the fallback policy."""

    def __init__(
        self,
        generators: Optional[Mapping[str, StrategyGenerator]] = None,
        rng: Optional[random.Random] = None,
        settings: StrategyConfig = config.strategies,
    ):
        self.settings = settings
        if generators is None:
            generators = {"rules": RuleBasedStrategyGenerator(rng, settings)}
            if settings.PROVIDER_URL:
                generators["provider"] = ProviderStrategyGenerator(
                    HttpCompletionProvider(settings.PROVIDER_URL), rng, settings=settings
                )
        self.generators = dict(generators)

    async def recommend(self, request: StrategyRequest) -> List[GeneratedStrategy]:
        generator = self.generators.get(request.mode)
        if generator is None:
            logger.warning("No generator configured for mode %r; using fallback list", request.mode)
            return fallback_strategies()

        try:
            return await generator.generate(request)
        except Exception as e:
            # total short-circuit: any generator failure → fixed list
            logger.warning(
                "Strategy generation failed (%s: %s); using fallback list",
                type(e).__name__,
                e,
            )
            return fallback_strategies()
