"""
Unit Tests for DeFi Portfolio Analytics Modules
================================================

Unit tests covering the supporting modules:
  - central_config.py     (tables, URL builder, immutability)
  - stablecoins.py        (symbol normalization, asset classes)
  - price_oracle.py       (CoinGecko feed, static fallback, cache)
  - portfolio_summary.py  (breakdown, diversification score, advice)
  - commands.py           (argument parsing, command output)
  - run.py                (argparse parser structure, exit codes)

All tests are offline — no network calls. Mock-based where needed.
"""

import asyncio
import dataclasses
import logging
import re
from unittest.mock import patch, MagicMock, AsyncMock

import httpx
import pytest

from defi_analytics.errors import ValidationError

# ═══════════════════════════════════════════════════════════════════════════
# 1. central_config.py
# ═══════════════════════════════════════════════════════════════════════════

from defi_analytics.central_config import (
    PROJECT_VERSION,
    STATIC_PRICES,
    CoinGeckoAPI,
    config,
)


class TestCentralConfig:
    def test_version_format(self):
        assert re.match(r"^\d+\.\d+\.\d+", PROJECT_VERSION)

    @pytest.mark.parametrize("sym,price", [
        ("ETH", 2000.0), ("WETH", 2000.0), ("BTC", 35000.0), ("WBTC", 35000.0),
        ("USDC", 1.0), ("USDT", 1.0), ("DAI", 1.0), ("AAVE", 80.0), ("UNI", 5.0),
        ("LINK", 15.0), ("ARB", 1.2), ("OP", 2.5), ("MATIC", 0.8),
        ("SOL", 100.0), ("AVAX", 30.0),
    ])
    def test_static_price_table(self, sym, price):
        assert STATIC_PRICES[sym] == price

    def test_static_prices_read_only(self):
        with pytest.raises(TypeError):
            STATIC_PRICES["ETH"] = 1.0

    def test_every_static_symbol_has_coin_id(self):
        assert set(STATIC_PRICES) == set(CoinGeckoAPI.SYMBOL_TO_ID)

    def test_simple_price_url_sorted_and_deduplicated(self):
        url = CoinGeckoAPI.get_simple_price_url(["usd-coin", "ethereum", "usd-coin"])
        assert url == (
            "https://api.coingecko.com/api/v3/simple/price"
            "?ids=ethereum,usd-coin&vs_currencies=usd"
        )

    def test_config_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.rebalancing = None

    def test_thresholds(self):
        assert config.impermanent_loss.LOW_MAX_PCT == 10
        assert config.impermanent_loss.MEDIUM_MAX_PCT == 20
        assert config.rebalancing.FEE_RATE == 0.001
        assert config.strategies.MIN_STRATEGIES == 3
        assert config.strategies.MAX_STRATEGIES == 5


# ═══════════════════════════════════════════════════════════════════════════
# 2. stablecoins.py
# ═══════════════════════════════════════════════════════════════════════════

from defi_analytics.stablecoins import (
    classify_asset,
    holdings_profile,
    is_btc,
    is_eth,
    is_stablecoin,
    normalize_symbol,
)


class TestNormalizeSymbol:
    @pytest.mark.parametrize("raw,expected", [
        ("eth", "ETH"),
        ("  usdc ", "USDC"),
        ("WBTC", "WBTC"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_symbol(raw) == expected


class TestClassifyAsset:
    @pytest.mark.parametrize("sym,kind", [
        ("usdc", "stable"), ("DAI", "stable"), ("USDT", "stable"),
        ("ETH", "major"), ("weth", "major"), ("BTC", "major"), ("WBTC", "major"),
        ("LINK", "alt"), ("PEPE", "alt"),
    ])
    def test_classify(self, sym, kind):
        assert classify_asset(sym) == kind

    def test_family_helpers(self):
        assert is_stablecoin("usdc")
        assert not is_stablecoin("ETH")
        assert is_eth("WETH")
        assert is_btc("wbtc")
        assert not is_btc("ETH")


class TestHoldingsProfile:
    def test_mixed(self):
        p = holdings_profile(["usdc", "WETH", "ARB"])
        assert p.has_stablecoins and p.has_eth and p.has_altcoins
        assert not p.has_btc
        assert p.has_majors

    def test_empty(self):
        p = holdings_profile([])
        assert not (p.has_stablecoins or p.has_majors or p.has_altcoins)


# ═══════════════════════════════════════════════════════════════════════════
# 3. price_oracle.py (mocked httpx)
# ═══════════════════════════════════════════════════════════════════════════

from defi_analytics.price_oracle import PriceOracleAdapter


def _mock_get(MockClient, status=200, body=None, error=None, json_error=None):
    mock_response = MagicMock()
    mock_response.status_code = status
    if json_error is not None:
        mock_response.json.side_effect = json_error
    else:
        mock_response.json.return_value = body
    mock_client = AsyncMock()
    if error is not None:
        mock_client.get.side_effect = error
    else:
        mock_client.get.return_value = mock_response
    MockClient.return_value.__aenter__ = AsyncMock(return_value=mock_client)
    MockClient.return_value.__aexit__ = AsyncMock(return_value=False)
    return mock_client


ORACLE_CLIENT = "defi_analytics.price_oracle.httpx.AsyncClient"


class TestPriceOracleLive:
    def test_live_prices(self):
        body = {"ethereum": {"usd": 2500.5}, "usd-coin": {"usd": 0.9998}}
        with patch(ORACLE_CLIENT) as MockClient:
            client = _mock_get(MockClient, body=body)
            prices = asyncio.run(PriceOracleAdapter().get_prices(["eth", "USDC"]))
        assert prices == {"ETH": 2500.5, "USDC": 0.9998}
        # one batched request for all symbols
        assert client.get.call_count == 1
        assert "ids=ethereum,usd-coin" in client.get.call_args.args[0]

    def test_omitted_coin_uses_static(self):
        with patch(ORACLE_CLIENT) as MockClient:
            _mock_get(MockClient, body={"ethereum": {"usd": 2100}})
            prices = asyncio.run(PriceOracleAdapter().get_prices(["ETH", "USDC"]))
        assert prices == {"ETH": 2100.0, "USDC": 1.0}

    def test_get_price_single(self):
        with patch(ORACLE_CLIENT) as MockClient:
            _mock_get(MockClient, body={"bitcoin": {"usd": 60000}})
            assert asyncio.run(PriceOracleAdapter().get_price("btc")) == 60000.0


class TestPriceOracleFallback:
    EXPECTED = {"ETH": 2000.0, "USDC": 1.0}

    def _prices(self, **mock_kwargs):
        with patch(ORACLE_CLIENT) as MockClient:
            _mock_get(MockClient, **mock_kwargs)
            return asyncio.run(PriceOracleAdapter().get_prices(["ETH", "USDC"]))

    def test_connection_failure(self):
        assert self._prices(error=httpx.ConnectError("down")) == self.EXPECTED

    def test_timeout(self):
        assert self._prices(error=httpx.ReadTimeout("slow")) == self.EXPECTED

    def test_non_200(self):
        assert self._prices(status=429, body={}) == self.EXPECTED

    def test_non_json_body(self):
        assert self._prices(json_error=ValueError("not json")) == self.EXPECTED

    def test_body_not_object(self):
        assert self._prices(body=["ethereum"]) == self.EXPECTED

    @pytest.mark.parametrize("entry", [
        {"usd": "2000"},
        {"usd": None},
        {"usd": -1},
        {"usd": float("nan")},
        {"usd": True},
        {"usd": 10**400},
        "2000",
    ])
    def test_malformed_entry_fails_whole_request(self, entry):
        body = {"ethereum": entry, "usd-coin": {"usd": 1.01}}
        assert self._prices(body=body) == self.EXPECTED

    def test_failure_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="defi_analytics.price_oracle"):
            self._prices(error=httpx.ConnectError("down"))
        assert "static table" in caplog.text


class TestPriceOracleEdges:
    def test_unknown_symbol_zero_without_request(self):
        with patch(ORACLE_CLIENT) as MockClient:
            prices = asyncio.run(PriceOracleAdapter().get_prices(["FOO"]))
        assert prices == {"FOO": 0.0}
        MockClient.assert_not_called()

    def test_empty_input(self):
        with patch(ORACLE_CLIENT) as MockClient:
            assert asyncio.run(PriceOracleAdapter().get_prices([])) == {}
        MockClient.assert_not_called()

    def test_cache_hit_skips_request(self):
        oracle = PriceOracleAdapter(cache_ttl_seconds=60)
        with patch(ORACLE_CLIENT) as MockClient:
            client = _mock_get(MockClient, body={"ethereum": {"usd": 2222}})
            first = asyncio.run(oracle.get_prices(["ETH"]))
            second = asyncio.run(oracle.get_prices(["eth"]))
        assert first == second == {"ETH": 2222.0}
        assert client.get.call_count == 1

    def test_cache_disabled_by_default(self):
        oracle = PriceOracleAdapter()
        with patch(ORACLE_CLIENT) as MockClient:
            client = _mock_get(MockClient, body={"ethereum": {"usd": 2222}})
            asyncio.run(oracle.get_prices(["ETH"]))
            asyncio.run(oracle.get_prices(["ETH"]))
        assert client.get.call_count == 2

    def test_static_fallback_not_cached(self):
        oracle = PriceOracleAdapter(cache_ttl_seconds=60)
        with patch(ORACLE_CLIENT) as MockClient:
            client = _mock_get(MockClient, error=httpx.ConnectError("down"))
            asyncio.run(oracle.get_prices(["ETH"]))
            asyncio.run(oracle.get_prices(["ETH"]))
        assert client.get.call_count == 2

    def test_custom_static_table(self):
        oracle = PriceOracleAdapter(static_prices={"ETH": 1800.0}, symbol_to_id={})
        with patch(ORACLE_CLIENT) as MockClient:
            prices = asyncio.run(oracle.get_prices(["ETH", "USDC"]))
        assert prices == {"ETH": 1800.0, "USDC": 0.0}
        MockClient.assert_not_called()


# ═══════════════════════════════════════════════════════════════════════════
# 4. portfolio_summary.py
# ═══════════════════════════════════════════════════════════════════════════

from defi_analytics.portfolio_summary import (
    AssetShare,
    ChainShare,
    summarize_portfolio,
    summarize_with_oracle,
)
from defi_analytics.strategies import PortfolioItem


class FakeOracle:
    def __init__(self, prices):
        self.prices = prices

    async def get_prices(self, symbols):
        return {normalize_symbol(s): self.prices.get(normalize_symbol(s), 0.0) for s in symbols}


class TestPortfolioSummary:
    def _eth_usdc(self):
        return [PortfolioItem("ETH", 1, "Ethereum"), PortfolioItem("USDC", 1000, "Arbitrum")]

    def test_breakdown(self):
        s = summarize_portfolio(self._eth_usdc(), {"ETH": 2000.0, "USDC": 1.0})
        assert s.total_value == pytest.approx(3000)
        assert s.main_assets == [AssetShare("ETH", 67), AssetShare("USDC", 33)]
        assert s.chain_distribution == [ChainShare("Ethereum", 67), ChainShare("Arbitrum", 33)]
        assert s.risk_assessment.startswith("Low risk")

    def test_score_and_recommendations(self):
        s = summarize_portfolio(self._eth_usdc(), {"ETH": 2000.0, "USDC": 1.0})
        # 50 + 2·5 + 2·7 + stables + majors
        assert s.diversification_score == 84
        assert len(s.recommendations) == 3
        assert any("blockchain networks" in r for r in s.recommendations)
        assert any("reducing ETH position (67%)" in r for r in s.recommendations)

    def test_single_altcoin(self):
        s = summarize_portfolio([PortfolioItem("PEPE", 100, "Base")], {})
        assert s.total_value == 100  # unknown price → 1.0 placeholder
        assert s.diversification_score == 67
        assert s.risk_assessment.startswith("High risk")
        assert s.recommendations[0].startswith("Add stablecoins")

    def test_score_capped(self):
        portfolio = [
            PortfolioItem("ETH", 1, "Ethereum"),
            PortfolioItem("USDC", 2000, "Arbitrum"),
            PortfolioItem("PEPE", 1000, "Base"),
            PortfolioItem("WBTC", 0.1, "Ethereum"),
        ]
        s = summarize_portfolio(portfolio, dict(STATIC_PRICES))
        assert s.diversification_score == 95
        assert len(s.main_assets) == 3

    def test_zero_total_value(self):
        s = summarize_portfolio([PortfolioItem("ETH", 0)], {"ETH": 2000.0})
        assert s.total_value == 0
        assert s.main_assets == [AssetShare("ETH", 0)]

    def test_empty_portfolio(self):
        with pytest.raises(ValidationError):
            summarize_portfolio([], {})

    def test_with_oracle(self):
        oracle = FakeOracle({"ETH": 3000.0})
        s = asyncio.run(summarize_with_oracle([PortfolioItem("eth", 2)], oracle))
        assert s.total_value == pytest.approx(6000)


# ═══════════════════════════════════════════════════════════════════════════
# 5. commands.py
# ═══════════════════════════════════════════════════════════════════════════

from defi_analytics.commands import (
    cmd_il,
    cmd_info,
    cmd_prices,
    cmd_summary,
    parse_asset,
    parse_holding,
)


class TestParseHelpers:
    def test_parse_asset(self):
        asset = parse_asset("BTC:1.5:30000")
        assert (asset.token, asset.amount, asset.allocation) == ("BTC", 1.5, 30000.0)

    @pytest.mark.parametrize("text", ["BTC:1", "BTC:one:30000", "BTC::1", "BTC:-1:30000"])
    def test_parse_asset_invalid(self, text):
        with pytest.raises(ValidationError):
            parse_asset(text)

    def test_parse_holding_default_chain(self):
        assert parse_holding("ETH:2") == PortfolioItem("ETH", 2.0, "Ethereum")

    def test_parse_holding_with_chain(self):
        assert parse_holding("usdc:100:Base") == PortfolioItem("usdc", 100.0, "Base")

    @pytest.mark.parametrize("text", ["ETH", "ETH:x:Base", "ETH:1:Base:extra"])
    def test_parse_holding_invalid(self, text):
        with pytest.raises(ValidationError):
            parse_holding(text)


class TestCommands:
    def test_cmd_info(self, capsys):
        cmd_info()
        output = capsys.readouterr().out
        assert "DeFi Portfolio Analytics" in output
        assert "NOT financial" in output

    def test_cmd_prices(self, capsys):
        asyncio.run(cmd_prices(["eth"], oracle=FakeOracle({"ETH": 2000.0})))
        assert "ETH" in capsys.readouterr().out

    def test_cmd_il_uses_oracle_for_missing_price(self, capsys):
        oracle = FakeOracle({"ETH": 2200.0, "USDC": 1.0})
        asyncio.run(cmd_il("ETH", "USDC", 2000, 1, 10, oracle=oracle))
        output = capsys.readouterr().out
        assert "ETH/USDC" in output
        assert "High" in output
        assert "Ratio IL (ref) : -0.11%" in output

    def test_cmd_summary(self, capsys):
        oracle = FakeOracle({"ETH": 2000.0, "USDC": 1.0})
        asyncio.run(cmd_summary(["ETH:1", "USDC:1000:Arbitrum"], oracle=oracle))
        output = capsys.readouterr().out
        assert "$3,000.00" in output
        assert "84/100" in output
        assert "NOT financial" in output


# ═══════════════════════════════════════════════════════════════════════════
# 6. run.py (argparse parser, exit codes)
# ═══════════════════════════════════════════════════════════════════════════

from run import create_parser, main


class TestCreateParser:
    @pytest.mark.parametrize("argv", [
        ["info"],
        ["prices", "ETH", "USDC"],
        ["il", "--token0", "ETH", "--token1", "USDC", "--initial0", "2000",
         "--initial1", "1", "--liquidity", "10"],
        ["rebalance", "--asset", "BTC:1:30000"],
        ["strategies"],
        ["summary", "--holding", "ETH:1"],
    ])
    def test_all_subcommands_exist(self, argv):
        args = create_parser().parse_args(argv)
        assert args.command == argv[0]

    def test_defaults(self):
        parser = create_parser()
        reb = parser.parse_args(["rebalance", "--asset", "ETH:1:2000"])
        assert reb.risk == "medium"
        assert reb.fee_model is None
        strat = parser.parse_args(["strategies"])
        assert strat.mode == "rules"
        assert strat.holding == []
        assert strat.seed is None

    def test_il_requires_liquidity(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["il", "--token0", "ETH", "--token1", "USDC",
                                        "--initial0", "1", "--initial1", "1"])


class TestMain:
    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage" in capsys.readouterr().out.lower()

    def test_rebalance(self, capsys):
        code = main(["rebalance", "--asset", "BTC:1:30000", "--asset", "ETH:10:2000",
                     "--risk", "low"])
        output = capsys.readouterr().out
        assert code == 0
        assert "SELL" in output
        assert "$50,000.00" in output
        assert "$750.00" in output

    def test_il_with_explicit_prices(self, capsys):
        code = main(["il", "--token0", "USDC", "--token1", "DAI", "--initial0", "1",
                     "--initial1", "1", "--current0", "1", "--current1", "1",
                     "--liquidity", "10"])
        output = capsys.readouterr().out
        assert code == 0
        assert "+0.00%" in output
        assert "Hold current position" in output

    def test_il_unequal_prices_without_movement(self, capsys):
        """√(2000·1)·10 ≈ 447 pool value vs 10005 hold value → High."""
        code = main(["il", "--token0", "ETH", "--token1", "USDC", "--initial0", "2000",
                     "--initial1", "1", "--current0", "2000", "--current1", "1",
                     "--liquidity", "10"])
        output = capsys.readouterr().out
        assert code == 0
        assert "High" in output
        assert "Consider withdrawing liquidity" in output

    def test_strategies_seeded(self, capsys):
        argv = ["strategies", "--holding", "USDC:100:Base", "--risk", "low", "--seed", "1"]
        assert main(argv) == 0
        first = capsys.readouterr().out
        assert main(argv) == 0
        assert capsys.readouterr().out == first
        assert "Aave" in first

    @pytest.mark.parametrize("argv", [
        ["rebalance", "--asset", "BTC:x:1"],
        ["rebalance", "--asset", "BTC:1:1", "--risk", "extreme"],
        ["rebalance", "--asset", "BTC:1:1", "--fee-model", "gas"],
        ["strategies", "--risk", "yolo"],
        ["il", "--token0", "ETH", "--token1", "USDC", "--initial0", "-1",
         "--initial1", "1", "--current0", "1", "--current1", "1", "--liquidity", "1"],
    ])
    def test_validation_error_exit_code(self, argv, capsys):
        assert main(argv) == 1
        assert "❌" in capsys.readouterr().out
