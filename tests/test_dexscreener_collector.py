from __future__ import annotations

import unittest
from typing import Any

from monitor.dexscreener import DexScreenerFeed, FeedError, FeedTimeoutError, PairSnapshot
from utils.http_client import HttpResult

API = "https://api.test"
TOKEN_A = "0x1111111111111111111111111111111111111111"
TOKEN_B = "0x2222222222222222222222222222222222222222"
TOKEN_C = "0x3333333333333333333333333333333333333333"


def _raw_pair(token: str, symbol: str, *, price: str = "0.001", liquidity: float = 50_000.0, chain: str = "base") -> dict:
    return {
        "chainId": chain,
        "dexId": "uniswap",
        "pairAddress": "0x9999999999999999999999999999999999999999",
        "baseToken": {"address": token, "symbol": symbol, "name": symbol.title()},
        "priceUsd": price,
        "liquidity": {"usd": liquidity},
        "volume": {"h24": 120_000, "h1": 9_000},
        "priceChange": {"m5": 2.5, "h1": 8.0, "h24": 30.0},
        "txns": {"h24": {"buys": 90, "sells": 40}},
    }


class StubHttp:
    """Routes `url` or `url?q=<query>` to a canned HttpResult; unknown routes are 404."""

    def __init__(self, routes: dict[str, HttpResult]) -> None:
        self.routes = routes
        self.requested: list[str] = []
        self.closed = False

    async def get_json(self, url: str, *, source: str = "default", params: dict[str, Any] | None = None, **_: Any) -> HttpResult:
        key = f"{url}?q={params['q']}" if params else url
        self.requested.append(key)
        return self.routes.get(key, HttpResult(ok=False, status=404, data=None, error="http_status_404"))

    async def close(self) -> None:
        self.closed = True


def _ok(data: Any) -> HttpResult:
    return HttpResult(ok=True, status=200, data=data)


def _feed(routes: dict[str, HttpResult]) -> DexScreenerFeed:
    feed = DexScreenerFeed(http=StubHttp(routes), chain_id="base")
    feed.api = API
    return feed


class PairSnapshotTests(unittest.TestCase):
    def test_parses_pair_row(self) -> None:
        snap = PairSnapshot.from_api(_raw_pair(TOKEN_A.upper().replace("0X", "0x"), "AAA"))
        self.assertIsNotNone(snap)
        self.assertEqual(snap.token_address, TOKEN_A)
        self.assertEqual(snap.txns_24h, 130)
        self.assertAlmostEqual(snap.buy_ratio, 90 / 130)
        self.assertEqual(snap.volume_1h, 9_000.0)

    def test_malformed_rows_are_dropped(self) -> None:
        self.assertIsNone(PairSnapshot.from_api(_raw_pair("", "AAA")))
        self.assertIsNone(PairSnapshot.from_api(_raw_pair("0x1234", "AAA")))
        self.assertIsNone(PairSnapshot.from_api(_raw_pair(TOKEN_A, "AAA", price="0")))
        self.assertIsNone(PairSnapshot.from_api(_raw_pair(TOKEN_A, "AAA", price="n/a")))
        self.assertIsNone(PairSnapshot.from_api("not a dict"))  # type: ignore[arg-type]

    def test_zero_transactions_ratio_does_not_divide_by_zero(self) -> None:
        row = _raw_pair(TOKEN_A, "AAA")
        row["txns"] = {}
        snap = PairSnapshot.from_api(row)
        self.assertEqual(snap.buy_ratio, 0.0)
        self.assertEqual(snap.sell_ratio, 0.0)


class CollectorTests(unittest.IsolatedAsyncioTestCase):
    async def test_first_occurrence_wins_and_failures_are_swallowed(self) -> None:
        routes = {
            f"{API}/latest/dex/search?q=pump": _ok({"pairs": [_raw_pair(TOKEN_A, "FIRST"), _raw_pair(TOKEN_B, "BBB")]}),
            f"{API}/latest/dex/search?q=meme": HttpResult(ok=False, status=0, data=None, error="http_timeout:", timed_out=True),
            f"{API}/latest/dex/search?q=cat": HttpResult(ok=False, status=500, data=None, error="http_status_500"),
            f"{API}/latest/dex/tokens/base": _ok(
                {"pairs": [_raw_pair(TOKEN_A, "SECOND"), _raw_pair(TOKEN_C, "CCC"), _raw_pair(TOKEN_C, "BAD", price="0")]}
            ),
        }
        feed = _feed(routes)
        pairs = await feed.collect_candidates(["pump", "meme", "cat"])
        self.assertEqual([p.token_address for p in pairs], [TOKEN_A, TOKEN_B, TOKEN_C])
        self.assertEqual(pairs[0].symbol, "FIRST")
        self.assertEqual(pairs[2].symbol, "CCC")

    async def test_all_sources_failing_yields_empty_list(self) -> None:
        feed = _feed(
            {
                f"{API}/latest/dex/search?q=pump": HttpResult(ok=False, status=503, data=None, error="http_status_503"),
            }
        )
        self.assertEqual(await feed.collect_candidates(["pump"]), [])

    async def test_other_chains_are_filtered(self) -> None:
        routes = {
            f"{API}/latest/dex/search?q=pump": _ok({"pairs": [_raw_pair(TOKEN_A, "AAA", chain="solana")]}),
        }
        self.assertEqual(await _feed(routes).collect_candidates(["pump"]), [])

    async def test_timeout_is_distinct_from_no_data(self) -> None:
        timeout_feed = _feed(
            {f"{API}/latest/dex/tokens/{TOKEN_A}": HttpResult(ok=False, status=0, data=None, error="x", timed_out=True)}
        )
        with self.assertRaises(FeedTimeoutError):
            await timeout_feed.get_pair(TOKEN_A)

        no_data_feed = _feed({f"{API}/latest/dex/tokens/{TOKEN_A}": _ok({"pairs": None})})
        self.assertIsNone(await no_data_feed.get_pair(TOKEN_A))
        self.assertIsNone(await _feed({}).get_pair(TOKEN_A))

        broken = _feed({f"{API}/latest/dex/tokens/{TOKEN_A}": HttpResult(ok=False, status=500, data=None, error="e")})
        with self.assertRaises(FeedError):
            await broken.get_pair(TOKEN_A)
        self.assertIsNone(await broken.get_price(TOKEN_A))

    async def test_get_pair_picks_deepest_pool(self) -> None:
        routes = {
            f"{API}/latest/dex/tokens/{TOKEN_A}": _ok(
                {
                    "pairs": [
                        _raw_pair(TOKEN_A, "AAA", price="0.001", liquidity=10_000.0),
                        _raw_pair(TOKEN_A, "AAA", price="0.002", liquidity=90_000.0),
                        _raw_pair(TOKEN_B, "QUOTE", price="5", liquidity=900_000.0),
                    ]
                }
            )
        }
        self.assertEqual(await _feed(routes).get_price(TOKEN_A), 0.002)

    async def test_trending_is_union_of_boosts_and_profiles(self) -> None:
        routes = {
            f"{API}/token-boosts/latest/v1": _ok(
                [{"chainId": "base", "tokenAddress": TOKEN_A}, {"chainId": "solana", "tokenAddress": "So1"}]
            ),
            f"{API}/token-profiles/latest/v1": _ok([{"chainId": "base", "tokenAddress": TOKEN_B.upper().replace("0X", "0x")}]),
        }
        self.assertEqual(await _feed(routes).get_trending(), {TOKEN_A, TOKEN_B})

    async def test_trending_failure_yields_empty_set(self) -> None:
        routes = {
            f"{API}/token-boosts/latest/v1": HttpResult(ok=False, status=0, data=None, error="x", timed_out=True),
        }
        self.assertEqual(await _feed(routes).get_trending(), set())


if __name__ == "__main__":
    unittest.main()
