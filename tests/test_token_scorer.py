from __future__ import annotations

import unittest
from dataclasses import replace

from config import ScalpConfig
from monitor.dexscreener import PairSnapshot
from monitor.token_scorer import TokenScorer, rank

ADDR_A = "0x1111111111111111111111111111111111111111"
ADDR_B = "0x2222222222222222222222222222222222222222"
ADDR_C = "0x3333333333333333333333333333333333333333"


def _pair(**overrides: object) -> PairSnapshot:
    base = PairSnapshot(
        token_address=ADDR_A,
        symbol="AAA",
        name="Alpha",
        chain_id="base",
        pair_address="0x9999999999999999999999999999999999999999",
        dex_id="uniswap",
        price_usd=0.001,
        liquidity_usd=50_000.0,
        volume_24h=100_000.0,
        volume_1h=10_000.0,
        price_change_5m=3.0,
        price_change_1h=10.0,
        price_change_24h=40.0,
        buys_24h=80,
        sells_24h=40,
    )
    return replace(base, **overrides)


class TokenScorerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.scorer = TokenScorer(ScalpConfig())

    def test_full_breakdown_sums_every_part(self) -> None:
        bd = self.scorer.score(_pair(), {ADDR_A})
        self.assertEqual(
            bd.parts,
            {
                "liquidity": 15,
                "volume": 15,
                "momentum_5m": 23,
                "momentum_1h": 15,
                "buy_pressure": 10,
                "activity": 10,
                "trending": 15,
                "turnover": 10,
            },
        )
        self.assertEqual(bd.total, 113)
        self.assertEqual(bd.as_dict()["total"], 113)

    def test_liquidity_points_are_boundary_inclusive(self) -> None:
        cases = [
            (20_000.0, 15),
            (2_000_000.0, 15),
            (10_000.0, 5),
            (19_999.99, 5),
            (9_999.99, 0),
            (2_000_000.01, 0),
            (0.0, 0),
            (-5.0, 0),
        ]
        for liquidity, expected in cases:
            with self.subTest(liquidity=liquidity):
                bd = self.scorer.score(_pair(liquidity_usd=liquidity))
                self.assertEqual(bd.parts["liquidity"], expected)

    def test_momentum_bonus_is_capped(self) -> None:
        self.assertEqual(self.scorer.score(_pair(price_change_5m=1.5)).parts["momentum_5m"], 21)
        self.assertEqual(self.scorer.score(_pair(price_change_5m=35.0)).parts["momentum_5m"], 40)
        self.assertEqual(self.scorer.score(_pair(price_change_5m=1.0)).parts["momentum_5m"], 10)
        self.assertEqual(self.scorer.score(_pair(price_change_5m=-2.0)).parts["momentum_5m"], 0)
        self.assertEqual(self.scorer.score(_pair(price_change_5m=60.0)).parts["momentum_5m"], 10)

    def test_one_hour_window_is_exclusive(self) -> None:
        self.assertEqual(self.scorer.score(_pair(price_change_1h=5.0)).parts["momentum_1h"], 0)
        self.assertEqual(self.scorer.score(_pair(price_change_1h=5.1)).parts["momentum_1h"], 15)
        self.assertEqual(self.scorer.score(_pair(price_change_1h=100.0)).parts["momentum_1h"], 0)

    def test_no_transactions_scores_no_flow_points(self) -> None:
        bd = self.scorer.score(_pair(buys_24h=0, sells_24h=0))
        self.assertEqual(bd.parts["buy_pressure"], 0)
        self.assertEqual(bd.parts["activity"], 0)

    def test_not_trending_without_membership(self) -> None:
        self.assertEqual(self.scorer.score(_pair(), {ADDR_B}).parts["trending"], 0)

    def test_rank_breaks_ties_by_volume_then_address(self) -> None:
        low_vol = _pair(token_address=ADDR_A, volume_24h=60_000.0)
        high_vol = _pair(token_address=ADDR_C, volume_24h=90_000.0)
        same_vol = _pair(token_address=ADDR_B, volume_24h=90_000.0)
        scored = [(p, self.scorer.score(p)) for p in (low_vol, high_vol, same_vol)]
        for _, bd in scored:
            self.assertEqual(bd.total, scored[0][1].total)
        ordered = [p.token_address for p, _ in rank(scored)]
        self.assertEqual(ordered, [ADDR_B, ADDR_C, ADDR_A])

    def test_rank_puts_higher_score_first(self) -> None:
        weak = _pair(token_address=ADDR_B, price_change_1h=0.0, volume_24h=500_000.0)
        strong = _pair(token_address=ADDR_C)
        ordered = rank([(weak, self.scorer.score(weak)), (strong, self.scorer.score(strong))])
        self.assertEqual(ordered[0][0].token_address, ADDR_C)


if __name__ == "__main__":
    unittest.main()
