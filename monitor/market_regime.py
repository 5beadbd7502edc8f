"""Market regime filter on the chain's reference asset (WETH on Base)."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

import config
from config import ScalpConfig
from monitor.dexscreener import DexScreenerFeed, FeedError, PairSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegimeVerdict:
    ok: bool
    reason: str
    change_1h: float | None = None
    change_5m: float | None = None


class MarketRegimeFilter:
    """Evaluated once per cycle and cached; a failed fetch lets trading proceed."""

    def __init__(
        self,
        feed: DexScreenerFeed,
        cfg: ScalpConfig,
        *,
        reference_address: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.feed = feed
        self.cfg = cfg
        self.reference_address = (reference_address or config.WETH_ADDRESS).lower()
        self._clock = clock
        self._cached: RegimeVerdict | None = None
        self._cached_at = 0.0
        self._last_snapshot: PairSnapshot | None = None

    def invalidate(self) -> None:
        self._cached = None

    async def check(self) -> RegimeVerdict:
        now = self._clock()
        if self._cached is not None and now - self._cached_at < self.cfg.regime_cache_seconds:
            return self._cached
        verdict = await self._evaluate()
        self._cached = verdict
        self._cached_at = now
        return verdict

    async def _evaluate(self) -> RegimeVerdict:
        try:
            snap = await self.feed.get_pair(self.reference_address)
        except FeedError as exc:
            logger.warning("REGIME caution fetch failed, trading allowed err=%s", exc)
            return RegimeVerdict(ok=True, reason="fetch_failed")
        if snap is None:
            logger.warning("REGIME caution no reference pair, trading allowed")
            return RegimeVerdict(ok=True, reason="no_data")
        self._last_snapshot = snap
        if snap.price_change_1h < self.cfg.regime_min_change_1h:
            verdict = RegimeVerdict(False, "reference_1h_dump", snap.price_change_1h, snap.price_change_5m)
        elif snap.price_change_5m < self.cfg.regime_min_change_5m:
            verdict = RegimeVerdict(False, "reference_5m_dump", snap.price_change_1h, snap.price_change_5m)
        else:
            verdict = RegimeVerdict(True, "ok", snap.price_change_1h, snap.price_change_5m)
        logger.info(
            "REGIME ok=%s reason=%s h1=%.2f m5=%.2f",
            verdict.ok,
            verdict.reason,
            snap.price_change_1h,
            snap.price_change_5m,
        )
        return verdict

    def native_price_usd(self) -> float:
        if self._last_snapshot is not None and self._last_snapshot.price_usd > 0:
            return self._last_snapshot.price_usd
        return float(config.WETH_PRICE_FALLBACK_USD)
