"""DexScreener market feed: pair snapshots, trending set, and the per-cycle candidate collector."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Iterable

import config
from utils.addressing import is_evm_address, normalize_address
from utils.http_client import ResilientHttpClient

logger = logging.getLogger(__name__)


class FeedError(RuntimeError):
    """Feed call failed for a non-timeout reason (HTTP status, bad payload)."""


class FeedTimeoutError(FeedError):
    """Feed call timed out. Distinct from an empty result, which means "no data"."""


def _f(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _i(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class PairSnapshot:
    token_address: str
    symbol: str
    name: str
    chain_id: str
    pair_address: str
    dex_id: str
    price_usd: float
    liquidity_usd: float
    volume_24h: float
    volume_1h: float
    price_change_5m: float
    price_change_1h: float
    price_change_24h: float
    buys_24h: int
    sells_24h: int
    url: str = ""

    @property
    def txns_24h(self) -> int:
        return self.buys_24h + self.sells_24h

    @property
    def buy_ratio(self) -> float:
        return self.buys_24h / (self.txns_24h or 1)

    @property
    def sell_ratio(self) -> float:
        return self.sells_24h / (self.txns_24h or 1)

    @classmethod
    def from_api(cls, pair: dict[str, Any]) -> "PairSnapshot | None":
        """Parse one DexScreener pair row. Malformed rows return None and are dropped by callers."""
        if not isinstance(pair, dict):
            return None
        base = pair.get("baseToken") or {}
        address = normalize_address(base.get("address"))
        price = _f(pair.get("priceUsd"))
        if not is_evm_address(address) or price <= 0:
            return None
        txns = (pair.get("txns") or {}).get("h24") or {}
        volume = pair.get("volume") or {}
        change = pair.get("priceChange") or {}
        return cls(
            token_address=address,
            symbol=str(base.get("symbol") or "N/A"),
            name=str(base.get("name") or "Unknown"),
            chain_id=str(pair.get("chainId") or "").lower(),
            pair_address=normalize_address(pair.get("pairAddress")),
            dex_id=str(pair.get("dexId") or "").lower(),
            price_usd=price,
            liquidity_usd=_f((pair.get("liquidity") or {}).get("usd")),
            volume_24h=_f(volume.get("h24")),
            volume_1h=_f(volume.get("h1")),
            price_change_5m=_f(change.get("m5")),
            price_change_1h=_f(change.get("h1")),
            price_change_24h=_f(change.get("h24")),
            buys_24h=_i(txns.get("buys")),
            sells_24h=_i(txns.get("sells")),
            url=str(pair.get("url") or ""),
        )


def dedupe_first_wins(groups: Iterable[Iterable[PairSnapshot]]) -> list[PairSnapshot]:
    seen: set[str] = set()
    out: list[PairSnapshot] = []
    for rows in groups:
        for row in rows:
            if row.token_address in seen:
                continue
            seen.add(row.token_address)
            out.append(row)
    return out


class DexScreenerFeed:
    def __init__(self, http: ResilientHttpClient | None = None, chain_id: str | None = None) -> None:
        self.chain_id = str(chain_id or config.CHAIN_ID).lower()
        self.api = str(config.DEXSCREENER_API).rstrip("/")
        self._http = http or ResilientHttpClient(
            timeout_seconds=float(config.DEX_TIMEOUT),
            headers={"Accept": "application/json, text/plain, */*", "User-Agent": "base-meme-scalper/1.0"},
            source_limits={"dexscreener": 8, "dex_trending": 4, "dex_price": 8},
        )

    async def close(self) -> None:
        await self._http.close()

    async def _fetch_json(
        self, url: str, source: str, retries: int | None = None, params: dict[str, str] | None = None
    ) -> Any | None:
        result = await self._http.get_json(
            url, source=source, params=params, max_attempts=retries or config.DEX_RETRIES
        )
        if result.ok:
            return result.data
        if result.timed_out:
            raise FeedTimeoutError(f"{source} timeout url={url}")
        if result.status == 404:
            return None
        raise FeedError(f"{source} failed status={result.status} err={result.error}")

    def _chain_rows(self, pairs: Any) -> list[PairSnapshot]:
        out: list[PairSnapshot] = []
        for raw in pairs or []:
            snap = PairSnapshot.from_api(raw)
            if snap is None:
                continue
            if snap.chain_id and snap.chain_id != self.chain_id:
                continue
            out.append(snap)
        return out

    async def search_pairs(self, query: str) -> list[PairSnapshot]:
        data = await self._fetch_json(f"{self.api}/latest/dex/search", source="dexscreener", params={"q": query})
        if not isinstance(data, dict):
            return []
        return self._chain_rows(data.get("pairs"))

    async def chain_pairs(self) -> list[PairSnapshot]:
        data = await self._fetch_json(f"{self.api}/latest/dex/tokens/{self.chain_id}", source="dexscreener")
        if not isinstance(data, dict):
            return []
        return self._chain_rows(data.get("pairs"))

    async def get_pair(self, token_address: str) -> PairSnapshot | None:
        """Best-liquidity pair on this chain for a token, or None when the feed has none."""
        address = normalize_address(token_address)
        if not address:
            return None
        data = await self._fetch_json(f"{self.api}/latest/dex/tokens/{address}", source="dex_price", retries=1)
        if not isinstance(data, dict):
            return None
        best: PairSnapshot | None = None
        for snap in self._chain_rows(data.get("pairs")):
            if snap.token_address != address:
                continue
            if best is None or snap.liquidity_usd > best.liquidity_usd:
                best = snap
        return best

    async def get_price(self, token_address: str) -> float | None:
        try:
            snap = await self.get_pair(token_address)
        except FeedError as exc:
            logger.warning("PRICE_FEED unavailable token=%s err=%s", token_address, exc)
            return None
        return snap.price_usd if snap else None

    async def _trending_list(self, path: str) -> list[str]:
        data = await self._fetch_json(f"{self.api}/{path}", source="dex_trending", retries=1)
        if not isinstance(data, list):
            return []
        out: list[str] = []
        for row in data:
            if not isinstance(row, dict) or str(row.get("chainId", "")).lower() != self.chain_id:
                continue
            addr = normalize_address(row.get("tokenAddress"))
            if addr:
                out.append(addr)
            if len(out) >= config.DEX_TRENDING_MAX_TOKENS:
                break
        return out

    async def get_trending(self) -> set[str]:
        """Union of latest boosted and latest profiled tokens for the chain. Failures yield an empty set."""
        results = await asyncio.gather(
            self._trending_list("token-boosts/latest/v1"),
            self._trending_list("token-profiles/latest/v1"),
            return_exceptions=True,
        )
        out: set[str] = set()
        for rows in results:
            if isinstance(rows, BaseException):
                logger.warning("TRENDING_FETCH failed err=%s", rows)
                continue
            out.update(rows)
        return out

    async def collect_candidates(self, queries: Iterable[str] | None = None) -> list[PairSnapshot]:
        """Fan out every search query plus the chain-wide query; a failing query contributes nothing."""
        query_list = list(queries if queries is not None else config.DEX_SEARCH_QUERIES)
        tasks = [self.search_pairs(q) for q in query_list]
        tasks.append(self.chain_pairs())
        results = await asyncio.gather(*tasks, return_exceptions=True)
        groups: list[list[PairSnapshot]] = []
        failed = 0
        for label, rows in zip(query_list + ["<chain>"], results):
            if isinstance(rows, BaseException):
                failed += 1
                logger.warning("DEX_QUERY failed query=%s err=%s", label, rows)
                continue
            groups.append(rows)
        merged = dedupe_first_wins(groups)
        logger.info("COLLECT sources=%s failed=%s unique=%s", len(tasks), failed, len(merged))
        return merged
