"""Per-token loss memory with escalating cooldowns."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from config import ScalpConfig
from trading.models import LossRecord
from utils.addressing import normalize_address, short_address

logger = logging.getLogger(__name__)


class LossMemory:
    """Tokens that recently lost money stay out of candidacy until their window lapses.

    Expired records are removed lazily, on the first `is_on_cooldown` query after expiry.
    Only a losing close mutates this store.
    """

    def __init__(self, cfg: ScalpConfig, clock: Callable[[], float] = time.time) -> None:
        self.cfg = cfg
        self._clock = clock
        self._records: dict[str, LossRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, token_address: str) -> bool:
        return normalize_address(token_address) in self._records

    def window_seconds(self, losses: int) -> float:
        if losses >= self.cfg.max_losses_per_token:
            return self.cfg.extended_cooldown_seconds
        return self.cfg.token_cooldown_seconds

    def record_loss(self, token_address: str) -> LossRecord:
        key = normalize_address(token_address)
        record = self._records.get(key)
        if record is None:
            record = LossRecord(losses=0, last_loss_time=0.0)
            self._records[key] = record
        record.losses += 1
        record.last_loss_time = self._clock()
        logger.info(
            "COOLDOWN record token=%s losses=%s window=%ss",
            short_address(key),
            record.losses,
            int(self.window_seconds(record.losses)),
        )
        return record

    def is_on_cooldown(self, token_address: str) -> bool:
        key = normalize_address(token_address)
        record = self._records.get(key)
        if record is None:
            return False
        ends = record.last_loss_time + self.window_seconds(record.losses)
        now = self._clock()
        if now < ends:
            logger.debug(
                "COOLDOWN active token=%s losses=%s left=%ss",
                short_address(key),
                record.losses,
                int(ends - now),
            )
            return True
        del self._records[key]
        return False

    def remaining_seconds(self, token_address: str) -> float:
        record = self._records.get(normalize_address(token_address))
        if record is None:
            return 0.0
        return max(0.0, record.last_loss_time + self.window_seconds(record.losses) - self._clock())

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        return {
            "tokens_on_cooldown": len(self._records),
            "tokens": [
                {
                    "token": short_address(addr),
                    "losses": rec.losses,
                    "mins_ago": round((now - rec.last_loss_time) / 60.0),
                }
                for addr, rec in self._records.items()
            ],
        }

    def to_dict(self) -> dict[str, dict[str, float]]:
        return {
            addr: {"losses": rec.losses, "last_loss_time": rec.last_loss_time}
            for addr, rec in self._records.items()
        }

    def load(self, payload: dict[str, Any] | None) -> None:
        self._records = {}
        for addr, row in (payload or {}).items():
            key = normalize_address(addr)
            if not key or not isinstance(row, dict):
                continue
            try:
                self._records[key] = LossRecord(
                    losses=max(0, int(row.get("losses", 0))),
                    last_loss_time=float(row.get("last_loss_time", 0.0)),
                )
            except (TypeError, ValueError):
                logger.warning("COOLDOWN skip malformed record token=%s", key)
