"""Stable decision-log contracts: reason codes and JSONL event stamping."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import time
from datetime import datetime, timezone
from typing import Any

from utils.addressing import normalize_address

logger = logging.getLogger(__name__)

LOG_SCHEMA_VERSION = "2026-10.v1"
SCHEMA_SCALP_DECISION = "scalp_decision.v1"

_STAGE_PREFIX: dict[str, str] = {
    "score": "SCORE",
    "gate": "GATE",
    "execute": "EXEC",
    "exit": "EXIT",
    "unknown": "UNKNOWN",
}

_REASON_CODE_OVERRIDES: dict[str, str] = {
    "cooldown": "GATE_COOLDOWN",
    "market_regime": "GATE_MARKET_REGIME",
    "weak_buy_pressure": "GATE_WEAK_BUY_PRESSURE",
    "honeypot_sells": "GATE_HONEYPOT_SELLS",
    "low_sell_ratio": "GATE_LOW_SELL_RATIO",
    "no_volume_spike": "GATE_NO_VOLUME_SPIKE",
    "round_trip": "GATE_ROUND_TRIP",
    "no_sell_route": "GATE_NO_SELL_ROUTE",
    "quote_unavailable": "GATE_QUOTE_UNAVAILABLE",
    "stop_loss": "EXIT_STOP_LOSS",
    "take_profit": "EXIT_TAKE_PROFIT",
    "trailing_stop": "EXIT_TRAILING_STOP",
    "max_hold_time": "EXIT_MAX_HOLD_TIME",
    "manual": "EXIT_MANUAL",
}

REASON_CODE_TAXONOMY: dict[str, dict[str, str]] = {
    "GATE_COOLDOWN": {"severity": "INFO", "category": "gate", "title": "Token on loss cooldown"},
    "GATE_MARKET_REGIME": {"severity": "INFO", "category": "gate", "title": "Reference asset dumping"},
    "GATE_WEAK_BUY_PRESSURE": {"severity": "INFO", "category": "gate", "title": "Buy ratio below floor"},
    "GATE_HONEYPOT_SELLS": {"severity": "WARN", "category": "gate", "title": "Too few sells, possible honeypot"},
    "GATE_LOW_SELL_RATIO": {"severity": "WARN", "category": "gate", "title": "Sell share below floor"},
    "GATE_NO_VOLUME_SPIKE": {"severity": "INFO", "category": "gate", "title": "No volume spike"},
    "GATE_ROUND_TRIP": {"severity": "INFO", "category": "gate", "title": "Round-trip cost eats the move"},
    "GATE_NO_SELL_ROUTE": {"severity": "WARN", "category": "gate", "title": "No sell route, possible honeypot"},
    "EXEC_BUY_FAIL": {"severity": "WARN", "category": "execute", "title": "Buy failed"},
    "EXEC_SELL_FAIL": {"severity": "WARN", "category": "execute", "title": "Sell failed"},
    "EXIT_STOP_LOSS": {"severity": "WARN", "category": "exit", "title": "Closed by stop loss"},
    "EXIT_TAKE_PROFIT": {"severity": "INFO", "category": "exit", "title": "Closed by take profit"},
    "EXIT_TRAILING_STOP": {"severity": "INFO", "category": "exit", "title": "Closed by trailing stop"},
    "EXIT_MAX_HOLD_TIME": {"severity": "INFO", "category": "exit", "title": "Closed by max hold time"},
}


def _normalize_reason_text(value: Any) -> str:
    text = re.sub(r"[^a-z0-9]+", "_", str(value or "").strip().lower())
    return re.sub(r"_+", "_", text).strip("_")


def _sanitize_code_token(value: str) -> str:
    text = re.sub(r"[^A-Z0-9]+", "_", str(value or "").strip().upper())
    return re.sub(r"_+", "_", text).strip("_") or "UNKNOWN"


def reason_code_for_event(*, reason: Any, decision_stage: Any = "") -> str:
    normalized = _normalize_reason_text(reason)
    if not normalized:
        return "UNKNOWN"
    override = _REASON_CODE_OVERRIDES.get(normalized)
    if override:
        return override
    prefix = _STAGE_PREFIX.get(_normalize_reason_text(decision_stage) or "unknown", "UNKNOWN")
    return f"{prefix}_{_sanitize_code_token(normalized)}"


def reason_code_meta(code: str) -> dict[str, str]:
    key = _sanitize_code_token(code)
    if key in REASON_CODE_TAXONOMY:
        return dict(REASON_CODE_TAXONOMY[key])
    return {"severity": "INFO", "category": "unknown", "title": key.replace("_", " ").title()}


def _decision_id(payload: dict[str, Any]) -> str:
    seed = "|".join(
        str(payload.get(k, "") or "")
        for k in ("run_tag", "decision_stage", "decision", "reason", "token_address", "ts")
    )
    return "dec_" + hashlib.sha1(seed.encode("utf-8", errors="ignore")).hexdigest()[:20]


def decision_event(event: dict[str, Any], *, run_tag: str = "") -> dict[str, Any]:
    payload = dict(event or {})
    ts = float(payload.get("ts") or time.time())
    payload["ts"] = ts
    payload["timestamp"] = datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()
    payload.setdefault("schema_version", LOG_SCHEMA_VERSION)
    payload.setdefault("schema_name", SCHEMA_SCALP_DECISION)
    if run_tag:
        payload.setdefault("run_tag", run_tag)
    payload.setdefault("decision_stage", "unknown")
    payload.setdefault("decision", "unknown")
    payload["reason"] = str(payload.get("reason", "") or "")
    payload["symbol"] = str(payload.get("symbol", "N/A") or "N/A")
    payload["token_address"] = normalize_address(payload.get("token_address", ""))
    payload["reason_code"] = str(
        payload.get("reason_code", "")
        or reason_code_for_event(reason=payload["reason"], decision_stage=payload["decision_stage"])
    ).upper()
    meta = reason_code_meta(payload["reason_code"])
    payload.setdefault("reason_severity", meta["severity"])
    payload.setdefault("reason_category", meta["category"])
    payload["decision_id"] = _decision_id(payload)
    return payload


class DecisionLog:
    """Append-only JSONL sink for gate, execution and exit decisions."""

    def __init__(self, path: str, *, run_tag: str = "") -> None:
        self.path = path
        self.run_tag = run_tag

    def write(self, **event: Any) -> dict[str, Any]:
        payload = decision_event(event, run_tag=self.run_tag)
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(payload, ensure_ascii=False, sort_keys=True) + "\n")
        except OSError as exc:
            logger.warning("DECISION_LOG write failed path=%s err=%s", self.path, exc)
        return payload
