"""Application configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Tuple

from dotenv import load_dotenv


class ConfigError(RuntimeError):
    """Raised when startup configuration is missing or inconsistent."""


def _load_dotenv_safe(dotenv_path: str | None = None, *, override: bool = False) -> None:
    """Load dotenv using UTF-8-SIG so BOM-prefixed files don't break first key parsing."""
    try:
        load_dotenv(dotenv_path=dotenv_path, override=override, encoding="utf-8-sig")
    except TypeError:
        # Older python-dotenv versions may not expose the `encoding` argument.
        load_dotenv(dotenv_path=dotenv_path, override=override)


# Load base environment first, then optional per-instance override env file.
_load_dotenv_safe()
_BOT_ENV_FILE = os.getenv("BOT_ENV_FILE", "").strip()
if _BOT_ENV_FILE:
    _bot_env_path = Path(_BOT_ENV_FILE).expanduser()
    if not _bot_env_path.is_absolute():
        _bot_env_path = (Path.cwd() / _bot_env_path).resolve()
    if not _bot_env_path.exists():
        raise FileNotFoundError(f"BOT_ENV_FILE does not exist: {_bot_env_path}")
    if not _bot_env_path.is_file():
        raise IsADirectoryError(f"BOT_ENV_FILE is not a file: {_bot_env_path}")
    try:
        _load_dotenv_safe(str(_bot_env_path), override=True)
    except (OSError, UnicodeError, ValueError) as exc:
        raise RuntimeError(f"Failed to load BOT_ENV_FILE '{_bot_env_path}': {exc}") from exc


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "y", "on")


def _env_csv(name: str, default: str) -> list[str]:
    return [x.strip() for x in os.getenv(name, default).split(",") if x.strip()]


def _parse_source_rate_limits(raw: str) -> Dict[str, Tuple[int, float]]:
    out: Dict[str, Tuple[int, float]] = {}
    for chunk in str(raw or "").split(","):
        item = chunk.strip()
        if not item or ":" not in item:
            continue
        source_part, rate_part = item.split(":", 1)
        source = source_part.strip().lower()
        if not source or "/" not in rate_part:
            continue
        count_part, window_part = rate_part.split("/", 1)
        try:
            count = max(1, int(float(count_part.strip())))
            window_seconds = max(1.0, float(window_part.strip()))
        except ValueError:
            continue
        out[source] = (count, window_seconds)
    return out


def _parse_slippage_rules(raw: str) -> Tuple[Tuple[float, float], ...]:
    """Parse `max_liquidity:slippage` pairs, e.g. `50000:5,100000:3.5,inf:2`."""
    rules: list[Tuple[float, float]] = []
    for chunk in str(raw or "").split(","):
        item = chunk.strip()
        if not item or ":" not in item:
            continue
        liq_part, slip_part = item.split(":", 1)
        try:
            max_liq = float("inf") if liq_part.strip().lower() in ("inf", "infinity", "*") else float(liq_part)
            slippage = float(slip_part)
        except ValueError:
            continue
        rules.append((max_liq, slippage))
    rules.sort(key=lambda rule: rule[0])
    return tuple(rules)


RUN_TAG = os.getenv("RUN_TAG", os.getenv("BOT_INSTANCE_ID", "")).strip()

# Market data
CHAIN_NAME = os.getenv("CHAIN_NAME", "base")
CHAIN_ID = os.getenv("CHAIN_ID", "base")
EVM_CHAIN_ID = int(os.getenv("EVM_CHAIN_ID", "8453"))
DEXSCREENER_API = os.getenv("DEXSCREENER_API", "https://api.dexscreener.com")
DEX_SEARCH_QUERIES = _env_csv("DEX_SEARCH_QUERIES", "pump,base,meme,pepe,doge,cat,ai")
DEX_TRENDING_MAX_TOKENS = max(0, int(os.getenv("DEX_TRENDING_MAX_TOKENS", "20")))
DEX_TIMEOUT = int(os.getenv("DEX_TIMEOUT", "10"))
DEX_RETRIES = int(os.getenv("DEX_RETRIES", "2"))
EXCLUDED_SYMBOLS = [s.upper() for s in _env_csv("EXCLUDED_SYMBOLS", "WETH,ETH,USDC,USDBC,USDT,DAI,CBBTC")]

# HTTP transport
HTTP_CONNECTOR_LIMIT = max(1, int(os.getenv("HTTP_CONNECTOR_LIMIT", "30")))
HTTP_DEFAULT_CONCURRENCY = max(1, int(os.getenv("HTTP_DEFAULT_CONCURRENCY", "8")))
HTTP_RETRY_ATTEMPTS = max(1, int(os.getenv("HTTP_RETRY_ATTEMPTS", "2")))
HTTP_BACKOFF_BASE_SECONDS = max(0.05, float(os.getenv("HTTP_BACKOFF_BASE_SECONDS", "0.50")))
HTTP_BACKOFF_MAX_SECONDS = max(0.10, float(os.getenv("HTTP_BACKOFF_MAX_SECONDS", "4.00")))
HTTP_JITTER_SECONDS = max(0.0, float(os.getenv("HTTP_JITTER_SECONDS", "0.25")))
HTTP_429_COOLDOWN_SECONDS = max(1.0, float(os.getenv("HTTP_429_COOLDOWN_SECONDS", "30")))
HTTP_SOURCE_RATE_LIMITS = _parse_source_rate_limits(
    os.getenv("HTTP_SOURCE_RATE_LIMITS", "dexscreener:240/60,dex_trending:60/60,dex_price:240/60")
)

# Chain / router
RPC_PRIMARY = os.getenv("RPC_PRIMARY", "https://mainnet.base.org").strip()
RPC_SECONDARY = os.getenv("RPC_SECONDARY", "").strip()
RPC_TIMEOUT_SECONDS = max(3, int(os.getenv("RPC_TIMEOUT_SECONDS", "10")))
WETH_ADDRESS = os.getenv("WETH_ADDRESS", "0x4200000000000000000000000000000000000006").strip().lower()
WETH_PRICE_FALLBACK_USD = max(0.0, float(os.getenv("WETH_PRICE_FALLBACK_USD", "2500")))
LIVE_ROUTER_ADDRESS = os.getenv("LIVE_ROUTER_ADDRESS", "0x4752ba5DBc23f44D87826276BF6Fd6b1C372aD24").strip()
LIVE_PRIVATE_KEY = os.getenv("LIVE_PRIVATE_KEY", "").strip()
LIVE_WALLET_ADDRESS = os.getenv("LIVE_WALLET_ADDRESS", "").strip()
LIVE_SWAP_DEADLINE_SECONDS = max(30, int(os.getenv("LIVE_SWAP_DEADLINE_SECONDS", "45")))
LIVE_TX_TIMEOUT_SECONDS = max(30, int(os.getenv("LIVE_TX_TIMEOUT_SECONDS", "120")))
LIVE_MAX_GAS_GWEI = float(os.getenv("LIVE_MAX_GAS_GWEI", "2.0"))
LIVE_PRIORITY_FEE_GWEI = float(os.getenv("LIVE_PRIORITY_FEE_GWEI", "0.02"))
LIVE_MAX_SWAP_GAS = max(0, int(os.getenv("LIVE_MAX_SWAP_GAS", "600000")))

# Mode, notification, persistence
PAPER_MODE = _env_bool("PAPER_MODE", "true")
PAPER_START_BALANCE_USD = float(os.getenv("PAPER_START_BALANCE_USD", "100"))
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
TELEGRAM_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID", "").strip()
SESSION_STATE_FILE = os.getenv("SESSION_STATE_FILE", os.path.join("data", "scalper_session.json"))
SESSION_CLOSED_TRADES_KEEP = max(50, int(os.getenv("SESSION_CLOSED_TRADES_KEEP", "500")))
TRADES_DATABASE_URL = os.getenv("TRADES_DATABASE_URL", "sqlite:///" + os.path.join("data", "trades.db"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")
APP_LOG_FILE = os.path.join(LOG_DIR, "app.log")
DECISIONS_LOG_FILE = os.path.join(LOG_DIR, "decisions.jsonl")


DEFAULT_SLIPPAGE_RULES: Tuple[Tuple[float, float], ...] = (
    (50_000.0, 5.0),
    (100_000.0, 3.5),
    (200_000.0, 2.5),
    (float("inf"), 2.0),
)


@dataclass(frozen=True)
class ScalpConfig:
    """Trading thresholds for one run. Built once at startup and never mutated."""

    scan_interval_seconds: float = 15.0
    max_scan_candidates: int = 50

    # Scoring
    min_score: int = 50
    min_liquidity_usd: float = 20_000.0
    max_liquidity_usd: float = 2_000_000.0
    min_volume_24h_usd: float = 50_000.0
    min_price_change_5m: float = 1.5
    max_price_change_5m: float = 50.0

    # Gate
    min_buy_ratio: float = 0.52
    min_sells_required: int = 3
    min_sell_ratio: float = 0.15
    min_volume_spike: float = 2.0
    roundtrip_top_k: int = 5
    roundtrip_probe_usd: float = 10.0
    min_profit_buffer_pct: float = -2.0
    regime_min_change_1h: float = -3.0
    regime_min_change_5m: float = -1.5
    regime_cache_seconds: float = 60.0

    # Loss memory
    token_cooldown_seconds: float = 3600.0
    max_losses_per_token: int = 2
    extended_cooldown_seconds: float = 4 * 3600.0

    # Sizing
    position_size_pct: float = 4.0
    max_positions: int = 3
    min_position_usd: float = 1.0

    # Exits
    take_profit_pct: float = 6.0
    stop_loss_pct: float = 5.0
    trailing_activate_pct: float = 4.0
    trailing_distance_pct: float = 2.0
    max_hold_seconds: float = 120.0

    # Execution
    slippage_rules: Tuple[Tuple[float, float], ...] = field(default=DEFAULT_SLIPPAGE_RULES)
    sell_slippage_liquidity_usd: float = 50_000.0
    max_swap_attempts: int = 3
    swap_retry_delay_seconds: float = 1.0
    simulated_entry_slippage_pct: float = 3.0
    simulated_exit_slippage_pct: float = 2.0

    def slippage_for_liquidity(self, liquidity_usd: float) -> float:
        for max_liquidity, slippage in self.slippage_rules:
            if liquidity_usd <= max_liquidity:
                return slippage
        return self.slippage_rules[-1][1] if self.slippage_rules else 2.0

    @property
    def sell_slippage_pct(self) -> float:
        return self.slippage_for_liquidity(self.sell_slippage_liquidity_usd)

    def validate(self) -> "ScalpConfig":
        problems: list[str] = []
        if self.min_liquidity_usd <= 0 or self.min_liquidity_usd > self.max_liquidity_usd:
            problems.append("liquidity bounds")
        if self.min_price_change_5m > self.max_price_change_5m:
            problems.append("5m change bounds")
        if not 0.0 <= self.min_buy_ratio <= 1.0 or not 0.0 <= self.min_sell_ratio <= 1.0:
            problems.append("ratio bounds")
        if self.position_size_pct <= 0 or self.position_size_pct > 100:
            problems.append("position_size_pct")
        if self.max_positions < 1:
            problems.append("max_positions")
        if self.stop_loss_pct <= 0 or self.take_profit_pct <= 0 or self.trailing_distance_pct <= 0:
            problems.append("exit thresholds")
        if self.token_cooldown_seconds < 0 or self.extended_cooldown_seconds < self.token_cooldown_seconds:
            problems.append("cooldown durations")
        if self.max_losses_per_token < 1:
            problems.append("max_losses_per_token")
        if not self.slippage_rules:
            problems.append("slippage_rules empty")
        if not 1 <= self.max_swap_attempts <= 3:
            problems.append("max_swap_attempts must be 1..3")
        if self.roundtrip_top_k < 1:
            problems.append("roundtrip_top_k")
        if self.scan_interval_seconds <= 0:
            problems.append("scan_interval_seconds")
        if problems:
            raise ConfigError("invalid trading config: " + ", ".join(problems))
        return self


def load_scalp_config() -> ScalpConfig:
    buffer_default = "-2.0" if PAPER_MODE else "0.5"
    rules = _parse_slippage_rules(os.getenv("SLIPPAGE_RULES", "")) or DEFAULT_SLIPPAGE_RULES
    try:
        cfg = ScalpConfig(
            scan_interval_seconds=float(os.getenv("SCAN_INTERVAL", "15")),
            max_scan_candidates=int(os.getenv("MAX_SCAN_CANDIDATES", "50")),
            min_score=int(os.getenv("MIN_SCORE", "50")),
            min_liquidity_usd=float(os.getenv("MIN_LIQUIDITY_USD", "20000")),
            max_liquidity_usd=float(os.getenv("MAX_LIQUIDITY_USD", "2000000")),
            min_volume_24h_usd=float(os.getenv("MIN_VOLUME_24H_USD", "50000")),
            min_price_change_5m=float(os.getenv("MIN_PRICE_CHANGE_5M", "1.5")),
            max_price_change_5m=float(os.getenv("MAX_PRICE_CHANGE_5M", "50")),
            min_buy_ratio=float(os.getenv("MIN_BUY_RATIO", "0.52")),
            min_sells_required=int(os.getenv("MIN_SELLS_REQUIRED", "3")),
            min_sell_ratio=float(os.getenv("MIN_SELL_RATIO", "0.15")),
            min_volume_spike=float(os.getenv("MIN_VOLUME_SPIKE", "2.0")),
            roundtrip_top_k=int(os.getenv("ROUNDTRIP_TOP_K", "5")),
            roundtrip_probe_usd=float(os.getenv("ROUNDTRIP_PROBE_USD", "10")),
            min_profit_buffer_pct=float(os.getenv("MIN_PROFIT_BUFFER_PCT", buffer_default)),
            regime_min_change_1h=float(os.getenv("REGIME_MIN_CHANGE_1H", "-3.0")),
            regime_min_change_5m=float(os.getenv("REGIME_MIN_CHANGE_5M", "-1.5")),
            regime_cache_seconds=float(os.getenv("REGIME_CACHE_SECONDS", "60")),
            token_cooldown_seconds=float(os.getenv("TOKEN_COOLDOWN_SECONDS", "3600")),
            max_losses_per_token=int(os.getenv("MAX_LOSSES_PER_TOKEN", "2")),
            extended_cooldown_seconds=float(os.getenv("EXTENDED_COOLDOWN_SECONDS", "14400")),
            position_size_pct=float(os.getenv("POSITION_SIZE_PCT", "4")),
            max_positions=int(os.getenv("MAX_POSITIONS", "3")),
            min_position_usd=float(os.getenv("MIN_POSITION_USD", "1")),
            take_profit_pct=float(os.getenv("TAKE_PROFIT_PCT", "6")),
            stop_loss_pct=float(os.getenv("STOP_LOSS_PCT", "5")),
            trailing_activate_pct=float(os.getenv("TRAILING_ACTIVATE_PCT", "4")),
            trailing_distance_pct=float(os.getenv("TRAILING_DISTANCE_PCT", "2")),
            max_hold_seconds=float(os.getenv("MAX_HOLD_SECONDS", "120")),
            slippage_rules=rules,
            sell_slippage_liquidity_usd=float(os.getenv("SELL_SLIPPAGE_LIQUIDITY_USD", "50000")),
            max_swap_attempts=int(os.getenv("MAX_SWAP_ATTEMPTS", "3")),
            swap_retry_delay_seconds=float(os.getenv("SWAP_RETRY_DELAY_SECONDS", "1.0")),
            simulated_entry_slippage_pct=float(os.getenv("SIMULATED_ENTRY_SLIPPAGE_PCT", "3")),
            simulated_exit_slippage_pct=float(os.getenv("SIMULATED_EXIT_SLIPPAGE_PCT", "2")),
        )
    except ValueError as exc:
        raise ConfigError(f"malformed trading config value: {exc}") from exc
    return cfg.validate()


def require_live_credentials() -> None:
    missing = [
        name
        for name, value in (
            ("LIVE_PRIVATE_KEY", LIVE_PRIVATE_KEY),
            ("LIVE_WALLET_ADDRESS", LIVE_WALLET_ADDRESS),
            ("LIVE_ROUTER_ADDRESS", LIVE_ROUTER_ADDRESS),
            ("RPC_PRIMARY", RPC_PRIMARY or RPC_SECONDARY),
        )
        if not value
    ]
    if missing:
        raise ConfigError("live mode requires: " + ", ".join(missing))
