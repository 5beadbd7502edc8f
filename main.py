"""Entry point for the Base meme scalper."""

import argparse
import asyncio
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler

import config
from config import APP_LOG_FILE, LOG_DIR, LOG_LEVEL, ConfigError, load_scalp_config
from trading.auto_trader import AutoTrader


def configure_logging() -> None:
    os.makedirs(LOG_DIR, exist_ok=True)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = RotatingFileHandler(APP_LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(file_handler)
    root.addHandler(console_handler)

    # Avoid leaking bot token in verbose transport logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("telegram").setLevel(logging.INFO)
    logging.getLogger("web3").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Autonomous meme-token scalper for Base.")
    parser.add_argument("--once", action="store_true", help="run a single scan cycle and exit")
    parser.add_argument("--close-all", action="store_true", help="close every open position and exit")
    return parser.parse_args(argv)


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handler support.
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))


async def run(args: argparse.Namespace) -> int:
    cfg = load_scalp_config()
    trader = AutoTrader.create(cfg)
    trader.load_state()
    logger.info(
        "AUTOTRADER_INIT mode=%s balance=$%.2f open=%s run_tag=%s",
        "paper" if trader.paper else "live",
        trader.ledger.balance_usd,
        len(trader.positions),
        config.RUN_TAG,
    )

    if args.close_all:
        closed = await trader.close_all()
        logger.info("AUTOTRADER close-all closed=%s", len(closed))
        await trader.shutdown("close_all")
        return 0

    if args.once:
        await trader.run_cycle()
        await trader.shutdown("once")
        return 0

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)
    await trader.run_forever(stop_event)
    return 0


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = parse_args(argv)
    try:
        return asyncio.run(run(args))
    except ConfigError as exc:
        logger.error("Fatal configuration error: %s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())
