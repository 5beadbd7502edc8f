from __future__ import annotations

import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import config
from config import ConfigError, ScalpConfig, load_scalp_config


class ConfigPatchMixin:
    def setUp(self) -> None:
        super().setUp()
        self._cfg_old: dict[str, object] = {}

    def patch_cfg(self, **kwargs: object) -> None:
        for key, value in kwargs.items():
            if key not in self._cfg_old:
                self._cfg_old[key] = getattr(config, key, None)
            setattr(config, key, value)

    def tearDown(self) -> None:
        for key, value in self._cfg_old.items():
            setattr(config, key, value)
        super().tearDown()


class ConfigEnvLoadingTests(unittest.TestCase):
    def _run_import(self, bot_env_file: str, code: str = "import config; print('ok')") -> subprocess.CompletedProcess[str]:
        root = Path(__file__).resolve().parents[1]
        env = os.environ.copy()
        env["BOT_ENV_FILE"] = bot_env_file
        return subprocess.run(
            [sys.executable, "-c", code],
            cwd=str(root),
            env=env,
            capture_output=True,
            text=True,
        )

    def test_missing_bot_env_file_fails_fast(self) -> None:
        result = self._run_import("data/presets/__definitely_missing_env_for_test__.env")
        self.assertNotEqual(result.returncode, 0)
        details = (result.stdout + "\n" + result.stderr).lower()
        self.assertIn("bot_env_file", details)
        self.assertIn("does not exist", details)

    def test_existing_bot_env_file_is_applied(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            env_path = Path(tmpdir) / "bot.env"
            env_path.write_text(
                "\n".join(["MIN_SCORE=61", "SLIPPAGE_RULES=inf:1.5,30000:6", "EXCLUDED_SYMBOLS=weth,usdc"]) + "\n",
                encoding="utf-8",
            )
            result = self._run_import(
                str(env_path),
                (
                    "import config; cfg = config.load_scalp_config(); "
                    "print(f\"{cfg.min_score}|{cfg.slippage_rules[0][1]}|{','.join(config.EXCLUDED_SYMBOLS)}\")"
                ),
            )
        self.assertEqual(result.returncode, 0, msg=result.stderr)
        self.assertEqual(result.stdout.strip(), "61|6.0|WETH,USDC")


class ScalpConfigTests(ConfigPatchMixin, unittest.TestCase):
    def test_defaults_validate(self) -> None:
        cfg = ScalpConfig().validate()
        self.assertEqual(cfg.min_score, 50)
        self.assertEqual(cfg.max_positions, 3)

    def test_slippage_tiers(self) -> None:
        cfg = ScalpConfig()
        self.assertEqual(cfg.slippage_for_liquidity(30_000.0), 5.0)
        self.assertEqual(cfg.slippage_for_liquidity(50_000.0), 5.0)
        self.assertEqual(cfg.slippage_for_liquidity(90_000.0), 3.5)
        self.assertEqual(cfg.slippage_for_liquidity(150_000.0), 2.5)
        self.assertEqual(cfg.slippage_for_liquidity(5_000_000.0), 2.0)
        self.assertEqual(cfg.sell_slippage_pct, 5.0)

    def test_inconsistent_values_raise(self) -> None:
        with self.assertRaises(ConfigError):
            ScalpConfig(min_liquidity_usd=3_000_000.0).validate()
        with self.assertRaises(ConfigError):
            ScalpConfig(slippage_rules=()).validate()
        with self.assertRaises(ConfigError):
            ScalpConfig(max_swap_attempts=4).validate()

    def test_malformed_env_value_is_config_error(self) -> None:
        with mock.patch.dict(os.environ, {"MAX_POSITIONS": "three"}):
            with self.assertRaises(ConfigError):
                load_scalp_config()

    def test_buffer_default_depends_on_mode(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=False):
            os.environ.pop("MIN_PROFIT_BUFFER_PCT", None)
            self.patch_cfg(PAPER_MODE=True)
            self.assertEqual(load_scalp_config().min_profit_buffer_pct, -2.0)
            self.patch_cfg(PAPER_MODE=False)
            self.assertEqual(load_scalp_config().min_profit_buffer_pct, 0.5)

    def test_live_mode_requires_credentials(self) -> None:
        self.patch_cfg(LIVE_PRIVATE_KEY="", LIVE_WALLET_ADDRESS="0xabc")
        with self.assertRaises(ConfigError) as ctx:
            config.require_live_credentials()
        self.assertIn("LIVE_PRIVATE_KEY", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
