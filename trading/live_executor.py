"""Wallet collaborators: on-chain signer for Base and a paper wallet that fills at quote."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from eth_account import Account
from web3 import HTTPProvider, Web3
from web3.exceptions import TimeExhausted, Web3Exception

import config
from trading.swap_router import ERC20_ABI, SELL_FN, SubmitErrorKind, SubmitResult, SwapPayload, UniswapV2Router

logger = logging.getLogger(__name__)


class PaperWallet:
    """Fills every payload at its quoted output. Used when PAPER_MODE is on."""

    def __init__(self) -> None:
        self.submitted = 0

    async def sign_and_submit(self, payload: SwapPayload) -> SubmitResult:
        self.submitted += 1
        return SubmitResult(
            success=True,
            tx_ref=f"paper-{payload.side.lower()}-{self.submitted}",
            amount_out_raw=int(payload.quote.amount_out),
        )


class LiveWallet:
    def __init__(self, router: UniswapV2Router | None = None) -> None:
        config.require_live_credentials()
        rpc = (config.RPC_PRIMARY or "").strip() or (config.RPC_SECONDARY or "").strip()
        self.w3 = Web3(HTTPProvider(rpc, request_kwargs={"timeout": config.RPC_TIMEOUT_SECONDS}))
        if not self.w3.is_connected():
            raise config.ConfigError(f"RPC not reachable: {rpc}")

        self.account = Account.from_key(config.LIVE_PRIVATE_KEY)
        self.wallet = self.w3.to_checksum_address(config.LIVE_WALLET_ADDRESS)
        if self.account.address.lower() != self.wallet.lower():
            raise config.ConfigError("LIVE_WALLET_ADDRESS does not match LIVE_PRIVATE_KEY")
        self.router = router or UniswapV2Router(self.w3, wallet_address=self.wallet)

    def native_balance_eth(self) -> float:
        return float(self.w3.from_wei(self.w3.eth.get_balance(self.wallet), "ether"))

    async def native_balance(self) -> float:
        return await asyncio.to_thread(self.native_balance_eth)

    def _token_balance(self, token_address: str) -> int:
        token = self.w3.eth.contract(address=self.w3.to_checksum_address(token_address), abi=ERC20_ABI)
        return int(token.functions.balanceOf(self.wallet).call())

    def _ensure_allowance(self, token_address: str, required_amount: int) -> None:
        token = self.w3.eth.contract(address=self.w3.to_checksum_address(token_address), abi=ERC20_ABI)
        allowance = int(token.functions.allowance(self.wallet, self.router.router_address).call())
        if allowance >= required_amount:
            return
        approve_tx = token.functions.approve(self.router.router_address, (2**256) - 1).build_transaction(
            self._tx_params()
        )
        self._send_and_wait(approve_tx)

    def _tx_params(self, value_wei: int = 0) -> dict[str, Any]:
        latest = self.w3.eth.get_block("latest")
        base_fee = int(latest.get("baseFeePerGas") or 0)
        priority = int(self.w3.to_wei(max(0.0, float(config.LIVE_PRIORITY_FEE_GWEI)), "gwei"))
        cap = int(self.w3.to_wei(max(0.0, float(config.LIVE_MAX_GAS_GWEI)), "gwei")) or int(self.w3.to_wei(1, "gwei"))

        observed_gas_price = int(self.w3.eth.gas_price or 0)
        if observed_gas_price > cap:
            obs_gwei = float(self.w3.from_wei(observed_gas_price, "gwei"))
            cap_gwei = float(self.w3.from_wei(cap, "gwei"))
            raise RuntimeError(f"gas_price_too_high observed_gwei={obs_gwei:.3f} cap_gwei={cap_gwei:.3f}")

        max_fee = min(cap, max(observed_gas_price, (base_fee * 2) + priority))
        return {
            "from": self.wallet,
            "chainId": int(config.EVM_CHAIN_ID),
            "nonce": self.w3.eth.get_transaction_count(self.wallet, "pending"),
            "value": int(value_wei),
            "maxFeePerGas": max_fee,
            "maxPriorityFeePerGas": min(priority, max_fee),
            "type": 2,
        }

    def _send(self, tx: dict[str, Any]) -> bytes:
        gas_limit = int(self.w3.eth.estimate_gas(tx) * 1.15)
        gas_cap = int(config.LIVE_MAX_SWAP_GAS or 0)
        if gas_cap > 0 and gas_limit > gas_cap:
            raise RuntimeError(f"gas_estimate_too_high gas={gas_limit} cap={gas_cap}")
        tx["gas"] = gas_limit

        # Base adds an L1 data fee on top; keep a 20% buffer over the worst case.
        worst_cost = int((gas_limit * int(tx.get("maxFeePerGas") or 0) + int(tx.get("value") or 0)) * 1.20)
        bal = int(self.w3.eth.get_balance(self.wallet))
        if worst_cost > bal:
            raise RuntimeError(
                f"insufficient_balance_for_tx have_wei={bal} want_wei={worst_cost} gas={gas_limit}"
            )
        signed = self.account.sign_transaction(tx)
        return self.w3.eth.send_raw_transaction(signed.raw_transaction)

    def _wait(self, tx_hash: bytes) -> Any:
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=int(config.LIVE_TX_TIMEOUT_SECONDS))
        if int(receipt.status) != 1:
            raise RuntimeError(f"tx_failed hash={Web3.to_hex(tx_hash)}")
        return receipt

    def _send_and_wait(self, tx: dict[str, Any]) -> Any:
        return self._wait(self._send(tx))

    def _balance_for(self, payload: SwapPayload) -> int:
        if payload.fn_name == SELL_FN:
            return int(self.w3.eth.get_balance(self.wallet))
        return self._token_balance(payload.token_address)

    def _submit_sync(self, payload: SwapPayload) -> SubmitResult:
        if payload.fn_name == SELL_FN:
            self._ensure_allowance(payload.token_address, payload.amount_in)
        before = self._balance_for(payload)

        fn = getattr(self.router.router.functions, payload.fn_name)
        tx = fn(*payload.args).build_transaction(self._tx_params(value_wei=payload.value_wei))
        tx_hash = self._send(tx)
        tx_ref = Web3.to_hex(tx_hash)
        logger.info("LIVE_SUBMIT sent side=%s token=%s tx=%s", payload.side, payload.token_address, tx_ref)
        try:
            receipt = self._wait(tx_hash)
        except TimeExhausted as exc:
            # The tx may still land; the balance decides whether it already did.
            received = self._balance_for(payload) - before
            if received > 0:
                logger.warning(
                    "LIVE_SUBMIT receipt timeout, balance moved; treating as filled side=%s tx=%s received=%s",
                    payload.side,
                    tx_ref,
                    received,
                )
                return SubmitResult(success=True, tx_ref=tx_ref, amount_out_raw=received)
            logger.warning("LIVE_SUBMIT timeout side=%s token=%s tx=%s", payload.side, payload.token_address, tx_ref)
            return SubmitResult(
                success=False,
                tx_ref=tx_ref,
                error=f"timeout: tx {tx_ref} not mined: {exc}",
                error_kind=SubmitErrorKind.TIMEOUT,
            )

        after = self._balance_for(payload)
        if payload.fn_name == SELL_FN:
            # Native delta is net of gas; add it back to get the swap output.
            after += int(receipt.get("gasUsed") or 0) * int(receipt.get("effectiveGasPrice") or 0)
        return SubmitResult(success=True, tx_ref=tx_ref, amount_out_raw=max(0, after - before))

    async def sign_and_submit(self, payload: SwapPayload) -> SubmitResult:
        """Submit and wait for the receipt. Failures come back as a classified SubmitResult."""
        try:
            return await asyncio.to_thread(self._submit_sync, payload)
        except TimeExhausted as exc:
            logger.warning("LIVE_SUBMIT timeout side=%s token=%s", payload.side, payload.token_address)
            return SubmitResult.failed(f"timeout: {exc}")
        except (Web3Exception, RuntimeError, ValueError, ConnectionError, OSError) as exc:
            logger.warning("LIVE_SUBMIT failed side=%s token=%s err=%s", payload.side, payload.token_address, exc)
            return SubmitResult.failed(str(exc))
