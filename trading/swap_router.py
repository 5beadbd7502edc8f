"""UniswapV2-style quoting and swap building, plus submit-error classification."""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from web3 import HTTPProvider, Web3
from web3.contract import Contract
from web3.exceptions import ContractLogicError, Web3Exception

import config

logger = logging.getLogger(__name__)


ERC20_ABI: list[dict[str, Any]] = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "spender", "type": "address"}, {"name": "value", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
]


ROUTER_ABI: list[dict[str, Any]] = [
    {
        "name": "getAmountsOut",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "amountIn", "type": "uint256"}, {"name": "path", "type": "address[]"}],
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
    },
    {
        "name": "swapExactETHForTokensSupportingFeeOnTransferTokens",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {"name": "amountOutMin", "type": "uint256"},
            {"name": "path", "type": "address[]"},
            {"name": "to", "type": "address"},
            {"name": "deadline", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "name": "swapExactTokensForETHSupportingFeeOnTransferTokens",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "amountIn", "type": "uint256"},
            {"name": "amountOutMin", "type": "uint256"},
            {"name": "path", "type": "address[]"},
            {"name": "to", "type": "address"},
            {"name": "deadline", "type": "uint256"},
        ],
        "outputs": [],
    },
]

BUY_FN = "swapExactETHForTokensSupportingFeeOnTransferTokens"
SELL_FN = "swapExactTokensForETHSupportingFeeOnTransferTokens"

# getAmountsOut for this fraction of the trade approximates the marginal price.
_PROBE_DIVISOR = 1000


class NoRouteError(RuntimeError):
    """The router has no viable path for this pair. Never retried."""


class QuoteUnavailableError(RuntimeError):
    """Transient quoting failure (RPC down, timeout)."""


class SubmitErrorKind(str, enum.Enum):
    SLIPPAGE = "SLIPPAGE"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    GAS_CAP = "GAS_CAP"
    TIMEOUT = "TIMEOUT"
    REVERTED = "REVERTED"
    NO_ROUTE = "NO_ROUTE"
    UNKNOWN = "UNKNOWN"


# First matching needle wins; order matters where signatures overlap.
SUBMIT_ERROR_TABLE: tuple[tuple[str, SubmitErrorKind], ...] = (
    ("insufficient_output_amount", SubmitErrorKind.SLIPPAGE),
    ("too little received", SubmitErrorKind.SLIPPAGE),
    ("exceededslippage", SubmitErrorKind.SLIPPAGE),
    ("0x1788", SubmitErrorKind.SLIPPAGE),
    ("slippage", SubmitErrorKind.SLIPPAGE),
    ("insufficient funds", SubmitErrorKind.INSUFFICIENT_FUNDS),
    ("insufficient_balance_for_tx", SubmitErrorKind.INSUFFICIENT_FUNDS),
    ("gas_price_too_high", SubmitErrorKind.GAS_CAP),
    ("gas_estimate_too_high", SubmitErrorKind.GAS_CAP),
    ("timeout", SubmitErrorKind.TIMEOUT),
    ("timed out", SubmitErrorKind.TIMEOUT),
    ("tx_failed", SubmitErrorKind.REVERTED),
    ("execution reverted", SubmitErrorKind.REVERTED),
)


def classify_submit_error(text: str | None) -> SubmitErrorKind:
    lowered = str(text or "").lower()
    if not lowered:
        return SubmitErrorKind.UNKNOWN
    for needle, kind in SUBMIT_ERROR_TABLE:
        if needle in lowered:
            return kind
    return SubmitErrorKind.UNKNOWN


@dataclass(frozen=True)
class SwapQuote:
    token_in: str
    token_out: str
    amount_in: int
    amount_out: int
    price_impact_pct: float


@dataclass(frozen=True)
class SwapPayload:
    """Router call ready for the wallet to sign: function name, args and native value."""

    side: str
    token_address: str
    fn_name: str
    args: tuple[Any, ...]
    value_wei: int
    amount_in: int
    amount_out_min: int
    quote: SwapQuote
    built_at: float = field(default_factory=time.time)


@dataclass
class SubmitResult:
    success: bool
    tx_ref: str = ""
    error: str = ""
    error_kind: SubmitErrorKind | None = None
    amount_out_raw: int = 0

    @classmethod
    def failed(cls, error: str) -> "SubmitResult":
        return cls(success=False, error=error, error_kind=classify_submit_error(error))


def price_impact_pct(amount_in: int, amount_out: int, probe_in: int, probe_out: int) -> float:
    """Execution price versus marginal price from a small probe, as a percentage loss."""
    if amount_in <= 0 or probe_in <= 0 or probe_out <= 0:
        return 0.0
    marginal = probe_out / probe_in
    executed = amount_out / amount_in
    return max(0.0, (1.0 - executed / marginal) * 100.0)


class UniswapV2Router:
    def __init__(self, w3: Web3 | None = None, wallet_address: str = "") -> None:
        if w3 is None:
            rpc = (config.RPC_PRIMARY or "").strip() or (config.RPC_SECONDARY or "").strip()
            w3 = Web3(HTTPProvider(rpc, request_kwargs={"timeout": config.RPC_TIMEOUT_SECONDS}))
        self.w3 = w3
        self.router_address = self.w3.to_checksum_address(config.LIVE_ROUTER_ADDRESS)
        self.router: Contract = self.w3.eth.contract(address=self.router_address, abi=ROUTER_ABI)
        self.weth = self.w3.to_checksum_address(config.WETH_ADDRESS)
        self.wallet = self.w3.to_checksum_address(wallet_address) if wallet_address else self.weth

    def _amounts_out(self, amount_in: int, path: list[str]) -> int:
        try:
            amounts = self.router.functions.getAmountsOut(int(amount_in), path).call()
        except ContractLogicError as exc:
            raise NoRouteError(f"router reverted: {exc}") from exc
        except (ConnectionError, TimeoutError, OSError) as exc:
            raise QuoteUnavailableError(f"rpc error: {exc}") from exc
        except (Web3Exception, ValueError) as exc:
            # A revert payload in a JSON-RPC error means no pool.
            if "revert" in str(exc).lower():
                raise NoRouteError(f"router reverted: {exc}") from exc
            raise QuoteUnavailableError(f"rpc error: {exc}") from exc
        if not isinstance(amounts, (list, tuple)) or len(amounts) < 2 or int(amounts[-1]) <= 0:
            raise NoRouteError("quote_zero")
        return int(amounts[-1])

    def _path(self, token_in: str, token_out: str) -> list[str]:
        return [self.w3.to_checksum_address(token_in), self.w3.to_checksum_address(token_out)]

    def quote_sync(self, token_in: str, token_out: str, amount_in: int) -> SwapQuote:
        if int(amount_in) <= 0:
            raise NoRouteError("amount_in is zero")
        path = self._path(token_in, token_out)
        amount_out = self._amounts_out(amount_in, path)
        probe_in = max(1, int(amount_in) // _PROBE_DIVISOR)
        probe_out = self._amounts_out(probe_in, path) if probe_in < int(amount_in) else amount_out
        return SwapQuote(
            token_in=token_in.lower(),
            token_out=token_out.lower(),
            amount_in=int(amount_in),
            amount_out=amount_out,
            price_impact_pct=price_impact_pct(int(amount_in), amount_out, probe_in, probe_out),
        )

    async def quote(self, token_in: str, token_out: str, amount_in: int) -> SwapQuote:
        return await asyncio.to_thread(self.quote_sync, token_in, token_out, amount_in)

    def usd_to_wei(self, usd: float, native_price_usd: float) -> int:
        if native_price_usd <= 0:
            return 0
        return int(self.w3.to_wei(float(usd) / float(native_price_usd), "ether"))

    def wei_to_native(self, wei: int) -> float:
        return float(self.w3.from_wei(int(wei), "ether"))

    def _deadline(self) -> int:
        return int(time.time()) + int(config.LIVE_SWAP_DEADLINE_SECONDS)

    async def build_swap(
        self,
        side: str,
        token_address: str,
        amount_in: int,
        slippage_pct: float,
    ) -> SwapPayload:
        """Fetch a fresh quote and wrap it in a router call with amountOutMin from `slippage_pct`."""
        if side == "BUY":
            quote = await self.quote(config.WETH_ADDRESS, token_address, amount_in)
        else:
            quote = await self.quote(token_address, config.WETH_ADDRESS, amount_in)
        out_min = max(1, int(quote.amount_out * (100.0 - float(slippage_pct)) / 100.0))
        path = self._path(quote.token_in, quote.token_out)
        if side == "BUY":
            fn_name, args, value = BUY_FN, (out_min, path, self.wallet, self._deadline()), int(amount_in)
        else:
            fn_name, args, value = SELL_FN, (int(amount_in), out_min, path, self.wallet, self._deadline()), 0
        return SwapPayload(
            side=side,
            token_address=token_address.lower(),
            fn_name=fn_name,
            args=args,
            value_wei=value,
            amount_in=int(amount_in),
            amount_out_min=out_min,
            quote=quote,
        )
