"""
Solana JSON-RPC client.

The ledger collaborator: account reads, balances, raw transaction
submission, signature status lookups and devnet airdrops.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from solders.pubkey import Pubkey

from wren.config import Settings

from .models import AccountInfo, LedgerError

logger = logging.getLogger(__name__)


@dataclass
class SolanaRpcConfig:
    """Configuration for Solana RPC connection."""
    rpc_url: str
    commitment: str = "confirmed"
    max_retries: int = 3
    timeout_s: float = 30.0


@dataclass(frozen=True)
class TokenBalance:
    amount: int
    decimals: int
    ui_amount_string: str


class SolanaRpcClient:
    """
    Thin async client for the Solana JSON-RPC API.

    Transport and HTTP failures are retried with a linear backoff; RPC-level
    errors are raised immediately as ``LedgerError``.

    Usage:
        client = SolanaRpcClient(SolanaRpcConfig(rpc_url="https://api.devnet.solana.com"))
        info = await client.get_account_info(address)
        signature = await client.send_raw_transaction(bytes(tx), max_retries=2)
    """

    def __init__(self, config: SolanaRpcConfig, http_client: Optional[httpx.AsyncClient] = None):
        self._config = config
        self._client = http_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "SolanaRpcClient":
        return cls(
            SolanaRpcConfig(
                rpc_url=settings.solana_rpc_url,
                commitment=settings.solana_commitment,
                max_retries=settings.rpc_max_retries,
                timeout_s=settings.rpc_timeout_seconds,
            )
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._config.timeout_s)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        """Make an RPC call to the Solana node and return its ``result``."""
        client = await self._get_client()

        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": method,
            "params": params,
        }

        for attempt in range(self._config.max_retries):
            try:
                response = await client.post(
                    self._config.rpc_url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                )
                response.raise_for_status()
                data = response.json()

                if "error" in data:
                    error = data["error"]
                    error_msg = error.get("message", str(error)) if isinstance(error, dict) else str(error)
                    raise LedgerError(f"RPC error in {method}: {error_msg}")

                return data.get("result")

            except httpx.HTTPStatusError as e:
                if attempt == self._config.max_retries - 1:
                    raise LedgerError(f"HTTP error in {method}: {e.response.status_code}") from e
                await asyncio.sleep(0.5 * (attempt + 1))
            except LedgerError:
                raise
            except (httpx.RequestError, ValueError) as e:
                if attempt == self._config.max_retries - 1:
                    raise LedgerError(f"{method} failed: {e}") from e
                await asyncio.sleep(0.5 * (attempt + 1))

        raise LedgerError("Max retries exceeded")

    async def get_account_info(self, address: Pubkey) -> Optional[AccountInfo]:
        """Fetch a raw account, or None when it does not exist."""
        result = await self._rpc_call(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": self._config.commitment}],
        )
        value = (result or {}).get("value")
        if value is None:
            return None

        data_field = value.get("data") or ["", "base64"]
        return AccountInfo(
            address=address,
            lamports=int(value.get("lamports", 0)),
            owner=Pubkey.from_string(value["owner"]),
            data=base64.b64decode(data_field[0]),
            executable=bool(value.get("executable", False)),
        )

    async def get_balance(self, address: Pubkey) -> int:
        """Balance in lamports."""
        result = await self._rpc_call(
            "getBalance",
            [str(address), {"commitment": self._config.commitment}],
        )
        return int((result or {}).get("value", 0))

    async def get_token_account_balance(self, address: Pubkey) -> TokenBalance:
        result = await self._rpc_call(
            "getTokenAccountBalance",
            [str(address), {"commitment": self._config.commitment}],
        )
        value = (result or {}).get("value") or {}
        return TokenBalance(
            amount=int(value.get("amount", 0)),
            decimals=int(value.get("decimals", 0)),
            ui_amount_string=value.get("uiAmountString", "0"),
        )

    async def send_raw_transaction(
        self,
        raw_transaction: bytes,
        max_retries: Optional[int] = None,
        skip_preflight: bool = False,
    ) -> str:
        """
        Send a serialized, fully signed transaction.

        ``max_retries`` is forwarded to the node, which keeps rebroadcasting
        on its own; from the caller's side this is one logical attempt.

        Returns:
            Transaction signature (base58)
        """
        options: Dict[str, Any] = {
            "encoding": "base64",
            "skipPreflight": skip_preflight,
            "preflightCommitment": self._config.commitment,
        }
        if max_retries is not None:
            options["maxRetries"] = max_retries

        signature = await self._rpc_call(
            "sendTransaction",
            [base64.b64encode(raw_transaction).decode("ascii"), options],
        )
        if not signature:
            raise LedgerError("No signature returned from sendTransaction")
        return signature

    async def get_signature_statuses(self, signatures: List[str]) -> List[Optional[Dict[str, Any]]]:
        result = await self._rpc_call(
            "getSignatureStatuses",
            [signatures, {"searchTransactionHistory": False}],
        )
        return list((result or {}).get("value") or [None] * len(signatures))

    async def request_airdrop(self, address: Pubkey, lamports: int) -> str:
        """Request test funds (devnet/testnet only)."""
        signature = await self._rpc_call("requestAirdrop", [str(address), lamports])
        if not signature:
            raise LedgerError("No signature returned from requestAirdrop")
        return signature


__all__ = [
    "SolanaRpcClient",
    "SolanaRpcConfig",
    "TokenBalance",
]
