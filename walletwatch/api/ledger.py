"""
Ledger Client

Single responsibility: talk to an EVM node over JSON-RPC.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional

import aiohttp

from ..errors import TransientFetchError
from ..models import Block, LogEntry, RawTransaction, Receipt, TokenMetadata
from ..utils.abi import decode_abi_string, function_selector

logger = logging.getLogger(__name__)

NAME_SELECTOR = function_selector("name()")
SYMBOL_SELECTOR = function_selector("symbol()")
DECIMALS_SELECTOR = function_selector("decimals()")


class LedgerClient(ABC):
    """Capabilities the monitor consumes from the ledger."""

    @abstractmethod
    async def get_block_number(self) -> int:
        ...

    @abstractmethod
    async def get_block(self, number: int, with_transactions: bool = True) -> Optional[Block]:
        ...

    @abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        ...

    @abstractmethod
    async def get_code(self, address: str) -> str:
        ...

    @abstractmethod
    async def get_token_metadata(self, token_address: str) -> TokenMetadata:
        ...

    async def is_contract(self, address: str) -> bool:
        """True if the address has deployed bytecode."""
        code = await self.get_code(address)
        return bool(code) and code not in ("0x", "0x0")

    async def close(self):
        pass


def _hex_to_int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    return int(value, 16)


def _lower(value: Optional[str]) -> Optional[str]:
    return value.lower() if value else None


class JsonRpcLedgerClient(LedgerClient):
    """
    Async JSON-RPC client for an EVM node.

    Handles:
    - Concurrency limiting with a semaphore
    - 429 backoff and retries on connection errors
    - Conversion of hex quantities into ints and models

    Failures surface as TransientFetchError so callers can skip the item.
    """

    def __init__(
        self,
        url: str,
        max_concurrent: int = 10,
        timeout: float = 15,
        max_retries: int = 3,
        backoff: float = 1.0,
    ):
        self.url = url
        self.max_concurrent = max_concurrent
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff
        self._session: Optional[aiohttp.ClientSession] = None
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._request_id = 0

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self):
        """Create session and semaphore if needed."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._semaphore = asyncio.Semaphore(self.max_concurrent)

    async def close(self):
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def _call(self, method: str, params: List[Any]) -> Any:
        """
        Make a JSON-RPC call with retry logic.

        Args:
            method: RPC method name
            params: Positional params

        Returns:
            The `result` member of the response (may be None)

        Raises:
            TransientFetchError: After retries are exhausted, or on an RPC error
        """
        await self._ensure_session()
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        last_error = "no attempt made"

        for attempt in range(self.max_retries + 1):
            try:
                async with self._semaphore:
                    async with self._session.post(
                        self.url,
                        json=payload,
                        headers={"Content-Type": "application/json"},
                    ) as response:
                        if response.status == 429:
                            # Rate limited - back off
                            delay = self.backoff * (2 ** attempt)
                            logger.warning(f"RPC rate limited on {method}, backing off {delay}s")
                            last_error = "HTTP 429"
                            await asyncio.sleep(delay)
                            continue

                        if response.status != 200:
                            raise TransientFetchError(f"{method}: HTTP {response.status}")

                        data = await response.json(content_type=None)

                if data.get("error"):
                    error = data["error"]
                    raise TransientFetchError(f"{method}: RPC error {error.get('code')}: {error.get('message')}")

                return data.get("result")

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.debug(f"{method} request error (attempt {attempt + 1}): {last_error}")
                if attempt < self.max_retries:
                    await asyncio.sleep(self.backoff)

        raise TransientFetchError(f"{method} failed after {self.max_retries + 1} attempts ({last_error})")

    # -------------------------------------------------------------------------
    # Public Methods
    # -------------------------------------------------------------------------

    async def get_block_number(self) -> int:
        result = await self._call("eth_blockNumber", [])
        return _hex_to_int(result)

    async def get_block(self, number: int, with_transactions: bool = True) -> Optional[Block]:
        """
        Fetch a block with its transactions.

        Returns:
            Block, or None if the node does not know the block yet
        """
        result = await self._call("eth_getBlockByNumber", [hex(number), with_transactions])
        if not result:
            return None

        block_number = _hex_to_int(result.get("number"), number)
        transactions = []
        for index, tx in enumerate(result.get("transactions") or []):
            if not isinstance(tx, dict):
                # Hash-only form when with_transactions is False
                continue
            transactions.append(RawTransaction(
                hash=tx.get("hash", ""),
                block_number=block_number,
                transaction_index=_hex_to_int(tx.get("transactionIndex"), index),
                from_address=_lower(tx.get("from")) or "",
                to_address=_lower(tx.get("to")),
                value=_hex_to_int(tx.get("value")),
                input_data=tx.get("input") or "0x",
            ))

        return Block(
            number=block_number,
            timestamp=_hex_to_int(result.get("timestamp"), -1),
            transactions=transactions,
        )

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        """
        Fetch a transaction receipt.

        Returns:
            Receipt, or None if the transaction is unconfirmed or pruned
        """
        result = await self._call("eth_getTransactionReceipt", [tx_hash])
        if not result:
            return None

        logs = [
            LogEntry(
                address=_lower(log.get("address")) or "",
                topics=[t.lower() for t in log.get("topics") or []],
                data=log.get("data") or "0x",
                log_index=_hex_to_int(log.get("logIndex")),
            )
            for log in result.get("logs") or []
        ]
        return Receipt(
            transaction_hash=result.get("transactionHash", tx_hash),
            status=_hex_to_int(result.get("status"), 1),
            logs=logs,
        )

    async def get_code(self, address: str) -> str:
        result = await self._call("eth_getCode", [address, "latest"])
        return result or "0x"

    async def _eth_call(self, to: str, data: str) -> Optional[str]:
        try:
            return await self._call("eth_call", [{"to": to, "data": data}, "latest"])
        except TransientFetchError as e:
            logger.debug(f"eth_call {data} on {to} failed: {e}")
            return None

    async def get_token_metadata(self, token_address: str) -> TokenMetadata:
        """
        Read name/symbol/decimals of a token contract.

        Missing fields fall back to "Unknown" / "UNKNOWN" / 18. Raises
        TransientFetchError only if every call failed.
        """
        name_raw, symbol_raw, decimals_raw = await asyncio.gather(
            self._eth_call(token_address, NAME_SELECTOR),
            self._eth_call(token_address, SYMBOL_SELECTOR),
            self._eth_call(token_address, DECIMALS_SELECTOR),
        )

        if name_raw is None and symbol_raw is None and decimals_raw is None:
            raise TransientFetchError(f"Metadata lookup failed for {token_address}")

        decimals = 18
        if decimals_raw and decimals_raw != "0x":
            try:
                decimals = int(decimals_raw, 16)
            except ValueError:
                pass
            if decimals > 255:
                decimals = 18

        return TokenMetadata(
            name=decode_abi_string(name_raw) or "Unknown",
            symbol=decode_abi_string(symbol_raw) or "UNKNOWN",
            decimals=decimals,
        )
