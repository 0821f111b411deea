"""
Exchange Reputation

Answers one question: is this address custodied by a centralized exchange?
Exchange wallets are never auto-enrolled.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

import aiohttp

from .. import settings
from ..errors import TransientFetchError

logger = logging.getLogger(__name__)


class ReputationService(ABC):

    @abstractmethod
    async def is_exchange_controlled(self, address: str) -> bool:
        ...

    async def close(self):
        pass


class StaticReputationService(ReputationService):
    """Fixed list of known exchange wallets (EXCHANGE_WALLETS)."""

    def __init__(self, exchange_wallets: Iterable[str] = ()):
        self.exchange_wallets = {w.lower() for w in exchange_wallets}

    async def is_exchange_controlled(self, address: str) -> bool:
        return address.lower() in self.exchange_wallets


class DebankReputationService(ReputationService):
    """
    DeBank history lookup.

    An address whose history carries a non-empty `cex_dict` has interacted
    as an exchange deposit/hot wallet. Answers are cached for the lifetime
    of the process; a static list is consulted first.

    Lookup failures raise TransientFetchError: the caller decides whether
    an unknown answer blocks enrollment.
    """

    def __init__(
        self,
        api_key: str,
        url: str = settings.DEBANK_API_URL,
        chain_id: str = settings.DEBANK_CHAIN_ID,
        static: Optional[StaticReputationService] = None,
        timeout: float = 10,
    ):
        self.api_key = api_key
        self.url = url
        self.chain_id = chain_id
        self.static = static or StaticReputationService()
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None
        self._cache: Dict[str, bool] = {}

    async def _ensure_session(self):
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )

    async def close(self):
        if self._session:
            await self._session.close()
            self._session = None

    async def is_exchange_controlled(self, address: str) -> bool:
        address = address.lower()
        if await self.static.is_exchange_controlled(address):
            return True
        if address in self._cache:
            return self._cache[address]

        await self._ensure_session()
        params = {"id": address, "chain_id": self.chain_id}
        # AccessKey header is never logged
        headers = {"accept": "application/json", "AccessKey": self.api_key}

        try:
            async with self._session.get(self.url, params=params, headers=headers) as response:
                if response.status != 200:
                    raise TransientFetchError(f"DeBank lookup for {address}: HTTP {response.status}")
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientFetchError(f"DeBank lookup for {address} failed: {type(e).__name__}")

        cex_dict = (data or {}).get("cex_dict") or {}
        is_exchange = bool(cex_dict)
        self._cache[address] = is_exchange

        if is_exchange:
            logger.info(f"{address} flagged as exchange wallet ({len(cex_dict)} exchange entries)")
        return is_exchange
