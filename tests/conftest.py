"""Shared fakes and builders for the test suite."""

import asyncio
from typing import Dict, List, Optional, Set

import pytest

from walletwatch.api.ledger import LedgerClient
from walletwatch.api.reputation import ReputationService
from walletwatch.alerts.telegram import NotificationSink
from walletwatch.config import Config
from walletwatch.core.classifier import encode_transfer_log
from walletwatch.db.graph_store import GraphStore
from walletwatch.db.state_db import StateDB
from walletwatch.errors import ThrottleError, TransientFetchError
from walletwatch.models import Block, RawTransaction, Receipt, TokenMetadata

WEI = 10 ** 18

A = "0x" + "a" * 40
B = "0x" + "b" * 40
C = "0x" + "c" * 40
D = "0x" + "d" * 40
ROUTER = "0x" + "e" * 40
TOKEN = "0x" + "1" * 40
TOKEN_2 = "0x" + "2" * 40

TRANSFER_CALL = "0xa9059cbb" + "0" * 128


def make_tx(tx_hash, block_number=1, index=0, sender=A, to=B, value=0, input_data="0x"):
    return RawTransaction(
        hash=tx_hash,
        block_number=block_number,
        transaction_index=index,
        from_address=sender,
        to_address=to,
        value=value,
        input_data=input_data,
    )


def transfer_receipt(tx_hash, *transfers, status=1):
    """Receipt with one Transfer log per (token, from, to, raw_value)."""
    logs = [encode_transfer_log(token, src, dst, value) for token, src, dst, value in transfers]
    return Receipt(transaction_hash=tx_hash, status=status, logs=logs)


class FakeLedger(LedgerClient):

    def __init__(self, head: int = 0):
        self.head = head
        self.blocks: Dict[int, Block] = {}
        self.receipts: Dict[str, Receipt] = {}
        self.codes: Dict[str, str] = {}
        self.metadata: Dict[str, TokenMetadata] = {}
        self.failing_blocks: Set[int] = set()
        self.fail_head = False
        self.fail_code = False
        self.receipt_calls: List[str] = []
        self.metadata_calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    def add_block(self, number: int, transactions=(), timestamp: int = 1_700_000_000):
        self.blocks[number] = Block(number=number, timestamp=timestamp, transactions=list(transactions))

    def add_receipt(self, receipt: Receipt):
        self.receipts[receipt.transaction_hash] = receipt

    async def get_block_number(self) -> int:
        if self.fail_head:
            raise TransientFetchError("head unavailable")
        return self.head

    async def get_block(self, number: int, with_transactions: bool = True) -> Optional[Block]:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if number in self.failing_blocks:
                raise TransientFetchError(f"block {number} unavailable")
            return self.blocks.get(number, Block(number=number, timestamp=1_700_000_000))
        finally:
            self.in_flight -= 1

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        self.receipt_calls.append(tx_hash)
        return self.receipts.get(tx_hash)

    async def get_code(self, address: str) -> str:
        if self.fail_code:
            raise TransientFetchError("getCode failed")
        return self.codes.get(address.lower(), "0x")

    async def get_token_metadata(self, token_address: str) -> TokenMetadata:
        self.metadata_calls.append(token_address)
        if token_address not in self.metadata:
            raise TransientFetchError(f"no metadata for {token_address}")
        return self.metadata[token_address]

    async def close(self):
        self.closed = True


class FakeSink(NotificationSink):
    """
    Records sends. `outcomes` is consumed one entry per call: None means
    delivered, an exception instance is raised. When exhausted, `default`
    applies.
    """

    def __init__(self, outcomes=None, default=None):
        self.outcomes = list(outcomes or [])
        self.default = default
        self.calls: List[str] = []
        self.sent: List[str] = []

    async def send(self, destination, body, thread_id=None):
        self.calls.append(body)
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if outcome is not None:
            raise outcome
        self.sent.append(body)


class AlwaysThrottleSink(FakeSink):

    def __init__(self, retry_after=2):
        super().__init__(default=ThrottleError(retry_after))


class FakeReputation(ReputationService):

    def __init__(self, exchanges=(), fail=False):
        self.exchanges = {e.lower() for e in exchanges}
        self.fail = fail
        self.checked: List[str] = []

    async def is_exchange_controlled(self, address: str) -> bool:
        self.checked.append(address)
        if self.fail:
            raise TransientFetchError("reputation service down")
        return address.lower() in self.exchanges


class FakeClock:

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def reputation():
    return FakeReputation()


@pytest.fixture
def store(tmp_path):
    return GraphStore(tmp_path / "graph.db", prefix="test:")


@pytest.fixture
def state_db(tmp_path):
    return StateDB(tmp_path / "graph.db", prefix="test:")


@pytest.fixture
def config(tmp_path):
    return Config(
        rpc_url="http://localhost:8545",
        destination="-100123",
        bot_token="test-token",
        scan_interval_ms=10,
        request_delay_sec=0,
        wave_delay_sec=0,
        error_cooldown_sec=0,
        queue_interval_ms=5,
        storage_prefix="test:",
        db_path=str(tmp_path / "graph.db"),
    )

