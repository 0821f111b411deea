"""
Range Scanner
=============

Walks a block interval and returns ActivityDelta records for transactions
that touch the tracked set:

    block fetch -> value/membership filter -> receipt fetch -> classify

Receipt fetching only happens for transactions that pass the filter. A
block that fails to fetch is skipped and counted; it never aborts the
range. Transactions without a receipt are dropped (at-most-once).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..api.ledger import LedgerClient
from ..errors import ParseFailure, TransientFetchError
from ..models import ActivityDelta, RawTransaction, TokenMetadata, TrackedSnapshot
from .classifier import TransactionClassifier

logger = logging.getLogger(__name__)

# Hard ceiling on blocks fetched at once
MAX_PARALLEL_BLOCKS = 10


@dataclass(frozen=True)
class ScanFilter:
    """
    Pre-receipt transaction filter.

    Accepts a transaction when its native value lies in [min_wei, max_wei]
    and its sender or recipient is tracked.
    """
    min_wei: int
    max_wei: int
    snapshot: TrackedSnapshot

    def accepts(self, tx: RawTransaction) -> bool:
        if tx.value < self.min_wei or tx.value > self.max_wei:
            return False
        return tx.from_address in self.snapshot or tx.to_address in self.snapshot


@dataclass
class ScanStats:
    """Counters for one scan call."""
    blocks_scanned: int = 0
    blocks_failed: int = 0
    failed_blocks: List[int] = field(default_factory=list)
    transactions_seen: int = 0
    transactions_matched: int = 0
    receipts_skipped: int = 0
    parse_failures: int = 0
    deltas: int = 0

    def merge(self, other: "ScanStats"):
        self.blocks_scanned += other.blocks_scanned
        self.blocks_failed += other.blocks_failed
        self.failed_blocks.extend(other.failed_blocks)
        self.transactions_seen += other.transactions_seen
        self.transactions_matched += other.transactions_matched
        self.receipts_skipped += other.receipts_skipped
        self.parse_failures += other.parse_failures
        self.deltas += other.deltas


class TokenMetadataCache:
    """
    Token metadata cache owned by the scanner's caller.

    Only successful lookups are cached; failures propagate so the
    classifier can fall back for this transaction and retry next time.
    """

    def __init__(self, ledger: LedgerClient):
        self.ledger = ledger
        self._cache: Dict[str, TokenMetadata] = {}

    async def get(self, token_address: str) -> TokenMetadata:
        token_address = token_address.lower()
        cached = self._cache.get(token_address)
        if cached is not None:
            return cached

        metadata = await self.ledger.get_token_metadata(token_address)
        self._cache[token_address] = metadata
        return metadata

    def __len__(self) -> int:
        return len(self._cache)


class RangeScanner:
    """
    Block range scanner with bounded parallelism.

    Sequential mode sleeps request_delay between blocks. Parallel mode
    fetches blocks in waves of at most max_concurrent_blocks with a
    wave_delay pause between waves. In both modes the output is ordered by
    block number, then by in-block transaction order.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        classifier: TransactionClassifier,
        request_delay: float = 0.1,
        wave_delay: float = 0.1,
        max_concurrent_blocks: int = MAX_PARALLEL_BLOCKS,
    ):
        self.ledger = ledger
        self.classifier = classifier
        self.request_delay = request_delay
        self.wave_delay = wave_delay
        self.max_concurrent_blocks = max(1, min(max_concurrent_blocks, MAX_PARALLEL_BLOCKS))
        self.last_stats = ScanStats()

    # -------------------------------------------------------------------------
    # Single block
    # -------------------------------------------------------------------------

    async def _fetch_receipt(self, tx: RawTransaction):
        try:
            return await self.ledger.get_transaction_receipt(tx.hash)
        except TransientFetchError as e:
            logger.debug(f"Receipt fetch failed for {tx.hash}: {e}")
            return None

    async def process_block(self, block_number: int, scan_filter: ScanFilter, stats: Optional[ScanStats] = None) -> List[ActivityDelta]:
        """
        Fetch, filter and classify one block.

        Args:
            block_number: Block to process
            scan_filter: Value window and tracked snapshot
            stats: Counters to update (a throwaway one if None)

        Returns:
            Deltas in in-block transaction order

        Raises:
            TransientFetchError: If the block itself cannot be fetched
        """
        stats = stats if stats is not None else ScanStats()

        block = await self.ledger.get_block(block_number, True)
        if block is None:
            raise TransientFetchError(f"Block {block_number} not available")

        if block.timestamp is None or block.timestamp < 0:
            logger.warning(f"Block {block_number} has invalid timestamp, skipping")
            return []

        transactions = sorted(block.transactions, key=lambda t: t.transaction_index)
        stats.transactions_seen += len(transactions)

        matched = [tx for tx in transactions if scan_filter.accepts(tx)]
        if not matched:
            return []
        stats.transactions_matched += len(matched)

        receipts = await asyncio.gather(*(self._fetch_receipt(tx) for tx in matched))

        deltas = []
        for tx, receipt in zip(matched, receipts):
            if receipt is None:
                stats.receipts_skipped += 1
                logger.warning(f"Skipping {tx.hash} in block {block_number}: receipt unavailable")
                continue
            try:
                delta = await self.classifier.classify(tx, receipt, timestamp=block.timestamp)
            except ParseFailure as e:
                stats.parse_failures += 1
                logger.warning(f"Skipping {tx.hash}: {e}")
                continue
            deltas.append(delta)

        stats.deltas += len(deltas)
        return deltas

    # -------------------------------------------------------------------------
    # Ranges
    # -------------------------------------------------------------------------

    def _record_failure(self, stats: ScanStats, block_number: int, error: BaseException):
        stats.blocks_failed += 1
        stats.failed_blocks.append(block_number)
        logger.warning(f"Block {block_number} failed: {type(error).__name__}: {error}")

    async def scan_range(self, start_block: int, end_block: int, scan_filter: ScanFilter) -> List[ActivityDelta]:
        """
        Scan [start_block, end_block] one block at a time.

        Returns:
            Deltas ordered by block, then transaction index
        """
        stats = ScanStats()
        deltas: List[ActivityDelta] = []

        for block_number in range(start_block, end_block + 1):
            try:
                deltas.extend(await self.process_block(block_number, scan_filter, stats))
                stats.blocks_scanned += 1
            except Exception as e:
                self._record_failure(stats, block_number, e)

            if block_number < end_block and self.request_delay > 0:
                await asyncio.sleep(self.request_delay)

        self.last_stats = stats
        return deltas

    async def scan_range_parallel(self, start_block: int, end_block: int, scan_filter: ScanFilter) -> List[ActivityDelta]:
        """
        Scan [start_block, end_block] in waves of concurrent block fetches.

        Each wave waits for all of its blocks (failures included) before
        the next one starts, so results never interleave across waves.

        Returns:
            Deltas ordered by block, then transaction index
        """
        stats = ScanStats()
        deltas: List[ActivityDelta] = []

        if end_block < start_block:
            self.last_stats = stats
            return deltas

        block_numbers = list(range(start_block, end_block + 1))
        wave_size = min(self.max_concurrent_blocks, len(block_numbers))

        for i in range(0, len(block_numbers), wave_size):
            wave = block_numbers[i:i + wave_size]
            wave_stats = [ScanStats() for _ in wave]

            results = await asyncio.gather(
                *(self.process_block(n, scan_filter, s) for n, s in zip(wave, wave_stats)),
                return_exceptions=True,
            )

            for block_number, block_stats, result in zip(wave, wave_stats, results):
                stats.merge(block_stats)
                if isinstance(result, asyncio.CancelledError):
                    raise result
                if isinstance(result, BaseException):
                    self._record_failure(stats, block_number, result)
                    continue
                stats.blocks_scanned += 1
                deltas.extend(result)

            if i + wave_size < len(block_numbers) and self.wave_delay > 0:
                await asyncio.sleep(self.wave_delay)

        self.last_stats = stats
        logger.debug(
            f"Scanned blocks {start_block}-{end_block}: {stats.deltas} deltas, "
            f"{stats.blocks_failed} failed, {stats.receipts_skipped} receipts skipped"
        )
        return deltas
