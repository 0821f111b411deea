"""
Monitor Service
===============

Main loop of the wallet monitor.

Each tick:
1. Read chain head and compute the next block window after the checkpoint
   (wider windows while catching up)
2. Refresh the tracked snapshot and scan the window in parallel waves
3. Analyze every delta, queue activity alerts, enroll new wallets
4. Advance and persist the checkpoint once the whole window is done

Any failure inside a tick is logged, reported as an error alert, and
followed by a cooldown; the loop itself keeps running until stopped.
"""

import asyncio
import logging
import signal
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from ..alerts.queue import DeliveryQueue
from ..alerts.telegram import NotificationSink, SinkConfig, TelegramSink
from ..alerts.templates import format_activity, format_error, format_status, format_uptime
from ..api.ledger import JsonRpcLedgerClient, LedgerClient
from ..api.reputation import DebankReputationService, ReputationService, StaticReputationService
from ..config import Config
from ..core.analyzer import ActivityAnalyzer
from ..core.classifier import TransactionClassifier
from ..core.detector import NewNodeDetector
from ..core.scanner import RangeScanner, ScanFilter, TokenMetadataCache
from ..db.graph_store import GraphStore
from ..db.state_db import StateDB
from ..errors import DuplicateEnrollmentError
from ..models import ActivityDelta, Alert, TrackedSnapshot
from ..utils.abi import is_address

logger = logging.getLogger(__name__)


@dataclass
class ServiceStats:
    processed_blocks: int = 0
    found_transactions: int = 0
    queued_alerts: int = 0
    new_wallets_added: int = 0
    failed_blocks: int = 0
    loop_errors: int = 0
    dropped_alerts: int = 0
    started_at: float = field(default_factory=time.monotonic)


@dataclass
class AdminResult:
    """Outcome of an operator command."""
    success: bool
    message: str
    data: Any = None


class MonitorService:
    """
    Wallet activity monitor.

    Collaborators are built from the Config unless injected (tests inject
    fakes for the ledger, sink and reputation service).
    """

    def __init__(
        self,
        config: Config,
        ledger: Optional[LedgerClient] = None,
        store: Optional[GraphStore] = None,
        state: Optional[StateDB] = None,
        sink: Optional[NotificationSink] = None,
        reputation: Optional[ReputationService] = None,
    ):
        self.config = config

        self.ledger = ledger or JsonRpcLedgerClient(
            config.rpc_url,
            max_concurrent=config.max_concurrent_requests,
            timeout=config.rpc_timeout_sec,
            max_retries=config.rpc_max_retries,
            backoff=config.rpc_backoff_sec,
        )
        self.store = store or GraphStore(config.db_path, config.storage_prefix)
        self.state = state or StateDB(config.db_path, config.storage_prefix)
        self.sink = sink or TelegramSink(SinkConfig(
            bot_token=config.bot_token,
            dry_run=config.dry_run,
            max_message_length=config.max_message_length,
        ))
        self.reputation = reputation or self._build_reputation(config)

        self.queue = DeliveryQueue(
            self.sink,
            interval=config.queue_interval_ms / 1000,
            batch_size=config.queue_batch_size,
            max_retries=config.queue_max_retries,
            default_retry_after=config.default_retry_after_sec,
            capacity=config.queue_capacity,
            on_permanent_failure=self._on_alert_dropped,
        )

        self.metadata_cache = TokenMetadataCache(self.ledger)
        self.classifier = TransactionClassifier(self.metadata_cache.get, config.native_decimals)
        self.scanner = RangeScanner(
            self.ledger,
            self.classifier,
            request_delay=config.request_delay_sec,
            wave_delay=config.wave_delay_sec,
            max_concurrent_blocks=config.max_concurrent_blocks,
        )
        self.analyzer = ActivityAnalyzer(config.native_symbol)
        self.detector = NewNodeDetector(
            self.ledger,
            self.store,
            self.reputation,
            queue=self.queue,
            destination=config.destination,
            thread_id=config.thread_id,
            native_min_wei=config.native_enroll_min_wei,
            token_minimums=config.token_minimums,
            native_symbol=config.native_symbol,
            explorer_url=config.explorer_url,
        )

        # State tracking
        self.stats = ServiceStats()
        self.snapshot = TrackedSnapshot()
        self.last_processed_block: Optional[int] = None
        self.running = False
        self._started = False
        self._stopped = False
        self._stop_event: Optional[asyncio.Event] = None

    @staticmethod
    def _build_reputation(config: Config) -> ReputationService:
        static = StaticReputationService(config.exchange_wallets)
        if config.debank_api_key:
            return DebankReputationService(config.debank_api_key, static=static)
        return static

    def _on_alert_dropped(self, alert: Alert, reason: str):
        self.stats.dropped_alerts += 1

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def _resolve_start_block(self, head: int) -> int:
        """Resume from the stored checkpoint if it is recent enough, else go live at head."""
        restored = await asyncio.to_thread(self.state.load_checkpoint)
        if restored is None:
            logger.info(f"No checkpoint stored, starting at head {head}")
            return head

        gap = head - restored
        if 0 <= gap <= self.config.resume_max_gap:
            logger.info(f"Resuming from checkpoint {restored} ({gap} blocks behind head)")
            return restored

        logger.warning(
            f"Discarding checkpoint {restored} ({gap} blocks from head {head}, "
            f"limit {self.config.resume_max_gap}); starting at head"
        )
        return head

    async def start(self):
        """
        Load the tracked set, position the checkpoint and start the
        delivery queue.
        """
        if self._started:
            return
        self._stop_event = asyncio.Event()
        self.stats = ServiceStats()

        await self.refresh_snapshot()
        head = await self.ledger.get_block_number()
        self.last_processed_block = await self._resolve_start_block(head)

        self.queue.start()
        self.running = True
        self._started = True
        self._stopped = False

        logger.info("=" * 60)
        logger.info("WALLET MONITOR STARTED")
        logger.info("=" * 60)
        logger.info(f"Tracked wallets: {len(self.snapshot)}")
        logger.info(f"Checkpoint: {self.last_processed_block}")
        logger.info(f"New wallet detection: {self.config.enable_new_wallet_detection}")
        logger.info(f"Dry run: {self.config.dry_run}")

        self.queue.enqueue(
            self.config.destination,
            format_status("started", self.get_stats(), self.config.alert_timezone),
            self.config.thread_id,
            kind="status",
        )

    def request_stop(self):
        """Ask the loop to stop after the current tick (signal-safe)."""
        if self.running:
            logger.info("Shutdown requested, finishing current tick...")
        self.running = False
        if self._stop_event is not None:
            self._stop_event.set()

    async def _wait(self, seconds: float):
        """Sleep, waking early if a stop is requested."""
        if self._stop_event is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handlers unavailable for {sig}")

    async def run(self, install_signal_handlers: bool = True):
        """Run until stopped, then shut down cleanly."""
        await self.start()
        if install_signal_handlers:
            self._install_signal_handlers()

        try:
            while self.running:
                await self.tick()
                if self.running:
                    await self._wait(self.config.scan_interval_ms / 1000)
        finally:
            await self.stop()

    async def stop(self):
        """
        Persist the checkpoint, drain the queue, send the final status and
        close connections.

        A failed checkpoint write is logged; the queue, the final status
        and the connections are handled regardless.
        """
        if self._stopped:
            return
        self._stopped = True
        self.running = False

        if self.last_processed_block is not None:
            try:
                await asyncio.to_thread(self.state.save_checkpoint, self.last_processed_block)
                logger.info(f"Checkpoint saved at block {self.last_processed_block}")
            except Exception as e:
                logger.error(
                    f"Failed to save checkpoint {self.last_processed_block}: {type(e).__name__}: {e}"
                )

        try:
            await self.queue.stop()
            await self.queue.send_now(
                self.config.destination,
                format_status("stopped", self.get_stats(), self.config.alert_timezone),
                self.config.thread_id,
            )
        finally:
            try:
                await self.sink.close()
                await self.reputation.close()
            finally:
                await self.ledger.close()
                self._started = False

        logger.info("WALLET MONITOR STOPPED")

    # -------------------------------------------------------------------------
    # Loop body
    # -------------------------------------------------------------------------

    def compute_batch(self, checkpoint: int, head: int) -> Optional[Tuple[int, int]]:
        """
        Next block window after checkpoint.

        Normally batch_size blocks; when more than catch_up_threshold
        blocks behind, up to catch_up_batch_size.

        Returns:
            (start, end) inclusive, or None when caught up
        """
        behind = head - checkpoint
        if behind <= 0:
            return None

        width = self.config.batch_size
        if behind > self.config.catch_up_threshold:
            width = max(width, self.config.catch_up_batch_size)
        width = min(width, behind)
        return checkpoint + 1, checkpoint + width

    async def refresh_snapshot(self) -> TrackedSnapshot:
        self.snapshot = await self.store.load_snapshot()
        return self.snapshot

    async def tick(self) -> bool:
        """
        One loop iteration.

        Returns:
            True if a block window was processed
        """
        try:
            head = await self.ledger.get_block_number()
            window = self.compute_batch(self.last_processed_block, head)
            if window is None:
                return False

            start, end = window
            if head - end > 0:
                logger.info(f"Scanning blocks {start}-{end} ({head - end} behind head)")
            else:
                logger.debug(f"Scanning blocks {start}-{end}")

            snapshot = await self.refresh_snapshot()
            scan_filter = ScanFilter(self.config.min_value_wei, self.config.max_value_wei, snapshot)
            deltas = await self.scanner.scan_range_parallel(start, end, scan_filter)

            await self.process_deltas(deltas, snapshot)

            self.stats.failed_blocks += self.scanner.last_stats.blocks_failed
            self.stats.processed_blocks += end - start + 1
            self.last_processed_block = end
            await asyncio.to_thread(self.state.save_checkpoint, end)
            return True

        except Exception as e:
            self.stats.loop_errors += 1
            logger.error(f"Tick failed at block {self.last_processed_block}: {type(e).__name__}: {e}")
            self.queue.enqueue(
                self.config.destination,
                format_error(f"{type(e).__name__}: {e}", self.last_processed_block, self.config.alert_timezone),
                self.config.thread_id,
                kind="error",
            )
            await self._wait(self.config.error_cooldown_sec)
            return False

    async def process_deltas(self, deltas: List[ActivityDelta], snapshot: TrackedSnapshot):
        """
        Analyze each delta and run enrollment.

        Analysis uses the scan-start snapshot; enrollment sees wallets
        enrolled earlier in the same batch. One failing delta never stops
        the rest.
        """
        self.stats.found_transactions += len(deltas)
        detect_snapshot = snapshot

        for delta in deltas:
            try:
                activity = self.analyzer.analyze(delta, snapshot)
                if activity.has_activity:
                    body = format_activity(
                        activity,
                        self.config.native_symbol,
                        self.config.explorer_url,
                        snapshot.names,
                    )
                    if self.queue.enqueue(self.config.destination, body, self.config.thread_id):
                        self.stats.queued_alerts += 1

                # Only deltas with activity by a tracked sender can induce enrollment
                if activity.has_activity and self.config.enable_new_wallet_detection:
                    node = await self.detector.process(delta, detect_snapshot)
                    if node is not None:
                        detect_snapshot = detect_snapshot.with_wallet(node.wallet, node.name)
                        self.stats.new_wallets_added += 1

            except Exception as e:
                logger.error(f"Failed to process {delta.hash}: {type(e).__name__}: {e}")

        if detect_snapshot is not snapshot:
            self.snapshot = detect_snapshot

    # -------------------------------------------------------------------------
    # Operator commands
    # -------------------------------------------------------------------------

    async def add_wallet(self, wallet: str, name: str) -> AdminResult:
        """Manually track a wallet as a root node (level 1)."""
        if not is_address(wallet):
            return AdminResult(False, f"Invalid address: {wallet}")

        try:
            node = await self.store.add_node(wallet.lower(), name or "Unknown")
        except DuplicateEnrollmentError:
            return AdminResult(False, f"Wallet already tracked: {wallet.lower()}")

        self.snapshot = self.snapshot.with_wallet(node.wallet, node.name)
        logger.info(f"Operator added {node.wallet} as '{node.name}'")
        return AdminResult(True, f"Added {node.wallet} ({node.name})", node)

    async def remove_wallet(self, wallet: str) -> AdminResult:
        """Stop tracking a wallet. Its descendants stay tracked."""
        if not is_address(wallet):
            return AdminResult(False, f"Invalid address: {wallet}")

        if not await self.store.remove(wallet):
            return AdminResult(False, f"Wallet not tracked: {wallet.lower()}")

        self.snapshot = self.snapshot.without_wallet(wallet)
        logger.info(f"Operator removed {wallet.lower()}")
        return AdminResult(True, f"Removed {wallet.lower()}")

    async def rename_wallet(self, wallet: str, name: str) -> AdminResult:
        if not is_address(wallet):
            return AdminResult(False, f"Invalid address: {wallet}")
        if not name:
            return AdminResult(False, "Name must not be empty")

        if not await self.store.rename(wallet, name):
            return AdminResult(False, f"Wallet not tracked: {wallet.lower()}")

        self.snapshot = self.snapshot.with_wallet(wallet, name)
        return AdminResult(True, f"Renamed {wallet.lower()} to {name}")

    async def query_wallet(self, wallet: Optional[str] = None) -> AdminResult:
        """Look up one wallet, or list every tracked node when wallet is None."""
        if wallet is None:
            nodes = await self.store.list_nodes()
            return AdminResult(True, f"{len(nodes)} wallets tracked", nodes)

        if not is_address(wallet):
            return AdminResult(False, f"Invalid address: {wallet}")

        node = await self.store.get(wallet)
        if node is None:
            return AdminResult(False, f"Wallet not tracked: {wallet.lower()}")
        return AdminResult(True, f"{node.name} (level {node.level})", node)

    def get_stats(self) -> dict:
        uptime = time.monotonic() - self.stats.started_at
        return {
            "monitored_wallets": len(self.snapshot),
            "last_processed_block": self.last_processed_block,
            "processed_blocks": self.stats.processed_blocks,
            "found_transactions": self.stats.found_transactions,
            "queued_alerts": self.stats.queued_alerts,
            "sent_notifications": self.queue.stats.delivered,
            "new_wallets_added": self.stats.new_wallets_added,
            "failed_blocks": self.stats.failed_blocks,
            "loop_errors": self.stats.loop_errors,
            "dropped_alerts": self.stats.dropped_alerts,
            "queue": self.queue.get_stats(),
            "uptime": format_uptime(uptime),
        }
