"""
New Node Detector
=================

Decides whether an untracked counterparty of a tracked wallet should be
enrolled, and performs the enrollment.

Two eligibility paths per transaction:

Native-only:
    nonzero native value, no token changes, amount >= native minimum,
    recipient untracked and not a contract.

Token-only:
    no native value, every token change on one base token, a change from
    a tracked wallet to an untracked one meeting that token's minimum,
    recipient not a contract.

Candidates flagged as exchange wallets are never enrolled. Only the
transaction's direct value is considered on the native path: native
movements made inside contract calls are not seen.
"""

import logging
from typing import Dict, Optional

from ..alerts.queue import DeliveryQueue
from ..alerts.templates import format_new_wallet
from ..api.ledger import LedgerClient
from ..api.reputation import ReputationService
from ..db.graph_store import GraphStore
from ..errors import DuplicateEnrollmentError, TransientFetchError
from ..models import ActivityDelta, EnrollmentRequest, TrackedNode, TrackedSnapshot

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40


class NewNodeDetector:

    def __init__(
        self,
        ledger: LedgerClient,
        store: GraphStore,
        reputation: ReputationService,
        queue: Optional[DeliveryQueue] = None,
        destination: str = "",
        thread_id: Optional[str] = None,
        native_min_wei: int = 0,
        token_minimums: Optional[Dict[str, int]] = None,
        native_symbol: str = "BNB",
        explorer_url: str = "https://bscscan.com",
    ):
        self.ledger = ledger
        self.store = store
        self.reputation = reputation
        self.queue = queue
        self.destination = destination
        self.thread_id = thread_id
        self.native_min_wei = native_min_wei
        self.token_minimums = {k.lower(): v for k, v in (token_minimums or {}).items()}
        self.native_symbol = native_symbol
        self.explorer_url = explorer_url

    # -------------------------------------------------------------------------
    # Eligibility
    # -------------------------------------------------------------------------

    def _native_candidate(self, delta: ActivityDelta, snapshot: TrackedSnapshot) -> Optional[EnrollmentRequest]:
        if not delta.has_native_transfer or delta.token_changes:
            return None
        if delta.native_change.raw_value < self.native_min_wei:
            return None
        if not delta.to_address or delta.to_address in snapshot:
            return None
        if delta.from_address not in snapshot:
            return None

        return EnrollmentRequest(
            candidate_wallet=delta.to_address,
            inducing_wallet=delta.from_address,
            tx_hash=delta.hash,
            reason="native",
            amount=delta.native_change.to_delta,
            symbol=self.native_symbol,
        )

    def _token_candidate(self, delta: ActivityDelta, snapshot: TrackedSnapshot) -> Optional[EnrollmentRequest]:
        if delta.has_native_transfer or not delta.token_changes:
            return None

        tokens = delta.token_addresses
        if len(tokens) != 1:
            return None
        minimum = self.token_minimums.get(tokens[0])
        if minimum is None:
            return None

        for change in delta.token_changes:
            if change.from_address not in snapshot or change.to_address in snapshot:
                continue
            if change.raw_value < minimum:
                continue
            return EnrollmentRequest(
                candidate_wallet=change.to_address,
                inducing_wallet=change.from_address,
                tx_hash=delta.hash,
                reason="token",
                amount=change.formatted_value,
                symbol=change.symbol,
            )
        return None

    async def consider(self, delta: ActivityDelta, snapshot: TrackedSnapshot) -> Optional[EnrollmentRequest]:
        """
        Check one transaction for an enrollment candidate.

        Lookup failures (account code, reputation) skip the candidate.

        Args:
            delta: Classified transaction
            snapshot: Tracked set at scan start

        Returns:
            EnrollmentRequest, or None if nothing is eligible
        """
        if not delta.success:
            return None

        request = self._native_candidate(delta, snapshot) or self._token_candidate(delta, snapshot)
        if request is None:
            return None

        candidate = request.candidate_wallet
        if candidate == ZERO_ADDRESS:
            return None

        try:
            if await self.ledger.is_contract(candidate):
                logger.debug(f"Candidate {candidate} is a contract, skipping")
                return None
        except TransientFetchError as e:
            logger.warning(f"Code check failed for {candidate}, skipping: {e}")
            return None

        try:
            if await self.reputation.is_exchange_controlled(candidate):
                logger.info(f"Candidate {candidate} is an exchange wallet, skipping")
                return None
        except TransientFetchError as e:
            logger.warning(f"Reputation check failed for {candidate}, skipping: {e}")
            return None

        logger.info(
            f"Enrollment candidate {candidate} induced by {request.inducing_wallet} "
            f"({request.reason} {request.amount} {request.symbol})"
        )
        return request

    # -------------------------------------------------------------------------
    # Enrollment
    # -------------------------------------------------------------------------

    async def enroll(self, request: EnrollmentRequest, snapshot: Optional[TrackedSnapshot] = None) -> Optional[TrackedNode]:
        """
        Persist the candidate as a child of the inducing node and queue the
        enrollment alert.

        A candidate that became tracked in the meantime is a no-op.

        Returns:
            The new node, or None if it was already tracked
        """
        candidate = request.candidate_wallet
        if await self.store.exists(candidate):
            logger.debug(f"{candidate} already tracked, skipping enrollment")
            return None

        parent = await self.store.get(request.inducing_wallet)
        if parent is not None:
            name = parent.name
        elif snapshot is not None:
            name = snapshot.name_of(request.inducing_wallet)
        else:
            name = "Unknown"

        node = TrackedNode.create(candidate, name, parent)
        try:
            await self.store.insert(node)
        except DuplicateEnrollmentError:
            logger.info(f"{candidate} was enrolled concurrently, discarding duplicate")
            return None

        logger.info(f"Enrolled {candidate} as '{name}' (level {node.level}, referrer {node.referrer or '-'})")

        if self.queue is not None and self.destination:
            self.queue.enqueue(
                self.destination,
                format_new_wallet(node, request, name, self.explorer_url),
                self.thread_id,
                kind="enrollment",
            )
        return node

    async def process(self, delta: ActivityDelta, snapshot: TrackedSnapshot) -> Optional[TrackedNode]:
        """consider() followed by enroll() when a candidate is found."""
        request = await self.consider(delta, snapshot)
        if request is None:
            return None
        return await self.enroll(request, snapshot)
