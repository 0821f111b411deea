"""
Transaction Classifier
======================

Turns one raw transaction (plus its receipt, when available) into an
ActivityDelta:

- native movement comes from the transaction's value field
- token movement comes from Transfer event logs in the receipt, never
  from the call payload (multi-hop transfers only show up in events)
- the call selector only refines an advisory method label
"""

import asyncio
import logging
import re
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from ..errors import ParseFailure
from ..models import (
    ActivityDelta,
    Classification,
    LogEntry,
    NativeChange,
    RawTransaction,
    Receipt,
    TokenChange,
    TokenMetadata,
    UNKNOWN_TOKEN,
    ZERO_NATIVE,
)
from ..utils.abi import (
    decode_address_word,
    decode_uint_word,
    encode_address_word,
    encode_uint_word,
    event_topic,
    function_selector,
)
from ..utils.units import format_units

logger = logging.getLogger(__name__)

# Transfer(address indexed from, address indexed to, uint256 value)
TRANSFER_EVENT_TOPIC = event_topic("Transfer(address,address,uint256)")

# Known fungible-token methods: selector -> label
ERC20_METHODS: Dict[str, str] = {
    function_selector(signature): signature.split("(")[0]
    for signature in (
        "transfer(address,uint256)",
        "transferFrom(address,address,uint256)",
        "approve(address,uint256)",
        "allowance(address,address)",
        "balanceOf(address)",
        "totalSupply()",
        "name()",
        "symbol()",
        "decimals()",
    )
}

_HEX_RE = re.compile(r"^0x[0-9a-fA-F]*$")

MetadataLookup = Callable[[str], Awaitable[TokenMetadata]]


def has_payload(input_data: Optional[str]) -> bool:
    """True if the transaction carries call data."""
    return input_data not in (None, "", "0x", "0x0")


def method_label(input_data: Optional[str]) -> Optional[str]:
    """
    Advisory method label from the call selector.

    Returns the ERC20 method name when the selector is known, the raw
    selector otherwise, and None when there is no usable payload.
    """
    if not has_payload(input_data) or len(input_data) < 10 or not _HEX_RE.match(input_data):
        return None
    selector = input_data[:10].lower()
    return ERC20_METHODS.get(selector, selector)


def classify_transaction(has_value: bool, input_data: Optional[str], token_count: int) -> Classification:
    """
    Classification as a pure function of (value > 0, payload, number of
    token changes).

    Args:
        has_value: Whether the native value is positive
        input_data: Hex call data ("0x" when absent)
        token_count: Number of decoded Transfer events

    Returns:
        Classification
    """
    if not has_payload(input_data):
        return Classification.NATIVE_TRANSFER if has_value else Classification.CONTRACT_CALL

    # A payload too short to hold a selector, or not hex at all
    if len(input_data) < 10 or not _HEX_RE.match(input_data):
        return Classification.UNKNOWN

    if token_count > 0:
        return Classification.MIXED_TRANSFER if has_value else Classification.TOKEN_TRANSFER
    return Classification.CONTRACT_CALL


def native_change(value: int, decimals: int = 18) -> NativeChange:
    """Signed native movement for a transaction value."""
    if value <= 0:
        return ZERO_NATIVE
    amount = format_units(value, decimals)
    return NativeChange(from_delta=f"-{amount}", to_delta=amount, raw_value=value)


# =============================================================================
# Transfer event encoding
# =============================================================================

def decode_transfer_log(log: LogEntry) -> Optional[Tuple[str, str, int]]:
    """
    Decode a fungible-token Transfer event.

    Args:
        log: Receipt log entry

    Returns:
        (from, to, raw_value), or None if the log is not an ERC20 Transfer
        (other events, and ERC721 Transfers which index the token id)

    Raises:
        ParseFailure: If the log matches the Transfer signature but its
            topics or data cannot be decoded
    """
    if not log.topics or log.topics[0].lower() != TRANSFER_EVENT_TOPIC:
        return None

    if len(log.topics) == 4:
        # ERC721: Transfer(address indexed, address indexed, uint256 indexed)
        return None

    if len(log.topics) != 3:
        raise ParseFailure(f"Transfer log from {log.address} has {len(log.topics)} topics")

    from_address = decode_address_word(log.topics[1])
    to_address = decode_address_word(log.topics[2])
    raw_value = decode_uint_word(log.data)
    return from_address, to_address, raw_value


def encode_transfer_log(token_address: str, from_address: str, to_address: str, raw_value: int) -> LogEntry:
    """Build the Transfer log a token contract would emit."""
    return LogEntry(
        address=token_address.lower(),
        topics=[
            TRANSFER_EVENT_TOPIC,
            encode_address_word(from_address),
            encode_address_word(to_address),
        ],
        data=encode_uint_word(raw_value),
    )


# =============================================================================
# Classifier
# =============================================================================

class TransactionClassifier:
    """
    Builds ActivityDelta records.

    Token metadata is resolved through an injected async lookup; caching is
    the caller's job. A failing lookup degrades to UNKNOWN / 18 decimals.
    """

    def __init__(self, metadata_lookup: Optional[MetadataLookup] = None, native_decimals: int = 18):
        self.metadata_lookup = metadata_lookup
        self.native_decimals = native_decimals

    async def _resolve_metadata(self, token_address: str) -> TokenMetadata:
        if self.metadata_lookup is None:
            return UNKNOWN_TOKEN
        try:
            return await self.metadata_lookup(token_address)
        except Exception as e:
            logger.debug(f"Metadata lookup failed for {token_address}: {e}")
            return UNKNOWN_TOKEN

    async def _token_changes(self, receipt: Optional[Receipt]) -> List[TokenChange]:
        if receipt is None:
            return []

        decoded = []
        for log in receipt.logs:
            transfer = decode_transfer_log(log)
            if transfer is not None:
                decoded.append((log.address, transfer))

        if not decoded:
            return []

        unique_tokens = list(dict.fromkeys(address for address, _ in decoded))
        resolved = await asyncio.gather(*(self._resolve_metadata(t) for t in unique_tokens))
        metadata = dict(zip(unique_tokens, resolved))

        changes = []
        for token_address, (from_address, to_address, raw_value) in decoded:
            meta = metadata[token_address]
            changes.append(TokenChange(
                token_address=token_address,
                symbol=meta.symbol,
                decimals=meta.decimals,
                from_address=from_address,
                to_address=to_address,
                raw_value=raw_value,
                formatted_value=format_units(raw_value, meta.decimals),
            ))
        return changes

    async def classify(
        self,
        transaction: RawTransaction,
        receipt: Optional[Receipt] = None,
        timestamp: int = 0,
    ) -> ActivityDelta:
        """
        Classify one transaction.

        Args:
            transaction: Raw transaction from the block
            receipt: Its receipt, if fetched
            timestamp: Block timestamp (seconds)

        Returns:
            ActivityDelta

        Raises:
            ParseFailure: On a malformed Transfer log
        """
        token_changes = await self._token_changes(receipt)
        input_data = transaction.input_data or "0x"

        return ActivityDelta(
            hash=transaction.hash,
            block_number=transaction.block_number,
            timestamp=timestamp,
            from_address=transaction.from_address.lower(),
            to_address=transaction.to_address.lower() if transaction.to_address else None,
            native_change=native_change(transaction.value, self.native_decimals),
            token_changes=tuple(token_changes),
            classification=classify_transaction(transaction.value > 0, input_data, len(token_changes)),
            method=method_label(input_data),
            success=receipt.succeeded if receipt is not None else True,
        )
