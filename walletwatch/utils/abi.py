"""
Minimal ABI helpers for the few words the monitor needs to read.

Hashing goes through web3; 32-byte words are decoded by hex slicing
(each word is 64 hex chars).
"""

from typing import Optional

from web3 import Web3

from ..errors import ParseFailure

WORD_HEX = 64


def event_topic(signature: str) -> str:
    """keccak256 of an event signature, as 0x-prefixed lowercase hex."""
    return Web3.to_hex(Web3.keccak(text=signature)).lower()


def function_selector(signature: str) -> str:
    """First 4 bytes of keccak256 of a function signature (0x + 8 hex chars)."""
    return Web3.to_hex(Web3.keccak(text=signature)[:4]).lower()


def is_address(value: Optional[str]) -> bool:
    return bool(value) and Web3.is_address(value)


def strip_0x(value: str) -> str:
    return value[2:] if value[:2] in ("0x", "0X") else value


def decode_address_word(word: str) -> str:
    """
    Decode a 32-byte word holding a left-padded address.

    Raises:
        ParseFailure: If the word is not 32 bytes of hex or the padding
            is not zero.
    """
    body = strip_0x(word).lower()
    if len(body) != WORD_HEX:
        raise ParseFailure(f"Address word must be 32 bytes, got {len(body) // 2}")
    try:
        int(body, 16)
    except ValueError:
        raise ParseFailure(f"Address word is not hex: {word!r}")
    if body[:24].strip("0"):
        raise ParseFailure(f"Address word has non-zero padding: {word!r}")
    return "0x" + body[24:]


def encode_address_word(address: str) -> str:
    return "0x" + strip_0x(address).lower().rjust(WORD_HEX, "0")


def decode_uint_word(data: str) -> int:
    """
    Decode a single uint256 data field.

    Raises:
        ParseFailure: If the data is not exactly one 32-byte hex word.
    """
    body = strip_0x(data)
    if len(body) != WORD_HEX:
        raise ParseFailure(f"uint256 data must be 32 bytes, got {len(body) // 2}")
    try:
        return int(body, 16)
    except ValueError:
        raise ParseFailure(f"uint256 data is not hex: {data!r}")


def encode_uint_word(value: int) -> str:
    return "0x" + format(value, "x").rjust(WORD_HEX, "0")


def decode_abi_string(result: str) -> Optional[str]:
    """
    Decode an eth_call result holding a string.

    Handles both the dynamic `string` encoding and legacy tokens that
    return `bytes32` (e.g. MKR). Returns None when nothing decodable came
    back.
    """
    body = strip_0x(result or "")
    if not body:
        return None

    try:
        if len(body) == WORD_HEX:
            raw = bytes.fromhex(body).rstrip(b"\x00")
        else:
            offset = int(body[:WORD_HEX], 16) * 2
            length = int(body[offset:offset + WORD_HEX], 16) * 2
            start = offset + WORD_HEX
            raw = bytes.fromhex(body[start:start + length])
    except ValueError:
        return None

    text = raw.decode("utf-8", errors="replace").strip("\x00").strip()
    return text or None
