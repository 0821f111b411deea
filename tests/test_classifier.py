import pytest

from walletwatch.core.classifier import (
    ERC20_METHODS,
    TRANSFER_EVENT_TOPIC,
    TransactionClassifier,
    classify_transaction,
    decode_transfer_log,
    encode_transfer_log,
    method_label,
    native_change,
)
from walletwatch.errors import ParseFailure, TransientFetchError
from walletwatch.models import Classification, LogEntry, Receipt, TokenMetadata

from tests.conftest import A, B, C, TOKEN, TOKEN_2, TRANSFER_CALL, WEI, make_tx, transfer_receipt


def test_transfer_topic_matches_erc20_signature():
    assert TRANSFER_EVENT_TOPIC == "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


def test_known_selectors():
    assert ERC20_METHODS["0xa9059cbb"] == "transfer"
    assert ERC20_METHODS["0x23b872dd"] == "transferFrom"
    assert ERC20_METHODS["0x095ea7b3"] == "approve"
    assert ERC20_METHODS["0x70a08231"] == "balanceOf"
    assert ERC20_METHODS["0x313ce567"] == "decimals"


def test_method_label():
    assert method_label("0x") is None
    assert method_label(TRANSFER_CALL) == "transfer"
    assert method_label("0xdeadbeef00") == "0xdeadbeef"
    assert method_label("0x12") is None


@pytest.mark.parametrize("has_value,payload,tokens,expected", [
    (True, "0x", 0, Classification.NATIVE_TRANSFER),
    (False, "0x", 0, Classification.CONTRACT_CALL),
    (True, "", 0, Classification.NATIVE_TRANSFER),
    (False, TRANSFER_CALL, 1, Classification.TOKEN_TRANSFER),
    (True, TRANSFER_CALL, 2, Classification.MIXED_TRANSFER),
    (False, "0xdeadbeef", 0, Classification.CONTRACT_CALL),
    (True, "0xdeadbeef", 0, Classification.CONTRACT_CALL),
    (False, "0x1234", 0, Classification.UNKNOWN),
    (False, "0xzzzzzzzz", 0, Classification.UNKNOWN),
])
def test_classify_transaction(has_value, payload, tokens, expected):
    assert classify_transaction(has_value, payload, tokens) == expected


@pytest.mark.parametrize("value", [1, 10 ** 15, 15 * 10 ** 17, 123 * WEI])
def test_native_change_is_symmetric(value):
    change = native_change(value)
    assert change.from_delta == "-" + change.to_delta
    assert change.raw_value == value


def test_zero_value_has_no_native_change():
    assert native_change(0).is_zero


def test_transfer_log_round_trip():
    log = encode_transfer_log(TOKEN, A, B, 1000 * WEI)
    src, dst, value = decode_transfer_log(log)
    assert (src, dst, value) == (A, B, 1000 * WEI)

    again = encode_transfer_log(log.address, src, dst, value)
    assert again.topics == log.topics
    assert again.data == log.data


def test_decode_ignores_other_events():
    log = LogEntry(address=TOKEN, topics=["0x" + "0" * 64], data="0x")
    assert decode_transfer_log(log) is None


def test_decode_ignores_erc721_transfers():
    log = encode_transfer_log(TOKEN, A, B, 7)
    log.topics.append("0x" + "0" * 63 + "7")
    log.data = "0x"
    assert decode_transfer_log(log) is None


def test_decode_rejects_missing_topics():
    log = LogEntry(address=TOKEN, topics=[TRANSFER_EVENT_TOPIC, "0x" + "0" * 24 + A[2:]], data="0x" + "0" * 64)
    with pytest.raises(ParseFailure):
        decode_transfer_log(log)


def test_decode_rejects_bad_value():
    log = encode_transfer_log(TOKEN, A, B, 1)
    log.data = "0x1234"
    with pytest.raises(ParseFailure):
        decode_transfer_log(log)


def test_decode_rejects_dirty_address_padding():
    log = encode_transfer_log(TOKEN, A, B, 1)
    log.topics[1] = "0x" + "f" * 24 + A[2:]
    with pytest.raises(ParseFailure):
        decode_transfer_log(log)


@pytest.mark.asyncio
async def test_classify_native_transfer():
    classifier = TransactionClassifier()
    tx = make_tx("0x01", value=15 * 10 ** 17)
    delta = await classifier.classify(tx, Receipt(transaction_hash="0x01", status=1), timestamp=42)

    assert delta.classification == Classification.NATIVE_TRANSFER
    assert delta.native_change.from_delta == "-1.5"
    assert delta.native_change.to_delta == "1.5"
    assert delta.token_changes == ()
    assert delta.timestamp == 42


@pytest.mark.asyncio
async def test_classify_token_transfer_resolves_metadata():
    async def lookup(address):
        return TokenMetadata(name="Tether", symbol="USDT", decimals=18)

    classifier = TransactionClassifier(lookup)
    tx = make_tx("0x02", to=TOKEN, input_data=TRANSFER_CALL)
    receipt = transfer_receipt("0x02", (TOKEN, A, C, 1000 * WEI))

    delta = await classifier.classify(tx, receipt)

    assert delta.classification == Classification.TOKEN_TRANSFER
    assert delta.method == "transfer"
    assert len(delta.token_changes) == 1
    change = delta.token_changes[0]
    assert change.symbol == "USDT"
    assert change.formatted_value == "1000.0"
    assert (change.from_address, change.to_address) == (A, C)


@pytest.mark.asyncio
async def test_metadata_failure_degrades_to_unknown():
    async def lookup(address):
        raise TransientFetchError("rpc down")

    classifier = TransactionClassifier(lookup)
    tx = make_tx("0x03", to=TOKEN, input_data=TRANSFER_CALL)
    receipt = transfer_receipt("0x03", (TOKEN, A, C, 5))

    delta = await classifier.classify(tx, receipt)

    change = delta.token_changes[0]
    assert change.symbol == "UNKNOWN"
    assert change.decimals == 18
    assert delta.classification == Classification.TOKEN_TRANSFER


@pytest.mark.asyncio
async def test_token_changes_keep_log_order():
    async def lookup(address):
        return TokenMetadata(symbol="X" if address == TOKEN else "Y", decimals=6)

    classifier = TransactionClassifier(lookup)
    tx = make_tx("0x04", to=C, value=WEI, input_data="0xdeadbeef")
    receipt = transfer_receipt(
        "0x04",
        (TOKEN_2, C, A, 2_000_000),
        (TOKEN, A, C, 1_000_000),
    )

    delta = await classifier.classify(tx, receipt)

    assert delta.classification == Classification.MIXED_TRANSFER
    assert [c.symbol for c in delta.token_changes] == ["Y", "X"]
    assert [c.formatted_value for c in delta.token_changes] == ["2.0", "1.0"]


@pytest.mark.asyncio
async def test_classify_raises_on_malformed_log():
    classifier = TransactionClassifier()
    tx = make_tx("0x05", to=TOKEN, input_data=TRANSFER_CALL)
    bad = LogEntry(address=TOKEN, topics=[TRANSFER_EVENT_TOPIC], data="0x")

    with pytest.raises(ParseFailure):
        await classifier.classify(tx, Receipt(transaction_hash="0x05", status=1, logs=[bad]))


@pytest.mark.asyncio
async def test_failed_receipt_marks_delta_unsuccessful():
    classifier = TransactionClassifier()
    delta = await classifier.classify(make_tx("0x06", value=WEI), Receipt(transaction_hash="0x06", status=0))
    assert delta.success is False
