from datetime import datetime, timezone

import pytest

from conftest import make_block_id
from evtc.model import (
    Action,
    ChainInfo,
    CompressionType,
    PackedTransaction,
    SignedTransaction,
    Transaction,
    ValidationError,
    block_num_from_id,
    parse_timestamp,
    tapos_from_block_id,
)

EXPIRATION = datetime(2018, 6, 1, 12, 0, 30, tzinfo=timezone.utc)


def _signed() -> SignedTransaction:
    draft = Transaction.draft([Action("domain", "cookies", {"name": "cookies"}, name="newdomain")])
    bound = draft.bind(EXPIRATION, make_block_id(100))
    return SignedTransaction(
        actions=bound.actions,
        expiration=bound.expiration,
        ref_block_num=bound.ref_block_num,
        ref_block_prefix=bound.ref_block_prefix,
        signatures=("SIG_K1_abc",),
    )


def test_tapos_matches_only_the_block_it_was_built_from() -> None:
    block_id = make_block_id(100)
    bound = Transaction.draft([]).bind(EXPIRATION, block_id)

    assert bound.verify_reference_block(block_id)
    assert not bound.verify_reference_block(make_block_id(100, salt="fork"))
    assert not bound.verify_reference_block(make_block_id(101))


def test_tapos_number_is_low_sixteen_bits_of_height() -> None:
    block_id = make_block_id(0x1_0005)

    ref_block_num, _prefix = tapos_from_block_id(block_id)

    assert block_num_from_id(block_id) == 0x1_0005
    assert ref_block_num == 5


@pytest.mark.parametrize("bad_id", ["", "abc", "zz" * 32, "00" * 31])
def test_invalid_block_ids_are_rejected(bad_id) -> None:
    with pytest.raises(ValidationError):
        tapos_from_block_id(bad_id)


def test_bind_truncates_expiration_and_drops_signatures() -> None:
    rebound = _signed().bind(EXPIRATION.replace(microsecond=250000), make_block_id(101))

    assert rebound.expiration == EXPIRATION
    assert not isinstance(rebound, SignedTransaction)
    assert rebound.verify_reference_block(make_block_id(101))


def test_signed_transaction_variant_round_trip() -> None:
    signed = _signed()

    restored = SignedTransaction.from_variant(signed.to_variant())

    assert restored == signed
    assert signed.to_variant()["expiration"] == "2018-06-01T12:00:30"


def test_packed_transaction_unpacks_compressed_payload() -> None:
    signed = _signed()

    plain = PackedTransaction.pack(signed)
    compressed = PackedTransaction.pack(signed, "zlib")

    assert plain.compression is CompressionType.NONE
    assert compressed.packed_trx != plain.packed_trx
    assert compressed.unpack() == signed
    assert compressed.to_variant()["signatures"] == ["SIG_K1_abc"]


def test_unknown_compression_is_a_validation_error() -> None:
    with pytest.raises(ValidationError):
        CompressionType.parse("lzma")


def test_chain_info_parses_fractional_head_time() -> None:
    info = ChainInfo.from_variant(
        {
            "head_block_num": 120,
            "head_block_id": make_block_id(120),
            "head_block_time": "2018-06-01T12:00:00.500",
            "last_irreversible_block_num": 100,
        }
    )

    assert info.head_block_time == datetime(2018, 6, 1, 12, 0, 0, 500000, tzinfo=timezone.utc)
    assert info.chain_id is None


def test_malformed_transaction_json_is_rejected() -> None:
    with pytest.raises(ValidationError):
        SignedTransaction.from_variant({"actions": [{"domain": "domain"}]})
    with pytest.raises(ValidationError):
        Transaction.from_variant(["not", "an", "object"])
    with pytest.raises(ValidationError):
        parse_timestamp("yesterday")
