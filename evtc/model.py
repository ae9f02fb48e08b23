"""Domain models for evtc transactions.

A transaction moves through three shapes while a command runs: a draft that
only carries actions, a bound transaction with expiration and TAPOS reference,
and a signed transaction with the wallet's signatures attached. All three are
immutable dataclasses; each lifecycle step returns a new value so a signed
transaction can never be altered underneath its signatures.
"""

from __future__ import annotations

import binascii
import json
import re
import struct
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"
BLOCK_ID_HEX_LENGTH = 64
COMPACT_JSON_SEPARATORS = (",", ":")

_NAME_PATTERN = re.compile(r"^[a-z0-9.\-]{1,21}$", re.IGNORECASE)
_HEX_PATTERN = re.compile(r"^[0-9a-fA-F]+$")


class ValidationError(ValueError):
    """Raised when user input is malformed before any remote call is made."""


class CompressionType(str, Enum):
    NONE = "none"
    ZLIB = "zlib"

    @classmethod
    def parse(cls, value: "str | CompressionType") -> "CompressionType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError as exc:
            choices = ", ".join(item.value for item in cls)
            raise ValidationError(f"Unknown compression '{value}'; expected one of: {choices}") from exc


def validate_name(value: str, *, field_name: str = "name") -> str:
    """Return *value* if it is a valid domain/key identifier."""

    if not isinstance(value, str) or not _NAME_PATTERN.match(value):
        raise ValidationError(
            f"Invalid {field_name} '{value}': expected 1-21 characters of letters, digits, '.' or '-'"
        )
    return value


def parse_timestamp(raw: str) -> datetime:
    """Parse a chain timestamp such as ``2018-05-01T12:00:00.500`` as UTC."""

    text = str(raw).rstrip("Z")
    for fmt in (TIMESTAMP_FORMAT, TIMESTAMP_FORMAT + ".%f"):
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    raise ValidationError(f"Invalid chain timestamp: {raw}")


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def _block_id_bytes(block_id: str) -> bytes:
    if (
        not isinstance(block_id, str)
        or len(block_id) != BLOCK_ID_HEX_LENGTH
        or not _HEX_PATTERN.match(block_id)
    ):
        raise ValidationError(f"Invalid block id: {block_id!r}")
    return binascii.unhexlify(block_id)


def block_num_from_id(block_id: str) -> int:
    """Return the block number embedded in the first four bytes of *block_id*."""

    return struct.unpack(">I", _block_id_bytes(block_id)[:4])[0]


def tapos_from_block_id(block_id: str) -> tuple[int, int]:
    """Return ``(ref_block_num, ref_block_prefix)`` for *block_id*.

    The number is the low 16 bits of the block height; the prefix is a 32-bit
    little-endian slice of the block hash, so two blocks at the same height
    but on different forks produce different prefixes.
    """

    raw = _block_id_bytes(block_id)
    ref_block_num = struct.unpack(">I", raw[:4])[0] & 0xFFFF
    ref_block_prefix = struct.unpack("<I", raw[8:12])[0]
    return ref_block_num, ref_block_prefix


@dataclass(frozen=True)
class Action:
    """A single operation on the resource identified by ``domain`` and ``key``."""

    domain: str
    key: str
    data: Mapping[str, Any] = field(default_factory=dict)
    name: str | None = None

    def to_variant(self) -> dict[str, Any]:
        variant: dict[str, Any] = {}
        if self.name is not None:
            variant["name"] = self.name
        variant.update({"domain": self.domain, "key": self.key, "data": dict(self.data)})
        return variant

    @classmethod
    def from_variant(cls, variant: Mapping[str, Any]) -> "Action":
        try:
            return cls(
                domain=str(variant["domain"]),
                key=str(variant["key"]),
                data=dict(variant.get("data") or {}),
                name=variant.get("name"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed action: {exc}") from exc


@dataclass(frozen=True)
class ChainInfo:
    """Snapshot of the chain head returned by ``get_info``."""

    head_block_num: int
    head_block_id: str
    head_block_time: datetime
    last_irreversible_block_num: int
    chain_id: str | None = None
    server_version: str | None = None

    @classmethod
    def from_variant(cls, variant: Mapping[str, Any]) -> "ChainInfo":
        try:
            return cls(
                head_block_num=int(variant["head_block_num"]),
                head_block_id=str(variant["head_block_id"]),
                head_block_time=parse_timestamp(variant["head_block_time"]),
                last_irreversible_block_num=int(variant["last_irreversible_block_num"]),
                chain_id=variant.get("chain_id") or None,
                server_version=variant.get("server_version"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed chain info: {exc}") from exc


@dataclass(frozen=True)
class Transaction:
    """Unsigned transaction; a draft until :meth:`bind` sets expiration and TAPOS."""

    actions: tuple[Action, ...] = ()
    expiration: datetime | None = None
    ref_block_num: int = 0
    ref_block_prefix: int = 0

    @classmethod
    def draft(cls, actions: Iterable[Action]) -> "Transaction":
        return cls(actions=tuple(actions))

    @property
    def is_bound(self) -> bool:
        return self.expiration is not None

    def bind(self, expiration: datetime, ref_block_id: str) -> "Transaction":
        # always yields an unsigned transaction; old signatures would not cover it
        ref_block_num, ref_block_prefix = tapos_from_block_id(ref_block_id)
        return Transaction(
            actions=self.actions,
            expiration=expiration.replace(microsecond=0),
            ref_block_num=ref_block_num,
            ref_block_prefix=ref_block_prefix,
        )

    def verify_reference_block(self, block_id: str) -> bool:
        """Return ``True`` when this transaction's TAPOS fields match *block_id*."""

        return (self.ref_block_num, self.ref_block_prefix) == tapos_from_block_id(block_id)

    def to_variant(self) -> dict[str, Any]:
        return {
            "expiration": format_timestamp(self.expiration) if self.expiration else None,
            "ref_block_num": self.ref_block_num,
            "ref_block_prefix": self.ref_block_prefix,
            "actions": [action.to_variant() for action in self.actions],
        }

    @staticmethod
    def _fields_from_variant(variant: Mapping[str, Any]) -> dict[str, Any]:
        if not isinstance(variant, Mapping):
            raise ValidationError("Transaction JSON must be an object")
        try:
            expiration = variant.get("expiration")
            return {
                "actions": tuple(Action.from_variant(item) for item in variant.get("actions") or []),
                "expiration": parse_timestamp(expiration) if expiration else None,
                "ref_block_num": int(variant.get("ref_block_num", 0)),
                "ref_block_prefix": int(variant.get("ref_block_prefix", 0)),
            }
        except (TypeError, ValueError) as exc:
            if isinstance(exc, ValidationError):
                raise
            raise ValidationError(f"Malformed transaction: {exc}") from exc

    @classmethod
    def from_variant(cls, variant: Mapping[str, Any]) -> "Transaction":
        return cls(**cls._fields_from_variant(variant))


@dataclass(frozen=True)
class SignedTransaction(Transaction):
    signatures: tuple[str, ...] = ()

    @classmethod
    def unsigned(cls, trx: Transaction) -> "SignedTransaction":
        return cls(
            actions=trx.actions,
            expiration=trx.expiration,
            ref_block_num=trx.ref_block_num,
            ref_block_prefix=trx.ref_block_prefix,
        )

    def to_variant(self) -> dict[str, Any]:
        variant = super().to_variant()
        variant["signatures"] = list(self.signatures)
        return variant

    @classmethod
    def from_variant(cls, variant: Mapping[str, Any]) -> "SignedTransaction":
        fields = cls._fields_from_variant(variant)
        signatures = variant.get("signatures") or []
        if not isinstance(signatures, list):
            raise ValidationError("Transaction signatures must be a list")
        return cls(signatures=tuple(str(sig) for sig in signatures), **fields)


def canonical_bytes(trx: Transaction) -> bytes:
    """Deterministic encoding of the unsigned part of *trx*."""

    return json.dumps(
        Transaction.to_variant(trx), sort_keys=True, separators=COMPACT_JSON_SEPARATORS
    ).encode("utf-8")


@dataclass(frozen=True)
class PackedTransaction:
    signatures: tuple[str, ...]
    compression: CompressionType
    packed_trx: str

    @classmethod
    def pack(
        cls, trx: SignedTransaction, compression: "str | CompressionType" = CompressionType.NONE
    ) -> "PackedTransaction":
        mode = CompressionType.parse(compression)
        raw = canonical_bytes(trx)
        if mode is CompressionType.ZLIB:
            raw = zlib.compress(raw)
        return cls(
            signatures=tuple(trx.signatures),
            compression=mode,
            packed_trx=binascii.hexlify(raw).decode("ascii"),
        )

    def unpack(self) -> SignedTransaction:
        raw = binascii.unhexlify(self.packed_trx)
        if self.compression is CompressionType.ZLIB:
            raw = zlib.decompress(raw)
        variant = json.loads(raw.decode("utf-8"))
        variant["signatures"] = list(self.signatures)
        return SignedTransaction.from_variant(variant)

    def to_variant(self) -> dict[str, Any]:
        return {
            "signatures": list(self.signatures),
            "compression": self.compression.value,
            "packed_trx": self.packed_trx,
        }
