"""Transaction construction, remote signing and dispatch for evtc."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Sequence

from .model import (
    Action,
    ChainInfo,
    CompressionType,
    PackedTransaction,
    SignedTransaction,
    Transaction,
    ValidationError,
)
from .rpc_client import ChainAPI, RPCError, WalletAPI

logger = logging.getLogger(__name__)

DEFAULT_EXPIRATION_SECONDS = 30


class TransactionError(RuntimeError):
    """Raised when the pipeline cannot produce a valid transaction."""


class InvalidReferenceBlockError(TransactionError):
    """Raised when the TAPOS reference block cannot be resolved."""

    def __init__(self, block_num_or_id: int | str) -> None:
        super().__init__(f"Invalid reference block num or id: {block_num_or_id}")
        self.block_num_or_id = block_num_or_id


@dataclass(frozen=True)
class TransactionOptions:
    """Per-invocation switches for one pass through the pipeline."""

    expiration: timedelta = timedelta(seconds=DEFAULT_EXPIRATION_SECONDS)
    ref_block: int | str | None = None
    skip_sign: bool = False
    dont_broadcast: bool = False
    compression: CompressionType = CompressionType.NONE

    @classmethod
    def from_args(
        cls,
        *,
        expiration: float | None = None,
        ref_block: str | None = None,
        skip_sign: bool = False,
        dont_broadcast: bool = False,
        compression: str | None = None,
    ) -> "TransactionOptions":
        seconds = int(expiration if expiration is not None else DEFAULT_EXPIRATION_SECONDS)
        if seconds <= 0:
            raise ValidationError(f"Expiration must be at least one second: {expiration}")
        return cls(
            expiration=timedelta(seconds=seconds),
            ref_block=ref_block or None,
            skip_sign=skip_sign,
            dont_broadcast=dont_broadcast,
            compression=CompressionType.parse(compression or CompressionType.NONE),
        )


class TransactionAssembler:
    """Bind draft transactions to the chain's current state."""

    def __init__(self, chain: ChainAPI) -> None:
        self.chain = chain

    def resolve_reference_block(self, block_num_or_id: int | str) -> str:
        """Return the canonical id of the block at *block_num_or_id*."""

        try:
            block = self.chain.get_block(block_num_or_id)
        except RPCError as exc:
            logger.debug("Reference block lookup failed: %s", exc)
            raise InvalidReferenceBlockError(block_num_or_id) from exc
        block_id = block.get("id") if isinstance(block, dict) else None
        if not block_id:
            raise InvalidReferenceBlockError(block_num_or_id)
        return str(block_id)

    def bind(
        self,
        draft: Transaction,
        chain_info: ChainInfo,
        *,
        expiration: timedelta = timedelta(seconds=DEFAULT_EXPIRATION_SECONDS),
        ref_block: int | str | None = None,
    ) -> Transaction:
        """Set expiration and TAPOS reference on *draft*.

        The reference defaults to the last irreversible block. Either way the
        block is looked up so the reference encodes the canonical block id.
        """

        target = ref_block if ref_block is not None else chain_info.last_irreversible_block_num
        ref_block_id = self.resolve_reference_block(target)
        try:
            bound = draft.bind(chain_info.head_block_time + expiration, ref_block_id)
        except ValidationError as exc:
            raise InvalidReferenceBlockError(target) from exc
        logger.debug(
            "Bound transaction: expiration=%s ref_block_num=%s ref_block_prefix=%s",
            bound.expiration,
            bound.ref_block_num,
            bound.ref_block_prefix,
        )
        return bound


class KeyResolver:
    """Work out which wallet keys must sign a transaction."""

    def __init__(self, chain: ChainAPI, wallet: WalletAPI) -> None:
        self.chain = chain
        self.wallet = wallet

    def resolve(self, trx: Transaction) -> List[str]:
        available_keys = self.wallet.get_public_keys()
        logger.debug("Wallet reports %d unlocked public keys", len(available_keys))
        result = self.chain.get_required_keys(Transaction.to_variant(trx), available_keys)
        if not isinstance(result, dict) or "required_keys" not in result:
            raise TransactionError("Chain returned no required_keys for the transaction")
        return list(result["required_keys"])


class RemoteSigner:
    """Ask the wallet service to sign a transaction for the given keys."""

    def __init__(self, wallet: WalletAPI) -> None:
        self.wallet = wallet

    def sign(
        self, trx: Transaction, required_keys: Sequence[str], chain_id: str | None
    ) -> SignedTransaction:
        if not chain_id:
            raise TransactionError("Chain did not report a chain_id; refusing to sign")
        signed = self.wallet.sign_transaction(Transaction.to_variant(trx), required_keys, chain_id)
        try:
            return SignedTransaction.from_variant(signed)
        except ValidationError as exc:
            raise TransactionError(f"Wallet returned a malformed signed transaction: {exc}") from exc


class TransactionPipeline:
    """Drive a transaction from draft to broadcast (or printout).

    Calls are strictly sequential: chain info, reference block, wallet keys,
    required keys, wallet signature, push. ``skip_sign`` removes every wallet
    call and ``dont_broadcast`` removes the push.
    """

    def __init__(self, chain: ChainAPI, wallet: WalletAPI) -> None:
        self.chain = chain
        self.wallet = wallet
        self.assembler = TransactionAssembler(chain)
        self.key_resolver = KeyResolver(chain, wallet)
        self.signer = RemoteSigner(wallet)

    def get_info(self) -> ChainInfo:
        try:
            return ChainInfo.from_variant(self.chain.get_info())
        except ValidationError as exc:
            raise TransactionError(f"Chain returned malformed chain info: {exc}") from exc

    def sign(self, trx: Transaction, chain_id: str | None) -> SignedTransaction:
        required_keys = self.key_resolver.resolve(trx)
        logger.info("Signing transaction with %d required keys", len(required_keys))
        return self.signer.sign(trx, required_keys, chain_id)

    def push_transaction(
        self, trx: Transaction, options: TransactionOptions | None = None
    ) -> Dict[str, Any]:
        options = options or TransactionOptions()
        info = self.get_info()
        bound = self.assembler.bind(
            trx, info, expiration=options.expiration, ref_block=options.ref_block
        )

        if options.skip_sign:
            final = SignedTransaction.unsigned(bound)
        else:
            final = self.sign(bound, info.chain_id)

        if options.dont_broadcast:
            return final.to_variant()
        return self.broadcast(final, options.compression)

    def push_actions(
        self, actions: Iterable[Action], options: TransactionOptions | None = None
    ) -> Dict[str, Any]:
        draft = Transaction.draft(actions)
        if not draft.actions:
            raise ValidationError("A transaction needs at least one action")
        return self.push_transaction(draft, options)

    def broadcast(
        self,
        trx: SignedTransaction,
        compression: CompressionType = CompressionType.NONE,
    ) -> Dict[str, Any]:
        packed = PackedTransaction.pack(trx, compression)
        result = self.chain.push_transaction(packed.to_variant())
        logger.info("Broadcasted transaction %s", _transaction_id(result))
        return result

    def sign_existing(
        self,
        trx_variant: Dict[str, Any],
        *,
        push: bool = False,
        compression: CompressionType = CompressionType.NONE,
    ) -> Dict[str, Any]:
        """Sign a caller-supplied transaction as-is, without re-binding it.

        With ``push`` the merged transaction is broadcast, packed with
        ``compression`` (uncompressed unless asked otherwise).
        """

        trx = SignedTransaction.from_variant(trx_variant)
        if not trx.is_bound:
            raise ValidationError("Transaction has no expiration; it must be bound before signing")
        info = self.get_info()
        signed = self.sign(trx, info.chain_id)
        merged = replace(trx, signatures=trx.signatures + signed.signatures)
        if push:
            return self.broadcast(merged, compression)
        return merged.to_variant()

    def push_raw(self, trx_variant: Dict[str, Any]) -> Dict[str, Any]:
        return self.broadcast(SignedTransaction.from_variant(trx_variant))

    def push_raw_many(self, trx_variants: Sequence[Dict[str, Any]]) -> Any:
        if not isinstance(trx_variants, list):
            raise ValidationError("Expected a JSON array of transactions")
        packed = [
            PackedTransaction.pack(SignedTransaction.from_variant(item)).to_variant()
            for item in trx_variants
        ]
        return self.chain.push_transactions(packed)


def _transaction_id(result: Any) -> str:
    if isinstance(result, dict):
        return str(result.get("transaction_id", "<unknown>"))
    return "<unknown>"
