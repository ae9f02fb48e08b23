"""Classify pipeline failures and render them for the command line."""

from __future__ import annotations

import json
from enum import Enum

from .config import ConfigurationError
from .model import ValidationError
from .rpc_client import RPCConnectionError, RPCError, RPCTransportError
from .tx_builder import InvalidReferenceBlockError, TransactionError


class ErrorKind(str, Enum):
    CONNECTION = "connection"
    APPLICATION = "application"
    LOCAL = "local"
    UNKNOWN = "unknown"


def classify_error(exc: BaseException) -> ErrorKind:
    if isinstance(exc, RPCConnectionError):
        return ErrorKind.CONNECTION
    if isinstance(exc, (RPCError, RPCTransportError, TransactionError)):
        return ErrorKind.APPLICATION
    if isinstance(exc, (ValidationError, ConfigurationError)):
        return ErrorKind.LOCAL
    return ErrorKind.UNKNOWN


def format_rpc_hint(exc: BaseException) -> str | None:
    """Return a short remediation hint for well-known failures, if any."""

    if isinstance(exc, RPCConnectionError):
        flag = "--wallet-url" if exc.service == "wallet" else "--url"
        return f"Start the service or point {flag} at the right address."
    if isinstance(exc, InvalidReferenceBlockError):
        return "Pass a recent block number or id with --ref-block, or omit it to use the last irreversible block."
    if not isinstance(exc, RPCError):
        return None

    name = (exc.name or "").lower()
    message = exc.message.lower()
    if "locked" in name or "wallet is locked" in message:
        return "Unlock the wallet with 'evtc wallet unlock' and retry."
    if "expired" in name or "expired transaction" in message:
        return "The transaction expired before it was applied; retry or raise --expiration."
    if "tx_missing_sigs" in name or "missing_sigs" in name or "unsatisfied" in message:
        return (
            "The unlocked wallet keys do not satisfy the required permissions. Import or unlock "
            "the right keys, or inspect the domain/group permissions."
        )
    if "unknown_block" in name or ("block" in name and "not" in message):
        return "The referenced block is unknown to the chain; check --ref-block."
    if "nonexistent" in name or "unknown" in name:
        return "Check that the referenced domain, token, group or account exists."
    return None


def describe_error(exc: BaseException, *, verbose: bool = False) -> str:
    """Render *exc* as the text printed after ``error:``.

    Connection failures get the "is it running?" text and a hint naming the
    URL flag. Application errors get a remediation hint when one is known and,
    with *verbose*, the service's structured error body. Local input errors
    are printed as-is.
    """

    kind = classify_error(exc)
    text = str(exc)
    if kind is ErrorKind.LOCAL:
        return text
    hint = format_rpc_hint(exc)
    if hint:
        text = f"{text}\nHint: {hint}"
    if not verbose:
        return text
    if kind is ErrorKind.CONNECTION and getattr(exc, "reason", None):
        text = f"{text}\nconnect error: {exc.reason}"
    elif isinstance(exc, RPCError) and exc.details is not None:
        text = f"{text}\n{json.dumps(exc.details, indent=2, sort_keys=True)}"
    elif exc.__cause__ is not None:
        text = f"{text}\ncaused by: {exc.__cause__}"
    return text
