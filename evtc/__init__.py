"""evtc: command line client for the evt chain and wallet services."""

__version__ = "0.3.0"

from .model import (
    Action,
    ChainInfo,
    CompressionType,
    PackedTransaction,
    SignedTransaction,
    Transaction,
    ValidationError,
)
from .tx_builder import (
    InvalidReferenceBlockError,
    TransactionError,
    TransactionOptions,
    TransactionPipeline,
)

__all__ = [
    "__version__",
    "Action",
    "ChainInfo",
    "CompressionType",
    "PackedTransaction",
    "SignedTransaction",
    "Transaction",
    "ValidationError",
    "InvalidReferenceBlockError",
    "TransactionError",
    "TransactionOptions",
    "TransactionPipeline",
]
