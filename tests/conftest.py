import hashlib

import pytest

from evtc.rpc_client import RPCConnectionError, RPCError

ALICE_KEY = "EVT8MGU4aKiVzqMtWi9zLpu5KuTBBg8WGFvQuyeL6MnbK8yAAqzxv"
BOB_KEY = "EVT6Qz3wuRjyN6gaU3P3XRxpz5UGGfg3ZzTsrUHpc7x5HHUJJ6vmm"
CHAIN_ID = "bb248d6319e51ad38502cc8ef8fe607eb5ad2cd0be2bdc0e6e30a506761b8636"
HEAD_BLOCK_TIME = "2018-06-01T12:00:00.500"


def make_block_id(block_num: int, salt: str = "main") -> str:
    digest = hashlib.sha256(f"{salt}:{block_num}".encode()).hexdigest()
    return f"{block_num:08x}{digest[8:]}"


class StubChain:
    """Records chain calls into a shared log and answers from canned data."""

    def __init__(self, log: list, *, chain_id: str | None = CHAIN_ID, lib: int = 100) -> None:
        self.log = log
        self.chain_id = chain_id
        self.lib = lib
        self.pushed: list = []
        self.unknown_blocks: set = set()

    def get_info(self):
        self.log.append(("chain", "get_info"))
        return {
            "server_version": "a1b2c3",
            "chain_id": self.chain_id,
            "head_block_num": self.lib + 20,
            "head_block_id": make_block_id(self.lib + 20),
            "head_block_time": HEAD_BLOCK_TIME,
            "last_irreversible_block_num": self.lib,
        }

    def get_block(self, block_num_or_id):
        self.log.append(("chain", "get_block", block_num_or_id))
        if block_num_or_id in self.unknown_blocks:
            raise RPCError("chain", 3100002, "Unknown block", name="unknown_block_exception")
        if isinstance(block_num_or_id, str) and len(block_num_or_id) == 64:
            return {"id": block_num_or_id, "block_num": int(block_num_or_id[:8], 16)}
        return {"id": make_block_id(int(block_num_or_id)), "block_num": int(block_num_or_id)}

    def get_required_keys(self, transaction, available_keys):
        self.log.append(("chain", "get_required_keys"))
        return {"required_keys": [available_keys[0]]}

    def push_transaction(self, packed):
        self.log.append(("chain", "push_transaction"))
        self.pushed.append(packed)
        return {"transaction_id": "f00d", "processed": {"receipt": {"status": "executed"}}}

    def push_transactions(self, packed):
        self.log.append(("chain", "push_transactions"))
        self.pushed.extend(packed)
        return [{"transaction_id": f"f00d{index}"} for index, _ in enumerate(packed)]


class StubWallet:
    def __init__(self, log: list, *, reachable: bool = True) -> None:
        self.log = log
        self.reachable = reachable
        self.sign_requests: list = []

    def get_public_keys(self):
        self.log.append(("wallet", "get_public_keys"))
        if not self.reachable:
            raise RPCConnectionError("wallet", "http://127.0.0.1:9999", "Connection refused")
        return [ALICE_KEY, BOB_KEY]

    def sign_transaction(self, transaction, required_keys, chain_id):
        self.log.append(("wallet", "sign_transaction"))
        self.sign_requests.append((transaction, list(required_keys), chain_id))
        signed = dict(transaction)
        signed["signatures"] = [f"SIG_K1_{key[3:15]}" for key in required_keys]
        return signed


@pytest.fixture
def call_log() -> list:
    return []


@pytest.fixture
def stub_chain(call_log) -> StubChain:
    return StubChain(call_log)


@pytest.fixture
def stub_wallet(call_log) -> StubWallet:
    return StubWallet(call_log)
