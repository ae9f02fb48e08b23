import json

import pytest
import requests

from evtc.rpc_client import (
    CHAIN_SERVICE,
    WALLET_SERVICE,
    ChainAPI,
    RPCClient,
    RPCConnectionError,
    RPCError,
    RPCTransportError,
    WalletAPI,
)


class StubResponse:
    def __init__(self, status_code: int, body) -> None:
        self.status_code = status_code
        self._body = body
        self.url = "http://stub"

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    @property
    def text(self) -> str:
        return self._body if isinstance(self._body, str) else json.dumps(self._body)

    def json(self):
        if isinstance(self._body, str):
            raise ValueError("not json")
        return self._body


class StubSession:
    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.requests: list = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.requests.append({"url": url, "data": data, "timeout": timeout})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_call_posts_json_payload_with_timeout() -> None:
    session = StubSession(StubResponse(200, {"id": "abc"}))
    client = RPCClient(CHAIN_SERVICE, "http://127.0.0.1:8888/", timeout=4.5, session=session)

    result = client.call("/v1/chain/get_block", {"block_num_or_id": 5})

    assert result == {"id": "abc"}
    request = session.requests[0]
    assert request["url"] == "http://127.0.0.1:8888/v1/chain/get_block"
    assert json.loads(request["data"]) == {"block_num_or_id": 5}
    assert request["timeout"] == 4.5


def test_transport_failure_is_tagged_with_service() -> None:
    session = StubSession(requests.ConnectionError("Connection refused"))
    client = RPCClient(WALLET_SERVICE, "http://127.0.0.1:9999", session=session)

    with pytest.raises(RPCConnectionError) as excinfo:
        client.call("/v1/wallet/get_public_keys")

    assert excinfo.value.service == "wallet"
    assert isinstance(excinfo.value, ConnectionError)
    assert "is evtwd running?" in str(excinfo.value)


def test_timeout_is_a_connection_error() -> None:
    session = StubSession(requests.Timeout("read timed out"))
    client = RPCClient(CHAIN_SERVICE, "http://127.0.0.1:8888", session=session)

    with pytest.raises(RPCConnectionError) as excinfo:
        client.call("/v1/chain/get_info")

    assert "is evtd running?" in str(excinfo.value)


def test_application_error_keeps_structured_body() -> None:
    body = {
        "code": 500,
        "message": "Internal Service Error",
        "error": {
            "code": 3040005,
            "name": "expired_tx_exception",
            "what": "Expired Transaction",
            "details": [{"message": "expired transaction 1234"}],
        },
    }
    client = RPCClient(CHAIN_SERVICE, "http://chain", session=StubSession(StubResponse(500, body)))

    with pytest.raises(RPCError) as excinfo:
        client.call("/v1/chain/push_transaction", {})

    error = excinfo.value
    assert error.service == "chain"
    assert error.code == 3040005
    assert error.name == "expired_tx_exception"
    assert error.message == "Expired Transaction: expired transaction 1234"
    assert error.details == body


def test_malformed_json_is_a_transport_error() -> None:
    client = RPCClient(CHAIN_SERVICE, "http://chain", session=StubSession(StubResponse(502, "<html>")))

    with pytest.raises(RPCTransportError) as excinfo:
        client.call("/v1/chain/get_info")

    assert excinfo.value.status_code == 502


def test_idempotent_reads_retry_connection_failures() -> None:
    session = StubSession(
        requests.ConnectionError("refused"),
        requests.ConnectionError("refused"),
        StubResponse(200, {"head_block_num": 1}),
    )
    chain = ChainAPI(RPCClient(CHAIN_SERVICE, "http://chain", session=session), read_retries=2, retry_delay=0)

    assert chain.get_info() == {"head_block_num": 1}
    assert len(session.requests) == 3


def test_reads_give_up_after_retry_budget() -> None:
    session = StubSession(requests.ConnectionError("refused"), requests.ConnectionError("refused"))
    chain = ChainAPI(RPCClient(CHAIN_SERVICE, "http://chain", session=session), read_retries=1, retry_delay=0)

    with pytest.raises(RPCConnectionError):
        chain.get_block(10)
    assert len(session.requests) == 2


def test_push_transaction_is_never_retried() -> None:
    session = StubSession(requests.ConnectionError("refused"), StubResponse(200, {}))
    chain = ChainAPI(RPCClient(CHAIN_SERVICE, "http://chain", session=session), read_retries=3, retry_delay=0)

    with pytest.raises(RPCConnectionError):
        chain.push_transaction({"packed_trx": "00"})
    assert len(session.requests) == 1


def test_application_errors_are_not_retried() -> None:
    session = StubSession(StubResponse(500, {"code": 500, "message": "boom"}), StubResponse(200, {}))
    chain = ChainAPI(RPCClient(CHAIN_SERVICE, "http://chain", session=session), read_retries=3, retry_delay=0)

    with pytest.raises(RPCError):
        chain.get_block(10)
    assert len(session.requests) == 1


def test_required_keys_and_sign_payload_shapes() -> None:
    session = StubSession(
        StubResponse(200, {"required_keys": ["EVTkey"]}),
        StubResponse(200, {"signatures": ["SIG_K1_x"]}),
    )
    chain = ChainAPI(RPCClient(CHAIN_SERVICE, "http://chain", session=session))
    wallet = WalletAPI(RPCClient(WALLET_SERVICE, "http://wallet", session=session))

    chain.get_required_keys({"actions": []}, ("EVTkey", "EVTother"))
    wallet.sign_transaction({"actions": []}, ["EVTkey"], "c0ffee")

    assert json.loads(session.requests[0]["data"]) == {
        "transaction": {"actions": []},
        "available_keys": ["EVTkey", "EVTother"],
    }
    assert session.requests[1]["url"] == "http://wallet/v1/wallet/sign_transaction"
    assert json.loads(session.requests[1]["data"]) == [{"actions": []}, ["EVTkey"], "c0ffee"]


def test_non_numeric_error_code_falls_back_to_http_status() -> None:
    body = {"error": {"code": "abc", "what": "boom"}}
    client = RPCClient(CHAIN_SERVICE, "http://chain", session=StubSession(StubResponse(500, body)))

    with pytest.raises(RPCError) as excinfo:
        client.call("/v1/chain/get_info")

    assert excinfo.value.code == 500
    assert excinfo.value.message == "boom"
