"""HTTP RPC clients for the evtd chain service and the evtwd wallet service."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional, Sequence

import requests
from requests import RequestException, Response

from .config import ClientConfig

logger = logging.getLogger(__name__)

CHAIN_SERVICE = "chain"
WALLET_SERVICE = "wallet"

SERVICE_DAEMONS = {CHAIN_SERVICE: "evtd", WALLET_SERVICE: "evtwd"}


class RPCError(RuntimeError):
    """Raised when a service answers with a structured application error."""

    def __init__(
        self,
        service: str,
        code: int,
        message: str,
        *,
        name: str | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(f"{SERVICE_DAEMONS.get(service, service)} error {code}: {message}")
        self.service = service
        self.code = code
        self.message = message
        self.name = name
        self.details = details

    @classmethod
    def from_response_body(cls, service: str, status_code: int, body: Dict[str, Any]) -> "RPCError":
        """Build an error from an ``{"code", "message", "error": {...}}`` body."""

        error = body.get("error") if isinstance(body.get("error"), dict) else {}
        code = error.get("code", body.get("code", status_code))
        message = error.get("what") or body.get("message") or "unknown error"
        detail_messages = [
            str(item.get("message"))
            for item in error.get("details") or []
            if isinstance(item, dict) and item.get("message")
        ]
        if detail_messages:
            message = f"{message}: {detail_messages[0]}"
        try:
            code = int(code)
        except (TypeError, ValueError):
            code = status_code
        return cls(service, code, message, name=error.get("name"), details=body)


class RPCConnectionError(ConnectionError):
    """Raised when a service cannot be reached at all."""

    def __init__(self, service: str, url: str, reason: str | None = None) -> None:
        daemon = SERVICE_DAEMONS.get(service, service)
        super().__init__(f"Failed to connect to {daemon} at {url}; is {daemon} running?")
        self.service = service
        self.url = url
        self.reason = reason


class RPCTransportError(RuntimeError):
    """Raised when a service responds with something that is not JSON."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RPCClient:
    """Thin JSON-over-HTTP client bound to one service.

    ``call`` posts the payload to ``<base_url>/v1/<api>/<function>`` and
    returns the decoded body. Transport failures surface as
    :class:`RPCConnectionError` tagged with the service name so callers can
    tell the chain and wallet apart; nothing is retried here.
    """

    def __init__(
        self,
        service: str,
        base_url: str,
        *,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.service = service
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def call(self, path: str, payload: Any = None) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug("RPC call %s %s payload=%s", self.service, path, payload)
        try:
            response = self._session.post(
                url,
                data=json.dumps(payload) if payload is not None else None,
                headers={"content-type": "application/json"},
                timeout=self.timeout,
            )
        except RequestException as exc:
            logger.error(
                "RPC connection to %s failed: %s",
                url,
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise RPCConnectionError(self.service, self.base_url, str(exc)) from exc
        return self._decode(response)

    def _decode(self, response: Response) -> Any:
        try:
            body = response.json()
        except ValueError as exc:
            logger.debug("RPC JSON parse error: %s", response.text, exc_info=True)
            raise RPCTransportError(
                f"{SERVICE_DAEMONS.get(self.service, self.service)} returned malformed JSON (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from exc
        if not response.ok:
            logger.error("RPC HTTP error %s from %s", response.status_code, response.url)
            logger.debug("RPC error body: %s", body)
            if isinstance(body, dict):
                raise RPCError.from_response_body(self.service, response.status_code, body)
            raise RPCError(self.service, response.status_code, str(body), details=body)
        return body


class ChainAPI:
    """Typed wrappers for the chain service endpoints.

    ``get_info`` and ``get_block`` are idempotent reads and are retried on
    connection failures up to ``read_retries`` extra times. Every other call
    is made exactly once.
    """

    def __init__(self, client: RPCClient, *, read_retries: int = 0, retry_delay: float = 0.5) -> None:
        self.client = client
        self.read_retries = read_retries
        self.retry_delay = retry_delay

    @classmethod
    def from_config(cls, config: ClientConfig, session: requests.Session | None = None) -> "ChainAPI":
        client = RPCClient(CHAIN_SERVICE, config.chain_url, timeout=config.timeout, session=session)
        return cls(client, read_retries=config.read_retries)

    def _read(self, path: str, payload: Any = None) -> Any:
        attempt = 0
        while True:
            try:
                return self.client.call(path, payload)
            except RPCConnectionError:
                if attempt >= self.read_retries:
                    raise
                attempt += 1
                logger.warning(
                    "Retrying %s after connection failure (%d/%d)", path, attempt, self.read_retries
                )
                time.sleep(self.retry_delay * attempt)

    def get_info(self) -> Dict[str, Any]:
        return self._read("/v1/chain/get_info")

    def get_block(self, block_num_or_id: int | str) -> Dict[str, Any]:
        return self._read("/v1/chain/get_block", {"block_num_or_id": block_num_or_id})

    def get_required_keys(
        self, transaction: Dict[str, Any], available_keys: Sequence[str]
    ) -> Dict[str, Any]:
        return self.client.call(
            "/v1/chain/get_required_keys",
            {"transaction": transaction, "available_keys": list(available_keys)},
        )

    def push_transaction(self, packed: Dict[str, Any]) -> Dict[str, Any]:
        return self.client.call("/v1/chain/push_transaction", packed)

    def push_transactions(self, packed: Sequence[Dict[str, Any]]) -> Any:
        return self.client.call("/v1/chain/push_transactions", list(packed))

    def get_transaction(self, transaction_id: str) -> Dict[str, Any]:
        return self.client.call("/v1/chain/get_transaction", {"transaction_id": transaction_id})

    def get_transactions(
        self,
        account_name: str,
        skip_seq: Optional[int] = None,
        num_seq: Optional[int] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"account_name": account_name}
        if skip_seq is not None:
            payload["skip_seq"] = skip_seq
            if num_seq is not None:
                payload["num_seq"] = num_seq
        return self.client.call("/v1/chain/get_transactions", payload)

    def get_domain(self, name: str) -> Dict[str, Any]:
        return self.client.call("/v1/evt/get_domain", {"name": name})

    def get_token(self, domain: str, name: str) -> Dict[str, Any]:
        return self.client.call("/v1/evt/get_token", {"domain": domain, "name": name})

    def get_group(self, name: str) -> Dict[str, Any]:
        return self.client.call("/v1/evt/get_group", {"name": name})

    def get_account(self, name: str) -> Dict[str, Any]:
        return self.client.call("/v1/evt/get_account", {"name": name})

    # Peer network ---------------------------------------------------------

    def net_connect(self, host: str) -> Any:
        return self.client.call("/v1/net/connect", host)

    def net_disconnect(self, host: str) -> Any:
        return self.client.call("/v1/net/disconnect", host)

    def net_status(self, host: str) -> Any:
        return self.client.call("/v1/net/status", host)

    def net_connections(self) -> Any:
        return self.client.call("/v1/net/connections")


class WalletAPI:
    """Typed wrappers for the wallet service endpoints."""

    def __init__(self, client: RPCClient) -> None:
        self.client = client

    @classmethod
    def from_config(cls, config: ClientConfig, session: requests.Session | None = None) -> "WalletAPI":
        return cls(RPCClient(WALLET_SERVICE, config.wallet_url, timeout=config.timeout, session=session))

    def get_public_keys(self) -> list[str]:
        return list(self.client.call("/v1/wallet/get_public_keys") or [])

    def sign_transaction(
        self, transaction: Dict[str, Any], required_keys: Sequence[str], chain_id: str
    ) -> Dict[str, Any]:
        return self.client.call(
            "/v1/wallet/sign_transaction", [transaction, list(required_keys), chain_id]
        )

    def create(self, name: str) -> Any:
        return self.client.call("/v1/wallet/create", name)

    def open(self, name: str) -> Any:
        return self.client.call("/v1/wallet/open", name)

    def lock(self, name: str) -> Any:
        return self.client.call("/v1/wallet/lock", name)

    def lock_all(self) -> Any:
        return self.client.call("/v1/wallet/lock_all")

    def unlock(self, name: str, password: str) -> Any:
        return self.client.call("/v1/wallet/unlock", [name, password])

    def import_key(self, name: str, private_key: str) -> Any:
        return self.client.call("/v1/wallet/import_key", [name, private_key])

    def list_wallets(self) -> list[str]:
        return self.client.call("/v1/wallet/list_wallets")

    def list_keys(self) -> Any:
        return self.client.call("/v1/wallet/list_keys")
