"""
Statecoin Wallet - State Entity Client

Async JSON client for the State Entity server and the swap conductor.

Usage:
    async with StateEntityClient("http://127.0.0.1:8000") as client:
        fees = await client.get(GET_ROUTE.FEES)
        await client.post(POST_ROUTE.WITHDRAW_INIT, withdraw_msg_1)
"""

import logging
from typing import Any, Optional

import httpx

from .errors import ProtocolViolation, ServerError

log = logging.getLogger(__name__)


def reply_field(reply: Any, *keys, what: str = "server reply") -> Any:
    """
    reply[k0][k1]... of a decoded JSON reply.

    A reply without that shape is a ProtocolViolation, never a bare
    KeyError or TypeError.
    """
    value = reply
    try:
        for key in keys:
            value = value[key]
    except (KeyError, IndexError, TypeError):
        path = "/".join(str(k) for k in keys)
        raise ProtocolViolation(f"Malformed {what}: missing {path}")
    return value


class GET_ROUTE:
    PING = "ping"
    FEES = "info/fee"
    ROOT = "info/root"
    STATECHAIN = "info/statechain"
    TRANSFER_BATCH = "info/transfer-batch"
    TRANSFER_GET_MSG_ADDR = "transfer/get_msg_addr"


class POST_ROUTE:
    # ecdsa
    KEYGEN_FIRST = "ecdsa/keygen/first"
    KEYGEN_SECOND = "ecdsa/keygen/second"
    SIGN_FIRST = "ecdsa/sign/first"
    PREPARE_SIGN = "prepare-sign"
    SIGN_SECOND = "ecdsa/sign/second"
    # info
    SMT_PROOF = "info/proof"
    # deposit
    DEPOSIT_INIT = "deposit/init"
    DEPOSIT_CONFIRM = "deposit/confirm"
    # withdraw
    WITHDRAW_INIT = "withdraw/init"
    # transfer
    TRANSFER_SENDER = "transfer/sender"
    TRANSFER_RECEIVER = "transfer/receiver"
    TRANSFER_UPDATE_MSG = "transfer/update_msg"
    TRANSFER_GET_MSG = "transfer/get_msg"
    TRANSFER_BATCH_INIT = "transfer/batch/init"
    # swap conductor
    SWAP_REGISTER_UTXO = "swap/register-utxo"
    SWAP_DEREGISTER_UTXO = "swap/deregister-utxo"
    SWAP_POLL_UTXO = "swap/poll/utxo"
    SWAP_POLL_SWAP = "swap/poll/swap"
    SWAP_INFO = "swap/info"
    SWAP_FIRST = "swap/first"
    SWAP_SECOND = "swap/second"
    SWAP_BLINDED_SPEND_SIGNATURE = "swap/blinded-spend-signature"


class StateEntityClient:
    """
    HTTP client for one State Entity endpoint.

    Every failed round (transport error, non-2xx status, undecodable body)
    is raised as ServerError; nothing is retried here.
    """

    def __init__(self, endpoint: str, timeout: int = 30, proxy: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.endpoint,
            timeout=timeout,
            proxy=proxy or None,
            transport=transport,
        )

    async def __aenter__(self) -> "StateEntityClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, f"/{path}", **kwargs)
        except httpx.HTTPError as e:
            raise ServerError(-1, f"Connection failed: {e}")

        if response.status_code >= 400:
            log.error(f"{method} {path} failed with status {response.status_code}")
            raise ServerError(response.status_code, response.text)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ServerError(response.status_code, f"Invalid JSON response: {e}")

    async def get(self, path: str, params: Any = None) -> Any:
        """GET {endpoint}/{path}[/{params}]"""
        if params is not None and not isinstance(params, dict):
            path = f"{path}/{params}"
            params = None
        log.debug(f"GET {path}")
        return await self._request("GET", path, params=params)

    async def post(self, path: str, body: Any = None) -> Any:
        log.debug(f"POST {path}")
        return await self._request("POST", path, json=body)
