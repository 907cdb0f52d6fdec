"""
Statecoin Wallet - Electrum Client

Minimal Electrum protocol client over asyncio streams (newline delimited
JSON-RPC). Subscriptions are delivered as asyncio.Queue streams:

    client = ElectrumClient("127.0.0.1", 50001)
    await client.connect()
    events = await client.script_hash_subscribe(script)
    status = await events.get()              # "something changed"
    utxos = await client.get_script_hash_list_unspent(script)
    await client.script_hash_unsubscribe(script)
"""

import asyncio
import hashlib
import json
import logging
import ssl
from typing import Any, Dict, List, Optional, Tuple

from .coin_types import TxData
from .errors import ServerError

log = logging.getLogger(__name__)

CLIENT_NAME = "statecoin-wallet"
PROTOCOL_VERSION = "1.4"


def script_hash(script: bytes) -> str:
    """Electrum script hash: reversed sha256 of the output script."""
    return hashlib.sha256(bytes(script)).digest()[::-1].hex()


class ElectrumClient:
    def __init__(self, host: str, port: int, protocol: str = "tcp", timeout: int = 30):
        self.host = host
        self.port = port
        self.protocol = protocol
        self.timeout = timeout

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._id = 0
        self._pending: Dict[int, asyncio.Future] = {}
        self._script_queues: Dict[str, asyncio.Queue] = {}
        self._header_queue: Optional[asyncio.Queue] = None

    @classmethod
    def from_config(cls, electrum_config: dict, timeout: int = 30) -> "ElectrumClient":
        return cls(electrum_config["host"], int(electrum_config["port"]),
                   electrum_config.get("protocol", "tcp"), timeout)

    # ═══════════════════════════════════════════════════════════════════════
    # CONNECTION
    # ═══════════════════════════════════════════════════════════════════════

    async def connect(self) -> None:
        ssl_ctx = ssl.create_default_context() if self.protocol == "ssl" else None
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port, ssl=ssl_ctx), self.timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise ServerError(-1, f"Electrum connection to {self.host}:{self.port} failed: {e}")
        self._reader_task = asyncio.create_task(self._read_loop())
        await self._call("server.version", [CLIENT_NAME, PROTOCOL_VERSION])
        log.info(f"Connected to Electrum server {self.host}:{self.port}")

    async def close(self) -> None:
        if self._reader_task:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        if self._writer:
            self._writer.close()
            await self._writer.wait_closed()
            self._writer = None
        for fut in self._pending.values():
            if not fut.done():
                fut.set_exception(ServerError(-1, "Electrum connection closed"))
        self._pending.clear()

    async def _read_loop(self) -> None:
        while True:
            line = await self._reader.readline()
            if not line:
                log.warning("Electrum server closed the connection")
                for fut in self._pending.values():
                    if not fut.done():
                        fut.set_exception(ServerError(-1, "Electrum connection closed"))
                self._pending.clear()
                return
            try:
                msg = json.loads(line)
            except json.JSONDecodeError:
                log.error(f"Undecodable Electrum message: {line[:100]!r}")
                continue
            self._dispatch(msg)

    def _dispatch(self, msg: dict) -> None:
        if msg.get("id") is not None:
            fut = self._pending.pop(msg["id"], None)
            if fut is None or fut.done():
                return
            if msg.get("error"):
                err = msg["error"]
                code = err.get("code", -1) if isinstance(err, dict) else -1
                message = err.get("message", str(err)) if isinstance(err, dict) else str(err)
                fut.set_exception(ServerError(code, message))
            else:
                fut.set_result(msg.get("result"))
            return

        method = msg.get("method")
        params = msg.get("params") or []
        if method == "blockchain.scripthash.subscribe" and params:
            queue = self._script_queues.get(params[0])
            if queue is not None:
                queue.put_nowait(params[1] if len(params) > 1 else None)
        elif method == "blockchain.headers.subscribe" and params:
            if self._header_queue is not None:
                self._header_queue.put_nowait(params[0])

    async def _call(self, method: str, params: list = None) -> Any:
        if self._writer is None:
            raise ServerError(-1, "Electrum client not connected")
        self._id += 1
        request_id = self._id
        fut = asyncio.get_running_loop().create_future()
        self._pending[request_id] = fut
        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or []}
        try:
            self._writer.write(json.dumps(payload).encode() + b"\n")
            await self._writer.drain()
            return await asyncio.wait_for(fut, self.timeout)
        except (OSError, asyncio.TimeoutError) as e:
            raise ServerError(-1, f"Electrum call {method} failed: {e}")
        finally:
            self._pending.pop(request_id, None)

    # ═══════════════════════════════════════════════════════════════════════
    # BLOCKCHAIN METHODS
    # ═══════════════════════════════════════════════════════════════════════

    async def ping(self) -> None:
        await self._call("server.ping")

    async def script_hash_subscribe(self, script: bytes) -> asyncio.Queue:
        """
        Subscribe to status changes of an output script.

        The current status is queued immediately so the consumer checks the
        address once even if nothing changes afterwards.
        """
        sh = script_hash(script)
        queue = self._script_queues.setdefault(sh, asyncio.Queue())
        status = await self._call("blockchain.scripthash.subscribe", [sh])
        queue.put_nowait(status)
        return queue

    async def script_hash_unsubscribe(self, script: bytes) -> None:
        sh = script_hash(script)
        self._script_queues.pop(sh, None)
        await self._call("blockchain.scripthash.unsubscribe", [sh])

    async def get_script_hash_list_unspent(self, script: bytes) -> List[TxData]:
        result = await self._call("blockchain.scripthash.listunspent", [script_hash(script)])
        return [TxData.from_dict(item) for item in result or []]

    async def broadcast_transaction(self, raw_tx: str) -> str:
        """Broadcast a signed tx. Returns its txid."""
        return await self._call("blockchain.transaction.broadcast", [raw_tx])

    async def block_height_subscribe(self) -> Tuple[int, asyncio.Queue]:
        """Current tip height plus a queue of subsequent header notifications."""
        self._header_queue = asyncio.Queue()
        header = await self._call("blockchain.headers.subscribe")
        return int(header["height"]), self._header_queue

    async def get_tip_height(self) -> int:
        """Current tip height, without replacing the header notification queue."""
        header = await self._call("blockchain.headers.subscribe")
        return int(header["height"])
