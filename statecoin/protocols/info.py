"""
State Entity info API: fee schedule, SMT root/proofs, statechains.
"""

import logging
from typing import Any

from ..coin_types import FeeInfo
from ..crypto_engine import CryptoEngine
from ..errors import ProtocolViolation, ServerError
from ..http_client import GET_ROUTE, POST_ROUTE, reply_field

log = logging.getLogger(__name__)


async def ping(http_client) -> bool:
    try:
        await http_client.get(GET_ROUTE.PING)
        return True
    except ServerError:
        return False


async def get_fee_info(http_client) -> FeeInfo:
    data = await http_client.get(GET_ROUTE.FEES)
    try:
        return FeeInfo.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise ProtocolViolation(f"Malformed fee info: {e}")


async def get_root(http_client) -> dict:
    return await http_client.get(GET_ROUTE.ROOT)


async def get_smt_proof(http_client, root: dict, funding_txid: str) -> Any:
    return await http_client.post(POST_ROUTE.SMT_PROOF, {"root": root, "funding_txid": funding_txid})


async def get_statechain(http_client, statechain_id: str) -> dict:
    """{utxo: {txid, vout}, amount, chain: [{data, next_state}], locktime}"""
    return await http_client.get(GET_ROUTE.STATECHAIN, statechain_id)


async def get_transfer_batch_status(http_client, batch_id: str) -> dict:
    return await http_client.get(GET_ROUTE.TRANSFER_BATCH, batch_id)


async def verify_smt_proof(http_client, engine: CryptoEngine, funding_txid: str, proof_key: str) -> Any:
    """
    Fetch the current root and the inclusion proof of proof_key at
    funding_txid, and check it through the Crypto Engine.
    """
    root = await get_root(http_client)
    proof = await get_smt_proof(http_client, root, funding_txid)
    if not engine.verify_statechain_smt(reply_field(root, "value", what="SMT root"), proof_key, proof):
        raise ProtocolViolation(f"SMT proof verification failed for funding txid {funding_txid}")
    return proof
