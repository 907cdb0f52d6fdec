"""
Statecoin Wallet - Two-Party ECDSA Rounds

keygen(): 2 round trips to create a shared key with the State Entity.
sign():   prepare-sign plus 2 round trips to co-sign a signature hash.
"""

import logging
from typing import Optional

from .crypto_engine import CryptoEngine, Protocol
from .errors import ProtocolViolation
from .http_client import POST_ROUTE, reply_field

log = logging.getLogger(__name__)


async def keygen(http_client, engine: CryptoEngine, shared_key_id: str,
                 protocol: Protocol, secret_key: Optional[str] = None) -> dict:
    """Run two-party key generation for shared_key_id. Returns the client's shared key."""
    key_gen_msg1 = {"shared_key_id": shared_key_id, "protocol": protocol.value}
    server_resp_key_gen_first = await http_client.post(POST_ROUTE.KEYGEN_FIRST, key_gen_msg1)
    kg_party_one_first_message = reply_field(
        server_resp_key_gen_first, 1 if isinstance(server_resp_key_gen_first, list) else "msg",
        what="keygen first message")

    client_resp_key_gen_first = engine.keygen_first_message(secret_key)

    key_gen_msg2 = {
        "shared_key_id": shared_key_id,
        "dlog_proof": client_resp_key_gen_first["kg_party_two_first_message"]["d_log_proof"],
    }
    kg_party_one_second_message = await http_client.post(POST_ROUTE.KEYGEN_SECOND, key_gen_msg2)

    key_gen_second = engine.keygen_second_message(kg_party_one_first_message, kg_party_one_second_message)

    public_share = reply_field(kg_party_one_second_message, "ecdh_second_message", "comm_witness",
                               "public_share", what="keygen second message")

    shared_key = engine.set_master_key(
        client_resp_key_gen_first["kg_ec_key_pair_party2"],
        public_share,
        key_gen_second["party_two_paillier"],
    )
    log.debug(f"Keygen complete for {shared_key_id}")
    return shared_key


async def sign(http_client, engine: CryptoEngine, shared_key_id: str, shared_key: dict,
               prepare_sign_msg: dict, signature_hash: str, protocol: Protocol) -> bytes:
    """
    Co-sign `signature_hash` (hex) with the State Entity.

    Returns the DER encoded signature with the sighash type byte appended.
    """
    await http_client.post(POST_ROUTE.PREPARE_SIGN, prepare_sign_msg)

    client_sign_first = engine.sign_first_message()
    sign_msg1 = {
        "shared_key_id": shared_key_id,
        "eph_key_gen_first_message_party_two": client_sign_first["eph_key_gen_first_message_party_two"],
    }
    server_sign_first = await http_client.post(POST_ROUTE.SIGN_FIRST, sign_msg1)

    party_two_sign_message = engine.sign_second_message(
        shared_key,
        signature_hash,
        client_sign_first["eph_comm_witness"],
        client_sign_first["eph_ec_key_pair_party2"],
        server_sign_first,
    )
    sign_msg2 = {
        "shared_key_id": shared_key_id,
        "sign_second_msg_request": {
            "protocol": protocol.value,
            "message": signature_hash,
            "party_two_sign_message": party_two_sign_message,
        },
    }
    witness = await http_client.post(POST_ROUTE.SIGN_SECOND, sign_msg2)
    # Server returns the witness stack [signature, public key]
    signature = witness
    if isinstance(witness, list) and witness and isinstance(witness[0], (list, str)):
        signature = witness[0]
    if isinstance(signature, list):
        return bytes(signature)
    if isinstance(signature, str):
        return bytes.fromhex(signature)
    raise ProtocolViolation("Malformed signature from server.")
