"""
Transfer protocol.

Sender:
    0. Sign StateChainSig TRANSFER over the receiver's proof key
    1. transfer/sender -> x1 (ECIES encrypted to our proof key)
    2. Co-sign a new backup tx paying the receiver's backup address,
       locktime one interval below the current backup
    3. t1 = o1 * x1, encrypted to the receiver's proof key
    4. Post TransferMsg3 to the State Entity and hand it to the receiver

Receiver:
    5. Check the backup tx pays the address of the declared proof key and
       that the StateChainSig verifies against the current owner
    6. t2 = t1 * o2^-1 -> transfer/receiver
    7. (finalize) keygen with o2 -> new shared key for the same UTXO
"""

import logging
import secrets
from typing import Optional

from ecdsa import SECP256k1

from ..coin_types import StateCoin, StateCoinStatus
from ..compat import decrypt_ecies_x1, encrypt_ecies_t2
from ..crypto_engine import CryptoEngine, Protocol
from ..ecdsa import keygen, sign
from ..errors import ProtocolViolation
from ..http_client import POST_ROUTE, reply_field
from ..signing import PURPOSE_TRANSFER, StateChainSig, public_key_hex
from ..transaction import (
    encode_secp256k1_point, get_sighash, pubkey_to_btc_addr, set_witness,
    tx_backup_build, tx_locktime, tx_output_address, tx_to_hex,
)
from .info import get_fee_info, get_statechain, verify_smt_proof

log = logging.getLogger(__name__)

N = SECP256k1.order


def _secret_bytes(value) -> bytes:
    """Server/peer encrypted scalars arrive as {"secret_bytes": [...]}."""
    if isinstance(value, dict):
        value = reply_field(value, "secret_bytes", what="encrypted scalar")
    try:
        if isinstance(value, str):
            return bytes.fromhex(value)
        return bytes(value)
    except (TypeError, ValueError):
        raise ProtocolViolation("Malformed encrypted scalar.")


# ═══════════════════════════════════════════════════════════════════════════════
# SENDER
# ═══════════════════════════════════════════════════════════════════════════════

async def transfer_sender(http_client, engine: CryptoEngine, statecoin: StateCoin,
                          proof_key_priv: bytes, receiver_addr: dict,
                          batch_id: Optional[str] = None) -> dict:
    """
    Run the sender side of a transfer.

    receiver_addr is an SCEAddress dict {tx_backup_addr, proof_key}.
    Returns TransferMsg3 for the receiver.
    """
    rec_proof_key = receiver_addr["proof_key"]
    statechain_sig = StateChainSig.create(proof_key_priv, PURPOSE_TRANSFER, rec_proof_key)

    transfer_msg1 = {
        "shared_key_id": statecoin.shared_key_id,
        "statechain_sig": statechain_sig.to_dict(),
    }
    if batch_id is not None:
        transfer_msg1["batch_id"] = batch_id
    transfer_msg2 = await http_client.post(POST_ROUTE.TRANSFER_SENDER, transfer_msg1)

    x1_enc = _secret_bytes(reply_field(transfer_msg2, "x1", what="transfer sender reply"))
    x1 = int(decrypt_ecies_x1(proof_key_priv.hex(), x1_enc), 16)

    fee_info = await get_fee_info(http_client)
    locktime = tx_locktime(statecoin.tx_backup) - fee_info.interval
    tx_backup = tx_backup_build(
        statecoin.funding_txid,
        statecoin.funding_vout,
        receiver_addr["tx_backup_addr"],
        statecoin.value,
        fee_info.withdraw,
        locktime,
    )

    pub_key = statecoin.get_shared_pub_key()
    signature_hash = get_sighash(tx_backup, 0, pub_key, statecoin.value)
    tx_backup_psm = {
        "shared_key_ids": [statecoin.shared_key_id],
        "protocol": Protocol.TRANSFER.value,
        "tx_hex": tx_to_hex(tx_backup),
        "input_addrs": [pub_key],
        "input_amounts": [statecoin.value],
        "proof_key": rec_proof_key,
    }
    signature = await sign(http_client, engine, statecoin.shared_key_id, statecoin.shared_key,
                           tx_backup_psm, signature_hash, Protocol.TRANSFER)
    set_witness(tx_backup, 0, signature, pub_key)
    tx_backup_psm["tx_hex"] = tx_to_hex(tx_backup)

    o1 = int(statecoin.shared_key["private"]["x2"], 16)
    t1 = (o1 * x1) % N
    t1_enc = encrypt_ecies_t2(rec_proof_key, format(t1, "064x"))

    transfer_msg3 = {
        "shared_key_id": statecoin.shared_key_id,
        "t1": {"secret_bytes": list(t1_enc)},
        "statechain_sig": statechain_sig.to_dict(),
        "statechain_id": statecoin.statechain_id,
        "tx_backup_psm": tx_backup_psm,
        "rec_se_addr": dict(receiver_addr),
    }
    await http_client.post(POST_ROUTE.TRANSFER_UPDATE_MSG, transfer_msg3)
    log.info(f"Transfer sender done for statechain {statecoin.statechain_id}")
    return transfer_msg3


# ═══════════════════════════════════════════════════════════════════════════════
# RECEIVER
# ═══════════════════════════════════════════════════════════════════════════════

def check_transfer_destination(transfer_msg3: dict, rec_proof_key_priv: Optional[bytes]) -> str:
    """
    The backup tx must pay the address derived from the declared receiver
    proof key, and that key must be ours. Returns the backup receive address.
    """
    rec_proof_key = reply_field(transfer_msg3, "rec_se_addr", "proof_key", what="transfer message")
    tx_hex = reply_field(transfer_msg3, "tx_backup_psm", "tx_hex", what="transfer message")
    back_up_rec_addr = tx_output_address(tx_hex, 0)
    if back_up_rec_addr != pubkey_to_btc_addr(rec_proof_key):
        raise ProtocolViolation("Backup tx not sent to addr derived from receivers proof key. "
                                "Transfer not made to this wallet.")
    if rec_proof_key_priv is None or public_key_hex(rec_proof_key_priv) != rec_proof_key:
        raise ProtocolViolation("Cannot find backup receive address. Transfer not made to this wallet.")
    return back_up_rec_addr


async def transfer_receiver(http_client, transfer_msg3: dict, rec_proof_key_priv: Optional[bytes],
                            batch_data: Optional[dict] = None) -> dict:
    """Run the receiver side. Returns the data needed by transfer_receiver_finalize."""
    check_transfer_destination(transfer_msg3, rec_proof_key_priv)

    statechain_id = reply_field(transfer_msg3, "statechain_id", what="transfer message")
    statechain_sig = StateChainSig.from_dict(transfer_msg3.get("statechain_sig"))
    statechain_data = await get_statechain(http_client, statechain_id)
    prev_owner_proof_key = reply_field(statechain_data, "chain", -1, "data", what="statechain")
    if not statechain_sig.verify(prev_owner_proof_key):
        raise ProtocolViolation("StateChain signature does not verify against the current owner's proof key.")

    t1_enc = _secret_bytes(reply_field(transfer_msg3, "t1", what="transfer message"))
    t1 = int(decrypt_ecies_x1(rec_proof_key_priv.hex(), t1_enc), 16)

    o2 = secrets.randbelow(N - 1) + 1
    t2 = (t1 * pow(o2, -1, N)) % N
    o2_pub = public_key_hex(o2.to_bytes(32, "big"))

    transfer_msg4 = {
        "shared_key_id": reply_field(transfer_msg3, "shared_key_id", what="transfer message"),
        "statechain_id": statechain_id,
        "t2": format(t2, "064x"),
        "statechain_sig": transfer_msg3["statechain_sig"],
        "o2_pub": encode_secp256k1_point(o2_pub),
        "tx_backup_hex": transfer_msg3["tx_backup_psm"]["tx_hex"],
        "batch_data": batch_data,
    }
    transfer_msg5 = await http_client.post(POST_ROUTE.TRANSFER_RECEIVER, transfer_msg4)

    return {
        "new_shared_key_id": reply_field(transfer_msg5, "new_shared_key_id", what="transfer receiver reply"),
        "o2": format(o2, "064x"),
        "s2_pub": reply_field(transfer_msg5, "s2_pub", what="transfer receiver reply"),
        "theta": transfer_msg5.get("theta"),
        "state_chain_data": statechain_data,
        "proof_key": transfer_msg3["rec_se_addr"]["proof_key"],
        "statechain_id": statechain_id,
        "tx_backup_psm": transfer_msg3["tx_backup_psm"],
    }


async def transfer_receiver_finalize(http_client, engine: CryptoEngine, finalize_data: dict) -> StateCoin:
    """Generate the new shared key and build the received coin (AVAILABLE)."""
    new_shared_key_id = finalize_data["new_shared_key_id"]
    shared_key = await keygen(http_client, engine, new_shared_key_id, Protocol.TRANSFER,
                              secret_key=finalize_data["o2"])

    state_chain_data = finalize_data["state_chain_data"]
    statecoin = StateCoin(shared_key_id=new_shared_key_id, shared_key=shared_key)
    statecoin.proof_key = finalize_data["proof_key"]
    statecoin.statechain_id = finalize_data["statechain_id"]
    statecoin.value = int(reply_field(state_chain_data, "amount", what="statechain"))
    statecoin.funding_txid = reply_field(state_chain_data, "utxo", "txid", what="statechain")
    statecoin.funding_vout = int(reply_field(state_chain_data, "utxo", "vout", what="statechain"))
    statecoin.tx_backup = finalize_data["tx_backup_psm"]["tx_hex"]
    statecoin.smt_proof = await verify_smt_proof(http_client, engine, statecoin.funding_txid,
                                                 statecoin.proof_key)
    statecoin.status = StateCoinStatus.AVAILABLE
    log.info(f"Transfer finalized. New shared key id: {new_shared_key_id}")
    return statecoin
