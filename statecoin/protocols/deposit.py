"""
Deposit protocol.

deposit_init():
    0. Send proof key to the State Entity, receive shared_key_id
    1. Two-party keygen -> shared key, P_addr to fund
deposit_confirm() (once the funding tx is mined):
    2. Build and co-sign the time-locked backup tx to the proof key address
    3. Confirm with the State Entity, receive statechain_id
    4. Verify SMT inclusion of the proof key
"""

import logging

from ..coin_types import StateCoin, StateCoinStatus
from ..crypto_engine import CryptoEngine, Protocol
from ..ecdsa import keygen, sign
from ..http_client import POST_ROUTE, reply_field
from ..transaction import (
    get_sighash, pubkey_to_btc_addr, set_witness, tx_backup_build, tx_to_hex,
)
from .info import get_fee_info, verify_smt_proof

log = logging.getLogger(__name__)


async def deposit_init(http_client, engine: CryptoEngine, proof_key: str, proof_key_priv: bytes) -> StateCoin:
    """Generate a shared key with the State Entity. Returns a new INITIALISED coin."""
    deposit_msg1 = {"auth": "authstr", "proof_key": proof_key}
    resp = await http_client.post(POST_ROUTE.DEPOSIT_INIT, deposit_msg1)
    shared_key_id = reply_field(resp, "id", what="deposit init reply")

    shared_key = await keygen(http_client, engine, shared_key_id, Protocol.DEPOSIT,
                              secret_key=proof_key_priv.hex())

    statecoin = StateCoin(shared_key_id=shared_key_id, shared_key=shared_key)
    statecoin.proof_key = proof_key
    return statecoin


async def deposit_confirm(http_client, engine: CryptoEngine, statecoin: StateCoin,
                          block_height: int) -> StateCoin:
    """
    Co-sign the backup tx and confirm the deposit.

    Works on a copy; the returned coin is the finalized (AVAILABLE) record.
    """
    statecoin = statecoin.copy()
    fee_info = await get_fee_info(http_client)

    pub_key = statecoin.get_shared_pub_key()
    backup_receive_addr = pubkey_to_btc_addr(statecoin.proof_key)
    tx_backup = tx_backup_build(
        statecoin.funding_txid,
        statecoin.funding_vout,
        backup_receive_addr,
        statecoin.value,
        fee_info.withdraw,
        block_height + fee_info.initlock,
    )

    signature_hash = get_sighash(tx_backup, 0, pub_key, statecoin.value)
    prepare_sign_msg = {
        "shared_key_ids": [statecoin.shared_key_id],
        "protocol": Protocol.DEPOSIT.value,
        "tx_hex": tx_to_hex(tx_backup),
        "input_addrs": [pub_key],
        "input_amounts": [statecoin.value],
        "proof_key": statecoin.proof_key,
    }
    signature = await sign(http_client, engine, statecoin.shared_key_id, statecoin.shared_key,
                           prepare_sign_msg, signature_hash, Protocol.DEPOSIT)
    set_witness(tx_backup, 0, signature, pub_key)

    resp = await http_client.post(POST_ROUTE.DEPOSIT_CONFIRM, {"shared_key_id": statecoin.shared_key_id})
    statechain_id = reply_field(resp, "id", what="deposit confirm reply")

    statecoin.smt_proof = await verify_smt_proof(http_client, engine, statecoin.funding_txid,
                                                 statecoin.proof_key)

    statecoin.statechain_id = statechain_id
    statecoin.tx_backup = tx_to_hex(tx_backup)
    statecoin.interval = fee_info.interval
    statecoin.status = StateCoinStatus.AVAILABLE
    log.info(f"Deposit confirmed. Statechain id: {statechain_id}")
    return statecoin
