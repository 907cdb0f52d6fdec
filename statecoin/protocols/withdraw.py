"""
Withdraw protocol.

    0. Sign StateChainSig WITHDRAW over the receive address
    1. withdraw/init - authorised only if the signature verifies against
       the coin's registered proof key
    2. Build the withdraw tx (fee bounded) and co-sign it
Broadcasting is left to the caller.
"""

import logging

from ..coin_types import StateCoin
from ..crypto_engine import CryptoEngine, Protocol
from ..ecdsa import sign
from ..http_client import POST_ROUTE
from ..signing import PURPOSE_WITHDRAW, StateChainSig
from ..transaction import (
    check_withdraw_fee, get_sighash, set_witness, tx_to_hex, tx_withdraw_build,
)
from .info import get_fee_info

log = logging.getLogger(__name__)


async def withdraw(http_client, engine: CryptoEngine, statecoin: StateCoin, proof_key_priv: bytes,
                   rec_address: str, max_fee_fraction: float) -> str:
    """Withdraw a coin from the State Entity. Returns the signed withdraw tx (hex)."""
    statechain_sig = StateChainSig.create(proof_key_priv, PURPOSE_WITHDRAW, rec_address)

    withdraw_msg_1 = {
        "shared_key_id": statecoin.shared_key_id,
        "statechain_sig": statechain_sig.to_dict(),
    }
    await http_client.post(POST_ROUTE.WITHDRAW_INIT, withdraw_msg_1)

    fee_info = await get_fee_info(http_client)
    check_withdraw_fee(statecoin.value, fee_info.withdraw, max_fee_fraction)

    tx_withdraw = tx_withdraw_build(
        statecoin.funding_txid,
        statecoin.funding_vout,
        rec_address,
        statecoin.value,
        fee_info.address,
        fee_info.withdraw,
    )

    pub_key = statecoin.get_shared_pub_key()
    signature_hash = get_sighash(tx_withdraw, 0, pub_key, statecoin.value)
    prepare_sign_msg = {
        "shared_key_ids": [statecoin.shared_key_id],
        "protocol": Protocol.WITHDRAW.value,
        "tx_hex": tx_to_hex(tx_withdraw),
        "input_addrs": [pub_key],
        "input_amounts": [statecoin.value],
        "proof_key": statecoin.proof_key,
    }
    signature = await sign(http_client, engine, statecoin.shared_key_id, statecoin.shared_key,
                           prepare_sign_msg, signature_hash, Protocol.WITHDRAW)
    set_witness(tx_withdraw, 0, signature, pub_key)
    return tx_to_hex(tx_withdraw)
