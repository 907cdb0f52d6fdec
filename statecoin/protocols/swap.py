"""
Swap protocol (blind signature coin mixing via the swap conductor).

Phases (coin.swap_status):
    init    register the coin's UTXO with the conductor        -> Phase0
    Phase0  poll until the coin is assigned to a swap           -> Phase1
    Phase1  poll swap info, commit to a fresh receive address,
            blind the commitment for the blind spend token      -> Phase2
    Phase2  unblind the spend signature, claim a receiver
            address from the pool with the token                -> Phase3
    Phase3  batch transfer our coin to the claimed address and
            receive (batch mode) the coin sent to our address   -> Phase4
    Phase4  once the batch completes, finalize the new coin
            (swap_rounds + 1); the old identity becomes SWAPPED

Every phase is a poll: while its server side precondition is unmet the
call returns False and changes nothing. Calling a phase out of order is
InvalidState.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ..coin_list import StateCoinList
from ..coin_types import StateCoin, StateCoinStatus, SwapStatus
from ..crypto_engine import CryptoEngine
from ..errors import InvalidState, ProtocolViolation
from ..http_client import GET_ROUTE, POST_ROUTE, reply_field
from ..signing import PURPOSE_SWAP, StateChainSig, sign_hash, verify_hash
from ..transaction import proof_key_to_sce_address, pubkey_to_btc_addr
from .info import get_transfer_batch_status
from .transfer import transfer_receiver, transfer_receiver_finalize, transfer_sender

log = logging.getLogger(__name__)

# Swap status values reported by the conductor from which the blinded
# spend signature can be requested
SIGNATURE_READY_STATUSES = ("Phase2", "Phase3", "Phase4")


@dataclass
class SwapToken:
    """Swap pool descriptor signed by each participant."""
    id: str
    amount: int
    time_out: int
    statechain_ids: List[str] = field(default_factory=list)

    def to_message(self) -> bytes:
        data = f"{self.amount}{self.time_out}{json.dumps(self.statechain_ids, separators=(',', ':'))}"
        return hashlib.sha256(data.encode("utf8")).digest()

    def sign(self, proof_key_priv) -> str:
        return sign_hash(proof_key_priv, self.to_message()).hex()

    def verify_sig(self, proof_key, sig: str) -> bool:
        return verify_hash(proof_key, self.to_message(), bytes.fromhex(sig))

    @classmethod
    def from_dict(cls, data: dict) -> "SwapToken":
        try:
            return cls(
                id=data["id"],
                amount=int(data["amount"]),
                time_out=int(data["time_out"]),
                statechain_ids=list(data.get("statechain_ids") or []),
            )
        except (KeyError, TypeError, ValueError):
            raise ProtocolViolation("Malformed swap token.")


def _phase_name(statecoin: StateCoin) -> str:
    return statecoin.swap_status.value if statecoin.swap_status else "None"


def _require_phase(statecoin: StateCoin, phase: SwapStatus, not_yet: bool = False) -> None:
    if statecoin.swap_status != phase:
        prefix = "Coin is not yet in this phase" if not_yet else "Coin is not in this phase"
        raise InvalidState(f"{prefix} of the swap protocol. In phase: {_phase_name(statecoin)}")


# ═══════════════════════════════════════════════════════════════════════════════
# REGISTRATION
# ═══════════════════════════════════════════════════════════════════════════════

async def swap_init(conductor, coins: StateCoinList, shared_key_id: str,
                    proof_key_priv: bytes, swap_size: int) -> None:
    """Register the coin with the swap conductor. AVAILABLE -> AWAITING_SWAP / Phase0."""
    statecoin = coins.require_coin(shared_key_id)
    if statecoin.swap_status is not None:
        raise InvalidState(f"Coin is already involved in a swap. Swap status: {_phase_name(statecoin)}")
    if statecoin.status != StateCoinStatus.AVAILABLE:
        raise InvalidState(f"Coin is not available for swap. Status: {statecoin.status.value}")

    statechain_sig = StateChainSig.create(proof_key_priv, PURPOSE_SWAP, statecoin.proof_key)
    register_msg = {
        "statechain_id": statecoin.statechain_id,
        "signature": statechain_sig.to_dict(),
        "swap_size": swap_size,
    }
    await conductor.post(POST_ROUTE.SWAP_REGISTER_UTXO, register_msg)
    coins.set_coin_awaiting_swap(shared_key_id)
    log.info(f"Coin {shared_key_id} registered for swap of size {swap_size}")


async def swap_deregister(conductor, coins: StateCoinList, shared_key_id: str) -> None:
    """Leave the swap pool before the swap has begun. AWAITING_SWAP -> AVAILABLE."""
    statecoin = coins.require_coin(shared_key_id)
    if statecoin.status == StateCoinStatus.AWAITING_SWAP:
        await conductor.post(POST_ROUTE.SWAP_DEREGISTER_UTXO, {"id": statecoin.statechain_id})
    coins.remove_coin_from_swap(shared_key_id)


# ═══════════════════════════════════════════════════════════════════════════════
# PHASES
# ═══════════════════════════════════════════════════════════════════════════════

async def swap_phase0(conductor, coins: StateCoinList, shared_key_id: str) -> bool:
    """Poll for a swap id. Returns True once the coin is in a swap."""
    statecoin = coins.require_coin(shared_key_id)
    _require_phase(statecoin, SwapStatus.PHASE0, not_yet=True)

    resp = await conductor.post(POST_ROUTE.SWAP_POLL_UTXO, {"id": statecoin.statechain_id})
    swap_id = resp.get("id") if resp else None
    if swap_id is None:
        return False

    coins.set_coin_in_swap(shared_key_id)
    coins.set_swap_data(shared_key_id, SwapStatus.PHASE1, swap_id=swap_id)
    log.info(f"Coin {shared_key_id} assigned to swap {swap_id}")
    return True


async def swap_phase1(conductor, engine: CryptoEngine, coins: StateCoinList, shared_key_id: str,
                      proof_key_priv: bytes, gen_proof_key: Callable[[], str]) -> bool:
    """
    Poll for the swap token and commit to our fresh receive address.

    gen_proof_key derives a new wallet proof key; the coin we will receive
    from the pool is addressed to it. It is only called once the swap info
    is available, so a poll that finds nothing derives no key.
    """
    statecoin = coins.require_coin(shared_key_id)
    _require_phase(statecoin, SwapStatus.PHASE1)
    if statecoin.swap_id is None:
        raise ProtocolViolation("No Swap ID found. Swap ID should be set in Phase0.")

    swap_info = await conductor.post(POST_ROUTE.SWAP_INFO, {"swap_id": statecoin.swap_id})
    if swap_info is None:
        return False

    swap_token = SwapToken.from_dict(reply_field(swap_info, "swap_token", what="swap info"))
    r_prime = reply_field(swap_info, "bst_sender_data", "r_prime", what="swap info")
    if swap_token.id != statecoin.swap_id:
        raise ProtocolViolation(f"Swap token id {swap_token.id} does not match swap id {statecoin.swap_id}")
    if statecoin.statechain_id not in swap_token.statechain_ids:
        raise ProtocolViolation("Coin is not a participant of the swap token.")

    transfer_batch_sig = StateChainSig.new_transfer_batch_sig(
        proof_key_priv, statecoin.swap_id, statecoin.statechain_id
    )
    address = proof_key_to_sce_address(gen_proof_key())
    commitment = engine.make_commitment(json.dumps(address, sort_keys=True))
    bst = engine.bst_requestor_setup(r_prime, commitment["commitment"])

    swap_msg1 = {
        "swap_id": statecoin.swap_id,
        "statechain_id": statecoin.statechain_id,
        "swap_token_sig": swap_token.sign(proof_key_priv),
        "transfer_batch_sig": transfer_batch_sig.to_dict(),
        "address": address,
        "bst_e_prime": bst["e_prime"],
    }
    await conductor.post(POST_ROUTE.SWAP_FIRST, swap_msg1)

    coins.set_swap_data(
        shared_key_id,
        SwapStatus.PHASE2,
        swap_info=swap_info,
        swap_address=address,
        swap_my_bst_data=bst["my_bst_data"],
        swap_batch_data={"id": statecoin.swap_id, "commitment": commitment["commitment"]},
    )
    return True


async def swap_phase2(conductor, engine: CryptoEngine, coins: StateCoinList, shared_key_id: str) -> bool:
    """Obtain the blind spend token and claim a receiver address from the pool."""
    statecoin = coins.require_coin(shared_key_id)
    _require_phase(statecoin, SwapStatus.PHASE2)

    status = await conductor.post(POST_ROUTE.SWAP_POLL_SWAP, {"id": statecoin.swap_id})
    if status not in SIGNATURE_READY_STATUSES:
        return False

    resp = await conductor.post(
        POST_ROUTE.SWAP_BLINDED_SPEND_SIGNATURE,
        {"swap_id": statecoin.swap_id, "statechain_id": statecoin.statechain_id},
    )
    s_prime = reply_field(resp, "s_prime", what="blinded spend signature reply")
    blinded_spend_token = engine.bst_make_token(statecoin.swap_my_bst_data, s_prime)

    receiver_addr = await conductor.post(
        POST_ROUTE.SWAP_SECOND,
        {"swap_id": statecoin.swap_id, "blinded_spend_token": blinded_spend_token},
    )
    expected_addr = pubkey_to_btc_addr(reply_field(receiver_addr, "proof_key", what="swap receiver address"))
    if reply_field(receiver_addr, "tx_backup_addr", what="swap receiver address") != expected_addr:
        raise ProtocolViolation("Swap receiver backup address not derived from its proof key.")

    coins.set_swap_data(shared_key_id, SwapStatus.PHASE3, swap_receiver_addr=receiver_addr)
    return True


async def swap_phase3(http_client, engine: CryptoEngine, coins: StateCoinList, shared_key_id: str,
                      proof_key_priv: bytes, new_proof_key_priv: bytes) -> bool:
    """
    Batch transfer the coin to the claimed receiver address, then receive
    the coin addressed to our committed proof key (finalize deferred).
    """
    statecoin = coins.require_coin(shared_key_id)
    _require_phase(statecoin, SwapStatus.PHASE3)

    if statecoin.swap_transfer_msg is None:
        transfer_msg3 = await transfer_sender(
            http_client, engine, statecoin, proof_key_priv,
            statecoin.swap_receiver_addr, batch_id=statecoin.swap_id,
        )
        coins.set_swap_data(shared_key_id, swap_transfer_msg=transfer_msg3)

    msgs = await http_client.get(GET_ROUTE.TRANSFER_GET_MSG_ADDR, statecoin.swap_address["proof_key"])
    if not msgs:
        return False

    finalize_data = await transfer_receiver(http_client, msgs[0], new_proof_key_priv,
                                            batch_data=statecoin.swap_batch_data)
    coins.set_swap_data(shared_key_id, SwapStatus.PHASE4, swap_transfer_finalized_data=finalize_data)
    return True


async def swap_phase4(http_client, engine: CryptoEngine, coins: StateCoinList,
                      shared_key_id: str) -> Optional[StateCoin]:
    """Once the batch transfer completes, add the new coin and retire the old one."""
    statecoin = coins.require_coin(shared_key_id)
    _require_phase(statecoin, SwapStatus.PHASE4)

    batch_status = await get_transfer_batch_status(http_client, statecoin.swap_id)
    if not batch_status or not batch_status.get("finalized"):
        return None

    new_statecoin = await transfer_receiver_finalize(http_client, engine,
                                                     statecoin.swap_transfer_finalized_data)
    new_statecoin.swap_rounds = statecoin.swap_rounds + 1
    coins.add_coin(new_statecoin)
    coins.set_swap_complete(shared_key_id)
    log.info(f"Swap {statecoin.swap_id} complete. New coin: {new_statecoin.shared_key_id}")
    return new_statecoin
