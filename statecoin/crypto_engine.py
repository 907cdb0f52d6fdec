"""
Statecoin Wallet - Crypto Engine Interface

Two-party ECDSA, SMT proof checks and blind signature primitives are
delegated to a Crypto Engine. The wallet only moves the engine's opaque
messages between the engine and the State Entity; it never inspects them
beyond the fields named here.

Engine message shapes (dicts, JSON serializable):

    keygen_first_message(secret_key) -> {
        "kg_party_two_first_message": {..., "d_log_proof": ...},
        "kg_ec_key_pair_party2": {...},
    }
    keygen_second_message(party_one_first, party_one_second) -> {
        "party_two_paillier": {...},
    }
    set_master_key(...) -> shared key {"public": {"q": {x, y}, ...},
                                       "private": {"x2": hex}, ...}
    sign_first_message() -> {
        "eph_key_gen_first_message_party_two": {...},
        "eph_comm_witness": {...},
        "eph_ec_key_pair_party2": {...},
    }
    sign_second_message(...) -> party two sign message
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional


class Protocol(Enum):
    """Protocol a signing round belongs to; checked by the State Entity."""
    DEPOSIT = "Deposit"
    TRANSFER = "Transfer"
    SWAP = "Swap"
    WITHDRAW = "Withdraw"


class CryptoEngine(ABC):

    # ═══════════════════════════════════════════════════════════════════════
    # TWO-PARTY ECDSA
    # ═══════════════════════════════════════════════════════════════════════

    @abstractmethod
    def keygen_first_message(self, secret_key: Optional[str] = None) -> dict:
        """Party two first keygen message. `secret_key` fixes the client share (hex)."""

    @abstractmethod
    def keygen_second_message(self, kg_party_one_first_message: dict,
                              kg_party_one_second_message: dict) -> dict:
        ...

    @abstractmethod
    def set_master_key(self, kg_ec_key_pair_party2: dict, party_one_public_share: dict,
                       party_two_paillier: dict) -> dict:
        """Combine both shares into the client's shared key."""

    @abstractmethod
    def sign_first_message(self) -> dict:
        ...

    @abstractmethod
    def sign_second_message(self, shared_key: dict, message: str, eph_comm_witness: dict,
                            eph_ec_key_pair_party2: dict, eph_key_gen_first_message_party_one: dict) -> dict:
        ...

    # ═══════════════════════════════════════════════════════════════════════
    # STATECHAIN / SWAP PRIMITIVES
    # ═══════════════════════════════════════════════════════════════════════

    @abstractmethod
    def verify_statechain_smt(self, root: Any, proof_key: str, smt_proof: Any) -> bool:
        """Check the SMT inclusion proof of proof_key against the published root."""

    @abstractmethod
    def make_commitment(self, data: str) -> dict:
        """Commitment to `data`. Returns {"commitment", "nonce"}."""

    @abstractmethod
    def bst_requestor_setup(self, r_prime: dict, message: str) -> dict:
        """Blind a message for the blind spend token. Returns {"my_bst_data", "e_prime"}."""

    @abstractmethod
    def bst_make_token(self, my_bst_data: dict, s_prime: str) -> dict:
        """Unblind the signer's response into a blind spend token {"s", "r", "m"}."""
