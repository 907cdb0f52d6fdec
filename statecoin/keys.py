"""
Statecoin Wallet - Key Chain

BIP39 mnemonic -> BIP32 external chain m/0'/0/i. Every proof key and
backup receive address of the wallet is derived from this chain, and the
chain remembers which address sits at which index so it can recognise its
own addresses later.
"""

import logging
from typing import Dict, Optional, Tuple

from bip32 import BIP32
from mnemonic import Mnemonic

from .transaction import pubkey_to_btc_addr

log = logging.getLogger(__name__)

EXTERNAL_CHAIN = "m/0'/0"


def generate_mnemonic(strength: int = 128) -> str:
    return Mnemonic("english").generate(strength=strength)


class KeyChain:
    """
    Derivation progress over the wallet's external BIP32 chain.

    Usage:
        chain = KeyChain.from_mnemonic(mnemonic)
        proof_key, priv = chain.next_proof_key()
        priv = chain.derive(address)   # None if not ours
    """

    def __init__(self, mnemonic: str, network: str = "testnet",
                 k: int = 0, address_map: Optional[Dict[str, int]] = None):
        if not Mnemonic("english").check(mnemonic):
            raise ValueError("Invalid mnemonic")
        seed = Mnemonic.to_seed(mnemonic)
        self._bip32 = BIP32.from_seed(seed, network="main" if network == "mainnet" else "test")
        self.k = k
        self.map: Dict[str, int] = dict(address_map or {})

    @classmethod
    def from_mnemonic(cls, mnemonic: str, network: str = "testnet") -> "KeyChain":
        return cls(mnemonic, network)

    def _path(self, index: int) -> str:
        return f"{EXTERNAL_CHAIN}/{index}"

    def next_chain_address(self) -> str:
        """Derive the next P2WPKH address and remember its index."""
        pub_key = self._bip32.get_pubkey_from_path(self._path(self.k)).hex()
        address = pubkey_to_btc_addr(pub_key)
        self.map[address] = self.k
        self.k += 1
        return address

    def next_proof_key(self) -> Tuple[str, bytes]:
        """New proof key. Returns (compressed public key hex, private key)."""
        address = self.next_chain_address()
        priv = self.derive(address)
        pub_key = self._bip32.get_pubkey_from_path(self._path(self.map[address])).hex()
        log.debug(f"Gen proof key. Address: {address}. Proof key: {pub_key}")
        return pub_key, priv

    def owns_address(self, address: str) -> bool:
        return address in self.map

    def derive(self, address: str) -> Optional[bytes]:
        """Private key for one of our addresses, or None."""
        index = self.map.get(address)
        if index is None:
            return None
        return self._bip32.get_privkey_from_path(self._path(index))

    def derive_for_proof_key(self, proof_key: str) -> Optional[bytes]:
        return self.derive(pubkey_to_btc_addr(proof_key))

    def public_key_for_address(self, address: str) -> Optional[str]:
        index = self.map.get(address)
        if index is None:
            return None
        return self._bip32.get_pubkey_from_path(self._path(index)).hex()

    def to_dict(self) -> dict:
        return {"k": self.k, "map": dict(self.map)}

    @classmethod
    def from_dict(cls, mnemonic: str, network: str, data: dict) -> "KeyChain":
        return cls(mnemonic, network, k=int(data.get("k", 0)), address_map=data.get("map", {}))
