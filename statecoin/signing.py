"""
Statecoin Wallet - Signatures and Encodings

StateChainSig: signed declaration of intent over a coin's proof key.
SCEAddress and transfer message bech32 encodings.

Wire formats (must round-trip byte-exact with the State Entity and other
wallets):
  - SCEAddress:       bech32, hrp "sc", payload = proof key bytes
  - Transfer message: bech32 (length limit 6000), hrp "mm",
                      payload = msgpack(TransferMsg3)
"""

import hashlib
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import msgpack
from bech32 import CHARSET, bech32_encode, bech32_verify_checksum, convertbits
from ecdsa import SECP256k1, SigningKey, VerifyingKey
from ecdsa.der import UnexpectedDER
from ecdsa.errors import MalformedPointError
from ecdsa.keys import BadSignatureError
from ecdsa.util import sigdecode_der, sigencode_der_canonize

from .errors import InvalidAddress, ProtocolViolation

SCE_ADDRESS_HRP = "sc"
MESSAGE_HRP = "mm"
BECH32_LIMIT = 90
MESSAGE_LIMIT = 6000

PURPOSE_TRANSFER = "TRANSFER"
PURPOSE_WITHDRAW = "WITHDRAW"
PURPOSE_SWAP = "SWAP"


def _signing_key(key: Union[bytes, str, SigningKey]) -> SigningKey:
    if isinstance(key, SigningKey):
        return key
    if isinstance(key, str):
        key = bytes.fromhex(key)
    return SigningKey.from_string(key, curve=SECP256k1)


def _verifying_key(key: Union[bytes, str, SigningKey, VerifyingKey]) -> VerifyingKey:
    if isinstance(key, VerifyingKey):
        return key
    if isinstance(key, SigningKey):
        return key.get_verifying_key()
    if isinstance(key, str):
        key = bytes.fromhex(key)
    if len(key) == 32:
        return SigningKey.from_string(key, curve=SECP256k1).get_verifying_key()
    return VerifyingKey.from_string(key, curve=SECP256k1)


def public_key_hex(key: Union[bytes, str, SigningKey]) -> str:
    """Compressed public key (hex) of a private key."""
    return _signing_key(key).get_verifying_key().to_string("compressed").hex()


def sign_hash(key: Union[bytes, str, SigningKey], digest: bytes) -> bytes:
    """Deterministic (RFC6979) low-S DER signature of a 32 byte digest."""
    return _signing_key(key).sign_digest_deterministic(
        digest, hashfunc=hashlib.sha256, sigencode=sigencode_der_canonize
    )


def verify_hash(key, digest: bytes, signature: bytes) -> bool:
    try:
        return _verifying_key(key).verify_digest(signature, digest, sigdecode=sigdecode_der)
    except (BadSignatureError, UnexpectedDER, MalformedPointError, ValueError):
        return False


@dataclass(frozen=True)
class StateChainSig:
    purpose: str  # "TRANSFER", "TRANSFER_BATCH:<id>", "WITHDRAW" or "SWAP"
    data: str     # proof key, statechain id or address
    sig: str

    @staticmethod
    def make_message(purpose: str, data: str) -> bytes:
        """sha256(purpose + data)"""
        return hashlib.sha256((purpose + data).encode("utf8")).digest()

    def to_message(self) -> bytes:
        return self.make_message(self.purpose, self.data)

    @classmethod
    def create(cls, proof_key_priv, purpose: str, data: str) -> "StateChainSig":
        """
        Sign purpose + data with the proof key.

        The signature is plain DER hex with no sighash type byte, which is
        what the server's secp256k1 Signature parser expects.
        """
        sig = sign_hash(proof_key_priv, cls.make_message(purpose, data))
        return cls(purpose=purpose, data=data, sig=sig.hex())

    def verify(self, proof_key) -> bool:
        """Verify against a proof key (public key hex/bytes or private key)."""
        try:
            proof = bytes.fromhex(self.sig)
        except ValueError:
            return False
        return verify_hash(proof_key, self.to_message(), proof)

    @staticmethod
    def purpose_transfer_batch(batch_id: str) -> str:
        return "TRANSFER_BATCH:" + batch_id

    @classmethod
    def new_transfer_batch_sig(cls, proof_key_priv, batch_id: str, statechain_id: str) -> "StateChainSig":
        """Signature requesting participation in a batch transfer."""
        return cls.create(proof_key_priv, cls.purpose_transfer_batch(batch_id), statechain_id)

    def to_dict(self) -> dict:
        return {"purpose": self.purpose, "data": self.data, "sig": self.sig}

    @classmethod
    def from_dict(cls, data: dict) -> "StateChainSig":
        try:
            return cls(purpose=data["purpose"], data=data["data"], sig=data["sig"])
        except (KeyError, TypeError):
            raise ProtocolViolation("Malformed StateChainSig.")


# ═══════════════════════════════════════════════════════════════════════════════
# BECH32
# ═══════════════════════════════════════════════════════════════════════════════

def _bech32_decode(bech: str, limit: int) -> Tuple[Optional[str], Optional[list]]:
    """bech32_decode with a configurable length limit."""
    if any(ord(c) < 33 or ord(c) > 126 for c in bech):
        return None, None
    if bech.lower() != bech and bech.upper() != bech:
        return None, None
    bech = bech.lower()
    pos = bech.rfind("1")
    if pos < 1 or pos + 7 > len(bech) or len(bech) > limit:
        return None, None
    if not all(c in CHARSET for c in bech[pos + 1:]):
        return None, None
    hrp = bech[:pos]
    data = [CHARSET.find(c) for c in bech[pos + 1:]]
    if not bech32_verify_checksum(hrp, data):
        return None, None
    return hrp, data[:-6]


def _encode(hrp: str, payload: bytes, limit: int) -> str:
    encoded = bech32_encode(hrp, convertbits(payload, 8, 5))
    if len(encoded) > limit:
        raise ValueError(f"Bech32 string exceeds length limit ({len(encoded)} > {limit})")
    return encoded


def _decode(encoded: str, hrp: str, limit: int) -> Optional[bytes]:
    dec_hrp, words = _bech32_decode(encoded, limit)
    if dec_hrp != hrp or words is None:
        return None
    decoded = convertbits(words, 5, 8, False)
    return bytes(decoded) if decoded is not None else None


def encode_sce_address(proof_key: str) -> str:
    """Bech32 encode SCEAddress (StateChain Entity Address)."""
    return _encode(SCE_ADDRESS_HRP, bytes.fromhex(proof_key), BECH32_LIMIT)


def decode_sce_address(sce_address: str) -> str:
    """Bech32 decode SCEAddress to the proof key hex."""
    payload = _decode(sce_address, SCE_ADDRESS_HRP, BECH32_LIMIT)
    if payload is None:
        raise InvalidAddress(f"Invalid SCE address: {sce_address}")
    return payload.hex()


def encode_message(message: dict) -> str:
    """Bech32 encode a transfer message."""
    return _encode(MESSAGE_HRP, msgpack.packb(message, use_bin_type=True), MESSAGE_LIMIT)


def decode_message(enc_message: str) -> dict:
    payload = _decode(enc_message, MESSAGE_HRP, MESSAGE_LIMIT)
    if payload is None:
        raise ProtocolViolation("Invalid transfer message encoding.")
    return msgpack.unpackb(payload, raw=False)
