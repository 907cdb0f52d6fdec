"""
Statecoin Wallet - Legacy Crypto Compatibility

ECIES and password AES exactly as the existing wallets and the State Entity
produce them. Kept only for wire/storage format compatibility; do not build
new cryptography on top of these helpers.

ECIES quirk:
    payloads are passed through a fixed-width uint32 array before
    encryption (and again after decryption). Each byte is widened to a
    uint32 element and truncated back to a byte. Both directions must apply
    the same transform.

Password AES:
    aes-192-cbc, key = PBKDF2-HMAC-SHA512(password, "salt", 2000 iterations),
    random 16 byte IV stored next to the ciphertext.
"""

import json
import os
from array import array
from typing import Any, Union

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from ecies import decrypt, encrypt

from .errors import ProtocolViolation

AES_KEY_BYTES = 24  # aes-192
AES_IV_BYTES = 16
PBKDF2_SALT = b"salt"
PBKDF2_NUM_ITERATIONS = 2000


# ═══════════════════════════════════════════════════════════════════════════════
# ECIES
# ═══════════════════════════════════════════════════════════════════════════════

def _u32_reinterpret(data: bytes) -> bytes:
    widened = array("I", list(data))
    return bytes(v & 0xFF for v in widened)


def _zero_pad(num_hex: str) -> str:
    return num_hex.rjust(64, "0")[-64:]


def _as_bytes(data: Union[str, bytes]) -> bytes:
    return bytes.fromhex(data) if isinstance(data, str) else data


def encrypt_ecies(public_key: str, data: Any) -> bytes:
    """ECIES encrypt the JSON serialization of `data`."""
    payload = json.dumps(data, ensure_ascii=False, separators=(",", ":")).encode("utf8")
    return encrypt(public_key, _u32_reinterpret(payload))


def decrypt_ecies(secret_key: str, encryption: Union[str, bytes]) -> Any:
    try:
        decrypted = decrypt(secret_key, _u32_reinterpret(_as_bytes(encryption)))
    except Exception as e:
        raise ProtocolViolation(f"ECIES decryption failed: {e}")
    return json.loads(decrypted.decode("utf8"))


def encrypt_ecies_t2(public_key: str, scalar_hex: str) -> bytes:
    """ECIES encrypt a 32 byte scalar given as hex (zero padded)."""
    return encrypt(public_key, _u32_reinterpret(bytes.fromhex(_zero_pad(scalar_hex))))


def decrypt_ecies_x1(secret_key: str, encryption: Union[str, bytes]) -> str:
    """ECIES decrypt the scalar x1 sent by the State Entity. Returns hex."""
    try:
        decrypted = decrypt(secret_key, _u32_reinterpret(_as_bytes(encryption)))
    except Exception as e:
        raise ProtocolViolation(f"ECIES decryption failed: {e}")
    return decrypted.hex()


# ═══════════════════════════════════════════════════════════════════════════════
# PASSWORD AES
# ═══════════════════════════════════════════════════════════════════════════════

def _derive_key(password: str) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=AES_KEY_BYTES,
        salt=PBKDF2_SALT,
        iterations=PBKDF2_NUM_ITERATIONS,
    )
    return kdf.derive(password.encode("utf8"))


def encrypt_aes(data: str, password: str) -> dict:
    """AES encrypt with password. Returns {"iv", "encryption"} as hex."""
    iv = os.urandom(AES_IV_BYTES)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(data.encode("utf8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(_derive_key(password)), modes.CBC(iv)).encryptor()
    encrypted = encryptor.update(padded) + encryptor.finalize()
    return {"iv": iv.hex(), "encryption": encrypted.hex()}


def decrypt_aes(encryption: dict, password: str) -> str:
    decryptor = Cipher(
        algorithms.AES(_derive_key(password)), modes.CBC(bytes.fromhex(encryption["iv"]))
    ).decryptor()
    padded = decryptor.update(bytes.fromhex(encryption["encryption"])) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        data = unpadder.update(padded) + unpadder.finalize()
        return data.decode("utf8")
    except ValueError:
        raise ValueError("Incorrect password.")
