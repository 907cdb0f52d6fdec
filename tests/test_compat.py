import pytest

from statecoin.compat import (
    _u32_reinterpret, decrypt_aes, decrypt_ecies, decrypt_ecies_x1, encrypt_aes,
    encrypt_ecies, encrypt_ecies_t2,
)
from statecoin.errors import ProtocolViolation
from statecoin.signing import public_key_hex

PRIV = (bytes([4]) * 32).hex()
PUB = public_key_hex(PRIV)
OTHER_PRIV = (bytes([6]) * 32).hex()


def test_u32_reinterpret_keeps_bytes():
    data = bytes(range(256))
    assert _u32_reinterpret(data) == data


class TestEcies:
    def test_json_round_trip(self):
        data = {"x1": "0a", "values": [1, 2, 3]}
        assert decrypt_ecies(PRIV, encrypt_ecies(PUB, data)) == data

    def test_hex_ciphertext_accepted(self):
        assert decrypt_ecies(PRIV, encrypt_ecies(PUB, "hello").hex()) == "hello"

    def test_scalar_is_zero_padded(self):
        encrypted = encrypt_ecies_t2(PUB, "1")
        assert decrypt_ecies_x1(PRIV, encrypted) == "0" * 63 + "1"

    def test_wrong_key(self):
        encrypted = encrypt_ecies_t2(PUB, "ff" * 32)
        with pytest.raises(ProtocolViolation):
            decrypt_ecies_x1(OTHER_PRIV, encrypted)


class TestPasswordAes:
    def test_round_trip(self):
        mnemonic = "praise you muffin lion enable neck grocery crumble super myself license ghost"
        encryption = encrypt_aes(mnemonic, "hunter2")
        assert set(encryption) == {"iv", "encryption"}
        assert len(bytes.fromhex(encryption["iv"])) == 16
        assert decrypt_aes(encryption, "hunter2") == mnemonic

    def test_fresh_iv_per_encryption(self):
        assert encrypt_aes("data", "pw") != encrypt_aes("data", "pw")

    def test_wrong_password(self):
        encryption = encrypt_aes("a secret mnemonic phrase of some length", "right")
        with pytest.raises(ValueError):
            decrypt_aes(encryption, "wrong")
