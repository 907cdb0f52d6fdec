import pytest
from ecdsa import SECP256k1
from ecdsa.util import sigdecode_der

from statecoin.errors import InvalidAddress, ProtocolViolation
from statecoin.signing import (
    MESSAGE_LIMIT, PURPOSE_TRANSFER, PURPOSE_WITHDRAW, StateChainSig, decode_message,
    decode_sce_address, encode_message, encode_sce_address, public_key_hex,
)

PRIV = bytes([1]) * 32
PROOF_KEY = public_key_hex(PRIV)
OTHER_KEY = public_key_hex(bytes([2]) * 32)


class TestStateChainSig:
    def test_create_and_verify(self):
        sig = StateChainSig.create(PRIV, PURPOSE_TRANSFER, OTHER_KEY)
        assert sig.purpose == "TRANSFER"
        assert sig.data == OTHER_KEY
        assert sig.verify(PROOF_KEY)
        # A private key verifies against its own public key
        assert sig.verify(PRIV)

    def test_wrong_key(self):
        sig = StateChainSig.create(PRIV, PURPOSE_TRANSFER, OTHER_KEY)
        assert not sig.verify(OTHER_KEY)

    def test_altered_data(self):
        sig = StateChainSig.create(PRIV, PURPOSE_WITHDRAW, "tb1qaddress")
        altered = StateChainSig(purpose=sig.purpose, data="tb1qother", sig=sig.sig)
        assert not altered.verify(PROOF_KEY)
        repurposed = StateChainSig(purpose=PURPOSE_TRANSFER, data=sig.data, sig=sig.sig)
        assert not repurposed.verify(PROOF_KEY)

    def test_garbage_signature(self):
        assert not StateChainSig(PURPOSE_TRANSFER, OTHER_KEY, "zz").verify(PROOF_KEY)
        assert not StateChainSig(PURPOSE_TRANSFER, OTHER_KEY, "3006020101020101").verify(PROOF_KEY)

    def test_deterministic(self):
        first = StateChainSig.create(PRIV, PURPOSE_TRANSFER, OTHER_KEY)
        second = StateChainSig.create(PRIV, PURPOSE_TRANSFER, OTHER_KEY)
        assert first == second

    def test_transfer_batch_purpose(self):
        sig = StateChainSig.new_transfer_batch_sig(PRIV, "swap-1", "chain-1")
        assert sig.purpose == "TRANSFER_BATCH:swap-1"
        assert sig.data == "chain-1"
        assert sig.verify(PROOF_KEY)

    def test_dict_round_trip(self):
        sig = StateChainSig.create(PRIV, PURPOSE_TRANSFER, OTHER_KEY)
        assert StateChainSig.from_dict(sig.to_dict()) == sig

    def test_signature_is_plain_der(self):
        sig = StateChainSig.create(PRIV, PURPOSE_TRANSFER, OTHER_KEY)
        # Trailing bytes after the DER sequence would be rejected here
        sigdecode_der(bytes.fromhex(sig.sig), SECP256k1.order)

    def test_from_dict_malformed(self):
        with pytest.raises(ProtocolViolation, match="Malformed StateChainSig"):
            StateChainSig.from_dict({"purpose": PURPOSE_TRANSFER})
        with pytest.raises(ProtocolViolation, match="Malformed StateChainSig"):
            StateChainSig.from_dict(None)


class TestSceAddress:
    def test_round_trip(self):
        address = encode_sce_address(PROOF_KEY)
        assert address.startswith("sc1")
        assert decode_sce_address(address) == PROOF_KEY
        assert decode_sce_address(address.upper()) == PROOF_KEY

    def test_bad_checksum(self):
        address = encode_sce_address(PROOF_KEY)
        last = "q" if address[-1] != "q" else "p"
        with pytest.raises(InvalidAddress):
            decode_sce_address(address[:-1] + last)

    def test_wrong_prefix(self):
        message = encode_message({"a": 1})
        with pytest.raises(InvalidAddress):
            decode_sce_address(message)


class TestTransferMessage:
    def test_round_trip(self):
        msg = {
            "shared_key_id": "abc",
            "t1": {"secret_bytes": list(range(120, 250))},
            "statechain_sig": {"purpose": "TRANSFER", "data": PROOF_KEY, "sig": "00"},
            "rec_se_addr": {"tx_backup_addr": "tb1q", "proof_key": PROOF_KEY},
        }
        encoded = encode_message(msg)
        assert encoded.startswith("mm1")
        assert decode_message(encoded) == msg

    def test_length_limit(self):
        with pytest.raises(ValueError):
            encode_message({"data": "x" * MESSAGE_LIMIT})

    def test_not_a_message(self):
        with pytest.raises(ProtocolViolation):
            decode_message(encode_sce_address(PROOF_KEY))
        with pytest.raises(ProtocolViolation):
            decode_message("mm1garbage")
