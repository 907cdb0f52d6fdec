"""
Statecoin Wallet - Transaction Builder

Backup, withdraw and CPFP transactions. All three spend a single input and
check the fee arithmetic before anything is signed.

Chain parameters (address prefixes) follow bitcoin.SelectParams(), see
Config.select_network().
"""

from typing import List

from bitcoin.core import (
    COutPoint, CMutableTxIn, CMutableTxOut, CMutableTransaction, CTransaction,
    CTxInWitness, CTxWitness, Hash160, b2lx, b2x, lx, x,
)
from bitcoin.core.script import (
    CScript, CScriptWitness, OP_0, OP_CHECKSIG, OP_DUP, OP_EQUALVERIFY, OP_HASH160,
    SIGHASH_ALL, SIGVERSION_WITNESS_V0, SignatureHash,
)
from bitcoin.wallet import CBitcoinAddress, CBitcoinAddressError, P2WPKHBitcoinAddress
from ecdsa import SECP256k1, VerifyingKey
from ecdsa.errors import MalformedPointError

from .errors import InsufficientValue, InvalidAddress, ProtocolViolation

# Network fee paid by every backup/withdraw tx (satoshis).
# Temporary - fees should be calculated dynamically
FIXED_FEE = 300

# backup_tx (1 input 2 outputs) + cpfp tx (1 input 1 output): 140 + 110 bytes
CPFP_COMBINED_SIZE = 250

SEQUENCE_LOCKTIME_ENABLED = 0xFFFFFFFE
SEQUENCE_FINAL = 0xFFFFFFFF


# ═══════════════════════════════════════════════════════════════════════════════
# KEYS AND ADDRESSES
# ═══════════════════════════════════════════════════════════════════════════════

def encode_secp256k1_point(pub_key: str) -> dict:
    """Compressed or uncompressed public key hex -> {x, y}."""
    try:
        vk = VerifyingKey.from_string(bytes.fromhex(pub_key), curve=SECP256k1)
    except (MalformedPointError, ValueError) as e:
        raise InvalidAddress(f"Invalid public key: {e}")
    raw = vk.to_string("raw")
    return {"x": raw[:32].hex(), "y": raw[32:].hex()}


def decode_secp256k1_point(point: dict) -> str:
    """{x, y} -> compressed public key hex."""
    raw = bytes.fromhex(point["x"].zfill(64)) + bytes.fromhex(point["y"].zfill(64))
    vk = VerifyingKey.from_string(raw, curve=SECP256k1)
    return vk.to_string("compressed").hex()


def pubkey_to_script_pubkey(pub_key: str) -> CScript:
    """P2WPKH scriptPubKey for a compressed public key."""
    try:
        pub_bytes = bytes.fromhex(pub_key)
    except ValueError:
        raise InvalidAddress("Invalid public key - should be hexadecimal.")
    if len(pub_bytes) != 33 or pub_bytes[0] not in (2, 3):
        raise InvalidAddress("Invalid public key - should be a compressed secp256k1 key.")
    return CScript([OP_0, Hash160(pub_bytes)])


def pubkey_to_btc_addr(pub_key: str) -> str:
    return str(P2WPKHBitcoinAddress.from_scriptPubKey(pubkey_to_script_pubkey(pub_key)))


def proof_key_to_sce_address(proof_key: str) -> dict:
    """SCEAddress: backup receive address plus the proof key it derives from."""
    return {
        "tx_backup_addr": pubkey_to_btc_addr(proof_key),
        "proof_key": proof_key,
    }


def address_to_script(address: str) -> CScript:
    """Parse a bitcoin address for the selected network."""
    try:
        return CBitcoinAddress(address).to_scriptPubKey()
    except (CBitcoinAddressError, ValueError, TypeError) as e:
        raise InvalidAddress(f"Invalid Bitcoin address entered: {address} ({e})")


def script_to_address(script: bytes) -> str:
    try:
        return str(CBitcoinAddress.from_scriptPubKey(CScript(script)))
    except (CBitcoinAddressError, ValueError) as e:
        raise ProtocolViolation(f"Unrecognised output script: {e}")


def validate_address(address: str) -> bool:
    try:
        address_to_script(address)
        return True
    except InvalidAddress:
        return False


# ═══════════════════════════════════════════════════════════════════════════════
# FEE CHECKS
# ═══════════════════════════════════════════════════════════════════════════════

def check_withdraw_fee(value: int, withdraw_fee: int, max_fraction: float) -> None:
    """
    Bound the server supplied withdraw fee.

    The fee schedule is untrusted input: a fee above max_fraction of the coin
    value is rejected instead of being paid out of the coin.
    """
    if withdraw_fee < 0:
        raise ProtocolViolation(f"Negative withdraw fee in fee schedule: {withdraw_fee}")
    if withdraw_fee > value * max_fraction:
        raise ProtocolViolation(
            f"Withdraw fee {withdraw_fee} exceeds {max_fraction:.2%} of coin value {value}"
        )


def _check_fee(value: int, withdraw_fee: int) -> None:
    if value <= FIXED_FEE + withdraw_fee:
        raise InsufficientValue("Not enough value to cover fee.")


# ═══════════════════════════════════════════════════════════════════════════════
# BUILDERS
# ═══════════════════════════════════════════════════════════════════════════════

def tx_backup_build(funding_txid: str, funding_vout: int, backup_receive_addr: str,
                    value: int, withdraw_fee: int, locktime: int) -> CMutableTransaction:
    """
    Backup tx spending the funding output to the owner's backup address.

    Time-locked: not valid before block `locktime`.
    """
    _check_fee(value, withdraw_fee)
    txin = CMutableTxIn(COutPoint(lx(funding_txid), funding_vout), nSequence=SEQUENCE_LOCKTIME_ENABLED)
    txout = CMutableTxOut(value - FIXED_FEE - withdraw_fee, address_to_script(backup_receive_addr))
    return CMutableTransaction([txin], [txout], nLockTime=locktime, nVersion=2)


def tx_withdraw_build(funding_txid: str, funding_vout: int, rec_address: str,
                      value: int, fee_address: str, withdraw_fee: int) -> CMutableTransaction:
    """
    Withdraw tx spending the funding output to:
      - value - FIXED_FEE - withdraw_fee to the receive address, and
      - withdraw_fee to the State Entity fee address
    """
    _check_fee(value, withdraw_fee)
    txin = CMutableTxIn(COutPoint(lx(funding_txid), funding_vout), nSequence=SEQUENCE_FINAL)
    outputs = [
        CMutableTxOut(value - FIXED_FEE - withdraw_fee, address_to_script(rec_address)),
        CMutableTxOut(withdraw_fee, address_to_script(fee_address)),
    ]
    return CMutableTransaction([txin], outputs, nVersion=2)


def tx_cpfp_build(backup_txid: str, backup_vout: int, rec_address: str, value: int,
                  fee_rate: int, already_paid_fee: int = FIXED_FEE) -> CMutableTransaction:
    """CPFP tx spending the backup tx output, paying for both transactions."""
    bump_fee = fee_rate * CPFP_COMBINED_SIZE - already_paid_fee
    if bump_fee >= value:
        raise InsufficientValue("Not enough value to cover fee.")
    txin = CMutableTxIn(COutPoint(lx(backup_txid), backup_vout), nSequence=SEQUENCE_FINAL)
    txout = CMutableTxOut(value - bump_fee, address_to_script(rec_address))
    return CMutableTransaction([txin], [txout], nVersion=2)


# ═══════════════════════════════════════════════════════════════════════════════
# SIGNING HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def get_sighash(tx: CTransaction, index: int, pub_key: str, amount: int) -> str:
    """BIP143 signature hash of a P2WPKH input owned by pub_key."""
    script_code = CScript([OP_DUP, OP_HASH160, Hash160(bytes.fromhex(pub_key)), OP_EQUALVERIFY, OP_CHECKSIG])
    return SignatureHash(script_code, tx, index, SIGHASH_ALL,
                         amount=amount, sigversion=SIGVERSION_WITNESS_V0).hex()


def set_witness(tx: CMutableTransaction, index: int, signature: bytes, pub_key: str) -> None:
    """
    Attach a P2WPKH witness [signature, pubkey].

    `signature` is DER with the sighash type byte already appended, as
    returned by the State Entity.
    """
    witnesses: List[CTxInWitness] = [CTxInWitness() for _ in tx.vin]
    for i, existing in enumerate(tx.wit.vtxinwit):
        witnesses[i] = existing
    witnesses[index] = CTxInWitness(CScriptWitness([signature, bytes.fromhex(pub_key)]))
    tx.wit = CTxWitness(witnesses)


# ═══════════════════════════════════════════════════════════════════════════════
# HEX HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def tx_to_hex(tx: CTransaction) -> str:
    return b2x(tx.serialize())


def tx_from_hex(tx_hex: str) -> CMutableTransaction:
    try:
        return CMutableTransaction.from_tx(CTransaction.deserialize(x(tx_hex)))
    except Exception as e:
        raise ProtocolViolation(f"Cannot decode transaction: {e}")


def txid_of(tx_hex: str) -> str:
    return b2lx(tx_from_hex(tx_hex).GetTxid())


def tx_locktime(tx_hex: str) -> int:
    return tx_from_hex(tx_hex).nLockTime


def tx_output_value(tx_hex: str, index: int) -> int:
    return tx_from_hex(tx_hex).vout[index].nValue


def tx_output_address(tx_hex: str, index: int) -> str:
    return script_to_address(tx_from_hex(tx_hex).vout[index].scriptPubKey)
