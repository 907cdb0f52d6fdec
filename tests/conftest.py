"""
Shared fixtures: in-memory State Entity, Crypto Engine and Electrum mocks.

The mock State Entity answers every route the wallet uses with canned but
internally consistent data: shared keys are real secp256k1 keys, the
SIGN_SECOND witness is a valid signature by that key, and x1 is really
ECIES encrypted to the sender's proof key.
"""

import asyncio
import secrets
from typing import Any, Dict, List, Optional

import bitcoin
import pytest
import pytest_asyncio

from statecoin.coin_types import StateCoin, StateCoinStatus, TxData
from statecoin.compat import encrypt_ecies_t2
from statecoin.config import Config
from statecoin.crypto_engine import CryptoEngine
from statecoin.electrum import script_hash
from statecoin.http_client import GET_ROUTE, POST_ROUTE
from statecoin.signing import public_key_hex, sign_hash
from statecoin.transaction import (
    address_to_script, encode_secp256k1_point, pubkey_to_btc_addr, tx_backup_build, tx_to_hex,
)
from statecoin.wallet import Wallet

MNEMONIC = "praise you muffin lion enable neck grocery crumble super myself license ghost"
OTHER_MNEMONIC = "abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon about"

FUNDING_TXID = "a" * 64
STATECHAIN_ID = "4a6c7e5e-1c1d-4f3b-9a2e-5f2b8d7c6e10"
X1 = "0" * 62 + "07"
BACKUP_LOCKTIME = 20000

FEE_DEPOSIT = 300
FEE_WITHDRAW = 300
FEE_INTERVAL = 100
FEE_INITLOCK = 10000


def make_shared_key(x2: Optional[str] = None) -> dict:
    """Client shared key whose public key is x2*G."""
    x2 = x2 or secrets.token_hex(32)
    q = encode_secp256k1_point(public_key_hex(x2))
    return {"public": {"q": q, "p1": q, "p2": q}, "private": {"x2": x2}, "chain_code": [0]}


# ═══════════════════════════════════════════════════════════════════════════════
# CRYPTO ENGINE
# ═══════════════════════════════════════════════════════════════════════════════

class MockCryptoEngine(CryptoEngine):
    """Deterministic single party stand-in: the shared key is just x2."""

    def __init__(self, smt_valid: bool = True):
        self.smt_valid = smt_valid

    def keygen_first_message(self, secret_key=None):
        x2 = secret_key or secrets.token_hex(32)
        return {
            "kg_party_two_first_message": {"d_log_proof": {"pk": public_key_hex(x2)}},
            "kg_ec_key_pair_party2": {"x2": x2},
        }

    def keygen_second_message(self, kg_party_one_first_message, kg_party_one_second_message):
        return {"party_two_paillier": {"ek": "ek", "encrypted_secret_share": "share"}}

    def set_master_key(self, kg_ec_key_pair_party2, party_one_public_share, party_two_paillier):
        return make_shared_key(kg_ec_key_pair_party2["x2"])

    def sign_first_message(self):
        return {
            "eph_key_gen_first_message_party_two": {"pk_commitment": "c"},
            "eph_comm_witness": {"pk_commitment_blind_factor": "b"},
            "eph_ec_key_pair_party2": {"public_share": "p"},
        }

    def sign_second_message(self, shared_key, message, eph_comm_witness,
                            eph_ec_key_pair_party2, eph_key_gen_first_message_party_one):
        signature = sign_hash(shared_key["private"]["x2"], bytes.fromhex(message))
        return {"message": message, "signature": signature.hex()}

    def verify_statechain_smt(self, root, proof_key, smt_proof):
        return self.smt_valid

    def make_commitment(self, data):
        return {"commitment": "c0" + data[:8].encode().hex(), "nonce": "00" * 32}

    def bst_requestor_setup(self, r_prime, message):
        return {"my_bst_data": {"m": message, "u": "01", "v": "02"}, "e_prime": "e" + message}

    def bst_make_token(self, my_bst_data, s_prime):
        return {"s": s_prime, "r": "r", "m": my_bst_data["m"]}


# ═══════════════════════════════════════════════════════════════════════════════
# STATE ENTITY
# ═══════════════════════════════════════════════════════════════════════════════

class MockStateEntityClient:
    """
    Route-switching stand-in for StateEntityClient (and the swap conductor).

    responses[path] overrides the default answer; a callable receives the
    request body (POST) or params (GET). gates[path] is awaited before
    answering so tests can hold a request open.
    """

    def __init__(self, fee_info: dict):
        self.fee_info = dict(fee_info)
        self.posts: List[tuple] = []
        self.gets: List[tuple] = []
        self.responses: Dict[str, Any] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.proof_keys: Dict[str, str] = {}
        self.statechains: Dict[str, dict] = {}
        self.transfer_msgs: Dict[str, list] = {}
        self.batch_finalized = False
        self.closed = False
        self._next_id = 0

    def _new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}-{self._next_id}"

    def posted(self, path: str) -> List[Any]:
        return [body for p, body in self.posts if p == path]

    async def close(self):
        self.closed = True

    async def _answer(self, path, arg, defaults):
        if path in self.gates:
            await self.gates[path].wait()
        if path in self.responses:
            resp = self.responses[path]
            return resp(arg) if callable(resp) else resp
        return defaults()[path](arg)

    async def get(self, path, params=None):
        self.gets.append((path, params))
        return await self._answer(path, params, self._default_get)

    async def post(self, path, body=None):
        self.posts.append((path, body))
        return await self._answer(path, body, self._default_post)

    def _default_get(self):
        return {
            GET_ROUTE.PING: lambda _: None,
            GET_ROUTE.FEES: lambda _: dict(self.fee_info),
            GET_ROUTE.ROOT: lambda _: {"id": 1, "value": [1] * 32, "commitment_info": None},
            GET_ROUTE.STATECHAIN: lambda statechain_id: self.statechains[statechain_id],
            GET_ROUTE.TRANSFER_BATCH: lambda _: {"finalized": self.batch_finalized},
            GET_ROUTE.TRANSFER_GET_MSG_ADDR: lambda proof_key: list(self.transfer_msgs.get(proof_key, [])),
        }

    def _default_post(self):
        return {
            POST_ROUTE.DEPOSIT_INIT: self._deposit_init,
            POST_ROUTE.KEYGEN_FIRST: lambda body: [body["shared_key_id"], {"pk_commitment": "pkc"}],
            POST_ROUTE.KEYGEN_SECOND: lambda _: {
                "ecdh_second_message": {"comm_witness": {"public_share": {"x": "01", "y": "02"}}}},
            POST_ROUTE.PREPARE_SIGN: lambda _: None,
            POST_ROUTE.SIGN_FIRST: lambda _: {"public_share": "ps"},
            POST_ROUTE.SIGN_SECOND: self._sign_second,
            POST_ROUTE.DEPOSIT_CONFIRM: lambda _: {"id": STATECHAIN_ID},
            POST_ROUTE.SMT_PROOF: lambda _: [[True, [0] * 32]],
            POST_ROUTE.WITHDRAW_INIT: lambda _: None,
            POST_ROUTE.TRANSFER_SENDER: self._transfer_sender,
            POST_ROUTE.TRANSFER_UPDATE_MSG: self._transfer_update_msg,
            POST_ROUTE.TRANSFER_RECEIVER: lambda _: {
                "new_shared_key_id": self._new_id("received"),
                "s2_pub": {"x": "03", "y": "04"},
                "theta": "05",
            },
            POST_ROUTE.SWAP_REGISTER_UTXO: lambda _: None,
            POST_ROUTE.SWAP_DEREGISTER_UTXO: lambda _: None,
            POST_ROUTE.SWAP_POLL_UTXO: lambda _: {"id": None},
            POST_ROUTE.SWAP_INFO: lambda _: None,
            POST_ROUTE.SWAP_FIRST: lambda _: None,
            POST_ROUTE.SWAP_POLL_SWAP: lambda _: "Phase1",
            POST_ROUTE.SWAP_BLINDED_SPEND_SIGNATURE: lambda _: {"s_prime": "5a"},
        }

    def _deposit_init(self, body):
        shared_key_id = self._new_id("deposit")
        self.proof_keys[shared_key_id] = body["proof_key"]
        return {"id": shared_key_id}

    def _sign_second(self, body):
        request = body["sign_second_msg_request"]
        signature = bytes.fromhex(request["party_two_sign_message"]["signature"])
        return [list(signature + b"\x01"), [2] * 33]

    def _transfer_sender(self, body):
        proof_key = self.proof_keys[body["shared_key_id"]]
        return {"x1": {"secret_bytes": list(encrypt_ecies_t2(proof_key, X1))},
                "proof_key": body["statechain_sig"]["data"]}

    def _transfer_update_msg(self, body):
        self.transfer_msgs.setdefault(body["rec_se_addr"]["proof_key"], []).append(body)
        return None


# ═══════════════════════════════════════════════════════════════════════════════
# ELECTRUM
# ═══════════════════════════════════════════════════════════════════════════════

class MockElectrumClient:
    def __init__(self, height: int = 1000):
        self.height = height
        self.utxos: Dict[str, List[TxData]] = {}
        self.queues: Dict[str, asyncio.Queue] = {}
        self.unsubscribed: List[str] = []
        self.broadcasts: List[str] = []
        self.connected = False

    def set_unspent(self, address: str, utxos: List[TxData]) -> None:
        self.utxos[script_hash(address_to_script(address))] = list(utxos)

    def notify(self, address: str) -> None:
        self.queues[script_hash(address_to_script(address))].put_nowait("status")

    def is_subscribed(self, address: str) -> bool:
        return script_hash(address_to_script(address)) in self.queues

    async def connect(self):
        self.connected = True

    async def close(self):
        self.connected = False

    async def script_hash_subscribe(self, script):
        queue = self.queues.setdefault(script_hash(script), asyncio.Queue())
        queue.put_nowait(None)
        return queue

    async def script_hash_unsubscribe(self, script):
        sh = script_hash(script)
        self.queues.pop(sh, None)
        self.unsubscribed.append(sh)

    async def get_script_hash_list_unspent(self, script):
        return list(self.utxos.get(script_hash(script), []))

    async def broadcast_transaction(self, raw_tx):
        self.broadcasts.append(raw_tx)
        return "b" * 64

    async def block_height_subscribe(self):
        return self.height, asyncio.Queue()

    async def get_tip_height(self):
        return self.height


# ═══════════════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Yield to background tasks until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not reached in time")
        await asyncio.sleep(0.01)


def make_available_coin(proof_key: str, shared_key_id: str = "coin-1", value: int = 10000,
                        statechain_id: str = STATECHAIN_ID, funding_txid: str = FUNDING_TXID,
                        locktime: int = BACKUP_LOCKTIME) -> StateCoin:
    """Confirmed coin with a (unsigned) backup tx to the proof key's address."""
    tx_backup = tx_backup_build(funding_txid, 0, pubkey_to_btc_addr(proof_key),
                                value, FEE_WITHDRAW, locktime)
    return StateCoin(
        shared_key_id=shared_key_id,
        shared_key=make_shared_key(),
        statechain_id=statechain_id,
        proof_key=proof_key,
        value=value,
        funding_txid=funding_txid,
        funding_vout=0,
        block=900,
        tx_backup=tx_to_hex(tx_backup),
        interval=FEE_INTERVAL,
        status=StateCoinStatus.AVAILABLE,
    )


def add_available_coin(wallet: Wallet, client: MockStateEntityClient, **kwargs) -> StateCoin:
    """Give the wallet an AVAILABLE coin whose proof key it derived and the server knows."""
    proof_key, _ = wallet.gen_proof_key()
    coin = make_available_coin(proof_key, **kwargs)
    wallet.statecoins.add_coin(coin)
    client.proof_keys[coin.shared_key_id] = proof_key
    client.statechains[coin.statechain_id] = {
        "utxo": {"txid": coin.funding_txid, "vout": coin.funding_vout},
        "amount": coin.value,
        "chain": [{"data": proof_key, "next_state": None}],
        "locktime": BACKUP_LOCKTIME,
    }
    return coin


# ═══════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def testnet():
    bitcoin.SelectParams("testnet")


@pytest.fixture
def fee_address():
    return pubkey_to_btc_addr(public_key_hex(bytes([7]) * 32))


@pytest.fixture
def fee_info(fee_address):
    return {
        "address": fee_address,
        "deposit": FEE_DEPOSIT,
        "withdraw": FEE_WITHDRAW,
        "interval": FEE_INTERVAL,
        "initlock": FEE_INITLOCK,
    }


@pytest.fixture
def config():
    return Config(testing_mode=True, poll_interval=0)


@pytest.fixture
def engine():
    return MockCryptoEngine()


@pytest.fixture
def client(fee_info):
    return MockStateEntityClient(fee_info)


@pytest.fixture
def electrum():
    return MockElectrumClient()


@pytest_asyncio.fixture
async def wallet(config, engine, client, electrum):
    wallet = Wallet.from_mnemonic(MNEMONIC, config, engine, http_client=client,
                                  conductor=client, electrum_client=electrum)
    yield wallet
    await wallet.close()


@pytest_asyncio.fixture
async def other_wallet(engine, client, electrum):
    wallet = Wallet.from_mnemonic(OTHER_MNEMONIC, Config(testing_mode=True, poll_interval=0), engine,
                                  http_client=client, conductor=client, electrum_client=electrum)
    yield wallet
    await wallet.close()
