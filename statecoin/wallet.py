"""
Statecoin Wallet - Wallet

Holds key derivation material and the wallet's statecoins, and runs the
deposit / transfer / withdraw / swap protocols against them.

Usage:
    wallet = Wallet.build_fresh(config, engine)
    await wallet.start()                                  # electrum + watchers
    shared_key_id, p_addr = await wallet.deposit_init(10000)
    ...                                                   # fund p_addr
    await wallet.deposit_confirm(shared_key_id)
    msg3 = await wallet.transfer_sender(shared_key_id, receiver_sce_address)
    await wallet.close()
"""

import asyncio
import logging
from contextlib import contextmanager
from typing import List, Optional, Tuple, Union

from . import protocols
from .activity_log import Action, ActivityLog
from .coin_list import StateCoinList, Transfer, Withdraw
from .coin_types import WALLET_VERSION, StateCoin, StateCoinStatus, SwapStatus
from .config import Config
from .crypto_engine import CryptoEngine
from .electrum import ElectrumClient
from .errors import InvalidAddress, InvalidState, NotFound
from .http_client import StateEntityClient, reply_field
from .keys import KeyChain, generate_mnemonic
from .signing import decode_message, decode_sce_address, encode_sce_address
from .storage import WalletStore, decrypt_mnemonic, encrypt_mnemonic
from .transaction import address_to_script, pubkey_to_btc_addr, tx_output_address
from .watcher import FundingWatcher, UnconfirmedPoller

log = logging.getLogger(__name__)

# Initial block height until the indexer reports the tip
DEFAULT_BLOCK_HEIGHT = 1000


def mask_secret(value: str, keep: int = 8) -> str:
    """Shorten an identifier for log output."""
    if not value or len(value) <= keep:
        return value
    return value[:keep] + "..."


class Wallet:
    def __init__(self, mnemonic: str, config: Config, engine: CryptoEngine,
                 keychain: Optional[KeyChain] = None,
                 http_client=None, conductor=None, electrum_client=None,
                 store: Optional[WalletStore] = None, password: Optional[str] = None):
        self.config = config
        self.config.select_network()
        self.version = WALLET_VERSION

        self.mnemonic = mnemonic
        self.keychain = keychain or KeyChain.from_mnemonic(mnemonic, config.network)
        self.statecoins = StateCoinList()
        self.activity = ActivityLog()
        self.block_height = DEFAULT_BLOCK_HEIGHT

        self.engine = engine
        self.http_client = http_client or StateEntityClient(
            config.state_entity_endpoint, config.request_timeout, config.tor_proxy)
        self.conductor = conductor or StateEntityClient(
            config.swap_conductor_endpoint, config.request_timeout, config.tor_proxy)
        self.electrum_client = electrum_client or ElectrumClient.from_config(
            config.electrum_config, config.request_timeout)

        self.store = store
        self.password = password

        self.watcher = FundingWatcher(self.electrum_client, self.statecoins, on_change=self._on_funding_change)
        self._in_flight = set()
        self._background: List[asyncio.Task] = []

    # ═══════════════════════════════════════════════════════════════════════
    # CONSTRUCTION / PERSISTENCE
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    def from_mnemonic(cls, mnemonic: str, config: Config, engine: CryptoEngine, **kwargs) -> "Wallet":
        log.debug(f"New wallet. Testing mode: {config.testing_mode}.")
        return cls(mnemonic, config, engine, **kwargs)

    @classmethod
    def build_fresh(cls, config: Config, engine: CryptoEngine, **kwargs) -> "Wallet":
        """Wallet with a random mnemonic."""
        return cls.from_mnemonic(generate_mnemonic(), config, engine, **kwargs)

    def confirm_mnemonic_knowledge(self, words: List[dict]) -> bool:
        """Check words given as [{"pos": i, "word": w}, ...] against the mnemonic."""
        mnemonic = self.mnemonic.split(" ")
        for word in words:
            pos = word["pos"]
            if pos < 0 or pos >= len(mnemonic) or mnemonic[pos] != word["word"]:
                return False
        return True

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "config": self.config.to_dict(),
            "mnemonic": encrypt_mnemonic(self.mnemonic, self.password),
            "account": self.keychain.to_dict(),
            "statecoins": self.statecoins.to_dict(),
            "activity": self.activity.to_dict(),
            "block_height": self.block_height,
        }

    @classmethod
    def from_dict(cls, data: dict, engine: CryptoEngine, password: Optional[str] = None,
                  **kwargs) -> "Wallet":
        config = Config.from_dict(data["config"])
        mnemonic = decrypt_mnemonic(data["mnemonic"], password)
        keychain = KeyChain.from_dict(mnemonic, config.network, data.get("account", {}))
        wallet = cls(mnemonic, config, engine, keychain=keychain, password=password, **kwargs)
        # Registry objects are shared with the watcher, so load into them in place
        for statecoin in StateCoinList.from_dict(data.get("statecoins", {})):
            wallet.statecoins.add_coin(statecoin)
        wallet.activity = ActivityLog.from_dict(data.get("activity", {}))
        wallet.block_height = int(data.get("block_height", DEFAULT_BLOCK_HEIGHT))
        return wallet

    def save(self) -> None:
        if self.store is None:
            return
        self.store.save(self.to_dict())

    @classmethod
    def load(cls, store: WalletStore, engine: CryptoEngine, password: Optional[str] = None,
             **kwargs) -> "Wallet":
        return cls.from_dict(store.load(), engine, password=password, store=store, **kwargs)

    def clear_save(self) -> None:
        if self.store is not None:
            self.store.clear()

    # ═══════════════════════════════════════════════════════════════════════
    # BACKGROUND SERVICES
    # ═══════════════════════════════════════════════════════════════════════

    async def start(self) -> None:
        """Connect to the indexer, follow the chain tip and resume deposit watchers."""
        await self.electrum_client.connect()
        height, headers = await self.electrum_client.block_height_subscribe()
        self.set_block_height(height)
        self._background.append(asyncio.create_task(self._follow_headers(headers)))

        poller = UnconfirmedPoller(self.statecoins, lambda: self.block_height,
                                   self.refresh_unconfirmed, self.config.poll_interval)
        self._background.append(asyncio.create_task(poller.run()))

        for statecoin in self.statecoins.get_initialised_coins() + self.statecoins.get_in_mempool_coins():
            self.watcher.watch(statecoin.shared_key_id, statecoin.get_btc_address())

    async def _follow_headers(self, headers: asyncio.Queue) -> None:
        while True:
            header = await headers.get()
            self.set_block_height(int(header["height"]))

    async def close(self) -> None:
        for task in self._background:
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()
        await self.watcher.close()
        await self.electrum_client.close()
        await self.http_client.close()
        if self.conductor is not self.http_client:
            await self.conductor.close()

    def _on_funding_change(self, shared_key_id: str) -> None:
        self.save()

    # ═══════════════════════════════════════════════════════════════════════
    # PER-COIN OPERATION GUARD
    # ═══════════════════════════════════════════════════════════════════════

    @contextmanager
    def _coin_operation(self, shared_key_id: str):
        """One in-flight protocol operation per coin id."""
        if shared_key_id in self._in_flight:
            raise InvalidState(f"Coin {shared_key_id} has a protocol operation in progress.")
        self._in_flight.add(shared_key_id)
        try:
            yield
        finally:
            self._in_flight.discard(shared_key_id)

    # ═══════════════════════════════════════════════════════════════════════
    # GETTERS
    # ═══════════════════════════════════════════════════════════════════════

    def set_block_height(self, height: int) -> None:
        self.block_height = height
        if self.statecoins.set_coins_expired(height):
            self.save()

    def get_unspent_statecoins(self) -> Tuple[List[dict], int]:
        return self.statecoins.get_unspent_coins(self.block_height)

    def get_all_statecoins(self) -> List[dict]:
        return self.statecoins.get_all_coins(self.block_height)

    def get_unconfirmed_and_unmined_coins_funding_tx_data(self) -> List[dict]:
        coins = self.statecoins.get_unconfirmed_coins() + self.statecoins.get_initialised_coins()
        return [c.get_funding_tx_info(self.block_height) for c in coins]

    async def get_unconfirmed_statecoins_display_data(self) -> List[dict]:
        """Display data of unconfirmed coins. Deposits with enough confirmations are confirmed first."""
        for statecoin in self.statecoins.get_unconfirmed_coins():
            if statecoin.status == StateCoinStatus.UNCONFIRMED and \
                    statecoin.get_confirmations(self.block_height) >= self.config.required_confirmations:
                await self.deposit_confirm(statecoin.shared_key_id)
        return [c.get_display_info(self.block_height) for c in self.statecoins.get_unconfirmed_coins()]

    async def refresh_unconfirmed(self) -> None:
        await self.get_unconfirmed_statecoins_display_data()

    def get_coin_backup_tx_data(self, shared_key_id: str) -> dict:
        """Backup tx hex with the private key of its receive address."""
        statecoin = self.statecoins.require_coin(shared_key_id)
        if statecoin.status != StateCoinStatus.AVAILABLE:
            raise InvalidState("StateCoin is not available.")
        backup_tx_data = statecoin.get_backup_tx_data(self.block_height)
        addr = tx_output_address(statecoin.tx_backup, 0)
        priv_key = self.keychain.derive(addr)
        if priv_key is None:
            raise NotFound("Backup receive address private key not found.")
        backup_tx_data["priv_key_hex"] = priv_key.hex()
        return backup_tx_data

    def get_activity_log(self, depth: int) -> List[dict]:
        """Activity items, newest first, joined with coin data."""
        items = []
        for item in self.activity.get_items(depth):
            statecoin = self.statecoins.get_coin(item.statecoin_id)
            items.append({
                "date": item.date,
                "action": item.action.value,
                "value": statecoin.value if statecoin else "",
                "funding_txid": statecoin.funding_txid if statecoin else "",
            })
        return items

    # ═══════════════════════════════════════════════════════════════════════
    # KEYS
    # ═══════════════════════════════════════════════════════════════════════

    def gen_proof_key(self) -> Tuple[str, bytes]:
        return self.keychain.next_proof_key()

    def gen_se_address(self) -> str:
        """New SCE address (bech32) to receive a transfer on."""
        proof_key, _ = self.gen_proof_key()
        self.save()
        return encode_sce_address(proof_key)

    def _proof_key_priv(self, statecoin: StateCoin) -> bytes:
        priv = self.keychain.derive_for_proof_key(statecoin.proof_key)
        if priv is None:
            raise NotFound(f"Proof key of coin {statecoin.shared_key_id} not derived by this wallet.")
        return priv

    # ═══════════════════════════════════════════════════════════════════════
    # DEPOSIT
    # ═══════════════════════════════════════════════════════════════════════

    async def deposit_init(self, value: int) -> Tuple[str, str]:
        """Returns (shared_key_id, P_addr to send `value` satoshis to)."""
        log.info(f"Depositing Init. {value} sat")
        proof_key, proof_key_priv = self.gen_proof_key()

        statecoin = await protocols.deposit_init(self.http_client, self.engine, proof_key, proof_key_priv)
        statecoin.value = value
        self.statecoins.add_coin(statecoin)
        self.activity.add_item(statecoin.shared_key_id, Action.DEPOSIT)

        p_addr = statecoin.get_btc_address()
        log.info(f"Deposit Init done. Waiting for coins sent to {p_addr}")
        self.save()

        self.watcher.watch(statecoin.shared_key_id, p_addr)
        return statecoin.shared_key_id, p_addr

    async def deposit_confirm(self, shared_key_id: str) -> StateCoin:
        log.info(f"Depositing Confirm shared_key_id: {shared_key_id}")
        with self._coin_operation(shared_key_id):
            statecoin = self.statecoins.require_coin(shared_key_id)
            if statecoin.status == StateCoinStatus.AVAILABLE:
                raise InvalidState(f"Already confirmed Coin {shared_key_id}.")
            if statecoin.status == StateCoinStatus.INITIALISED:
                raise InvalidState(f"Awaiting funding transaction for StateCoin {shared_key_id}.")
            if statecoin.status not in (StateCoinStatus.IN_MEMPOOL, StateCoinStatus.UNCONFIRMED):
                raise InvalidState(f"Coin {shared_key_id} is not awaiting confirmation. "
                                   f"Status: {statecoin.status.value}")

            # Backup locktime counts from the chain tip, not the last height we saw
            self.set_block_height(await self.electrum_client.get_tip_height())
            statecoin_finalized = await protocols.deposit_confirm(
                self.http_client, self.engine, statecoin, self.block_height)
            self.statecoins.set_coin_finalized(statecoin_finalized)

        log.info("Deposit Confirm done.")
        self.save()
        return statecoin_finalized

    # ═══════════════════════════════════════════════════════════════════════
    # TRANSFER
    # ═══════════════════════════════════════════════════════════════════════

    @staticmethod
    def _parse_receiver_addr(receiver_se_addr: str) -> dict:
        """SCE address (bech32) or raw proof key hex -> {tx_backup_addr, proof_key}."""
        if receiver_se_addr.lower().startswith("sc1"):
            proof_key = decode_sce_address(receiver_se_addr)
        else:
            proof_key = receiver_se_addr
        try:
            tx_backup_addr = pubkey_to_btc_addr(proof_key)
        except InvalidAddress:
            raise InvalidAddress("Invalid receiver address - Should be hexadecimal public key.")
        return {"tx_backup_addr": tx_backup_addr, "proof_key": proof_key}

    async def transfer_sender(self, shared_key_id: str, receiver_se_addr: str) -> dict:
        """Send a coin. Returns TransferMsg3 to hand to the receiver (see encode_message)."""
        log.info(f"Transfer Sender for {shared_key_id}")
        receiver_addr = self._parse_receiver_addr(receiver_se_addr)

        with self._coin_operation(shared_key_id):
            statecoin = self.statecoins.require_coin(shared_key_id)
            if statecoin.status != StateCoinStatus.AVAILABLE:
                raise InvalidState(f"Coin {shared_key_id} is not available. Status: {statecoin.status.value}")

            transfer_msg3 = await protocols.transfer_sender(
                self.http_client, self.engine, statecoin, self._proof_key_priv(statecoin), receiver_addr)

            self.statecoins.set_coin_spent(shared_key_id, Transfer(transfer_msg3))
            self.activity.add_item(shared_key_id, Action.TRANSFER)

        log.info("Transfer Sender complete.")
        self.save()
        return transfer_msg3

    async def transfer_receiver(self, transfer_msg3: Union[dict, str], batch_data: Optional[dict] = None) -> dict:
        """
        Receive a coin from TransferMsg3 (dict or bech32 encoded).

        Outside of a batch the new coin is finalized and added immediately.
        """
        if isinstance(transfer_msg3, str):
            transfer_msg3 = decode_message(transfer_msg3)
        statechain_id = reply_field(transfer_msg3, "statechain_id", what="transfer message")
        log.info(f"Transfer Receiver for statechain {mask_secret(statechain_id)}")

        rec_proof_key = reply_field(transfer_msg3, "rec_se_addr", "proof_key", what="transfer message")
        rec_proof_key_priv = self.keychain.derive_for_proof_key(rec_proof_key)

        finalize_data = await protocols.transfer_receiver(
            self.http_client, transfer_msg3, rec_proof_key_priv, batch_data)

        # In a batch, finalize runs once every transfer of the batch is complete
        if batch_data is None:
            await self.transfer_receiver_finalize(finalize_data)

        self.save()
        return finalize_data

    async def transfer_receiver_finalize(self, finalize_data: dict) -> StateCoin:
        log.info(f"Transfer Finalize for: {finalize_data['new_shared_key_id']}")
        statecoin = await protocols.transfer_receiver_finalize(self.http_client, self.engine, finalize_data)
        self.statecoins.add_coin(statecoin)
        self.activity.add_item(statecoin.shared_key_id, Action.RECEIVE)
        log.info("Transfer Finalize complete.")
        self.save()
        return statecoin

    # ═══════════════════════════════════════════════════════════════════════
    # WITHDRAW
    # ═══════════════════════════════════════════════════════════════════════

    async def withdraw(self, shared_key_id: str, rec_addr: str) -> str:
        """Withdraw a coin on-chain. Returns the broadcast withdraw tx (hex)."""
        log.info(f"Withdrawing {shared_key_id} to {rec_addr}")
        address_to_script(rec_addr)

        with self._coin_operation(shared_key_id):
            statecoin = self.statecoins.require_coin(shared_key_id)
            if statecoin.status != StateCoinStatus.AVAILABLE:
                raise InvalidState(f"Coin {shared_key_id} is not available. Status: {statecoin.status.value}")

            tx_withdraw = await protocols.withdraw(
                self.http_client, self.engine, statecoin, self._proof_key_priv(statecoin),
                rec_addr, self.config.max_withdraw_fee_fraction)

            self.statecoins.set_coin_spent(shared_key_id, Withdraw(tx_withdraw))
            self.activity.add_item(shared_key_id, Action.WITHDRAW)
            self.save()

            txid = await self.electrum_client.broadcast_transaction(tx_withdraw)

        log.info(f"Withdrawing finished. txid: {txid}")
        return tx_withdraw

    # ═══════════════════════════════════════════════════════════════════════
    # SWAP
    # ═══════════════════════════════════════════════════════════════════════

    async def swap_init(self, shared_key_id: str, swap_size: int) -> None:
        with self._coin_operation(shared_key_id):
            statecoin = self.statecoins.require_coin(shared_key_id)
            await protocols.swap_init(self.conductor, self.statecoins, shared_key_id,
                                      self._proof_key_priv(statecoin), swap_size)
        self.save()

    async def swap_deregister(self, shared_key_id: str) -> None:
        with self._coin_operation(shared_key_id):
            await protocols.swap_deregister(self.conductor, self.statecoins, shared_key_id)
        self.save()

    async def swap_phase0(self, shared_key_id: str) -> bool:
        with self._coin_operation(shared_key_id):
            advanced = await protocols.swap_phase0(self.conductor, self.statecoins, shared_key_id)
        if advanced:
            self.save()
        return advanced

    async def swap_phase1(self, shared_key_id: str) -> bool:
        with self._coin_operation(shared_key_id):
            statecoin = self.statecoins.require_coin(shared_key_id)
            advanced = await protocols.swap_phase1(
                self.conductor, self.engine, self.statecoins, shared_key_id,
                self._proof_key_priv(statecoin), lambda: self.gen_proof_key()[0])
        if advanced:
            self.save()
        return advanced

    async def swap_phase2(self, shared_key_id: str) -> bool:
        with self._coin_operation(shared_key_id):
            advanced = await protocols.swap_phase2(self.conductor, self.engine, self.statecoins, shared_key_id)
        if advanced:
            self.save()
        return advanced

    async def swap_phase3(self, shared_key_id: str) -> bool:
        with self._coin_operation(shared_key_id):
            statecoin = self.statecoins.require_coin(shared_key_id)
            new_proof_key_priv = self.keychain.derive_for_proof_key(statecoin.swap_address["proof_key"]) \
                if statecoin.swap_address else None
            advanced = await protocols.swap_phase3(
                self.http_client, self.engine, self.statecoins, shared_key_id,
                self._proof_key_priv(statecoin), new_proof_key_priv)
        self.save()
        return advanced

    async def swap_phase4(self, shared_key_id: str) -> Optional[StateCoin]:
        with self._coin_operation(shared_key_id):
            new_statecoin = await protocols.swap_phase4(self.http_client, self.engine, self.statecoins, shared_key_id)
            if new_statecoin is not None:
                self.activity.add_item(new_statecoin.shared_key_id, Action.SWAP)
        if new_statecoin is not None:
            self.save()
        return new_statecoin

    async def do_swap(self, shared_key_id: str, swap_size: int) -> StateCoin:
        """Run a full swap, polling each phase every config.poll_interval seconds."""
        if self.statecoins.require_coin(shared_key_id).swap_status is None:
            await self.swap_init(shared_key_id, swap_size)

        # Resumes from whatever phase the coin is in
        phases = {
            SwapStatus.PHASE0: self.swap_phase0,
            SwapStatus.PHASE1: self.swap_phase1,
            SwapStatus.PHASE2: self.swap_phase2,
            SwapStatus.PHASE3: self.swap_phase3,
        }
        while True:
            swap_status = self.statecoins.require_coin(shared_key_id).swap_status
            if swap_status is None:
                raise InvalidState(f"Coin {shared_key_id} is no longer in a swap.")
            if swap_status == SwapStatus.PHASE4:
                new_statecoin = await self.swap_phase4(shared_key_id)
                if new_statecoin is not None:
                    return new_statecoin
                advanced = False
            else:
                advanced = await phases[swap_status](shared_key_id)
            if not advanced:
                await asyncio.sleep(self.config.poll_interval)
