"""
Statecoin Wallet - Data Types

StateCoin record and the enumerations describing its lifecycle.

A StateCoin is a shared key held jointly with the State Entity together
with all of its deposit information. Records are owned by StateCoinList;
status only changes through the list's verbs.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Optional
import copy
import time

from .transaction import decode_secp256k1_point, pubkey_to_btc_addr, tx_locktime, tx_output_value, txid_of

WALLET_VERSION = "0.4.0"

# ~144 blocks per day
BLOCKS_PER_DAY = 6 * 24


class StateCoinStatus(Enum):
    """Each stage in the lifecycle of a statecoin."""
    # Awaiting funding transaction to appear in the mempool
    INITIALISED = "INITIALISED"
    # Funding transaction in the mempool
    IN_MEMPOOL = "IN_MEMPOOL"
    # Funding transaction mined, awaiting more confirmations
    UNCONFIRMED = "UNCONFIRMED"
    # Fully owned by wallet and unspent
    AVAILABLE = "AVAILABLE"
    # Sent but not yet received
    IN_TRANSFER = "IN_TRANSFER"
    # Waiting in swap pool
    AWAITING_SWAP = "AWAITING_SWAP"
    # Carrying out swap protocol
    IN_SWAP = "IN_SWAP"
    # Transferred away
    SPENT = "SPENT"
    # Withdrawn on-chain
    WITHDRAWN = "WITHDRAWN"
    # Old identity of a swapped coin
    SWAPPED = "SWAPPED"
    # transfer_sender done, TransferMsg3 waiting to be claimed
    SPEND_PENDING = "SPEND_PENDING"
    # Backup timelock reached
    EXPIRED = "EXPIRED"


TERMINAL_STATUSES = frozenset({
    StateCoinStatus.SPENT,
    StateCoinStatus.WITHDRAWN,
    StateCoinStatus.SWAPPED,
    StateCoinStatus.EXPIRED,
})


class BackupStatus(Enum):
    """Status of a coin's backup transaction."""
    # Not valid yet as block_height < nLocktime
    PRE_LOCKTIME = "Not Final"
    # Valid (block_height >= nLocktime) but not broadcast
    UNBROADCAST = "Unbroadcast"
    IN_MEMPOOL = "In mempool"
    # Included in a block, as yet unspent
    CONFIRMED = "Confirmed"
    # Not confirmed, but a previous owner's nLocktime <= block_height
    POST_INTERVAL = "Interval elapsed"
    # Failed to confirm in time, output spent by a previous owner
    TAKEN = "Output taken"
    SPENT = "Spent"


class SwapStatus(Enum):
    """Phase of the swap protocol a coin is in."""
    PHASE0 = "Phase0"
    PHASE1 = "Phase1"
    PHASE2 = "Phase2"
    PHASE3 = "Phase3"
    PHASE4 = "Phase4"


SWAP_DATA_FIELDS = (
    "swap_status",
    "swap_id",
    "swap_info",
    "swap_address",
    "swap_my_bst_data",
    "swap_receiver_addr",
    "swap_transfer_msg",
    "swap_batch_data",
    "swap_transfer_finalized_data",
)


@dataclass
class ExpiryData:
    blocks: int
    days: int
    months: int
    confirmations: int


@dataclass
class FeeInfo:
    """State Entity fee schedule. Server controlled, read-only."""
    address: str
    deposit: int
    withdraw: int
    interval: int
    initlock: int

    @classmethod
    def from_dict(cls, data: dict) -> "FeeInfo":
        return cls(
            address=data["address"],
            deposit=int(data["deposit"]),
            withdraw=int(data["withdraw"]),
            interval=int(data["interval"]),
            initlock=int(data["initlock"]),
        )


@dataclass
class TxData:
    """Unspent output as reported by the indexer (listunspent item)."""
    tx_hash: str
    tx_pos: int
    height: int
    value: int

    @classmethod
    def from_dict(cls, data: dict) -> "TxData":
        return cls(
            tx_hash=data["tx_hash"],
            tx_pos=int(data["tx_pos"]),
            height=int(data.get("height") or 0),
            value=int(data["value"]),
        )


@dataclass
class StateCoin:
    """
    StateCoin - Mercury shared key plus deposit information.

    Structure:
      - shared_key_id: Server side id of the shared key
      - statechain_id: Id of the statechain once the deposit is confirmed
      - shared_key: Client's half of the two-party key (opaque Crypto Engine data)
      - proof_key: Compressed public key authorising ownership declarations
      - value: Amount in satoshis, fixed once the deposit is finalized
      - funding_txid/funding_vout: Outpoint funding the shared key address
      - block: Height the funding tx was mined at (-1 while unmined)
      - tx_backup: Signed, time-locked backup transaction (hex)
    """
    shared_key_id: str
    shared_key: Dict[str, Any] = field(default_factory=dict)
    statechain_id: str = ""
    wallet_version: str = WALLET_VERSION
    proof_key: str = ""
    value: int = 0
    timestamp: int = field(default_factory=lambda: int(time.time()))

    funding_txid: str = ""
    funding_vout: int = 0
    block: int = -1

    tx_backup: Optional[str] = None
    backup_status: BackupStatus = BackupStatus.PRE_LOCKTIME
    interval: int = 1
    tx_cpfp: Optional[str] = None
    tx_withdraw: Optional[str] = None
    smt_proof: Optional[Any] = None
    swap_rounds: int = 0
    status: StateCoinStatus = StateCoinStatus.INITIALISED

    # Transfer data
    transfer_msg: Optional[dict] = None

    # Swap data
    swap_status: Optional[SwapStatus] = None
    swap_id: Optional[str] = None
    swap_info: Optional[dict] = None
    swap_address: Optional[dict] = None
    swap_my_bst_data: Optional[dict] = None
    swap_receiver_addr: Optional[dict] = None
    swap_transfer_msg: Optional[dict] = None
    swap_batch_data: Optional[dict] = None
    swap_transfer_finalized_data: Optional[dict] = None

    def copy(self) -> "StateCoin":
        return copy.deepcopy(self)

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def get_confirmations(self, block_height: int) -> int:
        if self.status == StateCoinStatus.INITIALISED:
            return -1
        if self.status == StateCoinStatus.IN_MEMPOOL:
            return 0
        return block_height - self.block + 1

    def get_expiry_data(self, block_height: int) -> ExpiryData:
        """
        Blocks and rough days/months until the backup locktime.

        Coins without a backup transaction report their confirmation count
        instead.
        """
        if not self.tx_backup:
            return ExpiryData(blocks=-1, days=0, months=0,
                              confirmations=self.get_confirmations(block_height))

        blocks_to_locktime = tx_locktime(self.tx_backup) - block_height
        if blocks_to_locktime <= 0:
            return ExpiryData(blocks=0, days=0, months=0, confirmations=0)
        days = blocks_to_locktime // BLOCKS_PER_DAY
        return ExpiryData(blocks=blocks_to_locktime, days=days,
                          months=days // 30, confirmations=0)

    def get_shared_pub_key(self) -> str:
        """Compressed public key of the shared key (hex)."""
        return decode_secp256k1_point(self.shared_key["public"]["q"])

    def get_btc_address(self) -> str:
        """Co-owned P2WPKH address funds are deposited to."""
        return pubkey_to_btc_addr(self.get_shared_pub_key())

    def get_display_info(self, block_height: int) -> dict:
        return {
            "status": self.status.value,
            "wallet_version": self.wallet_version,
            "shared_key_id": self.shared_key_id,
            "value": self.value,
            "funding_txid": self.funding_txid,
            "funding_vout": self.funding_vout,
            "timestamp": self.timestamp,
            "swap_rounds": self.swap_rounds,
            "expiry_data": asdict(self.get_expiry_data(block_height)),
            "transfer_msg": self.transfer_msg,
            "swap_id": self.swap_info["swap_token"]["id"] if self.swap_info else None,
            "swap_status": self.swap_status.value if self.swap_status else None,
        }

    def get_swap_display_info(self) -> Optional[dict]:
        if self.swap_info is None:
            return None
        token = self.swap_info["swap_token"]
        return {
            "swap_status": self.swap_status.value if self.swap_status else None,
            "swap_id": token["id"],
            "participants": len(token["statechain_ids"]),
            "capacity": len(token["statechain_ids"]),
            "status": self.swap_info.get("status"),
        }

    def get_funding_tx_info(self, block_height: int) -> dict:
        return {
            "shared_key_id": self.shared_key_id,
            "value": self.value,
            "funding_txid": self.funding_txid,
            "funding_vout": self.funding_vout,
            "p_addr": self.get_btc_address(),
            "confirmations": self.get_confirmations(block_height),
        }

    def get_backup_tx_data(self, block_height: int) -> dict:
        return {
            "tx_backup_hex": self.tx_backup,
            "priv_key_hex": "",
            "key_wif": "",
            "expiry_data": asdict(self.get_expiry_data(block_height)),
            "backup_status": self.backup_status.value,
            "txid": txid_of(self.tx_backup) if self.tx_backup else None,
            "output_value": tx_output_value(self.tx_backup, 0) if self.tx_backup else None,
            "cpfp_status": "None",
        }

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["status"] = self.status.value
        data["backup_status"] = self.backup_status.value
        data["swap_status"] = self.swap_status.value if self.swap_status else None
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "StateCoin":
        """Create StateCoin from dictionary."""
        data = dict(data)
        data["status"] = StateCoinStatus(data.get("status", "INITIALISED"))
        data["backup_status"] = BackupStatus(data.get("backup_status", BackupStatus.PRE_LOCKTIME.value))
        swap_status = data.get("swap_status")
        data["swap_status"] = SwapStatus(swap_status) if swap_status else None
        # Records written by older wallet versions carry no version tag
        data.setdefault("wallet_version", "")
        known = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in data.items() if k in known})
