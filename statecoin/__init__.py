"""
Statecoin Wallet

Client for off-chain UTXO custody transfer ("statecoins"). A coin's
spending key is shared with a State Entity through two-party ECDSA; the
coin changes hands by re-keying that share, without an on-chain
transaction per transfer.

Architecture:
  - StateCoinList owns every coin; status only changes through its verbs
  - Protocol runs (deposit / transfer / withdraw / swap) talk to the
    State Entity over HTTP and delegate two-party crypto to a CryptoEngine
  - FundingWatcher advances deposits from Electrum subscriptions
  - Backup transactions let the owner reclaim funds after the timelock

Usage:
    from statecoin import Config, Wallet, WalletStore

    config = Config.from_file("~/.statecoin/config.json")
    wallet = Wallet.build_fresh(config, engine, store=WalletStore())
    await wallet.start()
    shared_key_id, p_addr = await wallet.deposit_init(100000)
"""

from .activity_log import Action, ActivityLog, ActivityLogItem
from .coin_list import StateCoinList, Swap, Transfer, Withdraw
from .coin_types import (
    BackupStatus, FeeInfo, StateCoin, StateCoinStatus, SwapStatus, TxData,
)
from .config import DEFAULT_CONFIG, Config
from .crypto_engine import CryptoEngine, Protocol
from .electrum import ElectrumClient
from .errors import (
    InsufficientValue, InvalidAddress, InvalidState, NotFound,
    ProtocolViolation, ServerError, StateCoinError,
)
from .http_client import GET_ROUTE, POST_ROUTE, StateEntityClient
from .keys import KeyChain
from .signing import (
    StateChainSig, decode_message, decode_sce_address, encode_message, encode_sce_address,
)
from .storage import WalletStore
from .transaction import FIXED_FEE, tx_backup_build, tx_cpfp_build, tx_withdraw_build
from .wallet import Wallet
from .watcher import FundingWatcher, UnconfirmedPoller

__version__ = "0.4.0"
__all__ = [
    # Types
    "StateCoin", "StateCoinStatus", "BackupStatus", "SwapStatus", "FeeInfo", "TxData",
    "Action", "ActivityLog", "ActivityLogItem",
    # Registry
    "StateCoinList", "Withdraw", "Transfer", "Swap",
    # Core
    "Wallet", "WalletStore", "Config", "DEFAULT_CONFIG", "KeyChain",
    "CryptoEngine", "Protocol", "FundingWatcher", "UnconfirmedPoller",
    # Clients
    "StateEntityClient", "GET_ROUTE", "POST_ROUTE", "ElectrumClient",
    # Primitives
    "StateChainSig", "encode_sce_address", "decode_sce_address",
    "encode_message", "decode_message",
    "FIXED_FEE", "tx_backup_build", "tx_withdraw_build", "tx_cpfp_build",
    # Errors
    "StateCoinError", "NotFound", "InvalidState", "InvalidAddress",
    "InsufficientValue", "ProtocolViolation", "ServerError",
]
