"""
Statecoin Wallet - StateCoin List

Registry owning every StateCoin of a wallet, keyed by shared_key_id.

Records never leave the registry: readers get copies and every status
change goes through one of the verbs below, addressed by id.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple, Union

from .coin_types import (
    SWAP_DATA_FIELDS, StateCoin, StateCoinStatus, SwapStatus, TxData,
)
from .errors import InvalidState, NotFound

log = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# SPEND ACTIONS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Withdraw:
    """Coin withdrawn on-chain."""
    tx_withdraw: Optional[str] = None


@dataclass(frozen=True)
class Transfer:
    """Coin sent to another wallet; carries the TransferMsg3 for the receiver."""
    transfer_msg: dict


@dataclass(frozen=True)
class Swap:
    """Coin swapped away for a new identity."""


SpendAction = Union[Withdraw, Transfer, Swap]


class StateCoinList:
    """
    Registry of a wallet's statecoins.

    Usage:
        coins = StateCoinList()
        coins.add_new_coin(shared_key_id, shared_key)
        coins.set_coin_in_mempool(shared_key_id, tx_data)
        coins.set_coin_unconfirmed(shared_key_id, tx_data)
        unspent, total = coins.get_unspent_coins(block_height)
    """

    def __init__(self):
        self._coins: Dict[str, StateCoin] = {}

    def __len__(self) -> int:
        return len(self._coins)

    def __contains__(self, shared_key_id: str) -> bool:
        return shared_key_id in self._coins

    def _require(self, shared_key_id: str) -> StateCoin:
        coin = self._coins.get(shared_key_id)
        if coin is None:
            raise NotFound(f"No coin found with shared_key_id {shared_key_id}")
        return coin

    # ═══════════════════════════════════════════════════════════════════════
    # READ VIEWS (computed on every call)
    # ═══════════════════════════════════════════════════════════════════════

    def get_coin(self, shared_key_id: str) -> Optional[StateCoin]:
        """Copy of the coin record, or None."""
        coin = self._coins.get(shared_key_id)
        return coin.copy() if coin else None

    def require_coin(self, shared_key_id: str) -> StateCoin:
        """Copy of the coin record; NotFound if unknown."""
        return self._require(shared_key_id).copy()

    def _with_status(self, *statuses: StateCoinStatus) -> List[StateCoin]:
        return [coin.copy() for coin in self._coins.values() if coin.status in statuses]

    def get_all_coins(self, block_height: int) -> List[dict]:
        return [coin.get_display_info(block_height) for coin in self._coins.values()]

    def get_unspent_coins(self, block_height: int) -> Tuple[List[dict], int]:
        """Display data of owned coins and the total balance (WITHDRAWN excluded)."""
        coins = self._with_status(
            StateCoinStatus.AVAILABLE,
            StateCoinStatus.IN_SWAP,
            StateCoinStatus.AWAITING_SWAP,
            StateCoinStatus.IN_TRANSFER,
            StateCoinStatus.WITHDRAWN,
        )
        total = sum(c.value for c in coins if c.status != StateCoinStatus.WITHDRAWN)
        return [c.get_display_info(block_height) for c in coins], total

    def get_initialised_coins(self) -> List[StateCoin]:
        """Coins awaiting their funding tx to be broadcast."""
        return self._with_status(StateCoinStatus.INITIALISED)

    def get_in_mempool_coins(self) -> List[StateCoin]:
        return self._with_status(StateCoinStatus.IN_MEMPOOL)

    def get_unconfirmed_coins(self) -> List[StateCoin]:
        """Coins whose funding tx is in the mempool or mined but not yet confirmed."""
        return self._with_status(StateCoinStatus.UNCONFIRMED, StateCoinStatus.IN_MEMPOOL)

    # ═══════════════════════════════════════════════════════════════════════
    # INSERT / REMOVE
    # ═══════════════════════════════════════════════════════════════════════

    def add_coin(self, statecoin: StateCoin) -> None:
        """Add an already constructed statecoin."""
        if statecoin.shared_key_id in self._coins:
            raise InvalidState(f"Coin {statecoin.shared_key_id} already in wallet.")
        self._coins[statecoin.shared_key_id] = statecoin.copy()

    def add_new_coin(self, shared_key_id: str, shared_key: dict) -> None:
        self.add_coin(StateCoin(shared_key_id=shared_key_id, shared_key=shared_key))

    def remove_coin(self, shared_key_id: str, allow_broadcast_override: bool = False) -> None:
        coin = self._require(shared_key_id)
        if coin.status != StateCoinStatus.INITIALISED and not allow_broadcast_override:
            raise InvalidState("Should not remove coin whose funding transaction has been broadcast.")
        del self._coins[shared_key_id]

    # ═══════════════════════════════════════════════════════════════════════
    # STATUS VERBS
    # ═══════════════════════════════════════════════════════════════════════

    def set_coin_spent(self, shared_key_id: str, action: SpendAction) -> None:
        coin = self._require(shared_key_id)
        if isinstance(action, Withdraw):
            coin.status = StateCoinStatus.WITHDRAWN
            if action.tx_withdraw is not None:
                coin.tx_withdraw = action.tx_withdraw
        elif isinstance(action, Transfer):
            coin.status = StateCoinStatus.IN_TRANSFER
            coin.transfer_msg = action.transfer_msg
        elif isinstance(action, Swap):
            coin.status = StateCoinStatus.SWAPPED
        else:
            raise TypeError(f"Unknown spend action: {action!r}")

    def set_coin_in_mempool(self, shared_key_id: str, funding_tx_data: TxData) -> bool:
        """
        Funding tx seen on network.

        Returns True if the coin advanced; repeated events are no-ops.
        """
        coin = self._require(shared_key_id)
        if coin.status != StateCoinStatus.INITIALISED:
            return False
        coin.status = StateCoinStatus.IN_MEMPOOL
        self._set_funding_outpoint(coin, funding_tx_data)
        return True

    def set_coin_unconfirmed(self, shared_key_id: str, funding_tx_data: TxData) -> bool:
        """Funding tx mined. Returns True if the coin advanced."""
        coin = self._require(shared_key_id)
        if coin.status not in (StateCoinStatus.INITIALISED, StateCoinStatus.IN_MEMPOOL):
            return False
        coin.status = StateCoinStatus.UNCONFIRMED
        coin.block = funding_tx_data.height
        # May have missed the mempool event
        self._set_funding_outpoint(coin, funding_tx_data)
        return True

    @staticmethod
    def _set_funding_outpoint(coin: StateCoin, funding_tx_data: TxData) -> None:
        if coin.funding_txid:
            return
        coin.funding_txid = funding_tx_data.tx_hash
        coin.funding_vout = funding_tx_data.tx_pos

    def set_coin_value(self, shared_key_id: str, value: int) -> None:
        """Correct the expected value from the observed funding output."""
        coin = self._require(shared_key_id)
        if coin.status not in (StateCoinStatus.INITIALISED, StateCoinStatus.IN_MEMPOOL,
                               StateCoinStatus.UNCONFIRMED):
            raise InvalidState(f"Value of coin {shared_key_id} is fixed once deposit is finalized.")
        coin.value = value

    def set_coin_finalized(self, finalized_statecoin: StateCoin) -> None:
        """Replace the whole record after a multi-round protocol completes."""
        self._require(finalized_statecoin.shared_key_id)
        self._coins[finalized_statecoin.shared_key_id] = finalized_statecoin.copy()

    def set_coin_withdraw_tx(self, shared_key_id: str, tx_withdraw: str) -> None:
        self._require(shared_key_id).tx_withdraw = tx_withdraw

    def set_coins_expired(self, block_height: int) -> List[str]:
        """Mark every non-terminal coin whose backup locktime has passed EXPIRED."""
        expired = []
        for coin in self._coins.values():
            if coin.is_terminal() or not coin.tx_backup:
                continue
            if coin.get_expiry_data(block_height).blocks == 0:
                coin.status = StateCoinStatus.EXPIRED
                expired.append(coin.shared_key_id)
        if expired:
            log.warning(f"Backup locktime reached for coins: {expired}")
        return expired

    # ═══════════════════════════════════════════════════════════════════════
    # SWAP VERBS
    # ═══════════════════════════════════════════════════════════════════════

    def set_coin_awaiting_swap(self, shared_key_id: str) -> None:
        coin = self._require(shared_key_id)
        if coin.status != StateCoinStatus.AVAILABLE:
            raise InvalidState(f"Coin is not available for swap. Status: {coin.status.value}")
        coin.status = StateCoinStatus.AWAITING_SWAP
        coin.swap_status = SwapStatus.PHASE0

    def set_coin_in_swap(self, shared_key_id: str) -> None:
        coin = self._require(shared_key_id)
        if coin.status != StateCoinStatus.AWAITING_SWAP:
            raise InvalidState(f"Coin is not in a swap pool. Status: {coin.status.value}")
        coin.status = StateCoinStatus.IN_SWAP

    def set_swap_data(self, shared_key_id: str, swap_status: Optional[SwapStatus] = None,
                      **swap_data) -> None:
        """Advance the swap phase and/or store swap round scratch data."""
        coin = self._require(shared_key_id)
        unknown = set(swap_data) - set(SWAP_DATA_FIELDS)
        if unknown:
            raise ValueError(f"Not swap data fields: {sorted(unknown)}")
        for name, value in swap_data.items():
            setattr(coin, name, value)
        if swap_status is not None:
            coin.swap_status = swap_status

    def set_swap_complete(self, shared_key_id: str) -> None:
        """Old identity of a swapped coin: SWAPPED, scratch data kept for history."""
        coin = self._require(shared_key_id)
        if coin.status != StateCoinStatus.IN_SWAP:
            raise InvalidState(f"Coin is not in swap. Status: {coin.status.value}")
        coin.status = StateCoinStatus.SWAPPED

    def remove_coin_from_swap(self, shared_key_id: str) -> None:
        coin = self._require(shared_key_id)
        if coin.status == StateCoinStatus.IN_SWAP:
            raise InvalidState("Swap already begun. Cannot remove coin.")
        if coin.status != StateCoinStatus.AWAITING_SWAP:
            raise InvalidState("Coin is not in a swap pool.")
        for name in SWAP_DATA_FIELDS:
            setattr(coin, name, None)
        coin.status = StateCoinStatus.AVAILABLE

    # ═══════════════════════════════════════════════════════════════════════
    # SERIALIZATION
    # ═══════════════════════════════════════════════════════════════════════

    def __iter__(self) -> Iterator[StateCoin]:
        return iter([coin.copy() for coin in self._coins.values()])

    def to_dict(self) -> dict:
        return {"coins": [coin.to_dict() for coin in self._coins.values()]}

    @classmethod
    def from_dict(cls, data: dict) -> "StateCoinList":
        statecoins = cls()
        for item in data.get("coins", []):
            statecoins.add_coin(StateCoin.from_dict(item))
        return statecoins
