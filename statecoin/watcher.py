"""
Statecoin Wallet - Funding Watcher

Advances deposits INITIALISED -> IN_MEMPOOL -> UNCONFIRMED from chain
events, independently of protocol calls.

    watcher = FundingWatcher(electrum_client, coins, on_change=wallet.save)
    watcher.watch(shared_key_id, p_addr)     # one task per pending address
    ...
    await watcher.close()

Each subscription event only says "something changed": the address's
unspent outputs are re-queried and fed to apply_funding_event(), an
idempotent reducer. The subscription is released once the funding tx is
mined.

UnconfirmedPoller re-checks unconfirmed coins on a fixed interval and only
calls back when their content signature (count, total confirmations)
changes.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Tuple

from .coin_list import StateCoinList
from .coin_types import StateCoinStatus, TxData
from .errors import StateCoinError
from .transaction import address_to_script

log = logging.getLogger(__name__)

PENDING_STATUSES = (
    StateCoinStatus.INITIALISED,
    StateCoinStatus.IN_MEMPOOL,
    StateCoinStatus.UNCONFIRMED,
)


# ═══════════════════════════════════════════════════════════════════════════════
# REDUCER
# ═══════════════════════════════════════════════════════════════════════════════

def apply_funding_event(coins: StateCoinList, shared_key_id: str, funding_tx_data: List[TxData]) -> bool:
    """
    Apply the unspent outputs seen at a coin's deposit address.

    Returns True when nothing more is expected from the address (funding tx
    mined, or the coin has left the deposit flow).
    """
    statecoin = coins.get_coin(shared_key_id)
    if statecoin is None or statecoin.status not in PENDING_STATUSES:
        return True

    mined = False
    for tx_data in funding_tx_data:
        if tx_data.value != statecoin.value:
            log.error(f"Funding tx {tx_data.tx_hash} has value {tx_data.value} expected {statecoin.value}.")
            log.error(f"Setting value of statecoin to {tx_data.value}")
            coins.set_coin_value(shared_key_id, tx_data.value)
            statecoin.value = tx_data.value

        if tx_data.height <= 0:
            if coins.set_coin_in_mempool(shared_key_id, tx_data):
                log.info(f"Found funding tx for {shared_key_id} in mempool. txid: {tx_data.tx_hash}")
        else:
            if coins.set_coin_unconfirmed(shared_key_id, tx_data):
                log.info(f"Funding tx for {shared_key_id} mined. Height: {tx_data.height}")
            mined = True
    return mined


# ═══════════════════════════════════════════════════════════════════════════════
# WATCHER
# ═══════════════════════════════════════════════════════════════════════════════

class FundingWatcher:
    def __init__(self, electrum_client, coins: StateCoinList,
                 on_change: Optional[Callable[[str], None]] = None):
        self.electrum = electrum_client
        self.coins = coins
        self.on_change = on_change
        self._tasks: Dict[str, asyncio.Task] = {}

    def is_watching(self, shared_key_id: str) -> bool:
        task = self._tasks.get(shared_key_id)
        return task is not None and not task.done()

    def watch(self, shared_key_id: str, p_addr: str) -> asyncio.Task:
        """Start watching a deposit address. Repeated calls reuse the running task."""
        if self.is_watching(shared_key_id):
            return self._tasks[shared_key_id]
        task = asyncio.create_task(self._watch(shared_key_id, p_addr))
        self._tasks[shared_key_id] = task
        return task

    async def _watch(self, shared_key_id: str, p_addr: str) -> None:
        script = address_to_script(p_addr)
        try:
            events = await self.electrum.script_hash_subscribe(script)
            log.info(f"Subscribed to script hash for p_addr: {p_addr}")
            while True:
                await events.get()
                log.info(f"Script hash status change for p_addr: {p_addr}")
                funding_tx_data = await self.electrum.get_script_hash_list_unspent(script)
                done = apply_funding_event(self.coins, shared_key_id, funding_tx_data)
                if self.on_change:
                    self.on_change(shared_key_id)
                if done:
                    break
            await self.electrum.script_hash_unsubscribe(script)
            log.info(f"Unsubscribed from p_addr: {p_addr}")
        except StateCoinError as e:
            log.error(f"Funding watcher for {shared_key_id} stopped: {e}")
        finally:
            self._tasks.pop(shared_key_id, None)

    def stop(self, shared_key_id: str) -> None:
        task = self._tasks.pop(shared_key_id, None)
        if task:
            task.cancel()

    async def close(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


# ═══════════════════════════════════════════════════════════════════════════════
# UNCONFIRMED POLLER
# ═══════════════════════════════════════════════════════════════════════════════

def content_signature(coins: StateCoinList, block_height: int) -> Tuple[int, int]:
    """(number of unconfirmed coins, sum of their confirmations)"""
    unconfirmed = coins.get_unconfirmed_coins()
    return len(unconfirmed), sum(c.get_confirmations(block_height) for c in unconfirmed)


class UnconfirmedPoller:
    """
    Fixed interval refresh of unconfirmed coins.

    Usage:
        poller = UnconfirmedPoller(coins, lambda: wallet.block_height, wallet.refresh_unconfirmed)
        task = asyncio.create_task(poller.run())
    """

    def __init__(self, coins: StateCoinList, get_block_height: Callable[[], int],
                 on_change, interval: int = 10):
        self.coins = coins
        self.get_block_height = get_block_height
        self.on_change = on_change
        self.interval = interval
        self._last_signature: Optional[Tuple[int, int]] = None

    async def poll_once(self) -> bool:
        """Returns True if the callback ran (signature changed)."""
        signature = content_signature(self.coins, self.get_block_height())
        if signature == self._last_signature:
            return False
        await self.on_change()
        # Only a refresh that went through counts; a failed one is retried next cycle
        self._last_signature = signature
        return True

    async def run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except StateCoinError as e:
                log.error(f"Unconfirmed coin refresh failed: {e}")
            await asyncio.sleep(self.interval)
