"""
Statecoin protocol runs against the State Entity and swap conductor.

Deposit, transfer and withdraw work on StateCoin copies and return the
result for the caller to commit; swap phases advance the coin through
StateCoinList verbs.
"""

from .deposit import deposit_confirm, deposit_init
from .swap import (
    SwapToken, swap_deregister, swap_init, swap_phase0, swap_phase1,
    swap_phase2, swap_phase3, swap_phase4,
)
from .transfer import transfer_receiver, transfer_receiver_finalize, transfer_sender
from .withdraw import withdraw

__all__ = [
    "deposit_init",
    "deposit_confirm",
    "transfer_sender",
    "transfer_receiver",
    "transfer_receiver_finalize",
    "withdraw",
    "SwapToken",
    "swap_init",
    "swap_deregister",
    "swap_phase0",
    "swap_phase1",
    "swap_phase2",
    "swap_phase3",
    "swap_phase4",
]
