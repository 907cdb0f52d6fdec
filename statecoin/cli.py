"""
Statecoin Wallet - Command Line

Usage:
    statecoin-wallet init
    statecoin-wallet deposit --value 100000
    statecoin-wallet list
    statecoin-wallet send --coin <shared_key_id> --to <sc1... address>
    statecoin-wallet receive --message <mm1... message>
    statecoin-wallet withdraw --coin <shared_key_id> --to <btc address>
    statecoin-wallet swap --coin <shared_key_id> --size 5
    statecoin-wallet watch
"""

import argparse
import asyncio
import getpass
import importlib
import json
import logging
import sys
from pathlib import Path

from .config import Config
from .crypto_engine import CryptoEngine
from .errors import StateCoinError
from .signing import encode_message
from .storage import DEFAULT_WALLET_PATH, WalletStore
from .wallet import Wallet

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".statecoin" / "config.json"


def load_engine(config: Config) -> CryptoEngine:
    """Instantiate the CryptoEngine named by config.crypto_engine ("module:Class")."""
    if not config.crypto_engine:
        raise StateCoinError("No Crypto Engine configured. Set \"crypto_engine\" in the config file.")
    module_name, _, class_name = config.crypto_engine.partition(":")
    engine_cls = getattr(importlib.import_module(module_name), class_name)
    return engine_cls()


def print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


# ═══════════════════════════════════════════════════════════════════════════════
# COMMANDS
# ═══════════════════════════════════════════════════════════════════════════════

async def cmd_init(args, config: Config, store: WalletStore):
    if store.exists() and not args.force:
        raise StateCoinError(f"Wallet already exists at {store.path}. Use --force to overwrite.")
    engine = load_engine(config)
    if args.mnemonic:
        wallet = Wallet.from_mnemonic(args.mnemonic, config, engine, store=store, password=args.password)
    else:
        wallet = Wallet.build_fresh(config, engine, store=store, password=args.password)
        print("Write down your mnemonic:")
        print(f"  {wallet.mnemonic}")
    wallet.save()
    print(f"Wallet saved to {store.path}")
    await wallet.close()


async def cmd_deposit(wallet: Wallet, args):
    shared_key_id, p_addr = await wallet.deposit_init(args.value)
    print(f"Coin: {shared_key_id}")
    print(f"Send exactly {args.value} sat to: {p_addr}")
    if args.wait:
        await _watch(wallet)


async def cmd_confirm(wallet: Wallet, args):
    statecoin = await wallet.deposit_confirm(args.coin)
    print(f"Deposit confirmed. Statechain: {statecoin.statechain_id}")


async def cmd_list(wallet: Wallet, args):
    if args.all:
        print_json(wallet.get_all_statecoins())
        return
    coins, total = wallet.get_unspent_statecoins()
    print_json(coins)
    print(f"Total: {total} sat")
    unconfirmed = wallet.get_unconfirmed_and_unmined_coins_funding_tx_data()
    if unconfirmed:
        print("Pending deposits:")
        print_json(unconfirmed)


async def cmd_withdraw(wallet: Wallet, args):
    tx_withdraw = await wallet.withdraw(args.coin, args.to)
    print(f"Withdraw tx broadcast: {tx_withdraw}")


async def cmd_send(wallet: Wallet, args):
    transfer_msg3 = await wallet.transfer_sender(args.coin, args.to)
    print("Give this transfer message to the receiver:")
    print(encode_message(transfer_msg3))


async def cmd_receive(wallet: Wallet, args):
    if not args.message:
        print(f"Receive address: {wallet.gen_se_address()}")
        return
    finalize_data = await wallet.transfer_receiver(args.message)
    print(f"Received coin: {finalize_data['new_shared_key_id']}")


async def cmd_swap(wallet: Wallet, args):
    if args.leave:
        await wallet.swap_deregister(args.coin)
        print(f"Coin {args.coin} removed from swap pool.")
        return
    new_statecoin = await wallet.do_swap(args.coin, args.size)
    print(f"Swap complete. New coin: {new_statecoin.shared_key_id} "
          f"(swap rounds: {new_statecoin.swap_rounds})")


async def cmd_activity(wallet: Wallet, args):
    print_json(wallet.get_activity_log(args.depth))


async def cmd_watch(wallet: Wallet, args):
    await _watch(wallet)


async def _watch(wallet: Wallet):
    """Follow deposits until interrupted."""
    print("Watching pending deposits. Ctrl-C to stop.")
    while True:
        await asyncio.sleep(wallet.config.poll_interval)
        for item in await wallet.get_unconfirmed_statecoins_display_data():
            print(f"{item['shared_key_id']}: {item['status']} "
                  f"({item['expiry_data']['confirmations']} confirmations)")


COMMANDS = {
    "deposit": cmd_deposit,
    "confirm": cmd_confirm,
    "list": cmd_list,
    "withdraw": cmd_withdraw,
    "send": cmd_send,
    "receive": cmd_receive,
    "swap": cmd_swap,
    "activity": cmd_activity,
    "watch": cmd_watch,
}

# Commands that need the indexer connection
ONLINE_COMMANDS = ("deposit", "confirm", "withdraw", "watch")


async def run(args) -> None:
    config = Config.from_file(args.config)
    if args.network:
        config.update({"network": args.network})
    store = WalletStore(args.wallet)

    if args.command == "init":
        await cmd_init(args, config, store)
        return

    wallet = Wallet.load(store, load_engine(config), password=args.password)
    try:
        if args.command in ONLINE_COMMANDS:
            await wallet.start()
        await COMMANDS[args.command](wallet, args)
    finally:
        wallet.save()
        await wallet.close()


# ═══════════════════════════════════════════════════════════════════════════════
# MAIN
# ═══════════════════════════════════════════════════════════════════════════════

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Statecoin Wallet")
    parser.add_argument("--config", default=str(DEFAULT_CONFIG_PATH), help="Config file (JSON)")
    parser.add_argument("--wallet", default=str(DEFAULT_WALLET_PATH), help="Wallet file")
    parser.add_argument("--network", choices=["mainnet", "testnet", "regtest"], help="Override network")
    parser.add_argument("--password", default=None, help="Wallet password (prompted if --ask-password)")
    parser.add_argument("--ask-password", action="store_true", help="Prompt for the wallet password")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    init_parser = subparsers.add_parser("init", help="Create a wallet")
    init_parser.add_argument("--mnemonic", help="Restore from an existing mnemonic")
    init_parser.add_argument("--force", action="store_true", help="Overwrite an existing wallet")

    deposit_parser = subparsers.add_parser("deposit", help="Start a deposit")
    deposit_parser.add_argument("--value", type=int, required=True, help="Amount in satoshis")
    deposit_parser.add_argument("--wait", action="store_true", help="Keep watching until confirmed")

    confirm_parser = subparsers.add_parser("confirm", help="Confirm a funded deposit")
    confirm_parser.add_argument("--coin", required=True, help="shared_key_id")

    list_parser = subparsers.add_parser("list", help="List statecoins")
    list_parser.add_argument("--all", action="store_true", help="Include spent coins")

    withdraw_parser = subparsers.add_parser("withdraw", help="Withdraw a coin on-chain")
    withdraw_parser.add_argument("--coin", required=True, help="shared_key_id")
    withdraw_parser.add_argument("--to", required=True, help="Bitcoin address")

    send_parser = subparsers.add_parser("send", help="Transfer a coin")
    send_parser.add_argument("--coin", required=True, help="shared_key_id")
    send_parser.add_argument("--to", required=True, help="Receiver SCE address (sc1...)")

    receive_parser = subparsers.add_parser("receive", help="Receive a coin (or show a receive address)")
    receive_parser.add_argument("--message", help="Transfer message (mm1...)")

    swap_parser = subparsers.add_parser("swap", help="Swap a coin")
    swap_parser.add_argument("--coin", required=True, help="shared_key_id")
    swap_parser.add_argument("--size", type=int, default=5, help="Swap size (participants)")
    swap_parser.add_argument("--leave", action="store_true", help="Leave the swap pool")

    activity_parser = subparsers.add_parser("activity", help="Show activity log")
    activity_parser.add_argument("--depth", type=int, default=10, help="Number of entries")

    subparsers.add_parser("watch", help="Follow pending deposits")
    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)
    if args.ask_password:
        args.password = getpass.getpass("Wallet password: ")

    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        print("Stopped.")
    except (StateCoinError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
