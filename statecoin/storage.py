"""
Statecoin Wallet - Wallet Store

Versioned JSON document on disk:

    {"version": 1, "updated_ts": 1700000000, "wallet": {...}}

Writes go to a temp file in the same directory and are moved into place
with os.replace, so a crash never leaves a half written wallet.
"""

import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Optional

from .compat import decrypt_aes, encrypt_aes
from .errors import NotFound

log = logging.getLogger(__name__)

STORE_VERSION = 1
DEFAULT_WALLET_PATH = Path.home() / ".statecoin" / "wallet.json"


class WalletStore:
    def __init__(self, path=DEFAULT_WALLET_PATH):
        self.path = Path(path).expanduser()

    def exists(self) -> bool:
        if not self.path.exists():
            return False
        with open(self.path) as f:
            return bool(json.load(f).get("wallet"))

    def save(self, wallet_dict: dict) -> None:
        document = {
            "version": STORE_VERSION,
            "updated_ts": int(time.time()),
            "wallet": wallet_dict,
        }
        self._write(document)
        log.debug(f"Wallet saved to {self.path}")

    def load(self) -> dict:
        if not self.path.exists():
            raise NotFound("No wallet stored.")
        with open(self.path) as f:
            document = json.load(f)
        version = document.get("version")
        if version != STORE_VERSION:
            raise ValueError(f"Unsupported wallet store version: {version}")
        wallet = document.get("wallet")
        if not wallet:
            raise NotFound("No wallet stored.")
        return wallet

    def clear(self) -> None:
        self._write({"version": STORE_VERSION, "updated_ts": int(time.time()), "wallet": {}})

    def _write(self, document: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".wallet-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(document, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            os.unlink(tmp_path)
            raise


def encrypt_mnemonic(mnemonic: str, password: Optional[str]):
    """Mnemonic as stored: plain string, or legacy AES dict when a password is set."""
    if not password:
        return mnemonic
    return encrypt_aes(mnemonic, password)


def decrypt_mnemonic(stored, password: Optional[str]) -> str:
    if isinstance(stored, str):
        return stored
    if not password:
        raise ValueError("Wallet is encrypted. Password required.")
    return decrypt_aes(stored, password)
