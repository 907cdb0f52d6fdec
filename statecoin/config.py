"""
Statecoin Wallet - Configuration

Usage:
    config = Config.from_file("~/.statecoin/config.json")
    config.update({"min_anon_set": 5})
    config.select_network()
"""

import copy
import json
import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import bitcoin

log = logging.getLogger(__name__)

NETWORKS = ("mainnet", "testnet", "regtest")

DEFAULT_ELECTRUM_CONFIG = {
    "host": "127.0.0.1",
    "port": 50001,
    "protocol": "tcp",
}


@dataclass
class Config:
    network: str = "testnet"
    testing_mode: bool = False
    state_entity_endpoint: str = "http://127.0.0.1:8000"
    swap_conductor_endpoint: str = "http://127.0.0.1:8000"
    electrum_config: Dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_ELECTRUM_CONFIG))
    tor_proxy: Optional[str] = None
    # "package.module:ClassName" of the CryptoEngine implementation
    crypto_engine: Optional[str] = None

    min_anon_set: int = 10
    required_confirmations: int = 3
    # Upper bound on the server supplied withdraw fee, as a fraction of coin value
    max_withdraw_fee_fraction: float = 0.05

    poll_interval: int = 10     # UnconfirmedPoller period (seconds)
    request_timeout: int = 30   # HTTP timeout (seconds)

    notifications: bool = True
    tutorials: bool = False

    def update(self, changes: Dict[str, Any]) -> None:
        """Apply a dict of changes. Unknown keys are rejected before anything is set."""
        names = {f.name for f in fields(self)}
        for key in changes:
            if key not in names:
                raise ValueError(f"Config entry does not exist: {key}")
        if "network" in changes and changes["network"] not in NETWORKS:
            raise ValueError(f"Unknown network: {changes['network']}")
        for key, value in changes.items():
            setattr(self, key, copy.deepcopy(value))

    def select_network(self) -> None:
        """Select python-bitcoinlib chain parameters (address prefixes)."""
        bitcoin.SelectParams(self.network)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        config = cls()
        config.update(data)
        return config

    @classmethod
    def from_file(cls, path) -> "Config":
        """Load JSON overrides on top of DEFAULT_CONFIG."""
        config = copy.deepcopy(DEFAULT_CONFIG)
        path = Path(path).expanduser()
        if path.exists():
            with open(path) as f:
                config.update(json.load(f))
            log.info(f"Loaded config overrides from {path}")
        return config


DEFAULT_CONFIG = Config()
