"""
Statecoin Wallet - Errors

Error taxonomy shared by the registry, the transaction builder and the
protocol runs. Every protocol step raises one of these; nothing in the
library swallows them.
"""


class StateCoinError(Exception):
    """Base class for all wallet errors."""


class NotFound(StateCoinError):
    """Unknown coin id."""


class InvalidState(StateCoinError):
    """Operation illegal for the current coin status or swap phase."""


class InvalidAddress(StateCoinError):
    """Malformed destination address."""


class InsufficientValue(StateCoinError):
    """Fee arithmetic would underflow an output."""


class ProtocolViolation(StateCoinError):
    """A cryptographic or consistency check against peer/server data failed."""


class ServerError(StateCoinError):
    """State Entity or indexer call failed."""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(f"Server Error {code}: {message}")
