"""Engine exception hierarchy.

Monitoring cycles contain `TransientFetchError` per coin; `execute_once`
turns every other class here into a structured `TradeResult` error.
"""


class EngineError(Exception):
    """Base class for arbitrage engine failures."""


class TransientFetchError(EngineError):
    """Market data for one coin could not be collected or priced this cycle."""

    def __init__(self, symbol: str, message: str):
        super().__init__(f"{symbol}: {message}")
        self.symbol = symbol


class TradeValidationError(EngineError):
    """A trade precondition failed; nothing was recorded or locked."""


class ConfigurationError(TradeValidationError):
    """Missing settings or a disabled exchange/coin."""


class ConcurrencyError(EngineError):
    """Another execution already holds the (user, symbol) lock."""


class ExecutionStepError(EngineError):
    """A buy, transfer or sell phase failed."""

    def __init__(self, phase: str, message: str):
        super().__init__(f"{phase} failed: {message}")
        self.phase = phase


class InvalidTransitionError(EngineError):
    """A trade record was asked to move to a status its state machine forbids."""
