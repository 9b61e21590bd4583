"""Exceptions raised by the arbitrage engine."""


class ArbitrageError(Exception):
    """Base class for engine errors."""


class ConfigError(ArbitrageError):
    """Configuration could not be loaded or is invalid."""


class EngineStartError(ArbitrageError):
    """Engine could not enter the running state."""


class SymbolFormatError(ArbitrageError, ValueError):
    """Trading pair could not be formatted for, or parsed from, a venue."""
