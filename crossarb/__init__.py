"""Cross-exchange arbitrage detection and execution engine."""

__version__ = "0.1.0"
