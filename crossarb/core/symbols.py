"""Translation between standard BASE/QUOTE pairs and venue-native symbols."""

from typing import Tuple

from ..exceptions import SymbolFormatError

# Checked in order when a venue symbol has no separator.
KNOWN_QUOTES = ("USDT", "BTC", "ETH", "BNB", "BUSD", "USDC")

SEPARATORS = {
    "binance": "",
    "kucoin": "-",
    "gateio": "_",
    "bitfinex": "",
}


def _split_standard(pair: str) -> Tuple[str, str]:
    parts = pair.split("/") if pair else []
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise SymbolFormatError(f"Invalid pair format: {pair}. Expected format: BTC/USDT")
    return parts[0].upper(), parts[1].upper()


def _split_concatenated(symbol: str) -> Tuple[str, str]:
    for quote in KNOWN_QUOTES:
        if symbol.endswith(quote) and len(symbol) > len(quote):
            return symbol[:-len(quote)], quote
    # Unknown quote: assume a 4 letter quote on longer symbols, else 3
    size = 4 if len(symbol) > 5 else 3
    return symbol[:-size], symbol[-size:]


def format_pair(pair: str, venue: str) -> str:
    """Format a standard pair (BTC/USDT) for a venue."""
    if not pair or not venue:
        raise SymbolFormatError("Pair and exchange must be provided")
    venue = venue.lower()
    if venue not in SEPARATORS:
        raise SymbolFormatError(f"Unsupported exchange: {venue}")

    base, quote = _split_standard(pair)
    symbol = f"{base}{SEPARATORS[venue]}{quote}"
    if venue == "bitfinex":
        return f"t{symbol}"
    return symbol


def standardize_pair(symbol: str, venue: str) -> str:
    """Turn a venue symbol back into the standard BASE/QUOTE form."""
    if not symbol or not venue:
        raise SymbolFormatError("Formatted pair and exchange must be provided")
    venue = venue.lower()
    if venue not in SEPARATORS:
        raise SymbolFormatError(f"Unsupported exchange: {venue}")

    symbol = symbol.upper() if venue != "bitfinex" else symbol
    separator = SEPARATORS[venue]
    if separator:
        parts = symbol.split(separator)
        base, quote = (parts[0], parts[1]) if len(parts) == 2 else ("", "")
    else:
        if venue == "bitfinex" and symbol.startswith("t"):
            symbol = symbol[1:]
        base, quote = _split_concatenated(symbol.upper())

    if not base or not quote:
        raise SymbolFormatError(f"Failed to parse pair: {symbol} from exchange {venue}")
    return f"{base}/{quote}"
