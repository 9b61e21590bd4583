"""Command line entry point for the cross-exchange arbitrage engine."""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Dict, Optional

import click
from dotenv import load_dotenv
from loguru import logger

from .config import Config, LoggingConfig
from .exceptions import ConfigError, EngineStartError
from .exchanges.base import BaseExchange
from .exchanges.ccxt_exchange import CcxtExchange
from .core.engine import ArbitrageEngine
from .core.events import EngineEvent
from .utils import format_percent


def setup_logging(config: LoggingConfig) -> None:
    """Configure loguru sinks."""
    logger.remove()
    logger.add(sys.stderr, level=config.level,
               format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>")
    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(config.file, level="DEBUG", rotation="10 MB", retention=5,
                   serialize=config.serialize,
                   format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}")


def load_config(config_path: Optional[str], from_env: bool) -> Config:
    """Load config from YAML, or from environment variables."""
    load_dotenv()
    if from_env or config_path is None:
        return Config.from_env()
    return Config.load_from_file(config_path)


def build_exchanges(config: Config) -> Dict[str, BaseExchange]:
    """Create a ccxt adapter per enabled account."""
    exchanges = {}
    for name, account in config.enabled_exchanges().items():
        exchanges[name] = CcxtExchange(name, account)
    if len(exchanges) < 2:
        logger.warning("Less than 2 exchanges configured. Arbitrage requires at least 2 exchanges.")
    return exchanges


async def run_engine(engine: ArbitrageEngine) -> None:
    """Run until SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, engine.request_stop)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows
            pass

    engine.events.subscribe(EngineEvent.PERFORMANCE, lambda summary: logger.info(f"Performance summary: {summary}"))
    await engine.run_forever()


async def scan_once(engine: ArbitrageEngine) -> None:
    """Connect, fetch one round of books, print opportunities, disconnect."""
    opportunities = await engine.snapshot()
    if not opportunities:
        click.echo("No opportunities above threshold")
        return
    for opp in opportunities:
        click.echo(f"{opp.pair}: buy {opp.buy_venue} @ {opp.buy_price} -> "
                   f"sell {opp.sell_venue} @ {opp.sell_price} ({format_percent(opp.spread_percent)})")


@click.group()
def cli():
    """Cross-exchange arbitrage engine CLI."""
    pass


@cli.command()
@click.option('--config', 'config_path', type=click.Path(exists=True), default=None,
              help='Path to YAML config file')
@click.option('--env', 'from_env', is_flag=True, help='Read configuration from environment variables')
@click.option('--live', is_flag=True, help='Place real orders (overrides paper_trading)')
def run(config_path, from_env, live):
    """Run the scan-and-execute loop."""
    try:
        config = load_config(config_path, from_env)
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    if live:
        config.execution.paper_trading = False
    setup_logging(config.logging)

    engine = ArbitrageEngine(config, build_exchanges(config))
    try:
        asyncio.run(run_engine(engine))
    except KeyboardInterrupt:
        logger.info("Engine stopped by user")
    except EngineStartError as e:
        logger.error(f"Engine failed to start: {e}")
        sys.exit(1)


@cli.command()
@click.option('--config', 'config_path', type=click.Path(exists=True), default=None,
              help='Path to YAML config file')
@click.option('--env', 'from_env', is_flag=True, help='Read configuration from environment variables')
def scan(config_path, from_env):
    """Fetch current books once and list opportunities without trading."""
    try:
        config = load_config(config_path, from_env)
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    config.execution.paper_trading = True
    setup_logging(config.logging)

    engine = ArbitrageEngine(config, build_exchanges(config))
    try:
        asyncio.run(scan_once(engine))
    except EngineStartError as e:
        logger.error(f"Engine failed to start: {e}")
        sys.exit(1)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
