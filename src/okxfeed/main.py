"""
okxfeed - OKX market-data streaming

Command-line entry point. Seeds each instrument with recent candles over REST,
then streams candles, trades and tickers and logs every event until SIGINT or
SIGTERM.

Usage:
    okxfeed [INSTRUMENT ...]        # defaults to BTC-USDT
"""

import asyncio
import signal
import sys
from typing import NoReturn

from okxfeed.config import get_settings
from okxfeed.data import OKXAPIError, OKXHistoryClient
from okxfeed.stream import OKXStreamClient, StreamError, StreamMessage, Subscription
from okxfeed.utils import LogConfig, get_logger, setup_logging

DEFAULT_INSTRUMENTS = ["BTC-USDT"]

# Global shutdown flag
shutdown_event = asyncio.Event()


def setup_signal_handlers() -> None:
    """Setup graceful shutdown handlers for SIGINT and SIGTERM."""

    def signal_handler(signum: int, frame: object) -> None:
        logger = get_logger(__name__)
        logger.info("shutdown_signal_received", signal=signal.Signals(signum).name)
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def log_message(message: StreamMessage) -> None:
    logger = get_logger(__name__)
    for event in message.data:
        payload = event.to_dict() if hasattr(event, "to_dict") else event
        logger.info("stream_event", channel=message.channel, snapshot=message.is_snapshot, event=payload)


async def seed_history(instruments: list[str]) -> None:
    """Log the latest REST candle of each instrument."""
    logger = get_logger(__name__)
    async with OKXHistoryClient() as history:
        for instrument in instruments:
            try:
                candles = await history.get_historical_candles(instrument, "1H", limit=100)
            except OKXAPIError as e:
                logger.warning("history_seed_failed", instrument=instrument, error=str(e))
                continue
            if candles:
                logger.info(
                    "history_seeded",
                    instrument=instrument,
                    count=len(candles),
                    latest=candles[-1].to_dict(),
                )


async def async_main(instruments: list[str]) -> int:
    """
    Async main function.

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    settings = get_settings()

    setup_logging(
        LogConfig(
            level=settings.logging.level,
            format=settings.logging.format,
            file_path=settings.logging.file_path,
        )
    )
    logger = get_logger(__name__)
    logger.info("okxfeed_starting", instruments=instruments)

    setup_signal_handlers()

    client = OKXStreamClient(settings)

    def on_error(error: StreamError) -> None:
        logger.error("stream_error", error=str(error), error_type=type(error).__name__)

    client.on_error(on_error)

    try:
        await seed_history(instruments)

        for instrument in instruments:
            await client.subscribe(Subscription.candles(instrument, "1H"), log_message)
            await client.subscribe(Subscription.trades(instrument), log_message)
            await client.subscribe_ticker(instrument, log_message)

        await shutdown_event.wait()
        return 0

    except Exception as e:
        logger.critical("fatal_error", error=str(e), exc_info=True)
        return 1
    finally:
        await client.disconnect()
        logger.info("okxfeed_stopped", stats=client.stats)


def main() -> NoReturn:
    """
    Main entry point.

    This function is called when running the client via the CLI.
    """
    instruments = sys.argv[1:] or DEFAULT_INSTRUMENTS
    exit_code = asyncio.run(async_main(instruments))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
