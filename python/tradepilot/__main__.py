"""Run one trader: ``python -m tradepilot``.

Configuration comes from the environment (see ``.env.example``). The
process runs until SIGINT or SIGTERM, then stops the timer, lets an
in-flight cycle finish and closes exchange and database handles.
"""

import asyncio
import signal
import sys

from loguru import logger

from tradepilot.trading._internal.runtime import create_trading_runtime
from tradepilot.trading.config import load_config_from_env
from tradepilot.trading.errors import TradingError
from tradepilot.utils.env import env_str

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level>"
)


def configure_logging() -> None:
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=(env_str("LOG_LEVEL", "INFO") or "INFO").upper())


async def run() -> int:
    try:
        config = load_config_from_env()
        runtime = await create_trading_runtime(config)
    except (TradingError, ValueError) as exc:
        logger.error("Cannot start trader: {}", exc)
        return 1

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            # Windows event loops: fall back to KeyboardInterrupt
            pass

    engine = runtime.engine
    try:
        await engine.start()
        await stop_requested.wait()
        logger.info("Shutdown requested")
    finally:
        await engine.shutdown()
        status = engine.get_status()
        logger.info("Trader {} stopped after {} cycles", status.trader_id, status.cycle_number)
    return 0


def main() -> None:
    configure_logging()
    try:
        code = asyncio.run(run())
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
