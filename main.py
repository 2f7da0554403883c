import asyncio

from core.initialization import initialize_components, load_configuration
from modules.errors import TradingBotError
from utils.config_validator import validate_config
from utils.logger import setup_logger


async def run_bot() -> None:
    """
    Entrypoint coroutine for the trading bot.

    Loads and validates the configuration, attaches console and file handlers
    to the package loggers, then runs the polling loop until cancelled.
    """
    config = load_configuration()
    validate_config(config)

    # modules.* and core.* log through getLogger(__name__)
    logger = setup_logger("TradingBot", to_console=True)
    setup_logger("modules")
    setup_logger("core")

    components = initialize_components(config, logger=logger)
    await components["bot"].run()


def main():
    try:
        asyncio.run(run_bot())
    except KeyboardInterrupt:
        print("👋 Bot stopped by user")
    except (TradingBotError, ValueError, TypeError) as e:
        print(f"❌ Bot terminated due to error: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
