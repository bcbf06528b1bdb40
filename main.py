import logging

from container import container
from logging_config import load_logging_config


def main():
    load_logging_config(container.config.log_level())
    logger = logging.getLogger(__name__)

    from src.bot.bot import run

    logger.info("Voice recorder manager is starting...")
    run()


if __name__ == "__main__":
    main()
