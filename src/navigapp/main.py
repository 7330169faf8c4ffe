"""Application entry point for the Navigapp backend (API and, optionally, the polling bot)."""

import structlog

from navigapp.app import App
from navigapp.config import Config
from navigapp.logging import setup_logging
from navigapp.web.runner import run_server

logger = structlog.get_logger(__name__)


def main() -> None:
    config = Config()
    setup_logging(config.debug, config.environment)
    logger.info(
        "navigapp_starting",
        commit=config.git_commit_hash,
        build_time=config.build_time,
        bot_polling=config.bot_polling,
    )
    app = App(config)
    run_server(app, config)


if __name__ == "__main__":
    main()
