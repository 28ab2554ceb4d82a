"""Process entry point for RSSHub Telegram Bot."""

import os
import signal

from dotenv import load_dotenv

from .composer import MessageComposer
from .config import AppConfig, Config
from .dedup import Deduplicator
from .dispatcher import Dispatcher
from .exceptions import ConfigError
from .logging_config import create_execution_logger, setup_structured_logging
from .rss import FeedProcessor, MockFeedProcessor
from .scheduler import Scheduler
from .telegram import SimulatedPublisher, TelegramPublisher

# Seconds to wait for an in-flight cycle when shutting down
SHUTDOWN_TIMEOUT = 30


def build_publisher(config: AppConfig):
    """Pick the outbound sink once, at startup."""
    if config.simulate_bot_only:
        return SimulatedPublisher()
    return TelegramPublisher(config.telegram)


def build_dispatcher(config: AppConfig, publisher) -> Dispatcher:
    """Wire the feed sources, deduplicator and composer into a Dispatcher."""
    return Dispatcher(
        feed_paths=config.feed_paths,
        chat_id=config.telegram.chat_id,
        feed_processor=FeedProcessor(
            config.rss.rsshub_url, proxy_url=config.telegram.proxy_url
        ),
        mock_processor=MockFeedProcessor(),
        use_mock_data=config.use_mock_data,
        deduplicator=Deduplicator(debug_mode=config.debug_mode),
        composer=MessageComposer(),
        publisher=publisher,
        parse_mode=config.telegram.parse_mode,
    )


def main() -> int:
    """Run the bot until SIGINT/SIGTERM.

    Returns:
        Process exit code: 0 on graceful shutdown, 1 on startup or fatal errors
    """
    load_dotenv()
    setup_structured_logging(os.getenv("LOG_LEVEL", "INFO"))
    logger = create_execution_logger("main")

    try:
        config = Config().load()
        publisher = build_publisher(config)
        dispatcher = build_dispatcher(config, publisher)
        scheduler = Scheduler(config.schedule, dispatcher.run_cycle)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}", error=str(e))
        return 1

    def handle_signal(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, shutting down")
        scheduler.stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    logger.info(
        "RSSHub Telegram Bot started",
        feed_count=len(config.feed_paths),
        simulate_bot_only=config.simulate_bot_only,
        use_mock_data=config.use_mock_data,
        debug_mode=config.debug_mode,
    )
    scheduler.start()

    # Short joins keep the main thread responsive to signals
    while not scheduler.join(timeout=1) and not scheduler.stopped:
        pass

    if not scheduler.join(timeout=SHUTDOWN_TIMEOUT):
        logger.warning("Scheduler did not stop within the shutdown timeout")

    publisher.close()
    dispatcher.feed_processor.close()

    if scheduler.error is not None:
        logger.error(f"Bot stopped after fatal error: {scheduler.error}")
        return 1

    logger.info("RSSHub Telegram Bot stopped")
    return 0
