"""Poll cycle orchestration for RSSHub Telegram Bot."""

import threading
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime

from .composer import MessageComposer
from .dedup import Deduplicator
from .exceptions import ConfigError, FetchError, SendError
from .logging_config import ExecutionLogger, create_execution_logger, new_execution_id
from .models import Feed, FeedItem
from .rss import BaseFeedProcessor, MockFeedProcessor

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def rank_items(items: Sequence[FeedItem], limit: int | None = None) -> list[FeedItem]:
    """Sort items newest first and optionally keep only the first ``limit``.

    Items without any timestamp sort as if published at the epoch. The sort
    is stable, so items with equal timestamps keep their feed order.
    """
    ranked = sorted(items, key=lambda item: item.published_at or EPOCH, reverse=True)
    if limit is None:
        return ranked
    return ranked[:limit]


@dataclass
class CycleReport:
    """Outcome of a single poll cycle."""

    execution_id: str
    skipped: bool = False
    feeds_processed: int = 0
    feeds_failed: int = 0
    items_found: int = 0
    items_new: int = 0
    messages_sent: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


class Dispatcher:
    """Runs poll cycles: fetch, rank, deduplicate, compose and send."""

    def __init__(
        self,
        feed_paths: Sequence[str],
        chat_id: str,
        feed_processor: BaseFeedProcessor,
        deduplicator: Deduplicator,
        composer: MessageComposer,
        publisher,
        mock_processor: MockFeedProcessor | None = None,
        use_mock_data: bool = False,
        item_limit: int | None = None,
        parse_mode: str | None = "HTML",
    ):
        """Initialize the dispatcher.

        Args:
            feed_paths: Feed identifiers, processed in this order every cycle
            chat_id: Telegram chat receiving the notifications
            feed_processor: Network feed source
            deduplicator: Shared seen-item tracker
            composer: Builds message chunks for new items
            publisher: Outbound sink with ``send_message(chat_id, text, parse_mode)``
            mock_processor: Fixture feed source for ``/mock/`` identifiers
            use_mock_data: Route every identifier to the fixture source
            item_limit: Keep only the newest N items per feed (None keeps all)
            parse_mode: Telegram parse mode for the composed messages
        """
        self.feed_paths = tuple(feed_paths)
        self.chat_id = chat_id
        self.feed_processor = feed_processor
        self.mock_processor = mock_processor
        self.use_mock_data = use_mock_data
        self.deduplicator = deduplicator
        self.composer = composer
        self.publisher = publisher
        self.item_limit = item_limit
        self.parse_mode = parse_mode
        self._cycle_lock = threading.Lock()

    @property
    def cycle_in_progress(self) -> bool:
        return self._cycle_lock.locked()

    def select_source(self, feed_path: str) -> BaseFeedProcessor:
        """Pick the feed source for an identifier."""
        if self.mock_processor is not None and (
            self.use_mock_data or MockFeedProcessor.is_mock_path(feed_path)
        ):
            return self.mock_processor
        return self.feed_processor

    def run_cycle(self) -> CycleReport:
        """Process every configured feed once.

        Failures of a single feed or message are logged and recorded in the
        report; they never stop the remaining feeds. A call made while a
        previous cycle is still running is skipped.

        Raises:
            ConfigError: If no feeds are configured
        """
        execution_id = new_execution_id("cycle")
        report = CycleReport(execution_id=execution_id)
        logger = create_execution_logger("dispatcher", execution_id)

        if not self.feed_paths:
            raise ConfigError("No feeds configured")

        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("Previous cycle still running, skipping this one")
            report.skipped = True
            return report

        try:
            logger.log_execution_start(feed_count=len(self.feed_paths))
            for feed_path in self.feed_paths:
                self._process_feed(feed_path, report, logger)

            logger.log_metrics(report.as_dict())
            logger.log_execution_end(
                success=not report.errors, feeds_failed=report.feeds_failed
            )
        finally:
            self._cycle_lock.release()

        return report

    def _process_feed(
        self, feed_path: str, report: CycleReport, logger: ExecutionLogger
    ) -> None:
        logger.info(f"Processing feed: {feed_path}", feed_path=feed_path)

        try:
            feed = self.select_source(feed_path).fetch(feed_path)
        except FetchError as e:
            self._record_feed_failure(feed_path, e.cause, report, logger)
            return
        except Exception as e:
            self._record_feed_failure(feed_path, e, report, logger)
            return

        report.items_found += len(feed.items)
        logger.log_feed_processing(feed_path, len(feed.items))

        try:
            self._deliver_new_items(feed_path, feed, report, logger)
        except ConfigError:
            raise
        except Exception as e:
            self._record_feed_failure(feed_path, e, report, logger)
            return

        report.feeds_processed += 1

    def _deliver_new_items(
        self, feed_path: str, feed: Feed, report: CycleReport, logger: ExecutionLogger
    ) -> None:
        latest_items = rank_items(feed.items, self.item_limit)
        new_items = self.deduplicator.filter_new(latest_items)
        report.items_new += len(new_items)

        if not new_items:
            logger.info("No new items", feed_path=feed_path)
            return

        self._send_items(feed_path, feed, new_items, report, logger)

    def _send_items(
        self,
        feed_path: str,
        feed: Feed,
        items: list[FeedItem],
        report: CycleReport,
        logger: ExecutionLogger,
    ) -> None:
        chunks = self.composer.build(feed, items)
        logger.info(
            f"Sending combined message for {feed_path} with {len(items)} items",
            feed_path=feed_path,
            items_count=len(items),
            chunks_count=len(chunks),
        )

        for index, chunk in enumerate(chunks, start=1):
            try:
                self.publisher.send_message(self.chat_id, chunk.text, self.parse_mode)
            except SendError as e:
                error_msg = f"Failed to send chunk {index}/{len(chunks)} for {feed_path}: {e}"
                logger.error(error_msg, feed_path=feed_path, error=str(e))
                report.errors.append(error_msg)
                continue

            report.messages_sent += 1

    def _record_feed_failure(
        self,
        feed_path: str,
        cause: Exception | str,
        report: CycleReport,
        logger: ExecutionLogger,
    ) -> None:
        error_msg = f"Failed to process feed {feed_path}: {cause}"
        logger.error(error_msg, feed_path=feed_path, error=str(cause))
        report.feeds_failed += 1
        report.errors.append(error_msg)
