"""Deduplication module for RSSHub Telegram Bot."""

from collections import OrderedDict
from collections.abc import Iterable

from .logging_config import create_execution_logger
from .models import FeedItem

# Separator between title and link; not expected in either field
KEY_SEPARATOR = "\x00"


class Deduplicator:
    """Tracks already-sent feed items in a bounded in-memory set.

    Keys are kept in insertion order. Once the set grows past ``capacity``
    the oldest keys are dropped so that only the ``retain`` most recently
    seen remain.
    """

    def __init__(
        self,
        capacity: int = 1000,
        retain: int = 500,
        debug_mode: bool = False,
        execution_id: str | None = None,
    ):
        """Initialize the Deduplicator.

        Args:
            capacity: Maximum number of keys kept in memory
            retain: Number of most recent keys kept after an eviction
            debug_mode: When True every item is treated as new and nothing is recorded
            execution_id: Execution ID for logging context
        """
        if retain > capacity:
            raise ValueError("retain cannot exceed capacity")

        self.capacity = capacity
        self.retain = retain
        self.debug_mode = debug_mode
        self.logger = create_execution_logger("deduplicator", execution_id)
        self._seen: OrderedDict[str, None] = OrderedDict()

        self.logger.info(
            "Deduplicator initialized",
            capacity=capacity,
            retain=retain,
            debug_mode=debug_mode,
        )

    def __len__(self) -> int:
        return len(self._seen)

    def generate_item_id(self, item: FeedItem) -> str:
        """Generate the dedup key for a feed item from its title and link."""
        return f"{item.title}{KEY_SEPARATOR}{item.link}"

    def is_seen(self, item: FeedItem) -> bool:
        return self.generate_item_id(item) in self._seen

    def filter_new(self, items: Iterable[FeedItem]) -> list[FeedItem]:
        """Return the items not seen before and record them as seen.

        Args:
            items: Candidate items, in the order they should be delivered

        Returns:
            New items in input order
        """
        if self.debug_mode:
            new_items = list(items)
            self.logger.debug(
                "Debug mode: skipping duplicate check", items_count=len(new_items)
            )
            return new_items

        new_items = []
        for item in items:
            item_id = self.generate_item_id(item)
            if item_id in self._seen:
                self.logger.log_item_processing(item.title, "skipped_duplicate")
                continue

            new_items.append(item)
            self._seen[item_id] = None
            self._evict_if_needed()

        return new_items

    def clear(self) -> None:
        self._seen.clear()

    def _evict_if_needed(self) -> None:
        if len(self._seen) <= self.capacity:
            return

        evicted = len(self._seen) - self.retain
        for _ in range(evicted):
            self._seen.popitem(last=False)

        self.logger.info(
            "Evicted oldest dedup keys",
            evicted=evicted,
            remaining=len(self._seen),
        )
