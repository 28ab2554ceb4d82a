"""Message composition for RSSHub Telegram Bot."""

import re
from collections.abc import Sequence

from .exceptions import ComposeError
from .logging_config import create_execution_logger
from .models import (
    DEFAULT_CHUNK_SIZE,
    TELEGRAM_MAX_MESSAGE_LENGTH,
    Feed,
    FeedItem,
    MessageChunk,
)

UNKNOWN_SOURCE = "Unknown source"
EXCERPT_LENGTH = 100

_WHITESPACE_RE = re.compile(r"\s+")


class MessageComposer:
    """Builds HTML notification messages for a batch of new feed items."""

    def __init__(
        self,
        size_bound: int = DEFAULT_CHUNK_SIZE,
        excerpt_length: int = EXCERPT_LENGTH,
        execution_id: str | None = None,
    ):
        """Initialize the composer.

        Args:
            size_bound: Maximum length of a single chunk
            excerpt_length: Maximum length of an item excerpt before the ellipsis
            execution_id: Execution ID for logging context
        """
        if size_bound <= 0 or size_bound > TELEGRAM_MAX_MESSAGE_LENGTH:
            raise ComposeError(
                f"Chunk size must be between 1 and {TELEGRAM_MAX_MESSAGE_LENGTH}, "
                f"got {size_bound}"
            )

        self.size_bound = size_bound
        self.excerpt_length = excerpt_length
        self.logger = create_execution_logger("composer", execution_id)

    def build(self, feed: Feed, items: Sequence[FeedItem]) -> list[MessageChunk]:
        """Compose the message for a feed's new items and split it into chunks.

        Args:
            feed: Feed the items came from
            items: New items, in display order

        Returns:
            Ordered chunks; empty when there are no items
        """
        if not items:
            return []

        message = self.format_message(feed, items)
        chunks = self.split_message(message, self.size_bound)

        self.logger.debug(
            "Composed message",
            feed_path=feed.link or "",
            items_count=len(items),
            message_length=len(message),
            chunks_count=len(chunks),
        )
        return [MessageChunk(text=chunk, size_bound=self.size_bound) for chunk in chunks]

    def format_message(self, feed: Feed, items: Sequence[FeedItem]) -> str:
        """Format the full HTML message, before any splitting."""
        feed_title = feed.title or feed.link or UNKNOWN_SOURCE
        message = f"<b>{self._escape_html(feed_title)} - {len(items)} new updates</b>\n\n"

        for index, item in enumerate(items, start=1):
            title = self._escape_html(item.title)
            content = self._escape_html(
                self.truncate_content(item.excerpt, self.excerpt_length)
            )
            message += f"{index}. <b>{title}</b>\n{content}\n{item.link}\n\n"

        return message

    @staticmethod
    def truncate_content(content: str | None, max_length: int) -> str:
        """Collapse whitespace and cut the text to max_length, adding an ellipsis."""
        if not content:
            return ""

        cleaned = _WHITESPACE_RE.sub(" ", content).strip()
        if len(cleaned) <= max_length:
            return cleaned

        return cleaned[:max_length] + "..."

    @staticmethod
    def split_message(message: str, max_length: int) -> list[str]:
        """Split a message on line boundaries into pieces of at most max_length.

        Line endings are kept, so joining the pieces gives back the message.
        A single line longer than max_length becomes its own oversized piece.
        """
        if len(message) <= max_length:
            return [message]

        chunks = []
        current = ""
        for line in message.splitlines(keepends=True):
            if current and len(current) + len(line) > max_length:
                chunks.append(current)
                current = line
            else:
                current += line

        if current:
            chunks.append(current)

        return chunks

    def _escape_html(self, text: str | None) -> str:
        """
        Escape HTML characters in text for Telegram HTML parsing.

        Args:
            text: Text to escape

        Returns:
            HTML-escaped text
        """
        if not text:
            return ""

        text = text.replace("&", "&amp;")
        text = text.replace("<", "&lt;")
        text = text.replace(">", "&gt;")
        text = text.replace('"', "&quot;")
        text = text.replace("'", "&#x27;")

        return text
