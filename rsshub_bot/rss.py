"""RSS Feed Processing module for RSSHub Telegram Bot."""

import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import feedparser
import requests
from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from .exceptions import FetchError
from .logging_config import create_execution_logger
from .models import Feed, FeedItem

MOCK_PREFIX = "/mock/"
DEFAULT_FIXTURES_DIR = Path(__file__).parent / "fixtures"


class BaseFeedProcessor:
    """Shared parsing and normalization for feed sources."""

    component = "feed_processor"

    def __init__(self, execution_id: str | None = None):
        self.logger = create_execution_logger(self.component, execution_id)

    def fetch(self, identifier: str) -> Feed:
        raise NotImplementedError

    def parse_content(self, content: bytes | str, identifier: str) -> Feed:
        """Parse raw RSS/Atom content into a Feed.

        Args:
            content: Raw feed document
            identifier: Feed identifier, used for logging and errors

        Returns:
            Normalized Feed; entries without a title are dropped

        Raises:
            FetchError: If the document cannot be parsed as a feed
        """
        parsed = feedparser.parse(content)

        if parsed.bozo:
            bozo_exception = getattr(parsed, "bozo_exception", "unknown parse error")
            if not parsed.entries and not parsed.feed:
                raise FetchError(identifier, bozo_exception)
            self.logger.warning(
                f"Feed parsing warning for {identifier}: {bozo_exception}",
                feed_path=identifier,
                bozo_exception=str(bozo_exception),
            )

        items = []
        for entry in parsed.entries:
            try:
                item = self.normalize_item(entry)
            except (AttributeError, TypeError, ValueError) as e:
                self.logger.warning(
                    f"Failed to normalize entry from {identifier}: {e}",
                    feed_path=identifier,
                    error=str(e),
                )
                continue

            if item is None:
                continue
            items.append(item)

        feed_info = parsed.feed
        feed = Feed(
            title=feed_info.get("title") or None,
            link=feed_info.get("link") or None,
            description=feed_info.get("description") or None,
            items=tuple(items),
        )

        self.logger.info(
            "Successfully parsed feed",
            feed_path=identifier,
            items_count=len(items),
            total_entries=len(parsed.entries),
        )
        return feed

    def normalize_item(self, raw_item: dict[str, Any]) -> FeedItem | None:
        """Normalize a raw feed entry into a FeedItem.

        Args:
            raw_item: Raw feed entry from feedparser

        Returns:
            Normalized FeedItem, or None when the entry has no title
        """
        title = (raw_item.get("title") or "").strip()
        if not title:
            return None

        link = raw_item.get("link") or ""

        published = self.parse_date(raw_item.get("published"))
        updated = self.parse_date(raw_item.get("updated"))

        # Prefer the summary, then description, then Atom content
        content = raw_item.get("summary") or raw_item.get("description") or ""
        if not content:
            raw_content = raw_item.get("content")
            if isinstance(raw_content, list) and raw_content:
                content = raw_content[0].get("value", "")
            elif raw_content:
                content = str(raw_content)

        return FeedItem(
            title=title,
            link=link,
            published=published,
            updated=updated,
            excerpt=self.clean_html_content(content),
        )

    @staticmethod
    def parse_date(value: str | None) -> datetime | None:
        """Parse a feed date string into a timezone-aware datetime.

        Naive values are assumed to be UTC. Unparseable values give None.
        """
        if not value:
            return None

        try:
            parsed = date_parser.parse(value)
        except (ValueError, OverflowError):
            return None

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed

    @staticmethod
    def clean_html_content(content: str | None) -> str:
        """Remove HTML tags from content and normalize whitespace.

        Args:
            content: Raw content that may contain HTML

        Returns:
            Clean text content without HTML tags
        """
        if not content:
            return ""

        if "<" in content or ">" in content:
            soup = BeautifulSoup(content, "html.parser")

            for script in soup(["script", "style"]):
                script.decompose()

            content = soup.get_text(separator=" ")

        return " ".join(content.split())


class FeedProcessor(BaseFeedProcessor):
    """Fetches feeds from the network, directly or through an RSSHub instance."""

    def __init__(
        self,
        rsshub_url: str,
        timeout: float = 10,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        backoff_factor: float = 2.0,
        proxy_url: str | None = None,
        execution_id: str | None = None,
    ):
        """Initialize FeedProcessor with configuration.

        Args:
            rsshub_url: Base URL that relative feed paths are appended to
            timeout: HTTP request timeout in seconds
            max_attempts: Download attempts before giving up
            retry_delay: Delay before the first retry, in seconds
            backoff_factor: Multiplier applied to the delay after each retry
            proxy_url: Optional HTTP(S) proxy
            execution_id: Execution ID for logging context
        """
        super().__init__(execution_id)
        self.rsshub_url = rsshub_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.backoff_factor = backoff_factor
        self.session = requests.Session()
        self.session.headers.update(
            {"User-Agent": "RSSHub-Telegram-Bot/1.0 (RSS to Telegram Bot)"}
        )
        if proxy_url:
            self.session.proxies.update({"http": proxy_url, "https": proxy_url})

        self.logger.info(
            "FeedProcessor initialized",
            rsshub_url=self.rsshub_url,
            timeout=timeout,
            max_attempts=self.max_attempts,
            proxy=bool(proxy_url),
        )

    def resolve_url(self, identifier: str) -> str:
        """Return the absolute URL for a feed path or URL."""
        if identifier.startswith(("https://", "http://")):
            return identifier

        if not identifier.startswith("/"):
            identifier = "/" + identifier
        return f"{self.rsshub_url}{identifier}"

    def fetch(self, identifier: str) -> Feed:
        """Download and parse a single feed.

        Args:
            identifier: Absolute feed URL or path relative to the RSSHub URL

        Returns:
            Normalized Feed

        Raises:
            FetchError: If the feed cannot be downloaded or parsed
        """
        url = self.resolve_url(identifier)
        self.logger.info("Fetching RSS feed", feed_path=identifier, url=url)

        content = self._download(identifier, url)
        return self.parse_content(content, identifier)

    def close(self) -> None:
        self.session.close()

    def _download(self, identifier: str, url: str) -> bytes:
        last_error: Exception | None = None

        for attempt in range(self.max_attempts):
            try:
                response = self.session.get(url, timeout=self.timeout)
                response.raise_for_status()
                self.logger.info(
                    "Feed downloaded successfully",
                    feed_path=identifier,
                    status_code=response.status_code,
                    content_length=len(response.content),
                )
                return response.content
            except requests.RequestException as e:
                last_error = e
                self.logger.warning(
                    f"Failed to download feed {url} (attempt {attempt + 1}): {e}",
                    feed_path=identifier,
                    attempt=attempt + 1,
                    error=str(e),
                )
                if attempt < self.max_attempts - 1:
                    time.sleep(self.retry_delay * self.backoff_factor**attempt)

        raise FetchError(identifier, last_error)


class MockFeedProcessor(BaseFeedProcessor):
    """Reads feeds from local fixture files instead of the network."""

    component = "mock_feed_processor"

    def __init__(
        self,
        fixtures_dir: Path | str = DEFAULT_FIXTURES_DIR,
        execution_id: str | None = None,
    ):
        super().__init__(execution_id)
        self.fixtures_dir = Path(fixtures_dir)
        self.logger.info(
            "MockFeedProcessor initialized", fixtures_dir=str(self.fixtures_dir)
        )

    @staticmethod
    def is_mock_path(identifier: str) -> bool:
        """Check whether an identifier routes to a local fixture."""
        return identifier.startswith(MOCK_PREFIX)

    def fetch(self, identifier: str) -> Feed:
        """Read and parse a fixture feed.

        Raises:
            FetchError: If the fixture is missing, unreadable or not a feed
        """
        file_name = identifier.removeprefix(MOCK_PREFIX).lstrip("/")
        file_path = self.fixtures_dir / file_name
        self.logger.info(
            "Reading mock RSS feed from local file",
            feed_path=identifier,
            file_path=str(file_path),
        )

        try:
            content = file_path.read_bytes()
        except OSError as e:
            raise FetchError(identifier, e) from e

        return self.parse_content(content, identifier)
