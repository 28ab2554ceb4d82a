"""Unit tests for Dispatcher."""

from datetime import UTC, datetime
from unittest.mock import Mock

import pytest

from rsshub_bot.composer import MessageComposer
from rsshub_bot.config import TelegramConfig
from rsshub_bot.dedup import Deduplicator
from rsshub_bot.dispatcher import Dispatcher, rank_items
from rsshub_bot.exceptions import ConfigError, FetchError, SendError
from rsshub_bot.models import Feed, FeedItem
from rsshub_bot.telegram import SimulatedPublisher, TelegramPublisher


def ts(hour):
    return datetime(2024, 1, 1, hour, 0, tzinfo=UTC)


def make_feed(title, count, prefix="item"):
    return Feed(
        title=title,
        link=f"https://example.com/{title}",
        items=tuple(
            FeedItem(
                title=f"{prefix} {i}",
                link=f"https://example.com/{title}/{i}",
                published=ts(i % 24),
            )
            for i in range(count)
        ),
    )


class TestRankItems:
    """Unit tests for rank_items."""

    def test_newest_first_with_fallbacks(self):
        published = FeedItem(title="published", link="a", published=ts(10))
        updated_only = FeedItem(title="updated", link="b", updated=ts(12))
        undated = FeedItem(title="undated", link="c")
        both = FeedItem(title="both", link="d", published=ts(8), updated=ts(23))

        ranked = rank_items([undated, published, both, updated_only])

        assert [item.title for item in ranked] == ["updated", "published", "both", "undated"]

    def test_stable_for_equal_timestamps(self):
        items = [FeedItem(title=str(i), link=str(i)) for i in range(5)]

        assert rank_items(items) == items

    def test_limit(self):
        items = [FeedItem(title=str(i), link=str(i), published=ts(i)) for i in range(5)]

        assert [item.title for item in rank_items(items, limit=2)] == ["4", "3"]
        assert len(rank_items(items)) == 5


class TestDispatcherUnit:
    """Unit tests for Dispatcher.run_cycle."""

    def setup_method(self):
        """Set up a dispatcher with mocked feed sources and a recording publisher."""
        self.feed_processor = Mock()
        self.mock_processor = Mock()
        self.publisher = SimulatedPublisher()
        self.deduplicator = Deduplicator()

    def make_dispatcher(self, feed_paths, **kwargs):
        return Dispatcher(
            feed_paths=feed_paths,
            chat_id="12345",
            feed_processor=self.feed_processor,
            mock_processor=self.mock_processor,
            deduplicator=kwargs.pop("deduplicator", self.deduplicator),
            composer=kwargs.pop("composer", MessageComposer()),
            publisher=kwargs.pop("publisher", self.publisher),
            **kwargs,
        )

    def test_failing_feed_does_not_block_others(self):
        """Feed A fails, feed B still delivers its two new items."""
        feed_b = make_feed("B", 2)

        def fetch(feed_path):
            if feed_path == "/a":
                raise FetchError(feed_path, "connection refused")
            return feed_b

        self.feed_processor.fetch.side_effect = fetch
        dispatcher = self.make_dispatcher(["/a", "/b"])

        report = dispatcher.run_cycle()

        assert report.feeds_failed == 1
        assert report.feeds_processed == 1
        assert report.items_new == 2
        assert report.messages_sent == 1
        assert any("/a" in error for error in report.errors)

        assert len(self.publisher.sent) == 1
        chat_id, text, parse_mode = self.publisher.sent[0]
        assert chat_id == "12345"
        assert parse_mode == "HTML"
        assert "<b>B - 2 new updates</b>" in text
        assert "item 0" in text and "item 1" in text

    def test_unexpected_exception_is_isolated(self):
        self.feed_processor.fetch.side_effect = [RuntimeError("boom"), make_feed("B", 1)]
        dispatcher = self.make_dispatcher(["/a", "/b"])

        report = dispatcher.run_cycle()

        assert report.feeds_failed == 1
        assert report.messages_sent == 1

    def test_dropped_telegram_connection_stays_per_chunk(self):
        publisher = TelegramPublisher(TelegramConfig(bot_token="t", chat_id="12345"))
        publisher.opener = Mock()
        publisher.opener.open.side_effect = ConnectionResetError(104, "Connection reset by peer")
        self.feed_processor.fetch.side_effect = [make_feed("A", 1), make_feed("B", 1, prefix="other")]
        dispatcher = self.make_dispatcher(["/a", "/b"], publisher=publisher)

        report = dispatcher.run_cycle()

        assert publisher.opener.open.call_count == 2
        assert report.feeds_processed == 2
        assert report.feeds_failed == 0
        assert report.messages_sent == 0
        assert len(report.errors) == 2
        assert all("Connection reset by peer" in error for error in report.errors)

    def test_failure_after_fetch_is_isolated(self):
        feed_b = make_feed("B", 1)
        composer = Mock()
        composer.build.side_effect = [
            RuntimeError("template broke"),
            MessageComposer().build(feed_b, list(feed_b.items)),
        ]
        self.feed_processor.fetch.side_effect = [make_feed("A", 1, prefix="first"), feed_b]
        dispatcher = self.make_dispatcher(["/a", "/b"], composer=composer)

        report = dispatcher.run_cycle()

        assert report.feeds_failed == 1
        assert report.feeds_processed == 1
        assert report.messages_sent == 1
        assert "template broke" in report.errors[0]
        assert "/a" in report.errors[0]

    def test_items_sent_newest_first(self):
        feed = Feed(
            title="Blog",
            items=(
                FeedItem(title="old", link="1", published=ts(1)),
                FeedItem(title="new", link="2", published=ts(5)),
            ),
        )
        self.feed_processor.fetch.return_value = feed
        dispatcher = self.make_dispatcher(["/blog"])

        dispatcher.run_cycle()

        text = self.publisher.sent[0][1]
        assert text.index("1. <b>new</b>") < text.index("2. <b>old</b>")

    def test_second_cycle_sends_only_new_items(self):
        self.feed_processor.fetch.return_value = make_feed("Blog", 2)
        dispatcher = self.make_dispatcher(["/blog"])

        first = dispatcher.run_cycle()
        second = dispatcher.run_cycle()

        assert first.items_new == 2
        assert second.items_new == 0
        assert second.messages_sent == 0
        assert len(self.publisher.sent) == 1

    def test_debug_mode_resends_items(self):
        self.feed_processor.fetch.return_value = make_feed("Blog", 1)
        dispatcher = self.make_dispatcher(["/blog"], deduplicator=Deduplicator(debug_mode=True))

        dispatcher.run_cycle()
        dispatcher.run_cycle()

        assert len(self.publisher.sent) == 2

    def test_large_batch_sent_as_ordered_chunks(self):
        feed = Feed(
            title="Big",
            items=tuple(
                FeedItem(title=f"Headline {i:03d} " + "h" * 80, link=f"https://example.com/{i}", excerpt="e" * 120)
                for i in range(50)
            ),
        )
        self.feed_processor.fetch.return_value = feed
        composer = MessageComposer()
        dispatcher = self.make_dispatcher(["/big"], composer=composer)

        report = dispatcher.run_cycle()

        texts = [text for _, text, _ in self.publisher.sent]
        assert len(texts) >= 3
        assert report.messages_sent == len(texts)
        assert "".join(texts) == composer.format_message(feed, rank_items(feed.items))

    def test_send_failure_is_logged_and_not_retried(self):
        publisher = Mock()
        publisher.send_message.side_effect = [SendError("chat not found", chat_id="12345"), None]
        self.feed_processor.fetch.side_effect = [make_feed("A", 1), make_feed("B", 1, prefix="other")]
        dispatcher = self.make_dispatcher(["/a", "/b"], publisher=publisher)

        report = dispatcher.run_cycle()

        assert publisher.send_message.call_count == 2
        assert report.messages_sent == 1
        assert len(report.errors) == 1
        assert "chat not found" in report.errors[0]

    def test_mock_paths_route_to_fixture_source(self):
        self.mock_processor.fetch.return_value = make_feed("Mock", 1)
        self.feed_processor.fetch.return_value = make_feed("Live", 1, prefix="live")
        dispatcher = self.make_dispatcher(["/mock/feed.xml", "/live"])

        dispatcher.run_cycle()

        self.mock_processor.fetch.assert_called_once_with("/mock/feed.xml")
        self.feed_processor.fetch.assert_called_once_with("/live")

    def test_mock_data_mode_routes_everything_to_fixtures(self):
        self.mock_processor.fetch.return_value = make_feed("Mock", 1)
        dispatcher = self.make_dispatcher(["/live"], use_mock_data=True)

        dispatcher.run_cycle()

        self.feed_processor.fetch.assert_not_called()
        self.mock_processor.fetch.assert_called_once_with("/live")

    def test_no_feeds_is_fatal(self):
        dispatcher = self.make_dispatcher([])

        with pytest.raises(ConfigError):
            dispatcher.run_cycle()

    def test_overlapping_cycle_is_skipped(self):
        self.feed_processor.fetch.return_value = make_feed("Blog", 1)
        dispatcher = self.make_dispatcher(["/blog"])

        with dispatcher._cycle_lock:
            assert dispatcher.cycle_in_progress
            report = dispatcher.run_cycle()

        assert report.skipped
        self.feed_processor.fetch.assert_not_called()
        assert not dispatcher.cycle_in_progress

    def test_report_as_dict(self):
        self.feed_processor.fetch.return_value = make_feed("Blog", 3)
        dispatcher = self.make_dispatcher(["/blog"])

        metrics = dispatcher.run_cycle().as_dict()

        assert metrics["items_found"] == 3
        assert metrics["items_new"] == 3
        assert metrics["errors"] == []
        assert metrics["execution_id"].startswith("cycle_")
