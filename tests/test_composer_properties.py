"""Property-based tests for MessageComposer."""

import html

from hypothesis import given
from hypothesis import strategies as st

from rsshub_bot.composer import MessageComposer
from rsshub_bot.models import Feed, FeedItem


class TestMessageComposerProperties:
    """Property-based tests for MessageComposer."""

    @given(st.text())
    def test_escape_round_trip_property(self, text):
        """
        Escaped text contains no raw markup characters and unescapes back to
        the original, so escaping is applied exactly once.
        """
        escaped = MessageComposer()._escape_html(text)

        for reserved in "<>\"'":
            assert reserved not in escaped
        assert html.unescape(escaped) == text

    @given(
        st.lists(st.text(max_size=120), min_size=1, max_size=80),
        st.integers(min_value=50, max_value=4000),
    )
    def test_split_message_property(self, lines, max_length):
        """
        Joining the chunks gives back the message, and a chunk only exceeds
        the bound when it holds a single oversized line.
        """
        message = "\n".join(lines)

        chunks = MessageComposer.split_message(message, max_length)

        assert "".join(chunks) == message
        assert all(chunk for chunk in chunks) or message == ""
        for chunk in chunks:
            assert len(chunk) <= max_length or len(chunk.splitlines(keepends=True)) == 1

    @given(
        st.lists(
            st.builds(
                FeedItem,
                title=st.text(min_size=1, max_size=200),
                link=st.text(max_size=100),
                excerpt=st.text(max_size=300),
            ),
            min_size=1,
            max_size=40,
        )
    )
    def test_build_chunks_respect_bound_property(self, items):
        """Every chunk stays within the bound and the chunks rebuild the message."""
        composer = MessageComposer(size_bound=1000)
        feed = Feed(title="Example feed")

        chunks = composer.build(feed, items)

        assert chunks
        assert "".join(chunk.text for chunk in chunks) == composer.format_message(feed, items)
        for chunk in chunks:
            assert len(chunk.text) <= 1000 or len(chunk.text.splitlines(keepends=True)) == 1
