"""Unit tests for the process entry point."""

from unittest.mock import Mock, patch

import pytest

from rsshub_bot import main as main_module
from rsshub_bot.config import AppConfig, RSSConfig, ScheduleConfig, TelegramConfig
from rsshub_bot.exceptions import ConfigError
from rsshub_bot.rss import MockFeedProcessor
from rsshub_bot.telegram import SimulatedPublisher, TelegramPublisher


def make_config(**overrides):
    values = {
        "telegram": TelegramConfig(bot_token="123:abc", chat_id="-100"),
        "rss": RSSConfig(rsshub_url="https://rsshub.app", feed_paths=("/36kr/newsflashes",)),
        "schedule": ScheduleConfig(interval_hours=1),
    }
    values.update(overrides)
    return AppConfig(**values)


@pytest.fixture
def quiet_startup():
    """Skip .env loading and root logger reconfiguration."""
    with (
        patch.object(main_module, "load_dotenv"),
        patch.object(main_module, "setup_structured_logging"),
        patch.object(main_module.signal, "signal") as mock_signal,
    ):
        yield mock_signal


class TestMainUnit:
    """Unit tests for main and its builders."""

    def test_build_publisher_selects_variant(self):
        assert isinstance(
            main_module.build_publisher(make_config(simulate_bot_only=True)), SimulatedPublisher
        )
        assert isinstance(main_module.build_publisher(make_config()), TelegramPublisher)

    def test_build_dispatcher_wiring(self):
        config = make_config(use_mock_data=True, debug_mode=True)
        publisher = SimulatedPublisher()

        dispatcher = main_module.build_dispatcher(config, publisher)

        assert dispatcher.feed_paths == ("/mock/36kr_newsflashes_rss.xml",)
        assert dispatcher.chat_id == "-100"
        assert dispatcher.publisher is publisher
        assert dispatcher.deduplicator.debug_mode
        assert isinstance(dispatcher.mock_processor, MockFeedProcessor)

    def test_mock_data_cycle_end_to_end(self):
        config = make_config(use_mock_data=True, simulate_bot_only=True)
        publisher = main_module.build_publisher(config)
        dispatcher = main_module.build_dispatcher(config, publisher)

        first = dispatcher.run_cycle()
        second = dispatcher.run_cycle()

        assert first.items_new == 3
        assert first.messages_sent == 1
        assert second.items_new == 0
        text = publisher.sent[0][1]
        assert text.startswith("<b>36kr - newsflashes - 3 new updates</b>")
        # Newest item first; the undated one last
        assert text.index("EV maker") < text.index("Chipmaker") < text.index("Cloud provider")
        assert "storage prices &amp; adds" in text

    def test_config_error_exits_non_zero(self, quiet_startup):
        with patch.object(main_module, "Config") as mock_config_class:
            mock_config_class.return_value.load.side_effect = ConfigError("rssHubUrl is required")

            assert main_module.main() == 1

        quiet_startup.assert_not_called()

    def test_graceful_shutdown_exits_zero(self, quiet_startup):
        scheduler = Mock(error=None, stopped=True)
        scheduler.join.return_value = True

        with (
            patch.object(main_module, "Config") as mock_config_class,
            patch.object(main_module, "Scheduler", return_value=scheduler),
        ):
            mock_config_class.return_value.load.return_value = make_config(simulate_bot_only=True)

            assert main_module.main() == 0

        scheduler.start.assert_called_once()
        assert quiet_startup.call_count == 2

        handler = quiet_startup.call_args_list[0][0][1]
        handler(main_module.signal.SIGTERM, None)
        scheduler.stop.assert_called_once()

    def test_fatal_scheduler_error_exits_non_zero(self, quiet_startup):
        scheduler = Mock(error=ConfigError("No feeds configured"), stopped=True)
        scheduler.join.return_value = True

        with (
            patch.object(main_module, "Config") as mock_config_class,
            patch.object(main_module, "Scheduler", return_value=scheduler),
        ):
            mock_config_class.return_value.load.return_value = make_config(simulate_bot_only=True)

            assert main_module.main() == 1
