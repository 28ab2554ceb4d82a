"""Error types for RSSHub Telegram Bot."""


class BotError(Exception):
    """Base class for all bot errors."""


class ConfigError(BotError):
    """Invalid or missing configuration. Fatal at startup."""


class FetchError(BotError):
    """A feed could not be downloaded or parsed."""

    def __init__(self, identifier: str, cause: Exception | str):
        self.identifier = identifier
        self.cause = cause
        super().__init__(f"Failed to fetch feed {identifier}: {cause}")


class SendError(BotError):
    """A message chunk could not be delivered."""

    def __init__(self, message: str, chat_id: str = "", status_code: int | None = None):
        self.chat_id = chat_id
        self.status_code = status_code
        super().__init__(message)


class ComposeError(BotError):
    """Message composition was given inputs it cannot handle."""
