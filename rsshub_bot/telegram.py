"""Telegram publishers for RSSHub Telegram Bot."""

import http.client
import json
import time
import urllib.error
import urllib.request

from .config import TelegramConfig
from .exceptions import SendError
from .logging_config import create_execution_logger
from .models import TELEGRAM_MAX_MESSAGE_LENGTH

# None means plain text
PARSE_MODES = (None, "Markdown", "MarkdownV2", "HTML")


def _validate_payload(chat_id: str, message: str, parse_mode: str | None) -> None:
    if parse_mode not in PARSE_MODES:
        raise SendError(f"Unsupported parse mode: {parse_mode}", chat_id=chat_id)
    if not message:
        raise SendError("Cannot send an empty message", chat_id=chat_id)
    if len(message) > TELEGRAM_MAX_MESSAGE_LENGTH:
        raise SendError(
            f"Message length {len(message)} exceeds Telegram limit "
            f"of {TELEGRAM_MAX_MESSAGE_LENGTH}",
            chat_id=chat_id,
        )


class TelegramPublisher:
    """Handles publishing messages to Telegram."""

    def __init__(self, config: TelegramConfig, execution_id: str | None = None):
        """Initialize Telegram publisher with configuration."""
        self.config = config
        self.logger = create_execution_logger("telegram_publisher", execution_id)
        self.base_url = f"https://api.telegram.org/bot{config.bot_token}"
        self.closed = False

        handlers = []
        if config.proxy_url:
            handlers.append(
                urllib.request.ProxyHandler(
                    {"http": config.proxy_url, "https": config.proxy_url}
                )
            )
        self.opener = urllib.request.build_opener(*handlers)

        self.logger.info(
            "TelegramPublisher initialized",
            chat_id=config.chat_id,
            parse_mode=config.parse_mode,
            retry_attempts=config.retry_attempts,
            proxy=bool(config.proxy_url),
        )

    def send_message(
        self, chat_id: str, message: str, parse_mode: str | None = "HTML"
    ) -> None:
        """
        Send a message to a Telegram chat.

        Args:
            chat_id: Target chat
            message: Message text, at most 4096 characters
            parse_mode: One of None (plain), "Markdown", "MarkdownV2", "HTML"

        Raises:
            SendError: If the message is rejected or cannot be delivered
        """
        if self.closed:
            raise SendError("Publisher is closed", chat_id=chat_id)

        _validate_payload(chat_id, message, parse_mode)
        self._send_telegram_message(chat_id, message, parse_mode)
        self.logger.info(
            f"Successfully sent message to chat {chat_id}",
            chat_id=chat_id,
            message_length=len(message),
        )

    def close(self) -> None:
        self.closed = True
        self.logger.info("TelegramPublisher closed")

    def handle_rate_limit(self, retry_count: int) -> None:
        """
        Handle rate limiting with exponential backoff.

        Args:
            retry_count: Current retry attempt number
        """
        backoff_time = self.config.backoff_factor**retry_count
        self.logger.warning(
            f"Rate limited, waiting {backoff_time} seconds before retry {retry_count + 1}",
            retry_count=retry_count,
            backoff_time=backoff_time,
        )
        time.sleep(backoff_time)

    def _send_telegram_message(
        self, chat_id: str, message: str, parse_mode: str | None
    ) -> None:
        """
        Send message to Telegram API, retrying when rate limited.

        Raises:
            SendError: On any delivery failure
        """
        url = f"{self.base_url}/sendMessage"

        data = {
            "chat_id": chat_id,
            "text": message,
            "disable_web_page_preview": False,
        }
        if parse_mode:
            data["parse_mode"] = parse_mode

        json_data = json.dumps(data).encode("utf-8")

        for attempt in range(self.config.retry_attempts):
            self.logger.debug(
                f"Sending message to Telegram API (attempt {attempt + 1})",
                attempt=attempt + 1,
                message_length=len(message),
            )

            req = urllib.request.Request(
                url,
                data=json_data,
                headers={
                    "Content-Type": "application/json",
                    "User-Agent": "RSSHub-Telegram-Bot/1.0",
                },
            )

            try:
                with self.opener.open(req, timeout=self.config.timeout) as response:
                    if response.status == 200:
                        return
                    raise SendError(
                        f"Telegram API returned status {response.status}",
                        chat_id=chat_id,
                        status_code=response.status,
                    )

            except urllib.error.HTTPError as e:
                if e.code == 429 and attempt < self.config.retry_attempts - 1:
                    self.logger.warning(
                        f"Rate limited by Telegram API (attempt {attempt + 1})",
                        attempt=attempt + 1,
                        http_code=e.code,
                    )
                    self.handle_rate_limit(attempt)
                    continue

                raise SendError(
                    f"HTTP error sending message: {e.code} - {e.reason}",
                    chat_id=chat_id,
                    status_code=e.code,
                ) from e

            except urllib.error.URLError as e:
                raise SendError(
                    f"URL error sending message: {e.reason}", chat_id=chat_id
                ) from e

            except TimeoutError as e:
                raise SendError(
                    "Timed out sending message", chat_id=chat_id
                ) from e

            except (OSError, http.client.HTTPException) as e:
                # Connection drops surface unwrapped from getresponse()
                raise SendError(
                    f"Connection error sending message: {e!r}", chat_id=chat_id
                ) from e

        raise SendError("Max retry attempts reached", chat_id=chat_id)


class SimulatedPublisher:
    """Logs messages instead of sending them to Telegram."""

    def __init__(self, execution_id: str | None = None):
        self.logger = create_execution_logger("telegram_publisher", execution_id)
        self.closed = False
        self.sent: list[tuple[str, str, str | None]] = []
        self.logger.info("SimulatedPublisher initialized")

    def send_message(
        self, chat_id: str, message: str, parse_mode: str | None = "HTML"
    ) -> None:
        if self.closed:
            raise SendError("Publisher is closed", chat_id=chat_id)

        _validate_payload(chat_id, message, parse_mode)
        self.sent.append((chat_id, message, parse_mode))
        self.logger.info(
            f"[SIMULATE] Would send message to chat {chat_id}",
            chat_id=chat_id,
            parse_mode=parse_mode,
            message_length=len(message),
            message_content=message,
        )

    def close(self) -> None:
        self.closed = True
        self.logger.info("SimulatedPublisher closed")
