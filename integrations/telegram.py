"""
Telegram bot integration for import notifications.

Sends a short message to the configured chat when a catalog import
commits or fails.
"""

import re
from typing import TYPE_CHECKING

import requests
import structlog

from config.settings import get_settings
from exceptions import TelegramError

if TYPE_CHECKING:
    from services.import_event_service import ImportEvent

logger = structlog.get_logger(__name__)

API_URL = "https://api.telegram.org/bot{token}/sendMessage"
REQUEST_TIMEOUT_SECONDS = 10

EVENT_EMOJIS = {
    "import.completed": "✅",
    "import.failed": "❌",
}

# Characters that open an entity in Telegram's legacy Markdown
_MARKDOWN_SPECIAL = re.compile(r"([_*`\[])")


def _escape(text) -> str:
    return _MARKDOWN_SPECIAL.sub(r"\\\1", str(text))


def format_import_message(event: "ImportEvent") -> str:
    """
    Format an import event as a Telegram message.

    Free text (entity names inside errors) is escaped; ids are shown as code.
    """
    emoji = EVENT_EMOJIS.get(event.name, "•")
    entity = event.entity_type.replace("_", " ")

    if event.name == "import.completed":
        lines = [
            f"{emoji} *Catalog import completed*",
            "",
            f"Type: {entity}",
            f"Rows: {event.row_count}",
            f"Created: {event.created}",
            f"Updated: {event.updated}",
        ]
    else:
        lines = [
            f"{emoji} *Catalog import failed*",
            "",
            f"Type: {entity}",
            f"Row: {event.row_index}",
            f"Error: {_escape(event.error)}",
        ]

    lines += [
        "",
        f"Business: `{event.scope_id}`",
        f"Session: `{event.session_id}`",
    ]
    return "\n".join(lines)


def send_message(message: str, parse_mode: str = "Markdown") -> bool:
    """
    Send a message to the configured chat.

    Returns:
        True if sent, False if no bot token or chat is configured

    Raises:
        TelegramError: If the request fails or the API answers not ok
    """
    settings = get_settings()
    if not settings.telegram_configured:
        logger.warning(
            "telegram_not_configured",
            has_token=bool(settings.telegram_bot_token),
            has_chat_id=bool(settings.telegram_chat_id),
        )
        return False

    payload = {
        "chat_id": settings.telegram_chat_id,
        "text": message,
        "parse_mode": parse_mode,
        "disable_web_page_preview": True,
    }

    try:
        response = requests.post(
            API_URL.format(token=settings.telegram_bot_token),
            json=payload,
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        result = response.json()
    except requests.exceptions.RequestException as e:
        logger.error("telegram_request_failed", error=str(e))
        raise TelegramError(f"Failed to send Telegram message: {e}") from e

    if not result.get("ok"):
        error_msg = result.get("description", "Unknown error")
        logger.error("telegram_api_error", error=error_msg)
        raise TelegramError(f"Telegram API error: {error_msg}")

    logger.info("telegram_message_sent", message_id=result.get("result", {}).get("message_id"))
    return True


def send_import_event(event: "ImportEvent") -> bool:
    """Send an import event to Telegram."""
    return send_message(format_import_message(event))
