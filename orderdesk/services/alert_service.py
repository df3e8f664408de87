"""Operational alerts sent to a Telegram chat."""

import os
from typing import Optional

import httpx

from orderdesk.logging_config import get_logger

logger = get_logger("alert_service")

ALERT_BOT_TOKEN = os.environ.get("ALERT_BOT_TOKEN")
ALERT_CHAT_ID = os.environ.get("ALERT_CHAT_ID")

LEVEL_PREFIX = {"INFO": "[info]", "WARNING": "[warn]", "ERROR": "[error]", "CRITICAL": "[CRITICAL]"}


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Send an alert to the ops chat.

    Returns True when Telegram accepted the message. Unconfigured alerts and
    delivery failures are logged and reported as False; they never raise.
    """
    if not ALERT_BOT_TOKEN or not ALERT_CHAT_ID:
        logger.warning(f"Alert not configured: {level} - {message}", extra={"context": context or {}})
        return False

    text = f"{LEVEL_PREFIX.get(level, '[alert]')} OrderDesk\n\n{message}"
    if context:
        context_str = "\n".join(f"  {k}: {v}" for k, v in context.items())
        text += f"\n\n{context_str}"

    try:
        with httpx.Client(timeout=10) as client:
            response = client.post(
                f"https://api.telegram.org/bot{ALERT_BOT_TOKEN}/sendMessage",
                json={"chat_id": ALERT_CHAT_ID, "text": text},
            )
            return response.status_code == 200
    except httpx.HTTPError as e:
        logger.error(f"Failed to send alert: {e}")
        return False


def alert_error(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("ERROR", message, context)


def alert_critical(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("CRITICAL", message, context)


def alert_warning(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("WARNING", message, context)
