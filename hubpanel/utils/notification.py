"""
Outbound notifications for sensitive operations
"""

import re
from typing import Any, Dict, Iterable, List, Optional

import requests

from .logger import get_logger

TYPE_EMOJI = {
    "SUCCESS": "✅",
    "WARNING": "⚠️",
    "ERROR": "❌",
    "INFO": "ℹ️",
}

TELEGRAM_MAX_LENGTH = 4000

FAILURE_MARKERS = ("failed", "error")


class NotificationManager:
    """Send activity notifications to Slack and Telegram

    A channel without configuration is skipped. Delivery problems are logged
    and reported as False, never raised.
    """

    def __init__(self, slack_webhook: Optional[str] = None,
                 telegram_token: Optional[str] = None,
                 telegram_chat_id: Optional[str] = None,
                 notify_operations: Iterable[str] = (),
                 timeout: float = 10):
        self.logger = get_logger("hubpanel.notification")
        self.channels = {
            'telegram': {
                'token': telegram_token,
                'chat_id': telegram_chat_id,
            },
            'slack': {
                'webhook': slack_webhook,
            },
        }
        self.notify_operations = {op.upper() for op in notify_operations}
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "NotificationManager":
        return cls(
            slack_webhook=settings.slack_webhook,
            telegram_token=settings.telegram_token,
            telegram_chat_id=settings.telegram_chat_id,
            notify_operations=settings.notify_operations,
        )

    @property
    def configured_channels(self) -> List[str]:
        channels = []
        if self.channels['telegram']['token'] and self.channels['telegram']['chat_id']:
            channels.append('telegram')
        if self.channels['slack']['webhook']:
            channels.append('slack')
        return channels

    def should_notify(self, operation: str, details: Optional[str] = None) -> bool:
        """Notify listed operations and any operation whose details report a failure"""
        if not self.configured_channels:
            return False
        if operation.upper() in self.notify_operations:
            return True
        text = (details or "").lower()
        return any(marker in text for marker in FAILURE_MARKERS)

    def notify_activity(self, entry: Dict[str, Any]) -> bool:
        """Send an activity entry if its operation warrants it"""
        if not self.should_notify(entry.get('operation', ""), entry.get('details')):
            return False
        failed = any(m in (entry.get('details') or "").lower() for m in FAILURE_MARKERS)
        message = self.create_activity_notification(entry)
        return self.send_notification(message, channel='all',
                                      notification_type="ERROR" if failed else "WARNING")

    def send_notification(self, message: str, channel: str = 'all',
                          notification_type: str = "INFO") -> bool:
        """Send notification to specified channel"""
        if channel == 'telegram':
            return self._send_telegram(message, notification_type)
        if channel == 'slack':
            return self._send_slack(message, notification_type)
        if channel == 'all':
            channels = self.configured_channels
            results = [self.send_notification(message, ch, notification_type) for ch in channels]
            return bool(results) and all(results)

        self.logger.warning(f"Unknown notification channel: {channel}")
        return False

    def _send_telegram(self, message: str, notification_type: str = "INFO") -> bool:
        """Send Telegram notification, retrying without markdown if it is rejected"""
        token = self.channels['telegram']['token']
        chat_id = self.channels['telegram']['chat_id']
        if not token or not chat_id:
            return False

        url = f"https://api.telegram.org/bot{token}/sendMessage"
        final_message = f"{TYPE_EMOJI.get(notification_type, TYPE_EMOJI['INFO'])} {message}"
        if len(final_message) > TELEGRAM_MAX_LENGTH:
            final_message = final_message[:TELEGRAM_MAX_LENGTH] + "\n\n... (truncated)"

        payload = {
            "chat_id": chat_id,
            "text": self._escape_telegram_markdown(final_message),
            "parse_mode": "MarkdownV2",
        }

        try:
            response = requests.post(url, data=payload, timeout=self.timeout)
            if response.status_code == 200:
                return True
            self.logger.warning(f"Telegram notification failed: {response.text}")
            plain = {"chat_id": chat_id, "text": final_message}
            response = requests.post(url, data=plain, timeout=self.timeout)
            return response.status_code == 200
        except requests.RequestException as e:
            self.logger.warning(f"Telegram notification error: {e}")
            return False

    def _send_slack(self, message: str, notification_type: str = "INFO") -> bool:
        """Send Slack notification"""
        webhook = self.channels['slack']['webhook']
        if not webhook:
            return False

        final_message = f"{TYPE_EMOJI.get(notification_type, TYPE_EMOJI['INFO'])} {message}"
        payload = {
            "text": final_message,
            "username": "HubPanel",
            "icon_emoji": ":file_cabinet:",
            "blocks": [
                {
                    "type": "section",
                    "text": {
                        "type": "mrkdwn",
                        "text": final_message,
                    },
                }
            ],
        }

        try:
            response = requests.post(webhook, json=payload, timeout=self.timeout)
            if response.status_code != 200:
                self.logger.warning(f"Slack notification failed: {response.text}")
                return False
            return True
        except requests.RequestException as e:
            self.logger.warning(f"Slack notification error: {e}")
            return False

    def _escape_telegram_markdown(self, text: str) -> str:
        """Escape MarkdownV2 special characters outside code blocks"""
        escape_chars = r'_*\[\]()~`>#+-=|{}.!'
        parts = re.split(r'(```[\s\S]*?```)', text)
        for i, part in enumerate(parts):
            if not part.startswith('```'):
                parts[i] = re.sub(f'([{re.escape(escape_chars)}])', r'\\\1', part)
        return ''.join(parts)

    def create_activity_notification(self, entry: Dict[str, Any]) -> str:
        """Format an activity entry for chat channels"""
        lines = [
            "**HubPanel activity**",
            "",
            f"**Operation:** {entry.get('operation')}",
            f"**Database:** {entry.get('database_name')}",
            f"**User:** {entry.get('user_email')}",
        ]
        if entry.get('details'):
            details = str(entry['details'])
            lines.append(f"**Details:** {details[:300]}{'...' if len(details) > 300 else ''}")
        if entry.get('sql_query'):
            lines.extend(["", "```sql", str(entry['sql_query'])[:1000], "```"])
        return "\n".join(lines)
