import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)


class MailgunClient:
    """Mailgun HTTP API sender, constructed once from settings."""

    def __init__(self, api_key: Optional[str], domain: Optional[str], sender: str):
        self.api_key = api_key
        self.domain = domain
        self.sender = sender

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.domain)

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
    ) -> bool:
        """
        Send email via Mailgun HTTP API.

        Never raises. Returns True on success, False on failure.
        """
        if not self.enabled:
            logger.warning("Mailgun not configured, dropping email to %s", to_email)
            return False

        data = {
            "from": self.sender,
            "to": to_email,
            "subject": subject,
            "html": html_content,
        }
        if text_content:
            data["text"] = text_content

        try:
            response = requests.post(
                f"https://api.mailgun.net/v3/{self.domain}/messages",
                auth=("api", self.api_key),
                data=data,
                timeout=10,
            )
        except requests.RequestException as exc:
            logger.error("Mailgun request error | to=%s | error=%s", to_email, exc)
            return False

        if response.status_code != 200:
            logger.error(
                "Mailgun email failed | to=%s | status=%s | response=%s",
                to_email,
                response.status_code,
                response.text,
            )
            return False

        logger.info("Email sent | to=%s | subject=%s", to_email, subject)
        return True
