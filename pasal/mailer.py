import logging
from typing import Dict, Optional, Tuple

import requests
import resend
from resend.exceptions import ResendError

logger = logging.getLogger(__name__)


class Mailer:
    def __init__(self, api_key: str, sender: str, frontend_url: str):
        self.api_key = (api_key or "").strip()
        self.sender = sender
        self.frontend_url = (frontend_url or "").rstrip("/")

    def send(self, payload: Dict[str, object]) -> Tuple[bool, Optional[str]]:
        if not self.api_key:
            logger.warning("Email to %s not sent: RESEND_API_KEY is empty", payload.get("to"))
            return False, "Email delivery is not configured."

        resend.api_key = self.api_key
        try:
            response = resend.Emails.send(payload)
        except (ResendError, requests.RequestException) as exc:
            logger.warning("Resend rejected '%s': %s", payload.get("subject"), exc)
            return False, str(exc)

        email_id = response.get("id") if isinstance(response, dict) else None
        if not email_id:
            return False, f"Unexpected Resend response: {response!r}"

        logger.debug("Queued '%s' as %s", payload.get("subject"), email_id)
        return True, None

    def send_activation_email(self, recipient_email: str, token: str):
        activation_url = f"{self.frontend_url}/activate/{token}"
        payload: Dict[str, object] = {
            "from": self.sender,
            "to": [recipient_email],
            "subject": "Account Activation",
            "html": (
                "Please activate your account by clicking the following link: "
                f'<a href="{activation_url}">Activate Account</a>'
            ),
            "text": f"Activate your account: {activation_url}",
        }
        sent, error = self.send(payload)
        if not sent:
            logger.error("Activation email delivery failed for %s: %s", recipient_email, error)
        return sent, error

    def send_password_reset_email(self, recipient_email: str, token: str):
        reset_url = f"{self.frontend_url}/reset-password/{token}"
        payload: Dict[str, object] = {
            "from": self.sender,
            "to": [recipient_email],
            "subject": "Password Reset Request",
            "html": (
                "You requested a password reset. Click the following link to reset "
                f'your password: <a href="{reset_url}">Reset Link</a>'
            ),
            "text": f"Reset your password: {reset_url}",
        }
        sent, error = self.send(payload)
        if not sent:
            logger.error("Password reset email delivery failed for %s: %s", recipient_email, error)
        return sent, error
