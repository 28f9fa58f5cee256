"""
auth/mailer.py -- Confirmation-email collaborator.

Email delivery is out of scope: LogMailer only records that a confirmation
would be sent. The activation link and code are logged at DEBUG so a local
developer can finish a signup without an SMTP server; at INFO only the
recipient is logged.

send_confirmation() is always called through BackgroundWorker.submit(), never
inline, so a slow or failing mail backend cannot delay or fail a request.
"""

from __future__ import annotations

import logging

from auth.models import Registration


class LogMailer:
    """Mailer stub that writes confirmation emails to the log."""

    def __init__(self, public_base_url: str, logger: logging.Logger | None = None) -> None:
        self._base_url = public_base_url.rstrip("/")
        self._logger = logger or logging.getLogger("authgate.mailer")

    def activation_link(self, registration: Registration) -> str:
        return f"{self._base_url}/api/v1/auth/activate/{registration.token}"

    def send_confirmation(self, registration: Registration) -> None:
        self._logger.info("Confirmation email queued for %s", registration.email)
        self._logger.debug(
            "Confirmation for %s: link=%s code=%s",
            registration.email,
            self.activation_link(registration),
            registration.verify_code,
        )
