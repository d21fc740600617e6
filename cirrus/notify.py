"""Shutdown notification email."""

from __future__ import annotations

import smtplib
import socket
from datetime import datetime
from email.message import EmailMessage

from loguru import logger

from cirrus.config import NotificationSettings
from cirrus.exceptions import NotificationError
from cirrus.types import ClusterIdentity, ShutdownReport

log = logger.bind(component="notify")


def shutdown_email(identity: ClusterIdentity, report: ShutdownReport | None) -> tuple[str, str]:
    """Subject and body for the email sent when the launcher exits."""
    subject = f"Cirrus cluster {identity.name} completed"
    lines = [
        f"Shutdown at: {datetime.now().astimezone().isoformat(timespec='seconds')}",
        f"Cluster name: {identity.name}",
        f"Cluster id: {identity.id or 'unassigned'}",
        f"Launcher host: {socket.gethostname()}",
        "",
    ]
    if report is None:
        lines.append("The launcher exited before shutdown ran.")
    else:
        lines.append(f"Shutdown recipients: {report.signal_recipients}")
        lines.append(f"Services stopped: {report.services_stopped}")
        lines.append(f"Disconnected: {report.disconnected}")
        lines.append(f"Working directory removed: {report.cleaned_up}")
        lines.append(report.summary())
    return subject, "\n".join(lines) + "\n"


class EmailNotifier:
    def __init__(self, settings: NotificationSettings) -> None:
        self.settings = settings

    def send_email(self, subject: str, body: str) -> None:
        """Send a plain-text email to every configured recipient.

        Raises:
            NotificationError: If the SMTP exchange fails.
        """
        s = self.settings
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = s.sender or f"cirrus@{socket.gethostname()}"
        message["To"] = ", ".join(s.recipients)
        message.set_content(body)

        try:
            with smtplib.SMTP(s.smtp_host, s.smtp_port) as server:
                if s.use_tls:
                    server.starttls()
                if s.username is not None:
                    server.login(s.username, s.password or "")
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Failed to send email via {s.smtp_host}:{s.smtp_port}: {e}") from e

        log.info("Sent email '{subject}' to {n} recipient(s)", subject=subject, n=len(s.recipients))
