"""Email notifications for backup runs."""

import asyncio
import html
import logging
import os
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Callable, List, Optional, Tuple

import aiosmtplib

from dbbackup import console
from dbbackup.backup.compression import content_type_for
from dbbackup.backup.storage import ArtifactStore
from dbbackup.errors import MailError, StorageError
from dbbackup.i18n import Translator
from dbbackup.models import RunSummary


logger = logging.getLogger(__name__)


class SMTPTransport:
    """Sends composed messages through an SMTP server."""

    def __init__(self, host: str, port: int = 587, username: Optional[str] = None,
                 password: Optional[str] = None, start_tls: bool = True, timeout: int = 60):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        # Port 465 speaks TLS from the first byte; other ports may upgrade
        self.use_tls = port == 465
        self.start_tls = start_tls and not self.use_tls
        self.timeout = timeout

    def send(self, message: MIMEMultipart):
        """
        Send a message.

        Raises:
            MailError: If the SMTP exchange fails
        """
        try:
            asyncio.run(aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                use_tls=self.use_tls,
                start_tls=self.start_tls,
                timeout=self.timeout,
            ))
        except (aiosmtplib.SMTPException, OSError) as e:
            raise MailError(f"Failed to send email via {self.host}:{self.port}: {e}")

        logger.info(f"Email sent to {message['To']}: {message['Subject']}")


def build_message(subject: str, html_body: str, sender: Tuple[str, str], recipient: Tuple[str, str],
                  attachments: Optional[List[Tuple[str, bytes, str]]] = None) -> MIMEMultipart:
    """
    Compose an HTML email.

    Args:
        subject: Subject line
        html_body: HTML body
        sender: (name, address)
        recipient: (name, address)
        attachments: (filename, content, mime type) triples
    """
    msg = MIMEMultipart('mixed')
    msg['Subject'] = subject
    msg['From'] = formataddr(sender)
    msg['To'] = formataddr(recipient)
    msg.attach(MIMEText(html_body, 'html', 'utf-8'))

    for filename, content, content_type in attachments or []:
        _maintype, subtype = content_type.split('/', 1)
        part = MIMEApplication(content, _subtype=subtype)
        part.add_header('Content-Disposition', 'attachment', filename=filename)
        msg.attach(part)

    return msg


class Notifier:
    """
    Composes and sends the end-of-run report.

    Delivery problems are reported and logged; they never change the run's
    outcome and are not retried.
    """

    def __init__(self, transport, sender: Tuple[str, str], recipient: Tuple[str, str],
                 send_on_success: bool = False, send_on_error: bool = True,
                 attach_artifacts: bool = False, store: Optional[ArtifactStore] = None,
                 translate: Optional[Translator] = None,
                 reporter: Optional[Callable[[str, str], None]] = None):
        self.transport = transport
        self.sender = sender
        self.recipient = recipient
        self.send_on_success = send_on_success
        self.send_on_error = send_on_error
        self.attach_artifacts = attach_artifacts
        self.store = store
        self._ = translate or Translator()
        self.reporter = reporter or console.status

    def notify(self, summary: RunSummary) -> bool:
        """
        Send the success or failure report for a run.

        Returns:
            True if a message was handed to the transport successfully
        """
        if not summary.failures:
            if not self.send_on_success:
                logger.info("Success notifications disabled, no email sent")
                return False
            message = self._success_message(summary)
        else:
            if not self.send_on_error:
                logger.info("Failure notifications disabled, no email sent")
                return False
            message = self._failure_message(summary)

        return self._send(message)

    def notify_fatal(self, error: Exception) -> bool:
        """Report a run that could not start (e.g. the catalog was unreachable)."""
        if not self.send_on_error:
            logger.info("Failure notifications disabled, no email sent")
            return False

        body = (
            f"<strong>{html.escape(self._('mail.fatal.body'))}</strong>"
            f"<br><br>{html.escape(str(error))}"
        )
        return self._send(build_message(self._('mail.failure.subject'), body, self.sender, self.recipient))

    def _send(self, message) -> bool:
        try:
            self.transport.send(message)
            return True
        except MailError as e:
            logger.error(f"Notification failed: {e}")
            self.reporter(self._('status.mail_failed', error=e), 'error')
            return False

    def _success_message(self, summary: RunSummary):
        body = f"<strong>{html.escape(self._('mail.success.body'))}</strong>"

        attachments = []
        if self.attach_artifacts:
            body += f"<br><br>{html.escape(self._('mail.success.attached'))}"
            attachments = self._collect_attachments(summary)

        return build_message(self._('mail.success.subject'), body, self.sender, self.recipient, attachments)

    def _failure_message(self, summary: RunSummary):
        items = []
        for failure in summary.failures:
            code = '' if failure.error_code is None else failure.error_code
            items.append(
                "<li><ul>"
                f"<li>{self._('mail.failure.database')}: {html.escape(failure.database)}</li>"
                f"<li>{self._('mail.failure.code')}: {html.escape(str(code))}</li>"
                f"<li>{self._('mail.failure.message')}: {html.escape(failure.error_message)}</li>"
                "</ul></li>"
            )

        body = (
            f"<strong>{html.escape(self._('mail.failure.body'))}</strong><br><br>"
            f"<ul>{''.join(items)}</ul>"
        )
        return build_message(self._('mail.failure.subject'), body, self.sender, self.recipient)

    def _collect_attachments(self, summary: RunSummary) -> List[Tuple[str, bytes, str]]:
        """Read this run's artifacts, skipping any that cannot be read."""
        attachments = []

        if self.store is None:
            logger.warning("No store configured, cannot attach artifacts")
            return attachments

        for success in summary.successes:
            try:
                content = self.store.read(success.artifact_path)
            except (StorageError, OSError) as e:
                logger.warning(f"Skipping attachment {success.artifact_path}: {e}")
                continue

            attachments.append((
                os.path.basename(success.artifact_path),
                content,
                content_type_for(success.artifact_path)
            ))

        return attachments


def create_notifier(config, store: Optional[ArtifactStore] = None, translate: Optional[Translator] = None,
                    reporter=None) -> Notifier:
    """Build a Notifier with an SMTP transport from configuration."""
    transport = SMTPTransport(
        host=config.MAIL_SMTP_HOST,
        port=config.MAIL_SMTP_PORT,
        username=config.MAIL_SMTP_USER,
        password=config.MAIL_SMTP_PASSWORD,
        start_tls=config.MAIL_SMTP_STARTTLS,
    )
    return Notifier(
        transport,
        sender=(config.MAIL_FROM_NAME, config.MAIL_FROM),
        recipient=(config.MAIL_TO_NAME, config.MAIL_TO),
        send_on_success=config.MAIL_SEND_ON_SUCCESS,
        send_on_error=config.MAIL_SEND_ON_ERROR,
        attach_artifacts=config.MAIL_SEND_BACKUP_FILE,
        store=store,
        translate=translate or Translator(config.APP_LANG),
        reporter=reporter,
    )
