"""
SMTP e-mail adapter.

Sends a plain-text message with one attachment. Delivery failures are reported
in the returned ``EmailResult`` rather than raised, so the caller can record
them in the e-mail log.
"""

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import make_msgid
from typing import BinaryIO, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class EmailResult:
    """Outcome of a single send attempt."""
    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None


class SmtpEmailService:
    """Delivers messages through the SMTP server configured in settings."""

    def __init__(self, settings):
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.use_tls = settings.smtp_use_tls
        self.user = settings.smtp_user
        self.password = settings.smtp_password
        self.from_address = settings.smtp_from
        self.timeout = settings.smtp_timeout_seconds

    def build_message(
        self,
        to: str,
        subject: str,
        body: str,
        attachment: bytes,
        attachment_filename: str,
        attachment_content_type: Optional[str] = None,
    ) -> EmailMessage:
        """Assemble the MIME message with the attachment."""
        message = EmailMessage()
        message["From"] = self.from_address
        message["To"] = to
        message["Subject"] = subject
        message["Message-ID"] = make_msgid(domain=self.from_address.rsplit("@", 1)[-1])
        message.set_content(body)

        content_type = attachment_content_type or DEFAULT_CONTENT_TYPE
        maintype, _, subtype = content_type.partition("/")
        if not subtype:
            maintype, subtype = DEFAULT_CONTENT_TYPE.split("/")
        message.add_attachment(
            attachment,
            maintype=maintype,
            subtype=subtype,
            filename=attachment_filename,
        )
        return message

    def deliver(self, message: EmailMessage) -> None:
        """Hand a built message to the SMTP server."""
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as client:
            if self.use_tls:
                client.starttls(context=ssl.create_default_context())
            if self.user and self.password:
                client.login(self.user, self.password)
            client.send_message(message)

    def send_email_with_attachment(
        self,
        to: str,
        subject: str,
        body: str,
        attachment: Union[bytes, BinaryIO],
        attachment_filename: str,
        attachment_content_type: Optional[str] = None,
    ) -> EmailResult:
        """
        Send an e-mail with one attachment.

        Args:
            to: Recipient address
            subject: Subject line
            body: Plain-text body
            attachment: Attachment content, as bytes or a readable binary stream
            attachment_filename: Filename shown to the recipient
            attachment_content_type: MIME type of the attachment

        Returns:
            EmailResult describing the outcome
        """
        if not isinstance(attachment, (bytes, bytearray)):
            attachment = attachment.read()

        try:
            # header values with CR/LF are rejected here with ValueError
            message = self.build_message(
                to, subject, body, bytes(attachment), attachment_filename, attachment_content_type
            )
        except ValueError as e:
            logger.error(f"Could not build e-mail to {to}: {str(e)}")
            return EmailResult(success=False, error_message=str(e))

        try:
            self.deliver(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Error sending e-mail to {to}: {str(e)}")
            return EmailResult(success=False, error_message=str(e))

        logger.info(f"Sent e-mail to {to} with attachment {attachment_filename}")
        return EmailResult(success=True, message_id=message["Message-ID"])
