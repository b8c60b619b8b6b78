import logging
import smtplib
from datetime import datetime
from email.message import EmailMessage

from app.config import settings

logger = logging.getLogger(__name__)

_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_file_size(size_bytes: int | None) -> str:
    size = float(size_bytes or 0)
    unit = 0
    while size >= 1024 and unit < len(_SIZE_UNITS) - 1:
        size /= 1024
        unit += 1
    if unit == 0:
        return f"{int(size)} {_SIZE_UNITS[unit]}"
    return f"{size:.2f} {_SIZE_UNITS[unit]}"


class EmailService:
    @staticmethod
    def is_configured() -> bool:
        return bool(settings.smtp_host)

    @staticmethod
    def send(to_address: str, subject: str, body: str) -> None:
        """Send a plain-text message, or log it when SMTP is not configured.

        Transport errors propagate; callers decide whether to retry.
        """
        if not EmailService.is_configured():
            logger.info("Would send email to %s: %s", to_address, subject)
            return
        message = EmailMessage()
        message["From"] = settings.smtp_from_address
        message["To"] = to_address
        message["Subject"] = subject
        message.set_content(body)
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as smtp:
            if settings.smtp_use_tls:
                smtp.starttls()
            if settings.smtp_username:
                smtp.login(settings.smtp_username, settings.smtp_password)
            smtp.send_message(message)
        logger.info("Sent email to %s: %s", to_address, subject)

    @staticmethod
    def send_approval_request_notification(
        approver_email: str,
        approver_name: str,
        document_name: str,
        requester_name: str,
        reason: str,
        share_code: str,
        expires_at: datetime | str | None,
        category_name: str,
        formatted_file_size: str,
        policy_name: str,
    ) -> None:
        subject = f"[{settings.brand_name}] Approval needed: {document_name}"
        body = (
            f"Hello {approver_name},\n\n"
            f"{requester_name} wants to share \"{document_name}\" "
            f"({formatted_file_size}, category {category_name}).\n"
            f"Reason: {reason}\n"
            f"Policy: {policy_name}\n"
            f"Share code: {share_code}\n"
            f"Decide before: {expires_at}\n\n"
            f"{settings.brand_name} - {settings.brand_tagline}\n"
        )
        EmailService.send(approver_email, subject, body)

    @staticmethod
    def send_approval_decision_notification(
        requester_email: str,
        requester_name: str,
        document_name: str,
        decision: str,
        comment: str,
        share_code: str,
        share_url: str,
    ) -> None:
        subject = f"[{settings.brand_name}] Share {decision.lower()}: {document_name}"
        body = (
            f"Hello {requester_name},\n\n"
            f"Your share of \"{document_name}\" was {decision.lower()}.\n"
            f"Comment: {comment}\n"
            f"Share code: {share_code}\n"
        )
        if decision.lower() == "approved":
            body += f"Link: {share_url}\n"
        body += f"\n{settings.brand_name} - {settings.brand_tagline}\n"
        EmailService.send(requester_email, subject, body)

    @staticmethod
    def send_share_notification(
        recipient_email: str,
        document_name: str,
        sharer_name: str,
        share_url: str,
        custom_message: str | None,
    ) -> None:
        subject = f"[{settings.brand_name}] {sharer_name} shared {document_name}"
        body = f"{sharer_name} shared \"{document_name}\" with you.\n\nLink: {share_url}\n"
        if custom_message:
            body += f"\nMessage: {custom_message}\n"
        EmailService.send(recipient_email, subject, body)


email_service = EmailService()
