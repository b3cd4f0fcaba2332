from dataclasses import dataclass
from email.message import EmailMessage
import html
import smtplib

from paycomplete.services.collaborator import (
    CollaboratorOutcome,
    ConfirmedPayment,
    failed,
    skipped,
    succeeded,
)


@dataclass(frozen=True)
class SmtpConfig:
    host: str | None
    port: int
    username: str | None
    password: str | None
    sender_email: str | None
    reply_to_email: str | None
    use_starttls: bool
    use_ssl: bool
    timeout: float = 20


def _build_access_text(*, payer_name: str, product_title: str, access_url: str, reference: str) -> str:
    lines = [
        f"Hi {payer_name},",
        "",
        f"Thank you for purchasing {product_title}. Your payment has been confirmed.",
        "",
        f"Access your course here: {access_url}",
        "",
        f"Transaction reference: {reference}",
        "",
        "Keep this email for your records. Reply to it if you have trouble accessing the material.",
    ]
    return "\n".join(lines)


def _build_access_html(*, payer_name: str, product_title: str, access_url: str, reference: str) -> str:
    name = html.escape(payer_name)
    title = html.escape(product_title)
    url = html.escape(access_url, quote=True)
    ref = html.escape(reference)
    return (
        "<html><body style=\"font-family: Arial, sans-serif; color: #222;\">"
        f"<p>Hi {name},</p>"
        f"<p>Thank you for purchasing <strong>{title}</strong>. Your payment has been confirmed.</p>"
        f"<p><a href=\"{url}\" style=\"background: #0a7d4f; color: #fff; padding: 10px 18px; "
        "text-decoration: none; border-radius: 4px;\">Access your course</a></p>"
        f"<p>If the button does not work, copy this link into your browser:<br>{url}</p>"
        f"<p style=\"color: #666; font-size: 12px;\">Transaction reference: {ref}</p>"
        "</body></html>"
    )


def build_access_email(
    event: ConfirmedPayment,
    *,
    product_title: str,
    access_url: str,
    sender_email: str,
    reply_to_email: str | None = None,
) -> EmailMessage:
    message = EmailMessage()
    message["Subject"] = f"Your access to {product_title}"
    message["From"] = sender_email
    message["To"] = event.payer_email
    if reply_to_email:
        message["Reply-To"] = reply_to_email

    parts = {
        "payer_name": event.payer_name,
        "product_title": product_title,
        "access_url": access_url,
        "reference": event.reference,
    }
    message.set_content(_build_access_text(**parts))
    message.add_alternative(_build_access_html(**parts), subtype="html")
    return message


class AccessEmailSender:
    name = "email"

    def __init__(self, *, smtp: SmtpConfig, product_title: str, access_url: str | None):
        self._smtp = smtp
        self._product_title = product_title
        self._access_url = access_url

    def is_configured(self) -> bool:
        return bool(self._smtp.host and self._smtp.sender_email and self._access_url)

    def deliver(self, event: ConfirmedPayment) -> CollaboratorOutcome:
        if not self.is_configured():
            return skipped("SMTP or product access URL not configured")

        message = build_access_email(
            event,
            product_title=self._product_title,
            access_url=self._access_url,
            sender_email=self._smtp.sender_email,
            reply_to_email=self._smtp.reply_to_email,
        )
        smtp = self._smtp
        try:
            if smtp.use_ssl:
                with smtplib.SMTP_SSL(smtp.host, smtp.port, timeout=smtp.timeout) as server:
                    if smtp.username:
                        server.login(smtp.username, smtp.password or "")
                    server.send_message(message)
            else:
                with smtplib.SMTP(smtp.host, smtp.port, timeout=smtp.timeout) as server:
                    if smtp.use_starttls:
                        server.starttls()
                    if smtp.username:
                        server.login(smtp.username, smtp.password or "")
                    server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            return failed(f"SMTP delivery failed: {exc}")

        return succeeded(f"sent to {event.payer_email}")
