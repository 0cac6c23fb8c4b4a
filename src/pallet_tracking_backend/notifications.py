"""
Delivery confirmation e-mails for admin users.

Every active admin gets one message per confirmed delivery. Messages go out
over SMTP when SMTP_HOST is configured; otherwise they are written to the log,
which is how local development and tests see them.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from html import escape
from typing import Any, Dict, Optional

from .database import DeliveryDatabase
from .models import NotificationPayload, NotificationResult, RecipientResult

logger = logging.getLogger(__name__)

FOOTER = "This is an automated notification from the Pallet Tracking System"


def _percent(confidence: float) -> int:
    # Half-up rounding, so 0.125 reads as 13%
    return int(confidence * 100 + 0.5)


def _format_confirmed_at(payload: NotificationPayload) -> str:
    return payload.confirmed_at.strftime("%Y-%m-%d %H:%M:%S %Z").strip()


def build_subject(payload: NotificationPayload) -> str:
    return f"New Pallet Delivery Confirmed - {payload.pallet_count} Pallets"


def render_email_html(payload: NotificationPayload) -> str:
    ai_section = ""
    if payload.ai_analysis:
        ai_section = f"""
          <div class="section">
            <h3>AI Analysis</h3>
            <p><span class="label">Confidence:</span> <span class="value">{_percent(payload.ai_analysis.confidence)}%</span></p>
            <p><span class="label">Analysis:</span> <span class="value">{escape(payload.ai_analysis.reasoning)}</span></p>
          </div>"""

    documents = []
    if payload.bill_of_lading_url:
        documents.append(f'<p>📄 <a href="{escape(payload.bill_of_lading_url)}">View Bill of Lading</a></p>')
    if payload.signature_url:
        documents.append(f'<p>✍️ <a href="{escape(payload.signature_url)}">View Digital Signature</a></p>')
    documents_html = "".join(documents)

    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Pallet Delivery Confirmation</title>
  <style>
    body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
    .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
    .header {{ background: #2563eb; color: white; padding: 20px; text-align: center; }}
    .content {{ padding: 20px; background: #f9fafb; }}
    .section {{ margin-bottom: 20px; }}
    .label {{ font-weight: bold; color: #374151; }}
    .value {{ margin-left: 10px; }}
    .pallet-count {{ font-size: 24px; font-weight: bold; color: #2563eb; }}
    .footer {{ text-align: center; padding: 20px; color: #6b7280; font-size: 14px; }}
  </style>
</head>
<body>
  <div class="container">
    <div class="header">
      <h1>🚛 Pallet Delivery Confirmed</h1>
    </div>
    <div class="content">
      <div class="section">
        <h2>Delivery Summary</h2>
        <p><span class="label">Pallets Confirmed:</span> <span class="pallet-count">{payload.pallet_count}</span></p>
        <p><span class="label">Confirmed At:</span> <span class="value">{_format_confirmed_at(payload)}</span></p>
        <p><span class="label">Status:</span> <span class="value">✅ Confirmed</span></p>
      </div>

      <div class="section">
        <h3>Driver Information</h3>
        <p><span class="label">Name:</span> <span class="value">{escape(payload.driver_name)}</span></p>
        <p><span class="label">Phone:</span> <span class="value">{escape(payload.driver_phone)}</span></p>
        <p><span class="label">Email:</span> <span class="value">{escape(payload.driver_email)}</span></p>
        <p><span class="label">Company:</span> <span class="value">{escape(payload.company_name)}</span></p>
      </div>

      <div class="section">
        <h3>Delivery Details</h3>
        <p><span class="label">Pickup Location:</span></p>
        <p style="margin-left: 20px; color: #6b7280;">{escape(payload.pickup_location)}</p>
        <p><span class="label">Delivery Location:</span></p>
        <p style="margin-left: 20px; color: #6b7280;">{escape(payload.delivery_location)}</p>
      </div>
{ai_section}
      <div class="section">
        <h3>Documentation</h3>
        {documents_html}
      </div>
    </div>
    <div class="footer">
      <p>{FOOTER}</p>
      <p>Delivery ID: {escape(payload.delivery_id)}</p>
    </div>
  </div>
</body>
</html>
"""


def render_email_text(payload: NotificationPayload) -> str:
    lines = [
        "PALLET DELIVERY CONFIRMED",
        "",
        "Delivery Summary:",
        f"- Pallets Confirmed: {payload.pallet_count}",
        f"- Confirmed At: {_format_confirmed_at(payload)}",
        "- Status: Confirmed",
        "",
        "Driver Information:",
        f"- Name: {payload.driver_name}",
        f"- Phone: {payload.driver_phone}",
        f"- Email: {payload.driver_email}",
        f"- Company: {payload.company_name}",
        "",
        "Delivery Details:",
        f"- Pickup Location: {payload.pickup_location}",
        f"- Delivery Location: {payload.delivery_location}",
        "",
    ]
    if payload.ai_analysis:
        lines += [
            "AI Analysis:",
            f"- Confidence: {_percent(payload.ai_analysis.confidence)}%",
            f"- Analysis: {payload.ai_analysis.reasoning}",
            "",
        ]
    lines.append("Documentation:")
    if payload.bill_of_lading_url:
        lines.append(f"- Bill of Lading: {payload.bill_of_lading_url}")
    if payload.signature_url:
        lines.append(f"- Digital Signature: {payload.signature_url}")
    lines += ["", "---", FOOTER, f"Delivery ID: {payload.delivery_id}"]
    return "\n".join(lines)


class NotificationService:
    def __init__(
        self,
        database: DeliveryDatabase,
        *,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_username: str = "",
        smtp_password: str = "",
        use_tls: bool = True,
        sender: str = "notifications@pallet-tracking.local",
        timeout: float = 10,
    ) -> None:
        self._database = database
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_username = smtp_username
        self.smtp_password = smtp_password
        self.use_tls = use_tls
        self.sender = sender
        self.timeout = timeout

    @classmethod
    def from_config(cls, database: DeliveryDatabase, settings: Dict[str, Any]) -> "NotificationService":
        return cls(
            database,
            smtp_host=settings.get("smtp_host") or "",
            smtp_port=int(settings.get("smtp_port") or 587),
            smtp_username=settings.get("smtp_username") or "",
            smtp_password=settings.get("smtp_password") or "",
            use_tls=bool(settings.get("use_tls", True)),
            sender=settings.get("sender") or "notifications@pallet-tracking.local",
            timeout=float(settings.get("timeout") or 10),
        )

    def send_delivery_notification(self, payload: NotificationPayload) -> NotificationResult:
        """
        E-mail every active admin about a confirmed delivery.

        Per-recipient failures are counted in the result, never raised.
        """
        admins = self._database.list_admin_users(active_only=True)
        if not admins:
            logger.warning("No active admin users found for email notifications")
            return NotificationResult(message="No active admin users to notify")

        subject = build_subject(payload)
        html_body = render_email_html(payload)
        text_body = render_email_text(payload)

        results = [self._send_one(admin["email"], subject, html_body, text_body) for admin in admins]
        successful = sum(1 for result in results if result.success)
        failed = len(results) - successful

        logger.info(f"Email notifications: {successful} sent, {failed} failed")
        return NotificationResult(
            message="Email notifications processed",
            successful=successful,
            failed=failed,
            results=results,
        )

    def _send_one(self, recipient: str, subject: str, html_body: str, text_body: str) -> RecipientResult:
        try:
            self._deliver(recipient, subject, html_body, text_body)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(f"Failed to send email to {recipient}: {exc}")
            return RecipientResult(email=recipient, success=False, error=str(exc))
        return RecipientResult(email=recipient, success=True)

    def _deliver(self, recipient: str, subject: str, html_body: str, text_body: str) -> None:
        if not self.smtp_host:
            logger.info(f"Sending email to {recipient}:\nSubject: {subject}\n{text_body}")
            return

        message = self._build_message(recipient, subject, html_body, text_body)
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.smtp_username:
                smtp.login(self.smtp_username, self.smtp_password)
            smtp.send_message(message)
        logger.info(f"Email sent to {recipient}")

    def _build_message(
        self, recipient: str, subject: str, html_body: str, text_body: Optional[str]
    ) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = recipient
        message.set_content(text_body or "")
        message.add_alternative(html_body, subtype="html")
        return message
