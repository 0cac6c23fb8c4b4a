"""
Tests for admin e-mail notifications.
"""

import smtplib
from datetime import datetime, timezone

import pytest

from pallet_tracking_backend.models import AIAnalysisSummary, NotificationPayload
from pallet_tracking_backend.notifications import (
    NotificationService,
    build_subject,
    render_email_html,
    render_email_text,
)


@pytest.fixture
def payload():
    return NotificationPayload(
        delivery_id="d-123",
        driver_name="Dana <Reyes>",
        driver_phone="555-0100",
        driver_email="dana@example.com",
        company_name="Reyes Freight",
        pickup_location="1 Dock Rd, Reno, NV",
        delivery_location="9 Bay St, Oakland, CA",
        pallet_count=12,
        confirmed_at=datetime(2026, 3, 4, 15, 30, tzinfo=timezone.utc),
        bill_of_lading_url="https://cdn.example.com/bill-of-lading/a.jpg",
        ai_analysis=AIAnalysisSummary(confidence=0.875, reasoning="Qty column reads 12"),
    )


class RecordingService(NotificationService):
    """Notification service that records instead of sending."""

    def __init__(self, database, fail_for=()):
        super().__init__(database)
        self.sent = []
        self.fail_for = set(fail_for)

    def _deliver(self, recipient, subject, html_body, text_body):
        if recipient in self.fail_for:
            raise smtplib.SMTPRecipientsRefused({recipient: (550, b"no such user")})
        self.sent.append((recipient, subject))


class TestRendering:
    """Tests for subject and bodies."""

    def test_subject_carries_pallet_count(self, payload):
        assert build_subject(payload) == "New Pallet Delivery Confirmed - 12 Pallets"

    def test_html_escapes_driver_input(self, payload):
        html = render_email_html(payload)
        assert "Dana &lt;Reyes&gt;" in html
        assert "Dana <Reyes>" not in html

    def test_html_contains_sections(self, payload):
        html = render_email_html(payload)
        assert "Reyes Freight" in html
        assert "88%" in html
        assert "View Bill of Lading" in html
        assert "View Digital Signature" not in html
        assert "Delivery ID: d-123" in html

    def test_text_body(self, payload):
        text = render_email_text(payload)
        assert "- Pallets Confirmed: 12" in text
        assert "- Pickup Location: 1 Dock Rd, Reno, NV" in text
        assert "- Confidence: 88%" in text
        assert text.endswith("Delivery ID: d-123")

    def test_ai_section_omitted_without_analysis(self, payload):
        payload.ai_analysis = None
        assert "AI Analysis" not in render_email_html(payload)
        assert "AI Analysis" not in render_email_text(payload)

    def test_camel_case_payload(self):
        """The HTTP body uses camelCase field names."""
        payload = NotificationPayload.model_validate({
            "deliveryId": "d-1",
            "driverName": "Sam",
            "palletCount": 3,
            "confirmedAt": "2026-03-04T15:30:00Z",
            "aiAnalysis": {"confidence": 0.5, "reasoning": "r"},
        })
        assert payload.driver_name == "Sam"
        assert payload.pallet_count == 3


class TestSending:
    """Tests for delivery to admin users."""

    def test_no_active_admins(self, database, payload):
        database.add_admin_user("off@example.com", "Off", is_active=False)
        service = RecordingService(database)
        result = service.send_delivery_notification(payload)
        assert result.message == "No active admin users to notify"
        assert service.sent == []

    def test_only_active_admins_are_notified(self, database, payload):
        database.add_admin_user("ops@example.com", "Ops")
        database.add_admin_user("off@example.com", "Off", is_active=False)
        service = RecordingService(database)

        result = service.send_delivery_notification(payload)
        assert result.message == "Email notifications processed"
        assert result.successful == 1
        assert result.failed == 0
        assert service.sent == [("ops@example.com", "New Pallet Delivery Confirmed - 12 Pallets")]

    def test_recipient_failures_are_counted(self, database, payload):
        database.add_admin_user("ops@example.com", "Ops")
        database.add_admin_user("gone@example.com", "Gone")
        service = RecordingService(database, fail_for={"gone@example.com"})

        result = service.send_delivery_notification(payload)
        assert result.successful == 1
        assert result.failed == 1
        failed = [item for item in result.results if not item.success]
        assert failed[0].email == "gone@example.com"
        assert failed[0].error

    def test_without_smtp_host_messages_are_logged(self, database, payload, caplog):
        database.add_admin_user("ops@example.com", "Ops")
        service = NotificationService(database)
        with caplog.at_level("INFO"):
            result = service.send_delivery_notification(payload)
        assert result.successful == 1
        assert "Sending email to ops@example.com" in caplog.text

    def test_message_is_multipart(self, database, payload):
        service = NotificationService(database, sender="noreply@example.com")
        message = service._build_message("ops@example.com", "subject", "<p>html</p>", "text")
        assert message["From"] == "noreply@example.com"
        assert message.get_body(("html",)).get_content().strip() == "<p>html</p>"
        assert message.get_body(("plain",)).get_content().strip() == "text"
