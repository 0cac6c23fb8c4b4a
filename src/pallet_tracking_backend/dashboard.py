"""
Admin dashboard: delivery history, admin users, CSV export and test e-mails.
"""

from __future__ import annotations

import csv
import io
import logging
from datetime import date, datetime, timezone
from typing import List, Optional

from .database import DeliveryDatabase
from .models import (
    AdminUser,
    AdminUserCreate,
    AIAnalysisSummary,
    DashboardStats,
    DeliveryDetail,
    DeliveryPhoto,
    DeliveryRecord,
    NotificationPayload,
    NotificationResult,
)
from .notifications import NotificationService

logger = logging.getLogger(__name__)

CSV_HEADER = ["Date", "Driver", "Company", "Pickup", "Delivery", "Pallets", "Status"]


def _csv_location(location: str) -> str:
    return location.replace(",", ";")


def sample_notification_payload(delivery_id: Optional[str] = None) -> NotificationPayload:
    """Canned delivery used to check the e-mail setup."""
    return NotificationPayload(
        delivery_id=delivery_id or f"test-{int(datetime.now(timezone.utc).timestamp() * 1000)}",
        driver_name="Test Driver",
        driver_phone="(555) 123-4567",
        driver_email="test@driver.com",
        company_name="Test Trucking Co.",
        pickup_location="123 Pickup St, City, State",
        delivery_location="456 Delivery Ave, City, State",
        pallet_count=5,
        confirmed_at=datetime.now(timezone.utc),
        ai_analysis=AIAnalysisSummary(confidence=0.95, reasoning="Clear pallet count visible in document"),
    )


class AdminDashboard:
    def __init__(self, database: DeliveryDatabase, notifier: NotificationService) -> None:
        self._database = database
        self._notifier = notifier

    def list_deliveries(self) -> List[DeliveryRecord]:
        return [DeliveryRecord(**row) for row in self._database.list_deliveries()]

    def get_delivery(self, delivery_id: str) -> DeliveryDetail:
        row = self._database.get_delivery(delivery_id)
        if row is None:
            raise KeyError(f"Delivery {delivery_id} not found")
        photos = [DeliveryPhoto(**photo) for photo in self._database.list_delivery_photos(delivery_id)]
        return DeliveryDetail(**row, photos=photos)

    def stats(self, today: Optional[date] = None) -> DashboardStats:
        """
        Summary figures for the dashboard header.

        Args:
            today: Day counted as today's deliveries (default: current UTC date)
        """
        today = today or datetime.now(timezone.utc).date()
        deliveries = self._database.list_deliveries()
        return DashboardStats(
            total_deliveries=len(deliveries),
            total_pallets=sum(row["pallet_count"] for row in deliveries),
            active_admins=len(self._database.list_admin_users(active_only=True)),
            todays_deliveries=sum(1 for row in deliveries if row["created_at"].date() == today),
        )

    # -- Admin users ---------------------------------------------------------------
    def list_admin_users(self) -> List[AdminUser]:
        return [AdminUser(**row) for row in self._database.list_admin_users()]

    def add_admin_user(self, request: AdminUserCreate) -> AdminUser:
        email = request.email.strip()
        name = request.name.strip()
        if "@" not in email:
            raise ValueError(f"Invalid email address: {email}")
        if not name:
            raise ValueError("Admin name must not be blank")
        admin = AdminUser(**self._database.add_admin_user(email, name))
        logger.info(f"Admin user {admin.email} added")
        return admin

    def toggle_admin_user(self, admin_id: str) -> AdminUser:
        row = self._database.get_admin_user(admin_id)
        if row is None:
            raise KeyError(f"Admin user {admin_id} not found")
        self._database.set_admin_active(admin_id, not row["is_active"])
        return AdminUser(**self._database.get_admin_user(admin_id))

    def delete_admin_user(self, admin_id: str) -> None:
        if not self._database.delete_admin_user(admin_id):
            raise KeyError(f"Admin user {admin_id} not found")
        logger.info(f"Admin user {admin_id} deleted")

    # -- Export and notifications -----------------------------------------------------
    def export_csv(self) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        for row in self._database.list_deliveries():
            writer.writerow([
                row["created_at"].date().isoformat(),
                row["driver_name"],
                row["company_name"],
                _csv_location(row["pickup_location"]),
                _csv_location(row["delivery_location"]),
                row["pallet_count"],
                row["status"],
            ])
        return buffer.getvalue()

    @staticmethod
    def export_filename(today: Optional[date] = None) -> str:
        today = today or datetime.now(timezone.utc).date()
        return f"deliveries-{today.isoformat()}.csv"

    def send_test_notification(self) -> NotificationResult:
        return self._notifier.send_delivery_notification(sample_notification_payload())
