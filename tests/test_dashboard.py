"""
Tests for the admin dashboard and its database operations.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from pallet_tracking_backend.dashboard import CSV_HEADER, AdminDashboard, sample_notification_payload
from pallet_tracking_backend.models import AdminUserCreate, DeliveryStatus, PhotoType


def add_delivery(database, pallets=4, created_at=None, **fields):
    record = {
        "driver_name": "Dana Reyes",
        "driver_phone": "555-0100",
        "driver_email": "dana@example.com",
        "company_name": "Reyes Freight",
        "pickup_location": "1 Dock Rd, Reno, NV",
        "delivery_location": "9 Bay St, Oakland, CA",
        "pallet_count": pallets,
        "status": DeliveryStatus.CONFIRMED,
        "confirmed_at": created_at,
        "created_at": created_at,
        **fields,
    }
    return database.insert_delivery(record)


@pytest.fixture
def dashboard(database, notifier):
    return AdminDashboard(database, notifier)


class TestDeliveries:
    """Tests for delivery listing and detail."""

    def test_newest_first(self, database, dashboard):
        old = add_delivery(database, created_at=datetime(2026, 1, 1, tzinfo=timezone.utc))
        new = add_delivery(database, created_at=datetime(2026, 2, 1, tzinfo=timezone.utc))
        assert [d.id for d in dashboard.list_deliveries()] == [new["id"], old["id"]]

    def test_status_stored_as_plain_value(self, database):
        row = add_delivery(database)
        assert row["status"] == "confirmed"

    def test_detail_includes_photos(self, database, dashboard):
        row = add_delivery(database)
        database.add_delivery_photo(row["id"], "/uploads/bill-of-lading/a.jpg", PhotoType.BILL_OF_LADING)
        detail = dashboard.get_delivery(row["id"])
        assert detail.photos[0].photo_type is PhotoType.BILL_OF_LADING

    def test_unknown_delivery(self, dashboard):
        with pytest.raises(KeyError):
            dashboard.get_delivery("missing")


class TestStats:
    """Tests for dashboard stats."""

    def test_counts(self, database, dashboard):
        today = datetime(2026, 5, 20, 9, tzinfo=timezone.utc)
        add_delivery(database, pallets=3, created_at=today)
        add_delivery(database, pallets=5, created_at=today - timedelta(days=1))
        database.add_admin_user("ops@example.com", "Ops")
        database.add_admin_user("off@example.com", "Off", is_active=False)

        stats = dashboard.stats(today=date(2026, 5, 20))
        assert stats.total_deliveries == 2
        assert stats.total_pallets == 8
        assert stats.active_admins == 1
        assert stats.todays_deliveries == 1


class TestAdminUsers:
    """Tests for admin user management."""

    def test_add_and_list(self, dashboard):
        admin = dashboard.add_admin_user(AdminUserCreate(email=" ops@example.com ", name="Ops"))
        assert admin.email == "ops@example.com"
        assert admin.is_active is True
        assert [a.id for a in dashboard.list_admin_users()] == [admin.id]

    def test_duplicate_email_rejected(self, dashboard):
        dashboard.add_admin_user(AdminUserCreate(email="ops@example.com", name="Ops"))
        with pytest.raises(ValueError):
            dashboard.add_admin_user(AdminUserCreate(email="ops@example.com", name="Ops Again"))

    def test_invalid_email_rejected(self, dashboard):
        with pytest.raises(ValueError):
            dashboard.add_admin_user(AdminUserCreate(email="not-an-email", name="Ops"))

    def test_toggle_flips_active(self, dashboard):
        admin = dashboard.add_admin_user(AdminUserCreate(email="ops@example.com", name="Ops"))
        assert dashboard.toggle_admin_user(admin.id).is_active is False
        assert dashboard.toggle_admin_user(admin.id).is_active is True

    def test_delete(self, dashboard):
        admin = dashboard.add_admin_user(AdminUserCreate(email="ops@example.com", name="Ops"))
        dashboard.delete_admin_user(admin.id)
        assert dashboard.list_admin_users() == []
        with pytest.raises(KeyError):
            dashboard.delete_admin_user(admin.id)

    def test_toggle_unknown(self, dashboard):
        with pytest.raises(KeyError):
            dashboard.toggle_admin_user("missing")


class TestExport:
    """Tests for the CSV export."""

    def test_csv_rows(self, database, dashboard):
        add_delivery(database, pallets=6, created_at=datetime(2026, 4, 2, 18, tzinfo=timezone.utc))
        lines = dashboard.export_csv().splitlines()
        assert lines[0] == ",".join(CSV_HEADER)
        assert lines[1] == "2026-04-02,Dana Reyes,Reyes Freight,1 Dock Rd; Reno; NV,9 Bay St; Oakland; CA,6,confirmed"

    def test_empty_export_has_header(self, dashboard):
        assert dashboard.export_csv() == "Date,Driver,Company,Pickup,Delivery,Pallets,Status\n"

    def test_filename(self):
        assert AdminDashboard.export_filename(date(2026, 4, 2)) == "deliveries-2026-04-02.csv"


class TestTestNotification:
    """Tests for the canned notification."""

    def test_sample_payload(self):
        payload = sample_notification_payload("test-1")
        assert payload.driver_name == "Test Driver"
        assert payload.pallet_count == 5
        assert payload.ai_analysis.confidence == pytest.approx(0.95)

    def test_send_goes_to_active_admins(self, database, dashboard):
        database.add_admin_user("ops@example.com", "Ops")
        result = dashboard.send_test_notification()
        assert result.successful == 1
