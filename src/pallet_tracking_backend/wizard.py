"""
Driver-facing delivery confirmation wizard.

Five steps: driver information, delivery details, Bill of Lading photo, pallet
count, signature and confirmation. A DeliveryWizard holds one driver's draft
and enforces the per-step completion rules; it talks to storage, the pallet
analyzer, the database and the notifier only on photo upload and on submit.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Optional

from .ai_processing import PalletAnalyzer
from .database import DeliveryDatabase
from .models import (
    AIAnalysisSummary,
    DeliveryDraft,
    DeliveryRecord,
    DeliveryStatus,
    DraftUpdate,
    NotificationPayload,
    PhotoType,
    SubmitResult,
    WizardState,
    WizardStep,
)
from .notifications import NotificationService
from .storage import StorageError, StorageService
from .utils import encode_data_uri, now_millis

logger = logging.getLogger(__name__)

STEPS = [
    WizardStep(id=1, title="Driver Information", description="Tell us about yourself"),
    WizardStep(id=2, title="Delivery Details", description="Pickup and delivery information"),
    WizardStep(id=3, title="Bill of Lading", description="Upload your documentation"),
    WizardStep(id=4, title="Pallet Count", description="Confirm pallet quantity"),
    WizardStep(id=5, title="Confirmation", description="Sign and complete"),
]

UPLOAD_STEP = 3
ANALYSIS_STEP = 4


class DeliveryWizard:
    """
    State of one driver's pass through the form.

    Attributes:
        id: Wizard session id
        current_step: 1-based index into STEPS
        data: The draft being filled in
        lock: Serializes operations on this wizard across request threads
    """

    def __init__(
        self,
        wizard_id: str,
        *,
        storage: StorageService,
        analyzer: PalletAnalyzer,
        database: DeliveryDatabase,
        notifier: NotificationService,
    ) -> None:
        self.id = wizard_id
        self.current_step = 1
        self.data = DeliveryDraft()
        self.is_processing_photo = False
        self.upload_error: Optional[str] = None
        self.signature_pad_id: Optional[str] = None
        self.delivery_id: Optional[str] = None
        self.created_at = datetime.now(timezone.utc)
        self.lock = Lock()
        self._storage = storage
        self._analyzer = analyzer
        self._database = database
        self._notifier = notifier

    @property
    def step(self) -> WizardStep:
        return STEPS[self.current_step - 1]

    @property
    def progress(self) -> float:
        return self.current_step / len(STEPS) * 100

    @property
    def is_submitted(self) -> bool:
        return self.delivery_id is not None

    def can_proceed(self) -> bool:
        data = self.data
        if self.current_step == 1:
            return bool(data.driver_name and data.driver_phone and data.company_name)
        if self.current_step == 2:
            return bool(data.pickup_location and data.delivery_location)
        if self.current_step == 3:
            return bool(data.bill_of_lading_url) and not self.is_processing_photo
        if self.current_step == 4:
            return data.pallet_count > 0
        if self.current_step == 5:
            return len(data.signature.strip()) > 0
        return False

    def next_step(self) -> int:
        """
        Advance one step.

        Raises:
            ValueError: If the current step is incomplete
        """
        if self.current_step >= len(STEPS):
            return self.current_step
        if not self.can_proceed():
            raise ValueError(f"Step {self.current_step} ({self.step.title}) is not complete.")
        self.current_step += 1
        return self.current_step

    def previous_step(self) -> int:
        if self.current_step > 1:
            self.current_step -= 1
        return self.current_step

    def update(self, changes: DraftUpdate) -> None:
        self._ensure_open()
        for name, value in changes.model_dump(exclude_none=True).items():
            setattr(self.data, name, value)

    def handle_signature_change(self, signature: str) -> None:
        """Change callback of the signature pad: a PNG data URI, or "" when cleared."""
        if self.is_submitted:
            return
        self.data.signature = signature

    def handle_photo_upload(self, filename: str, payload: bytes, content_type: Optional[str] = None) -> None:
        """
        Store the Bill of Lading photo and count its pallets.

        Storage failures are recorded in upload_error instead of raised, so the
        driver can retry from the same step.

        Raises:
            RuntimeError: If the wizard is not on the upload step
        """
        self._ensure_open()
        if self.current_step != UPLOAD_STEP:
            raise RuntimeError("The Bill of Lading can only be uploaded on the Bill of Lading step.")

        self.is_processing_photo = True
        self.upload_error = None
        try:
            photo_url = self._storage.upload_delivery_photo(
                filename, payload, f"temp-{now_millis()}", content_type
            )
            self.data.bill_of_lading_filename = filename
            self.data.bill_of_lading_url = photo_url
            self.current_step = ANALYSIS_STEP

            analysis = self._analyzer.analyze(self._analysis_source(photo_url, payload, content_type))
            self.data.pallet_analysis = analysis
            self.data.pallet_count = analysis.pallet_count
        except StorageError as exc:
            logger.error(f"Photo upload/processing error: {exc}")
            self.upload_error = str(exc)
        finally:
            self.is_processing_photo = False

    def _analysis_source(self, photo_url: str, payload: bytes, content_type: Optional[str]) -> str:
        # Locally stored photos are not reachable by the model, send the bytes instead
        if photo_url.startswith(("http://", "https://")):
            return photo_url
        return encode_data_uri(payload, content_type or "image/jpeg")

    def submit(self) -> SubmitResult:
        """
        Confirm the pickup.

        Uploads the signature, stores the delivery with its photo rows and
        notifies the admins. A failed notification is reported in the result but
        does not undo the submission.

        Raises:
            RuntimeError: If the wizard was already submitted
            ValueError: If the wizard is not on the last step or the step is incomplete
            StorageError: If the signature upload fails
        """
        self._ensure_open()
        if self.current_step != len(STEPS) or not self.can_proceed():
            raise ValueError("Complete every step and sign before confirming the pickup.")

        data = self.data
        file_id = f"delivery-{now_millis()}"

        signature_url = ""
        if data.signature:
            signature_url = self._storage.upload_signature(data.signature, file_id)
            data.signature_url = signature_url

        record = self._database.insert_delivery({
            "driver_name": data.driver_name,
            "driver_phone": data.driver_phone,
            "driver_email": data.driver_email,
            "company_name": data.company_name,
            "pickup_location": data.pickup_location,
            "delivery_location": data.delivery_location,
            "pallet_count": data.pallet_count,
            "bill_of_lading_url": data.bill_of_lading_url,
            "signature_url": signature_url,
            "status": DeliveryStatus.CONFIRMED,
            "confirmed_at": datetime.now(timezone.utc),
            "chat_responses": {
                "driverInfo": {
                    "name": data.driver_name,
                    "phone": data.driver_phone,
                    "email": data.driver_email,
                    "company": data.company_name,
                },
                "deliveryInfo": {
                    "pickup": data.pickup_location,
                    "delivery": data.delivery_location,
                },
                "aiAnalysis": data.pallet_analysis.model_dump() if data.pallet_analysis else None,
            },
        })
        delivery = DeliveryRecord(**record)

        if data.bill_of_lading_url:
            self._database.add_delivery_photo(delivery.id, data.bill_of_lading_url, PhotoType.BILL_OF_LADING)
        if signature_url:
            self._database.add_delivery_photo(delivery.id, signature_url, PhotoType.SIGNATURE)

        self.delivery_id = delivery.id
        logger.info(f"Delivery {delivery.id} confirmed: {delivery.pallet_count} pallets for {delivery.company_name}")

        result = SubmitResult(delivery=delivery)
        try:
            result.notification = self._notifier.send_delivery_notification(self._notification_payload(delivery))
        except Exception as exc:  # noqa: BLE001
            logger.error(f"Email notification failed: {exc}")
            result.notification_error = str(exc)
        return result

    def _notification_payload(self, delivery: DeliveryRecord) -> NotificationPayload:
        analysis = self.data.pallet_analysis
        return NotificationPayload(
            delivery_id=delivery.id,
            driver_name=delivery.driver_name,
            driver_phone=delivery.driver_phone,
            driver_email=delivery.driver_email,
            company_name=delivery.company_name,
            pickup_location=delivery.pickup_location,
            delivery_location=delivery.delivery_location,
            pallet_count=delivery.pallet_count,
            confirmed_at=delivery.confirmed_at or delivery.created_at,
            bill_of_lading_url=delivery.bill_of_lading_url or None,
            signature_url=delivery.signature_url or None,
            ai_analysis=(
                AIAnalysisSummary(confidence=analysis.confidence, reasoning=analysis.reasoning)
                if analysis
                else None
            ),
        )

    def discard(self) -> None:
        """Remove the uploaded photo of a wizard that was never submitted."""
        if self.is_submitted or not self.data.bill_of_lading_url:
            return
        key = self._storage.key_from_url(self.data.bill_of_lading_url)
        if key:
            self._storage.delete_object(key)

    def _ensure_open(self) -> None:
        if self.is_submitted:
            raise RuntimeError("This delivery has already been submitted.")

    def to_state(self) -> WizardState:
        return WizardState(
            id=self.id,
            current_step=self.current_step,
            total_steps=len(STEPS),
            step=self.step,
            progress=self.progress,
            can_proceed=self.can_proceed(),
            is_processing_photo=self.is_processing_photo,
            upload_error=self.upload_error,
            has_signature=bool(self.data.signature),
            signature_pad_id=self.signature_pad_id,
            delivery_id=self.delivery_id,
            data=self.data,
        )
