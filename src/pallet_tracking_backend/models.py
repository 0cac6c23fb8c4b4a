from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .signature_pad import CaptureState, InputSource, PointerAction


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


class PhotoType(str, Enum):
    BILL_OF_LADING = "bill_of_lading"
    SIGNATURE = "signature"


class PalletAnalysis(BaseModel):
    # The model answers in camelCase; both spellings are accepted
    pallet_count: int = Field(ge=0, validation_alias=AliasChoices("pallet_count", "palletCount"))
    confidence: float = Field(ge=0, le=1)
    reasoning: str
    additional_notes: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("additional_notes", "additionalNotes")
    )

    @field_validator("pallet_count", mode="before")
    @classmethod
    def _round_pallet_count(cls, value: Any) -> Any:
        # Fractional counts round half up, so 2.5 becomes 3
        if isinstance(value, float) and math.isfinite(value):
            return int(math.floor(value + 0.5))
        return value


class WizardStep(BaseModel):
    id: int
    title: str
    description: str


class DeliveryDraft(BaseModel):
    driver_name: str = ""
    driver_phone: str = ""
    driver_email: str = ""
    company_name: str = ""
    pickup_location: str = ""
    delivery_location: str = ""
    bill_of_lading_filename: Optional[str] = None
    bill_of_lading_url: str = ""
    pallet_count: int = 0
    pallet_analysis: Optional[PalletAnalysis] = None
    signature: str = Field(default="", exclude=True)
    signature_url: str = ""


class DraftUpdate(BaseModel):
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    driver_email: Optional[str] = None
    company_name: Optional[str] = None
    pickup_location: Optional[str] = None
    delivery_location: Optional[str] = None
    pallet_count: Optional[int] = Field(default=None, ge=0)


class WizardState(BaseModel):
    id: str
    current_step: int
    total_steps: int
    step: WizardStep
    progress: float
    can_proceed: bool
    is_processing_photo: bool
    upload_error: Optional[str] = None
    has_signature: bool = False
    signature_pad_id: Optional[str] = None
    delivery_id: Optional[str] = None
    data: DeliveryDraft


class DeliveryRecord(BaseModel):
    id: str
    driver_name: str
    driver_phone: str
    driver_email: str
    company_name: str
    pickup_location: str
    delivery_location: str
    pallet_count: int
    bill_of_lading_url: str = ""
    signature_url: str = ""
    status: DeliveryStatus
    confirmed_at: Optional[datetime] = None
    created_at: datetime
    chat_responses: Dict[str, Any] = Field(default_factory=dict)


class DeliveryPhoto(BaseModel):
    id: str
    delivery_id: str
    photo_url: str
    photo_type: PhotoType
    created_at: datetime


class DeliveryDetail(DeliveryRecord):
    photos: List[DeliveryPhoto] = Field(default_factory=list)


class AdminUser(BaseModel):
    id: str
    email: str
    name: str
    is_active: bool
    created_at: datetime


class AdminUserCreate(BaseModel):
    email: str = Field(min_length=3)
    name: str = Field(min_length=1)


class AIAnalysisSummary(BaseModel):
    confidence: float
    reasoning: str


class NotificationPayload(BaseModel):
    """Body of /api/send-notification, camelCase on the wire."""

    model_config = ConfigDict(populate_by_name=True)

    delivery_id: str = Field(alias="deliveryId")
    driver_name: str = Field(default="", alias="driverName")
    driver_phone: str = Field(default="", alias="driverPhone")
    driver_email: str = Field(default="", alias="driverEmail")
    company_name: str = Field(default="", alias="companyName")
    pickup_location: str = Field(default="", alias="pickupLocation")
    delivery_location: str = Field(default="", alias="deliveryLocation")
    pallet_count: int = Field(default=0, ge=0, alias="palletCount")
    confirmed_at: datetime = Field(alias="confirmedAt")
    bill_of_lading_url: Optional[str] = Field(default=None, alias="billOfLadingUrl")
    signature_url: Optional[str] = Field(default=None, alias="signatureUrl")
    ai_analysis: Optional[AIAnalysisSummary] = Field(default=None, alias="aiAnalysis")


class RecipientResult(BaseModel):
    email: str
    success: bool
    error: Optional[str] = None


class NotificationResult(BaseModel):
    message: str
    successful: int = 0
    failed: int = 0
    results: List[RecipientResult] = Field(default_factory=list)


class SubmitResult(BaseModel):
    delivery: DeliveryRecord
    notification: Optional[NotificationResult] = None
    notification_error: Optional[str] = None


class DashboardStats(BaseModel):
    total_deliveries: int
    total_pallets: int
    active_admins: int
    todays_deliveries: int


# Layout bounds accepted from clients, in CSS pixels
MAX_LAYOUT_SIZE = 4096
MAX_COORDINATE = 1_000_000
MAX_DEVICE_PIXEL_RATIO = 4


class BoundingRectModel(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    left: float = Field(default=0.0, ge=-MAX_COORDINATE, le=MAX_COORDINATE)
    top: float = Field(default=0.0, ge=-MAX_COORDINATE, le=MAX_COORDINATE)
    width: float = Field(ge=0, le=MAX_LAYOUT_SIZE)
    height: float = Field(ge=0, le=MAX_LAYOUT_SIZE)


class ContactModel(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    client_x: float
    client_y: float


class PointerEventModel(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    action: PointerAction
    source: InputSource = InputSource.MOUSE
    client_x: float = 0.0
    client_y: float = 0.0
    touches: List[ContactModel] = Field(default_factory=list)


class PointerEventBatch(BaseModel):
    events: List[PointerEventModel] = Field(default_factory=list)
    rect: Optional[BoundingRectModel] = None


class SignaturePadMount(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    rect: BoundingRectModel
    device_pixel_ratio: float = Field(default=1.0, gt=0, le=MAX_DEVICE_PIXEL_RATIO)
    wizard_id: Optional[str] = None
    preserve_ink_on_resize: Optional[bool] = None


class SignaturePadResize(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    rect: BoundingRectModel
    device_pixel_ratio: Optional[float] = Field(default=None, gt=0, le=MAX_DEVICE_PIXEL_RATIO)


class SignaturePadState(BaseModel):
    id: str
    wizard_id: Optional[str] = None
    state: CaptureState
    has_ink: bool
    mounted: bool
    css_width: float = 0.0
    css_height: float = 0.0
    backing_width: int = 0
    backing_height: int = 0
    device_pixel_ratio: Optional[float] = None
    notifications: int = 0
    has_signature: bool = False
