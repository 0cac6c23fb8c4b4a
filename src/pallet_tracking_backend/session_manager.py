"""
Registry of live driver sessions.

This module keeps the in-memory state the HTTP layer works against:
- Delivery wizards, one per driver filling in the form
- Mounted signature pads, optionally linked to a wizard
- Routing of pad change notifications into the linked wizard's draft

Locking:
    The registries are guarded by the manager lock. Each pad and each wizard
    has its own lock so a batch of pointer events or a submit runs atomically.
    Locks are taken in the order pad, wizard, manager; the manager lock is never
    held while acquiring a pad or wizard lock.

Lifetime:
    A wizard leaves the registry when it is submitted or discarded, together with
    its pads. Wizards and unlinked pads older than the session TTL are swept the
    next time a wizard or pad is created.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from .ai_processing import PalletAnalyzer
from .database import DeliveryDatabase
from .models import (
    BoundingRectModel,
    DraftUpdate,
    PointerEventModel,
    SignaturePadState,
    SubmitResult,
    WizardState,
)
from .notifications import NotificationService
from .signature_pad import BoundingRect, Contact, PointerEvent, SignaturePad, StrokeStyle
from .storage import StorageError, StorageService
from .wizard import DeliveryWizard

logger = logging.getLogger(__name__)


def to_bounding_rect(model: BoundingRectModel) -> BoundingRect:
    return BoundingRect(left=model.left, top=model.top, width=model.width, height=model.height)


def to_pointer_event(model: PointerEventModel) -> PointerEvent:
    return PointerEvent(
        action=model.action,
        source=model.source,
        client_x=model.client_x,
        client_y=model.client_y,
        touches=tuple(Contact(contact.client_x, contact.client_y) for contact in model.touches),
    )


@dataclass
class PadRecord:
    """
    A mounted signature pad and its bookkeeping.

    Attributes:
        id: Pad identifier (hex UUID)
        pad: The capture engine
        wizard_id: Wizard whose draft receives the signature, if any
        notifications: Number of change notifications the pad has emitted
        last_signature: Payload of the most recent notification
    """

    id: str
    pad: SignaturePad
    wizard_id: Optional[str]
    created_at: datetime
    lock: Lock = field(default_factory=Lock)
    notifications: int = 0
    last_signature: str = ""

    def to_state(self) -> SignaturePadState:
        pad = self.pad
        surface = pad.surface
        rect = pad.rect
        backing_width, backing_height = surface.backing_size if surface else (0, 0)
        return SignaturePadState(
            id=self.id,
            wizard_id=self.wizard_id,
            state=pad.state,
            has_ink=pad.has_ink,
            mounted=pad.is_mounted,
            css_width=rect.width if rect else 0.0,
            css_height=rect.height if rect else 0.0,
            backing_width=backing_width,
            backing_height=backing_height,
            device_pixel_ratio=surface.scale if surface else None,
            notifications=self.notifications,
            has_signature=bool(self.last_signature),
        )


class SessionManager:
    """
    Central coordinator for wizards and signature pads.

    Attributes:
        pad_style: Stroke style applied to every new pad
        preserve_ink_on_resize: Default for pads that do not choose themselves
    """

    def __init__(
        self,
        *,
        storage: StorageService,
        analyzer: PalletAnalyzer,
        database: DeliveryDatabase,
        notifier: NotificationService,
        pad_style: Optional[StrokeStyle] = None,
        preserve_ink_on_resize: bool = False,
        session_ttl: Optional[timedelta] = None,
    ) -> None:
        self._storage = storage
        self._analyzer = analyzer
        self._database = database
        self._notifier = notifier
        self.pad_style = pad_style or StrokeStyle()
        self.preserve_ink_on_resize = preserve_ink_on_resize
        self.session_ttl = session_ttl
        self._wizards: Dict[str, DeliveryWizard] = {}
        self._pads: Dict[str, PadRecord] = {}
        self._lock = Lock()

    # -- Wizards -----------------------------------------------------------------
    def create_wizard(self) -> WizardState:
        self.sweep_expired()
        wizard = DeliveryWizard(
            uuid4().hex,
            storage=self._storage,
            analyzer=self._analyzer,
            database=self._database,
            notifier=self._notifier,
        )
        with self._lock:
            self._wizards[wizard.id] = wizard
        logger.info(f"Wizard {wizard.id} started")
        return wizard.to_state()

    def _wizard(self, wizard_id: str) -> DeliveryWizard:
        with self._lock:
            wizard = self._wizards.get(wizard_id)
        if wizard is None:
            raise KeyError(f"Wizard {wizard_id} not found")
        return wizard

    def get_wizard(self, wizard_id: str) -> WizardState:
        wizard = self._wizard(wizard_id)
        with wizard.lock:
            return wizard.to_state()

    def update_wizard(self, wizard_id: str, changes: DraftUpdate) -> WizardState:
        wizard = self._wizard(wizard_id)
        with wizard.lock:
            wizard.update(changes)
            return wizard.to_state()

    def advance(self, wizard_id: str) -> WizardState:
        wizard = self._wizard(wizard_id)
        with wizard.lock:
            wizard.next_step()
            return wizard.to_state()

    def go_back(self, wizard_id: str) -> WizardState:
        wizard = self._wizard(wizard_id)
        with wizard.lock:
            wizard.previous_step()
            return wizard.to_state()

    def upload_bill_of_lading(
        self, wizard_id: str, filename: str, payload: bytes, content_type: Optional[str] = None
    ) -> WizardState:
        wizard = self._wizard(wizard_id)
        with wizard.lock:
            wizard.handle_photo_upload(filename, payload, content_type)
            return wizard.to_state()

    def submit(self, wizard_id: str) -> SubmitResult:
        """
        Confirm the delivery, then drop the wizard and its pads from the registry.

        A failed submit leaves the wizard in place so the driver can retry.
        """
        wizard = self._wizard(wizard_id)
        with wizard.lock:
            result = wizard.submit()
        evicted = self._evict(wizard_id)
        if evicted is not None:
            self._release_pads(evicted[1])
        logger.info(f"Wizard {wizard_id} submitted as delivery {result.delivery.id} and released")
        return result

    def discard_wizard(self, wizard_id: str) -> None:
        """
        Forget a wizard and every pad linked to it.

        The Bill of Lading photo of an unsubmitted wizard is deleted from storage.
        """
        evicted = self._evict(wizard_id)
        if evicted is None:
            raise KeyError(f"Wizard {wizard_id} not found")
        wizard, records = evicted
        self._release_pads(records)
        with wizard.lock:
            wizard.discard()
        logger.info(f"Wizard {wizard_id} discarded with {len(records)} signature pad(s)")

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """
        Drop wizards and unlinked pads created more than the session TTL ago.

        Expired wizards are discarded like an abandoned form, so their unsubmitted
        photo is deleted. Returns the number of wizards and pads dropped.
        """
        if self.session_ttl is None:
            return 0
        cutoff = (now or datetime.now(timezone.utc)) - self.session_ttl
        with self._lock:
            wizard_ids = [key for key, wizard in self._wizards.items() if wizard.created_at < cutoff]
            orphan_ids = [
                key for key, record in self._pads.items() if record.wizard_id is None and record.created_at < cutoff
            ]
            orphans = [self._pads.pop(key) for key in orphan_ids]

        self._release_pads(orphans)
        wizards = 0
        pads = len(orphans)
        for wizard_id in wizard_ids:
            evicted = self._evict(wizard_id)
            if evicted is None:
                continue
            wizard, records = evicted
            self._release_pads(records)
            wizards += 1
            pads += len(records)
            with wizard.lock:
                try:
                    wizard.discard()
                except StorageError as exc:
                    logger.warning(f"Could not delete the photo of expired wizard {wizard_id}: {exc}")
        if wizards or pads:
            logger.info(f"Swept {wizards} expired wizard(s) and {pads} signature pad(s)")
        return wizards + pads

    def _evict(self, wizard_id: str) -> Optional[Tuple[DeliveryWizard, List[PadRecord]]]:
        with self._lock:
            wizard = self._wizards.pop(wizard_id, None)
            if wizard is None:
                return None
            pad_ids = [pad_id for pad_id, record in self._pads.items() if record.wizard_id == wizard_id]
            return wizard, [self._pads.pop(pad_id) for pad_id in pad_ids]

    @staticmethod
    def _release_pads(records: Iterable[PadRecord]) -> None:
        for record in records:
            with record.lock:
                record.pad.unmount()

    # -- Signature pads ------------------------------------------------------------
    def mount_pad(
        self,
        rect: BoundingRectModel,
        device_pixel_ratio: float = 1.0,
        wizard_id: Optional[str] = None,
        preserve_ink_on_resize: Optional[bool] = None,
    ) -> SignaturePadState:
        """
        Mount a new signature pad.

        A pad linked to a wizard replaces any pad previously linked to it; its
        change notifications set the wizard's signature.

        Raises:
            KeyError: If wizard_id names an unknown wizard
        """
        self.sweep_expired()
        wizard = self._wizard(wizard_id) if wizard_id else None
        pad_id = uuid4().hex
        preserve = self.preserve_ink_on_resize if preserve_ink_on_resize is None else preserve_ink_on_resize

        pad = SignaturePad(
            lambda signature: self._on_signature_change(pad_id, signature),
            style=self.pad_style,
            preserve_ink_on_resize=preserve,
        )
        pad.mount(to_bounding_rect(rect), device_pixel_ratio)
        record = PadRecord(id=pad_id, pad=pad, wizard_id=wizard_id, created_at=datetime.now(timezone.utc))

        replaced: Iterable[PadRecord] = []
        with self._lock:
            if wizard_id:
                stale = [key for key, other in self._pads.items() if other.wizard_id == wizard_id]
                replaced = [self._pads.pop(key) for key in stale]
            self._pads[pad_id] = record

        for old in replaced:
            with old.lock:
                old.pad.unmount()
        if wizard is not None:
            with wizard.lock:
                wizard.signature_pad_id = pad_id

        logger.info(f"Signature pad {pad_id} mounted ({rect.width}x{rect.height} @ {device_pixel_ratio})")
        return record.to_state()

    def _on_signature_change(self, pad_id: str, signature: str) -> None:
        with self._lock:
            record = self._pads.get(pad_id)
            wizard = self._wizards.get(record.wizard_id) if record and record.wizard_id else None
        if record is None:
            return
        record.notifications += 1
        record.last_signature = signature
        if wizard is not None:
            with wizard.lock:
                wizard.handle_signature_change(signature)

    def _pad(self, pad_id: str) -> PadRecord:
        with self._lock:
            record = self._pads.get(pad_id)
        if record is None:
            raise KeyError(f"Signature pad {pad_id} not found")
        return record

    def get_pad(self, pad_id: str) -> SignaturePadState:
        record = self._pad(pad_id)
        with record.lock:
            return record.to_state()

    def apply_events(
        self,
        pad_id: str,
        events: Iterable[PointerEventModel],
        rect: Optional[BoundingRectModel] = None,
    ) -> SignaturePadState:
        """
        Feed a batch of pointer events to a pad, in order.

        A rect sent with the batch is the pad's current layout box; a changed
        size is applied as a resize before the events.
        """
        record = self._pad(pad_id)
        with record.lock:
            if rect is not None:
                record.pad.reposition(to_bounding_rect(rect))
            for event in events:
                record.pad.handle(to_pointer_event(event))
            return record.to_state()

    def resize_pad(
        self, pad_id: str, rect: BoundingRectModel, device_pixel_ratio: Optional[float] = None
    ) -> SignaturePadState:
        record = self._pad(pad_id)
        with record.lock:
            record.pad.resize(to_bounding_rect(rect), device_pixel_ratio)
            return record.to_state()

    def clear_pad(self, pad_id: str) -> SignaturePadState:
        record = self._pad(pad_id)
        with record.lock:
            record.pad.clear()
            return record.to_state()

    def pad_png(self, pad_id: str) -> Optional[bytes]:
        record = self._pad(pad_id)
        with record.lock:
            return record.pad.export_png()

    def remove_pad(self, pad_id: str) -> None:
        with self._lock:
            record = self._pads.pop(pad_id, None)
            wizard = self._wizards.get(record.wizard_id) if record and record.wizard_id else None
        if record is None:
            raise KeyError(f"Signature pad {pad_id} not found")
        with record.lock:
            record.pad.unmount()
        if wizard is not None:
            with wizard.lock:
                if wizard.signature_pad_id == pad_id:
                    wizard.signature_pad_id = None
        logger.info(f"Signature pad {pad_id} unmounted")
