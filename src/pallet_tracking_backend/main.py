from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from typing import Dict, List

from fastapi import Depends, FastAPI, File, HTTPException, Response, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .ai_processing import PalletAnalyzer
from .configuration import get_settings, section
from .dashboard import AdminDashboard
from .database import DeliveryDatabase
from .middleware import RateLimit, RateLimiter
from .models import (
    AdminUser,
    AdminUserCreate,
    DashboardStats,
    DeliveryDetail,
    DeliveryRecord,
    DraftUpdate,
    NotificationPayload,
    NotificationResult,
    PointerEventBatch,
    SignaturePadMount,
    SignaturePadResize,
    SignaturePadState,
    SubmitResult,
    WizardState,
)
from .notifications import NotificationService
from .session_manager import SessionManager
from .signature_pad import StrokeStyle
from .storage import StorageError, StorageService
from .utils import ensure_directory, is_image_upload

settings = get_settings()
app_settings = section(settings, "app")
signature_settings = section(settings, "signature")

logging.basicConfig(
    level=section(settings, "logging")["level"],
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=app_settings["title"], version=str(app_settings["version"]))

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(app_settings["cors_origins"]),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database = DeliveryDatabase(Path(section(settings, "database")["path"]))
storage = StorageService.from_config(section(settings, "storage"))
analyzer = PalletAnalyzer.from_config(section(settings, "ai"))
notifier = NotificationService.from_config(database, section(settings, "notifications"))
session_manager = SessionManager(
    storage=storage,
    analyzer=analyzer,
    database=database,
    notifier=notifier,
    pad_style=StrokeStyle(
        color=signature_settings["stroke_color"],
        width=float(signature_settings["stroke_width"]),
        background=signature_settings["background"],
    ),
    preserve_ink_on_resize=bool(signature_settings["preserve_ink_on_resize"]),
    session_ttl=timedelta(hours=float(section(settings, "sessions")["ttl_hours"])),
)
dashboard = AdminDashboard(database, notifier)
rate_limiter = RateLimiter(requests_per_minute=int(section(settings, "rate_limit")["requests_per_minute"]))

ensure_directory(storage.local_root)
app.mount(storage.local_url_prefix, StaticFiles(directory=storage.local_root), name="uploads")

if storage.uses_bucket:
    logger.info(f"Uploads go to s3://{storage.bucket}")
else:
    logger.info(f"No storage bucket configured, uploads are served from {storage.local_root}")


def get_session_manager() -> SessionManager:
    return session_manager


def get_dashboard() -> AdminDashboard:
    return dashboard


def get_notifier() -> NotificationService:
    return notifier


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


# -- Signature pads ------------------------------------------------------------------
@app.post("/signature-pads", response_model=SignaturePadState, status_code=201)
def mount_signature_pad(
    request: SignaturePadMount, manager: SessionManager = Depends(get_session_manager)
) -> SignaturePadState:
    try:
        return manager.mount_pad(
            request.rect,
            request.device_pixel_ratio,
            wizard_id=request.wizard_id,
            preserve_ink_on_resize=request.preserve_ink_on_resize,
        )
    except KeyError as exc:  # noqa: BLE001
        raise HTTPException(status_code=404, detail="Wizard not found") from exc
    except ValueError as exc:  # noqa: BLE001
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/signature-pads/{pad_id}", response_model=SignaturePadState)
def get_signature_pad(pad_id: str, manager: SessionManager = Depends(get_session_manager)) -> SignaturePadState:
    try:
        return manager.get_pad(pad_id)
    except KeyError as exc:  # noqa: BLE001
        raise HTTPException(status_code=404, detail="Signature pad not found") from exc


@app.post("/signature-pads/{pad_id}/events", response_model=SignaturePadState)
def apply_pointer_events(
    pad_id: str, batch: PointerEventBatch, manager: SessionManager = Depends(get_session_manager)
) -> SignaturePadState:
    try:
        return manager.apply_events(pad_id, batch.events, batch.rect)
    except KeyError as exc:  # noqa: BLE001
        raise HTTPException(status_code=404, detail="Signature pad not found") from exc
    except ValueError as exc:  # noqa: BLE001
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/signature-pads/{pad_id}/resize", response_model=SignaturePadState)
def resize_signature_pad(
    pad_id: str, request: SignaturePadResize, manager: SessionManager = Depends(get_session_manager)
) -> SignaturePadState:
    try:
        return manager.resize_pad(pad_id, request.rect, request.device_pixel_ratio)
    except KeyError as exc:  # noqa: BLE001
        raise HTTPException(status_code=404, detail="Signature pad not found") from exc
    except ValueError as exc:  # noqa: BLE001
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/signature-pads/{pad_id}/clear", response_model=SignaturePadState)
def clear_signature_pad(pad_id: str, manager: SessionManager = Depends(get_session_manager)) -> SignaturePadState:
    try:
        return manager.clear_pad(pad_id)
    except KeyError as exc:  # noqa: BLE001
        raise HTTPException(status_code=404, detail="Signature pad not found") from exc


@app.get("/signature-pads/{pad_id}/signature.png")
def signature_png(pad_id: str, manager: SessionManager = Depends(get_session_manager)) -> Response:
    try:
        png = manager.pad_png(pad_id)
    except KeyError as exc:  # noqa: BLE001
        raise HTTPException(status_code=404, detail="Signature pad not found") from exc
    if png is None:
        raise HTTPException(status_code=404, detail="Signature pad has no drawable surface")
    return Response(content=png, media_type="image/png")


@app.delete("/signature-pads/{pad_id}", status_code=204)
def remove_signature_pad(pad_id: str, manager: SessionManager = Depends(get_session_manager)) -> Response:
    try:
        manager.remove_pad(pad_id)
    except KeyError as exc:  # noqa: BLE001
        raise HTTPException(status_code=404, detail="Signature pad not found") from exc
    return Response(status_code=204)


# -- Driver wizard -------------------------------------------------------------------
@app.post("/wizard", response_model=WizardState, status_code=201)
def create_wizard(manager: SessionManager = Depends(get_session_manager)) -> WizardState:
    return manager.create_wizard()


@app.get("/wizard/{wizard_id}", response_model=WizardState)
def get_wizard(wizard_id: str, manager: SessionManager = Depends(get_session_manager)) -> WizardState:
    try:
        return manager.get_wizard(wizard_id)
    except KeyError as exc:  # noqa: BLE001
        raise HTTPException(status_code=404, detail="Wizard not found") from exc


@app.patch("/wizard/{wizard_id}", response_model=WizardState)
def update_wizard(
    wizard_id: str, changes: DraftUpdate, manager: SessionManager = Depends(get_session_manager)
) -> WizardState:
    try:
        return manager.update_wizard(wizard_id, changes)
    except KeyError as exc:  # noqa: BLE001
        raise HTTPException(status_code=404, detail="Wizard not found") from exc
    except RuntimeError as exc:  # noqa: BLE001
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.post("/wizard/{wizard_id}/next", response_model=WizardState)
def next_step(wizard_id: str, manager: SessionManager = Depends(get_session_manager)) -> WizardState:
    try:
        return manager.advance(wizard_id)
    except KeyError as exc:  # noqa: BLE001
        raise HTTPException(status_code=404, detail="Wizard not found") from exc
    except ValueError as exc:  # noqa: BLE001
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/wizard/{wizard_id}/previous", response_model=WizardState)
def previous_step(wizard_id: str, manager: SessionManager = Depends(get_session_manager)) -> WizardState:
    try:
        return manager.go_back(wizard_id)
    except KeyError as exc:  # noqa: BLE001
        raise HTTPException(status_code=404, detail="Wizard not found") from exc


@app.post("/wizard/{wizard_id}/bill-of-lading", response_model=WizardState)
async def upload_bill_of_lading(
    wizard_id: str,
    photo: UploadFile = File(...),
    manager: SessionManager = Depends(get_session_manager),
) -> WizardState:
    if not photo.filename:
        raise HTTPException(status_code=400, detail="Photo must have a filename")

    if not is_image_upload(photo.filename, photo.content_type):
        raise HTTPException(status_code=400, detail="Only image uploads are supported")

    payload = await photo.read()
    await photo.close()
    if not payload:
        raise HTTPException(status_code=400, detail="Uploaded photo is empty")

    try:
        # Storage upload and model call block, so they run in the threadpool
        return await run_in_threadpool(
            manager.upload_bill_of_lading, wizard_id, photo.filename, payload, photo.content_type
        )
    except KeyError as exc:  # noqa: BLE001
        raise HTTPException(status_code=404, detail="Wizard not found") from exc
    except RuntimeError as exc:  # noqa: BLE001
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.post("/wizard/{wizard_id}/submit", response_model=SubmitResult)
def submit_wizard(wizard_id: str, manager: SessionManager = Depends(get_session_manager)) -> SubmitResult:
    try:
        return manager.submit(wizard_id)
    except KeyError as exc:  # noqa: BLE001
        raise HTTPException(status_code=404, detail="Wizard not found") from exc
    except ValueError as exc:  # noqa: BLE001
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StorageError as exc:  # noqa: BLE001
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except RuntimeError as exc:  # noqa: BLE001
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.delete("/wizard/{wizard_id}", status_code=204)
def discard_wizard(wizard_id: str, manager: SessionManager = Depends(get_session_manager)) -> Response:
    try:
        manager.discard_wizard(wizard_id)
    except KeyError as exc:  # noqa: BLE001
        raise HTTPException(status_code=404, detail="Wizard not found") from exc
    except StorageError as exc:  # noqa: BLE001
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return Response(status_code=204)


# -- Notifications -------------------------------------------------------------------
@app.post(
    "/api/send-notification",
    response_model=NotificationResult,
    dependencies=[Depends(RateLimit(rate_limiter))],
)
def send_notification(
    payload: NotificationPayload, service: NotificationService = Depends(get_notifier)
) -> NotificationResult:
    return service.send_delivery_notification(payload)


# -- Admin dashboard -----------------------------------------------------------------
@app.get("/admin/stats", response_model=DashboardStats)
def admin_stats(board: AdminDashboard = Depends(get_dashboard)) -> DashboardStats:
    return board.stats()


@app.get("/admin/deliveries", response_model=List[DeliveryRecord])
def admin_deliveries(board: AdminDashboard = Depends(get_dashboard)) -> List[DeliveryRecord]:
    return board.list_deliveries()


@app.get("/admin/deliveries/export.csv")
def export_deliveries(board: AdminDashboard = Depends(get_dashboard)) -> Response:
    return Response(
        content=board.export_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{board.export_filename()}"'},
    )


@app.get("/admin/deliveries/{delivery_id}", response_model=DeliveryDetail)
def admin_delivery(delivery_id: str, board: AdminDashboard = Depends(get_dashboard)) -> DeliveryDetail:
    try:
        return board.get_delivery(delivery_id)
    except KeyError as exc:  # noqa: BLE001
        raise HTTPException(status_code=404, detail="Delivery not found") from exc


@app.get("/admin/users", response_model=List[AdminUser])
def admin_users(board: AdminDashboard = Depends(get_dashboard)) -> List[AdminUser]:
    return board.list_admin_users()


@app.post("/admin/users", response_model=AdminUser, status_code=201)
def add_admin_user(request: AdminUserCreate, board: AdminDashboard = Depends(get_dashboard)) -> AdminUser:
    try:
        return board.add_admin_user(request)
    except ValueError as exc:  # noqa: BLE001
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/admin/users/{admin_id}/toggle", response_model=AdminUser)
def toggle_admin_user(admin_id: str, board: AdminDashboard = Depends(get_dashboard)) -> AdminUser:
    try:
        return board.toggle_admin_user(admin_id)
    except KeyError as exc:  # noqa: BLE001
        raise HTTPException(status_code=404, detail="Admin user not found") from exc


@app.delete("/admin/users/{admin_id}", status_code=204)
def delete_admin_user(admin_id: str, board: AdminDashboard = Depends(get_dashboard)) -> Response:
    try:
        board.delete_admin_user(admin_id)
    except KeyError as exc:  # noqa: BLE001
        raise HTTPException(status_code=404, detail="Admin user not found") from exc
    return Response(status_code=204)


@app.post("/admin/test-notification", response_model=NotificationResult)
def send_test_notification(board: AdminDashboard = Depends(get_dashboard)) -> NotificationResult:
    return board.send_test_notification()
