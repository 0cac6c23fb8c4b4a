"""
Pallet Tracking Backend - REST API for pallet delivery confirmation

This package provides a FastAPI-based web service behind the driver and
admin screens of the pallet tracking system. It enables:

- A five step driver wizard (driver, delivery, Bill of Lading, pallet count, signature)
- Freehand signature capture on server-side signature pads
- Bill of Lading photo storage and AI pallet counting
- Delivery persistence and e-mail notifications to admin users
- An admin dashboard with stats, admin user management and CSV export

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - signature_pad: Signature capture engine (surface, strokes, PNG export)
    - session_manager: Registry of live wizards and signature pads
    - wizard: Driver wizard steps and submission
    - storage: S3 (or local directory) uploads
    - ai_processing: Bill of Lading analysis with an OpenAI vision model
    - notifications: Admin e-mail rendering and delivery
    - dashboard: Admin dashboard operations
    - database: SQLite persistence
    - models: Pydantic models for request/response validation
    - configuration: Config loading and merging logic
    - utils: Filesystem, string and data URI utilities

Usage:
    Run the API server with:
        uvicorn pallet_tracking_backend.main:app --reload --host 0.0.0.0 --port 8000
"""
