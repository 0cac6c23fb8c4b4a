"""
Pytest configuration and fixtures for Pallet Tracking Backend tests.
"""

import io
import os
import shutil
import tempfile
from pathlib import Path
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from PIL import Image

# Set test environment variables before importing the app
_TEST_ROOT = tempfile.mkdtemp(prefix="pallet_test_")
os.environ["PALLET_DB_PATH"] = os.path.join(_TEST_ROOT, "pallet_tracking.db")
os.environ["PALLET_UPLOAD_DIR"] = os.path.join(_TEST_ROOT, "uploads")
os.environ["STORAGE_BUCKET_NAME"] = ""
os.environ["OPENAI_API_KEY"] = ""
os.environ["SMTP_HOST"] = ""

from pallet_tracking_backend.ai_processing import PalletAnalyzer
from pallet_tracking_backend.database import DeliveryDatabase
from pallet_tracking_backend.main import app
from pallet_tracking_backend.notifications import NotificationService
from pallet_tracking_backend.storage import StorageService
from pallet_tracking_backend.utils import encode_png_data_uri
from pallet_tracking_backend.wizard import DeliveryWizard


@pytest.fixture(scope="session", autouse=True)
def test_dirs():
    """Cleanup the app's database and upload directory after the run."""
    yield {
        "database": os.environ["PALLET_DB_PATH"],
        "upload": os.environ["PALLET_UPLOAD_DIR"],
    }
    shutil.rmtree(_TEST_ROOT, ignore_errors=True)


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def database(tmp_path):
    """A fresh database per test."""
    return DeliveryDatabase(tmp_path / "deliveries.db")


@pytest.fixture
def storage(tmp_path):
    """Local-directory storage under the test's temp dir."""
    return StorageService(local_root=tmp_path / "uploads")


@pytest.fixture
def notifier(database):
    """Notification service without SMTP; messages only go to the log."""
    return NotificationService(database)


def make_openai_client(content):
    """Stand-in for openai.OpenAI whose chat completion answers with content."""
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        if isinstance(content, Exception):
            raise content
        message = SimpleNamespace(content=content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    client.calls = calls
    return client


@pytest.fixture
def analyzer():
    """Analyzer whose model always counts 12 pallets."""
    client = make_openai_client(
        '{"palletCount": 12, "confidence": 0.9, "reasoning": "12 pallets listed under quantity"}'
    )
    return PalletAnalyzer(client)


@pytest.fixture
def wizard(storage, analyzer, database, notifier):
    return DeliveryWizard("wizard-1", storage=storage, analyzer=analyzer, database=database, notifier=notifier)


@pytest.fixture
def sample_jpeg():
    """A small JPEG standing in for a Bill of Lading photo."""
    buffer = io.BytesIO()
    Image.new("RGB", (32, 24), (200, 200, 200)).save(buffer, format="JPEG")
    return buffer.getvalue()


@pytest.fixture
def signature_data_uri():
    """A tiny PNG signature as the pad would export it."""
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), (0, 0, 0)).save(buffer, format="PNG")
    return encode_png_data_uri(buffer.getvalue())


def decode_png(payload: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(payload))
    image.load()
    return image


def upload_path(url: str) -> Path:
    """Filesystem path of a locally stored upload URL."""
    return Path(os.environ["PALLET_UPLOAD_DIR"]) / url.split("/uploads/", 1)[1]
