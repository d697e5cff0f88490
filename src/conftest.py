"""Shared pytest fixtures and factories for AssetTrack tests."""

from io import BytesIO

import pytest
from PIL import Image

from django.conf import settings
from django.core.files.uploadedfile import SimpleUploadedFile

# Use local filesystem storage for tests
settings.STORAGES["default"] = {
    "BACKEND": "django.core.files.storage.FileSystemStorage",
}
settings.STORAGES["staticfiles"] = {
    "BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage",
}

# Run Celery tasks synchronously in tests
settings.CELERY_TASK_ALWAYS_EAGER = True
settings.CELERY_TASK_EAGER_PROPAGATES = True


from assets.factories import (  # noqa: E402
    AssetFactory,
    CategoryFactory,
    SupplierFactory,
    UserFactory,
)


@pytest.fixture(autouse=True)
def _media_root(settings, tmp_path):
    """Write uploaded images to a per-test directory."""
    settings.MEDIA_ROOT = str(tmp_path / "media")
    return tmp_path / "media"


def make_image_bytes(size=(64, 48), fmt="PNG", mode="RGB", color="red"):
    """Encode a solid-colour image with Pillow."""
    buf = BytesIO()
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


def make_upload(name="photo.png", size=(64, 48), fmt="PNG", mode="RGB"):
    content_type = {
        "PNG": "image/png",
        "JPEG": "image/jpeg",
        "GIF": "image/gif",
    }.get(fmt, "application/octet-stream")
    return SimpleUploadedFile(
        name, make_image_bytes(size, fmt, mode), content_type=content_type
    )


@pytest.fixture
def image_upload():
    return make_upload


# --- User fixtures ---


@pytest.fixture
def password():
    return "testpass123!"


@pytest.fixture
def user(db, password):
    return UserFactory(
        username="testuser",
        email="test@example.com",
        password=password,
        display_name="Test User",
    )


@pytest.fixture
def admin_user(db, password):
    return UserFactory(
        username="admin",
        email="admin@example.com",
        password=password,
        display_name="Admin User",
        role="admin",
        is_staff=True,
        is_superuser=True,
    )


@pytest.fixture
def second_user(db, password):
    return UserFactory(
        username="jdoe",
        email="jdoe@example.com",
        password=password,
        display_name="Jane Doe",
    )


# --- Catalog fixtures ---


@pytest.fixture
def category(db):
    return CategoryFactory(name="Laptops", description="Portable machines")


@pytest.fixture
def supplier(db):
    return SupplierFactory(
        name="Acme Computers",
        contact_person="Juan Cruz",
        phone="09171234567",
        email="sales@acme.example.com",
    )


@pytest.fixture
def asset(category, supplier):
    return AssetFactory(
        asset_tag="PC-0001",
        category=category,
        supplier=supplier,
        model="ThinkPad T14",
        serial_number="SN-T14-001",
        status="in_stock",
    )


@pytest.fixture
def assigned_asset(category, user):
    return AssetFactory(
        asset_tag="PC-0002",
        category=category,
        model="Latitude 5440",
        status="assigned",
        assigned_to=user,
    )
