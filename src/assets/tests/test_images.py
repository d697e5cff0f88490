"""Tests for image validation, derivatives and housekeeping."""

import os
import time
from io import BytesIO, StringIO
from pathlib import Path
from unittest.mock import patch

import pytest
from PIL import Image

from django.core.exceptions import ValidationError
from django.core.files.uploadedfile import SimpleUploadedFile
from django.core.management import call_command

from assets.factories import AssetFactory


def _upload_dir(settings):
    return Path(settings.MEDIA_ROOT) / settings.ASSET_IMAGE_DIR


def _stored_files(settings):
    directory = _upload_dir(settings)
    if not directory.exists():
        return []
    return sorted(p.name for p in directory.iterdir())


def _open(settings, name):
    data = (_upload_dir(settings) / name).read_bytes()
    return Image.open(BytesIO(data))


class _RecordingUpload:
    """Upload stand-in whose declared size can disagree with its content."""

    def __init__(self, data, size, name="photo.png"):
        self.name = name
        self.size = size
        self.reads = []
        self._buf = BytesIO(data)

    def seek(self, pos):
        self._buf.seek(pos)

    def read(self, n=-1):
        self.reads.append(n)
        return self._buf.read(n)


def _age_files(settings, hours=2):
    past = time.time() - hours * 3600
    for path in _upload_dir(settings).iterdir():
        os.utime(path, (past, past))


class TestGeometry:
    def test_thumbnail_name(self):
        from assets.services.images import thumbnail_name

        assert thumbnail_name("asset_ab12.png") == "asset_ab12_thumb.png"
        assert thumbnail_name("asset_ab12.jpeg") == "asset_ab12_thumb.jpeg"

    @pytest.mark.parametrize(
        "size,expected",
        [
            ((2000, 1000), (1024, 512)),
            ((1000, 2000), (512, 1024)),
            ((500, 500), (500, 500)),
            ((1024, 300), (1024, 300)),
            ((3000, 3000), (1024, 1024)),
        ],
    )
    def test_main_dimensions(self, size, expected):
        from assets.services.images import main_dimensions

        assert main_dimensions(*size) == expected

    def test_crop_box_landscape_takes_centre_square(self):
        from assets.services.images import thumbnail_crop_box

        assert thumbnail_crop_box(2000, 1000) == (500, 0, 1500, 1000)

    def test_crop_box_portrait_takes_centre_square(self):
        from assets.services.images import thumbnail_crop_box

        assert thumbnail_crop_box(600, 1000) == (0, 200, 600, 800)


@pytest.mark.django_db
class TestProcessAndSaveImage:
    def test_large_landscape_png(self, settings):
        from assets.services.images import process_and_save_image

        # Red side bands outside the centred square, blue inside it
        img = Image.new("RGB", (2000, 1000), "red")
        img.paste((0, 0, 255), (500, 0, 1500, 1000))
        buf = BytesIO()
        img.save(buf, format="PNG")
        upload = SimpleUploadedFile("wide.png", buf.getvalue())

        name = process_and_save_image(upload)

        assert name.startswith("asset_") and name.endswith(".png")
        main = _open(settings, name)
        thumb = _open(settings, name.replace(".png", "_thumb.png"))
        assert main.size == (1024, 512)
        assert thumb.size == (200, 200)
        assert thumb.convert("RGB").getpixel((0, 0)) == (0, 0, 255)
        assert thumb.convert("RGB").getpixel((199, 100)) == (0, 0, 255)

    def test_small_square_keeps_size(self, settings, image_upload):
        from assets.services.images import process_and_save_image

        name = process_and_save_image(
            image_upload("square.jpg", size=(500, 500), fmt="JPEG")
        )
        assert _open(settings, name).size == (500, 500)
        thumb = _open(settings, name.replace(".jpg", "_thumb.jpg"))
        assert thumb.size == (200, 200)
        assert thumb.format == "JPEG"

    def test_png_alpha_is_preserved(self, settings, image_upload):
        from assets.services.images import process_and_save_image

        name = process_and_save_image(
            image_upload("alpha.png", size=(300, 200), mode="RGBA")
        )
        assert _open(settings, name).mode == "RGBA"

    def test_gif_upload(self, settings, image_upload):
        from assets.services.images import process_and_save_image

        name = process_and_save_image(
            image_upload("anim.gif", size=(120, 80), fmt="GIF")
        )
        assert _open(settings, name).format == "GIF"
        assert len(_stored_files(settings)) == 2

    def test_uppercase_extension_accepted(self, image_upload):
        from assets.services.images import process_and_save_image

        name = process_and_save_image(image_upload("PHOTO.PNG"))
        assert name.endswith(".png")

    def test_names_are_unique(self, image_upload):
        from assets.services.images import process_and_save_image

        first = process_and_save_image(image_upload())
        second = process_and_save_image(image_upload())
        assert first != second

    def test_non_image_rejected(self, settings):
        from assets.services.images import process_and_save_image

        upload = SimpleUploadedFile("notes.png", b"just some text")
        with pytest.raises(ValidationError) as excinfo:
            process_and_save_image(upload)
        assert excinfo.value.messages == [
            "Invalid file type. Only JPG, PNG, and GIF are allowed."
        ]
        assert _stored_files(settings) == []

    def test_extension_must_match_content(self, image_upload):
        from assets.services.images import process_and_save_image

        with pytest.raises(ValidationError, match="Invalid file type"):
            process_and_save_image(image_upload("photo.jpg", fmt="PNG"))

    def test_disallowed_extension_rejected(self, image_upload):
        from assets.services.images import process_and_save_image

        with pytest.raises(ValidationError, match="Invalid file type"):
            process_and_save_image(image_upload("photo.bmp", fmt="BMP"))

    def test_all_problems_reported_together(self, settings):
        from assets.services.images import process_and_save_image

        settings.MAX_IMAGE_SIZE = 10
        upload = SimpleUploadedFile("big.exe", b"x" * 100)
        with pytest.raises(ValidationError) as excinfo:
            process_and_save_image(upload)
        messages = excinfo.value.messages
        assert len(messages) == 2
        assert messages[0].startswith("File is too large.")
        assert "Invalid file type" in messages[1]

    def test_oversized_valid_image_rejected(self, settings, image_upload):
        from assets.services.images import process_and_save_image

        settings.MAX_IMAGE_SIZE = 50
        with pytest.raises(ValidationError, match="too large"):
            process_and_save_image(image_upload(size=(400, 400)))
        assert _stored_files(settings) == []

    def test_declared_oversize_reads_only_a_header(
        self, settings, image_upload
    ):
        from assets.services.images import (
            SNIFF_BYTES,
            process_and_save_image,
        )

        data = image_upload(size=(400, 400)).read()
        upload = _RecordingUpload(data, size=settings.MAX_IMAGE_SIZE * 10)
        with pytest.raises(ValidationError) as excinfo:
            process_and_save_image(upload)
        assert upload.reads == [SNIFF_BYTES]
        assert excinfo.value.messages == [
            "File is too large. Maximum size is 5 MB."
        ]

    def test_understated_size_read_is_bounded(self, settings, image_upload):
        from assets.services.images import process_and_save_image

        settings.MAX_IMAGE_SIZE = 50
        data = image_upload(size=(400, 400)).read()
        upload = _RecordingUpload(data, size=10)
        with pytest.raises(ValidationError, match="too large"):
            process_and_save_image(upload)
        assert upload.reads == [51]
        assert _stored_files(settings) == []

    def test_failed_thumbnail_write_removes_main(
        self, settings, image_upload
    ):
        from assets.services import images

        real_encode = images._encode
        calls = []

        def flaky_encode(img, fmt, thumb=False):
            calls.append(thumb)
            if thumb:
                raise OSError("disk full")
            return real_encode(img, fmt, thumb=thumb)

        with patch.object(images, "_encode", side_effect=flaky_encode):
            with pytest.raises(ValidationError, match="Failed to save"):
                images.process_and_save_image(image_upload())

        assert calls == [False, True]
        assert _stored_files(settings) == []


@pytest.mark.django_db
class TestDeleteImageFiles:
    def test_removes_main_and_thumbnail(self, settings, image_upload):
        from assets.services.images import (
            delete_image_files,
            process_and_save_image,
        )

        name = process_and_save_image(image_upload())
        delete_image_files(name)
        assert _stored_files(settings) == []

    def test_missing_files_ignored(self, settings):
        from assets.services.images import delete_image_files

        delete_image_files("asset_missing.png")
        delete_image_files("")


@pytest.mark.django_db
class TestOrphanedImages:
    def test_finds_unreferenced_files_only(self, settings, image_upload):
        from assets.services.images import (
            find_orphaned_images,
            process_and_save_image,
        )

        kept = process_and_save_image(image_upload())
        orphan = process_and_save_image(image_upload())
        AssetFactory(image_filename=kept)
        _age_files(settings)

        assert find_orphaned_images() == sorted(
            [orphan, orphan.replace(".png", "_thumb.png")]
        )

    def test_recent_files_are_skipped(self, image_upload):
        from assets.services.images import (
            find_orphaned_images,
            process_and_save_image,
        )

        process_and_save_image(image_upload())
        assert find_orphaned_images() == []

    def test_no_upload_directory(self, db):
        from assets.services.images import find_orphaned_images

        assert find_orphaned_images() == []

    def test_celery_task_purges(self, settings, image_upload):
        from assets.services.images import process_and_save_image
        from assets.tasks import purge_orphaned_images

        kept = process_and_save_image(image_upload())
        process_and_save_image(image_upload())
        AssetFactory(image_filename=kept)
        _age_files(settings)

        result = purge_orphaned_images.delay(min_age_minutes=60)
        assert result.get() == 2
        assert set(_stored_files(settings)) == {
            kept,
            kept.replace(".png", "_thumb.png"),
        }

    def test_management_command(self, settings, image_upload):
        from assets.services.images import process_and_save_image

        process_and_save_image(image_upload())
        _age_files(settings)

        out = StringIO()
        call_command("purge_orphaned_images", "--dry-run", stdout=out)
        assert "2 orphaned image file(s) found" in out.getvalue()
        assert len(_stored_files(settings)) == 2

        out = StringIO()
        call_command("purge_orphaned_images", stdout=out)
        assert "Removed 2 orphaned image file(s)" in out.getvalue()
        assert _stored_files(settings) == []
