"""Asset image derivatives.

Every uploaded photo becomes two files in ``ASSET_IMAGE_DIR``: a main
image bounded to 1024px on its longest side, and a 200x200 thumbnail
centre-cropped from the source. The thumbnail name is the main name with
``_thumb`` inserted before the extension, so either can be derived from
the other.
"""

import logging
import posixpath
import re
import uuid
from datetime import timedelta
from io import BytesIO

from PIL import Image, UnidentifiedImageError

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from django.templatetags.static import static
from django.utils import timezone

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "gif"}
# Extension -> Pillow format the file content must match
EXTENSION_FORMATS = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "gif": "GIF",
}
ALLOWED_FORMATS = set(EXTENSION_FORMATS.values())

MAIN_MAX_SIZE = 1024
THUMB_SIZE = 200
# Bytes read for type sniffing when the declared size is already too big
SNIFF_BYTES = 64 * 1024

_EXT_RE = re.compile(r"(\.[^.]+)$")
_THUMB_RE = re.compile(r"_thumb(\.[^.]+)$")


def thumbnail_name(filename: str) -> str:
    """'asset_ab12.png' -> 'asset_ab12_thumb.png'."""
    return _EXT_RE.sub(r"_thumb\1", filename)


def _storage_path(filename: str) -> str:
    return posixpath.join(settings.ASSET_IMAGE_DIR, filename)


def image_url(filename: str, thumb: bool = False) -> str:
    """Public URL of an asset image, or the placeholder when unset."""
    if not filename:
        return static(settings.ASSET_IMAGE_PLACEHOLDER)
    name = thumbnail_name(filename) if thumb else filename
    return default_storage.url(_storage_path(name))


def delete_image_files(filename: str) -> None:
    """Remove the main image and thumbnail for ``filename``.

    Missing files are ignored. Storage errors are logged; callers run this
    after their database write has committed and must not fail because
    of it.
    """
    if not filename:
        return
    for name in (filename, thumbnail_name(filename)):
        path = _storage_path(name)
        try:
            if default_storage.exists(path):
                default_storage.delete(path)
        except OSError:
            logger.exception("Failed to delete image file %s", path)


def main_dimensions(width: int, height: int) -> tuple[int, int]:
    """Size of the main variant: longest side capped at MAIN_MAX_SIZE."""
    if width <= MAIN_MAX_SIZE and height <= MAIN_MAX_SIZE:
        return width, height
    ratio = width / height
    if width > height:
        return MAIN_MAX_SIZE, max(1, int(MAIN_MAX_SIZE / ratio))
    return max(1, int(MAIN_MAX_SIZE * ratio)), MAIN_MAX_SIZE


def thumbnail_crop_box(width: int, height: int) -> tuple[int, int, int, int]:
    """Centred square crop: full height for landscape, full width otherwise."""
    if width > height:
        left = (width - height) // 2
        return (left, 0, left + height, height)
    top = (height - width) // 2
    return (0, top, width, top + width)


def _read_upload(uploaded_file) -> bytes:
    """Read at most MAX_IMAGE_SIZE + 1 bytes of an upload.

    When the declared size is already over the limit only a header is
    read, enough for the type check to report alongside the size error.
    """
    if hasattr(uploaded_file, "seek"):
        uploaded_file.seek(0)
    max_size = settings.MAX_IMAGE_SIZE
    declared = getattr(uploaded_file, "size", None) or 0
    if declared > max_size:
        return uploaded_file.read(SNIFF_BYTES)
    return uploaded_file.read(max_size + 1)


def _validate(uploaded_file, data: bytes):
    """Return (extension, opened image) or raise ValidationError."""
    errors = []
    max_size = settings.MAX_IMAGE_SIZE
    size = max(getattr(uploaded_file, "size", None) or 0, len(data))
    if size > max_size:
        errors.append(
            f"File is too large. Maximum size is "
            f"{max_size // (1024 * 1024)} MB."
        )

    name = getattr(uploaded_file, "name", "") or ""
    extension = name.rsplit(".", 1)[-1].lower() if "." in name else ""

    img = None
    try:
        img = Image.open(BytesIO(data))
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError):
        img = None

    sniffed = img.format if img is not None else None
    if (
        extension not in ALLOWED_EXTENSIONS
        or sniffed not in ALLOWED_FORMATS
        or EXTENSION_FORMATS.get(extension) != sniffed
    ):
        errors.append("Invalid file type. Only JPG, PNG, and GIF are allowed.")

    if errors:
        raise ValidationError(errors)
    return extension, img


def _prepare(img: Image.Image, fmt: str) -> Image.Image:
    """Convert to a mode the output format can store, keeping alpha."""
    if fmt == "JPEG":
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
    elif fmt == "PNG":
        if img.mode not in ("RGB", "RGBA", "L", "LA"):
            img = img.convert("RGBA")
    elif fmt == "GIF":
        if img.mode not in ("P", "L"):
            img = img.convert("RGBA")
    return img


def _encode(img: Image.Image, fmt: str, thumb: bool = False) -> bytes:
    buf = BytesIO()
    if fmt == "JPEG":
        img.save(buf, format="JPEG", quality=80 if thumb else 85)
    elif fmt == "PNG":
        img.save(buf, format="PNG", compress_level=6)
    else:
        save_kwargs = {}
        if "transparency" in img.info:
            save_kwargs["transparency"] = img.info["transparency"]
        img.save(buf, format="GIF", **save_kwargs)
    return buf.getvalue()


def render_variants(
    img: Image.Image, fmt: str
) -> tuple[Image.Image, Image.Image]:
    """Return (main, thumbnail) images for a decoded source image."""
    source = _prepare(img, fmt)
    width, height = source.size

    main_size = main_dimensions(width, height)
    if main_size == (width, height):
        main = source.copy()
    else:
        main = source.resize(main_size, Image.LANCZOS)

    thumb = source.crop(thumbnail_crop_box(width, height)).resize(
        (THUMB_SIZE, THUMB_SIZE), Image.LANCZOS
    )
    return main, thumb


def process_and_save_image(uploaded_file) -> str:
    """Validate an upload and store its main and thumbnail variants.

    Returns the base filename (e.g. ``asset_1f0c...e9.png``). Raises
    ValidationError listing every problem found; nothing is written in
    that case. If writing the second file fails the first is removed, so
    a failure never leaves files behind.
    """
    data = _read_upload(uploaded_file)

    extension, img = _validate(uploaded_file, data)
    fmt = img.format

    try:
        img.load()
    except (OSError, SyntaxError, Image.DecompressionBombError):
        raise ValidationError(["Failed to read image data."])

    main, thumb = render_variants(img, fmt)

    base_filename = f"asset_{uuid.uuid4().hex}.{extension}"
    written = []
    try:
        for name, variant, is_thumb in (
            (base_filename, main, False),
            (thumbnail_name(base_filename), thumb, True),
        ):
            content = ContentFile(_encode(variant, fmt, thumb=is_thumb))
            written.append(default_storage.save(_storage_path(name), content))
    except (OSError, ValueError):
        logger.exception("Failed to save image %s", base_filename)
        for path in written:
            default_storage.delete(path)
        raise ValidationError(["Failed to save image."])

    logger.info(
        "Stored image %s (%dx%d from %dx%d)",
        base_filename,
        main.size[0],
        main.size[1],
        img.size[0],
        img.size[1],
    )
    return base_filename


def find_orphaned_images(min_age: timedelta = timedelta(hours=1)) -> list[str]:
    """Image files in ASSET_IMAGE_DIR that no asset references.

    Files younger than ``min_age`` are skipped: an upload is written
    before its asset row, and must not be collected in between.
    """
    from ..models import Asset

    directory = settings.ASSET_IMAGE_DIR
    if not default_storage.exists(directory):
        return []

    referenced = set(
        Asset.objects.exclude(image_filename="").values_list(
            "image_filename", flat=True
        )
    )
    cutoff = timezone.now() - min_age
    orphans = []
    _, files = default_storage.listdir(directory)
    for name in sorted(files):
        main_name = _THUMB_RE.sub(r"\1", name)
        if main_name in referenced:
            continue
        path = _storage_path(name)
        if default_storage.get_modified_time(path) > cutoff:
            continue
        orphans.append(name)
    return orphans


def purge_orphaned_images(min_age: timedelta = timedelta(hours=1)) -> int:
    """Delete unreferenced image files. Returns the number removed."""
    count = 0
    for name in find_orphaned_images(min_age=min_age):
        default_storage.delete(_storage_path(name))
        count += 1
    if count:
        logger.info("Purged %d orphaned image files", count)
    return count
