"""RAW bracket accounting, edit checklist and media file handling."""
from __future__ import annotations

import json
import logging
import os
import zipfile
from dataclasses import asdict, dataclass
from io import BytesIO

from django.conf import settings
from django.core.files.base import ContentFile
from PIL import Image
from rest_framework.exceptions import ValidationError

logger = logging.getLogger(__name__)

BRACKET_TYPES = {"3-bracket": 3, "5-bracket": 5}

EDIT_CHECKLIST_ITEMS = (
    "interior_exposure",
    "interior_white_balance",
    "window_pulling",
    "straight_lines",
    "exterior_exposure",
    "exterior_clarity",
    "sky_replacement",
    "natural_shadows",
)

DOWNLOAD_SIZES = ("original", "small")

# Files Pillow recognises but cannot decode (truncated JPEGs, TIFF-based camera RAW)
# raise a plain OSError from load(); UnidentifiedImageError is one of those.
UNREADABLE_IMAGE_ERRORS = (OSError, Image.DecompressionBombError)


def bracket_multiplier(bracket_type):
    try:
        return BRACKET_TYPES[bracket_type]
    except (KeyError, TypeError):
        raise ValidationError({"bracket_type": [f"Must be one of: {', '.join(BRACKET_TYPES)}."]}) from None


def bracket_type_for_mode(mode):
    for bracket_type, multiplier in BRACKET_TYPES.items():
        if multiplier == mode:
            return bracket_type
    return None


@dataclass
class RawUploadSummary:
    uploaded_count: int
    expected_delivered_count: int
    bracket_multiplier: int
    expected_raw_count: int
    equivalent_final_photos: int
    is_short: bool
    shortfall: int
    warning: str | None

    def as_dict(self):
        return asdict(self)


def missing_photos_message(count):
    noun = "photo is" if count == 1 else "photos are"
    return f"{count} {noun} missing"


def evaluate_raw_upload(uploaded_count, expected_delivered_count, multiplier):
    """Compare the RAW files received against what the package needs.

    Never raises for a short upload: the shortfall is reported as a warning
    and the upload proceeds.
    """
    expected_raw_count = expected_delivered_count * multiplier
    is_short = uploaded_count < expected_raw_count
    shortfall = max(expected_raw_count - uploaded_count, 0)
    warning = missing_photos_message(shortfall) if is_short and uploaded_count > 0 else None
    return RawUploadSummary(
        uploaded_count=uploaded_count,
        expected_delivered_count=expected_delivered_count,
        bracket_multiplier=multiplier,
        expected_raw_count=expected_raw_count,
        equivalent_final_photos=uploaded_count // multiplier,
        is_short=is_short,
        shortfall=shortfall,
        warning=warning,
    )


def _load_json(raw, field):
    if raw in (None, ""):
        return None
    if isinstance(raw, (list, dict)):
        return raw
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        raise ValidationError({field: ["Must be valid JSON."]}) from None


def parse_extra_indices(raw, file_count):
    """Return the set of ``files[]`` positions flagged as extras."""
    value = _load_json(raw, "extra_indices")
    if value is None:
        return set()
    if not isinstance(value, list):
        raise ValidationError({"extra_indices": ["Must be a JSON array of file indexes."]})

    indices = set()
    for item in value:
        if isinstance(item, bool) or not isinstance(item, int):
            raise ValidationError({"extra_indices": ["Indexes must be integers."]})
        if item < 0 or item >= file_count:
            raise ValidationError({"extra_indices": [f"Index {item} is out of range for {file_count} file(s)."]})
        indices.add(item)
    return indices


def parse_checklist(raw):
    value = _load_json(raw, "checklist")
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError({"checklist": ["Must be a JSON object."]})
    return value


def validate_edit_checklist(checklist):
    incomplete = [item for item in EDIT_CHECKLIST_ITEMS if checklist.get(item) is not True]
    if incomplete:
        raise ValidationError(
            {"checklist": [f"All quality checks must be confirmed before uploading. Missing: {', '.join(incomplete)}."]}
        )


def _open_image(file_field):
    file_field.open("rb")
    try:
        image = Image.open(file_field)
        image.load()
    finally:
        file_field.close()
    return image


def _to_jpeg(image, box):
    variant = image.copy()
    variant.thumbnail(box, Image.LANCZOS)
    if variant.mode not in ("RGB", "L"):
        variant = variant.convert("RGB")
    buffer = BytesIO()
    variant.save(buffer, format="JPEG", quality=85)
    return buffer.getvalue()


def generate_variants(media_file):
    """Write thumb/medium/large renditions for files Pillow can decode.

    Camera RAW formats and damaged images keep only the original.
    """
    try:
        image = _open_image(media_file.file)
    except UNREADABLE_IMAGE_ERRORS as exc:
        logger.info(
            "media_variants_skipped",
            extra={"shoot_id": str(media_file.shoot_id), "reason": f"{media_file.filename}: {exc}"},
        )
        return False

    stem = os.path.splitext(media_file.filename)[0]
    updated = []
    for name, width in settings.SHOOTFLOW_MEDIA_VARIANT_WIDTHS.items():
        # Height is left unconstrained so only the width bounds the rendition.
        content = _to_jpeg(image, (width, image.height))
        getattr(media_file, name).save(f"{stem}_{name}.jpg", ContentFile(content), save=False)
        updated.append(name)
    media_file.save(update_fields=updated)
    return True


def _archive_name(filename, seen):
    name = filename
    stem, ext = os.path.splitext(filename)
    counter = 1
    while name in seen:
        name = f"{stem} ({counter}){ext}"
        counter += 1
    seen.add(name)
    return name


def _read_for_download(media_file, size):
    if size == "small":
        try:
            image = _open_image(media_file.file)
        except UNREADABLE_IMAGE_ERRORS:
            pass
        else:
            stem = os.path.splitext(media_file.filename)[0]
            return f"{stem}.jpg", _to_jpeg(image, settings.SHOOTFLOW_SMALL_DOWNLOAD_SIZE)

    with media_file.file.open("rb") as handle:
        return media_file.filename, handle.read()


def build_download_archive(media_files, size="original"):
    if size not in DOWNLOAD_SIZES:
        raise ValidationError({"size": [f"Must be one of: {', '.join(DOWNLOAD_SIZES)}."]})

    buffer = BytesIO()
    seen = set()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for media_file in media_files:
            filename, content = _read_for_download(media_file, size)
            archive.writestr(_archive_name(filename, seen), content)
    return buffer.getvalue()
