"""
Receipt upload intake: ZIP expansion, HEIC transcoding, type/size/count checks.

Rejections are collected and returned, never raised, so one bad file does not
affect the rest of the batch.
"""

from __future__ import annotations

import io
import logging
import zipfile
from datetime import datetime
from dataclasses import dataclass, field, replace
from pathlib import PurePosixPath
from typing import Iterable

import pillow_heif
from PIL import Image

from ..errors import UnsupportedInputError
from ..settings import DEFAULT_MAX_FILE_BYTES, DEFAULT_MAX_FILES

logger = logging.getLogger(__name__)

pillow_heif.register_heif_opener()

ACCEPTED_RECEIPT_TYPES = frozenset({"image/jpeg", "image/png", "application/pdf", "image/heic", "image/heif"})
EXTENSION_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".pdf": "application/pdf",
    ".heic": "image/heic",
    ".heif": "image/heif",
}
ZIP_TYPES = frozenset({"application/zip", "application/x-zip-compressed"})
HEIC_TYPES = frozenset({"image/heic", "image/heif"})
HEIC_JPEG_QUALITY = 80


@dataclass(slots=True)
class ReceiptUpload:
    name: str
    content_type: str
    data: bytes
    last_modified: int = 0

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True, slots=True)
class RejectedUpload:
    name: str
    reason: str


@dataclass(slots=True)
class UploadIntake:
    accepted: list[ReceiptUpload] = field(default_factory=list)
    rejected: list[RejectedUpload] = field(default_factory=list)


def _extension(name: str) -> str:
    return PurePosixPath(name.lower()).suffix


def resolve_content_type(name: str, declared: str | None) -> str:
    """Prefer a recognised declared MIME type, otherwise infer from the extension."""

    declared = (declared or "").split(";", 1)[0].strip().lower()
    if declared in ACCEPTED_RECEIPT_TYPES or declared in ZIP_TYPES:
        return declared
    if _extension(name) == ".zip":
        return "application/zip"
    return EXTENSION_TYPES.get(_extension(name), declared or "application/octet-stream")


def is_zip(upload: ReceiptUpload) -> bool:
    return upload.content_type in ZIP_TYPES or _extension(upload.name) == ".zip"


def is_heic(upload: ReceiptUpload) -> bool:
    return upload.content_type in HEIC_TYPES or _extension(upload.name) in (".heic", ".heif")


def expand_zip(upload: ReceiptUpload, max_file_bytes: int = DEFAULT_MAX_FILE_BYTES) -> UploadIntake:
    """
    Unpack supported documents from a ZIP archive; directories and other files are skipped.

    Members larger than `max_file_bytes` are rejected without being inflated in full.
    """

    try:
        archive = zipfile.ZipFile(io.BytesIO(upload.data))
    except zipfile.BadZipFile as exc:
        raise UnsupportedInputError(f"Could not unpack {upload.name}") from exc

    expanded = UploadIntake()
    with archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            content_type = EXTENSION_TYPES.get(_extension(info.filename))
            if content_type is None:
                continue
            name = PurePosixPath(info.filename).name
            # file_size is the declared size; the bounded read catches archives that understate it.
            if info.file_size > max_file_bytes:
                expanded.rejected.append(RejectedUpload(name, _size_reason(max_file_bytes)))
                continue
            with archive.open(info) as member:
                data = member.read(max_file_bytes + 1)
            if len(data) > max_file_bytes:
                expanded.rejected.append(RejectedUpload(name, _size_reason(max_file_bytes)))
                continue
            expanded.accepted.append(
                ReceiptUpload(
                    name=name,
                    content_type=content_type,
                    data=data,
                    last_modified=int(datetime(*info.date_time).timestamp() * 1000),
                )
            )
    return expanded


def _size_reason(max_file_bytes: int) -> str:
    return f"File exceeds the {max_file_bytes // (1024 * 1024)}MB limit."


def convert_heic(upload: ReceiptUpload) -> ReceiptUpload:
    """Transcode a HEIC/HEIF image to JPEG, keeping the original modification time."""

    try:
        img = Image.open(io.BytesIO(upload.data))
        buffer = io.BytesIO()
        img.convert("RGB").save(buffer, format="JPEG", quality=HEIC_JPEG_QUALITY)
    except (OSError, ValueError) as exc:
        raise UnsupportedInputError(f"Failed to convert HEIC file: {upload.name}") from exc

    stem = upload.name.rsplit(".", 1)[0] if "." in upload.name else upload.name
    return replace(upload, name=f"{stem}.jpeg", content_type="image/jpeg", data=buffer.getvalue())


def prepare_receipt_uploads(
    uploads: Iterable[ReceiptUpload],
    *,
    existing_count: int = 0,
    max_files: int = DEFAULT_MAX_FILES,
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
) -> UploadIntake:
    """
    Turn raw uploads into store-ready receipt documents.

    Args:
        uploads: Files as received; ZIP archives are expanded in place.
        existing_count: Items already in the session, counted against max_files.
        max_files: Per-session cap on receipt items.
        max_file_bytes: Per-file size cap, applied to each file after ZIP expansion.

    Returns:
        UploadIntake with accepted documents (HEIC already converted to JPEG)
        and a reason for every rejected file.
    """

    intake = UploadIntake()
    expanded: list[ReceiptUpload] = []

    for upload in uploads:
        if not is_zip(upload):
            expanded.append(upload)
            continue
        try:
            unpacked = expand_zip(upload, max_file_bytes)
        except UnsupportedInputError as exc:
            intake.rejected.append(RejectedUpload(upload.name, str(exc)))
            continue
        expanded.extend(unpacked.accepted)
        intake.rejected.extend(unpacked.rejected)

    for upload in expanded:
        content_type = resolve_content_type(upload.name, upload.content_type)
        if content_type not in ACCEPTED_RECEIPT_TYPES:
            intake.rejected.append(
                RejectedUpload(upload.name, "File type is not supported. Upload JPG, PNG, PDF, or HEIC files.")
            )
            continue
        if upload.size > max_file_bytes:
            intake.rejected.append(RejectedUpload(upload.name, _size_reason(max_file_bytes)))
            continue
        if existing_count + len(intake.accepted) >= max_files:
            intake.rejected.append(RejectedUpload(upload.name, f"Session is limited to {max_files} files."))
            continue

        upload = replace(upload, content_type=content_type)
        if is_heic(upload):
            try:
                upload = convert_heic(upload)
            except UnsupportedInputError as exc:
                intake.rejected.append(RejectedUpload(upload.name, str(exc)))
                continue
        intake.accepted.append(upload)

    if intake.rejected:
        logger.warning(
            {
                "event": "receipt_uploads_rejected",
                "rejected_count": len(intake.rejected),
                "reasons": sorted({item.reason for item in intake.rejected}),
            }
        )
    return intake
