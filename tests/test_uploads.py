"""Tests for receipt upload intake and image preparation."""

from __future__ import annotations

import io
import zipfile
from datetime import datetime

from PIL import Image

from ledger_service.ingestion import ReceiptUpload, compress_image, prepare_receipt_uploads, to_data_uri
from ledger_service.ingestion.media import MAX_DIMENSION
from ledger_service.ingestion.uploads import resolve_content_type


def make_image_bytes(size: tuple[int, int], fmt: str = "PNG", mode: str = "RGB") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, color=(200, 100, 50) if mode == "RGB" else (200, 100, 50, 255)).save(buffer, format=fmt)
    return buffer.getvalue()


def make_zip(entries: dict[str, bytes], date_time: tuple = (2024, 1, 2, 3, 4, 6)) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in entries.items():
            archive.writestr(zipfile.ZipInfo(name, date_time=date_time), data)
    return buffer.getvalue()


def make_upload(name: str, content_type: str = "image/jpeg", data: bytes = b"jpeg") -> ReceiptUpload:
    return ReceiptUpload(name=name, content_type=content_type, data=data, last_modified=1704844800000)


class TestPrepareReceiptUploads:
    def test_supported_files_are_accepted(self):
        intake = prepare_receipt_uploads(
            [make_upload("a.jpg"), make_upload("b.png", "image/png"), make_upload("c.pdf", "application/pdf")]
        )

        assert [upload.name for upload in intake.accepted] == ["a.jpg", "b.png", "c.pdf"]
        assert intake.rejected == []

    def test_unsupported_type_is_rejected(self):
        intake = prepare_receipt_uploads([make_upload("notes.txt", "text/plain")])

        assert intake.accepted == []
        assert intake.rejected[0].name == "notes.txt"
        assert "not supported" in intake.rejected[0].reason

    def test_oversized_file_is_rejected(self):
        intake = prepare_receipt_uploads([make_upload("big.jpg", data=b"x" * 11)], max_file_bytes=10)

        assert intake.accepted == []
        assert intake.rejected[0].name == "big.jpg"

    def test_file_at_size_limit_is_accepted(self):
        intake = prepare_receipt_uploads([make_upload("edge.jpg", data=b"x" * 10)], max_file_bytes=10)

        assert len(intake.accepted) == 1

    def test_session_cap_counts_existing_items(self):
        intake = prepare_receipt_uploads(
            [make_upload("one.jpg"), make_upload("two.jpg")],
            existing_count=99,
            max_files=100,
        )

        assert [upload.name for upload in intake.accepted] == ["one.jpg"]
        assert [rejected.name for rejected in intake.rejected] == ["two.jpg"]

    def test_zip_is_expanded_and_unsupported_members_skipped(self):
        archive = make_zip({"receipts/a.jpg": b"jpeg-a", "receipts/b.pdf": b"%PDF", "readme.txt": b"hi"})

        intake = prepare_receipt_uploads([make_upload("batch.zip", "application/zip", archive)])

        assert [upload.name for upload in intake.accepted] == ["a.jpg", "b.pdf"]
        assert intake.accepted[0].content_type == "image/jpeg"
        assert intake.accepted[0].data == b"jpeg-a"
        assert intake.accepted[1].content_type == "application/pdf"

    def test_zip_members_take_archive_timestamps(self):
        archive = make_zip({"a.jpg": b"jpeg-a"})

        intake = prepare_receipt_uploads([make_upload("batch.zip", "application/zip", archive)])

        expected = int(datetime(2024, 1, 2, 3, 4, 6).timestamp() * 1000)
        assert intake.accepted[0].last_modified == expected

    def test_oversized_zip_member_is_rejected_without_dropping_the_rest(self):
        archive = make_zip({"big.jpg": b"x" * 50, "small.jpg": b"x" * 10})

        intake = prepare_receipt_uploads([make_upload("batch.zip", "application/zip", archive)], max_file_bytes=10)

        assert [upload.name for upload in intake.accepted] == ["small.jpg"]
        assert [rejected.name for rejected in intake.rejected] == ["big.jpg"]
        assert "limit" in intake.rejected[0].reason

    def test_corrupt_zip_is_rejected(self):
        intake = prepare_receipt_uploads([make_upload("batch.zip", "application/zip", b"not a zip")])

        assert intake.accepted == []
        assert intake.rejected[0].name == "batch.zip"

    def test_unreadable_heic_is_rejected(self):
        intake = prepare_receipt_uploads([make_upload("photo.heic", "image/heic", b"garbage")])

        assert intake.accepted == []
        assert "HEIC" in intake.rejected[0].reason

    def test_declared_octet_stream_falls_back_to_extension(self):
        assert resolve_content_type("scan.PNG", "application/octet-stream") == "image/png"
        assert resolve_content_type("batch.zip", "") == "application/zip"


class TestCompressImage:
    def test_large_image_is_downscaled_to_jpeg(self):
        original = make_image_bytes((3000, 1500), mode="RGBA")

        data, content_type = compress_image(original, "image/png")

        assert content_type == "image/jpeg"
        with Image.open(io.BytesIO(data)) as img:
            assert max(img.size) == MAX_DIMENSION
            assert img.size == (MAX_DIMENSION, 960)

    def test_small_image_passes_through(self):
        original = make_image_bytes((800, 600))

        assert compress_image(original, "image/png") == (original, "image/png")

    def test_pdf_passes_through(self):
        assert compress_image(b"%PDF-1.4", "application/pdf") == (b"%PDF-1.4", "application/pdf")

    def test_undecodable_image_falls_back_to_original(self):
        assert compress_image(b"not really a png", "image/png") == (b"not really a png", "image/png")


def test_to_data_uri():
    assert to_data_uri(b"hi", "image/png") == "data:image/png;base64,aGk="
