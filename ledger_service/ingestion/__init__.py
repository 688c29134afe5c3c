"""Ingestion shims that sit in front of the stores."""

from .media import compress_image, to_data_uri
from .statements import prepare_statement_input
from .uploads import ReceiptUpload, RejectedUpload, UploadIntake, prepare_receipt_uploads

__all__ = [
    "ReceiptUpload",
    "RejectedUpload",
    "UploadIntake",
    "compress_image",
    "prepare_receipt_uploads",
    "prepare_statement_input",
    "to_data_uri",
]
