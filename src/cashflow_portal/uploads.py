"""Bank file uploads: the daily single upload and bulk historical batches."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from cashflow_portal.api_client import ApiError, AuthExpired, PortalClient
from cashflow_portal.numeric_input import InputValidationError

log = logging.getLogger(__name__)

CURRENCIES = ("CAD", "USD")

# Daily .041 files carry both the balance summary and raw transactions
FILE_TYPES = {
    "CAD": "CAD_SUMMARY_RAW",
    "USD": "USD_SUMMARY_RAW",
}


@dataclass
class PendingFile:
    filename: str
    content: bytes
    content_type: str | None = None


@dataclass
class FileFailure:
    filename: str
    error: str


@dataclass
class BatchSummary:
    succeeded: list[str] = field(default_factory=list)
    failed: list[FileFailure] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def message(self) -> str:
        return (
            f"Bulk upload finished. Successful: {self.success_count}, "
            f"Failed: {self.failure_count}."
        )


def file_type_for(currency: str) -> str:
    try:
        return FILE_TYPES[currency.upper()]
    except KeyError:
        raise InputValidationError(f"Unsupported currency: {currency!r}") from None


def upload_single(client: PortalClient, upload: PendingFile, currency: str = "CAD") -> str:
    """Upload one daily file and return a confirmation message."""
    file_id = client.upload_file(
        upload.filename,
        upload.content,
        file_type=file_type_for(currency),
        currency=currency.upper(),
        content_type=upload.content_type,
    )
    log.info("Uploaded %s as file %s", upload.filename, file_id)
    return (
        f"File '{upload.filename}' uploaded successfully. "
        f"Processing queued. File ID: {file_id}"
    )


def upload_batch(
    client: PortalClient,
    files: Iterable[PendingFile],
    currency: str,
    progress: Callable[[int, int, str], None] | None = None,
) -> BatchSummary:
    """Upload files one after another; a failed file never stops the batch.

    Only an expired session ends the batch early, since every later upload
    would be rejected the same way.
    """
    pending = [f for f in files if f.filename]
    if not pending or currency.upper() not in CURRENCIES:
        raise InputValidationError("Please select currency and at least one file.")
    file_type = file_type_for(currency)

    summary = BatchSummary()
    for i, upload in enumerate(pending, start=1):
        if progress is not None:
            progress(i, len(pending), upload.filename)
        try:
            client.upload_file(
                upload.filename,
                upload.content,
                file_type=file_type,
                currency=currency.upper(),
                content_type=upload.content_type,
            )
        except AuthExpired:
            raise
        except ApiError as exc:
            log.warning("Bulk upload of %s failed: %s", upload.filename, exc)
            summary.failed.append(FileFailure(upload.filename, str(exc)))
        else:
            summary.succeeded.append(upload.filename)

    log.info(
        "Bulk upload (%s): %d succeeded, %d failed",
        currency.upper(), summary.success_count, summary.failure_count,
    )
    return summary
