"""Tests for single and bulk file uploads."""

import pytest

from cashflow_portal.api_client import ApiError, AuthExpired
from cashflow_portal.numeric_input import InputValidationError
from cashflow_portal.uploads import PendingFile, file_type_for, upload_batch, upload_single


class FakeUploader:
    def __init__(self, failures=None):
        self.failures = failures or {}
        self.calls = []

    def upload_file(self, filename, content, *, file_type, currency, content_type=None):
        self.calls.append((filename, file_type, currency))
        if filename in self.failures:
            raise self.failures[filename]
        return f"id-{len(self.calls)}"


def _files(*names):
    return [PendingFile(n, b"data") for n in names]


def test_upload_single_message():
    client = FakeUploader()
    msg = upload_single(client, PendingFile("daily.041", b"x"))
    assert msg == "File 'daily.041' uploaded successfully. Processing queued. File ID: id-1"
    assert client.calls == [("daily.041", "CAD_SUMMARY_RAW", "CAD")]


def test_batch_continues_past_a_failure():
    client = FakeUploader({"2.041": ApiError("Internal Server Error", 500)})
    summary = upload_batch(client, _files("1.041", "2.041", "3.041"), "USD")
    assert summary.message == "Bulk upload finished. Successful: 2, Failed: 1."
    assert [c[0] for c in client.calls] == ["1.041", "2.041", "3.041"]
    assert summary.failed[0].filename == "2.041"
    assert summary.failed[0].error == "Internal Server Error"
    assert all(c[1] == "USD_SUMMARY_RAW" for c in client.calls)


def test_batch_stops_on_expired_session():
    client = FakeUploader({"2.041": AuthExpired("expired", 401)})
    with pytest.raises(AuthExpired):
        upload_batch(client, _files("1.041", "2.041", "3.041"), "CAD")
    assert len(client.calls) == 2


def test_batch_requires_files_and_currency():
    with pytest.raises(InputValidationError, match="Please select currency"):
        upload_batch(FakeUploader(), [], "CAD")
    with pytest.raises(InputValidationError):
        upload_batch(FakeUploader(), _files("a.041"), "")
    with pytest.raises(InputValidationError):
        upload_batch(FakeUploader(), [PendingFile("", b"")], "CAD")


def test_batch_reports_progress():
    seen = []
    upload_batch(FakeUploader(), _files("a", "b"), "cad", progress=lambda i, n, name: seen.append((i, n, name)))
    assert seen == [(1, 2, "a"), (2, 2, "b")]


def test_file_type_for_unknown_currency():
    assert file_type_for("usd") == "USD_SUMMARY_RAW"
    with pytest.raises(InputValidationError):
        file_type_for("EUR")
