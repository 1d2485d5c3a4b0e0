"""
Unit tests for storage_service: temp-file handling around the upload call.

cloudinary.uploader.upload is monkeypatched; nothing leaves the machine.
"""

from __future__ import annotations

import io
import os

import cloudinary.exceptions
import cloudinary.uploader
import pytest
from werkzeug.datastructures import FileStorage

from backend.app.errors import ErrorCode, UpstreamError
from backend.app.services import storage_service


@pytest.fixture
def temp_dir(app_ctx, tmp_path):
    app_ctx.config["UPLOAD_TEMP_DIR"] = str(tmp_path)
    return tmp_path


def _local_file(directory) -> str:
    path = os.path.join(str(directory), "avatar.png")
    with open(path, "wb") as fh:
        fh.write(b"\x89PNG fake")
    return path


def test_upload_returns_secure_url_and_removes_temp_file(monkeypatch, temp_dir):
    path = _local_file(temp_dir)
    calls = []

    def fake_upload(local_path, **options):
        calls.append((local_path, options))
        return {"url": "http://cdn.test/a.png", "secure_url": "https://cdn.test/a.png"}

    monkeypatch.setattr(cloudinary.uploader, "upload", fake_upload)

    assert storage_service.upload(path) == "https://cdn.test/a.png"
    assert calls == [(path, {"resource_type": "auto"})]
    assert not os.path.exists(path)


def test_upload_failure_removes_temp_file_and_raises(monkeypatch, temp_dir):
    path = _local_file(temp_dir)

    def failing_upload(local_path, **options):
        raise cloudinary.exceptions.Error("quota exceeded")

    monkeypatch.setattr(cloudinary.uploader, "upload", failing_upload)

    with pytest.raises(UpstreamError) as exc_info:
        storage_service.upload(path)

    assert exc_info.value.code == ErrorCode.UPLOAD_FAILED
    assert exc_info.value.http_status == 502
    assert not os.path.exists(path)


def test_upload_without_url_in_response_raises(monkeypatch, temp_dir):
    path = _local_file(temp_dir)
    monkeypatch.setattr(cloudinary.uploader, "upload", lambda local_path, **options: {})

    with pytest.raises(UpstreamError):
        storage_service.upload(path)


def test_save_temp_file_sanitises_the_filename(temp_dir):
    upload = FileStorage(stream=io.BytesIO(b"data"), filename="../../etc/passwd")

    path = storage_service.save_temp_file(upload)

    assert os.path.dirname(path) == str(temp_dir)
    assert path.endswith("_etc_passwd")
    with open(path, "rb") as fh:
        assert fh.read() == b"data"
