"""
services/storage_service.py - Remote object storage for avatar / cover images.

Contract:
  upload(local_path) -> remote URL
  - The local temporary file is always removed afterwards.
  - On failure the error propagates as UpstreamError(UPLOAD_FAILED);
    nothing here retries.

Uploaded werkzeug files are first written to UPLOAD_TEMP_DIR by
save_temp_file(); upload_file() chains the two.
"""

from __future__ import annotations

import logging
import os
import secrets

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
from flask import Flask, current_app
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from backend.app.errors import ErrorCode, UpstreamError

logger = logging.getLogger(__name__)


def init_app(app: Flask) -> None:
    """Configures the Cloudinary SDK from app config."""
    cloudinary.config(
        cloud_name=app.config.get("CLOUDINARY_CLOUD_NAME"),
        api_key=app.config.get("CLOUDINARY_API_KEY"),
        api_secret=app.config.get("CLOUDINARY_API_SECRET"),
        secure=True,
    )
    os.makedirs(app.config["UPLOAD_TEMP_DIR"], exist_ok=True)


def _remove_quietly(local_path: str) -> None:
    try:
        os.remove(local_path)
    except FileNotFoundError:
        pass


def save_temp_file(file: FileStorage) -> str:
    """Writes an uploaded file under UPLOAD_TEMP_DIR. Returns its path."""
    temp_dir = current_app.config["UPLOAD_TEMP_DIR"]
    os.makedirs(temp_dir, exist_ok=True)
    filename = secure_filename(file.filename or "") or "upload"
    local_path = os.path.join(temp_dir, f"{secrets.token_hex(8)}_{filename}")
    file.save(local_path)
    return local_path


def upload(local_path: str) -> str:
    """
    Uploads `local_path` and returns the remote URL.

    Raises:
      UpstreamError(UPLOAD_FAILED, 502) - storage rejected the file or was unreachable
    """
    try:
        response = cloudinary.uploader.upload(local_path, resource_type="auto")
    except (cloudinary.exceptions.Error, OSError) as exc:
        logger.error("upload of %s failed: %s", os.path.basename(local_path), exc)
        raise UpstreamError(
            ErrorCode.UPLOAD_FAILED,
            "The file could not be uploaded.",
            502,
        ) from exc
    finally:
        _remove_quietly(local_path)

    url = response.get("secure_url") or response.get("url")
    if not url:
        raise UpstreamError(
            ErrorCode.UPLOAD_FAILED,
            "The storage service did not return a URL.",
            502,
        )
    logger.info("uploaded %s", url)
    return url


def upload_file(file: FileStorage) -> str:
    return upload(save_temp_file(file))
