"""Image storage for complaint and solution photos.

Uploads land in ``COMPLAINT_UPLOAD_FOLDER`` and are served back from
``/uploads/<name>``; the public URL is what gets stored on the complaint.
"""
import base64
import binascii
import hashlib
import io
import os
import uuid
from typing import Dict, Tuple
from urllib.parse import urlparse

import requests
from flask import current_app, url_for
from PIL import Image, UnidentifiedImageError
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

ALLOWED_IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "webp", "gif"}
DEFAULT_MAX_IMAGE_BYTES = 8 * 1024 * 1024  # 8 MB

# Pillow format name -> extensions it may legitimately arrive under
_FORMAT_EXTENSIONS = {
    "JPEG": {"jpg", "jpeg"},
    "PNG": {"png"},
    "WEBP": {"webp"},
    "GIF": {"gif"},
}

_MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
}


class StorageError(ValueError):
    """Raised when an image cannot be accepted or read back."""


def _fail_if(condition: bool, message: str) -> None:
    if condition:
        raise StorageError(message)


def mime_type_for(ext: str) -> str:
    return _MIME_TYPES.get(ext.lower(), "application/octet-stream")


def compute_hash(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def validate_image_file(file: FileStorage, max_bytes: int = DEFAULT_MAX_IMAGE_BYTES) -> Tuple[bytes, str]:
    _fail_if(not file, "No file provided")
    filename = secure_filename(file.filename or "")
    _fail_if(not filename or "." not in filename, "Unsupported file name")
    ext = filename.rsplit(".", 1)[1].lower()
    _fail_if(ext not in ALLOWED_IMAGE_EXTENSIONS, "File type not allowed")

    file.stream.seek(0, os.SEEK_END)
    size = file.stream.tell()
    file.stream.seek(0)
    _fail_if(size == 0, "Empty file")
    _fail_if(size > max_bytes, "File exceeds size limits")

    content = file.read()
    _fail_if(len(content) > max_bytes, "File exceeds size limits")

    try:
        with Image.open(io.BytesIO(content)) as img:
            detected = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise StorageError("Image validation failed") from exc
    _fail_if(ext not in _FORMAT_EXTENSIONS.get(detected or "", set()), "Invalid image data")

    file.stream.seek(0)
    return content, ext


def save_image_bytes(image_bytes: bytes, upload_dir: str, extension: str, prefix: str = "") -> str:
    os.makedirs(upload_dir, exist_ok=True)
    safe_name = secure_filename(f"{prefix}{uuid.uuid4().hex}.{extension}")
    path = os.path.join(upload_dir, safe_name)
    with open(path, "wb") as f:
        f.write(image_bytes)
    return safe_name


def store_image(file: FileStorage, prefix: str = "") -> Dict:
    """Validate and persist an uploaded image, returning its public URL and metadata."""
    upload_dir = current_app.config["COMPLAINT_UPLOAD_FOLDER"]
    max_bytes = int(current_app.config.get("MAX_IMAGE_UPLOAD_BYTES", DEFAULT_MAX_IMAGE_BYTES))
    image_bytes, ext = validate_image_file(file, max_bytes=max_bytes)
    file_name = save_image_bytes(image_bytes, upload_dir, ext, prefix=prefix)
    public_url = url_for("main.uploaded_file", file_name=file_name, _external=True)
    current_app.logger.info(
        "Image stored",
        extra={"file_name": file_name, "bytes": len(image_bytes)},
    )
    return {
        "url": public_url,
        "file_name": file_name,
        "mime_type": mime_type_for(ext),
        "image_hash": compute_hash(image_bytes),
        "bytes": image_bytes,
    }


def local_path_for(url: str) -> str | None:
    """Return the on-disk path for a URL served from our upload folder, if it is one."""
    path = urlparse(url).path
    marker = "/uploads/"
    if marker not in path:
        return None
    file_name = secure_filename(path.rsplit(marker, 1)[1])
    if not file_name:
        return None
    upload_root = os.path.abspath(current_app.config["COMPLAINT_UPLOAD_FOLDER"])
    candidate = os.path.abspath(os.path.join(upload_root, file_name))
    if not candidate.startswith(upload_root) or not os.path.isfile(candidate):
        return None
    return candidate


def load_image(url: str) -> Tuple[bytes, str]:
    """Read an image back by URL: local uploads from disk, anything else over HTTP."""
    if url.startswith("data:"):
        header, _, payload = url.partition(",")
        mime_type = header[5:].split(";")[0] or "image/jpeg"
        try:
            return base64.b64decode(payload, validate=True), mime_type
        except (binascii.Error, ValueError) as exc:
            raise StorageError("Invalid inline image data") from exc

    local_path = local_path_for(url)
    if local_path:
        ext = local_path.rsplit(".", 1)[-1]
        with open(local_path, "rb") as f:
            return f.read(), mime_type_for(ext)

    _fail_if(urlparse(url).scheme not in ("http", "https"), "Unsupported image reference")
    timeout = float(current_app.config.get("IMAGE_FETCH_TIMEOUT_SECONDS", 10))
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise StorageError("Could not fetch complaint image") from exc
    mime_type = (response.headers.get("Content-Type") or "image/jpeg").split(";")[0].strip()
    return response.content, mime_type


def discard_upload(url: str) -> None:
    """Remove an upload that will never be referenced, e.g. after a failed write."""
    path = local_path_for(url)
    if not path:
        return
    try:
        os.remove(path)
    except OSError:
        current_app.logger.warning("Could not remove orphaned upload", extra={"path": path})
