"""Image storage tests."""

import os

import pytest

from utils.storage import StorageError, load_image, local_path_for, store_image, validate_image_file


def test_extension_must_match_content(make_upload):
    with pytest.raises(StorageError):
        validate_image_file(make_upload("photo.jpg"))


def test_size_limit(make_upload):
    with pytest.raises(StorageError):
        validate_image_file(make_upload("photo.png"), max_bytes=10)


def test_disallowed_extension(make_upload):
    with pytest.raises(StorageError):
        validate_image_file(make_upload("photo.bmp"))


def test_store_and_read_back(ctx, app, make_upload, png_bytes):
    stored = store_image(make_upload("photo.png"), prefix="issue_")

    assert stored["file_name"].startswith("issue_")
    assert stored["mime_type"] == "image/png"
    path = local_path_for(stored["url"])
    assert path and os.path.dirname(path) == os.path.abspath(app.config["COMPLAINT_UPLOAD_FOLDER"])
    assert load_image(stored["url"]) == (png_bytes, "image/png")


def test_local_path_ignores_foreign_urls(ctx):
    assert local_path_for("https://cdn.example.com/photos/a.png") is None
    assert local_path_for("http://localhost/uploads/../../etc/passwd") is None


def test_inline_data_uri(ctx, png_data_uri, png_bytes):
    assert load_image(png_data_uri) == (png_bytes, "image/png")
    with pytest.raises(StorageError):
        load_image("data:image/png;base64,@@@")
