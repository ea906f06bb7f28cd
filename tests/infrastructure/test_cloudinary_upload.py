from urllib.parse import unquote

import cloudinary.uploader

from booth_compositor.config.settings import settings
from booth_compositor.infrastructure.cloudinary.upload_file import build_qr_url, upload_image_bytes


def test_upload_maps_jpeg_and_default_folder(monkeypatch):
    calls = []

    def fake_upload(file, **options):
        calls.append((file.read(), options))
        return {"secure_url": "https://res.cloudinary.com/demo/image/upload/x.jpg", "public_id": "hub/x", "bytes": 3}

    monkeypatch.setattr(cloudinary.uploader, "upload", fake_upload)

    result = upload_image_bytes(b"abc", public_id="photo_1", fmt="jpeg")

    assert result == {"secure_url": "https://res.cloudinary.com/demo/image/upload/x.jpg", "public_id": "hub/x"}
    data, options = calls[0]
    assert data == b"abc"
    assert options["format"] == "jpg"
    assert options["folder"] == settings.CLOUDINARY_FOLDER
    assert options["public_id"] == "photo_1"
    assert options["overwrite"] is True


def test_qr_url_encodes_the_image_url():
    secure_url = "https://res.cloudinary.com/demo/image/upload/v1/a b.jpg?x=1&y=2"

    qr = build_qr_url(secure_url, "https://booth.example/view")

    base, _, encoded = qr.partition("?url=")
    assert base == "https://booth.example/view"
    assert "/" not in encoded and "&" not in encoded
    assert unquote(encoded) == secure_url


def test_qr_url_defaults_to_landing_page():
    assert build_qr_url("https://x/y.jpg").startswith(settings.QR_LANDING_URL + "?url=")
