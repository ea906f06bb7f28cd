# booth_compositor/infrastructure/cloudinary/upload_file.py
import os
from io import BytesIO
from typing import Dict, Optional
from urllib.parse import quote

import cloudinary, cloudinary.uploader
from booth_compositor.config.settings import settings


# Configure once (supports CLOUDINARY_URL or split vars)
if settings.CLOUDINARY_URL:
    os.environ.setdefault("CLOUDINARY_URL", settings.CLOUDINARY_URL)
    cloudinary.reset_config()
else:
    cloudinary.config(
        cloud_name=settings.CLOUDINARY_CLOUD_NAME,
        api_key=settings.CLOUDINARY_API_KEY,
        api_secret=settings.CLOUDINARY_API_SECRET,
        secure=True,
    )

def upload_image_bytes(
    data: bytes,
    public_id: str,
    folder: Optional[str] = None,
    fmt: str = "jpg",
    overwrite: bool = True,
    tags: Optional[list[str]] = None,
) -> Dict[str, str]:
    """Upload an already-encoded composite; returns its secure_url and public_id."""
    fmt = (fmt or "jpg").lower()
    if fmt == "jpeg":
        fmt = "jpg"

    res = cloudinary.uploader.upload(
        BytesIO(data),
        resource_type="image",
        folder=folder or settings.CLOUDINARY_FOLDER,
        public_id=public_id,
        overwrite=overwrite,
        format=fmt,              # final extension in Cloudinary
        tags=tags or [],
    )
    return {"secure_url": res["secure_url"], "public_id": res["public_id"]}

def build_qr_url(secure_url: str, landing_url: Optional[str] = None) -> str:
    # The QR code points at the booth's landing page, which shows the uploaded composite
    landing_url = landing_url or settings.QR_LANDING_URL
    return f"{landing_url}?url={quote(secure_url, safe='')}"
