"""
Item images hosted on Cloudinary.

Uploads happen before the owning record is written; removing an image is
always best-effort and only ever logged when it fails.
"""

import io
import logging
from dataclasses import dataclass
from typing import Optional

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader

from errors import BadRequestError, PayloadTooLargeError, UnsupportedMediaTypeError

log = logging.getLogger("coast2cart.images")

UPLOAD_TRANSFORMATION = [{"width": 800, "height": 600, "crop": "limit", "quality": "auto"}]


@dataclass
class ImageUpload:
    filename: Optional[str]
    content_type: Optional[str]
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class HostedImage:
    url: str
    public_id: str


def validate_image(upload: Optional[ImageUpload], max_bytes: int, required: bool = True) -> None:
    if upload is None:
        if required:
            raise BadRequestError("Item image is required")
        return
    if not upload.content_type or not upload.content_type.startswith("image/"):
        raise UnsupportedMediaTypeError("Only image files are allowed")
    if upload.size == 0:
        raise BadRequestError("Image file is empty")
    if upload.size > max_bytes:
        raise PayloadTooLargeError(f"Image file size must be less than {_size_label(max_bytes)}")


def _size_label(size: int) -> str:
    if size >= 1024 * 1024:
        return f"{size // (1024 * 1024)}MB"
    return f"{size // 1024}KB"


class CloudinaryImageHost:
    def __init__(
        self,
        cloud_name: Optional[str],
        api_key: Optional[str],
        api_secret: Optional[str],
        folder: str = "coast2cart/items",
    ):
        self.folder = folder
        self.credentials = {"cloud_name": cloud_name, "api_key": api_key, "api_secret": api_secret}
        self.is_configured = bool(cloud_name and api_key and api_secret)
        if not self.is_configured:
            log.warning("Cloudinary is not configured, image uploads will fail")

    def upload(self, image: ImageUpload) -> HostedImage:
        if not self.is_configured:
            raise BadRequestError("Image upload is not available. Please try again later.")
        try:
            result = cloudinary.uploader.upload(
                io.BytesIO(image.data),
                folder=self.folder,
                resource_type="image",
                transformation=UPLOAD_TRANSFORMATION,
                **self.credentials,
            )
        except cloudinary.exceptions.Error as e:
            log.error("Cloudinary upload failed: %s", e)
            raise BadRequestError("Failed to upload image. Please try again.")
        return HostedImage(url=result["secure_url"], public_id=result["public_id"])

    def delete(self, public_id: str) -> bool:
        result = cloudinary.uploader.destroy(public_id, invalidate=True, **self.credentials)
        log.info("Image %s deleted: %s", public_id, result.get("result"))
        return result.get("result") == "ok"

    def optimized_url(self, public_id: str, width: int = 800, height: int = 600) -> str:
        return cloudinary.CloudinaryImage(public_id).build_url(
            width=width,
            height=height,
            crop="limit",
            quality="auto",
            fetch_format="auto",
            secure=True,
            cloud_name=self.credentials["cloud_name"],
        )


def discard_image(host, public_id: Optional[str]) -> None:
    """Delete a hosted image, logging instead of raising on failure."""
    if not public_id:
        return
    try:
        host.delete(public_id)
    except Exception:
        log.exception("Failed to clean up image %s", public_id)
