import logging

import cloudinary.exceptions
import cloudinary.uploader
import pytest

from errors import BadRequestError
from images import CloudinaryImageHost, ImageUpload, discard_image, validate_image
from tests.conftest import FakeImages


@pytest.fixture
def host():
    return CloudinaryImageHost("demo", "key", "secret", "coast2cart/items")


def test_upload_returns_hosted_image(host, monkeypatch):
    seen = {}

    def upload(file, **options):
        seen["data"] = file.read()
        seen["options"] = options
        return {"secure_url": "https://res.test/a.jpg", "public_id": "coast2cart/items/a"}

    monkeypatch.setattr(cloudinary.uploader, "upload", upload)
    hosted = host.upload(ImageUpload("a.jpg", "image/jpeg", b"jpeg-bytes"))
    assert hosted.url == "https://res.test/a.jpg"
    assert hosted.public_id == "coast2cart/items/a"
    assert seen["data"] == b"jpeg-bytes"
    assert seen["options"]["folder"] == "coast2cart/items"
    assert seen["options"]["cloud_name"] == "demo"
    assert seen["options"]["api_secret"] == "secret"


def test_upload_failure_is_a_bad_request(host, monkeypatch):
    def upload(file, **options):
        raise cloudinary.exceptions.Error("Server returned unexpected status code - 500")

    monkeypatch.setattr(cloudinary.uploader, "upload", upload)
    with pytest.raises(BadRequestError, match="Failed to upload image"):
        host.upload(ImageUpload("a.jpg", "image/jpeg", b"jpeg"))


def test_unconfigured_host_refuses_uploads(monkeypatch):
    def upload(file, **options):
        raise AssertionError("should not reach Cloudinary")

    monkeypatch.setattr(cloudinary.uploader, "upload", upload)
    unconfigured = CloudinaryImageHost(None, None, None)
    with pytest.raises(BadRequestError):
        unconfigured.upload(ImageUpload("a.jpg", "image/jpeg", b"jpeg"))


def test_delete(host, monkeypatch):
    seen = []

    def destroy(public_id, **options):
        seen.append((public_id, options["cloud_name"]))
        return {"result": "ok"}

    monkeypatch.setattr(cloudinary.uploader, "destroy", destroy)
    assert host.delete("coast2cart/items/a") is True
    assert seen == [("coast2cart/items/a", "demo")]


def test_optimized_url(host):
    url = host.optimized_url("coast2cart/items/a", 400, 300)
    assert url.startswith("https://res.cloudinary.com/demo/image/upload/")
    for part in ("c_limit", "f_auto", "h_300", "q_auto", "w_400"):
        assert part in url
    assert url.endswith("coast2cart/items/a")


def test_optional_image_may_be_absent():
    validate_image(None, 1024, required=False)
    with pytest.raises(BadRequestError, match="empty"):
        validate_image(ImageUpload("a.jpg", "image/jpeg", b""), 1024)


def test_discard_image_logs_failures(caplog):
    images = FakeImages()
    images.fail_delete = True
    with caplog.at_level(logging.ERROR, logger="coast2cart.images"):
        discard_image(images, "coast2cart/items/9")
    assert "Failed to clean up image coast2cart/items/9" in caplog.text

    discard_image(images, None)
    assert images.deleted == []
