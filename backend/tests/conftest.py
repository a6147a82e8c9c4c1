import pytest
from django.core.files.uploadedfile import SimpleUploadedFile
from rest_framework.test import APIClient

from containers import cloudinary_service
from containers.cloudinary_service import CloudinaryError
from containers.storage import MemoryContainerStore


# ── Fixtures ─────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def base_settings(settings):
    """In-memory storage, fake credentials and no polling delay for every test."""
    settings.CONTAINERS_STORAGE = "memory"
    settings.CONTAINERS_POLL_ATTEMPTS = 3
    settings.CONTAINERS_POLL_DELAY = 0
    settings.CONTAINERS_PREFIX = "containers/"
    settings.CLOUDINARY_URL = ""
    settings.CLOUDINARY_CLOUD_NAME = "demo"
    settings.CLOUDINARY_API_KEY = "1234"
    settings.CLOUDINARY_API_SECRET = "abcd"
    MemoryContainerStore.clear()
    yield settings
    MemoryContainerStore.clear()


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def make_image():
    """Factory for uploaded image files."""

    def _make(name: str = "box.png", content: bytes = b"\x89PNG fake image bytes"):
        return SimpleUploadedFile(name, content, content_type="image/png")

    return _make


class FakeCloud:
    """
    Stand-in for the Cloudinary REST API. Keeps uploaded assets in dicts so
    storage backends can be exercised end to end without the network.
    """

    def __init__(self):
        self.raw = {}
        self.images = {}
        self.destroyed = []
        self.destroy_result = "ok"
        self._counter = 0

    def upload(self, file, resource_type="image", filename=None, **options):
        data = file if isinstance(file, bytes) else file.read()
        if resource_type == "raw":
            self.raw[options["public_id"]] = data.decode("utf-8")
            return {"public_id": options["public_id"]}
        self._counter += 1
        public_id = options.get("public_id") or f"img{self._counter}"
        self.images[public_id] = {
            "public_id": public_id,
            "secure_url": f"https://res.cloudinary.com/demo/image/upload/{public_id}.png",
            "bytes": data,
            "context": cloudinary_service.decode_context({"context": options.get("context") or ""}),
        }
        return {"public_id": public_id, "secure_url": self.images[public_id]["secure_url"]}

    def destroy(self, public_id, resource_type="image", invalidate=True):
        self.destroyed.append(public_id)
        if self.destroy_result == "ok":
            self.images.pop(public_id, None)
        return self.destroy_result

    def raw_url(self, public_id):
        return f"https://res.cloudinary.com/demo/raw/upload/{public_id}?v=1"

    def fetch_text(self, url):
        public_id = url.split("/raw/upload/", 1)[1].split("?", 1)[0]
        if public_id not in self.raw:
            raise CloudinaryError(f"Download failed: 404 - {url}")
        return self.raw[public_id]

    def fetch_bytes(self, url):
        for image in self.images.values():
            if image["secure_url"] == url:
                return image["bytes"]
        raise CloudinaryError(f"Download failed: 404 - {url}")

    def iter_resources_by_prefix(self, prefix, page_size=100):
        for public_id, image in self.images.items():
            if public_id.startswith(prefix):
                yield {
                    "public_id": public_id,
                    "secure_url": image["secure_url"],
                    "context": dict(image["context"]),
                }


@pytest.fixture
def fake_cloud(monkeypatch):
    fake = FakeCloud()
    for name in ("upload", "destroy", "raw_url", "fetch_text", "fetch_bytes", "iter_resources_by_prefix"):
        monkeypatch.setattr(cloudinary_service, name, getattr(fake, name))
    return fake
