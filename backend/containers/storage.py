"""
Storage backends for container records.

Every backend keeps the same small collection of records and exposes the
same operations; CONTAINERS_STORAGE picks which one the views use:

- "memory":       records and images live in this process.
- "cloud_json":   records are one raw JSON blob on Cloudinary, re-uploaded on
                  every mutation; images are Cloudinary image uploads.
- "filesystem":   one folder per container under CONTAINERS_DATA_DIR.
- "cloud_search": images are uploaded under CONTAINERS_PREFIX with the record
                  stored as context metadata; listing is a prefix search.
"""
from __future__ import annotations

import json
import logging
import shutil
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List

from django.conf import settings

from . import cloudinary_service
from .cloudinary_service import CloudinaryError


logger = logging.getLogger(__name__)


class ContainerError(Exception):
    pass


class ContainerExists(ContainerError):
    pass


class ContainerNotFound(ContainerError):
    pass


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


@dataclass
class ContainerRecord:
    id: str
    name: str
    description: str = ""
    image_url: str = ""
    image_public_id: str = ""
    created_at: str = field(default_factory=_utc_now_iso)

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ContainerRecord":
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            description=str(data.get("description") or ""),
            image_url=str(data.get("image_url") or ""),
            image_public_id=str(data.get("image_public_id") or ""),
            created_at=str(data.get("created_at") or ""),
        )


# What a missing, stale or malformed containers blob can raise.
_BLOB_ERRORS = (CloudinaryError, ValueError, KeyError, TypeError, AttributeError)


def _new_id() -> str:
    return str(uuid.uuid4())


def _read_upload(image) -> bytes:
    """Return the full contents of an uploaded file (Django UploadedFile or file-like)."""
    if hasattr(image, "seek"):
        image.seek(0)
    return image.read()


class ContainerStore:
    """
    Shared behaviour for all backends: duplicate-name checks and key lookup.
    Subclasses implement all(), create(), delete() and read_image().
    """

    name = ""

    def all(self) -> List[ContainerRecord]:
        raise NotImplementedError

    def create(self, name: str, description: str, image) -> List[ContainerRecord]:
        raise NotImplementedError

    def delete(self, key: str) -> List[ContainerRecord]:
        raise NotImplementedError

    def read_image(self, record: ContainerRecord) -> bytes | None:
        """Image bytes for a record; URL-backed stores download them."""
        if not record.image_url:
            return None
        return cloudinary_service.fetch_bytes(record.image_url)

    @staticmethod
    def ensure_unique_name(records: List[ContainerRecord], name: str) -> None:
        wanted = name.casefold()
        if any(r.name.casefold() == wanted for r in records):
            logger.warning(f"Container with name {name} already exists.")
            raise ContainerExists("Container already exists.")

    @staticmethod
    def find(records: List[ContainerRecord], key: str) -> ContainerRecord:
        """Look a record up by id first, then by case-insensitive name."""
        for record in records:
            if record.id == key:
                return record
        wanted = key.casefold()
        for record in records:
            if record.name.casefold() == wanted:
                return record
        logger.warning(f"Container {key} not found.")
        raise ContainerNotFound("Container not found.")

    @staticmethod
    def sort(records: List[ContainerRecord]) -> List[ContainerRecord]:
        return sorted(records, key=lambda r: r.created_at)


class MemoryContainerStore(ContainerStore):
    """Process-wide list; everything is lost on restart."""

    name = "memory"

    _records: List[ContainerRecord] = []
    _images: Dict[str, bytes] = {}
    _lock = threading.Lock()

    def all(self) -> List[ContainerRecord]:
        return list(self._records)

    def create(self, name, description, image):
        data = _read_upload(image)
        with self._lock:
            self.ensure_unique_name(self._records, name)
            record = ContainerRecord(id=_new_id(), name=name, description=description)
            record.image_public_id = getattr(image, "name", "") or record.id
            self._images[record.id] = data
            self._records.append(record)
        logger.info(f"Container {record.name} created successfully with Id {record.id}")
        return self.all()

    def delete(self, key):
        with self._lock:
            record = self.find(self._records, key)
            self._records.remove(record)
            self._images.pop(record.id, None)
        logger.info(f"Container {record.name} ({record.id}) deleted successfully.")
        return self.all()

    def read_image(self, record):
        return self._images.get(record.id)

    @classmethod
    def clear(cls) -> None:
        cls._records.clear()
        cls._images.clear()


class CloudJsonContainerStore(ContainerStore):
    """
    The whole collection is a JSON object keyed by id, stored as a raw
    Cloudinary asset and re-uploaded after each change.
    """

    name = "cloud_json"
    data_public_id = "containers_data.json"

    def __init__(self, poll_attempts: int | None = None, poll_delay: float | None = None):
        self.poll_attempts = settings.CONTAINERS_POLL_ATTEMPTS if poll_attempts is None else poll_attempts
        self.poll_delay = settings.CONTAINERS_POLL_DELAY if poll_delay is None else poll_delay

    @staticmethod
    def _parse(payload: str) -> Dict[str, ContainerRecord]:
        data = json.loads(payload)
        # Older blobs were a plain list of records.
        if isinstance(data, list):
            items = data
        elif isinstance(data, dict):
            items = list(data.values())
        else:
            raise ValueError(f"Unexpected containers data type: {type(data).__name__}")
        records = [ContainerRecord.from_dict(item) for item in items]
        return {r.id: r for r in records}

    @staticmethod
    def _serialize(records: Dict[str, ContainerRecord]) -> str:
        return json.dumps({rid: r.to_dict() for rid, r in records.items()})

    def download(self) -> Dict[str, ContainerRecord]:
        """Current collection; an empty one when the blob is missing or unreadable."""
        try:
            payload = cloudinary_service.fetch_text(cloudinary_service.raw_url(self.data_public_id))
            records = self._parse(payload)
        except _BLOB_ERRORS as exc:
            logger.warning(f"Could not download containers data. Initializing empty collection. Exception: {exc}")
            return {}
        logger.info(f"Containers data downloaded successfully. Count: {len(records)}")
        return records

    def upload(self, records: Dict[str, ContainerRecord]) -> None:
        payload = self._serialize(records).encode("utf-8")
        try:
            result = cloudinary_service.upload(
                payload,
                resource_type="raw",
                filename="containers.json",
                public_id=self.data_public_id,
                overwrite=True,
                invalidate=True,
            )
        except CloudinaryError:
            logger.exception("Error uploading containers data to Cloudinary.")
            raise
        logger.info(f"Containers data uploaded. PublicId: {result.get('public_id')}")

    def wait_for_update(self, expected: Dict[str, ContainerRecord]) -> Dict[str, ContainerRecord]:
        """
        Poll the blob until it matches what was just uploaded. Returns the
        confirmed collection, or the expected one once the attempts run out.
        """
        expected_data = json.loads(self._serialize(expected))
        for attempt in range(1, self.poll_attempts + 1):
            try:
                payload = cloudinary_service.fetch_text(cloudinary_service.raw_url(self.data_public_id))
                if json.loads(payload) == expected_data:
                    logger.info(f"Updated containers data confirmed on attempt {attempt}.")
                    return self._parse(payload)
            except _BLOB_ERRORS as exc:
                logger.warning(f"Attempt {attempt} failed to confirm updated containers data: {exc}")
            if attempt < self.poll_attempts:
                time.sleep(self.poll_delay)
        logger.warning(f"Failed to confirm updated containers data after {self.poll_attempts} attempts.")
        return expected

    def all(self):
        return self.sort(list(self.download().values()))

    def create(self, name, description, image):
        records = self.download()
        self.ensure_unique_name(list(records.values()), name)

        logger.info(f"Uploading image for container {name}")
        result = cloudinary_service.upload(
            _read_upload(image),
            resource_type="image",
            filename=getattr(image, "name", None) or "image",
        )
        record = ContainerRecord(
            id=_new_id(),
            name=name,
            description=description,
            image_url=result.get("secure_url") or "",
            image_public_id=result.get("public_id") or "",
        )
        records[record.id] = record
        logger.info(f"Container {record.name} created successfully with Id {record.id}")

        self.upload(records)
        return self.sort(list(self.wait_for_update(records).values()))

    def delete(self, key):
        records = self.download()
        record = self.find(list(records.values()), key)

        logger.info(f"Deleting image from Cloudinary for container {record.name} with PublicId {record.image_public_id}")
        if record.image_public_id:
            result = cloudinary_service.destroy(record.image_public_id)
            if result != "ok":
                logger.error(f"Error deleting image for container Id {record.id}. Result: {result}")
                raise CloudinaryError(f"Error deleting image from Cloudinary: {result}")

        del records[record.id]
        logger.info(f"Container with Id {record.id} deleted successfully.")

        self.upload(records)
        return self.sort(list(self.wait_for_update(records).values()))


class FilesystemContainerStore(ContainerStore):
    """
    One folder per container:
        <root>/<id>/metadata.json
        <root>/<id>/image<ext>
    """

    name = "filesystem"
    metadata_filename = "metadata.json"

    def __init__(self, root: Path | str | None = None):
        self.root = Path(root if root is not None else settings.CONTAINERS_DATA_DIR)

    def _folder(self, record_id: str) -> Path:
        return self.root / record_id

    def all(self):
        if not self.root.is_dir():
            return []
        records = []
        for folder in self.root.iterdir():
            if not folder.is_dir():
                continue
            try:
                data = json.loads((folder / self.metadata_filename).read_text(encoding="utf-8"))
                records.append(ContainerRecord.from_dict(data))
            except (OSError, ValueError, KeyError) as exc:
                logger.warning(f"Skipping container folder {folder.name}: {exc}")
        return self.sort(records)

    def create(self, name, description, image):
        self.ensure_unique_name(self.all(), name)

        record = ContainerRecord(id=_new_id(), name=name, description=description)
        suffix = Path(getattr(image, "name", "") or "").suffix.lower()
        record.image_public_id = f"image{suffix}"

        folder = self._folder(record.id)
        folder.mkdir(parents=True)
        try:
            (folder / record.image_public_id).write_bytes(_read_upload(image))
            (folder / self.metadata_filename).write_text(json.dumps(record.to_dict()), encoding="utf-8")
        except OSError:
            shutil.rmtree(folder, ignore_errors=True)
            raise
        logger.info(f"Container {record.name} created successfully with Id {record.id} in {folder}")
        return self.all()

    def delete(self, key):
        record = self.find(self.all(), key)
        shutil.rmtree(self._folder(record.id))
        logger.info(f"Container {record.name} ({record.id}) deleted successfully.")
        return self.all()

    def read_image(self, record):
        path = self._folder(record.id) / record.image_public_id
        if not record.image_public_id or not path.is_file():
            return None
        return path.read_bytes()


class CloudSearchContainerStore(ContainerStore):
    """
    No separate index: each container is an image under a shared public-id
    prefix, with its fields kept in the image's context metadata.
    """

    name = "cloud_search"

    def __init__(self, prefix: str | None = None):
        self.prefix = settings.CONTAINERS_PREFIX if prefix is None else prefix

    def _to_record(self, resource: dict) -> ContainerRecord | None:
        context = cloudinary_service.decode_context(resource)
        public_id = resource.get("public_id") or ""
        if not context.get("name"):
            logger.warning(f"Resource {public_id} has no container name in its context; skipping.")
            return None
        return ContainerRecord(
            id=context.get("id") or public_id[len(self.prefix):],
            name=context["name"],
            description=context.get("description", ""),
            image_url=resource.get("secure_url") or "",
            image_public_id=public_id,
            created_at=context.get("created_at") or resource.get("created_at") or "",
        )

    def all(self):
        records = []
        for resource in cloudinary_service.iter_resources_by_prefix(self.prefix):
            record = self._to_record(resource)
            if record is not None:
                records.append(record)
        logger.info(f"Found {len(records)} containers under prefix {self.prefix}")
        return self.sort(records)

    def create(self, name, description, image):
        records = self.all()
        self.ensure_unique_name(records, name)

        record = ContainerRecord(id=_new_id(), name=name, description=description)
        logger.info(f"Uploading image for container {name}")
        result = cloudinary_service.upload(
            _read_upload(image),
            resource_type="image",
            filename=getattr(image, "name", None) or "image",
            public_id=f"{self.prefix}{record.id}",
            context=cloudinary_service.encode_context({
                "id": record.id,
                "name": record.name,
                "description": record.description,
                "created_at": record.created_at,
            }),
        )
        record.image_url = result.get("secure_url") or ""
        record.image_public_id = result.get("public_id") or f"{self.prefix}{record.id}"
        logger.info(f"Container {record.name} created successfully with Id {record.id}")

        # The search index lags behind uploads.
        records = self.all()
        if all(r.id != record.id for r in records):
            records.append(record)
        return self.sort(records)

    def delete(self, key):
        record = self.find(self.all(), key)
        logger.info(f"Deleting image from Cloudinary for container {record.name} with PublicId {record.image_public_id}")
        result = cloudinary_service.destroy(record.image_public_id)
        if result != "ok":
            logger.error(f"Error deleting image for container Id {record.id}. Result: {result}")
            raise CloudinaryError(f"Error deleting image from Cloudinary: {result}")
        logger.info(f"Container with Id {record.id} deleted successfully.")

        return [r for r in self.all() if r.id != record.id]


STORES = {
    store.name: store
    for store in (
        MemoryContainerStore,
        CloudJsonContainerStore,
        FilesystemContainerStore,
        CloudSearchContainerStore,
    )
}


def get_store() -> ContainerStore:
    backend = settings.CONTAINERS_STORAGE
    store_class = STORES.get(backend)
    if store_class is None:
        raise ContainerError(
            f"Unknown CONTAINERS_STORAGE '{backend}'. Expected one of: {', '.join(sorted(STORES))}."
        )
    return store_class()
