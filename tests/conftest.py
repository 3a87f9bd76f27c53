"""Shared fixtures for gyazobridge tests."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from gyazobridge.core.config import GyazoConfig
from gyazobridge.core.errors import NotFoundError, TransportError
from gyazobridge.sources.gyazo import ImageRecord


def make_image(
    index: int,
    *,
    title: str | None = None,
    app: str | None = None,
    ocr: str | None = None,
    base: datetime = datetime(2024, 1, 31, 12, 0, 0, tzinfo=timezone.utc),
) -> ImageRecord:
    """Build an image record; higher ``index`` means older."""
    created = base - timedelta(minutes=index)
    metadata = None
    if title or app:
        metadata = {"app": app, "title": title, "url": None, "desc": None}
    payload = {
        "image_id": f"img{index:03d}",
        "created_at": created.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "permalink_url": f"https://gyazo.com/img{index:03d}",
        "thumb_url": f"https://thumb.gyazo.com/img{index:03d}.png",
        "url": f"https://i.gyazo.com/img{index:03d}.png",
        "type": "png",
        "metadata": metadata,
        "ocr": {"locale": "en", "description": ocr} if ocr else None,
    }
    return ImageRecord.from_api(payload)


class FakeGyazoSource:
    """In-memory stand-in for GyazoClient.

    ``images`` is the newest-first list served by ``list_images``; ``details``
    overrides what ``get_image`` returns; ids in ``missing`` answer not-found and
    ids in ``broken`` fail with a transport error, as do list pages in
    ``failing_pages``.
    """

    def __init__(self, images: list[ImageRecord] | None = None):
        self.images = list(images or [])
        self.details: dict[str, ImageRecord] = {}
        self.missing: set[str] = set()
        self.broken: set[str] = set()
        self.failing_pages: set[int] = set()
        self.page_calls: list[int] = []
        self.detail_calls: list[str] = []
        self.deleted: list[str] = []
        self.delete_result = True
        self.gate: asyncio.Event | None = None
        self.closed = False

    async def list_images(self, page: int, per_page: int = 20) -> list[ImageRecord]:
        self.page_calls.append(page)
        if page in self.failing_pages:
            raise TransportError(f"Gyazo API error on page {page}", status_code=503)
        if self.gate is not None:
            await self.gate.wait()
        start = (page - 1) * per_page
        return self.images[start:start + per_page]

    async def get_image(self, image_id: str) -> ImageRecord:
        self.detail_calls.append(image_id)
        if image_id in self.missing:
            raise NotFoundError(image_id)
        if image_id in self.broken:
            raise TransportError(f"boom: {image_id}", status_code=500)
        if image_id in self.details:
            return self.details[image_id]
        for image in self.images:
            if image.image_id == image_id:
                return image
        raise NotFoundError(image_id)

    async def delete_image(self, image_id: str) -> bool:
        self.deleted.append(image_id)
        return self.delete_result

    async def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def no_keyring(monkeypatch):
    """Keep tests away from the real system keyring."""
    monkeypatch.setattr(
        "gyazobridge.utils.credentials.CredentialStore.get_access_token",
        lambda self: None,
    )


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    path = tmp_path / "vault"
    path.mkdir()
    return path


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "state" / "gyazo.db"


@pytest.fixture
def gyazo_config(vault: Path) -> GyazoConfig:
    return GyazoConfig(
        access_token="test-token",
        vault_path=vault,
        save_directory="Gyazo",
        max_images_to_fetch=40,
        detect_deleted_images=False,
    )


@pytest.fixture
def restore_root_logger():
    """Undo root handler changes made by ``setup_logging``."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
