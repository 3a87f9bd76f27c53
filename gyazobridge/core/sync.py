"""Core synchronization logic for Gyazo → Markdown notes."""

import asyncio
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from gyazobridge.core.config import GyazoConfig
from gyazobridge.core.errors import (
    ConfigurationError,
    NotFoundError,
    SyncCancelledError,
    TransportError,
)
from gyazobridge.sources.gyazo import PAGE_SIZE, GyazoClient, ImageRecord
from gyazobridge.sources.notes import NoteStore
from gyazobridge.sources.notes.codec import (
    extract_source_id,
    is_managed_note,
    merge_note,
    note_relative_path,
    render_note,
)
from gyazobridge.utils.db import SyncCheckpoint, SyncStateDB

logger = logging.getLogger(__name__)

# Receives user-facing messages (CLI console, desktop notification, ...)
NoticeCallback = Callable[[str], None]


@dataclass
class DeletionReport:
    """Outcome of deleted-image detection."""

    candidates: int = 0
    deleted_notes: list[str] = field(default_factory=list)
    flagged_notes: list[str] = field(default_factory=list)


@dataclass
class SyncResult:
    """Counters and outcome of a single sync run.

    ``status`` is one of ``"completed"``, ``"no_images"`` or ``"busy"`` (a run
    was already in progress and this trigger did nothing).
    """

    status: str
    pages_fetched: int = 0
    fetched: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    force_deleted: int = 0
    deletions: DeletionReport | None = None

    @property
    def summary(self) -> str:
        if self.status == "busy":
            return "Gyazo sync already in progress"
        if self.status == "no_images":
            return "No images found on Gyazo"
        return f"Gyazo sync complete: {self.created} created, {self.updated} updated"


def _now_ms() -> float:
    return datetime.now().timestamp() * 1000


class GyazoSyncEngine:
    """
    Reconciles the Gyazo image list into a folder of markdown notes.

    Brings together:
    - Gyazo API client (source: paginated image list + per-image detail)
    - Note store (destination: markdown files in the vault)
    - State database (checkpoint, id → note index, run log)

    Sync Algorithm:
    1. Page through the image list (newest first) until a short page, the
       page cap, or the page holding the checkpoint id
    2. On forced refetch, delete every managed note and drop the checkpoint
    3. Walk the fetched images up to the checkpoint id, fetch each detail and
       create or merge its note (found by id first, by derived path for new ones)
    4. Advance the checkpoint to the newest fetched image
    5. Optionally look for notes whose image was deleted on Gyazo

    Runs are serialized: a trigger while a run is in flight is a no-op.
    """

    def __init__(
        self,
        config: GyazoConfig,
        db_path: Path,
        client: GyazoClient | None = None,
        store: NoteStore | None = None,
    ):
        """
        Initialize the sync engine.

        Args:
            config: Gyazo section of the application config
            db_path: Path to SQLite database for state tracking
            client: Optional pre-built API client (built lazily from the
                    configured access token otherwise)
            store: Optional note store (defaults to the configured vault)
        """
        self.config = config
        self.db = SyncStateDB(db_path)
        self.store = store or NoteStore(config.vault_path)
        self._client = client
        self._owns_client = client is None
        self._lock = asyncio.Lock()
        self._closing = False

    @property
    def is_running(self) -> bool:
        """Return True while a sync run holds the engine."""
        return self._lock.locked()

    @property
    def save_directory(self) -> str:
        return self.config.save_directory

    async def initialize(self) -> None:
        """Set up the state database.

        Also reopens an engine shut down by :meth:`close`, so a scheduler can
        be started again after ``shutdown()``.
        """
        await self.db.initialize()
        self._closing = False
        logger.debug("Sync engine initialized")

    async def close(self) -> None:
        """
        Shut the engine down.

        A run in progress stops at its next checkpoint with
        :class:`SyncCancelledError`; the client is closed once no run holds it.
        """
        self._closing = True
        if not self.is_running:
            await self._close_client()

    async def _close_client(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.close()
            self._client = None

    def _check_cancelled(self) -> None:
        if self._closing:
            raise SyncCancelledError("Sync engine is shutting down")

    def _get_client(self) -> GyazoClient:
        access_token = self.config.get_access_token()
        if not access_token:
            raise ConfigurationError(
                "Gyazo access token is not configured. "
                "Run 'gyazobridge set-token' or set GYAZOBRIDGE_GYAZO__ACCESS_TOKEN."
            )
        if self._client is None:
            self._client = GyazoClient(
                access_token,
                base_url=self.config.api_base_url,
                timeout=self.config.request_timeout,
            )
        return self._client

    @staticmethod
    def _log_notice(message: str) -> None:
        logger.info(message)

    async def run_sync(self, notify: NoticeCallback | None = None) -> SyncResult:
        """
        Run one synchronization pass.

        Args:
            notify: Callback for user-facing messages (defaults to logging)

        Returns:
            SyncResult with per-run counters

        Raises:
            ConfigurationError: If no access token is configured (no I/O done)
            TransportError: If a page of the image list cannot be fetched
            SyncCancelledError: If the engine was closed mid-run
        """
        notify = notify or self._log_notice

        if self._lock.locked():
            notify("Gyazo sync already in progress; ignoring this trigger")
            return SyncResult(status="busy")

        async with self._lock:
            self._check_cancelled()
            client = self._get_client()

            await self.db.initialize()
            started_at = datetime.now().timestamp()
            try:
                result = await self._run(client, notify)
            except Exception as e:
                status = "cancelled" if isinstance(e, SyncCancelledError) else "error"
                logger.error(f"Gyazo sync failed: {e}")
                await self.db.record_run(started_at=started_at, status=status, error_message=str(e))
                raise
            finally:
                if self._closing:
                    await self._close_client()

            deleted = len(result.deletions.deleted_notes) if result.deletions else 0
            await self.db.record_run(
                started_at=started_at,
                status=result.status,
                fetched=result.fetched,
                created=result.created,
                updated=result.updated,
                skipped=result.skipped,
                deleted=deleted + result.force_deleted,
            )
            return result

    async def _run(self, client: GyazoClient, notify: NoticeCallback) -> SyncResult:
        checkpoint = await self.db.get_checkpoint()

        images, pages_fetched = await self._fetch_pages(client, checkpoint)
        if not images:
            result = SyncResult(status="no_images", pages_fetched=pages_fetched)
            notify(result.summary)
            return result

        logger.info(f"Fetched {len(images)} images in {pages_fetched} page(s)")
        result = SyncResult(status="completed", pages_fetched=pages_fetched, fetched=len(images))

        await self.store.ensure_folder(self.save_directory)

        if checkpoint.force_refetch:
            notify("Force refetch: deleting existing Gyazo notes...")
            result.force_deleted = await self._delete_managed_notes()
            notify(f"Deleted {result.force_deleted} notes, fetching again...")
            checkpoint.last_fetched_id = ""
            await self.db.save_checkpoint(checkpoint)

        index = await self._build_note_index()

        for record in images:
            self._check_cancelled()

            if checkpoint.last_fetched_id and record.image_id == checkpoint.last_fetched_id:
                logger.debug(f"Reached last fetched image {record.image_id}, stopping")
                break

            logger.debug(f"Processing image {record.image_id}")
            try:
                detail = await client.get_image(record.image_id)
            except (NotFoundError, TransportError) as e:
                logger.error(f"Failed to fetch details for image {record.image_id}: {e}")
                result.skipped += 1
                continue

            try:
                outcome = await self._reconcile(detail, index)
            except Exception as e:
                logger.error(f"Failed to write note for image {record.image_id}: {e}")
                result.skipped += 1
                continue

            if outcome == "created":
                result.created += 1
            elif outcome == "updated":
                result.updated += 1
            else:
                result.unchanged += 1

        checkpoint.last_fetched_id = images[0].image_id
        checkpoint.last_fetch_time = _now_ms()
        checkpoint.force_refetch = False
        await self.db.save_checkpoint(checkpoint)

        if self.config.detect_deleted_images:
            current_ids = {record.image_id for record in images}
            result.deletions = await self.detect_deleted_images(current_ids, notify=notify)

        notify(result.summary)
        return result

    async def _fetch_pages(
        self,
        client: GyazoClient,
        checkpoint: SyncCheckpoint,
    ) -> tuple[list[ImageRecord], int]:
        """Page through the image list, newest first."""
        max_pages = max(1, math.ceil(self.config.max_images_to_fetch / PAGE_SIZE))
        stop_id = checkpoint.last_fetched_id if not checkpoint.force_refetch else ""
        logger.info(f"Fetching up to {self.config.max_images_to_fetch} images (max {max_pages} pages)")

        images: list[ImageRecord] = []
        pages_fetched = 0
        for page in range(1, max_pages + 1):
            self._check_cancelled()
            logger.debug(f"Fetching Gyazo images: page {page}")
            batch = await client.list_images(page, PAGE_SIZE)
            pages_fetched = page
            images.extend(batch)

            if len(batch) < PAGE_SIZE:
                break
            if stop_id and any(record.image_id == stop_id for record in batch):
                logger.info(f"Found last fetched image {stop_id} on page {page}, stopping pagination")
                break

        return images, pages_fetched

    async def _scan_notes(self) -> list[tuple[str, str]]:
        """Return ``(note_path, gyazo_id)`` for every managed note in the save directory."""
        found = []
        for path in await self.store.list_notes(self.save_directory):
            try:
                text = await self.store.read(path)
            except Exception as e:
                logger.warning(f"Failed to read note {path}: {e}")
                continue
            image_id = extract_source_id(text)
            if image_id:
                found.append((path, image_id))
        return found

    async def _build_note_index(self) -> dict[str, str]:
        """Map image ids to existing note paths from a fresh vault scan."""
        index: dict[str, str] = {}
        for path, image_id in await self._scan_notes():
            if image_id in index:
                logger.warning(f"Image {image_id} has several notes: {index[image_id]}, {path}")
                continue
            index[image_id] = path
        await self.db.replace_note_index(index)
        return index

    async def _delete_managed_notes(self) -> int:
        """Delete every note carrying a gyazo_id. Failures are logged and skipped."""
        deleted = 0
        for path in await self.store.list_notes(self.save_directory):
            try:
                text = await self.store.read(path)
                if is_managed_note(text):
                    await self.store.delete(path)
                    deleted += 1
            except Exception as e:
                logger.error(f"Failed to delete note {path}: {e}")
        return deleted

    async def _resolve_new_path(self, record: ImageRecord) -> str:
        path = note_relative_path(record, self.save_directory)
        if not await self.store.exists(path):
            return path

        # Name taken by a note that isn't this image's: disambiguate with the id
        fallback = note_relative_path(record, self.save_directory, suffix=f" {record.image_id}")
        if await self.store.exists(fallback):
            raise RuntimeError(f"Cannot place note for image {record.image_id}: {fallback} already exists")
        return fallback

    async def _reconcile(self, record: ImageRecord, index: dict[str, str]) -> str:
        """Create or update the note for ``record``.

        Returns:
            "created", "updated" or "unchanged"
        """
        path = index.get(record.image_id)
        if path and not await self.store.exists(path):
            path = None

        if path is None:
            path = await self._resolve_new_path(record)
            await self.store.create(path, render_note(record))
            outcome = "created"
        else:
            existing = await self.store.read(path)
            merged = merge_note(existing, record)
            if merged == existing:
                outcome = "unchanged"
            else:
                await self.store.write(path, merged)
                outcome = "updated"

        index[record.image_id] = path
        await self.db.upsert_note(record.image_id, path)
        return outcome

    async def detect_deleted_images(
        self,
        current_ids: set[str],
        notify: NoticeCallback | None = None,
    ) -> DeletionReport:
        """
        Find notes whose image was deleted on Gyazo.

        ``current_ids`` only covers the fetch window, so a note missing from it
        is just a candidate; the image detail endpoint decides. A not-found
        answer confirms the deletion, anything else leaves the note alone.

        Args:
            current_ids: Image ids returned by the latest list fetch
            notify: Callback for user-facing messages

        Returns:
            DeletionReport listing deleted and flagged notes
        """
        notify = notify or self._log_notice
        client = self._get_client()
        report = DeletionReport()

        notes = await self._scan_notes()
        candidates = [(path, image_id) for path, image_id in notes if image_id not in current_ids]
        report.candidates = len(candidates)
        logger.info(f"Checking {len(candidates)} of {len(notes)} notes for deleted images")

        for path, image_id in candidates:
            self._check_cancelled()
            try:
                await client.get_image(image_id)
            except NotFoundError:
                logger.info(f"Image {image_id} was deleted on Gyazo (note: {path})")
            except Exception as e:
                logger.error(f"Failed to check image {image_id}: {e}")
                continue
            else:
                logger.debug(f"Image {image_id} still exists, it is outside the fetch window")
                continue

            if self.config.delete_notes_for_deleted_images:
                try:
                    await self.store.delete(path)
                    await self.db.delete_note(image_id)
                except Exception as e:
                    logger.error(f"Failed to delete note {path}: {e}")
                    continue
                report.deleted_notes.append(path)
            else:
                report.flagged_notes.append(path)
                notify(f"Image deleted on Gyazo: {path}")

        if report.deleted_notes:
            notify(f"Deleted {len(report.deleted_notes)} notes for images removed from Gyazo")

        return report
