"""Deleting a Gyazo image (and optionally its note) on request."""

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from gyazobridge.core.errors import TransportError
from gyazobridge.sources.gyazo import GyazoClient
from gyazobridge.sources.notes import NoteStore
from gyazobridge.sources.notes.codec import require_source_id
from gyazobridge.utils.db import SyncStateDB

logger = logging.getLogger(__name__)


class DeletionDecision(str, Enum):
    """Answer of the confirmation prompt."""

    CANCEL = "cancel"
    DELETE_IMAGE_ONLY = "delete_image_only"
    DELETE_IMAGE_AND_NOTE = "delete_image_and_note"


# Asks the user what to do about an image id; may be sync or async
DecisionPort = Callable[[str], DeletionDecision | Awaitable[DeletionDecision]]


@dataclass
class DeletionOutcome:
    image_id: str
    decision: DeletionDecision
    image_deleted: bool = False
    note_deleted: bool = False


class ImageDeletionWorkflow:
    """
    Deletes the Gyazo image behind a note.

    The remote image is deleted first; the note is only removed once Gyazo
    has confirmed the deletion, so a failed API call never leaves a note
    missing for an image that still exists.
    """

    def __init__(self, client: GyazoClient, store: NoteStore, db: SyncStateDB | None = None):
        self.client = client
        self.store = store
        self.db = db

    async def delete_image(self, image_id: str) -> bool:
        """Delete an image on Gyazo; True only on a confirmed deletion."""
        return await self.client.delete_image(image_id)

    async def delete_note_for_image(self, note_path: str, decide: DecisionPort) -> DeletionOutcome:
        """
        Confirm and delete the image referenced by a note.

        Args:
            note_path: Vault-relative path of the note
            decide: Decision port asked with the note's image id

        Returns:
            DeletionOutcome describing what was deleted

        Raises:
            ContentFormatError: If the note is not a Gyazo note
            TransportError: If Gyazo did not confirm the deletion (note kept)
        """
        text = await self.store.read(note_path)
        image_id = require_source_id(text)

        decision = decide(image_id)
        if inspect.isawaitable(decision):
            decision = await decision
        decision = DeletionDecision(decision)

        outcome = DeletionOutcome(image_id=image_id, decision=decision)
        if decision is DeletionDecision.CANCEL:
            logger.info(f"Deletion of image {image_id} cancelled")
            return outcome

        if not await self.delete_image(image_id):
            raise TransportError(f"Failed to delete Gyazo image {image_id}; the note was kept")
        outcome.image_deleted = True

        if decision is DeletionDecision.DELETE_IMAGE_AND_NOTE:
            await self.store.delete(note_path)
            if self.db is not None:
                await self.db.delete_note(image_id)
            outcome.note_deleted = True

        return outcome
