"""Markdown vault adapter for Gyazo notes.

This adapter focuses on FILE OPERATIONS only: it doesn't know about Gyazo,
the sync protocol or note formats. Paths handed in and out are vault-relative
POSIX strings (``"Gyazo/Gyazo 2024-01-05_103000 abc123.md"``), the same way
the note vault itself refers to files.
"""

import logging
from pathlib import Path, PurePosixPath

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)


class NoteStore:
    """
    Reads and writes note files inside a vault folder.

    All methods raise ``RuntimeError`` (chained to the underlying OS error)
    when the file operation itself fails, and ``ValueError`` for paths that
    would leave the vault.
    """

    def __init__(self, vault_path: Path):
        """
        Initialize the note store.

        Args:
            vault_path: Root folder of the vault (e.g., ~/Obsidian/Main)
        """
        self.vault_path = Path(vault_path).expanduser().resolve()

    def resolve(self, relative_path: str) -> Path:
        """Map a vault-relative path to an absolute path inside the vault."""
        relative = PurePosixPath(relative_path.replace("\\", "/").lstrip("/"))
        target = (self.vault_path / Path(*relative.parts)).resolve()
        if not target.is_relative_to(self.vault_path):
            raise ValueError(f"Path {relative_path} escapes vault {self.vault_path}")
        return target

    def relative(self, path: Path) -> str:
        return path.resolve().relative_to(self.vault_path).as_posix()

    async def ensure_folder(self, folder: str) -> None:
        """Create a vault folder (and parents) if it doesn't exist."""
        target = self.resolve(folder)
        await aiofiles.os.makedirs(target, exist_ok=True)
        logger.debug(f"Ensured folder exists: {target}")

    async def list_notes(self, folder: str) -> list[str]:
        """
        List markdown files under a vault folder, including subfolders.

        Returns:
            Sorted vault-relative paths of ``.md`` files
        """
        search_path = self.resolve(folder)
        if not search_path.exists():
            logger.debug(f"Folder does not exist: {search_path}")
            return []

        notes = sorted(self.relative(path) for path in search_path.rglob("*.md") if path.is_file())
        logger.debug(f"Found {len(notes)} markdown files in {search_path}")
        return notes

    async def exists(self, relative_path: str) -> bool:
        return await aiofiles.os.path.isfile(self.resolve(relative_path))

    async def read(self, relative_path: str) -> str:
        """
        Read a note.

        Raises:
            FileNotFoundError: If the note doesn't exist
            RuntimeError: If reading fails
        """
        file_path = self.resolve(relative_path)
        if not file_path.exists():
            raise FileNotFoundError(f"Note not found: {relative_path}")

        try:
            async with aiofiles.open(file_path, "r", encoding="utf-8") as f:
                return await f.read()
        except Exception as e:
            logger.error(f"Failed to read note {relative_path}: {e}")
            raise RuntimeError(f"Failed to read note '{relative_path}': {e}") from e

    async def create(self, relative_path: str, content: str) -> None:
        """
        Create a new note.

        Raises:
            FileExistsError: If a file already exists at the path
            RuntimeError: If writing fails
        """
        file_path = self.resolve(relative_path)
        if file_path.exists():
            raise FileExistsError(f"Note already exists: {relative_path}")

        await aiofiles.os.makedirs(file_path.parent, exist_ok=True)
        try:
            async with aiofiles.open(file_path, "x", encoding="utf-8") as f:
                await f.write(content)
        except FileExistsError:
            raise
        except Exception as e:
            logger.error(f"Failed to create note {relative_path}: {e}")
            raise RuntimeError(f"Failed to create note '{relative_path}': {e}") from e

        logger.info(f"Created note: {relative_path}")

    async def write(self, relative_path: str, content: str) -> None:
        """
        Overwrite an existing note.

        Raises:
            RuntimeError: If writing fails
        """
        file_path = self.resolve(relative_path)
        try:
            async with aiofiles.open(file_path, "w", encoding="utf-8") as f:
                await f.write(content)
        except Exception as e:
            logger.error(f"Failed to update note {relative_path}: {e}")
            raise RuntimeError(f"Failed to update note '{relative_path}': {e}") from e

        logger.info(f"Updated note: {relative_path}")

    async def delete(self, relative_path: str) -> bool:
        """
        Delete a note.

        Returns:
            True if the file was removed, False if it was already gone

        Raises:
            RuntimeError: If deletion fails
        """
        file_path = self.resolve(relative_path)
        try:
            if not file_path.exists():
                logger.warning(f"Note already deleted: {relative_path}")
                return False
            await aiofiles.os.remove(file_path)
        except Exception as e:
            logger.error(f"Failed to delete note {relative_path}: {e}")
            raise RuntimeError(f"Failed to delete note '{relative_path}': {e}") from e

        logger.info(f"Deleted note: {relative_path}")
        return True
