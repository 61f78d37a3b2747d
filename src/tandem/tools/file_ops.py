"""
Sandboxed file operations.

All operations are confined to one flat root directory.  They never raise for ordinary failures:
problems are reported as :class:`~tandem.core.schema.ToolStatus` strings so the model (and the
user) can read them, and the executor can tell a failure or a no-op from a success.  The only
exception is :meth:`SandboxedFiles.read_many` receiving something that is not a list of names,
which yields a single error mapping instead of per-name entries.
"""

import asyncio
import logging
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
    Sequence,
)

from tandem.core.schema import ToolStatus
from tandem.tools import ToolRegistry

logger = logging.getLogger(__name__)

READ_ERROR_PREFIX = "Error reading file"


class InvalidFileNameError(ValueError):
    """Raised internally when a name would escape the sandbox root."""


def validate_file_name(name: Any) -> str:
    """
    Reject names that are not plain file names.

    Parameters
    ----------
    name:
        The requested file name.

    Returns
    -------
    str
        The name, unchanged.

    Raises
    ------
    InvalidFileNameError
        If *name* is empty, not a string, or contains ``..`` or a path separator.
    """
    if not isinstance(name, str) or not name.strip():
        raise InvalidFileNameError("Invalid file name.")
    if ".." in name or "/" in name or "\\" in name:
        raise InvalidFileNameError("Invalid file name.")
    return name


class SandboxedFiles:
    """File primitives rooted at a single directory."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def _path(self, name: str) -> Path:
        return self.root / validate_file_name(name)

    # ------------------------------------------------------------------
    async def list_files(self) -> List[str]:
        """Return the sorted file names in the root, or ``[]`` if it cannot be read."""
        logger.info("Listing files in %s", self.root)
        try:
            entries = await asyncio.to_thread(lambda: sorted(p.name for p in self.root.iterdir()))
        except OSError as exc:
            logger.error("Could not list %s: %s", self.root, exc)
            return []
        logger.info("Found %d files", len(entries))
        return entries

    # ------------------------------------------------------------------
    async def read_many(self, names: Sequence[str]) -> Dict[str, str]:
        """
        Read every file in *names*.

        One unreadable file does not abort the batch: its entry holds an error string instead of
        the content, so the result always has exactly one key per requested name.
        """
        if isinstance(names, (str, bytes)) or not isinstance(names, (list, tuple)):
            logger.error("read_many called without a list of names: %r", names)
            return {"error": "Invalid input: file_name must be a list."}

        logger.info("Reading context from: %s", ", ".join(map(str, names)))
        results: Dict[str, str] = {}
        for name in names:
            key = str(name)
            try:
                path = self._path(name)
                if not path.is_file():
                    raise FileNotFoundError(f'File "{name}" not found.')
                results[key] = await asyncio.to_thread(path.read_text, encoding="utf-8")
            except (OSError, ValueError) as exc:
                logger.warning("Could not read %s: %s", key, exc)
                results[key] = f'{READ_ERROR_PREFIX} "{key}": {exc}'
        return results

    # ------------------------------------------------------------------
    async def create(self, name: str, content: str) -> ToolStatus:
        """Write *content* to *name*, replacing any existing file."""
        try:
            path = self._path(name)
            logger.info("Creating file %s", path)
            await asyncio.to_thread(path.write_text, content, encoding="utf-8")
        except (OSError, ValueError, TypeError) as exc:
            message = f'Error creating file "{name}": {exc}'
            logger.error(message)
            return ToolStatus(message, ok=False)
        message = f'File "{name}" created successfully.'
        logger.info(message)
        return ToolStatus(message)

    # ------------------------------------------------------------------
    async def modify(self, name: str, search: str, replacement: str) -> ToolStatus:
        """Replace the first exact occurrence of *search* in *name* with *replacement*."""
        try:
            path = self._path(name)
            logger.info("Modifying file %s", path)
            if not path.is_file():
                raise FileNotFoundError(f'File "{name}" not found.')
            current = await asyncio.to_thread(path.read_text, encoding="utf-8")
            if search not in current:
                message = (
                    f'Warning: the snippet "{search}" was not found in "{name}". No changes made.'
                )
                logger.warning(message)
                return ToolStatus(message, ok=False)
            updated = current.replace(search, replacement, 1)
            await asyncio.to_thread(path.write_text, updated, encoding="utf-8")
        except (OSError, ValueError, TypeError) as exc:
            message = f'Error modifying file "{name}": {exc}'
            logger.error(message)
            return ToolStatus(message, ok=False)
        message = f'File "{name}" modified successfully.'
        logger.info(message)
        return ToolStatus(message)


def build_programmer_registry(files: SandboxedFiles) -> ToolRegistry:
    """Create the default programmer tools bound to *files*."""
    registry = ToolRegistry()

    @registry.register("create_file")
    async def create_file(file_name: str, file_content: str) -> ToolStatus:
        return await files.create(file_name, file_content)

    @registry.register("modify_file")
    async def modify_file(file_name: str, piece_to_replace: str, replace_with: str) -> ToolStatus:
        return await files.modify(file_name, piece_to_replace, replace_with)

    return registry
