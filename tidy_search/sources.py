"""Image sources for an indexing run.

Two mutually exclusive strategies, picked from settings at run start:

    MediaLibrarySource   every image asset in the system photo library
                         (Apple Photos `Photos.sqlite`, read-only)
    FolderSource         recursive walk of one user-selected folder

Both return the complete list up front so the run knows its total before
processing the first image.
"""

import logging
import mimetypes
import os
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from config import DEFAULT_MEDIA_LIBRARY
from store import DocumentSource, MediaIndexSource, SourceId

logger = logging.getLogger(__name__)

SUPPORTED_UTIS = {
    "public.jpeg",
    "public.png",
    "public.heic",
    "public.heif",
    "public.tiff",
    "com.apple.quicktime-image",
}

# Apple epoch offset: seconds between 1970-01-01 and 2001-01-01
_APPLE_EPOCH_OFFSET = 978307200

_SCAN_QUERY = """
SELECT
    ZASSET.Z_PK,
    ZASSET.ZDIRECTORY,
    ZASSET.ZFILENAME,
    ZASSET.ZCLOUDBATCHPUBLISHDATE,
    ZASSET.ZMODIFICATIONDATE,
    ZASSET.ZDATECREATED
FROM ZASSET
WHERE ZASSET.ZTRASHEDSTATE = 0
  AND ZASSET.ZKIND = 0
  AND ZASSET.ZCOMPLETE = 1
  AND ZASSET.ZUNIFORMTYPEIDENTIFIER IN ({placeholders})
ORDER BY ZASSET.Z_PK
"""

# Extensions the mimetypes table may not know about
mimetypes.add_type("image/heic", ".heic")
mimetypes.add_type("image/heif", ".heif")
mimetypes.add_type("image/webp", ".webp")


class EnumerationError(Exception):
    """The source could not be listed at all; the run must abort."""


class InvalidFolderError(EnumerationError):
    """The selected folder does not exist or is not a directory."""


@dataclass(frozen=True)
class SourceItem:
    source: SourceId
    modified_at: int  # ms since epoch
    path: Path

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()


class ImageSource(Protocol):
    def enumerate(self) -> list[SourceItem]: ...


def apple_epoch_to_ms(ts: float | None) -> int | None:
    """Convert an Apple epoch timestamp (seconds since 2001) to ms since 1970."""
    if ts is None:
        return None
    try:
        return int(round((float(ts) + _APPLE_EPOCH_OFFSET) * 1000))
    except (TypeError, ValueError, OverflowError):
        return None


def is_image_file(path: Path) -> bool:
    mime, _ = mimetypes.guess_type(path.name)
    return mime is not None and mime.startswith("image/")


# ---------------------------------------------------------------------------
# Strategy A: system media library
# ---------------------------------------------------------------------------


class MediaLibrarySource:
    """Every still image in an Apple Photos library, keyed by asset primary key."""

    def __init__(self, library_path: Path | None = None):
        self.library_path = Path(library_path) if library_path else DEFAULT_MEDIA_LIBRARY

    def _resolve_path(self, directory: str, filename: str, cloud_batch_date) -> Path:
        if directory.startswith("/"):
            return Path(directory) / filename
        if cloud_batch_date is not None:
            return self.library_path / "scopes" / "cloudsharing" / "data" / directory / filename
        return self.library_path / "originals" / directory / filename

    def enumerate(self) -> list[SourceItem]:
        db_path = self.library_path / "database" / "Photos.sqlite"
        if not db_path.exists():
            raise EnumerationError(f"Photos database not found: {db_path}")

        logger.info("Scanning Photos library: %s", self.library_path)
        placeholders = ", ".join("?" for _ in SUPPORTED_UTIS)
        query = _SCAN_QUERY.format(placeholders=placeholders)

        try:
            conn = sqlite3.connect(f"file:{db_path}?mode=ro", uri=True)
            try:
                rows = conn.execute(query, sorted(SUPPORTED_UTIS)).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise EnumerationError(f"Photos library query failed: {exc}") from exc

        items: list[SourceItem] = []
        for zpk, directory, filename, cloud_batch_date, modified, created in rows:
            if not directory or not filename:
                continue
            path = self._resolve_path(directory, filename, cloud_batch_date)
            if not path.exists():
                continue
            modified_at = apple_epoch_to_ms(modified)
            if modified_at is None:
                modified_at = apple_epoch_to_ms(created) or 0
            items.append(SourceItem(MediaIndexSource(int(zpk)), modified_at, path))

        skipped = len(rows) - len(items)
        if skipped:
            logger.info("Skipped %d missing or iCloud-only photos", skipped)
        logger.info("Found %d on-disk photos", len(items))
        return items


# ---------------------------------------------------------------------------
# Strategy B: user-selected folder
# ---------------------------------------------------------------------------


class FolderSource:
    """Recursive walk of one folder, collecting files with an image media type."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def enumerate(self) -> list[SourceItem]:
        if not self.root.is_dir():
            raise InvalidFolderError(f"Not a directory: {self.root}")

        items: list[SourceItem] = []
        self._walk(self.root, items)
        logger.info("Found %d images in %s", len(items), self.root)
        return items

    def _walk(self, directory: Path, items: list[SourceItem]) -> None:
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError:
            logger.warning("Error listing files in directory: %s", directory, exc_info=True)
            return

        for entry in entries:
            path = Path(entry.path)
            try:
                if entry.is_dir(follow_symlinks=False):
                    self._walk(path, items)
                elif entry.is_file() and is_image_file(path):
                    mtime = entry.stat().st_mtime
                    items.append(
                        SourceItem(
                            DocumentSource(path.resolve().as_uri()),
                            int(mtime * 1000),
                            path,
                        )
                    )
            except OSError:
                logger.warning("Error accessing file/directory: %s", path, exc_info=True)


def select_source(selected_folder: str | None, media_library: str | None = None) -> ImageSource:
    """Folder strategy when a folder is selected, system library otherwise."""
    if selected_folder:
        logger.info("Folder selected, indexing: %s", selected_folder)
        return FolderSource(Path(selected_folder))
    logger.info("No folder selected, indexing the system photo library")
    return MediaLibrarySource(Path(media_library) if media_library else None)
