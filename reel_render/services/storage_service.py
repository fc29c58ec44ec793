"""Local working storage.

Layout under ``settings.storage_root``::

    uploads/   transient request uploads (deleted when their job finishes)
    outputs/   processed videos from /process-video
    exports/   rendered exports
    work/      per-job scratch directories

Everything here is disposable cache and is wiped by clear-cache.
"""

import logging
import re
import shutil
import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from reel_render.config import Settings, get_settings

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(name: str, default: str = "file") -> str:
    """Strip directories and anything but a conservative character set."""
    base = Path(name or "").name
    cleaned = _UNSAFE_CHARS.sub("_", base).strip("._")
    return cleaned or default


@dataclass(frozen=True)
class SavedUpload:
    original_name: str
    path: Path


class WorkspaceStorage:
    """Local file storage for uploads, outputs and exports."""

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self.root = Path(settings.storage_root)
        self.uploads_dir = settings.uploads_dir
        self.outputs_dir = settings.outputs_dir
        self.exports_dir = settings.exports_dir
        self.work_dir = self.root / "work"

    @property
    def cache_dirs(self) -> list[Path]:
        return [self.outputs_dir, self.exports_dir, self.uploads_dir]

    def ensure_dirs(self) -> None:
        for directory in (*self.cache_dirs, self.work_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def save_upload(self, filename: str | None, file_obj: BinaryIO) -> SavedUpload:
        """Copy an uploaded file into uploads/ under a unique name."""
        original = filename or "upload"
        path = self.uploads_dir / f"{uuid.uuid4().hex}-{safe_filename(original)}"
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("wb") as out:
            shutil.copyfileobj(file_obj, out)
        logger.debug(f"[STORAGE] Saved upload {original} -> {path.name}")
        return SavedUpload(original_name=original, path=path)

    def processed_output_path(self, job_id: str) -> Path:
        return self.outputs_dir / f"processed-{job_id}.mp4"

    def export_output_path(self, job_id: str, stem: str, fmt: str) -> Path:
        """Unique per job so concurrent exports with one filename never collide."""
        return self.exports_dir / f"{safe_filename(stem, 'export')}-{job_id}.{fmt}"

    @contextmanager
    def job_workspace(self, job_id: str) -> Iterator[Path]:
        """Scratch directory for one job, removed on every exit path."""
        path = self.work_dir / job_id
        path.mkdir(parents=True, exist_ok=True)
        try:
            yield path
        finally:
            shutil.rmtree(path, ignore_errors=True)
            logger.debug(f"[STORAGE] Removed workspace {path}")

    def delete_files(self, paths: Iterable[str | Path | None]) -> int:
        deleted = 0
        for p in paths:
            if p is None:
                continue
            path = Path(p)
            try:
                path.unlink()
                deleted += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"[STORAGE] Could not delete {path}: {e}")
        return deleted

    def _entries(self) -> list[Path]:
        entries: list[Path] = []
        for directory in self.cache_dirs:
            if directory.exists():
                entries.extend(directory.iterdir())
        return entries

    def cache_status(self) -> tuple[bool, int]:
        count = len(self._entries())
        return count > 0, count

    def clear_cache(self) -> int:
        """Delete every entry in the cache directories and return the count."""
        deleted = 0
        for entry in self._entries():
            try:
                if entry.is_dir():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
                deleted += 1
            except OSError as e:
                logger.warning(f"[CACHE] Could not delete {entry}: {e}")
        logger.info(f"[CACHE] Cache cleared: {deleted} files deleted")
        return deleted
