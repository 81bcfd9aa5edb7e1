from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from uuid import uuid4

DIAGRAM_CATEGORY = "diagrams"
IMAGE_CATEGORY = "images"
DOCUMENT_CATEGORY = "documents"
CATEGORIES = {DIAGRAM_CATEGORY, IMAGE_CATEGORY, DOCUMENT_CATEGORY}

logger = logging.getLogger(__name__)


class FileStorageError(Exception):
    pass


class FileNotStoredError(FileStorageError):
    pass


@dataclass(frozen=True)
class StoredFile:
    category: str
    filename: str
    original_name: str
    size_bytes: int


class LocalFileStorageAdapter:
    def __init__(self, root_dir: Path) -> None:
        self._root_dir = root_dir
        self._root_dir.mkdir(parents=True, exist_ok=True)

    def _safe_path(self, category: str, filename: str) -> Path:
        if category not in CATEGORIES:
            raise FileStorageError(f"unknown file category: {category}")
        name_path = PurePosixPath(filename)
        if name_path.is_absolute() or ".." in name_path.parts or len(name_path.parts) != 1:
            raise FileStorageError("invalid filename")
        return self._root_dir / category / name_path.name

    def put_bytes(self, *, category: str, filename: str, content: bytes) -> Path:
        path = self._safe_path(category, filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return path

    def delete(self, *, category: str, filename: str) -> bool:
        path = self._safe_path(category, filename)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as exc:
            raise FileStorageError(f"failed to delete {category}/{filename}: {exc}") from exc
        return True

    def get_path(self, *, category: str, filename: str) -> Path:
        path = self._safe_path(category, filename)
        if not path.exists() or not path.is_file():
            raise FileNotStoredError("file not found")
        return path


class FileStorageService:
    def __init__(self, root_dir: Path | None = None) -> None:
        root = root_dir or Path(os.getenv("FILE_STORAGE_ROOT", "data/uploads"))
        self._adapter = LocalFileStorageAdapter(root)

    def build_filename(self, original_name: str) -> str:
        suffix = PurePosixPath(original_name.replace("\\", "/")).suffix.lower()
        return f"{uuid4().hex}{suffix}"

    def save(self, *, category: str, original_name: str, content: bytes) -> StoredFile:
        if not content:
            raise FileStorageError("empty upload")
        filename = self.build_filename(original_name)
        self._adapter.put_bytes(category=category, filename=filename, content=content)
        logger.info("stored %s/%s (%d bytes)", category, filename, len(content))
        return StoredFile(
            category=category,
            filename=filename,
            original_name=original_name,
            size_bytes=len(content),
        )

    def delete_quietly(self, *, category: str, filename: str) -> None:
        try:
            self._adapter.delete(category=category, filename=filename)
        except FileStorageError:
            logger.warning("could not remove stored file %s/%s", category, filename, exc_info=True)

    def get_path(self, *, category: str, filename: str) -> Path:
        return self._adapter.get_path(category=category, filename=filename)
