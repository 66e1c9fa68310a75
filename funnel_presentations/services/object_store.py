"""Local filesystem object store for generated slide media.

Objects live under ``{media_dir}/{bucket}/{path}`` and are served by the
``/media`` static mount in main.py.
"""

import logging
import os
from pathlib import Path, PurePosixPath

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)


class LocalObjectStore:
    """Durable storage backed by a local directory."""

    def __init__(self, media_dir: str, bucket: str, base_url: str):
        self.root = Path(media_dir) / bucket
        self.bucket = bucket
        self.base_url = base_url.rstrip("/")

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise ValueError(f"Invalid storage path: {path}")
        return self.root.joinpath(*relative.parts)

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        """Write ``data`` to ``path`` (upsert).

        Written to a temp file first and renamed so readers never see a
        partial object.

        Raises:
            OSError: If the file cannot be written.
        """
        target = self._resolve(path)
        await aiofiles.os.makedirs(target.parent, exist_ok=True)
        tmp_path = target.with_name(f".{target.name}.part")
        async with aiofiles.open(tmp_path, "wb") as f:
            await f.write(data)
        os.replace(tmp_path, target)
        logger.debug(
            f"Stored object {path} ({len(data)} bytes)",
            extra={"storage_path": path, "content_type": content_type, "size_bytes": len(data)},
        )

    def public_url(self, path: str) -> str:
        self._resolve(path)
        return f"{self.base_url}/{self.bucket}/{path}"
