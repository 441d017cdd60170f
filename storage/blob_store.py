"""Key-value blob storage for pipeline inputs and outputs."""
import asyncio
import logging
import os
import tempfile
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".json": "application/json",
    ".jsonl": "application/x-ndjson",
}


def content_type_for(key: str) -> str:
    for suffix, content_type in CONTENT_TYPES.items():
        if key.endswith(suffix):
            return content_type
    return "application/octet-stream"


def validate_key(key: str) -> str:
    """Keys are flat file names; anything path-like is rejected."""
    if not key or key in (".", "..") or "/" in key or "\\" in key or "\x00" in key:
        raise ValueError(f"Invalid blob key: {key!r}")
    return key


class BlobStore(Protocol):
    """What the pipeline needs from storage: get and put by string key."""

    async def get(self, key: str) -> Optional[bytes]:
        """Return the stored bytes, or None when the key does not exist."""
        ...

    async def put(self, key: str, data: bytes) -> None:
        ...


class FileBlobStore:
    """Blobs as files in one directory, ready to be served statically."""

    def __init__(self, root: str = "data/blobs"):
        self.root = root

    async def init(self):
        os.makedirs(self.root, exist_ok=True)
        logger.info("File blob store initialized", extra={"path": self.root})

    async def close(self):
        pass

    def _path(self, key: str) -> str:
        return os.path.join(self.root, validate_key(key))

    async def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        return await asyncio.to_thread(self._read, path)

    async def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        await asyncio.to_thread(self._write, path, data)
        logger.debug("Blob written", extra={"key": key, "bytes": len(data)})

    @staticmethod
    def _read(path: str) -> Optional[bytes]:
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def _write(self, path: str, data: bytes):
        os.makedirs(self.root, exist_ok=True)
        # Readers never see a half-written file
        fd, tmp_path = tempfile.mkstemp(dir=self.root, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
