"""Artifact storage for rendered report files.

Local filesystem under OBJECT_STORAGE_PATH. Keys are relative paths
(``reports/<execution_id>.<ext>``) so an S3-compatible backend can take
over with the same put/get interface.
"""

import hashlib
from pathlib import Path

from src.reporting.errors import ReportNotFoundError


class ArtifactStorage:
    def __init__(self, storage_root: str | Path) -> None:
        self._root = Path(storage_root)

    @staticmethod
    def checksum(content: bytes) -> str:
        return f"sha256:{hashlib.sha256(content).hexdigest()}"

    def put(self, key: str, content: bytes) -> int:
        """Write ``content`` under ``key``; returns the byte size."""
        dest = self._root / key
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(content)
        return len(content)

    def get(self, key: str) -> bytes:
        path = self._root / key
        if not key or not path.is_file():
            msg = f"artifact not found at storage key: {key!r}"
            raise ReportNotFoundError(msg)
        return path.read_bytes()

    def exists(self, key: str) -> bool:
        return bool(key) and (self._root / key).is_file()
