"""Bounded key-value areas backing session persistence.

Both areas account for a record as the UTF-8 size of its key plus its
value, and refuse a write that would push the total over the quota.
"""

import logging
import os
from pathlib import Path
from typing import Protocol
from urllib.parse import quote, unquote

from src.chat.errors import QuotaExceededError

logger = logging.getLogger(__name__)


def record_size(key: str, value: str) -> int:
    """Bytes a record occupies in an area."""
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class KeyValueArea(Protocol):
    """String key-value storage with a byte quota."""

    quota_bytes: int

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> bool: ...

    def keys(self) -> list[str]: ...


class MemoryArea:
    """In-process area, used in tests and when no storage directory is set."""

    def __init__(self, quota_bytes: int) -> None:
        self.quota_bytes = quota_bytes
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        used = sum(record_size(k, v) for k, v in self._data.items() if k != key)
        needed = record_size(key, value)
        if used + needed > self.quota_bytes:
            raise QuotaExceededError(
                f"Writing {key} needs {needed} bytes, {self.quota_bytes - used} available"
            )
        self._data[key] = value

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self) -> list[str]:
        return list(self._data)


class FileArea:
    """Area stored as one JSON file per key under a directory.

    Args:
        root: Directory holding the records. Created if missing.
        quota_bytes: Maximum total record size.
    """

    SUFFIX = ".json"

    def __init__(self, root: Path | str, quota_bytes: int) -> None:
        self.root = Path(root)
        self.quota_bytes = quota_bytes
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root / f"{quote(key, safe='')}{self.SUFFIX}"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        used = 0
        for other in self.keys():
            if other == key:
                continue
            stored = self.get(other)
            if stored is not None:
                used += record_size(other, stored)
        needed = record_size(key, value)
        if used + needed > self.quota_bytes:
            raise QuotaExceededError(
                f"Writing {key} needs {needed} bytes, {self.quota_bytes - used} available"
            )

        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        os.replace(tmp, path)

    def delete(self, key: str) -> bool:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def keys(self) -> list[str]:
        return [
            unquote(path.name[: -len(self.SUFFIX)])
            for path in sorted(self.root.glob(f"*{self.SUFFIX}"))
        ]
