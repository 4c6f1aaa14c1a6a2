"""
Record stores backing the lock coordinator

A LockStore holds small JSON-serializable records keyed by name. The
coordinator keeps one store for lock records and one for agent status
records. Nothing here is atomic: ``write_if_absent`` is a check followed by a
write, and the coordinator's re-read verification is what resolves races.
"""

import asyncio
import json
import os
import re
import tempfile
import time
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

import structlog

logger = structlog.get_logger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def safe_key(key: str) -> str:
    """Map a lock scope or agent id onto a filesystem-safe name"""
    return _UNSAFE_KEY_CHARS.sub("_", key)


@runtime_checkable
class LockStore(Protocol):
    """Storage interface for lock and status records"""

    async def read(self, key: str) -> Optional[Dict[str, Any]]: ...

    async def write(self, key: str, record: Dict[str, Any]) -> None: ...

    async def write_if_absent(self, key: str, record: Dict[str, Any]) -> bool: ...

    async def remove(self, key: str) -> bool: ...

    async def list_keys(self) -> List[str]: ...

    async def age_seconds(self, key: str) -> Optional[float]: ...


class FileLockStore:
    """One JSON file per record inside a shared directory"""

    SUFFIX = ".json"

    def __init__(self, directory: str):
        self.directory = directory
        os.makedirs(directory, exist_ok=True)

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, safe_key(key) + self.SUFFIX)

    def _read_sync(self, key: str) -> Optional[Dict[str, Any]]:
        path = self._path(key)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Unreadable coordination record", path=path, error=str(e))
            return None

    def _write_sync(self, key: str, record: Dict[str, Any]) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".tmp-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record, f, indent=2, default=str)
            os.replace(tmp_path, self._path(key))
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _write_if_absent_sync(self, key: str, record: Dict[str, Any]) -> bool:
        if os.path.exists(self._path(key)):
            return False
        self._write_sync(key, record)
        return True

    def _remove_sync(self, key: str) -> bool:
        try:
            os.unlink(self._path(key))
            return True
        except FileNotFoundError:
            return False

    def _list_sync(self) -> List[str]:
        return sorted(
            name[: -len(self.SUFFIX)]
            for name in os.listdir(self.directory)
            if name.endswith(self.SUFFIX) and not name.startswith(".")
        )

    def _age_sync(self, key: str) -> Optional[float]:
        try:
            return time.time() - os.path.getmtime(self._path(key))
        except FileNotFoundError:
            return None

    async def read(self, key: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self._read_sync, key)

    async def write(self, key: str, record: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._write_sync, key, record)

    async def write_if_absent(self, key: str, record: Dict[str, Any]) -> bool:
        return await asyncio.to_thread(self._write_if_absent_sync, key, record)

    async def remove(self, key: str) -> bool:
        return await asyncio.to_thread(self._remove_sync, key)

    async def list_keys(self) -> List[str]:
        return await asyncio.to_thread(self._list_sync)

    async def age_seconds(self, key: str) -> Optional[float]:
        return await asyncio.to_thread(self._age_sync, key)


class InMemoryLockStore:
    """Dict-backed store; share one instance between coordinators to simulate processes"""

    def __init__(self):
        self._records: Dict[str, Tuple[Dict[str, Any], float]] = {}

    async def read(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self._records.get(safe_key(key))
        # Yield like real I/O so concurrent coordinators interleave
        await asyncio.sleep(0)
        return dict(entry[0]) if entry else None

    async def write(self, key: str, record: Dict[str, Any]) -> None:
        await asyncio.sleep(0)
        self._records[safe_key(key)] = (dict(record), time.time())

    async def write_if_absent(self, key: str, record: Dict[str, Any]) -> bool:
        if safe_key(key) in self._records:
            return False
        await self.write(key, record)
        return True

    async def remove(self, key: str) -> bool:
        await asyncio.sleep(0)
        return self._records.pop(safe_key(key), None) is not None

    async def list_keys(self) -> List[str]:
        return sorted(self._records)

    async def age_seconds(self, key: str) -> Optional[float]:
        entry = self._records.get(safe_key(key))
        return time.time() - entry[1] if entry else None
