"""
Append-only audit log for published events
"""

import asyncio
import os
from typing import List, Protocol, runtime_checkable


@runtime_checkable
class EventLogSink(Protocol):
    async def append(self, line: str) -> None: ...

    async def close(self) -> None: ...


class FileEventLog:
    """One line per event: {timestamp}|{type}|{source}|{id}|{payload_json}"""

    def __init__(self, path: str):
        self.path = path
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._lock = asyncio.Lock()

    def _append_sync(self, line: str):
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line.rstrip("\n") + "\n")

    async def append(self, line: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self._append_sync, line)

    async def close(self) -> None:
        async with self._lock:
            pass


class MemoryEventLog:
    """Keeps log lines in a list"""

    def __init__(self):
        self.lines: List[str] = []

    async def append(self, line: str) -> None:
        self.lines.append(line)

    async def close(self) -> None:
        return None
