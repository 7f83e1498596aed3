"""Behavioral memory files injected into the conversation."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ValidationError

from helmsman.logging import get_logger

log = get_logger(__name__)

MEMORY_SUFFIX = ".json"
_NUMBERED_FILE = re.compile(r"^(\d+)_.*\.json$")


class MemoryEntry(BaseModel):
    """One remembered exchange line."""

    role: Literal["user", "assistant"]
    content: str


@dataclass
class MemoryFile:
    name: str
    entries: list[MemoryEntry]


def _memory_filename(name: str) -> str:
    return name if name.endswith(MEMORY_SUFFIX) else name + MEMORY_SUFFIX


class MemoryManager:
    """Reads ``<dir>/*.json`` memory files.

    Files named ``<N>_<name>.json`` are auto-loaded at startup in numeric
    order of ``N``. Other files are only loaded on request.
    """

    def __init__(self, memory_dir: Path | str):
        self.memory_dir = Path(memory_dir).expanduser()

    def _read(self, path: Path) -> list[MemoryEntry]:
        if not path.is_file():
            log.warning("Memory file not found", path=str(path))
            return []
        try:
            data: Any = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            log.error("Failed to load memory file", path=str(path), error=str(e))
            return []
        if not isinstance(data, list):
            log.error("Invalid memory file format (expected array)", path=str(path))
            return []

        entries: list[MemoryEntry] = []
        for index, item in enumerate(data):
            try:
                entries.append(MemoryEntry.model_validate(item))
            except ValidationError:
                log.warning("Invalid memory entry, skipping", path=str(path), index=index)
        return entries

    def list_files(self) -> list[str]:
        """Names of all memory files, sorted."""
        if not self.memory_dir.is_dir():
            return []
        return sorted(p.name for p in self.memory_dir.glob(f"*{MEMORY_SUFFIX}") if p.is_file())

    def load(self, name: str) -> MemoryFile:
        """Load one memory file by name, with or without the ``.json`` suffix."""
        filename = _memory_filename(name)
        entries = self._read(self.memory_dir / filename)
        if entries:
            log.info("Loaded memory file", name=filename, entries=len(entries))
        return MemoryFile(name=filename, entries=entries)

    def auto_load_files(self) -> list[str]:
        numbered: list[tuple[int, str]] = []
        for name in self.list_files():
            match = _NUMBERED_FILE.match(name)
            if match:
                numbered.append((int(match.group(1)), name))
        numbered.sort()
        return [name for _, name in numbered]

    def auto_load(self) -> list[MemoryFile]:
        """Load every numbered memory file; empty files are left out."""
        loaded = [self.load(name) for name in self.auto_load_files()]
        loaded = [memory for memory in loaded if memory.entries]
        if loaded:
            log.info(
                "Auto-loaded memory files",
                files=len(loaded),
                entries=sum(len(m.entries) for m in loaded),
            )
        return loaded
