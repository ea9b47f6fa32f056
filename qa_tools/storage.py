from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, Type, TypeVar

from qa_agents.errors import EvidenceCaptureFailed
from qa_agents.models import Action, Instruction, LearningEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MemoryRepository(Generic[T]):
    """
    Keeps records in a dict keyed by id. Records are stored by reference, like
    an ORM session: `save` assigns an id on first write and returns the record.
    """

    def __init__(self) -> None:
        self._records: Dict[int, T] = {}
        self._next_id = 1
        self._lock = threading.RLock()

    def save(self, record: T) -> T:
        with self._lock:
            if getattr(record, "id", None) is None:
                record.id = self._next_id
            self._next_id = max(self._next_id, record.id + 1)
            self._records[record.id] = record
            self._flush()
        return record

    def get(self, record_id: int) -> Optional[T]:
        with self._lock:
            return self._records.get(record_id)

    def all(self) -> List[T]:
        with self._lock:
            return [self._records[k] for k in sorted(self._records)]

    def find(self, predicate: Callable[[T], bool]) -> List[T]:
        return [r for r in self.all() if predicate(r)]

    def _flush(self) -> None:
        pass


class JsonRepository(MemoryRepository[T]):
    """
    MemoryRepository persisted to a single JSON file. The whole collection is
    rewritten through a temp file and renamed into place on every save.
    """

    def __init__(self, path: Path, record_type: Type[T]) -> None:
        super().__init__()
        self.path = Path(path)
        self.record_type = record_type
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Corrupt repository file {self.path}: {exc}") from exc
        if not isinstance(data, list):
            raise ValueError(f"Unexpected repository format in {self.path}")
        for item in data:
            record = self.record_type.from_dict(item)
            self._records[record.id] = record
            self._next_id = max(self._next_id, record.id + 1)
        logger.debug("storage: loaded %d records from %s", len(self._records), self.path)

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [self._records[k].to_dict() for k in sorted(self._records)]
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(self.path)


class Repositories:
    """The three collections the pipeline reads and writes."""

    def __init__(self, instructions: Any, actions: Any, learning: Any) -> None:
        self.instructions = instructions
        self.actions = actions
        self.learning = learning

    @classmethod
    def in_memory(cls) -> "Repositories":
        return cls(MemoryRepository(), MemoryRepository(), MemoryRepository())

    @classmethod
    def json_dir(cls, directory: Path) -> "Repositories":
        directory = Path(directory)
        return cls(
            JsonRepository(directory / "instructions.json", Instruction),
            JsonRepository(directory / "actions.json", Action),
            JsonRepository(directory / "learning.json", LearningEntry),
        )


class ScreenshotStore:
    """Writes evidence screenshots into the retention directory."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def save(self, name: str, data: bytes) -> str:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path = self.directory / name
            if path.exists():
                stamp = datetime.now().strftime("%Y%m%d%H%M%S%f")
                path = self.directory / f"{path.stem}_{stamp}{path.suffix}"
            path.write_bytes(data)
        except OSError as exc:
            raise EvidenceCaptureFailed(f"could not store {name}: {exc}") from exc
        return str(path)
