"""
Persistence adapters for ``ReplyStore``.

An adapter only needs ``load()`` and ``save(state)``. ``load`` returns the
last saved dict or ``None`` when nothing was saved yet.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class StorageAdapter(Protocol):
    def load(self) -> Optional[dict]:
        ...

    def save(self, state: dict) -> None:
        ...


class MemoryStorage:
    """Keeps the last saved state in memory"""

    def __init__(self, initial: Optional[dict] = None):
        self._state = json.loads(json.dumps(initial)) if initial is not None else None
        self.save_count = 0

    def load(self) -> Optional[dict]:
        if self._state is None:
            return None
        return json.loads(json.dumps(self._state))

    def save(self, state: dict) -> None:
        # Stored as a JSON copy so later mutations by the caller are not shared
        self._state = json.loads(json.dumps(state, default=str))
        self.save_count += 1


class JsonFileStorage:
    """Stores the state as a JSON document on disk"""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> Optional[dict]:
        if not self.path.exists():
            return None
        try:
            with self.path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"JsonFileStorage: Failed to load {self.path}: {e}")
            return None

    def save(self, state: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(state, f, ensure_ascii=False, indent=2, default=str)
        os.replace(tmp_path, self.path)
