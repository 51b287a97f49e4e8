"""
Local session-correlation state: flow id -> {chatId, lead?}.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

STATE_FILE = Path.home() / ".chatflow" / "state.json"


class MemoryStateStore:
    def __init__(self, initial: Optional[dict[str, dict[str, Any]]] = None) -> None:
        self._data: dict[str, dict[str, Any]] = dict(initial or {})

    def _load(self) -> dict[str, dict[str, Any]]:
        return self._data

    def _save(self, data: dict[str, dict[str, Any]]) -> None:
        self._data = data

    def get_flow(self, flow_id: str) -> dict[str, Any]:
        return dict(self._load().get(flow_id) or {})

    def set_flow(self, flow_id: str, chat_id: str, lead: Optional[dict[str, Any]] = None) -> None:
        """Merge chatId (and lead, when given) into the flow's record."""
        data = self._load()
        record = dict(data.get(flow_id) or {})
        record["chatId"] = chat_id
        if lead is not None:
            record["lead"] = lead
        data[flow_id] = record
        self._save(data)

    def remove_flow(self, flow_id: str) -> None:
        data = self._load()
        if data.pop(flow_id, None) is not None:
            self._save(data)


class JsonFileStateStore(MemoryStateStore):
    """Same contract as MemoryStateStore, persisted to a JSON file."""

    def __init__(self, path: Path = STATE_FILE) -> None:
        super().__init__()
        self.path = path

    def _load(self) -> dict[str, dict[str, Any]]:
        try:
            return json.loads(self.path.read_text())
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError:
            logger.warning("Ignoring corrupt state file %s", self.path)
            return {}

    def _save(self, data: dict[str, dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2))
