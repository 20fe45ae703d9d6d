"""
Client-side key-value state.

Holds the few values that survive a restart on one device: the last
selected account id and the last selected family id. Nothing here is
authoritative; a missing or corrupt file just means "no preference".
"""

import json
from pathlib import Path
from typing import Optional, Union

import structlog


logger = structlog.get_logger(__name__)

CURRENT_ACCOUNT_KEY = "currentAccountId"
SELECTED_FAMILY_KEY = "selectedFamilyId"


class StateStore:
    """String key-value store kept in memory."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        if self._values.pop(key, None) is not None:
            self._flush()

    def _flush(self) -> None:
        pass


class JsonFileStateStore(StateStore):
    """
    StateStore persisted to a small JSON file.

    Write failures are logged and the in-memory value is kept, so the
    current session still behaves as if the write succeeded.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()
        super().__init__(self._read())

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("state_file_unreadable", path=str(self.path), error=str(e))
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _flush(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(self._values, indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning("state_file_write_failed", path=str(self.path), error=str(e))
