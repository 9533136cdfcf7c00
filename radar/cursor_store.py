"""Crash-safe persistence of per-network scan cursors."""
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from radar.models import NetworkCursor

logger = logging.getLogger(__name__)


class CursorStore:
    """
    Last fully scanned block height per network, plus which networks were
    actively scanning so a restart can resume them.

    With ``path=None`` the store lives in memory only.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else None
        self._lock = threading.Lock()
        self._state: Dict[str, Dict[str, Any]] = {"cursors": {}, "active": {}}
        loaded = self._load()
        if loaded:
            self._state["cursors"].update(loaded.get("cursors", {}))
            self._state["active"].update(loaded.get("active", {}))

    def get(self, network: str) -> Optional[int]:
        with self._lock:
            value = self._state["cursors"].get(network)
        return int(value) if value is not None else None

    def cursor(self, network: str) -> Optional[NetworkCursor]:
        height = self.get(network)
        if height is None:
            return None
        return NetworkCursor(network=network, last_scanned_block=height)

    def advance(self, network: str, height: int) -> int:
        """
        Move the cursor forward to ``height``; never moves it backwards.

        Returns:
            The cursor value after the call
        """
        with self._lock:
            current = self._state["cursors"].get(network)
            if current is not None and int(current) >= height:
                return int(current)
            self._state["cursors"][network] = int(height)
            self._save()
        return int(height)

    def set_active(self, network: str, active: bool) -> None:
        with self._lock:
            self._state["active"][network] = bool(active)
            self._save()

    def active_networks(self) -> List[str]:
        with self._lock:
            return [n for n, on in self._state["active"].items() if on]

    def _load(self) -> Optional[Dict[str, Any]]:
        if self.path is None or not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"[CURSOR] Failed to read {self.path}: {e}")
            return None

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self._state, f, indent=2)
        tmp.replace(self.path)
