# ═══════════════════════════════════════════════════════════════════════════════
# NOTEPAD STORE
# ═══════════════════════════════════════════════════════════════════════════════
import time
from typing import Any, Dict, List, Optional

from infra.logger import logger_executor


class _Absent:
    """Sentinel returned for keys that were never written"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "ABSENT"


ABSENT = _Absent()


class NotepadStore:
    """
    Per-run key/value store passing data between steps.

    Writes overwrite (last writer wins). Reading a key that was never
    written returns ABSENT, which is distinct from a stored None.

    Example:
        >>> notepad = NotepadStore()
        >>> notepad.write("prices", [19.99, 24.5])
        >>> notepad.read("prices")
        [19.99, 24.5]
        >>> notepad.read("missing") is ABSENT
        True
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._entries: Dict[str, Dict[str, Any]] = {}
        for key, value in (initial or {}).items():
            self.write(key, value)

    def write(self, key: str, value: Any):
        """Store value under key, replacing any previous value"""
        self._entries[key] = {"data": value, "updated_at": time.time()}

        logger_executor.debug(
            f"NOTEPAD_WRITE | key={key} | type={type(value).__name__}"
            + (f" | items={len(value)}" if isinstance(value, (list, dict)) else "")
        )

    def read(self, key: str, default: Any = ABSENT) -> Any:
        """Read a value; ABSENT (or default) if the key was never written"""
        entry = self._entries.get(key)
        if entry is None:
            return default
        return entry["data"]

    def has(self, key: str) -> bool:
        return key in self._entries

    def clear(self, key: Optional[str] = None):
        """Clear one key, or everything when key is None"""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def read_all(self) -> Dict[str, Any]:
        """Snapshot of every stored value, in write order"""
        return {key: entry["data"] for key, entry in self._entries.items()}

    def keys(self) -> List[str]:
        return list(self._entries)

    def __len__(self):
        return len(self._entries)
