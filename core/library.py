import copy
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from pydantic import ValidationError

from app.config import FUNCTION_LIBRARY_PATH
from tools.schemas import CompiledFunction
from infra.logger import logger_compiler


# ═══════════════════════════════════════════════════════════════════════════════
# FUNCTION LIBRARY
# ═══════════════════════════════════════════════════════════════════════════════

class FunctionLibrary(Protocol):
    """Name-keyed store of compiled functions (wire-form dicts)"""

    def get_all(self) -> Dict[str, Dict[str, Any]]:
        ...

    def set_all(self, functions: Dict[str, Dict[str, Any]]):
        ...


class _LibraryHelpers:
    """Lookups shared by the concrete libraries"""

    def names(self) -> List[str]:
        return list(self.get_all())

    def get(self, name: str) -> Optional[CompiledFunction]:
        """Load one compiled function; None if missing or unreadable"""
        entry = self.get_all().get(name)
        if entry is None:
            return None
        try:
            return CompiledFunction.model_validate(entry)
        except ValidationError as e:
            logger_compiler.warning(f"LIBRARY_ENTRY_INVALID | name={name} | errors={e.error_count()}")
            return None

    def remove(self, name: str) -> bool:
        functions = self.get_all()
        if name not in functions:
            return False
        del functions[name]
        self.set_all(functions)
        logger_compiler.info(f"LIBRARY_REMOVE | name={name}")
        return True


class InMemoryFunctionLibrary(_LibraryHelpers):
    """Library held in memory; used by tests and one-off runs"""

    def __init__(self, functions: Optional[Dict[str, Dict[str, Any]]] = None):
        self._functions = copy.deepcopy(functions or {})

    def get_all(self) -> Dict[str, Dict[str, Any]]:
        return copy.deepcopy(self._functions)

    def set_all(self, functions: Dict[str, Dict[str, Any]]):
        self._functions = copy.deepcopy(functions)


class JsonFunctionLibrary(_LibraryHelpers):
    """
    Library persisted as one JSON object on disk.

    - Missing file reads as an empty library
    - Corrupted files are logged and read as empty
    - Saving over a corrupted file first moves it aside to
      "<name>.corrupt" (then ".corrupt2", ...), so nothing is lost
    - Parent directory is created on first save
    """

    def __init__(self, path: str = FUNCTION_LIBRARY_PATH):
        self._path = Path(path)

    def get_all(self) -> Dict[str, Dict[str, Any]]:
        data = self._load()
        return data if data is not None else {}

    def set_all(self, functions: Dict[str, Dict[str, Any]]):
        if self._path.exists() and self._load() is None:
            self._quarantine()

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as f:
                json.dump(functions, f, indent=2, ensure_ascii=False)
        except (IOError, OSError) as e:
            logger_compiler.error(f"LIBRARY_SAVE_FAILED | path={self._path} | error={str(e)[:100]}")
            raise

        logger_compiler.debug(f"LIBRARY_SAVED | path={self._path} | functions={len(functions)}")

    def _load(self) -> Optional[Dict[str, Dict[str, Any]]]:
        """Parsed library; {} when missing, None when unreadable"""
        if not self._path.exists():
            return {}

        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger_compiler.warning(f"LIBRARY_LOAD_FAILED | path={self._path} | error={str(e)[:100]}")
            return None

        if not isinstance(data, dict):
            logger_compiler.warning(f"LIBRARY_LOAD_FAILED | path={self._path} | error=not a JSON object")
            return None
        return data

    def _quarantine(self) -> Path:
        target = self._path.with_name(f"{self._path.name}.corrupt")
        suffix = 2
        while target.exists():
            target = self._path.with_name(f"{self._path.name}.corrupt{suffix}")
            suffix += 1

        self._path.replace(target)
        logger_compiler.warning(f"LIBRARY_QUARANTINED | path={self._path} | moved_to={target}")
        return target
