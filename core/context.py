"""
Execution Context

Everything a run needs is carried explicitly on one context object: the
tool registry, the run's notepad, the tab handle and credential, the
cooperative cancellation signal, and an optional host surface for
screenshots. Two runs with two contexts share nothing.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol

from core.errors import UserAbort
from core.notepad import NotepadStore
from tools.registry import ToolCallContext, ToolRegistry
from infra.logger import logger_executor


class HostSurface(Protocol):
    """Browser / desktop surface the tools act on"""

    def capture_snapshot(self, handle: Any) -> Optional[str]:
        """Return an image (data URL) of the surface, or None"""
        ...

    def current_url(self, handle: Any) -> Optional[str]:
        ...


StatusCallback = Callable[[str, Dict[str, Any]], None]


def _ignore_status(message: str, event: Dict[str, Any]):
    pass


@dataclass
class ExecutionContext:
    """
    Per-run dependencies threaded through resolver, engine, verifier and
    replay.

    Attributes:
        registry: Tools available to the run
        notepad: The run's notepad (shared by all repair attempts)
        tab_handle: Handle of the controlled tab/surface, if any
        credential: Credential substituted for {{apiKey}}
        inputs: Compiled-function inputs for {{input:name}} tokens
        cancel_event: Set to stop the run cooperatively
        host: Optional host surface used for screenshots
        on_status: Progress callback (message, event)
        capture_screenshots: Capture a snapshot after each step
        run_id: Identifier used in logs
    """
    registry: ToolRegistry
    notepad: NotepadStore = field(default_factory=NotepadStore)
    tab_handle: Any = None
    credential: Optional[str] = None
    inputs: Dict[str, Any] = field(default_factory=dict)
    cancel_event: threading.Event = field(default_factory=threading.Event)
    host: Optional[HostSurface] = None
    on_status: StatusCallback = _ignore_status
    capture_screenshots: bool = True
    run_id: Optional[str] = None

    # ---------- cancellation ----------
    def cancel(self):
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def check_cancelled(self):
        """Raise UserAbort if the caller asked the run to stop"""
        if self.cancel_event.is_set():
            logger_executor.warning(f"RUN_STOPPED | run_id={self.run_id}")
            raise UserAbort()

    # ---------- collaborators ----------
    def status(self, message: str, **event):
        try:
            self.on_status(message, event)
        except Exception as e:
            logger_executor.debug(f"STATUS_CALLBACK_FAILED | error={str(e)[:100]}")

    def tool_context(self, step_number: Optional[int] = None) -> ToolCallContext:
        return ToolCallContext(
            credential=self.credential,
            tab_handle=self.tab_handle,
            notepad=self.notepad,
            step_number=step_number
        )

    def capture_snapshot(self, handle: Any = None) -> Optional[str]:
        """Best-effort screenshot; never raises"""
        target = handle if handle is not None else self.tab_handle
        if self.host is None or target is None:
            return None
        try:
            return self.host.capture_snapshot(target) or None
        except Exception as e:
            logger_executor.debug(f"SNAPSHOT_FAILED | handle={target} | error={str(e)[:100]}")
            return None

    def current_url(self) -> Optional[str]:
        if self.host is None or self.tab_handle is None:
            return None
        try:
            return self.host.current_url(self.tab_handle)
        except Exception as e:
            logger_executor.debug(f"CURRENT_URL_FAILED | error={str(e)[:100]}")
            return None

    def with_inputs(self, inputs: Dict[str, Any]) -> "ExecutionContext":
        """Copy of this context sharing everything but the inputs"""
        return ExecutionContext(
            registry=self.registry,
            notepad=self.notepad,
            tab_handle=self.tab_handle,
            credential=self.credential,
            inputs=dict(inputs),
            cancel_event=self.cancel_event,
            host=self.host,
            on_status=self.on_status,
            capture_screenshots=self.capture_screenshots,
            run_id=self.run_id
        )
