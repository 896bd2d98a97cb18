"""
Shared Notepad Tool

Lets a plan step read or write the run's notepad directly.
"""

from typing import Any, Dict

from app.config import NOTEPAD_TOOL
from tools.errors import ToolError
from tools.registry import Tool, ToolCallContext
from tools.responses import tool_response
from tools.schemas import NotepadToolInput


class NotepadTool(Tool):
    description = "In-memory notepad for passing data between tool steps within a run"
    capabilities = ["memory", "session-storage", "data-passing"]
    param_schema = NotepadToolInput

    def __init__(self):
        self.name = NOTEPAD_TOOL

    def execute(self, params: Dict[str, Any], context: ToolCallContext) -> Dict[str, Any]:
        notepad = context.notepad
        if notepad is None:
            raise ToolError("No notepad attached to this run", tool=self.name)

        action = params["action"]

        if action == "write":
            notepad.write(params["key"], params.get("data"))
            return tool_response(tool=self.name, success=True)

        if action == "read":
            value = notepad.read(params["key"], default=None)
            return tool_response(tool=self.name, success=True, result=value, data=value)

        if action == "clear":
            notepad.clear(params.get("key"))
            return tool_response(tool=self.name, success=True)

        if action == "readAll":
            snapshot = notepad.read_all()
            return tool_response(tool=self.name, success=True, result=snapshot, data=snapshot)

        keys = notepad.keys()
        return tool_response(tool=self.name, success=True, result=keys, data=keys)
