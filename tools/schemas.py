"""
Engine Schemas and Type Definitions

Pydantic models for plans, execution reports, verdicts and compiled
functions. Wire names emitted by the planning / judging oracles (camelCase)
are accepted as aliases; Python attributes are snake_case.
"""

import time
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class _WireModel(BaseModel):
    """Base for models that round-trip through oracle JSON"""
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


# ═══════════════════════════════════════════════════════════════════════════════
# PLAN
# ═══════════════════════════════════════════════════════════════════════════════

class Step(_WireModel):
    """
    A single tool invocation in a plan.

    Attributes:
        step_number: Position in the plan, contiguous from 1
        tool: Registered tool name
        purpose: Human-readable description of what the step does
        params: Parameter tree; string leaves may contain template tokens
        store_as: Notepad key the step's result is written to
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    step_number: int = Field(
        ...,
        ge=1,
        validation_alias=AliasChoices("step_number", "stepNumber"),
        serialization_alias="stepNumber"
    )
    tool: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("tool", "toolName", "tool_name")
    )
    purpose: str = ""
    params: Dict[str, Any] = Field(default_factory=dict)
    store_as: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("store_as", "storeAs"),
        serialization_alias="storeAs"
    )


class Plan(_WireModel):
    """
    Ordered steps plus a description of what the user should end up seeing.

    Plans are frozen: a repair always produces a new Plan.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    steps: List[Step] = Field(
        default_factory=list,
        validation_alias=AliasChoices("steps", "plan"),
        serialization_alias="plan"
    )
    expected_output: str = Field(
        "",
        validation_alias=AliasChoices("expected_output", "expectedOutput"),
        serialization_alias="expectedOutput"
    )

    @property
    def tools(self) -> List[str]:
        return [step.tool for step in self.steps]

    def uses_tool(self, *names: str) -> bool:
        return any(step.tool in names for step in self.steps)


# ═══════════════════════════════════════════════════════════════════════════════
# EXECUTION
# ═══════════════════════════════════════════════════════════════════════════════

class StepResult(_WireModel):
    """Outcome of one executed step"""
    step: int
    tool: str
    success: bool
    error: Optional[str] = None
    store_as: Optional[str] = Field(None, serialization_alias="storeAs")
    result: Any = None
    fallback: Optional[str] = Field(
        None,
        description="Tool that produced the result in place of the planned one"
    )


class Screenshot(_WireModel):
    """Snapshot of the controlled surface taken after a step"""
    step: int
    tool: str
    image: str
    tab_handle: Any = Field(None, serialization_alias="tabId")
    failure: bool = False


class ExecutionReport(_WireModel):
    """
    Result of executing one plan.

    success is the AND of every step's success; a step recovered by the
    remote fallback counts as successful.
    """
    steps: List[StepResult] = Field(default_factory=list)
    screenshots: List[Screenshot] = Field(default_factory=list)
    notepad_state: Dict[str, Any] = Field(default_factory=dict)
    success: bool = False
    total_steps: int = 0
    failed_steps: int = 0
    aborted: bool = False
    abort_reason: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════════════
# VERIFICATION
# ═══════════════════════════════════════════════════════════════════════════════

class SuggestedFix(_WireModel):
    """Corrective step proposed by the judge"""
    tool: str = ""
    purpose: str = ""
    params: Dict[str, Any] = Field(default_factory=dict)


class UiAssessment(_WireModel):
    """Judge's view of a generated UI"""
    score: Optional[float] = None
    issues: List[str] = Field(default_factory=list)
    strengths: List[str] = Field(default_factory=list)


class PrimaryOutput(BaseModel):
    """The single value chosen to represent what a run produced"""
    key: str
    text: str
    score: int


class Verdict(_WireModel):
    """Judged pass/fail assessment of a run's primary output"""
    valid: bool
    issues: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    suggested_fixes: List[SuggestedFix] = Field(
        default_factory=list,
        validation_alias=AliasChoices("suggested_fixes", "suggestedFixes"),
        serialization_alias="suggestedFixes"
    )
    ui_assessment: Optional[UiAssessment] = Field(
        None,
        validation_alias=AliasChoices("ui_assessment", "uiAssessment"),
        serialization_alias="uiAssessment"
    )
    head100: str = ""
    tail100: str = ""
    primary_key: str = Field("none", serialization_alias="primaryKey")


class FailureContext(_WireModel):
    """What the planning oracle is told about a failed attempt"""
    issues: List[str] = Field(default_factory=list)
    head100: str = ""
    tail100: str = ""
    previous_tools: List[str] = Field(default_factory=list, serialization_alias="previousTools")
    suggested_fixes: List[SuggestedFix] = Field(default_factory=list, serialization_alias="suggestedFixes")
    ui_assessment: Optional[UiAssessment] = Field(None, serialization_alias="uiAssessment")


# ═══════════════════════════════════════════════════════════════════════════════
# COMPILED FUNCTIONS
# ═══════════════════════════════════════════════════════════════════════════════

class FunctionInput(_WireModel):
    """A named input inferred from a literal in the compiled plan"""
    name: str
    type: str = "string"
    description: str = ""
    default_value: str = Field(
        "",
        validation_alias=AliasChoices("default_value", "defaultValue"),
        serialization_alias="defaultValue"
    )


class CompiledFunction(_WireModel):
    """Reusable, parameterized replay artifact derived from a verified run"""
    name: str
    description: str = ""
    inputs: List[FunctionInput] = Field(default_factory=list)
    url_applicability: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("url_applicability", "urlPatterns"),
        serialization_alias="urlPatterns"
    )
    start_url: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("start_url", "startUrl"),
        serialization_alias="startUrl"
    )
    embedded_plan: Plan = Field(
        ...,
        validation_alias=AliasChoices("embedded_plan", "toolChainPlan"),
        serialization_alias="toolChainPlan"
    )
    iterative: bool = False
    created_at: float = Field(
        default_factory=time.time,
        validation_alias=AliasChoices("created_at", "createdAt"),
        serialization_alias="createdAt"
    )
    source: str = "tool-chain"

    def input_defaults(self) -> Dict[str, str]:
        return {inp.name: inp.default_value for inp in self.inputs}


class ReplayResult(_WireModel):
    """Outcome of replaying a compiled function"""
    success: bool
    expected_output: str = Field("", serialization_alias="expectedOutput")
    passes_run: int = Field(1, serialization_alias="passesRun")
    steps: List[Dict[str, Any]] = Field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════════════
# PIPELINE
# ═══════════════════════════════════════════════════════════════════════════════

class PipelineResult(_WireModel):
    """Everything a pipeline run produced, whether it succeeded or not"""
    success: bool
    plan: List[Step] = Field(default_factory=list)
    expected_output: str = Field("", serialization_alias="expectedOutput")
    steps: List[StepResult] = Field(default_factory=list)
    screenshots: List[Screenshot] = Field(default_factory=list)
    notepad_state: Dict[str, Any] = Field(default_factory=dict)
    verification: Optional[Verdict] = None
    saved_function: Optional[CompiledFunction] = Field(None, serialization_alias="savedFunction")
    aborted: bool = False
    abort_reason: Optional[str] = None
    attempts: int = 1
    failure: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════════════
# BUILT-IN TOOL INPUTS
# ═══════════════════════════════════════════════════════════════════════════════

class RemoteIntelligenceInput(BaseModel):
    """Params accepted by the remote LLM tool"""
    model_config = ConfigDict(extra="allow")

    prompt: str = Field(..., min_length=1)
    parseJson: Optional[bool] = None
    model: Optional[str] = None
    temperature: Optional[float] = Field(None, ge=0, le=2)


class NotepadToolInput(BaseModel):
    """Params accepted by the shared notepad tool"""
    model_config = ConfigDict(extra="allow")

    action: Literal["write", "read", "clear", "readAll", "keys"]
    key: Optional[str] = None
    data: Any = None

    @model_validator(mode="after")
    def _key_required(self):
        if self.action in ("write", "read") and not self.key:
            raise ValueError(f"key is required for action '{self.action}'")
        return self
