"""
Messages exchanged during a setup session.

- Agent actions: what one reasoning turn asks the orchestrator to do
  (a closed set of 9 kinds, tagged by "type")
- Setup events: what the orchestrator pushes to the UI (6 kinds, tagged
  by "event" and serialized as {"event": ..., "data": {...}})
- User responses: what the UI sends back while a session waits for input
- Prompts and result payloads carried inside those events
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Message(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", protected_namespaces=())


# -------------------------
# Prompts shown to the user (ask_user payloads)
# -------------------------


class SelectOption(_Message):
    value: str
    label: str


class FormField(_Message):
    name: str
    label: str
    field_type: str = "text"
    required: bool = False
    default_value: Optional[str] = None
    options: Optional[List[SelectOption]] = None
    placeholder: Optional[str] = None
    help_text: Optional[str] = None


class FormPrompt(_Message):
    type: Literal["form"] = "form"
    title: str
    form_id: str
    fields: List[FormField] = Field(default_factory=list)
    description: Optional[str] = None
    submit_label: Optional[str] = None


class WizardPage(_Message):
    label: str
    form: FormPrompt
    description: Optional[str] = None


class WizardPrompt(_Message):
    type: Literal["wizard"] = "wizard"
    title: str
    wizard_id: str
    steps: List[WizardPage] = Field(default_factory=list)
    current_step: int = 0


class ConfirmPrompt(_Message):
    type: Literal["confirm"] = "confirm"
    title: str
    message: str
    confirm_id: str
    confirm_label: Optional[str] = None
    cancel_label: Optional[str] = None


class OauthFlowPrompt(_Message):
    type: Literal["oauth_flow"] = "oauth_flow"
    provider: str
    login_command: str
    instructions: str


class ApiKeyEntryPrompt(_Message):
    type: Literal["api_key_entry"] = "api_key_entry"
    provider: str
    env_var: str
    help_url: Optional[str] = None


class ToolOption(_Message):
    name: str
    installed: bool = False
    description: str = ""


class ToolSelectionPrompt(_Message):
    type: Literal["cli_selection"] = "cli_selection"
    message: str
    available: List[ToolOption] = Field(default_factory=list)


UserPrompt = Annotated[
    Union[
        FormPrompt,
        WizardPrompt,
        ConfirmPrompt,
        OauthFlowPrompt,
        ApiKeyEntryPrompt,
        ToolSelectionPrompt,
    ],
    Field(discriminator="type"),
]


# -------------------------
# Agent actions
# -------------------------


class MemoryEdgeSpec(_Message):
    target_label: str
    edge_type: str
    target_type: Optional[str] = None
    """Node type of the target; the source node's type when omitted"""


class StatusAction(_Message):
    type: Literal["status"] = "status"
    message: str


class RunCommandAction(_Message):
    type: Literal["run_command"] = "run_command"
    command: str
    args: List[str] = Field(default_factory=list)
    description: str = ""


class WriteConfigAction(_Message):
    type: Literal["write_config"] = "write_config"
    path: str
    content: str
    description: str = ""


class IntegrationTestAction(_Message):
    type: Literal["test_integration"] = "test_integration"
    model_name: str
    command: str
    args: List[str] = Field(default_factory=list)


class AskUserAction(_Message):
    type: Literal["ask_user"] = "ask_user"
    action: UserPrompt


class SyncSkillAction(_Message):
    type: Literal["sync_skill"] = "sync_skill"
    source_cli: str
    target_cli: str
    skill_name: str


class SyncMcpAction(_Message):
    type: Literal["sync_mcp"] = "sync_mcp"
    target_cli: str
    mcp_name: str
    config: str
    source_cli: Optional[str] = None


class UpdateMemoryAction(_Message):
    type: Literal["update_memory"] = "update_memory"
    node_type: str
    label: str
    data: Any = None
    """JSON text or structured payload for the node"""
    edges: List[MemoryEdgeSpec] = Field(default_factory=list)


class CompleteAction(_Message):
    type: Literal["complete"] = "complete"
    summary: str
    items: List[str] = Field(default_factory=list)


AgentAction = Annotated[
    Union[
        StatusAction,
        RunCommandAction,
        WriteConfigAction,
        IntegrationTestAction,
        AskUserAction,
        SyncSkillAction,
        SyncMcpAction,
        UpdateMemoryAction,
        CompleteAction,
    ],
    Field(discriminator="type"),
]


class AgentTurnResult(_Message):
    """What one reasoning turn returns."""

    actions: List[AgentAction]
    done: bool


# -------------------------
# User responses
# -------------------------


class FormSubmitResponse(_Message):
    type: Literal["form_submit"] = "form_submit"
    form_id: str
    values: Dict[str, str] = Field(default_factory=dict)


class WizardStepResponse(_Message):
    type: Literal["wizard_step"] = "wizard_step"
    wizard_id: str
    step: int
    values: Dict[str, str] = Field(default_factory=dict)


class ConfirmResponse(_Message):
    type: Literal["confirm"] = "confirm"
    confirm_id: str
    confirmed: bool


class OauthCompleteResponse(_Message):
    type: Literal["oauth_complete"] = "oauth_complete"
    provider: str
    success: bool


class ApiKeyResponse(_Message):
    type: Literal["api_key"] = "api_key"
    provider: str
    key: str


class ToolSelectionResponse(_Message):
    type: Literal["cli_selection"] = "cli_selection"
    selected: List[str] = Field(default_factory=list)


class SkipResponse(_Message):
    type: Literal["skip"] = "skip"
    reason: Optional[str] = None


class CancelResponse(_Message):
    type: Literal["cancel"] = "cancel"


UserResponse = Annotated[
    Union[
        FormSubmitResponse,
        WizardStepResponse,
        ConfirmResponse,
        OauthCompleteResponse,
        ApiKeyResponse,
        ToolSelectionResponse,
        SkipResponse,
        CancelResponse,
    ],
    Field(discriminator="type"),
]

USER_RESPONSE = TypeAdapter(UserResponse)


def parse_user_response(data: Union[str, bytes, Dict[str, Any]]) -> UserResponse:
    """Validate a user response from JSON text or a dict."""
    if isinstance(data, (str, bytes)):
        return USER_RESPONSE.validate_json(data)
    return USER_RESPONSE.validate_python(data)


# -------------------------
# Result payloads
# -------------------------


class CommandOutputResult(_Message):
    type: Literal["command_output"] = "command_output"
    command: str
    stdout: str
    stderr: str
    exit_code: int


class DetectionSummaryResult(_Message):
    type: Literal["detection_summary"] = "detection_summary"
    tools: List[Dict[str, Any]] = Field(default_factory=list)


class ConfigWrittenResult(_Message):
    type: Literal["config_written"] = "config_written"
    path: str
    description: str = ""


class IntegrationTestResult(_Message):
    type: Literal["test_result"] = "test_result"
    model: str
    success: bool
    output: str


ResultContent = Annotated[
    Union[CommandOutputResult, DetectionSummaryResult, ConfigWrittenResult, IntegrationTestResult],
    Field(discriminator="type"),
]


# -------------------------
# Setup events
# -------------------------


class _Event(_Message):
    event: str

    def to_wire(self) -> Dict[str, Any]:
        """Serialize as {"event": kind, "data": {...}}."""
        return {"event": self.event, "data": self.model_dump(mode="json", exclude={"event"})}


class StatusEvent(_Event):
    event: Literal["status"] = "status"
    message: str


class ProgressEvent(_Event):
    event: Literal["progress"] = "progress"
    message: str
    percent: Optional[float] = None
    detail: Optional[str] = None


class NeedInputEvent(_Event):
    event: Literal["need_input"] = "need_input"
    action: UserPrompt


class ShowResultEvent(_Event):
    event: Literal["show_result"] = "show_result"
    content: ResultContent


class CompleteEvent(_Event):
    event: Literal["complete"] = "complete"
    summary: str
    items: List[str] = Field(default_factory=list)


class ErrorEvent(_Event):
    event: Literal["error"] = "error"
    message: str
    recoverable: bool


SetupEvent = Annotated[
    Union[StatusEvent, ProgressEvent, NeedInputEvent, ShowResultEvent, CompleteEvent, ErrorEvent],
    Field(discriminator="event"),
]
