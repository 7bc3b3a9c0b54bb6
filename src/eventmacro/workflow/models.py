"""Action model: the tagged variant describing one workflow step.

Actions are deserialized from config via the ``type`` discriminator:

- composites: ``sequence`` (ordered steps), ``ref`` (named action lookup),
  ``conditional`` (string equality branch)
- leaves: mouse, keyboard, timing, window, variable, logging and the
  OCR / screen capture placeholders

String fields hold raw templates; interpolation happens at execution time.
"""

from enum import Enum
from typing import Annotated, Iterator, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class MouseButton(str, Enum):
    """Mouse buttons understood by capability providers."""
    LEFT = "left"
    MIDDLE = "middle"
    RIGHT = "right"


class LogLevel(str, Enum):
    """Levels accepted by the ``log`` action."""
    TRACE = "trace"
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class Rect(BaseModel):
    """A rectangular screen region."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    x: int
    y: int
    width: int = Field(ge=0)
    height: int = Field(ge=0)


class ActionModel(BaseModel):
    """Base for every action kind."""
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)


class SequenceAction(ActionModel):
    type: Literal["sequence"] = "sequence"
    steps: list["Action"] = Field(default_factory=list)


class RefAction(ActionModel):
    type: Literal["ref"] = "ref"
    name: str = Field(min_length=1)


class MouseMoveAction(ActionModel):
    type: Literal["mouse_move"] = "mouse_move"
    x: int
    y: int


class MouseClickAction(ActionModel):
    type: Literal["mouse_click"] = "mouse_click"
    button: MouseButton = MouseButton.LEFT
    count: int = Field(default=1, ge=1, le=255)


class MouseScrollAction(ActionModel):
    type: Literal["mouse_scroll"] = "mouse_scroll"
    delta_x: int = 0
    delta_y: int = 0


class KeySeqAction(ActionModel):
    type: Literal["key_seq"] = "key_seq"
    text: str


class TypeTextAction(ActionModel):
    type: Literal["type_text"] = "type_text"
    text: str


class SleepMsAction(ActionModel):
    type: Literal["sleep_ms"] = "sleep_ms"
    ms: int = Field(ge=0)


class SleepRandMsAction(ActionModel):
    type: Literal["sleep_rand_ms"] = "sleep_rand_ms"
    min: int = Field(ge=0)
    max: int = Field(ge=0)


class FocusWindowAction(ActionModel):
    type: Literal["focus_window"] = "focus_window"
    title_contains: str


class SetVarAction(ActionModel):
    type: Literal["set_var"] = "set_var"
    name: str
    value: str


class ConditionalAction(ActionModel):
    """Run ``then`` when interpolated ``when`` equals interpolated ``equals``."""
    type: Literal["conditional"] = "conditional"
    when: str
    equals: str
    then: "Action"
    else_: Optional["Action"] = Field(default=None, alias="else")


class LogAction(ActionModel):
    type: Literal["log"] = "log"
    level: LogLevel = LogLevel.INFO
    message: str


class OcrCheckAction(ActionModel):
    type: Literal["ocr_check"] = "ocr_check"
    region: Optional[Rect] = None
    must_contain: str
    # Variable that receives "true"/"false"
    store_as: Optional[str] = None


class CaptureScreenAction(ActionModel):
    type: Literal["capture_screen"] = "capture_screen"
    path: str
    region: Optional[Rect] = None


Action = Annotated[
    Union[
        SequenceAction,
        RefAction,
        MouseMoveAction,
        MouseClickAction,
        MouseScrollAction,
        KeySeqAction,
        TypeTextAction,
        SleepMsAction,
        SleepRandMsAction,
        FocusWindowAction,
        SetVarAction,
        ConditionalAction,
        LogAction,
        OcrCheckAction,
        CaptureScreenAction,
    ],
    Field(discriminator="type"),
]

# Every concrete action class, in declaration order
ACTION_KINDS: tuple[type[ActionModel], ...] = get_args(get_args(Action)[0])

for _kind in (SequenceAction, ConditionalAction):
    _kind.model_rebuild()

_ACTION_ADAPTER: TypeAdapter = TypeAdapter(Action)


def parse_action(data: dict) -> ActionModel:
    """Validate a raw dict into the matching action model."""
    return _ACTION_ADAPTER.validate_python(data)


def iter_references(action: ActionModel) -> Iterator[tuple[str, str]]:
    """
    Yield ``(location, name)`` for every ``ref`` reachable without following refs.

    ``location`` is a human-readable path such as ``steps[2].then``.
    """
    if isinstance(action, RefAction):
        yield "", action.name
    elif isinstance(action, SequenceAction):
        for i, step in enumerate(action.steps):
            for loc, name in iter_references(step):
                yield f"steps[{i}]{'.' + loc if loc else ''}", name
    elif isinstance(action, ConditionalAction):
        for branch, child in (("then", action.then), ("else", action.else_)):
            if child is None:
                continue
            for loc, name in iter_references(child):
                yield f"{branch}{'.' + loc if loc else ''}", name
