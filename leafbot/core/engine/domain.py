from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# CONTROL SIGNAL
# ============================================================================

class NextResult(str, Enum):
    """
    Result of pushing a value into an observer. BREAK means the value was
    fully handled and the search should stop; FALLTHROUGH means the next
    candidate should be tried.
    """
    BREAK = "BREAK"
    FALLTHROUGH = "FALLTHROUGH"


TriggerType = Literal["message", "manual"]
Context = Mapping[str, Any]


# ============================================================================
# WIT (NLU) PAYLOADS
# ============================================================================

class WitTraitValue(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    id: Optional[str] = None
    value: Any = None
    confidence: float = 0


class WitEntity(WitTraitValue):
    name: Optional[str] = None
    role: Optional[str] = None
    body: Optional[str] = None
    start: Optional[int] = None
    end: Optional[int] = None


class WitIntent(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    id: Optional[str] = None
    name: Optional[str] = None
    confidence: float = 0


class WitResponse(BaseModel):
    """Body of GET /message on the Wit HTTP API."""
    model_config = ConfigDict(extra="ignore")

    text: Optional[str] = None
    entities: dict[str, list[WitEntity]] = Field(default_factory=dict)
    intents: list[WitIntent] = Field(default_factory=list)
    traits: dict[str, list[WitTraitValue]] = Field(default_factory=dict)


@dataclass(frozen=True)
class WitHighestConfidence:
    """The single intent or trait value Wit was most confident about."""
    wit_type: Literal["intent", "trait"]
    confidence: float
    id: Optional[str] = None
    name: Optional[str] = None  # intent name
    value: Any = None  # trait value
    trait: Optional[str] = None  # trait category, for trait winners


# ============================================================================
# REQUEST INPUTS
# ============================================================================

@dataclass(frozen=True)
class TextInput:
    type: ClassVar[str] = "text"
    text: str


@dataclass(frozen=True)
class PostbackInput:
    type: ClassVar[str] = "postback"
    payload: str


@dataclass(frozen=True)
class CommandInput:
    """Telegram bot command, e.g. "/start ref123" -> command="start", text="ref123"."""
    type: ClassVar[str] = "command"
    command: str
    text: Optional[str] = None


@dataclass(frozen=True)
class LocationInput:
    type: ClassVar[str] = "location"
    latitude: float
    longitude: float


@dataclass(frozen=True)
class ImageInput:
    type: ClassVar[str] = "image"
    image_url: str


@dataclass(frozen=True)
class PlaceboInput:
    """Message-triggered request with no usable content (stickers, joins, ...)."""
    type: ClassVar[str] = "placebo"


@dataclass(frozen=True)
class ErrorInput:
    type: ClassVar[str] = "error"
    error: BaseException
    errored_leaf: Optional[str] = None


@dataclass(frozen=True)
class ContextChangeInput:
    type: ClassVar[str] = "context_change"
    changed_context: Context
    new_context: Context
    old_context: Context


@dataclass(frozen=True)
class WitInput:
    type: ClassVar[str] = "wit"
    entities: Mapping[str, list[WitEntity]]
    intents: list[WitIntent]
    traits: Mapping[str, list[WitTraitValue]]
    highest_confidence: Optional[WitHighestConfidence] = None


RequestInput = Union[
    TextInput,
    PostbackInput,
    CommandInput,
    LocationInput,
    ImageInput,
    PlaceboInput,
    ErrorInput,
    ContextChangeInput,
    WitInput,
]


# ============================================================================
# GENERIC REQUEST
# ============================================================================

@dataclass(frozen=True)
class GenericRequest:
    """
    Platform-agnostic incoming request.

    ``raw_request`` carries the platform payload and is present exactly when
    the request was triggered by a user message. Synthetic re-dispatches
    (error fallback, NLU retry, context change) are ``manual``.
    """
    target_id: str
    target_platform: str
    input: RequestInput
    trigger_type: TriggerType
    current_context: Context = field(default_factory=dict)
    raw_request: Any = None
    current_leaf_name: Optional[str] = None
    original_request: Optional["GenericRequest"] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.trigger_type == "message" and self.raw_request is None:
            raise ValueError("Message-triggered requests must carry raw_request")
        if self.trigger_type == "manual" and self.raw_request is not None:
            raise ValueError("Manually triggered requests cannot carry raw_request")

    @property
    def target_key(self) -> str:
        return target_key(self.target_id, self.target_platform)


# ============================================================================
# GENERIC RESPONSE
# ============================================================================

@dataclass(frozen=True)
class TextContent:
    type: ClassVar[str] = "text"
    text: str


@dataclass(frozen=True)
class Button:
    """Postback button when ``payload`` is set, link button when ``url`` is set."""
    text: str
    payload: Optional[str] = None
    url: Optional[str] = None


@dataclass(frozen=True)
class ButtonContent:
    type: ClassVar[str] = "button"
    text: str
    buttons: tuple[Button, ...]


@dataclass(frozen=True)
class ImageContent:
    type: ClassVar[str] = "image"
    image_url: str


VisualContent = Union[TextContent, ButtonContent, ImageContent]


@dataclass(frozen=True)
class QuickReply:
    text: str
    payload: str


@dataclass(frozen=True)
class ResponseOutput:
    content: VisualContent
    quick_replies: tuple[QuickReply, ...] = ()


@dataclass(frozen=True)
class GenericResponse:
    """
    Platform-agnostic outgoing response.

    ``additional_context`` is merged into (never replaces) the persisted
    context once the response has been sent.
    """
    target_id: str
    target_platform: str
    output: tuple[ResponseOutput, ...]
    additional_context: Optional[Context] = None
    original_request: Optional[GenericRequest] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.output:
            raise ValueError("A response needs at least one output item")
        # Accept lists from callers, store an immutable tuple.
        if not isinstance(self.output, tuple):
            object.__setattr__(self, "output", tuple(self.output))

    @property
    def target_key(self) -> str:
        return target_key(self.target_id, self.target_platform)


def text_response(target_id: str, target_platform: str, *texts: str, **kwargs) -> GenericResponse:
    """Shortcut for a response made only of text bubbles."""
    return GenericResponse(
        target_id=target_id,
        target_platform=target_platform,
        output=tuple(ResponseOutput(content=TextContent(text=t)) for t in texts),
        **kwargs,
    )


@dataclass(frozen=True)
class ContextUpdate:
    old_context: Context
    new_context: Context


def target_key(target_id: str, target_platform: str) -> str:
    """Key identifying one conversation target across platforms."""
    return f"{target_platform}_{target_id}"
