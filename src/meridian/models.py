"""Canonical request/response schema shared by every vendor adapter."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from typing import Any, Literal
import uuid

from meridian.errors import ConfigurationError

Role = Literal["system", "user", "assistant", "tool"]
FinishReason = Literal[
    "stop",
    "length",
    "tool_calls",
    "content_filter",
    "guardrail",
    "function_call",
    "unspecified",
]
ToolChoice = Literal["auto", "required", "none"] | dict[str, Any]

_ROLES: frozenset[str] = frozenset({"system", "user", "assistant", "tool"})


def new_id() -> str:
    """Return a fresh identifier for responses and tool calls lacking one."""
    return str(uuid.uuid4())


@dataclass(frozen=True)
class ToolDefinition:
    """A function the model may call."""

    name: str
    description: str = ""
    #: JSON schema describing the arguments object.
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object"})

    def __post_init__(self) -> None:
        """Reject nameless tools early."""
        if not self.name:
            raise ConfigurationError(
                "ToolDefinition.name must be a non-empty string",
                hint="Pass ToolDefinition(name='get_weather', ...).",
            )


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model.

    ``arguments`` is the raw JSON text exactly as produced; it is only parsed
    on demand.
    """

    id: str
    name: str
    arguments: str = ""

    def parsed_arguments(self) -> Any:
        """Decode ``arguments`` as JSON (an empty string decodes to ``{}``)."""
        return json.loads(self.arguments) if self.arguments else {}


@dataclass(frozen=True)
class CanonicalMessage:
    """One conversation turn in canonical form."""

    role: Role
    content: str | None = None
    tool_calls: tuple[ToolCall, ...] | None = None
    #: Set on ``role="tool"`` messages: the call this message answers.
    tool_call_id: str | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        """Validate the role and freeze tool calls."""
        if self.role not in _ROLES:
            raise ConfigurationError(
                f"Unknown message role: {self.role!r}",
                hint="Use one of: assistant, system, tool, user.",
            )
        if self.tool_calls is not None and not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))


@dataclass(frozen=True)
class SamplingConfig:
    """Generation controls passed through to the vendor."""

    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    stop: tuple[str, ...] | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None


@dataclass(frozen=True)
class CanonicalRequest:
    """A completion request, built once per inbound call and never mutated."""

    messages: tuple[CanonicalMessage, ...]
    tools: tuple[ToolDefinition, ...] | None = None
    tool_choice: ToolChoice | None = None
    config: SamplingConfig = field(default_factory=SamplingConfig)
    stream: bool = False

    def __post_init__(self) -> None:
        """Freeze sequences and require at least one message."""
        if not isinstance(self.messages, tuple):
            object.__setattr__(self, "messages", tuple(self.messages))
        if self.tools is not None and not isinstance(self.tools, tuple):
            object.__setattr__(self, "tools", tuple(self.tools))
        if not self.messages:
            raise ConfigurationError(
                "CanonicalRequest needs at least one message",
                hint="Pass messages=[CanonicalMessage(role='user', content='...')].",
            )


@dataclass(frozen=True)
class UsageSnapshot:
    """Vendor-reported token counts as seen so far; any field may be missing."""

    prompt: int | None = None
    completion: int | None = None
    total: int | None = None

    def merge(self, newer: UsageSnapshot) -> UsageSnapshot:
        """Overlay the fields *newer* reports on top of this snapshot."""
        return UsageSnapshot(
            prompt=self.prompt if newer.prompt is None else newer.prompt,
            completion=self.completion if newer.completion is None else newer.completion,
            total=self.total if newer.total is None else newer.total,
        )


@dataclass(frozen=True)
class Usage:
    """Canonical token usage for one exchange."""

    prompt: int | None = None
    completion: int | None = None
    total: int | None = None

    def __post_init__(self) -> None:
        """Enforce ``total == prompt + completion`` when all three are known."""
        if (
            self.prompt is not None
            and self.completion is not None
            and self.total is not None
            and self.total != self.prompt + self.completion
        ):
            raise ValueError(
                f"Inconsistent usage: total={self.total} "
                f"!= prompt={self.prompt} + completion={self.completion}"
            )


@dataclass(frozen=True)
class Metrics:
    """Latency and throughput for one exchange."""

    time_to_first_token_ms: float | None = None
    tokens_per_second: float | None = None


@dataclass(frozen=True)
class ResponseEvent:
    """A partial response pushed while the vendor stream is still open."""

    id: str
    role: str = "assistant"
    delta: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    finish_reason: FinishReason | None = None
    done: bool = field(default=False, init=False)


@dataclass(frozen=True)
class CanonicalResponse:
    """The single terminal response of one exchange."""

    id: str
    role: str = "assistant"
    #: Wire field: empty when the text was already delivered through partials.
    message: str = ""
    #: Full accumulated text, whether or not it was streamed.
    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    usage: Usage | None = None
    metrics: Metrics | None = None
    finish_reason: FinishReason = "stop"
    #: Epoch seconds at which the response was assembled.
    created_at: float = 0.0
    #: True when synthesized from a stream the consumer abandoned.
    aborted: bool = False
    done: bool = field(default=True, init=False)
