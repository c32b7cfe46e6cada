from __future__ import annotations

from enum import Enum
import logging
from typing import TYPE_CHECKING, Any, get_args

from anthropic.types import StopReason
from hypothesis import given
from hypothesis import strategies as st
from openai.types.chat.chat_completion import Choice as CompletionChoice
from openai.types.chat.chat_completion_chunk import Choice as ChunkChoice
import pytest

from meridian.finish_reasons import (
    ANTHROPIC,
    BEDROCK,
    BEDROCK_INVOKE,
    GEMINI,
    GROQ,
    MAPPERS,
    OPENAI,
    FinishReasonMapper,
    get_mapper,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

pytestmark = pytest.mark.unit

_CANONICAL = {
    "stop",
    "length",
    "tool_calls",
    "content_filter",
    "guardrail",
    "function_call",
    "unspecified",
}


# Vendors whose SDK is not a dependency: the documented enumerations.
_BEDROCK_CONVERSE_STOP_REASONS = (
    "end_turn",
    "tool_use",
    "max_tokens",
    "stop_sequence",
    "guardrail_intervened",
    "content_filtered",
    "model_context_window_exceeded",
)
_GEMINI_FINISH_REASONS = (
    "FINISH_REASON_UNSPECIFIED",
    "STOP",
    "MAX_TOKENS",
    "SAFETY",
    "RECITATION",
    "LANGUAGE",
    "OTHER",
    "BLOCKLIST",
    "PROHIBITED_CONTENT",
    "SPII",
    "MALFORMED_FUNCTION_CALL",
    "IMAGE_SAFETY",
    "UNEXPECTED_TOOL_CALL",
    "IMAGE_PROHIBITED_CONTENT",
    "NO_IMAGE",
    "IMAGE_RECITATION",
    "IMAGE_OTHER",
    "TOO_MANY_TOOL_CALLS",
)


def _literal_values(annotation: Any) -> set[str]:
    """Flatten ``Optional[Literal[...]]`` and friends into their string members."""
    values: set[str] = set()
    for arg in get_args(annotation):
        if isinstance(arg, str):
            values.add(arg)
        else:
            values |= _literal_values(arg)
    return values


def _openai_finish_reasons() -> set[str]:
    return _literal_values(ChunkChoice.model_fields["finish_reason"].annotation) | _literal_values(
        CompletionChoice.model_fields["finish_reason"].annotation
    )


def _assert_declared(mapper: FinishReasonMapper, values: Iterable[str]) -> None:
    values = list(values)
    assert values
    missing = {v for v in values if v.lower() not in mapper.table}
    assert not missing, f"{mapper.vendor} table lacks {sorted(missing)}"
    for value in values:
        assert mapper.map(value) in _CANONICAL


@pytest.mark.contract
@pytest.mark.parametrize("mapper", [OPENAI, GROQ], ids=["openai", "groq"])
def test_tables_cover_the_openai_sdk_finish_reasons(mapper: FinishReasonMapper) -> None:
    _assert_declared(mapper, _openai_finish_reasons())


@pytest.mark.contract
def test_table_covers_the_anthropic_sdk_stop_reasons() -> None:
    _assert_declared(ANTHROPIC, _literal_values(StopReason))


@pytest.mark.contract
def test_table_covers_the_bedrock_converse_stop_reasons() -> None:
    _assert_declared(BEDROCK, _BEDROCK_CONVERSE_STOP_REASONS)


@pytest.mark.contract
def test_table_covers_the_gemini_finish_reasons() -> None:
    _assert_declared(GEMINI, _GEMINI_FINISH_REASONS)


def test_declared_values_never_warn(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="meridian.finish_reasons"):
        for mapper in MAPPERS.values():
            for value in mapper.table:
                mapper.map(value.upper())

    assert caplog.records == []


@pytest.mark.parametrize(
    ("mapper", "value", "expected"),
    [
        (OPENAI, "stop", "stop"),
        (OPENAI, "length", "length"),
        (OPENAI, "tool_calls", "tool_calls"),
        (ANTHROPIC, "end_turn", "stop"),
        (ANTHROPIC, "max_tokens", "length"),
        (ANTHROPIC, "tool_use", "tool_calls"),
        (BEDROCK, "guardrail_intervened", "guardrail"),
        (BEDROCK, "content_filtered", "content_filter"),
        (GEMINI, "SAFETY", "content_filter"),
        (GEMINI, "STOP", "stop"),
    ],
)
def test_known_values(mapper: FinishReasonMapper, value: str, expected: str) -> None:
    assert mapper.map(value) == expected


def test_enum_values_are_unwrapped() -> None:
    class GeminiFinishReason(Enum):
        MAX_TOKENS = "MAX_TOKENS"

    assert GEMINI.map(GeminiFinishReason.MAX_TOKENS) == "length"


def test_absent_reason_maps_to_none() -> None:
    assert OPENAI.map(None) is None
    assert OPENAI.map("") is None


def test_unknown_value_is_unspecified_and_warns_once(caplog: pytest.LogCaptureFixture) -> None:
    mapper = FinishReasonMapper(vendor="test", table={"done": "stop"})

    with caplog.at_level(logging.WARNING, logger="meridian.finish_reasons"):
        assert mapper.map("brand_new_reason") == "unspecified"
        assert mapper.map("brand_new_reason") == "unspecified"

    warnings = [r for r in caplog.records if "brand_new_reason" in r.getMessage()]
    assert len(warnings) == 1


@given(st.text())
def test_mapping_never_raises(value: str) -> None:
    for mapper in MAPPERS.values():
        assert mapper.map(value) in _CANONICAL | {None}


def test_resolve_prefers_the_vendor_reason() -> None:
    assert OPENAI.resolve("length", has_tool_calls=True) == "length"


def test_resolve_without_reason_uses_tool_calls_then_when_absent() -> None:
    assert OPENAI.resolve(None, has_tool_calls=True) == "tool_calls"
    assert OPENAI.resolve(None, has_tool_calls=False) == "unspecified"
    assert BEDROCK_INVOKE.resolve(None, has_tool_calls=False) == "stop"


def test_table_is_read_only() -> None:
    with pytest.raises(TypeError):
        OPENAI.table["stop"] = "length"  # type: ignore[index]


def test_get_mapper() -> None:
    assert get_mapper("anthropic") is ANTHROPIC
    with pytest.raises(KeyError, match="nope"):
        get_mapper("nope")
