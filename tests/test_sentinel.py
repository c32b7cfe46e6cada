"""Sentinel detection: incremental decisions agree with full-text extraction."""

from __future__ import annotations

import json

from hypothesis import given
from hypothesis import strategies as st
import pytest

from meridian.errors import MalformedToolPayload
from meridian.models import ToolDefinition
from meridian.sentinel import (
    DEFAULT_MARKERS,
    SentinelMarkers,
    SentinelToolCallDetector,
    ToolCallMode,
    detect,
    extract_payload,
    parse_tool_calls,
    render_tool_instructions,
    resolve_tool_calls,
)

pytestmark = pytest.mark.unit

OPEN = DEFAULT_MARKERS.open


def _unescape(text: str) -> str:
    return text.replace("\\_", "_")


def _backslash_tail(text: str) -> int:
    return 1 if text.endswith("\\") else 0


# =============================================================================
# detect()
# =============================================================================


@pytest.mark.parametrize(
    ("buffer", "expected"),
    [
        ("", ToolCallMode.UNDETERMINED),
        ("[", ToolCallMode.UNDETERMINED),
        ("[TOOL_CA", ToolCallMode.UNDETERMINED),
        ("  \n[TOOL", ToolCallMode.UNDETERMINED),
        ("[TOOL_CALL]", ToolCallMode.TOOL_CALL),
        ("[TOOL_CALL][{", ToolCallMode.TOOL_CALL),
        ("\n [TOOL_CALL]", ToolCallMode.TOOL_CALL),
        ("Hello", ToolCallMode.TEXT),
        ("[TOOL_X", ToolCallMode.TEXT),
        ("[1, 2]", ToolCallMode.TEXT),
    ],
)
def test_detect(buffer: str, expected: ToolCallMode) -> None:
    assert detect(buffer) is expected


# =============================================================================
# Detector state machine
# =============================================================================


def test_detector_resolves_to_tool_call_across_split_marker() -> None:
    detector = SentinelToolCallDetector()

    assert detector.feed("[TOO") is ToolCallMode.UNDETERMINED
    assert detector.feed("L_CA") is ToolCallMode.UNDETERMINED
    assert detector.feed("LL]\n[") is ToolCallMode.TOOL_CALL


def test_detector_is_monotone() -> None:
    detector = SentinelToolCallDetector()

    assert detector.feed("Sure, ") is ToolCallMode.TEXT
    # A marker appearing later never flips the decision back.
    assert detector.feed("[TOOL_CALL]") is ToolCallMode.TEXT
    assert detector.finish() is ToolCallMode.TEXT


def test_open_prefix_at_end_of_stream_is_text() -> None:
    detector = SentinelToolCallDetector()

    detector.feed("[TOOL")

    assert detector.mode is ToolCallMode.UNDETERMINED
    assert detector.finish() is ToolCallMode.TEXT


def test_normalization_spans_deltas() -> None:
    markers = SentinelMarkers()
    detector = SentinelToolCallDetector(markers, normalize=_unescape, escape_tail=_backslash_tail)

    assert detector.feed("[TOOL\\") is ToolCallMode.UNDETERMINED
    assert detector.feed("_CALL]") is ToolCallMode.TOOL_CALL


def test_held_escape_that_never_completes_decides_at_finish() -> None:
    detector = SentinelToolCallDetector(normalize=_unescape, escape_tail=_backslash_tail)

    assert detector.feed("[TOOL_CALL]\\") is ToolCallMode.TOOL_CALL
    other = SentinelToolCallDetector(normalize=_unescape, escape_tail=_backslash_tail)
    assert other.feed("[TOOL\\") is ToolCallMode.UNDETERMINED
    assert other.finish() is ToolCallMode.TEXT


def test_markers_must_be_distinct() -> None:
    with pytest.raises(ValueError):
        SentinelMarkers(open="<x>", close="<x>")


_ESCAPED_OPEN = OPEN.replace("_", "\\_")
_FRAGMENTS = st.sampled_from(
    [OPEN, _ESCAPED_OPEN, "[", "TOOL", "\\", "_", "\\_", "CALL]", " ", "\n", "x", "{}"]
)


@given(
    st.one_of(st.text(max_size=40), st.lists(_FRAGMENTS, max_size=8).map("".join)),
    st.booleans(),
    st.data(),
)
def test_incremental_decision_agrees_with_the_full_text(
    text: str, escaped: bool, data: st.DataObject
) -> None:
    cuts = sorted(data.draw(st.lists(st.integers(0, len(text)), max_size=5)))
    pieces = [text[i:j] for i, j in zip([0, *cuts], [*cuts, len(text)], strict=True)]
    if escaped:
        detector = SentinelToolCallDetector(normalize=_unescape, escape_tail=_backslash_tail)
        normalized = _unescape(text)
    else:
        detector = SentinelToolCallDetector()
        normalized = text

    for piece in pieces:
        detector.feed(piece)
    mode = detector.finish()

    starts_with_marker = normalized.lstrip().startswith(OPEN)
    assert (mode is ToolCallMode.TOOL_CALL) == starts_with_marker
    if extract_payload(text, normalize=_unescape if escaped else None) is not None:
        assert mode is ToolCallMode.TOOL_CALL


# =============================================================================
# Extraction and parsing
# =============================================================================


def test_extract_payload_is_greedy_and_spans_lines() -> None:
    text = '[TOOL_CALL]\n[{"function": "a", "args": {"s": "[/TOOL_CALL]"}}]\n[/TOOL_CALL]\n'

    payload = extract_payload(text)

    assert payload is not None
    assert json.loads(payload)[0]["args"]["s"] == "[/TOOL_CALL]"


def test_extract_payload_requires_the_marker_at_the_start() -> None:
    assert extract_payload('Answer: [TOOL_CALL][{"function": "a"}][/TOOL_CALL]') is None


def test_parse_tool_calls_generates_ids_and_stringifies_args() -> None:
    payload = '[{"function": "get_weather", "args": {"city": "Paris"}}, {"function": "now"}]'

    calls = parse_tool_calls(payload, raw_text=payload)

    assert [c.name for c in calls] == ["get_weather", "now"]
    assert json.loads(calls[0].arguments) == {"city": "Paris"}
    assert calls[1].arguments == "{}"
    assert calls[0].id and calls[1].id and calls[0].id != calls[1].id


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        '{"function": "a"}',
        '[{"args": {}}]',
        '[{"function": ""}]',
    ],
)
def test_invalid_payload_is_malformed(payload: str) -> None:
    with pytest.raises(MalformedToolPayload) as exc:
        parse_tool_calls(payload, raw_text=f"[TOOL_CALL]{payload}[/TOOL_CALL]")

    assert exc.value.retryable is False
    assert exc.value.raw_text == f"[TOOL_CALL]{payload}[/TOOL_CALL]"
    assert "Cannot parse the model result to JSON format" in str(exc.value)


def test_missing_closing_marker_is_malformed() -> None:
    text = '[TOOL_CALL][{"function": "a"}]'

    with pytest.raises(MalformedToolPayload) as exc:
        resolve_tool_calls(text)

    assert exc.value.raw_text == text
    assert exc.value.failure_reason == "Tool call failed to match markers"


def test_resolve_tool_calls_undoes_vendor_escaping() -> None:
    text = '[TOOL\\_CALL][{"function": "get\\_weather", "args": {}}][/TOOL\\_CALL]'

    calls = resolve_tool_calls(text, normalize=_unescape)

    assert calls[0].name == "get_weather"


def test_render_tool_instructions_lists_tools_between_markers() -> None:
    tools = [
        ToolDefinition(
            name="get_weather",
            description="Current weather",
            parameters={"type": "object", "properties": {"city": {"type": "string"}}},
        )
    ]

    text = render_tool_instructions(tools)

    assert "[TOOL_CALL]" in text and "[/TOOL_CALL]" in text
    assert '"name": "get_weather"' in text
    assert '"function": "{functionName}"' in text
